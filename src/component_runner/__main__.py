"""Allow ``python -m component_runner``."""

import sys

from .cli import main

sys.exit(main())
