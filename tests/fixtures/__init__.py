"""
Test fixtures for the component runner

This package contains fixtures used for testing:
- Generated module sources (generated/), as a transpiler would emit them
- Fake transpilers, in-process and command-line
- Component bytes for the add and string-reverse examples
"""

import os

# Path to fixtures directory
FIXTURES_DIR = os.path.dirname(__file__)
GENERATED_DIR = os.path.join(FIXTURES_DIR, 'generated')
CLI_TRANSPILER = os.path.join(FIXTURES_DIR, 'fake_transpiler_cli.py')
