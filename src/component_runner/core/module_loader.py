"""
Module Loader

Instantiates rewritten entry point source as a Python module.

Design principles:
- Source comes from memory, never from a file next to the module
- Each load gets a fresh module name; nothing is cached or reused
- The module is registered in sys.modules while it is current so that
  pickling, dataclasses and typing can find it, and removed on unload
- Errors are caught and wrapped with context
"""

import importlib.abc
import importlib.util
import itertools
import sys
import traceback
from types import ModuleType
from typing import Any, Dict


MODULE_PREFIX = 'component_runner.loaded'

_counter = itertools.count(1)


class _SourceLoader(importlib.abc.Loader):
    """Loader that executes source text held in memory"""

    def __init__(self, source: str, origin: str):
        self.source = source
        self.origin = origin

    def create_module(self, spec):
        return None  # default module creation

    def exec_module(self, module: ModuleType) -> None:
        code = compile(self.source, self.origin, 'exec', dont_inherit=True)
        exec(code, module.__dict__)


def load_module_from_source(source: str, filename: str = 'component.py') -> ModuleType:
    """
    Load module source as a fresh module.

    Args:
        source: Python source of the module
        filename: Logical filename, used in tracebacks only

    Returns:
        The loaded module object

    Raises:
        LoadError: If the source can't be compiled or raises while executing
    """
    from .errors import LoadError

    module_name = f"{MODULE_PREFIX}.component_{next(_counter)}"
    loader = _SourceLoader(source, f'<{filename}>')

    spec = importlib.util.spec_from_loader(module_name, loader, origin=loader.origin)
    if spec is None:
        raise LoadError(f"Could not create module spec for: {filename}")

    module = importlib.util.module_from_spec(spec)

    sys.modules[module_name] = module

    try:
        spec.loader.exec_module(module)
    except SyntaxError as e:
        sys.modules.pop(module_name, None)
        raise LoadError(f"Syntax error in {filename}: {e}")
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise LoadError(
            f"Failed to load {filename}: {type(e).__name__}: {e}\n{traceback.format_exc()}"
        )

    return module


def unload_module(module: ModuleType) -> None:
    """Drop a loaded module from sys.modules"""
    name = getattr(module, '__name__', None)
    if name and sys.modules.get(name) is module:
        del sys.modules[name]


def get_module_metadata(module: Any) -> Dict[str, Any]:
    """
    Get metadata from a loaded module.

    Looks for a __component__ dict in the module.

    Returns:
        Metadata dictionary (with defaults if not present)
    """
    if hasattr(module, '__component__'):
        return dict(getattr(module, '__component__'))

    return {
        'name': getattr(module, '__name__', 'unknown'),
        'version': '0.0.0',
        'description': '',
    }
