"""
Export discovery.

A loaded component is an arbitrary nested namespace of values, some of them
callable. Discovery runs in two steps:

1. classify() sorts a value into one of three variants: a callable member,
   a namespace whose own members can be walked, or opaque data.
2. find_callable_exports() walks namespaces depth-first and returns one
   ExportDescriptor per reachable callable, in declaration order.

Rules:
- Own members only: mapping items or the instance/module __dict__;
  dunder names are skipped; on a module without __all__, so are private
  names and names the module merely imported
- Classes are constructors, not exports
- Lists, tuples and sets are data; functions inside them are not reported
- Objects are visited once (by identity), so cycles terminate and shared
  namespaces are reported under the first path that reaches them
- A member whose access raises is skipped with a warning
"""

import inspect
from dataclasses import dataclass
from types import ModuleType, SimpleNamespace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class CallableMember:
    handle: Callable


@dataclass(frozen=True)
class NamespaceMember:
    value: Any


@dataclass(frozen=True)
class OpaqueMember:
    value: Any


Member = Union[CallableMember, NamespaceMember, OpaqueMember]


@dataclass(frozen=True)
class ExportDescriptor:
    """A discovered invocable member"""

    path: str
    display_name: str
    invoke: Callable


_DATA_TYPES = (str, bytes, bytearray, memoryview, int, float, complex, bool,
               list, tuple, set, frozenset)


def classify(value: Any) -> Member:
    """Sort a member value into callable, namespace or opaque"""
    if value is None or isinstance(value, _DATA_TYPES):
        return OpaqueMember(value)

    if inspect.isclass(value):
        return OpaqueMember(value)

    if isinstance(value, ModuleType):
        # A module reached as a member is an import, not a namespace
        return OpaqueMember(value)

    if callable(value):
        return CallableMember(value)

    if isinstance(value, (Mapping, SimpleNamespace)) or hasattr(value, '__dict__'):
        return NamespaceMember(value)

    return OpaqueMember(value)


def display_name(key: str) -> str:
    """
    Short name for a member key.

    Namespaced keys like 'example:string-reverse/reverse@0.1.0' become
    'reverse'; other keys are returned verbatim.
    """
    if '/' in key:
        return key.split('/')[-1].split('@')[0]
    return key


def _own_keys(obj: Any) -> List[str]:
    if isinstance(obj, Mapping):
        keys = [k for k in obj.keys() if isinstance(k, str)]
    elif isinstance(obj, ModuleType) and isinstance(getattr(obj, '__all__', None), (list, tuple)):
        return [k for k in obj.__all__ if isinstance(k, str)]
    else:
        try:
            keys = list(vars(obj).keys())
        except TypeError:
            return []
    return [k for k in keys if not k.startswith('__')]


def _get_member(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj[key]
    return getattr(obj, key)


def _imported_into(module: ModuleType, value: Any) -> bool:
    """True when a module-level member was defined in another module"""
    if inspect.isroutine(value) or inspect.isclass(value):
        owner = getattr(value, '__module__', None)
        return isinstance(owner, str) and owner != module.__name__
    if isinstance(value, (Mapping, SimpleNamespace)):
        return False
    if hasattr(value, '__dict__'):
        return type(value).__module__ != module.__name__
    return False


def _access_warning(log, key: str, error: Exception) -> None:
    if log is not None:
        log.warning(f'Could not access member "{key}": {error}', member=key)


def own_members(obj: Any, log=None) -> List[Tuple[str, Any]]:
    """
    Own members of a namespace, in declaration order.

    Members whose access raises are skipped; when a log is given a
    warning is recorded for each.
    """
    members = []
    explicit = isinstance(obj, ModuleType) and hasattr(obj, '__all__')

    for key in _own_keys(obj):
        try:
            value = _get_member(obj, key)
            if isinstance(obj, ModuleType) and not explicit:
                if key.startswith('_') or _imported_into(obj, value):
                    continue
        except Exception as e:
            _access_warning(log, key, e)
            continue

        members.append((key, value))
    return members


def find_callable_exports(
    obj: Any,
    path: str = '',
    visited: Optional[Dict[int, Any]] = None,
    log=None,
) -> List[ExportDescriptor]:
    """
    Recursively find all callable members reachable from `obj`.

    Args:
        obj: Root namespace (module, mapping, namespace object)
        path: Dotted path of `obj` from the walk root
        visited: Namespaces already walked, keyed by id (shared across recursion)
        log: Optional ActivityLog for access diagnostics

    Returns:
        Export descriptors, depth-first in declaration order
    """
    if visited is None:
        visited = {}

    functions: List[ExportDescriptor] = []

    # Prevent infinite recursion with circular references
    if id(obj) in visited:
        return functions
    visited[id(obj)] = obj  # keep a reference so ids stay unique

    for key, value in own_members(obj, log=log):
        current_path = f'{path}.{key}' if path else key
        try:
            member = classify(value)
        except Exception as e:
            # e.g. attribute hooks that raise on __dict__ lookup
            _access_warning(log, key, e)
            continue

        if isinstance(member, CallableMember):
            functions.append(ExportDescriptor(
                path=current_path,
                display_name=display_name(key),
                invoke=member.handle,
            ))
        elif isinstance(member, NamespaceMember):
            functions.extend(find_callable_exports(value, current_path, visited, log))

    return functions


def select_export_root(module: Any) -> Tuple[Any, bool]:
    """
    Pick the namespace to walk for exports.

    The module itself wins when it has any own member besides 'default'
    (a 'default' namespace is then walked as a nested member). A module
    whose only member is 'default' is walked through that member.

    Returns:
        (root, used_default)
    """
    keys = [key for key, _ in own_members(module)]
    if any(key != 'default' for key in keys):
        return module, False

    if 'default' in keys:
        default = _get_member(module, 'default')
        if default is not None:
            return default, True

    return module, False
