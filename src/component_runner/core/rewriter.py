"""
Reference Rewriter

Relinks generated module source so that references to resource files point
at in-memory handles instead of paths next to the module. Three reference
shapes are rewritten, every occurrence, with or without a leading './':

    open('./core.wasm', 'rb')                          -> open('<ref>', 'rb')
    Path('./core.wasm')                                -> Path('<ref>')
    os.path.join(os.path.dirname(__file__), 'core.wasm') -> '<ref>'
    Path(__file__).parent / 'core.wasm'                -> Path('<ref>')

The last two are the self-relative forms; `os.path.abspath(__file__)` is
accepted in place of `__file__`.
"""

import re
from typing import Mapping


_FILE = r'(?:os\.path\.abspath\(\s*__file__\s*\)|__file__)'


def _literal(name: str) -> str:
    # Quoted resource name, optional leading './'
    return r'''(['"])(?:\./)?''' + re.escape(name) + r'\1'


def _patterns(name: str):
    literal = _literal(name)
    return [
        # static load
        (re.compile(r'\bopen\(\s*' + literal), "open('{ref}'"),
        # deferred locator
        (re.compile(r'\bPath\(\s*' + literal + r'\s*\)'), "Path('{ref}')"),
        # self-relative locators
        (
            re.compile(
                r'\bos\.path\.join\(\s*os\.path\.dirname\(\s*' + _FILE + r'\s*\)\s*,\s*'
                + literal + r'\s*\)'
            ),
            "'{ref}'",
        ),
        (
            re.compile(r'\bPath\(\s*__file__\s*\)\.parent\s*/\s*' + literal),
            "Path('{ref}')",
        ),
    ]


def rewrite_references(source: str, handles: Mapping[str, str]) -> str:
    """
    Point every resource reference in `source` at its handle.

    Args:
        source: Generated entry point source
        handles: Logical resource filename (optionally './'-prefixed) ->
                 handle reference

    Returns:
        Rewritten source; unchanged when there are no handles
    """
    for filename, ref in handles.items():
        name = filename[2:] if filename.startswith('./') else filename
        for pattern, template in _patterns(name):
            replacement = template.format(ref=ref)
            source = pattern.sub(lambda _m, r=replacement: r, source)
    return source
