"""
Invocation Bridge

Turns the free-text argument field of an export's control into a call,
runs it, and converts the outcome into an InvocationResult.

Argument text:
- blank                   -> no arguments
- JSON array              -> one positional argument per element
- any other JSON value    -> that value as the single argument
- not JSON at all         -> the raw text as the single argument

The call is always awaited, so exports may be plain or async functions.
Failures never propagate out of invoke().
"""

import inspect
import json
import re
from dataclasses import dataclass
from typing import Any, List, Sequence

from .errors import InvocationError, describe_error
from .exports import ExportDescriptor


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a single call: a value or an error message"""

    ok: bool
    value: Any = None
    message: str = ''

    @classmethod
    def success(cls, value: Any) -> 'InvocationResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, message: str) -> 'InvocationResult':
        return cls(ok=False, message=message)


def parse_arguments(text: str) -> List[Any]:
    """Parse argument text into a positional argument list"""
    if not text or not text.strip():
        return []

    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError):
        # Treat it as a single string argument
        return [text]

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def format_value(value: Any) -> str:
    """JSON rendering of a value; non-JSON values fall back to repr()"""
    try:
        return json.dumps(value, ensure_ascii=False, default=repr)
    except (TypeError, ValueError, RecursionError):
        # Non-string keys or cycles
        return repr(value)


def format_call(name: str, args: Sequence[Any]) -> str:
    """Render a call as 'name(arg, arg)'"""
    return f"{name}({', '.join(format_value(a) for a in args)})"


def result_line(result: InvocationResult) -> str:
    """The line shown under an export's control after a call"""
    if result.ok:
        return f"Result: {format_value(result.value)}"
    return f"Error: {result.message}"


def safe_name(path: str) -> str:
    """Identifier-safe key for an export path"""
    return re.sub(r'[^a-zA-Z0-9]', '_', path)


async def call_export(descriptor: ExportDescriptor, args: Sequence[Any]) -> Any:
    """
    Call an export and await its result.

    Raises:
        InvocationError: If the export raises or its awaitable fails
    """
    try:
        result = descriptor.invoke(*args)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        raise InvocationError(describe_error(e)) from e
    return result


async def invoke(descriptor: ExportDescriptor, text: str) -> InvocationResult:
    """
    Invoke an export with raw argument text.

    Args:
        descriptor: The export to call
        text: Argument text as entered by the user

    Returns:
        InvocationResult with the call's value or error message
    """
    return await invoke_with(descriptor, parse_arguments(text))


async def invoke_with(descriptor: ExportDescriptor, args: Sequence[Any]) -> InvocationResult:
    """Invoke an export with already parsed positional arguments"""
    try:
        value = await call_export(descriptor, args)
    except InvocationError as e:
        return InvocationResult.failure(str(e))
    return InvocationResult.success(value)
