"""
Error taxonomy for the component pipeline.

Every stage raises its own subclass of RunnerError. The orchestrator catches
them at the stage boundary, logs a categorized message and rolls the
pipeline back to its last stable state; none of them escape to callers.

Malformed argument text is not an error: the invocation bridge silently
passes it through as a single string argument.
"""


class RunnerError(Exception):
    """Base exception for component pipeline errors"""

    category = 'error'


class IngestError(RunnerError):
    """Raised when component bytes can't be read or are empty"""

    category = 'ingest'


class TranspileError(RunnerError):
    """Raised when the transpiler fails or produces no loadable module"""

    category = 'transpile'


class ResourceError(TranspileError):
    """Raised when an in-memory resource handle can't be allocated"""

    category = 'resource'


class LoadError(RunnerError):
    """Raised when rewritten module source can't be instantiated"""

    category = 'load'


class InvocationError(RunnerError):
    """Raised when an exported function raises during a call"""

    category = 'invocation'


def describe_error(error: BaseException) -> str:
    """Message for display, falling back to the exception type name"""
    return str(error) or type(error).__name__
