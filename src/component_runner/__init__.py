"""
component-runner: load, relink and call WebAssembly components from Python.

A component's bytes go through an external transpiler that produces a
loadable Python module plus binary resources. The runner relinks the
module's resource references to in-memory handles, loads it, discovers
every callable export and lets you call them with free-text arguments.

Example:
    >>> import asyncio
    >>> from component_runner import ComponentRunner
    >>>
    >>> runner = ComponentRunner(transpiler=my_transpiler)
    >>> asyncio.run(runner.load_file('add.wasm'))
    >>> asyncio.run(runner.transpile())
    >>> asyncio.run(runner.call('add', '[5, 3]')).value
    8
"""

__version__ = "0.1.0"

from .core.activity_log import ActivityLog
from .core.errors import (
    IngestError,
    InvocationError,
    LoadError,
    ResourceError,
    RunnerError,
    TranspileError,
)
from .core.exports import ExportDescriptor, find_callable_exports
from .core.invocation import InvocationResult, invoke, parse_arguments
from .core.rewriter import rewrite_references
from .core.transpiler import CommandTranspiler, TranspileOptions, TranspileResult
from .runtime.pipeline import ComponentRunner, PipelineState, Stage, Status

__all__ = [
    "__version__",
    "ActivityLog",
    "CommandTranspiler",
    "ComponentRunner",
    "ExportDescriptor",
    "IngestError",
    "InvocationError",
    "InvocationResult",
    "LoadError",
    "PipelineState",
    "ResourceError",
    "RunnerError",
    "Stage",
    "Status",
    "TranspileError",
    "TranspileOptions",
    "TranspileResult",
    "find_callable_exports",
    "invoke",
    "parse_arguments",
    "rewrite_references",
]
