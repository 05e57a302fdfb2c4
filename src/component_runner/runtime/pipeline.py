"""
Component Pipeline

Drives a component from bytes to callable exports:

    ingest -> transpile -> relink -> load module -> discover exports

The pipeline's state is one immutable PipelineState snapshot. Stage
functions take a snapshot and return the next one; only ComponentRunner
stores the current snapshot, and it is the only writer. Anything that
reads `runner.state` gets a point-in-time view that a later reload may
replace entirely.

Stages:
    EMPTY -> LOADED -> TRANSPILING -> RUNNABLE -> (TRANSPILING on reload)

Failures never escape the runner: each stage catches its own errors, logs
them and rolls back to EMPTY or LOADED so the user can retry.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import RunnerConfig, get_config
from ..core.activity_log import ActivityLog
from ..core.errors import (
    IngestError,
    InvocationError,
    LoadError,
    ResourceError,
    TranspileError,
    describe_error,
)
from ..core.exports import ExportDescriptor, find_callable_exports, own_members, select_export_root
from ..core.ingest import (
    RawComponent,
    accepts_dropped_file,
    fetch_example,
    make_component,
    read_component_file,
)
from ..core.invocation import (
    InvocationResult,
    call_export,
    format_call,
    format_value,
    invoke_with,
    parse_arguments,
    result_line,
    safe_name,
)
from ..core.module_loader import get_module_metadata, load_module_from_source, unload_module
from ..core.resources import ResourceHandle, allocate_handles, handle_map, release_handles
from ..core.rewriter import rewrite_references
from ..core.transpiler import (
    RESOURCE_SUFFIX,
    CommandTranspiler,
    TranspileOptions,
    TranspileResult,
    Transpiler,
    normalize_result,
)


# Well-known zero-argument entry points, in priority order
ENTRY_POINT_NAMES = ('run', 'main', 'start')

BINARY_FORMAT_KEYWORDS = ('webassembly', 'wasm', 'magic', 'binary')


class Stage(Enum):
    EMPTY = 'empty'
    LOADED = 'loaded'
    TRANSPILING = 'transpiling'
    RUNNABLE = 'runnable'


class Status(Enum):
    """Status line shown to the user: text plus a kind for styling"""

    NO_COMPONENT = ('No component loaded', 'idle')
    LOADED = ('Component loaded', 'ready')
    LOADING = ('Loading component...', 'loading')
    TRANSPILING = ('Transpiling...', 'loading')
    TRANSPILED = ('Transpilation complete', 'ready')
    TRANSPILE_FAILED = ('Transpilation failed', 'error')
    LOAD_FAILED = ('Error loading component', 'error')

    def __init__(self, text: str, kind: str):
        self.text = text
        self.kind = kind


@dataclass
class FunctionControl:
    """Invocation form for one export: the export plus its last result line"""

    descriptor: ExportDescriptor
    safe_name: str
    result_line: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.descriptor.display_name

    @property
    def path(self) -> str:
        return self.descriptor.path


@dataclass(frozen=True)
class LoadedComponent:
    """Everything one successful transpile produced"""

    module: ModuleType
    root: Any
    used_default: bool
    descriptors: Tuple[ExportDescriptor, ...]
    controls: Dict[str, FunctionControl]
    handles: Tuple[ResourceHandle, ...]
    generated_files: Tuple[str, ...]
    declared_exports: Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class PipelineState:
    """Point-in-time snapshot of the pipeline"""

    stage: Stage = Stage.EMPTY
    status: Status = Status.NO_COMPONENT
    component: Optional[RawComponent] = None
    module: Optional[ModuleType] = None
    root: Any = None
    descriptors: Tuple[ExportDescriptor, ...] = ()
    controls: Dict[str, FunctionControl] = field(default_factory=dict)
    handles: Tuple[ResourceHandle, ...] = ()
    generated_files: Tuple[str, ...] = ()
    declared_exports: Tuple[Tuple[str, str], ...] = ()


# Stage functions: snapshot in, snapshot out

def with_loading(state: PipelineState) -> PipelineState:
    return replace(state, status=Status.LOADING)


def with_component(state: PipelineState, component: RawComponent) -> PipelineState:
    """A new component replaces the old one and everything derived from it"""
    return PipelineState(stage=Stage.LOADED, status=Status.LOADED, component=component)


def with_ingest_failure(state: PipelineState) -> PipelineState:
    """Reading failed: keep whatever was loaded before"""
    return replace(state, status=Status.LOAD_FAILED)


def begin_transpile(state: PipelineState) -> PipelineState:
    """Drop the previous module and exports unconditionally"""
    return PipelineState(stage=Stage.TRANSPILING, status=Status.TRANSPILING, component=state.component)


def with_loaded_module(state: PipelineState, loaded: LoadedComponent) -> PipelineState:
    return PipelineState(
        stage=Stage.RUNNABLE,
        status=Status.TRANSPILED,
        component=state.component,
        module=loaded.module,
        root=loaded.root,
        descriptors=loaded.descriptors,
        controls=loaded.controls,
        handles=loaded.handles,
        generated_files=loaded.generated_files,
        declared_exports=loaded.declared_exports,
    )


def with_transpile_failure(state: PipelineState) -> PipelineState:
    """Back to LOADED; the raw bytes stay available for a retry"""
    return PipelineState(stage=Stage.LOADED, status=Status.TRANSPILE_FAILED, component=state.component)


def build_controls(descriptors: List[ExportDescriptor]) -> Dict[str, FunctionControl]:
    """One control per export, keyed by a unique safe name"""
    controls: Dict[str, FunctionControl] = {}
    for descriptor in descriptors:
        key = safe_name(descriptor.path)
        candidate, n = key, 2
        while candidate in controls:
            candidate = f'{key}_{n}'
            n += 1
        controls[candidate] = FunctionControl(descriptor=descriptor, safe_name=candidate)
    return controls


def _accepts_no_arguments(func: Callable) -> bool:
    try:
        inspect.signature(func).bind()
    except TypeError:
        return False
    except ValueError:
        # No signature available (some builtins); let the call decide
        return True
    return True


def find_entry_point(root: Any) -> Optional[Tuple[str, Callable]]:
    """First well-known zero-argument entry point on the export root"""
    members = dict(own_members(root))
    for name in ENTRY_POINT_NAMES:
        target = members.get(name)
        if callable(target) and not inspect.isclass(target) and _accepts_no_arguments(target):
            return name, target
    return None


class ComponentRunner:
    """
    Pipeline orchestrator.

    Owns the single current PipelineState and the activity log. Every
    public coroutine returns after logging its outcome; none raise.
    """

    def __init__(
        self,
        transpiler: Optional[Transpiler] = None,
        config: Optional[RunnerConfig] = None,
        log: Optional[ActivityLog] = None,
        options: Optional[TranspileOptions] = None,
    ):
        """
        Initialize runner.

        Args:
            transpiler: Transpiler callable; defaults to the configured
                        command, if any
            config: Runner configuration (default: global config)
            log: Activity log (default: new log, mirrored if configured)
            options: Transpile options (default: the fixed options)
        """
        self.config = config or get_config()

        if transpiler is None and self.config.transpiler_command:
            transpiler = CommandTranspiler(
                self.config.transpiler_command,
                timeout=self.config.transpile_timeout,
            )
        self.transpiler = transpiler
        self.options = options or TranspileOptions()
        self.log = log or ActivityLog(log_file=self.config.log_file)

        self._state = PipelineState()

        self.log.success('WebAssembly Component Runner initialized')
        self.log.info('Select a .wasm component file or load an example to begin')

    # Snapshot accessors

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def transpile_enabled(self) -> bool:
        return self._state.component is not None and self._state.stage is not Stage.TRANSPILING

    @property
    def run_enabled(self) -> bool:
        return self._state.stage is Stage.RUNNABLE

    @property
    def controls(self) -> List[FunctionControl]:
        return list(self._state.controls.values())

    def _commit(self, state: PipelineState) -> PipelineState:
        """Store a new snapshot and release whatever it no longer holds"""
        previous = self._state
        self._state = state

        if previous.module is not None and previous.module is not state.module:
            unload_module(previous.module)
        release_handles(h for h in previous.handles if h not in state.handles)

        return state

    # Ingest

    async def _ingest(self, read: Callable[[], RawComponent], filename: str, hint: Optional[str] = None) -> PipelineState:
        self.log.info(f'Loading component: {filename}', filename=filename)
        self._commit(with_loading(self._state))

        try:
            component = await asyncio.to_thread(read)
        except IngestError as e:
            self.log.error(f'Error loading component: {describe_error(e)}', filename=filename)
            if hint:
                self.log.info(hint)
            return self._commit(with_ingest_failure(self._state))

        self._commit(with_component(self._state, component))
        self.log.success(
            f'Component loaded successfully ({component.size_kb} KB)',
            filename=component.filename,
        )
        return self._state

    async def load_bytes(self, data: bytes, filename: str) -> PipelineState:
        """Load component bytes that are already in memory"""
        return await self._ingest(lambda: make_component(data, filename), filename)

    async def load_file(self, path: str | Path) -> PipelineState:
        """Load a component from a picked file"""
        return await self._ingest(lambda: read_component_file(path), Path(path).name)

    async def load_dropped(self, path: str | Path) -> PipelineState:
        """Load a dropped file; anything that isn't a .wasm file is ignored"""
        if not accepts_dropped_file(path):
            self.log.warning(f'Ignoring dropped file {Path(path).name}: expected a .wasm component')
            return self._state
        return await self.load_file(path)

    async def load_example(self, name: str) -> PipelineState:
        """Fetch and load one of the bundled example components"""
        base_url = self.config.examples_url or ''
        return await self._ingest(
            lambda: fetch_example(name, base_url, timeout=self.config.fetch_timeout),
            f'{name}.wasm',
            hint=f'Make sure the example file exists at {base_url}',
        )

    # Transpile

    async def _run_transpiler(self, data: bytes) -> TranspileResult:
        if self.transpiler is None:
            raise TranspileError('No transpiler configured (set COMPONENT_RUNNER_TRANSPILER)')

        try:
            raw = await asyncio.to_thread(self.transpiler, data, self.options)
            if inspect.isawaitable(raw):
                raw = await raw
        except TranspileError:
            raise
        except Exception as e:
            raise TranspileError(describe_error(e)) from e

        return normalize_result(raw)

    async def _build(self, component: RawComponent) -> LoadedComponent:
        started = time.perf_counter()
        result = await self._run_transpiler(component.data)
        elapsed = time.perf_counter() - started

        self.log.success(f'Transpilation completed in {elapsed:.2f}s')
        self.log.info(f"Generated files: {', '.join(result.file_names())}")
        if result.exports:
            self.log.info(f"Component exports: {', '.join(result.export_names())}")

        files = result.file_map()
        entry_point = self.config.entry_point
        entry = files.get(entry_point)
        if entry is None:
            raise TranspileError(f'No loadable module was generated from the component ({entry_point} missing)')

        resources = {name: content for name, content in files.items() if name.endswith(RESOURCE_SUFFIX)}
        handles = allocate_handles(resources)

        try:
            for handle in handles:
                self.log.info(f'Created resource handle for {handle.filename}', filename=handle.filename)

            try:
                source = entry.decode('utf-8')
            except UnicodeDecodeError as e:
                raise LoadError(f'{entry_point} is not UTF-8 text: {e}')

            source = rewrite_references(source, handle_map(handles))

            self.log.info('Loading transpiled module...')
            module = load_module_from_source(source, entry_point)
        except Exception:
            release_handles(handles)
            raise

        try:
            root, used_default, descriptors = self._discover(module)
        except Exception as e:
            unload_module(module)
            release_handles(handles)
            raise LoadError(f'Could not inspect module exports: {describe_error(e)}') from e

        return LoadedComponent(
            module=module,
            root=root,
            used_default=used_default,
            descriptors=tuple(descriptors),
            controls=build_controls(descriptors),
            handles=tuple(handles),
            generated_files=tuple(result.file_names()),
            declared_exports=result.exports,
        )

    def _discover(self, module: ModuleType) -> Tuple[Any, bool, List[ExportDescriptor]]:
        root, used_default = select_export_root(module)
        module_keys = [key for key, _ in own_members(module)]
        if not used_default and module_keys:
            self.log.success(f"Module loaded with exports: {', '.join(module_keys)}")
        else:
            self.log.info('Module loaded (checking for default export)')
            if used_default:
                root_keys = [key for key, _ in own_members(root)]
                self.log.success(f"Using default export with keys: {', '.join(root_keys)}")

        return root, used_default, find_callable_exports(root, log=self.log)

    def _report_transpile_failure(self, error: Exception) -> None:
        message = describe_error(error).splitlines()[0]
        category = getattr(error, 'category', 'transpile')
        self.log.error(f'Transpilation failed: {message}', category=category)

        # Resource allocation messages always name a .wasm file
        if isinstance(error, TranspileError) and not isinstance(error, ResourceError):
            lowered = message.lower()
            if any(keyword in lowered for keyword in BINARY_FORMAT_KEYWORDS):
                self.log.error('Make sure the file is a valid WebAssembly component')
            elif 'memory' in lowered:
                self.log.error('The component might be too large for available memory')

    def _report_controls(self, controls: List[FunctionControl]) -> None:
        if not controls:
            self.log.warning('No callable functions found in the component exports')
            return

        self.log.info('Setting up function controls...')
        self.log.success(f'Created controls for {len(controls)} function(s)')
        names = ', '.join(c.display_name for c in controls)
        self.log.info(f'Available functions: {names}')

    async def transpile(self) -> PipelineState:
        """
        Transpile the loaded component and discover its exports.

        Refused while no component is loaded or a transpile is already in
        flight. On failure the pipeline returns to LOADED.
        """
        state = self._state
        if not self.transpile_enabled:
            if state.stage is Stage.TRANSPILING:
                self.log.warning('Transpilation already in progress')
            else:
                self.log.warning('Load a component before transpiling')
            return state

        component = state.component
        self.log.info('Starting transpilation...')
        self._commit(begin_transpile(state))

        try:
            loaded = await self._build(component)
        except Exception as e:
            if self._state.component is component:
                self._report_transpile_failure(e)
                self._commit(with_transpile_failure(self._state))
            else:
                self.log.warning(
                    f'Discarding transpile failure for {component.filename}: component was replaced'
                )
            return self._state

        if self._state.component is not component:
            # A new component arrived while this one was transpiling
            self.log.warning(f'Discarding transpile result for {component.filename}: component was replaced')
            unload_module(loaded.module)
            release_handles(loaded.handles)
            return self._state

        self._commit(with_loaded_module(self._state, loaded))
        self._report_controls(list(loaded.controls.values()))
        return self._state

    # Invoke

    def find_control(self, name: str) -> Optional[FunctionControl]:
        """Look a control up by safe name, export path or display name"""
        controls = self._state.controls
        if name in controls:
            return controls[name]
        for control in controls.values():
            if control.path == name:
                return control
        for control in controls.values():
            if control.display_name == name:
                return control
        return None

    async def call(self, name: str, args_text: str = '') -> InvocationResult:
        """
        Call an export with raw argument text.

        Args:
            name: Safe name, path or display name of the export
            args_text: Arguments as typed (JSON array, JSON value or text)
        """
        control = self.find_control(name)
        if control is None:
            message = f'Function not found: {name}'
            self.log.error(f'Error calling {name}: {message}')
            return InvocationResult.failure(message)

        args = parse_arguments(args_text)
        self.log.info(f'Calling {format_call(control.display_name, args)}', export=control.path)

        result = await invoke_with(control.descriptor, args)
        control.result_line = result_line(result)

        if result.ok:
            self.log.success(f'Result: {format_value(result.value)}', export=control.path)
        else:
            self.log.error(f'Error calling {control.display_name}: {result.message}', export=control.path)
        return result

    async def run(self) -> Optional[InvocationResult]:
        """
        Invoke the component's well-known entry point (run, main or start).

        Returns:
            The InvocationResult, or None when there is nothing to run
        """
        if not self.run_enabled:
            self.log.warning('Transpile a component before running it')
            return None

        self.log.info('Attempting to run component...')

        found = find_entry_point(self._state.root)
        if found is None:
            self.log.warning(
                'No standard entry point found. Use the function call interface to call specific exports.'
            )
            return None

        name, target = found
        self.log.info(f'Found "{name}" export, executing...')
        descriptor = ExportDescriptor(path=name, display_name=name, invoke=target)

        try:
            value = await call_export(descriptor, [])
        except InvocationError as e:
            self.log.error(f'Execution error: {e}')
            return InvocationResult.failure(str(e))

        self.log.success(f'{name.capitalize()} completed: {format_value(value)}')
        return InvocationResult.success(value)

    # Log and info

    def clear_log(self) -> None:
        self.log.clear()

    def component_info(self) -> Optional[Dict[str, Any]]:
        """Details of the loaded component, for the info panel"""
        state = self._state
        if state.component is None:
            return None

        info: Dict[str, Any] = {
            'file': state.component.filename,
            'size': f'{state.component.size_kb} KB',
            'type': 'WebAssembly Component',
        }
        if state.module is not None:
            info['module'] = get_module_metadata(state.module)
            info['generated_files'] = list(state.generated_files)
            info['exports'] = [d.path for d in state.descriptors]
        return info

    def close(self) -> None:
        """Discard everything: unload the module and release its handles"""
        self._commit(PipelineState())
