"""
Integration tests for the component pipeline

Drives ComponentRunner end to end with fake transpilers: load, transpile,
relink, load module, discover exports, call. Resource relinking needs
memfd_create, so these run on Linux only.
"""

import asyncio
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

from tests.fixtures.transpilers import (
    ADD_COMPONENT,
    CORE_MODULE,
    REVERSE_COMPONENT,
    AsyncTranspiler,
    FailingTranspiler,
    FakeTranspiler,
    GatedTranspiler,
    MissingEntryTranspiler,
    SourceTranspiler,
)


pytestmark = pytest.mark.skipif(
    not hasattr(os, 'memfd_create') or not sys.platform.startswith('linux'),
    reason='in-memory resources need memfd_create',
)


def make_runner(transpiler=None, **environ):
    from component_runner.config import RunnerConfig
    from component_runner.runtime.pipeline import ComponentRunner

    return ComponentRunner(transpiler=transpiler, config=RunnerConfig(environ=environ))


async def load_and_transpile(runner, data, filename):
    await runner.load_bytes(data, filename)
    return await runner.transpile()


class TestStageFunctions:
    """Pure snapshot transitions"""

    def test_initial_state(self):
        from component_runner.runtime.pipeline import PipelineState, Stage, Status

        state = PipelineState()

        assert state.stage is Stage.EMPTY
        assert state.status is Status.NO_COMPONENT
        assert state.status.kind == 'idle'

    def test_new_component_resets_everything(self):
        from component_runner.core.ingest import make_component
        from component_runner.runtime.pipeline import PipelineState, Stage, with_component

        old = PipelineState(stage=Stage.RUNNABLE, generated_files=('component.py',))
        state = with_component(old, make_component(b'\x00asm', 'a.wasm'))

        assert state.stage is Stage.LOADED
        assert state.module is None
        assert state.generated_files == ()
        assert state.component.filename == 'a.wasm'

    def test_transpile_failure_keeps_component(self):
        from component_runner.core.ingest import make_component
        from component_runner.runtime.pipeline import (
            PipelineState, Stage, Status, begin_transpile, with_transpile_failure,
        )

        component = make_component(b'\x00asm', 'a.wasm')
        state = with_transpile_failure(begin_transpile(PipelineState(stage=Stage.LOADED, component=component)))

        assert state.stage is Stage.LOADED
        assert state.status is Status.TRANSPILE_FAILED
        assert state.component is component

    def test_ingest_failure_keeps_previous_component(self):
        from component_runner.core.ingest import make_component
        from component_runner.runtime.pipeline import PipelineState, Stage, Status, with_ingest_failure

        component = make_component(b'\x00asm', 'a.wasm')
        state = with_ingest_failure(PipelineState(stage=Stage.LOADED, component=component))

        assert state.status is Status.LOAD_FAILED
        assert state.component is component

    def test_build_controls_unique_safe_names(self):
        from component_runner.core.exports import ExportDescriptor
        from component_runner.runtime.pipeline import build_controls

        descriptors = [
            ExportDescriptor(path='a.b_c', display_name='b_c', invoke=len),
            ExportDescriptor(path='a_b.c', display_name='c', invoke=len),
        ]

        controls = build_controls(descriptors)

        assert list(controls) == ['a_b_c', 'a_b_c_2']

    def test_find_entry_point_priority(self):
        from component_runner.runtime.pipeline import find_entry_point

        root = {'start': lambda: 's', 'main': lambda: 'm', 'other': lambda: 'o'}

        name, target = find_entry_point(root)

        assert name == 'main'
        assert target() == 'm'

    def test_entry_point_needing_arguments_skipped(self):
        from component_runner.runtime.pipeline import find_entry_point

        assert find_entry_point({'run': lambda x: x}) is None


class TestStartup:
    def test_initial_log(self):
        runner = make_runner()

        assert runner.log.messages() == [
            'WebAssembly Component Runner initialized',
            'Select a .wasm component file or load an example to begin',
        ]
        assert not runner.transpile_enabled
        assert not runner.run_enabled

    def test_transpile_without_component_refused(self):
        from component_runner.runtime.pipeline import Stage

        runner = make_runner(FakeTranspiler())
        state = asyncio.run(runner.transpile())

        assert state.stage is Stage.EMPTY
        assert runner.log.messages()[-1] == 'Load a component before transpiling'

    def test_configured_command_transpiler(self):
        from component_runner.core.transpiler import CommandTranspiler

        runner = make_runner(COMPONENT_RUNNER_TRANSPILER='tool {input} {out_dir}')

        assert isinstance(runner.transpiler, CommandTranspiler)


class TestAddComponent:
    """The add example, end to end"""

    def test_end_to_end(self):
        from component_runner.runtime.pipeline import Stage, Status

        async def scenario():
            runner = make_runner(FakeTranspiler())
            state = await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')

            assert state.stage is Stage.RUNNABLE
            assert state.status is Status.TRANSPILED
            assert [c.display_name for c in runner.controls] == ['add']

            first = await runner.call('add', '[5, 3]')
            second = await runner.call('add', '[10, 25]')
            return runner, first, second

        runner, first, second = asyncio.run(scenario())

        assert first.value == 8
        assert second.value == 35
        assert runner.controls[0].result_line == 'Result: 35'

        messages = runner.log.messages()
        assert 'Loading component: add.wasm' in messages
        assert 'Generated files: component.py, core.wasm' in messages
        assert 'Component exports: add' in messages
        assert 'Created resource handle for core.wasm' in messages
        assert 'Module loaded with exports: add' in messages
        assert 'Created controls for 1 function(s)' in messages
        assert 'Available functions: add' in messages
        assert 'Calling add(5, 3)' in messages
        assert 'Result: 8' in messages
        assert 'Result: 35' in messages
        runner.close()

    def test_transpiler_receives_fixed_options(self):
        from component_runner.core.transpiler import TranspileOptions

        transpiler = FakeTranspiler()
        runner = make_runner(transpiler)
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        assert transpiler.calls == [(ADD_COMPONENT, TranspileOptions())]
        runner.close()

    def test_async_transpiler(self):
        runner = make_runner(AsyncTranspiler())

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('add', '[2, 2]')

        assert asyncio.run(scenario()).value == 4
        runner.close()

    def test_call_errors_are_reported(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('add', '[1]')

        result = asyncio.run(scenario())

        assert not result.ok
        assert runner.controls[0].result_line.startswith('Error: ')
        assert runner.log.get_entries(level='error')[-1]['message'].startswith('Error calling add: ')
        runner.close()

    def test_unknown_function(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('subtract', '[1, 2]')

        result = asyncio.run(scenario())

        assert result.message == 'Function not found: subtract'
        runner.close()

    def test_component_info(self):
        runner = make_runner(FakeTranspiler())
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        info = runner.component_info()

        assert info['file'] == 'add.wasm'
        assert info['size'] == '0.01 KB'
        assert info['type'] == 'WebAssembly Component'
        assert info['generated_files'] == ['component.py', 'core.wasm']
        assert info['exports'] == ['add']
        runner.close()

    def test_no_entry_point_to_run(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.run()

        assert asyncio.run(scenario()) is None
        assert runner.log.messages()[-1] == (
            'No standard entry point found. Use the function call interface to call specific exports.'
        )
        runner.close()


class TestStringReverseComponent:
    """Namespaced interface exports with several resources"""

    def test_end_to_end(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, REVERSE_COMPONENT, 'string-reverse.wasm')
            return await runner.call('reverse', '["hello world"]')

        result = asyncio.run(scenario())

        assert result.value == 'dlrow olleh'

        controls = runner.controls
        assert len(controls) == 1
        assert controls[0].path == 'example:string-reverse/reverse@0.1.0.reverse'
        assert controls[0].display_name == 'reverse'
        assert controls[0].result_line == 'Result: "dlrow olleh"'

        messages = runner.log.messages()
        assert 'Created resource handle for string-reverse.core.wasm' in messages
        assert 'Created resource handle for string-reverse.core2.wasm' in messages
        assert 'Calling reverse("hello world")' in messages
        assert 'Component exports: add' not in messages
        runner.close()

    def test_call_by_safe_name_and_path(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, REVERSE_COMPONENT, 'string-reverse.wasm')
            by_path = await runner.call('example:string-reverse/reverse@0.1.0.reverse', '"abc"')
            by_safe = await runner.call(runner.controls[0].safe_name, 'xyz')
            return by_path, by_safe

        by_path, by_safe = asyncio.run(scenario())

        assert by_path.value == 'cba'
        assert by_safe.value == 'zyx'
        runner.close()


class TestModuleShapes:
    """Export roots and entry points of hand-written modules"""

    def test_default_export(self):
        runner = make_runner(SourceTranspiler("default = {'add': lambda a, b: a + b}\n"))

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('add', '[1, 2]')

        assert asyncio.run(scenario()).value == 3
        messages = runner.log.messages()
        assert 'Module loaded (checking for default export)' in messages
        assert 'Using default export with keys: add' in messages
        assert runner.controls[0].path == 'add'
        runner.close()

    def test_no_callable_exports(self):
        from component_runner.runtime.pipeline import Stage

        runner = make_runner(SourceTranspiler("VERSION = '1.0'\n"))
        state = asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        assert state.stage is Stage.RUNNABLE
        assert runner.controls == []
        assert runner.log.messages()[-1] == 'No callable functions found in the component exports'
        runner.close()

    def test_run_entry_point(self):
        runner = make_runner(SourceTranspiler("def run():\n    return 'ran'\n"))

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.run()

        result = asyncio.run(scenario())

        assert result.ok
        assert result.value == 'ran'
        messages = runner.log.messages()
        assert 'Found "run" export, executing...' in messages
        assert messages[-1] == 'Run completed: "ran"'
        runner.close()

    def test_run_entry_point_error(self):
        runner = make_runner(SourceTranspiler("async def main():\n    raise RuntimeError('trap')\n"))

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.run()

        result = asyncio.run(scenario())

        assert not result.ok
        assert runner.log.messages()[-1] == 'Execution error: trap'
        runner.close()

    def test_run_before_transpile_refused(self):
        runner = make_runner(FakeTranspiler())
        asyncio.run(runner.load_bytes(ADD_COMPONENT, 'add.wasm'))

        assert asyncio.run(runner.run()) is None
        assert runner.log.messages()[-1] == 'Transpile a component before running it'

    def test_relinked_module_reads_handles_not_files(self):
        source = (
            "from pathlib import Path\n"
            "DATA = Path('./core.wasm').read_bytes()\n"
            "def size():\n"
            "    return len(DATA)\n"
        )
        runner = make_runner(SourceTranspiler(source, extra_files=[('core.wasm', CORE_MODULE)]))

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('size')

        assert asyncio.run(scenario()).value == len(CORE_MODULE)
        runner.close()

    def test_configured_entry_point(self):
        from component_runner.runtime.pipeline import Stage

        transpiler = SourceTranspiler("def ping():\n    return 'pong'\n", entry_point='bindings.py')
        runner = make_runner(transpiler, COMPONENT_RUNNER_ENTRY_POINT='bindings.py')

        state = asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        assert state.stage is Stage.RUNNABLE
        assert [c.path for c in runner.controls] == ['ping']
        runner.close()


class TestFailures:
    """Every failure returns the pipeline to a stable, retryable state"""

    def test_missing_entry_point_then_retry(self):
        from component_runner.runtime.pipeline import Stage, Status

        runner = make_runner(MissingEntryTranspiler())

        async def scenario():
            first = await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            assert first.stage is Stage.LOADED
            assert first.status is Status.TRANSPILE_FAILED
            assert runner.transpile_enabled

            runner.transpiler = FakeTranspiler()
            return await runner.transpile()

        state = asyncio.run(scenario())

        assert 'Transpilation failed: No loadable module was generated from the component (component.py missing)' \
            in runner.log.messages()
        assert state.stage is Stage.RUNNABLE
        runner.close()

    def test_invalid_binary_hint(self):
        runner = make_runner(FakeTranspiler())
        asyncio.run(load_and_transpile(runner, b'not wasm', 'bad.wasm'))

        errors = [e['message'] for e in runner.log.get_entries(level='error')]

        assert errors[0].startswith('Transpilation failed: WebAssembly.compile()')
        assert errors[1] == 'Make sure the file is a valid WebAssembly component'

    def test_memory_hint(self):
        runner = make_runner(FailingTranspiler('out of memory'))
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        errors = [e['message'] for e in runner.log.get_entries(level='error')]

        assert errors == [
            'Transpilation failed: out of memory',
            'The component might be too large for available memory',
        ]

    def test_no_transpiler_configured(self):
        runner = make_runner()
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        assert runner.log.get_entries(level='error')[0]['message'] == (
            'Transpilation failed: No transpiler configured (set COMPONENT_RUNNER_TRANSPILER)'
        )

    def test_module_load_error(self):
        from component_runner.runtime.pipeline import Stage

        runner = make_runner(SourceTranspiler(
            "raise RuntimeError('boom')\n",
            extra_files=[('core.wasm', CORE_MODULE)],
        ))

        state = asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        entry = runner.log.get_entries(level='error')[0]
        assert state.stage is Stage.LOADED
        assert entry['message'] == 'Transpilation failed: Failed to load component.py: RuntimeError: boom'
        assert entry['category'] == 'load'
        assert state.handles == ()

    def test_transpile_failure_clears_previous_exports(self):
        from component_runner.runtime.pipeline import Stage

        runner = make_runner(FakeTranspiler())

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            runner.transpiler = FailingTranspiler('bad')
            return await runner.transpile()

        state = asyncio.run(scenario())

        assert state.stage is Stage.LOADED
        assert state.module is None
        assert runner.controls == []

    def test_missing_file(self, tmp_path):
        from component_runner.runtime.pipeline import Stage, Status

        runner = make_runner(FakeTranspiler())
        state = asyncio.run(runner.load_file(tmp_path / 'missing.wasm'))

        assert state.stage is Stage.EMPTY
        assert state.status is Status.LOAD_FAILED
        assert runner.log.messages()[-1].startswith('Error loading component: Component file not found')

    def test_dropped_non_component_ignored(self, tmp_path):
        from component_runner.runtime.pipeline import Stage

        path = tmp_path / 'notes.txt'
        path.write_text('hello')
        runner = make_runner(FakeTranspiler())

        state = asyncio.run(runner.load_dropped(path))

        assert state.stage is Stage.EMPTY
        assert runner.log.messages()[-1] == 'Ignoring dropped file notes.txt: expected a .wasm component'

    def test_dropped_component_loaded(self, tmp_path):
        from component_runner.runtime.pipeline import Stage

        path = tmp_path / 'add.wasm'
        path.write_bytes(ADD_COMPONENT)
        runner = make_runner(FakeTranspiler())

        state = asyncio.run(runner.load_dropped(path))

        assert state.stage is Stage.LOADED
        assert state.component.filename == 'add.wasm'

    def test_unencodable_results_are_reported(self):
        source = (
            "def pairs():\n"
            "    return {(1, 2): 'x'}\n"
            "def cyclic():\n"
            "    value = [1]\n"
            "    value.append(value)\n"
            "    return value\n"
        )
        runner = make_runner(SourceTranspiler(source))

        async def scenario():
            await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            return await runner.call('pairs'), await runner.call('cyclic')

        pairs, cyclic = asyncio.run(scenario())

        assert pairs.ok and cyclic.ok
        assert runner.find_control('pairs').result_line == "Result: {(1, 2): 'x'}"
        assert runner.find_control('cyclic').result_line == 'Result: [1, [...]]'
        assert runner.log.messages()[-1] == 'Result: [1, [...]]'
        runner.close()

    def test_export_discovery_failure_releases_module_and_handles(self, monkeypatch):
        from component_runner.core.module_loader import MODULE_PREFIX
        from component_runner.runtime import pipeline

        allocated = []
        real_allocate = pipeline.allocate_handles

        def tracking_allocate(resources):
            handles = real_allocate(resources)
            allocated.extend(handles)
            return handles

        def failing_walk(root, log=None):
            raise RuntimeError('walk failed')

        monkeypatch.setattr(pipeline, 'allocate_handles', tracking_allocate)
        monkeypatch.setattr(pipeline, 'find_callable_exports', failing_walk)

        before = {name for name in sys.modules if name.startswith(MODULE_PREFIX)}
        runner = make_runner(FakeTranspiler())
        state = asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        assert state.stage is pipeline.Stage.LOADED
        assert runner.log.get_entries(level='error')[0]['message'] == (
            'Transpilation failed: Could not inspect module exports: walk failed'
        )
        assert allocated and all(h.released for h in allocated)
        assert {name for name in sys.modules if name.startswith(MODULE_PREFIX)} == before

    def test_resource_failure_has_no_binary_hint(self, monkeypatch):
        from component_runner.core.errors import ResourceError
        from component_runner.runtime import pipeline

        def failing_allocate(resources):
            raise ResourceError('Could not allocate resource for core.wasm: no space')

        monkeypatch.setattr(pipeline, 'allocate_handles', failing_allocate)

        runner = make_runner(FakeTranspiler())
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        errors = runner.log.get_entries(level='error')
        assert [e['message'] for e in errors] == [
            'Transpilation failed: Could not allocate resource for core.wasm: no space',
        ]
        assert errors[0]['category'] == 'resource'


class TestExamples:
    """Examples fetched over HTTP (requests mocked)"""

    def test_load_example_and_call(self):
        response = MagicMock(ok=True, status_code=200, content=ADD_COMPONENT)
        runner = make_runner(FakeTranspiler(), COMPONENT_RUNNER_EXAMPLES_URL='http://examples.local/')

        async def scenario():
            await runner.load_example('add')
            await runner.transpile()
            return await runner.call('add', '[5, 3]')

        with patch('component_runner.core.ingest.requests.get', return_value=response) as get:
            result = asyncio.run(scenario())

        get.assert_called_once_with('http://examples.local/add.wasm', timeout=30.0)
        assert result.value == 8
        runner.close()

    def test_example_fetch_failure_hint(self):
        from component_runner.runtime.pipeline import Status

        response = MagicMock(ok=False, status_code=404, content=b'')
        runner = make_runner(FakeTranspiler())

        with patch('component_runner.core.ingest.requests.get', return_value=response):
            state = asyncio.run(runner.load_example('string-reverse'))

        assert state.status is Status.LOAD_FAILED
        assert runner.log.messages()[-2:] == [
            'Error loading component: Failed to load example component (404)',
            'Make sure the example file exists at http://localhost:5173/',
        ]


class TestLifecycle:
    """Reloads, clearing and concurrent requests"""

    def test_reload_releases_handles_and_module(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            state = await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            await runner.load_bytes(REVERSE_COMPONENT, 'string-reverse.wasm')
            return state

        old = asyncio.run(scenario())

        assert old.handles
        assert all(h.released for h in old.handles)
        assert old.module.__name__ not in sys.modules
        assert runner.controls == []
        assert not runner.run_enabled

    def test_retranspile_replaces_module(self):
        runner = make_runner(FakeTranspiler())

        async def scenario():
            first = await load_and_transpile(runner, ADD_COMPONENT, 'add.wasm')
            second = await runner.transpile()
            return first, second

        first, second = asyncio.run(scenario())

        assert first.module is not second.module
        assert all(h.released for h in first.handles)
        assert not any(h.released for h in second.handles)
        runner.close()
        assert all(h.released for h in second.handles)

    def test_clear_log(self):
        runner = make_runner(FakeTranspiler())
        asyncio.run(load_and_transpile(runner, ADD_COMPONENT, 'add.wasm'))

        runner.clear_log()

        assert runner.log.messages() == ['Output cleared']
        runner.close()

    def test_second_transpile_refused_while_in_flight(self):
        from component_runner.runtime.pipeline import Stage

        async def scenario():
            transpiler = GatedTranspiler()
            runner = make_runner(transpiler)
            await runner.load_bytes(ADD_COMPONENT, 'add.wasm')

            first = asyncio.create_task(runner.transpile())
            await transpiler.started.wait()

            assert not runner.transpile_enabled
            refused = await runner.transpile()
            assert refused.stage is Stage.TRANSPILING

            transpiler.release.set()
            return runner, await first

        runner, state = asyncio.run(scenario())

        assert state.stage is Stage.RUNNABLE
        assert 'Transpilation already in progress' in runner.log.messages()
        runner.close()

    def test_load_during_transpile_discards_stale_result(self):
        from component_runner.runtime.pipeline import Stage

        async def scenario():
            transpiler = GatedTranspiler()
            runner = make_runner(transpiler)
            await runner.load_bytes(ADD_COMPONENT, 'add.wasm')

            first = asyncio.create_task(runner.transpile())
            await transpiler.started.wait()

            await runner.load_bytes(REVERSE_COMPONENT, 'string-reverse.wasm')
            transpiler.release.set()
            return runner, await first

        runner, state = asyncio.run(scenario())

        assert state.stage is Stage.LOADED
        assert state.component.filename == 'string-reverse.wasm'
        assert runner.controls == []
        assert 'Discarding transpile result for add.wasm: component was replaced' in runner.log.messages()
        runner.close()

    def test_failure_after_replacement_is_discarded(self):
        from component_runner.runtime.pipeline import Stage, Status

        async def scenario():
            transpiler = GatedTranspiler()
            runner = make_runner(transpiler)
            await runner.load_bytes(b'not wasm', 'bad.wasm')

            first = asyncio.create_task(runner.transpile())
            await transpiler.started.wait()

            await runner.load_bytes(ADD_COMPONENT, 'add.wasm')
            transpiler.release.set()
            return runner, await first

        runner, state = asyncio.run(scenario())

        assert state.stage is Stage.LOADED
        assert state.status is Status.LOADED
        assert state.component.filename == 'add.wasm'
        assert runner.log.get_entries(level='error') == []
        assert runner.log.messages()[-1] == 'Discarding transpile failure for bad.wasm: component was replaced'
        runner.close()
