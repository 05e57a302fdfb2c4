"""
Command-line driver for the component runner.

Usage:
    component-runner add.wasm --call add '[5, 3]'
    component-runner --example string-reverse --call reverse '["hello world"]'
    component-runner app.wasm --run
    component-runner add.wasm --transpiler 'my-transpiler {input} -o {out_dir} {flags}'

Loads the component, transpiles it, performs the requested calls and prints
the activity log. Exits with status 1 if any step failed.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from .config import get_config
from .core.activity_log import ActivityLog
from .core.ingest import EXAMPLE_COMPONENTS
from .core.transpiler import CommandTranspiler
from .runtime.pipeline import ComponentRunner, Stage, Status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='component-runner',
        description='Load a WebAssembly component and call its exports',
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('path', nargs='?', help='Component file (.wasm)')
    source.add_argument('--example', choices=sorted(EXAMPLE_COMPONENTS), help='Load a bundled example component')
    parser.add_argument(
        '--call', nargs=2, action='append', default=[], metavar=('NAME', 'ARGS'),
        help="Call an export, e.g. --call add '[5, 3]' (repeatable)",
    )
    parser.add_argument('--run', action='store_true', help='Invoke the run/main/start entry point')
    parser.add_argument('--transpiler', help='Transpiler command (overrides COMPONENT_RUNNER_TRANSPILER)')
    parser.add_argument('--list', action='store_true', help='List discovered exports')
    return parser


def _print_log(log: ActivityLog, start: int) -> int:
    entries = log.get_entries(offset=start)
    for entry in entries:
        print(ActivityLog.format_entry(entry))
    return start + len(entries)


async def run_cli(args: argparse.Namespace) -> int:
    config = get_config()
    transpiler = None
    if args.transpiler:
        transpiler = CommandTranspiler(args.transpiler, timeout=config.transpile_timeout)

    runner = ComponentRunner(transpiler=transpiler, config=config)
    printed = _print_log(runner.log, 0)

    try:
        if args.example:
            state = await runner.load_example(args.example)
        else:
            state = await runner.load_file(args.path)
        printed = _print_log(runner.log, printed)
        if state.status is Status.LOAD_FAILED:
            return 1

        state = await runner.transpile()
        printed = _print_log(runner.log, printed)
        if state.stage is not Stage.RUNNABLE:
            return 1

        if args.list:
            for control in runner.controls:
                print(f'{control.display_name}\t{control.path}')

        failed = False
        for name, arguments in args.call:
            result = await runner.call(name, arguments)
            printed = _print_log(runner.log, printed)
            failed = failed or not result.ok

        if args.run:
            result = await runner.run()
            printed = _print_log(runner.log, printed)
            failed = failed or (result is not None and not result.ok)

        return 1 if failed else 0
    finally:
        runner.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return asyncio.run(run_cli(args))


if __name__ == '__main__':
    sys.exit(main())
