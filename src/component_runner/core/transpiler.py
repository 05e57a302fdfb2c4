"""
Transpiler contract.

The transpiler is an external black box: it takes component bytes plus a
fixed set of options and returns the generated files (a loadable Python
entry point and its binary resources) and, optionally, the exports it
found. Anything callable with that shape can be plugged in, sync or async.

CommandTranspiler adapts an external command-line tool to the contract.
"""

import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from .errors import TranspileError


DEFAULT_ENTRY_POINT = 'component.py'
RESOURCE_SUFFIX = '.wasm'


@dataclass(frozen=True)
class TranspileOptions:
    """Options handed to the transpiler on every call"""

    name: str = 'component'
    no_typescript: bool = True
    valid_lifting_optimization: bool = False

    def as_flags(self) -> List[str]:
        """Command-line flags for CLI transpilers"""
        flags = ['--name', self.name]
        if self.no_typescript:
            flags.append('--no-typescript')
        if self.valid_lifting_optimization:
            flags.append('--valid-lifting-optimization')
        return flags


@dataclass(frozen=True)
class TranspileResult:
    """Generated files and declared exports of one transpile call"""

    files: Tuple[Tuple[str, bytes], ...] = ()
    exports: Tuple[Tuple[str, str], ...] = field(default=())

    def file_map(self) -> dict:
        return {name: content for name, content in self.files}

    def file_names(self) -> List[str]:
        return [name for name, _ in self.files]

    def export_names(self) -> List[str]:
        return [name for name, _ in self.exports]


Transpiler = Callable[[bytes, TranspileOptions], Any]


def _get(raw: Any, key: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(key)
    return getattr(raw, key, None)


def normalize_result(raw: Any) -> TranspileResult:
    """
    Coerce whatever a transpiler returned into a TranspileResult.

    Accepts a TranspileResult, a mapping or an object with `files` and
    `exports`. Files may be a mapping or a sequence of (name, content)
    pairs; text content is encoded as UTF-8. A missing or empty `exports`
    is fine.

    Raises:
        TranspileError: If the result has no usable `files`
    """
    if isinstance(raw, TranspileResult):
        return raw

    if raw is None:
        raise TranspileError("Transpiler returned no result")

    files = _get(raw, 'files')
    if files is None:
        raise TranspileError("Transpiler result has no generated files")

    if isinstance(files, Mapping):
        files = list(files.items())

    pairs = []
    for name, content in files:
        if isinstance(content, str):
            content = content.encode('utf-8')
        pairs.append((str(name), bytes(content)))

    exports = _get(raw, 'exports') or ()
    export_pairs = []
    for item in exports:
        if isinstance(item, str):
            export_pairs.append((item, ''))
        else:
            name, kind = item[0], item[1] if len(item) > 1 else ''
            export_pairs.append((str(name), str(kind)))

    return TranspileResult(files=tuple(pairs), exports=tuple(export_pairs))


class CommandTranspiler:
    """
    Run an external transpiler command.

    The command is a list of arguments (or a shell-style string). Each
    argument is formatted with {input}, {out_dir} and {name}; an argument
    that is exactly '{flags}' expands to the option flags. Every file the
    command writes under {out_dir} becomes a generated file.
    """

    def __init__(self, command: Sequence[str] | str, timeout: Optional[float] = 120):
        if isinstance(command, str):
            command = shlex.split(command)
        if not command:
            raise ValueError("Transpiler command is empty")
        self.command = list(command)
        self.timeout = timeout

    def build_argv(self, input_path: Path, out_dir: Path, options: TranspileOptions) -> List[str]:
        argv = []
        for part in self.command:
            if part == '{flags}':
                argv.extend(options.as_flags())
            else:
                argv.append(part.format(input=input_path, out_dir=out_dir, name=options.name))
        return argv

    def __call__(self, component: bytes, options: TranspileOptions) -> TranspileResult:
        """
        Transpile component bytes with the external command.

        Raises:
            TranspileError: If the command is missing, fails or times out
        """
        with tempfile.TemporaryDirectory(prefix='component-runner-') as tmp:
            tmp_path = Path(tmp)
            input_path = tmp_path / f'{options.name}{RESOURCE_SUFFIX}'
            input_path.write_bytes(component)
            out_dir = tmp_path / 'out'
            out_dir.mkdir()

            argv = self.build_argv(input_path, out_dir, options)

            try:
                proc = subprocess.run(
                    argv,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except FileNotFoundError:
                raise TranspileError(f"Transpiler command not found: {argv[0]}")
            except subprocess.TimeoutExpired:
                raise TranspileError(f"Transpiler timed out after {self.timeout}s")

            if proc.returncode != 0:
                detail = (proc.stderr or proc.stdout).strip()[-500:]
                raise TranspileError(
                    f"Transpiler failed (exit {proc.returncode}): {detail}"
                )

            files = []
            for path in sorted(out_dir.rglob('*')):
                if path.is_file():
                    files.append((path.relative_to(out_dir).as_posix(), path.read_bytes()))

        return TranspileResult(files=tuple(files))
