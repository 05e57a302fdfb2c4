"""
In-memory resource handles.

A generated module refers to its binary resources by filename. Before the
module is loaded each resource is copied into an anonymous in-memory file
(memfd) and the module is relinked to that file's process-local path, so
it never reads the generated files from disk.

Handles stay open until released. The orchestrator releases a module's
handles when it discards the module.
"""

import os
from typing import Dict, Iterable, List, Mapping

from .errors import ResourceError


class ResourceHandle:
    """
    Process-local reference binding a logical filename to an in-memory buffer.

    `reference` is a path that any code in this process can open() to read
    the buffer.
    """

    def __init__(self, filename: str, data: bytes):
        if not hasattr(os, 'memfd_create'):
            raise ResourceError("In-memory resources need os.memfd_create (Linux)")

        self.filename = filename
        self.size = len(data)

        try:
            self._fd = os.memfd_create(filename.replace('/', '_'))
        except OSError as e:
            raise ResourceError(f"Could not allocate resource for {filename}: {e}")

        try:
            view = memoryview(data)
            while view:
                written = os.write(self._fd, view)
                view = view[written:]
        except OSError as e:
            os.close(self._fd)
            raise ResourceError(f"Could not allocate resource for {filename}: {e}")

        self.reference = f'/proc/self/fd/{self._fd}'
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def read(self) -> bytes:
        """Read the buffer back through its reference"""
        with open(self.reference, 'rb') as f:
            return f.read()

    def release(self) -> None:
        """Close the buffer. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        os.close(self._fd)

    def __repr__(self) -> str:
        state = 'released' if self._released else self.reference
        return f'<ResourceHandle {self.filename} {state}>'


def allocate_handles(resources: Mapping[str, bytes]) -> List[ResourceHandle]:
    """
    Create one handle per resource file.

    Identical bytes under different names still get separate handles. If
    any allocation fails the handles created so far are released.

    Raises:
        ResourceError: If a buffer can't be allocated
    """
    handles: List[ResourceHandle] = []
    try:
        for filename, data in resources.items():
            handles.append(ResourceHandle(filename, data))
    except ResourceError:
        release_handles(handles)
        raise
    return handles


def handle_map(handles: Iterable[ResourceHandle]) -> Dict[str, str]:
    """Logical filename -> handle reference, as the rewriter expects"""
    return {h.filename: h.reference for h in handles}


def release_handles(handles: Iterable[ResourceHandle]) -> None:
    for handle in handles:
        handle.release()
