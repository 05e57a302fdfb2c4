"""
Component Ingest

Reads component bytes from the three places a component can come from:
- a file picked by the user
- a file dropped onto the runner (only .wasm names are accepted)
- one of the bundled example components, fetched over HTTP

Every source produces a RawComponent or raises IngestError.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import urljoin

import requests

from .errors import IngestError


COMPONENT_SUFFIX = '.wasm'

# Bundled examples, fetched by fixed relative path from the examples base URL
EXAMPLE_COMPONENTS: Dict[str, str] = {
    'string-reverse': 'string-reverse.wasm',
    'add': 'add.wasm',
}


@dataclass(frozen=True)
class RawComponent:
    """Component bytes plus the name they were loaded under"""

    data: bytes
    filename: str

    @property
    def size_kb(self) -> str:
        return f"{len(self.data) / 1024:.2f}"


def make_component(data: bytes, filename: str) -> RawComponent:
    """
    Wrap bytes as a RawComponent.

    Raises:
        IngestError: If there are no bytes
    """
    if not data:
        raise IngestError(f"Component {filename} is empty")
    return RawComponent(data=bytes(data), filename=filename)


def read_component_file(path: str | Path) -> RawComponent:
    """
    Read a component from a local file.

    Args:
        path: Path to the component file

    Returns:
        RawComponent named after the file

    Raises:
        IngestError: If the file can't be read or is empty
    """
    path = Path(path)

    if not path.is_file():
        raise IngestError(f"Component file not found: {path}")

    try:
        data = path.read_bytes()
    except OSError as e:
        raise IngestError(f"Could not read {path}: {e}")

    return make_component(data, path.name)


def accepts_dropped_file(path: str | Path) -> bool:
    """Dropped files are only taken when they carry the component suffix"""
    return Path(path).name.endswith(COMPONENT_SUFFIX)


def example_url(name: str, base_url: str) -> str:
    """
    Resolve the URL of a bundled example.

    Raises:
        IngestError: If the example name is unknown
    """
    if name not in EXAMPLE_COMPONENTS:
        raise IngestError(
            f"Unknown example component: {name}. "
            f"Available examples: {', '.join(EXAMPLE_COMPONENTS)}"
        )
    if not base_url.endswith('/'):
        base_url += '/'
    return urljoin(base_url, EXAMPLE_COMPONENTS[name])


def fetch_example(
    name: str,
    base_url: str,
    timeout: Optional[float] = 30,
) -> RawComponent:
    """
    Fetch a bundled example component.

    Args:
        name: Example name ('add' or 'string-reverse')
        base_url: Where the example binaries are served from
        timeout: Request timeout in seconds

    Returns:
        RawComponent named after the example file

    Raises:
        IngestError: If the request fails or returns a non-2xx status
    """
    url = example_url(name, base_url)

    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise IngestError(f"Failed to load example component: {e}")

    if not response.ok:
        raise IngestError(f"Failed to load example component ({response.status_code})")

    return make_component(response.content, EXAMPLE_COMPONENTS[name])
