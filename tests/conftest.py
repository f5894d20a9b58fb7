"""Pytest configuration and shared fixtures for American Chronicle tests."""
from __future__ import annotations

import json
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock, patch

import pytest

from chronicle.core.network import Transport


# ============================================================================
# Path and Directory Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test files."""
    dirpath = tempfile.mkdtemp(prefix="chronicle_test_")
    yield dirpath
    shutil.rmtree(dirpath, ignore_errors=True)


@pytest.fixture
def temp_output_dir(temp_dir: str) -> str:
    """Create a temporary output directory for downloaded pages."""
    output_dir = os.path.join(temp_dir, "downloaded_pages")
    os.makedirs(output_dir, exist_ok=True)
    return output_dir


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(temp_dir: str) -> Dict[str, Any]:
    """Return a sample configuration dictionary."""
    return {
        "archive": {
            "base_url": "https://chroniclingamerica.loc.gov",
            "search_path": "/search/pages/results/",
            "rows_per_page": 50,
        },
        "network": {
            "timeout_s": 10,
            "max_attempts": 2,
            "delay_ms": 0,
            "max_workers": 2,
            "headers": {"X-Client": "tests"},
        },
        "download": {
            "output_dir": os.path.join(temp_dir, "pages"),
            "chunk_size": 4,
            "overwrite_existing": False,
        },
    }


@pytest.fixture
def config_file(temp_dir: str, sample_config: Dict[str, Any]) -> str:
    """Create a temporary config file."""
    config_path = os.path.join(temp_dir, "config.json")
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(sample_config, f)
    return config_path


@pytest.fixture
def mock_config(sample_config: Dict[str, Any]):
    """Mock the config module to return sample config."""
    with patch("chronicle.core.config._CONFIG_CACHE", sample_config):
        yield sample_config


@pytest.fixture(autouse=True)
def reset_config_cache(temp_dir: str):
    """Start each test from defaults: no config file, empty cache."""
    import chronicle.core.config as config_module
    original_cache = config_module._CONFIG_CACHE
    config_module._CONFIG_CACHE = None
    with patch.dict(os.environ, {"CHRONICLE_CONFIG_PATH": os.path.join(temp_dir, "missing.json")}):
        yield
    config_module._CONFIG_CACHE = original_cache


# ============================================================================
# Search Fixtures
# ============================================================================

@pytest.fixture
def search_params():
    """Return SearchParameters covering the whole archive window."""
    from chronicle.model import SearchParameters
    return SearchParameters(term="Jibberish", states=("Alabama", "Colorado"))


@pytest.fixture
def sample_search_payload() -> Dict[str, Any]:
    """Return an archive search response with two page hits."""
    return {
        "totalItems": 42,
        "endIndex": 20,
        "startIndex": 1,
        "itemsPerPage": 20,
        "items": [
            {
                "id": "/lccn/sn84026749/1921-03-15/ed-1/seq-4/",
                "title": "The Washington times.",
                "date": "19210315",
                "sequence": 4,
                "lccn": "sn84026749",
                "state": ["District of Columbia"],
                "edition": 1,
                "url": "https://chroniclingamerica.loc.gov/lccn/sn84026749/1921-03-15/ed-1/seq-4.json",
            },
            {
                "id": "/lccn/sn85066387/1906-04-19/ed-1/seq-1/",
                "title": "The San Francisco call.",
                "date": "19060419",
                "sequence": "1",
                "lccn": "sn85066387",
                "state": ["California"],
                "url": "https://chroniclingamerica.loc.gov/lccn/sn85066387/1906-04-19/ed-1/seq-1.json",
            },
        ],
    }


# ============================================================================
# Fake Transport
# ============================================================================

class FakeHandle:
    """Cancellable handle that records cancel() calls."""

    def __init__(self, url: Optional[str] = None, on_cancel: Optional[Callable[[], None]] = None):
        self.url = url
        self.cancel_calls = 0
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self.cancel_calls > 0

    def cancel(self) -> None:
        self.cancel_calls += 1
        if self._on_cancel is not None:
            self._on_cancel()


@dataclass
class FakeCall:
    """One request issued through the FakeTransport."""

    url: str
    completion: Callable[[Any, Optional[BaseException]], None]
    handle: FakeHandle
    request: Any = None
    destination: Optional[str] = None
    progress: Optional[Callable[[int, Optional[int]], None]] = None

    def finish(self, result: Any = None, error: Optional[BaseException] = None) -> None:
        self.completion(result, error)


class FakeTransport(Transport):
    """In-memory transport: records issued requests; tests finish them by hand."""

    def __init__(self):
        self.search_calls: List[FakeCall] = []
        self.download_calls: List[FakeCall] = []

    def search(self, request, completion):
        handle = FakeHandle(request.url)
        self.search_calls.append(FakeCall(url=request.url, completion=completion, handle=handle, request=request))
        return handle

    def download(self, url, destination, progress, completion):
        handle = FakeHandle(url)
        self.download_calls.append(
            FakeCall(url=url, completion=completion, handle=handle, destination=destination, progress=progress)
        )
        return handle

    @property
    def last_search(self) -> FakeCall:
        return self.search_calls[-1]

    @property
    def last_download(self) -> FakeCall:
        return self.download_calls[-1]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def search_service(fake_transport: FakeTransport):
    from chronicle.search_service import SearchService
    return SearchService(transport=fake_transport)


@pytest.fixture
def download_service(fake_transport: FakeTransport, temp_output_dir: str):
    from chronicle.page_service import PageDownloadService
    return PageDownloadService(transport=fake_transport, output_dir=temp_output_dir)


# ============================================================================
# Mock Response Fixtures
# ============================================================================

@pytest.fixture
def mock_response():
    """Create a mock HTTP response usable directly and as a context manager."""
    def _create_mock(
        status_code: int = 200,
        json_data: Any = None,
        content: bytes = b"",
        headers: Dict[str, str] | None = None,
        chunks: List[bytes] | None = None,
    ) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.ok = 200 <= status_code < 400
        if json_data is None:
            response.json.side_effect = ValueError("No JSON object could be decoded")
        else:
            response.json.return_value = json_data
        response.content = content
        response.headers = headers or {"Content-Type": "application/json"}
        response.iter_content = MagicMock(return_value=chunks if chunks is not None else ([content] if content else []))
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        return response
    return _create_mock


class ImmediateExecutor:
    """Executor stand-in that runs submitted work on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fn(*args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        pass


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()
