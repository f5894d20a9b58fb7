"""Network transport for archive searches and page downloads.

Provides the Transport interface consumed by the services, the cancellable
RequestHandle, and HttpTransport: a requests session with transport-level
retries, per-host pacing, and worker threads that deliver exactly one
terminal callback per issued request.
"""
from __future__ import annotations

import logging
import os
import random
import threading
import time
import uuid
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import HTTPStatusError, RequestCancelledError, ResponseDecodeError, TransportError
from .config import get_download_config, get_network_config, overwrite_existing

logger = logging.getLogger(__name__)

SearchCompletion = Callable[[Any, Optional[BaseException]], None]
DownloadCompletion = Callable[[Optional[str], Optional[BaseException]], None]
Progress = Callable[[int, Optional[int]], None]

USER_AGENT = "AmericanChronicle/1.0 (+https://chroniclingamerica.loc.gov)"


class RequestHandle:
    """Cancellable handle for one in-flight request.

    Cancellation is cooperative: the transport checks the flag before issuing,
    between downloaded chunks, and once the response arrives. A streamed
    response bound to the handle is closed on cancel.
    """

    def __init__(self, url: str):
        self.url = url
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._response: Optional[requests.Response] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()
        with self._lock:
            response = self._response
        if response is not None:
            try:
                response.close()
            except (requests.RequestException, OSError) as e:
                logger.debug("Error closing cancelled response for %s: %s", self.url, e)

    def bind_response(self, response: Optional[requests.Response]) -> None:
        with self._lock:
            self._response = response


class Transport(ABC):
    """Request-issuing collaborator used by the services.

    Every issued request delivers exactly one terminal callback.
    """

    @abstractmethod
    def search(self, request: Any, completion: SearchCompletion) -> RequestHandle:
        """Issue a search request; completion receives (decoded JSON payload, error)."""

    @abstractmethod
    def download(
        self,
        url: str,
        destination: str,
        progress: Optional[Progress],
        completion: DownloadCompletion,
    ) -> RequestHandle:
        """Download url to destination; completion receives (file path, error)."""


class RateLimiter:
    """Simple per-host rate limiter with jitter, using monotonic time."""

    def __init__(self, min_interval_s: float = 0.0, jitter_s: float = 0.0):
        self.min_interval_s = max(0.0, float(min_interval_s or 0.0))
        self.jitter_s = max(0.0, float(jitter_s or 0.0))
        self._last_ts = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Wait until the minimum interval has passed since the last request."""
        if self.min_interval_s <= 0 and self.jitter_s <= 0:
            return

        with self._lock:
            now = time.monotonic()
            # Next ready time is last_ts + base + random jitter
            jitter = random.uniform(0.0, self.jitter_s) if self.jitter_s > 0 else 0.0
            next_ready = self._last_ts + self.min_interval_s + jitter
            sleep_s = next_ready - now

            if sleep_s > 0:
                time.sleep(sleep_s)
                now = time.monotonic()

            self._last_ts = now


def build_session(max_attempts: int = 3, backoff_factor: float = 0.8) -> requests.Session:
    """Build a configured requests session with retries and default headers.

    Args:
        max_attempts: Total attempts per request (1 disables retries)
        backoff_factor: urllib3 exponential backoff factor

    Returns:
        Configured Session instance
    """
    session = requests.Session()

    # No retries on connection errors (DNS/SSL) so failures surface quickly.
    retry = Retry(
        total=max(0, int(max_attempts) - 1),
        connect=0,
        read=2,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET", "HEAD"]),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({
        "User-Agent": USER_AGENT,
        "Accept": "*/*",
        "Accept-Language": "en-US,en;q=0.9",
    })

    return session


class HttpTransport(Transport):
    """Transport backed by a requests session and a worker thread pool."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        network_config: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the transport.

        Args:
            session: Session to use (built from network config if None)
            executor: Executor running requests (created with max_workers if None)
            network_config: Network policy (read from config if None)
        """
        self._net = dict(network_config) if network_config is not None else get_network_config()
        self._session = session or build_session(
            int(self._net.get("max_attempts", 3) or 3),
            float(self._net.get("backoff_factor", 0.8) or 0.0),
        )
        self._executor = executor or ThreadPoolExecutor(
            max_workers=int(self._net.get("max_workers", 4) or 4),
            thread_name_prefix="chronicle_http",
        )
        self._owns_executor = executor is None
        self._timeout = float(self._net.get("timeout_s", 30.0) or 30.0)
        self._verify = bool(self._net.get("verify_ssl", True))
        self._headers = {str(k): str(v) for k, v in (self._net.get("headers") or {}).items() if v is not None}
        self._chunk_size = int(get_download_config().get("chunk_size", 8192) or 8192)
        self._rate_limiters: Dict[str, RateLimiter] = {}
        self._rl_lock = threading.Lock()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        # Only wait for workers on a clean exit
        self.close(wait=exc_type is None)

    def close(self, wait: bool = True) -> None:
        """Shut down the worker pool (when owned) and close the session."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
        self._session.close()

    def search(self, request: Any, completion: SearchCompletion) -> RequestHandle:
        handle = RequestHandle(request.url)
        self._executor.submit(self._run_search, handle, request.url, completion)
        return handle

    def download(
        self,
        url: str,
        destination: str,
        progress: Optional[Progress],
        completion: DownloadCompletion,
    ) -> RequestHandle:
        handle = RequestHandle(url)
        self._executor.submit(self._run_download, handle, url, destination, progress, completion)
        return handle

    def _rate_limiter(self, url: str) -> RateLimiter:
        host = urlparse(url).netloc.lower()
        delay_s = float(self._net.get("delay_ms", 0) or 0) / 1000.0
        jitter_s = float(self._net.get("jitter_ms", 0) or 0) / 1000.0
        with self._rl_lock:
            rl = self._rate_limiters.get(host)
            if rl is None:
                rl = RateLimiter(delay_s, jitter_s)
                self._rate_limiters[host] = rl
            return rl

    def _request_headers(self, accept: str) -> Dict[str, str]:
        headers = {"Accept": accept}
        headers.update(self._headers)
        return headers

    def _run_search(self, handle: RequestHandle, url: str, completion: SearchCompletion) -> None:
        payload: Any = None
        error: Optional[BaseException] = None
        try:
            if handle.cancelled:
                raise RequestCancelledError("Search cancelled", url=url)
            self._rate_limiter(url).wait()
            logger.info("Searching archive: %s", url)
            resp = self._session.get(
                url,
                headers=self._request_headers("application/json"),
                timeout=self._timeout,
                verify=self._verify,
            )
            if handle.cancelled:
                raise RequestCancelledError("Search cancelled", url=url)
            if not resp.ok:
                raise HTTPStatusError(resp.status_code, url=url)
            try:
                payload = resp.json()
            except ValueError as e:
                raise ResponseDecodeError(f"Invalid JSON from {url}: {e}", url=url) from e
        except TransportError as e:
            error = e
        except requests.RequestException as e:
            error = self._wrap_request_error(handle, url, e)
        except Exception as e:
            logger.exception("Unexpected error searching %s", url)
            error = TransportError(f"Unexpected error: {e}", url=url)

        if error is not None:
            payload = None
            logger.warning("Search failed for %s: %s", url, error)
        self._finish(completion, payload, error, url)

    def _run_download(
        self,
        handle: RequestHandle,
        url: str,
        destination: str,
        progress: Optional[Progress],
        completion: DownloadCompletion,
    ) -> None:
        path: Optional[str] = None
        error: Optional[BaseException] = None
        # Per-request part file; concurrent downloads to one destination never share it
        part_path = f"{destination}.{uuid.uuid4().hex[:8]}.part"
        try:
            if handle.cancelled:
                raise RequestCancelledError("Download cancelled", url=url)
            if not overwrite_existing() and os.path.exists(destination):
                logger.info("File already exists, skipping: %s", destination)
                path = destination
            else:
                path = self._stream_to_file(handle, url, destination, part_path, progress)
        except TransportError as e:
            error = e
        except requests.RequestException as e:
            error = self._wrap_request_error(handle, url, e)
        except OSError as e:
            error = TransportError(f"Could not write {destination}: {e}", url=url)
        except Exception as e:
            logger.exception("Unexpected error downloading %s", url)
            error = TransportError(f"Unexpected error: {e}", url=url)
        finally:
            handle.bind_response(None)

        if error is not None:
            path = None
            self._discard(part_path)
            logger.warning("Download failed for %s: %s", url, error)
        self._finish(completion, path, error, url)

    def _stream_to_file(
        self,
        handle: RequestHandle,
        url: str,
        destination: str,
        part_path: str,
        progress: Optional[Progress],
    ) -> str:
        os.makedirs(os.path.dirname(destination) or ".", exist_ok=True)
        self._rate_limiter(url).wait()
        logger.info("Downloading page %s", url)

        with self._session.get(
            url,
            stream=True,
            headers=self._request_headers("*/*"),
            timeout=self._timeout,
            verify=self._verify,
        ) as resp:
            handle.bind_response(resp)
            if handle.cancelled:
                raise RequestCancelledError("Download cancelled", url=url)
            if not resp.ok:
                raise HTTPStatusError(resp.status_code, url=url)

            cl_header = resp.headers.get("Content-Length")
            total = int(cl_header) if cl_header and str(cl_header).isdigit() else None
            received = 0
            with open(part_path, "wb") as f:
                for chunk in resp.iter_content(chunk_size=self._chunk_size):
                    if handle.cancelled:
                        raise RequestCancelledError("Download cancelled", url=url)
                    if not chunk:
                        continue
                    f.write(chunk)
                    received += len(chunk)
                    self._notify_progress(progress, received, total, url)

        if handle.cancelled:
            raise RequestCancelledError("Download cancelled", url=url)
        os.replace(part_path, destination)
        logger.info("Downloaded %s -> %s (%d bytes)", url, destination, received)
        return destination

    @staticmethod
    def _wrap_request_error(handle: RequestHandle, url: str, e: requests.RequestException) -> TransportError:
        if handle.cancelled:
            error: TransportError = RequestCancelledError("Request cancelled", url=url)
        elif isinstance(e, requests.Timeout):
            error = TransportError(f"Request timed out: {e}", url=url)
        else:
            error = TransportError(f"Request failed: {e}", url=url)
        error.__cause__ = e
        return error

    @staticmethod
    def _notify_progress(progress: Optional[Progress], received: int, total: Optional[int], url: str) -> None:
        if progress is None:
            return
        try:
            progress(received, total)
        except Exception as e:
            logger.warning("Progress callback error for %s: %s", url, e)

    @staticmethod
    def _discard(path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning("Could not remove partial file %s: %s", path, e)

    @staticmethod
    def _finish(completion: Callable[[Any, Optional[BaseException]], None], result: Any,
                error: Optional[BaseException], url: str) -> None:
        try:
            completion(result, error)
        except Exception as e:
            logger.warning("Completion callback error for %s: %s", url, e)
