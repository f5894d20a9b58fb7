"""Newspaper page download service.

PageDownloadService downloads page files (PDFs) by URL, one in-flight
download per URL and per destination file. Progress is forwarded from the
transport unchanged; the registration of a download is removed before its
completion runs.
"""
from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from .core.channel import Completion, ResultChannel
from .core.config import get_download_config
from .core.naming import page_destination
from .core.network import HttpTransport, Progress, Transport
from .core.registry import ActiveRequest, RequestRegistry
from .errors import DuplicateRequestError, InvalidParameterError, TransportError

logger = logging.getLogger(__name__)


def validate_page_url(url: Any) -> Optional[InvalidParameterError]:
    """Return the reason url cannot be downloaded, or None if it is valid."""
    if not isinstance(url, str) or not url.strip():
        return InvalidParameterError("Page URL must not be empty")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return InvalidParameterError(f"Page URL must be an absolute http(s) URL: {url!r}")
    return None


class PageDownloadService:
    """Starts, tracks and cancels page downloads keyed by URL."""

    def __init__(self, transport: Optional[Transport] = None, output_dir: Optional[str] = None):
        """Initialize the service.

        Args:
            transport: Request-issuing collaborator (HttpTransport if None)
            output_dir: Directory for downloaded pages (configured directory if None)
        """
        self._transport = transport or HttpTransport()
        self._output_dir = output_dir or str(get_download_config()["output_dir"])
        self._registry = RequestRegistry("download")
        # Destination path -> entry of the in-flight download writing it
        self._claims: Dict[str, ActiveRequest] = {}
        self._claims_lock = threading.Lock()

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    @property
    def output_dir(self) -> str:
        return self._output_dir

    def download_page(
        self,
        url: str,
        progress: Optional[Progress] = None,
        completion: Optional[Completion] = None,
        destination: Optional[str] = None,
    ) -> Future:
        """Start downloading the page at url.

        A second download of a URL that is still in flight is rejected with
        DuplicateRequestError, delivered synchronously like validation errors.

        Args:
            url: Page file URL
            progress: Optional callback receiving (bytes_received, total_bytes | None)
            completion: Optional callback receiving (file path | None, error | None)
            destination: Target file path (derived from url inside output_dir if None)

        Returns:
            Future resolving to the downloaded file path
        """
        channel = ResultChannel(completion, label=f"download {url!r}")

        invalid = validate_page_url(url)
        if invalid is not None:
            logger.warning("Rejected download: %s", invalid)
            channel.fail(invalid)
            return channel.future

        try:
            entry = self._registry.register(url)
        except DuplicateRequestError as e:
            logger.warning("Download of %s already in progress", url)
            channel.fail(e)
            return channel.future

        target = destination or page_destination(url, self._output_dir)
        holder = self._claim(target, entry)
        if holder is not None:
            self._registry.remove(url, entry)
            logger.warning("Destination %s is already being written for %s", target, holder)
            channel.fail(DuplicateRequestError(f"Destination {target} is in use by {holder}", key=target))
            return channel.future

        def _on_complete(path: Optional[str], error: Optional[BaseException]) -> None:
            self._release(target, entry)
            self._registry.remove(url, entry)
            channel.deliver(None if error is not None else path, error)

        try:
            handle = self._transport.download(url, target, progress, _on_complete)
        except Exception as e:
            logger.error("Transport refused download %s: %s", url, e)
            self._release(target, entry)
            self._registry.remove(url, entry)
            channel.fail(e if isinstance(e, TransportError) else TransportError(str(e), url=url))
            return channel.future

        self._registry.attach(entry, handle)
        channel.future.add_done_callback(lambda f: self._on_future_done(f, url, entry))
        return channel.future

    def cancel_download(self, url: str) -> bool:
        """Cancel the in-flight download of url. No-op if none is active.

        Returns:
            True if a download was cancelled
        """
        try:
            cancelled = self._registry.cancel_and_remove(url)
        except TypeError:
            return False
        if cancelled:
            logger.info("Cancelled download of %s", url)
        return cancelled

    def cancel_all(self) -> int:
        """Cancel every in-flight download."""
        return self._registry.cancel_all()

    def is_download_in_progress(self, url: str) -> bool:
        try:
            return url in self._registry
        except TypeError:
            return False

    def _claim(self, target: str, entry: ActiveRequest) -> Optional[str]:
        """Reserve target for entry; return the URL already writing it, if another."""
        path = os.path.abspath(target)
        with self._claims_lock:
            holder = self._claims.get(path)
            if holder is not None and holder.key != entry.key:
                return holder.key
            self._claims[path] = entry
        return None

    def _release(self, target: str, entry: ActiveRequest) -> None:
        path = os.path.abspath(target)
        with self._claims_lock:
            if self._claims.get(path) is entry:
                del self._claims[path]

    def _on_future_done(self, future: Future, url: str, entry: ActiveRequest) -> None:
        if future.cancelled():
            self._registry.cancel_and_remove(url, entry)
