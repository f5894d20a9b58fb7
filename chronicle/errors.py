"""Error types surfaced by the American Chronicle client.

Local errors (invalid parameters, duplicate requests) are raised or delivered
without touching the network. Everything the HTTP layer reports is a
TransportError and reaches the caller untranslated.
"""
from __future__ import annotations

from typing import Any, Optional


class ChronicleError(Exception):
    """Base class for all client errors."""


class InvalidParameterError(ChronicleError):
    """A request was rejected before reaching the network because of bad input."""


class DuplicateRequestError(ChronicleError):
    """An identical request is already in flight."""

    def __init__(self, message: str = "Duplicate request", key: Any = None):
        super().__init__(message)
        self.key = key


class TransportError(ChronicleError):
    """Failure reported by the network collaborator."""

    def __init__(self, message: str = "Transport error", url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RequestCancelledError(TransportError):
    """The request was cancelled before it produced a result."""


class HTTPStatusError(TransportError):
    """The archive answered with a non-success HTTP status."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        super().__init__(f"HTTP {status_code} for {url}", url=url)
        self.status_code = status_code


class ResponseDecodeError(TransportError):
    """The archive response could not be decoded into a result object."""


__all__ = [
    "ChronicleError",
    "InvalidParameterError",
    "DuplicateRequestError",
    "TransportError",
    "RequestCancelledError",
    "HTTPStatusError",
    "ResponseDecodeError",
]
