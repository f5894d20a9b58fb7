"""Page search service for the Chronicling America archive.

SearchService validates search parameters, rejects duplicates of searches
already in flight, issues the encoded request through the transport, and
delivers typed results. The registry entry of a search is always removed
before its outcome reaches the caller.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Optional

from .core.channel import Completion, ResultChannel
from .core.config import get_archive_config
from .core.network import HttpTransport, Transport
from .core.registry import ActiveRequest, RequestKey, RequestRegistry
from .errors import ChronicleError, DuplicateRequestError, InvalidParameterError, ResponseDecodeError, TransportError
from .model import SearchParameters, SearchResults
from .query import build_search_request

logger = logging.getLogger(__name__)


def validate_search(params: Any, page: Any, context_id: Any) -> Optional[InvalidParameterError]:
    """Return the reason a search cannot be issued, or None if it is valid."""
    if not isinstance(params, SearchParameters):
        return InvalidParameterError("Search parameters are required")
    if not isinstance(params.term, str) or not params.term.strip():
        return InvalidParameterError("Search term must not be empty")
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        return InvalidParameterError(f"Page must be an integer >= 1, got {page!r}")
    if params.earliest_date > params.latest_date:
        return InvalidParameterError(
            f"Earliest date {params.earliest_date} is after latest date {params.latest_date}"
        )
    if not isinstance(context_id, str):
        return InvalidParameterError("Context ID must be a string")
    return None


class SearchService:
    """Starts, tracks and cancels archive page searches."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        base_url: Optional[str] = None,
        rows: Optional[int] = None,
    ):
        """Initialize the service.

        Args:
            transport: Request-issuing collaborator (HttpTransport if None)
            base_url: Search endpoint (configured endpoint if None)
            rows: Hits per page (configured page size if None)
        """
        self._transport = transport or HttpTransport()
        self._base_url = base_url
        self._rows = rows
        self._archive_url = str(get_archive_config()["base_url"])
        self._registry = RequestRegistry("search")

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    def start_search(
        self,
        params: SearchParameters,
        page: int,
        context_id: str,
        completion: Optional[Completion] = None,
    ) -> Future:
        """Start a search for one page of results.

        Validation and duplicate errors are delivered synchronously, before
        this method returns. Otherwise the outcome arrives once the transport
        finishes; by then the search is no longer in progress.

        Args:
            params: Search parameters
            page: 1-based result page
            context_id: Caller scope; equal queries from different contexts are not duplicates
            completion: Optional callback receiving (SearchResults | None, error | None)

        Returns:
            Future resolving to SearchResults or failing with a ChronicleError
        """
        channel = ResultChannel(completion, label=f"search page {page!r} ({context_id!r})")

        invalid = validate_search(params, page, context_id)
        if invalid is not None:
            logger.warning("Rejected search: %s", invalid)
            channel.fail(invalid)
            return channel.future

        try:
            request = build_search_request(params, page, base_url=self._base_url, rows=self._rows)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.error("Could not build search request: %s", e)
            channel.fail(ChronicleError(f"Could not build search request: {e}"))
            return channel.future

        key = RequestKey.for_search(params, page, context_id)
        try:
            entry = self._registry.register(key)
        except DuplicateRequestError as e:
            logger.warning("Search for %r page %d already in progress (%s)", params.term, page, context_id)
            channel.fail(e)
            return channel.future

        def _on_complete(payload: Any, error: Optional[BaseException]) -> None:
            results = None
            if error is None:
                try:
                    results = SearchResults.from_json(payload, self._archive_url)
                except ResponseDecodeError as e:
                    error = e
            self._registry.remove(key, entry)
            channel.deliver(results, error)

        try:
            handle = self._transport.search(request, _on_complete)
        except Exception as e:
            logger.error("Transport refused search %s: %s", request.url, e)
            self._registry.remove(key, entry)
            channel.fail(e if isinstance(e, TransportError) else TransportError(str(e), url=request.url))
            return channel.future

        self._registry.attach(entry, handle)
        channel.future.add_done_callback(lambda f: self._on_future_done(f, key, entry))
        return channel.future

    def search(
        self,
        params: SearchParameters,
        page: int = 1,
        context_id: str = "default",
        timeout: Optional[float] = None,
    ) -> SearchResults:
        """Blocking variant of start_search.

        Raises:
            ChronicleError: Whatever the search failed with
        """
        return self.start_search(params, page, context_id).result(timeout=timeout)

    def cancel_search(self, params: SearchParameters, page: int, context_id: str) -> bool:
        """Cancel the matching in-flight search. No-op if none is active.

        Returns:
            True if a search was cancelled
        """
        key = RequestKey.for_search(params, page, context_id)
        try:
            cancelled = self._registry.cancel_and_remove(key)
        except TypeError:
            # Unhashable query parts never match a registered search
            return False
        if cancelled:
            logger.info("Cancelled search for %r page %s (%s)", params.term, page, context_id)
        return cancelled

    def cancel_all(self) -> int:
        """Cancel every in-flight search."""
        return self._registry.cancel_all()

    def is_search_in_progress(self, params: SearchParameters, page: int, context_id: str) -> bool:
        try:
            return RequestKey.for_search(params, page, context_id) in self._registry
        except TypeError:
            return False

    def _on_future_done(self, future: Future, key: RequestKey, entry: ActiveRequest) -> None:
        # Cancelling the returned future cancels the request it stands for
        if future.cancelled():
            self._registry.cancel_and_remove(key, entry)
