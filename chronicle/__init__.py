"""American Chronicle client package.

This package searches the Chronicling America historical newspaper archive
and downloads newspaper pages, tracking every in-flight request so that
duplicates are rejected and requests can be cancelled.

Key modules:
- core: Config, transport, request registry, result channel, naming
- model: SearchParameters, PageQuery, SearchResults and PageHit
- query: Canonical query string encoding for the search endpoint
- errors: InvalidParameterError, DuplicateRequestError, TransportError
- search_service: SearchService (page searches)
- page_service: PageDownloadService (page file downloads)

Usage:
    from chronicle import SearchParameters, SearchService
    service = SearchService()
    results = service.search(SearchParameters("tsunami wave", ["Colorado"]))
"""

from .errors import (
    ChronicleError,
    DuplicateRequestError,
    HTTPStatusError,
    InvalidParameterError,
    RequestCancelledError,
    ResponseDecodeError,
    TransportError,
)
from .model import (
    EARLIEST_POSSIBLE_DATE,
    LATEST_POSSIBLE_DATE,
    PageHit,
    PageQuery,
    SearchParameters,
    SearchResults,
)
from .query import build_search_request, encode_query
from .page_service import PageDownloadService
from .search_service import SearchService

__all__ = [
    "ChronicleError",
    "DuplicateRequestError",
    "HTTPStatusError",
    "InvalidParameterError",
    "RequestCancelledError",
    "ResponseDecodeError",
    "TransportError",
    "EARLIEST_POSSIBLE_DATE",
    "LATEST_POSSIBLE_DATE",
    "PageHit",
    "PageQuery",
    "SearchParameters",
    "SearchResults",
    "build_search_request",
    "encode_query",
    "PageDownloadService",
    "SearchService",
]
