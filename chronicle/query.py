"""Query string encoding for the archive page search endpoint.

Translates SearchParameters plus a page number into the canonical query
string understood by the archive:

    format=json&rows=20&proxtext=tsunami+wave&page=4&state=New+York&state=Colorado

Date bounds (dateFilterType/date1/date2) are only sent when the range differs
from the archive-wide default window. States always come last, one repeated
"state" key per name in input order.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from urllib.parse import quote_plus

from .core.config import get_rows_per_page, get_search_url
from .model import SearchParameters

QueryPairs = List[Tuple[str, Any]]

DATE_FORMAT = "%Y%m%d"


def encode_term(term: str) -> str:
    """Tokenize a term on whitespace and join the encoded tokens with '+'."""
    return "+".join(quote_plus(token) for token in term.split())


def build_query_pairs(
    params: SearchParameters,
    page: int,
    rows: Optional[int] = None,
) -> QueryPairs:
    """Build the ordered (key, value) pairs of a search request.

    Values are kept unencoded; the page stays an int.

    Args:
        params: Search parameters
        page: 1-based result page
        rows: Hits per page (defaults to the configured page size)

    Returns:
        Ordered list of query pairs
    """
    pairs: QueryPairs = [
        ("format", "json"),
        ("rows", rows if rows is not None else get_rows_per_page()),
        ("proxtext", params.term),
        ("page", page),
    ]
    if params.has_custom_date_range:
        pairs.append(("dateFilterType", "range"))
        pairs.append(("date1", params.earliest_date.strftime(DATE_FORMAT)))
        pairs.append(("date2", params.latest_date.strftime(DATE_FORMAT)))
    for state in params.states:
        pairs.append(("state", state))
    return pairs


def encode_pairs(pairs: QueryPairs) -> str:
    """Encode query pairs in order; the term is tokenized, everything else quote_plus'd."""
    parts = []
    for key, value in pairs:
        if key == "proxtext":
            encoded = encode_term(str(value))
        else:
            encoded = quote_plus(str(value))
        parts.append(f"{quote_plus(key)}={encoded}")
    return "&".join(parts)


def encode_query(params: SearchParameters, page: int, rows: Optional[int] = None) -> str:
    """Canonical query string for a search. Deterministic for equal inputs."""
    return encode_pairs(build_query_pairs(params, page, rows))


@dataclass(frozen=True)
class SearchRequest:
    """A fully built archive search request."""

    base_url: str
    pairs: Tuple[Tuple[str, Any], ...]

    @property
    def query(self) -> str:
        return encode_pairs(list(self.pairs))

    @property
    def url(self) -> str:
        return f"{self.base_url}?{self.query}"

    def param(self, name: str, default: Any = None) -> Any:
        """First value for a query key."""
        for key, value in self.pairs:
            if key == name:
                return value
        return default

    def params(self, name: str) -> List[Any]:
        """All values for a (possibly repeated) query key."""
        return [value for key, value in self.pairs if key == name]


def build_search_request(
    params: SearchParameters,
    page: int,
    base_url: Optional[str] = None,
    rows: Optional[int] = None,
) -> SearchRequest:
    """Build the search request for params/page against base_url (configured endpoint by default)."""
    return SearchRequest(
        base_url=base_url or get_search_url(),
        pairs=tuple(build_query_pairs(params, page, rows)),
    )
