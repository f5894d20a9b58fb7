"""Data models for the American Chronicle client.

Provides the search parameter value objects used for request identity and the
SearchResults / PageHit dataclasses decoded from archive responses.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from .errors import ResponseDecodeError

ARCHIVE_BASE_URL = "https://chroniclingamerica.loc.gov"

# Date window covered by the archive's digitized pages
EARLIEST_POSSIBLE_DATE = date(1836, 1, 1)
LATEST_POSSIBLE_DATE = date(1922, 12, 31)


def clamp_date(value: Optional[date], default: date) -> date:
    """Return value clamped into the archive window, or default when value is None."""
    if value is None:
        return default
    if isinstance(value, datetime):
        value = value.date()
    return max(EARLIEST_POSSIBLE_DATE, min(value, LATEST_POSSIBLE_DATE))


@dataclass(frozen=True)
class SearchParameters:
    """Structured search query.

    Attributes:
        term: Free-text search term
        states: State names to restrict the search to, in the order given
        earliest_date: Lower bound of the issue date range
        latest_date: Upper bound of the issue date range
    """

    term: str
    states: Tuple[str, ...] = ()
    earliest_date: Optional[date] = None
    latest_date: Optional[date] = None

    def __post_init__(self) -> None:
        states = self.states or ()
        if isinstance(states, str):
            states = (states,)
        object.__setattr__(self, "states", tuple(states))
        object.__setattr__(self, "earliest_date", clamp_date(self.earliest_date, EARLIEST_POSSIBLE_DATE))
        object.__setattr__(self, "latest_date", clamp_date(self.latest_date, LATEST_POSSIBLE_DATE))

    @property
    def has_custom_date_range(self) -> bool:
        return (
            self.earliest_date != EARLIEST_POSSIBLE_DATE
            or self.latest_date != LATEST_POSSIBLE_DATE
        )


@dataclass(frozen=True)
class PageQuery:
    """A page of results for a set of parameters, scoped to a caller context."""

    parameters: SearchParameters
    page: int
    context_id: str


@dataclass
class PageHit:
    """A single newspaper page returned by the archive search.

    Attributes:
        id: Archive path of the page (e.g. "/lccn/sn84026749/1921-03-15/ed-1/seq-4/")
        title: Newspaper title
        date: Issue date as returned by the archive (YYYYMMDD)
        sequence: Page sequence number within the issue
        lccn: Library of Congress Control Number of the newspaper
        states: States the newspaper was published in
        edition: Edition number, if reported
        url: JSON url of the page record
        base_url: Archive host used to build the page file URLs
        raw: Original item payload
    """

    id: str
    title: str = ""
    date: Optional[str] = None
    sequence: Optional[int] = None
    lccn: Optional[str] = None
    states: List[str] = field(default_factory=list)
    edition: Optional[int] = None
    url: Optional[str] = None
    base_url: str = field(default=ARCHIVE_BASE_URL, compare=False)
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, data: Dict[str, Any], base_url: str = ARCHIVE_BASE_URL) -> "PageHit":
        states = data.get("state") or []
        if isinstance(states, str):
            states = [states]
        sequence = data.get("sequence")
        try:
            sequence = int(sequence) if sequence is not None else None
        except (TypeError, ValueError):
            sequence = None
        return cls(
            id=str(data.get("id") or ""),
            title=data.get("title") or "",
            date=data.get("date"),
            sequence=sequence,
            lccn=data.get("lccn"),
            states=[str(s) for s in states],
            edition=data.get("edition"),
            url=data.get("url"),
            base_url=base_url,
            raw=data,
        )

    @property
    def issue_date(self) -> Optional[date]:
        """Parsed issue date, or None when the archive date is missing or malformed."""
        if not self.date:
            return None
        try:
            return datetime.strptime(str(self.date), "%Y%m%d").date()
        except ValueError:
            return None

    def _page_path(self) -> Optional[str]:
        path = (self.id or "").strip().strip("/")
        return f"/{path}" if path else None

    @property
    def pdf_url(self) -> Optional[str]:
        """Page PDF URL, or None when the hit carries no archive path."""
        path = self._page_path()
        return f"{self.base_url.rstrip('/')}{path}.pdf" if path else None

    @property
    def ocr_url(self) -> Optional[str]:
        path = self._page_path()
        return f"{self.base_url.rstrip('/')}{path}/ocr.txt" if path else None


@dataclass
class SearchResults:
    """Decoded archive search response: a list of page hits plus pagination."""

    items: List[PageHit] = field(default_factory=list)
    total_items: int = 0
    start_index: int = 0
    end_index: int = 0
    items_per_page: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, payload: Any, base_url: str = ARCHIVE_BASE_URL) -> "SearchResults":
        """Decode an archive search payload.

        Args:
            payload: JSON object returned by the search endpoint
            base_url: Archive host used for page file URLs

        Returns:
            SearchResults instance

        Raises:
            ResponseDecodeError: If the payload is not a JSON object or has a malformed item list
        """
        if not isinstance(payload, dict):
            raise ResponseDecodeError(f"Expected a JSON object, got {type(payload).__name__}")

        items = payload.get("items") or []
        if not isinstance(items, list):
            raise ResponseDecodeError("Search response 'items' is not a list")

        hits = [PageHit.from_json(item, base_url) for item in items if isinstance(item, dict)]
        return cls(
            items=hits,
            total_items=_as_int(payload.get("totalItems"), len(hits)),
            start_index=_as_int(payload.get("startIndex"), 0),
            end_index=_as_int(payload.get("endIndex"), 0),
            items_per_page=_as_int(payload.get("itemsPerPage"), len(hits)),
            raw=payload,
        )

    @property
    def has_more(self) -> bool:
        return self.end_index < self.total_items

    @property
    def next_page(self) -> Optional[int]:
        """Page number following this one, or None on the last page."""
        if not self.has_more or self.items_per_page <= 0:
            return None
        return self.end_index // self.items_per_page + 1

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        d = asdict(self)
        if not include_raw:
            d.pop("raw", None)
            for item in d.get("items", []):
                item.pop("raw", None)
        return d

    def to_records(self) -> List[Dict[str, Any]]:
        """Flatten hits into rows suitable for tabular export."""
        return [
            {
                "id": hit.id,
                "title": hit.title,
                "date": hit.date,
                "sequence": hit.sequence,
                "lccn": hit.lccn,
                "states": "; ".join(hit.states),
                "pdf_url": hit.pdf_url,
            }
            for hit in self.items
        ]


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
