"""In-flight request tracking for the American Chronicle services.

Each service owns one RequestRegistry mapping a request identity to the
cancellable transport handle of the request currently in flight for it.

Key components:
    - RequestKey: Value identity of a page search (parameters, page, context)
    - ActiveRequest: One registration, owned by the registry for its lifetime
    - RequestRegistry: Serialized register/lookup/remove/cancel operations
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, List, Optional

from ..errors import DuplicateRequestError
from ..model import PageQuery, SearchParameters

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestKey:
    """Deterministic identity of a page search.

    Two structurally equal queries produce equal (and equally hashed) keys.
    """

    parameters: SearchParameters
    page: int
    context_id: str

    @classmethod
    def from_query(cls, query: PageQuery) -> "RequestKey":
        return cls(parameters=query.parameters, page=query.page, context_id=query.context_id)

    @classmethod
    def for_search(cls, parameters: SearchParameters, page: int, context_id: str) -> "RequestKey":
        return cls.from_query(PageQuery(parameters=parameters, page=page, context_id=context_id))


@dataclass(eq=False)
class ActiveRequest:
    """A registered in-flight request.

    Attributes:
        key: Identity the request is registered under
        handle: Cancellable transport handle (attached once the request is issued)
        registered_at: Monotonic timestamp of registration
        cancelled: Set when the request was cancelled before its handle was attached
    """

    key: Any
    handle: Any = None
    registered_at: float = field(default_factory=time.monotonic)
    cancelled: bool = False


class RequestRegistry:
    """Maps request identities to in-flight requests.

    All mutations are serialized with a re-entrant lock. Handle cancellation
    always runs outside the lock, because a transport may deliver its terminal
    callback (which removes the entry) synchronously from cancel().
    """

    def __init__(self, name: str = "requests"):
        self._name = name
        self._entries: Dict[Hashable, ActiveRequest] = {}
        self._lock = threading.RLock()

    def register(self, key: Hashable, handle: Any = None) -> ActiveRequest:
        """Register a new in-flight request.

        Args:
            key: Request identity
            handle: Cancellable handle, or None to attach it later

        Returns:
            The new ActiveRequest entry

        Raises:
            DuplicateRequestError: If the key is already registered
        """
        with self._lock:
            if key in self._entries:
                raise DuplicateRequestError(f"Request already in progress: {key!r}", key=key)
            entry = ActiveRequest(key=key, handle=handle)
            self._entries[key] = entry
        logger.debug("Registered %s request %r", self._name, key)
        return entry

    def attach(self, entry: ActiveRequest, handle: Any) -> None:
        """Bind the transport handle to an entry registered before issuance.

        A handle for an entry that was cancelled in the meantime is cancelled
        right away; a handle for an entry that already completed is dropped.
        """
        cancel_now = False
        with self._lock:
            if entry.cancelled:
                cancel_now = True
            elif self._entries.get(entry.key) is entry:
                entry.handle = handle
        if cancel_now and handle is not None:
            logger.debug("Cancelling %s request %r cancelled before issue", self._name, entry.key)
            handle.cancel()

    def lookup(self, key: Hashable) -> Any:
        """Return the handle registered under key, or None."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.handle if entry is not None else None

    def remove(self, key: Hashable, entry: Optional[ActiveRequest] = None) -> bool:
        """Remove a registration. Removing an absent key is a no-op.

        Args:
            key: Request identity
            entry: When given, only remove the key if it still maps to this entry

        Returns:
            True if something was removed
        """
        with self._lock:
            current = self._entries.get(key)
            if current is None or (entry is not None and current is not entry):
                return False
            del self._entries[key]
        logger.debug("Removed %s request %r", self._name, key)
        return True

    def cancel_and_remove(self, key: Hashable, entry: Optional[ActiveRequest] = None) -> bool:
        """Cancel the request registered under key and remove it.

        Args:
            key: Request identity
            entry: When given, only cancel if the key still maps to this entry

        Returns:
            True if a request was cancelled, False if the key was not registered
        """
        with self._lock:
            current = self._entries.get(key)
            if current is None or (entry is not None and current is not entry):
                return False
            del self._entries[key]
            current.cancelled = True
            handle = current.handle
        logger.debug("Cancelling %s request %r", self._name, key)
        if handle is not None:
            handle.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every registered request.

        Returns:
            Number of requests cancelled
        """
        with self._lock:
            keys = list(self._entries.keys())
        return sum(1 for key in keys if self.cancel_and_remove(key))

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._entries.keys())

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
