"""Single-fire result delivery for service operations.

A ResultChannel pairs the optional caller completion callback with a
concurrent.futures.Future. Both receive the same outcome exactly once:
the callback is invoked first, then the future is resolved.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Completion = Callable[[Any, Optional[BaseException]], None]


class ResultChannel:
    """Delivers one (result, error) outcome to a callback and a future."""

    def __init__(self, completion: Optional[Completion] = None, label: str = "request"):
        self.future: Future = Future()
        self._completion = completion
        self._label = label
        self._lock = threading.Lock()
        self._fired = False

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired

    def succeed(self, result: Any) -> bool:
        return self.deliver(result, None)

    def fail(self, error: BaseException) -> bool:
        return self.deliver(None, error)

    def deliver(self, result: Any, error: Optional[BaseException]) -> bool:
        """Deliver the outcome.

        Returns:
            True if this call delivered it, False if the channel had already fired
        """
        with self._lock:
            if self._fired:
                logger.warning("Ignoring extra completion for %s", self._label)
                return False
            self._fired = True

        if self._completion is not None:
            try:
                self._completion(result, error)
            except Exception as e:
                logger.warning("Completion callback error for %s: %s", self._label, e)

        try:
            if error is not None:
                self.future.set_exception(error)
            else:
                self.future.set_result(result)
        except InvalidStateError:
            # The caller cancelled the future; the callback above still ran
            logger.debug("Future for %s was cancelled before delivery", self._label)
        return True
