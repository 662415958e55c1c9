from __future__ import annotations

import threading
import time
from collections.abc import Callable

from .errors import CancelledError


class CancellationToken:
    """Caller-owned abort signal, optionally bounded by a deadline.

    Pass one token per call site; the client checks it before every transport
    call and while waiting between polls.
    """

    def __init__(self, *, timeout: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        return cls(timeout=seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self, *, operation: str, table_name: str | None = None) -> None:
        if self.cancelled:
            reason = "cancelled by caller" if self._event.is_set() else "deadline exceeded"
            raise CancelledError(reason, operation=operation, table_name=table_name)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if the token fired meanwhile."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(seconds)
        return self.cancelled
