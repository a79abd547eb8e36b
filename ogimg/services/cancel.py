"""
Cancellation tokens shared by the fetcher and its callers.

A token is cancelled either explicitly or once its deadline passes. Child
tokens observe their parent, so a caller timeout stops every fetch in a
batch while a batch failure only stops its own siblings.
"""
import threading
import time
from typing import Optional

from ogimg.errors import FetchError


class CancelToken:
    def __init__(self, deadline: Optional[float] = None, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._deadline = deadline
        self._parent = parent

    @classmethod
    def with_timeout(cls, seconds: float, parent: Optional["CancelToken"] = None) -> "CancelToken":
        return cls(deadline=time.monotonic() + seconds, parent=parent)

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)

    def cancel(self) -> None:
        self._event.set()

    @property
    def deadline(self) -> Optional[float]:
        """Earliest deadline along the parent chain (monotonic clock)."""
        deadlines = []
        token: Optional[CancelToken] = self
        while token is not None:
            if token._deadline is not None:
                deadlines.append(token._deadline)
            token = token._parent
        return min(deadlines) if deadlines else None

    @property
    def cancelled(self) -> bool:
        token: Optional[CancelToken] = self
        while token is not None:
            if token._event.is_set():
                return True
            token = token._parent
        deadline = self.deadline
        return deadline is not None and time.monotonic() >= deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None when there is none."""
        deadline = self.deadline
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    def raise_if_cancelled(self, resource: Optional[str] = None) -> None:
        if self.cancelled:
            raise FetchError("cancelled or deadline exceeded", resource=resource)
