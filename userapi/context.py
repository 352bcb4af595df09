"""Cancellation and deadline tracking for individual requests."""

from __future__ import annotations

import threading
import time
from typing import Optional


class OperationCancelled(Exception):
    """Raised when work is abandoned because its request context was cancelled."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message)


class DeadlineExceeded(OperationCancelled):
    """Raised when a request context passes its deadline."""

    def __init__(self, message: str = "Deadline exceeded") -> None:
        super().__init__(message)


class RequestContext:
    """Carry a cancellation flag and an optional deadline through a request.

    Contexts form a chain: a child created with :meth:`with_timeout` is done as soon
    as its parent is done, and its deadline never extends past the parent's.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        parent: Optional["RequestContext"] = None,
    ) -> None:
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must not be negative")
        self._parent = parent
        self._event = threading.Event()

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

    @classmethod
    def background(cls) -> "RequestContext":
        """Return a context that is never cancelled and has no deadline."""

        return cls()

    def with_timeout(self, timeout: float) -> "RequestContext":
        return RequestContext(timeout=timeout, parent=self)

    @property
    def deadline(self) -> Optional[float]:
        """Deadline on the :func:`time.monotonic` clock, if any."""

        return self._deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self) -> None:
        self._event.set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def done(self) -> bool:
        return self.cancelled or self.expired()

    def error(self) -> Optional[OperationCancelled]:
        """Return the exception describing why the context is done, or ``None``."""

        if self.cancelled:
            return OperationCancelled()
        if self.expired():
            return DeadlineExceeded()
        return None

    def raise_if_done(self) -> None:
        exc = self.error()
        if exc is not None:
            raise exc


__all__ = ["DeadlineExceeded", "OperationCancelled", "RequestContext"]
