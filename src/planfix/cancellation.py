"""Cooperative cancellation primitives used across a plan execution."""

from __future__ import annotations

import threading
import time

__all__ = ["CancellationToken", "ExecutionCancelledError"]


class ExecutionCancelledError(RuntimeError):
    """Raised when the user or the host cancels the running plan."""

    def __init__(self, message: str = "Operation cancelled.") -> None:
        super().__init__(message)


class CancellationToken:
    """Thread-safe flag checked at every suspension point of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`ExecutionCancelledError` once cancellation was requested."""
        if self._event.is_set():
            raise ExecutionCancelledError(self._reason or "Operation cancelled.")

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` but wake up early and raise on cancellation."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        deadline = time.monotonic() + seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if self._event.wait(timeout=remaining):
                break
        self.raise_if_cancelled()
