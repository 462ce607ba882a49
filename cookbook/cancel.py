from __future__ import annotations

import threading
from typing import Optional


class CancelledError(RuntimeError):
    """Raised when a cancellation request should abort the current work."""


class CancellationToken:
    """Cooperative cancellation flag, optionally linked to a parent token."""

    def __init__(self, parent: Optional["CancellationToken"] = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    @classmethod
    def linked(cls, parent: Optional["CancellationToken"]) -> "CancellationToken":
        return cls(parent=parent)

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def request_cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError("Operation cancelled")
