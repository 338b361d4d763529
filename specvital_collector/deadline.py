"""Time budgets and cooperative cancellation for blocking work.

A :class:`Deadline` is threaded through every call of the analysis pipeline.
It combines an absolute monotonic expiry with a cancellation flag and an
optional parent, so cancelling a worker's root deadline also cancels every
task deadline derived from it.

Blocking calls take their timeout from :meth:`Deadline.remaining` and long
loops call :meth:`Deadline.check` between steps.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta


class DeadlineExceeded(TimeoutError):
    """Raised when work runs past its deadline or after cancellation."""


def _to_seconds(timeout: float | timedelta) -> float:
    if isinstance(timeout, timedelta):
        return timeout.total_seconds()
    return float(timeout)


class Deadline:
    """Absolute time budget with cancellation.

    Args:
        timeout: Seconds (or timedelta) from now, or None for no time limit
        parent: Deadline this one derives from; expiry and cancellation of
            the parent apply to the child as well
    """

    def __init__(
        self,
        timeout: float | timedelta | None = None,
        parent: Deadline | None = None,
    ):
        self._parent = parent
        self._expires_at: float | None = None
        if timeout is not None:
            self._expires_at = time.monotonic() + _to_seconds(timeout)
        self._cancelled = threading.Event()
        self._cancel_reason = "operation cancelled"

    @classmethod
    def background(cls) -> Deadline:
        """A deadline that never expires and is not linked to any parent."""
        return cls()

    def child(self, timeout: float | timedelta | None = None) -> Deadline:
        """Derive a deadline bounded by both this deadline and ``timeout``."""
        return Deadline(timeout, parent=self)

    def cancel(self, reason: str = "operation cancelled") -> None:
        self._cancel_reason = reason
        self._cancelled.set()

    @property
    def expires_at(self) -> float | None:
        """Effective monotonic expiry, taking parents into account."""
        candidates = []
        if self._expires_at is not None:
            candidates.append(self._expires_at)
        if self._parent is not None and self._parent.expires_at is not None:
            candidates.append(self._parent.expires_at)
        return min(candidates) if candidates else None

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and time.monotonic() >= expires_at

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left, 0.0 if done, or None when there is no time limit."""
        if self.cancelled:
            return 0.0
        expires_at = self.expires_at
        if expires_at is None:
            return None
        return max(0.0, expires_at - time.monotonic())

    def error(self) -> DeadlineExceeded | None:
        """The error describing why this deadline is done, or None."""
        if self.cancelled:
            return DeadlineExceeded(self._reason())
        if self.expired:
            return DeadlineExceeded("deadline exceeded")
        return None

    def check(self) -> None:
        """Raise :class:`DeadlineExceeded` if the deadline is done."""
        err = self.error()
        if err is not None:
            raise err

    def _reason(self) -> str:
        if self._cancelled.is_set():
            return self._cancel_reason
        if self._parent is not None:
            return self._parent._reason()
        return "operation cancelled"

    def __repr__(self) -> str:
        remaining = self.remaining()
        budget = "unbounded" if remaining is None else f"{remaining:.3f}s"
        return f"<Deadline remaining={budget} cancelled={self.cancelled}>"


def ensure_deadline(deadline: Deadline | None) -> Deadline:
    """Return ``deadline`` or an unbounded one when None."""
    return deadline if deadline is not None else Deadline.background()
