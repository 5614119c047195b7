"""
Cooperative deadlines for sync steps.

A ``Deadline`` is handed down through every network-bound call. HTTP requests
derive their socket timeout from it, and long loops call ``check()`` between
units of work so an exhausted budget surfaces as ``DeadlineExceeded`` at a
well-defined point instead of leaving a half-written step behind.
"""

from __future__ import annotations

import time
from typing import Callable

MIN_REQUEST_TIMEOUT_SECONDS = 1.0


class DeadlineExceeded(TimeoutError):
    def __init__(self, label: str, budget_seconds: float | None) -> None:
        self.label = label
        self.budget_seconds = budget_seconds
        budget = f"{budget_seconds:g}s" if budget_seconds is not None else "its"
        super().__init__(f"{label} timed out after {budget} budget")


class Deadline:
    def __init__(
        self,
        seconds: float | None,
        *,
        label: str = "sync",
        clock: Callable[[], float] = time.monotonic,
        _expires_at: float | None = None,
    ) -> None:
        self.label = label
        self.budget_seconds = seconds
        self._clock = clock
        if _expires_at is not None:
            self._expires_at: float | None = _expires_at
        elif seconds is None:
            self._expires_at = None
        else:
            self._expires_at = clock() + max(0.0, seconds)

    @classmethod
    def never(cls, label: str = "unbounded") -> "Deadline":
        return cls(None, label=label)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        if self.expired:
            raise DeadlineExceeded(self.label, self.budget_seconds)

    def child(self, seconds: float | None, label: str) -> "Deadline":
        """Derive a step budget that never outlives this deadline."""
        own_expiry = None if seconds is None else self._clock() + max(0.0, seconds)
        candidates = [
            expires_at
            for expires_at in (self._expires_at, own_expiry)
            if expires_at is not None
        ]
        # With no parent expiry and no own budget both are None, which the
        # constructor treats as unbounded.
        return Deadline(
            seconds,
            label=label,
            clock=self._clock,
            _expires_at=min(candidates) if candidates else None,
        )

    def request_timeout(self, default: float) -> float:
        remaining = self.remaining()
        if remaining is None:
            return default
        if remaining <= 0:
            raise DeadlineExceeded(self.label, self.budget_seconds)
        return max(MIN_REQUEST_TIMEOUT_SECONDS, min(default, remaining))
