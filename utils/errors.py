"""Exception types and solver result records shared by the revenue and finance engines."""
from __future__ import annotations

from dataclasses import dataclass
from threading import Event


class InvalidInput(ValueError):
    """Raised when an asset, contract, or cost input is outside its valid domain."""


class InvalidPeriodFormat(InvalidInput):
    """Raised when a period string is not a year, ``YYYY-Qn``, or ``MM/01/YYYY``."""

    def __init__(self, period: object) -> None:
        super().__init__(f"Invalid time interval format: {period!r}")
        self.period = period


class CalculationCancelled(RuntimeError):
    """Raised when a long-running calculation observes a cancelled token."""


@dataclass(frozen=True)
class NotConverged:
    """Explicit non-convergence result returned by the root finders.

    The record is falsy so callers can write ``if not result`` without
    confusing a failed solve with a legitimate ``0.0`` rate or gearing.
    """

    solver: str
    iterations: int
    last_estimate: float | None
    reason: str

    def __bool__(self) -> bool:
        return False


class CancellationToken:
    """Thread-safe cancellation flag checked between solver and simulation batches."""

    def __init__(self) -> None:
        self._event = Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str) -> None:
        if self._event.is_set():
            raise CalculationCancelled(f"{operation} was cancelled")


__all__ = [
    "CalculationCancelled",
    "CancellationToken",
    "InvalidInput",
    "InvalidPeriodFormat",
    "NotConverged",
]
