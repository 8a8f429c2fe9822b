"""Economic helpers shared across the finance, valuation, and platform engines."""
from __future__ import annotations

import logging
import math
from typing import Sequence

from utils.errors import InvalidInput, NotConverged

# Sentinel DSCR reported when no debt service falls due in a period.
NO_DEBT_SERVICE_DSCR = 999.0

IRR_TOLERANCE = 1e-6
IRR_MAX_ITERATIONS = 1000


def _discount_factor(discount_rate: float, year_index: int) -> float:
    """Return the discount factor for a given year index (1-indexed)."""

    return 1.0 / ((1.0 + discount_rate) ** year_index)


def _ensure_non_negative_finite(value: float, name: str) -> None:
    """Raise InvalidInput when a numeric value is negative or non-finite."""

    if value is None or not math.isfinite(value):
        raise InvalidInput(f"{name} must be a finite number")
    if value < 0:
        raise InvalidInput(f"{name} must be non-negative")


def _ensure_positive_finite(value: float, name: str) -> None:
    """Raise InvalidInput when a numeric value is not strictly positive."""

    _ensure_non_negative_finite(value, name)
    if value == 0:
        raise InvalidInput(f"{name} must be positive")


def amortization_payment(principal: float, rate: float, tenor_years: int) -> float:
    """Level annual payment that fully repays ``principal`` over ``tenor_years``.

    ``rate`` is a decimal annual interest rate. A zero rate degenerates to
    straight-line repayment of ``principal / tenor_years``.
    """

    if tenor_years <= 0:
        raise InvalidInput("tenor_years must be positive")
    if principal == 0:
        return 0.0
    if rate == 0:
        return principal / tenor_years
    growth = (1.0 + rate) ** tenor_years
    return principal * rate * growth / (growth - 1.0)


def remaining_balance(principal: float, rate: float, tenor_years: int, payments_made: int) -> float:
    """Outstanding principal of a level-payment loan after ``payments_made`` payments."""

    if payments_made <= 0:
        return principal
    if payments_made >= tenor_years:
        return 0.0
    if rate == 0:
        return principal * (1.0 - payments_made / tenor_years)
    growth_n = (1.0 + rate) ** tenor_years
    growth_k = (1.0 + rate) ** payments_made
    return principal * (growth_n - growth_k) / (growth_n - 1.0)


def calculate_dscr(cash_flow: float, debt_service: float) -> float:
    """Debt service coverage ratio, or the no-debt sentinel when nothing is due."""

    return cash_flow / debt_service if debt_service > 0 else NO_DEBT_SERVICE_DSCR


def calculate_irr(
    cash_flows: Sequence[float],
    guess: float = 0.1,
    tolerance: float = IRR_TOLERANCE,
    max_iterations: int = IRR_MAX_ITERATIONS,
) -> float | NotConverged:
    """Solve the internal rate of return with Newton-Raphson.

    Returns a decimal rate, or :class:`NotConverged` when the iteration
    diverges below ``-1``, hits a flat derivative, or exhausts
    ``max_iterations``.
    """

    rate = guess
    for iteration in range(1, max_iterations + 1):
        npv = 0.0
        derivative = 0.0
        try:
            for idx, cf in enumerate(cash_flows):
                factor = (1.0 + rate) ** idx
                npv += cf / factor
                if idx > 0:
                    derivative -= idx * cf / (factor * (1.0 + rate))
        except OverflowError:
            return _irr_not_converged(iteration, None, "discount factor overflowed")

        if abs(npv) < tolerance:
            return rate
        if derivative == 0 or not math.isfinite(derivative):
            return _irr_not_converged(iteration, rate, "derivative vanished")

        rate = rate - npv / derivative
        if not math.isfinite(rate) or rate <= -1.0:
            return _irr_not_converged(iteration, None, "rate diverged below -100%")

    return _irr_not_converged(max_iterations, rate, "iteration limit reached")


def _irr_not_converged(iterations: int, estimate: float | None, reason: str) -> NotConverged:
    logging.getLogger(__name__).warning(
        "IRR did not converge after %s iterations: %s", iterations, reason
    )
    return NotConverged(solver="irr", iterations=iterations, last_estimate=estimate, reason=reason)


__all__ = [
    "IRR_MAX_ITERATIONS",
    "IRR_TOLERANCE",
    "NO_DEBT_SERVICE_DSCR",
    "_discount_factor",
    "_ensure_non_negative_finite",
    "_ensure_positive_finite",
    "amortization_payment",
    "calculate_dscr",
    "calculate_irr",
    "remaining_balance",
]
