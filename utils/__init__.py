"""Utility helpers shared across the revenue and finance engines."""

from utils.economics import amortization_payment, calculate_dscr, calculate_irr, remaining_balance
from utils.errors import CalculationCancelled, CancellationToken, InvalidInput, InvalidPeriodFormat, NotConverged
from utils.escalation import escalate, indexation_factor
from utils.periods import Period, parse_period

__all__ = [
    "CalculationCancelled",
    "CancellationToken",
    "InvalidInput",
    "InvalidPeriodFormat",
    "NotConverged",
    "Period",
    "amortization_payment",
    "calculate_dscr",
    "calculate_irr",
    "escalate",
    "indexation_factor",
    "parse_period",
    "remaining_balance",
]
