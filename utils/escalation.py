"""Compound price escalation and contract indexation helpers."""
from __future__ import annotations


def escalate(
    base_price: float,
    target_year: int,
    reference_year: int | None,
    escalation_pct: float | None,
) -> float:
    """Escalate ``base_price`` from ``reference_year`` to ``target_year``.

    ``escalation_pct`` is an annual percentage (2.5 = 2.5%). The price is
    returned unchanged when the reference year or rate is absent, or when the
    base price itself is zero.
    """

    if not base_price or reference_year is None or not escalation_pct:
        return base_price
    return base_price * (1.0 + escalation_pct / 100.0) ** (target_year - reference_year)


def indexation_factor(indexation_pct: float, year: int, reference_year: int) -> float:
    """Return the compound indexation multiplier applied to a contract price."""

    return (1.0 + indexation_pct / 100.0) ** (year - reference_year)


__all__ = ["escalate", "indexation_factor"]
