"""Normalization of yearly, quarterly, and monthly period keys."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Union

from utils.errors import InvalidPeriodFormat

PeriodLike = Union[int, str, "Period"]

_YEAR_RE = re.compile(r"^\d{4}$")
_QUARTER_RE = re.compile(r"^(\d{4})-Q([1-4])$")
_MONTH_RE = re.compile(r"^(\d{1,2})/01/(\d{4})$")


@dataclass(frozen=True)
class Period:
    """A resolved calculation period.

    Exactly one of ``quarter`` or ``month`` may be set; when both are ``None``
    the period covers the full calendar year.
    """

    year: int
    quarter: int | None = None
    month: int | None = None

    @property
    def granularity(self) -> str:
        if self.quarter is not None:
            return "quarterly"
        if self.month is not None:
            return "monthly"
        return "yearly"

    @property
    def fraction(self) -> float:
        """Share of a year covered by the period (1, 0.25, or 1/12)."""

        if self.quarter is not None:
            return 0.25
        if self.month is not None:
            return 1.0 / 12.0
        return 1.0

    @property
    def key(self) -> str:
        if self.quarter is not None:
            return f"{self.year}-Q{self.quarter}"
        if self.month is not None:
            return f"{self.month:02d}/01/{self.year}"
        return str(self.year)


def parse_period(value: PeriodLike) -> Period:
    """Parse a bare year, ``"YYYY-Qn"``, or ``"MM/01/YYYY"`` into a :class:`Period`.

    Raises
    ------
    InvalidPeriodFormat
        When ``value`` matches none of the supported patterns.
    """

    if isinstance(value, Period):
        return value
    if isinstance(value, bool):
        raise InvalidPeriodFormat(value)
    if isinstance(value, int):
        return Period(year=value)
    if not isinstance(value, str):
        raise InvalidPeriodFormat(value)

    text = value.strip()
    if _YEAR_RE.match(text):
        return Period(year=int(text))
    match = _QUARTER_RE.match(text)
    if match:
        return Period(year=int(match.group(1)), quarter=int(match.group(2)))
    match = _MONTH_RE.match(text)
    if match:
        month = int(match.group(1))
        if not 1 <= month <= 12:
            raise InvalidPeriodFormat(value)
        return Period(year=int(match.group(2)), month=month)
    raise InvalidPeriodFormat(value)


def quarter_of_month(month: int) -> int:
    return (month - 1) // 3 + 1


def year_range(start_year: int, end_year: int) -> list[int]:
    """Inclusive list of calendar years."""

    return list(range(start_year, end_year + 1))


def quarter_periods(years: Iterable[int]) -> list[str]:
    return [f"{year}-Q{quarter}" for year in years for quarter in range(1, 5)]


__all__ = [
    "Period",
    "PeriodLike",
    "parse_period",
    "quarter_of_month",
    "quarter_periods",
    "year_range",
]
