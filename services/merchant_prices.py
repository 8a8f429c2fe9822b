"""Merchant price curves and the historical-lookback smoothing wrapper.

Price rows arrive monthly (``profile``, ``type``, ``state``, ``time`` as
``MM/01/YYYY``, ``price``) and are aggregated to quarterly and yearly values
by arithmetic mean. Storage curves use the battery duration in hours as the
``type`` column.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Union

import pandas as pd

from utils import defaults
from utils.errors import InvalidInput
from utils.escalation import escalate
from utils.periods import Period, PeriodLike, parse_period

Commodity = Union[str, float]
PriceLookup = Callable[[str, Commodity, str, PeriodLike], float]

REQUIRED_COLUMNS = ("profile", "type", "state", "time", "price")


def commodity_key(commodity: Commodity) -> str:
    """Normalize a commodity label or storage duration to a lookup key.

    ``"Energy"`` and ``"black"`` map to ``"energy"``; numeric durations map to
    their shortest decimal form so ``2``, ``2.0`` and ``"2"`` agree.
    """

    if isinstance(commodity, (int, float)) and not isinstance(commodity, bool):
        return f"{float(commodity):g}"
    text = str(commodity).strip().lower()
    if text == "black":
        return "energy"
    try:
        return f"{float(text):g}"
    except ValueError:
        return text


def _key(profile: str, commodity: Commodity, region: str) -> tuple[str, str, str]:
    return (str(profile).strip().lower(), commodity_key(commodity), str(region).strip().upper())


@dataclass(frozen=True)
class MerchantPriceCurve:
    """Monthly prices plus quarterly and yearly means, keyed by profile/commodity/region."""

    monthly: Mapping[tuple[str, str, str, int, int], float] = field(default_factory=dict)
    quarterly: Mapping[tuple[str, str, str, int, int], float] = field(default_factory=dict)
    yearly: Mapping[tuple[str, str, str, int], float] = field(default_factory=dict)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "MerchantPriceCurve":
        missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
        if missing:
            raise InvalidInput(f"merchant price data is missing columns: {missing}")
        if frame.empty:
            return cls()

        df = frame.loc[:, list(REQUIRED_COLUMNS)].copy()
        df["profile"] = df["profile"].astype(str).str.strip().str.lower()
        df["type"] = df["type"].map(commodity_key)
        df["state"] = df["state"].astype(str).str.strip().str.upper()
        df["price"] = pd.to_numeric(df["price"], errors="coerce")
        timestamps = pd.to_datetime(df["time"], format="%m/%d/%Y", errors="coerce")
        bad_rows = timestamps.isna() | df["price"].isna()
        if bad_rows.any():
            logging.getLogger(__name__).warning(
                "Dropping %s merchant price rows with unparseable time or price", int(bad_rows.sum())
            )
        df = df.loc[~bad_rows]
        timestamps = timestamps.loc[~bad_rows]
        df["year"] = timestamps.dt.year
        df["month"] = timestamps.dt.month
        df["quarter"] = timestamps.dt.quarter

        group = ["profile", "type", "state"]
        monthly = df.groupby(group + ["year", "month"])["price"].mean()
        quarterly = df.groupby(group + ["year", "quarter"])["price"].mean()
        yearly = df.groupby(group + ["year"])["price"].mean()
        return cls(
            monthly={_int_key(k): float(v) for k, v in monthly.items()},
            quarterly={_int_key(k): float(v) for k, v in quarterly.items()},
            yearly={_int_key(k): float(v) for k, v in yearly.items()},
        )

    @classmethod
    def from_records(cls, rows: Iterable[Mapping[str, Any]]) -> "MerchantPriceCurve":
        return cls.from_frame(pd.DataFrame(list(rows), columns=list(REQUIRED_COLUMNS)))

    def price(self, profile: str, commodity: Commodity, region: str, period: PeriodLike) -> float:
        """Return the stored price for the period, or ``0.0`` when absent."""

        resolved = parse_period(period)
        base = _key(profile, commodity, region)
        if resolved.quarter is not None:
            value = self.quarterly.get(base + (resolved.year, resolved.quarter))
        elif resolved.month is not None:
            value = self.monthly.get(base + (resolved.year, resolved.month))
        else:
            value = self.yearly.get(base + (resolved.year,))
        return 0.0 if value is None else value

    __call__ = price

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {"profile": p, "type": t, "state": s, "year": y, "price": price}
            for (p, t, s, y), price in self.yearly.items()
        ]
        return pd.DataFrame(rows, columns=["profile", "type", "state", "year", "price"])


def _int_key(key: tuple[Any, ...]) -> tuple[Any, ...]:
    return tuple(int(part) if not isinstance(part, str) else part for part in key)


def _shift_year(period: Period, year: int) -> Period:
    return Period(year=year, quarter=period.quarter, month=period.month)


def smoothed_price_lookup(
    lookup: PriceLookup,
    escalation_pct: float,
    lookback_years: int = defaults.PRICE_LOOKBACK_YEARS,
    samples: int = defaults.PRICE_LOOKBACK_SAMPLES,
) -> PriceLookup:
    """Wrap ``lookup`` so missing prices are filled from recent history.

    When the requested period has no price (missing or zero), the same
    sub-period in each of the previous ``lookback_years`` years is tried
    until ``samples`` non-zero prices are found. Each is escalated forward to
    the requested year and the results are averaged. ``0.0`` is returned when
    the window holds no usable price. Negative prices are market data and
    pass through unchanged.
    """

    def _lookup(profile: str, commodity: Commodity, region: str, period: PeriodLike) -> float:
        resolved = parse_period(period)
        price = lookup(profile, commodity, region, resolved)
        if price:
            return price

        found: list[float] = []
        for offset in range(1, lookback_years + 1):
            year = resolved.year - offset
            historical = lookup(profile, commodity, region, _shift_year(resolved, year))
            if historical:
                found.append(escalate(historical, resolved.year, year, escalation_pct))
                if len(found) >= samples:
                    break

        if not found:
            logging.getLogger(__name__).debug(
                "No merchant price for %s/%s/%s %s within %s years; using 0",
                profile,
                commodity,
                region,
                resolved.key,
                lookback_years,
            )
            return 0.0
        return sum(found) / len(found)

    return _lookup


__all__ = [
    "Commodity",
    "MerchantPriceCurve",
    "PriceLookup",
    "commodity_key",
    "smoothed_price_lookup",
]
