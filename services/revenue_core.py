"""Single entry point for per-asset, per-period revenue."""
from __future__ import annotations

from typing import Iterable

from services.merchant_prices import PriceLookup, smoothed_price_lookup
from services.portfolio_models import Asset, EngineConstants, RevenuePeriodResult
from services.revenue_renewables import calculate_renewables_revenue
from services.revenue_storage import calculate_storage_revenue
from utils.periods import PeriodLike, parse_period


def calculate_asset_revenue(
    asset: Asset,
    period: PeriodLike,
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> RevenuePeriodResult:
    """Revenue for ``asset`` in ``period``.

    ``period`` may be a bare year, ``"YYYY-Qn"``, or ``"MM/01/YYYY"``;
    anything else raises :class:`~utils.errors.InvalidPeriodFormat`. Periods
    before the asset start year return an all-zero result.
    """

    resolved = parse_period(period)
    if resolved.year < asset.start_year:
        return RevenuePeriodResult.zero()
    if asset.is_storage:
        return calculate_storage_revenue(asset, resolved, constants, price_lookup)
    return calculate_renewables_revenue(asset, resolved, constants, price_lookup)


def engine_price_lookup(price_lookup: PriceLookup, constants: EngineConstants) -> PriceLookup:
    """Wrap a raw price source with the historical-lookback gap filling."""

    return smoothed_price_lookup(price_lookup, constants.escalation_pct)


def annual_revenue_series(
    asset: Asset,
    years: Iterable[int],
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> dict[int, RevenuePeriodResult]:
    return {year: calculate_asset_revenue(asset, year, constants, price_lookup) for year in years}


__all__ = ["annual_revenue_series", "calculate_asset_revenue", "engine_price_lookup"]
