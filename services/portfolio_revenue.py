"""Portfolio-level revenue aggregation across assets and periods."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import pandas as pd

from services.merchant_prices import PriceLookup
from services.portfolio_models import Asset, EngineConstants, RevenuePeriodResult
from services.revenue_core import calculate_asset_revenue
from utils.periods import PeriodLike, parse_period


@dataclass(frozen=True)
class PortfolioPeriodRevenue:
    """Summed revenue for one period with generation-weighted contract shares.

    The weighted percentages only consider solar and wind assets; storage has
    no green/energy split and is excluded from the weighting.
    """

    period: str
    contracted_green: float
    contracted_energy: float
    merchant_green: float
    merchant_energy: float
    weighted_green_percentage: float
    weighted_energy_percentage: float
    renewable_generation: float
    by_asset: dict[str, RevenuePeriodResult] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return self.contracted_green + self.contracted_energy + self.merchant_green + self.merchant_energy

    @property
    def contracted(self) -> float:
        return self.contracted_green + self.contracted_energy

    @property
    def merchant(self) -> float:
        return self.merchant_green + self.merchant_energy

    def to_dict(self, include_assets: bool = True) -> dict[str, Any]:
        row: dict[str, Any] = {
            "timeInterval": self.period,
            "total": self.total,
            "contractedGreen": self.contracted_green,
            "contractedEnergy": self.contracted_energy,
            "merchantGreen": self.merchant_green,
            "merchantEnergy": self.merchant_energy,
            "weightedGreenPercentage": self.weighted_green_percentage,
            "weightedEnergyPercentage": self.weighted_energy_percentage,
        }
        if include_assets:
            row["assets"] = {name: result.to_dict() for name, result in self.by_asset.items()}
        return row


def aggregate_period(
    assets: Sequence[Asset],
    period: PeriodLike,
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> PortfolioPeriodRevenue:
    resolved = parse_period(period)
    by_asset: dict[str, RevenuePeriodResult] = {}
    weighted_green = 0.0
    weighted_energy = 0.0
    renewable_generation = 0.0

    for asset in assets:
        result = calculate_asset_revenue(asset, resolved, constants, price_lookup)
        by_asset[asset.name] = result
        if asset.is_storage:
            continue
        weighted_green += result.green_percentage * result.annual_generation
        weighted_energy += result.energy_percentage * result.annual_generation
        renewable_generation += result.annual_generation

    if renewable_generation > 0:
        weighted_green /= renewable_generation
        weighted_energy /= renewable_generation
    else:
        weighted_green = weighted_energy = 0.0

    return PortfolioPeriodRevenue(
        period=resolved.key,
        contracted_green=sum(r.contracted_green for r in by_asset.values()),
        contracted_energy=sum(r.contracted_energy for r in by_asset.values()),
        merchant_green=sum(r.merchant_green for r in by_asset.values()),
        merchant_energy=sum(r.merchant_energy for r in by_asset.values()),
        weighted_green_percentage=weighted_green,
        weighted_energy_percentage=weighted_energy,
        renewable_generation=renewable_generation,
        by_asset=by_asset,
    )


def aggregate_portfolio_revenue(
    assets: Sequence[Asset],
    periods: Iterable[PeriodLike],
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> list[PortfolioPeriodRevenue]:
    """Per-period portfolio totals for every period in ``periods``."""

    return [aggregate_period(assets, period, constants, price_lookup) for period in periods]


def portfolio_revenue_frame(rows: Sequence[PortfolioPeriodRevenue]) -> pd.DataFrame:
    """Flatten aggregated rows into a table with one ``<asset> total`` column per asset."""

    records = []
    for row in rows:
        record = row.to_dict(include_assets=False)
        for name, result in row.by_asset.items():
            record[f"{name} total"] = result.total
        records.append(record)
    return pd.DataFrame.from_records(records)


__all__ = [
    "PortfolioPeriodRevenue",
    "aggregate_period",
    "aggregate_portfolio_revenue",
    "portfolio_revenue_frame",
]
