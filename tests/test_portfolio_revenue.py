from __future__ import annotations

from datetime import date

import pytest

from services.portfolio_models import Asset, BundledContract, EngineConstants, GreenContract, TollingContract
from services.portfolio_revenue import aggregate_period, aggregate_portfolio_revenue, portfolio_revenue_frame

CONSTANTS = EngineConstants(escalation_pct=0.0)


def _prices(profile, commodity, region, period) -> float:
    label = str(commodity).lower()
    if label == "green":
        return 20.0
    if label == "energy":
        return 50.0
    return 120.0


def _assets() -> list[Asset]:
    solar = Asset(
        name="Solar",
        type="solar",
        state="NSW",
        capacity=100.0,
        start_date=date(2025, 1, 1),
        quarterly_capacity_factors=(25.0, 25.0, 25.0, 25.0),
        contracts=(
            BundledContract(
                start_date=date(2025, 1, 1),
                end_date=date(2035, 12, 31),
                buyers_percentage=50.0,
                green_price=30.0,
                energy_price=40.0,
            ),
        ),
    )
    wind = Asset(
        name="Wind",
        type="wind",
        state="VIC",
        capacity=100.0,
        start_date=date(2025, 1, 1),
        quarterly_capacity_factors=(50.0, 50.0, 50.0, 50.0),
        contracts=(
            GreenContract(
                start_date=date(2025, 1, 1), end_date=date(2035, 12, 31), buyers_percentage=100.0, price=25.0
            ),
        ),
    )
    battery = Asset(
        name="Battery",
        type="storage",
        state="VIC",
        capacity=50.0,
        volume=100.0,
        start_date=date(2026, 1, 1),
        contracts=(
            TollingContract(
                start_date=date(2026, 1, 1), end_date=date(2035, 12, 31), buyers_percentage=100.0, hourly_rate=10.0
            ),
        ),
    )
    return [solar, wind, battery]


def test_weighted_percentages_use_renewable_generation_only() -> None:
    row = aggregate_period(_assets(), 2026, CONSTANTS, _prices)

    solar_gen = row.by_asset["Solar"].annual_generation
    wind_gen = row.by_asset["Wind"].annual_generation
    assert row.renewable_generation == pytest.approx(solar_gen + wind_gen)
    assert row.weighted_green_percentage == pytest.approx((50.0 * solar_gen + 100.0 * wind_gen) / (solar_gen + wind_gen))
    assert row.weighted_energy_percentage == pytest.approx(50.0 * solar_gen / (solar_gen + wind_gen))


def test_portfolio_totals_sum_asset_components() -> None:
    row = aggregate_period(_assets(), 2026, CONSTANTS, _prices)
    assert row.total == pytest.approx(sum(result.total for result in row.by_asset.values()))
    assert row.contracted_energy == pytest.approx(sum(r.contracted_energy for r in row.by_asset.values()))
    assert row.by_asset["Battery"].contracted_energy == pytest.approx(50.0 * 8760 * 10.0 / 1e6)


def test_assets_not_yet_operating_contribute_nothing() -> None:
    row = aggregate_period(_assets(), 2025, CONSTANTS, _prices)
    assert row.by_asset["Battery"].total == 0.0


def test_no_renewables_gives_zero_weighting() -> None:
    row = aggregate_period(_assets()[2:], 2026, CONSTANTS, _prices)
    assert row.weighted_green_percentage == 0.0
    assert row.weighted_energy_percentage == 0.0


def test_frame_has_one_column_per_asset() -> None:
    rows = aggregate_portfolio_revenue(_assets(), ["2026-Q1", "2026-Q2"], CONSTANTS, _prices)
    frame = portfolio_revenue_frame(rows)
    assert list(frame["timeInterval"]) == ["2026-Q1", "2026-Q2"]
    for name in ("Solar total", "Wind total", "Battery total"):
        assert name in frame.columns
    assert frame["total"].iloc[0] == pytest.approx(rows[0].total)
