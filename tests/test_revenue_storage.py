from __future__ import annotations

from datetime import date

import pytest

from services.portfolio_models import (
    Asset,
    CfdContract,
    EngineConstants,
    FixedRevenueContract,
    GreenContract,
    TollingContract,
)
from services.revenue_core import calculate_asset_revenue
from services.revenue_storage import duration_brackets, generation_equivalent, storage_duration
from utils.errors import InvalidInput
from utils.periods import Period

CONSTANTS = EngineConstants(escalation_pct=0.0)
SPREADS = {0.5: 50.0, 1.0: 80.0, 2.0: 120.0, 4.0: 160.0}


def _spread_lookup(profile, commodity, region, period) -> float:
    return SPREADS.get(float(commodity), 0.0)


def _battery(volume: float = 100.0, contracts=(), **overrides) -> Asset:
    params = dict(
        name="Battery",
        type="storage",
        state="VIC",
        capacity=50.0,
        volume=volume,
        start_date=date(2025, 1, 1),
        contracts=tuple(contracts),
    )
    params.update(overrides)
    return Asset(**params)


@pytest.mark.parametrize(
    "duration, expected",
    [
        (0.25, (0.5, 0.5, 0.0)),
        (0.5, (0.5, 0.5, 0.0)),
        (1.5, (1.0, 2.0, 0.5)),
        (3.0, (2.0, 4.0, 0.5)),
        (4.0, (4.0, 4.0, 0.0)),
        (6.0, (4.0, 4.0, 0.0)),
    ],
)
def test_duration_brackets(duration: float, expected: tuple) -> None:
    assert duration_brackets(duration) == pytest.approx(expected)


def test_exact_standard_duration_uses_its_own_spread() -> None:
    asset = _battery(volume=100.0)
    assert storage_duration(asset) == 2.0
    result = calculate_asset_revenue(asset, 2025, CONSTANTS, _spread_lookup)
    assert result.annual_generation == pytest.approx(34_675.0)
    assert result.merchant_energy == pytest.approx(34_675.0 * 120.0 / 1e6)


def test_interpolates_between_standard_durations() -> None:
    asset = _battery(volume=150.0)
    result = calculate_asset_revenue(asset, 2025, CONSTANTS, _spread_lookup)
    throughput = 150.0 * 365 * 0.95
    assert result.merchant_energy == pytest.approx(throughput * 140.0 / 1e6)


def test_durations_outside_range_clamp() -> None:
    long_asset = _battery(volume=300.0)
    short_asset = _battery(volume=10.0)
    long_result = calculate_asset_revenue(long_asset, 2025, CONSTANTS, _spread_lookup)
    short_result = calculate_asset_revenue(short_asset, 2025, CONSTANTS, _spread_lookup)
    assert long_result.merchant_energy == pytest.approx(300.0 * 365 * 0.95 * 160.0 / 1e6)
    assert short_result.merchant_energy == pytest.approx(10.0 * 365 * 0.95 * 50.0 / 1e6)


def test_tolling_pays_capacity_rate_on_full_hours() -> None:
    tolling = TollingContract(
        start_date=date(2025, 1, 1), end_date=date(2035, 12, 31), buyers_percentage=100.0, hourly_rate=10.0
    )
    asset = _battery(contracts=[tolling])
    result = calculate_asset_revenue(asset, 2026, CONSTANTS, _spread_lookup)
    assert result.contracted_energy == pytest.approx(50.0 * 8760 * 10.0 / 1e6)
    assert result.merchant_energy == 0.0
    assert result.contracted_green == 0.0
    assert result.merchant_green == 0.0


def test_cfd_and_merchant_split_throughput() -> None:
    cfd = CfdContract(start_date=date(2025, 1, 1), end_date=date(2035, 12, 31), buyers_percentage=50.0, spread=100.0)
    result = calculate_asset_revenue(_battery(contracts=[cfd]), 2025, CONSTANTS, _spread_lookup)
    assert result.contracted_energy == pytest.approx(34_675.0 * 100.0 * 0.5 / 1e6)
    assert result.merchant_energy == pytest.approx(34_675.0 * 0.5 * 120.0 / 1e6)
    assert result.energy_percentage == 50.0


def test_fixed_contract_is_degraded_and_prorated() -> None:
    fixed = FixedRevenueContract(
        start_date=date(2025, 1, 1), end_date=date(2035, 12, 31), buyers_percentage=100.0, annual_revenue=8.0
    )
    asset = _battery(contracts=[fixed], annual_degradation_pct=1.0)
    result = calculate_asset_revenue(asset, "2027-Q3", CONSTANTS, _spread_lookup)
    assert result.contracted_energy == pytest.approx(8.0 * 0.25 * 0.99**2)


def test_throughput_scales_with_period_fraction() -> None:
    asset = _battery()
    annual = generation_equivalent(asset, Period(year=2025), CONSTANTS)
    monthly = generation_equivalent(asset, Period(year=2025, month=6), CONSTANTS)
    assert monthly == pytest.approx(annual / 12.0)


def test_renewable_contract_types_rejected_for_storage() -> None:
    green = GreenContract(start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=50.0, price=20.0)
    with pytest.raises(InvalidInput):
        _battery(contracts=[green])
