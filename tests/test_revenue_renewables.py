from __future__ import annotations

import math
from datetime import date

import pytest

from services.portfolio_models import (
    Asset,
    BundledContract,
    EngineConstants,
    EnergyContract,
    FixedRevenueContract,
    GreenContract,
    TollingContract,
    check_contract_allocation,
)
from services.revenue_core import annual_revenue_series, calculate_asset_revenue
from utils.errors import InvalidInput, InvalidPeriodFormat

CONSTANTS = EngineConstants(escalation_pct=0.0)


def _flat_prices(green: float = 20.0, energy: float = 50.0):
    def _lookup(profile, commodity, region, period) -> float:
        return green if str(commodity).lower() == "green" else energy

    return _lookup


def _bundled(pct: float = 50.0, **overrides) -> BundledContract:
    params = dict(
        start_date=date(2025, 1, 1),
        end_date=date(2034, 12, 31),
        buyers_percentage=pct,
        green_price=30.0,
        energy_price=40.0,
    )
    params.update(overrides)
    return BundledContract(**params)


def _solar(contracts=(), **overrides) -> Asset:
    params = dict(
        name="Solar One",
        type="solar",
        state="NSW",
        capacity=100.0,
        start_date=date(2025, 1, 1),
        quarterly_capacity_factors=(25.0, 25.0, 25.0, 25.0),
        contracts=tuple(contracts),
    )
    params.update(overrides)
    return Asset(**params)


def test_reference_solar_year_generation_and_contracted_revenue() -> None:
    asset = _solar([_bundled()])
    result = calculate_asset_revenue(asset, 2025, CONSTANTS, _flat_prices())

    assert result.annual_generation == pytest.approx(208_050.0)
    assert result.contracted_green == pytest.approx(3.12075)
    assert result.contracted_energy == pytest.approx(4.161)
    assert result.contracted == pytest.approx(7.28175)
    assert result.merchant_green == pytest.approx(2.0805)
    assert result.merchant_energy == pytest.approx(5.20125)
    assert result.green_percentage == 50.0
    assert result.energy_percentage == 50.0


def test_total_is_sum_of_components() -> None:
    asset = _solar([_bundled(35.0), EnergyContract(
        start_date=date(2025, 1, 1), end_date=date(2040, 12, 31), buyers_percentage=20.0, price=65.0
    )])
    for period in (2025, "2026-Q2", "03/01/2027"):
        result = calculate_asset_revenue(asset, period, CONSTANTS, _flat_prices())
        parts = result.contracted_green + result.contracted_energy + result.merchant_green + result.merchant_energy
        assert math.isclose(result.total, parts)
        assert math.isclose(result.total, result.contracted + result.merchant)


def test_quarter_uses_quarter_of_year_generation() -> None:
    asset = _solar([_bundled()])
    quarter = calculate_asset_revenue(asset, "2025-Q1", CONSTANTS, _flat_prices())
    assert quarter.annual_generation == pytest.approx(52_012.5)
    assert quarter.contracted == pytest.approx(7.28175 / 4)


def test_quarterly_factor_falls_back_to_constants_table() -> None:
    asset = _solar(quarterly_capacity_factors=(None, None, None, None))
    expected_cf = CONSTANTS.capacity_factors_quarterly["solar"]["NSW"]["Q1"]
    result = calculate_asset_revenue(asset, "2025-Q1", CONSTANTS, _flat_prices())
    assert result.annual_generation == pytest.approx(100.0 * 0.95 * 8760 * expected_cf * 0.25)


def test_period_before_start_is_zero() -> None:
    result = calculate_asset_revenue(_solar([_bundled()]), 2024, CONSTANTS, _flat_prices())
    assert result.total == 0.0
    assert result.annual_generation == 0.0


def test_invalid_period_raises() -> None:
    with pytest.raises(InvalidPeriodFormat):
        calculate_asset_revenue(_solar(), "2025-13", CONSTANTS, _flat_prices())


def test_generation_declines_with_degradation() -> None:
    asset = _solar(annual_degradation_pct=0.5)
    series = annual_revenue_series(asset, range(2025, 2035), CONSTANTS, _flat_prices())
    generation = [series[year].annual_generation for year in range(2025, 2035)]
    assert all(later < earlier for earlier, later in zip(generation, generation[1:]))
    assert generation[1] == pytest.approx(generation[0] * 0.995)


def test_merchant_share_is_complement_of_contracted() -> None:
    asset = _solar([GreenContract(
        start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=70.0, price=25.0
    )])
    result = calculate_asset_revenue(asset, 2025, CONSTANTS, _flat_prices(green=10.0, energy=60.0))
    generation = result.annual_generation

    assert result.merchant_green == pytest.approx(generation * 0.30 * 10.0 / 1e6)
    assert result.merchant_energy == pytest.approx(generation * 60.0 / 1e6)
    assert result.contracted_energy == 0.0


def test_expired_contract_returns_output_to_merchant() -> None:
    asset = _solar([_bundled(end_date=date(2026, 12, 31))])
    result = calculate_asset_revenue(asset, 2027, CONSTANTS, _flat_prices())
    assert result.contracted == 0.0
    assert result.green_percentage == 0.0
    assert result.merchant == pytest.approx(result.annual_generation * 70.0 / 1e6)


def test_indexation_compounds_from_contract_start() -> None:
    asset = _solar([_bundled(100.0, indexation_pct=2.0)], annual_degradation_pct=0.0)
    result = calculate_asset_revenue(asset, 2027, CONSTANTS, _flat_prices())
    assert result.contracted == pytest.approx(208_050.0 * 70.0 * 1.02**2 / 1e6)
    assert result.merchant == 0.0


def test_merchant_prices_escalate_from_reference_year() -> None:
    constants = EngineConstants(escalation_pct=2.5, reference_year=2025)
    asset = _solar(annual_degradation_pct=0.0)
    result = calculate_asset_revenue(asset, 2027, constants, _flat_prices(green=20.0, energy=50.0))
    assert result.merchant == pytest.approx(208_050.0 * 70.0 * 1.025**2 / 1e6)


def test_single_stream_floor_applies() -> None:
    contract = EnergyContract(
        start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=100.0, price=30.0, floor=45.0
    )
    result = calculate_asset_revenue(_solar([contract]), 2025, CONSTANTS, _flat_prices())
    assert result.contracted_energy == pytest.approx(208_050.0 * 45.0 / 1e6)


def test_bundled_floor_reproportions_components() -> None:
    contract = _bundled(100.0, green_price=20.0, energy_price=20.0, floor=60.0)
    result = calculate_asset_revenue(_solar([contract]), 2025, CONSTANTS, _flat_prices())
    assert result.contracted_green == pytest.approx(208_050.0 * 30.0 / 1e6)
    assert result.contracted_energy == pytest.approx(208_050.0 * 30.0 / 1e6)


def test_fixed_contract_books_to_energy_stream() -> None:
    contract = FixedRevenueContract(
        start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=100.0, annual_revenue=5.0
    )
    result = calculate_asset_revenue(_solar([contract]), 2025, CONSTANTS, _flat_prices())
    assert result.contracted_energy == pytest.approx(5.0)
    assert result.merchant_energy == 0.0
    assert result.merchant_green == pytest.approx(208_050.0 * 20.0 / 1e6)


def test_over_allocation_clamps_merchant_and_warns(caplog) -> None:
    contracts = [
        EnergyContract(start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=60.0, price=50.0),
        EnergyContract(start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=60.0, price=50.0),
    ]
    asset = _solar(contracts)
    with caplog.at_level("WARNING"):
        result = calculate_asset_revenue(asset, 2025, CONSTANTS, _flat_prices())
    assert result.merchant_energy == 0.0
    assert result.energy_percentage == 120.0
    assert any("clamped" in record.getMessage() for record in caplog.records)

    warnings = check_contract_allocation(asset, years=[2025, 2031])
    assert len(warnings) == 1
    assert "120.0%" in warnings[0]


def test_single_contract_above_full_output_is_rejected() -> None:
    with pytest.raises(InvalidInput):
        _bundled(120.0)


def test_storage_contract_types_rejected_for_renewables() -> None:
    tolling = TollingContract(
        start_date=date(2025, 1, 1), end_date=date(2030, 12, 31), buyers_percentage=100.0, hourly_rate=10.0
    )
    with pytest.raises(InvalidInput):
        _solar([tolling])
