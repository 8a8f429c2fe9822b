from __future__ import annotations

from datetime import date

import numpy as np
import pytest

from services.earnings_risk import EarRequest, run_earnings_at_risk
from services.portfolio_models import Asset, BundledContract, EngineConstants
from utils.errors import CalculationCancelled, CancellationToken, InvalidInput

CONSTANTS = EngineConstants(escalation_pct=0.0, analysis_start_year=2025, analysis_end_year=2027)


def _prices(profile, commodity, region, period) -> float:
    return 20.0 if str(commodity).lower() == "green" else 50.0


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
    battery = Asset(name="Battery", type="storage", state="VIC", capacity=50.0, volume=100.0, start_date=date(2025, 1, 1))
    return [solar, battery]


def _spread_prices(profile, commodity, region, period) -> float:
    if profile == "storage":
        return 120.0
    return _prices(profile, commodity, region, period)


def test_percentiles_are_ordered_and_bounded() -> None:
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=600, seed=7))
    metrics = result.metrics(2025)

    assert result.scenarios.shape == (600, 3)
    assert metrics.p10 >= metrics.p50 >= metrics.p90
    assert metrics.minimum <= metrics.p90 and metrics.p10 <= metrics.maximum
    assert metrics.range == pytest.approx(metrics.maximum - metrics.minimum)
    assert metrics.minimum >= metrics.base_case * 0.8 * 0.8 - 1e-9
    assert metrics.maximum <= metrics.base_case * 1.2 * 1.2 + 1e-9


def test_same_seed_reproduces_scenarios() -> None:
    first = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=300, seed=11))
    second = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=300, seed=11))
    other = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=300, seed=12))

    assert np.array_equal(first.scenarios, second.scenarios)
    assert not np.array_equal(first.scenarios, other.scenarios)


def test_threaded_batches_match_sequential_run() -> None:
    sequential = run_earnings_at_risk(
        _assets(), CONSTANTS, _spread_prices, EarRequest(trials=1000, seed=3, batch_size=128)
    )
    threaded = run_earnings_at_risk(
        _assets(),
        CONSTANTS,
        _spread_prices,
        EarRequest(trials=1000, seed=3, batch_size=128, concurrency="thread", max_workers=4),
    )
    assert np.array_equal(sequential.scenarios, threaded.scenarios)


def test_base_case_and_stress_tests() -> None:
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=50, seed=1))
    contracted, merchant_green, merchant_energy = result.base_components[0]
    assert result.base_case(2025) == pytest.approx(contracted + merchant_green + merchant_energy)

    stress = {item.name: item for item in result.stress_tests(2025)}
    assert set(stress) == {"worst", "volume", "price", "green", "energy"}
    assert stress["volume"].revenue == pytest.approx(result.base_case(2025) * 0.8)
    assert stress["green"].revenue == pytest.approx(contracted + merchant_green * 0.8 + merchant_energy)
    assert stress["worst"].revenue == pytest.approx(
        contracted * 0.8 + merchant_green * 0.64 + merchant_energy * 0.64
    )
    assert stress["worst"].changes == "Volume -20%, Green price -20%, Energy price -20%"


def test_zero_variation_collapses_distribution() -> None:
    constants = EngineConstants(
        escalation_pct=0.0,
        analysis_start_year=2025,
        analysis_end_year=2025,
        volume_variation_pct=0.0,
        green_price_variation_pct=0.0,
        energy_price_variation_pct=0.0,
    )
    result = run_earnings_at_risk(_assets(), constants, _spread_prices, EarRequest(trials=40, seed=5))
    metrics = result.metrics(2025)
    assert metrics.p10 == pytest.approx(metrics.base_case)
    assert metrics.p90 == pytest.approx(metrics.base_case)

    bins = result.histogram(2025)
    assert len(bins) == 20
    assert sum(b.frequency for b in bins) == 40


def test_histogram_covers_all_trials() -> None:
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=400, seed=9))
    bins = result.histogram(2026)
    assert len(bins) == 20
    assert sum(b.frequency for b in bins) == 400
    assert bins[0].bin_start == pytest.approx(result.metrics(2026).minimum)
    assert bins[-1].bin_end == pytest.approx(result.metrics(2026).maximum)


def test_metrics_frame_has_a_row_per_year() -> None:
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=20, seed=2))
    frame = result.metrics_frame()
    assert list(frame["year"]) == [2025, 2026, 2027]


def test_cancelled_token_stops_simulation() -> None:
    token = CancellationToken()
    token.cancel()
    with pytest.raises(CalculationCancelled):
        run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=20, seed=2), cancel_token=token)


def test_invalid_requests_raise() -> None:
    with pytest.raises(InvalidInput):
        EarRequest(trials=0)
    with pytest.raises(InvalidInput):
        EarRequest(concurrency="process")
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=10, seed=2))
    with pytest.raises(InvalidInput):
        result.metrics(2040)


def test_percentile_changes_come_from_the_percentile_trials() -> None:
    result = run_earnings_at_risk(_assets(), CONSTANTS, _spread_prices, EarRequest(trials=500, seed=13))
    metrics = result.metrics(2026)
    values = result.distribution(2026)
    order = np.argsort(values, kind="stable")

    for label, position in (("p10", 0.9), ("p50", 0.5), ("p90", 0.1)):
        trial = order[int(len(values) * position)]
        assert getattr(metrics, label) == values[trial]
        assert getattr(metrics, f"{label}_changes") == result.trial_changes(trial, 2026)

    assert result.changes.shape == (500, 3, 3)
    assert np.all(np.abs(result.changes) <= 20.0 + 1e-9)
    assert set(metrics.to_dict()["p10Changes"]) == {"volume", "greenPrice", "energyPrice"}


def test_volume_only_changes_explain_percentile_revenue() -> None:
    constants = EngineConstants(
        escalation_pct=0.0,
        analysis_start_year=2025,
        analysis_end_year=2025,
        green_price_variation_pct=0.0,
        energy_price_variation_pct=0.0,
    )
    solar = _assets()[:1]
    metrics = run_earnings_at_risk(solar, constants, _prices, EarRequest(trials=200, seed=21)).metrics(2025)

    assert metrics.p10_changes.volume == pytest.approx((metrics.p10 / metrics.base_case - 1.0) * 100.0)
    assert metrics.p90_changes.volume == pytest.approx((metrics.p90 / metrics.base_case - 1.0) * 100.0)
    assert metrics.p10_changes.volume > metrics.p50_changes.volume > metrics.p90_changes.volume
    assert metrics.p10_changes.green_price == 0.0
    assert metrics.p10_changes.energy_price == 0.0
