"""Monte Carlo earnings-at-risk simulation over portfolio revenue.

Each trial draws independent uniform volume and price perturbations per
asset-year. Contracted revenue only moves with volume; merchant revenue
moves with volume and the stream's price. Trials are independent, so they
run in fixed-size batches that can be spread across worker threads. Every
batch draws from its own generator spawned from the request seed, which
keeps results identical for a seed whatever the worker count.

Percentile naming follows the project convention: ``p10`` is the
favourable (high revenue) tail and ``p90`` the adverse (low revenue) tail.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
import pandas as pd

from services.merchant_prices import PriceLookup
from services.portfolio_models import Asset, EngineConstants, RevenuePeriodResult
from services.revenue_core import calculate_asset_revenue
from services.stress_scenarios import STRESS_SCENARIOS, apply_stress_scenario
from utils import defaults
from utils.errors import CancellationToken, InvalidInput

# Column order of the per asset-year base revenue array.
_CONTRACTED, _MERCHANT_GREEN, _MERCHANT_ENERGY = range(3)


@dataclass(frozen=True)
class EarRequest:
    """Simulation controls.

    ``concurrency`` is ``None`` for a sequential loop or ``"thread"`` to run
    trial batches on a :class:`ThreadPoolExecutor`.
    """

    trials: int = defaults.DEFAULT_MONTE_CARLO_TRIALS
    seed: int | None = None
    batch_size: int = 250
    concurrency: str | None = None
    max_workers: int | None = None
    start_year: int | None = None
    end_year: int | None = None

    def __post_init__(self) -> None:
        if self.trials <= 0:
            raise InvalidInput("trials must be positive")
        if self.batch_size <= 0:
            raise InvalidInput("batch_size must be positive")
        if self.concurrency not in {None, "thread"}:
            raise InvalidInput("concurrency must be one of: None, 'thread'.")

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EarRequest":
        return cls(
            trials=int(payload.get("trials", defaults.DEFAULT_MONTE_CARLO_TRIALS)),
            seed=(None if payload.get("seed") is None else int(payload["seed"])),
            batch_size=int(payload.get("batch_size", 250)),
            concurrency=payload.get("concurrency"),
            max_workers=(None if payload.get("max_workers") is None else int(payload["max_workers"])),
            start_year=(None if payload.get("start_year") is None else int(payload["start_year"])),
            end_year=(None if payload.get("end_year") is None else int(payload["end_year"])),
        )


@dataclass(frozen=True)
class ScenarioChanges:
    """Asset-averaged perturbations (%) drawn for one trial-year."""

    volume: float = 0.0
    green_price: float = 0.0
    energy_price: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"volume": self.volume, "greenPrice": self.green_price, "energyPrice": self.energy_price}


@dataclass(frozen=True)
class EarMetrics:
    year: int
    base_case: float
    p10: float
    p50: float
    p90: float
    minimum: float
    maximum: float
    p10_changes: ScenarioChanges = ScenarioChanges()
    p50_changes: ScenarioChanges = ScenarioChanges()
    p90_changes: ScenarioChanges = ScenarioChanges()

    @property
    def range(self) -> float:
        return self.maximum - self.minimum

    @property
    def p10_percent(self) -> float:
        return _pct_change(self.p10, self.base_case)

    @property
    def p90_percent(self) -> float:
        return _pct_change(self.p90, self.base_case)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "baseCase": self.base_case,
            "p10": self.p10,
            "p50": self.p50,
            "p90": self.p90,
            "min": self.minimum,
            "max": self.maximum,
            "range": self.range,
            "p10Percent": self.p10_percent,
            "p90Percent": self.p90_percent,
            "p10Changes": self.p10_changes.to_dict(),
            "p50Changes": self.p50_changes.to_dict(),
            "p90Changes": self.p90_changes.to_dict(),
        }


@dataclass(frozen=True)
class StressTestResult:
    name: str
    description: str
    changes: str
    revenue: float


@dataclass(frozen=True)
class HistogramBin:
    revenue: float
    frequency: int
    bin_start: float
    bin_end: float


@dataclass(frozen=True)
class EarResult:
    """Scenario matrix (trials x years) plus the base case per year.

    ``changes`` has shape ``(trials, years, 3)`` and holds the volume, green
    price, and energy price draws (%) behind each scenario, averaged across
    the assets exposed to them.
    """

    years: tuple[int, ...]
    scenarios: np.ndarray
    changes: np.ndarray
    base_components: np.ndarray
    constants: EngineConstants

    def _column(self, year: int) -> int:
        try:
            return self.years.index(year)
        except ValueError as exc:
            raise InvalidInput(f"year {year} is outside the simulated window") from exc

    def base_case(self, year: int) -> float:
        return float(self.base_components[self._column(year)].sum())

    def distribution(self, year: int) -> np.ndarray:
        return self.scenarios[:, self._column(year)]

    def metrics(self, year: int) -> EarMetrics:
        values = self.distribution(year)
        order = np.argsort(values, kind="stable")
        n = len(order)
        p10_idx, p50_idx, p90_idx = order[int(n * 0.9)], order[int(n * 0.5)], order[int(n * 0.1)]
        return EarMetrics(
            year=year,
            base_case=self.base_case(year),
            p10=float(values[p10_idx]),
            p50=float(values[p50_idx]),
            p90=float(values[p90_idx]),
            minimum=float(values[order[0]]),
            maximum=float(values[order[-1]]),
            p10_changes=self.trial_changes(p10_idx, year),
            p50_changes=self.trial_changes(p50_idx, year),
            p90_changes=self.trial_changes(p90_idx, year),
        )

    def trial_changes(self, trial: int, year: int) -> ScenarioChanges:
        volume, green, energy = self.changes[trial, self._column(year)]
        return ScenarioChanges(volume=float(volume), green_price=float(green), energy_price=float(energy))

    def stress_tests(self, year: int) -> list[StressTestResult]:
        contracted, merchant_green, merchant_energy = self.base_components[self._column(year)]
        base = RevenuePeriodResult(
            contracted_energy=float(contracted),
            merchant_green=float(merchant_green),
            merchant_energy=float(merchant_energy),
        )
        results = []
        for name, scenario in STRESS_SCENARIOS.items():
            if name == "base":
                continue
            results.append(
                StressTestResult(
                    name=name,
                    description=scenario.description,
                    changes=_describe_changes(scenario, self.constants),
                    revenue=apply_stress_scenario(base, scenario, self.constants).total,
                )
            )
        return results

    def histogram(self, year: int, bins: int = defaults.HISTOGRAM_BINS) -> list[HistogramBin]:
        """Equal-width bins spanning the min/max of the simulated revenue."""

        values = self.distribution(year)
        low, high = float(values.min()), float(values.max())
        if high == low:
            return [HistogramBin(revenue=low, frequency=len(values), bin_start=low, bin_end=high)] + [
                HistogramBin(revenue=low, frequency=0, bin_start=low, bin_end=high) for _ in range(bins - 1)
            ]
        counts, edges = np.histogram(values, bins=bins, range=(low, high))
        return [
            HistogramBin(
                revenue=float((edges[i] + edges[i + 1]) / 2.0),
                frequency=int(counts[i]),
                bin_start=float(edges[i]),
                bin_end=float(edges[i + 1]),
            )
            for i in range(bins)
        ]

    def metrics_frame(self) -> pd.DataFrame:
        return pd.DataFrame([self.metrics(year).to_dict() for year in self.years])


def _pct_change(value: float, base: float) -> float:
    return (value - base) / base * 100.0 if base else 0.0


def _describe_changes(scenario, constants: EngineConstants) -> str:
    parts = []
    if scenario.volume:
        parts.append(f"Volume -{constants.volume_variation_pct:g}%")
    if scenario.green_price:
        parts.append(f"Green price -{constants.green_price_variation_pct:g}%")
    if scenario.energy_price:
        parts.append(f"Energy price -{constants.energy_price_variation_pct:g}%")
    return ", ".join(parts)


def build_base_components(
    assets: Sequence[Asset],
    years: Sequence[int],
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(components, renewable_mask)``.

    ``components`` has shape ``(assets, years, 3)`` holding contracted,
    merchant green, and merchant energy revenue. The mask flags assets that
    carry green price risk.
    """

    components = np.zeros((len(assets), len(years), 3))
    for a_idx, asset in enumerate(assets):
        for y_idx, year in enumerate(years):
            result = calculate_asset_revenue(asset, year, constants, price_lookup)
            components[a_idx, y_idx] = (result.contracted, result.merchant_green, result.merchant_energy)
    renewable = np.array([not asset.is_storage for asset in assets], dtype=float)
    return components, renewable


def simulate_batch(
    components: np.ndarray,
    renewable: np.ndarray,
    constants: EngineConstants,
    trials: int,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    """Simulate ``trials`` portfolio revenue paths.

    Returns revenue with shape ``(trials, years)`` and the asset-averaged
    draws (%) with shape ``(trials, years, 3)``. Green price draws are
    averaged over renewable assets only.
    """

    shape = (trials,) + components.shape[:2]
    volume = rng.uniform(-1.0, 1.0, size=shape) * constants.volume_variation_pct / 100.0
    green = (
        rng.uniform(-1.0, 1.0, size=shape)
        * constants.green_price_variation_pct
        / 100.0
        * renewable[np.newaxis, :, np.newaxis]
    )
    energy = rng.uniform(-1.0, 1.0, size=shape) * constants.energy_price_variation_pct / 100.0

    volume_factor = 1.0 + volume
    revenue = (
        components[np.newaxis, :, :, _CONTRACTED] * volume_factor
        + components[np.newaxis, :, :, _MERCHANT_GREEN] * volume_factor * (1.0 + green)
        + components[np.newaxis, :, :, _MERCHANT_ENERGY] * volume_factor * (1.0 + energy)
    )
    exposed = np.ones(components.shape[0])
    changes = np.stack(
        [_asset_mean(volume, exposed), _asset_mean(green, renewable), _asset_mean(energy, exposed)],
        axis=-1,
    )
    return revenue.sum(axis=1), changes * 100.0


def _asset_mean(draws: np.ndarray, weights: np.ndarray) -> np.ndarray:
    total = weights.sum()
    if not total:
        return np.zeros((draws.shape[0], draws.shape[2]))
    return (draws * weights[np.newaxis, :, np.newaxis]).sum(axis=1) / total


def run_earnings_at_risk(
    assets: Sequence[Asset],
    constants: EngineConstants,
    price_lookup: PriceLookup,
    request: EarRequest | None = None,
    cancel_token: CancellationToken | None = None,
) -> EarResult:
    """Run the Monte Carlo simulation over the analysis window."""

    request = request or EarRequest()
    start_year = request.start_year if request.start_year is not None else constants.analysis_start_year
    end_year = request.end_year if request.end_year is not None else constants.analysis_end_year
    if end_year < start_year:
        raise InvalidInput("end_year must not precede start_year")
    years = tuple(range(start_year, end_year + 1))

    logger = logging.getLogger(__name__)
    logger.info(
        "Running earnings-at-risk: %s trials, %s assets, years %s-%s",
        request.trials,
        len(assets),
        start_year,
        end_year,
    )

    components, renewable = build_base_components(assets, years, constants, price_lookup)
    batch_sizes = [request.batch_size] * (request.trials // request.batch_size)
    if request.trials % request.batch_size:
        batch_sizes.append(request.trials % request.batch_size)
    seeds = np.random.SeedSequence(request.seed).spawn(len(batch_sizes))

    def _run(payload: tuple[int, np.random.SeedSequence]) -> tuple[np.ndarray, np.ndarray]:
        size, seed_seq = payload
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("Earnings-at-risk simulation")
        return simulate_batch(components, renewable, constants, size, np.random.default_rng(seed_seq))

    payloads = list(zip(batch_sizes, seeds))
    if request.concurrency is None:
        batches = [_run(payload) for payload in payloads]
    else:
        with ThreadPoolExecutor(max_workers=request.max_workers) as executor:
            batches = list(executor.map(_run, payloads))

    scenarios = np.vstack([revenue for revenue, _ in batches]) if batches else np.zeros((0, len(years)))
    changes = np.concatenate([drawn for _, drawn in batches]) if batches else np.zeros((0, len(years), 3))
    logger.info("Earnings-at-risk complete: %s scenarios per year", scenarios.shape[0])
    return EarResult(
        years=years,
        scenarios=scenarios,
        changes=changes,
        base_components=components.sum(axis=0),
        constants=constants,
    )


__all__ = [
    "EarMetrics",
    "EarRequest",
    "EarResult",
    "HistogramBin",
    "ScenarioChanges",
    "StressTestResult",
    "build_base_components",
    "run_earnings_at_risk",
    "simulate_batch",
]
