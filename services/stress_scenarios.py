"""Deterministic adverse revenue scenarios shared by the risk, finance, and valuation engines."""
from __future__ import annotations

from dataclasses import dataclass, replace

from services.portfolio_models import EngineConstants, RevenuePeriodResult
from utils.errors import InvalidInput


@dataclass(frozen=True)
class StressScenario:
    name: str
    description: str
    volume: bool = False
    green_price: bool = False
    energy_price: bool = False


STRESS_SCENARIOS: dict[str, StressScenario] = {
    "base": StressScenario("base", "Base case"),
    "worst": StressScenario(
        "worst", "Combined downside: volume and all merchant prices", volume=True, green_price=True, energy_price=True
    ),
    "volume": StressScenario("volume", "Volume downside on all revenue", volume=True),
    "price": StressScenario("price", "Merchant price downside on both streams", green_price=True, energy_price=True),
    "green": StressScenario("green", "Merchant green certificate price downside", green_price=True),
    "energy": StressScenario("energy", "Merchant energy price downside", energy_price=True),
}
_ALIASES = {"black": "energy", "worst_case": "worst", "volume_stress": "volume", "price_stress": "price"}


def get_scenario(name: str | None) -> StressScenario:
    key = (name or "base").strip().lower()
    key = _ALIASES.get(key, key)
    try:
        return STRESS_SCENARIOS[key]
    except KeyError as exc:
        raise InvalidInput(f"Unknown stress scenario {name!r}; expected one of {sorted(STRESS_SCENARIOS)}") from exc


def apply_stress_scenario(
    revenue: RevenuePeriodResult,
    scenario: str | StressScenario | None,
    constants: EngineConstants,
) -> RevenuePeriodResult:
    """Apply the configured maximum adverse variations to a base-case result.

    Volume stress scales every stream; price stress only touches merchant
    revenue of the affected stream.
    """

    stress = scenario if isinstance(scenario, StressScenario) else get_scenario(scenario)
    if stress.name == "base":
        return revenue

    volume = 1.0 - constants.volume_variation_pct / 100.0 if stress.volume else 1.0
    green = 1.0 - constants.green_price_variation_pct / 100.0 if stress.green_price else 1.0
    energy = 1.0 - constants.energy_price_variation_pct / 100.0 if stress.energy_price else 1.0

    return replace(
        revenue,
        contracted_green=revenue.contracted_green * volume,
        contracted_energy=revenue.contracted_energy * volume,
        merchant_green=revenue.merchant_green * volume * green,
        merchant_energy=revenue.merchant_energy * volume * energy,
    )


__all__ = ["STRESS_SCENARIOS", "StressScenario", "apply_stress_scenario", "get_scenario"]
