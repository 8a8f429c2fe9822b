"""Generation and contracted/merchant revenue split for solar and wind assets."""
from __future__ import annotations

import logging

from services.merchant_prices import PriceLookup
from services.portfolio_models import (
    Asset,
    BundledContract,
    EngineConstants,
    EnergyContract,
    FixedRevenueContract,
    GreenContract,
    RevenuePeriodResult,
)
from utils.escalation import escalate, indexation_factor
from utils.periods import Period


def resolve_capacity_factor(asset: Asset, period: Period, constants: EngineConstants) -> float:
    """Return the decimal capacity factor for ``period``.

    Asset-level quarterly factors (whole percentages) win. Quarterly periods
    otherwise fall back to the constants quarterly table, then the annual
    table. Yearly and monthly periods average the asset's four quarters only
    when all four are set.
    """

    asset_factors = asset.quarterly_capacity_factors
    annual_default = constants.capacity_factors.get(asset.type, {}).get(asset.state)

    if period.quarter is not None:
        stored = asset_factors[period.quarter - 1]
        if stored is not None:
            return stored / 100.0
        quarterly = (
            constants.capacity_factors_quarterly.get(asset.type, {}).get(asset.state, {}).get(f"Q{period.quarter}")
        )
        return quarterly or annual_default or 0.0

    if all(factor is not None for factor in asset_factors):
        return sum(asset_factors) / 4.0 / 100.0
    return annual_default or 0.0


def degradation_factor(asset: Asset, year: int, constants: EngineConstants) -> float:
    """Compound output loss since the asset start year."""

    degradation = asset.annual_degradation_pct
    if degradation is None:
        degradation = constants.annual_degradation_pct.get(asset.type, 0.0)
    return (1.0 - degradation / 100.0) ** (year - asset.start_year)


def period_generation(asset: Asset, period: Period, constants: EngineConstants) -> float:
    """Energy produced in ``period`` in MWh after losses and degradation."""

    return (
        asset.capacity
        * asset.volume_loss_adjustment
        / 100.0
        * constants.hours_in_year
        * resolve_capacity_factor(asset, period, constants)
        * period.fraction
        * degradation_factor(asset, period.year, constants)
    )


def _apply_floor(price: float, floor: float | None) -> float:
    if floor is not None and price < floor:
        return floor
    return price


def _bundled_prices(contract: BundledContract, index: float) -> tuple[float, float]:
    """Indexed green and energy prices, re-proportioned up to the floor if needed."""

    green = contract.green_price * index
    energy = contract.energy_price * index
    if contract.floor is None:
        return green, energy
    combined = green + energy
    if combined >= contract.floor:
        return green, energy
    if combined > 0:
        return contract.floor * green / combined, contract.floor * energy / combined
    return contract.floor / 2.0, contract.floor / 2.0


def calculate_renewables_revenue(
    asset: Asset,
    period: Period,
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> RevenuePeriodResult:
    """Compute one period of revenue ($M) for a solar or wind asset.

    Parameters
    ----------
    asset
        Renewable asset whose active contracts determine the contracted share.
    period
        Resolved period. Callers are responsible for the pre-start guard.
    constants
        Capacity factor, degradation, and escalation assumptions.
    price_lookup
        ``(profile, commodity, region, period) -> $/MWh`` merchant price source.
    """

    generation = period_generation(asset, period, constants)
    degradation = degradation_factor(asset, period.year, constants)
    year = period.year

    contracted_green = 0.0
    contracted_energy = 0.0
    green_pct = 0.0
    energy_pct = 0.0

    for contract in asset.contracts:
        if not contract.is_active(year):
            continue
        index = indexation_factor(contract.indexation_pct, year, contract.reference_year)
        share = contract.buyers_percentage / 100.0

        if isinstance(contract, FixedRevenueContract):
            contracted_energy += contract.annual_revenue * index * period.fraction * degradation
            energy_pct += contract.buyers_percentage
        elif isinstance(contract, BundledContract):
            green_price, energy_price = _bundled_prices(contract, index)
            contracted_green += generation * share * green_price / 1e6
            contracted_energy += generation * share * energy_price / 1e6
            green_pct += contract.buyers_percentage
            energy_pct += contract.buyers_percentage
        elif isinstance(contract, GreenContract):
            price = _apply_floor(contract.price * index, contract.floor)
            contracted_green += generation * share * price / 1e6
            green_pct += contract.buyers_percentage
        elif isinstance(contract, EnergyContract):
            price = _apply_floor(contract.price * index, contract.floor)
            contracted_energy += generation * share * price / 1e6
            energy_pct += contract.buyers_percentage

    for stream, pct in (("green", green_pct), ("energy", energy_pct)):
        if pct > 100.0:
            logging.getLogger(__name__).warning(
                "%s %s: %s contracts allocate %.1f%%; merchant share clamped to 0",
                asset.name,
                period.key,
                stream,
                pct,
            )

    merchant_green_pct = max(0.0, 100.0 - green_pct)
    merchant_energy_pct = max(0.0, 100.0 - energy_pct)

    merchant_green = 0.0
    merchant_energy = 0.0
    if merchant_green_pct > 0:
        price = escalate(
            price_lookup(asset.type, "green", asset.state, period),
            year,
            constants.reference_year,
            constants.escalation_pct,
        )
        merchant_green = generation * merchant_green_pct / 100.0 * price / 1e6
    if merchant_energy_pct > 0:
        price = escalate(
            price_lookup(asset.type, "Energy", asset.state, period),
            year,
            constants.reference_year,
            constants.escalation_pct,
        )
        merchant_energy = generation * merchant_energy_pct / 100.0 * price / 1e6

    return RevenuePeriodResult(
        contracted_green=contracted_green,
        contracted_energy=contracted_energy,
        merchant_green=merchant_green,
        merchant_energy=merchant_energy,
        green_percentage=green_pct,
        energy_percentage=energy_pct,
        annual_generation=generation,
    )


__all__ = [
    "calculate_renewables_revenue",
    "degradation_factor",
    "period_generation",
    "resolve_capacity_factor",
]
