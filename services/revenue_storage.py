"""Revenue for battery storage assets, including duration-interpolated merchant spreads."""
from __future__ import annotations

from services.merchant_prices import PriceLookup
from services.portfolio_models import (
    Asset,
    CfdContract,
    EngineConstants,
    FixedRevenueContract,
    RevenuePeriodResult,
    TollingContract,
)
from services.revenue_renewables import degradation_factor
from utils import defaults
from utils.escalation import escalate, indexation_factor
from utils.periods import Period

DAYS_IN_YEAR = 365


def storage_duration(asset: Asset) -> float:
    """Hours of storage at rated power, ``volume / capacity``."""

    if not asset.capacity:
        return 0.0
    return (asset.volume or 0.0) / asset.capacity


def duration_brackets(duration: float) -> tuple[float, float, float]:
    """Return ``(lower, upper, ratio)`` for interpolating between standard durations.

    Durations outside the standard range clamp to the nearest end with a
    ratio of ``0``.
    """

    standard = defaults.STORAGE_STANDARD_DURATIONS_H
    if duration <= standard[0]:
        return standard[0], standard[0], 0.0
    if duration >= standard[-1]:
        return standard[-1], standard[-1], 0.0
    for lower, upper in zip(standard, standard[1:]):
        if lower <= duration <= upper:
            return lower, upper, (duration - lower) / (upper - lower)
    return standard[-1], standard[-1], 0.0


def interpolated_spread(
    asset: Asset,
    period: Period,
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> float:
    """Escalated merchant spread ($/MWh) interpolated at the asset's duration."""

    lower, upper, ratio = duration_brackets(storage_duration(asset))

    def _escalated(duration: float) -> float:
        return escalate(
            price_lookup(asset.type, duration, asset.state, period),
            period.year,
            constants.reference_year,
            constants.escalation_pct,
        )

    lower_price = _escalated(lower)
    if upper == lower or ratio == 0:
        return lower_price
    upper_price = _escalated(upper)
    if ratio == 1:
        return upper_price
    return lower_price + (upper_price - lower_price) * ratio


def generation_equivalent(asset: Asset, period: Period, constants: EngineConstants) -> float:
    """Daily-cycled throughput in MWh for the period after losses and degradation."""

    return (
        (asset.volume or 0.0)
        * DAYS_IN_YEAR
        * period.fraction
        * degradation_factor(asset, period.year, constants)
        * asset.volume_loss_adjustment
        / 100.0
    )


def calculate_storage_revenue(
    asset: Asset,
    period: Period,
    constants: EngineConstants,
    price_lookup: PriceLookup,
) -> RevenuePeriodResult:
    """Compute one period of storage revenue ($M), booked to the energy streams."""

    year = period.year
    throughput = generation_equivalent(asset, period, constants)
    degradation = degradation_factor(asset, year, constants)

    contracted = 0.0
    contracted_pct = 0.0
    for contract in asset.contracts:
        if not contract.is_active(year):
            continue
        index = indexation_factor(contract.indexation_pct, year, contract.reference_year)
        share = contract.buyers_percentage / 100.0

        if isinstance(contract, FixedRevenueContract):
            contracted += contract.annual_revenue * index * period.fraction * degradation
        elif isinstance(contract, CfdContract):
            contracted += throughput * contract.spread * index * share / 1e6
        elif isinstance(contract, TollingContract):
            # Capacity availability payment; not reduced by degradation.
            contracted += (
                asset.capacity * constants.hours_in_year * contract.hourly_rate * index / 1e6 * period.fraction
            )
        contracted_pct += contract.buyers_percentage

    merchant_pct = max(0.0, 100.0 - contracted_pct)
    merchant = 0.0
    if merchant_pct > 0:
        spread = interpolated_spread(asset, period, constants, price_lookup)
        merchant = throughput * merchant_pct / 100.0 * spread / 1e6

    return RevenuePeriodResult(
        contracted_energy=contracted,
        merchant_energy=merchant,
        energy_percentage=contracted_pct,
        annual_generation=throughput,
    )


__all__ = [
    "DAYS_IN_YEAR",
    "calculate_storage_revenue",
    "duration_brackets",
    "generation_equivalent",
    "interpolated_spread",
    "storage_duration",
]
