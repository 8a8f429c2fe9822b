"""Net present value of contracted and merchant cash flows at separate discount rates."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pandas as pd

from services.merchant_prices import PriceLookup
from services.portfolio_models import PortfolioSnapshot
from services.revenue_core import calculate_asset_revenue
from services.stress_scenarios import apply_stress_scenario, get_scenario
from utils.economics import _discount_factor
from utils.errors import InvalidInput


@dataclass(frozen=True)
class ValuationYear:
    """Undiscounted flows and present values ($M) for one year.

    Fixed and variable costs are allocated to the contracted and merchant
    streams in proportion to their revenue (evenly when there is no revenue)
    so each stream's net cash flow can be discounted at its own rate.
    Terminal value is treated as merchant exposure.
    """

    year: int
    contracted_revenue: float
    merchant_revenue: float
    fixed_costs: float
    variable_costs: float
    terminal_value: float
    contracted_present_value: float
    merchant_present_value: float

    @property
    def total_revenue(self) -> float:
        return self.contracted_revenue + self.merchant_revenue

    @property
    def total_costs(self) -> float:
        return self.fixed_costs + self.variable_costs

    @property
    def net_cash_flow(self) -> float:
        return self.total_revenue - self.total_costs

    @property
    def present_value(self) -> float:
        return self.contracted_present_value + self.merchant_present_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "contractRevenue": self.contracted_revenue,
            "merchantRevenue": self.merchant_revenue,
            "totalRevenue": self.total_revenue,
            "fixedCosts": self.fixed_costs,
            "variableCosts": self.variable_costs,
            "totalCosts": self.total_costs,
            "terminalValue": self.terminal_value,
            "netCashFlow": self.net_cash_flow,
            "contractPresentValue": self.contracted_present_value,
            "merchantPresentValue": self.merchant_present_value,
            "presentValue": self.present_value,
        }


@dataclass(frozen=True)
class ValuationResult:
    years: tuple[ValuationYear, ...]
    contract_discount_rate: float
    merchant_discount_rate: float

    @property
    def npv(self) -> float:
        return sum(row.present_value for row in self.years)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([row.to_dict() for row in self.years])


def calculate_valuation(
    snapshot: PortfolioSnapshot,
    price_lookup: PriceLookup,
    scenario: str = "base",
    asset_name: str | None = None,
    contract_discount_rate: float | None = None,
    merchant_discount_rate: float | None = None,
) -> ValuationResult:
    """Discount each asset's flows from the analysis start year to the end of its life.

    Year ``analysis_start_year`` is discounted by one full period. Fixed and
    variable costs escalate by their own indices from the same year. Pass
    ``asset_name`` to value a single asset instead of the whole portfolio.
    """

    constants = snapshot.constants
    contract_rate = constants.contract_discount_rate if contract_discount_rate is None else contract_discount_rate
    merchant_rate = constants.merchant_discount_rate if merchant_discount_rate is None else merchant_discount_rate
    if contract_rate < 0 or merchant_rate < 0:
        raise InvalidInput("discount rates must be non-negative")

    assets = snapshot.assets
    if asset_name is not None:
        assets = tuple(asset for asset in assets if asset.name == asset_name)
        if not assets:
            raise InvalidInput(f"Unknown asset {asset_name!r}")

    stress = get_scenario(scenario)
    start_year = constants.analysis_start_year
    last_year = max((asset.end_year - 1 for asset in assets), default=start_year - 1)

    rows = []
    for year in range(start_year, last_year + 1):
        contracted = merchant = fixed = variable = terminal = 0.0
        index_year = year - start_year
        for asset in assets:
            if not asset.start_year <= year < asset.end_year:
                continue
            cost = snapshot.cost_for(asset)
            revenue = apply_stress_scenario(
                calculate_asset_revenue(asset, year, constants, price_lookup), stress, constants
            )
            contracted += revenue.contracted
            merchant += revenue.merchant
            fixed += cost.fixed_cost * (1.0 + cost.fixed_cost_index_pct / 100.0) ** index_year
            variable += (
                cost.variable_cost * asset.capacity * (1.0 + cost.variable_cost_index_pct / 100.0) ** index_year
            )
            if year == asset.end_year - 1:
                terminal += cost.terminal_value

        costs = fixed + variable
        total = contracted + merchant
        contract_share = contracted / total if total else 0.5
        period = year - start_year + 1
        rows.append(
            ValuationYear(
                year=year,
                contracted_revenue=contracted,
                merchant_revenue=merchant,
                fixed_costs=fixed,
                variable_costs=variable,
                terminal_value=terminal,
                contracted_present_value=(contracted - costs * contract_share)
                * _discount_factor(contract_rate, period),
                merchant_present_value=(merchant - costs * (1.0 - contract_share) + terminal)
                * _discount_factor(merchant_rate, period),
            )
        )

    return ValuationResult(
        years=tuple(rows),
        contract_discount_rate=contract_rate,
        merchant_discount_rate=merchant_rate,
    )


__all__ = ["ValuationResult", "ValuationYear", "calculate_valuation"]
