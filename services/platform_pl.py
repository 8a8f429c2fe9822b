"""Platform profit & loss and the dividend cash-flow waterfall.

Asset rows are built from the same stressed revenue and escalated opex as
the project-finance cash flows. Interest and principal come from each
asset's debt schedule, or from schedules rebuilt on the portfolio debt terms
when ``use_portfolio_debt`` is set. Platform overheads are charged once at
platform level.

The quarterly view prices revenue per quarter and spreads each year's
costs, depreciation, and debt service evenly over its four quarters.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Sequence

import pandas as pd

from services.merchant_prices import PriceLookup
from services.portfolio_models import PortfolioSnapshot, default_portfolio_debt_terms
from services.project_finance import build_debt_schedule, calculate_asset_finance
from services.revenue_core import calculate_asset_revenue
from services.stress_scenarios import apply_stress_scenario, get_scenario
from utils import defaults
from utils.errors import InvalidInput


@dataclass(frozen=True)
class PLYear:
    """One year of P&L ($M). Costs are positive magnitudes."""

    year: int
    revenue: float = 0.0
    asset_opex: float = 0.0
    platform_opex: float = 0.0
    depreciation: float = 0.0
    interest: float = 0.0
    principal_repayment: float = 0.0
    tax_rate_pct: float = 0.0
    quarter: int | None = None

    @property
    def ebitda(self) -> float:
        return self.revenue - self.asset_opex - self.platform_opex

    @property
    def ebt(self) -> float:
        return self.ebitda - self.depreciation - self.interest

    @property
    def tax(self) -> float:
        return max(0.0, self.ebt) * self.tax_rate_pct / 100.0

    @property
    def npat(self) -> float:
        return self.ebt - self.tax

    def to_dict(self) -> dict[str, Any]:
        row: dict[str, Any] = {"year": self.year}
        if self.quarter is not None:
            row.update(quarter=self.quarter, period=f"{self.year}-Q{self.quarter}")
        row.update(
            {
                "revenue": self.revenue,
                "assetOpex": -self.asset_opex,
                "platformOpex": -self.platform_opex,
                "ebitda": self.ebitda,
                "depreciation": -self.depreciation,
                "interest": -self.interest,
                "principalRepayment": -self.principal_repayment,
                "ebt": self.ebt,
                "tax": -self.tax,
                "npat": self.npat,
            }
        )
        return row


@dataclass(frozen=True)
class PlatformPL:
    assets: dict[str, tuple[PLYear, ...]]
    platform: tuple[PLYear, ...]
    quarters: tuple[PLYear, ...] = ()

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([row.to_dict() for row in self.platform])


@dataclass(frozen=True)
class CashFlowYear:
    year: int
    operating_cash_flow: float
    tax: float
    debt_service: float
    dividend: float
    cash_balance: float
    retained_earnings: float

    @property
    def fcfe(self) -> float:
        return self.operating_cash_flow - self.tax - self.debt_service

    @property
    def net_cash_flow(self) -> float:
        return self.fcfe - self.dividend

    def to_dict(self) -> dict[str, float]:
        return {
            "year": self.year,
            "operatingCashFlow": self.operating_cash_flow,
            "tax": -self.tax,
            "debtService": -self.debt_service,
            "fcfe": self.fcfe,
            "dividend": -self.dividend,
            "netCashFlow": self.net_cash_flow,
            "cashBalance": self.cash_balance,
            "retainedEarnings": self.retained_earnings,
        }


def calculate_platform_pl(
    snapshot: PortfolioSnapshot,
    price_lookup: PriceLookup,
    years: Sequence[int] | None = None,
    scenario: str = "base",
    use_portfolio_debt: bool = False,
    quarterly: bool = True,
) -> PlatformPL:
    """Annual P&L per asset plus the consolidated platform view.

    With ``quarterly`` set, :attr:`PlatformPL.quarters` also carries the
    platform P&L for each quarter of the requested years.
    """

    constants = snapshot.constants
    stress = get_scenario(scenario)
    years = list(years) if years is not None else constants.analysis_years()
    if not years:
        return PlatformPL(assets={}, platform=())
    tax_rate = constants.corporate_tax_rate_pct
    if not 0 <= tax_rate <= 100:
        raise InvalidInput("corporate_tax_rate_pct must be between 0 and 100")

    portfolio_terms = None
    if use_portfolio_debt:
        portfolio_terms = (
            snapshot.portfolio_cost.debt if snapshot.portfolio_cost is not None else default_portfolio_debt_terms()
        )

    asset_rows: dict[str, tuple[PLYear, ...]] = {}
    asset_quarters: dict[str, list[PLYear]] = {}
    for asset in snapshot.assets:
        cost = snapshot.cost_for(asset)
        metrics = calculate_asset_finance(asset, cost, snapshot, price_lookup, scenario=scenario)
        schedule = metrics.schedule
        if portfolio_terms is not None:
            schedule = build_debt_schedule(cost.capex * portfolio_terms.gearing, portfolio_terms, metrics.cash_flows)

        depreciation_years = constants.depreciation_years.get(
            asset.type,
            constants.depreciation_years.get("default", defaults.DEFAULT_DEPRECIATION_YEARS["default"]),
        )
        annual_depreciation = cost.capex / depreciation_years if depreciation_years > 0 else 0.0
        by_year = {cf.year: cf for cf in metrics.cash_flows}

        rows = []
        for year in years:
            cf = by_year.get(year)
            if cf is None:
                rows.append(PLYear(year=year, tax_rate_pct=tax_rate))
                continue
            interest, principal = schedule.service_in(year - asset.start_year)
            rows.append(
                PLYear(
                    year=year,
                    revenue=cf.revenue,
                    asset_opex=cf.opex,
                    depreciation=annual_depreciation if year < asset.start_year + depreciation_years else 0.0,
                    interest=interest,
                    principal_repayment=principal,
                    tax_rate_pct=tax_rate,
                )
            )
        asset_rows[asset.name] = tuple(rows)

        if quarterly:
            quarters = []
            for row in rows:
                revenues = [0.0] * 4
                if row.year in by_year:
                    revenues = [
                        apply_stress_scenario(
                            calculate_asset_revenue(asset, f"{row.year}-Q{quarter}", constants, price_lookup),
                            stress,
                            constants,
                        ).total
                        for quarter in range(1, 5)
                    ]
                quarters.extend(_quarter_rows(row, revenues))
            asset_quarters[asset.name] = quarters

    platform_rows = []
    for idx, year in enumerate(years):
        per_asset = [rows[idx] for rows in asset_rows.values()]
        platform_rows.append(
            PLYear(
                year=year,
                revenue=sum(row.revenue for row in per_asset),
                asset_opex=sum(row.asset_opex for row in per_asset),
                platform_opex=constants.platform_opex * (1.0 + constants.platform_opex_escalation_pct / 100.0) ** idx,
                depreciation=sum(row.depreciation for row in per_asset),
                interest=sum(row.interest for row in per_asset),
                principal_repayment=sum(row.principal_repayment for row in per_asset),
                tax_rate_pct=tax_rate,
            )
        )

    platform_quarters: list[PLYear] = []
    if quarterly:
        for idx, row in enumerate(platform_rows):
            revenues = [
                sum(rows[idx * 4 + quarter].revenue for rows in asset_quarters.values()) for quarter in range(4)
            ]
            platform_quarters.extend(_quarter_rows(row, revenues))
    return PlatformPL(assets=asset_rows, platform=tuple(platform_rows), quarters=tuple(platform_quarters))


def _quarter_rows(row: PLYear, revenues: Sequence[float]) -> list[PLYear]:
    return [
        replace(
            row,
            quarter=quarter,
            revenue=revenue,
            asset_opex=row.asset_opex / 4.0,
            platform_opex=row.platform_opex / 4.0,
            depreciation=row.depreciation / 4.0,
            interest=row.interest / 4.0,
            principal_repayment=row.principal_repayment / 4.0,
        )
        for quarter, revenue in enumerate(revenues, start=1)
    ]


def calculate_platform_cash_flow(
    platform: Sequence[PLYear],
    dividend_policy_pct: float = defaults.DEFAULT_DIVIDEND_POLICY_PCT,
    minimum_cash_balance: float = defaults.DEFAULT_MINIMUM_CASH_BALANCE,
) -> list[CashFlowYear]:
    """Free cash flow to equity, dividends, and the running cash balance.

    The balance opens at ``minimum_cash_balance``. Dividends are paid only in
    profitable years, at ``dividend_policy_pct`` of NPAT, and never draw the
    balance below the minimum.
    """

    if not 0 <= dividend_policy_pct <= 100:
        raise InvalidInput("dividend_policy_pct must be between 0 and 100")
    if minimum_cash_balance < 0:
        raise InvalidInput("minimum_cash_balance must be non-negative")

    cash = minimum_cash_balance
    retained = 0.0
    rows = []
    for pl in platform:
        debt_service = pl.interest + pl.principal_repayment
        fcfe = pl.ebitda - pl.tax - debt_service
        available = cash + fcfe
        dividend = 0.0
        if pl.npat > 0 and available > minimum_cash_balance:
            dividend = max(0.0, min(pl.npat * dividend_policy_pct / 100.0, available - minimum_cash_balance))
        cash = available - dividend
        retained += pl.npat - dividend
        rows.append(
            CashFlowYear(
                year=pl.year,
                operating_cash_flow=pl.ebitda,
                tax=pl.tax,
                debt_service=debt_service,
                dividend=dividend,
                cash_balance=cash,
                retained_earnings=retained,
            )
        )
    return rows


def cash_flow_frame(rows: Sequence[CashFlowYear]) -> pd.DataFrame:
    return pd.DataFrame([row.to_dict() for row in rows])


def platform_summary(pl: PlatformPL, cash_flows: Sequence[CashFlowYear]) -> dict[str, Any]:
    return {
        "platform": [row.to_dict() for row in pl.platform],
        "assets": {name: [row.to_dict() for row in rows] for name, rows in pl.assets.items()},
        "quarters": [row.to_dict() for row in pl.quarters],
        "cashFlow": [row.to_dict() for row in cash_flows],
    }


__all__ = [
    "CashFlowYear",
    "PLYear",
    "PlatformPL",
    "calculate_platform_cash_flow",
    "calculate_platform_pl",
    "cash_flow_frame",
    "platform_summary",
]
