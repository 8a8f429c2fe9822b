"""Project-finance cash flows, debt sizing, and equity returns.

Each asset gets an operating cash-flow projection from its start year to
the end of its life. Debt is sized by a bisection search on gearing: a
candidate is feasible when every tenor year covers its debt service by the
blended DSCR target. Two repayment structures are supported:

* ``amortizing`` - level annual payments.
* ``sculpted`` - principal shaped year by year so debt service tracks
  ``CFADS / target``, using the lowest blended target across the tenor.

Portfolios with two or more assets add a refinancing layer that takes out
the outstanding asset-level debt once every asset is operating.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

import pandas as pd

from services.merchant_prices import PriceLookup
from services.portfolio_models import (
    Asset,
    AssetCost,
    DebtTerms,
    PortfolioSnapshot,
    default_portfolio_debt_terms,
)
from services.revenue_core import calculate_asset_revenue
from services.stress_scenarios import apply_stress_scenario, get_scenario
from utils import defaults
from utils.economics import (
    NO_DEBT_SERVICE_DSCR,
    amortization_payment,
    calculate_dscr,
    calculate_irr,
    remaining_balance,
)
from utils.errors import CancellationToken, InvalidInput, NotConverged

# Relative slack when comparing a DSCR against its target.
_DSCR_SLACK = 1e-9


@dataclass(frozen=True)
class ProjectCashFlowYear:
    """One year of CFADS and debt service ($M). ``opex`` is a positive cost."""

    year: int
    revenue: float
    contracted_revenue: float
    merchant_revenue: float
    opex: float
    operating_cash_flow: float
    interest: float = 0.0
    principal: float = 0.0
    refinancing: float = 0.0

    @property
    def debt_service(self) -> float:
        return self.interest + self.principal

    @property
    def equity_cash_flow(self) -> float:
        return self.operating_cash_flow - self.debt_service + self.refinancing

    @property
    def dscr(self) -> float:
        return calculate_dscr(self.operating_cash_flow, self.debt_service)

    def to_dict(self) -> dict[str, float]:
        return {
            "year": self.year,
            "revenue": self.revenue,
            "contractedRevenue": self.contracted_revenue,
            "merchantRevenue": self.merchant_revenue,
            "opex": -self.opex,
            "operatingCashFlow": self.operating_cash_flow,
            "interest": -self.interest,
            "principal": -self.principal,
            "debtService": -self.debt_service,
            "refinancing": self.refinancing,
            "equityCashFlow": self.equity_cash_flow,
            "dscr": self.dscr,
        }


@dataclass(frozen=True)
class DebtSchedule:
    """Annual interest and principal for a loan, indexed from the first repayment year."""

    principal: float
    interest: tuple[float, ...] = ()
    repayments: tuple[float, ...] = ()

    @property
    def debt_service(self) -> tuple[float, ...]:
        return tuple(i + p for i, p in zip(self.interest, self.repayments))

    @property
    def tenor_years(self) -> int:
        return len(self.repayments)

    def balance_after(self, payments_made: int) -> float:
        """Outstanding principal once ``payments_made`` repayments have been made."""

        if payments_made <= 0:
            return self.principal
        return max(0.0, self.principal - sum(self.repayments[:payments_made]))

    def service_in(self, index: int) -> tuple[float, float]:
        if 0 <= index < len(self.repayments):
            return self.interest[index], self.repayments[index]
        return 0.0, 0.0


def required_dscr(contracted_revenue: float, merchant_revenue: float, terms: DebtTerms) -> float:
    """Revenue-weighted blend of the contracted and merchant DSCR targets."""

    total = contracted_revenue + merchant_revenue
    if total == 0:
        return terms.target_dscr_merchant
    return (
        contracted_revenue / total * terms.target_dscr_contract
        + merchant_revenue / total * terms.target_dscr_merchant
    )


def _tenor_window(cash_flows: Sequence[ProjectCashFlowYear], tenor_years: int) -> list[ProjectCashFlowYear]:
    return list(cash_flows[:tenor_years])


def sculpting_target(cash_flows: Sequence[ProjectCashFlowYear], terms: DebtTerms) -> float:
    """Lowest blended DSCR target across the tenor; the binding sculpting constraint."""

    window = _tenor_window(cash_flows, terms.tenor_years)
    if not window:
        return terms.target_dscr_merchant
    return min(required_dscr(cf.contracted_revenue, cf.merchant_revenue, terms) for cf in window)


def amortizing_schedule(principal: float, rate: float, tenor_years: int) -> DebtSchedule:
    payment = amortization_payment(principal, rate, tenor_years)
    balance = principal
    interest: list[float] = []
    repayments: list[float] = []
    for _ in range(tenor_years):
        year_interest = balance * rate
        year_principal = min(balance, payment - year_interest)
        interest.append(year_interest)
        repayments.append(year_principal)
        balance -= year_principal
    return DebtSchedule(principal=principal, interest=tuple(interest), repayments=tuple(repayments))


def _schedule_from_repayments(principal: float, rate: float, repayments: Sequence[float]) -> DebtSchedule:
    balance = principal
    interest: list[float] = []
    for repayment in repayments:
        interest.append(balance * rate)
        balance -= repayment
    return DebtSchedule(principal=principal, interest=tuple(interest), repayments=tuple(repayments))


def sculpted_schedule(
    principal: float,
    rate: float,
    operating_cash_flows: Sequence[float],
    tenor_years: int,
    target_dscr: float,
) -> DebtSchedule:
    """Size principal repayments so debt service tracks ``CFADS / target_dscr``.

    The forward pass repays ``max(0, CFADS / target - interest)`` each year,
    capped at the remaining balance. When that leaves principal outstanding
    at tenor end, every repayment is scaled by a common factor and interest
    is recomputed so the loan fully amortizes.
    """

    flows = [operating_cash_flows[i] if i < len(operating_cash_flows) else 0.0 for i in range(tenor_years)]
    balance = principal
    repayments: list[float] = []
    for cash_flow in flows:
        interest = balance * rate
        repayment = min(balance, max(0.0, cash_flow / target_dscr - interest))
        repayments.append(repayment)
        balance -= repayment

    repaid = sum(repayments)
    if principal > 0 and principal - repaid > 1e-9:
        if repaid > 0:
            factor = principal / repaid
            repayments = [r * factor for r in repayments]
        else:
            repayments = [principal / tenor_years] * tenor_years
    return _schedule_from_repayments(principal, rate, repayments)


def build_debt_schedule(
    principal: float,
    terms: DebtTerms,
    cash_flows: Sequence[ProjectCashFlowYear],
) -> DebtSchedule:
    """Schedule for ``principal`` over the tenor; the tenor must fit inside ``cash_flows``."""

    if terms.tenor_years > len(cash_flows):
        raise InvalidInput(
            f"tenor_years ({terms.tenor_years}) exceeds the {len(cash_flows)} operating years available to repay the debt"
        )
    if terms.structure == "sculpted":
        return sculpted_schedule(
            principal,
            terms.interest_rate,
            [cf.operating_cash_flow for cf in cash_flows],
            terms.tenor_years,
            sculpting_target(cash_flows, terms),
        )
    return amortizing_schedule(principal, terms.interest_rate, terms.tenor_years)


def is_gearing_feasible(
    cash_flows: Sequence[ProjectCashFlowYear],
    debt_base: float,
    gearing: float,
    terms: DebtTerms,
) -> bool:
    """True when every tenor year's DSCR meets its own blended target at ``gearing``.

    Sculpted schedules are shaped to the lowest target across the tenor, so
    merchant-heavy years still have to clear their higher blended target.
    """

    schedule = build_debt_schedule(debt_base * gearing, terms, cash_flows)
    for idx, cf in enumerate(_tenor_window(cash_flows, terms.tenor_years)):
        interest, principal = schedule.service_in(idx)
        dscr = calculate_dscr(cf.operating_cash_flow, interest + principal)
        target = required_dscr(cf.contracted_revenue, cf.merchant_revenue, terms)
        if dscr < target * (1.0 - _DSCR_SLACK):
            return False
    return True


def solve_gearing(
    cash_flows: Sequence[ProjectCashFlowYear],
    debt_base: float,
    terms: DebtTerms,
    tolerance: float = defaults.GEARING_TOLERANCE,
    max_iterations: int = defaults.GEARING_MAX_ITERATIONS,
    cancel_token: CancellationToken | None = None,
    label: str = "asset",
) -> float | NotConverged:
    """Bisection search for the highest feasible gearing in ``[0, max_gearing]``.

    ``debt_base`` is the amount gearing applies to: capex for an asset, the
    outstanding balance being refinanced for the portfolio layer.
    """

    logger = logging.getLogger(__name__)
    low, high = 0.0, terms.max_gearing
    iterations = 0
    while high - low > tolerance and iterations < max_iterations:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled("Gearing solver")
        mid = (low + high) / 2.0
        feasible = is_gearing_feasible(cash_flows, debt_base, mid, terms)
        if iterations % 10 == 0:
            logger.debug("Gearing solver [%s] iteration %s: gearing=%.5f feasible=%s", label, iterations, mid, feasible)
        if feasible:
            low = mid
        else:
            high = mid
        iterations += 1

    estimate = min((low + high) / 2.0, terms.max_gearing)
    if high - low > tolerance:
        return NotConverged(
            solver="gearing",
            iterations=iterations,
            last_estimate=estimate,
            reason=f"bracket width {high - low:.2e} above tolerance {tolerance:.0e}",
        )
    return estimate


def build_cash_flows(
    asset: Asset,
    cost: AssetCost,
    snapshot: PortfolioSnapshot,
    price_lookup: PriceLookup,
    scenario: str = "base",
) -> list[ProjectCashFlowYear]:
    """Revenue, escalated opex, and CFADS for every operating year."""

    constants = snapshot.constants
    stress = get_scenario(scenario)
    rows = []
    for idx, year in enumerate(asset.operating_years()):
        revenue = apply_stress_scenario(
            calculate_asset_revenue(asset, year, constants, price_lookup), stress, constants
        )
        opex = cost.opex * (1.0 + cost.opex_escalation_pct / 100.0) ** idx
        rows.append(
            ProjectCashFlowYear(
                year=year,
                revenue=revenue.total,
                contracted_revenue=revenue.contracted,
                merchant_revenue=revenue.merchant,
                opex=opex,
                operating_cash_flow=revenue.total - opex,
            )
        )
    return rows


def _with_debt(
    cash_flows: Sequence[ProjectCashFlowYear], schedule: DebtSchedule, offset: int = 0
) -> list[ProjectCashFlowYear]:
    rows = []
    for idx, cf in enumerate(cash_flows):
        interest, principal = schedule.service_in(idx - offset)
        rows.append(replace(cf, interest=interest, principal=principal))
    return rows


def minimum_dscr(cash_flows: Sequence[ProjectCashFlowYear]) -> float | None:
    """Lowest DSCR across years with debt service; ``None`` when no debt is due."""

    values = [cf.dscr for cf in cash_flows if cf.debt_service > 0]
    values = [value for value in values if value != NO_DEBT_SERVICE_DSCR]
    return min(values) if values else None


@dataclass(frozen=True)
class FinanceMetrics:
    """Debt and equity outcomes for an asset or the refinanced portfolio."""

    name: str
    capex: float
    gearing: float
    debt_amount: float
    schedule: DebtSchedule
    cash_flows: tuple[ProjectCashFlowYear, ...]
    equity_cash_flows: tuple[float, ...]
    gearing_solution: float | NotConverged | None = None
    refinance_year: int | None = None
    refinanced_balance: float = 0.0

    @property
    def annual_debt_service(self) -> float:
        """Debt service in the first repayment year."""

        return self.schedule.debt_service[0] if self.schedule.tenor_years else 0.0

    @property
    def min_dscr(self) -> float | None:
        return minimum_dscr(self.cash_flows)

    @property
    def equity_irr(self) -> float | NotConverged:
        return calculate_irr(self.equity_cash_flows)

    def cash_flow_frame(self) -> pd.DataFrame:
        return pd.DataFrame([cf.to_dict() for cf in self.cash_flows])

    def to_dict(self) -> dict[str, Any]:
        irr = self.equity_irr
        solution = self.gearing_solution
        return {
            "name": self.name,
            "capex": self.capex,
            "calculatedGearing": self.gearing,
            "gearingConverged": not isinstance(solution, NotConverged),
            "debtAmount": self.debt_amount,
            "annualDebtService": self.annual_debt_service,
            "minDSCR": self.min_dscr,
            "equityIRR": None if isinstance(irr, NotConverged) else irr,
            "refinanceYear": self.refinance_year,
            "refinancedBalance": self.refinanced_balance,
            "cashFlows": [cf.to_dict() for cf in self.cash_flows],
            "equityCashFlows": list(self.equity_cash_flows),
        }


def _resolve_gearing(solution: float | NotConverged | None, terms: DebtTerms) -> float:
    if solution is None:
        return terms.gearing
    if isinstance(solution, NotConverged):
        return solution.last_estimate if solution.last_estimate is not None else 0.0
    return solution


def calculate_asset_finance(
    asset: Asset,
    cost: AssetCost,
    snapshot: PortfolioSnapshot,
    price_lookup: PriceLookup,
    scenario: str = "base",
    solve: bool = False,
    cancel_token: CancellationToken | None = None,
) -> FinanceMetrics:
    cash_flows = build_cash_flows(asset, cost, snapshot, price_lookup, scenario)
    terms = cost.debt
    solution = (
        solve_gearing(cash_flows, cost.capex, terms, cancel_token=cancel_token, label=asset.name) if solve else None
    )
    gearing = _resolve_gearing(solution, terms)
    debt_amount = cost.capex * gearing
    schedule = build_debt_schedule(debt_amount, terms, cash_flows)
    flows = _with_debt(cash_flows, schedule)
    return FinanceMetrics(
        name=asset.name,
        capex=cost.capex,
        gearing=gearing,
        debt_amount=debt_amount,
        schedule=schedule,
        cash_flows=tuple(flows),
        equity_cash_flows=(-cost.capex * (1.0 - gearing),) + tuple(cf.equity_cash_flow for cf in flows),
        gearing_solution=solution,
    )


def outstanding_balance(metrics: FinanceMetrics, terms: DebtTerms, payments_made: int) -> float:
    """Balance left on an asset loan; level-payment loans use the closed form."""

    if terms.structure == "amortizing":
        return remaining_balance(metrics.debt_amount, terms.interest_rate, terms.tenor_years, payments_made)
    return metrics.schedule.balance_after(payments_made)


def calculate_portfolio_finance(
    snapshot: PortfolioSnapshot,
    asset_metrics: dict[str, FinanceMetrics],
    solve: bool = False,
    cancel_token: CancellationToken | None = None,
) -> FinanceMetrics | None:
    """Refinance asset debt at portfolio level once every asset is operating.

    Years before the refinancing year carry the asset-level debt service.
    From that year the outstanding asset balances are repaid and replaced by
    portfolio debt sized at ``gearing x outstanding balance``, serviced from
    the combined cash flows. Any gap between the two is an equity flow in
    the refinancing year.
    """

    if len(snapshot.assets) < 2:
        return None
    terms = snapshot.portfolio_cost.debt if snapshot.portfolio_cost is not None else default_portfolio_debt_terms()

    refinance_year = max(asset.start_year for asset in snapshot.assets)
    first_year = min(asset.start_year for asset in snapshot.assets)
    last_year = max(asset.end_year for asset in snapshot.assets) - 1

    outstanding = 0.0
    for asset in snapshot.assets:
        metrics = asset_metrics[asset.name]
        outstanding += outstanding_balance(
            metrics, snapshot.cost_for(asset).debt, refinance_year - asset.start_year
        )

    combined: list[ProjectCashFlowYear] = []
    for year in range(first_year, last_year + 1):
        rows = [
            cf for metrics in asset_metrics.values() for cf in metrics.cash_flows if cf.year == year
        ]
        before_refinance = year < refinance_year
        combined.append(
            ProjectCashFlowYear(
                year=year,
                revenue=sum(cf.revenue for cf in rows),
                contracted_revenue=sum(cf.contracted_revenue for cf in rows),
                merchant_revenue=sum(cf.merchant_revenue for cf in rows),
                opex=sum(cf.opex for cf in rows),
                operating_cash_flow=sum(cf.operating_cash_flow for cf in rows),
                interest=sum(cf.interest for cf in rows) if before_refinance else 0.0,
                principal=sum(cf.principal for cf in rows) if before_refinance else 0.0,
            )
        )

    offset = refinance_year - first_year
    refinance_window = combined[offset:]
    solution = (
        solve_gearing(refinance_window, outstanding, terms, cancel_token=cancel_token, label="portfolio")
        if solve
        else None
    )
    gearing = _resolve_gearing(solution, terms)
    debt_amount = outstanding * gearing
    schedule = build_debt_schedule(debt_amount, terms, refinance_window)

    flows = combined[:offset]
    for idx, cf in enumerate(refinance_window):
        interest, principal = schedule.service_in(idx)
        refinancing = debt_amount - outstanding if idx == 0 else 0.0
        flows.append(replace(cf, interest=interest, principal=principal, refinancing=refinancing))

    total_capex = sum(metrics.capex for metrics in asset_metrics.values())
    initial_debt = sum(metrics.debt_amount for metrics in asset_metrics.values())
    return FinanceMetrics(
        name=snapshot.name,
        capex=total_capex,
        gearing=gearing,
        debt_amount=debt_amount,
        schedule=schedule,
        cash_flows=tuple(flows),
        equity_cash_flows=(-(total_capex - initial_debt),) + tuple(cf.equity_cash_flow for cf in flows),
        gearing_solution=solution,
        refinance_year=refinance_year,
        refinanced_balance=outstanding,
    )


@dataclass(frozen=True)
class ProjectFinanceResult:
    assets: dict[str, FinanceMetrics] = field(default_factory=dict)
    portfolio: FinanceMetrics | None = None

    def apply_to(self, snapshot: PortfolioSnapshot) -> PortfolioSnapshot:
        """Return a snapshot whose debt terms carry the solved gearings."""

        costs = dict(snapshot.asset_costs)
        for asset in snapshot.assets:
            metrics = self.assets.get(asset.name)
            if metrics is None:
                continue
            cost = snapshot.cost_for(asset)
            costs[asset.name] = replace(cost, debt=replace(cost.debt, calculated_gearing=metrics.gearing))
        portfolio_cost = snapshot.portfolio_cost
        if self.portfolio is not None and portfolio_cost is not None:
            portfolio_cost = replace(
                portfolio_cost, debt=replace(portfolio_cost.debt, calculated_gearing=self.portfolio.gearing)
            )
        return replace(snapshot, asset_costs=costs, portfolio_cost=portfolio_cost)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {name: metrics.to_dict() for name, metrics in self.assets.items()}
        if self.portfolio is not None:
            payload["portfolio"] = self.portfolio.to_dict()
        return payload


def calculate_project_metrics(
    snapshot: PortfolioSnapshot,
    price_lookup: PriceLookup,
    scenario: str = "base",
    solve: bool = False,
    cancel_token: CancellationToken | None = None,
) -> ProjectFinanceResult:
    """Finance metrics for every asset and, with two or more assets, the portfolio."""

    asset_metrics = {
        asset.name: calculate_asset_finance(
            asset,
            snapshot.cost_for(asset),
            snapshot,
            price_lookup,
            scenario=scenario,
            solve=solve,
            cancel_token=cancel_token,
        )
        for asset in snapshot.assets
    }
    portfolio = calculate_portfolio_finance(snapshot, asset_metrics, solve=solve, cancel_token=cancel_token)
    return ProjectFinanceResult(assets=asset_metrics, portfolio=portfolio)


__all__ = [
    "DebtSchedule",
    "FinanceMetrics",
    "ProjectCashFlowYear",
    "ProjectFinanceResult",
    "amortizing_schedule",
    "build_cash_flows",
    "build_debt_schedule",
    "calculate_asset_finance",
    "calculate_portfolio_finance",
    "calculate_project_metrics",
    "is_gearing_feasible",
    "minimum_dscr",
    "outstanding_balance",
    "required_dscr",
    "sculpted_schedule",
    "sculpting_target",
    "solve_gearing",
]
