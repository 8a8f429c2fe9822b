from __future__ import annotations

import logging
import uuid
from threading import Lock
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

from services.earnings_risk import EarRequest, run_earnings_at_risk
from services.merchant_prices import MerchantPriceCurve, PriceLookup
from services.platform_pl import calculate_platform_cash_flow, calculate_platform_pl, platform_summary
from services.portfolio_models import PortfolioSnapshot, check_contract_allocation
from services.portfolio_revenue import aggregate_portfolio_revenue
from services.project_finance import calculate_project_metrics
from services.revenue_core import calculate_asset_revenue, engine_price_lookup
from services.stress_scenarios import get_scenario
from services.valuation import calculate_valuation
from utils.errors import InvalidInput
from utils.periods import quarter_periods, year_range
from utils.settings import load_settings

_SETTINGS = load_settings()
logging.basicConfig(level=_SETTINGS.log_level)


class PriceRow(BaseModel):
    profile: str
    type: str
    state: str
    time: str
    price: float


class PortfolioPayload(BaseModel):
    """JSON portfolio as exported by the dashboard (assets, assetCosts, constants)."""

    assets: Union[Dict[str, Dict[str, Any]], List[Dict[str, Any]]] = Field(default_factory=list)
    assetCosts: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    constants: Dict[str, Any] = Field(default_factory=dict)
    portfolioName: Optional[str] = None

    def build(self) -> PortfolioSnapshot:
        try:
            return PortfolioSnapshot.from_dict(self.model_dump())
        except InvalidInput as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc


class PriceSource(BaseModel):
    price_rows: Optional[List[PriceRow]] = None
    price_upload_id: Optional[str] = None

    @model_validator(mode="after")
    def _require_one_source(self) -> "PriceSource":
        if self.price_rows is None and self.price_upload_id is None:
            raise ValueError("Provide price_rows or price_upload_id.")
        return self


class EngineRequest(BaseModel):
    portfolio: PortfolioPayload = Field(default_factory=PortfolioPayload)
    prices: PriceSource
    scenario: str = "base"

    @field_validator("scenario")
    @classmethod
    def _validate_scenario(cls, value: str) -> str:
        try:
            return get_scenario(value).name
        except InvalidInput as exc:
            raise ValueError(str(exc)) from exc


class RevenueRequest(EngineRequest):
    periods: Optional[List[Union[int, str]]] = None
    granularity: Literal["yearly", "quarterly"] = "yearly"


class EarPayload(EngineRequest):
    trials: int = _SETTINGS.monte_carlo_trials
    seed: Optional[int] = None
    year: Optional[int] = None
    start_year: Optional[int] = None
    end_year: Optional[int] = None

    def build(self) -> EarRequest:
        try:
            return EarRequest(
                trials=self.trials,
                seed=self.seed,
                concurrency=_SETTINGS.ear_concurrency,
                max_workers=_SETTINGS.ear_max_workers,
                start_year=self.start_year,
                end_year=self.end_year,
            )
        except InvalidInput as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc


class ProjectFinancePayload(EngineRequest):
    solve_gearing: bool = True


class ValuationPayload(EngineRequest):
    asset_name: Optional[str] = None


class PlatformPayload(EngineRequest):
    use_portfolio_debt: bool = False


class PriceUploadPayload(BaseModel):
    name: Optional[str] = None
    rows: List[PriceRow]

    @field_validator("rows")
    @classmethod
    def _non_empty(cls, value: List[PriceRow]) -> List[PriceRow]:
        if not value:
            raise ValueError("rows cannot be empty.")
        return value


class PriceCurveStore:
    """In-memory cache of parsed merchant price curves keyed by upload id."""

    def __init__(self) -> None:
        self._curves: Dict[str, MerchantPriceCurve] = {}
        self._lock = Lock()

    def store(self, curve: MerchantPriceCurve, name: Optional[str] = None) -> str:
        upload_id = name or str(uuid.uuid4())
        with self._lock:
            self._curves[upload_id] = curve
        return upload_id

    def get(self, upload_id: str) -> MerchantPriceCurve:
        with self._lock:
            if upload_id not in self._curves:
                raise HTTPException(status_code=404, detail=f"Price upload '{upload_id}' not found.")
            return self._curves[upload_id]


def _curve_from_rows(rows: List[PriceRow]) -> MerchantPriceCurve:
    try:
        return MerchantPriceCurve.from_records([row.model_dump() for row in rows])
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _resolve_inputs(request: EngineRequest) -> Tuple[PortfolioSnapshot, PriceLookup]:
    snapshot = request.portfolio.build()
    if request.prices.price_rows is not None:
        curve = _curve_from_rows(request.prices.price_rows)
    else:
        curve = price_curves.get(request.prices.price_upload_id)
    return snapshot, engine_price_lookup(curve.price, snapshot.constants)


def _allocation_warnings(snapshot: PortfolioSnapshot) -> List[str]:
    warnings: List[str] = []
    for asset in snapshot.assets:
        warnings.extend(check_contract_allocation(asset))
    return warnings


price_curves = PriceCurveStore()

app = FastAPI(
    title="RenewLab API",
    description="Revenue, risk, project-finance and valuation engine for renewable portfolios.",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_SETTINGS.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness probe for container orchestrators."""
    return {"status": "ok"}


@app.post("/prices")
def upload_prices(payload: PriceUploadPayload) -> Dict[str, str]:
    """Parse monthly merchant price rows once and cache the aggregated curve."""

    return {"upload_id": price_curves.store(_curve_from_rows(payload.rows), payload.name)}


@app.post("/revenue")
def revenue(request: RevenueRequest) -> Dict[str, Any]:
    """Per-asset revenue for each requested period."""

    snapshot, lookup = _resolve_inputs(request)
    constants = snapshot.constants
    periods = request.periods
    if periods is None:
        years = year_range(constants.analysis_start_year, constants.analysis_end_year)
        periods = quarter_periods(years) if request.granularity == "quarterly" else years

    rows: List[Dict[str, Any]] = []
    try:
        for asset in snapshot.assets:
            for period in periods:
                result = calculate_asset_revenue(asset, period, constants, lookup)
                rows.append({"asset": asset.name, "timeInterval": str(period), **result.to_dict()})
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"warnings": _allocation_warnings(snapshot), "rows": rows}


@app.post("/portfolio/revenue")
def portfolio_revenue(request: RevenueRequest) -> Dict[str, Any]:
    """Portfolio totals per period with generation-weighted contract shares."""

    snapshot, lookup = _resolve_inputs(request)
    constants = snapshot.constants
    periods = request.periods
    if periods is None:
        years = year_range(constants.analysis_start_year, constants.analysis_end_year)
        periods = quarter_periods(years) if request.granularity == "quarterly" else years
    try:
        rows = aggregate_portfolio_revenue(snapshot.assets, periods, constants, lookup)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"rows": [row.to_dict() for row in rows]}


@app.post("/ear")
def earnings_at_risk(request: EarPayload) -> Dict[str, Any]:
    """Monte Carlo earnings-at-risk metrics, stress tests, and histogram for one year."""

    snapshot, lookup = _resolve_inputs(request)
    try:
        result = run_earnings_at_risk(snapshot.assets, snapshot.constants, lookup, request.build())
        year = request.year if request.year is not None else result.years[0]
        return {
            "year": year,
            "metrics": result.metrics(year).to_dict(),
            "stressTests": [
                {"name": s.name, "description": s.description, "changes": s.changes, "revenue": s.revenue}
                for s in result.stress_tests(year)
            ],
            "histogram": [
                {"revenue": b.revenue, "frequency": b.frequency, "binStart": b.bin_start, "binEnd": b.bin_end}
                for b in result.histogram(year)
            ],
            "byYear": result.metrics_frame().to_dict(orient="records"),
        }
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/project-finance")
def project_finance(request: ProjectFinancePayload) -> Dict[str, Any]:
    """Cash flows, gearing, DSCR, and equity IRR per asset and for the portfolio."""

    snapshot, lookup = _resolve_inputs(request)
    try:
        result = calculate_project_metrics(snapshot, lookup, scenario=request.scenario, solve=request.solve_gearing)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return result.to_dict()


@app.post("/valuation")
def valuation(request: ValuationPayload) -> Dict[str, Any]:
    """NPV with contracted and merchant flows discounted at separate rates."""

    snapshot, lookup = _resolve_inputs(request)
    try:
        result = calculate_valuation(snapshot, lookup, scenario=request.scenario, asset_name=request.asset_name)
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"npv": result.npv, "years": result.to_frame().to_dict(orient="records")}


@app.post("/platform/pl")
def platform_pl(request: PlatformPayload) -> Dict[str, Any]:
    """Platform P&L and the dividend cash-flow waterfall."""

    snapshot, lookup = _resolve_inputs(request)
    constants = snapshot.constants
    try:
        pl = calculate_platform_pl(
            snapshot, lookup, scenario=request.scenario, use_portfolio_debt=request.use_portfolio_debt
        )
        cash_flows = calculate_platform_cash_flow(
            pl.platform, constants.dividend_policy_pct, constants.minimum_cash_balance
        )
    except InvalidInput as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return platform_summary(pl, cash_flows)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=False)
