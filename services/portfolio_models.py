"""Value records describing assets, contracts, cost assumptions, and engine constants.

Every record is an immutable dataclass. Portfolio edits go through the pure
``with_*`` helpers at the bottom of the module, which return a new
:class:`PortfolioSnapshot` instead of mutating the one callers hold.

Optional numeric inputs follow one resolution policy: ``None`` and empty
strings mean "absent" and resolve to the documented default for that field,
while text that does not parse as a number raises :class:`InvalidInput`.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Iterable, Mapping, Union

from utils import defaults
from utils.economics import _ensure_non_negative_finite, _ensure_positive_finite
from utils.errors import InvalidInput

RENEWABLE_TYPES = ("solar", "wind")
STORAGE_TYPE = "storage"
DEBT_STRUCTURES = ("amortizing", "sculpted")

_CONTRACT_TYPE_ALIASES = {
    "bundled": "bundled",
    "green": "green",
    "energy": "energy",
    "black": "energy",
    "fixed": "fixed",
    "cfd": "cfd",
    "tolling": "tolling",
}
RENEWABLE_CONTRACT_TYPES = ("bundled", "green", "energy", "fixed")
STORAGE_CONTRACT_TYPES = ("fixed", "cfd", "tolling")


# --------------------------------------------------------------------------- #
# Parsing helpers
# --------------------------------------------------------------------------- #


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _optional_float(value: Any, name: str) -> float | None:
    """Parse an optional number, treating ``None`` and blank text as absent."""

    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    if isinstance(value, bool):
        raise InvalidInput(f"{name} must be numeric, got {value!r}")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"{name} must be numeric, got {value!r}") from exc
    if not math.isfinite(parsed):
        raise InvalidInput(f"{name} must be a finite number")
    return parsed


def _optional_int(value: Any, name: str) -> int | None:
    parsed = _optional_float(value, name)
    return None if parsed is None else int(parsed)


def _parse_date(value: Any, name: str, *, end_of_year: bool = False) -> date:
    """Accept ISO dates, datetimes, or a bare year."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return date(value, 12, 31) if end_of_year else date(value, 1, 1)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit() and len(text) == 4:
            return _parse_date(int(text), name, end_of_year=end_of_year)
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError as exc:
            raise InvalidInput(f"{name} must be an ISO date, got {value!r}") from exc
    raise InvalidInput(f"{name} is required")


# --------------------------------------------------------------------------- #
# Contracts
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, kw_only=True)
class ContractTerms:
    """Fields shared by every contract variant.

    ``buyers_percentage`` is the share of output (0-100) sold under the
    contract. Prices are indexed from ``indexation_reference_year`` which
    defaults to the contract start year.
    """

    start_date: date
    end_date: date
    buyers_percentage: float = 0.0
    indexation_pct: float = 0.0
    indexation_reference_year: int | None = None
    counterparty: str = ""

    contract_type = ""

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise InvalidInput(f"{self.contract_type} contract ends before it starts")
        _ensure_non_negative_finite(self.buyers_percentage, "buyers_percentage")
        if self.buyers_percentage > 100:
            raise InvalidInput("buyers_percentage must be between 0 and 100")
        if not math.isfinite(self.indexation_pct):
            raise InvalidInput("indexation_pct must be a finite number")

    @property
    def start_year(self) -> int:
        return self.start_date.year

    @property
    def end_year(self) -> int:
        return self.end_date.year

    @property
    def reference_year(self) -> int:
        if self.indexation_reference_year is not None:
            return self.indexation_reference_year
        return self.start_year

    def is_active(self, year: int) -> bool:
        return self.start_year <= year <= self.end_year


@dataclass(frozen=True, kw_only=True)
class BundledContract(ContractTerms):
    """Green and energy components priced together, with an optional combined floor."""

    green_price: float = 0.0
    energy_price: float = 0.0
    floor: float | None = None

    contract_type = "bundled"


@dataclass(frozen=True, kw_only=True)
class GreenContract(ContractTerms):
    """Certificate-only offtake priced in $/MWh."""

    price: float = 0.0
    floor: float | None = None

    contract_type = "green"


@dataclass(frozen=True, kw_only=True)
class EnergyContract(ContractTerms):
    """Energy-only (black) offtake priced in $/MWh."""

    price: float = 0.0
    floor: float | None = None

    contract_type = "energy"


@dataclass(frozen=True, kw_only=True)
class FixedRevenueContract(ContractTerms):
    """Flat annual revenue in $M, independent of generation and buyer share."""

    annual_revenue: float = 0.0

    contract_type = "fixed"


@dataclass(frozen=True, kw_only=True)
class CfdContract(ContractTerms):
    """Storage contract-for-difference paying a $/MWh spread on daily-cycled volume."""

    spread: float = 0.0

    contract_type = "cfd"


@dataclass(frozen=True, kw_only=True)
class TollingContract(ContractTerms):
    """Storage tolling agreement paying a $/MW/h capacity rate."""

    hourly_rate: float = 0.0

    contract_type = "tolling"


Contract = Union[
    BundledContract,
    GreenContract,
    EnergyContract,
    FixedRevenueContract,
    CfdContract,
    TollingContract,
]


def contract_from_dict(payload: Mapping[str, Any]) -> Contract:
    """Build the contract variant named by ``payload["type"]``.

    Missing prices resolve to ``0``, missing indexation to ``0%``, a missing
    buyer share to ``0%``, and a floor is only applied when ``hasFloor`` is
    truthy (or a ``floor`` value is given directly).
    """

    raw_type = str(payload.get("type", "")).strip().lower()
    contract_type = _CONTRACT_TYPE_ALIASES.get(raw_type)
    if contract_type is None:
        raise InvalidInput(f"Unknown contract type {payload.get('type')!r}")

    floor = _optional_float(payload.get("floor"), "floor")
    if floor is None and payload.get("hasFloor"):
        floor = _optional_float(payload.get("floorValue"), "floorValue")

    common = dict(
        start_date=_parse_date(_pick(payload, "startDate", "start_date"), "startDate"),
        end_date=_parse_date(_pick(payload, "endDate", "end_date"), "endDate", end_of_year=True),
        buyers_percentage=_optional_float(
            _pick(payload, "buyersPercentage", "buyers_percentage"), "buyersPercentage"
        )
        or 0.0,
        indexation_pct=_optional_float(_pick(payload, "indexation", "indexation_pct"), "indexation") or 0.0,
        indexation_reference_year=_optional_int(
            _pick(payload, "indexationReferenceYear", "indexation_reference_year"),
            "indexationReferenceYear",
        ),
        counterparty=str(payload.get("counterparty") or ""),
    )
    strike = _optional_float(_pick(payload, "strikePrice", "strike_price"), "strikePrice")

    if contract_type == "bundled":
        return BundledContract(
            green_price=_optional_float(_pick(payload, "greenPrice", "green_price"), "greenPrice") or 0.0,
            energy_price=_optional_float(
                _pick(payload, "EnergyPrice", "energyPrice", "blackPrice", "energy_price"), "EnergyPrice"
            )
            or 0.0,
            floor=floor,
            **common,
        )
    if contract_type == "green":
        price = strike if strike is not None else _optional_float(payload.get("greenPrice"), "greenPrice")
        return GreenContract(price=price or 0.0, floor=floor, **common)
    if contract_type == "energy":
        price = strike
        if price is None:
            price = _optional_float(_pick(payload, "EnergyPrice", "energyPrice", "blackPrice"), "EnergyPrice")
        return EnergyContract(price=price or 0.0, floor=floor, **common)
    if contract_type == "fixed":
        return FixedRevenueContract(annual_revenue=strike or 0.0, **common)
    if contract_type == "cfd":
        return CfdContract(spread=strike or 0.0, **common)
    return TollingContract(hourly_rate=strike or 0.0, **common)


# --------------------------------------------------------------------------- #
# Assets
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class Asset:
    """A generating or storage asset and its offtake contracts.

    ``capacity`` is in MW. ``volume`` is the storage energy rating in MWh and
    is only meaningful for ``type == "storage"``. Quarterly capacity factors
    are whole percentages; ``None`` entries fall back to the constants tables.
    """

    name: str
    type: str
    state: str
    capacity: float
    start_date: date
    volume: float | None = None
    asset_life: int | None = None
    annual_degradation_pct: float | None = None
    volume_loss_adjustment_pct: float | None = None
    quarterly_capacity_factors: tuple[float | None, ...] = (None, None, None, None)
    contracts: tuple[Contract, ...] = ()

    def __post_init__(self) -> None:
        if self.type not in defaults.ASSET_TYPES:
            raise InvalidInput(f"Unknown asset type {self.type!r} for asset {self.name!r}")
        _ensure_non_negative_finite(self.capacity, f"{self.name}.capacity")
        if self.volume is not None:
            _ensure_non_negative_finite(self.volume, f"{self.name}.volume")
        if self.asset_life is not None and self.asset_life <= 0:
            raise InvalidInput(f"{self.name}.asset_life must be positive")
        if self.annual_degradation_pct is not None:
            _ensure_non_negative_finite(self.annual_degradation_pct, f"{self.name}.annual_degradation_pct")
        if self.volume_loss_adjustment_pct is not None:
            _ensure_non_negative_finite(
                self.volume_loss_adjustment_pct, f"{self.name}.volume_loss_adjustment_pct"
            )
        if len(self.quarterly_capacity_factors) != 4:
            raise InvalidInput("quarterly_capacity_factors must have four entries")
        for idx, factor in enumerate(self.quarterly_capacity_factors, start=1):
            if factor is not None:
                _ensure_non_negative_finite(factor, f"{self.name}.capacity_factor_q{idx}")

        allowed = STORAGE_CONTRACT_TYPES if self.is_storage else RENEWABLE_CONTRACT_TYPES
        for contract in self.contracts:
            if contract.contract_type not in allowed:
                raise InvalidInput(
                    f"{contract.contract_type} contracts are not valid for {self.type} asset {self.name!r}"
                )

    @property
    def is_storage(self) -> bool:
        return self.type == STORAGE_TYPE

    @property
    def start_year(self) -> int:
        return self.start_date.year

    @property
    def life_years(self) -> int:
        return self.asset_life if self.asset_life is not None else defaults.DEFAULT_ASSET_LIFE_YEARS

    @property
    def end_year(self) -> int:
        """First calendar year after the asset stops operating."""

        return self.start_year + self.life_years

    @property
    def volume_loss_adjustment(self) -> float:
        if self.volume_loss_adjustment_pct is None:
            return defaults.DEFAULT_VOLUME_LOSS_ADJUSTMENT_PCT
        return self.volume_loss_adjustment_pct

    def operating_years(self) -> range:
        return range(self.start_year, self.end_year)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Asset":
        asset_type = str(payload.get("type", "")).strip().lower()
        if asset_type == "battery":
            asset_type = STORAGE_TYPE
        quarterly = tuple(
            _optional_float(
                _pick(payload, f"qualrtyCapacityFactor_q{q}", f"capacityFactor_q{q}", f"capacity_factor_q{q}"),
                f"capacityFactor_q{q}",
            )
            for q in range(1, 5)
        )
        capacity = _optional_float(payload.get("capacity"), "capacity")
        return cls(
            name=str(payload.get("name") or "").strip() or "Unnamed asset",
            type=asset_type,
            state=str(payload.get("state") or "").strip().upper(),
            capacity=capacity if capacity is not None else 0.0,
            start_date=_parse_date(_pick(payload, "assetStartDate", "start_date"), "assetStartDate"),
            volume=_optional_float(payload.get("volume"), "volume"),
            asset_life=_optional_int(_pick(payload, "assetLife", "asset_life"), "assetLife"),
            annual_degradation_pct=_optional_float(
                _pick(payload, "annualDegradation", "annual_degradation_pct"), "annualDegradation"
            ),
            volume_loss_adjustment_pct=_optional_float(
                _pick(payload, "volumeLossAdjustment", "volume_loss_adjustment_pct"), "volumeLossAdjustment"
            ),
            quarterly_capacity_factors=quarterly,
            contracts=tuple(contract_from_dict(item) for item in payload.get("contracts") or ()),
        )


def stream_allocations(asset: Asset, year: int) -> dict[str, float]:
    """Sum buyer percentages of contracts active in ``year`` per commodity stream.

    Fixed-revenue contracts claim the energy stream. Storage assets only
    have an energy stream.
    """

    totals = {"green": 0.0, "energy": 0.0}
    for contract in asset.contracts:
        if not contract.is_active(year):
            continue
        if isinstance(contract, BundledContract):
            totals["green"] += contract.buyers_percentage
            totals["energy"] += contract.buyers_percentage
        elif isinstance(contract, GreenContract):
            totals["green"] += contract.buyers_percentage
        else:
            totals["energy"] += contract.buyers_percentage
    return totals


def check_contract_allocation(asset: Asset, years: Iterable[int] | None = None) -> list[str]:
    """Return warnings for years where active contracts claim over 100% of a stream.

    Over-allocation is not rejected: revenue calculators clamp the merchant
    share at zero. The warnings let callers surface the condition.
    """

    warnings: list[str] = []
    for year in years if years is not None else asset.operating_years():
        for stream, pct in stream_allocations(asset, year).items():
            if pct > 100.0 + 1e-9:
                message = f"{asset.name} {year}: {stream} contracts allocate {pct:.1f}% of output"
                warnings.append(message)
                logging.getLogger(__name__).warning("Contract over-allocation: %s", message)
    return warnings


# --------------------------------------------------------------------------- #
# Costs and debt
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class DebtTerms:
    """Debt sizing parameters.

    ``max_gearing`` and ``interest_rate`` are decimals. ``calculated_gearing``
    holds the last solver result and defaults to ``max_gearing`` when unset.
    """

    max_gearing: float = defaults.DEFAULT_MAX_GEARING
    target_dscr_contract: float = defaults.DEFAULT_TARGET_DSCR_CONTRACT
    target_dscr_merchant: float = defaults.DEFAULT_TARGET_DSCR_MERCHANT
    interest_rate: float = defaults.DEFAULT_INTEREST_RATE
    tenor_years: int = defaults.DEFAULT_TENOR_YEARS["default"]
    structure: str = "amortizing"
    calculated_gearing: float | None = None

    def __post_init__(self) -> None:
        _ensure_non_negative_finite(self.max_gearing, "max_gearing")
        if self.max_gearing > 1:
            raise InvalidInput("max_gearing must be a fraction between 0 and 1")
        _ensure_positive_finite(self.target_dscr_contract, "target_dscr_contract")
        _ensure_positive_finite(self.target_dscr_merchant, "target_dscr_merchant")
        _ensure_non_negative_finite(self.interest_rate, "interest_rate")
        if self.tenor_years <= 0:
            raise InvalidInput("tenor_years must be positive")
        if self.structure not in DEBT_STRUCTURES:
            raise InvalidInput(f"structure must be one of {DEBT_STRUCTURES}")
        if self.calculated_gearing is not None:
            _ensure_non_negative_finite(self.calculated_gearing, "calculated_gearing")

    @property
    def gearing(self) -> float:
        if self.calculated_gearing is None:
            return self.max_gearing
        return self.calculated_gearing

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], base: "DebtTerms | None" = None) -> "DebtTerms":
        base = base or cls()

        def _value(keys: tuple[str, ...], current: float) -> float:
            parsed = _optional_float(_pick(payload, *keys), keys[0])
            return current if parsed is None else parsed

        tenor = _optional_int(_pick(payload, "tenorYears", "tenor_years"), "tenorYears")
        return cls(
            max_gearing=_value(("maxGearing", "max_gearing"), base.max_gearing),
            target_dscr_contract=_value(("targetDSCRContract", "target_dscr_contract"), base.target_dscr_contract),
            target_dscr_merchant=_value(("targetDSCRMerchant", "target_dscr_merchant"), base.target_dscr_merchant),
            interest_rate=_value(("interestRate", "interest_rate"), base.interest_rate),
            tenor_years=base.tenor_years if tenor is None else tenor,
            structure=str(_pick(payload, "debtStructure", "structure") or base.structure).lower(),
            calculated_gearing=_optional_float(
                _pick(payload, "calculatedGearing", "calculated_gearing"), "calculatedGearing"
            ),
        )


@dataclass(frozen=True)
class AssetCost:
    """Capital, operating, and debt assumptions for one asset ($M).

    ``opex`` feeds the project-finance and P&L cash flows. Valuation uses its
    own cost split: ``fixed_cost`` per year and ``variable_cost`` per MW per
    year, each escalated by its index.
    """

    capex: float
    opex: float
    opex_escalation_pct: float = defaults.DEFAULT_OPEX_ESCALATION_PCT
    terminal_value: float = 0.0
    debt: DebtTerms = field(default_factory=DebtTerms)
    fixed_cost: float = 0.0
    fixed_cost_index_pct: float = defaults.DEFAULT_COST_ESCALATION_PCT
    variable_cost: float = 0.0
    variable_cost_index_pct: float = defaults.DEFAULT_COST_ESCALATION_PCT

    def __post_init__(self) -> None:
        _ensure_non_negative_finite(self.capex, "capex")
        _ensure_non_negative_finite(self.opex, "opex")
        _ensure_non_negative_finite(self.terminal_value, "terminal_value")
        _ensure_non_negative_finite(self.fixed_cost, "fixed_cost")
        _ensure_non_negative_finite(self.variable_cost, "variable_cost")
        for name in ("opex_escalation_pct", "fixed_cost_index_pct", "variable_cost_index_pct"):
            if not math.isfinite(getattr(self, name)):
                raise InvalidInput(f"{name} must be a finite number")

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], default: "AssetCost | None" = None) -> "AssetCost":
        default = default or cls(capex=0.0, opex=0.0)

        def _value(keys: tuple[str, ...], current: float) -> float:
            parsed = _optional_float(_pick(payload, *keys), keys[0])
            return current if parsed is None else parsed

        return cls(
            capex=_value(("capex",), default.capex),
            opex=_value(("operatingCosts", "opex"), default.opex),
            opex_escalation_pct=_value(
                ("operatingCostEscalation", "opexEscalation", "opex_escalation_pct"), default.opex_escalation_pct
            ),
            terminal_value=_value(("terminalValue", "terminal_value"), default.terminal_value),
            debt=DebtTerms.from_dict(payload, base=default.debt),
            fixed_cost=_value(("fixedCost", "fixed_cost"), default.fixed_cost),
            fixed_cost_index_pct=_value(("fixedCostIndex", "fixed_cost_index_pct"), default.fixed_cost_index_pct),
            variable_cost=_value(("variableCost", "variable_cost"), default.variable_cost),
            variable_cost_index_pct=_value(
                ("variableCostIndex", "variable_cost_index_pct"), default.variable_cost_index_pct
            ),
        )


@dataclass(frozen=True)
class PortfolioCost:
    """Debt terms for the portfolio refinancing layer."""

    debt: DebtTerms = field(default_factory=DebtTerms)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], default: "PortfolioCost | None" = None) -> "PortfolioCost":
        base = default.debt if default is not None else DebtTerms()
        return cls(debt=DebtTerms.from_dict(payload, base=base))


def default_debt_terms(asset_type: str) -> DebtTerms:
    return DebtTerms(tenor_years=defaults.rate_for(defaults.DEFAULT_TENOR_YEARS, asset_type))


def default_portfolio_debt_terms() -> DebtTerms:
    return DebtTerms(
        max_gearing=defaults.DEFAULT_MAX_GEARING + defaults.PORTFOLIO_GEARING_UPLIFT,
        target_dscr_contract=defaults.DEFAULT_TARGET_DSCR_CONTRACT - defaults.PORTFOLIO_DSCR_CONTRACT_RELIEF,
        target_dscr_merchant=defaults.DEFAULT_TARGET_DSCR_MERCHANT - defaults.PORTFOLIO_DSCR_MERCHANT_RELIEF,
        interest_rate=defaults.DEFAULT_INTEREST_RATE - defaults.PORTFOLIO_INTEREST_DISCOUNT,
        tenor_years=defaults.DEFAULT_TENOR_YEARS["default"],
    )


def scaled_fixed_cost(
    capacity: float,
    base_cost: float = defaults.DEFAULT_FIXED_COST_BASE,
    base_capacity: float = defaults.VALUATION_BASE_CAPACITY_MW,
    scale: float = defaults.DEFAULT_FIXED_COST_SCALE,
) -> float:
    """Annual fixed cost for ``capacity`` MW, scaled from a reference-size asset."""

    return base_cost * (capacity / base_capacity) ** scale


def initialize_asset_costs(
    assets: Iterable[Asset],
) -> tuple[dict[str, AssetCost], PortfolioCost | None]:
    """Build default cost records from per-technology rates.

    A :class:`PortfolioCost` is only returned when there are at least two
    assets to refinance together.
    """

    costs: dict[str, AssetCost] = {}
    for asset in assets:
        costs[asset.name] = AssetCost(
            capex=round(defaults.rate_for(defaults.DEFAULT_CAPEX_RATES, asset.type) * asset.capacity, 1),
            opex=round(defaults.rate_for(defaults.DEFAULT_OPEX_RATES, asset.type) * asset.capacity, 1),
            terminal_value=round(
                defaults.rate_for(defaults.DEFAULT_TERMINAL_RATES, asset.type) * asset.capacity / 100.0, 2
            ),
            debt=default_debt_terms(asset.type),
            fixed_cost=round(scaled_fixed_cost(asset.capacity), 2),
            variable_cost=round(defaults.rate_for(defaults.DEFAULT_VARIABLE_COST_RATES, asset.type), 3),
        )
    portfolio = PortfolioCost(debt=default_portfolio_debt_terms()) if len(costs) >= 2 else None
    return costs, portfolio


# --------------------------------------------------------------------------- #
# Engine constants
# --------------------------------------------------------------------------- #


def _copy_nested(table: Mapping[str, Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
    return {key: dict(value) for key, value in table.items()}


@dataclass(frozen=True)
class EngineConstants:
    """Market, risk, and platform assumptions consumed read-only by the engines.

    Percentages are whole numbers except ``*_discount_rate`` which are
    decimals. Capacity factor tables hold decimals keyed by technology then
    region (and quarter label ``"Q1"``..``"Q4"`` for the quarterly table).
    """

    hours_in_year: int = defaults.HOURS_IN_YEAR
    escalation_pct: float = defaults.DEFAULT_ESCALATION_PCT
    reference_year: int = defaults.DEFAULT_REFERENCE_YEAR
    capacity_factors: dict[str, dict[str, float]] = field(
        default_factory=lambda: _copy_nested(defaults.DEFAULT_CAPACITY_FACTORS_ANNUAL)
    )
    capacity_factors_quarterly: dict[str, dict[str, dict[str, float]]] = field(
        default_factory=lambda: {
            tech: _copy_nested(by_state) for tech, by_state in defaults.DEFAULT_CAPACITY_FACTORS_QUARTERLY.items()
        }
    )
    annual_degradation_pct: dict[str, float] = field(
        default_factory=lambda: dict(defaults.DEFAULT_ANNUAL_DEGRADATION_PCT)
    )
    volume_variation_pct: float = defaults.DEFAULT_RISK_VARIATION_PCT["volume"]
    green_price_variation_pct: float = defaults.DEFAULT_RISK_VARIATION_PCT["green"]
    energy_price_variation_pct: float = defaults.DEFAULT_RISK_VARIATION_PCT["energy"]
    analysis_start_year: int = defaults.DEFAULT_ANALYSIS_START_YEAR
    analysis_end_year: int = defaults.DEFAULT_ANALYSIS_END_YEAR
    contract_discount_rate: float = defaults.DEFAULT_DISCOUNT_RATES["contract"]
    merchant_discount_rate: float = defaults.DEFAULT_DISCOUNT_RATES["merchant"]
    platform_opex: float = defaults.DEFAULT_PLATFORM_OPEX
    platform_opex_escalation_pct: float = defaults.DEFAULT_PLATFORM_OPEX_ESCALATION_PCT
    dividend_policy_pct: float = defaults.DEFAULT_DIVIDEND_POLICY_PCT
    minimum_cash_balance: float = defaults.DEFAULT_MINIMUM_CASH_BALANCE
    corporate_tax_rate_pct: float = defaults.DEFAULT_CORPORATE_TAX_RATE_PCT
    depreciation_years: dict[str, int] = field(default_factory=lambda: dict(defaults.DEFAULT_DEPRECIATION_YEARS))

    def __post_init__(self) -> None:
        if self.hours_in_year <= 0:
            raise InvalidInput("hours_in_year must be positive")
        for name in ("volume_variation_pct", "green_price_variation_pct", "energy_price_variation_pct"):
            _ensure_non_negative_finite(getattr(self, name), name)
        _ensure_non_negative_finite(self.contract_discount_rate, "contract_discount_rate")
        _ensure_non_negative_finite(self.merchant_discount_rate, "merchant_discount_rate")
        if self.analysis_end_year < self.analysis_start_year:
            raise InvalidInput("analysis_end_year must not precede analysis_start_year")

    def analysis_years(self) -> list[int]:
        return list(range(self.analysis_start_year, self.analysis_end_year + 1))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "EngineConstants":
        """Overlay recognised keys from ``payload`` on the default constants."""

        base = cls()
        updates: dict[str, Any] = {}
        scalar_keys = {
            "HOURS_IN_YEAR": "hours_in_year",
            "escalation": "escalation_pct",
            "referenceYear": "reference_year",
            "volumeVariation": "volume_variation_pct",
            "greenPriceVariation": "green_price_variation_pct",
            "EnergyPriceVariation": "energy_price_variation_pct",
            "blackPriceVariation": "energy_price_variation_pct",
            "analysisStartYear": "analysis_start_year",
            "analysisEndYear": "analysis_end_year",
            "platformOpex": "platform_opex",
            "platformOpexEscalation": "platform_opex_escalation_pct",
            "dividendPolicy": "dividend_policy_pct",
            "minimumCashBalance": "minimum_cash_balance",
            "corporateTaxRate": "corporate_tax_rate_pct",
        }
        int_fields = {"hours_in_year", "reference_year", "analysis_start_year", "analysis_end_year"}
        for key, attr in scalar_keys.items():
            value = _optional_float(_pick(payload, key, attr), key)
            if value is not None:
                updates[attr] = int(value) if attr in int_fields else value

        discount_rates = payload.get("discountRates") or {}
        for key, attr in (("contract", "contract_discount_rate"), ("merchant", "merchant_discount_rate")):
            value = _optional_float(_pick(discount_rates, key) if discount_rates else payload.get(attr), attr)
            if value is not None:
                updates[attr] = value

        if payload.get("capacityFactors"):
            updates["capacity_factors"] = _copy_nested(payload["capacityFactors"])
        if payload.get("capacityFactors_qtr"):
            updates["capacity_factors_quarterly"] = {
                tech: _copy_nested(by_state) for tech, by_state in payload["capacityFactors_qtr"].items()
            }
        if payload.get("annualDegradation"):
            updates["annual_degradation_pct"] = {
                key: float(value) for key, value in payload["annualDegradation"].items()
            }
        periods = _pick(payload, "deprecationPeriods", "depreciationPeriods")
        if periods:
            updates["depreciation_years"] = {key: int(value) for key, value in periods.items()}
        return replace(base, **updates)


# --------------------------------------------------------------------------- #
# Results
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class RevenuePeriodResult:
    """Revenue ($M) and generation (MWh) for one asset and period.

    ``total`` always equals the sum of the four stream components. Storage
    books everything to the energy streams.
    """

    contracted_green: float = 0.0
    contracted_energy: float = 0.0
    merchant_green: float = 0.0
    merchant_energy: float = 0.0
    green_percentage: float = 0.0
    energy_percentage: float = 0.0
    annual_generation: float = 0.0

    @property
    def total(self) -> float:
        return self.contracted_green + self.contracted_energy + self.merchant_green + self.merchant_energy

    @property
    def contracted(self) -> float:
        return self.contracted_green + self.contracted_energy

    @property
    def merchant(self) -> float:
        return self.merchant_green + self.merchant_energy

    @classmethod
    def zero(cls) -> "RevenuePeriodResult":
        return cls()

    def to_dict(self) -> dict[str, float]:
        return {
            "total": self.total,
            "contractedGreen": self.contracted_green,
            "contractedEnergy": self.contracted_energy,
            "merchantGreen": self.merchant_green,
            "merchantEnergy": self.merchant_energy,
            "greenPercentage": self.green_percentage,
            "EnergyPercentage": self.energy_percentage,
            "annualGeneration": self.annual_generation,
        }


# --------------------------------------------------------------------------- #
# Snapshot and pure updates
# --------------------------------------------------------------------------- #


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Immutable view of a portfolio passed into every engine call."""

    assets: tuple[Asset, ...] = ()
    asset_costs: Mapping[str, AssetCost] = field(default_factory=dict)
    portfolio_cost: PortfolioCost | None = None
    constants: EngineConstants = field(default_factory=EngineConstants)
    name: str = "Portfolio"

    def __post_init__(self) -> None:
        names = [asset.name for asset in self.assets]
        if len(names) != len(set(names)):
            raise InvalidInput("asset names must be unique within a portfolio")

    def asset(self, name: str) -> Asset:
        for asset in self.assets:
            if asset.name == name:
                return asset
        raise KeyError(name)

    def cost_for(self, asset: Asset) -> AssetCost:
        """Return the configured cost record, or the technology defaults."""

        cost = self.asset_costs.get(asset.name)
        if cost is not None:
            return cost
        defaults_by_name, _ = initialize_asset_costs([asset])
        return defaults_by_name[asset.name]

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PortfolioSnapshot":
        raw_assets = payload.get("assets") or {}
        if isinstance(raw_assets, Mapping):
            raw_assets = list(raw_assets.values())
        assets = tuple(Asset.from_dict(item) for item in raw_assets)

        default_costs, default_portfolio = initialize_asset_costs(assets)
        raw_costs = dict(payload.get("assetCosts") or payload.get("asset_costs") or {})
        raw_portfolio = raw_costs.pop("portfolio", None) or payload.get("portfolioCost")
        costs = {
            name: AssetCost.from_dict(raw_costs.get(name, {}), default=default)
            for name, default in default_costs.items()
        }
        portfolio_cost = default_portfolio
        if raw_portfolio is not None:
            portfolio_cost = PortfolioCost.from_dict(raw_portfolio, default=default_portfolio)

        return cls(
            assets=assets,
            asset_costs=costs,
            portfolio_cost=portfolio_cost,
            constants=EngineConstants.from_dict(payload.get("constants") or {}),
            name=str(payload.get("portfolioName") or payload.get("name") or "Portfolio"),
        )


def with_asset(snapshot: PortfolioSnapshot, asset: Asset) -> PortfolioSnapshot:
    """Add ``asset`` or replace the asset with the same name."""

    assets = tuple(a for a in snapshot.assets if a.name != asset.name) + (asset,)
    return replace(snapshot, assets=assets)


def without_asset(snapshot: PortfolioSnapshot, name: str) -> PortfolioSnapshot:
    costs = {key: value for key, value in snapshot.asset_costs.items() if key != name}
    return replace(snapshot, assets=tuple(a for a in snapshot.assets if a.name != name), asset_costs=costs)


def with_asset_cost(snapshot: PortfolioSnapshot, name: str, cost: AssetCost) -> PortfolioSnapshot:
    costs = dict(snapshot.asset_costs)
    costs[name] = cost
    return replace(snapshot, asset_costs=costs)


def with_constants(snapshot: PortfolioSnapshot, **changes: Any) -> PortfolioSnapshot:
    return replace(snapshot, constants=replace(snapshot.constants, **changes))


__all__ = [
    "Asset",
    "AssetCost",
    "BundledContract",
    "CfdContract",
    "Contract",
    "ContractTerms",
    "DEBT_STRUCTURES",
    "DebtTerms",
    "EnergyContract",
    "EngineConstants",
    "FixedRevenueContract",
    "GreenContract",
    "PortfolioCost",
    "PortfolioSnapshot",
    "RevenuePeriodResult",
    "TollingContract",
    "check_contract_allocation",
    "contract_from_dict",
    "default_debt_terms",
    "default_portfolio_debt_terms",
    "initialize_asset_costs",
    "scaled_fixed_cost",
    "stream_allocations",
    "with_asset",
    "with_asset_cost",
    "with_constants",
    "without_asset",
]
