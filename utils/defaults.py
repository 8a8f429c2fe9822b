"""Default assumption tables used when asset or portfolio inputs leave a value unset.

Rates follow the units the engine consumes: capex and opex in $M per MW,
percentages as whole numbers (2.5 = 2.5%) unless the name says ``_rate``.
"""
from __future__ import annotations

ASSET_TYPES = ("solar", "wind", "storage")
STATES = ("NSW", "VIC", "QLD", "SA")

HOURS_IN_YEAR = 8760
DEFAULT_VOLUME_LOSS_ADJUSTMENT_PCT = 95.0
DEFAULT_ASSET_LIFE_YEARS = 30
STORAGE_STANDARD_DURATIONS_H = (0.5, 1.0, 2.0, 4.0)
PRICE_LOOKBACK_YEARS = 10
PRICE_LOOKBACK_SAMPLES = 2

DEFAULT_CAPEX_RATES = {"solar": 1.2, "wind": 2.5, "storage": 1.6, "default": 2.0}
DEFAULT_OPEX_RATES = {"solar": 0.014, "wind": 0.040, "storage": 0.015, "default": 0.030}
DEFAULT_TENOR_YEARS = {"solar": 22, "wind": 22, "storage": 18, "default": 20}

DEFAULT_MAX_GEARING = 0.70
DEFAULT_TARGET_DSCR_CONTRACT = 1.35
DEFAULT_TARGET_DSCR_MERCHANT = 2.00
DEFAULT_INTEREST_RATE = 0.06
DEFAULT_OPEX_ESCALATION_PCT = 2.5

# Adjustments applied to the asset defaults for the portfolio refinancing layer.
PORTFOLIO_GEARING_UPLIFT = 0.05
PORTFOLIO_DSCR_CONTRACT_RELIEF = 0.05
PORTFOLIO_DSCR_MERCHANT_RELIEF = 0.20
PORTFOLIO_INTEREST_DISCOUNT = 0.005

GEARING_TOLERANCE = 1e-4
GEARING_MAX_ITERATIONS = 50

DEFAULT_DISCOUNT_RATES = {"contract": 0.08, "merchant": 0.10}
DEFAULT_RISK_VARIATION_PCT = {"volume": 20.0, "green": 20.0, "energy": 20.0}
DEFAULT_ESCALATION_PCT = 2.5
DEFAULT_REFERENCE_YEAR = 2025
DEFAULT_ANALYSIS_START_YEAR = 2025
DEFAULT_ANALYSIS_END_YEAR = 2045
DEFAULT_MONTE_CARLO_TRIALS = 1000
HISTOGRAM_BINS = 20

# Terminal value in $M per 100 MW of capacity.
DEFAULT_TERMINAL_RATES = {"solar": 15.0, "wind": 20.0, "storage": 10.0, "default": 15.0}

# Valuation operating costs. The fixed cost of a 100 MW asset scales to other
# sizes by (capacity / 100) ** scale; variable cost is $M per MW per year.
VALUATION_BASE_CAPACITY_MW = 100.0
DEFAULT_FIXED_COST_BASE = 10.0
DEFAULT_FIXED_COST_SCALE = 0.75
DEFAULT_VARIABLE_COST_RATES = {"solar": 0.015, "wind": 0.02, "storage": 0.01, "default": 0.015}
DEFAULT_COST_ESCALATION_PCT = 2.5

DEFAULT_PLATFORM_OPEX = 4.2
DEFAULT_PLATFORM_OPEX_ESCALATION_PCT = 2.5
DEFAULT_DIVIDEND_POLICY_PCT = 85.0
DEFAULT_MINIMUM_CASH_BALANCE = 5.0
DEFAULT_CORPORATE_TAX_RATE_PCT = 0.0
DEFAULT_DEPRECIATION_YEARS = {"solar": 30, "wind": 30, "storage": 20, "default": 25}

DEFAULT_ANNUAL_DEGRADATION_PCT = {"solar": 0.4, "wind": 0.1, "storage": 0.5}

# Capacity factors as decimals keyed by technology then region.
DEFAULT_CAPACITY_FACTORS_QUARTERLY = {
    "solar": {
        "NSW": {"Q1": 0.32, "Q2": 0.22, "Q3": 0.23, "Q4": 0.31},
        "VIC": {"Q1": 0.30, "Q2": 0.17, "Q3": 0.19, "Q4": 0.28},
        "QLD": {"Q1": 0.31, "Q2": 0.25, "Q3": 0.27, "Q4": 0.33},
        "SA": {"Q1": 0.33, "Q2": 0.20, "Q3": 0.22, "Q4": 0.32},
    },
    "wind": {
        "NSW": {"Q1": 0.28, "Q2": 0.33, "Q3": 0.36, "Q4": 0.31},
        "VIC": {"Q1": 0.30, "Q2": 0.36, "Q3": 0.40, "Q4": 0.34},
        "QLD": {"Q1": 0.27, "Q2": 0.30, "Q3": 0.33, "Q4": 0.30},
        "SA": {"Q1": 0.31, "Q2": 0.36, "Q3": 0.39, "Q4": 0.34},
    },
}

DEFAULT_CAPACITY_FACTORS_ANNUAL = {
    technology: {
        state: round(sum(quarters.values()) / 4.0, 4) for state, quarters in by_state.items()
    }
    for technology, by_state in DEFAULT_CAPACITY_FACTORS_QUARTERLY.items()
}


def rate_for(table: dict[str, float], asset_type: str) -> float:
    """Return ``table[asset_type]`` falling back to the table's ``default`` entry."""

    return table.get(asset_type, table["default"])
