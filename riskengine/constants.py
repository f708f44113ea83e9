"""
riskengine/constants.py
-----------------------
Lookup tables shared across modules.

Placing these here keeps the engines (MetricsEngine, PortfolioEngine) and the
data layer (PriceHistoryProvider) aligned on a single source of truth without
creating circular imports.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Asset categories
# ---------------------------------------------------------------------------
# Used whenever real history is missing.  Each category lists the lowercase
# substrings that identify it; the first matching category wins, so the
# stable-value entry must stay ahead of "eth" (which "tether" contains).
#
# ``volatility``      : annualised, decimal
# ``expected_return`` : annualised, decimal
# ---------------------------------------------------------------------------

ASSET_CATEGORIES: tuple = (
    {
        "name":            "stable",
        "markers":         ("stable", "usdt", "usdc", "tether", "dai", "busd"),
        "volatility":      0.05,
        "expected_return": 0.02,
    },
    {
        "name":            "bitcoin",
        "markers":         ("bitcoin", "btc"),
        "volatility":      0.80,
        "expected_return": 0.15,
    },
    {
        "name":            "ethereum",
        "markers":         ("ethereum", "eth"),
        "volatility":      0.75,
        "expected_return": 0.12,
    },
    {
        "name":            "institutional",
        "markers":         ("blackrock", "buidl"),
        "volatility":      0.15,
        "expected_return": 0.08,
    },
)

# Anything that matches no marker.
DEFAULT_CATEGORY: dict = {
    "name":            "other",
    "markers":         (),
    "volatility":      0.60,
    "expected_return": 0.10,
}


# ---------------------------------------------------------------------------
# Ticker → price-provider id
# ---------------------------------------------------------------------------
# The historical price API addresses coins by id rather than ticker.  Unknown
# symbols are lowercased and passed through unchanged.

PROVIDER_IDS: dict[str, str] = {
    "btc":   "bitcoin",
    "eth":   "ethereum",
    "usdt":  "tether",
    "usdc":  "usd-coin",
    "bnb":   "binancecoin",
    "sol":   "solana",
    "xrp":   "ripple",
    "ada":   "cardano",
    "doge":  "dogecoin",
    "dot":   "polkadot",
    "ltc":   "litecoin",
    "avax":  "avalanche-2",
    "link":  "chainlink",
    "matic": "matic-network",
    "dai":   "dai",
    "buidl": "blackrock-usd-institutional-digital-liquidity-fund",
}


# ---------------------------------------------------------------------------
# Report registry
# ---------------------------------------------------------------------------
# Drives the text rendering in report_builder (display name + unit).  Keys
# must match the field names produced by report_builder.var_report().

VAR_METHODS: dict[str, dict] = {
    "historical_var": {
        "display": "Historical VaR",
        "unit":    "$",
    },
    "parametric_var": {
        "display": "Parametric VaR",
        "unit":    "$",
    },
    "monte_carlo_var": {
        "display": "Monte Carlo VaR",
        "unit":    "$",
    },
    "conditional_var": {
        "display": "Conditional VaR",
        "unit":    "$",
    },
}
