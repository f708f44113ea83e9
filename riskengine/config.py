"""
riskengine/config.py
--------------------
Shared financial and runtime configuration constants.

Financial parameters are plain module constants.  The handful of runtime
knobs that differ between deployments (price API endpoint, fetch timeout,
cache capacity, fan-out width) can be overridden through environment
variables, read once at import time.

Components accept these values as keyword defaults so callers and tests can
inject alternatives without touching this module.
"""

import os


# ---------------------------------------------------------------------------
# Runtime (environment-overridable)
# ---------------------------------------------------------------------------

# Historical price endpoint.  ``{coin_id}`` and ``{days}`` are substituted.
PRICE_API_URL: str = os.getenv(
    "RISKENGINE_PRICE_API_URL",
    "https://api.coingecko.com/api/v3/coins/{coin_id}/market_chart"
    "?vs_currency=usd&days={days}&interval=daily",
)

# Seconds before a historical fetch is abandoned in favour of the
# synthetic series.
FETCH_TIMEOUT_SECONDS: float = float(os.getenv("RISKENGINE_FETCH_TIMEOUT", "10"))

# Maximum number of (symbol, days) entries held by the shared price cache.
CACHE_MAX_ENTRIES: int = int(os.getenv("RISKENGINE_CACHE_MAX_ENTRIES", "100"))

# Worker threads used when fetching several symbols at once.
MAX_WORKERS: int = int(os.getenv("RISKENGINE_MAX_WORKERS", "8"))


# ---------------------------------------------------------------------------
# Calendar / history
# ---------------------------------------------------------------------------

TRADING_DAYS: int = 252          # annualisation factor
HISTORY_DAYS: int = 252          # default look-back for risk computations
MIN_HISTORY_DAYS: int = 1
MAX_HISTORY_DAYS: int = 365

# Fewer portfolio returns than this and the empirical VaR is not trusted;
# the engine falls back to the parametric estimate.
MIN_HISTORY_POINTS: int = 30

# ---------------------------------------------------------------------------
# Synthetic fallback series
# ---------------------------------------------------------------------------

SYNTHETIC_BASE_PRICE: float = 100.0
SYNTHETIC_FACTOR_RANGE: tuple = (0.95, 1.05)

# ---------------------------------------------------------------------------
# VaR
# ---------------------------------------------------------------------------

MIN_CONFIDENCE: float = 0.5
MAX_CONFIDENCE: float = 0.999
MIN_HORIZON_DAYS: int = 1
MAX_HORIZON_DAYS: int = 365

MONTE_CARLO_SIMULATIONS: int = 10_000

# Cornish-Fisher is only monotone for moderate higher moments, so the
# sample skewness / excess kurtosis are clipped before expansion.
CF_SKEW_BOUNDS: tuple = (-1.0, 1.0)
CF_EXCESS_KURTOSIS_BOUNDS: tuple = (-1.2, 6.0)

# Return series whose range is below this fraction of their magnitude are
# treated as constant when computing skewness and kurtosis.
MOMENT_SPREAD_TOLERANCE: float = 1e-12

# Historical VaR as % of portfolio value → risk level.
VAR_HIGH_RISK_PCT: float = 10.0
VAR_MEDIUM_RISK_PCT: float = 5.0

# ---------------------------------------------------------------------------
# Neutral defaults (zero portfolio value / missing data)
# ---------------------------------------------------------------------------

DEFAULT_VOLATILITY: float = 0.15
DEFAULT_MAX_DRAWDOWN: float = 0.20
DEFAULT_BETA: float = 1.0

# Benchmark used for beta.
BENCHMARK_SYMBOL: str = "BTC"

# Annual risk-free rate used for the Sharpe ratio.
RISK_FREE_RATE: float = 0.02

# ---------------------------------------------------------------------------
# Optimiser
# ---------------------------------------------------------------------------

MAX_ASSET_WEIGHT: float = 0.4        # greedy MVO per-asset cap
ASSUMED_CORRELATION: float = 0.3     # constant off-diagonal correlation
MAX_VIEW_ADJUSTMENT: float = 0.1     # Black-Litterman shift at full conviction
MAX_VIEW_WEIGHT: float = 0.5         # clamp after view adjustment
NEUTRAL_VIEW: float = 0.5

# Weight maps must sum to 1 within this tolerance.
WEIGHT_TOLERANCE: float = 1e-6

# ---------------------------------------------------------------------------
# Rebalancing
# ---------------------------------------------------------------------------

DRIFT_THRESHOLD: float = 0.01        # below this no action is emitted
TRANSACTION_COST_RATE: float = 0.001 # 0.1 % of traded value

# (exclusive lower bound of drift, priority tier), most urgent first
PRIORITY_TIERS: tuple = (
    (0.15, 1),
    (0.10, 2),
    (0.05, 3),
)
LOWEST_PRIORITY: int = 4

# Aggregate drift → portfolio status
BALANCED_DRIFT: float = 0.05
CRITICAL_DRIFT: float = 0.20

# Risk tolerance used for the dashboard rebalancing summary.
SUMMARY_RISK_TOLERANCE: float = 0.5
