from enum import Enum


class ActionType(Enum):
    """Direction of a rebalancing trade."""
    BUY = "BUY"
    SELL = "SELL"


class OptimizationMethod(Enum):
    """How a target allocation was produced."""
    MVO = "MVO"
    BLACK_LITTERMAN = "BLACK_LITTERMAN"


class RiskLevel(Enum):
    """Coarse risk tag shown next to VaR and risk-metric reports."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class PortfolioStatus(Enum):
    """Aggregate allocation drift bucket."""
    BALANCED = "BALANCED"
    NEEDS_REBALANCING = "NEEDS_REBALANCING"
    CRITICAL = "CRITICAL"


class DiversificationLevel(Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class ResultStatus(Enum):
    """Outcome of an engine request."""
    OK = "OK"                # computed from real inputs
    FALLBACK = "FALLBACK"    # computed, but at least one documented default was used
    ERROR = "ERROR"          # could not be computed; no value attached


class PriceSource(Enum):
    """Where a cached price series came from."""
    LIVE = "live"
    SYNTHETIC = "synthetic"
