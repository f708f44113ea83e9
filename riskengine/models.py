"""
riskengine/models.py
--------------------
Plain data containers passed between the engines.

Nothing here fetches data or runs numerical work beyond trivial derived
properties.  Holdings are validated on construction; everything else is
produced by the engines and trusted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from riskengine.config import (
    BALANCED_DRIFT,
    CRITICAL_DRIFT,
    VAR_HIGH_RISK_PCT,
    VAR_MEDIUM_RISK_PCT,
)
from riskengine.enums import (
    ActionType,
    DiversificationLevel,
    OptimizationMethod,
    PortfolioStatus,
    PriceSource,
    ResultStatus,
    RiskLevel,
)
from riskengine.errors import InvalidParameterError, RiskEngineError


# ---------------------------------------------------------------------------
# Holdings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Holding:
    """
    One held asset.

    ``initial_investment`` is always derived from quantity × purchase price;
    it is never accepted as input.
    """
    symbol: str
    quantity: float
    current_price: float
    purchase_price: float

    def __post_init__(self):
        symbol = (self.symbol or "").strip() if isinstance(self.symbol, str) else ""
        if not symbol:
            raise InvalidParameterError("Holding symbol must be a non-empty string.", "symbol")
        object.__setattr__(self, "symbol", symbol)

        for name in ("quantity", "current_price", "purchase_price"):
            try:
                value = float(getattr(self, name))
            except (TypeError, ValueError):
                raise InvalidParameterError(
                    f"{name} for {symbol!r} must be a number.", name
                ) from None
            if not math.isfinite(value):
                raise InvalidParameterError(f"{name} for {symbol!r} must be finite.", name)
            object.__setattr__(self, name, value)

        if self.quantity < 0:
            raise InvalidParameterError(
                f"quantity for {symbol!r} must be >= 0 (got {self.quantity}).", "quantity"
            )
        if self.current_price <= 0:
            raise InvalidParameterError(
                f"current_price for {symbol!r} must be > 0 (got {self.current_price}).",
                "current_price",
            )
        if self.purchase_price <= 0:
            raise InvalidParameterError(
                f"purchase_price for {symbol!r} must be > 0 (got {self.purchase_price}).",
                "purchase_price",
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Holding":
        """
        Build a holding from a collaborator payload.

        Accepts either snake_case keys or the camelCase names used by the
        asset service (``currentPricePerUnit``, ``purchasePricePerUnit``).
        Any ``initialInvestment`` in the payload is ignored.
        """
        def pick(*keys):
            for k in keys:
                if k in data and data[k] is not None:
                    return data[k]
            return None

        return cls(
            symbol=pick("symbol", "name"),
            quantity=pick("quantity"),
            current_price=pick("current_price", "currentPricePerUnit", "pricePerUnit"),
            purchase_price=pick("purchase_price", "purchasePricePerUnit"),
        )

    @property
    def initial_investment(self) -> float:
        return self.quantity * self.purchase_price

    @property
    def current_value(self) -> float:
        return self.quantity * self.current_price

    @property
    def profit_loss(self) -> float:
        return self.current_value - self.initial_investment

    @property
    def roi(self) -> float:
        """Return on investment in percent; 0.0 for an empty position."""
        invested = self.initial_investment
        if invested == 0:
            return 0.0
        return self.profit_loss / invested * 100.0


def consolidate_holdings(holdings: List[Holding]) -> List[Holding]:
    """
    Merge holdings that share a symbol (case-insensitive), keeping first-seen
    order.  Quantities add up; prices become quantity-weighted averages so the
    merged position keeps the same current value and initial investment.
    """
    merged: Dict[str, List[Holding]] = {}
    for h in holdings:
        merged.setdefault(h.symbol.upper(), []).append(h)

    out: List[Holding] = []
    for group in merged.values():
        if len(group) == 1:
            out.append(group[0])
            continue
        qty = sum(h.quantity for h in group)
        if qty == 0:
            last = group[-1]
            out.append(Holding(last.symbol, 0.0, last.current_price, last.purchase_price))
            continue
        out.append(Holding(
            symbol=group[0].symbol,
            quantity=qty,
            current_price=sum(h.current_value for h in group) / qty,
            purchase_price=sum(h.initial_investment for h in group) / qty,
        ))
    return out


# ---------------------------------------------------------------------------
# Price history
# ---------------------------------------------------------------------------

@dataclass
class PriceSeries:
    """
    Daily prices for one symbol, ascending by timestamp.

    ``points`` holds ``(timestamp_millis, price)`` tuples.
    """
    symbol: str
    days: int
    points: List[Tuple[int, float]] = field(default_factory=list)
    source: PriceSource = PriceSource.LIVE

    def __len__(self) -> int:
        return len(self.points)

    def copy(self) -> "PriceSeries":
        """Independent copy; the point tuples themselves are immutable."""
        return PriceSeries(self.symbol, self.days, list(self.points), self.source)

    @property
    def prices(self) -> List[float]:
        return [p for _, p in self.points]

    @property
    def timestamps(self) -> List[int]:
        return [t for t, _ in self.points]

    @property
    def latest_price(self) -> Optional[float]:
        return self.points[-1][1] if self.points else None

    @property
    def is_synthetic(self) -> bool:
        return self.source is PriceSource.SYNTHETIC

    def to_frame(self) -> pd.DataFrame:
        """``Date`` / ``Price`` DataFrame, one row per point."""
        return pd.DataFrame({
            "Date":  pd.to_datetime(self.timestamps, unit="ms", utc=True),
            "Price": self.prices,
        })

    def to_series(self) -> pd.Series:
        """Prices as a float Series in time order (positional index)."""
        return pd.Series(self.prices, dtype=float, name=self.symbol)


# ---------------------------------------------------------------------------
# VaR
# ---------------------------------------------------------------------------

@dataclass
class VaRResult:
    """
    Output of :meth:`VaREngine.calculate`.  Created per request, never stored.

    VaR figures are non-negative monetary losses.  ``volatility`` and
    ``expected_return`` are daily figures of the portfolio return series
    (the same units the VaR formulas use); ``annualized_volatility`` is
    ``volatility × √252``.
    """
    confidence_level: float
    time_horizon_days: int
    portfolio_value: float
    historical_var: float
    parametric_var: float
    monte_carlo_var: float
    conditional_var: float
    volatility: float
    annualized_volatility: float
    skewness: float
    kurtosis: float
    expected_return: float
    asset_weights: Dict[str, float] = field(default_factory=dict)
    asset_returns: Dict[str, float] = field(default_factory=dict)
    num_simulations: int = 0
    history_points: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def percentage(self, amount: float) -> float:
        """Express *amount* as a percentage of portfolio value."""
        if self.portfolio_value == 0:
            return 0.0
        return amount / self.portfolio_value * 100.0

    @property
    def var_percentage(self) -> float:
        return self.percentage(self.historical_var)

    @property
    def risk_level(self) -> RiskLevel:
        pct = self.var_percentage
        if pct > VAR_HIGH_RISK_PCT:
            return RiskLevel.HIGH
        if pct > VAR_MEDIUM_RISK_PCT:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW


# ---------------------------------------------------------------------------
# Rebalancing
# ---------------------------------------------------------------------------

@dataclass
class RebalancingAction:
    """A single BUY / SELL instruction produced by :class:`RebalancingEngine`."""
    symbol: str
    action_type: ActionType
    quantity_change: float      # always > 0
    value_change: float         # always > 0
    current_weight: float
    target_weight: float
    transaction_cost: float
    priority: int               # 1 = most urgent
    current_quantity: float = 0.0
    current_value: float = 0.0
    target_value: float = 0.0
    estimated_price: float = 0.0

    @property
    def drift(self) -> float:
        return abs(self.current_weight - self.target_weight)

    @property
    def allocation_change(self) -> float:
        return self.target_weight - self.current_weight

    @property
    def target_quantity(self) -> float:
        if self.action_type is ActionType.BUY:
            return self.current_quantity + self.quantity_change
        return max(self.current_quantity - self.quantity_change, 0.0)

    @property
    def net_impact(self) -> float:
        return self.value_change - self.transaction_cost

    @property
    def description(self) -> str:
        verb = "Buy" if self.action_type is ActionType.BUY else "Sell"
        return (
            f"{verb} {self.quantity_change:.4f} {self.symbol} "
            f"({abs(self.allocation_change) * 100:.2f}%)"
        )


@dataclass
class AllocationPlan:
    """Current vs. target allocation together with the trades that bridge them."""
    current_allocation: Dict[str, float]
    target_allocation: Dict[str, float]
    actions: List[RebalancingAction]
    current_risk: float
    target_risk: float
    current_return: float
    expected_return: float
    portfolio_value: float
    risk_tolerance: float
    optimization_method: OptimizationMethod = OptimizationMethod.MVO

    @property
    def risk_reduction(self) -> float:
        return self.current_risk - self.target_risk

    @property
    def return_improvement(self) -> float:
        return self.expected_return - self.current_return

    @property
    def total_transaction_cost(self) -> float:
        return sum(a.transaction_cost for a in self.actions)

    def allocation_drift(self) -> float:
        """Sum of absolute weight differences over every symbol in either map."""
        symbols = set(self.current_allocation) | set(self.target_allocation)
        return sum(
            abs(self.current_allocation.get(s, 0.0) - self.target_allocation.get(s, 0.0))
            for s in symbols
        )

    def needs_rebalancing(self, threshold: float = BALANCED_DRIFT) -> bool:
        return self.allocation_drift() > threshold

    @property
    def portfolio_status(self) -> PortfolioStatus:
        drift = self.allocation_drift()
        if drift < BALANCED_DRIFT:
            return PortfolioStatus.BALANCED
        if drift < CRITICAL_DRIFT:
            return PortfolioStatus.NEEDS_REBALANCING
        return PortfolioStatus.CRITICAL


# ---------------------------------------------------------------------------
# Portfolio-level summaries
# ---------------------------------------------------------------------------

@dataclass
class RiskMetrics:
    """Value-weighted portfolio risk profile."""
    volatility: float = 0.0
    max_drawdown: float = 0.0
    beta: float = 1.0
    diversification_score: float = 0.0
    roi: float = 0.0
    sharpe_ratio: float = 0.0

    @property
    def is_high_risk(self) -> bool:
        return self.volatility > 0.3 or self.max_drawdown > 0.5 or self.beta > 1.5

    @property
    def is_low_risk(self) -> bool:
        return self.volatility < 0.1 and self.max_drawdown < 0.2 and self.beta < 0.8

    @property
    def is_well_diversified(self) -> bool:
        return self.diversification_score > 70.0

    @property
    def risk_level(self) -> RiskLevel:
        if self.is_high_risk:
            return RiskLevel.HIGH
        if self.is_low_risk:
            return RiskLevel.LOW
        return RiskLevel.MEDIUM

    @property
    def diversification_level(self) -> DiversificationLevel:
        if self.diversification_score >= 80:
            return DiversificationLevel.EXCELLENT
        if self.diversification_score >= 60:
            return DiversificationLevel.GOOD
        if self.diversification_score >= 40:
            return DiversificationLevel.FAIR
        return DiversificationLevel.POOR


@dataclass
class PortfolioSummary:
    total_value: float
    total_invested: float
    total_profit_loss: float
    average_roi: float
    asset_count: int


# ---------------------------------------------------------------------------
# Discriminated result
# ---------------------------------------------------------------------------

@dataclass
class EngineResult:
    """
    Outcome of one engine request.

    * ``OK``       — ``value`` computed from real inputs.
    * ``FALLBACK`` — ``value`` computed, ``fallbacks`` says which defaults
      were used.
    * ``ERROR``    — ``value`` is ``None``; ``error`` / ``error_kind`` explain
      why.  Never confused with a zero-valued report.
    """
    status: ResultStatus
    value: Any = None
    fallbacks: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def success(cls, value: Any, fallbacks: Optional[List[str]] = None) -> "EngineResult":
        notes = list(fallbacks or [])
        status = ResultStatus.FALLBACK if notes else ResultStatus.OK
        return cls(status=status, value=value, fallbacks=notes)

    @classmethod
    def failure(cls, exc: RiskEngineError) -> "EngineResult":
        return cls(status=ResultStatus.ERROR, error=exc.message, error_kind=exc.kind)

    @property
    def ok(self) -> bool:
        return self.status is not ResultStatus.ERROR

    @property
    def used_fallback(self) -> bool:
        return self.status is ResultStatus.FALLBACK
