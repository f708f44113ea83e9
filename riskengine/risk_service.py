"""
riskengine/risk_service.py
--------------------------
Facade over the engines; the single entry point collaborators call.

Problem
-------
VaR, allocation and risk-metric requests all need the same preparation:
turn raw holdings into validated positions, pull a year of daily prices per
asset from the shared cache, and derive returns.  Each also needs the same
failure convention, so that "could not compute" is never reported as a
zero-risk result.

Design
------
* Parameters are validated first; ``InvalidParameterError`` propagates
  and nothing is fetched or computed.
* ``NoDataError`` / ``DivisionHazardError`` become an ``ERROR``
  :class:`EngineResult`.
* Any documented default that was used (synthetic prices, category
  volatility, neutral beta, …) turns an ``OK`` result into ``FALLBACK`` and
  is listed in ``EngineResult.fallbacks``.
* No authentication construct: callers pass a plain holdings list.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

from riskengine.config import (
    BENCHMARK_SYMBOL,
    HISTORY_DAYS,
    MAX_WORKERS,
    RISK_FREE_RATE,
    SUMMARY_RISK_TOLERANCE,
)
from riskengine.enums import OptimizationMethod
from riskengine.errors import DivisionHazardError, InvalidParameterError, NoDataError
from riskengine.metrics_engine import MetricsEngine
from riskengine.models import (
    EngineResult,
    Holding,
    PortfolioSummary,
    PriceSeries,
    RiskMetrics,
    consolidate_holdings,
)
from riskengine.portfolio_engine import PortfolioEngine
from riskengine.price_history import PriceHistoryProvider
from riskengine.rebalancing_engine import RebalancingEngine
from riskengine.var_engine import VaREngine

logger = logging.getLogger(__name__)

HoldingInput = Union[Holding, Mapping[str, Any]]


class RiskService:
    """
    Risk and allocation requests over one shared :class:`PriceHistoryProvider`.

    Usage
    -----
    ::

        service = RiskService()
        result  = service.calculate_var(holdings, confidence_level=0.99)
        if result.ok:
            print(result.value.historical_var)
    """

    def __init__(
        self,
        provider: Optional[PriceHistoryProvider] = None,
        var_engine: Optional[VaREngine] = None,
        rebalancing_engine: Optional[RebalancingEngine] = None,
        history_days: int = HISTORY_DAYS,
        benchmark_symbol: str = BENCHMARK_SYMBOL,
        max_workers: int = MAX_WORKERS,
    ):
        self.provider           = provider or PriceHistoryProvider()
        self.var_engine         = var_engine or VaREngine()
        self.rebalancing_engine = rebalancing_engine or RebalancingEngine()
        self.history_days       = history_days
        self.benchmark_symbol   = benchmark_symbol
        self.max_workers        = max(1, max_workers)

    # ------------------------------------------------------------------ #
    #  VaR
    # ------------------------------------------------------------------ #

    def calculate_var(
        self,
        holdings: Sequence[HoldingInput],
        confidence_level: float = 0.95,
        time_horizon_days: int = 1,
    ) -> EngineResult:
        """
        Four VaR estimates for *holdings*.

        Raises
        ------
        InvalidParameterError
            Bad confidence, horizon or holding fields.
        """
        VaREngine.validate_parameters(confidence_level, time_horizon_days)
        positions = self.positions(holdings)
        try:
            if not positions:
                raise NoDataError("Cannot compute VaR for an empty holding set.")
            returns, notes = self._asset_returns([h.symbol for h in positions])
            result, var_notes = self.var_engine.calculate(
                positions, returns, confidence_level, time_horizon_days
            )
        except (NoDataError, DivisionHazardError) as exc:
            logger.warning("VaR request failed: %s", exc)
            return EngineResult.failure(exc)
        return EngineResult.success(result, notes + var_notes)

    # ------------------------------------------------------------------ #
    #  Allocation
    # ------------------------------------------------------------------ #

    def optimal_allocation(
        self,
        holdings: Sequence[HoldingInput],
        risk_tolerance: float = SUMMARY_RISK_TOLERANCE,
    ) -> EngineResult:
        """MVO target allocation and the trades to reach it."""
        return self._allocate(holdings, risk_tolerance, views=None)

    def black_litterman_allocation(
        self,
        holdings: Sequence[HoldingInput],
        views: Mapping[str, float],
        risk_tolerance: float = SUMMARY_RISK_TOLERANCE,
    ) -> EngineResult:
        """MVO target tilted toward *views* (symbol → confidence in [0, 1])."""
        return self._allocate(holdings, risk_tolerance, views=views)

    def rebalancing_summary(self, holdings: Sequence[HoldingInput]) -> EngineResult:
        """Dashboard summary: the MVO plan at medium risk tolerance."""
        return self.optimal_allocation(holdings, SUMMARY_RISK_TOLERANCE)

    # ------------------------------------------------------------------ #
    #  Risk metrics / summaries
    # ------------------------------------------------------------------ #

    def risk_metrics(self, holdings: Sequence[HoldingInput]) -> EngineResult:
        """
        Value-weighted volatility, max drawdown and beta plus diversification,
        ROI and Sharpe ratio.

        An empty holding set is an ``ERROR`` (no fallback is defined for it);
        a holding set worth nothing uses the neutral defaults.
        """
        positions = self.positions(holdings)
        if not positions:
            return EngineResult.failure(NoDataError("No holdings to assess."))

        try:
            symbols = [h.symbol for h in positions]
            series, notes = self._fetch(symbols + [self.benchmark_symbol])
            benchmark = MetricsEngine.daily_returns(series[self.benchmark_symbol])

            volatilities: Dict[str, float] = {}
            drawdowns:    Dict[str, float] = {}
            betas:        Dict[str, float] = {}
            expected:     Dict[str, float] = {}
            for s in symbols:
                returns = MetricsEngine.daily_returns(series[s])
                volatilities[s] = MetricsEngine.asset_volatility(returns, s)
                drawdowns[s]    = MetricsEngine.max_drawdown(series[s])
                expected[s]     = MetricsEngine.expected_return(returns, s)
                betas[s]        = self._beta(returns, benchmark, s, notes)

            if MetricsEngine.portfolio_value(positions) == 0:
                notes.append("Portfolio value is zero; neutral risk defaults used.")
                weights: Dict[str, float] = {}
            else:
                weights = MetricsEngine.value_weights(positions)

            volatility = MetricsEngine.portfolio_volatility(positions, volatilities)
            annual_return = sum(w * expected[s] for s, w in weights.items())
            metrics = RiskMetrics(
                volatility=volatility,
                max_drawdown=MetricsEngine.portfolio_max_drawdown(positions, drawdowns),
                beta=MetricsEngine.portfolio_beta(positions, betas),
                diversification_score=MetricsEngine.diversification_score(weights),
                roi=self._roi(positions),
                sharpe_ratio=MetricsEngine.sharpe_ratio(annual_return, volatility, RISK_FREE_RATE)
                if weights else 0.0,
            )
        except (NoDataError, DivisionHazardError) as exc:
            logger.warning("Risk metrics request failed: %s", exc)
            return EngineResult.failure(exc)
        return EngineResult.success(metrics, notes)

    def portfolio_summary(self, holdings: Sequence[HoldingInput]) -> EngineResult:
        """Totals and average per-asset ROI.  No price history is needed."""
        positions = self.positions(holdings)
        summary = PortfolioSummary(
            total_value=sum(h.current_value for h in positions),
            total_invested=sum(h.initial_investment for h in positions),
            total_profit_loss=sum(h.profit_loss for h in positions),
            average_roi=(sum(h.roi for h in positions) / len(positions)) if positions else 0.0,
            asset_count=len(positions),
        )
        return EngineResult.success(summary)

    def summarize_many(
        self,
        portfolios: Mapping[str, Sequence[HoldingInput]],
    ) -> Dict[str, EngineResult]:
        """
        :meth:`portfolio_summary` for several holding sets concurrently.

        Invalid holdings in one portfolio yield an ``ERROR`` result for that
        portfolio only.
        """
        if not portfolios:
            return {}
        workers = min(self.max_workers, len(portfolios))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="summary") as pool:
            futures = {key: pool.submit(self.portfolio_summary, h) for key, h in portfolios.items()}
            results: Dict[str, EngineResult] = {}
            for key, future in futures.items():
                try:
                    results[key] = future.result()
                except InvalidParameterError as exc:
                    logger.warning("Portfolio %s rejected: %s", key, exc)
                    results[key] = EngineResult.failure(exc)
            return results

    # ------------------------------------------------------------------ #
    #  Inputs
    # ------------------------------------------------------------------ #

    @staticmethod
    def positions(holdings: Iterable[HoldingInput]) -> List[Holding]:
        """
        Validated, consolidated positions.

        Accepts :class:`Holding` instances or payload dicts (snake_case or
        camelCase keys).

        Raises
        ------
        InvalidParameterError
            If any holding is malformed.
        """
        if holdings is None:
            return []
        parsed: List[Holding] = []
        for h in holdings:
            if isinstance(h, Holding):
                parsed.append(h)
            elif isinstance(h, Mapping):
                parsed.append(Holding.from_dict(h))
            else:
                raise InvalidParameterError(f"Unsupported holding entry: {h!r}", "holdings")
        return consolidate_holdings(parsed)

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    def _allocate(
        self,
        holdings: Sequence[HoldingInput],
        risk_tolerance: float,
        views: Optional[Mapping[str, float]],
    ) -> EngineResult:
        risk_tolerance = PortfolioEngine.validate_risk_tolerance(risk_tolerance)
        clean_views    = PortfolioEngine.validate_views(views) if views is not None else None
        positions      = self.positions(holdings)

        try:
            if not positions:
                raise NoDataError("Cannot rebalance an empty holding set.")
            MetricsEngine.value_weights(positions)

            symbols = [h.symbol for h in positions]
            returns, notes = self._asset_returns(symbols)
            expected = PortfolioEngine.expected_returns(symbols, returns)
            vols     = PortfolioEngine.volatilities(symbols, returns)

            target, mvo_notes = PortfolioEngine.mvo_allocation(expected, vols, risk_tolerance)
            notes += mvo_notes
            method = OptimizationMethod.MVO
            if clean_views:
                target, bl_notes = PortfolioEngine.black_litterman(target, clean_views)
                notes += bl_notes
                method = OptimizationMethod.BLACK_LITTERMAN

            plan = self.rebalancing_engine.build_plan(
                positions, target, expected, vols, risk_tolerance, method
            )
        except (NoDataError, DivisionHazardError) as exc:
            logger.warning("Allocation request failed: %s", exc)
            return EngineResult.failure(exc)
        return EngineResult.success(plan, notes)

    def _fetch(self, symbols: Sequence[str]) -> Tuple[Dict[str, PriceSeries], List[str]]:
        series = self.provider.get_many(list(dict.fromkeys(symbols)), self.history_days)
        notes = [
            f"Synthetic price history used for {s}."
            for s, ps in series.items() if ps.is_synthetic
        ]
        return series, notes

    def _asset_returns(self, symbols: Sequence[str]) -> Tuple[Dict[str, pd.Series], List[str]]:
        series, notes = self._fetch(symbols)
        returns = {s: MetricsEngine.daily_returns(ps) for s, ps in series.items()}
        for s, r in returns.items():
            if len(r) < 2:
                notes.append(f"Too little history for {s}; category defaults used.")
        return returns, notes

    def _beta(self, returns: pd.Series, benchmark: pd.Series, symbol: str, notes: List[str]) -> float:
        n = min(len(returns), len(benchmark))
        if n < 2:
            notes.append(f"Beta for {symbol} unavailable; neutral 1.0 used.")
            return MetricsEngine.NEUTRAL_DEFAULTS["beta"]
        return MetricsEngine.beta(returns.iloc[-n:], benchmark.iloc[-n:])

    @staticmethod
    def _roi(positions: Sequence[Holding]) -> float:
        invested = sum(h.initial_investment for h in positions)
        if invested == 0:
            return 0.0
        return sum(h.profit_loss for h in positions) / invested * 100.0
