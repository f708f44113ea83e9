from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from riskengine.config import (
    DEFAULT_BETA,
    DEFAULT_MAX_DRAWDOWN,
    DEFAULT_VOLATILITY,
    MOMENT_SPREAD_TOLERANCE,
    RISK_FREE_RATE,
    TRADING_DAYS,
)
from riskengine.constants import ASSET_CATEGORIES, DEFAULT_CATEGORY
from riskengine.errors import DivisionHazardError, NoDataError
from riskengine.models import Holding, PriceSeries

logger = logging.getLogger(__name__)

PriceInput = Union[PriceSeries, pd.Series, Sequence[float]]


class MetricsEngine:
    """
    Return and risk statistics for price / return series.

    Every method is static — no shared state.  Series are handled as
    ``pd.Series`` with a positional index; callers may pass a
    :class:`PriceSeries`, a Series, or any sequence of floats.
    """

    # Neutral portfolio-level values used when total portfolio value is zero.
    NEUTRAL_DEFAULTS: dict = {
        "volatility":   DEFAULT_VOLATILITY,
        "max_drawdown": DEFAULT_MAX_DRAWDOWN,
        "beta":         DEFAULT_BETA,
    }

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    @staticmethod
    def daily_returns(prices: PriceInput) -> pd.Series:
        """
        Simple daily returns ``r_i = (p_i - p_{i-1}) / p_{i-1}``.

        Pairs whose previous price is zero or missing are skipped, so the
        result has at most ``len(prices) - 1`` entries.
        """
        p    = MetricsEngine._as_series(prices)
        prev = p.shift(1)
        mask = prev.notna() & (prev != 0) & p.notna()
        returns = (p[mask] - prev[mask]) / prev[mask]
        return returns.reset_index(drop=True).astype(float)

    @staticmethod
    def combine_returns(
        returns: Mapping[str, pd.Series],
        weights: Optional[Mapping[str, float]] = None,
    ) -> pd.Series:
        """
        Weighted index-wise combination of several return series.

        All series are truncated to the shortest common length, keeping the
        most recent observations.  With ``weights=None`` every series counts
        equally; otherwise weights are re-normalised over the symbols present.

        Raises
        ------
        DivisionHazardError
            If the supplied weights sum to zero.
        """
        if not returns:
            return pd.Series(dtype=float)

        min_len = min(len(r) for r in returns.values())
        if min_len == 0:
            return pd.Series(dtype=float)

        if weights is None:
            w = {s: 1.0 for s in returns}
        else:
            w = {s: float(weights.get(s, 0.0)) for s in returns}
        total = sum(w.values())
        if total == 0:
            raise DivisionHazardError("Return weights sum to zero; cannot combine series.")

        combined = np.zeros(min_len)
        for symbol, series in returns.items():
            tail = series.to_numpy(dtype=float)[-min_len:]
            combined += (w[symbol] / total) * tail
        return pd.Series(combined, dtype=float)

    # ------------------------------------------------------------------
    # Moments
    # ------------------------------------------------------------------

    @staticmethod
    def mean_return(returns: PriceInput) -> float:
        """
        Mean daily return.

        Raises
        ------
        NoDataError
            On an empty series.
        """
        r = MetricsEngine._as_series(returns).dropna()
        if r.empty:
            raise NoDataError("Cannot average an empty return series.")
        return float(r.mean())

    @staticmethod
    def annualized_return(returns: PriceInput) -> float:
        return MetricsEngine.mean_return(returns) * TRADING_DAYS

    @staticmethod
    def volatility(returns: PriceInput) -> float:
        """
        Sample standard deviation of daily returns (ddof = 1).

        Raises
        ------
        NoDataError
            If fewer than two returns are present.
        """
        r = MetricsEngine._as_series(returns).dropna()
        if len(r) < 2:
            raise NoDataError(
                f"Insufficient data: {len(r)} returns (minimum 2 required for volatility)."
            )
        return float(r.std(ddof=1))

    @staticmethod
    def annualized_volatility(returns: PriceInput) -> float:
        """Annualised volatility = std(daily returns) × √252."""
        return MetricsEngine.volatility(returns) * math.sqrt(TRADING_DAYS)

    @staticmethod
    def skewness(returns: PriceInput) -> float:
        """
        Third standardised moment.  ``0.0`` with fewer than three points or
        when the series has no dispersion.
        """
        r = MetricsEngine._dispersed(returns)
        if r is None:
            return 0.0
        value = float(stats.skew(r, bias=True))
        return value if math.isfinite(value) else 0.0

    @staticmethod
    def kurtosis(returns: PriceInput) -> float:
        """
        Fourth standardised moment (normal distribution = 3).  ``0.0`` with
        fewer than three points or when the series has no dispersion.
        """
        r = MetricsEngine._dispersed(returns)
        if r is None:
            return 0.0
        value = float(stats.kurtosis(r, fisher=False, bias=True))
        return value if math.isfinite(value) else 0.0

    @staticmethod
    def excess_kurtosis(returns: PriceInput) -> float:
        """``kurtosis - 3``, or ``0.0`` whenever kurtosis is undefined."""
        k = MetricsEngine.kurtosis(returns)
        return k - 3.0 if k > 0.0 else 0.0

    @staticmethod
    def beta(asset_returns: PriceInput, benchmark_returns: PriceInput) -> float:
        """
        ``cov(asset, benchmark) / var(benchmark)``.

        Returns the neutral ``1.0`` when the series differ in length, have
        fewer than two points, or the benchmark does not move.
        """
        a = MetricsEngine._as_series(asset_returns).to_numpy(dtype=float)
        b = MetricsEngine._as_series(benchmark_returns).to_numpy(dtype=float)

        if len(a) != len(b) or len(a) < 2:
            return DEFAULT_BETA
        if not (np.isfinite(a).all() and np.isfinite(b).all()):
            return DEFAULT_BETA

        bench_var = float(np.var(b, ddof=1))
        if bench_var == 0.0:
            return DEFAULT_BETA

        cov = float(np.cov(a, b, ddof=1)[0, 1])
        return cov / bench_var

    @staticmethod
    def max_drawdown(prices: PriceInput) -> float:
        """
        Maximum peak-to-trough decline.

        Formula::

            MDD = max_t( (peak_t - price_t) / peak_t )

        Non-positive and missing prices are ignored.  Returns a decimal in
        ``[0, 1]``; ``0.0`` with fewer than two usable prices.
        """
        p = MetricsEngine._as_series(prices).dropna()
        p = p[p > 0]
        if len(p) < 2:
            return 0.0

        running_peak = p.cummax()
        drawdowns    = (running_peak - p) / running_peak
        return float(min(max(drawdowns.max(), 0.0), 1.0))

    @staticmethod
    def sharpe_ratio(
        annual_return: float,
        annual_volatility: float,
        risk_free_rate: float = RISK_FREE_RATE,
    ) -> float:
        """``(return - rf) / volatility``; ``0.0`` when volatility is zero."""
        if annual_volatility == 0.0:
            return 0.0
        return (annual_return - risk_free_rate) / annual_volatility

    # ------------------------------------------------------------------
    # Convenience: every per-asset statistic at once
    # ------------------------------------------------------------------

    @staticmethod
    def compute_all(prices: PriceInput) -> dict:
        """
        Per-asset statistics for one price series.

        Returns
        -------
        dict with keys:
            ``returns`` (pd.Series), ``mean_return``, ``volatility``
            (annualised, ``None`` with < 2 returns), ``skewness``,
            ``kurtosis``, ``max_drawdown``, ``latest_price``
        """
        p       = MetricsEngine._as_series(prices)
        returns = MetricsEngine.daily_returns(p)
        try:
            vol = MetricsEngine.annualized_volatility(returns)
        except NoDataError:
            vol = None
        return {
            "returns":      returns,
            "mean_return":  float(returns.mean()) if len(returns) else None,
            "volatility":   vol,
            "skewness":     MetricsEngine.skewness(returns),
            "kurtosis":     MetricsEngine.kurtosis(returns),
            "max_drawdown": MetricsEngine.max_drawdown(p),
            "latest_price": float(p.iloc[-1]) if len(p) else None,
        }

    # ------------------------------------------------------------------
    # Category defaults (used when real history is missing)
    # ------------------------------------------------------------------

    @staticmethod
    def category_for(symbol: str) -> dict:
        """First entry of ``ASSET_CATEGORIES`` whose marker occurs in *symbol*."""
        sym = (symbol or "").lower()
        for category in ASSET_CATEGORIES:
            if any(marker in sym for marker in category["markers"]):
                return category
        return DEFAULT_CATEGORY

    @staticmethod
    def default_volatility(symbol: str) -> float:
        return MetricsEngine.category_for(symbol)["volatility"]

    @staticmethod
    def default_expected_return(symbol: str) -> float:
        return MetricsEngine.category_for(symbol)["expected_return"]

    @staticmethod
    def expected_return(returns: PriceInput, symbol: str) -> float:
        """
        Annualised mean daily return, or the category default for *symbol*
        when fewer than two finite returns are available.
        """
        r = MetricsEngine._as_series(returns).dropna()
        if len(r) >= 2:
            value = float(r.mean()) * TRADING_DAYS
            if math.isfinite(value):
                return value
        logger.warning("No usable return history for %s; using category expected return", symbol)
        return MetricsEngine.default_expected_return(symbol)

    @staticmethod
    def asset_volatility(returns: PriceInput, symbol: str) -> float:
        """
        Annualised volatility, or the category default for *symbol* when it
        cannot be estimated or comes out as zero.
        """
        try:
            value = MetricsEngine.annualized_volatility(returns)
        except NoDataError:
            value = 0.0
        if value > 0.0 and math.isfinite(value):
            return value
        logger.warning("No usable volatility for %s; using category default", symbol)
        return MetricsEngine.default_volatility(symbol)

    # ------------------------------------------------------------------
    # Portfolio aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def portfolio_value(holdings: Iterable[Holding]) -> float:
        return float(sum(h.current_value for h in holdings))

    @staticmethod
    def value_weights(holdings: Sequence[Holding]) -> Dict[str, float]:
        """
        ``{symbol: quantity × price / total value}``; sums to 1.0.

        Holdings sharing a symbol are added together.

        Raises
        ------
        NoDataError
            If *holdings* is empty or the total portfolio value is zero.
        """
        if not holdings:
            raise NoDataError("No holdings supplied.")
        total = MetricsEngine.portfolio_value(holdings)
        if total == 0:
            raise NoDataError("Total portfolio value is zero; weights are undefined.")

        weights: Dict[str, float] = {}
        for h in holdings:
            weights[h.symbol] = weights.get(h.symbol, 0.0) + h.current_value / total
        return weights

    @staticmethod
    def weighted_average(
        holdings: Sequence[Holding],
        per_asset: Mapping[str, float],
        default: float,
    ) -> float:
        """
        Value-weighted average of *per_asset* values.

        Falls back to *default* when the portfolio has no value (or no
        holdings) instead of dividing by zero.  Symbols missing from
        *per_asset* contribute *default*.
        """
        try:
            weights = MetricsEngine.value_weights(holdings)
        except NoDataError:
            logger.warning("Portfolio has no value; using neutral default %.2f", default)
            return default
        return float(sum(w * per_asset.get(s, default) for s, w in weights.items()))

    @staticmethod
    def portfolio_volatility(holdings: Sequence[Holding], volatilities: Mapping[str, float]) -> float:
        return MetricsEngine.weighted_average(
            holdings, volatilities, MetricsEngine.NEUTRAL_DEFAULTS["volatility"]
        )

    @staticmethod
    def portfolio_max_drawdown(holdings: Sequence[Holding], drawdowns: Mapping[str, float]) -> float:
        return MetricsEngine.weighted_average(
            holdings, drawdowns, MetricsEngine.NEUTRAL_DEFAULTS["max_drawdown"]
        )

    @staticmethod
    def portfolio_beta(holdings: Sequence[Holding], betas: Mapping[str, float]) -> float:
        return MetricsEngine.weighted_average(
            holdings, betas, MetricsEngine.NEUTRAL_DEFAULTS["beta"]
        )

    @staticmethod
    def diversification_score(weights: Mapping[str, float]) -> float:
        """
        Diversification on a 0–100 scale from the Herfindahl index.

        Formula::

            HHI   = Σ wᵢ²
            score = (1 - HHI) / (1 - 1/n) × 100

        One asset (or an empty map) scores 0; equal weights score 100.
        """
        w = [v for v in weights.values() if v > 0]
        n = len(w)
        if n < 2:
            return 0.0
        total = sum(w)
        hhi   = sum((v / total) ** 2 for v in w)
        return float(max(0.0, min(100.0, (1.0 - hhi) / (1.0 - 1.0 / n) * 100.0)))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _as_series(data: PriceInput) -> pd.Series:
        if isinstance(data, PriceSeries):
            return data.to_series()
        if isinstance(data, pd.Series):
            return data.reset_index(drop=True).astype(float)
        return pd.Series(list(data), dtype=float)

    @staticmethod
    def _dispersed(data: PriceInput) -> Optional[np.ndarray]:
        """
        Finite values of *data*, or ``None`` when there are fewer than three
        or their spread is within rounding noise of their magnitude.
        """
        values = MetricsEngine._as_series(data).to_numpy(dtype=float)
        values = values[np.isfinite(values)]
        if len(values) < 3:
            return None
        scale = max(1.0, float(np.abs(values).max()))
        if float(np.ptp(values)) <= MOMENT_SPREAD_TOLERANCE * scale:
            return None
        return values
