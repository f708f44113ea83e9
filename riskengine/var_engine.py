"""
riskengine/var_engine.py
------------------------
Value-at-Risk under four methodologies for one holding set.

Design contract:
  - No price fetching; per-asset return series are passed in
  - Parameters are validated before anything is computed
  - Every VaR figure is a non-negative monetary loss, capped at portfolio value
  - CVaR >= Historical VaR for the same confidence and horizon
  - Short history falls back to a parametric estimate from category
    volatilities instead of failing

Methods
-------
Historical    — tail percentile of the value-weighted portfolio return series
Parametric    — value × z(c) × σ_daily × √h
Monte Carlo   — tail percentile of Cornish-Fisher-expanded normal draws
Conditional   — mean of the historical returns at or beyond the VaR cut-off
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from riskengine.config import (
    CF_EXCESS_KURTOSIS_BOUNDS,
    CF_SKEW_BOUNDS,
    MAX_CONFIDENCE,
    MAX_HORIZON_DAYS,
    MIN_CONFIDENCE,
    MIN_HISTORY_POINTS,
    MIN_HORIZON_DAYS,
    MONTE_CARLO_SIMULATIONS,
    TRADING_DAYS,
)
from riskengine.errors import DivisionHazardError, InvalidParameterError, NoDataError
from riskengine.metrics_engine import MetricsEngine
from riskengine.models import Holding, VaRResult

logger = logging.getLogger(__name__)


class VaREngine:
    """
    Compute a :class:`VaRResult` from holdings and their daily returns.

    Parameters
    ----------
    num_simulations : int
        Monte Carlo draws (at least 10,000 in production use).
    seed : int, optional
        Seed for the Monte Carlo generator.  ``None`` = non-deterministic.
    min_history_points : int
        Portfolio returns required before the empirical tail is trusted.
    """

    def __init__(
        self,
        num_simulations: int = MONTE_CARLO_SIMULATIONS,
        seed: Optional[int] = None,
        min_history_points: int = MIN_HISTORY_POINTS,
    ):
        if num_simulations < 1:
            raise ValueError(f"num_simulations must be >= 1 (got {num_simulations}).")
        self.num_simulations    = num_simulations
        self.seed               = seed
        self.min_history_points = max(2, min_history_points)

    # ------------------------------------------------------------------ #
    #  Public entry point
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_parameters(confidence_level, time_horizon_days) -> Tuple[float, int]:
        """
        Raises
        ------
        InvalidParameterError
            If confidence is outside [0.5, 0.999] or the horizon outside
            [1, 365] days.
        """
        if isinstance(confidence_level, bool):
            raise InvalidParameterError("confidence_level must be a number.", "confidence_level")
        try:
            confidence = float(confidence_level)
        except (TypeError, ValueError):
            raise InvalidParameterError(
                f"confidence_level must be a number (got {confidence_level!r}).",
                "confidence_level",
            ) from None
        if not (math.isfinite(confidence) and MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE):
            raise InvalidParameterError(
                f"confidence_level must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE} "
                f"(got {confidence_level}).",
                "confidence_level",
            )

        if isinstance(time_horizon_days, bool) or not isinstance(time_horizon_days, (int, np.integer)):
            raise InvalidParameterError(
                f"time_horizon_days must be an integer (got {time_horizon_days!r}).",
                "time_horizon_days",
            )
        if not MIN_HORIZON_DAYS <= time_horizon_days <= MAX_HORIZON_DAYS:
            raise InvalidParameterError(
                f"time_horizon_days must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS} "
                f"(got {time_horizon_days}).",
                "time_horizon_days",
            )
        return confidence, int(time_horizon_days)

    def calculate(
        self,
        holdings: Sequence[Holding],
        asset_returns: Mapping[str, pd.Series],
        confidence_level: float = 0.95,
        time_horizon_days: int = 1,
    ) -> Tuple[VaRResult, List[str]]:
        """
        Compute all four VaR figures.

        Parameters
        ----------
        holdings:
            Positions to evaluate (symbols should already be consolidated).
        asset_returns:
            ``{symbol: daily return series}``.  Missing symbols are left out
            of the historical combination.
        confidence_level, time_horizon_days:
            Validated by :meth:`validate_parameters`.

        Returns
        -------
        ``(VaRResult, fallback_notes)`` — the notes list is empty when no
        documented default was needed.

        Raises
        ------
        InvalidParameterError
            Bad confidence or horizon.
        NoDataError
            Empty holdings or zero portfolio value.
        """
        confidence, horizon = self.validate_parameters(confidence_level, time_horizon_days)
        notes: List[str] = []

        if not holdings:
            raise NoDataError("Cannot compute VaR for an empty holding set.")
        weights = MetricsEngine.value_weights(holdings)
        value   = MetricsEngine.portfolio_value(holdings)

        portfolio_returns = self._portfolio_returns(weights, asset_returns, notes)
        n = len(portfolio_returns)

        skewness = MetricsEngine.skewness(portfolio_returns)
        kurtosis = MetricsEngine.kurtosis(portfolio_returns)

        sufficient = n >= self.min_history_points
        if sufficient:
            sigma = MetricsEngine.volatility(portfolio_returns)
            mu    = MetricsEngine.mean_return(portfolio_returns)
        else:
            sigma = self._category_daily_volatility(weights)
            mu    = self._category_daily_return(weights)
            notes.append(
                f"Insufficient history ({n} portfolio returns, {self.min_history_points} required); "
                "historical and conditional VaR use the parametric estimate with category volatility."
            )
            logger.warning(
                "VaR: only %d portfolio returns; falling back to category volatility %.4f",
                n, sigma,
            )

        z       = float(norm.ppf(confidence))
        sqrt_h  = math.sqrt(horizon)

        parametric = value * z * sigma * sqrt_h

        if sufficient:
            sorted_returns = np.sort(portfolio_returns.to_numpy(dtype=float))
            idx            = self._tail_index(confidence, n)
            historical     = -float(sorted_returns[idx]) * value * sqrt_h
            conditional    = -float(sorted_returns[: idx + 1].mean()) * value * sqrt_h
        else:
            historical  = parametric
            # Normal expected shortfall: σ φ(z) / (1 - c)
            conditional = value * sigma * float(norm.pdf(z)) / (1.0 - confidence) * sqrt_h

        monte_carlo = self._monte_carlo(
            mu, sigma, skewness, MetricsEngine.excess_kurtosis(portfolio_returns),
            confidence, value, sqrt_h,
        )

        historical, parametric, monte_carlo, conditional = (
            self._bound(v, value) for v in (historical, parametric, monte_carlo, conditional)
        )
        conditional = max(conditional, historical)

        per_asset = {
            symbol: MetricsEngine.expected_return(asset_returns.get(symbol, []), symbol)
            for symbol in weights
        }

        result = VaRResult(
            confidence_level=confidence,
            time_horizon_days=horizon,
            portfolio_value=value,
            historical_var=historical,
            parametric_var=parametric,
            monte_carlo_var=monte_carlo,
            conditional_var=conditional,
            volatility=sigma,
            annualized_volatility=sigma * math.sqrt(TRADING_DAYS),
            skewness=skewness,
            kurtosis=kurtosis,
            expected_return=mu,
            asset_weights=dict(weights),
            asset_returns=per_asset,
            num_simulations=self.num_simulations,
            history_points=n,
        )
        logger.info(
            "VaR computed: value=%.2f c=%.3f h=%d hist=%.2f param=%.2f mc=%.2f cvar=%.2f",
            value, confidence, horizon, historical, parametric, monte_carlo, conditional,
        )
        return result, notes

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _tail_index(confidence: float, n: int) -> int:
        """Zero-based index of the (1 - c) empirical percentile in *n* sorted values."""
        # rounded so that e.g. (1 - 0.95) * 100 lands on 5, not 5.000000000000004
        idx = int(math.ceil(round((1.0 - confidence) * n, 9))) - 1
        return min(max(idx, 0), n - 1)

    @staticmethod
    def _portfolio_returns(
        weights: Dict[str, float],
        asset_returns: Mapping[str, pd.Series],
        notes: List[str],
    ) -> pd.Series:
        present = {s: asset_returns[s] for s in weights if s in asset_returns and len(asset_returns[s])}
        missing = [s for s in weights if s not in present]
        if missing:
            notes.append(f"No return history for {', '.join(missing)}; left out of historical VaR.")
            logger.warning("VaR: no return history for %s", missing)
        if not present or sum(weights[s] for s in present) == 0:
            return pd.Series(dtype=float)
        return MetricsEngine.combine_returns(present, weights)

    @staticmethod
    def _category_daily_volatility(weights: Dict[str, float]) -> float:
        annual = sum(w * MetricsEngine.default_volatility(s) for s, w in weights.items())
        return annual / math.sqrt(TRADING_DAYS)

    @staticmethod
    def _category_daily_return(weights: Dict[str, float]) -> float:
        annual = sum(w * MetricsEngine.default_expected_return(s) for s, w in weights.items())
        return annual / TRADING_DAYS

    def _monte_carlo(
        self,
        mu: float,
        sigma: float,
        skew: float,
        excess_kurt: float,
        confidence: float,
        value: float,
        sqrt_h: float,
    ) -> float:
        """
        Simulated one-day portfolio returns via the Cornish-Fisher expansion::

            z_cf = z + (z² - 1)S/6 + (z³ - 3z)K/24 - (2z³ - 5z)S²/36
            r    = μ + σ · z_cf

        S and K (excess) are clipped to keep the expansion monotone.
        """
        s = float(np.clip(skew, *CF_SKEW_BOUNDS))
        k = float(np.clip(excess_kurt, *CF_EXCESS_KURTOSIS_BOUNDS))

        rng = np.random.default_rng(self.seed)
        z   = rng.standard_normal(self.num_simulations)
        z_cf = (
            z
            + (z ** 2 - 1.0) * s / 6.0
            + (z ** 3 - 3.0 * z) * k / 24.0
            - (2.0 * z ** 3 - 5.0 * z) * s ** 2 / 36.0
        )
        simulated = np.sort(mu + sigma * z_cf)
        idx = self._tail_index(confidence, self.num_simulations)
        return -float(simulated[idx]) * value * sqrt_h

    @staticmethod
    def _bound(amount: float, value: float) -> float:
        """
        Clamp a loss estimate to ``[0, value]``.

        Raises
        ------
        DivisionHazardError
            If the estimate is NaN or infinite.
        """
        if not math.isfinite(amount):
            raise DivisionHazardError(f"VaR estimate is not finite ({amount!r}).")
        return min(max(amount, 0.0), value)
