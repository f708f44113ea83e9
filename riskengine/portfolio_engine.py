"""
riskengine/portfolio_engine.py
------------------------------
Pure transformation engine: per-asset return statistics → target weights.

Design contract:
  - No price fetching; return series are passed in
  - No holdings bookkeeping (that lives in RebalancingEngine)
  - Fully deterministic and stateless (all methods are @staticmethod)
  - Every weight map returned sums to 1.0 within ``WEIGHT_TOLERANCE``;
    a map that cannot be normalised raises instead of leaking out
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from riskengine.config import (
    ASSUMED_CORRELATION,
    MAX_ASSET_WEIGHT,
    MAX_VIEW_ADJUSTMENT,
    MAX_VIEW_WEIGHT,
    NEUTRAL_VIEW,
    RISK_FREE_RATE,
    WEIGHT_TOLERANCE,
)
from riskengine.errors import DivisionHazardError, InvalidParameterError
from riskengine.metrics_engine import MetricsEngine

logger = logging.getLogger(__name__)


class PortfolioEngine:
    """
    Mean-variance target allocation with an optional view-based tilt.

    Two modes share one core step:
        ``mvo_allocation``   – greedy risk-budgeted MVO over Sharpe-like scores
        ``black_litterman``  – shift MVO weights toward user views, then
                               re-normalise

    The covariance model is deliberately simple: per-asset variances on the
    diagonal and a single assumed correlation everywhere else, so no
    synchronised multi-asset history is needed.
    """

    # ------------------------------------------------------------------ #
    #  Inputs: expected returns, volatilities, covariance
    # ------------------------------------------------------------------ #

    @staticmethod
    def expected_returns(
        symbols: Sequence[str],
        asset_returns: Mapping[str, pd.Series],
    ) -> Dict[str, float]:
        """Annualised expected return per symbol (category default when history is missing)."""
        return {
            s: MetricsEngine.expected_return(asset_returns.get(s, []), s)
            for s in symbols
        }

    @staticmethod
    def volatilities(
        symbols: Sequence[str],
        asset_returns: Mapping[str, pd.Series],
    ) -> Dict[str, float]:
        """Annualised volatility per symbol (category default when missing or zero)."""
        return {
            s: MetricsEngine.asset_volatility(asset_returns.get(s, []), s)
            for s in symbols
        }

    @staticmethod
    def covariance_matrix(
        symbols: Sequence[str],
        volatilities: Mapping[str, float],
        correlation: float = ASSUMED_CORRELATION,
    ) -> np.ndarray:
        """
        N×N annualised covariance in *symbols* order.

        Formula::

            Σᵢᵢ = σᵢ²
            Σᵢⱼ = ρ · σᵢ · σⱼ      (i ≠ j, constant ρ)
        """
        sigma = np.array([volatilities[s] for s in symbols], dtype=float)
        cov   = correlation * np.outer(sigma, sigma)
        np.fill_diagonal(cov, sigma ** 2)
        return cov

    # ------------------------------------------------------------------ #
    #  Portfolio-level figures
    # ------------------------------------------------------------------ #

    @staticmethod
    def portfolio_volatility(
        weights: Mapping[str, float],
        symbols: Sequence[str],
        covariance: np.ndarray,
    ) -> float:
        """
        Portfolio volatility ``σp = √(wᵀ Σ w)``.

        Symbols absent from *weights* count as zero weight.  Returns ``0.0``
        for an empty symbol list.
        """
        if not symbols:
            return 0.0
        if covariance.shape != (len(symbols), len(symbols)):
            raise ValueError(
                f"Covariance matrix is {covariance.shape}, expected "
                f"{len(symbols)}×{len(symbols)}."
            )
        w = np.array([weights.get(s, 0.0) for s in symbols], dtype=float)
        variance = float(w @ covariance @ w)
        # Floating-point noise can produce tiny negatives
        return math.sqrt(max(variance, 0.0))

    @staticmethod
    def portfolio_return(weights: Mapping[str, float], expected: Mapping[str, float]) -> float:
        """``Rp = Σ wᵢ · E[rᵢ]``."""
        return float(sum(w * expected.get(s, 0.0) for s, w in weights.items()))

    @staticmethod
    def portfolio_sharpe(
        weights: Mapping[str, float],
        expected: Mapping[str, float],
        symbols: Sequence[str],
        covariance: np.ndarray,
    ) -> float:
        """Covariance-aware Sharpe ratio; ``0.0`` when portfolio volatility is zero."""
        vol = PortfolioEngine.portfolio_volatility(weights, symbols, covariance)
        return MetricsEngine.sharpe_ratio(
            PortfolioEngine.portfolio_return(weights, expected), vol, RISK_FREE_RATE
        )

    # ------------------------------------------------------------------ #
    #  MVO
    # ------------------------------------------------------------------ #

    @staticmethod
    def mvo_allocation(
        expected: Mapping[str, float],
        volatilities: Mapping[str, float],
        risk_tolerance: float,
        max_weight: float = MAX_ASSET_WEIGHT,
    ) -> Tuple[Dict[str, float], List[str]]:
        """
        Greedy risk-budgeted mean-variance allocation.

        Algorithm
        ---------
        1. Score every asset by ``E[r] / σ``.
        2. Sort descending by score (ties: symbol ascending).
        3. Walk the list with ``budget = risk_tolerance``::

               w        = min(max_weight, budget) × (1 - allocated)
               budget  -= w × σ

           skipping once the budget or the total weight is used up.
        4. Re-normalise the assigned weights to sum to 1.0.

        If nothing could be assigned (e.g. ``risk_tolerance == 0``) the whole
        portfolio goes to the lowest-volatility asset and a fallback note is
        returned.

        Returns
        -------
        ``(weights, notes)`` — *weights* covers every input symbol (zero for
        those left out).

        Raises
        ------
        InvalidParameterError
            If *risk_tolerance* is outside [0, 1] or there are no assets.
        DivisionHazardError
            If an asset's volatility is not strictly positive.
        """
        risk_tolerance = PortfolioEngine.validate_risk_tolerance(risk_tolerance)
        symbols = list(expected)
        if not symbols:
            raise InvalidParameterError("Cannot optimise an empty asset set.", "holdings")

        scores: Dict[str, float] = {}
        for s in symbols:
            vol = float(volatilities.get(s, 0.0))
            if not vol > 0.0 or not math.isfinite(vol):
                raise DivisionHazardError(f"Volatility for {s!r} must be positive (got {vol}).")
            scores[s] = float(expected[s]) / vol

        ranked = sorted(symbols, key=lambda s: (-scores[s], s))
        raw    = PortfolioEngine.greedy_weights(ranked, volatilities, risk_tolerance, max_weight)

        notes: List[str] = []
        if sum(raw.values()) <= 0.0:
            safest = min(symbols, key=lambda s: (volatilities[s], s))
            raw[safest] = 1.0
            notes.append(
                f"Risk budget {risk_tolerance:.2f} allowed no allocation; "
                f"placed 100% in lowest-volatility asset {safest}."
            )
            logger.warning("MVO: empty allocation at tolerance %.2f; using %s", risk_tolerance, safest)

        weights = PortfolioEngine.normalize(raw)
        logger.debug("MVO weights: %s", weights)
        return weights, notes

    @staticmethod
    def greedy_weights(
        ranked: Sequence[str],
        volatilities: Mapping[str, float],
        risk_tolerance: float,
        max_weight: float = MAX_ASSET_WEIGHT,
    ) -> Dict[str, float]:
        """
        Pre-normalisation weights from the greedy walk over *ranked* symbols
        (best score first).  Every symbol is present; unassigned ones are 0.
        """
        raw: Dict[str, float] = {s: 0.0 for s in ranked}
        allocated = 0.0
        budget    = risk_tolerance
        for s in ranked:
            if budget <= 0.0 or allocated >= 1.0:
                break
            weight = min(max_weight, budget) * (1.0 - allocated)
            if weight <= 0.0:
                continue
            raw[s]     = weight
            allocated += weight
            budget    -= weight * volatilities[s]
        return raw

    # ------------------------------------------------------------------ #
    #  Black-Litterman tilt
    # ------------------------------------------------------------------ #

    @staticmethod
    def black_litterman(
        baseline: Mapping[str, float],
        views: Optional[Mapping[str, float]],
        max_adjustment: float = MAX_VIEW_ADJUSTMENT,
        max_weight: float = MAX_VIEW_WEIGHT,
    ) -> Tuple[Dict[str, float], List[str]]:
        """
        Shift *baseline* weights toward user views.

        For every viewed symbol present in *baseline*::

            w' = clamp(w + (view - 0.5) × 2 × max_adjustment, 0, max_weight)

        then the full map is re-normalised.  ``view = 0.5`` is neutral,
        ``1.0`` maximally bullish, ``0.0`` maximally bearish.  Views on
        symbols not held are ignored.

        Raises
        ------
        InvalidParameterError
            If any view confidence is outside [0, 1].
        """
        views = PortfolioEngine.validate_views(views)
        adjusted = dict(baseline)
        notes: List[str] = []

        for symbol, confidence in views.items():
            key = PortfolioEngine._match_symbol(symbol, adjusted)
            if key is None:
                logger.info("Ignoring view on %s: not in portfolio", symbol)
                continue
            shift = (confidence - NEUTRAL_VIEW) * 2.0 * max_adjustment
            adjusted[key] = min(max(adjusted[key] + shift, 0.0), max_weight)

        try:
            weights = PortfolioEngine.normalize(adjusted)
        except DivisionHazardError:
            notes.append("Views removed every weight; kept the baseline MVO allocation.")
            logger.warning("Black-Litterman: adjusted weights sum to zero; using baseline")
            weights = PortfolioEngine.normalize(dict(baseline))
        return weights, notes

    # ------------------------------------------------------------------ #
    #  Validation / normalisation
    # ------------------------------------------------------------------ #

    @staticmethod
    def validate_risk_tolerance(risk_tolerance) -> float:
        if isinstance(risk_tolerance, bool):
            raise InvalidParameterError("risk_tolerance must be a number.", "risk_tolerance")
        try:
            value = float(risk_tolerance)
        except (TypeError, ValueError):
            raise InvalidParameterError(
                f"risk_tolerance must be a number (got {risk_tolerance!r}).", "risk_tolerance"
            ) from None
        if not (math.isfinite(value) and 0.0 <= value <= 1.0):
            raise InvalidParameterError(
                f"risk_tolerance must be between 0 and 1 (got {risk_tolerance}).", "risk_tolerance"
            )
        return value

    @staticmethod
    def validate_views(views: Optional[Mapping[str, float]]) -> Dict[str, float]:
        """Return a clean ``{symbol: confidence}`` copy of *views*."""
        if not views:
            return {}
        clean: Dict[str, float] = {}
        seen: Dict[str, str] = {}
        for symbol, confidence in views.items():
            if not isinstance(symbol, str) or not symbol.strip():
                raise InvalidParameterError("View symbol must be a non-empty string.", "views")
            key = symbol.strip().lower()
            if key in seen:
                raise InvalidParameterError(
                    f"Duplicate views on {seen[key]!r} and {symbol!r}.", "views"
                )
            seen[key] = symbol
            try:
                value = float(confidence)
            except (TypeError, ValueError):
                raise InvalidParameterError(
                    f"View on {symbol!r} must be a number (got {confidence!r}).", "views"
                ) from None
            if not (math.isfinite(value) and 0.0 <= value <= 1.0):
                raise InvalidParameterError(
                    f"View on {symbol!r} must be between 0 and 1 (got {confidence}).", "views"
                )
            clean[symbol.strip()] = value
        return clean

    @staticmethod
    def normalize(weights: Mapping[str, float]) -> Dict[str, float]:
        """
        Scale *weights* so they sum to 1.0.

        Raises
        ------
        DivisionHazardError
            If the weights sum to zero (or are not finite), rather than
            returning an unnormalised map.
        """
        total = float(sum(weights.values()))
        if total <= 0.0 or not math.isfinite(total):
            raise DivisionHazardError(f"Weights sum to {total}; cannot normalise.")
        normalised = {s: w / total for s, w in weights.items()}
        PortfolioEngine.check_weights(normalised)
        return normalised

    @staticmethod
    def check_weights(weights: Mapping[str, float], tolerance: float = WEIGHT_TOLERANCE) -> None:
        """Raise :class:`DivisionHazardError` unless *weights* sum to 1 ± *tolerance*."""
        total = float(sum(weights.values()))
        if abs(total - 1.0) > tolerance:
            raise DivisionHazardError(f"Weights sum to {total}, not 1.0.")

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _match_symbol(symbol: str, weights: Mapping[str, float]) -> Optional[str]:
        """Case-insensitive lookup of *symbol* among the keys of *weights*."""
        if symbol in weights:
            return symbol
        lowered = symbol.lower()
        for key in weights:
            if key.lower() == lowered:
                return key
        return None
