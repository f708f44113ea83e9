"""
riskengine/rebalancing_engine.py
--------------------------------
Turns a target allocation into concrete BUY / SELL instructions.

Design contract:
  - Holdings in, :class:`AllocationPlan` out; no fetching, no optimisation
  - Only held assets get actions (a price is needed to size a trade)
  - Actions are ordered most urgent first
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence

from riskengine.config import (
    DRIFT_THRESHOLD,
    LOWEST_PRIORITY,
    PRIORITY_TIERS,
    TRANSACTION_COST_RATE,
)
from riskengine.enums import ActionType, OptimizationMethod
from riskengine.errors import NoDataError
from riskengine.metrics_engine import MetricsEngine
from riskengine.models import AllocationPlan, Holding, RebalancingAction, consolidate_holdings
from riskengine.portfolio_engine import PortfolioEngine

logger = logging.getLogger(__name__)


class RebalancingEngine:
    """
    Diff current against target weights.

    ``drift_threshold`` and ``cost_rate`` default to 1 % and 0.1 % and can be
    injected per instance.
    """

    def __init__(
        self,
        drift_threshold: float = DRIFT_THRESHOLD,
        cost_rate: float = TRANSACTION_COST_RATE,
    ):
        self.drift_threshold = drift_threshold
        self.cost_rate       = cost_rate

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #

    @staticmethod
    def current_allocation(holdings: Sequence[Holding]) -> Dict[str, float]:
        """Value weights of *holdings*; raises :class:`NoDataError` when there is no value."""
        return MetricsEngine.value_weights(consolidate_holdings(list(holdings)))

    @staticmethod
    def priority_for(drift: float) -> int:
        """Priority tier for an absolute weight drift: >15% → 1, >10% → 2, >5% → 3, else 4."""
        for lower_bound, tier in PRIORITY_TIERS:
            if drift > lower_bound:
                return tier
        return LOWEST_PRIORITY

    def generate_actions(
        self,
        holdings: Sequence[Holding],
        target_allocation: Mapping[str, float],
    ) -> List[RebalancingAction]:
        """
        One action per held asset whose drift exceeds the threshold.

        Target symbols that are not held are skipped with a warning.  The list
        is sorted by priority, then by drift (largest first), then symbol.
        """
        positions = consolidate_holdings(list(holdings))
        current   = MetricsEngine.value_weights(positions)
        total     = MetricsEngine.portfolio_value(positions)

        held = {h.symbol for h in positions}
        orphans = [s for s, w in target_allocation.items() if s not in held and w > 0]
        if orphans:
            logger.warning("Target weights for unheld symbols ignored: %s", orphans)

        actions: List[RebalancingAction] = []
        for h in positions:
            current_weight = current.get(h.symbol, 0.0)
            target_weight  = float(target_allocation.get(h.symbol, 0.0))
            drift          = abs(current_weight - target_weight)
            if drift <= self.drift_threshold:
                continue

            current_value = h.current_value
            target_value  = target_weight * total
            value_change  = target_value - current_value
            if value_change == 0:
                continue

            magnitude = abs(value_change)
            actions.append(RebalancingAction(
                symbol=h.symbol,
                action_type=ActionType.BUY if value_change > 0 else ActionType.SELL,
                quantity_change=magnitude / h.current_price,
                value_change=magnitude,
                current_weight=current_weight,
                target_weight=target_weight,
                transaction_cost=magnitude * self.cost_rate,
                priority=self.priority_for(drift),
                current_quantity=h.quantity,
                current_value=current_value,
                target_value=target_value,
                estimated_price=h.current_price,
            ))

        actions.sort(key=lambda a: (a.priority, -a.drift, a.symbol))
        return actions

    def build_plan(
        self,
        holdings: Sequence[Holding],
        target_allocation: Mapping[str, float],
        expected_returns: Mapping[str, float],
        volatilities: Mapping[str, float],
        risk_tolerance: float,
        method: OptimizationMethod = OptimizationMethod.MVO,
    ) -> AllocationPlan:
        """
        Assemble the full :class:`AllocationPlan`: both weight maps, the
        actions between them, and covariance-aware risk / return for each.

        Raises
        ------
        NoDataError
            If *holdings* is empty or worth nothing.
        """
        positions = consolidate_holdings(list(holdings))
        if not positions:
            raise NoDataError("Cannot rebalance an empty holding set.")

        current = MetricsEngine.value_weights(positions)
        symbols = [h.symbol for h in positions]
        target  = {s: float(target_allocation.get(s, 0.0)) for s in symbols}
        PortfolioEngine.check_weights(current)
        PortfolioEngine.check_weights(target)

        covariance = PortfolioEngine.covariance_matrix(symbols, volatilities)
        plan = AllocationPlan(
            current_allocation=current,
            target_allocation=target,
            actions=self.generate_actions(positions, target),
            current_risk=PortfolioEngine.portfolio_volatility(current, symbols, covariance),
            target_risk=PortfolioEngine.portfolio_volatility(target, symbols, covariance),
            current_return=PortfolioEngine.portfolio_return(current, expected_returns),
            expected_return=PortfolioEngine.portfolio_return(target, expected_returns),
            portfolio_value=MetricsEngine.portfolio_value(positions),
            risk_tolerance=float(risk_tolerance),
            optimization_method=method,
        )
        logger.info(
            "Rebalancing plan (%s): %d actions, drift %.4f, cost %.2f",
            method.value, len(plan.actions), plan.allocation_drift(), plan.total_transaction_cost,
        )
        return plan

