from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping

from riskengine.constants import VAR_METHODS
from riskengine.errors import DivisionHazardError
from riskengine.models import (
    AllocationPlan,
    EngineResult,
    PortfolioSummary,
    RebalancingAction,
    RiskMetrics,
    VaRResult,
)


class ReportBuilder:
    """
    Builds the boundary reports handed to collaborators.

    **Formatting-only** — every number is computed by the engines.  Dict
    reports use snake_case keys; every numeric field is checked to be a
    finite float, so NaN / Infinity can never reach a caller.
    """

    # ------------------------------------------------------------------ #
    #  Dict reports
    # ------------------------------------------------------------------ #

    @staticmethod
    def var_report(result: VaRResult) -> Dict[str, Any]:
        """VaR figures, each as an absolute amount and as % of portfolio value."""
        report: Dict[str, Any] = {
            "portfolio_value":       result.portfolio_value,
            "confidence_level":      result.confidence_level,
            "time_horizon_days":     result.time_horizon_days,
            "risk_level":            result.risk_level.value,
            "volatility":            result.volatility,
            "annualized_volatility": result.annualized_volatility,
            "skewness":              result.skewness,
            "kurtosis":              result.kurtosis,
            "expected_return":       result.expected_return,
            "asset_weights":         dict(result.asset_weights),
            "asset_returns":         dict(result.asset_returns),
            "num_simulations":       result.num_simulations,
            "history_points":        result.history_points,
            "computed_at":           result.computed_at.isoformat(),
        }
        for key in VAR_METHODS:
            amount = getattr(result, key)
            report[key]                 = amount
            report[f"{key}_percentage"] = result.percentage(amount)
        return ReportBuilder._finite(report)

    @staticmethod
    def action_report(action: RebalancingAction) -> Dict[str, Any]:
        return {
            "symbol":            action.symbol,
            "action_type":       action.action_type.value,
            "quantity_change":   action.quantity_change,
            "value_change":      action.value_change,
            "current_weight":    action.current_weight,
            "target_weight":     action.target_weight,
            "allocation_change": action.allocation_change,
            "current_quantity":  action.current_quantity,
            "target_quantity":   action.target_quantity,
            "current_value":     action.current_value,
            "target_value":      action.target_value,
            "estimated_price":   action.estimated_price,
            "transaction_cost":  action.transaction_cost,
            "net_impact":        action.net_impact,
            "priority":          action.priority,
            "description":       action.description,
        }

    @staticmethod
    def rebalancing_report(plan: AllocationPlan) -> Dict[str, Any]:
        report = {
            "current_allocation":     dict(plan.current_allocation),
            "target_allocation":      dict(plan.target_allocation),
            "recommended_actions":    [ReportBuilder.action_report(a) for a in plan.actions],
            "current_risk":           plan.current_risk,
            "target_risk":            plan.target_risk,
            "current_return":         plan.current_return,
            "expected_return":        plan.expected_return,
            "risk_reduction":         plan.risk_reduction,
            "return_improvement":     plan.return_improvement,
            "total_transaction_cost": plan.total_transaction_cost,
            "portfolio_value":        plan.portfolio_value,
            "risk_tolerance":         plan.risk_tolerance,
            "optimization_method":    plan.optimization_method.value,
            "allocation_drift":       plan.allocation_drift(),
            "needs_rebalancing":      plan.needs_rebalancing(),
            "portfolio_status":       plan.portfolio_status.value,
        }
        return ReportBuilder._finite(report)

    @staticmethod
    def risk_metrics_report(metrics: RiskMetrics) -> Dict[str, Any]:
        report = {
            "volatility":            metrics.volatility,
            "max_drawdown":          metrics.max_drawdown,
            "beta":                  metrics.beta,
            "diversification_score": metrics.diversification_score,
            "roi":                   metrics.roi,
            "sharpe_ratio":          metrics.sharpe_ratio,
            "risk_level":            metrics.risk_level.value,
            "diversification_level": metrics.diversification_level.value,
        }
        return ReportBuilder._finite(report)

    @staticmethod
    def summary_report(summary: PortfolioSummary) -> Dict[str, Any]:
        report = {
            "total_value":       summary.total_value,
            "total_invested":    summary.total_invested,
            "total_profit_loss": summary.total_profit_loss,
            "average_roi":       summary.average_roi,
            "asset_count":       summary.asset_count,
        }
        return ReportBuilder._finite(report)

    @staticmethod
    def result_report(result: EngineResult, body: Mapping[str, Any] = None) -> Dict[str, Any]:
        """
        Wrap a report body in its result envelope.

        An ``ERROR`` result carries ``error`` / ``error_kind`` and no
        ``report`` key at all, so it cannot be read as a zero-valued report.
        """
        envelope: Dict[str, Any] = {
            "status":    result.status.value,
            "fallbacks": list(result.fallbacks),
        }
        if result.ok:
            envelope["report"] = dict(body or {})
        else:
            envelope["error"]      = result.error
            envelope["error_kind"] = result.error_kind
        return envelope

    # ------------------------------------------------------------------ #
    #  Text rendering
    # ------------------------------------------------------------------ #

    @staticmethod
    def format_var(report: Mapping[str, Any]) -> str:
        lines = [
            f"Portfolio value : ${report['portfolio_value']:,.2f}",
            f"Confidence      : {report['confidence_level']:.1%}   "
            f"Horizon: {report['time_horizon_days']} day(s)",
            f"Risk level      : {report['risk_level']}",
            "",
        ]
        for key, meta in VAR_METHODS.items():
            lines.append(
                f"  {meta['display']:<16} {meta['unit']}{report[key]:>14,.2f}"
                f"   ({report[f'{key}_percentage']:.2f}%)"
            )
        lines += [
            "",
            f"Daily volatility: {report['volatility']:.4%}   "
            f"(annualised {report['annualized_volatility']:.2%})",
            f"Skewness        : {report['skewness']:.3f}   Kurtosis: {report['kurtosis']:.3f}",
            f"Expected return : {report['expected_return']:.4%} per day",
            "Weights         : " + ReportBuilder._weights_line(report["asset_weights"]),
        ]
        return "\n".join(lines)

    @staticmethod
    def format_rebalancing(report: Mapping[str, Any]) -> str:
        lines = [
            f"Method          : {report['optimization_method']}   "
            f"Status: {report['portfolio_status']}",
            "Current         : " + ReportBuilder._weights_line(report["current_allocation"]),
            "Target          : " + ReportBuilder._weights_line(report["target_allocation"]),
            f"Risk            : {report['current_risk']:.2%} → {report['target_risk']:.2%}",
            f"Expected return : {report['current_return']:.2%} → {report['expected_return']:.2%}",
            f"Transaction cost: ${report['total_transaction_cost']:,.2f}",
        ]
        actions: List[Mapping[str, Any]] = report["recommended_actions"]
        if not actions:
            lines.append("No rebalancing needed.")
        for a in actions:
            lines.append(f"  [P{a['priority']}] {a['description']}  (${a['value_change']:,.2f})")
        return "\n".join(lines)

    @staticmethod
    def format_risk_metrics(report: Mapping[str, Any]) -> str:
        return "\n".join([
            f"Volatility      : {report['volatility']:.2%}",
            f"Max drawdown    : {report['max_drawdown']:.2%}",
            f"Beta            : {report['beta']:.2f}",
            f"Diversification : {report['diversification_score']:.1f}/100 "
            f"({report['diversification_level']})",
            f"ROI             : {report['roi']:.2f}%",
            f"Sharpe ratio    : {report['sharpe_ratio']:.2f}",
            f"Risk level      : {report['risk_level']}",
        ])

    # ------------------------------------------------------------------ #
    #  Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _weights_line(weights: Mapping[str, float]) -> str:
        return ", ".join(f"{s} {w:.1%}" for s, w in weights.items()) or "-"

    @staticmethod
    def _finite(value: Any, path: str = "report") -> Any:
        """Recursively verify every float is finite; returns *value* unchanged."""
        if isinstance(value, bool):
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise DivisionHazardError(f"Non-finite value at {path}: {value!r}")
            return value
        if isinstance(value, dict):
            for k, v in value.items():
                ReportBuilder._finite(v, f"{path}.{k}")
            return value
        if isinstance(value, list):
            for i, v in enumerate(value):
                ReportBuilder._finite(v, f"{path}[{i}]")
        return value
