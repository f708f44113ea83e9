from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional, Sequence

from riskengine.config import SUMMARY_RISK_TOLERANCE
from riskengine.errors import DivisionHazardError, InvalidParameterError, PriceFetchError
from riskengine.models import EngineResult
from riskengine.price_history import PriceHistoryProvider
from riskengine.report_builder import ReportBuilder
from riskengine.risk_service import RiskService

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="riskengine",
        description="Portfolio VaR, risk metrics and rebalancing from a holdings JSON file.",
    )
    parser.add_argument(
        "command",
        choices=["var", "rebalance", "metrics"],
        help="Report to produce.",
    )
    parser.add_argument(
        "holdings",
        help="JSON file with a list of {symbol, quantity, current_price, purchase_price} objects.",
    )
    parser.add_argument("--confidence", type=float, default=0.95, help="VaR confidence level.")
    parser.add_argument("--horizon", type=int, default=1, help="VaR time horizon in days.")
    parser.add_argument(
        "--risk-tolerance",
        type=float,
        default=SUMMARY_RISK_TOLERANCE,
        help="Risk budget in [0, 1] for the optimiser.",
    )
    parser.add_argument(
        "--view",
        action="append",
        default=[],
        metavar="SYMBOL=CONF",
        help="Black-Litterman view, confidence in [0, 1] (repeatable).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Skip the price API and use synthetic history only.",
    )
    parser.add_argument("--json", action="store_true", help="Print the report as JSON.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity.",
    )
    return parser.parse_args(argv)


def parse_views(raw: List[str]) -> Dict[str, float]:
    """``["ETH=0.8", ...]`` → ``{"ETH": 0.8}``."""
    views: Dict[str, float] = {}
    for item in raw:
        symbol, sep, value = item.partition("=")
        if not sep or not symbol.strip():
            raise InvalidParameterError(f"View must look like SYMBOL=CONF (got {item!r}).", "views")
        try:
            views[symbol.strip()] = float(value)
        except ValueError:
            raise InvalidParameterError(f"View confidence is not a number: {item!r}.", "views") from None
    return views


def load_holdings(path: str) -> list:
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("holdings", [])
    if not isinstance(data, list):
        raise InvalidParameterError("Holdings file must contain a JSON list.", "holdings")
    return data


def _offline_fetcher(symbol: str, days: int, timeout: float):
    raise PriceFetchError("offline mode")


def build_service(offline: bool = False) -> RiskService:
    provider = PriceHistoryProvider(fetcher=_offline_fetcher) if offline else PriceHistoryProvider()
    return RiskService(provider=provider)


def run(args: argparse.Namespace, service: RiskService) -> dict:
    holdings = load_holdings(args.holdings)

    if args.command == "var":
        result  = service.calculate_var(holdings, args.confidence, args.horizon)
        builder = ReportBuilder.var_report
    elif args.command == "rebalance":
        views = parse_views(args.view)
        if views:
            result = service.black_litterman_allocation(holdings, views, args.risk_tolerance)
        else:
            result = service.optimal_allocation(holdings, args.risk_tolerance)
        builder = ReportBuilder.rebalancing_report
    else:
        result  = service.risk_metrics(holdings)
        builder = ReportBuilder.risk_metrics_report

    body = None
    if result.ok:
        try:
            body = builder(result.value)
        except DivisionHazardError as exc:
            logger.error("Report for %s is not finite: %s", args.command, exc)
            result = EngineResult.failure(exc)
    return ReportBuilder.result_report(result, body)


def render(command: str, envelope: dict) -> str:
    if "report" not in envelope:
        return f"ERROR [{envelope['error_kind']}]: {envelope['error']}"

    formatter = {
        "var":       ReportBuilder.format_var,
        "rebalance": ReportBuilder.format_rebalancing,
        "metrics":   ReportBuilder.format_risk_metrics,
    }[command]
    text = formatter(envelope["report"])
    if envelope["fallbacks"]:
        text += "\n\nFallbacks used:\n" + "\n".join(f"  - {n}" for n in envelope["fallbacks"])
    return text


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        envelope = run(args, build_service(args.offline))
    except InvalidParameterError as exc:
        print(f"Invalid input: {exc.message}", file=sys.stderr)
        return 2
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Cannot read holdings: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(envelope, indent=2))
    else:
        print(render(args.command, envelope))
    return 0 if envelope["status"] != "ERROR" else 1


if __name__ == "__main__":
    sys.exit(main())
