"""
riskengine/errors.py
--------------------
Exception hierarchy for the risk engine.

Policy
------
* ``InvalidParameterError`` always propagates to the caller — the request is
  rejected before anything is computed.
* ``NoDataError`` and ``DivisionHazardError`` are recovered locally wherever a
  documented fallback exists.  When none does, :class:`RiskService` turns them
  into an ``ERROR`` :class:`~riskengine.models.EngineResult` so callers never
  mistake "could not compute risk" for "no risk".
* ``PriceFetchError`` never leaves the price-history layer; it triggers the
  synthetic series.
"""

from __future__ import annotations

from typing import Optional


class RiskEngineError(Exception):
    """Base exception for every error raised by the engine."""

    kind: str = "RISK_ENGINE_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        return {
            "error":   self.kind,
            "message": self.message,
            "field":   self.field,
        }

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class InvalidParameterError(RiskEngineError, ValueError):
    """A request parameter is out of range or malformed."""

    kind = "INVALID_PARAMETER"


class NoDataError(RiskEngineError):
    """Required input is missing and no fallback is defined for it."""

    kind = "NO_DATA"


class DivisionHazardError(RiskEngineError, ArithmeticError):
    """A zero denominator or non-finite value was met mid-calculation."""

    kind = "DIVISION_HAZARD"


class PriceFetchError(RiskEngineError):
    """The external historical price source failed or returned junk."""

    kind = "PRICE_FETCH_FAILED"
