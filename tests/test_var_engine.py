"""
tests/test_var_engine.py
------------------------
Unit tests for VaREngine.

Test coverage:
    validation          — confidence / horizon bounds and types
    bounds              — every figure in [0, value], CVaR >= historical
    historical / CVaR   — known tail on a hand-built return series
    horizon scaling     — √h
    Monte Carlo         — seed determinism, agreement with parametric for normal data
    short history       — category-volatility fallback with a note
    degenerate input    — empty holdings, zero value, missing series
"""

import math
import unittest

import numpy as np
import pandas as pd

from riskengine.enums import RiskLevel
from riskengine.errors import InvalidParameterError, NoDataError
from riskengine.models import Holding
from riskengine.var_engine import VaREngine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _btc() -> list:
    return [Holding("BTC", 1.0, 50_000.0, 40_000.0)]


def _normal_returns(n: int = 252, sigma: float = 0.03, seed: int = 1) -> pd.Series:
    r = np.random.default_rng(seed).normal(0.0, sigma, size=n)
    return pd.Series(r - r.mean())


def _engine(**kwargs) -> VaREngine:
    kwargs.setdefault("seed", 42)
    return VaREngine(**kwargs)


# ===========================================================================
# 1. Parameter validation
# ===========================================================================

class TestValidation(unittest.TestCase):

    def test_confidence_out_of_range(self):
        for bad in (0.49, 1.0, 0.9991, -0.95, float("nan")):
            with self.assertRaises(InvalidParameterError):
                VaREngine.validate_parameters(bad, 1)

    def test_confidence_wrong_type(self):
        for bad in ("high", None, True):
            with self.assertRaises(InvalidParameterError):
                VaREngine.validate_parameters(bad, 1)

    def test_horizon_out_of_range(self):
        for bad in (0, -1, 366):
            with self.assertRaises(InvalidParameterError):
                VaREngine.validate_parameters(0.95, bad)

    def test_horizon_must_be_integer(self):
        for bad in (1.5, "1", True):
            with self.assertRaises(InvalidParameterError):
                VaREngine.validate_parameters(0.95, bad)

    def test_boundaries_accepted(self):
        self.assertEqual(VaREngine.validate_parameters(0.5, 1), (0.5, 1))
        self.assertEqual(VaREngine.validate_parameters(0.999, 365), (0.999, 365))

    def test_calculate_rejects_before_computing(self):
        with self.assertRaises(InvalidParameterError):
            _engine().calculate([], {}, confidence_level=1.5)

    def test_invalid_simulation_count(self):
        with self.assertRaises(ValueError):
            VaREngine(num_simulations=0)


# ===========================================================================
# 2. Bounds and ordering
# ===========================================================================

class TestBounds(unittest.TestCase):

    def setUp(self):
        self.result, self.notes = _engine().calculate(
            _btc(), {"BTC": _normal_returns()}, 0.95, 1
        )

    def test_all_figures_positive_and_below_value(self):
        for v in (self.result.historical_var, self.result.parametric_var,
                  self.result.monte_carlo_var, self.result.conditional_var):
            self.assertGreater(v, 0.0)
            self.assertLess(v, 50_000.0)

    def test_cvar_at_least_historical(self):
        self.assertGreaterEqual(self.result.conditional_var, self.result.historical_var)

    def test_cvar_at_least_historical_across_confidences(self):
        engine = _engine()
        for c in (0.5, 0.8, 0.9, 0.95, 0.99, 0.999):
            result, _ = engine.calculate(_btc(), {"BTC": _normal_returns(seed=5)}, c, 1)
            self.assertGreaterEqual(result.conditional_var, result.historical_var)

    def test_no_notes_with_full_history(self):
        self.assertEqual(self.notes, [])

    def test_descriptive_fields(self):
        self.assertEqual(self.result.portfolio_value, 50_000.0)
        self.assertEqual(self.result.asset_weights, {"BTC": 1.0})
        self.assertEqual(self.result.history_points, 252)
        self.assertAlmostEqual(
            self.result.annualized_volatility, self.result.volatility * math.sqrt(252)
        )
        self.assertIn("BTC", self.result.asset_returns)

    def test_extreme_losses_capped_at_value(self):
        crash = pd.Series([-0.9] * 40 + [0.5] * 10)
        result, _ = _engine().calculate(_btc(), {"BTC": crash}, 0.99, 30)
        for v in (result.historical_var, result.parametric_var,
                  result.monte_carlo_var, result.conditional_var):
            self.assertLessEqual(v, 50_000.0)


# ===========================================================================
# 3. Historical and conditional VaR on a known tail
# ===========================================================================

class TestKnownTail(unittest.TestCase):

    def test_five_percent_tail(self):
        returns = pd.Series([-0.05] * 5 + [0.01] * 95)
        result, _ = _engine().calculate(_btc(), {"BTC": returns}, 0.95, 1)
        self.assertAlmostEqual(result.historical_var, 0.05 * 50_000.0)
        self.assertAlmostEqual(result.conditional_var, 0.05 * 50_000.0)

    def test_cvar_averages_the_tail(self):
        returns = pd.Series([-0.10, -0.02] + [0.01] * 38)
        result, _ = _engine().calculate(_btc(), {"BTC": returns}, 0.95, 1)
        # idx = ceil(0.05 * 40) - 1 = 1  →  cut-off at -0.02, tail mean -0.06
        self.assertAlmostEqual(result.historical_var, 0.02 * 50_000.0)
        self.assertAlmostEqual(result.conditional_var, 0.06 * 50_000.0)

    def test_all_gains_means_zero_historical(self):
        returns = pd.Series([0.01, 0.02] * 20)
        result, _ = _engine().calculate(_btc(), {"BTC": returns}, 0.95, 1)
        self.assertEqual(result.historical_var, 0.0)

    def test_risk_level_from_var_percentage(self):
        returns = pd.Series([-0.12] * 5 + [0.01] * 95)
        result, _ = _engine().calculate(_btc(), {"BTC": returns}, 0.95, 1)
        self.assertAlmostEqual(result.var_percentage, 12.0)
        self.assertEqual(result.risk_level, RiskLevel.HIGH)


# ===========================================================================
# 4. Horizon scaling
# ===========================================================================

class TestHorizonScaling(unittest.TestCase):

    def test_sqrt_h(self):
        engine = _engine()
        one, _  = engine.calculate(_btc(), {"BTC": _normal_returns()}, 0.95, 1)
        four, _ = engine.calculate(_btc(), {"BTC": _normal_returns()}, 0.95, 4)
        self.assertAlmostEqual(four.parametric_var, 2.0 * one.parametric_var, places=6)
        self.assertAlmostEqual(four.historical_var, 2.0 * one.historical_var, places=6)
        self.assertAlmostEqual(four.monte_carlo_var, 2.0 * one.monte_carlo_var, places=6)


# ===========================================================================
# 5. Monte Carlo
# ===========================================================================

class TestMonteCarlo(unittest.TestCase):

    def test_same_seed_same_result(self):
        a, _ = VaREngine(seed=7).calculate(_btc(), {"BTC": _normal_returns()})
        b, _ = VaREngine(seed=7).calculate(_btc(), {"BTC": _normal_returns()})
        self.assertEqual(a.monte_carlo_var, b.monte_carlo_var)

    def test_close_to_parametric_for_normal_returns(self):
        result, _ = _engine().calculate(_btc(), {"BTC": _normal_returns(n=2000)}, 0.95, 1)
        self.assertAlmostEqual(
            result.monte_carlo_var / result.parametric_var, 1.0, delta=0.1
        )

    def test_simulation_count_recorded(self):
        result, _ = VaREngine(num_simulations=500, seed=1).calculate(
            _btc(), {"BTC": _normal_returns()}
        )
        self.assertEqual(result.num_simulations, 500)


# ===========================================================================
# 6. Short history fallback
# ===========================================================================

class TestShortHistory(unittest.TestCase):

    def setUp(self):
        self.result, self.notes = _engine().calculate(
            _btc(), {"BTC": pd.Series([0.01, -0.02, 0.005])}, 0.95, 1
        )

    def test_note_recorded(self):
        self.assertTrue(any("Insufficient history" in n for n in self.notes))

    def test_category_volatility_used(self):
        self.assertAlmostEqual(self.result.volatility, 0.80 / math.sqrt(252))

    def test_historical_equals_parametric(self):
        self.assertAlmostEqual(self.result.historical_var, self.result.parametric_var)
        self.assertGreater(self.result.parametric_var, 0.0)

    def test_cvar_still_dominates(self):
        self.assertGreaterEqual(self.result.conditional_var, self.result.historical_var)

    def test_no_series_at_all(self):
        result, notes = _engine().calculate(_btc(), {}, 0.95, 1)
        self.assertEqual(result.history_points, 0)
        self.assertTrue(any("BTC" in n for n in notes))
        self.assertGreater(result.parametric_var, 0.0)


# ===========================================================================
# 7. Degenerate input
# ===========================================================================

class TestDegenerateInput(unittest.TestCase):

    def test_empty_holdings(self):
        with self.assertRaises(NoDataError):
            _engine().calculate([], {})

    def test_zero_value(self):
        with self.assertRaises(NoDataError):
            _engine().calculate([Holding("BTC", 0.0, 50_000.0, 40_000.0)], {})

    def test_missing_symbol_noted(self):
        holdings = _btc() + [Holding("ETH", 10.0, 3_000.0, 2_000.0)]
        _, notes = _engine().calculate(holdings, {"BTC": _normal_returns()})
        self.assertTrue(any("ETH" in n for n in notes))

    def test_constant_returns_give_finite_figures(self):
        usdt = [Holding("USDT", 10_000.0, 1.0, 1.0)]
        flat  = pd.Series([0.0001] * 60)
        noisy = pd.Series([0.0001, float(np.nextafter(0.0001, 1.0))] * 30)
        for returns in (flat, noisy):
            result, _ = _engine().calculate(usdt, {"USDT": returns}, 0.95, 1)
            self.assertEqual((result.skewness, result.kurtosis), (0.0, 0.0))
            for v in (result.historical_var, result.parametric_var,
                      result.monte_carlo_var, result.conditional_var):
                self.assertTrue(math.isfinite(v))
                self.assertGreaterEqual(v, 0.0)
            self.assertEqual(result.monte_carlo_var, 0.0)


if __name__ == "__main__":
    unittest.main()
