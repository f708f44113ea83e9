"""
tests/test_cli.py
-----------------
Tests for the command-line entry point (offline mode only; no network).

Coverage:
  - parse_views() / load_holdings() input handling
  - main(): JSON and text output for each command, exit codes 0 / 1 / 2
"""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout

from riskengine.cli import load_holdings, main, parse_views
from riskengine.errors import InvalidParameterError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

HOLDINGS = [
    {"symbol": "BTC", "quantity": 1, "current_price": 50000, "purchase_price": 40000},
    {"symbol": "ETH", "quantity": 10, "currentPricePerUnit": 3000, "purchasePricePerUnit": 2000},
]


class _CliCase(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)

    def write(self, data, name: str = "holdings.json") -> str:
        path = os.path.join(self._tmp.name, name)
        with open(path, "w", encoding="utf-8") as fh:
            if isinstance(data, str):
                fh.write(data)
            else:
                json.dump(data, fh)
        return path

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(list(argv))
        return code, out.getvalue(), err.getvalue()


# ===========================================================================
# 1. Input helpers
# ===========================================================================

class TestInputHelpers(_CliCase):

    def test_parse_views(self):
        self.assertEqual(parse_views(["ETH=0.8", " sol = 0.2"]), {"ETH": 0.8, "sol": 0.2})
        self.assertEqual(parse_views([]), {})

    def test_parse_views_rejects_malformed(self):
        for bad in (["ETH"], ["=0.5"], ["ETH=high"]):
            with self.assertRaises(InvalidParameterError):
                parse_views(bad)

    def test_load_list_or_wrapped(self):
        self.assertEqual(len(load_holdings(self.write(HOLDINGS))), 2)
        self.assertEqual(len(load_holdings(self.write({"holdings": HOLDINGS}, "w.json"))), 2)

    def test_load_rejects_scalar(self):
        with self.assertRaises(InvalidParameterError):
            load_holdings(self.write(42))


# ===========================================================================
# 2. main()
# ===========================================================================

class TestMain(_CliCase):

    def test_var_json(self):
        code, out, _ = self.run_cli("var", self.write(HOLDINGS), "--offline", "--json")
        self.assertEqual(code, 0)
        envelope = json.loads(out)
        self.assertEqual(envelope["status"], "FALLBACK")
        self.assertAlmostEqual(envelope["report"]["portfolio_value"], 80_000.0)
        self.assertGreater(envelope["report"]["historical_var"], 0.0)

    def test_var_text(self):
        code, out, _ = self.run_cli("var", self.write(HOLDINGS), "--offline", "--confidence", "0.99")
        self.assertEqual(code, 0)
        self.assertIn("Monte Carlo VaR", out)
        self.assertIn("Fallbacks used:", out)

    def test_rebalance_with_views(self):
        code, out, _ = self.run_cli(
            "rebalance", self.write(HOLDINGS), "--offline", "--json", "--view", "ETH=0.9"
        )
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["report"]["optimization_method"], "BLACK_LITTERMAN")

    def test_metrics_text(self):
        code, out, _ = self.run_cli("metrics", self.write(HOLDINGS), "--offline")
        self.assertEqual(code, 0)
        self.assertIn("Diversification", out)

    def test_empty_holdings_exit_one(self):
        code, out, _ = self.run_cli("var", self.write([]), "--offline", "--json")
        self.assertEqual(code, 1)
        envelope = json.loads(out)
        self.assertEqual(envelope["status"], "ERROR")
        self.assertNotIn("report", envelope)

    def test_invalid_confidence_exit_two(self):
        code, _, err = self.run_cli("var", self.write(HOLDINGS), "--offline", "--confidence", "1.5")
        self.assertEqual(code, 2)
        self.assertIn("confidence_level", err)

    def test_missing_file_exit_two(self):
        code, _, err = self.run_cli("var", os.path.join(self._tmp.name, "nope.json"), "--offline")
        self.assertEqual(code, 2)
        self.assertIn("Cannot read holdings", err)

    def test_bad_json_exit_two(self):
        code, _, _ = self.run_cli("metrics", self.write("{not json", "bad.json"), "--offline")
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
