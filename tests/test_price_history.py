"""
tests/test_price_history.py
---------------------------
Unit tests for PriceHistoryProvider and the HTTP / synthetic helpers.

Coverage:
  - Live fetch via injected fetcher, cache hit on the second call
  - Defensive copies on hits
  - Malformed entries skipped; empty / failing responses → synthetic series
  - Synthetic determinism, length, factor bounds, base-price reuse
  - Parameter validation (nothing fetched on rejection)
  - refresh(), cache_status(), service_status()
  - get_many() fan-out and portfolio_historical_returns() truncation
  - fetch_market_chart() with requests.get patched
"""

import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import numpy as np
import requests

from riskengine.enums import PriceSource
from riskengine.errors import InvalidParameterError, NoDataError, PriceFetchError
from riskengine.price_cache import PriceCache
from riskengine.price_history import (
    PriceHistoryProvider,
    fetch_market_chart,
    parse_price_points,
    provider_id,
    synthetic_points,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_CLOCK = lambda: datetime(2024, 1, 15, 13, 30, tzinfo=timezone.utc)  # noqa: E731


def _payload(days: int, start: float = 100.0, step: float = 1.0) -> dict:
    return {"prices": [[1_700_000_000_000 + i * 86_400_000, start + i * step] for i in range(days)]}


class _CountingFetcher:
    """Fake fetcher returning a linear price path and counting calls."""

    def __init__(self, start: float = 100.0):
        self.calls = 0
        self.start = start
        self._lock = threading.Lock()

    def __call__(self, symbol, days, timeout):
        with self._lock:
            self.calls += 1
        return _payload(days, self.start)


def _failing_fetcher(symbol, days, timeout):
    raise PriceFetchError("upstream down")


def _provider(fetcher=None, cache=None) -> PriceHistoryProvider:
    return PriceHistoryProvider(cache=cache or PriceCache(), fetcher=fetcher or _CountingFetcher(), clock=_CLOCK)


# ===========================================================================
# 1. Live fetch and caching
# ===========================================================================

class TestLiveFetch(unittest.TestCase):

    def test_series_parsed_from_payload(self):
        series = _provider().get_series("BTC", 10)
        self.assertEqual(len(series), 10)
        self.assertEqual(series.source, PriceSource.LIVE)
        self.assertEqual(series.prices[0], 100.0)

    def test_second_call_is_cache_hit(self):
        fetcher  = _CountingFetcher()
        provider = _provider(fetcher)
        provider.get_series("BTC", 10)
        provider.get_series("btc", 10)
        self.assertEqual(fetcher.calls, 1)

    def test_hit_is_defensive_copy(self):
        provider = _provider()
        first = provider.get_series("BTC", 10)
        first.points.clear()
        self.assertEqual(len(provider.get_series("BTC", 10)), 10)

    def test_refresh_refetches(self):
        fetcher  = _CountingFetcher()
        provider = _provider(fetcher)
        provider.get_series("ETH", 10)
        provider.refresh("ETH", 10)
        self.assertEqual(fetcher.calls, 2)

    def test_concurrent_requests_fetch_once(self):
        fetcher  = _CountingFetcher()
        provider = _provider(fetcher)
        threads  = [threading.Thread(target=provider.get_series, args=("SOL", 20)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(fetcher.calls, 1)
        self.assertEqual(provider.pending_keys(), 0)

    def test_fetch_locks_released_across_many_keys(self):
        provider = _provider(cache=PriceCache(max_entries=4))
        for i in range(50):
            provider.get_series(f"COIN{i}", 5)
            provider.refresh(f"COIN{i}", 5)
        self.assertEqual(provider.pending_keys(), 0)

    def test_fetch_lock_released_when_fetcher_raises(self):
        def broken(symbol, days, timeout):
            raise RuntimeError("boom")
        provider = _provider(broken)
        with self.assertRaises(RuntimeError):
            provider.get_series("BTC", 5)
        self.assertEqual(provider.pending_keys(), 0)


# ===========================================================================
# 2. Parsing
# ===========================================================================

class TestParsing(unittest.TestCase):

    def test_malformed_entries_skipped(self):
        payload = {"prices": [
            [3, 30.0],
            ["x", 1.0],
            [1],
            [2, None],
            [4, "nan"],
            [5, -1.0],
            "junk",
            [1, 10.0],
        ]}
        self.assertEqual(parse_price_points(payload), [(1, 10.0), (3, 30.0)])

    def test_non_finite_timestamp_skipped(self):
        payload = {"prices": [
            [float("inf"), 100.0],
            [float("-inf"), 100.0],
            [float("nan"), 100.0],
            [1000, 101.0],
            [2000, 102.0],
        ]}
        self.assertEqual(parse_price_points(payload), [(1000, 101.0), (2000, 102.0)])

    def test_only_infinite_timestamps_falls_back_to_synthetic(self):
        provider = _provider(lambda s, d, t: {"prices": [[float("inf"), 1.0], [1e400, 2.0]]})
        series = provider.get_series("BTC", 10)
        self.assertTrue(series.is_synthetic)
        self.assertEqual(len(series), 10)

    def test_missing_prices_key_raises(self):
        with self.assertRaises(PriceFetchError):
            parse_price_points({"data": []})

    def test_nothing_usable_raises(self):
        with self.assertRaises(PriceFetchError):
            parse_price_points({"prices": [["bad", "worse"]]})

    def test_empty_response_falls_back_to_synthetic(self):
        provider = _provider(lambda s, d, t: {"prices": []})
        series = provider.get_series("BTC", 15)
        self.assertTrue(series.is_synthetic)
        self.assertEqual(len(series), 15)


# ===========================================================================
# 3. Synthetic fallback
# ===========================================================================

class TestSyntheticFallback(unittest.TestCase):

    def test_fetch_error_uses_synthetic(self):
        series = _provider(_failing_fetcher).get_series("UNKNOWNCOIN", 30)
        self.assertEqual(series.source, PriceSource.SYNTHETIC)
        self.assertEqual(len(series), 30)

    def test_timeout_uses_synthetic(self):
        def slow(symbol, days, timeout):
            raise requests.Timeout("read timed out")
        self.assertTrue(_provider(slow).get_series("BTC", 10).is_synthetic)

    def test_deterministic_across_providers(self):
        a = _provider(_failing_fetcher).get_series("ZZZ", 60)
        b = _provider(_failing_fetcher).get_series("ZZZ", 60)
        self.assertEqual(a.points, b.points)

    def test_different_symbols_differ(self):
        a = _provider(_failing_fetcher).get_series("AAA", 60)
        b = _provider(_failing_fetcher).get_series("BBB", 60)
        self.assertNotEqual(a.prices, b.prices)

    def test_default_base_and_factor_bounds(self):
        prices = [p for _, p in synthetic_points("ZZZ", 100)]
        self.assertEqual(prices[0], 100.0)
        ratios = np.array(prices[1:]) / np.array(prices[:-1])
        self.assertTrue(np.all(ratios >= 0.95 - 1e-12))
        self.assertTrue(np.all(ratios <= 1.05 + 1e-12))

    def test_timestamps_daily_and_ascending(self):
        ts = [t for t, _ in synthetic_points("ZZZ", 5, end=_CLOCK())]
        self.assertEqual(np.diff(ts).tolist(), [86_400_000] * 4)
        self.assertEqual(ts[-1], int(datetime(2024, 1, 15, tzinfo=timezone.utc).timestamp() * 1000))

    def test_base_price_reuses_longest_cached_series(self):
        def by_days(symbol, days, timeout):
            if days == 30:
                return _payload(30, start=200.0)      # last price 229
            raise PriceFetchError("no data")

        provider = _provider(by_days)
        provider.get_series("XYZ", 30)
        series = provider.get_series("XYZ", 10)
        self.assertTrue(series.is_synthetic)
        self.assertEqual(series.prices[0], 229.0)

    def test_synthetic_series_cached(self):
        fetcher = MagicMock(side_effect=PriceFetchError("down"))
        provider = _provider(fetcher)
        provider.get_series("QQQ", 10)
        provider.get_series("QQQ", 10)
        self.assertEqual(fetcher.call_count, 1)


# ===========================================================================
# 4. Validation
# ===========================================================================

class TestValidation(unittest.TestCase):

    def setUp(self):
        self.fetcher  = MagicMock(return_value=_payload(5))
        self.provider = _provider(self.fetcher)

    def test_empty_symbol_rejected(self):
        for bad in ("", "   ", None):
            with self.assertRaises(InvalidParameterError):
                self.provider.get_series(bad, 10)

    def test_days_out_of_range_rejected(self):
        for bad in (0, -5, 366):
            with self.assertRaises(InvalidParameterError):
                self.provider.get_series("BTC", bad)

    def test_non_integer_days_rejected(self):
        for bad in ("10", 10.5, True):
            with self.assertRaises(InvalidParameterError):
                self.provider.get_series("BTC", bad)

    def test_rejection_fetches_nothing(self):
        with self.assertRaises(InvalidParameterError):
            self.provider.get_series("BTC", 0)
        self.fetcher.assert_not_called()

    def test_boundary_days_accepted(self):
        self.assertEqual(len(self.provider.get_series("BTC", 1)), 5)
        self.assertEqual(len(self.provider.get_series("BTC", 365)), 5)


# ===========================================================================
# 5. Status and derived helpers
# ===========================================================================

class TestStatusAndDerived(unittest.TestCase):

    def test_cache_status(self):
        provider = _provider()
        provider.get_series("BTC", 10)
        provider.get_series("BTC", 20)
        self.assertEqual(provider.cache_status("btc"), {"btc_10": 10, "btc_20": 20})

    def test_service_status(self):
        provider = _provider()
        provider.get_many(["BTC", "ETH"], 7)
        self.assertEqual(provider.service_status(), {"btc_7": 7, "eth_7": 7})

    def test_get_many_preserves_order(self):
        result = _provider().get_many(["SOL", "BTC", "ETH", "SOL"], 5)
        self.assertEqual(list(result), ["SOL", "BTC", "ETH"])

    def test_historical_returns_length(self):
        self.assertEqual(len(_provider().historical_returns("BTC", 10)), 9)

    def test_real_volatility_positive(self):
        self.assertGreater(_provider(_failing_fetcher).real_volatility("BTC", 60), 0.0)

    def test_real_volatility_needs_two_returns(self):
        with self.assertRaises(NoDataError):
            _provider(_failing_fetcher).real_volatility("BTC", 2)

    def test_portfolio_returns_truncated_to_shortest(self):
        def uneven(symbol, days, timeout):
            return _payload(10 if symbol == "A" else 6)

        combined = _provider(uneven).portfolio_historical_returns(["A", "B"], 30)
        self.assertEqual(len(combined), 5)


# ===========================================================================
# 6. HTTP source
# ===========================================================================

class TestHttpSource(unittest.TestCase):

    def test_provider_id_mapping(self):
        self.assertEqual(provider_id("BTC"), "bitcoin")
        self.assertEqual(provider_id(" usdc "), "usd-coin")
        self.assertEqual(provider_id("NEWCOIN"), "newcoin")

    @patch("riskengine.price_history.requests.get")
    def test_request_uses_timeout_and_provider_id(self, mock_get):
        mock_get.return_value.json.return_value = _payload(3)
        payload = fetch_market_chart("ETH", 30, timeout=4)
        url = mock_get.call_args[0][0]
        self.assertIn("/coins/ethereum/", url)
        self.assertIn("days=30", url)
        self.assertEqual(mock_get.call_args[1]["timeout"], 4)
        self.assertEqual(len(payload["prices"]), 3)

    @patch("riskengine.price_history.requests.get")
    def test_http_error_wrapped(self, mock_get):
        mock_get.return_value.raise_for_status.side_effect = requests.HTTPError("429")
        with self.assertRaises(PriceFetchError):
            fetch_market_chart("BTC", 10)

    @patch("riskengine.price_history.requests.get")
    def test_bad_json_wrapped(self, mock_get):
        mock_get.return_value.json.side_effect = ValueError("no json")
        with self.assertRaises(PriceFetchError):
            fetch_market_chart("BTC", 10)

    @patch("riskengine.price_history.requests.get", side_effect=requests.ConnectionError("dns"))
    def test_default_provider_falls_back_on_connection_error(self, _):
        provider = PriceHistoryProvider(cache=PriceCache(), clock=_CLOCK)
        self.assertTrue(provider.get_series("BTC", 10).is_synthetic)


if __name__ == "__main__":
    unittest.main()
