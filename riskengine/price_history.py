"""
riskengine/price_history.py
---------------------------
Historical daily prices per symbol, served from a shared :class:`PriceCache`.

Lookup order for ``get_series(symbol, days)``:

1. Cache hit → copy of the cached series.
2. Cache miss → external historical-data source (HTTP, with a timeout).
   Malformed entries in the response are skipped, not fatal.
3. Fetch error, timeout, or nothing usable in the response → a deterministic
   synthetic series seeded by the symbol, so the same unknown symbol always
   yields the same prices.

Only parameter-validation errors reach the caller; everything else is
recovered here.
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import requests

from riskengine.config import (
    FETCH_TIMEOUT_SECONDS,
    HISTORY_DAYS,
    MAX_HISTORY_DAYS,
    MAX_WORKERS,
    MIN_HISTORY_DAYS,
    PRICE_API_URL,
    SYNTHETIC_BASE_PRICE,
    SYNTHETIC_FACTOR_RANGE,
)
from riskengine.constants import PROVIDER_IDS
from riskengine.enums import PriceSource
from riskengine.errors import InvalidParameterError, NoDataError, PriceFetchError
from riskengine.metrics_engine import MetricsEngine
from riskengine.models import PriceSeries
from riskengine.price_cache import PriceCache

logger = logging.getLogger(__name__)

_MS_PER_DAY = 86_400_000

# (symbol, days, timeout_seconds) -> decoded JSON payload
Fetcher = Callable[[str, int, float], Any]


# ---------------------------------------------------------------------------
# HTTP source
# ---------------------------------------------------------------------------

def provider_id(symbol: str) -> str:
    """Map a ticker to the price provider's coin id (passthrough if unknown)."""
    sym = symbol.strip().lower()
    return PROVIDER_IDS.get(sym, sym)


def fetch_market_chart(symbol: str, days: int, timeout: float = FETCH_TIMEOUT_SECONDS) -> Any:
    """
    GET the provider's market-chart JSON for *symbol*.

    Raises
    ------
    PriceFetchError
        On any transport error, timeout, non-2xx status, or undecodable body.
    """
    url = PRICE_API_URL.format(coin_id=provider_id(symbol), days=days)
    logger.debug("Fetching price history: %s", url)
    try:
        response = requests.get(url, timeout=timeout, headers={"Accept": "application/json"})
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        raise PriceFetchError(f"Price history request for {symbol!r} failed: {exc}") from exc
    except ValueError as exc:
        raise PriceFetchError(f"Price history for {symbol!r} is not valid JSON: {exc}") from exc


def parse_price_points(payload: Any) -> List[Tuple[int, float]]:
    """
    Extract ascending ``(timestamp_millis, price)`` pairs from a payload of
    the form ``{"prices": [[ts, price], ...]}``.

    Entries that are not a two-number pair, carry a non-finite timestamp, or
    carry a non-finite or negative price, are skipped.

    Raises
    ------
    PriceFetchError
        If the payload has no ``prices`` list or no entry survives parsing.
    """
    raw = payload.get("prices") if isinstance(payload, dict) else None
    if not isinstance(raw, list):
        raise PriceFetchError("Response has no 'prices' list.")

    points: List[Tuple[int, float]] = []
    skipped = 0
    for entry in raw:
        try:
            ts, price = float(entry[0]), float(entry[1])
        except (TypeError, ValueError, IndexError, KeyError):
            skipped += 1
            continue
        if not (math.isfinite(ts) and math.isfinite(price)) or price < 0:
            skipped += 1
            continue
        points.append((int(ts), price))

    if skipped:
        logger.debug("Skipped %d malformed price entries", skipped)
    if not points:
        raise PriceFetchError("Response contained no usable price entries.")

    points.sort(key=lambda p: p[0])
    return points


# ---------------------------------------------------------------------------
# Synthetic fallback
# ---------------------------------------------------------------------------

def symbol_seed(symbol: str) -> int:
    """Stable 64-bit seed derived from the symbol (process-independent)."""
    digest = hashlib.sha256(symbol.strip().lower().encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def synthetic_points(
    symbol: str,
    days: int,
    base_price: float = SYNTHETIC_BASE_PRICE,
    end: Optional[datetime] = None,
) -> List[Tuple[int, float]]:
    """
    Generate *days* daily points starting at *base_price*; each step
    multiplies by a factor drawn uniformly from ``SYNTHETIC_FACTOR_RANGE``
    using a generator seeded by :func:`symbol_seed`.

    Timestamps end at midnight UTC of *end*'s date (default: today).
    """
    low, high = SYNTHETIC_FACTOR_RANGE
    rng       = np.random.default_rng(symbol_seed(symbol))
    factors   = rng.uniform(low, high, size=max(days - 1, 0))
    prices    = base_price * np.concatenate(([1.0], np.cumprod(factors)))

    end     = end or datetime.now(timezone.utc)
    anchor  = datetime(end.year, end.month, end.day, tzinfo=timezone.utc)
    last_ms = int(anchor.timestamp() * 1000)

    return [
        (last_ms - (days - 1 - i) * _MS_PER_DAY, float(p))
        for i, p in enumerate(prices)
    ]


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class PriceHistoryProvider:
    """
    Fetches and caches daily price series.

    Parameters
    ----------
    cache : PriceCache, optional
        Shared cache; a private one is created when omitted.
    fetcher : callable, optional
        ``fetcher(symbol, days, timeout) -> payload``.  Defaults to the HTTP
        source; tests inject fakes.
    timeout : float
        Seconds passed to the fetcher.
    max_workers : int
        Thread fan-out width for multi-symbol requests.
    clock : callable, optional
        Returns "now" as an aware datetime; anchors synthetic timestamps.
    """

    def __init__(
        self,
        cache: Optional[PriceCache] = None,
        fetcher: Optional[Fetcher] = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        max_workers: int = MAX_WORKERS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._cache       = cache if cache is not None else PriceCache()
        self._fetcher     = fetcher or fetch_market_chart
        self._timeout     = timeout
        self._max_workers = max(1, max_workers)
        self._clock       = clock or (lambda: datetime.now(timezone.utc))
        self._key_locks: Dict[Tuple[str, int], list] = {}
        self._key_locks_guard = threading.Lock()

    @property
    def cache(self) -> PriceCache:
        return self._cache

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def get_series(self, symbol: str, days: int = HISTORY_DAYS) -> PriceSeries:
        """
        Return the daily price series for *symbol* over *days* days.

        Raises
        ------
        InvalidParameterError
            If *symbol* is empty or *days* is outside [1, 365].
        """
        symbol, days = self._validate(symbol, days)

        hit = self._cache.get(symbol, days)
        if hit is not None:
            logger.debug("Price cache hit: %s/%d", symbol, days)
            return hit

        with self._lock_for(symbol, days):
            # Another thread may have filled the entry while we waited.
            hit = self._cache.get(symbol, days)
            if hit is not None:
                return hit
            logger.debug("Price cache miss: %s/%d", symbol, days)
            return self._fetch_and_store(symbol, days)

    def refresh(self, symbol: str, days: int = HISTORY_DAYS) -> None:
        """Re-fetch *symbol* / *days* and overwrite the cached entry."""
        symbol, days = self._validate(symbol, days)
        with self._lock_for(symbol, days):
            self._fetch_and_store(symbol, days)

    def cache_status(self, symbol: str) -> Dict[str, int]:
        """``{"<symbol>_<days>": point_count}`` for every cached day-count."""
        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidParameterError("Symbol must be a non-empty string.", "symbol")
        return self._cache.status(symbol)

    def service_status(self) -> Dict[str, int]:
        """Point counts for every entry in the cache."""
        return self._cache.snapshot()

    def pending_keys(self) -> int:
        """Number of ``(symbol, days)`` keys with a fetch lock in use."""
        with self._key_locks_guard:
            return len(self._key_locks)

    def get_many(self, symbols: Sequence[str], days: int = HISTORY_DAYS) -> Dict[str, PriceSeries]:
        """
        Fetch several symbols concurrently (fan-out / fan-in).

        Returns ``{symbol: PriceSeries}`` in the order given.
        """
        for s in symbols:
            self._validate(s, days)
        unique = list(dict.fromkeys(symbols))
        if len(unique) <= 1:
            return {s: self.get_series(s, days) for s in unique}

        workers = min(self._max_workers, len(unique))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="price-history") as pool:
            futures = {s: pool.submit(self.get_series, s, days) for s in unique}
            return {s: futures[s].result() for s in unique}

    def historical_returns(self, symbol: str, days: int = HISTORY_DAYS) -> pd.Series:
        """Daily simple returns derived from :meth:`get_series`."""
        return MetricsEngine.daily_returns(self.get_series(symbol, days))

    def real_volatility(self, symbol: str, days: int = HISTORY_DAYS) -> float:
        """
        Annualised volatility of *symbol*'s daily returns.

        Raises
        ------
        NoDataError
            If fewer than two returns are available.
        """
        returns = self.historical_returns(symbol, days)
        if len(returns) < 2:
            raise NoDataError(f"Not enough history to estimate volatility for {symbol!r}.")
        return MetricsEngine.annualized_volatility(returns)

    def portfolio_historical_returns(
        self,
        symbols: Sequence[str],
        days: int = HISTORY_DAYS,
        weights: Optional[Dict[str, float]] = None,
    ) -> pd.Series:
        """
        Combined daily return series for a basket of symbols.

        Per-symbol series are fetched concurrently, truncated to the shortest
        common length (keeping the most recent observations) and combined
        index-wise as a weighted average.  Equal weights are used when
        *weights* is ``None``.
        """
        if not symbols:
            return pd.Series(dtype=float)
        series  = self.get_many(symbols, days)
        returns = {s: MetricsEngine.daily_returns(ps) for s, ps in series.items()}
        return MetricsEngine.combine_returns(returns, weights)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _validate(symbol: str, days: int) -> Tuple[str, int]:
        if not isinstance(symbol, str) or not symbol.strip():
            raise InvalidParameterError("Symbol must be a non-empty string.", "symbol")
        if isinstance(days, bool) or not isinstance(days, (int, np.integer)):
            raise InvalidParameterError(f"days must be an integer (got {days!r}).", "days")
        if not MIN_HISTORY_DAYS <= days <= MAX_HISTORY_DAYS:
            raise InvalidParameterError(
                f"days must be between {MIN_HISTORY_DAYS} and {MAX_HISTORY_DAYS} (got {days}).",
                "days",
            )
        return symbol.strip(), int(days)

    @contextmanager
    def _lock_for(self, symbol: str, days: int) -> Iterator[None]:
        """
        Hold the per-key fetch lock for *symbol* / *days*.

        Entries are reference-counted and dropped once no thread holds or
        waits on them, so the lock map only covers in-flight keys.
        """
        key = (symbol.lower(), days)
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def _fetch_and_store(self, symbol: str, days: int) -> PriceSeries:
        try:
            payload = self._fetcher(symbol, days, self._timeout)
            points  = parse_price_points(payload)
            series  = PriceSeries(symbol, days, points, PriceSource.LIVE)
            logger.info("Fetched %d price points for %s (%d days)", len(points), symbol, days)
        except PriceFetchError as exc:
            logger.warning("Using synthetic prices for %s (%d days): %s", symbol, days, exc)
            series = self._synthetic(symbol, days)
        except (
            requests.RequestException, OSError, ValueError, TypeError, KeyError, OverflowError,
        ) as exc:
            # Raised by injected fetchers that do not wrap their errors.
            logger.warning("Using synthetic prices for %s (%d days): %s", symbol, days, exc)
            series = self._synthetic(symbol, days)

        self._cache.put(series)
        return series.copy()

    def _synthetic(self, symbol: str, days: int) -> PriceSeries:
        base = self._cache.latest_price(symbol, exclude_days=days)
        if base is None or base <= 0:
            base = SYNTHETIC_BASE_PRICE
        points = synthetic_points(symbol, days, base_price=base, end=self._clock())
        return PriceSeries(symbol, days, points, PriceSource.SYNTHETIC)
