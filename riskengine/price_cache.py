"""
riskengine/price_cache.py
-------------------------
Shared in-memory cache of historical price series.

Problem
-------
Every VaR and rebalancing request needs a year of daily prices per held
asset, and several users compute concurrently.  Fetching the same series
again for each request is slow and hammers the upstream API, so fetched (and
synthetic) series are kept in memory and shared between requests.

Design
------
* One entry per ``(lowercased symbol, days)`` key, holding a
  :class:`~riskengine.models.PriceSeries`.
* Reads return a copy; callers can never mutate the cached series.
* Bounded size with a deliberately simple FIFO policy: once the entry count
  exceeds ``max_entries``, the oldest insertions are dropped until fewer
  than half of ``max_entries`` remain.  The entry just written is never evicted.
  A different policy (e.g. LRU) can be injected through
  ``eviction_policy`` without changing the public contract.
* The cache is an explicit object passed to whoever needs it; there is no
  module-level instance.

Thread safety
-------------
All access goes through one re-entrant lock.  A writer replaces an entry
atomically under the lock and readers copy under the same lock, so a
concurrent write or eviction can never hand a reader a half-built series.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple

from riskengine.config import CACHE_MAX_ENTRIES
from riskengine.models import PriceSeries

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, int]

# (entries, max_entries, protected_key) -> number of entries evicted
EvictionPolicy = Callable[["OrderedDict[CacheKey, PriceSeries]", int, CacheKey], int]


def _cache_key(symbol: str, days: int) -> CacheKey:
    return (symbol.strip().lower(), int(days))


def fifo_half_eviction(
    entries: "OrderedDict[CacheKey, PriceSeries]",
    max_entries: int,
    protected: CacheKey,
) -> int:
    """
    Drop oldest entries until fewer than ``max_entries / 2`` remain.

    Runs only once the cache has grown past ``max_entries``.  The *protected*
    key (the entry just written) survives even if it would otherwise be next.
    """
    if len(entries) <= max_entries:
        return 0

    evicted = 0
    for key in list(entries.keys()):
        if len(entries) * 2 < max_entries:
            break
        if key == protected:
            continue
        del entries[key]
        evicted += 1
    return evicted


def lru_eviction(
    entries: "OrderedDict[CacheKey, PriceSeries]",
    max_entries: int,
    protected: CacheKey,
) -> int:
    """Drop least-recently-used entries until the cache fits ``max_entries``."""
    evicted = 0
    for key in list(entries.keys()):
        if len(entries) <= max_entries:
            break
        if key == protected:
            continue
        del entries[key]
        evicted += 1
    return evicted


class PriceCache:
    """
    Thread-safe price-series cache keyed by ``(symbol, days)``.

    Usage
    -----
    ::

        cache = PriceCache(max_entries=100)
        cache.put(series)
        hit = cache.get("BTC", 252)     # copy, or None on miss
    """

    def __init__(
        self,
        max_entries: int = CACHE_MAX_ENTRIES,
        eviction_policy: EvictionPolicy = fifo_half_eviction,
        touch_on_read: bool = False,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1 (got {max_entries}).")
        self._max_entries = max_entries
        self._evict       = eviction_policy
        # LRU needs reads to refresh recency; FIFO must not.
        self._touch       = touch_on_read
        self._entries: "OrderedDict[CacheKey, PriceSeries]" = OrderedDict()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, symbol: str, days: int) -> Optional[PriceSeries]:
        """Return a copy of the cached series, or ``None`` on a miss."""
        key = _cache_key(symbol, days)
        with self._lock:
            series = self._entries.get(key)
            if series is None:
                return None
            if self._touch:
                self._entries.move_to_end(key)
            return series.copy()

    def put(self, series: PriceSeries) -> None:
        """
        Store a copy of *series* under ``(series.symbol, series.days)`` and
        apply the eviction policy.  Re-putting an existing key replaces it and
        moves it to the back of the insertion order.
        """
        key = _cache_key(series.symbol, series.days)
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = series.copy()
            evicted = self._evict(self._entries, self._max_entries, key)
        if evicted:
            logger.debug("Price cache evicted %d entries (size now %d)", evicted, len(self))

    def contains(self, symbol: str, days: int) -> bool:
        with self._lock:
            return _cache_key(symbol, days) in self._entries

    def invalidate(self, symbol: str, days: Optional[int] = None) -> int:
        """Remove one entry, or every entry for *symbol* when *days* is None."""
        sym = symbol.strip().lower()
        with self._lock:
            doomed = [
                k for k in self._entries
                if k[0] == sym and (days is None or k[1] == int(days))
            ]
            for k in doomed:
                del self._entries[k]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def latest_price(self, symbol: str, exclude_days: Optional[int] = None) -> Optional[float]:
        """
        Most recent price from the longest cached series for *symbol*.

        ``exclude_days`` skips the entry with that day-count (the one being
        regenerated).  Returns ``None`` when nothing usable is cached.
        """
        sym = symbol.strip().lower()
        with self._lock:
            candidates = [
                s for (k_sym, k_days), s in self._entries.items()
                if k_sym == sym and k_days != exclude_days and len(s) > 0
            ]
            if not candidates:
                return None
            longest = max(candidates, key=lambda s: (s.days, len(s)))
            return longest.latest_price

    def status(self, symbol: str) -> Dict[str, int]:
        """``{"<symbol>_<days>": point_count}`` for every entry of *symbol*."""
        sym = symbol.strip().lower()
        with self._lock:
            return {
                f"{k_sym}_{k_days}": len(s)
                for (k_sym, k_days), s in self._entries.items()
                if k_sym == sym
            }

    def snapshot(self) -> Dict[str, int]:
        """``{"<symbol>_<days>": point_count}`` for the whole cache."""
        with self._lock:
            return {f"{k_sym}_{k_days}": len(s) for (k_sym, k_days), s in self._entries.items()}

    def keys(self) -> list:
        """Cache keys in insertion order (oldest first)."""
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
