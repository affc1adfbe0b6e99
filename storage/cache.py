"""
Cache & dedupe manager - in-memory TTL cache plus in-flight request collapsing.
Process-local state only; nothing is persisted.
"""

import os
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

HOUR = 60 * 60

# Staleness window per cache kind, in seconds
TTL_SECONDS = {
    'quote': 30,
    'nav_history': 5 * 60,
    'analysis': 5 * 60,
    'pingzhong_raw': HOUR,
    'pingzhong_parsed': HOUR,
    'grand_total': HOUR,
    'similar_ranking': 6 * HOUR,
    'f10_basic': 12 * HOUR,
    'basic_info': 12 * HOUR,
    'industry': 12 * HOUR,
    'top_holdings': 12 * HOUR,
    'holdings_compare': 12 * HOUR,
    'asset_allocation': 24 * HOUR,
}


class CacheConfigError(ValueError):
    """Raised when a TTL override or cache kind is invalid."""
    pass


def ttl_for(kind: str) -> float:
    """
    Resolve the TTL for a cache kind.

    ``FUND_CACHE_TTL_<KIND>`` (seconds) overrides the built-in value.

    Raises:
        CacheConfigError: If the kind is unknown or the override is invalid
    """
    if kind not in TTL_SECONDS:
        raise CacheConfigError(f"Unknown cache kind: {kind}")

    env_name = f"FUND_CACHE_TTL_{kind.upper()}"
    raw = os.getenv(env_name)
    if not raw:
        return float(TTL_SECONDS[kind])

    try:
        value = float(raw)
    except ValueError:
        raise CacheConfigError(f"Invalid {env_name}: {raw}. Must be a number.")
    if value < 0:
        raise CacheConfigError(f"Invalid {env_name}: {raw}. Must be non-negative.")
    return value


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the clock reading at which it expires."""
    value: Any
    expires_at: float


class CacheManager:
    """
    TTL cache with request deduplication.

    Entries are replaced wholesale and evicted lazily on read. Concurrent
    computations for the same key share one task; every caller waits
    through ``asyncio.shield`` so a cancelled caller never cancels the
    shared work.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._hits = 0
        self._misses = 0
        self._sets = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or None (expired entries are evicted)."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self._misses += 1
            logger.debug(f"Cache expired: {key}")
            return None

        self._hits += 1
        logger.debug(f"Cache hit: {key}")
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        self._sets += 1

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Drop every cached entry. In-flight work is left running."""
        self._entries.clear()

    def inflight_count(self) -> int:
        return len(self._inflight)

    def stats(self) -> Dict[str, int]:
        return {
            'hits': self._hits,
            'misses': self._misses,
            'sets': self._sets,
            'size': len(self._entries),
            'inflight': len(self._inflight),
        }

    def _forget(self, key: str, task: asyncio.Task) -> None:
        # Only drop the registration if it still belongs to this task
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    async def with_dedupe(self, key: str, compute_fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run ``compute_fn`` at most once concurrently per key.

        Args:
            key: Logical request key
            compute_fn: Zero-argument coroutine function

        Returns:
            The shared task's value

        Raises:
            Whatever the shared task raised, identically for every waiter
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(compute_fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        else:
            logger.debug(f"Joining in-flight request: {key}")

        return await asyncio.shield(task)

    async def get_or_compute(
        self,
        key: str,
        ttl_seconds: float,
        compute_fn: Callable[[], Awaitable[Any]],
        force: bool = False
    ) -> Any:
        """
        Cached read, else a deduplicated compute whose result is cached.

        Args:
            key: Cache key
            ttl_seconds: Lifetime of a freshly computed value
            compute_fn: Zero-argument coroutine function producing the value
            force: Skip the cached read (the fresh value still replaces it)

        Returns:
            Cached or freshly computed value
        """
        if not force:
            cached = self.get(key)
            if cached is not None:
                return cached

        async def compute_and_store():
            value = await compute_fn()
            self.set(key, value, ttl_seconds)
            logger.info(f"Cached {key} for {ttl_seconds:.0f}s")
            return value

        return await self.with_dedupe(key, compute_and_store)
