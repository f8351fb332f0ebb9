"""In-process cache of decoded shards."""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from ..logging_config import get_logger
from ..models.shard import Shard

logger = get_logger(__name__)


@dataclass
class _Entry:
    shard: Shard
    expires_at: float


class ShardCache:
    """
    TTL cache of year shards.

    The cache has no timers of its own. Its owner calls ``evict_expired`` when
    convenient and ``invalidate`` whenever it mutates a year. A TTL of zero
    disables caching.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        max_entries: int = 64,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[int, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, year: int) -> Shard | None:
        """Cached shard of ``year``, None when absent or expired."""
        with self._lock:
            entry = self._entries.get(year)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[year]
                return None
            self._entries.move_to_end(year)
            return entry.shard

    def put(self, year: int, shard: Shard) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[year] = _Entry(shard=shard, expires_at=self._clock() + self.ttl_seconds)
            self._entries.move_to_end(year)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("shard_cache_evicted", year=evicted, reason="capacity")

    def invalidate(self, year: int) -> None:
        with self._lock:
            self._entries.pop(year, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def evict_expired(self) -> int:
        """
        Drop every expired entry.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [year for year, entry in self._entries.items() if entry.expires_at <= now]
            for year in expired:
                del self._entries[year]

        if expired:
            logger.debug("shard_cache_expired", years=expired)
        return len(expired)
