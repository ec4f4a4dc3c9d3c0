"""
Process-local TTL cache fronting expensive guest reads
"""

import fnmatch
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class ReadCache:
    """Time-expiring key/value cache.

    Not a source of truth: dropping every entry only costs a store read.
    Expiry is checked lazily on ``get`` and swept by a background thread
    between ``start()`` and ``stop()``.
    """

    def __init__(
        self,
        default_ttl: float = 30.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._generation = 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None on a miss or expired entry"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                del self._entries[key]
                logger.debug(f"Cache expired: {key}")
                return None
        logger.debug(f"Cache hit: {key}")
        return entry.value

    @property
    def generation(self) -> int:
        """Bumped by every invalidation; see ``set``"""
        with self._lock:
            return self._generation

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store a value.

        When ``generation`` is given and an invalidation happened since it was
        read, the value may predate a write and is dropped instead.
        """
        ttl = ttl if ttl is not None else self.default_ttl
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(f"Cache set skipped for stale read: {key}")
                return False
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)
        logger.debug(f"Cache set: {key} (ttl={ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching a glob pattern such as ``guests:*``"""
        with self._lock:
            self._generation += 1
            matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matched:
                del self._entries[key]
        if matched:
            logger.info(f"Cache pattern cleared: {pattern} ({len(matched)} keys)")
        return len(matched)

    def clear(self) -> int:
        with self._lock:
            self._generation += 1
            size = len(self._entries)
            self._entries.clear()
        logger.info(f"Cache cleared: {size} keys")
        return size

    def sweep(self) -> int:
        """Remove expired entries; returns how many were dropped"""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Expired cache entries swept: {len(expired)}")
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            expired = sum(1 for entry in self._entries.values() if now > entry.expires_at)
        return {
            "total": total,
            "expired": expired,
            "active": total - expired,
            "ttl": self.default_ttl,
        }

    # Lifecycle

    def start(self) -> None:
        """Start the background sweep thread"""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop_event.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="read-cache-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info(f"Cache sweeper started (interval={self.sweep_interval}s)")

    def stop(self) -> None:
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout=self.sweep_interval + 1)
        self._sweeper = None
        logger.info("Cache sweeper stopped")

    @property
    def running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")


# Key layout. Every guest-derived key lives under ``guests:`` so a single
# pattern clear after a mutation covers detail, list and stats entries.

GUEST_KEY_PATTERN = "guests:*"
STATS_KEY = "guests:stats"


def guest_detail_key(guest_id: str) -> str:
    return f"guests:id:{guest_id}"


def guest_list_key(page: int, limit: int, status: Optional[str], ticket_type: Optional[str]) -> str:
    return f"guests:list:page{page}:limit{limit}:status{status}:ticket{ticket_type}"
