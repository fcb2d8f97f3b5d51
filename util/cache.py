"""
util/cache.py

In-process TTL cache used to memoize external calls (calendar windows, mail
searches, style profiles, research summaries).

- Entries expire `ttl` seconds after creation; expired entries are treated as
  absent by get/has and evicted lazily on access.
- At capacity, inserting a new key evicts the entry with the oldest creation
  time (FIFO by creation, not LRU).
- An optional daemon thread sweeps expired entries every `cleanup_interval`
  seconds. Lazy eviction alone is enough for correctness.
- Every public method is total: bad input returns False / None / {}.
"""

import json
import logging
import math
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass


logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL = 60.0
DEFAULT_CLEANUP_INTERVAL = 300.0


@dataclass
class CacheEntry:
    value: object
    expires_at: float
    created_at: float

    def expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache:
    def __init__(self, max_size=DEFAULT_MAX_SIZE, default_ttl=DEFAULT_TTL,
                 cleanup_interval=DEFAULT_CLEANUP_INTERVAL, clock=time.time):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    # --- single-key operations -------------------------------------------------

    def set(self, key, value, ttl=None) -> bool:
        """Store `value` under `key` for `ttl` seconds (default TTL if None)."""
        if not _valid_key(key):
            logger.error("Cannot set cache item with empty key")
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if not _valid_ttl(ttl):
            logger.error("Cannot set cache item %s with ttl %r", key, ttl)
            return False
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest = self._oldest_key()
                if oldest is not None:
                    del self._entries[oldest]
            now = self._clock()
            self._entries[key] = CacheEntry(value=value, expires_at=now + ttl, created_at=now)
        return True

    def get(self, key):
        """Return the cached value, or None when missing or expired."""
        if not _valid_key(key):
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def has(self, key) -> bool:
        if not _valid_key(key):
            return False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def peek(self, key) -> CacheEntry | None:
        """Return the raw entry even if expired, without evicting it."""
        if not _valid_key(key):
            return None
        with self._lock:
            return self._entries.get(key)

    def remove(self, key) -> bool:
        if not _valid_key(key):
            return False
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> bool:
        with self._lock:
            self._entries.clear()
        return True

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    # --- batch operations ------------------------------------------------------

    def set_many(self, items, ttl=None) -> bool:
        if not isinstance(items, Mapping):
            return False
        ok = True
        for key, value in items.items():
            if not self.set(key, value, ttl):
                ok = False
        return ok

    def get_many(self, keys) -> dict:
        """Return {key: value} for keys that are present and fresh."""
        if not isinstance(keys, (list, tuple)):
            return {}
        found = {}
        for key in keys:
            value = self.get(key)
            if value is not None:
                found[key] = value
        return found

    def remove_many(self, keys) -> bool:
        if not isinstance(keys, (list, tuple)):
            return False
        ok = True
        for key in keys:
            if not self.remove(key):
                ok = False
        return ok

    # --- maintenance -----------------------------------------------------------

    def cleanup(self) -> int:
        """Drop every expired entry; return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, e in self._entries.items() if e.expired(now)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info("Cache cleanup: removed %d expired items", len(stale))
        return len(stale)

    def stats(self) -> dict:
        with self._lock:
            now = self._clock()
            expired = 0
            total_bytes = 0
            for entry in self._entries.values():
                if entry.expired(now):
                    expired += 1
                try:
                    total_bytes += len(json.dumps(
                        {"value": entry.value, "expires": entry.expires_at, "timestamp": entry.created_at}
                    ))
                except (TypeError, ValueError):
                    total_bytes += 1000
            return {
                "count": len(self._entries),
                "expired_count": expired,
                "total_size_bytes": total_bytes,
                "max_size": self.max_size,
                "default_ttl": self.default_ttl,
                "cleanup_interval": self.cleanup_interval,
            }

    def start(self):
        """Start the background sweeper (idempotent)."""
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="ttl-cache-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self):
        self._stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def _sweep_loop(self):
        while not self._stop.wait(self.cleanup_interval):
            self.cleanup()

    def _oldest_key(self):
        oldest_key = None
        oldest_ts = float("inf")
        for key, entry in self._entries.items():
            if entry.created_at < oldest_ts:
                oldest_ts = entry.created_at
                oldest_key = key
        return oldest_key


def _valid_key(key) -> bool:
    return isinstance(key, str) and bool(key)


def _valid_ttl(ttl) -> bool:
    if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        return False
    return math.isfinite(ttl) and ttl >= 0
