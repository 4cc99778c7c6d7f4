"""
Process-wide, thread-safe in-memory cache of materialized handbooks.

Each key moves Absent -> Loading -> Present. A failed load returns the key to
Absent so the next caller retries; failures are never cached. Present entries
live for the process lifetime and are never invalidated.

Loads are serialized by a load lock: one lock per key (default), or a single
cache-wide lock in "global" mode where any first load briefly blocks first
loads of every other key. Reads of Present keys never wait on a load lock.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from .config import CACHE_LOCK_MODE
from .observability import get_logger

logger = get_logger(__name__)


class EntryState(str, Enum):
    ABSENT = "absent"
    LOADING = "loading"
    PRESENT = "present"


@dataclass
class CacheStatistics:
    hits: int = 0
    misses: int = 0
    # Misses resolved by the re-check after waiting for the load lock.
    late_hits: int = 0
    loads: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "late_hits": self.late_hits,
            "loads": self.loads,
            "failures": self.failures,
        }


class DocumentCache:
    def __init__(self, *, lock_mode: str = CACHE_LOCK_MODE):
        mode = str(lock_mode or "per_key").strip().lower()
        if mode not in {"per_key", "global"}:
            raise ValueError(f"unsupported cache lock mode: {lock_mode!r}")
        self.lock_mode = mode
        # Guards the maps below; held only for dictionary operations.
        self._guard = threading.Lock()
        self._values: dict[str, str] = {}
        self._states: dict[str, EntryState] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()
        self._stats = CacheStatistics()

    def _load_lock(self, key: str) -> threading.Lock:
        if self.lock_mode == "global":
            return self._global_lock
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _present_value(self, key: str) -> str | None:
        with self._guard:
            return self._values.get(key)

    def state(self, key: str) -> EntryState:
        with self._guard:
            return self._states.get(key, EntryState.ABSENT)

    def peek(self, key: str) -> str | None:
        """Returns the cached value without loading."""
        return self._present_value(key)

    def keys(self) -> list[str]:
        with self._guard:
            return list(self._values.keys())

    def statistics(self) -> dict[str, int]:
        with self._guard:
            return self._stats.to_dict()

    def __contains__(self, key: object) -> bool:
        with self._guard:
            return key in self._values

    def __len__(self) -> int:
        with self._guard:
            return len(self._values)

    def get_or_load(self, key: str, loader: Callable[[], str]) -> str:
        """
        Returns the cached text for key, running `loader` at most once
        process-wide when the key is absent. Loader errors propagate and leave
        the key Absent.
        """
        value = self._present_value(key)
        if value is not None:
            with self._guard:
                self._stats.hits += 1
            logger.debug("handbook_cache_hit", key=key)
            return value

        with self._guard:
            self._stats.misses += 1

        with self._load_lock(key):
            # Another caller may have finished loading while we waited.
            value = self._present_value(key)
            if value is not None:
                with self._guard:
                    self._stats.late_hits += 1
                return value

            with self._guard:
                self._states[key] = EntryState.LOADING
            try:
                value = loader()
                if not isinstance(value, str):
                    raise TypeError(f"loader for {key!r} returned {type(value).__name__}, expected str")
            except Exception:
                with self._guard:
                    self._states.pop(key, None)
                    self._stats.failures += 1
                logger.warning("handbook_cache_load_failed", key=key)
                raise

            with self._guard:
                self._values[key] = value
                self._states[key] = EntryState.PRESENT
                self._stats.loads += 1
        logger.info("handbook_cached", key=key, characters=len(value), lock_mode=self.lock_mode)
        return value
