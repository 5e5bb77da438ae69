# cache.py
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .errors import CacheBackingError, CacheComputeError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Step-level result caching for expensive external queries
# (e.g. "list outdated packages"):
#
#   cache.get_or_compute("winget:outdated", ttl=300, compute=query_fn)
#
# - entries live for `ttl` seconds from the moment they were written
# - concurrent callers for the same key share one in-flight computation
# - an optional backing (file / sql / redis) makes entries survive restarts;
#   stale entries found there are ignored, not deleted (lazy expiry)
# ---------------------------------------------------------------------


class CacheBacking(Protocol):
    def load(self, key: str) -> Optional[Tuple[Any, float]]: ...
    def store(self, key: str, value: Any, timestamp: float) -> None: ...
    def delete(self, key: str) -> None: ...
    def clear(self) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float | None

    def is_live(self, now: float, ttl: float | None = None) -> bool:
        limit = self.ttl if ttl is None else ttl
        if limit is None:
            return True
        return now - self.created_at <= limit


@dataclass(frozen=True)
class CacheLookup:
    value: Any
    hit: bool
    source: str  # memory | backing | computed | shared


class CacheLayer:
    """
    In-memory TTL cache with single-flight computation and optional
    persistent backing.

    One instance per engine / test; pass it to the executor explicitly.
    """

    def __init__(
        self,
        backing: Optional[CacheBacking] = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.backing = backing
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, Future] = {}
        self._lock = threading.Lock()

    # ---- public API ----

    def get_or_compute(self, key: str, ttl: float | None, compute: Callable[[], Any]) -> Any:
        return self.fetch(key, ttl, compute).value

    def force_refresh(self, key: str, ttl: float | None, compute: Callable[[], Any]) -> Any:
        return self.fetch(key, ttl, compute, force=True).value

    def fetch(
        self,
        key: str,
        ttl: float | None,
        compute: Callable[[], Any],
        *,
        force: bool = False,
    ) -> CacheLookup:
        """
        get_or_compute / force_refresh with hit information.

        Raises:
            CacheComputeError: compute raised; nothing is stored
        """
        while True:
            with self._lock:
                if not force:
                    entry = self._entries.get(key)
                    if entry is not None and entry.is_live(self._clock(), ttl):
                        return CacheLookup(entry.value, hit=True, source="memory")

                fut = self._inflight.get(key)
                if fut is None:
                    fut = Future()
                    self._inflight[key] = fut
                    break

            if force:
                # wait for the running computation, then compute our own
                try:
                    fut.result()
                except CacheComputeError:
                    pass
                continue

            value = fut.result()  # re-raises the leader's CacheComputeError
            return CacheLookup(value, hit=True, source="shared")

        # we are the leader for `key`
        try:
            lookup = self._lead(key, ttl, compute, force=force)
        except BaseException as e:
            with self._lock:
                self._inflight.pop(key, None)
            fut.set_exception(e)
            raise

        with self._lock:
            self._inflight.pop(key, None)
        fut.set_result(lookup.value)
        return lookup

    def lookup(self, key: str, ttl: float | None = None) -> Optional[CacheEntry]:
        """Return the live entry for `key` without computing anything."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is not None and entry.is_live(self._clock(), ttl):
            return entry
        entry = self._load_backing(key, ttl)
        if entry is not None:
            with self._lock:
                self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
        if self.backing is not None:
            try:
                self.backing.delete(key)
            except CacheBackingError as e:
                logger.warning("cache backing delete failed for %r: %s", key, e)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
        if self.backing is not None:
            self.backing.clear()

    def evict_expired(self) -> int:
        """Drop expired in-memory entries (using each entry's own TTL)."""
        now = self._clock()
        with self._lock:
            dead = [k for k, e in self._entries.items() if not e.is_live(now)]
            for k in dead:
                del self._entries[k]
        return len(dead)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
        return entry is not None and entry.is_live(self._clock())

    # ---- internals ----

    def _lead(self, key: str, ttl: float | None, compute: Callable[[], Any], *, force: bool) -> CacheLookup:
        if not force:
            entry = self._load_backing(key, ttl)
            if entry is not None:
                with self._lock:
                    self._entries[key] = entry
                return CacheLookup(entry.value, hit=True, source="backing")

        try:
            value = compute()
        except Exception as e:
            raise CacheComputeError(key, str(e) or type(e).__name__) from e

        entry = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
        with self._lock:
            self._entries[key] = entry
        if self.backing is not None:
            try:
                self.backing.store(key, value, entry.created_at)
            except CacheBackingError as e:
                logger.warning("cache backing store failed for %r: %s", key, e)
        return CacheLookup(value, hit=False, source="computed")

    def _load_backing(self, key: str, ttl: float | None) -> Optional[CacheEntry]:
        if self.backing is None:
            return None
        try:
            loaded = self.backing.load(key)
        except CacheBackingError as e:
            logger.warning("cache backing load failed for %r: %s", key, e)
            return None
        if loaded is None:
            return None
        value, created_at = loaded
        entry = CacheEntry(key=key, value=value, created_at=created_at, ttl=ttl)
        if not entry.is_live(self._clock(), ttl):
            # stale on disk: treated as absent, left for the next store to overwrite
            return None
        return entry
