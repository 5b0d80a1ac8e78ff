from __future__ import annotations

import threading
import time
from typing import Any, Callable


DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0

_MISSING = object()


class TtlCache:
    """
    In-memory key/value store whose entries expire ``ttl`` seconds after insertion.

    Expired entries are never returned; they are purged lazily, at most once per
    ``cleanup_interval_seconds``, on the next write.
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self.default_ttl_seconds = float(default_ttl_seconds)
        self._cleanup_interval = max(0.0, float(cleanup_interval_seconds))
        self._clock = clock
        self._items: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._items.values() if expires_at > now)

    def _get_locked(self, key: str, now: float) -> Any:
        item = self._items.get(key)
        if item is None:
            return _MISSING
        value, expires_at = item
        if expires_at <= now:
            return _MISSING
        return value

    def _set_locked(self, key: str, value: Any, ttl: float | None, now: float) -> None:
        ttl_s = self.default_ttl_seconds if ttl is None else float(ttl)
        self._items[key] = (value, now + ttl_s)
        if now - self._last_cleanup >= self._cleanup_interval:
            self._items = {k: v for k, v in self._items.items() if v[1] > now}
            self._last_cleanup = now

    def get(self, key: str) -> tuple[Any, bool]:
        with self._lock:
            value = self._get_locked(key, self._clock())
        if value is _MISSING:
            return None, False
        return value, True

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._set_locked(key, value, ttl, self._clock())

    def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Set ``key`` only if it has no live entry. Returns True when stored."""
        with self._lock:
            now = self._clock()
            if self._get_locked(key, now) is not _MISSING:
                return False
            self._set_locked(key, value, ttl, now)
            return True


class NotificationDeduplicator:
    """At most one notification per target per TTL window."""

    def __init__(self, cache: TtlCache) -> None:
        self._cache = cache

    @property
    def ttl_seconds(self) -> float:
        return self._cache.default_ttl_seconds

    def should_notify(self, target_id: str) -> bool:
        # Lookup and insert happen atomically, so two concurrent failures for the
        # same target cannot both pass the gate.
        return self._cache.add(target_id, True)
