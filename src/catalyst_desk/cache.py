"""In-memory TTL cache bound to an injectable clock.

Staleness is computed only from ``clock.now()``, never from wall time, so
expiry can be exercised in tests by advancing a ``FrozenClock``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from .logging_utils import get_logger
from .time_utils import Clock, SystemClock

log = get_logger("cache")

_MISSING = object()


class TTLCache:
    """Key/value cache where each entry lives for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Optional[Clock] = None, name: str = "cache"):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self.clock = clock or SystemClock()
        self.name = name
        self._data: Dict[Hashable, Tuple[datetime, Any]] = {}
        self.hits = 0
        self.misses = 0

    def _is_fresh(self, stored_at: datetime) -> bool:
        age = (self.clock.now() - stored_at).total_seconds()
        return age < self.ttl_seconds

    def get(self, key: Hashable, default: Any = None) -> Any:
        item = self._data.get(key)
        if item is None:
            self.misses += 1
            return default
        stored_at, value = item
        if not self._is_fresh(stored_at):
            del self._data[key]
            self.misses += 1
            return default
        self.hits += 1
        return value

    def set(self, key: Hashable, value: Any) -> None:
        self._data[key] = (self.clock.now(), value)

    def invalidate(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """Return the cached value or call ``loader`` and cache its result.

        ``None`` results are not cached so a failed lookup is retried on the
        next call instead of being pinned for a full TTL.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = loader()
        if value is not None:
            self.set(key, value)
        else:
            log.debug("cache_skip_none cache=%s key=%s", self.name, key)
        return value

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return sum(1 for stored_at, _ in self._data.values() if self._is_fresh(stored_at))
