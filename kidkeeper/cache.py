"""Process-local cache for key store reads.

Entries carry an absolute expiry (``ttl``) and a shorter sliding window that
is renewed on every hit. An entry whose sliding window lapsed is no longer
served as fresh, but it is kept until its absolute expiry so that read paths
which tolerate staleness can fall back to it while a backend is unavailable.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class _Entry:
    value: Any
    expires_at: float
    last_access: float


class LocalCache:
    """TTL cache with a sliding refresh window.

    A ``ttl`` of zero disables caching entirely; every lookup misses.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        sliding: Optional[float] = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.sliding = sliding
        self._clock = clock
        self._entries: Dict[Hashable, _Entry] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def _lookup(self, key: Hashable) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def _is_fresh(self, entry: _Entry) -> bool:
        if not self.sliding:
            return True
        return self._clock() - entry.last_access < self.sliding

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the fresh value for ``key`` or ``default``."""
        entry = self._lookup(key)
        if entry is None or not self._is_fresh(entry):
            return default
        entry.last_access = self._clock()
        return entry.value

    def get_stale(self, key: Hashable, default: Any = None) -> Any:
        """Return the value for ``key`` ignoring the sliding window."""
        entry = self._lookup(key)
        return default if entry is None else entry.value

    def set(self, key: Hashable, value: Any) -> None:
        if not self.enabled:
            return
        now = self._clock()
        self._entries[key] = _Entry(value=value, expires_at=now + self.ttl, last_access=now)

    def invalidate(self, *keys: Hashable) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_create(
        self,
        key: Hashable,
        factory: Callable[[], Awaitable[Any]],
        fallback_errors: Tuple[type[BaseException], ...] = (),
    ) -> Any:
        """Return the cached value for ``key`` or populate it from ``factory``.

        ``None`` results are returned but never cached. When ``factory``
        raises one of ``fallback_errors`` and a stale entry is still within
        its absolute TTL, the stale value is returned instead.
        """
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value

        logger.debug(f"Cache miss for {key!r}")
        try:
            value = await factory()
        except fallback_errors as exc:
            stale = self.get_stale(key, _MISSING)
            if stale is _MISSING:
                raise
            logger.warning(f"Serving last known value for {key!r} after backend error: {exc}")
            return stale

        if value is not None:
            self.set(key, value)
        return value
