"""
Short-TTL feature access cache.

In-memory, keyed by the (feature_id, user_id) pair; make_cache_key is only the
printable form of that pair. Entries hold (value, expires_at)
against an injected clock so expiry is testable without sleeping. The cache
only saves round trips: a miss always falls through to a fresh resolution.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from webaudit.core.config import settings


def make_cache_key(feature_id: str, user_id: Optional[str] = None) -> str:
    return f"{feature_id}_{user_id or 'anonymous'}"


_Key = Tuple[str, Optional[str]]


@dataclass(frozen=True)
class _CacheEntry:
    value: bool
    expires_at: float
    user_id: Optional[str]


class FeatureAccessCache:
    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self.clock = clock
        self._entries: Dict[_Key, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, feature_id: str, user_id: Optional[str] = None) -> Optional[bool]:
        """Return the cached decision, or None on miss/stale (stale entries are evicted)."""
        key = (feature_id, user_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, feature_id: str, user_id: Optional[str], value: bool) -> None:
        key = (feature_id, user_id)
        with self._lock:
            self._entries[key] = _CacheEntry(
                value=bool(value),
                expires_at=self.clock() + self.ttl_seconds,
                user_id=user_id,
            )

    def invalidate(self, feature_id: str, user_id: Optional[str] = None) -> None:
        with self._lock:
            self._entries.pop((feature_id, user_id), None)

    def invalidate_user(self, user_id: str) -> int:
        """Drop every cached decision for a user (after a plan change)."""
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.user_id == user_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_expired(self) -> int:
        now = self.clock()
        with self._lock:
            keys = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def keys(self) -> List[str]:
        """Printable keys of the current entries, for debugging."""
        with self._lock:
            return [make_cache_key(feature_id, user_id) for feature_id, user_id in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def cached_feature_access(
    cache: Optional[FeatureAccessCache],
    user_id: str,
    feature_id: str,
    resolve: Callable[[str, str], Optional[bool]],
) -> bool:
    """
    Read-through lookup.

    `resolve(user_id, feature_id)` returns True/False for a definite answer
    or None when no decision could be made; None is treated as deny and is
    not cached.
    """
    if cache is not None:
        cached = cache.get(feature_id, user_id)
        if cached is not None:
            return cached

    decision = resolve(user_id, feature_id)
    if decision is None:
        return False

    if cache is not None:
        cache.set(feature_id, user_id, decision)
    return decision


# Process-wide cache used by the API layer
feature_cache = FeatureAccessCache(ttl_seconds=settings.FEATURE_CACHE_TTL_SECONDS)
