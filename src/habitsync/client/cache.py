"""In-memory response cache keyed by resource family and parameters."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)


class Resource(str, Enum):
    """Families of cached reads; invalidation works per family."""

    HABITS = "habits"
    ENTRIES = "entries"
    HABIT_ENTRIES = "habit_entries"
    DASHBOARD = "dashboard"


class CacheKey(NamedTuple):
    resource: Resource
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, resource: Resource, **params: Any) -> "CacheKey":
        """Build a key with parameters in a stable order."""

        return cls(resource, tuple(sorted(params.items())))


@dataclass
class CacheEntry:
    key: CacheKey
    payload: Any
    fetched_at: float
    ttl: float
    etag: Optional[str] = None

    def is_fresh(self, now: float) -> bool:
        return now - self.fetched_at < self.ttl


@dataclass
class CacheStore:
    """Keyed payload store with per-entry time-to-live.

    Entries are kept after they expire so the coordinator can fall back to them
    and reuse their validator; ``get`` simply stops returning them.
    """

    default_ttl: float = 300.0
    clock: Callable[[], float] = time.monotonic
    _entries: dict[CacheKey, CacheEntry] = field(default_factory=dict, init=False, repr=False)

    def get(self, key: CacheKey) -> Any:
        """Return the payload for ``key`` if present and fresh, else ``None``."""

        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss for %s", key.resource.value)
            return None
        if not entry.is_fresh(self.clock()):
            logger.debug("Cache entry for %s is stale", key.resource.value)
            return None
        logger.debug("Cache hit for %s", key.resource.value)
        return entry.payload

    def peek(self, key: CacheKey) -> Optional[CacheEntry]:
        """Return the raw entry regardless of age."""

        return self._entries.get(key)

    def set(
        self,
        key: CacheKey,
        payload: Any,
        ttl: Optional[float] = None,
        *,
        etag: Optional[str] = None,
    ) -> CacheEntry:
        entry = CacheEntry(
            key=key,
            payload=payload,
            fetched_at=self.clock(),
            ttl=self.default_ttl if ttl is None else ttl,
            etag=etag,
        )
        self._entries[key] = entry
        return entry

    def touch(self, key: CacheKey) -> Optional[CacheEntry]:
        """Mark an entry as just revalidated without replacing its payload."""

        entry = self._entries.get(key)
        if entry is not None:
            entry.fetched_at = self.clock()
        return entry

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def invalidate_resource(self, *resources: Resource) -> list[CacheKey]:
        """Drop every key belonging to the given families and return them."""

        wanted = set(resources)
        dropped = [key for key in self._entries if key.resource in wanted]
        for key in dropped:
            del self._entries[key]
        if dropped:
            logger.debug(
                "Invalidated %d cache entries", len(dropped),
                extra={"resources": sorted(r.value for r in wanted)},
            )
        return dropped

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries


__all__ = ["CacheEntry", "CacheKey", "CacheStore", "Resource"]
