"""Decide between cache, cooldown and network for each read.

One coordinator replaces the tuned hook variants: ttl and cooldown come from a
:class:`~habitsync.client.profiles.SyncProfile`. Reads for the same key share a
single in-flight request, and every network attempt is numbered so that a
response which lands after the key was invalidated (or after a newer response
was stored) never overwrites fresher data.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..errors import HabitSyncError
from .cache import CacheKey, CacheStore, Resource
from .profiles import SyncProfile
from .transport import FetchResult

logger = logging.getLogger(__name__)

Loader = Callable[[Optional[str]], Awaitable[FetchResult]]


class FetchDecision(str, Enum):
    CACHE_HIT = "cache-hit"
    COOLDOWN_BLOCK = "cooldown-block"
    MUST_FETCH = "must-fetch"


@dataclass(frozen=True)
class FetchOutcome:
    """What a read produced and where it came from.

    ``payload`` may be stale (``from_cache`` with an ``error`` attached) or
    absent (cooldown with an empty cache). ``superseded`` marks a network
    response that arrived too late to be stored.
    """

    key: CacheKey
    payload: Any
    decision: FetchDecision
    sequence: Optional[int] = None
    from_cache: bool = False
    etag: Optional[str] = None
    error: Optional[HabitSyncError] = None
    not_modified: bool = False
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class RequestCoordinator:
    def __init__(
        self,
        cache: CacheStore,
        *,
        ttl: float,
        cooldown: float,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cache = cache
        self.ttl = ttl
        self.cooldown = cooldown
        self.clock = clock or cache.clock
        self._last_attempt: dict[CacheKey, float] = {}
        self._inflight: dict[CacheKey, asyncio.Future[FetchOutcome]] = {}
        self._stored_sequence: dict[CacheKey, int] = {}
        self._issued = 0
        self._floor = 0

    @classmethod
    def from_profile(
        cls, cache: CacheStore, profile: SyncProfile, **kwargs: Any
    ) -> "RequestCoordinator":
        return cls(cache, ttl=profile.cache_ttl, cooldown=profile.request_cooldown, **kwargs)

    def should_fetch(self, key: CacheKey) -> FetchDecision:
        if self.cache.get(key) is not None:
            return FetchDecision.CACHE_HIT
        last = self._last_attempt.get(key)
        if last is not None and self.clock() - last < self.cooldown:
            return FetchDecision.COOLDOWN_BLOCK
        return FetchDecision.MUST_FETCH

    async def fetch(self, key: CacheKey, loader: Loader, *, force: bool = False) -> FetchOutcome:
        """Serve ``key`` from cache, from the last payload, or through ``loader``.

        ``loader`` receives the cached validator (or ``None``) and performs the
        request. ``force`` skips both freshness and cooldown checks and always
        starts a new request. Transport and service errors never escape: they
        come back on the outcome alongside the best available payload.
        """

        decision = FetchDecision.MUST_FETCH if force else self.should_fetch(key)
        if decision is FetchDecision.CACHE_HIT:
            entry = self.cache.peek(key)
            return FetchOutcome(
                key, entry.payload, decision, from_cache=True, etag=entry.etag
            )

        pending = self._inflight.get(key)
        if pending is not None and not force:
            logger.debug("Joining in-flight fetch of %s", key.resource.value)
            return await asyncio.shield(pending)

        if decision is FetchDecision.COOLDOWN_BLOCK:
            entry = self.cache.peek(key)
            logger.debug("Fetch of %s held back by cooldown", key.resource.value)
            return FetchOutcome(
                key,
                entry.payload if entry else None,
                decision,
                from_cache=entry is not None,
                etag=entry.etag if entry else None,
            )

        self._issued += 1
        sequence = self._issued
        task = asyncio.ensure_future(self._perform(key, loader, sequence))
        self._inflight[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Future[FetchOutcome]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _is_superseded(self, key: CacheKey, sequence: int) -> bool:
        return sequence <= max(self._stored_sequence.get(key, 0), self._floor)

    async def _perform(self, key: CacheKey, loader: Loader, sequence: int) -> FetchOutcome:
        self._last_attempt[key] = self.clock()
        cached = self.cache.peek(key)
        try:
            result = await loader(cached.etag if cached else None)
            if (
                result.not_modified
                and key not in self.cache
                and not self._is_superseded(key, sequence)
            ):
                # The entry we revalidated is gone; ask again without a validator.
                result = await loader(None)
        except HabitSyncError as exc:
            stale = self.cache.peek(key)
            logger.warning(
                "Fetch of %s failed: %s", key.resource.value, exc,
                extra={"sequence": sequence, "stale_fallback": stale is not None},
            )
            return FetchOutcome(
                key,
                stale.payload if stale else None,
                FetchDecision.MUST_FETCH,
                sequence=sequence,
                from_cache=stale is not None,
                etag=stale.etag if stale else None,
                error=exc,
            )

        if self._is_superseded(key, sequence):
            current = self.cache.peek(key)
            logger.debug("Discarding superseded response #%d for %s", sequence, key.resource.value)
            return FetchOutcome(
                key,
                current.payload if current else result.payload,
                FetchDecision.MUST_FETCH,
                sequence=sequence,
                from_cache=current is not None,
                superseded=True,
            )

        self._stored_sequence[key] = sequence
        if result.not_modified:
            entry = self.cache.touch(key)
            return FetchOutcome(
                key,
                entry.payload if entry else None,
                FetchDecision.MUST_FETCH,
                sequence=sequence,
                from_cache=True,
                etag=entry.etag if entry else result.etag,
                not_modified=True,
            )

        self.cache.set(key, result.payload, ttl=self.ttl, etag=result.etag)
        return FetchOutcome(
            key,
            result.payload,
            FetchDecision.MUST_FETCH,
            sequence=sequence,
            etag=result.etag,
        )

    def invalidate(self, *resources: Resource) -> None:
        """Drop cached data for the families and void requests already in flight.

        Cooldowns for those keys are reset so the next read goes to the network.
        """

        wanted = set(resources)
        self.cache.invalidate_resource(*wanted)
        known = set(self._last_attempt) | set(self._inflight) | set(self._stored_sequence)
        for key in known:
            if key.resource not in wanted:
                continue
            self._stored_sequence[key] = self._issued
            self._last_attempt.pop(key, None)
            self._inflight.pop(key, None)

    def reset(self) -> None:
        """Forget everything, including requests still in flight."""

        self.cache.clear()
        self._last_attempt.clear()
        self._inflight.clear()
        self._stored_sequence.clear()
        self._floor = self._issued


__all__ = ["FetchDecision", "FetchOutcome", "Loader", "RequestCoordinator"]
