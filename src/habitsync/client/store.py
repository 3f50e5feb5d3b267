"""Single entry point for views: cached reads, optimistic writes and polling."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Union

from ..models import DashboardRead, HabitCreate, HabitEntryRead, HabitRead, HabitUpdate
from ..models.habit import utcnow
from ..services.stats import DerivedStats, compute_stats
from .cache import CacheKey, CacheStore, Resource
from .coordinator import FetchOutcome, RequestCoordinator
from .mutations import MutationEngine, as_date
from .profiles import STANDARD, SyncProfile
from .scheduler import RefreshScheduler
from .state import LocalState
from .transport import HabitApiClient, RemoteDataService

if TYPE_CHECKING:  # pragma: no cover
    from ..config import BaseConfig

logger = logging.getLogger(__name__)

HABITS_KEY = CacheKey.of(Resource.HABITS)
ENTRIES_KEY = CacheKey.of(Resource.ENTRIES)
DASHBOARD_KEY = CacheKey.of(Resource.DASHBOARD)


class HabitStore:
    """Habits and entries for one signed-in user.

    Reads go through the request coordinator and are merged into local state
    without clobbering entities that have a mutation in flight. Writes are
    optimistic and return a task (see :class:`MutationEngine`).
    """

    def __init__(
        self,
        remote: RemoteDataService,
        *,
        profile: SyncProfile = STANDARD,
        user_id: str = "",
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.remote = remote
        self.profile = profile
        self.cache = CacheStore(default_ttl=profile.cache_ttl, clock=clock)
        self.coordinator = RequestCoordinator.from_profile(self.cache, profile)
        self.state = LocalState()
        self.mutations = MutationEngine(
            remote, self.state, self.coordinator, user_id=user_id, now=now
        )
        self.mutations.add_error_listener(self._on_mutation_error)
        self.is_loading = False
        self.last_error: Optional[Exception] = None
        self.server_stats: dict[str, Any] = {}
        self._applied: dict[CacheKey, int] = {}
        self._loading = 0
        self._scheduler: Optional[RefreshScheduler] = None

    @classmethod
    def from_config(cls, config: "BaseConfig", user_id: str, **kwargs: Any) -> "HabitStore":
        remote = HabitApiClient(config.API_BASE_URL, user_id, timeout=config.REQUEST_TIMEOUT)
        return cls(remote, profile=config.sync_profile(), user_id=user_id, **kwargs)

    # Snapshot reads
    @property
    def habits(self) -> list[HabitRead]:
        return self.state.habit_list()

    @property
    def entries(self) -> list[HabitEntryRead]:
        return self.state.entry_list()

    def is_completed(self, habit_id: str, day: Union[dt.date, str]) -> bool:
        entry = self.state.get_entry(self.mutations.resolve_id(habit_id), as_date(day))
        return bool(entry and entry.completed)

    def stats(self, time_filter: str = "today", *, today: Optional[dt.date] = None) -> DerivedStats:
        return compute_stats(self.habits, self.entries, time_filter, today=today)

    # Fetching
    async def refresh(self, *, force: bool = False) -> None:
        """Reload habits and entries, batched into one request when the profile allows."""

        async with self._busy():
            if self.profile.batched:
                outcome = await self.coordinator.fetch(
                    DASHBOARD_KEY, lambda etag: self.remote.dashboard(etag=etag), force=force
                )
                self._apply(outcome, self._apply_dashboard)
            else:
                await asyncio.gather(
                    self.load_habits(force=force), self.load_entries(force=force)
                )

    async def load_habits(self, *, force: bool = False) -> list[HabitRead]:
        async with self._busy():
            outcome = await self.coordinator.fetch(
                HABITS_KEY, lambda etag: self.remote.list_habits(etag=etag), force=force
            )
            self._apply(
                outcome,
                lambda habits: self.state.merge_habits(habits, self.mutations.keep_local_habit),
            )
        return self.habits

    async def load_entries(self, *, force: bool = False) -> list[HabitEntryRead]:
        async with self._busy():
            outcome = await self.coordinator.fetch(
                ENTRIES_KEY, lambda etag: self.remote.list_entries(etag=etag), force=force
            )
            self._apply(
                outcome,
                lambda entries: self.state.merge_entries(entries, self.mutations.keep_local_entry),
            )
        return self.entries

    async def load_habit_entries(
        self, habit_id: str, *, force: bool = False
    ) -> list[HabitEntryRead]:
        habit_id = self.mutations.resolve_id(habit_id)
        key = CacheKey.of(Resource.HABIT_ENTRIES, habit_id=habit_id)
        async with self._busy():
            outcome = await self.coordinator.fetch(
                key,
                lambda etag: self.remote.list_habit_entries(habit_id, etag=etag),
                force=force,
            )
            self._apply(
                outcome,
                lambda entries: self.state.merge_entries(
                    entries, self.mutations.keep_local_entry, habit_id=habit_id
                ),
            )
        return [entry for _, entry in self.state.entries_for(habit_id)]

    async def force_refresh(self) -> None:
        await self.refresh(force=True)

    def invalidate_cache(self) -> None:
        self.coordinator.invalidate(*Resource)

    def _apply(self, outcome: FetchOutcome, apply: Callable[[Any], None]) -> bool:
        """Merge a fetch outcome into local state unless a newer one was applied."""

        if outcome.error is not None:
            self.last_error = outcome.error
        elif outcome.sequence is not None:
            self.last_error = None
        if outcome.payload is None or outcome.superseded:
            return False
        if outcome.sequence is not None:
            if outcome.sequence <= self._applied.get(outcome.key, 0):
                logger.debug("Ignoring outdated %s payload", outcome.key.resource.value)
                return False
            self._applied[outcome.key] = outcome.sequence
        apply(outcome.payload)
        return True

    def _apply_dashboard(self, payload: DashboardRead) -> None:
        self.state.merge_habits(payload.habits, self.mutations.keep_local_habit)
        self.state.merge_entries(payload.entries, self.mutations.keep_local_entry)
        self.server_stats = dict(payload.stats)

    def _busy(self) -> "_Loading":
        return _Loading(self)

    # Mutations
    def create_habit(self, data: Union[HabitCreate, Mapping[str, Any]]) -> asyncio.Task:
        return self.mutations.create_habit(data)

    def update_habit(
        self, habit_id: str, changes: Union[HabitUpdate, Mapping[str, Any]]
    ) -> asyncio.Task:
        return self.mutations.update_habit(habit_id, changes)

    def delete_habit(self, habit_id: str) -> asyncio.Task:
        return self.mutations.delete_habit(habit_id)

    def toggle_entry(
        self, habit_id: str, day: Union[dt.date, str], *, notes: Optional[str] = None
    ) -> asyncio.Task:
        return self.mutations.toggle_entry(habit_id, day, notes=notes)

    def _on_mutation_error(self, exc: Exception) -> None:
        self.last_error = exc

    # Lifecycle
    async def start_polling(self, interval: Optional[float] = None) -> bool:
        """Refresh now and keep refreshing in the background.

        Returns ``False`` when the profile has no poll interval and none was given.
        """

        interval = interval if interval is not None else self.profile.poll_interval
        if interval is None:
            logger.debug("Polling disabled for profile %s", self.profile.name)
            return False
        if self._scheduler is not None and self._scheduler.active:
            return True
        # Scheduled refreshes revalidate even when the cache is still fresh.
        self._scheduler = RefreshScheduler(lambda: self.refresh(force=True), interval)
        await self._scheduler.activate()
        return True

    def stop_polling(self) -> None:
        if self._scheduler is not None:
            self._scheduler.deactivate()
            self._scheduler = None

    @property
    def polling(self) -> bool:
        return self._scheduler is not None and self._scheduler.active

    def sign_out(self) -> None:
        """Drop everything tied to the session: polling, pending writes, cache and state."""

        self.stop_polling()
        self.mutations.reset()
        self.coordinator.reset()
        self.state.clear()
        self._applied.clear()
        self.server_stats = {}
        self.last_error = None
        logger.info("Session state cleared")

    async def close(self) -> None:
        self.stop_polling()
        await self.mutations.drain()
        close = getattr(self.remote, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "HabitStore":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


class _Loading:
    """Tracks nested loads so ``is_loading`` stays true until the outermost one ends."""

    def __init__(self, store: HabitStore) -> None:
        self.store = store

    async def __aenter__(self) -> None:
        self.store._loading += 1
        self.store.is_loading = True

    async def __aexit__(self, *exc_info: object) -> None:
        self.store._loading -= 1
        self.store.is_loading = self.store._loading > 0


__all__ = ["DASHBOARD_KEY", "ENTRIES_KEY", "HABITS_KEY", "HabitStore"]
