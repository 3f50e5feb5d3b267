"""Optimistic mutations with rollback.

Every public operation changes :class:`~habitsync.client.state.LocalState`
before returning and hands back an :class:`asyncio.Task` that talks to the
service and reconciles afterwards. Errors the client can detect itself
(validation, unknown ids, illegal state transitions) are raised immediately
and leave local state untouched.

Mutations on the same entity run one at a time in issue order. When one
settles while a newer one is queued, its outcome is not written to local state
but becomes the newer mutation's rollback base: the queued mutation's
optimistic state stays visible, and a later rollback restores what the server
last confirmed rather than a snapshot the server never saw.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Hashable, Mapping, Optional, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from ..errors import HabitSyncError, NotFoundError, ValidationError, from_pydantic
from ..models import EntryToggle, HabitCreate, HabitEntryRead, HabitRead, HabitUpdate
from ..models.habit import HabitBase, utcnow
from .cache import Resource
from .coordinator import RequestCoordinator
from .state import LocalState, entry_key, habit_key
from .transport import RemoteDataService

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp-"
_HABIT_FIELDS = set(HabitBase.model_fields)

ErrorListener = Callable[[Exception], None]


def temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid4().hex}"


def is_temp_id(value: str) -> bool:
    return value.startswith(TEMP_PREFIX)


class EntityState(str, Enum):
    CLEAN = "clean"
    PENDING_CREATE = "pending-create"
    PENDING_UPDATE = "pending-update"
    PENDING_DELETE = "pending-delete"


class MutationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TOGGLE = "toggle"


# Missing pairs are rejected; nothing may follow a pending delete.
_TRANSITIONS: dict[tuple[EntityState, MutationKind], EntityState] = {
    (EntityState.CLEAN, MutationKind.CREATE): EntityState.PENDING_CREATE,
    (EntityState.CLEAN, MutationKind.UPDATE): EntityState.PENDING_UPDATE,
    (EntityState.CLEAN, MutationKind.DELETE): EntityState.PENDING_DELETE,
    (EntityState.CLEAN, MutationKind.TOGGLE): EntityState.PENDING_UPDATE,
    (EntityState.PENDING_CREATE, MutationKind.UPDATE): EntityState.PENDING_CREATE,
    (EntityState.PENDING_CREATE, MutationKind.DELETE): EntityState.PENDING_DELETE,
    (EntityState.PENDING_UPDATE, MutationKind.UPDATE): EntityState.PENDING_UPDATE,
    (EntityState.PENDING_UPDATE, MutationKind.DELETE): EntityState.PENDING_DELETE,
    (EntityState.PENDING_UPDATE, MutationKind.TOGGLE): EntityState.PENDING_UPDATE,
}

_INVALIDATES: dict[MutationKind, tuple[Resource, ...]] = {
    MutationKind.CREATE: (Resource.HABITS, Resource.DASHBOARD),
    # Entries carry the habit's display fields.
    MutationKind.UPDATE: (Resource.HABITS, Resource.ENTRIES, Resource.DASHBOARD),
    MutationKind.DELETE: (
        Resource.HABITS,
        Resource.ENTRIES,
        Resource.HABIT_ENTRIES,
        Resource.DASHBOARD,
    ),
    MutationKind.TOGGLE: (Resource.ENTRIES, Resource.HABIT_ENTRIES, Resource.DASHBOARD),
}


@dataclass
class _Snapshot:
    record: Any
    position: int
    entries: list[tuple[int, HabitEntryRead]] = field(default_factory=list)


@dataclass(eq=False)
class _Mutation:
    kind: MutationKind
    key: Hashable
    local_id: str
    base: _Snapshot
    generation: int
    day: Optional[dt.date] = None


def _validate(model: Any, data: Any) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise from_pydantic(exc) from exc


def _revise(record: Any, **changes: Any) -> Any:
    """Return a validated copy of ``record`` with ``changes`` applied."""

    return type(record).model_validate({**record.model_dump(), **changes})


def as_date(value: Union[dt.date, str]) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


class MutationEngine:
    def __init__(
        self,
        remote: RemoteDataService,
        state: LocalState,
        coordinator: RequestCoordinator,
        *,
        user_id: str = "",
        now: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.remote = remote
        self.state = state
        self.coordinator = coordinator
        self.user_id = user_id
        self.now = now
        self.last_error: Optional[Exception] = None
        self._states: dict[Hashable, EntityState] = {}
        self._queues: dict[Hashable, deque[_Mutation]] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._aliases: dict[str, str] = {}
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[ErrorListener] = []
        self._generation = 0

    # Introspection
    def state_of(self, key: Hashable) -> EntityState:
        return self._states.get(key, EntityState.CLEAN)

    @property
    def pending(self) -> bool:
        return bool(self._queues)

    def resolve_id(self, habit_id: str) -> str:
        """Map a temporary id to its server id once the create has been confirmed."""

        if habit_id in self.state.habits:
            return habit_id
        return self._aliases.get(habit_id, habit_id)

    def keep_local_habit(self, habit_id: str) -> Optional[bool]:
        """Merge policy for fetched habits (see ``LocalState.merge_habits``)."""

        state = self.state_of(habit_key(habit_id))
        if state is EntityState.PENDING_DELETE:
            return False
        if state is EntityState.CLEAN:
            return None
        return True

    def keep_local_entry(self, habit_id: str, day: dt.date) -> Optional[bool]:
        if self.state_of(habit_key(habit_id)) is EntityState.PENDING_DELETE:
            return False
        if self.state_of(entry_key(habit_id, day)) is EntityState.CLEAN:
            return None
        return True

    def add_error_listener(self, listener: ErrorListener) -> Callable[[], None]:
        """Register ``listener`` for mutation failures; returns an unsubscribe callable."""

        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # Operations
    def create_habit(self, data: Union[HabitCreate, Mapping[str, Any]]) -> asyncio.Task:
        payload = data if isinstance(data, HabitCreate) else _validate(HabitCreate, data)
        local_id = temp_id()
        key = habit_key(local_id)
        next_state = self._prepare(key, MutationKind.CREATE)

        now = self.now()
        optimistic = HabitRead(
            id=local_id,
            user_id=self.user_id,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )
        mutation = self._mutation(
            MutationKind.CREATE, key, local_id, _Snapshot(None, len(self.state.habits))
        )
        self.state.put_habit(optimistic)
        return self._submit(mutation, next_state, lambda: self._send_create(mutation, payload))

    def update_habit(
        self, habit_id: str, changes: Union[HabitUpdate, Mapping[str, Any]]
    ) -> asyncio.Task:
        habit_id = self.resolve_id(habit_id)
        current = self._require_habit(habit_id)
        key = habit_key(habit_id)
        next_state = self._prepare(key, MutationKind.UPDATE)

        update = changes if isinstance(changes, HabitUpdate) else _validate(HabitUpdate, changes)
        fields = update.model_dump(exclude_unset=True)
        if not fields:
            raise ValidationError("No fields to update")
        merged = _validate(
            HabitCreate, {**current.model_dump(include=_HABIT_FIELDS), **fields}
        )
        sent = {name: getattr(merged, name) for name in fields}
        if "target_frequency" in fields:
            sent["target_count"] = merged.target_count

        optimistic = _revise(current, **merged.model_dump(), updated_at=self.now())
        mutation = self._mutation(
            MutationKind.UPDATE,
            key,
            habit_id,
            _Snapshot(current, self.state.habit_position(habit_id)),
        )
        self.state.replace_habit(habit_id, optimistic)
        payload = HabitUpdate(**sent)
        return self._submit(mutation, next_state, lambda: self._send_update(mutation, payload))

    def delete_habit(self, habit_id: str) -> asyncio.Task:
        habit_id = self.resolve_id(habit_id)
        current = self._require_habit(habit_id)
        key = habit_key(habit_id)
        next_state = self._prepare(key, MutationKind.DELETE)

        mutation = self._mutation(
            MutationKind.DELETE,
            key,
            habit_id,
            _Snapshot(
                current,
                self.state.habit_position(habit_id),
                self.state.entries_for(habit_id),
            ),
        )
        self.state.remove_habit(habit_id)
        return self._submit(mutation, next_state, lambda: self._send_delete(mutation))

    def toggle_entry(
        self,
        habit_id: str,
        day: Union[dt.date, str],
        *,
        notes: Optional[str] = None,
    ) -> asyncio.Task:
        """Flip completion of ``habit_id`` on ``day``, creating a completed entry if none exists."""

        day = as_date(day)
        habit_id = self.resolve_id(habit_id)
        habit = self._require_habit(habit_id)
        if is_temp_id(habit_id):
            raise ValidationError("Habit is still being saved; try again once it is confirmed")
        key = entry_key(habit_id, day)
        next_state = self._prepare(key, MutationKind.TOGGLE)

        current = self.state.get_entry(habit_id, day)
        now = self.now()
        if current is None:
            optimistic = HabitEntryRead(
                id=temp_id(),
                habit_id=habit_id,
                user_id=habit.user_id,
                date=day,
                completed=True,
                count=1,
                notes=notes,
                completed_at=now,
                created_at=now,
                habit_name=habit.name,
                habit_color=habit.color,
                habit_icon=habit.icon,
            )
        else:
            completed = not current.completed
            changes: dict[str, Any] = {
                "completed": completed,
                "completed_at": now if completed else None,
            }
            if notes is not None:
                changes["notes"] = notes
            optimistic = _revise(current, **changes)

        mutation = self._mutation(
            MutationKind.TOGGLE,
            key,
            habit_id,
            _Snapshot(current, self.state.entry_position(habit_id, day)),
            day=day,
        )
        self.state.put_entry(optimistic)
        payload = EntryToggle(date=day, completed=optimistic.completed, notes=notes)
        return self._submit(mutation, next_state, lambda: self._send_toggle(mutation, payload))

    async def drain(self) -> None:
        """Wait until every submitted mutation has settled."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def reset(self) -> None:
        """Abandon pending mutations without touching local state (sign-out)."""

        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._states.clear()
        self._queues.clear()
        self._locks.clear()
        self._aliases.clear()
        self.last_error = None

    # Requests
    async def _send_create(self, mutation: _Mutation, payload: HabitCreate) -> HabitRead:
        record = await self.remote.create_habit(payload)
        self._aliases[mutation.local_id] = record.id
        return record

    async def _send_update(self, mutation: _Mutation, payload: HabitUpdate) -> HabitRead:
        return await self.remote.update_habit(self._remote_id(mutation.local_id), payload)

    async def _send_delete(self, mutation: _Mutation) -> None:
        remote_id = self._aliases.get(mutation.local_id, mutation.local_id)
        if is_temp_id(remote_id):
            # The create never reached the server; nothing to delete there.
            return None
        await self.remote.delete_habit(remote_id)
        return None

    async def _send_toggle(self, mutation: _Mutation, payload: EntryToggle) -> HabitEntryRead:
        record = await self.remote.toggle_entry(mutation.local_id, payload)
        habit = self.state.get_habit(mutation.local_id)
        if record.habit_name is None and habit is not None:
            record = _revise(
                record,
                habit_name=habit.name,
                habit_color=habit.color,
                habit_icon=habit.icon,
            )
        return record

    def _remote_id(self, local_id: str) -> str:
        remote_id = self._aliases.get(local_id, local_id)
        if is_temp_id(remote_id):
            raise NotFoundError("Habit was never saved")
        return remote_id

    # Bookkeeping
    def _require_habit(self, habit_id: str) -> HabitRead:
        habit = self.state.get_habit(habit_id)
        if habit is None:
            raise NotFoundError(f"Habit {habit_id} not found")
        return habit

    def _prepare(self, key: Hashable, kind: MutationKind) -> EntityState:
        asyncio.get_running_loop()
        current = self.state_of(key)
        next_state = _TRANSITIONS.get((current, kind))
        if next_state is None:
            raise ValidationError(f"Cannot {kind.value} {key[0]} while it is {current.value}")
        return next_state

    def _mutation(
        self,
        kind: MutationKind,
        key: Hashable,
        local_id: str,
        base: _Snapshot,
        *,
        day: Optional[dt.date] = None,
    ) -> _Mutation:
        return _Mutation(kind, key, local_id, base, self._generation, day)

    def _submit(
        self,
        mutation: _Mutation,
        next_state: EntityState,
        send: Callable[[], Awaitable[Any]],
    ) -> asyncio.Task:
        self._states[mutation.key] = next_state
        self._queues.setdefault(mutation.key, deque()).append(mutation)
        task = asyncio.get_running_loop().create_task(self._run(mutation, send))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled():
            # Failures are already reported to listeners and last_error.
            task.exception()

    async def _run(self, mutation: _Mutation, send: Callable[[], Awaitable[Any]]) -> Any:
        lock = self._locks.setdefault(mutation.key, asyncio.Lock())
        try:
            await lock.acquire()
        except asyncio.CancelledError:
            self._settle(mutation, mutation.base.record)
            raise
        try:
            result = await send()
        except asyncio.CancelledError:
            self._settle(mutation, mutation.base.record)
            raise
        except Exception as exc:
            self._settle(mutation, mutation.base.record)
            self._report(exc, mutation)
            raise
        else:
            self._settle(mutation, result)
            if mutation.generation == self._generation:
                self.coordinator.invalidate(*_INVALIDATES[mutation.kind])
            return result
        finally:
            lock.release()

    def _settle(self, mutation: _Mutation, record: Any) -> None:
        """Hand ``record`` to the next queued mutation, or commit it if none is left."""

        if mutation.generation != self._generation:
            return
        queue = self._queues[mutation.key]
        index = next(i for i, queued in enumerate(queue) if queued is mutation)
        del queue[index]
        if index < len(queue):
            queue[index].base.record = record
        if queue:
            if any(queued.kind is MutationKind.DELETE for queued in queue):
                self._states[mutation.key] = EntityState.PENDING_DELETE
            elif queue[0].kind is MutationKind.CREATE:
                self._states[mutation.key] = EntityState.PENDING_CREATE
            else:
                self._states[mutation.key] = EntityState.PENDING_UPDATE
            return

        del self._queues[mutation.key]
        self._states.pop(mutation.key, None)
        self._locks.pop(mutation.key, None)
        if mutation.kind is MutationKind.TOGGLE:
            self._commit_entry(mutation, record)
        else:
            self._commit_habit(mutation, record)

    def _commit_habit(self, mutation: _Mutation, record: Optional[HabitRead]) -> None:
        if record is None:
            self.state.remove_habit(mutation.local_id)
        elif mutation.local_id in self.state.habits:
            self.state.replace_habit(mutation.local_id, record)
        else:
            self.state.put_habit(record, position=mutation.base.position)
            self.state.restore_entries(mutation.base.entries)

    def _commit_entry(self, mutation: _Mutation, record: Optional[HabitEntryRead]) -> None:
        if self.state.get_habit(mutation.local_id) is None:
            if not self._rebase_deletes(mutation, record):
                logger.debug("Habit %s was removed; dropping entry result", mutation.local_id)
            return
        if record is None:
            self.state.remove_entry(mutation.local_id, mutation.day)
        else:
            self.state.put_entry(record, position=mutation.base.position)

    def _rebase_deletes(self, mutation: _Mutation, record: Optional[HabitEntryRead]) -> bool:
        """Write a settled toggle into the entry snapshots of pending deletes of its habit.

        A delete accepted while the toggle was in flight captured the optimistic
        entry; if the delete fails it must restore what the toggle settled on.
        """
        deletes = [
            queued
            for queued in self._queues.get(habit_key(mutation.local_id), ())
            if queued.kind is MutationKind.DELETE
        ]
        for delete in deletes:
            position = mutation.base.position
            kept = []
            for held_at, entry in delete.base.entries:
                if entry.date == mutation.day:
                    position = held_at
                else:
                    kept.append((held_at, entry))
            if record is not None:
                kept.append((position, record))
                kept.sort(key=lambda pair: pair[0])
            delete.base.entries = kept
        return bool(deletes)

    def _report(self, exc: Exception, mutation: _Mutation) -> None:
        self.last_error = exc
        level = logging.WARNING if isinstance(exc, HabitSyncError) else logging.ERROR
        logger.log(
            level,
            "%s %s failed and was rolled back: %s",
            mutation.kind.value.capitalize(), mutation.local_id, exc,
            extra={"mutation": mutation.kind.value, "day": mutation.day},
        )
        for listener in list(self._listeners):
            try:
                listener(exc)
            except Exception:
                logger.exception("Mutation error listener failed")


__all__ = [
    "EntityState",
    "MutationEngine",
    "MutationKind",
    "TEMP_PREFIX",
    "as_date",
    "is_temp_id",
    "temp_id",
]
