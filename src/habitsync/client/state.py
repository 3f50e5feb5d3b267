"""In-memory habit and entry collections shared by reads and mutations."""

from __future__ import annotations

import datetime as dt
from typing import Callable, Hashable, Iterable, Optional, TypeVar

from ..models import HabitEntryRead, HabitRead

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

EntryId = tuple[str, dt.date]


def habit_key(habit_id: str) -> tuple[str, str]:
    return ("habit", habit_id)


def entry_key(habit_id: str, day: dt.date) -> tuple[str, str, dt.date]:
    return ("entry", habit_id, day)


def _insert_at(mapping: dict[K, V], index: int, key: K, value: V) -> None:
    items = [(k, v) for k, v in mapping.items() if k != key]
    items.insert(min(max(index, 0), len(items)), (key, value))
    mapping.clear()
    mapping.update(items)


def _rekey(mapping: dict[K, V], old: K, new: K, value: V) -> None:
    """Replace ``old`` with ``new`` in place, keeping its position."""

    items: list[tuple[K, V]] = []
    for k, v in mapping.items():
        if k == old:
            items.append((new, value))
        elif k != new:
            items.append((k, v))
    mapping.clear()
    mapping.update(items)


class LocalState:
    """Ordered habit and entry collections.

    Records are immutable by convention: every change swaps in a new model
    object, so payloads shared with the cache are never modified and a restored
    snapshot compares equal to what was there before.
    """

    def __init__(self) -> None:
        self.habits: dict[str, HabitRead] = {}
        self.entries: dict[EntryId, HabitEntryRead] = {}

    # Reads
    def habit_list(self) -> list[HabitRead]:
        return list(self.habits.values())

    def entry_list(self) -> list[HabitEntryRead]:
        return list(self.entries.values())

    def get_habit(self, habit_id: str) -> Optional[HabitRead]:
        return self.habits.get(habit_id)

    def get_entry(self, habit_id: str, day: dt.date) -> Optional[HabitEntryRead]:
        return self.entries.get((habit_id, day))

    def habit_position(self, habit_id: str) -> int:
        return list(self.habits).index(habit_id) if habit_id in self.habits else len(self.habits)

    def entry_position(self, habit_id: str, day: dt.date) -> int:
        ident = (habit_id, day)
        return list(self.entries).index(ident) if ident in self.entries else len(self.entries)

    def entries_for(self, habit_id: str) -> list[tuple[int, HabitEntryRead]]:
        return [
            (index, entry)
            for index, entry in enumerate(self.entries.values())
            if entry.habit_id == habit_id
        ]

    # Habit writes
    def put_habit(self, habit: HabitRead, *, position: Optional[int] = None) -> None:
        """Insert or replace ``habit``; new records go to ``position`` (default: end)."""

        if habit.id in self.habits or position is None:
            self.habits[habit.id] = habit
        else:
            _insert_at(self.habits, position, habit.id, habit)

    def replace_habit(self, old_id: str, habit: HabitRead) -> None:
        """Swap the record stored under ``old_id`` for ``habit`` at the same position."""

        if old_id not in self.habits:
            self.put_habit(habit)
        elif old_id == habit.id:
            self.habits[old_id] = habit
        else:
            _rekey(self.habits, old_id, habit.id, habit)

    def remove_habit(self, habit_id: str) -> Optional[HabitRead]:
        """Drop a habit together with its entries."""

        self.remove_entries_for(habit_id)
        return self.habits.pop(habit_id, None)

    # Entry writes
    def put_entry(self, entry: HabitEntryRead, *, position: Optional[int] = None) -> None:
        ident = (entry.habit_id, entry.date)
        if ident in self.entries or position is None:
            self.entries[ident] = entry
        else:
            _insert_at(self.entries, position, ident, entry)

    def remove_entry(self, habit_id: str, day: dt.date) -> Optional[HabitEntryRead]:
        return self.entries.pop((habit_id, day), None)

    def remove_entries_for(self, habit_id: str) -> list[tuple[int, HabitEntryRead]]:
        removed = self.entries_for(habit_id)
        for _, entry in removed:
            del self.entries[(entry.habit_id, entry.date)]
        return removed

    def restore_entries(self, entries: Iterable[tuple[int, HabitEntryRead]]) -> None:
        for position, entry in sorted(entries, key=lambda item: item[0]):
            self.put_entry(entry, position=position)

    # Reconciliation with fetched collections
    def merge_habits(
        self, fetched: Iterable[HabitRead], keep_local: Callable[[str], Optional[bool]]
    ) -> None:
        """Adopt a fetched habit list without losing pending local changes.

        ``keep_local(habit_id)`` returns ``True`` to keep the local record,
        ``False`` to drop the habit entirely and ``None`` to take the fetched one.
        """

        merged: dict[str, HabitRead] = {}
        for habit in fetched:
            decision = keep_local(habit.id)
            if decision is False:
                continue
            if decision and habit.id in self.habits:
                merged[habit.id] = self.habits[habit.id]
            else:
                merged[habit.id] = habit
        for habit_id, habit in self.habits.items():
            if habit_id not in merged and keep_local(habit_id):
                merged[habit_id] = habit
        self.habits = merged

    def merge_entries(
        self,
        fetched: Iterable[HabitEntryRead],
        keep_local: Callable[[str, dt.date], Optional[bool]],
        *,
        habit_id: Optional[str] = None,
    ) -> None:
        """Adopt fetched entries; with ``habit_id`` only that habit's entries change."""

        merged: dict[EntryId, HabitEntryRead] = {}
        if habit_id is not None:
            merged.update((k, v) for k, v in self.entries.items() if k[0] != habit_id)
        for entry in fetched:
            if habit_id is not None and entry.habit_id != habit_id:
                continue
            ident = (entry.habit_id, entry.date)
            decision = keep_local(*ident)
            if decision is False:
                continue
            if decision and ident in self.entries:
                merged[ident] = self.entries[ident]
            else:
                merged[ident] = entry
        for ident, entry in self.entries.items():
            if ident in merged or (habit_id is not None and ident[0] != habit_id):
                continue
            if keep_local(*ident):
                merged[ident] = entry
        self.entries = merged

    def clear(self) -> None:
        self.habits.clear()
        self.entries.clear()


__all__ = ["EntryId", "LocalState", "entry_key", "habit_key"]
