"""Habit repository protocol."""

from __future__ import annotations

from datetime import date
from typing import Optional, Protocol

from ...models.habit import (
    EntryToggle,
    Habit,
    HabitCreate,
    HabitEntry,
    HabitEntryRead,
    HabitUpdate,
)


class HabitRepository(Protocol):
    """Repository for managing habit entities owned by one user."""

    def get_by_id(self, habit_id: str, *, user_id: str) -> Optional[Habit]:
        """Retrieve a habit by ID."""
        ...

    def list_active(self, *, user_id: str) -> list[Habit]:
        """List only active habits, newest first."""
        ...

    def create(self, data: HabitCreate, *, user_id: str) -> Habit:
        """Create a new habit."""
        ...

    def update(self, habit_id: str, changes: HabitUpdate, *, user_id: str) -> Habit:
        """Apply a partial update; raises NotFoundError when not owned."""
        ...

    def delete(self, habit_id: str, *, user_id: str) -> None:
        """Delete a habit and its entries; raises NotFoundError when not owned."""
        ...

    # Habit entry operations
    def list_entries(self, *, user_id: str) -> list[HabitEntryRead]:
        """All entries of the user joined with habit display fields."""
        ...

    def list_entries_for_habit(self, habit_id: str, *, user_id: str) -> list[HabitEntryRead]:
        """Entries for one habit, newest first, with its display fields."""
        ...

    def toggle_entry(self, habit_id: str, toggle: EntryToggle, *, user_id: str) -> HabitEntry:
        """Create or flip the entry for (habit, date)."""
        ...

    def get_current_streak(self, habit_id: str, *, user_id: str, today: Optional[date] = None) -> int:
        """Calculate current streak for a habit."""
        ...

    def get_longest_streak(self, habit_id: str, *, user_id: str) -> int:
        """Calculate longest streak for a habit."""
        ...
