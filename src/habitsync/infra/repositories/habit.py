"""SQLModel implementation of Habit repository."""

from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Session, col, select

from ...errors import NotFoundError, from_pydantic
from ...models.habit import (
    EntryToggle,
    Habit,
    HabitBase,
    HabitCreate,
    HabitEntry,
    HabitEntryRead,
    HabitUpdate,
    utcnow,
)
from ...services.habits import compute_streaks

_HABIT_FIELDS = set(HabitBase.model_fields)


class SQLModelHabitRepository:
    """SQLModel-based habit repository implementation."""

    def __init__(self, session_factory: Callable[[], Session]):
        """Initialize with a session factory."""
        self.session_factory = session_factory

    @staticmethod
    def _owned(session: Session, habit_id: str, user_id: str) -> Habit:
        habit = session.exec(
            select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id)
        ).first()
        if habit is None:
            raise NotFoundError("Habit not found")
        return habit

    def get_by_id(self, habit_id: str, *, user_id: str) -> Optional[Habit]:
        """Retrieve a habit by ID."""
        with self.session_factory() as session:
            obj = session.exec(
                select(Habit).where(Habit.id == habit_id, Habit.user_id == user_id)
            ).first()
            if obj:
                session.expunge(obj)
            return obj

    def list_active(self, *, user_id: str) -> list[Habit]:
        """List only active habits, newest first."""
        with self.session_factory() as session:
            statement = (
                select(Habit)
                .where(Habit.user_id == user_id)
                .where(Habit.is_active == True)  # noqa: E712
                .order_by(col(Habit.created_at).desc())
            )
            rows = list(session.exec(statement).all())
            session.expunge_all()
            return rows

    def create(self, data: HabitCreate, *, user_id: str) -> Habit:
        """Create a new habit."""
        with self.session_factory() as session:
            habit = Habit(**data.model_dump(), user_id=user_id)
            session.add(habit)
            session.commit()
            session.refresh(habit)
            session.expunge(habit)
            return habit

    def update(self, habit_id: str, changes: HabitUpdate, *, user_id: str) -> Habit:
        """Apply a partial update after re-validating the merged habit."""
        with self.session_factory() as session:
            habit = self._owned(session, habit_id, user_id)
            merged = {
                **habit.model_dump(include=_HABIT_FIELDS),
                **changes.model_dump(exclude_unset=True),
            }
            try:
                validated = HabitCreate.model_validate(merged)
            except PydanticValidationError as exc:
                raise from_pydantic(exc) from exc
            for name, value in validated.model_dump().items():
                setattr(habit, name, value)
            habit.updated_at = utcnow()
            session.add(habit)
            session.commit()
            session.refresh(habit)
            session.expunge(habit)
            return habit

    def delete(self, habit_id: str, *, user_id: str) -> None:
        """Delete a habit; its entries go with it."""
        with self.session_factory() as session:
            habit = self._owned(session, habit_id, user_id)
            session.delete(habit)
            session.commit()

    # Habit entry operations
    def list_entries(self, *, user_id: str) -> list[HabitEntryRead]:
        """All entries of the user joined with habit display fields."""
        with self.session_factory() as session:
            statement = (
                select(HabitEntry, Habit)
                .join(Habit, col(HabitEntry.habit_id) == col(Habit.id))
                .where(HabitEntry.user_id == user_id)
                .order_by(col(HabitEntry.date).desc(), col(HabitEntry.created_at).desc())
            )
            return [
                HabitEntryRead.model_validate(
                    entry,
                    update={
                        "habit_name": habit.name,
                        "habit_color": habit.color,
                        "habit_icon": habit.icon,
                    },
                )
                for entry, habit in session.exec(statement).all()
            ]

    def list_entries_for_habit(self, habit_id: str, *, user_id: str) -> list[HabitEntryRead]:
        """Entries for one habit, newest first, carrying its display fields."""
        with self.session_factory() as session:
            habit = self._owned(session, habit_id, user_id)
            statement = (
                select(HabitEntry)
                .where(HabitEntry.user_id == user_id)
                .where(HabitEntry.habit_id == habit_id)
                .order_by(col(HabitEntry.date).desc())
            )
            display = {
                "habit_name": habit.name,
                "habit_color": habit.color,
                "habit_icon": habit.icon,
            }
            return [
                HabitEntryRead.model_validate(entry, update=display)
                for entry in session.exec(statement).all()
            ]

    def toggle_entry(self, habit_id: str, toggle: EntryToggle, *, user_id: str) -> HabitEntry:
        """Create or flip the entry for (habit, date).

        Without an explicit ``completed`` the stored flag is inverted; a new
        entry starts completed.
        """
        with self.session_factory() as session:
            self._owned(session, habit_id, user_id)
            entry = session.exec(
                select(HabitEntry)
                .where(HabitEntry.habit_id == habit_id)
                .where(HabitEntry.date == toggle.date)
            ).first()

            if entry is None:
                target = True if toggle.completed is None else toggle.completed
                entry = HabitEntry(
                    habit_id=habit_id,
                    user_id=user_id,
                    date=toggle.date,
                    completed=target,
                    completed_at=utcnow() if target else None,
                    notes=toggle.notes,
                )
            else:
                target = (not entry.completed) if toggle.completed is None else toggle.completed
                if target != entry.completed:
                    entry.completed_at = utcnow() if target else None
                entry.completed = target
                if toggle.notes is not None:
                    entry.notes = toggle.notes

            session.add(entry)
            session.commit()
            session.refresh(entry)
            session.expunge(entry)
            return entry

    def _completed_entries(self, habit_id: str, user_id: str) -> list[HabitEntry]:
        with self.session_factory() as session:
            return list(
                session.exec(
                    select(HabitEntry)
                    .where(HabitEntry.user_id == user_id)
                    .where(HabitEntry.habit_id == habit_id)
                    .where(HabitEntry.completed == True)  # noqa: E712
                ).all()
            )

    def get_current_streak(
        self, habit_id: str, *, user_id: str, today: Optional[date] = None
    ) -> int:
        """Calculate current streak for a habit."""
        current, _ = compute_streaks(self._completed_entries(habit_id, user_id), today=today)
        return current

    def get_longest_streak(self, habit_id: str, *, user_id: str) -> int:
        """Calculate longest streak for a habit."""
        _, longest = compute_streaks(self._completed_entries(habit_id, user_id))
        return longest
