"""SQLModel table and wire-model exports."""

from .habit import (
    DashboardRead,
    EntryToggle,
    Habit,
    HabitCreate,
    HabitEntry,
    HabitEntryRead,
    HabitFrequency,
    HabitRead,
    HabitUpdate,
)
from .user import User

__all__ = [
    "DashboardRead",
    "EntryToggle",
    "Habit",
    "HabitCreate",
    "HabitEntry",
    "HabitEntryRead",
    "HabitFrequency",
    "HabitRead",
    "HabitUpdate",
    "User",
]
