"""Habit tracking data structures.

Table models (``Habit``, ``HabitEntry``) back the reference service; the
``*Read`` models are the wire shapes the client keeps in memory, and the
``HabitCreate`` / ``HabitUpdate`` / ``EntryToggle`` models validate writes on
both sides of the wire.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Optional
from uuid import uuid4

from pydantic import field_validator, model_validator
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .user import User


def new_id() -> str:
    """Opaque identifier for server-side rows."""

    return uuid4().hex


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class HabitFrequency(str, Enum):
    """Supported target frequencies."""

    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class HabitBase(SQLModel):
    name: str = Field(nullable=False, max_length=255)
    description: Optional[str] = Field(default=None)
    color: str = Field(default="blue", max_length=50)
    icon: str = Field(default="📝", max_length=10)
    target_frequency: HabitFrequency = Field(default=HabitFrequency.DAILY)
    target_count: Optional[int] = Field(default=None)
    is_active: bool = Field(default=True, nullable=False)


class Habit(HabitBase, table=True):
    """A user-defined recurring goal."""

    __tablename__: ClassVar[str] = "habit"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    user_id: str = Field(foreign_key="user.id", nullable=False, index=True)
    created_at: dt.datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: dt.datetime = Field(default_factory=utcnow, nullable=False)

    entries: list["HabitEntry"] = Relationship(
        back_populates="habit",
        sa_relationship=relationship(
            "HabitEntry", back_populates="habit", cascade="all, delete-orphan"
        ),
    )

    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="habits"))


class HabitCreate(HabitBase):
    """Validated payload for creating a habit (and for checking merged updates)."""

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Habit name is required")
        return value

    @model_validator(mode="after")
    def ensure_target_count(self) -> "HabitCreate":
        """A custom frequency needs a positive target count; others carry none."""

        if self.target_frequency is HabitFrequency.CUSTOM:
            if self.target_count is None or self.target_count < 1:
                raise ValueError("A custom frequency needs a positive target_count")
        else:
            self.target_count = None
        return self


class HabitUpdate(SQLModel):
    """Partial update; only the fields that were set are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    target_frequency: Optional[HabitFrequency] = None
    target_count: Optional[int] = None
    is_active: Optional[bool] = None


class HabitRead(HabitBase):
    id: str
    user_id: str
    created_at: dt.datetime
    updated_at: dt.datetime


class HabitEntryBase(SQLModel):
    date: dt.date = Field(nullable=False, index=True)
    completed: bool = Field(default=False, nullable=False)
    count: int = Field(default=1, nullable=False)
    notes: Optional[str] = Field(default=None)
    completed_at: Optional[dt.datetime] = Field(default=None)


class HabitEntry(HabitEntryBase, table=True):
    """Completion status of one habit on one calendar day."""

    __tablename__: ClassVar[str] = "habit_entry"
    __table_args__ = (UniqueConstraint("habit_id", "date", name="uq_habit_entry_day"),)

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    habit_id: str = Field(foreign_key="habit.id", nullable=False, index=True)
    user_id: str = Field(foreign_key="user.id", nullable=False, index=True)
    created_at: dt.datetime = Field(default_factory=utcnow, nullable=False)

    habit: "Habit" = Relationship(
        back_populates="entries",
        sa_relationship=relationship("Habit", back_populates="entries"),
    )


class HabitEntryRead(HabitEntryBase):
    id: str
    habit_id: str
    user_id: str
    created_at: dt.datetime
    habit_name: Optional[str] = None
    habit_color: Optional[str] = None
    habit_icon: Optional[str] = None


class EntryToggle(SQLModel):
    """Toggle request: flip the entry unless ``completed`` pins the target."""

    date: dt.date
    completed: Optional[bool] = None
    notes: Optional[str] = None


class DashboardRead(SQLModel):
    """Batched read: collections plus server-computed stats in one round trip."""

    habits: list[HabitRead] = Field(default_factory=list)
    entries: list[HabitEntryRead] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[dt.datetime] = None
