"""Aggregate completion statistics over a trailing window of days."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Protocol

from ..errors import ValidationError
from .habits import compute_streaks, group_by_habit

WINDOW_DAYS = {"today": 1, "week": 7, "month": 30}


class _HabitLike(Protocol):
    id: str
    created_at: datetime


class _EntryLike(Protocol):
    habit_id: str
    date: date
    completed: bool


@dataclass(frozen=True)
class DerivedStats:
    total_habits: int
    completed_in_period: int
    completion_rate: int
    time_filter: str
    possible: int = 0
    achieved: int = 0
    streak_days: int = 0
    longest_streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def window_dates(time_filter: str, today: date) -> list[date]:
    """Dates covered by ``time_filter``, oldest first, ending on ``today``."""

    try:
        days = WINDOW_DAYS[time_filter]
    except KeyError as exc:
        raise ValidationError(
            f"Unknown time filter {time_filter!r}; expected today, week or month"
        ) from exc
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def _created_on(habit: _HabitLike) -> date:
    created = habit.created_at
    return created.date() if isinstance(created, datetime) else created


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stats(
    habits: Iterable[_HabitLike],
    entries: Iterable[_EntryLike],
    time_filter: str = "today",
    *,
    today: date | None = None,
) -> DerivedStats:
    """Count habits completed in the window and the completion rate.

    For ``today`` a habit counts as completed when its entry for today is
    completed. For ``week`` and ``month`` it counts when any completed entry
    falls inside the window on or after the habit's creation date. The rate is
    taken over every (habit, day) pair in the window from the creation date
    on, so habits created mid-window are not penalized for earlier days.
    """

    today = today or date.today()
    dates = window_dates(time_filter, today)
    habits = list(habits)
    entries = list(entries)

    done: dict[tuple[str, date], bool] = {}
    for entry in entries:
        done[(entry.habit_id, entry.date)] = bool(entry.completed)

    completed_in_period = 0
    possible = 0
    achieved = 0
    for habit in habits:
        created = _created_on(habit)
        eligible = [day for day in dates if day >= created]
        possible += len(eligible)
        hits = sum(1 for day in eligible if done.get((habit.id, day), False))
        achieved += hits
        if time_filter == "today":
            completed_in_period += int(done.get((habit.id, today), False))
        elif hits:
            completed_in_period += 1

    rate = round_half_up(achieved / possible * 100) if possible else 0

    current_best = 0
    longest_best = 0
    known = {habit.id for habit in habits}
    for habit_id, habit_entries in group_by_habit(entries).items():
        if habit_id not in known:
            continue
        current, longest = compute_streaks(habit_entries, today=today)
        current_best = max(current_best, current)
        longest_best = max(longest_best, longest)

    return DerivedStats(
        total_habits=len(habits),
        completed_in_period=completed_in_period,
        completion_rate=rate,
        time_filter=time_filter,
        possible=possible,
        achieved=achieved,
        streak_days=current_best,
        longest_streak=longest_best,
    )


__all__ = ["DerivedStats", "WINDOW_DAYS", "compute_stats", "round_half_up", "window_dates"]
