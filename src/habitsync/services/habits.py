"""Habit service helpers for streaks."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Protocol


class _DatedEntry(Protocol):
    habit_id: str
    date: date
    completed: bool


def compute_streaks(entries: Iterable[_DatedEntry], *, today: date | None = None) -> tuple[int, int]:
    """Return (current_streak, longest_streak) from a collection of entries."""

    today = today or date.today()
    days = {e.date for e in entries if e.completed}

    # Current streak: walk backwards from today until a gap.
    current = 0
    cursor = today
    while cursor in days:
        current += 1
        cursor -= timedelta(days=1)

    # Longest streak: sweep through sorted days, counting consecutive runs.
    longest = 0
    run = 0
    last_day: date | None = None
    for d in sorted(days):
        if last_day is not None and d == last_day + timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        last_day = d

    return current, longest


def group_by_habit(entries: Iterable[_DatedEntry]) -> dict[str, list[_DatedEntry]]:
    grouped: dict[str, list[_DatedEntry]] = defaultdict(list)
    for entry in entries:
        grouped[entry.habit_id].append(entry)
    return dict(grouped)


__all__ = ["compute_streaks", "group_by_habit"]
