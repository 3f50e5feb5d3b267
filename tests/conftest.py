"""Pytest configuration and shared fixtures for HabitSync tests.

This module provides database fixtures, test data factories, a Flask test
client for the reference service and an in-memory remote service plus a manual
clock for exercising the client core without a network.
"""

from __future__ import annotations

import asyncio
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pytest
from sqlmodel import Session, SQLModel, create_engine

# Import all models to ensure they're registered with SQLModel metadata
from habitsync.client.profiles import STANDARD
from habitsync.client.store import HabitStore
from habitsync.client.transport import FetchResult
from habitsync.errors import NotFoundError
from habitsync.models import (
    DashboardRead,
    EntryToggle,
    Habit,
    HabitCreate,
    HabitEntry,
    HabitEntryRead,
    HabitRead,
    HabitUpdate,
    User,
)

FIXED_NOW = datetime(2024, 1, 10, 9, 30, tzinfo=timezone.utc)

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create an isolated SQLite database file for each test.

    Yields:
        Engine: SQLModel engine connected to test database
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    engine = create_engine(f"sqlite:///{db_path}", echo=False)
    SQLModel.metadata.create_all(engine)

    yield engine

    engine.dispose()
    db_path.unlink(missing_ok=True)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a database session for a single test."""
    session = Session(db_engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Session factory matching what repositories expect (``with factory() as s``)."""

    def factory():
        return Session(db_engine, expire_on_commit=False)

    return factory


# =============================================================================
# Test Data Factories
# =============================================================================


@pytest.fixture
def user(db_session) -> User:
    """Create a default user for scoping data."""

    u = User(email="tester@example.com", full_name="Tester")
    db_session.add(u)
    db_session.commit()
    db_session.refresh(u)
    return u


@pytest.fixture
def habit_factory(db_session, user):
    """Factory for persisted habits owned by the default user."""

    def _create_habit(
        name: str = "Test Habit",
        *,
        created_at: Optional[datetime] = None,
        is_active: bool = True,
        owner: Optional[User] = None,
        **fields: Any,
    ) -> Habit:
        habit = Habit(
            name=name,
            user_id=(owner or user).id,
            is_active=is_active,
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        db_session.add(habit)
        db_session.commit()
        db_session.refresh(habit)
        return habit

    return _create_habit


@pytest.fixture
def entry_factory(db_session):
    """Factory for persisted entries of a habit."""

    def _create_entry(habit: Habit, day: date, *, completed: bool = True) -> HabitEntry:
        entry = HabitEntry(
            habit_id=habit.id,
            user_id=habit.user_id,
            date=day,
            completed=completed,
            completed_at=datetime.now(timezone.utc) if completed else None,
        )
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return _create_entry


# =============================================================================
# Flask Fixtures
# =============================================================================


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Reference service backed by a throwaway SQLite file."""

    from habitsync import create_app
    from habitsync.extensions import get_services

    monkeypatch.setenv("HABITSYNC_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("HABITSYNC_TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    flask_app = create_app("testing")
    yield flask_app
    get_services(flask_app).engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def api_user(app) -> User:
    from habitsync.extensions import get_services

    return get_services(app).users.create("api@example.com", full_name="API User")


@pytest.fixture
def auth_headers(api_user) -> dict[str, str]:
    return {"X-HabitSync-User": api_user.id}


# =============================================================================
# Client-side Fakes
# =============================================================================


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemoteService:
    """In-memory stand-in for the REST service.

    ``fail(name, exc)`` makes the next call of ``name`` raise, and
    ``hold(name)`` parks every call of ``name`` until ``release(name)``.
    Reads carry an ETag that changes on every write.
    """

    def __init__(self, user_id: str = "user-1") -> None:
        self.user_id = user_id
        self.habits: dict[str, HabitRead] = {}
        self.entries: dict[tuple[str, date], HabitEntryRead] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.version = 0
        self._ids = 0
        self._failures: dict[str, list[tuple[Optional[int], Exception]]] = {}
        self._gates: dict[str, asyncio.Event] = {}

    # Test controls
    def fail(self, name: str, exc: Exception, *, call: Optional[int] = None) -> None:
        """Raise ``exc`` from the next call of ``name``, or from its ``call``-th call (1-based)."""
        self._failures.setdefault(name, []).append((call, exc))

    def hold(self, name: str) -> None:
        self._gates[name] = asyncio.Event()

    def release(self, name: str) -> None:
        gate = self._gates.pop(name, None)
        if gate is not None:
            gate.set()

    def calls_to(self, name: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == name]

    @property
    def etag(self) -> str:
        return f'"v{self.version}"'

    def _next_id(self, prefix: str) -> str:
        self._ids += 1
        return f"{prefix}{self._ids}"

    def seed_habit(self, name: str = "Read", *, habit_id: Optional[str] = None, **fields: Any) -> HabitRead:
        habit = HabitRead(
            id=habit_id or self._next_id("h"),
            user_id=self.user_id,
            name=name,
            created_at=fields.pop("created_at", FIXED_NOW),
            updated_at=FIXED_NOW,
            **fields,
        )
        self.habits[habit.id] = habit
        self.version += 1
        return habit

    def seed_entry(self, habit_id: str, day: date, *, completed: bool = True) -> HabitEntryRead:
        entry = self._joined(
            HabitEntryRead(
                id=self._next_id("e"),
                habit_id=habit_id,
                user_id=self.user_id,
                date=day,
                completed=completed,
                completed_at=FIXED_NOW if completed else None,
                created_at=FIXED_NOW,
            )
        )
        self.entries[(habit_id, day)] = entry
        self.version += 1
        return entry

    def _joined(self, entry: HabitEntryRead) -> HabitEntryRead:
        habit = self.habits[entry.habit_id]
        return entry.model_copy(
            update={"habit_name": habit.name, "habit_color": habit.color, "habit_icon": habit.icon}
        )

    async def _enter(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        number = len(self.calls_to(name))
        gate = self._gates.get(name)
        if gate is not None:
            await gate.wait()
        failures = self._failures.get(name, [])
        for index, (call, exc) in enumerate(failures):
            if call is None or call == number:
                del failures[index]
                raise exc

    def _read(self, payload: Any, etag: Optional[str]) -> FetchResult:
        if etag is not None and etag == self.etag:
            return FetchResult(payload=None, etag=etag, not_modified=True)
        return FetchResult(payload=payload, etag=self.etag)

    # RemoteDataService
    # Reads answer with the data as it was when the request arrived, even when held.
    async def list_habits(self, *, etag: Optional[str] = None) -> FetchResult:
        result = self._read([h for h in self.habits.values() if h.is_active], etag)
        await self._enter("list_habits", etag)
        return result

    async def list_entries(self, *, etag: Optional[str] = None) -> FetchResult:
        result = self._read([self._joined(e) for e in self.entries.values()], etag)
        await self._enter("list_entries", etag)
        return result

    async def list_habit_entries(self, habit_id: str, *, etag: Optional[str] = None) -> FetchResult:
        known = habit_id in self.habits
        result = self._read(
            [self._joined(e) for e in self.entries.values() if e.habit_id == habit_id], etag
        )
        await self._enter("list_habit_entries", habit_id, etag)
        if not known:
            raise NotFoundError("Habit not found")
        return result

    async def dashboard(self, *, etag: Optional[str] = None) -> FetchResult:
        payload = DashboardRead(
            habits=[h for h in self.habits.values() if h.is_active],
            entries=[self._joined(e) for e in self.entries.values()],
            stats={"total_habits": len(self.habits)},
            timestamp=FIXED_NOW,
        )
        result = self._read(payload, etag)
        await self._enter("dashboard", etag)
        return result

    async def create_habit(self, payload: HabitCreate) -> HabitRead:
        await self._enter("create_habit", payload)
        habit = HabitRead(
            id=self._next_id("h"),
            user_id=self.user_id,
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
            **payload.model_dump(),
        )
        self.habits[habit.id] = habit
        self.version += 1
        return habit

    async def update_habit(self, habit_id: str, payload: HabitUpdate) -> HabitRead:
        await self._enter("update_habit", habit_id, payload)
        if habit_id not in self.habits:
            raise NotFoundError("Habit not found")
        habit = HabitRead.model_validate(
            {**self.habits[habit_id].model_dump(), **payload.model_dump(exclude_unset=True)}
        )
        self.habits[habit_id] = habit
        self.version += 1
        return habit

    async def delete_habit(self, habit_id: str) -> None:
        await self._enter("delete_habit", habit_id)
        if self.habits.pop(habit_id, None) is None:
            raise NotFoundError("Habit not found")
        for key in [key for key in self.entries if key[0] == habit_id]:
            del self.entries[key]
        self.version += 1

    async def toggle_entry(self, habit_id: str, payload: EntryToggle) -> HabitEntryRead:
        await self._enter("toggle_entry", habit_id, payload)
        if habit_id not in self.habits:
            raise NotFoundError("Habit not found")
        existing = self.entries.get((habit_id, payload.date))
        if existing is None:
            completed = True if payload.completed is None else payload.completed
            entry = HabitEntryRead(
                id=self._next_id("e"),
                habit_id=habit_id,
                user_id=self.user_id,
                date=payload.date,
                completed=completed,
                completed_at=FIXED_NOW if completed else None,
                created_at=FIXED_NOW,
            )
        else:
            completed = (not existing.completed) if payload.completed is None else payload.completed
            entry = existing.model_copy(
                update={"completed": completed, "completed_at": FIXED_NOW if completed else None}
            )
        entry = self._joined(entry)
        self.entries[(habit_id, payload.date)] = entry
        self.version += 1
        return entry


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def remote() -> FakeRemoteService:
    return FakeRemoteService()


@pytest.fixture
def store(remote, clock) -> HabitStore:
    """Store on the standard profile (5 min ttl, 30 s cooldown) with a manual clock."""

    return HabitStore(
        remote, profile=STANDARD, user_id=remote.user_id, clock=clock, now=lambda: FIXED_NOW
    )
