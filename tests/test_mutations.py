"""Optimistic mutations: immediate local effect, reconciliation and rollback."""

from __future__ import annotations

import asyncio
from datetime import date

import pytest

from habitsync.client.mutations import EntityState, is_temp_id
from habitsync.client.state import entry_key, habit_key
from habitsync.errors import NotFoundError, ServerError, TransportError, ValidationError

DAY = date(2024, 1, 10)
NEXT_DAY = date(2024, 1, 11)


async def _let_tasks_start():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def seeded(remote):
    """Three server-side habits; the first has entries on two days."""

    read = remote.seed_habit("Read")
    run = remote.seed_habit("Run", color="green")
    write = remote.seed_habit("Write")
    remote.seed_entry(read.id, DAY)
    remote.seed_entry(run.id, DAY)
    remote.seed_entry(read.id, NEXT_DAY)
    return read, run, write


class TestToggle:
    @pytest.mark.asyncio
    async def test_toggle_twice_keeps_entry_id(self, store, remote, seeded):
        """Second toggle flips the same entry instead of creating another one."""
        _, _, write = seeded
        await store.refresh()

        task = store.toggle_entry(write.id, DAY)
        optimistic = store.state.get_entry(write.id, DAY)
        assert optimistic.completed and is_temp_id(optimistic.id)
        assert optimistic.habit_name == "Write"

        first = await task
        assert first.completed
        assert store.state.get_entry(write.id, DAY).id == first.id

        second = await store.toggle_entry(write.id, DAY)

        assert second.id == first.id
        assert second.completed is False
        assert second.completed_at is None
        assert store.state.get_entry(write.id, DAY) == second
        assert len([e for e in remote.entries.values() if e.habit_id == write.id]) == 1

    @pytest.mark.asyncio
    async def test_rapid_toggles_run_in_order(self, store, remote, seeded):
        """Two toggles issued back to back reach the server one at a time."""
        _, _, write = seeded
        await store.refresh()

        first = store.toggle_entry(write.id, DAY)
        second = store.toggle_entry(write.id, DAY)
        assert store.is_completed(write.id, DAY) is False
        assert store.mutations.state_of(entry_key(write.id, DAY)) is EntityState.PENDING_UPDATE

        await asyncio.gather(first, second)

        sent = [call[2].completed for call in remote.calls_to("toggle_entry")]
        assert sent == [True, False]
        entry = store.state.get_entry(write.id, DAY)
        assert entry.completed is False
        assert not is_temp_id(entry.id)
        assert store.mutations.state_of(entry_key(write.id, DAY)) is EntityState.CLEAN
        assert not store.mutations.pending

    @pytest.mark.asyncio
    async def test_failed_toggle_restores_entry(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        before = store.entries
        remote.fail("toggle_entry", TransportError("offline"))

        task = store.toggle_entry(read.id, DAY)
        assert store.is_completed(read.id, DAY) is False

        with pytest.raises(TransportError):
            await task
        assert store.entries == before
        assert store.is_completed(read.id, DAY) is True

    @pytest.mark.asyncio
    async def test_failure_on_one_day_leaves_other_days_alone(self, store, remote, seeded):
        _, _, write = seeded
        await store.refresh()
        remote.fail("toggle_entry", ServerError("boom"), call=1)

        results = await asyncio.gather(
            store.toggle_entry(write.id, DAY),
            store.toggle_entry(write.id, NEXT_DAY),
            return_exceptions=True,
        )

        assert isinstance(results[0], ServerError)
        assert store.state.get_entry(write.id, DAY) is None
        assert store.is_completed(write.id, NEXT_DAY)

    @pytest.mark.asyncio
    async def test_toggle_accepts_iso_dates_and_notes(self, store, remote, seeded):
        _, _, write = seeded
        await store.refresh()

        entry = await store.toggle_entry(write.id, "2024-01-10", notes="felt great")

        assert entry.date == DAY
        assert remote.calls_to("toggle_entry")[0][2].notes == "felt great"

    @pytest.mark.asyncio
    async def test_invalid_toggles_raise_immediately(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()

        with pytest.raises(ValidationError):
            store.toggle_entry(read.id, "not-a-date")
        with pytest.raises(NotFoundError):
            store.toggle_entry("missing", DAY)
        assert remote.calls_to("toggle_entry") == []

    @pytest.mark.asyncio
    async def test_successful_toggle_invalidates_entry_reads(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        assert len(remote.calls_to("list_entries")) == 1

        await store.toggle_entry(read.id, DAY)
        await store.load_entries()

        assert len(remote.calls_to("list_entries")) == 2


class TestUpdate:
    @pytest.mark.asyncio
    async def test_rename_rolls_back_on_failure(self, store, remote, seeded):
        """Read -> Reading is visible at once and undone when the server refuses."""
        read, _, _ = seeded
        await store.refresh()
        before = store.habits
        remote.fail("update_habit", TransportError("offline"))

        task = store.update_habit(read.id, {"name": "Reading"})
        assert store.state.get_habit(read.id).name == "Reading"
        assert store.mutations.state_of(habit_key(read.id)) is EntityState.PENDING_UPDATE

        with pytest.raises(TransportError):
            await task

        assert store.habits == before
        assert [h.id for h in store.habits] == [h.id for h in seeded]
        assert isinstance(store.last_error, TransportError)
        assert store.mutations.state_of(habit_key(read.id)) is EntityState.CLEAN

    @pytest.mark.asyncio
    async def test_successful_update_adopts_server_record(self, store, remote, seeded):
        _, run, _ = seeded
        await store.refresh()

        updated = await store.update_habit(run.id, {"color": "red"})

        assert store.state.get_habit(run.id) == updated
        assert updated.color == "red"
        assert [h.id for h in store.habits] == [h.id for h in seeded]
        sent = remote.calls_to("update_habit")[0][2]
        assert sent.model_dump(exclude_unset=True) == {"color": "red"}

    @pytest.mark.asyncio
    async def test_rollback_restores_last_confirmed_state(self, store, remote, seeded):
        """A failed update queued behind a successful one falls back to the server's answer."""
        read, _, _ = seeded
        await store.refresh()
        remote.fail("update_habit", ServerError("boom"), call=2)
        remote.hold("update_habit")

        rename = store.update_habit(read.id, {"name": "Reading"})
        recolor = store.update_habit(read.id, {"color": "red"})
        habit = store.state.get_habit(read.id)
        assert (habit.name, habit.color) == ("Reading", "red")

        remote.release("update_habit")
        await rename
        with pytest.raises(ServerError):
            await recolor

        habit = store.state.get_habit(read.id)
        assert (habit.name, habit.color) == ("Reading", "blue")

    @pytest.mark.asyncio
    async def test_invalid_updates_raise_immediately(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        before = store.habits

        with pytest.raises(ValidationError):
            store.update_habit(read.id, {"name": "   "})
        with pytest.raises(ValidationError):
            store.update_habit(read.id, {"target_frequency": "custom"})
        with pytest.raises(ValidationError):
            store.update_habit(read.id, {})
        with pytest.raises(NotFoundError):
            store.update_habit("missing", {"name": "x"})

        assert store.habits == before
        assert remote.calls_to("update_habit") == []

    @pytest.mark.asyncio
    async def test_switching_to_custom_sends_target_count(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()

        updated = await store.update_habit(read.id, {"target_frequency": "custom", "target_count": 3})

        assert updated.target_count == 3
        sent = remote.calls_to("update_habit")[0][2]
        assert sent.target_count == 3


class TestCreate:
    @pytest.mark.asyncio
    async def test_temporary_record_is_replaced_in_place(self, store, remote, seeded):
        await store.refresh()

        task = store.create_habit({"name": "  Drink water ", "color": "teal"})
        temp = store.habits[-1]
        assert is_temp_id(temp.id)
        assert temp.name == "Drink water"
        assert store.mutations.state_of(habit_key(temp.id)) is EntityState.PENDING_CREATE

        created = await task

        assert store.habits[-1] == created
        assert not is_temp_id(created.id)
        assert len(store.habits) == 4
        assert store.mutations.resolve_id(temp.id) == created.id

    @pytest.mark.asyncio
    async def test_failed_create_removes_temporary_record(self, store, remote, seeded):
        await store.refresh()
        before = store.habits
        remote.fail("create_habit", ServerError("boom"))

        task = store.create_habit({"name": "Stretch"})
        assert len(store.habits) == 4

        with pytest.raises(ServerError):
            await task
        assert store.habits == before

    @pytest.mark.asyncio
    async def test_invalid_create_is_rejected_before_sending(self, store, remote):
        with pytest.raises(ValidationError):
            store.create_habit({"name": "   "})
        with pytest.raises(ValidationError, match="target_count"):
            store.create_habit({"name": "Gym", "target_frequency": "custom"})

        assert store.habits == []
        assert remote.calls_to("create_habit") == []

    @pytest.mark.asyncio
    async def test_custom_frequency_with_count_is_accepted(self, store):
        created = await store.create_habit(
            {"name": "Gym", "target_frequency": "custom", "target_count": 3}
        )

        assert created.target_count == 3

    @pytest.mark.asyncio
    async def test_cannot_toggle_until_create_confirmed(self, store, remote):
        remote.hold("create_habit")
        task = store.create_habit({"name": "Floss"})
        temp_id = store.habits[0].id

        with pytest.raises(ValidationError):
            store.toggle_entry(temp_id, DAY)

        remote.release("create_habit")
        created = await task
        entry = await store.toggle_entry(temp_id, DAY)

        assert entry.habit_id == created.id
        assert remote.calls_to("toggle_entry")[0][1] == created.id

    @pytest.mark.asyncio
    async def test_delete_while_create_pending(self, store, remote):
        remote.hold("create_habit")
        create = store.create_habit({"name": "Floss"})
        temp_id = store.habits[0].id

        delete = store.delete_habit(temp_id)
        assert store.habits == []
        assert store.mutations.state_of(habit_key(temp_id)) is EntityState.PENDING_DELETE

        remote.release("create_habit")
        created = await create
        await delete

        assert store.habits == []
        assert remote.calls_to("delete_habit") == [("delete_habit", created.id)]
        assert remote.habits == {}


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_removes_habit_and_its_entries(self, store, remote, seeded):
        read, run, _ = seeded
        await store.refresh()

        task = store.delete_habit(read.id)
        assert read.id not in [h.id for h in store.habits]
        assert {e.habit_id for e in store.entries} == {run.id}

        await task
        await store.refresh()

        assert read.id not in [h.id for h in store.habits]
        assert {e.habit_id for e in store.entries} == {run.id}

    @pytest.mark.asyncio
    async def test_failed_delete_restores_habit_and_entries_in_place(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        habits_before = store.habits
        entries_before = store.entries
        remote.fail("delete_habit", ServerError("nope"))

        task = store.delete_habit(read.id)
        with pytest.raises(ServerError):
            await task

        assert store.habits == habits_before
        assert store.entries == entries_before

    @pytest.mark.asyncio
    async def test_deleted_habit_is_not_resurrected(self, store, remote, clock, seeded):
        """A read that started before the delete landed must not bring the habit back."""
        read, _, _ = seeded
        await store.refresh()
        clock.advance(301)
        remote.hold("list_habits")

        load = asyncio.create_task(store.load_habits())
        await _let_tasks_start()
        await store.delete_habit(read.id)
        remote.release("list_habits")
        await load

        assert read.id not in [h.id for h in store.habits]
        with pytest.raises(NotFoundError):
            store.update_habit(read.id, {"name": "again"})
        with pytest.raises(NotFoundError):
            store.toggle_entry(read.id, DAY)

    @pytest.mark.asyncio
    async def test_failed_delete_after_failed_toggle_restores_original_entry(
        self, store, remote, seeded
    ):
        read, _, _ = seeded
        await store.refresh()
        entries_before = store.entries
        remote.hold("toggle_entry")
        remote.hold("delete_habit")
        remote.fail("toggle_entry", TransportError("offline"))
        remote.fail("delete_habit", ServerError("nope"))

        toggle = store.toggle_entry(read.id, DAY)
        delete = store.delete_habit(read.id)
        await _let_tasks_start()

        remote.release("toggle_entry")
        with pytest.raises(TransportError):
            await toggle
        remote.release("delete_habit")
        with pytest.raises(ServerError):
            await delete

        assert store.entries == entries_before
        assert store.is_completed(read.id, DAY) is True

    @pytest.mark.asyncio
    async def test_failed_delete_after_failed_new_toggle_leaves_no_entry(
        self, store, remote, seeded
    ):
        _, _, write = seeded
        await store.refresh()
        entries_before = store.entries
        remote.hold("toggle_entry")
        remote.hold("delete_habit")
        remote.fail("toggle_entry", TransportError("offline"))
        remote.fail("delete_habit", ServerError("nope"))

        toggle = store.toggle_entry(write.id, DAY)
        delete = store.delete_habit(write.id)
        await _let_tasks_start()

        remote.release("toggle_entry")
        with pytest.raises(TransportError):
            await toggle
        remote.release("delete_habit")
        with pytest.raises(ServerError):
            await delete

        assert write.id in [h.id for h in store.habits]
        assert store.state.get_entry(write.id, DAY) is None
        assert store.entries == entries_before

    @pytest.mark.asyncio
    async def test_failed_delete_restores_confirmed_toggle(self, store, remote, seeded):
        _, _, write = seeded
        await store.refresh()
        remote.hold("toggle_entry")
        remote.hold("delete_habit")
        remote.fail("delete_habit", ServerError("nope"))

        toggle = store.toggle_entry(write.id, DAY)
        delete = store.delete_habit(write.id)
        await _let_tasks_start()

        remote.release("toggle_entry")
        confirmed = await toggle
        remote.release("delete_habit")
        with pytest.raises(ServerError):
            await delete

        restored = store.state.get_entry(write.id, DAY)
        assert restored.id == confirmed.id
        assert not is_temp_id(restored.id)
        assert restored.completed is True

    @pytest.mark.asyncio
    async def test_nothing_may_follow_a_pending_delete(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        remote.hold("delete_habit")

        task = store.delete_habit(read.id)
        with pytest.raises(NotFoundError):
            store.delete_habit(read.id)

        remote.release("delete_habit")
        await task


class TestErrorReporting:
    @pytest.mark.asyncio
    async def test_listeners_receive_failures_until_unsubscribed(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        seen = []
        unsubscribe = store.mutations.add_error_listener(seen.append)

        remote.fail("update_habit", ServerError("first"))
        with pytest.raises(ServerError):
            await store.update_habit(read.id, {"name": "x"})
        unsubscribe()
        remote.fail("update_habit", ServerError("second"))
        with pytest.raises(ServerError):
            await store.update_habit(read.id, {"name": "y"})

        assert [str(exc) for exc in seen] == ["first"]
        assert str(store.mutations.last_error) == "second"

    @pytest.mark.asyncio
    async def test_broken_listener_does_not_stop_rollback(self, store, remote, seeded):
        read, _, _ = seeded
        await store.refresh()
        before = store.habits

        def explode(exc):
            raise RuntimeError("listener bug")

        store.mutations.add_error_listener(explode)
        remote.fail("update_habit", ServerError("boom"))

        with pytest.raises(ServerError):
            await store.update_habit(read.id, {"name": "x"})
        assert store.habits == before


@pytest.mark.asyncio
async def test_sign_out_abandons_pending_mutations(store, remote, seeded):
    read, _, _ = seeded
    await store.refresh()
    remote.hold("update_habit")

    task = store.update_habit(read.id, {"name": "Reading"})
    await _let_tasks_start()
    store.sign_out()

    with pytest.raises(asyncio.CancelledError):
        await task
    remote.release("update_habit")

    assert store.habits == []
    assert not store.mutations.pending
