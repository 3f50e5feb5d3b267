"""Habit and entry routes."""

from __future__ import annotations

import logging

from flask import jsonify
from pydantic import ValidationError as PydanticValidationError

from ...errors import NotFoundError, from_pydantic
from ...extensions import habit_repository
from ...models import EntryToggle, HabitCreate, HabitEntryRead, HabitRead, HabitUpdate
from ..identity import cacheable, current_user_id, json_body
from . import bp

logger = logging.getLogger(__name__)


def _parse(model, payload):
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise from_pydantic(exc) from exc


def _habit_json(habit) -> dict:
    return HabitRead.model_validate(habit).model_dump(mode="json")


def _entry_json(entry) -> dict:
    return HabitEntryRead.model_validate(entry).model_dump(mode="json")


@bp.get("")
def list_habits():
    """Active habits of the caller, newest first."""

    habits = habit_repository().list_active(user_id=current_user_id())
    return cacheable([_habit_json(habit) for habit in habits])


@bp.post("")
def create_habit():
    data = _parse(HabitCreate, json_body())
    habit = habit_repository().create(data, user_id=current_user_id())
    logger.info("Habit created", extra={"habit_id": habit.id})
    return jsonify(_habit_json(habit)), 201


@bp.get("/entries")
def list_entries():
    """Every entry of the caller joined with its habit's display fields."""

    entries = habit_repository().list_entries(user_id=current_user_id())
    return cacheable([entry.model_dump(mode="json") for entry in entries])


@bp.get("/<habit_id>")
def get_habit(habit_id: str):
    habit = habit_repository().get_by_id(habit_id, user_id=current_user_id())
    if habit is None:
        raise NotFoundError("Habit not found")
    return cacheable(_habit_json(habit))


@bp.put("/<habit_id>")
def update_habit(habit_id: str):
    changes = _parse(HabitUpdate, json_body())
    habit = habit_repository().update(habit_id, changes, user_id=current_user_id())
    return jsonify(_habit_json(habit))


@bp.delete("/<habit_id>")
def delete_habit(habit_id: str):
    habit_repository().delete(habit_id, user_id=current_user_id())
    logger.info("Habit deleted", extra={"habit_id": habit_id})
    return jsonify({"message": "Habit deleted successfully"})


@bp.get("/<habit_id>/entries")
def list_habit_entries(habit_id: str):
    entries = habit_repository().list_entries_for_habit(habit_id, user_id=current_user_id())
    return cacheable([_entry_json(entry) for entry in entries])


@bp.post("/<habit_id>/entries")
def toggle_entry(habit_id: str):
    """Upsert the entry for (habit, date), flipping it unless ``completed`` is given."""

    toggle = _parse(EntryToggle, json_body())
    entry = habit_repository().toggle_entry(habit_id, toggle, user_id=current_user_id())
    return jsonify(_entry_json(entry))
