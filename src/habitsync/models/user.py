"""User model owning habits and entries."""

from __future__ import annotations

import secrets
import string
from datetime import datetime
from typing import ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

from .habit import new_id, utcnow

SHARE_CODE_ALPHABET = string.ascii_uppercase + string.digits
SHARE_CODE_LENGTH = 6


def generate_share_code() -> str:
    """Return a short public token used to link two users as friends."""

    return "".join(secrets.choice(SHARE_CODE_ALPHABET) for _ in range(SHARE_CODE_LENGTH))


class User(SQLModel, table=True):
    """Account owning habits. Authentication happens upstream of the service."""

    __tablename__: ClassVar[str] = "user"

    id: str = Field(default_factory=new_id, primary_key=True, max_length=32)
    email: str = Field(nullable=False, unique=True, index=True, max_length=255)
    full_name: Optional[str] = Field(default=None, max_length=255)
    share_code: str = Field(
        default_factory=generate_share_code, nullable=False, unique=True, max_length=6
    )
    created_at: datetime = Field(default_factory=utcnow, nullable=False)

    habits = Relationship(
        back_populates="user",
        sa_relationship=relationship("Habit", back_populates="user", cascade="all, delete-orphan"),
    )
