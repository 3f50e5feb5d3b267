"""SQLModel implementation of User repository."""

from __future__ import annotations

from typing import Callable, Optional

from sqlmodel import Session, select

from ...errors import ValidationError
from ...models.user import User


class SQLModelUserRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def get(self, user_id: str) -> Optional[User]:
        with self.session_factory() as session:
            obj = session.get(User, user_id)
            if obj:
                session.expunge(obj)
            return obj

    def get_by_email(self, email: str) -> Optional[User]:
        with self.session_factory() as session:
            obj = session.exec(select(User).where(User.email == email.strip().lower())).first()
            if obj:
                session.expunge(obj)
            return obj

    def create(self, email: str, *, full_name: Optional[str] = None) -> User:
        """Create a user with a fresh share code."""
        email = email.strip().lower()
        if not email:
            raise ValidationError("Email is required")
        with self.session_factory() as session:
            if session.exec(select(User).where(User.email == email)).first():
                raise ValidationError("User already exists")
            user = User(email=email, full_name=full_name)
            session.add(user)
            session.commit()
            session.refresh(user)
            session.expunge(user)
            return user
