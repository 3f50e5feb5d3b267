"""User repository protocol."""

from __future__ import annotations

from typing import Optional, Protocol

from ...models.user import User


class UserRepository(Protocol):
    def get(self, user_id: str) -> Optional[User]:
        """Retrieve a user by ID."""
        ...

    def get_by_email(self, email: str) -> Optional[User]:
        ...

    def create(self, email: str, *, full_name: Optional[str] = None) -> User:
        """Create a user with a fresh share code."""
        ...
