"""Per-user credentials handed to tool adapters."""

from __future__ import annotations

import threading
from typing import Protocol

from pydantic import BaseModel


class UserContext(BaseModel):
    """Authenticated advisor plus the OAuth tokens captured at sign-in."""

    user_id: str
    email: str | None = None
    google_access_token: str | None = None
    hubspot_access_token: str | None = None


class UserDirectory(Protocol):
    def get(self, user_id: str) -> UserContext | None: ...

    def save(self, user: UserContext) -> UserContext: ...


class InMemoryUserDirectory:
    def __init__(self, users: list[UserContext] | None = None) -> None:
        self._lock = threading.Lock()
        self._users: dict[str, UserContext] = {user.user_id: user for user in users or []}

    def get(self, user_id: str) -> UserContext | None:
        with self._lock:
            user = self._users.get(user_id)
        return user.model_copy() if user else None

    def save(self, user: UserContext) -> UserContext:
        with self._lock:
            self._users[user.user_id] = user.model_copy()
        return user

    def resolve(self, user_id: str) -> UserContext:
        """Return the stored user or a credential-less context for unknown ids."""
        return self.get(user_id) or UserContext(user_id=user_id)
