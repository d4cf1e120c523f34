from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from .models import User


class AuthProvider(ABC):
    """Resolves the user on whose behalf a request runs."""

    @abstractmethod
    def get_current_user(self) -> Optional[User]:
        ...


class StaticAuthProvider(AuthProvider):
    """Always returns the same user, or nobody. Used by the CLI and tests."""

    def __init__(self, user: Optional[User] = None) -> None:
        self._user = user

    @classmethod
    def for_user_id(cls, user_id: str, email: Optional[str] = None) -> "StaticAuthProvider":
        return cls(User(id=user_id, email=email))

    def get_current_user(self) -> Optional[User]:
        return self._user
