# accounts/context.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from accounts.roles import Role, role_of
from core.exceptions import Forbidden


@dataclass(frozen=True)
class ActorContext:
    """
    Who is performing a request.

    Built once at the API boundary (or in tests / management commands) and
    passed explicitly to every service call.
    """
    user: Any
    role: Role

    @classmethod
    def for_user(cls, user) -> "ActorContext":
        role = role_of(user)
        if role is None:
            raise Forbidden("The user has no back-office role.")
        return cls(user=user, role=role)

    @property
    def user_id(self) -> Optional[int]:
        return getattr(self.user, "pk", None)

    @property
    def is_boss(self) -> bool:
        return self.role == Role.BOSS

    @property
    def display_name(self) -> str:
        full = self.user.get_full_name() if hasattr(self.user, "get_full_name") else ""
        return full or getattr(self.user, "username", "") or str(self.user)

    def owns(self, owner_id: Optional[int]) -> bool:
        return owner_id is not None and owner_id == self.user_id
