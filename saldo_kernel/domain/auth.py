"""Auth collaborator contract used for re-authentication on destructive actions."""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class PasswordVerifier(Protocol):
    """Re-verifies an actor's password.

    Session handling, hashing and role checks live in the auth collaborator;
    the kernel only asks for a yes/no at the point of a destructive call.
    """

    def verify_password(self, actor_id: UUID, password: str) -> bool: ...
