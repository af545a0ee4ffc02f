"""
Identity domain constants and records.

Why:
- Centralize allowed roles to avoid drift between the policy table, the store
  and the web layer.
- The Principal is an explicit value handed to every core operation; nothing
  reads the "current user" from ambient request state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ADMIN = "ADMIN"
TEACHER = "TEACHER"
STUDENT = "STUDENT"

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({ADMIN, TEACHER, STUDENT})


@dataclass
class User:
    id: int
    username: str
    email: str
    password_hash: str
    role: str
    active: bool = True
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to a request."""

    user_id: int
    email: str
    role: str
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_teacher(self) -> bool:
        return self.role == TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == STUDENT

    @property
    def actor(self) -> str:
        """Audit label stored in created_by/updated_by/deleted_by."""
        return self.email

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(user_id=user.id, email=user.email, role=user.role, active=user.active)


__all__ = ["ADMIN", "TEACHER", "STUDENT", "ALLOWED_ROLES", "User", "Principal"]
