"""
Account use cases: register, login, principal resolution, password change.

Why:
    Authentication rules stay framework-free so the web adapter only parses
    headers and bodies. Every failure during login maps to the same generic
    message to avoid account enumeration.

Behavior:
    - Tokens carry the account email as subject, nothing else.
    - `resolve_principal` re-loads the account on every call; a deactivated
      account fails even with a structurally valid token.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Dict, Optional, Protocol

from backend.academics.errors import (
    BusinessRuleViolation,
    UnauthenticatedError,
    ValidationFailure,
)

from .domain import ADMIN, ALLOWED_ROLES, STUDENT, Principal, User
from .passwords import hash_password, verify_password
from .policy import Action, authorize
from .tokens import TokenService, TokenVerificationError

logger = logging.getLogger("studify.identity_access")

INVALID_CREDENTIALS = "Invalid email or password"
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]{3,50}$")


class AccountsRepoProtocol(Protocol):
    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def find_user_by_email(self, email: str) -> Optional[User]:
        ...

    def count_active_admins(self) -> int:
        ...

    def username_exists(self, username: str) -> bool:
        ...

    def create_user(self, *, username: str, email: str, password_hash: str, role: str, actor: Optional[str] = None) -> User:
        ...

    def update_user_password(self, user_id: int, password_hash: str, *, actor: Optional[str] = None) -> None:
        ...

    def get_student_by_user(self, user_id: int, *, include_deleted: bool = False) -> Any:
        ...

    def get_teacher_by_user(self, user_id: int, *, include_deleted: bool = False) -> Any:
        ...


@dataclass
class LoginResult:
    token: str
    expires_in: int
    user: User
    token_type: str = "Bearer"


def generate_username(repo: AccountsRepoProtocol, first_name: str, last_name: str) -> str:
    """`first.last` lowercased without whitespace; numeric suffix on collision."""
    base = re.sub(r"\s+", "", f"{first_name}.{last_name}".lower())
    username = base
    counter = 1
    while repo.username_exists(username):
        username = f"{base}{counter}"
        counter += 1
    return username


def validate_password(value: str, field: str = "password") -> None:
    if not isinstance(value, str) or not (MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH):
        raise ValidationFailure({field: f"must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"})


@dataclass
class AccountsService:
    """Use cases for accounts (framework-independent)."""

    repo: AccountsRepoProtocol
    tokens: TokenService

    def authenticate(self, email: str, password: str) -> User:
        user = self.repo.find_user_by_email((email or "").strip())
        if user is None or not user.active or not verify_password(password, user.password_hash):
            raise UnauthenticatedError("invalid_credentials", INVALID_CREDENTIALS)
        return user

    def login(self, email: str, password: str) -> LoginResult:
        user = self.authenticate(email, password)
        token, expires_in = self.tokens.issue(user.email)
        logger.info("identity.login user_id=%s", user.id)
        return LoginResult(token=token, expires_in=expires_in, user=user)

    def register(
        self,
        *,
        username: str,
        email: str,
        password: str,
        role: str = STUDENT,
        actor: Optional[Principal] = None,
    ) -> LoginResult:
        """Create an account and return a token for it.

        Permissions:
            Anyone may register a STUDENT account. ADMIN and TEACHER accounts
            require an authenticated ADMIN actor.
        """
        role = (role or STUDENT).upper()
        errors: Dict[str, str] = {}
        if role not in ALLOWED_ROLES:
            errors["role"] = "must be one of: " + ", ".join(sorted(ALLOWED_ROLES))
        if not _USERNAME_RE.match(username or ""):
            errors["username"] = "must be 3-50 characters (letters, digits, '.', '_', '-')"
        if not _EMAIL_RE.match(email or ""):
            errors["email"] = "must be a well-formed email address"
        if not isinstance(password, str) or not (MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH):
            errors["password"] = f"must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"
        if errors:
            raise ValidationFailure(errors)
        if role != STUDENT:
            authorize(actor, Action.REGISTER_PRIVILEGED)

        user = self.repo.create_user(
            username=username,
            email=email.strip(),
            password_hash=hash_password(password),
            role=role,
            actor=actor.actor if actor else None,
        )
        token, expires_in = self.tokens.issue(user.email)
        logger.info("identity.register user_id=%s role=%s", user.id, role)
        return LoginResult(token=token, expires_in=expires_in, user=user)

    def bootstrap_admin(self, *, email: str, password: str) -> Optional[User]:
        """Create the first ADMIN account on a store that has none.

        Behavior:
            - No-op (returns None) while an active ADMIN exists.
            - No-op with a warning when the email already belongs to a
              non-admin account; that account is never promoted.
            - The username is derived from the email's local part.
        """
        if self.repo.count_active_admins() > 0:
            return None
        errors: Dict[str, str] = {}
        if not _EMAIL_RE.match(email or ""):
            errors["ADMIN_EMAIL"] = "must be a well-formed email address"
        if not isinstance(password, str) or not (MIN_PASSWORD_LENGTH <= len(password) <= MAX_PASSWORD_LENGTH):
            errors["ADMIN_PASSWORD"] = f"must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"
        if errors:
            raise ValidationFailure(errors)
        if self.repo.find_user_by_email(email.strip()) is not None:
            logger.warning("identity.bootstrap_admin skipped: email belongs to an existing account")
            return None

        base = re.sub(r"[^A-Za-z0-9._-]", "", email.split("@", 1)[0]).lower() or "admin"
        username = base
        counter = 1
        while self.repo.username_exists(username):
            username = f"{base}{counter}"
            counter += 1
        user = self.repo.create_user(
            username=username,
            email=email.strip(),
            password_hash=hash_password(password),
            role=ADMIN,
            actor="system",
        )
        logger.info("identity.bootstrap_admin user_id=%s", user.id)
        return user

    def resolve_principal(self, token: str) -> Principal:
        try:
            claims = self.tokens.verify(token)
        except TokenVerificationError as exc:
            raise UnauthenticatedError(exc.code, "Invalid or expired token") from exc
        user = self.repo.find_user_by_email(str(claims["sub"]))
        if user is None or not user.active:
            raise UnauthenticatedError("account_inactive", "Invalid or expired token")
        return Principal.from_user(user)

    def me(self, principal: Principal) -> Dict[str, Any]:
        """Account summary plus the linked profile, if any."""
        user = self.repo.get_user(principal.user_id)
        if user is None:
            raise UnauthenticatedError("account_missing", "Invalid or expired token")
        profile: Dict[str, Any] = {
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role,
            "active": user.active,
            "created_at": user.created_at.isoformat() if user.created_at else None,
        }
        student = self.repo.get_student_by_user(user.id)
        if student is not None:
            profile["student"] = {
                "student_id": student.id,
                "full_name": student.full_name,
                "department_id": student.department_id,
                "status": student.status,
            }
        teacher = self.repo.get_teacher_by_user(user.id)
        if teacher is not None:
            profile["teacher"] = {
                "teacher_id": teacher.id,
                "full_name": teacher.full_name,
                "department_id": teacher.department_id,
                "specialization": teacher.specialization,
            }
        return profile

    def change_password(self, principal: Principal, *, current_password: str, new_password: str, confirm_password: str) -> None:
        validate_password(new_password, "new_password")
        if new_password != confirm_password:
            raise BusinessRuleViolation("New password and confirm password do not match", code="password_mismatch")
        user = self.repo.get_user(principal.user_id)
        if user is None or not verify_password(current_password, user.password_hash):
            raise BusinessRuleViolation("Current password is incorrect", code="invalid_current_password")
        self.repo.update_user_password(user.id, hash_password(new_password), actor=principal.actor)
        logger.info("identity.password_changed user_id=%s", user.id)
