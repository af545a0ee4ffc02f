"""
Typed failures raised by the academic records core.

Why:
    Services raise at the point of detection and never translate errors
    themselves. The web boundary maps each kind to a status code and a uniform
    error envelope, so the mapping lives in exactly one place.

Each error carries a machine `code` (stable, snake_case) plus a human message.
"""
from __future__ import annotations

from typing import Dict, Optional


class NotFoundError(LookupError):
    """Referenced entity does not exist (or is soft-deleted)."""

    def __init__(self, entity: str, key: object, *, field: str = "id"):
        super().__init__(f"{entity} not found with {field}: {key}")
        self.code = f"{entity.lower()}_not_found"
        self.entity = entity


class DuplicateResourceError(Exception):
    """A uniqueness rule would be violated."""

    def __init__(self, message: str, *, code: str = "duplicate_resource"):
        super().__init__(message)
        self.code = code


class UnauthenticatedError(Exception):
    """Missing, invalid or expired credential, or an inactive account."""

    def __init__(self, code: str = "unauthenticated", message: str = "Authentication required"):
        super().__init__(message)
        self.code = code


class ForbiddenError(PermissionError):
    """Authenticated principal may not perform the action."""

    def __init__(self, code: str = "forbidden", message: str = "Access denied"):
        super().__init__(message)
        self.code = code


class BusinessRuleViolation(ValueError):
    """A domain invariant would be broken; message is shown to the caller."""

    def __init__(self, message: str, *, code: str = "business_rule_violation"):
        super().__init__(message)
        self.code = code


class ValidationFailure(ValueError):
    """Structurally invalid input, itemized per offending field."""

    def __init__(self, field_errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message or "Validation failed")
        self.code = "validation_failed"
        self.field_errors = dict(field_errors)


__all__ = [
    "NotFoundError",
    "DuplicateResourceError",
    "UnauthenticatedError",
    "ForbiddenError",
    "BusinessRuleViolation",
    "ValidationFailure",
]
