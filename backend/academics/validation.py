"""Field normalizers shared by the services.

Each helper records a message in `errors` under the field name instead of
raising immediately, so one request reports every offending field at once.
"""
from __future__ import annotations

from datetime import date
import re
from typing import Dict, Optional

from .errors import ValidationFailure

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_RE = re.compile(r"^\+?[0-9 ()-]{6,20}$")


class FieldErrors(Dict[str, str]):
    def raise_if_any(self) -> None:
        if self:
            raise ValidationFailure(dict(self))


def text(errors: FieldErrors, field: str, value: object, *, min_len: int = 1, max_len: int = 255, required: bool = True) -> Optional[str]:
    if value is None:
        if required:
            errors[field] = "must not be blank"
        return None
    if not isinstance(value, str):
        errors[field] = "must be a string"
        return None
    trimmed = value.strip()
    if not trimmed:
        if required:
            errors[field] = "must not be blank"
        return None
    if not (min_len <= len(trimmed) <= max_len):
        errors[field] = f"length must be between {min_len} and {max_len}"
        return None
    return trimmed


def email(errors: FieldErrors, field: str, value: object, *, required: bool = True) -> Optional[str]:
    trimmed = text(errors, field, value, max_len=100, required=required)
    if trimmed is not None and not _EMAIL_RE.match(trimmed):
        errors[field] = "must be a well-formed email address"
        return None
    return trimmed


def phone(errors: FieldErrors, field: str, value: object) -> Optional[str]:
    trimmed = text(errors, field, value, max_len=20, required=False)
    if trimmed is not None and not _PHONE_RE.match(trimmed):
        errors[field] = "must be a valid phone number"
        return None
    return trimmed


def integer(errors: FieldErrors, field: str, value: object, *, low: int, high: int, required: bool = True) -> Optional[int]:
    if value is None:
        if required:
            errors[field] = "must not be null"
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        errors[field] = "must be an integer"
        return None
    if not (low <= value <= high):
        errors[field] = f"must be between {low} and {high}"
        return None
    return value


def past_date(errors: FieldErrors, field: str, value: Optional[date], *, today: date) -> Optional[date]:
    if value is not None and value >= today:
        errors[field] = "must be a date in the past"
        return None
    return value


def one_of(errors: FieldErrors, field: str, value: object, allowed, *, required: bool = True) -> Optional[str]:
    if value is None:
        if required:
            errors[field] = "must not be null"
        return None
    candidate = str(value).strip().upper()
    if candidate not in allowed:
        errors[field] = "must be one of: " + ", ".join(sorted(allowed))
        return None
    return candidate
