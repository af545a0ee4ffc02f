"""
Password hashing for stored credentials.

Uses passlib's pure-Python pbkdf2_sha256 scheme so no native backend is
required. `deprecated="auto"` lets us migrate schemes later by rehashing on
login.
"""
from __future__ import annotations

import secrets

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(plaintext: str) -> str:
    return pwd_context.hash(plaintext)


def verify_password(plaintext: str, digest: str) -> bool:
    if not plaintext or not digest:
        return False
    try:
        return pwd_context.verify(plaintext, digest)
    except ValueError:
        # Unknown or malformed hash in the store.
        return False


def generate_temporary_password(length: int = 16) -> str:
    """Random password for accounts created on someone's behalf."""
    return secrets.token_urlsafe(length)[:length]
