"""
Bearer token issue/verify: signature, expiry and subject checks.
"""
from __future__ import annotations

import time

import pytest
from jose import jwt

from backend.identity_access.tokens import ALGORITHM, TokenService, TokenVerificationError

SECRET = "x" * 40


def test_issue_then_verify_returns_subject_only():
    service = TokenService(secret=SECRET, expires_minutes=30)
    token, expires_in = service.issue("ada@studify.test")
    assert expires_in == 1800
    claims = service.verify(token)
    assert claims["sub"] == "ada@studify.test"
    assert "role" not in claims


def test_expired_token_is_rejected():
    service = TokenService(secret=SECRET, expires_minutes=1)
    token, _ = service.issue("ada@studify.test", now=time.time() - 3600)
    with pytest.raises(TokenVerificationError) as exc:
        service.verify(token)
    assert exc.value.code == "token_expired"


def test_foreign_signature_is_rejected():
    token, _ = TokenService(secret="y" * 40).issue("ada@studify.test")
    with pytest.raises(TokenVerificationError) as exc:
        TokenService(secret=SECRET).verify(token)
    assert exc.value.code == "invalid_token"


def test_token_without_subject_is_rejected():
    now = int(time.time())
    token = jwt.encode({"iat": now, "exp": now + 60}, SECRET, algorithm=ALGORITHM)
    with pytest.raises(TokenVerificationError) as exc:
        TokenService(secret=SECRET).verify(token)
    assert exc.value.code == "invalid_subject"


def test_token_without_expiry_is_rejected():
    token = jwt.encode({"sub": "ada@studify.test"}, SECRET, algorithm=ALGORITHM)
    with pytest.raises(TokenVerificationError):
        TokenService(secret=SECRET).verify(token)


@pytest.mark.parametrize("token", ["", "not-a-jwt"])
def test_garbage_is_rejected(token):
    with pytest.raises(TokenVerificationError):
        TokenService(secret=SECRET).verify(token)
