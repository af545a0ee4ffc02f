"""
Bearer token issue/verify helpers for the identity_access bounded context.

Why: Keep cryptographic handling of access tokens outside the web adapter so
we can unit test it independently.

Claims: only `sub` (the account email), `iat` and `exp`. No role claim is
issued; the role is re-resolved from the store on every request so a role
change or deactivation takes effect immediately.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple
import time

from jose import jwt
from jose.exceptions import JOSEError

ALGORITHM = "HS256"
MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between servers


class TokenVerificationError(Exception):
    """Raised when an access token fails verification."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class TokenService:
    """Signs and verifies HS256 access tokens.

    Parameters
    ----------
    secret:
        Shared HMAC secret (`JWT_SECRET`).
    expires_minutes:
        Lifetime of issued tokens.
    """

    secret: str
    expires_minutes: int = 1440

    def issue(self, subject: str, *, now: float | None = None) -> Tuple[str, int]:
        """Return `(token, expires_in_seconds)` for the given subject."""
        if not subject:
            raise ValueError("invalid_subject")
        issued_at = int(now if now is not None else time.time())
        expires_in = self.expires_minutes * 60
        claims = {"sub": subject, "iat": issued_at, "exp": issued_at + expires_in}
        return jwt.encode(claims, self.secret, algorithm=ALGORITHM), expires_in

    def verify(self, token: str) -> Dict[str, object]:
        """Validate signature and temporal claims, returning the claims.

        Raises
        ------
        TokenVerificationError:
            When the token is malformed, unsigned by us, expired or lacks `sub`.
        """
        if not token:
            raise TokenVerificationError("missing_token")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JOSEError as exc:
            raise TokenVerificationError("invalid_token") from exc

        _validate_temporal_claims(claims)
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            raise TokenVerificationError("invalid_subject")
        return claims


def _validate_temporal_claims(claims: Dict[str, object]) -> None:
    now = time.time()
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenVerificationError("invalid_token")
    if exp + MAX_CLOCK_SKEW_SECONDS < now:
        raise TokenVerificationError("token_expired")

    iat = claims.get("iat")
    if isinstance(iat, (int, float)) and iat - MAX_CLOCK_SKEW_SECONDS > now:
        raise TokenVerificationError("invalid_token")
