"""
Configuration and startup security checks for studify.

Why: A records API handles personal data. This module provides one settings
object read from the environment plus a single guard that enforces minimal
production safety constraints without burdening local development.

Permissions: The caller needs no special privileges. The functions simply read
environment variables; the guard raises `SystemExit` on fatal misconfiguration.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Optional

DEV_JWT_SECRET = "dev-only-secret-change-me"
MIN_JWT_SECRET_LENGTH = 32

logger = logging.getLogger("studify.web.config")


def _is_prod_like(env: str) -> bool:
    env_l = (env or "").lower()
    return env_l in {"prod", "production", "stage", "staging"}


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class WebSettings:
    environment: str
    database_url: Optional[str]
    jwt_secret: str
    jwt_expires_minutes: int
    attendance_edit_window_days: int
    log_level: str
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None


def load_settings() -> WebSettings:
    """Snapshot the current environment into a `WebSettings`."""
    return WebSettings(
        environment=(os.getenv("APP_ENV", "dev") or "dev").strip().lower(),
        database_url=(os.getenv("DATABASE_URL") or "").strip() or None,
        jwt_secret=(os.getenv("JWT_SECRET") or "").strip() or DEV_JWT_SECRET,
        jwt_expires_minutes=_int_env("JWT_EXPIRES_MINUTES", 1440),
        attendance_edit_window_days=_int_env("ATTENDANCE_EDIT_WINDOW_DAYS", 7),
        log_level=(os.getenv("LOG_LEVEL", "INFO") or "INFO").strip().upper(),
        admin_email=(os.getenv("ADMIN_EMAIL") or "").strip() or None,
        admin_password=os.getenv("ADMIN_PASSWORD") or None,
    )


def ensure_secure_config_on_startup() -> None:
    """Fail fast on insecure production configuration.

    Checks (prod-like environments only):
    - JWT_SECRET must be set, differ from the development default and be at
      least 32 characters long.
    - DATABASE_URL must not explicitly disable TLS.
    """
    env = os.getenv("APP_ENV", "dev")
    if not _is_prod_like(env):
        return  # dev/test remain permissive

    secret = (os.getenv("JWT_SECRET") or "").strip()
    if not secret or secret == DEV_JWT_SECRET:
        raise SystemExit(
            "Refusing to start: JWT_SECRET is unset or the development default in production."
        )
    if len(secret) < MIN_JWT_SECRET_LENGTH:
        raise SystemExit(
            f"Refusing to start: JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters in production."
        )

    dsn = os.getenv("DATABASE_URL", "")
    if "sslmode=disable" in dsn:
        raise SystemExit(
            "Refusing to start: DATABASE_URL contains sslmode=disable in production. Use sslmode=require or verify TLS."
        )
