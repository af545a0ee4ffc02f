"studify academic records API"
from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.academics.errors import (
    BusinessRuleViolation,
    DuplicateResourceError,
    ForbiddenError,
    NotFoundError,
    UnauthenticatedError,
    ValidationFailure,
)

from . import config as _cfg
from . import wiring
from .responses import bearer_token, json_private, private_error


def _should_load_dotenv() -> bool:
    """Decide if we should load a local .env file.

    - Never load under pytest to avoid contaminating test env.
    - Allow explicit opt-out via STUDIFY_ENABLE_DOTENV (default true outside
      pytest).
    """
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return False
    flag = (os.getenv("STUDIFY_ENABLE_DOTENV", "true") or "").strip().lower()
    return flag in ("1", "true", "yes")


if _should_load_dotenv():
    load_dotenv()

# Minimal production safety checks (fail-fast on insecure config)
_cfg.ensure_secure_config_on_startup()

logger = logging.getLogger("studify.web.errors")
logging.getLogger("studify").setLevel(wiring.get_settings().log_level)

app = FastAPI(title="studify", description="Role-based academic records API", version="0.1.0")

from .routes.attendance import attendance_router  # noqa: E402
from .routes.auth import auth_router  # noqa: E402
from .routes.courses import courses_router  # noqa: E402
from .routes.dashboard import dashboard_router  # noqa: E402
from .routes.departments import departments_router  # noqa: E402
from .routes.enrollments import enrollments_router  # noqa: E402
from .routes.grades import grades_router  # noqa: E402
from .routes.students import students_router  # noqa: E402
from .routes.teachers import teachers_router  # noqa: E402

PUBLIC_PATHS = frozenset({"/api/auth/login", "/api/auth/register", "/health", "/docs", "/docs/oauth2-redirect", "/openapi.json"})


def _is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS


# --- Auth Middleware -------------------------------------------------------------

@app.middleware("http")
async def auth_enforcement(request: Request, call_next):
    """Resolve the Bearer principal for every non-public path.

    The account is re-loaded on each request, so a deactivated user is
    rejected even while holding a structurally valid token.
    """
    request.state.principal = None
    if _is_public_path(request.url.path):
        return await call_next(request)
    token = bearer_token(request)
    if token is None:
        return private_error(request, 401, "Unauthorized", "Authentication required")
    try:
        request.state.principal = wiring.accounts_service().resolve_principal(token)
    except UnauthenticatedError as exc:
        logger.info("auth.rejected code=%s", exc.code)
        return private_error(request, 401, "Unauthorized", str(exc))
    return await call_next(request)


# --- Error Envelope ----------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return private_error(request, 404, "Not Found", str(exc))


@app.exception_handler(DuplicateResourceError)
async def _duplicate(request: Request, exc: DuplicateResourceError):
    return private_error(request, 409, "Conflict", str(exc))


@app.exception_handler(UnauthenticatedError)
async def _unauthenticated(request: Request, exc: UnauthenticatedError):
    return private_error(request, 401, "Unauthorized", str(exc))


@app.exception_handler(ForbiddenError)
async def _forbidden(request: Request, exc: ForbiddenError):
    return private_error(request, 403, "Forbidden", str(exc))


@app.exception_handler(BusinessRuleViolation)
async def _business_rule(request: Request, exc: BusinessRuleViolation):
    return private_error(request, 400, "Bad Request", str(exc))


@app.exception_handler(ValidationFailure)
async def _validation_failure(request: Request, exc: ValidationFailure):
    return private_error(request, 400, "Validation Failed", str(exc), exc.field_errors)


@app.exception_handler(RequestValidationError)
async def _request_validation(request: Request, exc: RequestValidationError):
    field_errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field_errors[".".join(loc) or "request"] = err.get("msg", "invalid value")
    return private_error(request, 400, "Validation Failed", "Validation failed", field_errors)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    error = {404: "Not Found", 405: "Method Not Allowed"}.get(exc.status_code, "Error")
    return private_error(request, exc.status_code, error, str(exc.detail))


@app.exception_handler(Exception)
async def _unexpected(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return private_error(request, 500, "Internal Server Error", "An unexpected error occurred")


# --- Routers -------------------------------------------------------------------------

app.include_router(auth_router)
app.include_router(departments_router)
app.include_router(students_router)
app.include_router(teachers_router)
app.include_router(courses_router)
app.include_router(enrollments_router)
app.include_router(grades_router)
app.include_router(attendance_router)
app.include_router(dashboard_router)


@app.get("/health")
async def health_check():
    # Security: include no-store to avoid caching any runtime status.
    return json_private({"status": "healthy"})
