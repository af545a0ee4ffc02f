"""
Authentication API routes (login, register, me, change password, logout).

Why:
    Issue and manage Bearer tokens. Tokens carry only the account email; the
    role is re-resolved from the store on every request by the middleware.

Security:
    - Login failures return one generic message for unknown email, wrong
      password and inactive account alike.
    - Public registration creates STUDENT accounts only. Registering ADMIN or
      TEACHER accounts requires an ADMIN Bearer token on the same request.
    - Logout is stateless: the client discards its token.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
from pydantic.functional_validators import field_validator

from .. import wiring
from ..responses import bearer_token, current_principal, json_private, no_content, user_out

auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=100)


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    role: Optional[str] = None

    @field_validator("username", "email", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str
    confirm_password: str


def _login_payload(result) -> dict:
    return {
        "token": result.token,
        "token_type": result.token_type,
        "expires_in": result.expires_in,
        "user": user_out(result.user),
    }


@auth_router.post("/login")
async def login(payload: LoginRequest):
    """Exchange email and password for a Bearer token."""
    result = wiring.accounts_service().login(payload.email, payload.password)
    return json_private(_login_payload(result))


@auth_router.post("/register")
async def register(request: Request, payload: RegisterRequest):
    """Create an account and return the same payload as login.

    Behavior:
        - 201 on success
        - 400 on invalid input, 409 when username or email already exist
        - 403 when a non-STUDENT role is requested without an ADMIN token
    """
    service = wiring.accounts_service()
    actor = None
    token = bearer_token(request)
    if token is not None:
        actor = service.resolve_principal(token)
    result = service.register(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        role=payload.role or "STUDENT",
        actor=actor,
    )
    return json_private(_login_payload(result), status_code=201)


@auth_router.get("/me")
async def me(request: Request):
    return json_private(wiring.accounts_service().me(current_principal(request)))


@auth_router.post("/change-password")
async def change_password(request: Request, payload: ChangePasswordRequest):
    wiring.accounts_service().change_password(
        current_principal(request),
        current_password=payload.current_password,
        new_password=payload.new_password,
        confirm_password=payload.confirm_password,
    )
    return json_private({"message": "Password changed successfully"})


@auth_router.post("/logout")
async def logout(request: Request):
    current_principal(request)
    return no_content()
