"""
api/routes/v1/auth.py -- Registration, login and profile REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; returns user + access token (201)
  POST /api/v1/auth/login      -- password login; returns user + access token
  GET  /api/v1/auth/profile    -- current user's record (requires Bearer token)

Handlers are plain `def` so FastAPI runs them on its thread pool: AuthService
blocks on the database and bcrypt, and must not stall the event loop.

AuthError subclasses raised by AuthService propagate to the handler in
api/main.py, which turns them into the standard error envelope. Routes do
not catch them.

Security:
  Login returns the same invalid_credentials error for unknown email and
  wrong password (AuthService guarantees this; do not add a pre-check here).
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    LoginRequest,
    ProfileResponse,
    RegisterRequest,
    UserProfile,
    UserSummary,
)
from auth.dependencies import get_current_claims
from auth.models import AuthResult, TokenClaims
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - GET  /api/v1/auth/profile:  requires Bearer token (get_current_claims)
router = APIRouter()


def _token_response(
    result: AuthResult,
    request: Request,
    message: str,
    status_code: int,
    **user_fields,
) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            message=message,
            user=UserSummary(id=result.user.id, email=result.user.email, **user_fields),
            token=result.token,
            expires_in=int(service.tokens.expires_in.total_seconds()),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and log it in.

    The welcome email is queued on the notification pool; this response does
    not wait for it and does not report its outcome.
    """
    service: AuthService = request.app.state.auth_service
    result = service.register(body.email, body.password)
    return _token_response(
        result,
        request,
        "User registered successfully",
        201,
        created_at=result.user.created_at,
    )


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a fresh access token."""
    service: AuthService = request.app.state.auth_service
    result = service.login(body.email, body.password)
    return _token_response(result, request, "Login successful", 200)


@router.get("/auth/profile", response_model=ProfileResponse)
def profile(request: Request, claims: TokenClaims = Depends(get_current_claims)) -> ProfileResponse:
    """Return the record of the user the bearer token was issued to.

    Read from the database on every call, so a 404 here means the account
    was removed after the token was issued.
    """
    service: AuthService = request.app.state.auth_service
    user = service.get_profile(claims.user_id)
    return ProfileResponse(
        user=UserProfile(
            id=user.id,
            email=user.email,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )
    )
