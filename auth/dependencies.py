"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only the Authorization: Bearer <token> header is accepted. The token is
validated statelessly by TokenService; no database lookup happens here.
Routes that need the full record call AuthService.get_profile() with
claims.user_id.

get_current_claims() raises HTTP 401 with a structured error body.

Layer rule: no imports from api/, cache/, or notify/.
  auth/dependencies.py may import from fastapi because it is part of the
  FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import TokenInvalid
from auth.models import TokenClaims
from auth.service import AuthService


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        return None
    return token


def get_current_claims(request: Request) -> TokenClaims:
    """Require a valid bearer token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: TokenClaims = Depends(get_current_claims)): ...

    The error code tells clients whether to re-login (token_expired) or fix
    their request (missing header, malformed or forged token).
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authorization: Bearer <token> header required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    service: AuthService = request.app.state.auth_service
    try:
        return service.authenticate(token)
    except TokenInvalid as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": exc.code, "message": exc.message},
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc
