"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the token
service and the orchestrator do the work; these only own the shape.

Layer rule: no imports from api/, core/, cache/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class User:
    """An identity record as returned by UserStore.

    Frozen so the snapshot held by UserCache cannot be mutated by a caller
    that got it from a cache hit. id is a UUID4 string; email is the natural
    key (UNIQUE in the users table). password_hash is a bcrypt hash and is
    never serialized by the API layer.
    """

    id: str
    email: str
    password_hash: str
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of an access token.

    Only produced by TokenService.validate(), so holding one means the
    signature, issuer and time window have already been checked.
    """

    user_id: str
    email: str
    issuer: str
    token_id: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful register or login."""

    user: User
    token: str
