"""
auth/tokens.py -- Password hashing and access-token issuance/validation.

Security design decisions:
  Tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub/user_id, email, iat, nbf, exp, iss and a random jti. Validation
       needs no server-side state -- only the token, the shared secret and
       the current time -- so any number of instances can verify tokens
       without a session store. There is no clock-skew leeway.

       python-jose reports every failure as JWTError, which is too coarse for
       callers that need to tell an expired token from a forged one. So
       TokenService.validate() checks the HMAC over the raw segments first
       (TokenSignatureInvalid), only then lets jose parse the header and
       claims (TokenMalformed), and compares issuer and the nbf/exp window
       itself against an injectable clock (TokenInvalid, TokenNotYetValid,
       TokenExpired).

  Passwords: bcrypt used directly (no passlib wrapper). bcrypt's cost factor
       makes brute-force of low-entropy secrets expensive. Inputs are capped
       at 72 bytes by the API models because bcrypt refuses longer ones.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

import binascii
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwk, jwt
from jose.exceptions import JWSError
from jose.utils import base64url_decode, base64url_encode

from auth.errors import (
    TokenExpired,
    TokenInvalid,
    TokenMalformed,
    TokenNotYetValid,
    TokenSignatureInvalid,
    TokenSigningError,
)
from auth.models import TokenClaims

logger = logging.getLogger("authservice.auth")

_ALGORITHM = "HS256"
_DEFAULT_ISSUER = "auth-service"
_DEFAULT_ROUNDS = 12

# Claim name -> expected Python type in the decoded payload.
_REQUIRED_CLAIMS: dict[str, type] = {
    "sub": str,
    "user_id": str,
    "email": str,
    "iss": str,
    "jti": str,
    "iat": int,
    "nbf": int,
    "exp": int,
}

# Everything except the signature is checked by TokenService itself.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_aud": False,
    "verify_iat": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
    "verify_at_hash": False,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = _DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A hash that bcrypt cannot parse counts as a mismatch rather than an error,
    so a corrupted row fails closed.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


class BcryptHasher:
    """Password-hash collaborator handed to AuthService.

    rounds is the bcrypt cost factor (2**rounds iterations). Tests pass a low
    value to keep the suite fast; production keeps the default.
    """

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        return hash_password(plain, self.rounds)

    def verify(self, hashed: str, plain: str) -> bool:
        return verify_password(plain, hashed)


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


class TokenService:
    """Issue and validate signed, time-bounded access tokens.

    Usage:
        tokens = TokenService(settings.secret_key, timedelta(hours=24))
        token = tokens.issue(user.id, user.email)
        claims = tokens.validate(token)     # raises a TokenInvalid subclass

    clock must return a timezone-aware datetime. It is only injectable so
    tests can step past nbf/exp without sleeping.
    """

    def __init__(
        self,
        secret_key: str,
        expires_in: timedelta,
        issuer: str = _DEFAULT_ISSUER,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        # exp is whole seconds after iat; anything shorter would be expired on issue.
        if expires_in < timedelta(seconds=1):
            raise ValueError("expires_in must be at least one second")
        self._secret_key = secret_key
        self.expires_in = expires_in
        self.issuer = issuer
        self._clock = clock

    def issue(self, subject_id: str, email: str) -> str:
        """Encode a signed token for the given identity.

        Raises TokenSigningError if the token cannot be signed, which only
        happens with a missing secret or a broken crypto backend.
        """
        if not self._secret_key:
            raise TokenSigningError("signing secret is not configured")
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": subject_id,
            "user_id": subject_id,
            "email": email,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": issued_at + int(self.expires_in.total_seconds()),
            "iss": self.issuer,
            "jti": secrets.token_hex(16),
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except (JWTError, JWSError) as exc:
            raise TokenSigningError(str(exc)) from exc

    def validate(self, token: str) -> TokenClaims:
        """Verify a token and return its claims.

        The HMAC is checked over the raw header.payload bytes before either
        segment is parsed, so changing any character of a signed token is a
        signature failure, never a parse failure.

        Raises (all TokenInvalid subclasses unless noted):
            TokenMalformed         -- not three segments, undecodable signature,
                                      or a validly signed token with bad JSON/claims
            TokenSignatureInvalid  -- signature does not match the secret, or wrong alg
            TokenInvalid           -- issued by someone else (iss mismatch)
            TokenNotYetValid       -- now < nbf
            TokenExpired           -- now >= exp
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenMalformed(detail="expected three dot-separated segments")
        signing_input, _, crypto_segment = token.rpartition(".")
        try:
            encoded_signature = crypto_segment.encode("ascii")
            signature = base64url_decode(encoded_signature)
        except (UnicodeEncodeError, binascii.Error) as exc:
            raise TokenMalformed(detail="signature segment is not base64url") from exc

        key = jwk.construct(self._secret_key, _ALGORITHM)
        # A non-canonical encoding can decode to the right bytes; it is still a changed token.
        if base64url_encode(signature) != encoded_signature or not key.verify(signing_input.encode("utf-8"), signature):
            logger.debug("Token signature rejected")
            raise TokenSignatureInvalid()

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise TokenMalformed(detail=str(exc)) from exc
        _check_claim_types(payload)

        if payload["iss"] != self.issuer:
            logger.debug("Token issuer %r not accepted", payload["iss"])
            raise TokenInvalid("Token issuer is not accepted.", detail=payload["iss"])

        now = self._clock().timestamp()
        if now < payload["nbf"]:
            raise TokenNotYetValid()
        if now >= payload["exp"]:
            raise TokenExpired()

        return TokenClaims(
            user_id=payload["user_id"],
            email=payload["email"],
            issuer=payload["iss"],
            token_id=payload["jti"],
            issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
            not_before=datetime.fromtimestamp(payload["nbf"], timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
        )


def _check_claim_types(claims: dict) -> None:
    for name, expected in _REQUIRED_CLAIMS.items():
        value = claims.get(name)
        # bool is an int subclass; a boolean exp is still malformed.
        if not isinstance(value, expected) or isinstance(value, bool):
            raise TokenMalformed(detail=f"claim {name!r} missing or not {expected.__name__}")
