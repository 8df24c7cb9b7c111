"""
auth/errors.py -- Error taxonomy for the auth orchestrator and token service.

Every error the orchestrator lets cross its boundary is an AuthError. The
API layer maps the class to an HTTP status and uses .code / .message for the
response envelope, so a new subclass only needs a code and a status entry in
api/main.py.

InvalidCredentials deliberately carries one fixed message: unknown email and
wrong password must be indistinguishable to the caller.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class. code is machine-readable, message is safe to show users."""

    code = "auth_error"
    default_message = "Authentication error."

    def __init__(self, message: str | None = None, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class AlreadyExists(AuthError):
    code = "already_exists"
    default_message = "A user with this email already exists."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    default_message = "Invalid email or password."

    def __init__(self) -> None:
        super().__init__()


class NotFound(AuthError):
    code = "not_found"
    default_message = "User not found."


class TokenInvalid(AuthError):
    code = "invalid_token"
    default_message = "Invalid token."


class TokenMalformed(TokenInvalid):
    code = "token_malformed"
    default_message = "Token could not be parsed."


class TokenSignatureInvalid(TokenInvalid):
    code = "token_signature_invalid"
    default_message = "Token signature does not match."


class TokenExpired(TokenInvalid):
    code = "token_expired"
    default_message = "Token has expired."


class TokenNotYetValid(TokenInvalid):
    code = "token_not_yet_valid"
    default_message = "Token is not valid yet."


class UpstreamFailure(AuthError):
    """A collaborator (database, hasher, signer) failed.

    Raised with `raise UpstreamFailure(...) from exc` so the original error
    stays on __cause__ for the server log; the message names the operation.
    """

    code = "upstream_failure"
    default_message = "A backing service failed."


class TokenSigningError(Exception):
    """The token could not be signed (misconfigured secret). Internal only."""


class NotificationError(Exception):
    """Welcome mail delivery failed. Terminal at the dispatcher boundary."""
