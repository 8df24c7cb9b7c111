"""
auth/service.py -- Register / login / profile orchestration.

AuthService composes the collaborators built in the API lifespan:

    UserStore      persistence (authoritative)
    UserCache      email -> User read cache in front of the store
    TokenService   access-token issue/validate
    Dispatcher     bounded pool for the welcome mail
    EmailNotifier  SMTP delivery, run inside the pool
    hasher         hash(plain) / verify(hashed, plain)

Error policy: callers only ever see AuthError subclasses. Collaborator
exceptions (SQLAlchemy, bcrypt, signing) are wrapped in UpstreamFailure with
the operation name and chained with `from`. Login failures are always the
same InvalidCredentials, and an unknown email still pays for one hash
verification so the response time does not reveal whether it exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from functools import partial

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AlreadyExists, InvalidCredentials, NotFound, TokenSigningError, UpstreamFailure
from auth.models import AuthResult, TokenClaims, User
from auth.store import UserStore
from auth.tokens import BcryptHasher, TokenService
from cache.store import UserCache
from notify.dispatcher import Dispatcher
from notify.mailer import EmailNotifier

logger = logging.getLogger("authservice.auth")

_TIMING_DUMMY_PASSWORD = "authservice_timing_dummy"


class AuthService:
    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        cache: UserCache,
        dispatcher: Dispatcher,
        notifier: EmailNotifier,
        hasher: BcryptHasher | None = None,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.cache = cache
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.hasher = hasher or BcryptHasher()
        # Same cost factor as real hashes, computed once so the first unknown
        # email login is not measurably slower than later ones.
        self._dummy_hash = self.hasher.hash(_TIMING_DUMMY_PASSWORD)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Read-through lookup: cache first, then the store.

        Only found users are cached. A miss is not remembered, so a user
        registered a moment later is visible on the next call.
        """
        user = self.cache.get(email)
        if user is not None:
            return user
        try:
            user = self.store.get_by_email(email)
        except SQLAlchemyError as exc:
            raise UpstreamFailure("Failed to look up user by email.") from exc
        if user is not None:
            self.cache.set(email, user)
        return user

    def get_profile(self, user_id: str) -> User:
        """Return the user with this id, straight from the store.

        The cache is keyed by email, so it is not consulted here.
        """
        try:
            user = self.store.get_by_id(user_id)
        except SQLAlchemyError as exc:
            raise UpstreamFailure("Failed to look up user by id.") from exc
        if user is None:
            raise NotFound()
        return user

    def authenticate(self, token: str) -> TokenClaims:
        """Validate a bearer token. Raises a TokenInvalid subclass on failure."""
        return self.tokens.validate(token)

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(self, email: str, password: str) -> AuthResult:
        """Create a user, issue a token and queue the welcome mail.

        The user_exists() check is a fast path only. The UNIQUE constraint on
        email decides races between concurrent registrations; the loser gets
        AlreadyExists from the IntegrityError branch.
        """
        try:
            taken = self.store.user_exists(email)
        except SQLAlchemyError as exc:
            raise UpstreamFailure("Failed to check whether the email is registered.") from exc
        if taken:
            raise AlreadyExists()

        try:
            password_hash = self.hasher.hash(password)
        except ValueError as exc:
            raise UpstreamFailure("Failed to hash password.") from exc

        try:
            user = self.store.create_user(email, password_hash)
        except IntegrityError as exc:
            raise AlreadyExists() from exc
        except SQLAlchemyError as exc:
            raise UpstreamFailure("Failed to create user.") from exc

        self.cache.delete(email)
        token = self._issue(user)

        self.dispatcher.submit(
            partial(self._send_welcome, user.email, _display_name(user.email)),
            name=f"welcome-{user.id}",
        )
        logger.info("Registered user %s; welcome email queued", user.id)
        return AuthResult(user=user, token=token)

    def login(self, email: str, password: str) -> AuthResult:
        user = self.get_user_by_email(email)
        if user is None:
            self.hasher.verify(self._dummy_hash, password)
            raise InvalidCredentials()
        if not self.hasher.verify(user.password_hash, password):
            raise InvalidCredentials()
        token = self._issue(user)
        logger.info("User %s logged in", user.id)
        return AuthResult(user=user, token=token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: User) -> str:
        try:
            return self.tokens.issue(user.id, user.email)
        except TokenSigningError as exc:
            raise UpstreamFailure("Failed to issue access token.") from exc

    def _send_welcome(self, address: str, display_name: str) -> None:
        # Runs on a dispatcher thread. Delivery is best-effort: log and stop.
        try:
            self.notifier.send_welcome(address, display_name)
        except Exception:
            logger.exception("Welcome email to %s failed", address)


def _display_name(email: str) -> str:
    return email.split("@", 1)[0] or email
