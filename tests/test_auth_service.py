"""Unit tests for auth/service.py -- AuthService orchestration.

Covers:
- register: returns a valid token, stores a bcrypt hash, queues the welcome mail
- register does not wait for (or fail because of) the welcome mail
- duplicate email -> AlreadyExists, including the check-then-insert race
- register invalidates a stale cache entry for the email
- login round trip, distinct tokens, unified InvalidCredentials
- login is read-through: second login is served from the cache
- get_profile bypasses the cache; unknown id -> NotFound
- collaborator failures surface as UpstreamFailure with the cause chained
"""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import AlreadyExists, InvalidCredentials, NotFound, TokenInvalid, UpstreamFailure
from auth.models import User
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import BcryptHasher, TokenService
from cache.store import UserCache
from notify.dispatcher import Dispatcher
from tests.support import FAST_HASHER_ROUNDS, RecordingNotifier


def _db_down(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("connection refused"))


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_returns_user_and_valid_token(self, service: AuthService) -> None:
        result = service.register("a@x.com", "p1secret")
        assert result.user.email == "a@x.com"
        claims = service.authenticate(result.token)
        assert claims.user_id == result.user.id
        assert claims.email == "a@x.com"

    def test_password_is_stored_hashed(self, service: AuthService, store: UserStore) -> None:
        service.register("a@x.com", "p1secret")
        stored = store.get_by_email("a@x.com")
        assert stored is not None
        assert stored.password_hash != "p1secret"
        assert stored.password_hash.startswith("$2")

    def test_welcome_mail_is_sent_in_background(
        self, service: AuthService, notifier: RecordingNotifier, dispatcher: Dispatcher
    ) -> None:
        service.register("alice@x.com", "p1secret")
        assert dispatcher.join(timeout=5)
        assert notifier.sent == [("alice@x.com", "alice")]

    def test_register_does_not_wait_for_mail(self, store: UserStore, tokens: TokenService, cache: UserCache) -> None:
        gate = threading.Event()
        notifier = RecordingNotifier(gate=gate)
        dispatcher = Dispatcher(capacity=1)
        svc = AuthService(store, tokens, cache, dispatcher, notifier, hasher=BcryptHasher(FAST_HASHER_ROUNDS))

        result = svc.register("slow@x.com", "p1secret")

        assert result.token
        assert notifier.sent == []  # mail still blocked on the gate
        gate.set()
        assert dispatcher.join(timeout=5)
        assert notifier.sent == [("slow@x.com", "slow")]

    def test_mail_failure_is_not_surfaced(self, store: UserStore, tokens: TokenService, cache: UserCache) -> None:
        notifier = RecordingNotifier(fail=True)
        dispatcher = Dispatcher(capacity=1)
        svc = AuthService(store, tokens, cache, dispatcher, notifier, hasher=BcryptHasher(FAST_HASHER_ROUNDS))

        result = svc.register("fails@x.com", "p1secret")

        assert result.user.email == "fails@x.com"
        assert dispatcher.join(timeout=5)
        assert notifier.delivered.is_set()
        assert dispatcher.in_flight == 0

    def test_duplicate_email(self, service: AuthService, store: UserStore) -> None:
        first = service.register("a@x.com", "p1secret")
        with pytest.raises(AlreadyExists):
            service.register("a@x.com", "other-password")
        # First record untouched: same id, original password still works.
        assert store.get_by_email("a@x.com").id == first.user.id
        assert service.login("a@x.com", "p1secret").user.id == first.user.id

    def test_unique_constraint_decides_race(
        self, service: AuthService, store: UserStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Both racers pass user_exists(); the INSERT of the second hits UNIQUE(email)."""
        service.register("race@x.com", "p1secret")
        monkeypatch.setattr(store, "user_exists", lambda email: False)
        with pytest.raises(AlreadyExists):
            service.register("race@x.com", "p2secret")

    def test_register_invalidates_stale_cache_entry(self, service: AuthService, cache: UserCache) -> None:
        stale = User(
            id="stale-id",
            email="new@x.com",
            password_hash=BcryptHasher(FAST_HASHER_ROUNDS).hash("old-password"),
            created_at="2020-01-01T00:00:00+00:00",
            updated_at="2020-01-01T00:00:00+00:00",
        )
        cache.set("new@x.com", stale)

        created = service.register("new@x.com", "p1secret")

        assert cache.get("new@x.com") is None
        logged_in = service.login("new@x.com", "p1secret")
        assert logged_in.user.id == created.user.id
        with pytest.raises(InvalidCredentials):
            service.login("new@x.com", "old-password")

    def test_store_failure_is_upstream(self, service: AuthService, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(service.store, "user_exists", _db_down)
        with pytest.raises(UpstreamFailure) as exc_info:
            service.register("a@x.com", "p1secret")
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_signing_failure_is_upstream(self, service: AuthService) -> None:
        service.tokens = TokenService("", timedelta(hours=1))
        with pytest.raises(UpstreamFailure):
            service.register("a@x.com", "p1secret")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_round_trip(self, service: AuthService) -> None:
        registered = service.register("a@x.com", "p1secret")
        logged_in = service.login("a@x.com", "p1secret")
        assert logged_in.user.id == registered.user.id
        assert logged_in.token != registered.token
        assert service.authenticate(logged_in.token).user_id == registered.user.id

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, service: AuthService) -> None:
        service.register("a@x.com", "p1secret")
        with pytest.raises(InvalidCredentials) as wrong_password:
            service.login("a@x.com", "wrong")
        with pytest.raises(InvalidCredentials) as unknown_email:
            service.login("ghost@x.com", "p1secret")
        assert type(wrong_password.value) is type(unknown_email.value)
        assert wrong_password.value.code == unknown_email.value.code
        assert wrong_password.value.message == unknown_email.value.message

    def test_unknown_email_still_verifies_a_hash(self, service: AuthService) -> None:
        spy = MagicMock(wraps=service.hasher)
        service.hasher = spy
        with pytest.raises(InvalidCredentials):
            service.login("ghost@x.com", "p1secret")
        spy.verify.assert_called_once()

    def test_second_login_served_from_cache(
        self, service: AuthService, cache: UserCache, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        service.register("a@x.com", "p1secret")
        service.login("a@x.com", "p1secret")
        assert cache.get("a@x.com") is not None

        monkeypatch.setattr(service.store, "get_by_email", _db_down)
        assert service.login("a@x.com", "p1secret").user.email == "a@x.com"

    def test_unknown_email_is_not_cached(self, service: AuthService, cache: UserCache) -> None:
        with pytest.raises(InvalidCredentials):
            service.login("ghost@x.com", "p1secret")
        assert len(cache) == 0

    def test_store_failure_is_upstream_not_invalid_credentials(
        self, service: AuthService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(service.store, "get_by_email", _db_down)
        with pytest.raises(UpstreamFailure):
            service.login("a@x.com", "p1secret")


# ---------------------------------------------------------------------------
# Profile and token validation
# ---------------------------------------------------------------------------


class TestProfile:
    def test_get_profile(self, service: AuthService) -> None:
        registered = service.register("a@x.com", "p1secret")
        user = service.get_profile(registered.user.id)
        assert user.email == "a@x.com"
        assert user.created_at == registered.user.created_at

    def test_get_profile_bypasses_cache(self, service: AuthService, cache: UserCache) -> None:
        registered = service.register("a@x.com", "p1secret")
        service.get_profile(registered.user.id)
        assert len(cache) == 0

    def test_unknown_id(self, service: AuthService) -> None:
        with pytest.raises(NotFound):
            service.get_profile("00000000-0000-0000-0000-000000000000")

    def test_store_failure_is_upstream(self, service: AuthService, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(service.store, "get_by_id", _db_down)
        with pytest.raises(UpstreamFailure):
            service.get_profile("any")

    def test_authenticate_rejects_garbage(self, service: AuthService) -> None:
        with pytest.raises(TokenInvalid):
            service.authenticate("not-a-token")
