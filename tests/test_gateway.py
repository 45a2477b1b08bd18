"""
tests/test_gateway.py -- Flow tests for auth/gateway.py.

Uses in-memory backends with an injected clock (see conftest.py). Covers:
  - register validation, duplicate email, closed registration, role lock-down
  - login: unknown email and wrong password are indistinguishable
  - single live session per user across repeated logins
  - refresh rotation, replay, ownership and concurrent refresh
  - logout of one token or all sessions
  - change-password and password-reset revoke every session
  - reset tokens are single-use and not burned by a weak password
  - backing-store failures become DependencyUnavailable
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy.exc import OperationalError

from auth.errors import (
    AccountDeactivated,
    DependencyUnavailable,
    InvalidCredentials,
    InvalidInput,
    RegistrationClosed,
    TokenInvalid,
    UserExists,
    UserNotFound,
    WeakPassword,
)
from auth.models import Role

PASSWORD = "Passw0rd!"
NEW_PASSWORD = "N3w-Passw0rd!"


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_returns_tokens_and_user(self, gateway):
        result = gateway.register("  Alice@Example.com ", PASSWORD, "Alice", "Smith")
        assert result.user.email == "alice@example.com"
        assert result.user.role == Role.USER
        assert result.expires_in == gateway.issuer.access_ttl
        claims = gateway.verify_token(result.access_token)
        assert claims.user_id == result.user.id
        assert gateway.sessions.validate(result.refresh_token) == result.user.id

    @pytest.mark.parametrize(
        "email, first, last",
        [("", "A", "B"), ("a@example.com", "", "B"), ("a@example.com", "A", "   ")],
    )
    def test_missing_fields(self, gateway, email, first, last):
        with pytest.raises(InvalidInput):
            gateway.register(email, PASSWORD, first, last)

    @pytest.mark.parametrize("email", ["no-at-sign", "a@b", "a b@example.com", "@example.com"])
    def test_bad_email_format(self, gateway, email):
        with pytest.raises(InvalidInput):
            gateway.register(email, PASSWORD, "A", "B")

    def test_weak_password_lists_violations(self, gateway):
        with pytest.raises(WeakPassword) as excinfo:
            gateway.register("a@example.com", "weak", "A", "B")
        assert len(excinfo.value.details) == 4
        assert gateway.directory.find_by_email("a@example.com") is None

    def test_duplicate_email(self, gateway, registered):
        with pytest.raises(UserExists):
            gateway.register("ALICE@example.com", PASSWORD, "Other", "Person")

    def test_privileged_role_rejected(self, gateway):
        with pytest.raises(InvalidInput):
            gateway.register("a@example.com", PASSWORD, "A", "B", role=Role.ADMIN)

    def test_explicit_user_role_allowed(self, gateway):
        assert gateway.register("a@example.com", PASSWORD, "A", "B", role=Role.USER).user.role == Role.USER

    def test_registration_closed(self, gateway_factory):
        closed = gateway_factory(self_registration_enabled=False)
        with pytest.raises(RegistrationClosed):
            closed.register("a@example.com", PASSWORD, "A", "B")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_success_stamps_last_login(self, gateway, registered):
        result = gateway.login("alice@example.com", PASSWORD)
        assert result.user.id == registered.user.id
        assert gateway.directory.find_by_id(registered.user.id).last_login_at is not None

    def test_unknown_email_and_wrong_password_are_identical(self, gateway, registered):
        with pytest.raises(InvalidCredentials) as unknown:
            gateway.login("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            gateway.login("alice@example.com", "Wr0ng-pass!")
        assert (unknown.value.status_code, unknown.value.code, unknown.value.message) == (
            wrong.value.status_code,
            wrong.value.code,
            wrong.value.message,
        )

    def test_unknown_email_still_runs_bcrypt(self, gateway, monkeypatch):
        calls = []
        monkeypatch.setattr(gateway.verifier, "verify_dummy", lambda plain: calls.append(plain))
        with pytest.raises(InvalidCredentials):
            gateway.login("nobody@example.com", PASSWORD)
        assert calls == [PASSWORD]

    def test_missing_fields(self, gateway):
        with pytest.raises(InvalidInput):
            gateway.login("", PASSWORD)
        with pytest.raises(InvalidInput):
            gateway.login("alice@example.com", "")

    def test_deactivated_account_with_right_password(self, gateway, registered):
        gateway.directory.update(registered.user.id, is_active=False)
        with pytest.raises(AccountDeactivated):
            gateway.login("alice@example.com", PASSWORD)

    def test_deactivated_account_is_checked_before_password(self, gateway, registered, monkeypatch):
        gateway.directory.update(registered.user.id, is_active=False)
        dummy_calls = []
        monkeypatch.setattr(gateway.verifier, "verify_dummy", lambda plain: dummy_calls.append(plain))
        with pytest.raises(AccountDeactivated):
            gateway.login("alice@example.com", "Wr0ng-pass!")
        assert dummy_calls == ["Wr0ng-pass!"]
        assert gateway.sessions.count_for(registered.user.id) == 0

    def test_repeated_logins_leave_one_session(self, gateway, registered):
        tokens = [gateway.login("alice@example.com", PASSWORD).refresh_token for _ in range(3)]
        assert gateway.sessions.count_for(registered.user.id) == 1
        assert gateway.sessions.validate(tokens[-1]) == registered.user.id
        for stale in [registered.refresh_token, *tokens[:-1]]:
            with pytest.raises(TokenInvalid):
                gateway.refresh(stale)

    def test_assigned_role_lands_in_token(self, gateway, registered):
        gateway.directory.assign_role(registered.user.id, Role.VETERINARIAN)
        result = gateway.login("alice@example.com", PASSWORD)
        assert result.user.role == Role.VETERINARIAN
        assert gateway.verify_token(result.access_token).role == Role.VETERINARIAN


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_rotates(self, gateway, registered):
        result = gateway.refresh(registered.refresh_token)
        assert result.refresh_token != registered.refresh_token
        assert gateway.sessions.validate(result.refresh_token) == registered.user.id
        with pytest.raises(TokenInvalid):
            gateway.refresh(registered.refresh_token)

    def test_access_token_is_not_a_refresh_token(self, gateway, registered):
        with pytest.raises(TokenInvalid):
            gateway.refresh(registered.access_token)

    def test_expired_session_is_token_invalid(self, gateway, registered, clock):
        clock.advance(gateway.issuer.refresh_ttl)
        with pytest.raises(TokenInvalid):
            gateway.refresh(registered.refresh_token)

    def test_session_owner_must_match_subject(self, gateway, registered):
        forged = gateway.issuer.issue_refresh("someone-else")
        gateway.sessions.put(registered.user.id, forged, gateway.issuer.refresh_expiry())
        with pytest.raises(TokenInvalid):
            gateway.refresh(forged)

    def test_deactivated_user_cannot_refresh(self, gateway, registered):
        gateway.directory.update(registered.user.id, is_active=False)
        with pytest.raises(AccountDeactivated):
            gateway.refresh(registered.refresh_token)

    def test_empty_token(self, gateway):
        with pytest.raises(InvalidInput):
            gateway.refresh("")

    def test_concurrent_refresh_has_one_winner(self, gateway, registered):
        barrier = threading.Barrier(4)
        winners, losers = [], []
        lock = threading.Lock()

        def attempt() -> None:
            barrier.wait()
            try:
                result = gateway.refresh(registered.refresh_token)
                bucket, item = winners, result.refresh_token
            except TokenInvalid:
                bucket, item = losers, None
            with lock:
                bucket.append(item)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 3
        assert gateway.sessions.validate(winners[0]) == registered.user.id
        assert gateway.sessions.count_for(registered.user.id) == 1


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_single_token(self, gateway, registered):
        gateway.logout(registered.access_token, registered.refresh_token)
        with pytest.raises(TokenInvalid):
            gateway.refresh(registered.refresh_token)

    def test_logout_all(self, gateway, registered):
        gateway.logout(registered.access_token)
        assert gateway.sessions.count_for(registered.user.id) == 0

    def test_cannot_revoke_someone_elses_token(self, gateway, registered):
        bob = gateway.register("bob@example.com", PASSWORD, "Bob", "Jones")
        gateway.logout(registered.access_token, bob.refresh_token)
        assert gateway.sessions.validate(bob.refresh_token) == bob.user.id

    def test_requires_valid_access_token(self, gateway, registered):
        with pytest.raises(TokenInvalid):
            gateway.logout(registered.refresh_token)


# ---------------------------------------------------------------------------
# Change password
# ---------------------------------------------------------------------------


class TestChangePassword:
    def test_change_password_revokes_sessions(self, gateway, registered):
        gateway.change_password(registered.access_token, PASSWORD, NEW_PASSWORD)
        with pytest.raises(TokenInvalid):
            gateway.refresh(registered.refresh_token)
        with pytest.raises(InvalidCredentials):
            gateway.login("alice@example.com", PASSWORD)
        assert gateway.login("alice@example.com", NEW_PASSWORD).user.id == registered.user.id

    def test_wrong_current_password(self, gateway, registered):
        with pytest.raises(InvalidCredentials) as excinfo:
            gateway.change_password(registered.access_token, "Wr0ng-pass!", NEW_PASSWORD)
        assert excinfo.value.message == "Current password is incorrect."
        assert gateway.sessions.count_for(registered.user.id) == 1

    def test_weak_new_password(self, gateway, registered):
        with pytest.raises(WeakPassword):
            gateway.change_password(registered.access_token, PASSWORD, "weak")
        assert gateway.sessions.count_for(registered.user.id) == 1

    def test_missing_fields(self, gateway, registered):
        with pytest.raises(InvalidInput):
            gateway.change_password(registered.access_token, "", NEW_PASSWORD)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_get_profile(self, gateway, registered):
        assert gateway.get_profile(registered.access_token).email == "alice@example.com"

    def test_profile_of_deleted_user(self, gateway, clock):
        orphan = gateway.issuer.issue_access("ghost", "ghost@example.com", Role.USER)
        with pytest.raises(UserNotFound):
            gateway.get_profile(orphan)

    def test_update_profile(self, gateway, registered):
        user = gateway.update_profile(registered.access_token, " Alicia ", "Jones")
        assert (user.first_name, user.last_name) == ("Alicia", "Jones")

    def test_update_profile_requires_names(self, gateway, registered):
        with pytest.raises(InvalidInput):
            gateway.update_profile(registered.access_token, "", "Jones")

    def test_update_avatar(self, gateway, registered):
        user = gateway.update_avatar(registered.access_token, "https://cdn.example.com/alice.png")
        assert user.avatar_url == "https://cdn.example.com/alice.png"

    @pytest.mark.parametrize("url", ["", "javascript:alert(1)", "/relative.png", "ftp://host/a.png"])
    def test_update_avatar_rejects_non_http_urls(self, gateway, registered, url):
        with pytest.raises(InvalidInput):
            gateway.update_avatar(registered.access_token, url)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_unknown_email_returns_none(self, gateway):
        assert gateway.request_password_reset("nobody@example.com") is None

    def test_deactivated_account_returns_none(self, gateway, registered):
        gateway.directory.update(registered.user.id, is_active=False)
        assert gateway.request_password_reset("alice@example.com") is None

    def test_notifier_receives_token(self, gateway_factory):
        sent = []
        gw = gateway_factory(reset_notifier=lambda email, token: sent.append((email, token)))
        gw.register("alice@example.com", PASSWORD, "Alice", "Smith")
        token = gw.request_password_reset("Alice@example.com")
        assert sent == [("alice@example.com", token)]

    def test_reset_flow_revokes_sessions(self, gateway, registered):
        token = gateway.request_password_reset("alice@example.com")
        gateway.confirm_password_reset(token, NEW_PASSWORD)
        assert gateway.sessions.count_for(registered.user.id) == 0
        assert gateway.login("alice@example.com", NEW_PASSWORD).user.id == registered.user.id

    def test_reset_token_is_single_use(self, gateway, registered):
        token = gateway.request_password_reset("alice@example.com")
        gateway.confirm_password_reset(token, NEW_PASSWORD)
        with pytest.raises(TokenInvalid):
            gateway.confirm_password_reset(token, "An0ther-Passw0rd!")
        assert gateway.login("alice@example.com", NEW_PASSWORD)

    def test_weak_password_does_not_burn_token(self, gateway, registered):
        token = gateway.request_password_reset("alice@example.com")
        with pytest.raises(WeakPassword):
            gateway.confirm_password_reset(token, "weak")
        gateway.confirm_password_reset(token, NEW_PASSWORD)

    def test_expired_reset_token(self, gateway, registered, clock):
        token = gateway.request_password_reset("alice@example.com")
        clock.advance(gateway.issuer.reset_ttl)
        with pytest.raises(TokenInvalid):
            gateway.confirm_password_reset(token, NEW_PASSWORD)

    def test_access_token_cannot_reset(self, gateway, registered):
        with pytest.raises(TokenInvalid):
            gateway.confirm_password_reset(registered.access_token, NEW_PASSWORD)


# ---------------------------------------------------------------------------
# Dependency failures
# ---------------------------------------------------------------------------


def test_directory_failure_is_dependency_unavailable(gateway, monkeypatch):
    def broken(email):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(gateway.directory, "find_by_email", broken)
    with pytest.raises(DependencyUnavailable) as excinfo:
        gateway.login("alice@example.com", PASSWORD)
    assert excinfo.value.status_code == 500


def test_session_store_timeout_is_dependency_unavailable(gateway, registered, monkeypatch):
    def stuck(*args):
        raise TimeoutError("session store lock not acquired")

    monkeypatch.setattr(gateway.sessions, "put", stuck)
    with pytest.raises(DependencyUnavailable):
        gateway.login("alice@example.com", PASSWORD)
