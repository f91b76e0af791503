"""
Unit tests for the authentication manager.

Sleeps are recorded instead of waited so the backoff schedule can be checked.
"""
import logging
import time

import pytest

from steam_depot.auth import AuthManager
from steam_depot.exceptions import AuthenticationError, LoginFailedError, NoSavedSessionError
from steam_depot.messages import AuthSessionResult, CredentialsAuthRequest, LoggedOffEvent, QRAuthRequest
from steam_depot.models import EResult, Session

STEAM_ID = 76561197960287930


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def auth(connection, session_store, fake_sleep):
    return AuthManager(connection, session_store, sleep=fake_sleep, attempt_timeout=5)


class TestTokenLogin:
    """Tests for refresh token logon and its retry schedule."""

    def test_first_attempt_succeeds(self, auth, transport, sleeps):
        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert auth.username == "farmer"
        assert auth.steam_id == STEAM_ID
        assert sleeps == []
        assert transport.logons[0].username == "farmer"
        assert transport.logons[0].access_token == "tok"

    def test_backoff_until_fifth_attempt(self, auth, transport, sleeps):
        transport.logon_results = [EResult.FAIL] * 4 + [EResult.OK]

        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert len(transport.logons) == 5
        assert sleeps == [5, 10, 15, 20]
        assert sum(sleeps) == 50

    def test_exhausted_attempts(self, auth, transport, sleeps):
        transport.logon_results = [EResult.INVALID_PASSWORD] * 5

        with pytest.raises(LoginFailedError, match="after 5 attempts"):
            auth.login_with_token("farmer", "tok")

        assert not auth.is_logged_in
        assert len(transport.logons) == 5
        assert sleeps == [5, 10, 15, 20]

    def test_timed_out_attempt_counts_as_failure(self, connection, session_store, transport, sleeps, fake_sleep):
        auth = AuthManager(connection, session_store, sleep=fake_sleep, attempt_timeout=0.2)
        transport.logon_results = [None, EResult.OK]

        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert len(transport.logons) == 2
        assert sleeps == [5]

    def test_reconnects_after_disconnect(self, auth, transport, sleeps):
        transport.logon_results = ["disconnect", EResult.OK]

        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert transport.connect_calls == 2
        assert sleeps == [5]

    def test_failed_reconnect_counts_as_attempt(self, auth, transport, sleeps):
        transport.logon_results = ["disconnect", EResult.OK]
        transport.connect_results = [True, False, True]

        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert transport.connect_calls == 3
        assert len(transport.logons) == 2
        assert sleeps == [5, 10]

    def test_initial_connect_failure_is_retried(self, auth, transport, sleeps):
        transport.connect_results = [False, True]

        auth.login_with_token("farmer", "tok")

        assert auth.is_logged_in
        assert transport.connect_calls == 2
        assert len(transport.logons) == 1
        assert sleeps == [5]

    def test_connect_never_succeeds(self, auth, transport, sleeps):
        transport.connect_results = [False] * 5

        with pytest.raises(LoginFailedError):
            auth.login_with_token("farmer", "tok")

        assert transport.connect_calls == 5
        assert transport.logons == []
        assert sleeps == [5, 10, 15, 20]

    def test_logged_off_clears_state(self, auth, transport):
        auth.login_with_token("farmer", "tok")

        transport.emit(LoggedOffEvent(result=EResult.LOGGED_IN_ELSEWHERE))

        assert wait_until(lambda: not auth.is_logged_in)

    def test_logs_token_expiry(self, auth, make_token, caplog):
        token = make_token({"sub": str(STEAM_ID), "exp": 1893456000})

        with caplog.at_level(logging.INFO, logger="steam_depot.auth"):
            auth.login_with_token("farmer", token)

        assert "Refresh token expires 2030-01-01" in caplog.text

    def test_opaque_token_still_logs_in(self, auth):
        auth.login_with_token("farmer", "opaque-token")

        assert auth.is_logged_in


class TestSavedSession:
    def test_no_saved_session(self, auth):
        with pytest.raises(NoSavedSessionError):
            auth.login_with_saved_session()

    def test_uses_saved_token(self, auth, session_store, transport):
        session_store.save(Session(username="farmer", refresh_token="saved-tok"))

        session = auth.login_with_saved_session()

        assert session.username == "farmer"
        assert transport.logons[0].access_token == "saved-tok"
        assert auth.is_logged_in


class TestInteractiveLogin:
    """Tests for credential and QR challenge flows."""

    def test_credentials_save_session_before_token_login(self, auth, session_store, transport):
        transport.responses[CredentialsAuthRequest] = AuthSessionResult(account_name="farmer",
                                                                         refresh_token="fresh")
        saved_at_logon = []
        transport.on_log_on = lambda details: saved_at_logon.append(session_store.load())

        session = auth.login_with_credentials("farmer", "hunter2")

        assert session == Session(username="farmer", refresh_token="fresh")
        assert saved_at_logon == [Session(username="farmer", refresh_token="fresh")]
        assert transport.requests[0].password == "hunter2"
        assert auth.is_logged_in

    def test_session_kept_when_token_login_fails(self, auth, session_store, transport):
        transport.responses[CredentialsAuthRequest] = AuthSessionResult(account_name="farmer",
                                                                         refresh_token="fresh")
        transport.logon_results = [EResult.FAIL] * 5

        with pytest.raises(LoginFailedError):
            auth.login_with_credentials("farmer", "hunter2")

        assert session_store.load().refresh_token == "fresh"

    def test_rejected_credentials(self, auth, session_store, transport):
        transport.responses[CredentialsAuthRequest] = AuthenticationError("invalid password")

        with pytest.raises(AuthenticationError):
            auth.login_with_credentials("farmer", "wrong")

        assert not session_store.has_saved_session()
        assert transport.logons == []

    def test_device_challenge(self, auth, session_store, transport):
        challenges = []

        def approve(request):
            request.on_challenge("https://s.team/q/1/2")
            return AuthSessionResult(account_name="farmer", refresh_token="qr-tok")

        transport.responses[QRAuthRequest] = approve

        session = auth.login_with_device_challenge(on_challenge=challenges.append)

        assert challenges == ["https://s.team/q/1/2"]
        assert session_store.load() == session
        assert transport.logons[0].access_token == "qr-tok"
