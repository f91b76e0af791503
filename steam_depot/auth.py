"""
Authentication Manager for the Steam platform

Every login method ends in a refresh-token logon, retried with a linear
backoff and reconnecting when the connection dropped in between.
"""

import logging
import time
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Callable, Optional

from steam_depot import constants, utils
from steam_depot.exceptions import (
    ConnectionFailedError,
    LoginFailedError,
    NoSavedSessionError,
    TransportError,
)
from steam_depot.messages import (
    AuthSessionResult,
    Authenticator,
    CredentialsAuthRequest,
    DisconnectedEvent,
    LoggedOffEvent,
    LoggedOnEvent,
    LogOnDetails,
    QRAuthRequest,
)
from steam_depot.models import EResult, LoginAttempt, Session, describe_result
from steam_depot.storage import SessionStore
from steam_depot.transport import PlatformConnection, SingleFlightSlot


class AuthManager:
    """
    Manages platform login and the saved session.

    Login state is driven by transport events: a logon response resolves the
    pending attempt, a disconnect fails it, a log-off clears the logged-in flag.
    """

    def __init__(self, connection: PlatformConnection, session_store: SessionStore,
                 sleep: Callable[[float], None] = time.sleep,
                 max_attempts: int = constants.LOGIN_MAX_ATTEMPTS,
                 backoff_seconds: float = constants.LOGIN_BACKOFF_SECONDS,
                 attempt_timeout: float = constants.LOGIN_ATTEMPT_TIMEOUT):
        """
        Initialize the authentication manager.

        Args:
            connection: Platform connection to log in on
            session_store: Where refresh tokens are persisted
            sleep: Sleep function used between attempts (injectable for tests)
            max_attempts: Token logon attempts before giving up
            backoff_seconds: Attempt n waits backoff_seconds * n before the next one
            attempt_timeout: Seconds each attempt may wait for a logon response
        """
        self.logger = logging.getLogger("steam_depot.auth")
        self.connection = connection
        self.session_store = session_store
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep

        self._login_slot = SingleFlightSlot("login")
        self._logged_in = False
        self.steam_id: Optional[int] = None
        self.session: Optional[Session] = None

        connection.subscribe(LoggedOnEvent, self._on_logged_on)
        connection.subscribe(DisconnectedEvent, self._on_disconnected)
        connection.subscribe(LoggedOffEvent, self._on_logged_off)

    @property
    def is_logged_in(self) -> bool:
        return self._logged_in

    @property
    def username(self) -> Optional[str]:
        return self.session.username if self.session else None

    # ========== Event handlers ==========

    def _on_logged_on(self, event: LoggedOnEvent) -> None:
        if event.ok:
            self._logged_in = True
            self.steam_id = event.steam_id
        else:
            self.logger.warning(f"Logon rejected: {describe_result(event.result)}")
        self._login_slot.resolve(event)

    def _on_disconnected(self, event: DisconnectedEvent) -> None:
        self._logged_in = False
        if not event.user_initiated:
            self.logger.warning("Disconnected from the platform")
        self._login_slot.resolve(LoggedOnEvent(result=EResult.NO_CONNECTION))

    def _on_logged_off(self, event: LoggedOffEvent) -> None:
        self._logged_in = False
        self.logger.warning(f"Logged off: {describe_result(event.result)}")

    # ========== Login methods ==========

    def login_with_saved_session(self) -> Session:
        """
        Log in with the refresh token of the first saved session.

        Raises:
            NoSavedSessionError: If no readable session is saved
            LoginFailedError: If every logon attempt failed
        """
        session = self.session_store.load()
        if session is None:
            raise NoSavedSessionError(f"No saved session in {self.session_store.session_dir}")

        self.logger.info(f"Using saved session for {session.username}")
        self.login_with_token(session.username, session.refresh_token)
        return session

    def login_with_credentials(self, username: str, password: str,
                               authenticator: Optional[Authenticator] = None) -> Session:
        """
        Log in with account name and password.

        Second factor prompts (device code, email code or device confirmation)
        are answered by ``authenticator``. The resulting refresh token is
        saved before the token logon.
        """
        self._ensure_connected()
        self.logger.info(f"Starting credentials auth session for {username}...")
        result = self._run_auth_session(CredentialsAuthRequest(
            username=username, password=password, authenticator=authenticator))
        return self._save_and_login(result)

    def login_with_device_challenge(self, on_challenge: Optional[Callable[[str], None]] = None) -> Session:
        """
        Log in by approving a QR challenge in the mobile app.

        Args:
            on_challenge: Called with each challenge URL to show the user
        """
        self._ensure_connected()
        self.logger.info("Starting QR auth session...")
        result = self._run_auth_session(QRAuthRequest(on_challenge=on_challenge))
        return self._save_and_login(result)

    def login_with_token(self, username: str, refresh_token: str) -> None:
        """
        Log on with a refresh token.

        Each attempt waits up to ``attempt_timeout`` for the logon response. A
        failed attempt n waits ``backoff_seconds * n`` seconds and reconnects if
        the connection dropped. A failed connect counts as a failed attempt.

        Raises:
            LoginFailedError: If every attempt failed
        """
        self._log_token_expiry(refresh_token)

        for attempt_number in range(1, self.max_attempts + 1):
            attempt = LoginAttempt.start(attempt_number, self.attempt_timeout)
            self.logger.info(f"Logging in as {username} (attempt {attempt_number}/{self.max_attempts})...")

            if self._attempt_log_on(username, refresh_token, attempt):
                self.session = Session(username=username, refresh_token=refresh_token)
                self.logger.info(f"Logged in as {username}")
                return

            if attempt_number < self.max_attempts:
                delay = self.backoff_seconds * attempt_number
                self.logger.warning(f"Login attempt {attempt_number} failed, retrying in {delay}s...")
                self._sleep(delay)

        self.logger.error(f"Login failed after {self.max_attempts} attempts")
        raise LoginFailedError(self.max_attempts)

    def disconnect(self) -> None:
        """Log off and close the connection."""
        self._logged_in = False
        self.connection.disconnect()

    # ========== Internals ==========

    def _ensure_connected(self) -> None:
        if not self.connection.is_connected:
            self.connection.connect()

    def _attempt_log_on(self, username: str, refresh_token: str, attempt: LoginAttempt) -> bool:
        """Run one logon attempt. Returns True on success."""
        if not self.connection.is_connected:
            self.logger.info("Not connected, connecting...")
            try:
                self.connection.connect(timeout=attempt.remaining())
            except ConnectionFailedError as e:
                self.logger.warning(f"Connect failed: {e}")
                return False
            if attempt.expired:
                self.logger.warning(f"Login attempt {attempt.attempt_number} timed out while connecting")
                return False

        future = self._login_slot.arm()
        try:
            self.connection.send_log_on(LogOnDetails(
                username=username, access_token=refresh_token)).result(timeout=attempt.remaining())
            event = future.result(timeout=attempt.remaining())
        except FutureTimeoutError:
            self.logger.warning(f"Login attempt {attempt.attempt_number} timed out")
            return False
        except TransportError as e:
            self.logger.warning(f"Login attempt {attempt.attempt_number} failed: {e}")
            return False
        finally:
            self._login_slot.clear(future)

        return event.ok

    def _run_auth_session(self, request) -> AuthSessionResult:
        # Interactive: no timeout while the user answers prompts
        return self.connection.request(request).result()

    def _save_and_login(self, result: AuthSessionResult) -> Session:
        session = Session(username=result.account_name, refresh_token=result.refresh_token)
        self.session_store.save(session)
        self.login_with_token(session.username, session.refresh_token)
        return session

    def _log_token_expiry(self, refresh_token: str) -> None:
        try:
            expiry = utils.decode_token_expiry(refresh_token)
        except (ValueError, TypeError) as e:
            self.logger.debug(f"Could not read refresh token expiry: {e}")
            return

        if expiry is None:
            return
        days_left = (expiry - datetime.now(timezone.utc)).days
        self.logger.info(f"Refresh token expires {expiry:%Y-%m-%d} ({days_left} days left)")
