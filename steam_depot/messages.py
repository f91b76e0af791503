"""
Messages exchanged with the platform transport

Requests are handed to ``Transport.request``/``Transport.send``; events are
returned from ``Transport.poll`` and dispatched by the connection's pump.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from steam_depot import constants
from steam_depot.models import CDNServer, EResult


class Authenticator(ABC):
    """Answers second-factor prompts during an interactive auth session."""

    @abstractmethod
    def get_device_code(self, previous_code_was_incorrect: bool) -> str:
        """Return a code from the mobile authenticator app."""

    @abstractmethod
    def get_email_code(self, email: str, previous_code_was_incorrect: bool) -> str:
        """Return a code sent to the account's email address."""

    @abstractmethod
    def accept_device_confirmation(self) -> bool:
        """Return True to wait for approval in the mobile app instead of a code."""


# Logon

@dataclass
class LogOnDetails:
    username: str
    access_token: str
    should_remember_password: bool = True


# Events

@dataclass
class DisconnectedEvent:
    user_initiated: bool = False


@dataclass
class LoggedOnEvent:
    result: int
    extended_result: int = 0
    steam_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.result == EResult.OK


@dataclass
class LoggedOffEvent:
    result: int


@dataclass
class EncryptedAppTicketResponse:
    """Ticket response; ``job_id`` echoes the request it answers."""
    result: int
    app_id: int
    ticket: Optional[bytes]
    job_id: Optional[int] = None


# Fire-and-forget requests

@dataclass
class EncryptedAppTicketRequest:
    app_id: int
    job_id: int
    user_data: bytes = b""


# Request / response pairs

@dataclass
class CredentialsAuthRequest:
    username: str
    password: str
    authenticator: Optional[Authenticator] = None
    persistent: bool = True


@dataclass
class QRAuthRequest:
    on_challenge: Optional[Callable[[str], None]] = None
    persistent: bool = True


@dataclass
class AuthSessionResult:
    account_name: str
    refresh_token: str


@dataclass
class OwnershipTicketRequest:
    app_id: int


@dataclass
class OwnershipTicketResponse:
    result: int
    ticket: bytes = b""


@dataclass
class AccessTokenRequest:
    app_id: int


@dataclass
class AccessTokenResponse:
    app_tokens: Dict[int, int] = field(default_factory=dict)
    denied: List[int] = field(default_factory=list)


@dataclass
class ProductInfoRequest:
    app_id: int
    access_token: int = 0


@dataclass
class ProductInfoResponse:
    """``apps`` maps app id to its key-value tree as nested dicts."""
    apps: Dict[int, Dict[str, Any]] = field(default_factory=dict)


@dataclass
class DepotKeyRequest:
    app_id: int
    depot_id: int


@dataclass
class DepotKeyResponse:
    result: int
    depot_key: bytes = b""


@dataclass
class CDNServersRequest:
    max_servers: int = 20


@dataclass
class CDNServersResponse:
    servers: List[CDNServer] = field(default_factory=list)


@dataclass
class CDNAuthTokenRequest:
    app_id: int
    depot_id: int
    host: str


@dataclass
class CDNAuthTokenResponse:
    result: int
    token: str = ""
    expiration: int = 0


@dataclass
class ManifestRequestCodeRequest:
    app_id: int
    depot_id: int
    manifest_id: int
    branch: str = constants.DEFAULT_BRANCH


@dataclass
class ManifestRequestCodeResponse:
    code: int
