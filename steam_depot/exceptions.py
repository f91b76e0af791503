"""
Exceptions raised by steam_depot so callers can map failures to exit codes.
"""

from typing import Any, List, Optional

from steam_depot.models import describe_result


class SteamDepotError(Exception):
    """Base exception for all steam_depot errors."""


# Connectivity

class TransportError(SteamDepotError):
    """Raised when the platform connection fails or drops mid-operation."""


class ConnectionFailedError(TransportError):
    """Raised when a connection to the platform could not be established."""


# Authentication

class AuthenticationError(SteamDepotError):
    """Raised when an interactive authentication session fails."""


class LoginFailedError(AuthenticationError):
    """Raised when token login failed on every attempt."""

    def __init__(self, attempts: int):
        super().__init__(f"Login failed after {attempts} attempts")
        self.attempts = attempts


class NoSavedSessionError(AuthenticationError):
    """Raised when a saved session is required but none exists."""


class NotLoggedInError(SteamDepotError):
    """Raised when an operation requires an active login."""


# Tickets

class TicketError(SteamDepotError):
    """Base class for encrypted app ticket failures."""


class TicketTimeoutError(TicketError):
    """Raised when no ticket response arrived in time."""


class TicketEmptyError(TicketError):
    """Raised when the platform answered OK with an empty ticket."""


class TicketDeniedError(TicketError):
    """Raised when the platform refused to issue a ticket."""

    def __init__(self, result: int, message: Optional[str] = None):
        super().__init__(message or f"Failed to get encrypted app ticket: {describe_result(result)}")
        self.result = result


# Authorization

class LicenseDeniedError(SteamDepotError):
    """Raised when the account does not own the application."""


class DepotKeyDeniedError(SteamDepotError):
    """Raised when the depot decryption key is refused."""

    def __init__(self, depot_id: int, result: int):
        super().__init__(f"Failed to get depot key for {depot_id}: {describe_result(result)}")
        self.depot_id = depot_id
        self.result = result


# Protocol / data

class ProductInfoError(SteamDepotError):
    """Raised when product metadata is missing or malformed."""


class DepotNotFoundError(SteamDepotError):
    """Raised when no depot matches the requested target OS."""


class ManifestNotFoundError(SteamDepotError):
    """Raised when a depot has no usable public manifest reference."""

    def __init__(self, message: str, raw: Any = None):
        super().__init__(message)
        self.raw = raw


class ManifestDecodeError(SteamDepotError):
    """Raised when a downloaded manifest cannot be decoded."""


class NoCDNServersError(SteamDepotError):
    """Raised when the platform returned no CDN edge servers."""


# Integrity

class ChunkDownloadError(SteamDepotError):
    """Raised when a chunk could not be fetched after every retry attempt."""


class FileIntegrityError(SteamDepotError):
    """Raised when a written file fails post-download checksum validation."""


class DownloadIncompleteError(SteamDepotError):
    """Raised after a depot download when one or more files failed."""

    def __init__(self, failures: List[Any]):
        super().__init__(f"{len(failures)} file(s) failed to download")
        self.failures = failures


# Resource

class DiskWriteError(SteamDepotError):
    """Raised when writing depot content to disk fails."""
