"""
Steam Depot - Steam authentication, app tickets and resumable depot downloads

Logs in to Steam with a saved refresh token (or interactively), fetches
encrypted app tickets, and keeps a local copy of an app's depot in sync with
its current manifest, validating every chunk checksum.
"""

__version__ = "0.1.0"
__author__ = "steam-depot Contributors"
__license__ = "MIT"

from steam_depot.auth import AuthManager
from steam_depot.cdn import CDNSelector, ContentClient
from steam_depot.config import ServiceConfig
from steam_depot.downloader import DepotDownloader
from steam_depot.models import AppTicket, DepotChunk, DepotFile, DepotManifest, DownloadMarker, Session
from steam_depot.resolver import ManifestResolver
from steam_depot.service import SteamDepotService
from steam_depot.storage import MarkerStore, SessionStore
from steam_depot.tickets import TicketService
from steam_depot.transport import PlatformConnection, SingleFlightSlot, Transport

__all__ = [
    "AuthManager",
    "CDNSelector",
    "ContentClient",
    "ServiceConfig",
    "DepotDownloader",
    "AppTicket",
    "DepotChunk",
    "DepotFile",
    "DepotManifest",
    "DownloadMarker",
    "Session",
    "ManifestResolver",
    "SteamDepotService",
    "MarkerStore",
    "SessionStore",
    "TicketService",
    "PlatformConnection",
    "SingleFlightSlot",
    "Transport",
]
