"""
High level facade tying login, tickets and depot downloads together
"""

import logging
import time
from pathlib import Path
from typing import Callable, Optional

from steam_depot import constants
from steam_depot.auth import AuthManager
from steam_depot.cdn import CDNSelector, ContentClient
from steam_depot.config import ServiceConfig
from steam_depot.downloader import DepotDownloader
from steam_depot.exceptions import NoSavedSessionError, NotLoggedInError
from steam_depot.models import AppTicket, DownloadProgress, DownloadResult, ResolvedManifest
from steam_depot.resolver import ManifestResolver
from steam_depot.storage import MarkerStore, SessionStore
from steam_depot.tickets import TicketService
from steam_depot.transport import PlatformConnection, Transport


class SteamDepotService:
    """
    Steam client for app tickets and depot downloads.

    Example:
        service = SteamDepotService.from_config(ServiceConfig.from_env())
        service.login(config)
        service.download(413150, "/data/game")
    """

    def __init__(self, transport: Transport, content_client: ContentClient, session_store: SessionStore,
                 sleep: Callable[[float], None] = time.sleep,
                 progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
                 max_workers: int = 1):
        self.logger = logging.getLogger("steam_depot.service")
        self.connection = PlatformConnection(transport)
        self.session_store = session_store
        self.auth = AuthManager(self.connection, session_store, sleep=sleep)
        self.tickets = TicketService(self.connection, self.auth)
        self.resolver = ManifestResolver(self.connection)
        self.cdn = CDNSelector(self.connection)
        self.downloader = DepotDownloader(content_client, sleep=sleep,
                                          progress_callback=progress_callback, max_workers=max_workers)

    @classmethod
    def from_config(cls, config: ServiceConfig,
                    progress_callback: Optional[Callable[[DownloadProgress], None]] = None) -> "SteamDepotService":
        """Build a service talking to Steam (requires the ``steam`` extra)."""
        from steam_depot.steam_transport import SteamCDNContentClient, SteamClientTransport

        return cls(
            transport=SteamClientTransport(),
            content_client=SteamCDNContentClient(),
            session_store=SessionStore(config.session_dir),
            progress_callback=progress_callback,
            max_workers=config.download_workers,
        )

    def login(self, config: ServiceConfig) -> None:
        """
        Log in using whatever the configuration and saved sessions offer.

        Priority: the saved session, then refresh token and username from
        the environment, then username and password from the environment.

        Raises:
            NoSavedSessionError: If no login method is available
        """
        if self.session_store.has_saved_session():
            self.auth.login_with_saved_session()
        elif config.refresh_token and config.username:
            self.logger.info("Using refresh token from environment")
            self.auth.login_with_token(config.username, config.refresh_token)
        elif config.username and config.password:
            self.logger.info("Using credentials from environment")
            self.auth.login_with_credentials(config.username, config.password)
        else:
            raise NoSavedSessionError(
                "No saved session found. Run 'setup' first, or set STEAM_REFRESH_TOKEN "
                "and STEAM_USERNAME, or STEAM_USERNAME and STEAM_PASSWORD")

    def get_app_ticket(self, app_id: int = constants.DEFAULT_APP_ID) -> AppTicket:
        return self.tickets.get_app_ticket(app_id)

    def download(self, app_id: int, target_dir, target_os: str = constants.DEFAULT_TARGET_OS,
                 force: bool = False, branch: str = constants.DEFAULT_BRANCH) -> Optional[DownloadResult]:
        """
        Bring ``target_dir`` up to date with the app's current manifest.

        Returns:
            DownloadResult, or None if the download marker shows the
            directory already holds the current manifest
        """
        if not self.auth.is_logged_in:
            raise NotLoggedInError("Not logged in")

        target_dir = Path(target_dir)
        depot_id, manifest_id = self.resolver.locate_manifest(app_id, target_os, branch)

        if force:
            self.logger.info("Forced re-download requested, ignoring download marker")
        elif MarkerStore(target_dir).is_current(app_id, manifest_id):
            self.logger.info(f"Already up to date (manifest: {manifest_id})")
            return None

        resolved = ResolvedManifest(
            app_id=app_id,
            depot_id=depot_id,
            manifest_id=manifest_id,
            depot_key=self.resolver.get_depot_key(app_id, depot_id),
            target_os=target_os,
        )
        selection = self.cdn.select(app_id, resolved.depot_id, resolved.manifest_id, branch)
        return self.downloader.download_depot(
            app_id=app_id,
            depot_id=resolved.depot_id,
            manifest_id=resolved.manifest_id,
            selection=selection,
            depot_key=resolved.depot_key,
            target_dir=target_dir,
            target_os=target_os,
            force=force,
        )

    def close(self) -> None:
        self.auth.disconnect()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
