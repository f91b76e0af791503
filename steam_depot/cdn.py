"""
CDN edge selection and the content client interface
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from steam_depot import constants
from steam_depot.exceptions import NoCDNServersError, TransportError
from steam_depot.messages import CDNAuthTokenRequest, CDNServersRequest, ManifestRequestCodeRequest
from steam_depot.models import CDNSelection, CDNServer, DepotChunk, DepotManifest, EResult, describe_result
from steam_depot.transport import PlatformConnection


class ContentClient(ABC):
    """Fetches manifests and chunks from a selected CDN edge."""

    @abstractmethod
    def download_manifest(self, depot_id: int, manifest_id: int, selection: CDNSelection,
                          depot_key: bytes) -> DepotManifest:
        """
        Download and decode a depot manifest.

        Raises:
            TransportError: On network failure
            ManifestDecodeError: If the manifest cannot be decoded
        """

    @abstractmethod
    def download_chunk(self, depot_id: int, chunk: DepotChunk, selection: CDNSelection,
                       depot_key: bytes) -> bytes:
        """
        Download, decrypt and decompress one chunk.

        Raises:
            TransportError: On network failure
            ChunkDownloadError: If the payload cannot be decoded
        """


class CDNSelector:
    """
    Picks a CDN edge and obtains the codes needed to fetch a manifest from it.
    """

    def __init__(self, connection: PlatformConnection, max_candidates: int = constants.CDN_MAX_CANDIDATES,
                 request_timeout: float = constants.DEFAULT_TIMEOUT):
        self.logger = logging.getLogger("steam_depot.cdn")
        self.connection = connection
        self.max_candidates = max_candidates
        self.request_timeout = request_timeout

    def select(self, app_id: int, depot_id: int, manifest_id: int,
               branch: str = constants.DEFAULT_BRANCH) -> CDNSelection:
        """
        Select a CDN edge for a depot manifest.

        Up to ``max_candidates`` servers are asked for a CDN auth token; the
        first to grant one wins. If none does, the first server is used
        without a token.

        Raises:
            NoCDNServersError: If the platform returned no servers
        """
        servers = self.get_servers()
        server, auth_token = self._probe(app_id, depot_id, servers[:self.max_candidates])
        request_code = self.get_request_code(app_id, depot_id, manifest_id, branch)

        self.logger.info(f"Using CDN server {server.host}" + (" (with auth token)" if auth_token else ""))
        return CDNSelection(server=server, request_code=request_code, auth_token=auth_token)

    def get_servers(self) -> List[CDNServer]:
        response = self.connection.call(CDNServersRequest(), timeout=self.request_timeout)
        if not response.servers:
            raise NoCDNServersError("No CDN servers available")
        self.logger.debug(f"Got {len(response.servers)} CDN server(s)")
        return list(response.servers)

    def _probe(self, app_id: int, depot_id: int,
               candidates: List[CDNServer]) -> Tuple[CDNServer, Optional[str]]:
        for server in candidates:
            try:
                response = self.connection.call(
                    CDNAuthTokenRequest(app_id=app_id, depot_id=depot_id, host=server.host),
                    timeout=self.request_timeout)
            except TransportError as e:
                self.logger.debug(f"CDN auth token request for {server.host} failed: {e}")
                continue

            if response.result == EResult.OK:
                return server, response.token or None
            self.logger.debug(f"CDN auth token for {server.host}: {describe_result(response.result)}")

        self.logger.warning(f"No CDN auth token granted, using {candidates[0].host} without one")
        return candidates[0], None

    def get_request_code(self, app_id: int, depot_id: int, manifest_id: int,
                         branch: str = constants.DEFAULT_BRANCH) -> int:
        response = self.connection.call(
            ManifestRequestCodeRequest(app_id=app_id, depot_id=depot_id, manifest_id=manifest_id, branch=branch),
            timeout=self.request_timeout)
        if not response.code:
            self.logger.warning(f"No manifest request code for depot {depot_id} manifest {manifest_id}")
        return response.code
