"""
Steam network adapter

Implements the transport on top of ValvePython's ``steam`` client and the
content client on top of ``requests`` against Steam CDN edges.

Requires: pip install steam-depot[steam]
"""

import base64
import logging
import lzma
import struct
import zlib
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional
from zipfile import BadZipFile, ZipFile

import requests

try:
    import vdf
    import zstandard
    from google.protobuf.message import DecodeError
    from steam.client import SteamClient
    from steam.core.crypto import pkcs1v15_encrypt, rsa_publickey, symmetric_decrypt
    from steam.core.manifest import DepotManifest as SteamDepotManifest
    from steam.core.msg import MsgProto
    from steam.enums import EOSType
    from steam.enums.emsg import EMsg
    from steam.exceptions import SteamError
    from steam.steamid import SteamID
except ImportError:
    raise ImportError(
        "The steam package is required for the Steam network adapter.\n"
        "Install with: pip install steam-depot[steam]"
    )

from steam_depot import __version__, constants, utils
from steam_depot.cdn import ContentClient
from steam_depot.exceptions import AuthenticationError, ChunkDownloadError, ManifestDecodeError, TransportError
from steam_depot.messages import (
    AccessTokenRequest,
    AccessTokenResponse,
    AuthSessionResult,
    CDNAuthTokenRequest,
    CDNAuthTokenResponse,
    CDNServersRequest,
    CDNServersResponse,
    CredentialsAuthRequest,
    DepotKeyRequest,
    DepotKeyResponse,
    DisconnectedEvent,
    EncryptedAppTicketRequest,
    EncryptedAppTicketResponse,
    LoggedOffEvent,
    LoggedOnEvent,
    LogOnDetails,
    ManifestRequestCodeRequest,
    ManifestRequestCodeResponse,
    OwnershipTicketRequest,
    OwnershipTicketResponse,
    ProductInfoRequest,
    ProductInfoResponse,
    QRAuthRequest,
)
from steam_depot.models import CDNSelection, CDNServer, DepotChunk, DepotFile, DepotManifest, EResult, describe_result
from steam_depot.transport import Transport

# ClientLogon protocol fields, as sent by SteamClient.login
PROTOCOL_VERSION = 65580
CLIENT_PACKAGE_VERSION = 1561159470

# EAuthTokenPlatformType.SteamClient / ESessionPersistence.Persistent
PLATFORM_TYPE_STEAM_CLIENT = 1
SESSION_PERSISTENT = 1

# EAuthSessionGuardType
GUARD_NONE = 1
GUARD_EMAIL_CODE = 2
GUARD_DEVICE_CODE = 3
GUARD_DEVICE_CONFIRMATION = 4
GUARD_EMAIL_CONFIRMATION = 5

DEVICE_FRIENDLY_NAME = "steam-depot"
CDN_SERVER_TYPES = ("CDN", "SteamCache")


def decode_chunk(data: bytes) -> bytes:
    """
    Decompress a decrypted chunk payload.

    Handles VZip (LZMA), VSZip (zstd) and plain zip payloads.

    Raises:
        ValueError: If the payload is malformed or its CRC does not match
    """
    if data[:3] == b"VZa":
        if data[-2:] != b"zv":
            raise ValueError(f"VZ: invalid footer {data[-2:]!r}")
        vzfilter = lzma._decode_filter_properties(lzma.FILTER_LZMA1, data[7:12])
        decompressor = lzma.LZMADecompressor(lzma.FORMAT_RAW, filters=[vzfilter])
        checksum, decompressed_size = struct.unpack("<II", data[-10:-2])
        # Raw LZMA may over- or under-run; slice both ends to the recorded size
        data = decompressor.decompress(data[12:-9])[:decompressed_size]
        if zlib.crc32(data) != checksum:
            raise ValueError("VZ: CRC32 checksum doesn't match for decompressed data")
        return data

    if data[:4] == b"VSZa":
        checksum, decompressed_size = struct.unpack("<II", data[-15:-7])
        data = zstandard.ZstdDecompressor().decompress(data[8:-15], max_output_size=decompressed_size)
        data = data[:decompressed_size]
        if zlib.crc32(data) != checksum:
            raise ValueError("VSZ: CRC32 checksum doesn't match for decompressed data")
        return data

    with ZipFile(BytesIO(data)) as zf:
        return zf.read(zf.filelist[0])


class SteamClientTransport(Transport):
    """
    Transport backed by ``steam.client.SteamClient``.

    The client runs on gevent; every method here is called from the
    connection's pump thread, and ``poll`` yields to gevent so the client's
    greenlets (socket reader, heartbeat, event handlers) make progress.
    """

    def __init__(self, client: Optional[SteamClient] = None, request_timeout: float = constants.DEFAULT_TIMEOUT):
        self.logger = logging.getLogger("steam_depot.steam_transport")
        self.client = client or SteamClient()
        self.request_timeout = request_timeout
        self._events: List[Any] = []
        self._disconnecting = False

        self.client.on(SteamClient.EVENT_DISCONNECTED, self._handle_disconnected)
        self.client.on(EMsg.ClientLogOnResponse, self._handle_logon_response)
        self.client.on(EMsg.ClientLoggedOff, self._handle_logged_off)

        self._handlers: Dict[type, Callable[[Any], Any]] = {
            CredentialsAuthRequest: self._auth_with_credentials,
            QRAuthRequest: self._auth_with_qr,
            OwnershipTicketRequest: self._get_ownership_ticket,
            AccessTokenRequest: self._get_access_tokens,
            ProductInfoRequest: self._get_product_info,
            DepotKeyRequest: self._get_depot_key,
            CDNServersRequest: self._get_cdn_servers,
            CDNAuthTokenRequest: self._get_cdn_auth_token,
            ManifestRequestCodeRequest: self._get_manifest_request_code,
        }

    # ========== Event handlers (gevent greenlets) ==========

    def _handle_disconnected(self, *args) -> None:
        self._events.append(DisconnectedEvent(user_initiated=self._disconnecting))

    def _handle_logon_response(self, msg) -> None:
        self._events.append(LoggedOnEvent(
            result=int(msg.body.eresult),
            extended_result=int(msg.body.eresult_extended),
            steam_id=int(msg.header.steamid) or None,
        ))

    def _handle_logged_off(self, msg) -> None:
        self._events.append(LoggedOffEvent(result=int(msg.body.eresult)))

    def _handle_ticket_response(self, msg, job_id: int) -> None:
        body = msg.body
        ticket = None
        if body.HasField("encrypted_app_ticket"):
            ticket = body.encrypted_app_ticket.SerializeToString()
        self._events.append(EncryptedAppTicketResponse(
            result=int(body.eresult), app_id=body.app_id, ticket=ticket, job_id=job_id))

    # ========== Transport ==========

    @property
    def is_connected(self) -> bool:
        return bool(self.client.connected)

    def connect(self) -> bool:
        return bool(self.client.connect(retry=3))

    def disconnect(self) -> None:
        self._disconnecting = True
        try:
            if self.client.logged_on:
                self.client.logout()
            self.client.disconnect()
        finally:
            self._disconnecting = False

    def poll(self, timeout: float) -> List[Any]:
        self.client.sleep(timeout)
        events, self._events = self._events, []
        return events

    def send_log_on(self, details: LogOnDetails) -> None:
        message = MsgProto(EMsg.ClientLogon)
        if "access_token" not in message.body.DESCRIPTOR.fields_by_name:
            raise TransportError("Installed steam protobufs do not support refresh token logon")

        message.header.steamid = self._token_steam_id(details.access_token)
        message.body.protocol_version = PROTOCOL_VERSION
        message.body.client_package_version = CLIENT_PACKAGE_VERSION
        message.body.client_os_type = EOSType.Windows10
        message.body.client_language = "english"
        message.body.should_remember_password = details.should_remember_password
        message.body.supports_rate_limit_response = True
        message.body.account_name = details.username
        message.body.access_token = details.access_token

        self.client.username = details.username
        self.client.send(message)

    def send(self, message: Any) -> None:
        if not isinstance(message, EncryptedAppTicketRequest):
            raise TransportError(f"Unsupported message: {type(message).__name__}")

        msg = MsgProto(EMsg.ClientRequestEncryptedAppTicket)
        msg.body.app_id = message.app_id
        msg.body.userdata = message.user_data
        steam_job = self.client.send_job(msg)
        self.client.once(steam_job, lambda response: self._handle_ticket_response(response, message.job_id))

    def request(self, message: Any) -> Any:
        handler = self._handlers.get(type(message))
        if handler is None:
            raise TransportError(f"Unsupported request: {type(message).__name__}")
        return handler(message)

    # ========== Helpers ==========

    @staticmethod
    def _token_steam_id(token: str) -> int:
        try:
            return int(utils.decode_token_claims(token)["sub"])
        except (ValueError, KeyError, TypeError):
            return SteamID(type="Individual", universe="Public")

    def _call_um(self, method: str, params: Dict[str, Any], error_class=TransportError):
        response = self.client.send_um_and_wait(method, params, timeout=self.request_timeout)
        if response is None:
            raise error_class(f"Timed out waiting for {method}")
        if response.header.eresult != EResult.OK:
            raise error_class(f"{method} failed: {describe_result(response.header.eresult)}")
        return response

    def _call_job(self, emsg, params: Dict[str, Any]):
        body = self.client.send_job_and_wait(MsgProto(emsg), params, timeout=self.request_timeout)
        if body is None:
            raise TransportError(f"Timed out waiting for {emsg!r}")
        return body

    # ========== Auth sessions ==========

    def _device_details(self) -> Dict[str, Any]:
        return {"device_friendly_name": DEVICE_FRIENDLY_NAME, "platform_type": PLATFORM_TYPE_STEAM_CLIENT}

    def _auth_with_credentials(self, request: CredentialsAuthRequest) -> AuthSessionResult:
        key = self._call_um("Authentication.GetPasswordRSAPublicKey#1",
                            {"account_name": request.username}, AuthenticationError)
        public_key = rsa_publickey(int(key.body.publickey_mod, 16), int(key.body.publickey_exp, 16))
        encrypted = base64.b64encode(pkcs1v15_encrypt(public_key, request.password.encode("utf-8")))

        begin = self._call_um("Authentication.BeginAuthSessionViaCredentials#1", {
            "account_name": request.username,
            "encrypted_password": encrypted.decode("ascii"),
            "encryption_timestamp": key.body.timestamp,
            "remember_login": request.persistent,
            "persistence": SESSION_PERSISTENT if request.persistent else 0,
            "website_id": "Client",
            "device_details": self._device_details(),
        }, AuthenticationError)

        self._confirm_guard(begin.body, request)
        return self._poll_auth_session(begin.body.client_id, begin.body.request_id, begin.body.interval)

    def _confirm_guard(self, body, request: CredentialsAuthRequest) -> None:
        confirmations = {c.confirmation_type: c.associated_message for c in body.allowed_confirmations}
        if not confirmations or GUARD_NONE in confirmations:
            return

        authenticator = request.authenticator
        if authenticator is None:
            raise AuthenticationError("Steam Guard confirmation required but no authenticator is available")

        if GUARD_DEVICE_CONFIRMATION in confirmations and authenticator.accept_device_confirmation():
            self.logger.info("Waiting for login approval in the Steam mobile app...")
            return

        if GUARD_DEVICE_CODE in confirmations:
            prompt = authenticator.get_device_code
            code_type = GUARD_DEVICE_CODE
        elif GUARD_EMAIL_CODE in confirmations:
            email = confirmations[GUARD_EMAIL_CODE]
            prompt = lambda incorrect: authenticator.get_email_code(email, incorrect)  # noqa: E731
            code_type = GUARD_EMAIL_CODE
        elif GUARD_EMAIL_CONFIRMATION in confirmations:
            self.logger.info("Waiting for login approval by email...")
            return
        else:
            raise AuthenticationError(f"Unsupported Steam Guard confirmation: {sorted(confirmations)}")

        incorrect = False
        while True:
            response = self.client.send_um_and_wait("Authentication.UpdateAuthSessionWithSteamGuardCode#1", {
                "client_id": body.client_id,
                "steamid": body.steamid,
                "code": prompt(incorrect).strip(),
                "code_type": code_type,
            }, timeout=self.request_timeout)
            if response is None:
                raise AuthenticationError("Timed out submitting Steam Guard code")

            result = response.header.eresult
            if result == EResult.OK:
                return
            if result in (EResult.INVALID_LOGIN_AUTH_CODE, EResult.TWO_FACTOR_CODE_MISMATCH):
                self.logger.warning("Steam Guard code was incorrect")
                incorrect = True
                continue
            raise AuthenticationError(f"Steam Guard code rejected: {describe_result(result)}")

    def _auth_with_qr(self, request: QRAuthRequest) -> AuthSessionResult:
        begin = self._call_um("Authentication.BeginAuthSessionViaQR#1", {
            "website_id": "Client",
            "device_details": self._device_details(),
        }, AuthenticationError)

        if request.on_challenge:
            request.on_challenge(begin.body.challenge_url)
        return self._poll_auth_session(begin.body.client_id, begin.body.request_id,
                                       begin.body.interval, request.on_challenge)

    def _poll_auth_session(self, client_id: int, request_id: bytes, interval: float,
                           on_challenge: Optional[Callable[[str], None]] = None) -> AuthSessionResult:
        while True:
            response = self._call_um("Authentication.PollAuthSessionStatus#1",
                                     {"client_id": client_id, "request_id": request_id}, AuthenticationError)
            body = response.body
            if body.new_client_id:
                client_id = body.new_client_id
            if body.new_challenge_url and on_challenge:
                on_challenge(body.new_challenge_url)
            if body.refresh_token:
                self.logger.info(f"Auth session approved for {body.account_name}")
                return AuthSessionResult(account_name=body.account_name, refresh_token=body.refresh_token)
            self.client.sleep(interval or 5)

    # ========== Apps and content ==========

    def _get_ownership_ticket(self, request: OwnershipTicketRequest) -> OwnershipTicketResponse:
        body = self._call_job(EMsg.ClientGetAppOwnershipTicket, {"app_id": request.app_id})
        return OwnershipTicketResponse(result=int(body.eresult), ticket=bytes(body.ticket))

    def _get_access_tokens(self, request: AccessTokenRequest) -> AccessTokenResponse:
        tokens = self.client.get_access_tokens(app_ids=[request.app_id])
        if tokens is None:
            raise TransportError("Timed out waiting for PICS access tokens")
        return AccessTokenResponse(app_tokens=dict(tokens.get("apps", {})),
                                   denied=list(tokens.get("apps_denied", [])))

    def _get_product_info(self, request: ProductInfoRequest) -> ProductInfoResponse:
        msg = MsgProto(EMsg.ClientPICSProductInfoRequest)
        app = msg.body.apps.add()
        app.appid = request.app_id
        if request.access_token:
            app.access_token = request.access_token

        response = self.client.wait_event(self.client.send_job(msg), timeout=self.request_timeout)
        if not response:
            raise TransportError("Timed out waiting for product info")

        apps = {}
        for app_info in response[0].body.apps:
            if not app_info.buffer:
                continue
            apps[app_info.appid] = vdf.loads(app_info.buffer[:-1].decode("utf-8", "replace"))["appinfo"]
        return ProductInfoResponse(apps=apps)

    def _get_depot_key(self, request: DepotKeyRequest) -> DepotKeyResponse:
        body = self._call_job(EMsg.ClientGetDepotDecryptionKey,
                              {"depot_id": request.depot_id, "app_id": request.app_id})
        return DepotKeyResponse(result=int(body.eresult), depot_key=bytes(body.depot_encryption_key))

    def _get_cdn_servers(self, request: CDNServersRequest) -> CDNServersResponse:
        response = self._call_um("ContentServerDirectory.GetServersForSteamPipe#1",
                                 {"cell_id": self.client.cell_id or 0, "max_servers": request.max_servers})
        servers = []
        for server in response.body.servers:
            if server.type not in CDN_SERVER_TYPES:
                continue
            https = server.https_support == "mandatory"
            servers.append(CDNServer(host=server.host, port=443 if https else 80, https=https,
                                     vhost=server.vhost, type=server.type))
        return CDNServersResponse(servers=servers)

    def _get_cdn_auth_token(self, request: CDNAuthTokenRequest) -> CDNAuthTokenResponse:
        response = self.client.send_um_and_wait("ContentServerDirectory.GetCDNAuthToken#1", {
            "app_id": request.app_id,
            "depot_id": request.depot_id,
            "host_name": request.host,
        }, timeout=self.request_timeout)
        if response is None:
            raise TransportError(f"Timed out waiting for CDN auth token for {request.host}")
        return CDNAuthTokenResponse(result=int(response.header.eresult), token=response.body.token,
                                    expiration=response.body.expiration_time)

    def _get_manifest_request_code(self, request: ManifestRequestCodeRequest) -> ManifestRequestCodeResponse:
        response = self._call_um("ContentServerDirectory.GetManifestRequestCode#1", {
            "app_id": request.app_id,
            "depot_id": request.depot_id,
            "manifest_id": request.manifest_id,
            "app_branch": request.branch,
        })
        return ManifestRequestCodeResponse(code=response.body.manifest_request_code)


class SteamCDNContentClient(ContentClient):
    """
    Fetches depot manifests and chunks from Steam CDN edges over HTTP.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = constants.DEFAULT_TIMEOUT):
        self.logger = logging.getLogger("steam_depot.steam_transport")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": constants.USER_AGENT.format(version=__version__)
        })

    def _get(self, selection: CDNSelection, path: str) -> bytes:
        url = f"{selection.server.base_url}/depot/{path}"
        if selection.auth_token:
            token = selection.auth_token
            url += token if token.startswith("?") else f"?{token}"

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"CDN request for {path} failed: {e}") from e
        return response.content

    def download_manifest(self, depot_id: int, manifest_id: int, selection: CDNSelection,
                          depot_key: bytes) -> DepotManifest:
        path = f"{depot_id}/manifest/{manifest_id}/5"
        if selection.request_code:
            path += f"/{selection.request_code}"
        data = self._get(selection, path)

        try:
            manifest = SteamDepotManifest(data)
            if manifest.filenames_encrypted:
                manifest.decrypt_filenames(depot_key)
        except (ValueError, RuntimeError, BadZipFile, DecodeError, SteamError) as e:
            raise ManifestDecodeError(f"Failed to decode manifest {manifest_id}: {e}") from e

        files = []
        for mapping in manifest.payload.mappings:
            chunks = sorted(mapping.chunks, key=lambda c: c.offset)
            files.append(DepotFile(
                path=mapping.filename.rstrip("\x00 \n\t"),
                total_size=mapping.size,
                flags=mapping.flags,
                chunks=tuple(DepotChunk(
                    chunk_id=chunk.sha.hex(),
                    offset=chunk.offset,
                    uncompressed_length=chunk.cb_original,
                    checksum=chunk.crc,
                    compressed_length=chunk.cb_compressed,
                ) for chunk in chunks),
            ))

        self.logger.debug(f"Decoded manifest {manifest_id}: {len(files)} entries")
        return DepotManifest(depot_id=depot_id, manifest_id=manifest_id, files=tuple(files))

    def download_chunk(self, depot_id: int, chunk: DepotChunk, selection: CDNSelection,
                       depot_key: bytes) -> bytes:
        data = self._get(selection, f"{depot_id}/chunk/{chunk.chunk_id}")
        try:
            return decode_chunk(symmetric_decrypt(data, depot_key))
        except (ValueError, BadZipFile, lzma.LZMAError, zstandard.ZstdError, struct.error, IndexError) as e:
            raise ChunkDownloadError(f"Failed to decode chunk {chunk.chunk_id}: {e}") from e
