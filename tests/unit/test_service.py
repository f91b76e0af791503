"""
Unit tests for the SteamDepotService facade.
"""
import pytest

from steam_depot.config import ServiceConfig
from steam_depot.exceptions import NoSavedSessionError, NotLoggedInError
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
    ManifestRequestCodeRequest,
    ManifestRequestCodeResponse,
    OwnershipTicketRequest,
    OwnershipTicketResponse,
    ProductInfoRequest,
    ProductInfoResponse,
)
from steam_depot.models import CDNServer, EResult, Session
from steam_depot.service import SteamDepotService
from steam_depot.storage import MarkerStore

APP_ID = 413150


@pytest.fixture
def service(transport, content_client, session_store, fake_sleep, builder):
    transport.responses.update({
        OwnershipTicketRequest: OwnershipTicketResponse(result=EResult.OK, ticket=b"ticket"),
        AccessTokenRequest: AccessTokenResponse(app_tokens={APP_ID: 42}),
        ProductInfoRequest: ProductInfoResponse(apps={APP_ID: {
            "depots": {
                str(builder.depot_id): {
                    "config": {"oslist": "linux"},
                    "manifests": {"public": {"gid": str(builder.manifest_id)}},
                },
            },
        }}),
        DepotKeyRequest: DepotKeyResponse(result=EResult.OK, depot_key=b"k" * 32),
        CDNServersRequest: CDNServersResponse(servers=[CDNServer(host="cache1.steamcontent.com")]),
        CDNAuthTokenRequest: CDNAuthTokenResponse(result=EResult.OK, token="?token=abc"),
        ManifestRequestCodeRequest: ManifestRequestCodeResponse(code=1122334455),
    })
    svc = SteamDepotService(transport, content_client, session_store, sleep=fake_sleep)
    yield svc
    svc.close()


@pytest.fixture
def logged_in(service):
    service.auth.login_with_token("farmer", "tok")
    return service


def sent(transport, message_type):
    return [m for m in transport.requests if isinstance(m, message_type)]


class TestDownload:
    """Tests for SteamDepotService.download."""

    def test_downloads_and_writes_marker(self, logged_in, builder, content_client, tmp_path):
        builder.add_file("StardewValley.dll", b"x" * 4096, chunk_size=4096)
        target = tmp_path / "game"

        result = logged_in.download(APP_ID, target, "linux")

        assert result.downloaded_files == 1
        assert (target / "StardewValley.dll").read_bytes() == b"x" * 4096
        assert MarkerStore(target).is_current(APP_ID, builder.manifest_id)

    def test_current_marker_skips_all_work(self, logged_in, builder, transport, content_client, tmp_path):
        builder.add_file("StardewValley.dll", b"x" * 4096)
        target = tmp_path / "game"
        logged_in.download(APP_ID, target, "linux")
        marker_bytes = MarkerStore(target).path_for(APP_ID).read_bytes()
        transport.requests.clear()
        manifest_requests = content_client.manifest_requests

        result = logged_in.download(APP_ID, target, "linux")

        assert result is None
        assert content_client.manifest_requests == manifest_requests
        assert sent(transport, DepotKeyRequest) == []
        assert sent(transport, CDNServersRequest) == []
        assert MarkerStore(target).path_for(APP_ID).read_bytes() == marker_bytes

    def test_force_ignores_marker(self, logged_in, builder, content_client, tmp_path):
        builder.add_file("StardewValley.dll", b"x" * 2048, chunk_size=1024)
        target = tmp_path / "game"
        logged_in.download(APP_ID, target, "linux")

        result = logged_in.download(APP_ID, target, "linux", force=True)

        assert result.downloaded_files == 1
        assert len(content_client.downloaded) == 4

    def test_stale_marker_triggers_download(self, logged_in, builder, content_client, tmp_path):
        builder.add_file("StardewValley.dll", b"x" * 1024)
        target = tmp_path / "game"
        logged_in.download(APP_ID, target, "linux")
        marker_path = MarkerStore(target).path_for(APP_ID)
        marker_path.write_text(marker_path.read_text().replace(str(builder.manifest_id), "1"))

        result = logged_in.download(APP_ID, target, "linux")

        assert result is not None
        assert result.skipped_existing == 1

    def test_cdn_selection_reaches_content_client(self, logged_in, builder, transport, tmp_path):
        builder.add_file("a.bin", b"a" * 10)

        logged_in.download(APP_ID, tmp_path / "game", "linux")

        code_request = sent(transport, ManifestRequestCodeRequest)[0]
        assert code_request.depot_id == builder.depot_id
        assert code_request.manifest_id == builder.manifest_id

    def test_requires_login(self, service, tmp_path):
        with pytest.raises(NotLoggedInError):
            service.download(APP_ID, tmp_path / "game", "linux")


class TestLogin:
    """Tests for choosing a login method."""

    def test_saved_session_wins_over_environment_token(self, service, session_store, transport):
        session_store.save(Session(username="saved", refresh_token="saved-token"))

        service.login(ServiceConfig(username="env", refresh_token="env-token"))

        assert len(transport.logons) == 1
        assert transport.logons[0].username == "saved"
        assert transport.logons[0].access_token == "saved-token"

    def test_environment_token_without_saved_session(self, service, transport):
        service.login(ServiceConfig(username="env", refresh_token="env-token", password="hunter2"))

        assert transport.logons[0].username == "env"
        assert transport.logons[0].access_token == "env-token"
        assert sent(transport, CredentialsAuthRequest) == []

    def test_saved_session_before_credentials(self, service, session_store, transport):
        session_store.save(Session(username="saved", refresh_token="saved-token"))

        service.login(ServiceConfig(username="env", password="hunter2"))

        assert transport.logons[0].access_token == "saved-token"
        assert sent(transport, CredentialsAuthRequest) == []

    def test_credentials_from_environment(self, service, session_store, transport):
        transport.responses[CredentialsAuthRequest] = AuthSessionResult(account_name="env", refresh_token="new")

        service.login(ServiceConfig(username="env", password="hunter2"))

        assert sent(transport, CredentialsAuthRequest)[0].password == "hunter2"
        assert transport.logons[0].access_token == "new"
        assert session_store.load().refresh_token == "new"

    def test_token_without_username_is_not_enough(self, service):
        with pytest.raises(NoSavedSessionError):
            service.login(ServiceConfig(refresh_token="env-token"))

    def test_nothing_available(self, service):
        with pytest.raises(NoSavedSessionError, match="Run 'setup' first"):
            service.login(ServiceConfig())


class TestTickets:
    def test_requires_login(self, service):
        with pytest.raises(NotLoggedInError):
            service.get_app_ticket(APP_ID)
