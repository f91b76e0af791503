"""
Unit tests for encrypted app ticket retrieval.
"""
import pytest

from steam_depot.auth import AuthManager
from steam_depot.exceptions import NotLoggedInError, TicketDeniedError, TicketEmptyError, TicketTimeoutError
from steam_depot.messages import EncryptedAppTicketResponse
from steam_depot.models import EResult
from steam_depot.tickets import TicketService

APP_ID = 413150


@pytest.fixture
def auth(connection, session_store, fake_sleep):
    manager = AuthManager(connection, session_store, sleep=fake_sleep)
    manager.login_with_token("farmer", "tok")
    return manager


@pytest.fixture
def tickets(connection, auth):
    return TicketService(connection, auth, timeout=0.5)


def reply(result=EResult.OK, ticket=b"encrypted-ticket"):
    """Answer each ticket request with the given result."""
    def on_send(message):
        return [EncryptedAppTicketResponse(result=result, app_id=message.app_id, ticket=ticket,
                                           job_id=message.job_id)]
    return on_send


class TestTicketService:
    """Tests for TicketService."""

    def test_get_ticket(self, tickets, transport):
        transport.on_send = reply()

        ticket = tickets.get_app_ticket(APP_ID)

        assert ticket.app_id == APP_ID
        assert ticket.data == b"encrypted-ticket"
        assert transport.sent[0].app_id == APP_ID

    def test_requires_login(self, connection, session_store):
        auth = AuthManager(connection, session_store)
        service = TicketService(connection, auth)

        with pytest.raises(NotLoggedInError):
            service.get_app_ticket(APP_ID)

    def test_timeout(self, tickets, transport):
        transport.on_send = lambda message: []

        with pytest.raises(TicketTimeoutError):
            tickets.get_app_ticket(APP_ID)

    def test_denied(self, tickets, transport):
        transport.on_send = reply(result=EResult.ACCESS_DENIED)

        with pytest.raises(TicketDeniedError) as excinfo:
            tickets.get_app_ticket(APP_ID)

        assert excinfo.value.result == EResult.ACCESS_DENIED
        assert "ACCESS_DENIED" in str(excinfo.value)

    @pytest.mark.parametrize("ticket", [b"", None])
    def test_empty(self, tickets, transport, ticket):
        transport.on_send = reply(ticket=ticket)

        with pytest.raises(TicketEmptyError):
            tickets.get_app_ticket(APP_ID)

    def test_late_response_does_not_resolve_next_request(self, tickets, transport):
        transport.on_send = lambda message: []
        with pytest.raises(TicketTimeoutError):
            tickets.get_app_ticket(APP_ID)
        first_job = transport.sent[0].job_id

        # Request B only ever sees A's late response
        transport.on_send = lambda message: [EncryptedAppTicketResponse(
            result=EResult.OK, app_id=APP_ID, ticket=b"ticket-A", job_id=first_job)]

        with pytest.raises(TicketTimeoutError):
            tickets.get_app_ticket(APP_ID)

    def test_late_response_ignored_before_matching_one(self, tickets, transport):
        transport.on_send = lambda message: []
        with pytest.raises(TicketTimeoutError):
            tickets.get_app_ticket(APP_ID)
        first_job = transport.sent[0].job_id

        def late_then_current(message):
            return [
                EncryptedAppTicketResponse(result=EResult.OK, app_id=APP_ID, ticket=b"ticket-A", job_id=first_job),
                EncryptedAppTicketResponse(result=EResult.OK, app_id=APP_ID, ticket=b"ticket-B",
                                           job_id=message.job_id),
            ]

        transport.on_send = late_then_current

        assert tickets.get_app_ticket(APP_ID).data == b"ticket-B"
        assert transport.sent[1].job_id != first_job
