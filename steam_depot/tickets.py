"""
Encrypted app ticket retrieval
"""

import logging
from concurrent.futures import Future, wait

from steam_depot import constants
from steam_depot.auth import AuthManager
from steam_depot.exceptions import NotLoggedInError, TicketDeniedError, TicketEmptyError, TicketTimeoutError
from steam_depot.messages import EncryptedAppTicketRequest, EncryptedAppTicketResponse
from steam_depot.models import AppTicket, EResult, describe_result
from steam_depot.transport import PlatformConnection, SingleFlightSlot


class TicketService:
    """
    Requests encrypted app tickets for the logged-in account.

    Only one ticket request is tracked at a time; a second concurrent request
    replaces the first, which then times out.
    """

    def __init__(self, connection: PlatformConnection, auth: AuthManager,
                 timeout: float = constants.TICKET_TIMEOUT):
        self.logger = logging.getLogger("steam_depot.tickets")
        self.connection = connection
        self.auth = auth
        self.timeout = timeout
        self._slot = SingleFlightSlot("app ticket")
        connection.subscribe(EncryptedAppTicketResponse, self._on_ticket_response)

    def _on_ticket_response(self, response: EncryptedAppTicketResponse) -> None:
        self._slot.resolve(response, key=response.job_id)

    def _forward_send_error(self, sent: Future, job_id: int) -> None:
        error = sent.exception()
        if error is not None:
            self._slot.fail(error, key=job_id)

    def get_app_ticket(self, app_id: int) -> AppTicket:
        """
        Request an encrypted app ticket.

        Args:
            app_id: Application the ticket is for

        Returns:
            The ticket bytes wrapped in an AppTicket

        Raises:
            NotLoggedInError: If there is no active login
            TicketTimeoutError: If no response arrived within the timeout
            TicketDeniedError: If the platform answered with a non-OK result
            TicketEmptyError: If the platform answered OK without ticket data
        """
        if not self.auth.is_logged_in:
            raise NotLoggedInError("Not logged in")

        job_id = self.connection.next_job_id()
        future = self._slot.arm(key=job_id)
        self.logger.debug(f"Requesting encrypted app ticket for {app_id} (job {job_id})")
        try:
            sent = self.connection.send(EncryptedAppTicketRequest(app_id=app_id, job_id=job_id))
            sent.add_done_callback(lambda f: self._forward_send_error(f, job_id))
            done, _ = wait([future], timeout=self.timeout)
        finally:
            self._slot.clear(future)

        if not done:
            raise TicketTimeoutError(f"Timed out waiting for encrypted app ticket after {self.timeout}s")

        response = future.result()
        if response.result != EResult.OK:
            raise TicketDeniedError(
                response.result,
                f"Failed to get encrypted app ticket: {describe_result(response.result)}")
        if not response.ticket:
            raise TicketEmptyError("Encrypted app ticket is empty")

        self.logger.info(f"Got encrypted app ticket for {app_id} ({len(response.ticket)} bytes)")
        return AppTicket(app_id=app_id, data=bytes(response.ticket))
