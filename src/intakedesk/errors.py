class IntakeError(Exception):
    """Base class for failures surfaced by an intake turn."""

    retryable = False


class OracleError(IntakeError):
    """The classification call failed or timed out. Nothing was persisted."""

    retryable = True


class TicketSinkError(IntakeError):
    """Ticket creation failed. The pending confirmation is left intact."""

    retryable = True


class SessionStoreError(IntakeError):
    """The session store rejected a read or write.

    ``ticket_id`` is set when a ticket was already created in the failed turn.
    """

    retryable = True

    def __init__(self, message: str = "", ticket_id: str = "", ticket_identifier: str = ""):
        super().__init__(message)
        self.ticket_id = ticket_id
        self.ticket_identifier = ticket_identifier


class InvariantViolation(IntakeError):
    """Internal state that should be unreachable, e.g. CREATE with nothing to create."""


class TrackerError(Exception):
    """The tracker API returned an error or could not be reached."""
