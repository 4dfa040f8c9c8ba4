import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Optional

from intakedesk.classification import Classification, Create, NeedMoreInfo, Ready
from intakedesk.errors import InvariantViolation, SessionStoreError
from intakedesk.oracle import OracleClient
from intakedesk.prompts import (
    CANCEL_MESSAGE,
    NOTHING_PENDING_MESSAGE,
    build_confirmation_message,
    build_success_message,
)
from intakedesk.session import ROLE_ASSISTANT, ROLE_USER, ConversationSession
from intakedesk.session_store import SessionStore
from intakedesk.states import IntakeState
from intakedesk.tickets import TicketSink
from intakedesk.tracker import CreatedIssue
from intakedesk.validation import is_cancel_utterance

logger = logging.getLogger(__name__)

STATUS_NEED_MORE_INFO = "need_more_info"
STATUS_READY = "ready"
STATUS_CREATE = "create"
STATUS_CANCELLED = "cancelled"


@dataclass
class TurnResult:
    status: str
    message: str
    session_id: str
    classification: Optional[Classification] = None
    ticket_id: str = ""
    ticket_identifier: str = ""

    def to_response(self) -> dict:
        body = {
            "status": self.status,
            "message": self.message,
            "sessionId": self.session_id,
        }
        if self.classification is not None:
            body["classification"] = self.classification.to_dict()
        if self.ticket_id:
            body["ticketId"] = self.ticket_id
            body["ticketIdentifier"] = self.ticket_identifier
        return body


class IntakeMachine:
    """Drives one intake turn: oracle call, state transition, one persist.

    The working transcript is built locally and written with a single
    ``update`` at the end of the turn, so an oracle or ticket failure
    leaves the stored session exactly as it was.  Turns for the same
    session are serialised with a per-session lock.
    """

    def __init__(self, store: SessionStore, oracle: OracleClient, sink: TicketSink):
        self.store = store
        self.oracle = oracle
        self.sink = sink
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._unsaved_tickets: dict[str, tuple[str, CreatedIssue]] = {}

    @contextlib.asynccontextmanager
    async def _session_lock(self, session_id: str):
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    async def _resolve_session(self, session_id: str | None, user_email: str) -> ConversationSession:
        session = await self.store.get_by_id(session_id) if session_id else None
        if session is None:
            session = await self.store.get_latest_by_user(user_email)
        if session is None:
            session = await self.store.create(user_email)
        return session

    async def handle_message(self, session_id: str | None, user_message: str, user_email: str) -> TurnResult:
        session = await self._resolve_session(session_id, user_email)
        async with self._session_lock(session.session_id):
            # Re-read under the lock so a queued turn sees the previous turn's writes.
            session = await self.store.get_by_id(session.session_id) or session
            return await self._process(session, user_message)

    async def _process(self, session: ConversationSession, text: str) -> TurnResult:
        messages = session.messages + [{"role": ROLE_USER, "content": text}]

        if session.state.awaits_confirmation and is_cancel_utterance(text):
            logger.info("Session %s: pending ticket cancelled by user", session.session_id)
            return await self._commit(
                session, messages, CANCEL_MESSAGE, STATUS_CANCELLED,
                state=IntakeState.GATHERING, pending=None, report_open=False,
            )

        # OracleError propagates before anything is written.
        outcome = await self.oracle.evaluate(messages, session.team)
        handler = getattr(self, f"_on_{outcome.status}")
        return await handler(session, messages, outcome)

    async def _commit(
        self,
        session: ConversationSession,
        messages: list[dict],
        reply: str,
        status: str,
        state: IntakeState,
        pending: Optional[Classification],
        report_open: bool,
        **extra,
    ) -> TurnResult:
        messages = messages + [{"role": ROLE_ASSISTANT, "content": reply}]
        fields = {
            "messages": messages,
            "state": state,
            "pending_classification": pending,
            "report_open": report_open,
        }
        ticket = extra.pop("ticket", None)
        if ticket is None:
            await self.store.update(session.session_id, **fields)
        else:
            fingerprint = extra["fingerprint"]
            fields["ticket_ids"] = session.ticket_ids + [ticket.id]
            fields["created_fingerprints"] = session.created_fingerprints + [fingerprint]
            await self._persist_ticket_turn(session.session_id, fields, ticket, fingerprint)

        if session.state != state:
            logger.info(
                "Session %s: %s -> %s", session.session_id, session.state.value, state.value,
            )
        return TurnResult(
            status=status,
            message=reply,
            session_id=session.session_id,
            classification=extra.get("classification"),
            ticket_id=ticket.id if ticket else "",
            ticket_identifier=ticket.identifier if ticket else "",
        )

    async def _persist_ticket_turn(self, session_id: str, fields: dict, ticket: CreatedIssue, fingerprint: str):
        """Save a turn that created a ticket, retrying the write once.

        When both writes fail the ticket is remembered against the session so
        the user's next confirmation reuses it instead of filing another.
        """
        for attempt in range(2):
            try:
                await self.store.update(session_id, **fields)
            except SessionStoreError as e:
                if attempt == 0:
                    logger.warning("Session %s: save after ticket %s failed, retrying: %s", session_id, ticket.id, e)
                    continue
                logger.error(
                    "Session %s: ticket %s was created but the session could not be saved",
                    session_id, ticket.id,
                )
                self._unsaved_tickets[session_id] = (fingerprint, ticket)
                raise SessionStoreError(
                    f"Ticket {ticket.identifier or ticket.id} was created but the conversation could not be saved",
                    ticket_id=ticket.id,
                    ticket_identifier=ticket.identifier,
                ) from e
            self._unsaved_tickets.pop(session_id, None)
            return

    # ── Oracle outcome handlers ──

    async def _on_need_more_info(self, session, messages, outcome: NeedMoreInfo) -> TurnResult:
        # A clarifying question while awaiting confirmation keeps the draft.
        return await self._commit(
            session, messages, outcome.question, STATUS_NEED_MORE_INFO,
            state=session.state, pending=session.pending_classification,
            report_open=True,
        )

    async def _on_ready(self, session, messages, outcome: Ready) -> TurnResult:
        classification = outcome.classification
        return await self._commit(
            session, messages, build_confirmation_message(classification), STATUS_READY,
            state=IntakeState.AWAITING_CONFIRMATION, pending=classification,
            report_open=True,
            classification=classification,
        )

    async def _on_create(self, session, messages, outcome: Create) -> TurnResult:
        if session.state.awaits_confirmation:
            classification = session.pending_classification or outcome.classification
            if classification is None:
                logger.error("Session %s: CREATE while awaiting confirmation with no classification", session.session_id)
                raise InvariantViolation("Classification not found for issue creation")
        else:
            # Without a confirmation step, only act on content no ticket covers yet.
            classification = outcome.classification
            if (
                classification is None
                or not session.report_open
                or classification.fingerprint() in session.created_fingerprints
            ):
                logger.warning("Session %s: ignoring CREATE with nothing pending", session.session_id)
                return await self._commit(
                    session, messages, NOTHING_PENDING_MESSAGE, STATUS_NEED_MORE_INFO,
                    state=IntakeState.GATHERING, pending=None,
                    report_open=session.report_open,
                )

        fingerprint = classification.fingerprint()
        issue = self._reuse_unsaved_ticket(session.session_id, fingerprint)
        if issue is None:
            payload = self.sink.payload_for(classification, session)
            # TicketSinkError propagates; the pending draft stays stored for a retry.
            issue = await self.sink.create(payload)
        return await self._commit(
            session, messages, build_success_message(issue.identifier), STATUS_CREATE,
            state=IntakeState.GATHERING, pending=None,
            report_open=False,
            classification=classification,
            ticket=issue,
            fingerprint=fingerprint,
        )

    def _reuse_unsaved_ticket(self, session_id: str, fingerprint: str) -> Optional[CreatedIssue]:
        unsaved = self._unsaved_tickets.get(session_id)
        if unsaved is None or unsaved[0] != fingerprint:
            return None
        logger.info("Session %s: reusing ticket %s created before a failed save", session_id, unsaved[1].id)
        return unsaved[1]
