import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from intakedesk.classification import Classification
from intakedesk.states import IntakeState

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    return uuid.uuid4().hex


def _parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ConversationSession:
    user_email: str
    session_id: str = field(default_factory=new_session_id)
    state: IntakeState = IntakeState.GATHERING

    # Enrichment, set at creation
    user_name: str = ""
    team: str = ""
    team_id: str = ""
    external_contact_id: str = ""

    # Conversation
    messages: list = field(default_factory=list)
    pending_classification: Optional[Classification] = None

    # Tickets created from this session, oldest first
    ticket_ids: list = field(default_factory=list)
    created_fingerprints: list = field(default_factory=list)
    # False once a ticket covers the reported content, until the oracle engages
    # with something new. Gates a CREATE that arrives without a confirmation.
    report_open: bool = True

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def reporter(self) -> str:
        return self.user_name or self.user_email

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "user_email": self.user_email,
            "user_name": self.user_name,
            "team": self.team,
            "team_id": self.team_id,
            "external_contact_id": self.external_contact_id,
            "state": self.state.value,
            "messages": [dict(m) for m in self.messages],
            "pending_classification": (
                self.pending_classification.to_dict() if self.pending_classification else None
            ),
            "ticket_ids": list(self.ticket_ids),
            "created_fingerprints": list(self.created_fingerprints),
            "report_open": self.report_open,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, row: dict) -> "ConversationSession":
        pending = row.get("pending_classification")
        return cls(
            session_id=row["session_id"],
            user_email=row["user_email"],
            user_name=row.get("user_name") or "",
            team=row.get("team") or "",
            team_id=row.get("team_id") or "",
            external_contact_id=row.get("external_contact_id") or "",
            state=IntakeState.parse(row.get("state", "")),
            messages=[dict(m) for m in row.get("messages") or []],
            pending_classification=Classification.from_dict(pending) if pending else None,
            ticket_ids=list(row.get("ticket_ids") or []),
            created_fingerprints=list(row.get("created_fingerprints") or []),
            report_open=row.get("report_open") is not False,
            created_at=_parse_timestamp(row.get("created_at")),
            updated_at=_parse_timestamp(row.get("updated_at")),
        )
