import logging
from dataclasses import dataclass, field

from intakedesk.classification import Classification
from intakedesk.errors import TicketSinkError, TrackerError
from intakedesk.session import ConversationSession
from intakedesk.tracker import CreatedIssue, TrackerClient

logger = logging.getLogger(__name__)

# Tracker priority ordinals. Anything unrecognised is filed as medium.
PRIORITY_ORDINALS = {
    "urgent": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
}
DEFAULT_PRIORITY = 3


@dataclass
class TicketPayload:
    team_id: str
    title: str
    description: str
    priority: int
    state_id: str
    project_id: str = ""
    label_ids: list = field(default_factory=list)


def map_priority(priority: str) -> int:
    return PRIORITY_ORDINALS.get((priority or "").strip().lower(), DEFAULT_PRIORITY)


def build_description(classification: Classification, session: ConversationSession) -> str:
    lines = [
        f"Summary: {classification.summary}",
        f"Areas: {', '.join(classification.areas)}",
        f"Risk flags: {', '.join(classification.risk_flags)}",
        "",
        f"Reported by: {session.reporter}",
    ]
    if session.team:
        lines.append(f"Team: {session.team}")
    return "\n".join(lines)


def build_ticket_payload(
    classification: Classification,
    session: ConversationSession,
    team_id: str,
    state_id: str,
    project_id: str = "",
) -> TicketPayload:
    """Project a classification onto what the tracker accepts. Pure."""
    return TicketPayload(
        team_id=team_id,
        title=classification.title,
        description=build_description(classification, session),
        priority=map_priority(classification.priority),
        state_id=state_id,
        project_id=project_id,
    )


class TicketSink:
    """Creates tracker issues for confirmed classifications.

    Queue and initial workflow state come from configuration; the intake
    machine only hands over a classification and the session it belongs to.
    """

    def __init__(self, tracker: TrackerClient, team_id: str, state_id: str, project_id: str = ""):
        self.tracker = tracker
        self.team_id = team_id
        self.state_id = state_id
        self.project_id = project_id

    def payload_for(self, classification: Classification, session: ConversationSession) -> TicketPayload:
        return build_ticket_payload(
            classification,
            session,
            team_id=self.team_id,
            state_id=self.state_id,
            project_id=self.project_id,
        )

    async def create(self, payload: TicketPayload) -> CreatedIssue:
        try:
            issue = await self.tracker.create_issue(
                team_id=payload.team_id,
                title=payload.title,
                description=payload.description,
                priority=payload.priority,
                state_id=payload.state_id,
                project_id=payload.project_id,
                label_ids=payload.label_ids,
            )
        except TrackerError as e:
            logger.error("Ticket creation failed for %r: %s", payload.title, e)
            raise TicketSinkError(f"Could not create the ticket: {e}") from e
        logger.info("Created ticket %s (%s)", issue.identifier or issue.id, payload.title)
        return issue
