import pytest
from unittest.mock import AsyncMock

from intakedesk.classification import Classification
from intakedesk.session import ConversationSession
from intakedesk.session_store import InMemorySessionStore
from intakedesk.state_machine import IntakeMachine
from intakedesk.tickets import TicketSink
from intakedesk.tracker import CreatedIssue


@pytest.fixture
def classification_dict():
    return {
        "title": "HubSpot sync broken for Sales",
        "type": "bug",
        "platforms": ["source-of-truth"],
        "systems": ["hubspot"],
        "areas": ["data-sync", "reporting"],
        "priority": "urgent",
        "scope": "team",
        "frequency": "constant",
        "risk_flags": ["pipeline reporting blocked"],
        "summary": "The HubSpot sync has stopped for the Sales team. Pipeline reports are blocked.",
    }


@pytest.fixture
def classification(classification_dict):
    return Classification.from_dict(classification_dict)


@pytest.fixture
def session():
    return ConversationSession(user_email="dana@example.com", user_name="Dana Reyes", team="Sales")


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def oracle():
    return AsyncMock()


@pytest.fixture
def tracker():
    tracker = AsyncMock()
    tracker.create_issue.return_value = CreatedIssue(
        id="issue-uuid-1", identifier="REV-101", title="HubSpot sync broken for Sales",
    )
    return tracker


@pytest.fixture
def sink(tracker):
    return TicketSink(tracker, team_id="team-revops", state_id="state-triage")


@pytest.fixture
def machine(store, oracle, sink):
    return IntakeMachine(store=store, oracle=oracle, sink=sink)
