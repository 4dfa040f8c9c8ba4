import pytest

from intakedesk.states import IntakeState


def test_two_states_exist():
    assert {s.value for s in IntakeState} == {"gathering", "awaiting_confirmation"}


def test_only_awaiting_confirmation_can_create():
    assert IntakeState.AWAITING_CONFIRMATION.awaits_confirmation
    assert not IntakeState.GATHERING.awaits_confirmation


@pytest.mark.parametrize("raw,expected", [
    ("gathering", IntakeState.GATHERING),
    ("conversing", IntakeState.GATHERING),
    ("", IntakeState.GATHERING),
    (None, IntakeState.GATHERING),
    ("awaiting_confirmation", IntakeState.AWAITING_CONFIRMATION),
    ("await_confirmation", IntakeState.AWAITING_CONFIRMATION),
    ("AWAIT_CONFIRMATION", IntakeState.AWAITING_CONFIRMATION),
])
def test_parse_stored_values(raw, expected):
    assert IntakeState.parse(raw) is expected


def test_parse_rejects_unknown():
    with pytest.raises(ValueError):
        IntakeState.parse("created")
