from enum import Enum

# States in which the next user message may trigger ticket creation.
CONFIRMATION_STATES = {"awaiting_confirmation"}


class IntakeState(Enum):
    GATHERING = "gathering"
    AWAITING_CONFIRMATION = "awaiting_confirmation"

    @property
    def awaits_confirmation(self) -> bool:
        return self.value in CONFIRMATION_STATES

    @classmethod
    def parse(cls, raw: str) -> "IntakeState":
        """Accept stored values in either case, plus the legacy row names."""
        value = (raw or "").strip().lower()
        if value in ("await_confirmation", "awaiting_confirmation"):
            return cls.AWAITING_CONFIRMATION
        if value in ("", "conversing", "gathering"):
            return cls.GATHERING
        raise ValueError(f"Unknown intake state: {raw!r}")
