"""Environment configuration.

``validate_config`` runs from the server entry point so a missing key fails
at startup rather than on the first chat turn.
"""

import os
import sys
import logging
from dataclasses import dataclass
from datetime import timedelta

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "ANTHROPIC_API_KEY",
    "LINEAR_API_KEY",
    "TRACKER_TEAM_ID",
    "TRACKER_INITIAL_STATE_ID",
]

OPTIONAL_VARS = [
    "HUBSPOT_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "ORACLE_MODEL",
    "ORACLE_TIMEOUT_SECONDS",
    "SESSION_TIMEOUT_MINUTES",
    "LOG_LEVEL",
]


def validate_config() -> None:
    """Exit with a clear error if a required variable is missing or empty.

    Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment's secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


@dataclass
class Settings:
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    oracle_model: str = "claude-sonnet-4-20250514"
    oracle_max_tokens: int = 1024
    oracle_timeout_seconds: float = 30.0

    linear_api_key: str = ""
    linear_api_url: str = "https://api.linear.app/graphql"
    tracker_team_id: str = ""
    tracker_initial_state_id: str = ""
    tracker_project_id: str = ""
    public_label: str = "public"

    hubspot_api_key: str = ""

    supabase_url: str = ""
    supabase_key: str = ""

    session_timeout_minutes: float = 30.0
    log_level: str = "INFO"
    port: int = 8765

    @property
    def session_timeout(self) -> timedelta:
        return timedelta(minutes=self.session_timeout_minutes)

    @property
    def uses_rest_store(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", cls.anthropic_base_url),
            oracle_model=os.getenv("ORACLE_MODEL", cls.oracle_model),
            oracle_max_tokens=int(_float_env("ORACLE_MAX_TOKENS", cls.oracle_max_tokens)),
            oracle_timeout_seconds=_float_env("ORACLE_TIMEOUT_SECONDS", cls.oracle_timeout_seconds),
            linear_api_key=os.getenv("LINEAR_API_KEY", ""),
            linear_api_url=os.getenv("LINEAR_API_URL", cls.linear_api_url),
            tracker_team_id=os.getenv("TRACKER_TEAM_ID", ""),
            tracker_initial_state_id=os.getenv("TRACKER_INITIAL_STATE_ID", ""),
            tracker_project_id=os.getenv("TRACKER_PROJECT_ID", ""),
            public_label=os.getenv("PUBLIC_LABEL", cls.public_label),
            hubspot_api_key=os.getenv("HUBSPOT_API_KEY", ""),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            session_timeout_minutes=_float_env("SESSION_TIMEOUT_MINUTES", cls.session_timeout_minutes),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
            port=int(_float_env("PORT", cls.port)),
        )
