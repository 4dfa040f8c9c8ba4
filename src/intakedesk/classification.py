"""Classification contract between the intake machine and the oracle.

The oracle answers every turn with one of three outcomes.  Its raw text is
treated as untrusted: :func:`parse_oracle_response` either produces a fully
validated result or falls back to :class:`NeedMoreInfo`, which is the only
outcome that cannot trigger a side effect.
"""

import hashlib
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Optional, Union

logger = logging.getLogger(__name__)

FALLBACK_QUESTION = "I didn't quite understand. Could you describe the issue again?"

ISSUE_TYPES = frozenset({
    "bug", "enhancement", "new-build", "data-issue",
    "access", "investigation", "integration", "support",
})
PLATFORMS = frozenset({
    "source-of-truth", "sales-enablement", "conversation-intel",
    "data-enrichment", "quote-to-cash",
})
SYSTEMS = frozenset({
    "hubspot", "snowflake", "equals", "n8n", "aircall",
    "clay", "aws", "avarra", "sequence",
})
AREAS = frozenset({
    "object-model", "data-quality", "data-sync", "reporting", "automation",
    "views-ui", "workflows-ux", "provisioning", "lead-routing", "pipeline",
    "attribution", "cpq", "billing", "expansion",
})
PRIORITIES = ("urgent", "high", "medium", "low")
SCOPES = frozenset({"individual", "team", "multiple-teams", "all-gtm"})
FREQUENCIES = frozenset({"one-time", "weekly", "daily", "constant"})

STATUS_NEED_MORE_INFO = "need_more_info"
STATUS_READY = "ready"
STATUS_CREATE = "create"

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


class SchemaError(ValueError):
    """Raised when oracle output does not match the classification schema."""


@dataclass
class Classification:
    title: str
    type: str
    priority: str
    summary: str
    platforms: list = field(default_factory=list)
    systems: list = field(default_factory=list)
    areas: list = field(default_factory=list)
    scope: str = ""
    frequency: str = ""
    risk_flags: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def fingerprint(self) -> str:
        """Stable digest of the ticket-relevant fields."""
        canonical = json.dumps(self.to_dict(), sort_keys=True)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def from_dict(cls, data: dict) -> "Classification":
        if not isinstance(data, dict):
            raise SchemaError("classification must be an object")

        title = _require_text(data, "title")
        issue_type = _require_text(data, "type").lower()
        if issue_type not in ISSUE_TYPES:
            raise SchemaError(f"unknown issue type {issue_type!r}")
        # Enum values match case-insensitively. Unknown priorities are tolerated;
        # the ticket mapping defaults them.
        priority = _require_text(data, "priority").lower()
        summary = _require_text(data, "summary")

        scope = _optional_enum(data, "scope", SCOPES)
        frequency = _optional_enum(data, "frequency", FREQUENCIES)

        return cls(
            title=title,
            type=issue_type,
            priority=priority,
            summary=summary,
            platforms=_enum_list(data, "platforms", PLATFORMS),
            systems=_enum_list(data, "systems", SYSTEMS),
            areas=_enum_list(data, "areas", AREAS),
            scope=scope,
            frequency=frequency,
            risk_flags=_text_list(data, "risk_flags"),
        )


@dataclass
class NeedMoreInfo:
    question: str
    status: str = STATUS_NEED_MORE_INFO


@dataclass
class Ready:
    classification: Classification
    status: str = STATUS_READY


@dataclass
class Create:
    classification: Optional[Classification] = None
    status: str = STATUS_CREATE


OracleResult = Union[NeedMoreInfo, Ready, Create]


def _require_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SchemaError(f"{key} must be a non-empty string")
    return value.strip()


def _optional_enum(data: dict, key: str, allowed: frozenset) -> str:
    value = data.get(key)
    if value in (None, ""):
        return ""
    if not isinstance(value, str) or value.strip().lower() not in allowed:
        raise SchemaError(f"{key} has unknown value {value!r}")
    return value.strip().lower()


def _text_list(data: dict, key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise SchemaError(f"{key} must be a list of strings")
    return list(value)


def _enum_list(data: dict, key: str, allowed: frozenset) -> list:
    values = [v.strip().lower() for v in _text_list(data, key)]
    unknown = [v for v in values if v not in allowed]
    if unknown:
        raise SchemaError(f"{key} has unknown values {unknown!r}")
    return values


def extract_json_text(text: str) -> str:
    """Strip markdown code fences the model sometimes wraps around its JSON."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def result_from_dict(data: dict) -> OracleResult:
    """Build a typed result from an already-decoded response object."""
    if not isinstance(data, dict):
        raise SchemaError("response must be an object")
    wrapped = data.get("output")
    if isinstance(wrapped, dict):
        data = wrapped

    status = data.get("status")
    if status == STATUS_NEED_MORE_INFO:
        return NeedMoreInfo(question=_require_text(data, "question"))
    if status == STATUS_READY:
        return Ready(classification=Classification.from_dict(data.get("classification")))
    if status == STATUS_CREATE:
        raw = data.get("classification")
        return Create(classification=Classification.from_dict(raw) if raw is not None else None)
    raise SchemaError(f"unknown status {status!r}")


def parse_oracle_response(text: str) -> OracleResult:
    """Parse raw oracle text, falling back to a clarification question."""
    if not isinstance(text, str):
        logger.warning("Oracle returned non-text content, asking for clarification")
        return NeedMoreInfo(question=FALLBACK_QUESTION)
    try:
        return result_from_dict(json.loads(extract_json_text(text)))
    except (ValueError, SchemaError) as e:
        logger.warning("Unparseable oracle output (%s), asking for clarification", e)
        return NeedMoreInfo(question=FALLBACK_QUESTION)
