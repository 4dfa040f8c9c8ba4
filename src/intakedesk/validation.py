import re


CANCEL_UTTERANCES = frozenset({
    "cancel", "cancel it", "cancel that", "cancel this", "cancel please",
    "please cancel", "discard", "discard it", "discard that",
    "never mind", "nevermind", "forget it", "forget about it",
    "scratch that", "don't create it", "do not create it", "stop",
})

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRAILING_PUNCT = re.compile(r"[\s.!?,;:]+$")


def normalize_utterance(text: str) -> str:
    """Lowercase, collapse whitespace, drop trailing punctuation."""
    if not text:
        return ""
    collapsed = " ".join(text.lower().split())
    return _TRAILING_PUNCT.sub("", collapsed).replace("’", "'")


def is_cancel_utterance(text: str) -> bool:
    """True only when the whole message is a cancel request.

    A correction such as "no, the cancel button in HubSpot is broken" must
    reach the oracle.
    """
    return normalize_utterance(text) in CANCEL_UTTERANCES


def normalize_email(email: str) -> str:
    if not email:
        return ""
    return email.strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email, or empty string if it isn't one."""
    normalized = normalize_email(email)
    if not _EMAIL_RE.match(normalized):
        return ""
    return normalized


def parse_id_list(raw) -> list[str]:
    """Split a comma-separated query value (or list) into clean ids."""
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(v).strip() for v in raw if str(v).strip()]
