from intakedesk.session import ROLE_ASSISTANT, ROLE_USER


def to_oracle_context(messages: list[dict], team: str = "") -> str:
    """Render the full transcript in the form the oracle prompt expects.

    Each turn is "ROLE: content", turns separated by a blank line.  The
    user's team, when known, is prepended as a header.
    """
    turns = "\n\n".join(
        f"{m['role'].upper()}: {m['content']}" for m in messages
    )
    body = f"Conversation so far:\n\n{turns}"
    if team:
        return f"User's team: {team}\n\n{body}"
    return body


def to_json_array(messages: list[dict]) -> list[dict]:
    """Return {role, content} dicts for the API, dropping anything else."""
    if not messages:
        return []
    return [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m.get("role") in (ROLE_USER, ROLE_ASSISTANT)
    ]
