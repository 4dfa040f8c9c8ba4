"""Session persistence for the intake machine.

Two adapters share one async interface: :class:`InMemorySessionStore` for
development and tests, and :class:`RestSessionStore` for a PostgREST
``chatbot_sessions`` table.  Neither serialises concurrent writers; the
intake machine holds a per-session lock for that.
"""

import abc
import copy
import httpx
import logging
from datetime import datetime, timedelta
from typing import Optional

from intakedesk.classification import Classification
from intakedesk.errors import SessionStoreError
from intakedesk.session import ConversationSession, utcnow
from intakedesk.states import IntakeState

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = timedelta(minutes=30)

# Fields the intake machine is allowed to change after creation.
MUTABLE_FIELDS = frozenset({
    "state", "messages", "pending_classification",
    "ticket_ids", "created_fingerprints", "report_open",
})


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session fields: {sorted(unknown)}")


def _serialize(value):
    if isinstance(value, IntakeState):
        return value.value
    if isinstance(value, Classification):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return copy.deepcopy(value)
    return value


class SessionStore(abc.ABC):
    @abc.abstractmethod
    async def get_by_id(self, session_id: str) -> Optional[ConversationSession]:
        ...

    @abc.abstractmethod
    async def get_latest_by_user(self, user_email: str) -> Optional[ConversationSession]:
        """Most recently created session for the email, or None."""

    @abc.abstractmethod
    async def create(
        self,
        user_email: str,
        user_name: str = "",
        team: str = "",
        team_id: str = "",
        external_contact_id: str = "",
    ) -> ConversationSession:
        ...

    @abc.abstractmethod
    async def update(self, session_id: str, **fields) -> ConversationSession:
        ...

    @abc.abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    async def close(self) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Dict-backed store. Hands out deep copies so callers never share state."""

    def __init__(self, clock=utcnow):
        self._clock = clock
        self._sessions: dict[str, ConversationSession] = {}

    async def get_by_id(self, session_id: str) -> Optional[ConversationSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def get_latest_by_user(self, user_email: str) -> Optional[ConversationSession]:
        candidates = [s for s in self._sessions.values() if s.user_email == user_email]
        if not candidates:
            return None
        latest = max(candidates, key=lambda s: s.created_at)
        return copy.deepcopy(latest)

    async def create(
        self,
        user_email: str,
        user_name: str = "",
        team: str = "",
        team_id: str = "",
        external_contact_id: str = "",
    ) -> ConversationSession:
        now = self._clock()
        session = ConversationSession(
            user_email=user_email,
            user_name=user_name or "",
            team=team or "",
            team_id=team_id or "",
            external_contact_id=external_contact_id or "",
            created_at=now,
            updated_at=now,
        )
        self._sessions[session.session_id] = session
        logger.info("Created session %s for %s", session.session_id, user_email)
        return copy.deepcopy(session)

    async def update(self, session_id: str, **fields) -> ConversationSession:
        _check_fields(fields)
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionStoreError(f"Session {session_id} not found")
        for name, value in fields.items():
            setattr(session, name, copy.deepcopy(value))
        session.updated_at = self._clock()
        return copy.deepcopy(session)

    async def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionStoreError(f"Session {session_id} not found")


class RestSessionStore(SessionStore):
    """PostgREST adapter for the ``chatbot_sessions`` table.

    JSON columns hold ``messages``, ``pending_classification``,
    ``ticket_ids`` and ``created_fingerprints``.
    """

    TABLE = "chatbot_sessions"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers={
                    "Content-Type": "application/json",
                    "apikey": api_key,
                    "Authorization": f"Bearer {api_key}",
                },
                timeout=self.timeout,
            )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, label: str, **kwargs) -> list:
        try:
            resp = await self._client.request(method, f"/{self.TABLE}", **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("%s failed with %s: %s", label, e.response.status_code, e.response.text)
            raise SessionStoreError(f"{label} failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("%s failed: %s", label, e)
            raise SessionStoreError(f"{label} failed: {e}") from e
        if not resp.content:
            return []
        return resp.json()

    async def _select_one(self, params: dict, label: str) -> Optional[ConversationSession]:
        rows = await self._request("GET", label, params={"select": "*", **params})
        if not rows:
            return None
        return ConversationSession.from_dict(rows[0])

    async def get_by_id(self, session_id: str) -> Optional[ConversationSession]:
        return await self._select_one({"session_id": f"eq.{session_id}", "limit": "1"}, "get_by_id")

    async def get_latest_by_user(self, user_email: str) -> Optional[ConversationSession]:
        return await self._select_one(
            {"user_email": f"eq.{user_email}", "order": "created_at.desc", "limit": "1"},
            "get_latest_by_user",
        )

    async def create(
        self,
        user_email: str,
        user_name: str = "",
        team: str = "",
        team_id: str = "",
        external_contact_id: str = "",
    ) -> ConversationSession:
        session = ConversationSession(
            user_email=user_email,
            user_name=user_name or "",
            team=team or "",
            team_id=team_id or "",
            external_contact_id=external_contact_id or "",
        )
        rows = await self._request(
            "POST", "create",
            json=session.to_dict(),
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise SessionStoreError("create returned no row")
        logger.info("Created session %s for %s", session.session_id, user_email)
        return ConversationSession.from_dict(rows[0])

    async def update(self, session_id: str, **fields) -> ConversationSession:
        _check_fields(fields)
        body = {name: _serialize(value) for name, value in fields.items()}
        body["updated_at"] = utcnow().isoformat()
        rows = await self._request(
            "PATCH", "update",
            params={"session_id": f"eq.{session_id}"},
            json=body,
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise SessionStoreError(f"Session {session_id} not found")
        return ConversationSession.from_dict(rows[0])

    async def delete(self, session_id: str) -> None:
        await self._request("DELETE", "delete", params={"session_id": f"eq.{session_id}"})


async def resolve_active_session(
    store: SessionStore,
    user_email: str,
    timeout: timedelta = DEFAULT_SESSION_TIMEOUT,
    now: datetime | None = None,
    **profile,
) -> tuple[ConversationSession, bool]:
    """Reuse the user's latest session if it is younger than ``timeout``.

    Returns ``(session, reused)``.  Profile keyword arguments are only used
    when a new session has to be created.
    """
    now = now or utcnow()
    existing = await store.get_latest_by_user(user_email)
    if existing is not None and now - existing.created_at < timeout:
        return existing, True
    return await store.create(user_email, **profile), False
