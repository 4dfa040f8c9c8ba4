"""Read-through cache for tracker board data.

Independent of the intake machine; serves the board endpoints.
"""

import copy
import logging
import time
from typing import Any, Callable, Optional

from intakedesk.tracker import TrackerClient

logger = logging.getLogger(__name__)

PROJECTS_TTL_SECONDS = 5 * 60
ISSUES_TTL_SECONDS = 2 * 60
STATES_TTL_SECONDS = 10 * 60


class TTLCache:
    """In-memory key/value cache with per-entry expiry.

    Expired entries are swept on every write.  When ``max_entries`` live keys
    are held, the entry closest to expiry is evicted to make room.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 256):
        self._clock = clock
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return None
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        self._sweep(now)
        if key not in self._entries and len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
            logger.debug("Cache full, evicted %s", oldest)
        self._entries[key] = (now + ttl_seconds, copy.deepcopy(value))

    def _sweep(self, now: float) -> None:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]


def projects_key(label: str) -> str:
    return f"projects:{label}"


def issues_key(project_ids: list[str]) -> str:
    return f"issues:projects:{','.join(sorted(project_ids))}"


def states_key(label: str = "", team_ids: list[str] | None = None) -> str:
    if team_ids:
        return f"workflow_states:teams:{','.join(sorted(team_ids))}"
    return f"workflow_states:projects:{label}"


class CachedTracker:
    """Serves projects, issues and workflow states with TTL expiry.

    Reads return ``(data, cached)`` where data is a list of plain dicts.
    """

    def __init__(self, tracker: TrackerClient, cache: TTLCache | None = None):
        self.tracker = tracker
        self.cache = cache or TTLCache()

    async def _read_through(self, key: str, ttl: float, use_cache: bool, loader) -> tuple[list, bool]:
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit: %s", key)
                return cached, True
        data = [item.to_dict() for item in await loader()]
        self.cache.set(key, data, ttl)
        return data, False

    async def projects(self, label: str = "public", use_cache: bool = True) -> tuple[list, bool]:
        return await self._read_through(
            projects_key(label), PROJECTS_TTL_SECONDS, use_cache,
            lambda: self.tracker.fetch_projects_with_label(label),
        )

    async def issues(self, project_ids: list[str], use_cache: bool = True) -> tuple[list, bool]:
        if not project_ids:
            return [], False
        return await self._read_through(
            issues_key(project_ids), ISSUES_TTL_SECONDS, use_cache,
            lambda: self.tracker.fetch_issues_from_projects(project_ids),
        )

    async def workflow_states(
        self,
        team_ids: list[str] | None = None,
        label: str = "public",
        use_cache: bool = True,
    ) -> tuple[list, bool]:
        key = states_key(label, team_ids)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return cached, True

        resolved = list(team_ids or [])
        if not resolved:
            projects = await self.tracker.fetch_projects_with_label(label)
            seen = {}
            for project in projects:
                for team in project.teams:
                    seen.setdefault(team.id, None)
            resolved = list(seen)
        if not resolved:
            return [], False

        states = await self.tracker.fetch_workflow_states_for_teams(resolved)
        data = [s.to_dict() for s in states]
        self.cache.set(key, data, STATES_TTL_SECONDS)
        return data, False

    async def sync(self, label: str = "", project_ids: list[str] | None = None) -> dict:
        """Refresh projects and/or issues regardless of what is cached."""
        results = {}
        if label:
            results["projects"], _ = await self.projects(label, use_cache=False)
        if project_ids:
            results["issues"], _ = await self.issues(project_ids, use_cache=False)
        logger.info("Tracker sync refreshed %s", ", ".join(results) or "nothing")
        return results
