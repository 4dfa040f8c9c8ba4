import httpx
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional

from intakedesk.circuit_breaker import CircuitBreaker
from intakedesk.errors import TrackerError

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"

_ISSUE_FIELDS = """
  id identifier title description priority url createdAt updatedAt
  state { id name type }
  assignee { id name email }
  project { id name }
  team { id name }
  labels { nodes { id name } }
"""

PROJECTS_QUERY = """
query Projects($label: String!) {
  projects(filter: { labels: { name: { eq: $label } } }) {
    nodes {
      id name description state progress
      teams { nodes { id name } }
      labels { nodes { id name } }
    }
  }
}"""

ISSUES_BY_PROJECTS_QUERY = """
query IssuesByProjects($projectIds: [ID!]) {
  issues(filter: { project: { id: { in: $projectIds } } }, first: 250) {
    nodes { %s }
  }
}""" % _ISSUE_FIELDS

ISSUES_BY_TEAM_QUERY = """
query IssuesByTeam($teamId: ID!) {
  issues(filter: { team: { id: { eq: $teamId } } }, first: 250) {
    nodes { %s }
  }
}""" % _ISSUE_FIELDS

WORKFLOW_STATES_QUERY = """
query WorkflowStates($teamIds: [ID!]) {
  workflowStates(filter: { team: { id: { in: $teamIds } } }) {
    nodes { id name type position color team { id name } }
  }
}"""

ISSUE_COMMENTS_QUERY = """
query IssueComments($issueId: String!) {
  issue(id: $issueId) {
    comments { nodes { id body createdAt user { id name email } } }
  }
}"""

CREATE_COMMENT_MUTATION = """
mutation CreateComment($input: CommentCreateInput!) {
  commentCreate(input: $input) {
    success
    comment { id body createdAt user { id name email } }
  }
}"""

CREATE_ISSUE_MUTATION = """
mutation CreateIssue($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier title url }
  }
}"""


@dataclass
class Ref:
    id: str
    name: str


@dataclass
class Project:
    id: str
    name: str
    state: str
    progress: float
    description: str = ""
    teams: list = field(default_factory=list)
    labels: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Issue:
    id: str
    identifier: str
    title: str
    priority: int
    state: dict
    team: Ref
    created_at: str
    updated_at: str
    description: str = ""
    url: str = ""
    assignee: Optional[dict] = None
    project: Optional[Ref] = None
    labels: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WorkflowState:
    id: str
    name: str
    type: str
    position: float
    color: str
    team: Optional[Ref] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Comment:
    id: str
    body: str
    created_at: str
    user: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CreatedIssue:
    id: str
    identifier: str
    title: str
    url: str = ""


def _refs(connection) -> list:
    return [Ref(id=n["id"], name=n["name"]) for n in (connection or {}).get("nodes", [])]


def _ref(node) -> Optional[Ref]:
    return Ref(id=node["id"], name=node["name"]) if node else None


def _project_from_node(node: dict) -> Project:
    return Project(
        id=node["id"],
        name=node["name"],
        description=node.get("description") or "",
        state=node.get("state") or "",
        progress=node.get("progress") or 0.0,
        teams=_refs(node.get("teams")),
        labels=_refs(node.get("labels")),
    )


def _issue_from_node(node: dict) -> Issue:
    assignee = node.get("assignee")
    return Issue(
        id=node["id"],
        identifier=node["identifier"],
        title=node["title"],
        description=node.get("description") or "",
        priority=node.get("priority") or 0,
        url=node.get("url") or "",
        state=dict(node.get("state") or {}),
        assignee=(
            {"id": assignee["id"], "name": assignee["name"], "email": assignee.get("email") or ""}
            if assignee else None
        ),
        project=_ref(node.get("project")),
        team=_ref(node["team"]),
        labels=_refs(node.get("labels")),
        created_at=node["createdAt"],
        updated_at=node["updatedAt"],
    )


def _comment_from_node(node: dict) -> Comment:
    user = node.get("user")
    return Comment(
        id=node["id"],
        body=node["body"],
        created_at=node["createdAt"],
        user=(
            {"id": user["id"], "name": user["name"], "email": user.get("email") or ""}
            if user else None
        ),
    )


class TrackerClient:
    """GraphQL client for the tracker (Linear).

    Reads go through a circuit breaker: after 3 consecutive failures the
    tracker is skipped for 60s and reads raise immediately.  Writes
    (comments, issue creation) always hit the API.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = LINEAR_API_URL,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_url = api_url
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="tracker",
        )
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                headers={
                    "Content-Type": "application/json",
                    "Authorization": api_key,
                },
                timeout=self.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _execute(self, query: str, variables: dict, label: str) -> dict:
        try:
            resp = await self._client.post(
                self.api_url, json={"query": query, "variables": variables},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error("%s failed with %s: %s", label, e.response.status_code, e.response.text)
            raise TrackerError(f"{label} failed: HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("%s failed: %s", label, e)
            raise TrackerError(f"{label} failed: {e}") from e

        if not isinstance(body, dict):
            logger.error("%s returned a non-object body: %r", label, body)
            raise TrackerError(f"{label} failed: unexpected response body")
        if body.get("errors"):
            messages = "; ".join(err.get("message", "unknown error") for err in body["errors"])
            logger.error("%s returned GraphQL errors: %s", label, messages)
            raise TrackerError(f"{label} failed: {messages}")
        return body.get("data") or {}

    async def _read(self, query: str, variables: dict, label: str) -> dict:
        if not self._circuit.should_try():
            logger.warning("Tracker circuit breaker open, skipping %s", label)
            raise TrackerError("Tracker temporarily unavailable")
        try:
            data = await self._execute(query, variables, label)
        except TrackerError:
            self._circuit.record_failure()
            raise
        self._circuit.record_success()
        return data

    async def fetch_projects_with_label(self, label: str = "public") -> list[Project]:
        data = await self._read(PROJECTS_QUERY, {"label": label}, "fetch_projects_with_label")
        return [_project_from_node(n) for n in data["projects"]["nodes"]]

    async def fetch_issues_from_projects(self, project_ids: list[str]) -> list[Issue]:
        if not project_ids:
            return []
        data = await self._read(
            ISSUES_BY_PROJECTS_QUERY, {"projectIds": list(project_ids)}, "fetch_issues_from_projects",
        )
        return [_issue_from_node(n) for n in data["issues"]["nodes"]]

    async def fetch_issues_by_team(self, team_id: str) -> list[Issue]:
        data = await self._read(ISSUES_BY_TEAM_QUERY, {"teamId": team_id}, "fetch_issues_by_team")
        return [_issue_from_node(n) for n in data["issues"]["nodes"]]

    async def fetch_workflow_states_for_teams(self, team_ids: list[str]) -> list[WorkflowState]:
        if not team_ids:
            return []
        data = await self._read(
            WORKFLOW_STATES_QUERY, {"teamIds": list(team_ids)}, "fetch_workflow_states_for_teams",
        )
        return [
            WorkflowState(
                id=n["id"],
                name=n["name"],
                type=n["type"],
                position=n.get("position") or 0.0,
                color=n.get("color") or "",
                team=_ref(n.get("team")),
            )
            for n in data["workflowStates"]["nodes"]
        ]

    async def fetch_issue_comments(self, issue_id: str) -> list[Comment]:
        data = await self._read(ISSUE_COMMENTS_QUERY, {"issueId": issue_id}, "fetch_issue_comments")
        issue = data.get("issue")
        if not issue:
            raise TrackerError(f"Issue {issue_id} not found")
        comments = [_comment_from_node(n) for n in issue["comments"]["nodes"]]
        return sorted(comments, key=lambda c: c.created_at)

    async def create_comment(self, issue_id: str, body: str) -> Comment:
        data = await self._execute(
            CREATE_COMMENT_MUTATION,
            {"input": {"issueId": issue_id, "body": body}},
            "create_comment",
        )
        result = data.get("commentCreate") or {}
        if not result.get("success") or not result.get("comment"):
            raise TrackerError("create_comment was not accepted by the tracker")
        return _comment_from_node(result["comment"])

    async def create_issue(
        self,
        team_id: str,
        title: str,
        description: str = "",
        priority: int | None = None,
        state_id: str = "",
        project_id: str = "",
        label_ids: list[str] | None = None,
    ) -> CreatedIssue:
        issue_input = {"teamId": team_id, "title": title, "description": description}
        if priority is not None:
            issue_input["priority"] = priority
        if state_id:
            issue_input["stateId"] = state_id
        if project_id:
            issue_input["projectId"] = project_id
        if label_ids:
            issue_input["labelIds"] = list(label_ids)

        data = await self._execute(CREATE_ISSUE_MUTATION, {"input": issue_input}, "create_issue")
        result = data.get("issueCreate") or {}
        issue = result.get("issue")
        if not result.get("success") or not issue:
            raise TrackerError("create_issue was not accepted by the tracker")
        return CreatedIssue(
            id=issue["id"],
            identifier=issue.get("identifier") or "",
            title=issue.get("title") or title,
            url=issue.get("url") or "",
        )
