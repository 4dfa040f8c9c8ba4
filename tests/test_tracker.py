import json
import pytest
import httpx
import respx

from intakedesk.errors import TrackerError
from intakedesk.tracker import LINEAR_API_URL, TrackerClient


@pytest.fixture
def tracker():
    return TrackerClient(api_key="lin_test")


def _data(payload: dict) -> httpx.Response:
    return httpx.Response(200, json={"data": payload})


def _issue_node(**overrides):
    node = {
        "id": "issue-1",
        "identifier": "REV-1",
        "title": "Dashboard totals wrong",
        "description": "Totals double count renewals",
        "priority": 2,
        "url": "https://linear.app/acme/issue/REV-1",
        "createdAt": "2024-05-01T10:00:00.000Z",
        "updatedAt": "2024-05-02T10:00:00.000Z",
        "state": {"id": "st-1", "name": "Triage", "type": "triage"},
        "assignee": None,
        "project": {"id": "proj-1", "name": "Revenue Dashboards"},
        "team": {"id": "team-1", "name": "RevOps"},
        "labels": {"nodes": [{"id": "lbl-1", "name": "bug"}]},
    }
    node.update(overrides)
    return node


class TestReads:
    @respx.mock
    @pytest.mark.asyncio
    async def test_fetch_projects_with_label(self, tracker):
        route = respx.post(LINEAR_API_URL).mock(return_value=_data({
            "projects": {"nodes": [{
                "id": "proj-1", "name": "Revenue Dashboards", "description": None,
                "state": "started", "progress": 0.4,
                "teams": {"nodes": [{"id": "team-1", "name": "RevOps"}]},
                "labels": {"nodes": [{"id": "lbl-9", "name": "public"}]},
            }]},
        }))
        projects = await tracker.fetch_projects_with_label("public")

        body = json.loads(route.calls[0].request.content)
        assert body["variables"] == {"label": "public"}
        assert route.calls[0].request.headers["Authorization"] == "lin_test"
        assert len(projects) == 1
        assert projects[0].description == ""
        assert projects[0].teams[0].id == "team-1"
        assert projects[0].to_dict()["labels"] == [{"id": "lbl-9", "name": "public"}]

    @respx.mock
    @pytest.mark.asyncio
    async def test_fetch_issues_from_projects(self, tracker):
        route = respx.post(LINEAR_API_URL).mock(
            return_value=_data({"issues": {"nodes": [_issue_node()]}})
        )
        issues = await tracker.fetch_issues_from_projects(["proj-1", "proj-2"])

        assert json.loads(route.calls[0].request.content)["variables"] == {
            "projectIds": ["proj-1", "proj-2"],
        }
        issue = issues[0]
        assert issue.identifier == "REV-1"
        assert issue.state["name"] == "Triage"
        assert issue.assignee is None
        assert issue.project.name == "Revenue Dashboards"
        assert issue.labels[0].name == "bug"

    @pytest.mark.asyncio
    async def test_no_project_ids_makes_no_call(self, tracker):
        with respx.mock(assert_all_called=False) as mock:
            route = mock.post(LINEAR_API_URL)
            assert await tracker.fetch_issues_from_projects([]) == []
            assert not route.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_fetch_issues_by_team(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=_data({
            "issues": {"nodes": [_issue_node(
                assignee={"id": "u-1", "name": "Sam", "email": None}, project=None,
            )]},
        }))
        issues = await tracker.fetch_issues_by_team("team-1")
        assert issues[0].assignee == {"id": "u-1", "name": "Sam", "email": ""}
        assert issues[0].project is None

    @respx.mock
    @pytest.mark.asyncio
    async def test_fetch_workflow_states(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=_data({
            "workflowStates": {"nodes": [{
                "id": "st-1", "name": "Triage", "type": "triage", "position": 0,
                "color": "#aaa", "team": {"id": "team-1", "name": "RevOps"},
            }]},
        }))
        states = await tracker.fetch_workflow_states_for_teams(["team-1"])
        assert states[0].name == "Triage"
        assert states[0].team.name == "RevOps"

    @pytest.mark.asyncio
    async def test_no_team_ids_returns_empty(self, tracker):
        assert await tracker.fetch_workflow_states_for_teams([]) == []

    @respx.mock
    @pytest.mark.asyncio
    async def test_comments_sorted_oldest_first(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=_data({
            "issue": {"comments": {"nodes": [
                {"id": "c-2", "body": "second", "createdAt": "2024-05-03T00:00:00Z", "user": None},
                {"id": "c-1", "body": "first", "createdAt": "2024-05-01T00:00:00Z",
                 "user": {"id": "u-1", "name": "Sam", "email": "sam@example.com"}},
            ]}},
        }))
        comments = await tracker.fetch_issue_comments("issue-1")
        assert [c.id for c in comments] == ["c-1", "c-2"]
        assert comments[0].user["email"] == "sam@example.com"

    @respx.mock
    @pytest.mark.asyncio
    async def test_comments_for_missing_issue_raise(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=_data({"issue": None}))
        with pytest.raises(TrackerError, match="not found"):
            await tracker.fetch_issue_comments("nope")


class TestWrites:
    @respx.mock
    @pytest.mark.asyncio
    async def test_create_issue_sends_only_set_fields(self, tracker):
        route = respx.post(LINEAR_API_URL).mock(return_value=_data({
            "issueCreate": {"success": True, "issue": {
                "id": "issue-9", "identifier": "REV-9", "title": "Sync broken",
                "url": "https://linear.app/acme/issue/REV-9",
            }},
        }))
        created = await tracker.create_issue(
            team_id="team-1", title="Sync broken", description="d", priority=1, state_id="st-1",
        )

        issue_input = json.loads(route.calls[0].request.content)["variables"]["input"]
        assert issue_input == {
            "teamId": "team-1", "title": "Sync broken", "description": "d",
            "priority": 1, "stateId": "st-1",
        }
        assert created.identifier == "REV-9"

    @respx.mock
    @pytest.mark.asyncio
    async def test_create_issue_rejected(self, tracker):
        respx.post(LINEAR_API_URL).mock(
            return_value=_data({"issueCreate": {"success": False, "issue": None}})
        )
        with pytest.raises(TrackerError):
            await tracker.create_issue(team_id="team-1", title="x")

    @respx.mock
    @pytest.mark.asyncio
    async def test_create_comment(self, tracker):
        route = respx.post(LINEAR_API_URL).mock(return_value=_data({
            "commentCreate": {"success": True, "comment": {
                "id": "c-3", "body": "hello", "createdAt": "2024-05-04T00:00:00Z", "user": None,
            }},
        }))
        comment = await tracker.create_comment("issue-1", "hello")
        assert json.loads(route.calls[0].request.content)["variables"]["input"] == {
            "issueId": "issue-1", "body": "hello",
        }
        assert comment.id == "c-3"


class TestFailures:
    @respx.mock
    @pytest.mark.asyncio
    async def test_graphql_errors_raise(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=httpx.Response(
            200, json={"errors": [{"message": "Entity not found"}], "data": None},
        ))
        with pytest.raises(TrackerError, match="Entity not found"):
            await tracker.fetch_projects_with_label()

    @respx.mock
    @pytest.mark.asyncio
    async def test_http_error_raises(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=httpx.Response(401, text="unauthorized"))
        with pytest.raises(TrackerError, match="HTTP 401"):
            await tracker.fetch_projects_with_label()

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_object_body_raises_and_counts_as_failure(self, tracker):
        respx.post(LINEAR_API_URL).mock(return_value=httpx.Response(200, json=["unexpected"]))
        with pytest.raises(TrackerError, match="unexpected response body"):
            await tracker.fetch_projects_with_label()
        assert tracker._circuit._consecutive_failures == 1

    @respx.mock
    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_read_failures(self, tracker):
        route = respx.post(LINEAR_API_URL).mock(side_effect=httpx.ConnectError("refused"))
        for _ in range(3):
            with pytest.raises(TrackerError):
                await tracker.fetch_projects_with_label()
        assert route.call_count == 3

        with pytest.raises(TrackerError, match="temporarily unavailable"):
            await tracker.fetch_projects_with_label()
        assert route.call_count == 3

    @respx.mock
    @pytest.mark.asyncio
    async def test_writes_bypass_open_circuit(self, tracker):
        for _ in range(3):
            tracker._circuit.record_failure()
        route = respx.post(LINEAR_API_URL).mock(return_value=_data({
            "issueCreate": {"success": True, "issue": {"id": "i", "identifier": "REV-2", "title": "t"}},
        }))
        await tracker.create_issue(team_id="team-1", title="t")
        assert route.called
