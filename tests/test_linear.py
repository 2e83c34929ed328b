"""Tests for the Linear client and the local cache sync."""

import json

import httpx
import pytest

from dev_journal.database import JournalDatabase
from dev_journal.errors import (
    ConfigError,
    ExternalServiceError,
    RateLimitError,
    UnauthorizedError,
    ValidationError,
)
from dev_journal.linear import LINEAR_API_URL, LinearClient, LinearSync, is_closed_issue


def make_client(handler):
    return LinearClient("lin_api_test", http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def respond(data=None, status_code=200, **kwargs):
    def handler(request):
        return httpx.Response(status_code, json={"data": data} if data is not None else {}, **kwargs)

    return handler


def project(project_id, state="started", **overrides):
    data = {
        "id": project_id,
        "name": f"Project {project_id}",
        "state": state,
        "url": f"https://linear.app/p/{project_id}",
        "lead": {"id": "u1", "name": "Ada"},
        "teams": {"nodes": [{"id": "t1"}]},
        "members": {"nodes": []},
    }
    data.update(overrides)
    return data


def issue(issue_id, state_name="In Progress", **overrides):
    data = {
        "id": issue_id,
        "identifier": f"ENG-{issue_id}",
        "title": f"Issue {issue_id}",
        "url": f"https://linear.app/i/{issue_id}",
        "priority": 2,
        "state": {"id": "s1", "name": state_name, "type": "started"},
        "team": {"id": "t1", "name": "Engineering", "key": "ENG"},
        "project": None,
        "assignee": None,
        "parent": None,
    }
    data.update(overrides)
    return data


class FakeLinear:
    """Returns whatever projects and issues the test sets."""

    def __init__(self):
        self.projects = []
        self.issues = []

    def list_projects(self, team_id=None, show_all=False):
        return list(self.projects)

    def list_issues(self, show_all=False, limit=50, assignee_id=None, project_id=None):
        return list(self.issues)


class TestLinearClient:
    def test_requires_key(self):
        with pytest.raises(ConfigError):
            LinearClient("")

    def test_sends_auth_header_and_query(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"viewer": {"id": "u1", "name": "Ada"}}})

        viewer = make_client(handler).get_viewer()
        assert viewer == {"id": "u1", "name": "Ada"}
        assert seen["url"] == LINEAR_API_URL
        assert seen["auth"] == "lin_api_test"
        assert "viewer" in seen["body"]["query"]

    def test_unauthorized(self):
        with pytest.raises(UnauthorizedError):
            make_client(respond(status_code=401)).get_viewer()

    def test_rate_limited(self):
        client = make_client(respond(status_code=429, headers={"Retry-After": "30"}))
        with pytest.raises(RateLimitError) as exc_info:
            client.get_viewer()
        assert exc_info.value.retry_after == 30

    def test_server_error(self):
        with pytest.raises(ExternalServiceError):
            make_client(respond(status_code=502)).get_viewer()

    def test_graphql_errors(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "Entity not found"}]})

        with pytest.raises(ExternalServiceError, match="Entity not found"):
            make_client(handler).get_viewer()

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalServiceError) as exc_info:
            make_client(handler).get_viewer()
        assert exc_info.value.service == "linear"

    def test_list_projects_hides_closed(self):
        projects = [project("a"), project("b", state="completed"), project("c", state="canceled")]
        client = make_client(respond({"projects": {"nodes": projects}}))
        assert [p["id"] for p in client.list_projects()] == ["a"]
        assert len(client.list_projects(show_all=True)) == 3

    def test_list_issues_filters(self):
        seen = {}

        def handler(request):
            seen["variables"] = json.loads(request.content)["variables"]
            return httpx.Response(
                200, json={"data": {"issues": {"nodes": [issue("1"), issue("2", state_name="Done")]}}}
            )

        issues = make_client(handler).list_issues(assignee_id="u1", limit=10)
        assert [i["id"] for i in issues] == ["1"]
        assert seen["variables"]["first"] == 10
        assert seen["variables"]["filter"] == {"assignee": {"id": {"eq": "u1"}}}

    def test_create_issue_validates(self):
        client = make_client(respond({}))
        with pytest.raises(ValidationError):
            client.create_issue({"title": "No team"})

    def test_create_issue(self):
        seen = {}

        def handler(request):
            seen["input"] = json.loads(request.content)["variables"]["input"]
            return httpx.Response(200, json={"data": {"issueCreate": {"success": True, "issue": issue("9")}}})

        created = make_client(handler).create_issue({"title": "Fix bug", "team_id": "t1", "priority": 1})
        assert created["identifier"] == "ENG-9"
        assert seen["input"] == {"title": "Fix bug", "teamId": "t1", "priority": 1}

    def test_closed_issue_words(self):
        assert is_closed_issue({"state": {"name": "Canceled"}})
        assert is_closed_issue({"state": {"name": "Completed"}})
        assert not is_closed_issue({"state": {"name": "Todo"}})
        assert not is_closed_issue({"state": None})


class TestSync:
    @pytest.fixture
    def db(self, temp_project):
        database = JournalDatabase(temp_project / "journal.db")
        yield database
        database.close()

    @pytest.fixture
    def linear(self):
        return FakeLinear()

    @pytest.fixture
    def sync(self, db, linear):
        return LinearSync(db, linear)

    def test_first_sync_creates(self, sync, linear):
        linear.projects = [project("a"), project("b")]
        result = sync.sync_projects()
        assert result == {"created": 2, "updated": 0, "deleted": 0, "total": 2}
        cached = sync.cached_projects()
        assert cached[0]["team_ids"] == ["t1"]
        assert cached[0]["lead_name"] == "Ada"

    def test_missing_rows_are_soft_deleted(self, sync, linear):
        linear.projects = [project("a"), project("b")]
        sync.sync_projects()

        linear.projects = [project("a", name="Renamed")]
        result = sync.sync_projects()

        assert result == {"created": 0, "updated": 1, "deleted": 1, "total": 2}
        assert [p["id"] for p in sync.cached_projects()] == ["a"]
        assert sync.cached_projects()[0]["name"] == "Renamed"
        deleted = [p for p in sync.cached_projects(include_deleted=True) if p["id"] == "b"][0]
        assert deleted["is_deleted"] is True
        assert deleted["deleted_at"] is not None

        # Already deleted rows are not counted again
        assert sync.sync_projects()["deleted"] == 0

    def test_completed_projects_are_soft_deleted(self, sync, linear):
        linear.projects = [project("a")]
        sync.sync_projects()
        linear.projects = [project("a", state="completed")]
        assert sync.sync_projects()["deleted"] == 1
        assert sync.sync_projects(include_completed=True)["updated"] == 1
        assert [p["id"] for p in sync.cached_projects()] == ["a"]

    def test_reappearing_rows_are_revived(self, sync, linear):
        linear.issues = [issue("1")]
        sync.sync_issues()
        linear.issues = []
        sync.sync_issues()
        assert sync.cached_issues() == []

        linear.issues = [issue("1", title="Back again")]
        result = sync.sync_issues()
        assert result["updated"] == 1
        cached = sync.cached_issues()
        assert cached[0]["title"] == "Back again"
        assert cached[0]["is_deleted"] is False
        assert cached[0]["team_key"] == "ENG"

    def test_done_issues_are_skipped(self, sync, linear):
        linear.issues = [issue("1"), issue("2", state_name="Done")]
        assert sync.sync_issues()["created"] == 1

    def test_cached_issues_by_project(self, sync, linear):
        linear.issues = [issue("1", project={"id": "p1", "name": "Launch"}), issue("2")]
        sync.sync_issues()
        assert [i["id"] for i in sync.cached_issues(project_id="p1")] == ["1"]

    def test_sync_all_and_status(self, sync, linear):
        linear.projects = [project("a")]
        linear.issues = [issue("1"), issue("2")]
        result = sync.sync_all()
        assert result["projects"]["created"] == 1
        assert result["issues"]["created"] == 2

        linear.issues = [issue("1")]
        sync.sync_issues()
        status = sync.status()
        assert status["projects"]["total"] == 1
        assert status["issues"] == {
            "total": 2,
            "active": 1,
            "deleted": 1,
            "last_synced_at": status["issues"]["last_synced_at"],
        }
        assert status["issues"]["last_synced_at"] is not None
