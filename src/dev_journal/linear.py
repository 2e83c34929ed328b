"""Linear integration: a GraphQL client and a local cache of projects and issues.

Cached rows are never removed. Projects or issues that disappear from the
API (or become completed) are soft-deleted so their history survives.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .database import NOW_SQL, JournalDatabase
from .errors import ConfigError, ExternalServiceError, RateLimitError, UnauthorizedError
from .models import decode_json, encode_json
from .schemas import (
    LinearIssueCreate,
    LinearIssueUpdate,
    LinearProjectCreate,
    LinearProjectUpdate,
    validate,
)

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"

CLOSED_PROJECT_STATES = ("completed", "canceled")
CLOSED_ISSUE_STATE_WORDS = ("done", "completed", "canceled")

ISSUE_FIELDS = """
    id identifier title description url priority
    state { id name type }
    assignee { id name }
    team { id name key }
    project { id name }
    parent { id }
"""

PROJECT_FIELDS = """
    id name description content state progress targetDate startDate url
    lead { id name }
    teams { nodes { id } }
    members { nodes { id } }
"""


class LinearClient:
    """Minimal Linear GraphQL client."""

    def __init__(self, api_key: str, http_client: Optional[httpx.Client] = None, timeout: float = 30.0):
        if not api_key:
            raise ConfigError("Linear API key not configured")
        self.api_key = api_key
        self._http = http_client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._http.close()

    def _graphql(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            response = self._http.post(
                LINEAR_API_URL,
                json={"query": query, "variables": variables or {}},
                headers={"Authorization": self.api_key, "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Linear request failed: %s", e)
            raise ExternalServiceError("linear", e) from e

        if response.status_code == 401:
            raise UnauthorizedError("Linear rejected the API key")
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Linear rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 400:
            raise ExternalServiceError("linear", detail=f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError("linear", e, detail="invalid JSON response") from e

        if body.get("errors"):
            message = "; ".join(err.get("message", "unknown error") for err in body["errors"])
            raise ExternalServiceError("linear", detail=message)
        return body.get("data") or {}

    # ========== Reads ==========

    def get_viewer(self) -> dict:
        data = self._graphql("query { viewer { id name email } }")
        return data["viewer"]

    def list_teams(self) -> list[dict]:
        data = self._graphql("query { teams { nodes { id name key } } }")
        return data["teams"]["nodes"]

    def list_projects(self, team_id: Optional[str] = None, show_all: bool = False) -> list[dict]:
        """List projects; completed and canceled ones only with ``show_all``."""
        if team_id:
            data = self._graphql(
                f"query($teamId: String!) {{ team(id: $teamId) {{ projects {{ nodes {{ {PROJECT_FIELDS} }} }} }} }}",
                {"teamId": team_id},
            )
            projects = data["team"]["projects"]["nodes"]
        else:
            data = self._graphql(f"query {{ projects(first: 100) {{ nodes {{ {PROJECT_FIELDS} }} }} }}")
            projects = data["projects"]["nodes"]
        if not show_all:
            projects = [p for p in projects if p.get("state") not in CLOSED_PROJECT_STATES]
        return projects

    def list_issues(
        self,
        show_all: bool = False,
        limit: int = 50,
        assignee_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> list[dict]:
        issue_filter: dict[str, Any] = {}
        if assignee_id:
            issue_filter["assignee"] = {"id": {"eq": assignee_id}}
        if project_id:
            issue_filter["project"] = {"id": {"eq": project_id}}
        data = self._graphql(
            f"query($first: Int, $filter: IssueFilter) {{ issues(first: $first, filter: $filter) {{ nodes {{ {ISSUE_FIELDS} }} }} }}",
            {"first": limit, "filter": issue_filter or None},
        )
        issues = data["issues"]["nodes"]
        if not show_all:
            issues = [i for i in issues if not is_closed_issue(i)]
        return issues

    # ========== Writes ==========

    def create_project(self, data: dict[str, Any]) -> dict:
        project = validate(LinearProjectCreate, data)
        payload = {
            "name": project.name,
            "teamIds": project.team_ids,
            "description": project.description,
            "content": project.content,
            "leadId": project.lead_id,
            "targetDate": project.target_date,
        }
        result = self._graphql(
            f"mutation($input: ProjectCreateInput!) {{ projectCreate(input: $input) {{ success project {{ {PROJECT_FIELDS} }} }} }}",
            {"input": {k: v for k, v in payload.items() if v is not None}},
        )
        return result["projectCreate"]["project"]

    def update_project(self, project_id: str, data: dict[str, Any]) -> dict:
        changes = validate(LinearProjectUpdate, data).model_dump(exclude_none=True)
        payload = {
            {"lead_id": "leadId", "target_date": "targetDate"}.get(k, k): v for k, v in changes.items()
        }
        result = self._graphql(
            f"mutation($id: String!, $input: ProjectUpdateInput!) {{ projectUpdate(id: $id, input: $input) {{ success project {{ {PROJECT_FIELDS} }} }} }}",
            {"id": project_id, "input": payload},
        )
        return result["projectUpdate"]["project"]

    def create_issue(self, data: dict[str, Any]) -> dict:
        issue = validate(LinearIssueCreate, data)
        payload = {
            "title": issue.title,
            "teamId": issue.team_id,
            "description": issue.description,
            "priority": issue.priority,
            "assigneeId": issue.assignee_id,
            "projectId": issue.project_id,
            "parentId": issue.parent_id,
        }
        result = self._graphql(
            f"mutation($input: IssueCreateInput!) {{ issueCreate(input: $input) {{ success issue {{ {ISSUE_FIELDS} }} }} }}",
            {"input": {k: v for k, v in payload.items() if v is not None}},
        )
        return result["issueCreate"]["issue"]

    def update_issue(self, issue_id: str, data: dict[str, Any]) -> dict:
        changes = validate(LinearIssueUpdate, data).model_dump(exclude_none=True)
        names = {"state_id": "stateId", "assignee_id": "assigneeId", "project_id": "projectId"}
        payload = {names.get(k, k): v for k, v in changes.items()}
        result = self._graphql(
            f"mutation($id: String!, $input: IssueUpdateInput!) {{ issueUpdate(id: $id, input: $input) {{ success issue {{ {ISSUE_FIELDS} }} }} }}",
            {"id": issue_id, "input": payload},
        )
        return result["issueUpdate"]["issue"]


def is_closed_issue(issue: dict) -> bool:
    state_name = ((issue.get("state") or {}).get("name") or "").lower()
    return any(word in state_name for word in CLOSED_ISSUE_STATE_WORDS)


def _node_id(value: Optional[dict], key: str = "id") -> Optional[str]:
    return value.get(key) if value else None


class LinearSync:
    """Mirror Linear projects and issues into the local cache."""

    def __init__(self, db: JournalDatabase, client: LinearClient):
        self.db = db
        self.client = client

    def _cached_ids(self, table: str) -> set[str]:
        return {row["id"] for row in self.db.fetch_all(f"SELECT id FROM {table}")}

    def _soft_delete_missing(self, table: str, keep: set[str]) -> int:
        deleted = 0
        rows = self.db.fetch_all(f"SELECT id FROM {table} WHERE is_deleted = 0")
        for row in rows:
            if row["id"] not in keep:
                self.db.execute(
                    f"UPDATE {table} SET is_deleted = 1, deleted_at = {NOW_SQL}, synced_at = {NOW_SQL} WHERE id = ?",
                    (row["id"],),
                )
                deleted += 1
        return deleted

    def _store(self, table: str, values: dict[str, Any], existing: set[str]) -> bool:
        """Insert or refresh one cached row; returns True when it was new."""
        if values["id"] in existing:
            columns = [k for k in values if k != "id"]
            assignments = ", ".join(f"{c} = ?" for c in columns)
            self.db.execute(
                f"""UPDATE {table} SET {assignments}, is_deleted = 0, deleted_at = NULL,
                    synced_at = {NOW_SQL}, updated_at = {NOW_SQL} WHERE id = ?""",
                [values[c] for c in columns] + [values["id"]],
            )
            return False
        columns = list(values)
        self.db.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [values[c] for c in columns],
        )
        return True

    def sync_projects(self, include_completed: bool = False) -> dict:
        projects = self.client.list_projects(show_all=True)
        if not include_completed:
            projects = [p for p in projects if p.get("state") not in CLOSED_PROJECT_STATES]

        existing = self._cached_ids("linear_projects")
        created = updated = 0
        with self.db.transaction():
            for project in projects:
                values = {
                    "id": project["id"],
                    "name": project["name"],
                    "description": project.get("description") or None,
                    "content": project.get("content") or None,
                    "state": project.get("state") or None,
                    "progress": project.get("progress"),
                    "target_date": project.get("targetDate"),
                    "start_date": project.get("startDate"),
                    "url": project["url"],
                    "lead_id": _node_id(project.get("lead")),
                    "lead_name": _node_id(project.get("lead"), "name"),
                    "team_ids": encode_json([t["id"] for t in (project.get("teams") or {}).get("nodes", [])]),
                    "member_ids": encode_json([m["id"] for m in (project.get("members") or {}).get("nodes", [])]),
                }
                if self._store("linear_projects", values, existing):
                    created += 1
                else:
                    updated += 1
            deleted = self._soft_delete_missing("linear_projects", {p["id"] for p in projects})

        total = self.db.fetch_value("SELECT COUNT(*) FROM linear_projects", default=0)
        logger.info("Synced Linear projects: %d created, %d updated, %d deleted", created, updated, deleted)
        return {"created": created, "updated": updated, "deleted": deleted, "total": total}

    def sync_issues(self, include_completed: bool = False) -> dict:
        issues = self.client.list_issues(show_all=True, limit=250)
        if not include_completed:
            issues = [i for i in issues if not is_closed_issue(i)]

        existing = self._cached_ids("linear_issues")
        created = updated = 0
        with self.db.transaction():
            for issue in issues:
                state = issue.get("state") or {}
                team = issue.get("team") or {}
                project = issue.get("project") or {}
                assignee = issue.get("assignee") or {}
                values = {
                    "id": issue["id"],
                    "identifier": issue["identifier"],
                    "title": issue["title"],
                    "description": issue.get("description") or None,
                    "url": issue["url"],
                    "priority": issue.get("priority"),
                    "state_id": state.get("id"),
                    "state_name": state.get("name"),
                    "assignee_id": assignee.get("id"),
                    "assignee_name": assignee.get("name"),
                    "team_id": team.get("id"),
                    "team_name": team.get("name"),
                    "team_key": team.get("key"),
                    "project_id": project.get("id"),
                    "project_name": project.get("name"),
                    "parent_id": _node_id(issue.get("parent")),
                }
                if self._store("linear_issues", values, existing):
                    created += 1
                else:
                    updated += 1
            deleted = self._soft_delete_missing("linear_issues", {i["id"] for i in issues})

        total = self.db.fetch_value("SELECT COUNT(*) FROM linear_issues", default=0)
        logger.info("Synced Linear issues: %d created, %d updated, %d deleted", created, updated, deleted)
        return {"created": created, "updated": updated, "deleted": deleted, "total": total}

    def sync_all(self, include_completed: bool = False) -> dict:
        return {
            "projects": self.sync_projects(include_completed),
            "issues": self.sync_issues(include_completed),
        }

    def status(self) -> dict:
        def counts(table: str) -> dict:
            row = self.db.fetch_one(
                f"""SELECT COUNT(*) AS total,
                           COALESCE(SUM(CASE WHEN is_deleted = 0 THEN 1 ELSE 0 END), 0) AS active,
                           COALESCE(SUM(CASE WHEN is_deleted = 1 THEN 1 ELSE 0 END), 0) AS deleted,
                           MAX(synced_at) AS last_synced_at
                    FROM {table}"""
            )
            return dict(row)

        return {"projects": counts("linear_projects"), "issues": counts("linear_issues")}

    def cached_projects(self, include_deleted: bool = False) -> list[dict]:
        where = "" if include_deleted else "WHERE is_deleted = 0"
        rows = self.db.fetch_all(f"SELECT * FROM linear_projects {where} ORDER BY name")
        projects = []
        for row in rows:
            data = dict(row)
            data["team_ids"] = decode_json(data["team_ids"], [])
            data["member_ids"] = decode_json(data["member_ids"], [])
            data["is_deleted"] = bool(data["is_deleted"])
            projects.append(data)
        return projects

    def cached_issues(self, include_deleted: bool = False, project_id: Optional[str] = None) -> list[dict]:
        conditions = []
        params: list[Any] = []
        if not include_deleted:
            conditions.append("is_deleted = 0")
        if project_id:
            conditions.append("project_id = ?")
            params.append(project_id)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = self.db.fetch_all(f"SELECT * FROM linear_issues {where} ORDER BY identifier", params)
        return [{**dict(row), "is_deleted": bool(row["is_deleted"])} for row in rows]
