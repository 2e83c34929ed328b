"""Tests for MCP tool definitions and dispatch."""

import base64
import json

import httpx
import pytest

from dev_journal.engine import JournalEngine
from dev_journal.errors import ExternalServiceError
from dev_journal.linear import LinearClient
from dev_journal.tools import MAX_TOOL_LIMIT, _clamp_limit, _clamp_offset, execute_tool, make_tools

EXPECTED_TOOLS = {
    "journal_create_entry",
    "journal_get_entry",
    "journal_list_by_repository",
    "journal_list_by_branch",
    "journal_list_repositories",
    "journal_list_branches",
    "journal_edit_entry",
    "journal_get_project_summary",
    "journal_list_project_summaries",
    "journal_submit_summary_report",
    "journal_attach_file",
    "journal_list_attachments",
    "journal_get_attachment",
    "journal_backup",
    "journal_stats",
    "repository_list_skills",
    "repository_upsert_skill",
    "repository_list_experience",
    "repository_list_education",
    "repository_list_portfolio_projects",
    "repository_upsert_portfolio_project",
    "repository_list_documents",
    "repository_get_document",
    "repository_create_document",
    "linear_get_viewer",
    "linear_list_projects",
    "linear_list_issues",
    "linear_create_issue",
    "linear_update_issue",
    "linear_create_project",
    "linear_sync",
}


class TestToolDefinitions:
    def test_all_tools_defined(self, engine):
        tools = make_tools(engine)
        assert EXPECTED_TOOLS <= set(tools)

    def test_definitions_have_schema(self, engine):
        for name, tool in make_tools(engine).items():
            assert tool["name"] == name
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"

    def test_required_arguments(self, engine):
        tools = make_tools(engine)
        assert set(tools["journal_create_entry"]["inputSchema"]["required"]) >= {
            "commit_hash",
            "repository",
            "branch",
            "author",
            "date",
            "raw_agent_report",
        }
        assert tools["journal_get_entry"]["inputSchema"]["required"] == ["commit_hash"]

    def test_clamp_limit(self):
        assert _clamp_limit(None) == 20
        assert _clamp_limit(500) == MAX_TOOL_LIMIT
        assert _clamp_limit(0) == 1
        assert _clamp_limit("7") == 7
        assert _clamp_limit("many") == 20

    def test_clamp_offset(self):
        assert _clamp_offset(None) == 0
        assert _clamp_offset(-5) == 0
        assert _clamp_offset("3") == 3
        assert _clamp_offset("abc") == 0


class TestJournalTools:
    @pytest.mark.asyncio
    async def test_create_and_get(self, engine, entry_payload):
        result = await execute_tool(engine, "journal_create_entry", entry_payload())
        assert result["success"] is True
        assert result["entry"]["why"] == "Why abc1234"
        assert "raw_agent_report" not in result["entry"]

        fetched = await execute_tool(engine, "journal_get_entry", {"commit_hash": "abc1234def"})
        assert fetched["entry"]["raw_agent_report"].startswith("Refactored")
        assert fetched["entry"]["attachments"] == []

    @pytest.mark.asyncio
    async def test_list_by_repository_clamps_limit(self, engine, make_entry):
        for i in range(3):
            make_entry(f"commit{i:04d}")
        result = await execute_tool(engine, "journal_list_by_repository", {"repository": "demo", "limit": 999})
        assert result["success"] is True
        assert result["limit"] == MAX_TOOL_LIMIT
        assert result["total"] == 3
        assert "raw_agent_report" not in result["entries"][0]

    @pytest.mark.asyncio
    async def test_list_with_non_numeric_offset(self, engine, make_entry):
        make_entry()
        result = await execute_tool(
            engine, "journal_list_by_repository", {"repository": "demo", "offset": "abc"}
        )
        assert result["success"] is True
        assert result["offset"] == 0
        assert result["total"] == 1

    @pytest.mark.asyncio
    async def test_list_by_branch(self, engine, make_entry):
        make_entry("aaaaaaa1", branch="main")
        make_entry("aaaaaaa2", branch="feature")
        result = await execute_tool(
            engine, "journal_list_by_branch", {"repository": "demo", "branch": "feature", "include_raw_report": True}
        )
        assert [e["commit_hash"] for e in result["entries"]] == ["aaaaaaa2"]
        assert "raw_agent_report" in result["entries"][0]

    @pytest.mark.asyncio
    async def test_repositories_and_branches(self, engine, make_entry):
        make_entry()
        repos = await execute_tool(engine, "journal_list_repositories", {})
        assert repos["count"] == 1
        branches = await execute_tool(engine, "journal_list_branches", {"repository": "demo"})
        assert branches["branches"][0]["branch"] == "main"

    @pytest.mark.asyncio
    async def test_edit_entry(self, engine, make_entry):
        make_entry()
        result = await execute_tool(
            engine, "journal_edit_entry", {"commit_hash": "abc1234def", "why": "Edited", "kronus_wisdom": None}
        )
        assert result["success"] is True
        assert result["entry"]["why"] == "Edited"
        assert result["entry"]["kronus_wisdom"] is None
        assert set(result["updated_fields"]) == {"why", "kronus_wisdom"}

    @pytest.mark.asyncio
    async def test_summary_tools(self, engine, make_entry):
        make_entry()
        missing = await execute_tool(engine, "journal_get_project_summary", {"repository": "demo"})
        assert missing["error_type"] == "not_found"

        report = await execute_tool(
            engine,
            "journal_submit_summary_report",
            {"repository": "demo", "raw_report": "The project is a journal for developers."},
        )
        assert report["created"] is True

        summary = await execute_tool(engine, "journal_get_project_summary", {"repository": "demo"})
        assert summary["summary"]["summary"] == "A developer journal"

        listing = await execute_tool(engine, "journal_list_project_summaries", {})
        assert listing["total"] == 1

    @pytest.mark.asyncio
    async def test_attachment_tools(self, engine, make_entry):
        make_entry()
        data = base64.b64encode(b"graph TD; A-->B").decode()
        attached = await execute_tool(
            engine,
            "journal_attach_file",
            {"commit_hash": "abc1234def", "filename": "flow.mmd", "data_base64": data, "mime_type": "text/plain"},
        )
        attachment_id = attached["attachment"]["id"]

        by_commit = await execute_tool(engine, "journal_list_attachments", {"commit_hash": "abc1234def"})
        assert by_commit["total"] == 1
        by_repo = await execute_tool(engine, "journal_list_attachments", {"repository": "demo"})
        assert by_repo["total"] == 1
        by_type = await execute_tool(engine, "journal_list_attachments", {"type": "image"})
        assert by_type["total"] == 0

        fetched = await execute_tool(
            engine, "journal_get_attachment", {"attachment_id": attachment_id, "include_data": True}
        )
        assert fetched["attachment"]["data_base64"] == data

    @pytest.mark.asyncio
    async def test_backup_and_stats(self, engine, config, make_entry):
        make_entry()
        backup = await execute_tool(engine, "journal_backup", {})
        assert backup["success"] is True
        assert config.get_backup_path().exists()

        stats = await execute_tool(engine, "journal_stats", {})
        assert stats["total_entries"] == 1


class TestRepositoryTools:
    @pytest.mark.asyncio
    async def test_skills(self, engine):
        skill = {"id": "python", "name": "Python", "category": "Languages", "magnitude": 5, "description": "Daily"}
        await execute_tool(engine, "repository_upsert_skill", skill)
        updated = await execute_tool(engine, "repository_upsert_skill", {**skill, "magnitude": 4})
        assert updated["skill"]["magnitude"] == 4

        listing = await execute_tool(engine, "repository_list_skills", {})
        assert listing["total"] == 1

    @pytest.mark.asyncio
    async def test_portfolio(self, engine):
        await execute_tool(
            engine, "repository_upsert_portfolio_project", {"id": "site", "title": "Site", "category": "Web"}
        )
        listing = await execute_tool(engine, "repository_list_portfolio_projects", {"status": "shipped"})
        assert [p["id"] for p in listing["projects"]] == ["site"]

    @pytest.mark.asyncio
    async def test_experience_and_education_lists(self, engine):
        assert (await execute_tool(engine, "repository_list_experience", {}))["total"] == 0
        assert (await execute_tool(engine, "repository_list_education", {}))["total"] == 0

    @pytest.mark.asyncio
    async def test_documents(self, engine):
        created = await execute_tool(
            engine,
            "repository_create_document",
            {"slug": "hello", "type": "writing", "title": "Hello", "content": "World"},
        )
        assert created["document"]["slug"] == "hello"

        fetched = await execute_tool(engine, "repository_get_document", {"slug": "hello"})
        assert fetched["document"]["content"] == "World"

        listing = await execute_tool(engine, "repository_list_documents", {"type": "writing", "limit": 1000})
        assert listing["total"] == 1
        assert listing["limit"] == MAX_TOOL_LIMIT

        duplicate = await execute_tool(
            engine,
            "repository_create_document",
            {"slug": "hello", "type": "writing", "title": "Again", "content": ""},
        )
        assert duplicate["error_type"] == "conflict"


class TestLinearTools:
    @pytest.fixture
    def linear_engine(self, config, fake_ai):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    "data": {
                        "viewer": {"id": "u1", "name": "Ada"},
                        "issues": {"nodes": [{"id": "i1", "title": "Open", "state": {"name": "Todo"}}]},
                    }
                },
            )

        config.linear_user_id = "u1"
        client = LinearClient("lin_api_test", http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        eng = JournalEngine(config, ai=fake_ai, linear_client=client)
        eng.requests = requests
        yield eng
        eng.close()

    @pytest.mark.asyncio
    async def test_missing_key(self, engine):
        result = await execute_tool(engine, "linear_get_viewer", {})
        assert result["success"] is False
        assert result["error_type"] == "config_error"

    @pytest.mark.asyncio
    async def test_viewer(self, linear_engine):
        result = await execute_tool(linear_engine, "linear_get_viewer", {})
        assert result["viewer"]["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_issues_default_to_configured_user(self, linear_engine):
        result = await execute_tool(linear_engine, "linear_list_issues", {})
        assert result["total"] == 1
        variables = json.loads(linear_engine.requests[-1].content)["variables"]
        assert variables["filter"] == {"assignee": {"id": {"eq": "u1"}}}

        await execute_tool(linear_engine, "linear_list_issues", {"show_all": True})
        variables = json.loads(linear_engine.requests[-1].content)["variables"]
        assert variables["filter"] is None

    @pytest.mark.asyncio
    async def test_external_error(self, engine):
        class Broken:
            def get_viewer(self):
                raise ExternalServiceError("linear", detail="HTTP 502")

            def close(self):
                pass

        engine._linear_client = Broken()
        result = await execute_tool(engine, "linear_get_viewer", {})
        assert result["error_type"] == "external_service_error"
        assert "HTTP 502" in result["error"]


class TestErrors:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, engine):
        result = await execute_tool(engine, "nonexistent_tool", {})
        assert result["success"] is False
        assert "Unknown tool" in result["error"]

    @pytest.mark.asyncio
    async def test_missing_argument(self, engine):
        result = await execute_tool(engine, "journal_get_entry", {})
        assert result["error_type"] == "validation_error"
        assert "commit_hash" in result["error"]

    @pytest.mark.asyncio
    async def test_validation_details(self, engine, entry_payload):
        result = await execute_tool(engine, "journal_create_entry", entry_payload(commit_hash="abc"))
        assert result["error_type"] == "validation_error"
        assert "commit_hash" in result["details"]
        assert result["suggestion"]

    @pytest.mark.asyncio
    async def test_duplicate_entry(self, engine, entry_payload):
        await execute_tool(engine, "journal_create_entry", entry_payload())
        result = await execute_tool(engine, "journal_create_entry", entry_payload())
        assert result["error_type"] == "conflict"

    @pytest.mark.asyncio
    async def test_model_failure(self, engine, fake_ai, entry_payload):
        fake_ai.error = ExternalServiceError("anthropic", detail="overloaded")
        result = await execute_tool(engine, "journal_create_entry", entry_payload())
        assert result["error_type"] == "external_service_error"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, engine, fake_ai, entry_payload):
        fake_ai.error = RuntimeError("boom")
        result = await execute_tool(engine, "journal_create_entry", entry_payload())
        assert result["error_type"] == "unexpected_error"
        assert result["error"] == "boom"


class TestCustomTools:
    @pytest.mark.asyncio
    async def test_sync_custom_tool(self, engine):
        engine.config.custom_tools["hello"] = lambda eng, params: {"success": True, "hello": params["name"]}
        result = await execute_tool(engine, "hello", {"params": {"name": "Ada"}})
        assert result == {"success": True, "hello": "Ada"}

    @pytest.mark.asyncio
    async def test_async_custom_tool_gets_arguments(self, engine):
        async def counter(eng, params):
            return {"success": True, "entries": eng.journal_stats()["total_entries"], "params": params}

        engine.config.custom_tools["count_entries"] = counter
        result = await execute_tool(engine, "count_entries", {"verbose": True})
        assert result == {"success": True, "entries": 0, "params": {"verbose": True}}

    @pytest.mark.asyncio
    async def test_custom_tool_error(self, engine):
        def broken(eng, params):
            raise ValueError("bad input")

        engine.config.custom_tools["broken"] = broken
        result = await execute_tool(engine, "broken", {})
        assert result["success"] is False
        assert result["error_type"] == "custom_tool_error"
        assert result["error"] == "bad input"
