"""Tests for read-only MCP resources."""

import json

import pytest

from dev_journal.errors import NotFoundError
from dev_journal.resources import STATIC_RESOURCES, list_resources, read_resource


class TestListResources:
    def test_static_resources_only_when_empty(self, engine):
        resources = list_resources(engine)
        assert [r["uri"] for r in resources] == [r["uri"] for r in STATIC_RESOURCES]
        assert all(r["mimeType"] == "application/json" for r in resources)

    def test_summary_per_stored_summary(self, engine, make_entry):
        make_entry(repository="my repo")
        make_entry(commit_hash="def5678abc", repository="no summary yet")
        engine.upsert_project_summary("my repo", {"summary": "Has entries"})
        engine.upsert_project_summary("planned", {"summary": "No entries yet"})

        uris = [r["uri"] for r in list_resources(engine)]
        assert "journal://summary/my%20repo" in uris
        assert "journal://summary/planned" in uris
        assert "journal://summary/no%20summary%20yet" not in uris

    def test_every_listed_resource_is_readable(self, engine, make_entry):
        make_entry()
        make_entry(commit_hash="def5678abc", repository="other")
        engine.upsert_project_summary("other", {"summary": "Other project"})

        for resource in list_resources(engine):
            json.loads(read_resource(engine, resource["uri"]))


class TestReadResource:
    def test_repositories(self, engine, make_entry):
        make_entry()
        data = json.loads(read_resource(engine, "journal://repositories"))
        assert data["repositories"][0]["repository"] == "demo"

    def test_summaries(self, engine, make_entry):
        make_entry()
        data = json.loads(read_resource(engine, "journal://summaries"))
        assert data["total"] == 1
        assert data["summaries"][0]["id"] == -1

    def test_repository_stats(self, engine):
        data = json.loads(read_resource(engine, "journal://repository/stats"))
        assert data["total_tokens"] == 6000

    def test_summary_with_encoded_name(self, engine):
        engine.upsert_project_summary("my repo", {"summary": "Spaces in names"})
        data = json.loads(read_resource(engine, "journal://summary/my%20repo"))
        assert data["summary"] == "Spaces in names"

    def test_entry_without_raw_report(self, engine, make_entry):
        make_entry()
        data = json.loads(read_resource(engine, "journal://entry/abc1234def"))
        assert data["commit_hash"] == "abc1234def"
        assert "raw_agent_report" not in data

    def test_missing_summary(self, engine):
        with pytest.raises(NotFoundError):
            read_resource(engine, "journal://summary/nowhere")

    @pytest.mark.parametrize("uri", ["journal://unknown", "journal://summary/", "http://example.com"])
    def test_unknown_uri(self, engine, uri):
        with pytest.raises(NotFoundError):
            read_resource(engine, uri)
