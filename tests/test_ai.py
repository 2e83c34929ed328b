"""Tests for the hosted model wrapper, using a stubbed Anthropic client."""

from types import SimpleNamespace

import pytest

from dev_journal.ai import JournalAI, get_recent_traces, get_trace_spans, get_trace_stats
from dev_journal.config import JournalConfig
from dev_journal.database import JournalDatabase
from dev_journal.errors import ConfigError, ExternalServiceError
from dev_journal.models import EntryAnalysis


class StubMessages:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def tool_response(name, payload, input_tokens=120, output_tokens=40):
    return SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Thinking..."),
            SimpleNamespace(type="tool_use", name=name, input=payload),
        ],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


ENTRY_OUTPUT = {
    "why": "Fix flaky parser",
    "what_changed": "Rewrote tokenizer",
    "decisions": "Dropped regex approach",
    "technologies": "Python",
    "kronus_wisdom": None,
}

CONTEXT = {
    "commit_hash": "abc1234",
    "repository": "demo",
    "branch": "main",
    "author": "Ada",
    "date": "2025-01-01",
    "raw_agent_report": "Rewrote the tokenizer to fix flaky parsing.",
}


@pytest.fixture
def db(temp_project):
    database = JournalDatabase(temp_project / "journal.db")
    yield database
    database.close()


@pytest.fixture
def ai_config(temp_project):
    return JournalConfig(project_root=temp_project, ai_api_key="sk-test")


def make_ai(config, db, messages):
    return JournalAI(config, db, client=SimpleNamespace(messages=messages))


class TestClientSetup:
    def test_missing_key(self, temp_project):
        ai = JournalAI(JournalConfig(project_root=temp_project))
        with pytest.raises(ConfigError, match="API key"):
            ai.generate_entry(CONTEXT)


class TestCalls:
    def test_generate_entry(self, ai_config, db):
        messages = StubMessages(tool_response("record_entry", ENTRY_OUTPUT))
        analysis = make_ai(ai_config, db, messages).generate_entry(CONTEXT)

        assert isinstance(analysis, EntryAnalysis)
        assert analysis.why == "Fix flaky parser"
        request = messages.requests[0]
        assert request["model"] == ai_config.entry_model
        assert request["tool_choice"] == {"type": "tool", "name": "record_entry"}
        assert request["tools"][0]["name"] == "record_entry"
        assert "Rewrote the tokenizer" in request["messages"][0]["content"]

    def test_normalize_report_uses_summary_model(self, ai_config, db):
        messages = StubMessages(tool_response("update_summary", {"summary": "New", "status": None}))
        update = make_ai(ai_config, db, messages).normalize_report("Long report", None, [])

        assert update.summary == "New"
        assert update.status is None
        assert messages.requests[0]["model"] == ai_config.summary_model
        assert "No existing Entry 0" in messages.requests[0]["messages"][0]["content"]

    def test_memory_edit_lists_indexed_memories(self, ai_config, db):
        messages = StubMessages(
            tool_response("edit_memory", {"action": "remove_memory", "target_memory_index": 1, "explanation": "Removed"})
        )
        action = make_ai(ai_config, db, messages).interpret_memory_edit("forget the second", ["a", "b"], ["Kronus"])

        assert action.action == "remove_memory"
        prompt = messages.requests[0]["messages"][0]["content"]
        assert "[0] a" in prompt
        assert "[1] b" in prompt
        assert "Kronus" in prompt

    def test_sdk_error(self, ai_config, db):
        messages = StubMessages(error=RuntimeError("overloaded"))
        with pytest.raises(ExternalServiceError) as exc_info:
            make_ai(ai_config, db, messages).generate_entry(CONTEXT)
        assert exc_info.value.service == "anthropic"
        assert isinstance(exc_info.value.original, RuntimeError)

    def test_no_tool_block(self, ai_config, db):
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="I refuse")],
            usage=SimpleNamespace(input_tokens=10, output_tokens=2),
        )
        with pytest.raises(ExternalServiceError, match="no structured output"):
            make_ai(ai_config, db, StubMessages(response)).generate_entry(CONTEXT)

    def test_invalid_structured_output(self, ai_config, db):
        messages = StubMessages(tool_response("record_entry", {"why": "only one field"}))
        with pytest.raises(ExternalServiceError, match="failed validation"):
            make_ai(ai_config, db, messages).generate_entry(CONTEXT)


class TestTraces:
    def test_success_recorded(self, ai_config, db):
        make_ai(ai_config, db, StubMessages(tool_response("record_entry", ENTRY_OUTPUT))).generate_entry(CONTEXT)

        traces = get_recent_traces(db)
        assert len(traces) == 1
        assert traces[0]["name"] == "generate_entry"
        assert traces[0]["status"] == "ok"
        assert traces[0]["input_tokens"] == 120

        spans = get_trace_spans(db, traces[0]["trace_id"])
        assert len(spans) == 1
        assert spans[0]["model"] == ai_config.entry_model

    def test_error_recorded(self, ai_config, db):
        with pytest.raises(ExternalServiceError):
            make_ai(ai_config, db, StubMessages(error=RuntimeError("boom"))).generate_entry(CONTEXT)
        traces = get_recent_traces(db)
        assert traces[0]["status"] == "error"
        assert get_trace_spans(db, traces[0]["trace_id"])[0]["error"] == "boom"

    def test_stats(self, ai_config, db):
        ai = make_ai(ai_config, db, StubMessages(tool_response("record_entry", ENTRY_OUTPUT, 100, 10)))
        ai.generate_entry(CONTEXT)
        ai.generate_entry(CONTEXT)
        ai.client.messages.error = RuntimeError("down")
        with pytest.raises(ExternalServiceError):
            ai.generate_entry(CONTEXT)

        stats = get_trace_stats(db, days=1)
        assert stats["total_calls"] == 3
        assert stats["total_input_tokens"] == 200
        assert stats["total_output_tokens"] == 20
        assert stats["total_errors"] == 1
        assert stats["by_model"][0]["model"] == ai_config.entry_model

    def test_no_database_no_trace(self, ai_config):
        ai = JournalAI(ai_config, client=SimpleNamespace(messages=StubMessages(tool_response("record_entry", ENTRY_OUTPUT))))
        assert ai.generate_entry(CONTEXT).why == "Fix flaky parser"
