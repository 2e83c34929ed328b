"""Shared pytest fixtures for dev-journal tests."""

import tempfile
from pathlib import Path

import pytest

from dev_journal.config import JournalConfig
from dev_journal.engine import JournalEngine
from dev_journal.models import EntryAnalysis
from dev_journal.schemas import MemoryEditAction, MemoryExtraction, SummaryUpdate


class FakeAI:
    """Stands in for JournalAI; records calls and returns canned structured output."""

    def __init__(self):
        self.calls = []
        self.summary_update = SummaryUpdate(summary="A developer journal", purpose="Track work")
        self.memory_action = MemoryEditAction(action="no_change", explanation="Nothing to change")
        self.extraction = MemoryExtraction(
            main_changes=["Softer greeting"],
            new_patterns=["Prefer informal address"],
            suggested_label="tone",
            protected_terms=["Kronus"],
        )
        self.error = None

    def _record(self, name, *args):
        self.calls.append((name, args))
        if self.error is not None:
            raise self.error

    def generate_entry(self, context):
        self._record("generate_entry", context)
        return EntryAnalysis(
            why=f"Why {context['commit_hash'][:7]}",
            what_changed="Changed the parser",
            decisions="Kept the old format",
            technologies="Python, SQLite",
            kronus_wisdom="Small steps",
        )

    def normalize_report(self, raw_report, existing, recent):
        self._record("normalize_report", raw_report, existing, recent)
        return self.summary_update

    def interpret_memory_edit(self, user_message, memories, dictionary):
        self._record("interpret_memory_edit", user_message, memories, dictionary)
        return self.memory_action

    def extract_translation_memory(self, ai_translation, user_final, source_language, target_language):
        self._record("extract_translation_memory", ai_translation, user_final, source_language, target_language)
        return self.extraction


@pytest.fixture
def temp_project():
    """Create a temporary project directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_project):
    """Create a test configuration."""
    return JournalConfig(project_root=temp_project)


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def engine(config, fake_ai):
    """Create a test engine with a fake model and proper cleanup."""
    eng = JournalEngine(config, ai=fake_ai)
    yield eng
    eng.close()


@pytest.fixture
def entry_payload():
    """Factory for valid journal entry creation payloads."""

    def _payload(commit_hash="abc1234def", repository="demo", branch="main", **overrides):
        data = {
            "commit_hash": commit_hash,
            "repository": repository,
            "branch": branch,
            "author": "Ada",
            "date": "2025-01-15T10:00:00Z",
            "raw_agent_report": "Refactored the parser and added tests for edge cases.",
        }
        data.update(overrides)
        return data

    return _payload


@pytest.fixture
def make_entry(engine, entry_payload):
    """Create journal entries through the engine."""

    def _make(commit_hash="abc1234def", repository="demo", branch="main", **overrides):
        return engine.create_entry(entry_payload(commit_hash, repository, branch, **overrides))

    return _make
