"""Tests for request validation schemas."""

import pytest

from dev_journal.errors import ValidationError
from dev_journal.schemas import (
    DocumentCreate,
    JournalEntryCreate,
    JournalEntryUpdate,
    JournalQuery,
    LinearProjectCreate,
    MemoryEditRequest,
    Pagination,
    PortfolioProjectCreate,
    SkillCreate,
    SkillUpdate,
    TranslationMemoryRequest,
    validate,
)


def skill(**overrides):
    data = {
        "id": "python",
        "name": "Python",
        "category": "Languages",
        "magnitude": 5,
        "description": "Daily driver",
    }
    data.update(overrides)
    return data


class TestPagination:
    def test_defaults(self):
        page = validate(Pagination, {})
        assert page.limit == 50
        assert page.offset == 0

    def test_limit_coerced_from_string(self):
        assert validate(Pagination, {"limit": "20"}).limit == 20

    def test_limit_bounds(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(Pagination, {"limit": 101}, where="query")
        assert exc_info.value.message == "Invalid query"
        assert "limit" in exc_info.value.details

        with pytest.raises(ValidationError):
            validate(Pagination, {"limit": 0})

    def test_negative_offset(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(Pagination, {"offset": -1})
        assert "offset" in exc_info.value.details

    def test_empty_repository_rejected(self):
        with pytest.raises(ValidationError):
            validate(JournalQuery, {"repository": ""})


class TestJournalEntry:
    def test_valid_entry(self):
        entry = validate(
            JournalEntryCreate,
            {
                "commit_hash": "abc1234",
                "repository": "demo",
                "branch": "main",
                "author": "Ada",
                "date": "2025-01-01",
                "raw_agent_report": "Ten chars or more",
            },
        )
        assert entry.team_members == []
        assert entry.files_changed is None

    def test_short_hash_and_report(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(
                JournalEntryCreate,
                {
                    "commit_hash": "abc",
                    "repository": "demo",
                    "branch": "main",
                    "author": "Ada",
                    "date": "2025-01-01",
                    "raw_agent_report": "short",
                },
            )
        details = exc_info.value.details
        assert "commit_hash" in details
        assert "raw_agent_report" in details

    def test_update_only_sent_fields(self):
        update = validate(JournalEntryUpdate, {"why": "Because"})
        assert update.changes() == {"why": "Because"}

    def test_update_can_clear_wisdom(self):
        update = validate(JournalEntryUpdate, {"kronus_wisdom": None, "decisions": None})
        assert update.changes() == {"kronus_wisdom": None}

    def test_update_empty(self):
        assert validate(JournalEntryUpdate, {}).changes() == {}


class TestContentSchemas:
    def test_skill_tags_default(self):
        assert validate(SkillCreate, skill()).tags == []

    def test_skill_id_pattern(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(SkillCreate, skill(id="Python 3"))
        assert "id" in exc_info.value.details

    def test_skill_magnitude_range(self):
        with pytest.raises(ValidationError):
            validate(SkillCreate, skill(magnitude=6))

    def test_skill_url(self):
        assert validate(SkillCreate, skill(url="")).url == ""
        assert validate(SkillCreate, skill(url="https://python.org")).url == "https://python.org"
        with pytest.raises(ValidationError):
            validate(SkillCreate, skill(url="not a url"))
        with pytest.raises(ValidationError):
            validate(SkillUpdate, {"url": "ftp://example.com"})

    def test_document_type(self):
        with pytest.raises(ValidationError):
            validate(DocumentCreate, {"slug": "a", "type": "poem", "title": "A", "content": ""})

    def test_project_status(self):
        data = {"id": "site", "title": "Site", "category": "Web"}
        assert validate(PortfolioProjectCreate, data).status == "shipped"
        with pytest.raises(ValidationError):
            validate(PortfolioProjectCreate, {**data, "status": "dead"})


class TestLinearSchemas:
    def test_project_needs_team(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(LinearProjectCreate, {"name": "Launch", "team_ids": []})
        assert "team_ids" in exc_info.value.details

    def test_root_error(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(LinearProjectCreate, ["not", "an", "object"])
        assert "_root" in exc_info.value.details


class TestWritingSchemas:
    def test_translation_languages_default_to_unknown(self):
        request = validate(TranslationMemoryRequest, {"ai_translation": "Bonjour", "user_final": "Salut"})
        assert (request.source_language, request.target_language) == ("unknown", "unknown")

        request = validate(
            TranslationMemoryRequest,
            {"ai_translation": "Bonjour", "user_final": "Salut", "source_language": "", "target_language": "fr"},
        )
        assert (request.source_language, request.target_language) == ("unknown", "fr")

    def test_translation_texts_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate(TranslationMemoryRequest, {"ai_translation": "Bonjour"})
        assert "user_final" in exc_info.value.details

    def test_memory_edit_message(self):
        assert validate(MemoryEditRequest, {"message": "Forget the comma rule"}).message == "Forget the comma rule"
        with pytest.raises(ValidationError) as exc_info:
            validate(MemoryEditRequest, {})
        assert "message" in exc_info.value.details
