"""Tests for CV, portfolio and document storage."""

import pytest

from dev_journal.content import ContentStore
from dev_journal.database import JournalDatabase
from dev_journal.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def store(temp_project):
    db = JournalDatabase(temp_project / "journal.db")
    yield ContentStore(db)
    db.close()


def skill(skill_id="python", **overrides):
    data = {
        "id": skill_id,
        "name": skill_id.title(),
        "category": "Languages",
        "magnitude": 4,
        "description": "Used daily",
    }
    data.update(overrides)
    return data


def project(project_id="site", **overrides):
    data = {"id": project_id, "title": project_id.title(), "category": "Web"}
    data.update(overrides)
    return data


class TestSkills:
    def test_create_and_get(self, store):
        created = store.create_skill(skill(tags=["backend", "scripting"]))
        assert created["tags"] == ["backend", "scripting"]
        assert store.get_skill("python")["magnitude"] == 4

    def test_duplicate_id(self, store):
        store.create_skill(skill())
        with pytest.raises(ConflictError, match="Skill with this ID already exists"):
            store.create_skill(skill())

    def test_ordered_by_category_then_name(self, store):
        store.create_skill(skill("rust", category="Languages"))
        store.create_skill(skill("docker", category="Infrastructure"))
        store.create_skill(skill("go", category="Languages"))
        assert [s["id"] for s in store.list_skills()] == ["docker", "go", "rust"]

    def test_update(self, store):
        store.create_skill(skill())
        updated = store.update_skill("python", {"magnitude": 5, "tags": ["core"]})
        assert updated["magnitude"] == 5
        assert updated["tags"] == ["core"]
        assert updated["name"] == "Python"

    def test_update_empty(self, store):
        store.create_skill(skill())
        with pytest.raises(ValidationError, match="No fields to update"):
            store.update_skill("python", {})

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update_skill("cobol", {"magnitude": 1})

    def test_upsert(self, store):
        store.upsert_skill(skill())
        store.upsert_skill(skill(description="Every day"))
        skills = store.list_skills()
        assert len(skills) == 1
        assert skills[0]["description"] == "Every day"

    def test_delete(self, store):
        store.create_skill(skill())
        store.delete_skill("python")
        with pytest.raises(NotFoundError):
            store.get_skill("python")
        with pytest.raises(NotFoundError):
            store.delete_skill("python")


class TestExperienceAndEducation:
    def test_experience_newest_first(self, store):
        base = {"company": "Acme", "location": "Remote", "tagline": "Built things"}
        store.create_experience({"id": "old", "title": "Dev", "date_start": "2018-01", **base})
        store.create_experience(
            {"id": "new", "title": "Lead", "date_start": "2022-05", "achievements": ["Shipped v2"], **base}
        )
        items = store.list_experience()
        assert [e["id"] for e in items] == ["new", "old"]
        assert items[0]["achievements"] == ["Shipped v2"]

    def test_experience_update_and_delete(self, store):
        store.create_experience(
            {"id": "acme", "title": "Dev", "company": "Acme", "location": "Paris",
             "date_start": "2020-01", "tagline": "Work"}
        )
        assert store.update_experience("acme", {"date_end": "2023-01"})["date_end"] == "2023-01"
        store.delete_experience("acme")
        assert store.list_experience() == []

    def test_education(self, store):
        store.create_education(
            {
                "id": "msc",
                "degree": "MSc",
                "field": "Computer Science",
                "institution": "EPFL",
                "location": "Lausanne",
                "date_start": "2015",
                "date_end": "2017",
                "tagline": "Distributed systems",
                "focus_areas": ["Databases"],
            }
        )
        item = store.get_education("msc")
        assert item["focus_areas"] == ["Databases"]
        assert item["achievements"] == []
        with pytest.raises(NotFoundError, match="Education"):
            store.get_education("phd")

    def test_education_requires_end_date(self, store):
        with pytest.raises(ValidationError):
            store.create_education(
                {"id": "bsc", "degree": "BSc", "field": "CS", "institution": "X",
                 "location": "Y", "date_start": "2010", "tagline": "Z"}
            )


class TestPortfolio:
    def test_featured_first_then_sort_order(self, store):
        store.create_project(project("a", sort_order=2))
        store.create_project(project("b", sort_order=1))
        store.create_project(project("c", featured=True, sort_order=9))

        result = store.list_projects()
        assert [p["id"] for p in result["projects"]] == ["c", "b", "a"]
        assert result["projects"][0]["featured"] is True
        assert result["total"] == 3

    def test_filters(self, store):
        store.create_project(project("a", status="wip", category="Web"))
        store.create_project(project("b", status="shipped", category="Data", featured=True))

        assert [p["id"] for p in store.list_projects(status="wip")["projects"]] == ["a"]
        assert [p["id"] for p in store.list_projects(category="Data")["projects"]] == ["b"]
        assert [p["id"] for p in store.list_projects(featured=True)["projects"]] == ["b"]
        # Unknown status values do not filter
        assert store.list_projects(status="unknown")["total"] == 2

    def test_json_columns(self, store):
        store.create_project(project(technologies=["Python"], metrics={"users": 10}, links={"github": "x"}))
        item = store.get_project("site")
        assert item["technologies"] == ["Python"]
        assert item["metrics"] == {"users": 10}
        assert item["links"] == {"github": "x"}
        assert item["status"] == "shipped"

    def test_duplicate(self, store):
        store.create_project(project())
        with pytest.raises(ConflictError, match="Project with this ID already exists"):
            store.create_project(project())

    def test_upsert_updates_existing(self, store):
        store.upsert_project(project())
        updated = store.upsert_project(project(featured=True, excerpt="Now featured"))
        assert updated["featured"] is True
        assert updated["excerpt"] == "Now featured"
        assert store.list_projects()["total"] == 1

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError, match="Portfolio project"):
            store.update_project("nope", {"title": "X"})


class TestDocuments:
    def test_create_and_get_by_slug_or_id(self, store):
        created = store.create_document(
            {"slug": "first-essay", "type": "writing", "title": "First", "content": "Hello", "metadata": {"tags": ["x"]}}
        )
        assert created["metadata"] == {"tags": ["x"]}
        assert created["language"] == "en"
        assert store.get_document("first-essay")["id"] == created["id"]
        assert store.get_document(created["id"])["slug"] == "first-essay"
        assert store.get_document(str(created["id"]))["slug"] == "first-essay"

    def test_duplicate_slug(self, store):
        doc = {"slug": "a", "type": "note", "title": "A", "content": ""}
        store.create_document(doc)
        with pytest.raises(ConflictError, match="Document with this slug already exists"):
            store.create_document(doc)

    def test_missing(self, store):
        with pytest.raises(NotFoundError, match="Document"):
            store.get_document("missing")

    def test_list_filters(self, store):
        store.create_document({"slug": "w", "type": "writing", "title": "On 100% focus", "content": "Body"})
        store.create_document({"slug": "p", "type": "prompt", "title": "Review prompt", "content": "Review this"})
        store.create_document({"slug": "n", "type": "note", "title": "Note", "content": "1000 ideas"})

        assert [d["slug"] for d in store.list_documents(type="prompt")["documents"]] == ["p"]
        assert [d["slug"] for d in store.list_documents(search="100%")["documents"]] == ["w"]
        assert store.list_documents(search="review")["total"] == 1
        assert store.list_documents(year=1999)["total"] == 0

        first = store.list_documents(limit=2)
        assert len(first["documents"]) == 2
        assert first["has_more"] is True

    def test_invalid_type_filter(self, store):
        with pytest.raises(ValidationError):
            store.list_documents(type="poem")

    def test_update(self, store):
        store.create_document({"slug": "d", "type": "note", "title": "Draft", "content": "v1"})
        updated = store.update_document("d", {"content": "v2"})
        assert updated["content"] == "v2"
        assert updated["title"] == "Draft"
        with pytest.raises(NotFoundError):
            store.update_document("missing", {"content": "x"})
