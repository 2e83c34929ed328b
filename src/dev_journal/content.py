"""Repository content: CV (skills, experience, education), portfolio projects and documents.

Portfolio projects have no delete operation. Agents may add and edit
repository content, but removing it is left to the owner.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional, Type

from pydantic import BaseModel

from .database import NOW_SQL, JournalDatabase, escape_like, page
from .errors import ConflictError, NotFoundError, ValidationError
from .models import decode_json, encode_json
from .schemas import (
    DocumentCreate,
    DocumentQuery,
    DocumentUpdate,
    EducationCreate,
    EducationUpdate,
    ExperienceCreate,
    ExperienceUpdate,
    PortfolioProjectCreate,
    PortfolioProjectUpdate,
    SkillCreate,
    SkillUpdate,
    validate,
)

logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("shipped", "wip", "archived")


def row_to_dict(row: sqlite3.Row, json_fields: dict[str, Any]) -> dict:
    """Convert a row, decoding JSON columns with their defaults."""
    data = dict(row)
    for name, default in json_fields.items():
        if name in data:
            data[name] = decode_json(data[name], default() if callable(default) else default)
    return data


class ContentStore:
    """CRUD over the repository content tables."""

    SKILL_JSON = {"tags": list}
    EXPERIENCE_JSON = {"achievements": list}
    EDUCATION_JSON = {"focus_areas": list, "achievements": list}
    PROJECT_JSON = {"technologies": list, "metrics": dict, "links": dict, "tags": list}
    DOCUMENT_JSON = {"metadata": dict}

    def __init__(self, db: JournalDatabase):
        self.db = db

    # ========== Shared ==========

    @staticmethod
    def _encode(data: dict[str, Any], json_fields: dict[str, Any]) -> dict[str, Any]:
        encoded = dict(data)
        for name in json_fields:
            if name in encoded and encoded[name] is not None:
                encoded[name] = encode_json(encoded[name])
        return encoded

    def _insert(self, table: str, data: dict[str, Any], conflict_message: str) -> None:
        columns = list(data)
        try:
            self.db.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
                list(data.values()),
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise ConflictError(conflict_message) from e
            raise

    def _update(
        self,
        table: str,
        key_column: str,
        key: Any,
        data: dict[str, Any],
        touch: bool = False,
    ) -> None:
        assignments = [f"{name} = ?" for name in data]
        if touch:
            assignments.append(f"updated_at = {NOW_SQL}")
        self.db.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE {key_column} = ?",
            list(data.values()) + [key],
        )

    def _exists(self, table: str, key_column: str, key: Any) -> bool:
        return self.db.fetch_one(f"SELECT 1 FROM {table} WHERE {key_column} = ?", (key,)) is not None

    def _changes(self, model: Type[BaseModel], data: dict[str, Any]) -> dict[str, Any]:
        payload = validate(model, data)
        changes = payload.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")
        return changes

    # ========== Skills ==========

    def list_skills(self) -> list[dict]:
        rows = self.db.fetch_all("SELECT * FROM skills ORDER BY category, name")
        return [row_to_dict(r, self.SKILL_JSON) for r in rows]

    def get_skill(self, skill_id: str) -> dict:
        row = self.db.fetch_one("SELECT * FROM skills WHERE id = ?", (skill_id,))
        if row is None:
            raise NotFoundError("Skill", skill_id)
        return row_to_dict(row, self.SKILL_JSON)

    def create_skill(self, data: dict[str, Any]) -> dict:
        skill = validate(SkillCreate, data)
        self._insert("skills", self._encode(skill.model_dump(), self.SKILL_JSON), "Skill with this ID already exists")
        logger.info("Created skill %s", skill.id)
        return self.get_skill(skill.id)

    def update_skill(self, skill_id: str, data: dict[str, Any]) -> dict:
        changes = self._changes(SkillUpdate, data)
        if not self._exists("skills", "id", skill_id):
            raise NotFoundError("Skill", skill_id)
        self._update("skills", "id", skill_id, self._encode(changes, self.SKILL_JSON))
        return self.get_skill(skill_id)

    def upsert_skill(self, data: dict[str, Any]) -> dict:
        skill_id = data.get("id")
        if skill_id and self._exists("skills", "id", skill_id):
            return self.update_skill(skill_id, {k: v for k, v in data.items() if k != "id"})
        return self.create_skill(data)

    def delete_skill(self, skill_id: str) -> None:
        cursor = self.db.execute("DELETE FROM skills WHERE id = ?", (skill_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("Skill", skill_id)

    # ========== Work experience ==========

    def list_experience(self) -> list[dict]:
        rows = self.db.fetch_all("SELECT * FROM work_experience ORDER BY date_start DESC")
        return [row_to_dict(r, self.EXPERIENCE_JSON) for r in rows]

    def get_experience(self, experience_id: str) -> dict:
        row = self.db.fetch_one("SELECT * FROM work_experience WHERE id = ?", (experience_id,))
        if row is None:
            raise NotFoundError("Work experience", experience_id)
        return row_to_dict(row, self.EXPERIENCE_JSON)

    def create_experience(self, data: dict[str, Any]) -> dict:
        item = validate(ExperienceCreate, data)
        self._insert(
            "work_experience",
            self._encode(item.model_dump(), self.EXPERIENCE_JSON),
            "Work experience with this ID already exists",
        )
        return self.get_experience(item.id)

    def update_experience(self, experience_id: str, data: dict[str, Any]) -> dict:
        changes = self._changes(ExperienceUpdate, data)
        if not self._exists("work_experience", "id", experience_id):
            raise NotFoundError("Work experience", experience_id)
        self._update("work_experience", "id", experience_id, self._encode(changes, self.EXPERIENCE_JSON))
        return self.get_experience(experience_id)

    def delete_experience(self, experience_id: str) -> None:
        cursor = self.db.execute("DELETE FROM work_experience WHERE id = ?", (experience_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("Work experience", experience_id)

    # ========== Education ==========

    def list_education(self) -> list[dict]:
        rows = self.db.fetch_all("SELECT * FROM education ORDER BY date_start DESC")
        return [row_to_dict(r, self.EDUCATION_JSON) for r in rows]

    def get_education(self, education_id: str) -> dict:
        row = self.db.fetch_one("SELECT * FROM education WHERE id = ?", (education_id,))
        if row is None:
            raise NotFoundError("Education", education_id)
        return row_to_dict(row, self.EDUCATION_JSON)

    def create_education(self, data: dict[str, Any]) -> dict:
        item = validate(EducationCreate, data)
        self._insert(
            "education",
            self._encode(item.model_dump(), self.EDUCATION_JSON),
            "Education with this ID already exists",
        )
        return self.get_education(item.id)

    def update_education(self, education_id: str, data: dict[str, Any]) -> dict:
        changes = self._changes(EducationUpdate, data)
        if not self._exists("education", "id", education_id):
            raise NotFoundError("Education", education_id)
        self._update("education", "id", education_id, self._encode(changes, self.EDUCATION_JSON))
        return self.get_education(education_id)

    def delete_education(self, education_id: str) -> None:
        cursor = self.db.execute("DELETE FROM education WHERE id = ?", (education_id,))
        if cursor.rowcount == 0:
            raise NotFoundError("Education", education_id)

    # ========== Portfolio projects ==========

    def _project(self, row: sqlite3.Row) -> dict:
        data = row_to_dict(row, self.PROJECT_JSON)
        data["featured"] = bool(data["featured"])
        return data

    def list_projects(
        self,
        category: Optional[str] = None,
        status: Optional[str] = None,
        featured: Optional[bool] = None,
    ) -> dict:
        """List projects, featured first then by sort order.

        An unknown ``status`` is ignored rather than rejected.
        """
        conditions = []
        params: list[Any] = []
        if category:
            conditions.append("category = ?")
            params.append(category)
        if status in PROJECT_STATUSES:
            conditions.append("status = ?")
            params.append(status)
        if featured:
            conditions.append("featured = 1")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        rows = self.db.fetch_all(
            f"SELECT * FROM portfolio_projects {where} ORDER BY featured DESC, sort_order ASC",
            params,
        )
        projects = [self._project(r) for r in rows]
        return {"projects": projects, "total": len(projects)}

    def get_project(self, project_id: str) -> dict:
        row = self.db.fetch_one("SELECT * FROM portfolio_projects WHERE id = ?", (project_id,))
        if row is None:
            raise NotFoundError("Portfolio project", project_id)
        return self._project(row)

    def create_project(self, data: dict[str, Any]) -> dict:
        project = validate(PortfolioProjectCreate, data)
        values = self._encode(project.model_dump(), self.PROJECT_JSON)
        values["featured"] = int(project.featured)
        self._insert("portfolio_projects", values, "Project with this ID already exists")
        logger.info("Created portfolio project %s", project.id)
        return self.get_project(project.id)

    def update_project(self, project_id: str, data: dict[str, Any]) -> dict:
        changes = self._changes(PortfolioProjectUpdate, data)
        if not self._exists("portfolio_projects", "id", project_id):
            raise NotFoundError("Portfolio project", project_id)
        values = self._encode(changes, self.PROJECT_JSON)
        if "featured" in values and values["featured"] is not None:
            values["featured"] = int(values["featured"])
        self._update("portfolio_projects", "id", project_id, values, touch=True)
        return self.get_project(project_id)

    def upsert_project(self, data: dict[str, Any]) -> dict:
        project_id = data.get("id")
        if project_id and self._exists("portfolio_projects", "id", project_id):
            return self.update_project(project_id, {k: v for k, v in data.items() if k != "id"})
        return self.create_project(data)

    # ========== Documents ==========

    def list_documents(
        self,
        type: Optional[str] = None,
        search: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        query = validate(
            DocumentQuery,
            {"type": type, "search": search, "year": year, "limit": limit, "offset": offset},
            where="query",
        )
        conditions = []
        params: list[Any] = []
        if query.type:
            conditions.append("type = ?")
            params.append(query.type)
        if query.search:
            pattern = f"%{escape_like(query.search)}%"
            conditions.append("(title LIKE ? ESCAPE '\\' OR content LIKE ? ESCAPE '\\')")
            params.extend([pattern, pattern])
        if query.year is not None:
            conditions.append("strftime('%Y', created_at) = ?")
            params.append(f"{query.year:04d}")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = self.db.fetch_value(f"SELECT COUNT(*) FROM documents {where}", params, 0)
        rows = self.db.fetch_all(
            f"SELECT * FROM documents {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            params + [query.limit, query.offset],
        )
        documents = [row_to_dict(r, self.DOCUMENT_JSON) for r in rows]
        return page(documents, total, query.limit, query.offset, "documents")

    def get_document(self, slug_or_id: Any) -> dict:
        """Get a document by slug, or by numeric id."""
        row = self.db.fetch_one("SELECT * FROM documents WHERE slug = ?", (str(slug_or_id),))
        if row is None and str(slug_or_id).isdigit():
            row = self.db.fetch_one("SELECT * FROM documents WHERE id = ?", (int(slug_or_id),))
        if row is None:
            raise NotFoundError("Document", slug_or_id)
        return row_to_dict(row, self.DOCUMENT_JSON)

    def create_document(self, data: dict[str, Any]) -> dict:
        document = validate(DocumentCreate, data)
        self._insert(
            "documents",
            self._encode(document.model_dump(), self.DOCUMENT_JSON),
            "Document with this slug already exists",
        )
        logger.info("Created %s document %s", document.type, document.slug)
        return self.get_document(document.slug)

    def update_document(self, slug: str, data: dict[str, Any]) -> dict:
        changes = self._changes(DocumentUpdate, data)
        current = self.get_document(slug)
        self._update("documents", "id", current["id"], self._encode(changes, self.DOCUMENT_JSON), touch=True)
        return self.get_document(current["id"])
