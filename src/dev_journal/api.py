"""HTTP JSON API over the journal engine (FastAPI)."""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, Optional

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from .config import VERSION
from .engine import JournalEngine, backup_filename
from .errors import JournalError, ValidationError
from .schemas import MemoryEditRequest, TranslationMemoryRequest, validate

logger = logging.getLogger(__name__)


def _validation_details(errors: list[dict[str, Any]]) -> dict[str, list[str]]:
    details: dict[str, list[str]] = {}
    for err in errors:
        # The first element names where the value came from (body, query, path)
        loc = [str(part) for part in err.get("loc", ())[1:]]
        details.setdefault(".".join(loc) or "_root", []).append(err.get("msg", "Invalid value"))
    return details


def create_app(engine: JournalEngine) -> FastAPI:
    """Build the HTTP API for one engine.

    Args:
        engine: The journal engine every route calls into

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="Developer Journal",
        description="Journal entries, project summaries and portfolio content over HTTP",
        version=VERSION,
    )
    app.state.engine = engine

    @app.exception_handler(JournalError)
    async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Invalid request", _validation_details(exc.errors()))
        return JSONResponse(error.to_dict(), status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"error": "Internal server error", "code": "INTERNAL_ERROR", "status_code": 500},
            status_code=500,
        )

    # ========== Entries ==========

    @app.get("/api/entries")
    def list_entries(
        repository: Optional[str] = None,
        branch: Optional[str] = None,
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ):
        return engine.list_entries(repository=repository, branch=branch, limit=limit, offset=offset)

    @app.get("/api/entries/{commit_hash}")
    def get_entry(commit_hash: str):
        return engine.get_entry(commit_hash)

    @app.patch("/api/entries/{commit_hash}")
    def update_entry(commit_hash: str, body: dict[str, Any] = Body(...)):
        return {"success": True, "entry": engine.update_entry(commit_hash, body)}

    @app.post("/api/journal/entries", status_code=201)
    def create_entry(body: dict[str, Any] = Body(...)):
        entry = engine.create_entry(body)
        return {"success": True, "entry": entry.to_dict()}

    @app.get("/api/journal/repositories")
    def list_repositories():
        repositories = engine.list_repositories()
        return {"repositories": repositories, "total": len(repositories)}

    @app.get("/api/journal/repositories/{repository}/branches")
    def list_branches(repository: str):
        branches = engine.list_branches(repository)
        return {"repository": repository, "branches": branches, "total": len(branches)}

    # ========== Project summaries ==========

    @app.get("/api/project-summaries")
    def list_project_summaries():
        return engine.list_project_summaries()

    @app.get("/api/journal/repositories/{repository}/summary")
    def get_project_summary(repository: str):
        return engine.get_project_summary(repository).to_dict()

    @app.post("/api/journal/repositories/{repository}/summary/report")
    def submit_summary_report(repository: str, body: dict[str, Any] = Body(...)):
        result = engine.submit_summary_report(
            repository,
            body.get("raw_report", ""),
            git_url=body.get("git_url"),
        )
        return {"success": True, **result}

    # ========== Attachments ==========

    @app.get("/api/attachments")
    def list_attachments(type: Optional[Literal["image", "mermaid"]] = None):
        return engine.list_attachments(type=type)

    @app.get("/api/attachments/by-repository")
    def list_attachments_by_repository(repository: Optional[str] = None):
        return engine.list_attachments_by_repository(repository)

    @app.post("/api/entries/{commit_hash}/attachments", status_code=201)
    def add_attachment(commit_hash: str, body: dict[str, Any] = Body(...)):
        attachment = engine.add_attachment(
            commit_hash,
            body.get("filename", ""),
            body.get("data", body.get("data_base64", "")),
            body.get("mime_type", ""),
            body.get("description"),
        )
        return {"success": True, "attachment": attachment}

    @app.get("/api/attachment/{attachment_id}")
    def get_attachment(attachment_id: int, include_data: bool = False):
        return engine.get_attachment(attachment_id, include_data=include_data)

    # ========== CV ==========

    @app.get("/api/cv/skills")
    def list_skills():
        skills = engine.content.list_skills()
        return {"skills": skills, "total": len(skills)}

    @app.post("/api/cv/skills", status_code=201)
    def create_skill(body: dict[str, Any] = Body(...)):
        return engine.content.create_skill(body)

    @app.get("/api/cv/skills/{skill_id}")
    def get_skill(skill_id: str):
        return engine.content.get_skill(skill_id)

    @app.put("/api/cv/skills/{skill_id}")
    def update_skill(skill_id: str, body: dict[str, Any] = Body(...)):
        return engine.content.update_skill(skill_id, body)

    @app.delete("/api/cv/skills/{skill_id}")
    def delete_skill(skill_id: str):
        engine.content.delete_skill(skill_id)
        return {"success": True}

    @app.get("/api/cv/experience")
    def list_experience():
        experience = engine.content.list_experience()
        return {"experience": experience, "total": len(experience)}

    @app.post("/api/cv/experience", status_code=201)
    def create_experience(body: dict[str, Any] = Body(...)):
        return engine.content.create_experience(body)

    @app.get("/api/cv/experience/{experience_id}")
    def get_experience(experience_id: str):
        return engine.content.get_experience(experience_id)

    @app.put("/api/cv/experience/{experience_id}")
    def update_experience(experience_id: str, body: dict[str, Any] = Body(...)):
        return engine.content.update_experience(experience_id, body)

    @app.delete("/api/cv/experience/{experience_id}")
    def delete_experience(experience_id: str):
        engine.content.delete_experience(experience_id)
        return {"success": True}

    @app.get("/api/cv/education")
    def list_education():
        education = engine.content.list_education()
        return {"education": education, "total": len(education)}

    @app.post("/api/cv/education", status_code=201)
    def create_education(body: dict[str, Any] = Body(...)):
        return engine.content.create_education(body)

    @app.get("/api/cv/education/{education_id}")
    def get_education(education_id: str):
        return engine.content.get_education(education_id)

    @app.put("/api/cv/education/{education_id}")
    def update_education(education_id: str, body: dict[str, Any] = Body(...)):
        return engine.content.update_education(education_id, body)

    @app.delete("/api/cv/education/{education_id}")
    def delete_education(education_id: str):
        engine.content.delete_education(education_id)
        return {"success": True}

    # ========== Portfolio ==========

    @app.get("/api/portfolio-projects")
    def list_portfolio_projects(
        category: Optional[str] = None,
        status: Optional[str] = None,
        featured: Optional[bool] = None,
    ):
        return engine.content.list_projects(category=category, status=status, featured=featured)

    @app.post("/api/portfolio-projects", status_code=201)
    def create_portfolio_project(body: dict[str, Any] = Body(...)):
        return engine.content.create_project(body)

    @app.get("/api/portfolio-projects/{project_id}")
    def get_portfolio_project(project_id: str):
        return engine.content.get_project(project_id)

    @app.put("/api/portfolio-projects/{project_id}")
    def update_portfolio_project(project_id: str, body: dict[str, Any] = Body(...)):
        return engine.content.update_project(project_id, body)

    # ========== Documents ==========

    @app.get("/api/documents")
    def list_documents(
        type: Optional[str] = None,
        search: Optional[str] = None,
        year: Optional[int] = None,
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ):
        return engine.content.list_documents(
            type=type, search=search, year=year, limit=limit, offset=offset
        )

    @app.post("/api/documents", status_code=201)
    def create_document(body: dict[str, Any] = Body(...)):
        return engine.content.create_document(body)

    @app.get("/api/documents/{slug}")
    def get_document(slug: str):
        return engine.content.get_document(slug)

    @app.put("/api/documents/{slug}")
    def update_document(slug: str, body: dict[str, Any] = Body(...)):
        return engine.content.update_document(slug, body)

    # ========== Conversations ==========

    @app.get("/api/conversations")
    def list_conversations(
        query: Optional[str] = None,
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ):
        if query:
            return engine.search_conversations(query, limit=limit)
        return engine.list_conversations(limit=limit, offset=offset)

    @app.post("/api/conversations", status_code=201)
    async def save_conversation(request: Request):
        # Beacon requests arrive as text/plain, so the body is parsed by hand
        raw = await request.body()
        try:
            body = json.loads(raw or b"null")
        except ValueError as e:
            raise ValidationError("Request body is not valid JSON", {"_root": [str(e)]}) from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object", {"_root": ["Expected an object"]})
        conversation_id = engine.save_conversation(body.get("title"), body.get("messages"))
        return {"success": True, "id": conversation_id}

    # ========== Spellcheck (Atropos) ==========

    @app.get("/api/atropos/history")
    def list_corrections(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        source: Optional[str] = None,
        has_changes: Optional[bool] = None,
    ):
        return engine.writing.list_corrections(
            limit=limit, offset=offset, source=source, has_changes=has_changes
        )

    @app.delete("/api/atropos/history")
    def clear_corrections(before: Optional[str] = None):
        return {"success": True, "deleted": engine.writing.clear_corrections(before)}

    @app.post("/api/atropos/memory/edit")
    def edit_memory(body: dict[str, Any] = Body(...)):
        request = validate(MemoryEditRequest, body)
        return engine.writing.edit_memory_with_ai(request.message)

    # ========== Translation (Hermes) ==========

    @app.get("/api/hermes/history")
    def list_translations(
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
        tone: Optional[str] = None,
        source: Optional[str] = None,
    ):
        return engine.writing.list_translations(
            limit=limit,
            offset=offset,
            source_language=source_language,
            target_language=target_language,
            tone=tone,
            source=source,
        )

    @app.delete("/api/hermes/history")
    def clear_translations(
        before: Optional[str] = None,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ):
        deleted = engine.writing.clear_translations(
            before=before, source_language=source_language, target_language=target_language
        )
        return {"success": True, "deleted": deleted}

    @app.post("/api/hermes/extract-memory")
    def extract_translation_memory(body: dict[str, Any] = Body(...)):
        request = validate(TranslationMemoryRequest, body)
        extraction = engine.writing.extract_translation_memory(
            request.ai_translation,
            request.user_final,
            request.source_language,
            request.target_language,
        )
        return {"success": True, **extraction}

    # ========== Linear ==========

    @app.get("/api/integrations/linear/projects")
    def list_linear_projects(team_id: Optional[str] = None, show_all: bool = False):
        projects = engine.linear.list_projects(team_id=team_id, show_all=show_all)
        return {"projects": projects, "total": len(projects)}

    @app.post("/api/integrations/linear/projects", status_code=201)
    def create_linear_project(body: dict[str, Any] = Body(...)):
        return {"success": True, "project": engine.linear.create_project(body)}

    @app.get("/api/integrations/linear/sync")
    def linear_sync_status():
        return engine.linear_sync.status()

    @app.post("/api/integrations/linear/sync")
    def linear_sync(include_completed: bool = False):
        result = engine.linear_sync.sync_all(include_completed)
        return {"success": True, **result}

    # ========== Stats, observability, backup, health ==========

    @app.get("/api/kronus/stats")
    def repository_stats():
        return engine.repository_stats()

    @app.get("/api/observability")
    def observability(
        trace_id: Optional[str] = None,
        stats: bool = False,
        days: int = Query(7, ge=1, le=365),
        limit: int = Query(50, ge=1, le=500),
    ):
        if trace_id:
            return {"trace_id": trace_id, "spans": engine.trace_spans(trace_id)}
        if stats:
            return engine.trace_stats(days)
        return {"traces": engine.recent_traces(limit)}

    @app.get("/api/db/backup")
    def download_backup():
        return Response(
            content=engine.backup_sql(),
            media_type="application/sql",
            headers={"Content-Disposition": f'attachment; filename="{backup_filename()}"'},
        )

    @app.post("/api/db/backup")
    def run_backup():
        return engine.backup()

    @app.get("/api/health")
    def health():
        return engine.health()

    return app
