"""Pydantic models for request validation and structured model output."""

from __future__ import annotations

from typing import Any, Literal, Optional, Type, TypeVar
from urllib.parse import urlparse

import pydantic
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

M = TypeVar("M", bound=BaseModel)

SLUG_PATTERN = r"^[a-z0-9-]+$"

DocumentType = Literal["writing", "prompt", "note"]
ProjectStatus = Literal["shipped", "wip", "archived"]
Tone = Literal["formal", "neutral", "slang"]


def validate(model: Type[M], data: Any, where: str = "request body") -> M:
    """Validate ``data`` against ``model``.

    Raises:
        ValidationError: With details keyed by dotted field path
    """
    try:
        return model.model_validate(data if data is not None else {})
    except pydantic.ValidationError as e:
        details: dict[str, list[str]] = {}
        for err in e.errors():
            path = ".".join(str(part) for part in err["loc"]) or "_root"
            details.setdefault(path, []).append(err["msg"])
        raise ValidationError(f"Invalid {where}", details) from e


# =============================================================================
# Pagination
# =============================================================================

class Pagination(BaseModel):
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class JournalQuery(Pagination):
    repository: Optional[str] = Field(default=None, min_length=1)
    branch: Optional[str] = Field(default=None, min_length=1)


class CommitHashParam(BaseModel):
    commit_hash: str = Field(..., min_length=7)


# =============================================================================
# Journal entries and Entry 0
# =============================================================================

class JournalEntryCreate(BaseModel):
    """A commit report submitted by an agent."""
    commit_hash: str = Field(..., min_length=7)
    repository: str = Field(..., min_length=1)
    branch: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    code_author: Optional[str] = None
    team_members: list[str] = Field(default_factory=list)
    date: str
    raw_agent_report: str = Field(..., min_length=10)
    files_changed: Optional[list[Any]] = None


class JournalEntryUpdate(BaseModel):
    """Partial update; only explicitly sent fields are applied."""
    why: Optional[str] = None
    what_changed: Optional[str] = None
    decisions: Optional[str] = None
    technologies: Optional[str] = None
    kronus_wisdom: Optional[str] = None

    def changes(self) -> dict[str, Optional[str]]:
        data = self.model_dump(exclude_unset=True)
        # kronus_wisdom may be cleared; the others need a value
        return {k: v for k, v in data.items() if v is not None or k == "kronus_wisdom"}


class EntryAnalysisOutput(BaseModel):
    """Structured analysis of one commit."""
    why: str = Field(..., description="Why this change was made")
    what_changed: str = Field(..., description="What was changed, concretely")
    decisions: str = Field(..., description="Key decisions and trade-offs")
    technologies: str = Field(..., description="Technologies, libraries and tools involved")
    kronus_wisdom: Optional[str] = Field(
        default=None, description="An optional short reflection on the work"
    )


class SummaryUpdate(BaseModel):
    """Entry 0 sections; null means no update for that section."""
    summary: Optional[str] = None
    purpose: Optional[str] = None
    architecture: Optional[str] = None
    key_decisions: Optional[str] = None
    technologies: Optional[str] = None
    status: Optional[str] = None
    file_structure: Optional[str] = None
    tech_stack: Optional[str] = None
    frontend: Optional[str] = None
    backend: Optional[str] = None
    database_info: Optional[str] = None
    services: Optional[str] = None
    custom_tooling: Optional[str] = None
    data_flow: Optional[str] = None
    patterns: Optional[str] = None
    commands: Optional[str] = None
    extended_notes: Optional[str] = None


class ProjectSummaryUpsert(SummaryUpdate):
    git_url: Optional[str] = None
    linear_project_id: Optional[str] = None
    linear_issue_id: Optional[str] = None


class SummaryReport(BaseModel):
    raw_report: str = Field(..., min_length=10)
    git_url: Optional[str] = None


# =============================================================================
# Attachments and conversations
# =============================================================================

class AttachmentUpload(BaseModel):
    filename: str = Field(..., min_length=1)
    data: str = Field(..., min_length=1, description="Base64 encoded file content")
    mime_type: str = Field(..., min_length=1)
    description: Optional[str] = None


class ConversationSave(BaseModel):
    title: str = Field(..., min_length=1)
    messages: list[dict[str, Any]] = Field(..., min_length=1)


# =============================================================================
# Documents
# =============================================================================

class DocumentCreate(BaseModel):
    slug: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    type: DocumentType
    title: str = Field(..., min_length=1)
    content: str
    language: str = "en"
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentUpdate(BaseModel):
    type: Optional[DocumentType] = None
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    language: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class DocumentQuery(Pagination):
    type: Optional[DocumentType] = None
    search: Optional[str] = None
    year: Optional[int] = None


# =============================================================================
# CV
# =============================================================================

def _check_url(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return value
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("must be a valid URL or empty")
    return value


class SkillCreate(BaseModel):
    id: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    magnitude: int = Field(..., ge=1, le=5)
    description: str = Field(..., min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None
    url: Optional[str] = ""
    tags: list[str] = Field(default_factory=list)
    first_used: Optional[str] = None
    last_used: Optional[str] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_url(value)


class SkillUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    magnitude: Optional[int] = Field(default=None, ge=1, le=5)
    description: Optional[str] = Field(default=None, min_length=1)
    icon: Optional[str] = None
    color: Optional[str] = None
    url: Optional[str] = None
    tags: Optional[list[str]] = None
    first_used: Optional[str] = None
    last_used: Optional[str] = None

    @field_validator("url")
    @classmethod
    def check_url(cls, value: Optional[str]) -> Optional[str]:
        return _check_url(value)


class ExperienceCreate(BaseModel):
    id: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    title: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    department: Optional[str] = None
    location: str = Field(..., min_length=1)
    date_start: str = Field(..., min_length=1)
    date_end: Optional[str] = None
    tagline: str = Field(..., min_length=1)
    note: Optional[str] = None
    achievements: list[str] = Field(default_factory=list)
    logo: Optional[str] = None


class ExperienceUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = Field(default=None, min_length=1)
    department: Optional[str] = None
    location: Optional[str] = Field(default=None, min_length=1)
    date_start: Optional[str] = Field(default=None, min_length=1)
    date_end: Optional[str] = None
    tagline: Optional[str] = Field(default=None, min_length=1)
    note: Optional[str] = None
    achievements: Optional[list[str]] = None
    logo: Optional[str] = None


class EducationCreate(BaseModel):
    id: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    degree: str = Field(..., min_length=1)
    field: str = Field(..., min_length=1)
    institution: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    date_start: str = Field(..., min_length=1)
    date_end: str = Field(..., min_length=1)
    tagline: str = Field(..., min_length=1)
    note: Optional[str] = None
    focus_areas: list[str] = Field(default_factory=list)
    achievements: list[str] = Field(default_factory=list)
    logo: Optional[str] = None


class EducationUpdate(BaseModel):
    degree: Optional[str] = Field(default=None, min_length=1)
    field: Optional[str] = Field(default=None, min_length=1)
    institution: Optional[str] = Field(default=None, min_length=1)
    location: Optional[str] = Field(default=None, min_length=1)
    date_start: Optional[str] = Field(default=None, min_length=1)
    date_end: Optional[str] = Field(default=None, min_length=1)
    tagline: Optional[str] = Field(default=None, min_length=1)
    note: Optional[str] = None
    focus_areas: Optional[list[str]] = None
    achievements: Optional[list[str]] = None
    logo: Optional[str] = None


# =============================================================================
# Portfolio
# =============================================================================

class PortfolioProjectCreate(BaseModel):
    id: str = Field(..., min_length=1, pattern=SLUG_PATTERN)
    title: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    company: Optional[str] = None
    date_completed: Optional[str] = None
    status: ProjectStatus = "shipped"
    featured: bool = False
    image: Optional[str] = None
    excerpt: Optional[str] = None
    description: Optional[str] = None
    role: Optional[str] = None
    technologies: list[str] = Field(default_factory=list)
    metrics: dict[str, Any] = Field(default_factory=dict)
    links: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    sort_order: int = 0


class PortfolioProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    company: Optional[str] = None
    date_completed: Optional[str] = None
    status: Optional[ProjectStatus] = None
    featured: Optional[bool] = None
    image: Optional[str] = None
    excerpt: Optional[str] = None
    description: Optional[str] = None
    role: Optional[str] = None
    technologies: Optional[list[str]] = None
    metrics: Optional[dict[str, Any]] = None
    links: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    sort_order: Optional[int] = None


# =============================================================================
# Writing tools
# =============================================================================

class CorrectionsQuery(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    source: Optional[str] = None
    has_changes: Optional[bool] = None


class TranslationsQuery(BaseModel):
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
    source_language: Optional[str] = None
    target_language: Optional[str] = None
    tone: Optional[Tone] = None
    source: Optional[str] = None


class MemoryEditRequest(BaseModel):
    message: str = Field(..., min_length=1)


class TranslationMemoryRequest(BaseModel):
    ai_translation: str
    user_final: str
    source_language: Optional[str] = "unknown"
    target_language: Optional[str] = "unknown"

    @field_validator("source_language", "target_language")
    @classmethod
    def default_language(cls, value: Optional[str]) -> str:
        return value or "unknown"


class MemoryEditAction(BaseModel):
    """How a user's request changes the spellcheck memory."""
    action: Literal["add_memory", "edit_memory", "remove_memory", "add_word", "remove_word", "no_change"]
    content: Optional[str] = Field(default=None, description="Memory text for add_memory/edit_memory")
    tags: list[str] = Field(default_factory=list)
    target_memory_index: Optional[int] = Field(
        default=None, description="Index of the memory to edit or remove, 0 is the most recent"
    )
    word: Optional[str] = Field(default=None, description="Dictionary word for add_word/remove_word")
    explanation: str = Field(..., description="One sentence describing what was done")


class MemoryExtraction(BaseModel):
    """What a user's edits to a machine translation reveal."""
    main_changes: list[str] = Field(default_factory=list)
    new_patterns: list[str] = Field(default_factory=list)
    suggested_label: str = ""
    protected_terms: list[str] = Field(default_factory=list)


# =============================================================================
# Linear
# =============================================================================

class LinearProjectCreate(BaseModel):
    name: str = Field(..., min_length=1)
    team_ids: list[str] = Field(..., min_length=1)
    description: Optional[str] = None
    content: Optional[str] = None
    lead_id: Optional[str] = None
    target_date: Optional[str] = None


class LinearProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    content: Optional[str] = None
    lead_id: Optional[str] = None
    target_date: Optional[str] = None


class LinearIssueCreate(BaseModel):
    title: str = Field(..., min_length=1)
    team_id: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=0, le=4)
    assignee_id: Optional[str] = None
    project_id: Optional[str] = None
    parent_id: Optional[str] = None


class LinearIssueUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=0, le=4)
    state_id: Optional[str] = None
    assignee_id: Optional[str] = None
    project_id: Optional[str] = None
