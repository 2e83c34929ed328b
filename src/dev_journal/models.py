"""Data models for journal entries, project summaries and attachments."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 with timezone."""
    return dt.isoformat(timespec="milliseconds")


def parse_timestamp(s: str) -> datetime:
    """Parse ISO 8601 timestamp string (SQLite's CURRENT_TIMESTAMP too)."""
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def decode_json(value: Optional[str], default: Any) -> Any:
    """Decode a JSON text column, falling back to ``default`` when empty or corrupt."""
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def encode_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


# Entry 0 sections, in display order. The first six are the original core
# sections, the rest make up the Living Project Summary.
CORE_SUMMARY_FIELDS = (
    "summary",
    "purpose",
    "architecture",
    "key_decisions",
    "technologies",
    "status",
)

LIVING_SUMMARY_FIELDS = (
    "file_structure",
    "tech_stack",
    "frontend",
    "backend",
    "database_info",
    "services",
    "custom_tooling",
    "data_flow",
    "patterns",
    "commands",
    "extended_notes",
)

SUMMARY_FIELDS = CORE_SUMMARY_FIELDS + LIVING_SUMMARY_FIELDS

SUMMARY_LABELS = {
    "summary": "Summary",
    "purpose": "Purpose",
    "architecture": "Architecture",
    "key_decisions": "Key Decisions",
    "technologies": "Technologies",
    "status": "Status",
    "file_structure": "File Structure",
    "tech_stack": "Tech Stack",
    "frontend": "Frontend",
    "backend": "Backend",
    "database_info": "Database",
    "services": "Services",
    "custom_tooling": "Custom Tooling",
    "data_flow": "Data Flow",
    "patterns": "Patterns",
    "commands": "Commands",
    "extended_notes": "Extended Notes",
}

# Fields a journal entry update may touch
EDITABLE_ENTRY_FIELDS = ("why", "what_changed", "decisions", "technologies", "kronus_wisdom")


@dataclass
class EntryAnalysis:
    """Structured analysis produced for a commit report."""
    why: str
    what_changed: str
    decisions: str
    technologies: str
    kronus_wisdom: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "why": self.why,
            "what_changed": self.what_changed,
            "decisions": self.decisions,
            "technologies": self.technologies,
            "kronus_wisdom": self.kronus_wisdom,
        }


@dataclass
class JournalEntry:
    """A journal entry tied to one git commit."""
    commit_hash: str
    repository: str
    branch: str
    author: str
    date: str
    raw_agent_report: str
    why: str = ""
    what_changed: str = ""
    decisions: str = ""
    technologies: str = ""
    kronus_wisdom: Optional[str] = None
    code_author: Optional[str] = None
    team_members: list[str] = field(default_factory=list)
    files_changed: Optional[list[Any]] = None
    id: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "JournalEntry":
        keys = row.keys()
        return cls(
            id=row["id"],
            commit_hash=row["commit_hash"],
            repository=row["repository"],
            branch=row["branch"],
            author=row["author"],
            code_author=row["code_author"],
            team_members=decode_json(row["team_members"], []),
            date=row["date"],
            why=row["why"],
            what_changed=row["what_changed"],
            decisions=row["decisions"],
            technologies=row["technologies"],
            kronus_wisdom=row["kronus_wisdom"],
            raw_agent_report=row["raw_agent_report"],
            files_changed=decode_json(row["files_changed"], None) if "files_changed" in keys else None,
            created_at=row["created_at"],
        )

    def apply_analysis(self, analysis: EntryAnalysis) -> None:
        self.why = analysis.why
        self.what_changed = analysis.what_changed
        self.decisions = analysis.decisions
        self.technologies = analysis.technologies
        self.kronus_wisdom = analysis.kronus_wisdom

    def to_dict(self, include_raw_report: bool = True) -> dict:
        """Convert entry to dictionary for JSON serialization."""
        data = {
            "id": self.id,
            "commit_hash": self.commit_hash,
            "repository": self.repository,
            "branch": self.branch,
            "author": self.author,
            "code_author": self.code_author,
            "team_members": self.team_members,
            "date": self.date,
            "why": self.why,
            "what_changed": self.what_changed,
            "decisions": self.decisions,
            "technologies": self.technologies,
            "kronus_wisdom": self.kronus_wisdom,
            "files_changed": self.files_changed,
            "created_at": self.created_at,
        }
        if include_raw_report:
            data["raw_agent_report"] = self.raw_agent_report
        return data

    def to_markdown(self) -> str:
        """Render entry as markdown, used for model context."""
        lines = [
            f"### {self.commit_hash} ({self.date})",
            f"- **Why:** {self.why}",
            f"- **Changed:** {self.what_changed}",
            f"- **Decisions:** {self.decisions}",
            f"- **Tech:** {self.technologies}",
        ]
        if self.files_changed:
            lines.append(f"- **Files:** {json.dumps(self.files_changed)}")
        return "\n".join(lines)


@dataclass
class ProjectSummary:
    """Entry 0: the living summary of one repository."""
    repository: str
    id: Optional[int] = None
    git_url: Optional[str] = None
    sections: dict[str, Optional[str]] = field(default_factory=dict)
    linear_project_id: Optional[str] = None
    linear_issue_id: Optional[str] = None
    last_synced_entry: Optional[str] = None
    entries_synced: Optional[int] = None
    updated_at: Optional[str] = None

    def get(self, name: str) -> Optional[str]:
        return self.sections.get(name)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ProjectSummary":
        return cls(
            id=row["id"],
            repository=row["repository"],
            git_url=row["git_url"],
            sections={name: row[name] for name in SUMMARY_FIELDS},
            linear_project_id=row["linear_project_id"],
            linear_issue_id=row["linear_issue_id"],
            last_synced_entry=row["last_synced_entry"],
            entries_synced=row["entries_synced"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "repository": self.repository,
            "git_url": self.git_url,
        }
        for name in SUMMARY_FIELDS:
            data[name] = self.sections.get(name)
        data.update({
            "linear_project_id": self.linear_project_id,
            "linear_issue_id": self.linear_issue_id,
            "last_synced_entry": self.last_synced_entry,
            "entries_synced": self.entries_synced,
            "updated_at": self.updated_at,
        })
        return data

    def to_markdown(self) -> str:
        lines = ["## Existing Entry 0 Sections", ""]
        for name in CORE_SUMMARY_FIELDS:
            lines.append(f"**{SUMMARY_LABELS[name]}:** {self.sections.get(name) or 'Not set'}")
        lines.extend(["", "### Living Summary Fields"])
        for name in LIVING_SUMMARY_FIELDS:
            lines.append(f"**{SUMMARY_LABELS[name]}:** {self.sections.get(name) or 'Not set'}")
        return "\n".join(lines)


def merge_summary_updates(
    existing: Optional[ProjectSummary],
    updates: Mapping[str, Optional[str]],
) -> dict[str, str]:
    """Select the Entry 0 fields an update actually changes.

    Only non-null values are taken; a null (or missing) field means "keep
    what is stored". ``existing`` is accepted so callers can merge against
    a summary that does not exist yet.
    """
    return {
        name: updates[name]
        for name in SUMMARY_FIELDS
        if updates.get(name) is not None
    }


def apply_summary_merge(
    existing: Optional[ProjectSummary],
    updates: Mapping[str, Optional[str]],
) -> dict[str, Optional[str]]:
    """Return the full section set after merging ``updates`` over ``existing``."""
    merged = {name: (existing.get(name) if existing else None) for name in SUMMARY_FIELDS}
    merged.update(merge_summary_updates(existing, updates))
    return merged


@dataclass
class AttachmentInfo:
    """Metadata of a file attached to an entry (the blob is loaded separately)."""
    id: int
    commit_hash: str
    filename: str
    mime_type: str
    file_size: int
    description: Optional[str] = None
    uploaded_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AttachmentInfo":
        return cls(
            id=row["id"],
            commit_hash=row["commit_hash"],
            filename=row["filename"],
            mime_type=row["mime_type"],
            file_size=row["file_size"],
            description=row["description"],
            uploaded_at=row["uploaded_at"],
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "commit_hash": self.commit_hash,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "description": self.description,
            "file_size": self.file_size,
            "uploaded_at": self.uploaded_at,
        }
