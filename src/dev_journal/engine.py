"""Core journal engine: commit entries, Entry 0 summaries, attachments and backups."""

from __future__ import annotations

import base64
import binascii
import logging
import sqlite3
from datetime import date as date_cls
from pathlib import Path
from typing import Any, Optional

import portalocker

from .ai import JournalAI, get_recent_traces, get_trace_spans, get_trace_stats
from .config import JournalConfig
from .content import ContentStore
from .database import JournalDatabase, escape_like, page
from .errors import ConfigError, ConflictError, JournalError, NotFoundError, ValidationError
from .linear import LinearClient, LinearSync
from .models import (
    SUMMARY_FIELDS,
    AttachmentInfo,
    JournalEntry,
    ProjectSummary,
    decode_json,
    encode_json,
    format_timestamp,
    merge_summary_updates,
    utc_now,
)
from .schemas import (
    AttachmentUpload,
    CommitHashParam,
    ConversationSave,
    JournalEntryCreate,
    JournalEntryUpdate,
    JournalQuery,
    Pagination,
    ProjectSummaryUpsert,
    SummaryReport,
    validate,
)
from .writing import WritingStore

logger = logging.getLogger(__name__)

NO_SUMMARY_PLACEHOLDER = "No summary yet. Click Analyze to generate one from journal entries."

# Rough token cost of each repository item when loaded into the assistant's context
TOKEN_ESTIMATES = {
    "base": 6000,
    "writings": 1400,
    "portfolio_projects": 230,
    "skills": 45,
    "work_experience": 190,
    "education": 170,
}

RECENT_ENTRIES_FOR_SUMMARY = 5


def backup_filename(day: Optional[date_cls] = None) -> str:
    day = day or utc_now().date()
    return f"journal_backup_{day.isoformat()}.sql"


class JournalEngine:
    """Journal operations over a single SQLite database."""

    def __init__(
        self,
        config: JournalConfig,
        ai: Optional[Any] = None,
        linear_client: Optional[LinearClient] = None,
    ):
        self.config = config
        self._db: Optional[JournalDatabase] = None
        self._ai = ai
        self._linear_client = linear_client
        self._content: Optional[ContentStore] = None

    @property
    def db(self) -> JournalDatabase:
        """Lazily open the database, applying migrations."""
        if self._db is None:
            self._db = JournalDatabase(self.config.get_db_path())
        return self._db

    @property
    def ai(self) -> Any:
        if self._ai is None:
            self._ai = JournalAI(self.config, self.db)
        return self._ai

    @ai.setter
    def ai(self, value: Any) -> None:
        self._ai = value

    @property
    def content(self) -> ContentStore:
        if self._content is None:
            self._content = ContentStore(self.db)
        return self._content

    @property
    def writing(self) -> WritingStore:
        return WritingStore(self.db, self.ai, user_id=self.config.user_id)

    @property
    def linear(self) -> LinearClient:
        """Linear API client.

        Raises:
            ConfigError: If no Linear API key is configured
        """
        if self._linear_client is None:
            if not self.config.linear_api_key:
                raise ConfigError("Linear API key not configured. Set LINEAR_API_KEY or linear.api_key.")
            self._linear_client = LinearClient(self.config.linear_api_key)
        return self._linear_client

    @property
    def linear_sync(self) -> LinearSync:
        return LinearSync(self.db, self.linear)

    def close(self) -> None:
        if self._linear_client is not None:
            self._linear_client.close()
        if self._db is not None:
            self._db.close()
            self._db = None

    # ========== Entries ==========

    def commit_has_entry(self, commit_hash: str) -> bool:
        row = self.db.fetch_one("SELECT 1 FROM journal_entries WHERE commit_hash = ?", (commit_hash,))
        return row is not None

    def create_entry(self, data: dict[str, Any]) -> JournalEntry:
        """Analyze a commit report and store it as a journal entry.

        Raises:
            ValidationError: If the report is malformed
            ConflictError: If the commit already has an entry
            ExternalServiceError: If the model call fails
        """
        payload = validate(JournalEntryCreate, data)
        if self.commit_has_entry(payload.commit_hash):
            raise ConflictError(f"Journal entry for commit {payload.commit_hash} already exists")

        analysis = self.ai.generate_entry(payload.model_dump())

        entry = JournalEntry(
            commit_hash=payload.commit_hash,
            repository=payload.repository,
            branch=payload.branch,
            author=payload.author,
            code_author=payload.code_author,
            team_members=payload.team_members,
            date=payload.date,
            raw_agent_report=payload.raw_agent_report,
            files_changed=payload.files_changed,
        )
        entry.apply_analysis(analysis)
        return self.insert_entry(entry)

    def insert_entry(self, entry: JournalEntry) -> JournalEntry:
        """Store an already analyzed entry, running the create hooks."""
        if "pre_create" in self.config.hooks:
            entry = self.config.hooks["pre_create"](entry)

        try:
            cursor = self.db.execute(
                """INSERT INTO journal_entries
                   (commit_hash, repository, branch, author, code_author, team_members, date,
                    why, what_changed, decisions, technologies, kronus_wisdom,
                    raw_agent_report, files_changed)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.commit_hash,
                    entry.repository,
                    entry.branch,
                    entry.author,
                    entry.code_author,
                    encode_json(entry.team_members or []),
                    entry.date,
                    entry.why,
                    entry.what_changed,
                    entry.decisions,
                    entry.technologies,
                    entry.kronus_wisdom,
                    entry.raw_agent_report,
                    encode_json(entry.files_changed),
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Journal entry for commit {entry.commit_hash} already exists") from e

        row = self.db.fetch_one("SELECT * FROM journal_entries WHERE id = ?", (cursor.lastrowid,))
        entry = JournalEntry.from_row(row)
        logger.info("Created journal entry %s in %s/%s", entry.commit_hash, entry.repository, entry.branch)

        if "post_create" in self.config.hooks:
            self.config.hooks["post_create"](entry)

        return entry

    def _load_entry(self, commit_hash: str) -> JournalEntry:
        row = self.db.fetch_one("SELECT * FROM journal_entries WHERE commit_hash = ?", (commit_hash,))
        if row is None:
            raise NotFoundError("Journal entry", commit_hash)
        return JournalEntry.from_row(row)

    def get_entry(self, commit_hash: str, include_raw_report: bool = True) -> dict:
        """Get one entry with the metadata of its attachments.

        Raises:
            NotFoundError: If the commit has no entry
        """
        validate(CommitHashParam, {"commit_hash": commit_hash}, where="commit hash")
        entry = self._load_entry(commit_hash)
        data = entry.to_dict(include_raw_report=include_raw_report)
        data["attachments"] = self.get_attachment_metadata_by_commit(commit_hash)
        return data

    def list_entries(
        self,
        repository: Optional[str] = None,
        branch: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        include_raw_report: bool = True,
    ) -> dict:
        """List entries newest first, optionally filtered by repository and branch."""
        query = validate(
            JournalQuery,
            {"repository": repository, "branch": branch, "limit": limit, "offset": offset},
            where="query",
        )

        conditions = []
        params: list[Any] = []
        if query.repository:
            conditions.append("e.repository = ?")
            params.append(query.repository)
        if query.branch:
            conditions.append("e.branch = ?")
            params.append(query.branch)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = self.db.fetch_value(f"SELECT COUNT(*) FROM journal_entries e {where}", params, 0)
        rows = self.db.fetch_all(
            f"""SELECT e.*,
                       (SELECT COUNT(*) FROM entry_attachments a WHERE a.commit_hash = e.commit_hash)
                           AS attachment_count
                FROM journal_entries e
                {where}
                ORDER BY e.created_at DESC, e.id DESC
                LIMIT ? OFFSET ?""",
            params + [query.limit, query.offset],
        )

        entries = []
        for row in rows:
            data = JournalEntry.from_row(row).to_dict(include_raw_report=include_raw_report)
            data["attachment_count"] = row["attachment_count"]
            entries.append(data)

        return page(entries, total, query.limit, query.offset, "entries")

    def update_entry(self, commit_hash: str, updates: dict[str, Any]) -> dict:
        """Edit the analysis fields of an entry.

        Only the fields present in ``updates`` change; ``kronus_wisdom`` may
        be cleared with an explicit None. A backup runs after the write.

        Raises:
            ValidationError: If no editable field is given
            NotFoundError: If the commit has no entry
        """
        changes = validate(JournalEntryUpdate, updates).changes()
        if not changes:
            raise ValidationError("No fields to update")

        if not self.commit_has_entry(commit_hash):
            raise NotFoundError("Journal entry", commit_hash)

        assignments = ", ".join(f"{name} = ?" for name in changes)
        self.db.execute(
            f"UPDATE journal_entries SET {assignments} WHERE commit_hash = ?",
            list(changes.values()) + [commit_hash],
        )
        logger.info("Updated journal entry %s (%s)", commit_hash, ", ".join(changes))

        try:
            self.backup()
        except (OSError, sqlite3.Error, portalocker.LockException) as e:
            logger.error("Backup after updating %s failed: %s", commit_hash, e)

        return self.get_entry(commit_hash)

    def list_repositories(self) -> list[dict]:
        rows = self.db.fetch_all(
            """SELECT repository,
                      COUNT(*) AS entry_count,
                      MAX(date) AS last_entry_date
               FROM journal_entries
               GROUP BY repository
               ORDER BY last_entry_date DESC"""
        )
        return [dict(row) for row in rows]

    def list_branches(self, repository: str) -> list[dict]:
        rows = self.db.fetch_all(
            """SELECT branch,
                      COUNT(*) AS entry_count,
                      MAX(date) AS last_entry_date
               FROM journal_entries
               WHERE repository = ?
               GROUP BY branch
               ORDER BY last_entry_date DESC""",
            (repository,),
        )
        return [dict(row) for row in rows]

    # ========== Project summaries (Entry 0) ==========

    def _find_summary(self, repository: str) -> Optional[ProjectSummary]:
        row = self.db.fetch_one("SELECT * FROM project_summaries WHERE repository = ?", (repository,))
        return ProjectSummary.from_row(row) if row else None

    def get_project_summary(self, repository: str) -> ProjectSummary:
        summary = self._find_summary(repository)
        if summary is None:
            raise NotFoundError("Project summary", repository)
        return summary

    def _summary_listing(self, limit: Optional[int] = None, offset: int = 0) -> list[dict]:
        section_columns = ",\n".join(f"ps.{name}" for name in SUMMARY_FIELDS if name != "summary")
        sql = f"""
            WITH all_repos AS (
                SELECT repository FROM project_summaries
                UNION
                SELECT DISTINCT repository FROM journal_entries
            ),
            entry_stats AS (
                SELECT repository,
                       COUNT(*) AS entry_count,
                       MAX(date) AS last_entry_date,
                       MAX(created_at) AS last_created_at
                FROM journal_entries
                GROUP BY repository
            )
            SELECT COALESCE(ps.id, -1) AS id,
                   ar.repository AS repository,
                   ps.git_url,
                   COALESCE(ps.summary, ?) AS summary,
                   {section_columns},
                   ps.linear_project_id,
                   ps.linear_issue_id,
                   ps.last_synced_entry,
                   ps.entries_synced,
                   COALESCE(ps.updated_at, es.last_created_at) AS updated_at,
                   COALESCE(es.entry_count, 0) AS entry_count,
                   es.last_entry_date
            FROM all_repos ar
            LEFT JOIN project_summaries ps ON ps.repository = ar.repository
            LEFT JOIN entry_stats es ON es.repository = ar.repository
            ORDER BY es.last_entry_date IS NULL, es.last_entry_date DESC, ps.updated_at DESC
        """
        params: list[Any] = [NO_SUMMARY_PLACEHOLDER]
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])
        return [dict(row) for row in self.db.fetch_all(sql, params)]

    def list_project_summaries(self) -> dict:
        """One row per repository known from summaries or entries."""
        summaries = self._summary_listing()
        return {"summaries": summaries, "total": len(summaries)}

    def list_project_summaries_paginated(self, limit: int = 50, offset: int = 0) -> dict:
        query = validate(Pagination, {"limit": limit, "offset": offset}, where="query")
        total = self.db.fetch_value(
            """SELECT COUNT(*) FROM (
                   SELECT repository FROM project_summaries
                   UNION
                   SELECT repository FROM journal_entries
               )""",
            default=0,
        )
        summaries = self._summary_listing(query.limit, query.offset)
        return page(summaries, total, query.limit, query.offset, "summaries")

    def _write_summary(self, repository: str, values: dict[str, Any]) -> ProjectSummary:
        exists = self._find_summary(repository) is not None
        if exists:
            if values:
                assignments = ", ".join(f"{name} = ?" for name in values)
                self.db.execute(
                    f"""UPDATE project_summaries
                        SET {assignments}, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')
                        WHERE repository = ?""",
                    list(values.values()) + [repository],
                )
        else:
            columns = ["repository"] + list(values)
            placeholders = ", ".join("?" for _ in columns)
            self.db.execute(
                f"INSERT INTO project_summaries ({', '.join(columns)}) VALUES ({placeholders})",
                [repository] + list(values.values()),
            )
        return self.get_project_summary(repository)

    def upsert_project_summary(self, repository: str, fields: dict[str, Any]) -> ProjectSummary:
        """Apply the non-null fields over the stored summary, creating it if needed."""
        if not repository:
            raise ValidationError("repository is required")
        payload = validate(ProjectSummaryUpsert, fields)
        values = payload.model_dump(exclude_none=True)
        return self._write_summary(repository, values)

    def submit_summary_report(
        self,
        repository: str,
        raw_report: str,
        git_url: Optional[str] = None,
    ) -> dict:
        """Fold a free-form agent report into the repository's Entry 0.

        The report is normalized by the model against the current summary
        and the most recent entries; only the sections the model returns
        are written.
        """
        if not repository:
            raise ValidationError("repository is required")
        report = validate(SummaryReport, {"raw_report": raw_report, "git_url": git_url})

        existing = self._find_summary(repository)
        rows = self.db.fetch_all(
            """SELECT * FROM journal_entries WHERE repository = ?
               ORDER BY created_at DESC, id DESC LIMIT ?""",
            (repository, RECENT_ENTRIES_FOR_SUMMARY),
        )
        recent = [JournalEntry.from_row(row) for row in rows]

        update = self.ai.normalize_report(report.raw_report, existing, recent)
        changes = merge_summary_updates(existing, update.model_dump())

        values: dict[str, Any] = dict(changes)
        if report.git_url:
            values["git_url"] = report.git_url
        values["entries_synced"] = self.db.fetch_value(
            "SELECT COUNT(*) FROM journal_entries WHERE repository = ?", (repository,), 0
        )
        if recent:
            values["last_synced_entry"] = recent[0].commit_hash

        summary = self._write_summary(repository, values)
        logger.info("Updated Entry 0 for %s: %s", repository, ", ".join(changes) or "no changes")
        return {
            "summary": summary.to_dict(),
            "updated_fields": list(changes),
            "created": existing is None,
        }

    # ========== Attachments ==========

    def add_attachment(
        self,
        commit_hash: str,
        filename: str,
        data_base64: str,
        mime_type: str,
        description: Optional[str] = None,
    ) -> dict:
        """Attach a base64 encoded file to an entry.

        Raises:
            NotFoundError: If the commit has no entry
            ValidationError: If the data is not base64 or exceeds the size limit
        """
        upload = validate(
            AttachmentUpload,
            {"filename": filename, "data": data_base64, "mime_type": mime_type, "description": description},
        )
        if not self.commit_has_entry(commit_hash):
            raise NotFoundError("Journal entry", commit_hash)

        encoded = upload.data
        if encoded.startswith("data:") and "," in encoded:
            encoded = encoded.split(",", 1)[1]
        try:
            blob = base64.b64decode("".join(encoded.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError("Attachment data is not valid base64", {"data": [str(e)]}) from e

        limit = self.config.max_attachment_bytes
        if len(blob) > limit:
            raise ValidationError(
                f"Attachment too large: {len(blob)} bytes (max {limit} bytes)",
                {"data": [f"decoded size {len(blob)} exceeds {limit}"]},
            )

        cursor = self.db.execute(
            """INSERT INTO entry_attachments (commit_hash, filename, mime_type, data, description, file_size)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (commit_hash, upload.filename, upload.mime_type, blob, upload.description, len(blob)),
        )
        logger.info("Attached %s (%d bytes) to %s", upload.filename, len(blob), commit_hash)
        return self.get_attachment(cursor.lastrowid)

    def list_attachments(self, type: Optional[str] = None) -> dict:
        """List attachment metadata newest first; ``type`` is ``image`` or ``mermaid``."""
        conditions = []
        if type == "image":
            conditions.append("a.mime_type LIKE 'image/%'")
        elif type == "mermaid":
            conditions.append("(a.filename LIKE '%.mmd' OR a.filename LIKE '%.mermaid')")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        rows = self.db.fetch_all(
            f"""SELECT a.id, a.commit_hash, a.filename, a.mime_type, a.description,
                       a.file_size, a.uploaded_at, e.repository, e.branch
                FROM entry_attachments a
                JOIN journal_entries e ON e.commit_hash = a.commit_hash
                {where}
                ORDER BY a.uploaded_at DESC, a.id DESC"""
        )
        attachments = [dict(row) for row in rows]
        return {"attachments": attachments, "total": len(attachments)}

    def list_attachments_by_repository(self, repository: Optional[str]) -> dict:
        if not repository or not repository.strip():
            raise ValidationError("repository is required", {"repository": ["Required"]})
        rows = self.db.fetch_all(
            """SELECT a.id, a.commit_hash, a.filename, a.mime_type, a.description,
                      a.file_size, a.uploaded_at, e.branch, e.date AS entry_date
               FROM entry_attachments a
               JOIN journal_entries e ON e.commit_hash = a.commit_hash
               WHERE e.repository = ?
               ORDER BY a.uploaded_at DESC, a.id DESC""",
            (repository,),
        )
        attachments = [dict(row) for row in rows]
        return {"repository": repository, "attachments": attachments, "total": len(attachments)}

    def get_attachment(self, attachment_id: int, include_data: bool = False) -> dict:
        row = self.db.fetch_one("SELECT * FROM entry_attachments WHERE id = ?", (attachment_id,))
        if row is None:
            raise NotFoundError("Attachment", attachment_id)
        data = AttachmentInfo.from_row(row).to_dict()
        if include_data:
            data["data_base64"] = base64.b64encode(row["data"]).decode("ascii")
        return data

    def get_attachment_metadata_by_commit(self, commit_hash: str) -> list[dict]:
        rows = self.db.fetch_all(
            """SELECT id, commit_hash, filename, mime_type, description, file_size, uploaded_at
               FROM entry_attachments
               WHERE commit_hash = ?
               ORDER BY uploaded_at ASC, id ASC""",
            (commit_hash,),
        )
        return [AttachmentInfo.from_row(row).to_dict() for row in rows]

    # ========== Conversations ==========

    def save_conversation(self, title: str, messages: list[dict[str, Any]]) -> int:
        payload = validate(ConversationSave, {"title": title, "messages": messages})
        cursor = self.db.execute(
            "INSERT INTO conversations (title, messages) VALUES (?, ?)",
            (payload.title, encode_json(payload.messages)),
        )
        return cursor.lastrowid

    @staticmethod
    def _conversation(row: sqlite3.Row) -> dict:
        messages = decode_json(row["messages"], [])
        return {
            "id": row["id"],
            "title": row["title"],
            "messages": messages,
            "message_count": len(messages),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    def list_conversations(self, limit: int = 50, offset: int = 0) -> dict:
        query = validate(Pagination, {"limit": limit, "offset": offset}, where="query")
        total = self.db.fetch_value("SELECT COUNT(*) FROM conversations", default=0)
        rows = self.db.fetch_all(
            "SELECT * FROM conversations ORDER BY updated_at DESC, id DESC LIMIT ? OFFSET ?",
            (query.limit, query.offset),
        )
        return page([self._conversation(r) for r in rows], total, query.limit, query.offset, "conversations")

    def search_conversations(self, query: str, limit: int = 20) -> dict:
        title_pattern = f"%{escape_like(query)}%"
        # messages are stored as JSON, so quotes and backslashes appear escaped
        messages_pattern = f"%{escape_like(encode_json(query)[1:-1])}%"
        rows = self.db.fetch_all(
            """SELECT * FROM conversations
               WHERE title LIKE ? ESCAPE '\\' OR messages LIKE ? ESCAPE '\\'
               ORDER BY updated_at DESC, id DESC
               LIMIT ?""",
            (title_pattern, messages_pattern, limit),
        )
        conversations = [self._conversation(r) for r in rows]
        return {"conversations": conversations, "total": len(conversations), "query": query}

    # ========== Stats and health ==========

    def repository_stats(self) -> dict:
        """Counts of repository content and the estimated context size."""
        counts = {
            "writings": self.db.fetch_value(
                "SELECT COUNT(*) FROM documents WHERE type = 'writing'", default=0
            ),
            "portfolio_projects": self.db.fetch_value("SELECT COUNT(*) FROM portfolio_projects", default=0),
            "skills": self.db.fetch_value("SELECT COUNT(*) FROM skills", default=0),
            "work_experience": self.db.fetch_value("SELECT COUNT(*) FROM work_experience", default=0),
            "education": self.db.fetch_value("SELECT COUNT(*) FROM education", default=0),
        }
        counts["total_tokens"] = TOKEN_ESTIMATES["base"] + sum(
            counts[name] * TOKEN_ESTIMATES[name] for name in counts
        )
        return counts

    def health(self) -> dict:
        """Report database health.

        Raises:
            JournalError: 503 ``DB_UNHEALTHY`` when the database does not answer
        """
        try:
            healthy = self.db.health_check()
        except sqlite3.Error as e:
            logger.error("Health check could not open the database: %s", e)
            healthy = False
        if not healthy:
            raise JournalError("Database health check failed", status_code=503, code="DB_UNHEALTHY")
        return {
            "status": "healthy",
            "timestamp": format_timestamp(utc_now()),
            "database": "connected",
        }

    def journal_stats(self) -> dict:
        rows = self.db.fetch_all(
            "SELECT repository, COUNT(*) AS n FROM journal_entries GROUP BY repository ORDER BY n DESC"
        )
        return {
            "total_entries": sum(row["n"] for row in rows),
            "total_repositories": len(rows),
            "total_summaries": self.db.fetch_value("SELECT COUNT(*) FROM project_summaries", default=0),
            "total_attachments": self.db.fetch_value("SELECT COUNT(*) FROM entry_attachments", default=0),
            "total_attachment_bytes": self.db.fetch_value(
                "SELECT SUM(file_size) FROM entry_attachments", default=0
            ),
            "entries_by_repository": {row["repository"]: row["n"] for row in rows},
        }

    # ========== Observability ==========

    def recent_traces(self, limit: int = 50) -> list[dict]:
        return get_recent_traces(self.db, limit)

    def trace_spans(self, trace_id: str) -> list[dict]:
        return get_trace_spans(self.db, trace_id)

    def trace_stats(self, days: int = 7) -> dict:
        return get_trace_stats(self.db, days)

    # ========== Backup ==========

    def backup(self, path: Optional[Path] = None) -> dict:
        """Write the whole database to an SQL dump file."""
        target = Path(path) if path is not None else self.config.get_backup_path()
        size = self.db.export_sql(target)
        return {
            "success": True,
            "path": str(target),
            "bytes": size,
            "timestamp": format_timestamp(utc_now()),
            "message": "Backup completed successfully",
        }

    def backup_sql(self) -> str:
        return self.db.dump_sql()
