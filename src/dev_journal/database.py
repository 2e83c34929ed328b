"""SQLite storage for the developer journal.

A single database file holds journal entries, project summaries,
attachments, repository content (CV, portfolio, documents), writing-tool
history and the Linear cache. The schema is versioned; opening an older
database applies the missing migrations in order.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Iterable, Optional, Sequence

from .locking import locked_atomic_write
from .models import decode_json

logger = logging.getLogger(__name__)

# ISO 8601 UTC with milliseconds, sortable as text
NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards; use with ``ESCAPE '\\'``."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def page(items: list, total: int, limit: int, offset: int, key: str) -> dict:
    """Build the pagination envelope shared by list operations."""
    return {
        key: items,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(items) < total,
    }


_V1_JOURNAL = f"""
    CREATE TABLE IF NOT EXISTS journal_entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        commit_hash TEXT NOT NULL UNIQUE,
        repository TEXT NOT NULL,
        branch TEXT NOT NULL,
        author TEXT NOT NULL,
        code_author TEXT,
        team_members TEXT DEFAULT '[]',
        date TEXT NOT NULL,
        why TEXT NOT NULL DEFAULT '',
        what_changed TEXT NOT NULL DEFAULT '',
        decisions TEXT NOT NULL DEFAULT '',
        technologies TEXT NOT NULL DEFAULT '',
        kronus_wisdom TEXT,
        raw_agent_report TEXT NOT NULL,
        files_changed TEXT,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_entries_repository ON journal_entries(repository);
    CREATE INDEX IF NOT EXISTS idx_entries_repo_branch ON journal_entries(repository, branch);
    CREATE INDEX IF NOT EXISTS idx_entries_created ON journal_entries(created_at DESC);

    CREATE TABLE IF NOT EXISTS project_summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        repository TEXT NOT NULL UNIQUE,
        git_url TEXT,
        summary TEXT,
        purpose TEXT,
        architecture TEXT,
        key_decisions TEXT,
        technologies TEXT,
        status TEXT,
        file_structure TEXT,
        tech_stack TEXT,
        frontend TEXT,
        backend TEXT,
        database_info TEXT,
        services TEXT,
        custom_tooling TEXT,
        data_flow TEXT,
        patterns TEXT,
        commands TEXT,
        extended_notes TEXT,
        linear_project_id TEXT,
        linear_issue_id TEXT,
        last_synced_entry TEXT,
        entries_synced INTEGER,
        updated_at TEXT DEFAULT {NOW_SQL}
    );

    CREATE TABLE IF NOT EXISTS entry_attachments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        commit_hash TEXT NOT NULL,
        filename TEXT NOT NULL,
        mime_type TEXT NOT NULL,
        data BLOB NOT NULL,
        description TEXT,
        file_size INTEGER NOT NULL,
        uploaded_at TEXT DEFAULT {NOW_SQL},
        FOREIGN KEY (commit_hash) REFERENCES journal_entries(commit_hash) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_attachments_commit ON entry_attachments(commit_hash);

    CREATE TABLE IF NOT EXISTS documents (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        slug TEXT UNIQUE NOT NULL,
        type TEXT NOT NULL CHECK(type IN ('writing', 'prompt', 'note')),
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        language TEXT DEFAULT 'en',
        metadata TEXT DEFAULT '{{}}',
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );

    CREATE TABLE IF NOT EXISTS skills (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        category TEXT NOT NULL,
        magnitude INTEGER NOT NULL CHECK(magnitude >= 1 AND magnitude <= 5),
        description TEXT NOT NULL,
        icon TEXT,
        color TEXT,
        url TEXT,
        tags TEXT DEFAULT '[]',
        first_used TEXT,
        last_used TEXT
    );

    CREATE TABLE IF NOT EXISTS work_experience (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        company TEXT NOT NULL,
        department TEXT,
        location TEXT NOT NULL,
        date_start TEXT NOT NULL,
        date_end TEXT,
        tagline TEXT NOT NULL,
        note TEXT,
        achievements TEXT DEFAULT '[]',
        logo TEXT
    );

    CREATE TABLE IF NOT EXISTS education (
        id TEXT PRIMARY KEY,
        degree TEXT NOT NULL,
        field TEXT NOT NULL,
        institution TEXT NOT NULL,
        location TEXT NOT NULL,
        date_start TEXT NOT NULL,
        date_end TEXT NOT NULL,
        tagline TEXT NOT NULL,
        note TEXT,
        focus_areas TEXT DEFAULT '[]',
        achievements TEXT DEFAULT '[]',
        logo TEXT
    );

    CREATE TABLE IF NOT EXISTS conversations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        title TEXT NOT NULL,
        messages TEXT NOT NULL DEFAULT '[]',
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
"""

_V2_ATROPOS = f"""
    CREATE TABLE IF NOT EXISTS atropos_corrections (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        original_text TEXT NOT NULL,
        corrected_text TEXT NOT NULL,
        had_changes INTEGER DEFAULT 0,
        intent_questions TEXT DEFAULT '[]',
        source_context TEXT,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_atropos_corrections_user_id ON atropos_corrections(user_id);
    CREATE INDEX IF NOT EXISTS idx_atropos_corrections_source ON atropos_corrections(source_context);
    CREATE INDEX IF NOT EXISTS idx_atropos_corrections_created ON atropos_corrections(created_at DESC);

    CREATE TABLE IF NOT EXISTS atropos_memories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        content TEXT NOT NULL,
        tags TEXT DEFAULT '[]',
        frequency INTEGER DEFAULT 1,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_atropos_memories_user_id ON atropos_memories(user_id);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_atropos_memories_unique ON atropos_memories(user_id, content);

    CREATE TABLE IF NOT EXISTS atropos_dictionary (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        term TEXT NOT NULL,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_atropos_dictionary_user_id ON atropos_dictionary(user_id);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_atropos_dictionary_unique ON atropos_dictionary(user_id, term);

    CREATE TABLE IF NOT EXISTS atropos_stats (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        total_checks INTEGER DEFAULT 0,
        total_corrections INTEGER DEFAULT 0,
        total_characters_corrected INTEGER DEFAULT 0,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_atropos_stats_user_id ON atropos_stats(user_id);
"""

_V3_HERMES = f"""
    CREATE TABLE IF NOT EXISTS hermes_translations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        original_text TEXT NOT NULL,
        translated_text TEXT NOT NULL,
        source_language TEXT NOT NULL,
        target_language TEXT NOT NULL,
        tone TEXT NOT NULL DEFAULT 'neutral' CHECK(tone IN ('formal', 'neutral', 'slang')),
        had_changes INTEGER DEFAULT 1,
        clarification_questions TEXT DEFAULT '[]',
        source_context TEXT,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_hermes_translations_user_id ON hermes_translations(user_id);
    CREATE INDEX IF NOT EXISTS idx_hermes_translations_languages
        ON hermes_translations(source_language, target_language);
    CREATE INDEX IF NOT EXISTS idx_hermes_translations_created ON hermes_translations(created_at DESC);

    CREATE TABLE IF NOT EXISTS hermes_memories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        content TEXT NOT NULL,
        source_language TEXT,
        target_language TEXT,
        tags TEXT DEFAULT '[]',
        frequency INTEGER DEFAULT 1,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_hermes_memories_user_id ON hermes_memories(user_id);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_hermes_memories_unique ON hermes_memories(user_id, content);

    CREATE TABLE IF NOT EXISTS hermes_dictionary (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        term TEXT NOT NULL,
        preserve_as TEXT,
        source_language TEXT,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_hermes_dictionary_unique ON hermes_dictionary(user_id, term);

    CREATE TABLE IF NOT EXISTS hermes_stats (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL DEFAULT 'default',
        total_translations INTEGER DEFAULT 0,
        total_characters_translated INTEGER DEFAULT 0,
        language_pairs_used TEXT DEFAULT '{{}}',
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_hermes_stats_user_id ON hermes_stats(user_id);
"""

_V4_PORTFOLIO = f"""
    CREATE TABLE IF NOT EXISTS portfolio_projects (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        category TEXT NOT NULL,
        company TEXT,
        date_completed TEXT,
        status TEXT NOT NULL DEFAULT 'shipped' CHECK (status IN ('shipped', 'wip', 'archived')),
        featured INTEGER DEFAULT 0,
        image TEXT,
        excerpt TEXT,
        description TEXT,
        role TEXT,
        technologies TEXT DEFAULT '[]',
        metrics TEXT DEFAULT '{{}}',
        links TEXT DEFAULT '{{}}',
        tags TEXT DEFAULT '[]',
        sort_order INTEGER DEFAULT 0,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_portfolio_projects_category ON portfolio_projects(category);
    CREATE INDEX IF NOT EXISTS idx_portfolio_projects_status ON portfolio_projects(status);
    CREATE INDEX IF NOT EXISTS idx_portfolio_projects_sort ON portfolio_projects(sort_order);
"""

_V5_LINEAR = f"""
    CREATE TABLE IF NOT EXISTS linear_projects (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        content TEXT,
        state TEXT,
        progress REAL,
        target_date TEXT,
        start_date TEXT,
        url TEXT NOT NULL,
        lead_id TEXT,
        lead_name TEXT,
        team_ids TEXT DEFAULT '[]',
        member_ids TEXT DEFAULT '[]',
        synced_at TEXT DEFAULT {NOW_SQL},
        deleted_at TEXT,
        is_deleted INTEGER DEFAULT 0,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_linear_projects_deleted ON linear_projects(is_deleted);

    CREATE TABLE IF NOT EXISTS linear_issues (
        id TEXT PRIMARY KEY,
        identifier TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        url TEXT NOT NULL,
        priority INTEGER,
        state_id TEXT,
        state_name TEXT,
        assignee_id TEXT,
        assignee_name TEXT,
        team_id TEXT,
        team_name TEXT,
        team_key TEXT,
        project_id TEXT,
        project_name TEXT,
        parent_id TEXT,
        synced_at TEXT DEFAULT {NOW_SQL},
        deleted_at TEXT,
        is_deleted INTEGER DEFAULT 0,
        created_at TEXT DEFAULT {NOW_SQL},
        updated_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_linear_issues_project ON linear_issues(project_id);
    CREATE INDEX IF NOT EXISTS idx_linear_issues_deleted ON linear_issues(is_deleted);
"""

_V6_TRACES = f"""
    CREATE TABLE IF NOT EXISTS ai_traces (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        trace_id TEXT NOT NULL,
        span_id TEXT NOT NULL,
        name TEXT NOT NULL,
        model TEXT,
        input_tokens INTEGER,
        output_tokens INTEGER,
        duration_ms INTEGER,
        status TEXT NOT NULL DEFAULT 'ok',
        error TEXT,
        created_at TEXT DEFAULT {NOW_SQL}
    );
    CREATE INDEX IF NOT EXISTS idx_ai_traces_trace ON ai_traces(trace_id);
    CREATE INDEX IF NOT EXISTS idx_ai_traces_created ON ai_traces(created_at DESC);
"""


def _migrate_legacy_atropos(conn: sqlite3.Connection) -> None:
    """Move the old single-row JSON ``atropos_memory`` table into normalized tables.

    The legacy table is left in place.
    """
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='atropos_memory'"
    ).fetchone()
    if exists is None:
        return

    rows = conn.execute("SELECT * FROM atropos_memory").fetchall()
    for row in rows:
        user_id = row["user_id"] or "default"

        for term in decode_json(row["custom_dictionary"], []):
            conn.execute(
                "INSERT OR IGNORE INTO atropos_dictionary (user_id, term) VALUES (?, ?)",
                (user_id, str(term)),
            )

        for memory in decode_json(row["memories"], []):
            if isinstance(memory, dict):
                content = memory.get("content")
                tags = memory.get("tags") or []
                created_at = memory.get("createdAt") or memory.get("created_at")
            else:
                content, tags, created_at = str(memory), [], None
            if not content:
                continue
            conn.execute(
                f"""INSERT OR IGNORE INTO atropos_memories (user_id, content, tags, created_at)
                    VALUES (?, ?, ?, COALESCE(?, {NOW_SQL}))""",
                (user_id, content, _json_list(tags), created_at),
            )

        conn.execute(
            """INSERT OR IGNORE INTO atropos_stats (user_id, total_checks, total_corrections)
               VALUES (?, ?, ?)""",
            (user_id, row["total_checks"] or 0, row["total_corrections"] or 0),
        )
    logger.info("Migrated %d legacy atropos_memory row(s)", len(rows))


def _json_list(values: Iterable[Any]) -> str:
    return json.dumps([str(v) for v in values], ensure_ascii=False)


# (version, script, optional python step)
MIGRATIONS: list[tuple[int, str, Optional[Callable[[sqlite3.Connection], None]]]] = [
    (1, _V1_JOURNAL, None),
    (2, _V2_ATROPOS, _migrate_legacy_atropos),
    (3, _V3_HERMES, None),
    (4, _V4_PORTFOLIO, None),
    (5, _V5_LINEAR, None),
    (6, _V6_TRACES, None),
]


class JournalDatabase:
    """Connection and schema management for the journal database."""

    SCHEMA_VERSION = MIGRATIONS[-1][0]

    def __init__(self, db_path: Path):
        """Open (creating if needed) the database at ``db_path``.

        Args:
            db_path: Path to the SQLite file, or ``:memory:``
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._tx_depth = 0
        # Serializes the shared connection; held for the whole of a transaction
        self._lock = threading.RLock()
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA foreign_keys = ON")
            self._connection.execute("PRAGMA busy_timeout = 5000")
        return self._connection

    # ========== Schema ==========

    def schema_version(self) -> int:
        conn = self.connection
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        ).fetchone()
        if row is None:
            return 0
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def _ensure_schema(self) -> None:
        """Create or upgrade the schema."""
        current = self.schema_version()
        if current < self.SCHEMA_VERSION:
            self._migrate_schema(current)

    def _migrate_schema(self, from_version: int) -> None:
        conn = self.connection
        conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
        conn.commit()

        for version, script, step in MIGRATIONS:
            if version <= from_version:
                continue
            conn.executescript(script)
            if step is not None:
                step(conn)
            conn.execute("INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (version,))
            conn.commit()
            logger.debug("Applied schema migration %d", version)

        if from_version:
            logger.info("Upgraded database schema from v%d to v%d", from_version, self.SCHEMA_VERSION)

    def table_exists(self, name: str) -> bool:
        row = self.connection.execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ).fetchone()
        return row is not None

    # ========== Queries ==========

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run a statement; commits immediately unless inside :meth:`transaction`."""
        with self._lock:
            cursor = self.connection.execute(sql, params)
            if self._tx_depth == 0:
                self.connection.commit()
            return cursor

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.connection.execute(sql, params).fetchall()

    def fetch_value(self, sql: str, params: Sequence[Any] = (), default: Any = None) -> Any:
        row = self.fetch_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Group several statements; commits on success, rolls back on error.

        Other threads block until the outermost transaction finishes, so their
        writes never join (or get rolled back with) this one.
        """
        with self._lock:
            conn = self.connection
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    conn.rollback()
                raise
            else:
                self._tx_depth -= 1
                if self._tx_depth == 0:
                    conn.commit()

    # ========== Maintenance ==========

    def health_check(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self._lock:
                row = self.connection.execute("SELECT 1 AS ok").fetchone()
        except sqlite3.Error as e:
            logger.error("Database health check failed: %s", e)
            return False
        return row is not None and row["ok"] == 1

    def dump_sql(self) -> str:
        """Return the whole database as an SQL script."""
        with self._lock:
            return "\n".join(self.connection.iterdump()) + "\n"

    def export_sql(self, path: Path) -> int:
        """Write an SQL dump to ``path`` atomically under a file lock.

        Returns:
            Number of bytes written
        """
        dump = self.dump_sql()
        with locked_atomic_write(path) as f:
            f.write(dump)
        size = len(dump.encode("utf-8"))
        logger.info("Exported database to %s (%d bytes)", path, size)
        return size

    def close(self) -> None:
        """Close the database connection, folding the WAL back into the main file."""
        with self._lock:
            if self._connection is not None:
                try:
                    self._connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                except sqlite3.Error as e:
                    logger.debug("WAL checkpoint on close failed: %s", e)
                self._connection.close()
                self._connection = None
