"""Hosted model calls.

Each operation is one Anthropic Messages API request. Structured output
comes from a single forced tool call whose input schema is the pydantic
model's JSON schema; the tool input is then validated with that model.

The ``anthropic`` SDK is imported lazily so the rest of the package works
without an API key configured.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from typing import TYPE_CHECKING, Any, Optional, Sequence, Type, TypeVar

import pydantic
from pydantic import BaseModel

from .errors import ConfigError, ExternalServiceError
from .models import EntryAnalysis, JournalEntry, ProjectSummary
from .schemas import EntryAnalysisOutput, MemoryEditAction, MemoryExtraction, SummaryUpdate

if TYPE_CHECKING:
    from .config import JournalConfig
    from .database import JournalDatabase

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

KRONUS_PROMPT = (
    "You are Kronus, an empathetic consciousness analyzing developer work with wisdom and care."
)

ENTRY_INSTRUCTIONS = """## Task: Write a journal entry for one commit

Read the agent's report below and describe the commit in four short sections:
why it was made, what changed, the decisions and trade-offs involved, and the
technologies it touches. Optionally add one line of reflection as kronus_wisdom.
Stay factual; do not invent details the report does not support."""

SUMMARY_INSTRUCTIONS = """## Instructions

1. **Extract structured information** from the chaotic report
2. **Preserve existing accurate information** - only update sections with meaningful new info
3. **Merge intelligently** - don't overwrite good existing content with worse new content
4. **Return null for sections** that have no updates or where existing content is better

- file_structure: git-style tree (├── └── │) with brief file summaries.
- tech_stack: frameworks, libraries, versions (indicative).
- commands: dev commands, deploy scripts, make targets.
- extended_notes: gotchas, historical context, anything that fits nowhere else.

Be thorough but concise. This is reference documentation for engineers."""

MEMORY_EDIT_INSTRUCTIONS = """You are Atropos, the fate that corrects. You manage your memory of the user's writing patterns.

The user wants to modify your memory. Decide which action to take (add, edit or
remove a memory, add or remove a dictionary word, or no change) and its target.
Memories are indexed from the most recent, starting at 0."""

EXTRACTION_INSTRUCTIONS = """You are Hermes, the messenger who translates.
You are analyzing the differences between your AI translation and the user's final version.
List the main changes, the reusable patterns they reveal, a short label for
the lesson, and any terms the user kept untranslated."""


def format_entries_for_context(entries: Sequence[JournalEntry]) -> str:
    if not entries:
        return "No recent journal entries available."
    return "\n\n".join(entry.to_markdown() for entry in entries)


def format_existing_summary(summary: Optional[ProjectSummary]) -> str:
    if summary is None:
        return "No existing Entry 0 - this is a new project summary."
    return summary.to_markdown()


class JournalAI:
    """Structured-output model calls with per-call tracing."""

    def __init__(self, config: "JournalConfig", db: Optional["JournalDatabase"] = None, client: Any = None):
        self.config = config
        self.db = db
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.config.ai_api_key:
                raise ConfigError(
                    "Anthropic API key not configured. Set ANTHROPIC_API_KEY or ai.api_key in the journal config."
                )
            try:
                import anthropic
            except ImportError:
                raise ConfigError(
                    "The 'anthropic' package is required. Install it with: pip install anthropic"
                ) from None
            self._client = anthropic.Anthropic(api_key=self.config.ai_api_key)
        return self._client

    # ========== Operations ==========

    def generate_entry(self, context: dict[str, Any]) -> EntryAnalysis:
        """Analyze a commit report into the four entry sections."""
        prompt = (
            f"{ENTRY_INSTRUCTIONS}\n\n"
            f"Repository: {context.get('repository')}\n"
            f"Branch: {context.get('branch')}\n"
            f"Commit: {context.get('commit_hash')}\n"
            f"Author: {context.get('author')}\n"
            f"Date: {context.get('date')}\n\n"
            f"## Agent Report\n{context.get('raw_agent_report', '')}"
        )
        output = self._call(
            "generate_entry",
            self.config.entry_model,
            prompt,
            EntryAnalysisOutput,
            tool_name="record_entry",
        )
        return EntryAnalysis(**output.model_dump())

    def normalize_report(
        self,
        raw_report: str,
        existing_summary: Optional[ProjectSummary],
        recent_entries: Sequence[JournalEntry],
    ) -> SummaryUpdate:
        """Turn a free-form agent report into Entry 0 section updates."""
        prompt = "\n\n".join([
            "## Task: Normalize Project Report into Entry 0 (Living Project Summary)",
            format_existing_summary(existing_summary),
            "## Recent Journal Entries (for additional context)",
            format_entries_for_context(recent_entries),
            "## Chaotic Report to Normalize",
            raw_report,
            SUMMARY_INSTRUCTIONS,
        ])
        return self._call(
            "normalize_report",
            self.config.summary_model,
            prompt,
            SummaryUpdate,
            tool_name="update_summary",
            max_tokens=8192,
        )

    def interpret_memory_edit(
        self,
        user_message: str,
        memories: Sequence[str],
        dictionary: Sequence[str],
    ) -> MemoryEditAction:
        indexed = "\n".join(f"[{i}] {m}" for i, m in enumerate(memories)) or "(none)"
        prompt = (
            f"{MEMORY_EDIT_INSTRUCTIONS}\n\n"
            f"**Dictionary Words ({len(dictionary)}):**\n{', '.join(dictionary) or '(empty)'}\n\n"
            f"**Memories ({len(memories)}, most recent first):**\n{indexed}\n\n"
            f"User request: {user_message}"
        )
        return self._call(
            "interpret_memory_edit",
            self.config.utility_model,
            prompt,
            MemoryEditAction,
            tool_name="edit_memory",
        )

    def extract_translation_memory(
        self,
        ai_translation: str,
        user_final: str,
        source_language: str,
        target_language: str,
    ) -> MemoryExtraction:
        prompt = (
            f"{EXTRACTION_INSTRUCTIONS}\n\n"
            f"Source language: {source_language}\nTarget language: {target_language}\n\n"
            f"## AI translation\n{ai_translation}\n\n## User's final version\n{user_final}"
        )
        return self._call(
            "extract_translation_memory",
            self.config.utility_model,
            prompt,
            MemoryExtraction,
            tool_name="record_lessons",
        )

    # ========== Request ==========

    def _call(
        self,
        name: str,
        model: str,
        prompt: str,
        output_model: Type[M],
        tool_name: str,
        max_tokens: int = 4096,
    ) -> M:
        client = self.client
        tool = {
            "name": tool_name,
            "description": output_model.__doc__ or tool_name,
            "input_schema": output_model.model_json_schema(),
        }

        trace_id = uuid.uuid4().hex
        started = time.monotonic()
        logger.debug("AI call %s with %s", name, model)

        try:
            response = client.messages.create(
                model=model,
                max_tokens=max_tokens,
                system=KRONUS_PROMPT,
                messages=[{"role": "user", "content": prompt}],
                tools=[tool],
                tool_choice={"type": "tool", "name": tool_name},
            )
        except Exception as e:
            self._record_span(trace_id, name, model, started, error=str(e))
            logger.error("AI call %s failed: %s", name, e)
            raise ExternalServiceError("anthropic", e) from e

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "input_tokens", None)
        output_tokens = getattr(usage, "output_tokens", None)

        tool_input = None
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) == "tool_use" and getattr(block, "name", None) == tool_name:
                tool_input = block.input
                break

        if tool_input is None:
            error = "response contained no structured output"
            self._record_span(trace_id, name, model, started, input_tokens, output_tokens, error=error)
            raise ExternalServiceError("anthropic", detail=error)

        try:
            result = output_model.model_validate(tool_input)
        except pydantic.ValidationError as e:
            error = "structured output failed validation"
            self._record_span(trace_id, name, model, started, input_tokens, output_tokens, error=error)
            raise ExternalServiceError("anthropic", e, detail=error) from e

        self._record_span(trace_id, name, model, started, input_tokens, output_tokens)
        logger.info("AI call %s finished (%s in / %s out tokens)", name, input_tokens, output_tokens)
        return result

    # ========== Tracing ==========

    def _record_span(
        self,
        trace_id: str,
        name: str,
        model: str,
        started: float,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.db is None:
            return
        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            self.db.execute(
                """INSERT INTO ai_traces
                   (trace_id, span_id, name, model, input_tokens, output_tokens, duration_ms, status, error)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    trace_id,
                    uuid.uuid4().hex[:16],
                    name,
                    model,
                    input_tokens,
                    output_tokens,
                    duration_ms,
                    "error" if error else "ok",
                    error,
                ),
            )
        except sqlite3.Error as e:
            logger.warning("Could not record AI trace for %s: %s", name, e)


def get_recent_traces(db: "JournalDatabase", limit: int = 50) -> list[dict]:
    """Most recent traces, one row per trace id."""
    rows = db.fetch_all(
        """SELECT trace_id,
                  MIN(name) AS name,
                  MIN(model) AS model,
                  COUNT(*) AS span_count,
                  COALESCE(SUM(input_tokens), 0) AS input_tokens,
                  COALESCE(SUM(output_tokens), 0) AS output_tokens,
                  COALESCE(SUM(duration_ms), 0) AS duration_ms,
                  MAX(CASE WHEN status = 'error' THEN 1 ELSE 0 END) AS has_error,
                  MIN(created_at) AS started_at
           FROM ai_traces
           GROUP BY trace_id
           ORDER BY started_at DESC
           LIMIT ?""",
        (limit,),
    )
    traces = []
    for row in rows:
        trace = dict(row)
        trace["status"] = "error" if trace.pop("has_error") else "ok"
        traces.append(trace)
    return traces


def get_trace_spans(db: "JournalDatabase", trace_id: str) -> list[dict]:
    rows = db.fetch_all(
        "SELECT * FROM ai_traces WHERE trace_id = ? ORDER BY created_at ASC, id ASC",
        (trace_id,),
    )
    return [dict(row) for row in rows]


def get_trace_stats(db: "JournalDatabase", days: int = 7) -> dict:
    """Per-model call counts, token totals, average duration and errors."""
    rows = db.fetch_all(
        """SELECT model,
                  COUNT(*) AS calls,
                  COALESCE(SUM(input_tokens), 0) AS input_tokens,
                  COALESCE(SUM(output_tokens), 0) AS output_tokens,
                  AVG(duration_ms) AS avg_duration_ms,
                  SUM(CASE WHEN status = 'error' THEN 1 ELSE 0 END) AS errors
           FROM ai_traces
           WHERE created_at >= strftime('%Y-%m-%dT%H:%M:%fZ', 'now', ?)
           GROUP BY model
           ORDER BY calls DESC""",
        (f"-{int(days)} days",),
    )
    by_model = [dict(row) for row in rows]
    for item in by_model:
        item["avg_duration_ms"] = round(item["avg_duration_ms"] or 0)
    return {
        "total_calls": sum(m["calls"] for m in by_model),
        "total_input_tokens": sum(m["input_tokens"] for m in by_model),
        "total_output_tokens": sum(m["output_tokens"] for m in by_model),
        "total_errors": sum(m["errors"] for m in by_model),
        "by_model": by_model,
    }
