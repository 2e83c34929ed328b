"""Writing tools history and memory.

Atropos is the spellchecker: it keeps a history of corrections, a custom
dictionary and free-form memories about the user's writing. Hermes is the
translator: it keeps a translation history, protected terms and memories
learned from the user's edits.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional, Sequence

from .database import NOW_SQL, JournalDatabase, escape_like, page
from .errors import NotFoundError, ValidationError
from .models import decode_json, encode_json
from .schemas import CorrectionsQuery, MemoryEditAction, TranslationsQuery, validate

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200

LANGUAGE_NAMES = {
    "ar": "Arabic",
    "bg": "Bulgarian",
    "cs": "Czech",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "es": "Spanish",
    "et": "Estonian",
    "fi": "Finnish",
    "fr": "French",
    "he": "Hebrew",
    "hi": "Hindi",
    "hr": "Croatian",
    "hu": "Hungarian",
    "id": "Indonesian",
    "it": "Italian",
    "ja": "Japanese",
    "ko": "Korean",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "nl": "Dutch",
    "no": "Norwegian",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "sk": "Slovak",
    "sl": "Slovenian",
    "sv": "Swedish",
    "th": "Thai",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "zh": "Chinese",
}


def get_language_name(code: str) -> str:
    """Human name of an ISO 639-1 code; unknown codes are returned unchanged."""
    return LANGUAGE_NAMES.get(code, code)


def preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return text[:length] + ("..." if len(text) > length else "")


class WritingStore:
    """Per-user spellcheck and translation memory."""

    def __init__(self, db: JournalDatabase, ai: Any = None, user_id: str = "default"):
        self.db = db
        self.ai = ai
        self.user_id = user_id

    # ========== Corrections history ==========

    def record_correction(
        self,
        original_text: str,
        corrected_text: str,
        intent_questions: Optional[Sequence[str]] = None,
        source_context: Optional[str] = None,
    ) -> int:
        """Store one spellcheck result and update the running stats."""
        had_changes = original_text != corrected_text
        with self.db.transaction():
            cursor = self.db.execute(
                """INSERT INTO atropos_corrections
                   (user_id, original_text, corrected_text, had_changes, intent_questions, source_context)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    self.user_id,
                    original_text,
                    corrected_text,
                    int(had_changes),
                    encode_json(list(intent_questions or [])),
                    source_context,
                ),
            )
            self.db.execute(
                f"""INSERT INTO atropos_stats
                    (user_id, total_checks, total_corrections, total_characters_corrected)
                    VALUES (?, 1, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        total_checks = total_checks + 1,
                        total_corrections = total_corrections + excluded.total_corrections,
                        total_characters_corrected =
                            total_characters_corrected + excluded.total_characters_corrected,
                        updated_at = {NOW_SQL}""",
                (self.user_id, int(had_changes), len(original_text) if had_changes else 0),
            )
        return cursor.lastrowid

    def list_corrections(
        self,
        limit: int = 20,
        offset: int = 0,
        source: Optional[str] = None,
        has_changes: Optional[bool] = None,
    ) -> dict:
        query = validate(
            CorrectionsQuery,
            {"limit": limit, "offset": offset, "source": source, "has_changes": has_changes},
            where="query",
        )
        conditions = ["user_id = ?"]
        params: list[Any] = [self.user_id]
        if query.source:
            conditions.append("source_context LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like(query.source)}%")
        if query.has_changes is not None:
            conditions.append("had_changes = ?")
            params.append(int(query.has_changes))
        where = " AND ".join(conditions)

        total = self.db.fetch_value(f"SELECT COUNT(*) FROM atropos_corrections WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"""SELECT * FROM atropos_corrections WHERE {where}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            params + [query.limit, query.offset],
        )
        corrections = [
            {
                "id": row["id"],
                "original_text": row["original_text"],
                "corrected_text": row["corrected_text"],
                "had_changes": bool(row["had_changes"]),
                "intent_questions": decode_json(row["intent_questions"], []),
                "source_context": row["source_context"],
                "created_at": row["created_at"],
                "preview": preview(row["original_text"]),
            }
            for row in rows
        ]
        return page(corrections, total, query.limit, query.offset, "corrections")

    def clear_corrections(self, before: Optional[str] = None) -> int:
        """Delete correction history, optionally only rows older than ``before``."""
        sql = "DELETE FROM atropos_corrections WHERE user_id = ?"
        params: list[Any] = [self.user_id]
        if before:
            sql += " AND created_at < ?"
            params.append(before)
        deleted = self.db.execute(sql, params).rowcount
        logger.info("Cleared %d correction(s)", deleted)
        return deleted

    # ========== Atropos memory ==========

    def _memories(self) -> list[dict]:
        rows = self.db.fetch_all(
            """SELECT id, content, tags, frequency, created_at, updated_at
               FROM atropos_memories WHERE user_id = ?
               ORDER BY created_at DESC, id DESC""",
            (self.user_id,),
        )
        return [{**dict(row), "tags": decode_json(row["tags"], [])} for row in rows]

    def _dictionary(self) -> list[str]:
        rows = self.db.fetch_all(
            "SELECT term FROM atropos_dictionary WHERE user_id = ? ORDER BY term COLLATE NOCASE",
            (self.user_id,),
        )
        return [row["term"] for row in rows]

    def atropos_stats(self) -> dict:
        row = self.db.fetch_one(
            """SELECT total_checks, total_corrections, total_characters_corrected
               FROM atropos_stats WHERE user_id = ?""",
            (self.user_id,),
        )
        if row is None:
            return {"total_checks": 0, "total_corrections": 0, "total_characters_corrected": 0}
        return dict(row)

    def get_atropos_memory(self) -> dict:
        """Dictionary and memories, most recent memory first."""
        return {
            "dictionary": self._dictionary(),
            "memories": self._memories(),
            "stats": self.atropos_stats(),
        }

    def add_memory(self, content: str, tags: Optional[Sequence[str]] = None) -> None:
        """Add a memory; adding an existing one bumps its frequency."""
        if not content or not content.strip():
            raise ValidationError("Memory content is required")
        self.db.execute(
            f"""INSERT INTO atropos_memories (user_id, content, tags) VALUES (?, ?, ?)
                ON CONFLICT(user_id, content) DO UPDATE SET
                    frequency = frequency + 1,
                    updated_at = {NOW_SQL}""",
            (self.user_id, content.strip(), encode_json(list(tags or []))),
        )

    def edit_memory(self, memory_id: int, content: str, tags: Optional[Sequence[str]] = None) -> None:
        """Rewrite a memory.

        If the new content matches another memory, the two are merged: the
        other memory keeps its row with the combined frequency and the edited
        one is removed.
        """
        with self.db.transaction():
            duplicate = self.db.fetch_one(
                "SELECT id FROM atropos_memories WHERE user_id = ? AND content = ? AND id != ?",
                (self.user_id, content, memory_id),
            )
            if duplicate is None:
                self._rewrite_memory(memory_id, content, tags)
            else:
                self._merge_memory(memory_id, duplicate["id"], tags)

    def _merge_memory(self, memory_id: int, into_id: int, tags: Optional[Sequence[str]]) -> None:
        edited = self.db.fetch_one(
            "SELECT frequency FROM atropos_memories WHERE id = ? AND user_id = ?", (memory_id, self.user_id)
        )
        if edited is None:
            raise NotFoundError("Memory", memory_id)
        self.db.execute(
            f"""UPDATE atropos_memories
                SET frequency = frequency + ?, tags = COALESCE(?, tags), updated_at = {NOW_SQL}
                WHERE id = ?""",
            (edited["frequency"] or 1, encode_json(list(tags)) if tags is not None else None, into_id),
        )
        self.db.execute("DELETE FROM atropos_memories WHERE id = ?", (memory_id,))
        logger.debug("Merged memory %s into %s", memory_id, into_id)

    def _rewrite_memory(self, memory_id: int, content: str, tags: Optional[Sequence[str]]) -> None:
        if tags is None:
            cursor = self.db.execute(
                f"UPDATE atropos_memories SET content = ?, updated_at = {NOW_SQL} WHERE id = ? AND user_id = ?",
                (content, memory_id, self.user_id),
            )
        else:
            cursor = self.db.execute(
                f"""UPDATE atropos_memories SET content = ?, tags = ?, updated_at = {NOW_SQL}
                    WHERE id = ? AND user_id = ?""",
                (content, encode_json(list(tags)), memory_id, self.user_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError("Memory", memory_id)

    def remove_memory(self, memory_id: int) -> None:
        cursor = self.db.execute(
            "DELETE FROM atropos_memories WHERE id = ? AND user_id = ?", (memory_id, self.user_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError("Memory", memory_id)

    def add_word(self, term: str) -> None:
        self.db.execute(
            "INSERT OR IGNORE INTO atropos_dictionary (user_id, term) VALUES (?, ?)",
            (self.user_id, term.strip()),
        )

    def remove_word(self, term: str) -> None:
        self.db.execute(
            "DELETE FROM atropos_dictionary WHERE user_id = ? AND term = ?", (self.user_id, term.strip())
        )

    def apply_memory_action(self, action: MemoryEditAction) -> bool:
        """Apply one interpreted memory edit.

        ``target_memory_index`` counts from the most recent memory. An index
        outside the current list, or an action missing its content or word,
        changes nothing.

        Returns:
            True if the memory was changed
        """
        if action.action == "no_change":
            return False

        if action.action == "add_memory":
            if not action.content:
                return False
            self.add_memory(action.content, action.tags)
            return True

        if action.action in ("add_word", "remove_word"):
            if not action.word:
                return False
            if action.action == "add_word":
                self.add_word(action.word)
            else:
                self.remove_word(action.word)
            return True

        memories = self._memories()
        index = action.target_memory_index
        if index is None or not 0 <= index < len(memories):
            logger.debug("Ignoring %s with index %s (%d memories)", action.action, index, len(memories))
            return False
        target = memories[index]

        if action.action == "edit_memory":
            if not action.content:
                return False
            self.edit_memory(target["id"], action.content, action.tags or None)
        else:
            self.remove_memory(target["id"])
        return True

    def edit_memory_with_ai(self, user_message: str) -> dict:
        """Let the model interpret a natural-language memory edit and apply it."""
        if not user_message or not user_message.strip():
            raise ValidationError("message is required", {"message": ["Required"]})

        memory = self.get_atropos_memory()
        action = self.ai.interpret_memory_edit(
            user_message,
            [m["content"] for m in memory["memories"]],
            memory["dictionary"],
        )
        applied = self.apply_memory_action(action)
        updated = self.get_atropos_memory()
        return {
            "success": True,
            "action": action.action,
            "applied": applied,
            "explanation": action.explanation,
            "memory": {"dictionary": updated["dictionary"], "memories": updated["memories"]},
            "stats": updated["stats"],
        }

    # ========== Translations history ==========

    def record_translation(
        self,
        original_text: str,
        translated_text: str,
        source_language: str,
        target_language: str,
        tone: str = "neutral",
        clarification_questions: Optional[Sequence[str]] = None,
        source_context: Optional[str] = None,
    ) -> int:
        had_changes = original_text != translated_text
        pair = f"{source_language}-{target_language}"
        with self.db.transaction():
            cursor = self.db.execute(
                """INSERT INTO hermes_translations
                   (user_id, original_text, translated_text, source_language, target_language,
                    tone, had_changes, clarification_questions, source_context)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    self.user_id,
                    original_text,
                    translated_text,
                    source_language,
                    target_language,
                    tone,
                    int(had_changes),
                    encode_json(list(clarification_questions or [])),
                    source_context,
                ),
            )
            row = self.db.fetch_one(
                "SELECT language_pairs_used FROM hermes_stats WHERE user_id = ?", (self.user_id,)
            )
            pairs = decode_json(row["language_pairs_used"], {}) if row else {}
            pairs[pair] = pairs.get(pair, 0) + 1
            self.db.execute(
                f"""INSERT INTO hermes_stats
                    (user_id, total_translations, total_characters_translated, language_pairs_used)
                    VALUES (?, 1, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        total_translations = total_translations + 1,
                        total_characters_translated =
                            total_characters_translated + excluded.total_characters_translated,
                        language_pairs_used = excluded.language_pairs_used,
                        updated_at = {NOW_SQL}""",
                (self.user_id, len(original_text), encode_json(pairs)),
            )
        return cursor.lastrowid

    def _translation_filters(
        self,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
        tone: Optional[str] = None,
        source: Optional[str] = None,
    ) -> tuple[str, list[Any]]:
        conditions = ["user_id = ?"]
        params: list[Any] = [self.user_id]
        if source_language:
            conditions.append("source_language = ?")
            params.append(source_language)
        if target_language:
            conditions.append("target_language = ?")
            params.append(target_language)
        if tone:
            conditions.append("tone = ?")
            params.append(tone)
        if source:
            conditions.append("source_context LIKE ? ESCAPE '\\'")
            params.append(f"%{escape_like(source)}%")
        return " AND ".join(conditions), params

    def list_translations(
        self,
        limit: int = 20,
        offset: int = 0,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
        tone: Optional[str] = None,
        source: Optional[str] = None,
    ) -> dict:
        query = validate(
            TranslationsQuery,
            {
                "limit": limit,
                "offset": offset,
                "source_language": source_language,
                "target_language": target_language,
                "tone": tone,
                "source": source,
            },
            where="query",
        )
        where, params = self._translation_filters(
            query.source_language, query.target_language, query.tone, query.source
        )

        total = self.db.fetch_value(f"SELECT COUNT(*) FROM hermes_translations WHERE {where}", params, 0)
        rows = self.db.fetch_all(
            f"""SELECT * FROM hermes_translations WHERE {where}
                ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
            params + [query.limit, query.offset],
        )
        translations = [self._translation(row) for row in rows]

        pair_rows = self.db.fetch_all(
            """SELECT DISTINCT source_language, target_language
               FROM hermes_translations WHERE user_id = ?
               ORDER BY source_language, target_language""",
            (self.user_id,),
        )
        result = page(translations, total, query.limit, query.offset, "translations")
        result["language_pairs"] = [
            {
                "source": r["source_language"],
                "target": r["target_language"],
                "source_name": get_language_name(r["source_language"]),
                "target_name": get_language_name(r["target_language"]),
                "label": f"{get_language_name(r['source_language'])} → {get_language_name(r['target_language'])}",
            }
            for r in pair_rows
        ]
        return result

    @staticmethod
    def _translation(row: sqlite3.Row) -> dict:
        return {
            "id": row["id"],
            "original_text": row["original_text"],
            "translated_text": row["translated_text"],
            "source_language": row["source_language"],
            "target_language": row["target_language"],
            "source_language_name": get_language_name(row["source_language"]),
            "target_language_name": get_language_name(row["target_language"]),
            "tone": row["tone"],
            "had_changes": bool(row["had_changes"]),
            "clarification_questions": decode_json(row["clarification_questions"], []),
            "source_context": row["source_context"],
            "created_at": row["created_at"],
            "preview": preview(row["original_text"]),
        }

    def clear_translations(
        self,
        before: Optional[str] = None,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> int:
        where, params = self._translation_filters(source_language, target_language)
        if before:
            where += " AND created_at < ?"
            params.append(before)
        deleted = self.db.execute(f"DELETE FROM hermes_translations WHERE {where}", params).rowcount
        logger.info("Cleared %d translation(s)", deleted)
        return deleted

    # ========== Hermes memory ==========

    def extract_translation_memory(
        self,
        ai_translation: str,
        user_final: str,
        source_language: str,
        target_language: str,
    ) -> dict:
        """Ask the model what the user's edits to a translation teach."""
        if not ai_translation or not ai_translation.strip() or not user_final or not user_final.strip():
            raise ValidationError("Both the AI translation and the user's final text are required")
        extraction = self.ai.extract_translation_memory(
            ai_translation, user_final, source_language, target_language
        )
        return extraction.model_dump()

    def add_hermes_memory(
        self,
        content: str,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
    ) -> None:
        if not content or not content.strip():
            raise ValidationError("Memory content is required")
        self.db.execute(
            f"""INSERT INTO hermes_memories (user_id, content, source_language, target_language, tags)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id, content) DO UPDATE SET
                    frequency = frequency + 1,
                    updated_at = {NOW_SQL}""",
            (self.user_id, content.strip(), source_language, target_language, encode_json(list(tags or []))),
        )

    def add_hermes_term(
        self,
        term: str,
        preserve_as: Optional[str] = None,
        source_language: Optional[str] = None,
    ) -> None:
        self.db.execute(
            """INSERT INTO hermes_dictionary (user_id, term, preserve_as, source_language)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id, term) DO UPDATE SET
                   preserve_as = excluded.preserve_as,
                   source_language = excluded.source_language""",
            (self.user_id, term.strip(), preserve_as, source_language),
        )

    def list_hermes_memory(self) -> dict:
        memories = self.db.fetch_all(
            """SELECT id, content, source_language, target_language, tags, frequency, created_at
               FROM hermes_memories WHERE user_id = ?
               ORDER BY created_at DESC, id DESC""",
            (self.user_id,),
        )
        terms = self.db.fetch_all(
            """SELECT term, preserve_as, source_language FROM hermes_dictionary
               WHERE user_id = ? ORDER BY term COLLATE NOCASE""",
            (self.user_id,),
        )
        stats = self.db.fetch_one(
            """SELECT total_translations, total_characters_translated, language_pairs_used
               FROM hermes_stats WHERE user_id = ?""",
            (self.user_id,),
        )
        return {
            "memories": [{**dict(m), "tags": decode_json(m["tags"], [])} for m in memories],
            "dictionary": [dict(t) for t in terms],
            "stats": {
                "total_translations": stats["total_translations"] if stats else 0,
                "total_characters_translated": stats["total_characters_translated"] if stats else 0,
                "language_pairs_used": decode_json(stats["language_pairs_used"], {}) if stats else {},
            },
        }
