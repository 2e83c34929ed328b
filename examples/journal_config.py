"""Developer Journal Configuration - Advanced Python Example

Copy to your project root as journal_config.py for full extensibility.

Convention:
- CONFIG dict for static configuration (same structure as TOML)
- Functions named hook_* become lifecycle hooks
- Functions named custom_tool_* become MCP tools
"""

import os

# =============================================================================
# Static Configuration (same structure as TOML)
# =============================================================================

CONFIG = {
    "database": {
        "path": "journal.db",
        "backup_path": "backups/journal_backup.sql",
    },
    "ai": {
        "provider": "anthropic",
        # api_key is read from ANTHROPIC_API_KEY when left out
        "summary_model": "claude-sonnet-4-5-20250929",
    },
    "linear": {
        # api_key is read from LINEAR_API_KEY when left out
        "user_id": os.environ.get("LINEAR_USER_ID"),
    },
    "attachments": {
        "max_bytes": 5 * 1024 * 1024,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 3333,
        "log_level": "INFO",
    },
}


# =============================================================================
# Hooks - Called during engine operations
# =============================================================================

def hook_pre_create(entry):
    """Called before a journal entry is stored.

    Can modify the entry, e.g. to normalize names.

    Args:
        entry: JournalEntry about to be inserted

    Returns:
        Modified JournalEntry
    """
    # Example: record the pairing partner from the environment
    partner = os.environ.get("PAIRING_WITH")
    if partner and partner not in (entry.team_members or []):
        entry.team_members = list(entry.team_members or []) + [partner]

    return entry


def hook_post_create(entry):
    """Called after a journal entry is stored.

    Useful for notifications, syncing, etc.
    """
    import logging
    logging.getLogger("dev_journal.hooks").info(
        "Entry recorded for %s on %s", entry.commit_hash[:7], entry.repository
    )


# =============================================================================
# Custom Tools - Exposed as additional MCP tools
# =============================================================================

def custom_tool_repository_digest(engine, params) -> dict:
    """Summarize one repository: entry count, branches and Entry 0 status.

    Params: repository (required)
    """
    repository = params.get("repository")
    if not repository:
        return {"success": False, "error": "repository is required"}

    branches = engine.list_branches(repository)
    summaries = {s["repository"]: s for s in engine.list_project_summaries()["summaries"]}
    summary = summaries.get(repository)

    return {
        "success": True,
        "repository": repository,
        "entries": sum(b["entry_count"] for b in branches),
        "branches": [b["branch"] for b in branches],
        "has_summary": bool(summary and summary["id"] != -1),
    }


async def custom_tool_async_example(engine, params) -> dict:
    """Example async custom tool.

    Custom tools can be async if needed for I/O operations.
    """
    import asyncio
    await asyncio.sleep(0)
    return {"success": True, "stats": engine.journal_stats()}
