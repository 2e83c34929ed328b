"""Read-only MCP resources.

Resources are views an agent can read without side effects; anything that
changes the journal is a tool.
"""

from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote, unquote

from .engine import JournalEngine
from .errors import NotFoundError

SCHEME = "journal://"

STATIC_RESOURCES = [
    {
        "uri": "journal://repositories",
        "name": "Repositories",
        "description": "Repositories with journal entries and their entry counts",
    },
    {
        "uri": "journal://summaries",
        "name": "Project summaries",
        "description": "Entry 0 of every repository",
    },
    {
        "uri": "journal://repository/stats",
        "name": "Repository stats",
        "description": "Counts of writings, projects, skills, experience and education",
    },
]


def list_resources(engine: JournalEngine) -> list[dict[str, str]]:
    """List static resources plus one summary resource per stored Entry 0."""
    resources = [dict(r, mimeType="application/json") for r in STATIC_RESOURCES]
    for summary in engine.list_project_summaries()["summaries"]:
        # id -1 is a placeholder row for a repository that has no Entry 0 yet
        if summary["id"] == -1:
            continue
        name = summary["repository"]
        resources.append({
            "uri": f"{SCHEME}summary/{quote(name, safe='')}",
            "name": f"{name} summary",
            "description": f"Living Project Summary of {name}",
            "mimeType": "application/json",
        })
    return resources


def _read(engine: JournalEngine, uri: str) -> Any:
    if not uri.startswith(SCHEME):
        raise NotFoundError("Resource", uri)
    path = uri[len(SCHEME):]

    if path == "repositories":
        return {"repositories": engine.list_repositories()}
    if path == "summaries":
        return engine.list_project_summaries()
    if path == "repository/stats":
        return engine.repository_stats()
    if path.startswith("summary/") and len(path) > len("summary/"):
        repository = unquote(path[len("summary/"):])
        return engine.get_project_summary(repository).to_dict()
    if path.startswith("entry/") and len(path) > len("entry/"):
        return engine.get_entry(unquote(path[len("entry/"):]), include_raw_report=False)

    raise NotFoundError("Resource", uri)


def read_resource(engine: JournalEngine, uri: str) -> str:
    """Render a resource as JSON text.

    Raises:
        NotFoundError: For an unknown URI, or a summary or entry that does not exist
    """
    return json.dumps(_read(engine, str(uri)), indent=2, default=str)
