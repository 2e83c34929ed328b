"""MCP tool definitions wrapping the journal engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .engine import JournalEngine
from .errors import (
    ConfigError,
    ConflictError,
    ExternalServiceError,
    JournalError,
    NotFoundError,
    RateLimitError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Listing tools never return more than this many rows per call
MAX_TOOL_LIMIT = 50


def _clamp_limit(value: Any, default: int = 20) -> int:
    try:
        limit = int(value) if value is not None else default
    except (TypeError, ValueError):
        limit = default
    return max(1, min(limit, MAX_TOOL_LIMIT))


def _clamp_offset(value: Any) -> int:
    try:
        offset = int(value) if value is not None else 0
    except (TypeError, ValueError):
        offset = 0
    return max(0, offset)


PAGINATION_PROPERTIES = {
    "limit": {
        "type": "integer",
        "description": f"Maximum results (default 20, max {MAX_TOOL_LIMIT})",
    },
    "offset": {
        "type": "integer",
        "description": "Results to skip (default 0)",
    },
    "include_raw_report": {
        "type": "boolean",
        "description": "Include the full raw agent report in each entry (default false)",
    },
}


def make_tools(engine: JournalEngine) -> dict[str, dict]:
    """Create MCP tool definitions for the journal engine.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== Journal entries ==========

    tools["journal_create_entry"] = {
        "name": "journal_create_entry",
        "description": "Create a journal entry for a git commit. The agent's report is analyzed into why/what/decisions/technologies. One entry per commit.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "commit_hash": {"type": "string", "description": "Git commit SHA (at least 7 characters)"},
                "repository": {"type": "string", "description": "Repository name"},
                "branch": {"type": "string", "description": "Branch name"},
                "author": {"type": "string", "description": "Commit author"},
                "code_author": {"type": "string", "description": "Who wrote the code, if different from the author"},
                "team_members": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Other people involved",
                },
                "date": {"type": "string", "description": "Commit date (ISO 8601)"},
                "raw_agent_report": {"type": "string", "description": "Free-form report of the work done"},
                "files_changed": {
                    "type": "array",
                    "description": "Files touched by the commit",
                },
            },
            "required": ["commit_hash", "repository", "branch", "author", "date", "raw_agent_report"],
        },
    }

    tools["journal_get_entry"] = {
        "name": "journal_get_entry",
        "description": "Get the journal entry of a commit, with its attachment metadata.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "commit_hash": {"type": "string", "description": "Git commit SHA"},
                "include_raw_report": {
                    "type": "boolean",
                    "description": "Include the raw agent report (default true)",
                },
            },
            "required": ["commit_hash"],
        },
    }

    tools["journal_list_by_repository"] = {
        "name": "journal_list_by_repository",
        "description": "List journal entries of a repository, newest first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "repository": {"type": "string", "description": "Repository name"},
                **PAGINATION_PROPERTIES,
            },
            "required": ["repository"],
        },
    }

    tools["journal_list_by_branch"] = {
        "name": "journal_list_by_branch",
        "description": "List journal entries of one branch of a repository, newest first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "repository": {"type": "string", "description": "Repository name"},
                "branch": {"type": "string", "description": "Branch name"},
                **PAGINATION_PROPERTIES,
            },
            "required": ["repository", "branch"],
        },
    }

    tools["journal_list_repositories"] = {
        "name": "journal_list_repositories",
        "description": "List repositories that have journal entries, with entry counts.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["journal_list_branches"] = {
        "name": "journal_list_branches",
        "description": "List branches of a repository that have journal entries.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "repository": {"type": "string", "description": "Repository name"},
            },
            "required": ["repository"],
        },
    }

    tools["journal_edit_entry"] = {
        "name": "journal_edit_entry",
        "description": "Edit the analysis fields of an entry. Only the given fields change; pass kronus_wisdom as null to clear it.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "commit_hash": {"type": "string", "description": "Git commit SHA"},
                "why": {"type": "string"},
                "what_changed": {"type": "string"},
                "decisions": {"type": "string"},
                "technologies": {"type": "string"},
                "kronus_wisdom": {"type": ["string", "null"]},
            },
            "required": ["commit_hash"],
        },
    }

    # ========== Project summaries (Entry 0) ==========

    tools["journal_get_project_summary"] = {
        "name": "journal_get_project_summary",
        "description": "Get the Living Project Summary (Entry 0) of a repository.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "repository": {"type": "string", "description": "Repository name"},
            },
            "required": ["repository"],
        },
    }

    tools["journal_list_project_summaries"] = {
        "name": "journal_list_project_summaries",
        "description": "List project summaries of all repositories, including repositories without one yet.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "limit": PAGINATION_PROPERTIES["limit"],
                "offset": PAGINATION_PROPERTIES["offset"],
            },
        },
    }

    tools["journal_submit_summary_report"] = {
        "name": "journal_submit_summary_report",
        "description": "Submit a free-form report about a project. It is normalized into Entry 0 sections; only sections with new information are updated.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "repository": {"type": "string", "description": "Repository name"},
                "raw_report": {"type": "string", "description": "Everything you know about the project"},
                "git_url": {"type": "string", "description": "Remote URL of the repository"},
            },
            "required": ["repository", "raw_report"],
        },
    }

    # ========== Attachments ==========

    tools["journal_attach_file"] = {
        "name": "journal_attach_file",
        "description": "Attach a file (diagram, screenshot, document) to a journal entry. Data must be base64 encoded.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "commit_hash": {"type": "string", "description": "Git commit SHA"},
                "filename": {"type": "string"},
                "data_base64": {"type": "string", "description": "Base64 encoded file content"},
                "mime_type": {"type": "string", "description": "e.g. image/png, text/markdown"},
                "description": {"type": "string"},
            },
            "required": ["commit_hash", "filename", "data_base64", "mime_type"],
        },
    }

    tools["journal_list_attachments"] = {
        "name": "journal_list_attachments",
        "description": "List attachment metadata, for one commit or across the journal.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "commit_hash": {"type": "string", "description": "Only attachments of this commit"},
                "repository": {"type": "string", "description": "Only attachments of this repository"},
                "type": {
                    "type": "string",
                    "enum": ["image", "mermaid"],
                    "description": "Only images or Mermaid diagrams",
                },
            },
        },
    }

    tools["journal_get_attachment"] = {
        "name": "journal_get_attachment",
        "description": "Get one attachment; the content is included as base64 only when asked.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "attachment_id": {"type": "integer"},
                "include_data": {"type": "boolean", "description": "Include base64 content (default false)"},
            },
            "required": ["attachment_id"],
        },
    }

    # ========== Operations ==========

    tools["journal_backup"] = {
        "name": "journal_backup",
        "description": "Write an SQL dump of the whole database to the backup file.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["journal_stats"] = {
        "name": "journal_stats",
        "description": "Counts of entries, repositories and attachments.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    # ========== Repository content ==========

    tools["repository_list_skills"] = {
        "name": "repository_list_skills",
        "description": "List CV skills ordered by category.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["repository_upsert_skill"] = {
        "name": "repository_upsert_skill",
        "description": "Create a skill, or update it if the id exists.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Lowercase slug, e.g. 'python'"},
                "name": {"type": "string"},
                "category": {"type": "string"},
                "magnitude": {"type": "integer", "minimum": 1, "maximum": 5},
                "description": {"type": "string"},
                "icon": {"type": "string"},
                "color": {"type": "string"},
                "url": {"type": "string"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "first_used": {"type": "string"},
                "last_used": {"type": "string"},
            },
            "required": ["id"],
        },
    }

    tools["repository_list_experience"] = {
        "name": "repository_list_experience",
        "description": "List work experience, most recent first.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["repository_list_education"] = {
        "name": "repository_list_education",
        "description": "List education, most recent first.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["repository_list_portfolio_projects"] = {
        "name": "repository_list_portfolio_projects",
        "description": "List portfolio projects, featured first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "category": {"type": "string"},
                "status": {"type": "string", "enum": ["shipped", "wip", "archived"]},
                "featured": {"type": "boolean"},
            },
        },
    }

    tools["repository_upsert_portfolio_project"] = {
        "name": "repository_upsert_portfolio_project",
        "description": "Create a portfolio project, or update it if the id exists. Projects cannot be deleted.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "title": {"type": "string"},
                "category": {"type": "string"},
                "company": {"type": "string"},
                "date_completed": {"type": "string"},
                "status": {"type": "string", "enum": ["shipped", "wip", "archived"]},
                "featured": {"type": "boolean"},
                "image": {"type": "string"},
                "excerpt": {"type": "string"},
                "description": {"type": "string"},
                "role": {"type": "string"},
                "technologies": {"type": "array", "items": {"type": "string"}},
                "metrics": {"type": "object"},
                "links": {"type": "object"},
                "tags": {"type": "array", "items": {"type": "string"}},
                "sort_order": {"type": "integer"},
            },
            "required": ["id"],
        },
    }

    tools["repository_list_documents"] = {
        "name": "repository_list_documents",
        "description": "List documents (writings, prompts, notes), newest first.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["writing", "prompt", "note"]},
                "search": {"type": "string", "description": "Text to find in title or content"},
                "year": {"type": "integer"},
                "limit": PAGINATION_PROPERTIES["limit"],
                "offset": PAGINATION_PROPERTIES["offset"],
            },
        },
    }

    tools["repository_get_document"] = {
        "name": "repository_get_document",
        "description": "Get one document by slug or id.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "slug": {"type": "string", "description": "Document slug or numeric id"},
            },
            "required": ["slug"],
        },
    }

    tools["repository_create_document"] = {
        "name": "repository_create_document",
        "description": "Create a document.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "slug": {"type": "string", "description": "Lowercase letters, digits and dashes"},
                "type": {"type": "string", "enum": ["writing", "prompt", "note"]},
                "title": {"type": "string"},
                "content": {"type": "string"},
                "language": {"type": "string"},
                "metadata": {"type": "object"},
            },
            "required": ["slug", "type", "title", "content"],
        },
    }

    # ========== Linear ==========

    tools["linear_get_viewer"] = {
        "name": "linear_get_viewer",
        "description": "Get the Linear user the API key belongs to.",
        "inputSchema": {"type": "object", "properties": {}},
    }

    tools["linear_list_projects"] = {
        "name": "linear_list_projects",
        "description": "List Linear projects. Completed and canceled projects are hidden unless show_all is set.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "team_id": {"type": "string"},
                "show_all": {"type": "boolean"},
            },
        },
    }

    tools["linear_list_issues"] = {
        "name": "linear_list_issues",
        "description": "List Linear issues. By default only your open issues.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "show_all": {"type": "boolean", "description": "Include closed issues and other assignees"},
                "project_id": {"type": "string"},
                "limit": PAGINATION_PROPERTIES["limit"],
            },
        },
    }

    tools["linear_create_issue"] = {
        "name": "linear_create_issue",
        "description": "Create a Linear issue.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "team_id": {"type": "string"},
                "description": {"type": "string"},
                "priority": {"type": "integer", "minimum": 0, "maximum": 4},
                "assignee_id": {"type": "string"},
                "project_id": {"type": "string"},
                "parent_id": {"type": "string"},
            },
            "required": ["title", "team_id"],
        },
    }

    tools["linear_update_issue"] = {
        "name": "linear_update_issue",
        "description": "Update a Linear issue.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "issue_id": {"type": "string"},
                "title": {"type": "string"},
                "description": {"type": "string"},
                "priority": {"type": "integer", "minimum": 0, "maximum": 4},
                "state_id": {"type": "string"},
                "assignee_id": {"type": "string"},
                "project_id": {"type": "string"},
            },
            "required": ["issue_id"],
        },
    }

    tools["linear_create_project"] = {
        "name": "linear_create_project",
        "description": "Create a Linear project in one or more teams.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "team_ids": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                "description": {"type": "string"},
                "content": {"type": "string"},
                "lead_id": {"type": "string"},
                "target_date": {"type": "string"},
            },
            "required": ["name", "team_ids"],
        },
    }

    tools["linear_sync"] = {
        "name": "linear_sync",
        "description": "Refresh the local cache of Linear projects and issues.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "include_completed": {"type": "boolean"},
            },
        },
    }

    return tools


async def execute_tool(engine: JournalEngine, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    """Execute a tool and return the result.

    Args:
        engine: The journal engine instance
        name: Tool name
        arguments: Tool arguments

    Returns:
        Result dictionary
    """
    try:
        # ========== Journal entries ==========
        if name == "journal_create_entry":
            entry = engine.create_entry(arguments)
            return {
                "success": True,
                "entry": entry.to_dict(include_raw_report=False),
                "message": f"Journal entry created for {entry.commit_hash}",
            }

        elif name == "journal_get_entry":
            entry = engine.get_entry(
                arguments["commit_hash"],
                include_raw_report=arguments.get("include_raw_report", True),
            )
            return {"success": True, "entry": entry}

        elif name in ("journal_list_by_repository", "journal_list_by_branch"):
            result = engine.list_entries(
                repository=arguments["repository"],
                branch=arguments.get("branch") if name == "journal_list_by_branch" else None,
                limit=_clamp_limit(arguments.get("limit")),
                offset=_clamp_offset(arguments.get("offset")),
                include_raw_report=bool(arguments.get("include_raw_report", False)),
            )
            return {"success": True, **result}

        elif name == "journal_list_repositories":
            repositories = engine.list_repositories()
            return {"success": True, "repositories": repositories, "count": len(repositories)}

        elif name == "journal_list_branches":
            branches = engine.list_branches(arguments["repository"])
            return {
                "success": True,
                "repository": arguments["repository"],
                "branches": branches,
                "count": len(branches),
            }

        elif name == "journal_edit_entry":
            updates = {k: v for k, v in arguments.items() if k != "commit_hash"}
            entry = engine.update_entry(arguments["commit_hash"], updates)
            entry.pop("raw_agent_report", None)
            return {"success": True, "entry": entry, "updated_fields": list(updates)}

        # ========== Project summaries ==========
        elif name == "journal_get_project_summary":
            summary = engine.get_project_summary(arguments["repository"])
            return {"success": True, "summary": summary.to_dict()}

        elif name == "journal_list_project_summaries":
            result = engine.list_project_summaries_paginated(
                limit=_clamp_limit(arguments.get("limit")),
                offset=_clamp_offset(arguments.get("offset")),
            )
            return {"success": True, **result}

        elif name == "journal_submit_summary_report":
            result = engine.submit_summary_report(
                arguments["repository"],
                arguments["raw_report"],
                git_url=arguments.get("git_url"),
            )
            return {"success": True, **result}

        # ========== Attachments ==========
        elif name == "journal_attach_file":
            attachment = engine.add_attachment(
                arguments["commit_hash"],
                arguments["filename"],
                arguments["data_base64"],
                arguments["mime_type"],
                arguments.get("description"),
            )
            return {"success": True, "attachment": attachment}

        elif name == "journal_list_attachments":
            if arguments.get("commit_hash"):
                attachments = engine.get_attachment_metadata_by_commit(arguments["commit_hash"])
                return {"success": True, "attachments": attachments, "total": len(attachments)}
            if arguments.get("repository"):
                return {"success": True, **engine.list_attachments_by_repository(arguments["repository"])}
            return {"success": True, **engine.list_attachments(type=arguments.get("type"))}

        elif name == "journal_get_attachment":
            attachment = engine.get_attachment(
                int(arguments["attachment_id"]),
                include_data=bool(arguments.get("include_data", False)),
            )
            return {"success": True, "attachment": attachment}

        # ========== Operations ==========
        elif name == "journal_backup":
            return engine.backup()

        elif name == "journal_stats":
            return {"success": True, **engine.journal_stats()}

        # ========== Repository content ==========
        elif name == "repository_list_skills":
            skills = engine.content.list_skills()
            return {"success": True, "skills": skills, "total": len(skills)}

        elif name == "repository_upsert_skill":
            return {"success": True, "skill": engine.content.upsert_skill(arguments)}

        elif name == "repository_list_experience":
            experience = engine.content.list_experience()
            return {"success": True, "experience": experience, "total": len(experience)}

        elif name == "repository_list_education":
            education = engine.content.list_education()
            return {"success": True, "education": education, "total": len(education)}

        elif name == "repository_list_portfolio_projects":
            result = engine.content.list_projects(
                category=arguments.get("category"),
                status=arguments.get("status"),
                featured=arguments.get("featured"),
            )
            return {"success": True, **result}

        elif name == "repository_upsert_portfolio_project":
            return {"success": True, "project": engine.content.upsert_project(arguments)}

        elif name == "repository_list_documents":
            result = engine.content.list_documents(
                type=arguments.get("type"),
                search=arguments.get("search"),
                year=arguments.get("year"),
                limit=_clamp_limit(arguments.get("limit")),
                offset=_clamp_offset(arguments.get("offset")),
            )
            return {"success": True, **result}

        elif name == "repository_get_document":
            return {"success": True, "document": engine.content.get_document(arguments["slug"])}

        elif name == "repository_create_document":
            return {"success": True, "document": engine.content.create_document(arguments)}

        # ========== Linear ==========
        elif name == "linear_get_viewer":
            return {"success": True, "viewer": engine.linear.get_viewer()}

        elif name == "linear_list_projects":
            projects = engine.linear.list_projects(
                team_id=arguments.get("team_id"),
                show_all=bool(arguments.get("show_all", False)),
            )
            return {"success": True, "projects": projects, "total": len(projects)}

        elif name == "linear_list_issues":
            show_all = bool(arguments.get("show_all", False))
            assignee_id = None if show_all else engine.config.linear_user_id
            issues = engine.linear.list_issues(
                show_all=show_all,
                limit=_clamp_limit(arguments.get("limit")),
                assignee_id=assignee_id,
                project_id=arguments.get("project_id"),
            )
            return {"success": True, "issues": issues, "total": len(issues)}

        elif name == "linear_create_issue":
            return {"success": True, "issue": engine.linear.create_issue(arguments)}

        elif name == "linear_update_issue":
            changes = {k: v for k, v in arguments.items() if k != "issue_id"}
            return {"success": True, "issue": engine.linear.update_issue(arguments["issue_id"], changes)}

        elif name == "linear_create_project":
            return {"success": True, "project": engine.linear.create_project(arguments)}

        elif name == "linear_sync":
            result = engine.linear_sync.sync_all(bool(arguments.get("include_completed", False)))
            return {"success": True, **result}

        # ========== Custom tools from journal_config.py ==========
        elif name in engine.config.custom_tools:
            try:
                result = engine.config.custom_tools[name](engine, arguments.get("params", arguments))
                if asyncio.iscoroutine(result):
                    result = await result
            except Exception as e:
                logger.exception("Custom tool %s failed", name)
                return {
                    "success": False,
                    "error": str(e),
                    "error_type": "custom_tool_error",
                }
            return result

        else:
            return {
                "success": False,
                "error": f"Unknown tool: {name}",
            }

    except ValidationError as e:
        return {
            "success": False,
            "error": e.message,
            "error_type": "validation_error",
            "details": e.details,
            "suggestion": "Check the arguments against the tool's input schema",
        }

    except NotFoundError as e:
        return {
            "success": False,
            "error": e.message,
            "error_type": "not_found",
            "suggestion": "Use the list tools to find existing records",
        }

    except ConflictError as e:
        return {
            "success": False,
            "error": e.message,
            "error_type": "conflict",
            "suggestion": "The record already exists - fetch or edit it instead",
        }

    except ConfigError as e:
        return {
            "success": False,
            "error": e.message,
            "error_type": "config_error",
            "suggestion": "Set the missing key in the environment or journal_config",
        }

    except (UnauthorizedError, RateLimitError, ExternalServiceError) as e:
        logger.warning("Tool %s failed on an external service: %s", name, e)
        return {
            "success": False,
            "error": e.message,
            "error_type": "external_service_error",
            "suggestion": "The hosted service failed or refused the request; retry later",
        }

    except JournalError as e:
        return {
            "success": False,
            "error": e.message,
            "error_type": "journal_error",
        }

    except KeyError as e:
        return {
            "success": False,
            "error": f"Missing required argument: {e.args[0]}",
            "error_type": "validation_error",
        }

    except Exception as e:
        logger.exception("Tool %s failed", name)
        return {
            "success": False,
            "error": str(e),
            "error_type": "unexpected_error",
        }

