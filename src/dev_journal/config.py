"""Configuration loading for the developer journal.

Supports three tiers:
1. Simple config via .toml or .json - most users
2. Python config via .py - power users with custom tools/hooks
3. Full override via subclassing - rare cases

Environment variables are applied last and win over file values.
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from .errors import ConfigError

# Python 3.11+ has tomllib in stdlib; fall back to tomli for older versions
try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib  # Python <3.11
    except ImportError:  # pragma: no cover
        tomllib = None


VERSION = "0.1.0"

SUPPORTED_AI_PROVIDERS = ("anthropic",)

DEFAULT_ENTRY_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_SUMMARY_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_UTILITY_MODEL = "claude-haiku-4-5-20251001"

DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


@dataclass
class JournalConfig:
    """Configuration for a journal database and its integrations."""

    project_root: Path = field(default_factory=Path.cwd)

    # Storage (relative to project_root unless absolute)
    db_path: str = "journal.db"
    backup_path: str = "journal_backup.sql"

    # Hosted model
    ai_provider: str = "anthropic"
    ai_api_key: Optional[str] = None
    entry_model: str = DEFAULT_ENTRY_MODEL
    summary_model: str = DEFAULT_SUMMARY_MODEL
    utility_model: str = DEFAULT_UTILITY_MODEL

    # Linear
    linear_api_key: Optional[str] = None
    linear_user_id: Optional[str] = None

    # Limits and identity
    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES
    user_id: str = "default"

    # Runtime
    log_level: str = "INFO"
    http_host: str = "127.0.0.1"
    http_port: int = 3333

    # Hooks (populated from Python config)
    hooks: dict[str, Callable] = field(default_factory=dict)

    # Custom tools (populated from Python config)
    custom_tools: dict[str, Callable] = field(default_factory=dict)

    def _resolve(self, value: str) -> Path:
        path = Path(os.path.expanduser(value))
        if path.is_absolute():
            return path
        return self.project_root / path

    def get_db_path(self) -> Path:
        return self._resolve(self.db_path)

    def get_backup_path(self) -> Path:
        return self._resolve(self.backup_path)

    def validate(self) -> None:
        """Reject settings the engine cannot work with."""
        if self.ai_provider not in SUPPORTED_AI_PROVIDERS:
            raise ConfigError(
                f"Unsupported AI provider: {self.ai_provider}. Supported: {list(SUPPORTED_AI_PROVIDERS)}"
            )
        if self.max_attachment_bytes <= 0:
            raise ConfigError("max_attachment_bytes must be positive")


def load_toml_config(path: Path) -> dict[str, Any]:
    """Load configuration from TOML file."""
    if tomllib is None:
        raise ImportError("tomli required for TOML config: pip install tomli")
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_json_config(path: Path) -> dict[str, Any]:
    """Load configuration from JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_python_config(path: Path) -> tuple[dict[str, Any], dict[str, Callable], dict[str, Callable]]:
    """Load configuration from Python file.

    Returns:
        Tuple of (config_dict, hooks_dict, custom_tools_dict)

    Convention:
        - CONFIG dict or config dict for static configuration
        - Functions named hook_* become hooks
        - Functions named custom_tool_* become MCP tools
    """
    spec = importlib.util.spec_from_file_location("journal_config", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load Python config from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["journal_config"] = module
    spec.loader.exec_module(module)

    config_dict = {}
    if hasattr(module, "CONFIG"):
        config_dict = module.CONFIG
    elif hasattr(module, "config"):
        config_dict = module.config

    hooks = {}
    custom_tools = {}
    for name in dir(module):
        if name.startswith("hook_"):
            hooks[name[5:]] = getattr(module, name)
        elif name.startswith("custom_tool_"):
            custom_tools[name[12:]] = getattr(module, name)

    return config_dict, hooks, custom_tools


def dict_to_config(data: dict[str, Any], project_root: Path) -> JournalConfig:
    """Convert dictionary to JournalConfig."""
    config = JournalConfig(project_root=project_root)

    if "database" in data:
        db = data["database"]
        if "path" in db:
            config.db_path = db["path"]
        if "backup_path" in db:
            config.backup_path = db["backup_path"]

    if "ai" in data:
        ai = data["ai"]
        if "provider" in ai:
            config.ai_provider = ai["provider"]
        if "api_key" in ai:
            config.ai_api_key = ai["api_key"]
        if "entry_model" in ai:
            config.entry_model = ai["entry_model"]
        if "summary_model" in ai:
            config.summary_model = ai["summary_model"]
        if "utility_model" in ai:
            config.utility_model = ai["utility_model"]

    if "linear" in data:
        linear = data["linear"]
        if "api_key" in linear:
            config.linear_api_key = linear["api_key"]
        if "user_id" in linear:
            config.linear_user_id = linear["user_id"]

    if "attachments" in data:
        if "max_bytes" in data["attachments"]:
            config.max_attachment_bytes = int(data["attachments"]["max_bytes"])

    if "server" in data:
        server = data["server"]
        if "host" in server:
            config.http_host = server["host"]
        if "port" in server:
            config.http_port = int(server["port"])
        if "log_level" in server:
            config.log_level = server["log_level"]

    if "user_id" in data:
        config.user_id = data["user_id"]

    return config


def apply_env_overrides(config: JournalConfig, environ: Optional[Mapping[str, str]] = None) -> JournalConfig:
    """Overlay settings taken from environment variables."""
    env = os.environ if environ is None else environ

    if env.get("JOURNAL_DB_PATH"):
        config.db_path = os.path.expanduser(env["JOURNAL_DB_PATH"])
    if env.get("AI_PROVIDER"):
        config.ai_provider = env["AI_PROVIDER"]
    if env.get("ANTHROPIC_API_KEY"):
        config.ai_api_key = env["ANTHROPIC_API_KEY"]
    if env.get("LINEAR_API_KEY"):
        config.linear_api_key = env["LINEAR_API_KEY"]
    if env.get("LINEAR_USER_ID"):
        config.linear_user_id = env["LINEAR_USER_ID"]
    if env.get("JOURNAL_LOG_LEVEL"):
        config.log_level = env["JOURNAL_LOG_LEVEL"]
    if env.get("PORT"):
        try:
            config.http_port = int(env["PORT"])
        except ValueError:
            raise ConfigError(f"PORT must be an integer, got {env['PORT']!r}")

    return config


def find_config_file(project_root: Path) -> Optional[Path]:
    """Find configuration file in project root.

    Search order:
    1. journal_config.py (most flexible)
    2. journal_config.toml
    3. journal_config.json
    4. .journal.toml
    5. .journal.json
    """
    candidates = [
        "journal_config.py",
        "journal_config.toml",
        "journal_config.json",
        ".journal.toml",
        ".journal.json",
    ]

    for name in candidates:
        path = project_root / name
        if path.exists():
            return path

    return None


def load_config(
    project_root: Path,
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> JournalConfig:
    """Load journal configuration.

    Args:
        project_root: Directory that relative paths are resolved against
        config_path: Optional explicit path to config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated JournalConfig instance
    """
    if config_path is None:
        config_path = find_config_file(project_root)

    if config_path is None:
        config = JournalConfig(project_root=project_root)
    else:
        suffix = config_path.suffix.lower()

        if suffix == ".py":
            config_dict, hooks, custom_tools = load_python_config(config_path)
            config = dict_to_config(config_dict, project_root)
            config.hooks = hooks
            config.custom_tools = custom_tools
        elif suffix == ".toml":
            config = dict_to_config(load_toml_config(config_path), project_root)
        elif suffix == ".json":
            config = dict_to_config(load_json_config(config_path), project_root)
        else:
            raise ValueError(f"Unsupported config file type: {suffix}")

    apply_env_overrides(config, environ)
    config.validate()
    return config
