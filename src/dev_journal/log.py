"""Logging setup.

Logs go to stderr: stdout belongs to the MCP stdio transport.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the ``dev_journal`` logger hierarchy once."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger("dev_journal")
    root.setLevel(numeric)

    if not any(getattr(h, "_dev_journal", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._dev_journal = True  # type: ignore[attr-defined]
        root.addHandler(handler)
        root.propagate = False
