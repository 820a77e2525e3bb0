"""Logging setup shared by the CLI and the API.

Modules log through ``logging.getLogger(__name__)`` and prefix messages with a
bracketed phase tag (``[SCAN]``, ``[VALIDATE]`` ...).  Entry points call
:func:`configure_logging` once.
"""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a basic stderr handler on the root logger (idempotent)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_FORMAT)
    else:
        root.setLevel(level)
    # httpx logs every request at INFO; keep per-link request lines out of audit logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
