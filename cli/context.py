"""Service construction shared by CLI commands.

Every command opens the workspace database, builds one
:class:`~linkaudit.pipeline.AuditService` from ``linkaudit.config.settings``
and closes the connection when it returns.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from linkaudit.alerts import Notifier
from linkaudit.config import settings
from linkaudit.db import get_connection, init_db
from linkaudit.log import configure_logging
from linkaudit.pipeline import AuditService


@contextmanager
def open_service(notifier: Optional[Notifier] = None) -> Iterator[AuditService]:
    """Yield a ready service bound to a fresh connection."""
    configure_logging(settings.log_level)
    settings.ensure_workspace()
    conn = get_connection()
    init_db(conn)
    try:
        yield AuditService(conn, settings, notifier=notifier)
    finally:
        conn.close()
