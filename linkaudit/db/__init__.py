"""Database layer package.

Public re-exports so callers can write::

    from linkaudit.db import get_connection, init_db
    from linkaudit.db import jobs, validations
"""

from linkaudit.db.connection import get_connection
from linkaudit.db.migrations import init_db
from linkaudit.db import corrections, history, jobs, links, resource_requests, validations

__all__ = [
    "get_connection",
    "init_db",
    "corrections",
    "history",
    "jobs",
    "links",
    "resource_requests",
    "validations",
]
