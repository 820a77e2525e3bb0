"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from linkaudit.api import app

    uvicorn linkaudit.api:app --reload
"""

from linkaudit.api.app import app

__all__ = ["app"]
