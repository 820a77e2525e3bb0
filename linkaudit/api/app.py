"""FastAPI application factory.

Lifespan
--------
On startup the app opens a single SQLite connection, initialises the schema
and builds one :class:`~linkaudit.pipeline.AuditService` from the settings.
Both are stored on ``app.state`` (``db`` and ``service``) and shared by all
requests.  On shutdown the connection is closed.

Routers
-------
    /audit        - run the pipeline, read history and broken results
    /scheduler    - job queue control
    /corrections  - manual fixes, applied corrections, rollback
    /resources    - resource-request intake
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from linkaudit.config import Settings, settings as default_settings
from linkaudit.db import get_connection, init_db
from linkaudit.log import configure_logging
from linkaudit.pipeline import AuditService

from linkaudit.api.routers import audit as audit_router
from linkaudit.api.routers import corrections as corrections_router
from linkaudit.api.routers import resources as resources_router
from linkaudit.api.routers import scheduler as scheduler_router


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[AuditService] = None,
) -> FastAPI:
    """Return a fully-configured FastAPI application instance.

    Pass *service* to reuse an existing service (and its connection) instead
    of opening the workspace database.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        if service is not None:
            app.state.db = service.conn
            app.state.service = service
            yield
            return

        settings.ensure_workspace()
        conn = get_connection(settings.db_path)
        init_db(conn)
        app.state.db = conn
        app.state.service = AuditService(conn, settings)
        try:
            yield
        finally:
            conn.close()

    app = FastAPI(
        title="LinkAudit API",
        description=(
            "REST interface for the link-integrity audit: full pipeline runs, "
            "scheduled audits, manual corrections with rollback, and "
            "resource-request intake."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    # Allow browser frontends on any origin (tighten for production).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(audit_router.router, prefix="/audit", tags=["audit"])
    app.include_router(scheduler_router.router, prefix="/scheduler", tags=["scheduler"])
    app.include_router(corrections_router.router, prefix="/corrections", tags=["corrections"])
    app.include_router(resources_router.router, prefix="/resources", tags=["resources"])

    return app


# Module-level instance used by uvicorn:
#   uvicorn linkaudit.api.app:app --reload
app = create_app()
