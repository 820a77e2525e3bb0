"""LinkAudit CLI: entry-point for all audit operations.

Usage:
    python cli/main.py --help

Command groups:
    db           → database setup
    audit        → scan / validate / correct / report
    scheduler    → queued full audits and quick checks
    corrections  → applied-correction housekeeping
    fix          → manual single-link fix
    rollback     → undo an applied correction
    serve        → run the HTTP API
"""

from __future__ import annotations

import sys
from pathlib import Path

# Ensure the project root is on sys.path so that `from linkaudit.xxx import ...`
# works when the CLI is invoked as `python cli/main.py` from any directory.
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import typer

from linkaudit.config import settings
from linkaudit.db import get_connection, init_db
from cli.commands.audit import audit_app
from cli.commands.corrections import corrections_app, fix, rollback
from cli.commands.scheduler import scheduler_app

app = typer.Typer(
    name="linkaudit",
    help="Link-integrity audit CLI.",
    no_args_is_help=True,
)

# ---------------------------------------------------------------------------
# DB commands
# ---------------------------------------------------------------------------
db_app = typer.Typer(help="Database operations.", no_args_is_help=True)
app.add_typer(db_app, name="db")


@db_app.command("init")
def db_init() -> None:
    """Initialise the SQLite database (create tables if they do not exist)."""
    conn = get_connection()
    init_db(conn)
    conn.close()
    typer.echo(f"[db init] Database ready at {settings.db_path}")


# ---------------------------------------------------------------------------
# Pipeline, scheduler and correction commands
# ---------------------------------------------------------------------------
app.add_typer(audit_app, name="audit")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(corrections_app, name="corrections")
app.command("fix")(fix)
app.command("rollback")(rollback)


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------
@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
) -> None:
    """Run the FastAPI app with uvicorn."""
    import uvicorn

    typer.echo(f"[serve] http://{host}:{port}")
    uvicorn.run("linkaudit.api.app:app", host=host, port=port, reload=reload)


# ---------------------------------------------------------------------------
# Entry-point
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    app()
