"""Correction commands: manual fix, rollback and backup housekeeping."""

from typing import Optional

import typer

from linkaudit.db import corrections as corrections_db
from linkaudit.errors import CorrectionError, LowConfidenceError, RollbackError
from cli.context import open_service
from cli.rendering import render_correction

corrections_app = typer.Typer(help="Inspect and maintain applied corrections.", no_args_is_help=True)


def fix(
    validation_id: int = typer.Argument(..., help="Id of a broken validation result."),
) -> None:
    """Apply the best correction for one broken link."""
    with open_service() as service:
        try:
            applied = service.fix_link(validation_id)
        except LowConfidenceError as exc:
            typer.echo(f"[fix] {exc}")
            raise typer.Exit(code=2)
        except (CorrectionError, ValueError) as exc:
            typer.echo(f"[fix] {exc}")
            raise typer.Exit(code=1)
    typer.echo(f"[fix] Applied {len(applied)} correction(s):")
    for c in applied:
        typer.echo(render_correction(c))


def rollback(
    rollback_id: str = typer.Argument(..., help="Rollback id of an applied correction."),
) -> None:
    """Restore the file a correction changed."""
    with open_service() as service:
        try:
            correction = service.corrector.rollback_correction(rollback_id)
        except RollbackError as exc:
            typer.echo(f"[rollback] {exc}")
            raise typer.Exit(code=1)
    typer.echo(f"[rollback] Restored {correction.file_path} ({correction.corrected_url} -> {correction.original_url})")


@corrections_app.command("list")
def corrections_list(
    all_: bool = typer.Option(False, "--all", help="Include rolled-back corrections."),
) -> None:
    """List applied corrections."""
    with open_service() as service:
        rows = corrections_db.list_corrections(service.conn, include_rolled_back=all_)
    if not rows:
        typer.echo("[corrections list] No corrections recorded.")
        return
    for c in rows:
        typer.echo(render_correction(c))


@corrections_app.command("verify")
def corrections_verify(
    rollback_id: str = typer.Argument(..., help="Rollback id of an applied correction."),
) -> None:
    """Check that the corrected URL is still in place."""
    with open_service() as service:
        try:
            ok = service.corrector.verify_correction(rollback_id)
        except RollbackError as exc:
            typer.echo(f"[corrections verify] {exc}")
            raise typer.Exit(code=1)
    typer.echo(f"[corrections verify] {rollback_id}: {'ok' if ok else 'changed since correction'}")
    if not ok:
        raise typer.Exit(code=1)


@corrections_app.command("cleanup")
def corrections_cleanup(
    days: Optional[int] = typer.Option(None, help="Retention in days; defaults to BACKUP_RETENTION_DAYS."),
) -> None:
    """Delete backup directories older than the retention period."""
    with open_service() as service:
        removed = service.cleanup_backups(days)
    typer.echo(f"[corrections cleanup] Removed {removed} backup(s).")
