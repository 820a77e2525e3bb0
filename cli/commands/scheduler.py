"""Scheduled-job commands."""

import time
from typing import Optional

import typer

from cli.context import open_service
from cli.rendering import render_job, render_queue_status

scheduler_app = typer.Typer(help="Queue and run scheduled audits.", no_args_is_help=True)


@scheduler_app.command("full-audit")
def scheduler_full_audit(
    delay: float = typer.Option(0.0, "--in", help="Minutes from now to run the audit."),
    priority: Optional[int] = typer.Option(None, help="Job priority, 1-10."),
) -> None:
    """Queue a full audit."""
    with open_service() as service:
        try:
            job = service.scheduler.schedule_full_audit(at=time.time() + delay * 60, priority=priority)
        except ValueError as exc:
            typer.echo(f"[scheduler full-audit] {exc}")
            raise typer.Exit(code=1)
    typer.echo("[scheduler full-audit] Queued:")
    typer.echo(render_job(job))


@scheduler_app.command("quick-check")
def scheduler_quick_check(
    priority: Optional[int] = typer.Option(None, help="Job priority, 1-10."),
) -> None:
    """Queue a quick re-check of recently broken links."""
    with open_service() as service:
        try:
            job = service.scheduler.schedule_quick_check(priority=priority)
        except ValueError as exc:
            typer.echo(f"[scheduler quick-check] {exc}")
            raise typer.Exit(code=1)
    typer.echo("[scheduler quick-check] Queued:")
    typer.echo(render_job(job))


@scheduler_app.command("process")
def scheduler_process() -> None:
    """Run the next due job, if any."""
    with open_service() as service:
        job = service.scheduler.process_queue()
    if job is None:
        typer.echo("[scheduler process] Nothing to run.")
        return
    typer.echo("[scheduler process] Finished:")
    typer.echo(render_job(job))


@scheduler_app.command("cancel")
def scheduler_cancel(
    job_id: str = typer.Argument(..., help="Job identifier."),
) -> None:
    """Cancel a pending job."""
    with open_service() as service:
        try:
            cancelled = service.scheduler.cancel_job(job_id)
        except ValueError as exc:
            typer.echo(f"[scheduler cancel] {exc}")
            raise typer.Exit(code=1)
    if not cancelled:
        typer.echo(f"[scheduler cancel] {job_id} is not pending.")
        raise typer.Exit(code=1)
    typer.echo(f"[scheduler cancel] Cancelled {job_id}")


@scheduler_app.command("status")
def scheduler_status() -> None:
    """Show queue counts and pending jobs."""
    with open_service() as service:
        status = service.scheduler.get_queue_status()
    for line in render_queue_status(status):
        typer.echo(line)
