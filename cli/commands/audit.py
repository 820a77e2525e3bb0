"""Audit pipeline commands."""

import json
from pathlib import Path
from typing import Optional

import typer

from linkaudit.db import corrections as corrections_db
from linkaudit.db import history as history_db
from linkaudit.db import links as links_db
from linkaudit.db.models import LinkType, Priority
from linkaudit.report.csv_export import export_report_csv
from cli.context import open_service
from cli.rendering import render_correction, render_history, render_summary

audit_app = typer.Typer(help="Scan, validate, correct and report.", no_args_is_help=True)


@audit_app.command("run")
def audit_run(
    no_correct: bool = typer.Option(False, "--no-correct", help="Skip automatic corrections."),
    no_report: bool = typer.Option(False, "--no-report", help="Do not write the JSON report file."),
) -> None:
    """Run the full audit pipeline once."""
    with open_service() as service:
        typer.echo("[audit run] Running full audit …")
        result = service.run_full_audit(auto_correct=not no_correct, write_report=not no_report)

    data = result.to_dict()
    if not result.success:
        typer.echo(f"[audit run] Failed after {data['execution_time']}s: {result.message}")
        raise typer.Exit(code=1)

    typer.echo(f"[audit run] Completed in {data['execution_time']}s (run #{result.run_id})")
    for line in render_summary(data["summary"], data["seo_impact"]):
        typer.echo(line)
    if result.corrections:
        typer.echo("[audit run] Corrections applied:")
        for c in result.corrections:
            typer.echo(render_correction(c))
    for error in result.errors:
        typer.echo(f"  ! {error}")


@audit_app.command("scan")
def audit_scan(
    save: bool = typer.Option(False, "--save", help="Persist discovered links to the database."),
) -> None:
    """Discover links without validating them."""
    with open_service() as service:
        result = service.scanner.scan()
        if save:
            links_db.insert_links(service.conn, result.links)

    typer.echo(f"[audit scan] {len(result.links)} links in {result.files_scanned} files")
    for link_type in LinkType:
        typer.echo(f"  {link_type.value:<9} {len(result.by_type(link_type))}")
    for error in result.errors:
        typer.echo(f"  ! {error}")
    if save:
        typer.echo("[audit scan] Links saved.")


def _load_report(path: Optional[Path], label: str) -> tuple[Path, dict]:
    if path is None:
        with open_service() as service:
            runs = [r for r in history_db.recent_audits(service.conn, limit=20) if r.report_path]
        if not runs:
            typer.echo(f"[{label}] No report on record. Run 'audit run' first.")
            raise typer.Exit(code=1)
        path = Path(runs[0].report_path)

    if not path.exists():
        typer.echo(f"[{label}] Report file not found: {path}")
        raise typer.Exit(code=1)
    return path, json.loads(path.read_text(encoding="utf-8"))


@audit_app.command("report")
def audit_report(
    path: Optional[Path] = typer.Option(None, "--path", help="Report file; defaults to the latest run's report."),
) -> None:
    """Print the summary of a written audit report."""
    path, report = _load_report(path, "audit report")
    typer.echo(f"[audit report] {path}")
    for line in render_summary(report.get("summary"), report.get("seo_impact")):
        typer.echo(line)
    for rec in report.get("recommendations", []):
        typer.echo(f"  * {rec}")


@audit_app.command("history")
def audit_history(
    limit: int = typer.Option(10, help="Number of runs to show."),
) -> None:
    """Show recent audit runs, newest first."""
    with open_service() as service:
        runs = history_db.recent_audits(service.conn, limit)
    if not runs:
        typer.echo("[audit history] No audits recorded.")
        return
    for line in render_history(runs):
        typer.echo(line)


@audit_app.command("weekly-summary")
def audit_weekly_summary() -> None:
    """Send the weekly health summary to the admin recipient."""
    with open_service() as service:
        outcome = service.send_weekly_summary()
    if outcome.error:
        typer.echo(f"[audit weekly-summary] Delivery failed: {outcome.error}")
        raise typer.Exit(code=1)
    typer.echo("[audit weekly-summary] Sent." if outcome.sent else "[audit weekly-summary] Nothing to send.")


@audit_app.command("export")
def audit_export(
    out: Path = typer.Option(..., "--out", help="Directory for the CSV files."),
    path: Optional[Path] = typer.Option(None, "--path", help="Report file; defaults to the latest run's report."),
    priority: Optional[str] = typer.Option(None, "--priority", help="Only broken links of this priority."),
    link_type: Optional[str] = typer.Option(None, "--type", help="Only broken links of this type."),
) -> None:
    """Export a written report and the live corrections as CSV files."""
    try:
        priority = Priority(priority).value if priority else None
        link_type = LinkType(link_type).value if link_type else None
    except ValueError as exc:
        typer.echo(f"[audit export] {exc}")
        raise typer.Exit(code=1)

    path, report = _load_report(path, "audit export")
    with open_service() as service:
        corrections = corrections_db.list_corrections(service.conn)
    paths = export_report_csv(out, report, corrections, priority, link_type)
    typer.echo(f"[audit export] {path} ->")
    for name, target in paths.items():
        typer.echo(f"  {name:<13} {target}")
