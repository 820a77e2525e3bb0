"""Plain-text rendering helpers for CLI output."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from linkaudit.db.models import AppliedCorrection, AuditRun, ScheduledJob


def _ts(value: Optional[float]) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def render_summary(summary: Optional[Dict[str, Any]], seo_impact: Optional[Dict[str, Any]] = None) -> List[str]:
    """Render the summary block of a report dict as aligned lines."""
    if not summary:
        return ["  (no summary)"]
    lines = [
        f"  Total links   : {summary['total_links']}",
        f"  Valid         : {summary['valid_links']}",
        f"  Broken        : {summary['broken_links']}",
        f"  Corrected     : {summary['corrected_links']}",
        f"  Pending       : {summary['pending_links']}",
        f"  Health score  : {summary['seo_health_score']}",
    ]
    if seo_impact:
        lines.append(f"  Critical      : {seo_impact['critical_issues']}")
        lines.append(f"  Traffic loss  : {seo_impact['estimated_traffic_loss']}%")
        for action in seo_impact.get("priority_actions", []):
            lines.append(f"    - {action}")
    return lines


def render_history(runs: List[AuditRun]) -> List[str]:
    lines = [f"  {'ID':>4}  {'WHEN (UTC)':<19}  {'TOTAL':>6}  {'BROKEN':>6}  {'FIXED':>5}  {'SCORE':>5}"]
    for run in runs:
        score = "-" if run.seo_score is None else str(run.seo_score)
        lines.append(
            f"  {run.id:>4}  {_ts(run.created_at):<19}  {run.total_links:>6}  "
            f"{run.broken_links:>6}  {run.corrected_links:>5}  {score:>5}"
        )
    return lines


def render_job(job: ScheduledJob) -> str:
    line = f"  {job.id}  [{job.job_type.value}]  {job.status.value:<9}  p={job.priority}  at={_ts(job.scheduled_at)}"
    if job.error:
        line += f"  error={job.error!r}"
    return line


def render_queue_status(status: Dict[str, Any]) -> List[str]:
    counts = status["counts"]
    lines = [
        f"  Enabled : {status['enabled']}",
        "  Counts  : " + "  ".join(f"{k}={v}" for k, v in sorted(counts.items())),
    ]
    running = status.get("running_job")
    if running:
        lines.append(f"  Running : {running['id']} ({running['type']})")
    if status["queue"]:
        lines.append("  Queue:")
        for job in status["queue"]:
            lines.append(f"    {job['id']}  [{job['type']}]  p={job['priority']}  at={_ts(job['scheduled_at'])}")
    return lines


def render_correction(c: AppliedCorrection) -> str:
    where = f"{c.file_path}:{c.source_line}" if c.source_line else c.file_path
    return f"  {c.original_url} -> {c.corrected_url}  ({where})  rollback={c.rollback_id}"
