"""Audit history and health-metric snapshots.

``audit_history`` rows are immutable once written: there is deliberately no
update helper in this module.
"""

from __future__ import annotations

import sqlite3
from time import time
from typing import Optional

from linkaudit.db.models import AuditRun, HealthMetric


def _row_to_run(row: sqlite3.Row) -> AuditRun:
    return AuditRun(
        id=row["id"],
        total_links=row["total_links"] or 0,
        broken_links=row["broken_links"] or 0,
        corrected_links=row["corrected_links"] or 0,
        seo_score=row["seo_score"],
        report_path=row["report_path"],
        execution_time=row["execution_time"] or 0.0,
        created_at=row["created_at"],
    )


def record_audit(
    conn: sqlite3.Connection,
    total_links: int,
    broken_links: int,
    corrected_links: int,
    execution_time: float,
    seo_score: Optional[int] = None,
    report_path: Optional[str] = None,
) -> AuditRun:
    """Append one audit history record.

    Raises:
        ValueError: If ``broken_links > total_links`` or the score is outside
            ``[0, 100]``.
    """
    if broken_links > total_links:
        raise ValueError(f"broken_links ({broken_links}) > total_links ({total_links})")
    if seo_score is not None and not 0 <= seo_score <= 100:
        raise ValueError(f"seo_score out of range: {seo_score}")

    now = int(time())
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO audit_history
                (total_links, broken_links, corrected_links, seo_score, report_path,
                 execution_time, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (total_links, broken_links, corrected_links, seo_score, report_path,
             execution_time, now),
        )
    return get_audit(conn, cursor.lastrowid)  # type: ignore[return-value]


def get_audit(conn: sqlite3.Connection, audit_id: int) -> Optional[AuditRun]:
    row = conn.execute(
        "SELECT * FROM audit_history WHERE id = ?", (audit_id,)
    ).fetchone()
    return _row_to_run(row) if row else None


def recent_audits(conn: sqlite3.Connection, limit: int = 5) -> list[AuditRun]:
    """Return the *limit* most recent audits, newest first."""
    rows = conn.execute(
        "SELECT * FROM audit_history ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [_row_to_run(r) for r in rows]


def audits_since(conn: sqlite3.Connection, since: int) -> list[AuditRun]:
    """Return audits created at or after the Unix timestamp *since*, oldest first."""
    rows = conn.execute(
        "SELECT * FROM audit_history WHERE created_at >= ? ORDER BY created_at ASC, id ASC",
        (since,),
    ).fetchall()
    return [_row_to_run(r) for r in rows]


# ---------------------------------------------------------------------------
# link_health_metrics
# ---------------------------------------------------------------------------

def record_health_metric(
    conn: sqlite3.Connection,
    date: str,
    total_links: int,
    broken_links: int,
    health_score: int,
    response_time_avg: Optional[float],
) -> HealthMetric:
    """Append a daily health snapshot."""
    now = int(time())
    with conn:
        cursor = conn.execute(
            """
            INSERT INTO link_health_metrics
                (date, total_links, broken_links, health_score, response_time_avg, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (date, total_links, broken_links, health_score, response_time_avg, now),
        )
    return HealthMetric(
        id=cursor.lastrowid,
        date=date,
        total_links=total_links,
        broken_links=broken_links,
        health_score=health_score,
        response_time_avg=response_time_avg,
        created_at=now,
    )


def list_health_metrics(conn: sqlite3.Connection, limit: int = 30) -> list[HealthMetric]:
    rows = conn.execute(
        "SELECT * FROM link_health_metrics ORDER BY created_at DESC, id DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [
        HealthMetric(
            id=r["id"],
            date=r["date"],
            total_links=r["total_links"] or 0,
            broken_links=r["broken_links"] or 0,
            health_score=r["health_score"] or 0,
            response_time_avg=r["response_time_avg"],
            created_at=r["created_at"],
        )
        for r in rows
    ]
