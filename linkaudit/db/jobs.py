"""CRUD operations for the ``scheduled_jobs`` table.

State transitions are guarded in SQL (``WHERE status = ?``) so a row can only
move along ``pending -> running -> completed|failed`` or
``pending -> cancelled``.  The partial unique index on ``status='running'``
backs the single-running-job rule at the storage level.
"""

from __future__ import annotations

import json
import sqlite3
from time import time
from typing import Any, Callable, Optional

from linkaudit.db.models import JobStatus, JobType, ScheduledJob
from linkaudit.errors import JobStateError


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _row_to_job(row: sqlite3.Row) -> ScheduledJob:
    return ScheduledJob(
        id=row["id"],
        job_type=JobType(row["job_type"]),
        priority=row["priority"],
        scheduled_at=row["scheduled_at"],
        status=JobStatus(row["status"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        error=row["error"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )


def _transition(
    conn: sqlite3.Connection,
    job_id: str,
    expected: JobStatus,
    target: JobStatus,
    **columns: Any,
) -> ScheduledJob:
    assignments = ["status = ?"]
    params: list[Any] = [target.value]
    for column, value in columns.items():
        assignments.append(f"{column} = ?")
        params.append(value)
    params.extend([job_id, expected.value])

    try:
        with conn:
            cursor = conn.execute(
                f"UPDATE scheduled_jobs SET {', '.join(assignments)} "
                "WHERE id = ? AND status = ?",
                params,
            )
    except sqlite3.IntegrityError as exc:
        raise JobStateError(f"Cannot mark job {job_id!r} {target.value}: {exc}") from exc

    if cursor.rowcount == 0:
        job = get_job(conn, job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id!r}")
        raise JobStateError(
            f"Job {job_id!r} is {job.status.value}, expected {expected.value}"
        )
    return get_job(conn, job_id)  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def create_job(
    conn: sqlite3.Connection,
    job_id: str,
    job_type: JobType,
    priority: int,
    scheduled_at: float,
    metadata: Optional[dict[str, Any]] = None,
) -> ScheduledJob:
    """Insert a new ``pending`` job and return it."""
    now = int(time())
    with conn:
        conn.execute(
            """
            INSERT INTO scheduled_jobs
                (id, job_type, priority, scheduled_at, status, metadata, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job_id,
                job_type.value,
                priority,
                scheduled_at,
                JobStatus.PENDING.value,
                json.dumps(metadata or {}),
                now,
            ),
        )
    return get_job(conn, job_id)  # type: ignore[return-value]


def get_job(conn: sqlite3.Connection, job_id: str) -> Optional[ScheduledJob]:
    """Fetch a job by id.  Returns ``None`` if not found."""
    row = conn.execute(
        "SELECT * FROM scheduled_jobs WHERE id = ?", (job_id,)
    ).fetchone()
    return _row_to_job(row) if row else None


def list_jobs(
    conn: sqlite3.Connection,
    status: Optional[JobStatus] = None,
    limit: Optional[int] = None,
) -> list[ScheduledJob]:
    """Return jobs in queue order (priority desc, scheduled_at asc)."""
    sql = "SELECT * FROM scheduled_jobs"
    params: list[Any] = []
    if status is not None:
        sql += " WHERE status = ?"
        params.append(status.value)
    sql += " ORDER BY priority DESC, scheduled_at ASC, created_at ASC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return [_row_to_job(r) for r in conn.execute(sql, params).fetchall()]


def count_by_status(conn: sqlite3.Connection) -> dict[str, int]:
    """Return ``{status: count}`` for every status, zero-filled."""
    counts = {status.value: 0 for status in JobStatus}
    for row in conn.execute(
        "SELECT status, COUNT(*) AS n FROM scheduled_jobs GROUP BY status"
    ).fetchall():
        counts[row["status"]] = row["n"]
    return counts


def get_running_job(conn: sqlite3.Connection) -> Optional[ScheduledJob]:
    row = conn.execute(
        "SELECT * FROM scheduled_jobs WHERE status = 'running' LIMIT 1"
    ).fetchone()
    return _row_to_job(row) if row else None


def next_due_job(conn: sqlite3.Connection, now: float) -> Optional[ScheduledJob]:
    """Highest-priority pending job whose ``scheduled_at`` has passed."""
    row = conn.execute(
        """
        SELECT * FROM scheduled_jobs
        WHERE  status = 'pending' AND scheduled_at <= ?
        ORDER  BY priority DESC, scheduled_at ASC, created_at ASC
        LIMIT  1
        """,
        (now,),
    ).fetchone()
    return _row_to_job(row) if row else None


def find_pending_near(
    conn: sqlite3.Connection,
    job_type: JobType,
    scheduled_at: float,
    window: float,
) -> Optional[ScheduledJob]:
    """Return a pending job of *job_type* scheduled within *window* seconds of *scheduled_at*."""
    row = conn.execute(
        """
        SELECT * FROM scheduled_jobs
        WHERE  status = 'pending' AND job_type = ?
          AND  ABS(scheduled_at - ?) < ?
        ORDER  BY scheduled_at ASC
        LIMIT  1
        """,
        (job_type.value, scheduled_at, window),
    ).fetchone()
    return _row_to_job(row) if row else None


def mark_running(conn: sqlite3.Connection, job_id: str, owner: Optional[str] = None) -> ScheduledJob:
    """``pending -> running``.

    *owner* identifies the process running the job (``host:pid``); it is
    stored under ``metadata["owner"]``.

    Raises:
        JobStateError: If the job is not pending or another job is running.
        ValueError: If the job does not exist.
    """
    columns: dict[str, Any] = {"started_at": time()}
    if owner is not None:
        job = get_job(conn, job_id)
        if job is None:
            raise ValueError(f"Job not found: {job_id!r}")
        columns["metadata"] = json.dumps({**job.metadata, "owner": owner})
    return _transition(conn, job_id, JobStatus.PENDING, JobStatus.RUNNING, **columns)


def mark_finished(
    conn: sqlite3.Connection,
    job_id: str,
    success: bool,
    error: Optional[str] = None,
) -> ScheduledJob:
    """``running -> completed`` or ``running -> failed``."""
    target = JobStatus.COMPLETED if success else JobStatus.FAILED
    return _transition(
        conn, job_id, JobStatus.RUNNING, target, completed_at=time(), error=error
    )


def mark_cancelled(conn: sqlite3.Connection, job_id: str) -> ScheduledJob:
    """``pending -> cancelled``.

    Raises:
        JobStateError: If the job is not pending.
        ValueError: If the job does not exist.
    """
    return _transition(
        conn, job_id, JobStatus.PENDING, JobStatus.CANCELLED, completed_at=time()
    )


def expire_pending(conn: sqlite3.Connection, older_than: float) -> int:
    """Cancel pending jobs whose ``scheduled_at`` is before *older_than*.

    Returns:
        Number of jobs cancelled.
    """
    with conn:
        cursor = conn.execute(
            """
            UPDATE scheduled_jobs
            SET    status = 'cancelled', completed_at = ?, error = 'Job expired'
            WHERE  status = 'pending' AND scheduled_at < ?
            """,
            (time(), older_than),
        )
    return cursor.rowcount


def fail_stale_running(
    conn: sqlite3.Connection,
    started_before: float,
    owner_alive: Optional[Callable[[str], bool]] = None,
) -> int:
    """Mark ``running`` jobs started before *started_before* as failed.

    Recovers the queue after a process died mid-run.  A job whose recorded
    owner is reported alive by *owner_alive* is left running.
    """
    rows = conn.execute(
        "SELECT id, metadata FROM scheduled_jobs WHERE status = 'running' AND started_at < ?",
        (started_before,),
    ).fetchall()
    failed = 0
    for row in rows:
        owner = json.loads(row["metadata"] or "{}").get("owner")
        if owner and owner_alive is not None and owner_alive(owner):
            continue
        with conn:
            cursor = conn.execute(
                """
                UPDATE scheduled_jobs
                SET    status = 'failed', completed_at = ?, error = 'Timeout exceeded'
                WHERE  id = ? AND status = 'running'
                """,
                (time(), row["id"]),
            )
        failed += cursor.rowcount
    return failed
