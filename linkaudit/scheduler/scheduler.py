"""Durable, priority-ordered audit job queue with a single-runner guarantee.

Jobs live in the ``scheduled_jobs`` table.  :meth:`Scheduler.process_queue`
is the only code path that moves a job to ``running``; it holds a
non-blocking :class:`threading.Lock` for the whole promote/run/finish cycle,
and the store's unique partial index rejects a second ``running`` row even if
two processes share the database.

A ``running`` row records its owner as ``host:pid``.  Past the run timeout
the row is failed unless its owner is a live process on this host; owners on
other hosts cannot be checked and are always failed after the timeout.
"""

from __future__ import annotations

import logging
import os
import secrets
import socket
import sqlite3
import threading
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, Callable, Dict, Optional

from linkaudit.config import Settings
from linkaudit.db import jobs as jobs_db
from linkaudit.db.models import JobStatus, JobType, ScheduledJob
from linkaudit.errors import JobStateError

logger = logging.getLogger(__name__)

# Runs one job to completion; returns True on success.
JobRunner = Callable[[ScheduledJob], bool]

MIN_PRIORITY = 1
MAX_PRIORITY = 10


@dataclass
class SchedulerConfig:
    enabled: bool = True
    job_max_age_hours: float = 24.0
    run_timeout_minutes: float = 30.0
    dedupe_window_seconds: float = 60.0
    full_audit_priority: int = 5
    quick_check_priority: int = 3

    @classmethod
    def from_settings(cls, settings: Settings) -> "SchedulerConfig":
        return cls(
            enabled=settings.scheduler_enabled,
            job_max_age_hours=settings.job_max_age_hours,
        )


def _new_job_id(job_type: JobType) -> str:
    prefix = "audit" if job_type is JobType.FULL_AUDIT else "quick"
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def process_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def owner_alive(owner: str) -> bool:
    """Whether *owner* (``host:pid``) is a process still running on this host.

    The current process counts as dead: stale checks only run while it holds
    the queue lock, so none of its own runs can be in progress.
    """
    host, _, pid_text = owner.rpartition(":")
    if host != socket.gethostname() or not pid_text.isdigit():
        return False
    pid = int(pid_text)
    if pid == os.getpid():
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _check_priority(priority: int) -> int:
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValueError(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}")
    return priority


class Scheduler:
    def __init__(
        self,
        conn: sqlite3.Connection,
        runner: JobRunner,
        config: Optional[SchedulerConfig] = None,
    ) -> None:
        self.conn = conn
        self.runner = runner
        self.config = config or SchedulerConfig()
        self._lock = threading.Lock()
        self.owner = process_owner()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _schedule(self, job_type: JobType, priority: int, at: Optional[float]) -> ScheduledJob:
        _check_priority(priority)
        scheduled_at = at if at is not None else time.time()
        existing = jobs_db.find_pending_near(
            self.conn, job_type, scheduled_at, self.config.dedupe_window_seconds
        )
        if existing is not None:
            logger.info("[SCHEDULER] %s already queued as %s", job_type.value, existing.id)
            return existing

        job = jobs_db.create_job(
            self.conn,
            _new_job_id(job_type),
            job_type,
            priority,
            scheduled_at,
        )
        logger.info("[SCHEDULER] Queued %s (priority %d)", job.id, priority)
        return job

    def schedule_full_audit(self, at: Optional[float] = None, priority: Optional[int] = None) -> ScheduledJob:
        """Queue a full audit to run at Unix time *at* (default: now)."""
        if priority is None:
            priority = self.config.full_audit_priority
        return self._schedule(JobType.FULL_AUDIT, priority, at)

    def schedule_quick_check(self, priority: Optional[int] = None) -> ScheduledJob:
        if priority is None:
            priority = self.config.quick_check_priority
        return self._schedule(JobType.QUICK_CHECK, priority, None)

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending job.  Returns ``False`` for any other state.

        Raises:
            ValueError: If the job does not exist.
        """
        try:
            jobs_db.mark_cancelled(self.conn, job_id)
        except JobStateError as exc:
            logger.info("[SCHEDULER] Not cancelled: %s", exc)
            return False
        logger.info("[SCHEDULER] Cancelled %s", job_id)
        return True

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def expire_stale_jobs(self) -> int:
        now = time.time()
        expired = jobs_db.expire_pending(self.conn, now - self.config.job_max_age_hours * 3600)
        if expired:
            logger.info("[SCHEDULER] Expired %d stale pending jobs", expired)
        stuck = jobs_db.fail_stale_running(
            self.conn, now - self.config.run_timeout_minutes * 60, owner_alive
        )
        if stuck:
            logger.warning("[SCHEDULER] Failed %d jobs stuck in running", stuck)
        return expired

    def process_queue(self) -> Optional[ScheduledJob]:
        """Run the next due job, if any, and return it in its final state.

        Returns ``None`` when disabled, when another run holds the lock or a
        job is already ``running`` in the store, or when nothing is due.
        Runner exceptions mark the job ``failed`` and are not re-raised.
        """
        if not self.config.enabled:
            logger.debug("[SCHEDULER] Disabled; queue not processed")
            return None
        if not self._lock.acquire(blocking=False):
            logger.info("[SCHEDULER] Queue already being processed")
            return None
        try:
            self.expire_stale_jobs()
            running = jobs_db.get_running_job(self.conn)
            if running is not None:
                logger.info("[SCHEDULER] %s is still running", running.id)
                return None

            job = jobs_db.next_due_job(self.conn, time.time())
            if job is None:
                return None

            try:
                job = jobs_db.mark_running(self.conn, job.id, owner=self.owner)
            except JobStateError as exc:
                logger.warning("[SCHEDULER] Could not start %s: %s", job.id, exc)
                return None

            logger.info("[SCHEDULER] Running %s (%s)", job.id, job.job_type.value)
            try:
                success = bool(self.runner(job))
                error = None if success else "Job runner reported failure"
            except Exception as exc:  # noqa: BLE001
                logger.exception("[SCHEDULER] %s raised", job.id)
                success, error = False, f"{type(exc).__name__}: {exc}"

            try:
                job = jobs_db.mark_finished(self.conn, job.id, success, error)
            except JobStateError as exc:
                logger.error("[SCHEDULER] Could not record outcome of %s: %s", job.id, exc)
                return jobs_db.get_job(self.conn, job.id)
            logger.info("[SCHEDULER] %s %s", job.id, job.status.value)
            return job
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Config / status
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> SchedulerConfig:
        """Update config fields in place.

        Raises:
            ValueError: Unknown field or out-of-range priority.
        """
        known = {f.name for f in fields(SchedulerConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown scheduler config field(s): {', '.join(sorted(unknown))}")
        for key in ("full_audit_priority", "quick_check_priority"):
            if changes.get(key) is not None:
                _check_priority(changes[key])
        for key, value in changes.items():
            if value is not None:
                setattr(self.config, key, value)
        logger.info("[SCHEDULER] Config updated: %s", changes)
        return self.config

    def get_queue_status(self) -> Dict[str, Any]:
        counts = jobs_db.count_by_status(self.conn)
        running = jobs_db.get_running_job(self.conn)
        return {
            "enabled": self.config.enabled,
            "pending": counts[JobStatus.PENDING.value],
            "running": counts[JobStatus.RUNNING.value],
            "counts": counts,
            "queue": [j.to_dict() for j in jobs_db.list_jobs(self.conn, JobStatus.PENDING)],
            "running_job": running.to_dict() if running else None,
            "config": asdict(self.config),
        }
