"""Scheduler tests: queueing, dedupe, single-runner processing, expiry."""

from __future__ import annotations

import os
import socket
import sqlite3
import time
from typing import Generator, List

import pytest

from linkaudit.db import jobs as jobs_db
from linkaudit.db.connection import get_connection
from linkaudit.db.migrations import init_db
from linkaudit.db.models import JobStatus, JobType, ScheduledJob
from linkaudit.scheduler import Scheduler, SchedulerConfig
from linkaudit.scheduler.scheduler import owner_alive, process_owner


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


class RecordingRunner:
    def __init__(self, outcome: bool = True) -> None:
        self.outcome = outcome
        self.seen: List[ScheduledJob] = []

    def __call__(self, job: ScheduledJob) -> bool:
        self.seen.append(job)
        return self.outcome


@pytest.fixture()
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture()
def scheduler(conn: sqlite3.Connection, runner: RecordingRunner) -> Scheduler:
    return Scheduler(conn, runner, SchedulerConfig())


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class TestScheduling:
    def test_full_audit_defaults(self, scheduler: Scheduler) -> None:
        job = scheduler.schedule_full_audit()
        assert job.id.startswith("audit-")
        assert job.job_type is JobType.FULL_AUDIT
        assert job.status is JobStatus.PENDING
        assert job.priority == 5

    def test_quick_check_defaults(self, scheduler: Scheduler) -> None:
        job = scheduler.schedule_quick_check()
        assert job.id.startswith("quick-")
        assert job.priority == 3

    def test_duplicate_within_window_returns_existing(self, scheduler: Scheduler, conn: sqlite3.Connection) -> None:
        now = time.time()
        first = scheduler.schedule_full_audit(at=now)
        again = scheduler.schedule_full_audit(at=now + 30)
        assert again.id == first.id
        later = scheduler.schedule_full_audit(at=now + 120)
        assert later.id != first.id
        assert len(jobs_db.list_jobs(conn, JobStatus.PENDING)) == 2

    def test_different_types_not_deduplicated(self, scheduler: Scheduler) -> None:
        audit = scheduler.schedule_full_audit()
        quick = scheduler.schedule_quick_check()
        assert audit.id != quick.id

    @pytest.mark.parametrize("priority", [0, 11])
    def test_priority_range(self, scheduler: Scheduler, priority: int) -> None:
        with pytest.raises(ValueError):
            scheduler.schedule_full_audit(priority=priority)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

class TestProcessQueue:
    def test_highest_priority_first(self, scheduler: Scheduler, runner: RecordingRunner) -> None:
        now = time.time() - 5
        scheduler.schedule_quick_check(priority=2)
        urgent = scheduler.schedule_full_audit(at=now, priority=9)
        done = scheduler.process_queue()
        assert done.id == urgent.id
        assert done.status is JobStatus.COMPLETED
        assert done.started_at is not None and done.completed_at is not None
        assert [j.id for j in runner.seen] == [urgent.id]
        assert runner.seen[0].status is JobStatus.RUNNING

    def test_empty_queue(self, scheduler: Scheduler) -> None:
        assert scheduler.process_queue() is None

    def test_future_job_not_due(self, scheduler: Scheduler, runner: RecordingRunner) -> None:
        scheduler.schedule_full_audit(at=time.time() + 3600)
        assert scheduler.process_queue() is None
        assert runner.seen == []

    def test_runner_failure(self, conn: sqlite3.Connection) -> None:
        scheduler = Scheduler(conn, RecordingRunner(outcome=False))
        scheduler.schedule_full_audit()
        job = scheduler.process_queue()
        assert job.status is JobStatus.FAILED
        assert job.error == "Job runner reported failure"

    def test_runner_exception_recorded(self, conn: sqlite3.Connection) -> None:
        def explode(job: ScheduledJob) -> bool:
            raise RuntimeError("boom")

        scheduler = Scheduler(conn, explode)
        scheduler.schedule_full_audit()
        job = scheduler.process_queue()
        assert job.status is JobStatus.FAILED
        assert job.error == "RuntimeError: boom"
        assert jobs_db.get_running_job(conn) is None

    def test_disabled(self, conn: sqlite3.Connection, runner: RecordingRunner) -> None:
        scheduler = Scheduler(conn, runner, SchedulerConfig(enabled=False))
        job = scheduler.schedule_full_audit()
        assert scheduler.process_queue() is None
        assert jobs_db.get_job(conn, job.id).status is JobStatus.PENDING

    def test_reentrant_call_does_not_run_second_job(self, conn: sqlite3.Connection) -> None:
        inner: List[object] = []
        scheduler: Scheduler

        def nested(job: ScheduledJob) -> bool:
            inner.append(scheduler.process_queue())
            return True

        scheduler = Scheduler(conn, nested)
        scheduler.schedule_full_audit()
        scheduler.schedule_quick_check()
        first = scheduler.process_queue()
        assert first.status is JobStatus.COMPLETED
        assert inner == [None]
        assert jobs_db.count_by_status(conn)["pending"] == 1

    def test_running_job_in_store_blocks(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                         runner: RecordingRunner) -> None:
        jobs_db.create_job(conn, "elsewhere", JobType.FULL_AUDIT, 5, time.time())
        jobs_db.mark_running(conn, "elsewhere")
        scheduler.schedule_quick_check()
        assert scheduler.process_queue() is None
        assert runner.seen == []

    def test_expired_pending_jobs_cancelled(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                            runner: RecordingRunner) -> None:
        old = scheduler.schedule_full_audit(at=time.time() - 25 * 3600)
        assert scheduler.process_queue() is None
        expired = jobs_db.get_job(conn, old.id)
        assert expired.status is JobStatus.CANCELLED
        assert expired.error == "Job expired"
        assert runner.seen == []

    def test_stuck_running_job_failed_and_queue_resumes(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                                        runner: RecordingRunner) -> None:
        jobs_db.create_job(conn, "stuck", JobType.FULL_AUDIT, 5, time.time())
        jobs_db.mark_running(conn, "stuck")
        with conn:
            conn.execute("UPDATE scheduled_jobs SET started_at = ? WHERE id = 'stuck'", (time.time() - 31 * 60,))
        queued = scheduler.schedule_quick_check()

        done = scheduler.process_queue()
        assert done.id == queued.id
        stuck = jobs_db.get_job(conn, "stuck")
        assert stuck.status is JobStatus.FAILED
        assert stuck.error == "Timeout exceeded"

    def _start_stale(self, conn: sqlite3.Connection, job_id: str, owner: str) -> None:
        jobs_db.create_job(conn, job_id, JobType.FULL_AUDIT, 5, time.time())
        jobs_db.mark_running(conn, job_id, owner=owner)
        with conn:
            conn.execute("UPDATE scheduled_jobs SET started_at = ? WHERE id = ?", (time.time() - 31 * 60, job_id))

    def test_stale_job_of_live_process_left_running(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                                    runner: RecordingRunner) -> None:
        # The parent of the test process is alive for the whole test.
        self._start_stale(conn, "remote", f"{socket.gethostname()}:{os.getppid()}")
        scheduler.schedule_quick_check()

        assert scheduler.process_queue() is None
        assert jobs_db.get_job(conn, "remote").status is JobStatus.RUNNING
        assert runner.seen == []

    def test_stale_job_of_other_host_failed(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                            runner: RecordingRunner) -> None:
        self._start_stale(conn, "remote", "some-other-host:4242")
        queued = scheduler.schedule_quick_check()

        assert scheduler.process_queue().id == queued.id
        assert jobs_db.get_job(conn, "remote").status is JobStatus.FAILED

    def test_running_job_records_owner(self, conn: sqlite3.Connection) -> None:
        owners: List[object] = []

        def capture(job: ScheduledJob) -> bool:
            owners.append(jobs_db.get_job(conn, job.id).metadata.get("owner"))
            return True

        scheduler = Scheduler(conn, capture)
        scheduler.schedule_full_audit()
        scheduler.process_queue()
        assert owners == [process_owner()]

    def test_owner_alive(self) -> None:
        host = socket.gethostname()
        assert owner_alive(f"{host}:{os.getppid()}") is True
        assert owner_alive(f"{host}:{os.getpid()}") is False
        assert owner_alive("some-other-host:1") is False
        assert owner_alive("garbage") is False


# ---------------------------------------------------------------------------
# Cancel / config / status
# ---------------------------------------------------------------------------

class TestControl:
    def test_cancel_pending(self, scheduler: Scheduler, conn: sqlite3.Connection) -> None:
        job = scheduler.schedule_full_audit()
        assert scheduler.cancel_job(job.id) is True
        assert jobs_db.get_job(conn, job.id).status is JobStatus.CANCELLED

    def test_cancelled_job_never_promoted(self, scheduler: Scheduler, conn: sqlite3.Connection,
                                          runner: RecordingRunner) -> None:
        job = scheduler.schedule_full_audit()
        scheduler.cancel_job(job.id)

        assert scheduler.process_queue() is None
        assert scheduler.process_queue() is None
        assert runner.seen == []
        cancelled = jobs_db.get_job(conn, job.id)
        assert cancelled.status is JobStatus.CANCELLED
        assert cancelled.started_at is None

    def test_cancel_running_refused(self, scheduler: Scheduler, conn: sqlite3.Connection) -> None:
        job = scheduler.schedule_full_audit()
        jobs_db.mark_running(conn, job.id)
        assert scheduler.cancel_job(job.id) is False
        assert jobs_db.get_job(conn, job.id).status is JobStatus.RUNNING

    def test_cancel_unknown(self, scheduler: Scheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.cancel_job("nope")

    def test_update_config(self, scheduler: Scheduler) -> None:
        config = scheduler.update_config(full_audit_priority=8, enabled=False)
        assert config.full_audit_priority == 8
        assert scheduler.config.enabled is False

    def test_update_config_rejects_unknown_and_bad_priority(self, scheduler: Scheduler) -> None:
        with pytest.raises(ValueError):
            scheduler.update_config(colour="blue")
        with pytest.raises(ValueError):
            scheduler.update_config(quick_check_priority=11)
        assert scheduler.config.quick_check_priority == 3

    def test_queue_status(self, scheduler: Scheduler) -> None:
        scheduler.schedule_full_audit()
        scheduler.schedule_quick_check()
        status = scheduler.get_queue_status()
        assert status["enabled"] is True
        assert status["pending"] == 2
        assert status["running"] == 0
        assert status["running_job"] is None
        assert [j["type"] for j in status["queue"]] == ["full_audit", "quick_check"]
        assert status["config"]["dedupe_window_seconds"] == 60.0
