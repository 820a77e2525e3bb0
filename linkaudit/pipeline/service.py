"""AuditService: one object wiring every component to a connection and config.

Built once at process start (CLI command, API lifespan) and passed down;
components never reach for module-level state.

Pipeline order for a full audit::

    scan -> persist links -> validate -> persist results
         -> auto-correct broken subset -> report -> history + health metric
         -> alerts
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from linkaudit.alerts import AlertConfig, AlertManager, AlertOutcome, Notifier, notifier_from_settings
from linkaudit.config import Settings
from linkaudit.corrector import Corrector, CorrectorConfig
from linkaudit.db import history as history_db
from linkaudit.db import links as links_db
from linkaudit.db import resource_requests as requests_db
from linkaudit.db import validations as validations_db
from linkaudit.db.models import (
    AppliedCorrection,
    JobType,
    LinkStatus,
    ResourceRequest,
    ScannedLink,
    ScheduledJob,
    ValidationResult,
)
from linkaudit.errors import CorrectionError, LowConfidenceError, RateLimitError
from linkaudit.report import AuditReport, ReportConfig, ReportGenerator
from linkaudit.scanner import Scanner, ScannerConfig
from linkaudit.scheduler import Scheduler, SchedulerConfig
from linkaudit.validator import LocalFileValidator, Validator, ValidatorConfig

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    success: bool
    execution_time: float
    run_id: Optional[int] = None
    report: Optional[AuditReport] = None
    corrections: List[AppliedCorrection] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None
    alerts: Optional[AlertOutcome] = None

    @property
    def summary(self):
        return self.report.summary if self.report else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "run_id": self.run_id,
            "execution_time": round(self.execution_time, 3),
            "summary": None,
            "seo_impact": None,
            "corrections": [
                {
                    "original_url": c.original_url,
                    "corrected_url": c.corrected_url,
                    "file_path": c.file_path,
                    "rollback_id": c.rollback_id,
                }
                for c in self.corrections
            ],
            "errors": self.errors,
        }
        if self.report is not None:
            report = self.report.to_dict()
            data["summary"] = report["summary"]
            data["seo_impact"] = report["seo_impact"]
        if self.message:
            data["message"] = self.message
        return data


def _utc_day_start(now: float) -> int:
    day = datetime.fromtimestamp(now, tz=timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(day.timestamp())


class AuditService:
    def __init__(
        self,
        conn: sqlite3.Connection,
        settings: Settings,
        notifier: Optional[Notifier] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.conn = conn
        self.settings = settings
        self.scanner = Scanner(
            ScannerConfig.from_settings(settings),
            settings.content_root,
            settings.resolved_sitemap_path,
        )
        local = LocalFileValidator(settings.content_root, settings.base_url) if settings.local_validation else None
        self.validator = Validator(ValidatorConfig.from_settings(settings), client=http_client, local=local)
        self.corrector = Corrector(
            CorrectorConfig.from_settings(settings),
            content_root=settings.content_root,
            backup_dir=settings.backup_dir,
            conn=conn,
        )
        self.reporter = ReportGenerator(ReportConfig.from_settings(settings))
        self.alerts = AlertManager(
            conn,
            notifier or notifier_from_settings(settings),
            AlertConfig.from_settings(settings),
        )
        self.scheduler = Scheduler(conn, self.run_job, SchedulerConfig.from_settings(settings))
        self._pipeline_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Full audit
    # ------------------------------------------------------------------

    def run_full_audit(self, auto_correct: bool = True, write_report: bool = True) -> PipelineResult:
        """Run the whole pipeline synchronously.

        Always returns a :class:`PipelineResult`; an unexpected failure yields
        ``success=False`` with ``message`` and the time elapsed so far.
        """
        started = time.monotonic()
        if not self._pipeline_lock.acquire(blocking=False):
            return PipelineResult(
                success=False,
                execution_time=0.0,
                message="An audit is already running",
            )
        errors: List[str] = []
        try:
            return self._run_full_audit(started, errors, auto_correct, write_report)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[PIPELINE] Audit failed")
            return PipelineResult(
                success=False,
                execution_time=time.monotonic() - started,
                errors=errors,
                message=f"Audit failed: {exc}",
            )
        finally:
            self._pipeline_lock.release()

    def _run_full_audit(
        self,
        started: float,
        errors: List[str],
        auto_correct: bool,
        write_report: bool,
    ) -> PipelineResult:
        logger.info("[PIPELINE] Full audit started")
        scan = self.scanner.scan()
        errors.extend(scan.errors)
        links_db.insert_links(self.conn, scan.links)

        results = self.validator.validate_links(scan.links)
        validations_db.insert_results(self.conn, results)

        corrections: List[AppliedCorrection] = []
        if auto_correct:
            self.corrector.add_known_good(scan.sitemap_pages)
            skip_files = set(scan.sitemap_files)
            candidates = [link for link in scan.links if link.source_file not in skip_files]
            corrections = self.auto_correct(candidates, results, errors)

        report = self.reporter.generate(results, scan.links, corrections)

        report_path: Optional[str] = None
        if write_report:
            target = self.settings.report_dir / f"audit-{int(time.time() * 1000)}.json"
            try:
                report_path = str(report.write_report(target))
            except OSError as exc:
                logger.warning("[PIPELINE] Could not write report: %s", exc)
                errors.append(f"Could not write report: {exc}")

        execution_time = time.monotonic() - started
        summary = report.summary
        run = history_db.record_audit(
            self.conn,
            total_links=summary.total_links,
            broken_links=summary.broken_links,
            corrected_links=summary.corrected_links,
            execution_time=execution_time,
            seo_score=summary.seo_health_score,
            report_path=report_path,
        )
        history_db.record_health_metric(
            self.conn,
            date=datetime.now(timezone.utc).date().isoformat(),
            total_links=summary.total_links,
            broken_links=summary.broken_links,
            health_score=summary.seo_health_score,
            response_time_avg=report.average_response_time_ms,
        )

        outcome = self.alerts.evaluate(report.seo_impact.critical_issues)
        if outcome.error:
            errors.append(f"Alert delivery failed: {outcome.error}")

        logger.info(
            "[PIPELINE] Audit %s done in %.1fs: %d links, %d broken, %d corrected",
            run.id, execution_time, summary.total_links, summary.broken_links, summary.corrected_links,
        )
        return PipelineResult(
            success=True,
            execution_time=execution_time,
            run_id=run.id,
            report=report,
            corrections=corrections,
            errors=errors,
            alerts=outcome,
        )

    def auto_correct(
        self,
        links: List[ScannedLink],
        results: List[ValidationResult],
        errors: List[str],
    ) -> List[AppliedCorrection]:
        """Apply top candidates at or above the auto-apply confidence.

        Highest-priority links are corrected first, up to
        ``max_auto_corrections`` per run.  Per-link failures go to *errors*.
        """
        config = self.corrector.config
        by_url = {r.url: r for r in results}
        self.corrector.add_known_good(r.url for r in results if r.status is LinkStatus.VALID)

        broken = [link for link in links if link.url in by_url and by_url[link.url].status is LinkStatus.BROKEN]
        broken.sort(key=lambda link: link.priority.rank, reverse=True)

        applied: List[AppliedCorrection] = []
        for link in broken:
            if len(applied) >= config.max_auto_corrections:
                logger.info("[CORRECT] Auto-correction limit (%d) reached", config.max_auto_corrections)
                break
            suggestion = self.corrector.suggest(link, by_url[link.url])
            if suggestion is None or suggestion.confidence < config.auto_apply_confidence:
                continue
            try:
                applied.append(self.corrector.apply_correction(link, suggestion))
            except CorrectionError as exc:
                logger.warning("[CORRECT] Not applied: %s", exc)
                errors.append(f"Correction not applied for {link.url} in {link.source_file}: {exc}")
        return applied

    # ------------------------------------------------------------------
    # Quick check
    # ------------------------------------------------------------------

    def run_quick_check(self) -> PipelineResult:
        """Re-validate the most recently broken URLs."""
        started = time.monotonic()
        try:
            urls = validations_db.latest_broken_urls(self.conn, self.settings.quick_check_limit)
            self.validator.clear_cache()
            results = self.validator.validate_batch(urls)
            validations_db.insert_results(self.conn, results)
        except Exception as exc:  # noqa: BLE001
            logger.exception("[PIPELINE] Quick check failed")
            return PipelineResult(
                success=False,
                execution_time=time.monotonic() - started,
                message=f"Quick check failed: {exc}",
            )

        recovered = sum(1 for r in results if r.status is not LinkStatus.BROKEN)
        report = self.reporter.generate(results)
        logger.info("[PIPELINE] Quick check: %d re-checked, %d no longer broken", len(results), recovered)
        return PipelineResult(
            success=True,
            execution_time=time.monotonic() - started,
            report=report,
            message=f"{len(results)} links re-checked, {recovered} no longer broken",
        )

    # ------------------------------------------------------------------
    # Scheduler hook
    # ------------------------------------------------------------------

    def run_job(self, job: ScheduledJob) -> bool:
        if job.job_type is JobType.FULL_AUDIT:
            return self.run_full_audit().success
        if job.job_type is JobType.QUICK_CHECK:
            return self.run_quick_check().success
        raise ValueError(f"Unhandled job type: {job.job_type!r}")

    # ------------------------------------------------------------------
    # Manual fix
    # ------------------------------------------------------------------

    def fix_link(self, validation_id: int) -> List[AppliedCorrection]:
        """Fix every occurrence (from the latest scan) of a broken URL.

        Raises:
            ValueError: Unknown validation id or no scanned link for its URL.
            CorrectionError: The result is not broken, or no occurrence could
                be rewritten.
            LowConfidenceError: The best candidate is below the manual floor.
        """
        result = validations_db.get_result(self.conn, validation_id)
        if result is None:
            raise ValueError(f"Validation result not found: {validation_id}")
        if result.status is not LinkStatus.BROKEN:
            raise CorrectionError(f"{result.url} is {result.status.value}, not broken")

        occurrences = links_db.find_links_by_url(self.conn, result.url)
        if not occurrences:
            raise ValueError(f"No scanned link found for {result.url}")
        latest = occurrences[0].created_at
        targets: Dict[tuple, ScannedLink] = {}
        for link in occurrences:
            if link.created_at == latest:
                targets.setdefault(link.key, link)

        self.corrector.add_known_good(self.scanner.sitemap_pages())
        self.corrector.add_known_good(
            r.url for r in validations_db.list_results(self.conn, LinkStatus.VALID, limit=5000)
        )

        floor = self.corrector.config.manual_fix_confidence
        first = next(iter(targets.values()))
        suggestion = self.corrector.suggest(first, result)
        if suggestion is None or suggestion.confidence < floor:
            raise LowConfidenceError(result.url, suggestion.confidence if suggestion else None, floor)

        applied: List[AppliedCorrection] = []
        last_error: Optional[CorrectionError] = None
        for link in targets.values():
            try:
                applied.append(self.corrector.apply_correction(link, suggestion))
            except CorrectionError as exc:
                logger.warning("[CORRECT] %s", exc)
                last_error = exc
        if not applied and last_error is not None:
            raise last_error
        return applied

    # ------------------------------------------------------------------
    # Resource requests
    # ------------------------------------------------------------------

    def submit_resource_request(
        self,
        user_email: str,
        requested_url: str,
        source_url: str,
        message: Optional[str] = None,
    ) -> ResourceRequest:
        """Record a request for a missing resource and notify the admin.

        Raises:
            RateLimitError: The user reached the daily quota.
            ValueError: Empty email or URL.
        """
        limit = self.settings.resource_requests_per_day
        today = requests_db.count_since(self.conn, user_email, _utc_day_start(time.time()))
        if today >= limit:
            raise RateLimitError(f"{user_email} already made {today} requests today (limit {limit})")

        request = requests_db.create_request(self.conn, user_email, requested_url, source_url, message)
        body = "\n".join([
            f"From: {request.user_email}",
            f"Requested: {request.requested_url}",
            f"Linked from: {request.source_url}",
            f"Message: {request.message or '-'}",
        ])
        outcome = self.alerts.notify(f"[LinkAudit] Resource request: {request.requested_url}", body)
        if outcome.error:
            logger.warning("[PIPELINE] Resource request %d saved; notification failed", request.id)
        return request

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def send_weekly_summary(self) -> AlertOutcome:
        return self.alerts.send_weekly_summary()

    def cleanup_backups(self, days: Optional[int] = None) -> int:
        return self.corrector.cleanup_old_backups(days)
