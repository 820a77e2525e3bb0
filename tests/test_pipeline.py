"""AuditService tests: full audit, quick check, manual fix, resource requests.

HTTP is mocked with ``respx``; the database is in-memory and the content
tree lives under ``tmp_path``.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import httpx
import pytest
import respx

from linkaudit.alerts import LogNotifier
from linkaudit.config import Settings
from linkaudit.db import history as history_db
from linkaudit.db import links as links_db
from linkaudit.db import validations as validations_db
from linkaudit.db.connection import get_connection
from linkaudit.db.migrations import init_db
from linkaudit.db.models import (
    JobStatus,
    LinkStatus,
    LinkType,
    Priority,
    ScannedLink,
    ValidationResult,
)
from linkaudit.errors import CorrectionError, LowConfidenceError, RateLimitError
from linkaudit.pipeline import AuditService

BASE = "https://example.com"

PAGE = (
    "<nav>\n"
    '  <a href="/about">About</a>\n'
    '  <a href="/abot">Typo</a>\n'
    '  <a href="/retired-page">Old</a>\n'
    "</nav>\n"
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    connection = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(connection)
    yield connection
    connection.close()


@pytest.fixture()
def site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    (root / "pages").mkdir(parents=True)
    (root / "pages" / "index.html").write_text(PAGE, encoding="utf-8")
    return root


@pytest.fixture()
def settings(tmp_path: Path, site: Path) -> Settings:
    return Settings(
        workspace_dir=tmp_path / "workspace",
        content_root=site,
        sitemap_path="sitemap.xml",
        base_url=BASE,
        scan_include_external=False,
        retry_attempts=0,
        retry_backoff=0.0,
        rate_limit_delay=0.0,
        smtp_host="",
        resource_requests_per_day=3,
    )


@pytest.fixture()
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture()
def service(conn: sqlite3.Connection, settings: Settings, notifier: LogNotifier) -> AuditService:
    return AuditService(conn, settings, notifier=notifier)


@pytest.fixture()
def http():
    with respx.mock(assert_all_called=False) as router:
        router.head(f"{BASE}/about").mock(return_value=httpx.Response(200))
        router.head(f"{BASE}/abot").mock(return_value=httpx.Response(404))
        router.head(f"{BASE}/retired-page").mock(return_value=httpx.Response(404))
        yield router


def _result(url: str, status: LinkStatus, code: int = 404) -> ValidationResult:
    return ValidationResult(url=url, status=status, status_code=code,
                            response_time_ms=10, checked_at=int(time.time()))


def _store_link(conn: sqlite3.Connection, url: str, line: int) -> None:
    links_db.insert_links(conn, [
        ScannedLink(url=url, source_file="pages/index.html", source_line=line,
                    link_type=LinkType.INTERNAL, priority=Priority.HIGH),
    ])


# ---------------------------------------------------------------------------
# Full audit
# ---------------------------------------------------------------------------

class TestFullAudit:
    def test_end_to_end(self, service: AuditService, conn: sqlite3.Connection,
                        site: Path, notifier: LogNotifier, http) -> None:
        result = service.run_full_audit()

        assert result.success is True
        assert result.run_id is not None
        summary = result.summary
        assert summary.total_links == 3
        assert summary.broken_links == 2
        assert summary.corrected_links == 1

        [correction] = result.corrections
        assert correction.original_url == "/abot"
        assert correction.corrected_url == "/about"
        text = (site / "pages" / "index.html").read_text(encoding="utf-8")
        assert 'href="/abot"' not in text
        assert 'href="/retired-page"' in text

        run = history_db.get_audit(conn, result.run_id)
        assert run.report_path is not None and Path(run.report_path).is_file()
        assert len(history_db.list_health_metrics(conn)) == 1
        assert len(validations_db.list_results(conn)) == 3

        # Score 33 is below the alert threshold.
        assert notifier.sent and "low_health_score" in notifier.sent[0][1]
        # The missing sitemap is reported but does not fail the run.
        assert any("Sitemap not found" in e for e in result.errors)

    def test_without_correction_or_report(self, service: AuditService, conn: sqlite3.Connection,
                                          site: Path, http) -> None:
        result = service.run_full_audit(auto_correct=False, write_report=False)
        assert result.success is True
        assert result.corrections == []
        assert 'href="/abot"' in (site / "pages" / "index.html").read_text(encoding="utf-8")
        assert history_db.get_audit(conn, result.run_id).report_path is None

    def test_to_dict(self, service: AuditService, http) -> None:
        data = service.run_full_audit(write_report=False).to_dict()
        assert data["success"] is True
        assert data["summary"]["broken_links"] == 2
        assert data["corrections"][0]["corrected_url"] == "/about"

    def test_concurrent_run_rejected(self, service: AuditService) -> None:
        service._pipeline_lock.acquire()
        try:
            result = service.run_full_audit()
        finally:
            service._pipeline_lock.release()
        assert result.success is False
        assert result.message == "An audit is already running"

    def test_failure_returns_result_and_releases_lock(self, service: AuditService) -> None:
        with patch.object(service.scanner, "scan", side_effect=RuntimeError("disk gone")):
            result = service.run_full_audit()
        assert result.success is False
        assert result.message == "Audit failed: disk gone"
        assert service._pipeline_lock.locked() is False

    def test_mid_confidence_candidate_not_applied(self, service: AuditService, site: Path, http) -> None:
        team = site / "pages" / "team.html"
        team.write_text('<a href="/axxut">Team</a>\n', encoding="utf-8")
        http.head(f"{BASE}/axxut").mock(return_value=httpx.Response(404))

        result = service.run_full_audit(write_report=False)

        assert [c.original_url for c in result.corrections] == ["/abot"]
        assert team.read_text(encoding="utf-8") == '<a href="/axxut">Team</a>\n'
        suggestion = service.corrector.suggest(
            ScannedLink(url="/axxut", source_file="pages/team.html", source_line=1,
                        link_type=LinkType.INTERNAL, priority=Priority.HIGH)
        )
        assert suggestion.suggested_url == "/about"
        assert 0.7 <= suggestion.confidence < 0.8

    def test_correction_limit(self, service: AuditService, http) -> None:
        service.corrector.config.max_auto_corrections = 0
        result = service.run_full_audit(write_report=False)
        assert result.corrections == []


# ---------------------------------------------------------------------------
# Quick check / scheduler hook
# ---------------------------------------------------------------------------

class TestQuickCheck:
    def test_rechecks_latest_broken(self, service: AuditService, conn: sqlite3.Connection) -> None:
        validations_db.insert_results(conn, [_result("/retired-page", LinkStatus.BROKEN)])
        with respx.mock:
            route = respx.head(f"{BASE}/retired-page").mock(return_value=httpx.Response(200))
            result = service.run_quick_check()
        assert result.success is True
        assert route.call_count == 1
        assert result.message == "1 links re-checked, 1 no longer broken"
        assert validations_db.latest_broken_urls(conn, 10) == []

    def test_nothing_to_check(self, service: AuditService) -> None:
        result = service.run_quick_check()
        assert result.success is True
        assert result.message == "0 links re-checked, 0 no longer broken"

    def test_scheduled_job_runs_through_service(self, service: AuditService) -> None:
        job = service.scheduler.schedule_quick_check()
        done = service.scheduler.process_queue()
        assert done.id == job.id
        assert done.status is JobStatus.COMPLETED


# ---------------------------------------------------------------------------
# Manual fix
# ---------------------------------------------------------------------------

class TestFixLink:
    def test_unknown_validation(self, service: AuditService) -> None:
        with pytest.raises(ValueError):
            service.fix_link(999)

    def test_not_broken(self, service: AuditService, conn: sqlite3.Connection) -> None:
        [stored] = validations_db.insert_results(conn, [_result("/about", LinkStatus.VALID, 200)])
        with pytest.raises(CorrectionError):
            service.fix_link(stored.id)

    def test_no_scanned_link(self, service: AuditService, conn: sqlite3.Connection) -> None:
        [stored] = validations_db.insert_results(conn, [_result("/nowhere", LinkStatus.BROKEN)])
        with pytest.raises(ValueError):
            service.fix_link(stored.id)

    def test_low_confidence(self, service: AuditService, conn: sqlite3.Connection, site: Path) -> None:
        _store_link(conn, "/retired-page", 4)
        [stored] = validations_db.insert_results(conn, [_result("/retired-page", LinkStatus.BROKEN)])
        before = (site / "pages" / "index.html").read_bytes()
        with pytest.raises(LowConfidenceError):
            service.fix_link(stored.id)
        assert (site / "pages" / "index.html").read_bytes() == before

    def test_fix_applies_correction(self, service: AuditService, conn: sqlite3.Connection, site: Path) -> None:
        _store_link(conn, "/abot", 3)
        validations_db.insert_results(conn, [_result("/about", LinkStatus.VALID, 200)])
        [stored] = validations_db.insert_results(conn, [_result("/abot", LinkStatus.BROKEN)])

        [correction] = service.fix_link(stored.id)

        assert correction.corrected_url == "/about"
        assert correction.source_line == 3
        assert '<a href="/about">Typo</a>' in (site / "pages" / "index.html").read_text(encoding="utf-8")


# ---------------------------------------------------------------------------
# Resource requests
# ---------------------------------------------------------------------------

class TestResourceRequests:
    def test_request_notifies_admin(self, service: AuditService, notifier: LogNotifier) -> None:
        request = service.submit_resource_request("Reader@Example.com", "/guide.pdf", "/blog/post", "Link is dead")
        assert request.id is not None
        assert request.user_email == "reader@example.com"
        recipient, subject, body = notifier.sent[-1]
        assert subject == "[LinkAudit] Resource request: /guide.pdf"
        assert "Message: Link is dead" in body

    def test_daily_quota(self, service: AuditService) -> None:
        for i in range(3):
            service.submit_resource_request("reader@example.com", f"/file-{i}.pdf", "/blog")
        with pytest.raises(RateLimitError):
            service.submit_resource_request("reader@example.com", "/file-9.pdf", "/blog")
        # Other users have their own quota.
        service.submit_resource_request("other@example.com", "/file-9.pdf", "/blog")

    def test_empty_email_rejected(self, service: AuditService) -> None:
        with pytest.raises(ValueError):
            service.submit_resource_request("  ", "/guide.pdf", "/blog")
