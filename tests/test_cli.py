"""Tests for the CLI command groups.

Each test points ``linkaudit.config.settings`` at a fresh workspace and
content tree under ``tmp_path``; commands open their own connection to the
workspace database.
"""

from __future__ import annotations

import time

import httpx
import pytest
import respx
from typer.testing import CliRunner

from cli.main import app
from linkaudit.db import get_connection, init_db
from linkaudit.db import corrections as corrections_db
from linkaudit.db import jobs as jobs_db
from linkaudit.db import links as links_db
from linkaudit.db import validations as validations_db
from linkaudit.db.models import JobStatus, LinkStatus, LinkType, Priority, ScannedLink, ValidationResult

runner = CliRunner()

BASE = "https://example.com"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Isolated workspace DB and content root for each test."""
    site = tmp_path / "site"
    (site / "pages").mkdir(parents=True)
    (site / "pages" / "index.html").write_text(
        '<a href="/about">About</a>\n<a href="/abot">Typo</a>\n<a href="/retired-page">Old</a>\n',
        encoding="utf-8",
    )
    monkeypatch.setattr("linkaudit.config.settings.workspace_dir", tmp_path / "workspace")
    monkeypatch.setattr("linkaudit.config.settings.content_root", site)
    monkeypatch.setattr("linkaudit.config.settings.base_url", BASE)
    monkeypatch.setattr("linkaudit.config.settings.retry_attempts", 0)
    monkeypatch.setattr("linkaudit.config.settings.rate_limit_delay", 0.0)
    monkeypatch.setattr("linkaudit.config.settings.smtp_host", "")
    return site


@pytest.fixture
def http():
    with respx.mock(assert_all_called=False) as router:
        router.head(f"{BASE}/about").mock(return_value=httpx.Response(200))
        router.head(f"{BASE}/abot").mock(return_value=httpx.Response(404))
        router.head(f"{BASE}/retired-page").mock(return_value=httpx.Response(404))
        yield router


def _seed_broken(url: str, line: int, with_valid_about: bool = True) -> int:
    conn = get_connection()
    init_db(conn)
    links_db.insert_links(conn, [
        ScannedLink(url=url, source_file="pages/index.html", source_line=line,
                    link_type=LinkType.INTERNAL, priority=Priority.HIGH),
    ])
    now = int(time.time())
    results = []
    if with_valid_about:
        results.append(ValidationResult("/about", LinkStatus.VALID, 5, now, status_code=200))
    results.append(ValidationResult(url, LinkStatus.BROKEN, 5, now, status_code=404))
    stored = validations_db.insert_results(conn, results)
    conn.close()
    return stored[-1].id


# ---------------------------------------------------------------------------
# db / audit
# ---------------------------------------------------------------------------

class TestAuditCommands:
    def test_db_init(self, workspace, tmp_path):
        result = runner.invoke(app, ["db", "init"])
        assert result.exit_code == 0
        assert "[db init] Database ready at" in result.output
        assert (tmp_path / "workspace" / "audit.db").exists()

    def test_history_empty(self, workspace):
        result = runner.invoke(app, ["audit", "history"])
        assert result.exit_code == 0
        assert "No audits recorded." in result.output

    def test_scan(self, workspace):
        result = runner.invoke(app, ["audit", "scan", "--save"])
        assert result.exit_code == 0
        assert "[audit scan] 3 links in 1 files" in result.output
        assert "Links saved." in result.output

    def test_run_then_history_and_report(self, workspace, http):
        result = runner.invoke(app, ["audit", "run"])
        assert result.exit_code == 0, result.output
        assert "[audit run] Completed in" in result.output
        assert "Broken        : 2" in result.output
        assert "/abot -> /about" in result.output

        history = runner.invoke(app, ["audit", "history"])
        assert history.exit_code == 0
        assert "SCORE" in history.output

        report = runner.invoke(app, ["audit", "report"])
        assert report.exit_code == 0
        assert "Health score  : 33" in report.output

    def test_export_csv(self, workspace, http, tmp_path):
        assert runner.invoke(app, ["audit", "run"]).exit_code == 0
        out = tmp_path / "csv"

        result = runner.invoke(app, ["audit", "export", "--out", str(out), "--priority", "low"])
        assert result.exit_code == 0, result.output
        assert "[audit export]" in result.output
        assert "metric,value" in (out / "summary.csv").read_text(encoding="utf-8")
        broken = (out / "broken-links.csv").read_text(encoding="utf-8").splitlines()
        assert len(broken) == 3
        assert "/abot,/about" in (out / "corrections.csv").read_text(encoding="utf-8")

    def test_export_rejects_unknown_type(self, workspace, tmp_path):
        result = runner.invoke(app, ["audit", "export", "--out", str(tmp_path / "csv"), "--type", "bogus"])
        assert result.exit_code == 1

    def test_report_without_runs(self, workspace):
        result = runner.invoke(app, ["audit", "report"])
        assert result.exit_code == 1
        assert "No report on record" in result.output

    def test_weekly_summary_without_audits(self, workspace):
        result = runner.invoke(app, ["audit", "weekly-summary"])
        assert result.exit_code == 0
        assert "Nothing to send." in result.output


# ---------------------------------------------------------------------------
# scheduler
# ---------------------------------------------------------------------------

class TestSchedulerCommands:
    def test_queue_process_status(self, workspace):
        queued = runner.invoke(app, ["scheduler", "quick-check"])
        assert queued.exit_code == 0
        assert "[quick_check]" in queued.output

        status = runner.invoke(app, ["scheduler", "status"])
        assert "pending=1" in status.output

        processed = runner.invoke(app, ["scheduler", "process"])
        assert processed.exit_code == 0
        assert "completed" in processed.output

        again = runner.invoke(app, ["scheduler", "process"])
        assert "Nothing to run." in again.output

    def test_cancel(self, workspace):
        runner.invoke(app, ["scheduler", "full-audit", "--in", "60"])
        conn = get_connection()
        [job] = jobs_db.list_jobs(conn, JobStatus.PENDING)
        conn.close()

        result = runner.invoke(app, ["scheduler", "cancel", job.id])
        assert result.exit_code == 0
        assert f"Cancelled {job.id}" in result.output

        again = runner.invoke(app, ["scheduler", "cancel", job.id])
        assert again.exit_code == 1
        assert "is not pending" in again.output

    def test_cancel_unknown(self, workspace):
        assert runner.invoke(app, ["scheduler", "cancel", "missing"]).exit_code == 1

    def test_bad_priority(self, workspace):
        result = runner.invoke(app, ["scheduler", "full-audit", "--priority", "42"])
        assert result.exit_code == 1


# ---------------------------------------------------------------------------
# fix / rollback / corrections
# ---------------------------------------------------------------------------

class TestCorrectionCommands:
    def test_fix_and_rollback(self, workspace):
        validation_id = _seed_broken("/abot", 2)
        page = workspace / "pages" / "index.html"
        before = page.read_text(encoding="utf-8")

        result = runner.invoke(app, ["fix", str(validation_id)])
        assert result.exit_code == 0, result.output
        assert "[fix] Applied 1 correction(s):" in result.output
        assert 'href="/about">Typo' in page.read_text(encoding="utf-8")

        conn = get_connection()
        [correction] = corrections_db.list_corrections(conn)
        conn.close()

        listed = runner.invoke(app, ["corrections", "list"])
        assert correction.rollback_id in listed.output
        assert runner.invoke(app, ["corrections", "verify", correction.rollback_id]).exit_code == 0

        undone = runner.invoke(app, ["rollback", correction.rollback_id])
        assert undone.exit_code == 0
        assert "[rollback] Restored pages/index.html" in undone.output
        assert page.read_text(encoding="utf-8") == before

        assert "No corrections recorded." in runner.invoke(app, ["corrections", "list"]).output
        assert runner.invoke(app, ["rollback", correction.rollback_id]).exit_code == 1

    def test_fix_unknown(self, workspace):
        result = runner.invoke(app, ["fix", "999"])
        assert result.exit_code == 1
        assert "Validation result not found" in result.output

    def test_fix_low_confidence_exit_code(self, workspace):
        validation_id = _seed_broken("/retired-page", 3, with_valid_about=False)
        result = runner.invoke(app, ["fix", str(validation_id)])
        assert result.exit_code == 2
        assert "Manual intervention required" in result.output

    def test_rollback_unknown(self, workspace):
        result = runner.invoke(app, ["rollback", "rollback_0_deadbeef"])
        assert result.exit_code == 1

    def test_cleanup(self, workspace):
        result = runner.invoke(app, ["corrections", "cleanup", "--days", "1"])
        assert result.exit_code == 0
        assert "Removed 0 backup(s)." in result.output
