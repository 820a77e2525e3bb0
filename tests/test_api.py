"""Tests for the REST API (audit, scheduler, corrections, resources).

The app is built around an AuditService that owns an in-memory SQLite
database, so the lifespan never touches the on-disk workspace.  HTTP requests
made by the validator are mocked with ``respx``.
"""

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from linkaudit.alerts import LogNotifier
from linkaudit.api.app import create_app
from linkaudit.config import Settings
from linkaudit.db import links as links_db
from linkaudit.db import validations as validations_db
from linkaudit.db.connection import get_connection
from linkaudit.db.migrations import init_db
from linkaudit.db.models import LinkStatus, LinkType, Priority, ScannedLink, ValidationResult
from linkaudit.pipeline import AuditService

BASE = "https://example.com"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    (root / "pages").mkdir(parents=True)
    (root / "pages" / "index.html").write_text(
        '<a href="/about">About</a>\n<a href="/abot">Typo</a>\n<a href="/retired-page">Old</a>\n',
        encoding="utf-8",
    )
    return root


@pytest.fixture()
def service(tmp_path: Path, site: Path):
    conn = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(conn)
    settings = Settings(
        workspace_dir=tmp_path / "workspace",
        content_root=site,
        base_url=BASE,
        retry_attempts=0,
        retry_backoff=0.0,
        rate_limit_delay=0.0,
        smtp_host="",
        resource_requests_per_day=2,
    )
    yield AuditService(conn, settings, notifier=LogNotifier())
    conn.close()


@pytest.fixture()
def client(service: AuditService):
    app = create_app(service.settings, service=service)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture()
def http():
    with respx.mock(assert_all_called=False) as router:
        router.head(f"{BASE}/about").mock(return_value=httpx.Response(200))
        router.head(f"{BASE}/abot").mock(return_value=httpx.Response(404))
        router.head(f"{BASE}/retired-page").mock(return_value=httpx.Response(404))
        yield router


def _validation(conn: sqlite3.Connection, url: str, status: LinkStatus, code: int = 404) -> int:
    [stored] = validations_db.insert_results(conn, [
        ValidationResult(url=url, status=status, status_code=code,
                         response_time_ms=10, checked_at=int(time.time())),
    ])
    return stored.id


def _broken_typo(conn: sqlite3.Connection) -> int:
    links_db.insert_links(conn, [
        ScannedLink(url="/abot", source_file="pages/index.html", source_line=2,
                    link_type=LinkType.INTERNAL, priority=Priority.HIGH),
    ])
    _validation(conn, "/about", LinkStatus.VALID, 200)
    return _validation(conn, "/abot", LinkStatus.BROKEN)


# ---------------------------------------------------------------------------
# /audit
# ---------------------------------------------------------------------------

class TestAudit:
    def test_run_and_read_back(self, client: TestClient, http) -> None:
        resp = client.post("/audit/run")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["summary"]["total_links"] == 3
        assert data["summary"]["broken_links"] == 2
        assert data["corrections"][0]["corrected_url"] == "/about"

        history = client.get("/audit/history").json()
        assert len(history) == 1
        assert history[0]["id"] == data["run_id"]
        assert history[0]["report_path"].endswith(".json")

        broken = client.get("/audit/results/broken").json()
        assert sorted(r["url"] for r in broken) == ["/abot", "/retired-page"]
        assert all(r["status"] == "broken" for r in broken)

        assert len(client.get("/audit/health").json()) == 1

    def test_run_options(self, client: TestClient, site: Path, http) -> None:
        resp = client.post("/audit/run", json={"auto_correct": False, "write_report": False})
        assert resp.json()["corrections"] == []
        assert client.get("/audit/history").json()[0]["report_path"] is None
        assert 'href="/abot"' in (site / "pages" / "index.html").read_text(encoding="utf-8")

    def test_empty_history(self, client: TestClient) -> None:
        assert client.get("/audit/history").json() == []


# ---------------------------------------------------------------------------
# /scheduler
# ---------------------------------------------------------------------------

class TestScheduler:
    def test_schedule_and_status(self, client: TestClient) -> None:
        resp = client.post("/scheduler/full-audit", json={"scheduled_at": time.time() + 3600})
        assert resp.status_code == 201
        job = resp.json()
        assert job["type"] == "full_audit"
        assert job["status"] == "pending"
        assert job["priority"] == 5

        assert client.post("/scheduler/quick-check", json={}).status_code == 201
        status = client.get("/scheduler/status").json()
        assert status["pending"] == 2

    def test_bad_priority(self, client: TestClient) -> None:
        assert client.post("/scheduler/full-audit", json={"priority": 11}).status_code == 400

    def test_cancel(self, client: TestClient) -> None:
        job = client.post("/scheduler/full-audit", json={"scheduled_at": time.time() + 3600}).json()
        resp = client.post(f"/scheduler/jobs/{job['id']}/cancel")
        assert resp.status_code == 200
        assert resp.json() == {"cancelled": True, "job_id": job["id"]}
        assert client.post(f"/scheduler/jobs/{job['id']}/cancel").status_code == 409
        assert client.post("/scheduler/jobs/missing/cancel").status_code == 404

    def test_process(self, client: TestClient) -> None:
        assert client.post("/scheduler/process").json() == {"processed": False, "job": None}
        client.post("/scheduler/quick-check", json={})
        data = client.post("/scheduler/process").json()
        assert data["processed"] is True
        assert data["job"]["status"] == "completed"

    def test_update_config(self, client: TestClient) -> None:
        resp = client.put("/scheduler/config", json={"full_audit_priority": 7})
        assert resp.status_code == 200
        assert resp.json()["full_audit_priority"] == 7
        assert client.put("/scheduler/config", json={"quick_check_priority": 0}).status_code == 400


# ---------------------------------------------------------------------------
# /corrections
# ---------------------------------------------------------------------------

class TestCorrections:
    def test_fix_verify_rollback(self, client: TestClient, service: AuditService, site: Path) -> None:
        validation_id = _broken_typo(service.conn)
        page = site / "pages" / "index.html"
        before = page.read_bytes()

        resp = client.post(f"/corrections/fix/{validation_id}")
        assert resp.status_code == 200
        [correction] = resp.json()["corrections"]
        assert correction["corrected_url"] == "/about"
        assert correction["backup_created"] is True
        rollback_id = correction["rollback_id"]

        listed = client.get("/corrections").json()
        assert [c["rollback_id"] for c in listed] == [rollback_id]
        assert client.get(f"/corrections/{rollback_id}/verify").json()["verified"] is True

        resp = client.post(f"/corrections/{rollback_id}/rollback")
        assert resp.status_code == 200
        assert resp.json()["rolled_back"] is True
        assert page.read_bytes() == before

        assert client.post(f"/corrections/{rollback_id}/rollback").status_code == 409
        assert client.get("/corrections").json() == []
        assert len(client.get("/corrections", params={"include_rolled_back": True}).json()) == 1

    def test_fix_unknown_validation(self, client: TestClient) -> None:
        assert client.post("/corrections/fix/999").status_code == 404

    def test_fix_not_broken(self, client: TestClient, service: AuditService) -> None:
        validation_id = _validation(service.conn, "/about", LinkStatus.VALID, 200)
        assert client.post(f"/corrections/fix/{validation_id}").status_code == 409

    def test_fix_low_confidence(self, client: TestClient, service: AuditService) -> None:
        links_db.insert_links(service.conn, [
            ScannedLink(url="/retired-page", source_file="pages/index.html", source_line=3,
                        link_type=LinkType.INTERNAL, priority=Priority.LOW),
        ])
        validation_id = _validation(service.conn, "/retired-page", LinkStatus.BROKEN)
        resp = client.post(f"/corrections/fix/{validation_id}")
        assert resp.status_code == 422
        assert "Manual intervention required" in resp.json()["detail"]

    def test_unknown_rollback_id(self, client: TestClient) -> None:
        assert client.post("/corrections/rollback_0_deadbeef/rollback").status_code == 404
        assert client.get("/corrections/rollback_0_deadbeef/verify").status_code == 404


# ---------------------------------------------------------------------------
# /resources
# ---------------------------------------------------------------------------

class TestResources:
    def test_create_and_quota(self, client: TestClient) -> None:
        payload = {"user_email": "reader@example.com", "requested_url": "/guide.pdf", "source_url": "/blog"}
        first = client.post("/resources/requests", json=payload)
        assert first.status_code == 201
        assert first.json()["requested_url"] == "/guide.pdf"
        assert first.json()["message"] is None
        assert client.post("/resources/requests", json=payload).status_code == 201
        assert client.post("/resources/requests", json=payload).status_code == 429

    def test_empty_email(self, client: TestClient) -> None:
        payload = {"user_email": " ", "requested_url": "/guide.pdf", "source_url": "/blog"}
        assert client.post("/resources/requests", json=payload).status_code == 400

    def test_missing_field(self, client: TestClient) -> None:
        assert client.post("/resources/requests", json={"user_email": "a@b.c"}).status_code == 422
