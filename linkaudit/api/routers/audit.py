"""Audit endpoints.

Routes
------
POST /audit/run              Run the full pipeline synchronously
GET  /audit/history          Most recent audit history rows
GET  /audit/results/broken   Broken validation results, newest first
GET  /audit/health           Daily health-metric snapshots
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from linkaudit.db import history as history_db
from linkaudit.db import validations as validations_db
from linkaudit.db.models import LinkStatus

router = APIRouter()


class RunAuditRequest(BaseModel):
    auto_correct: bool = True
    write_report: bool = True


@router.post("/run", response_model=dict[str, Any])
def run_audit_endpoint(request: Request, body: Optional[RunAuditRequest] = None) -> dict[str, Any]:
    """Run scan -> validate -> correct -> report.  Failures return ``success: false``."""
    body = body or RunAuditRequest()
    service = request.app.state.service
    result = service.run_full_audit(auto_correct=body.auto_correct, write_report=body.write_report)
    return result.to_dict()


@router.get("/history", response_model=list[dict[str, Any]])
def history_endpoint(request: Request, limit: int = 10) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [
        {
            "id": run.id,
            "total_links": run.total_links,
            "broken_links": run.broken_links,
            "corrected_links": run.corrected_links,
            "seo_score": run.seo_score,
            "report_path": run.report_path,
            "execution_time": run.execution_time,
            "created_at": run.created_at,
        }
        for run in history_db.recent_audits(conn, limit)
    ]


@router.get("/results/broken", response_model=list[dict[str, Any]])
def broken_results_endpoint(request: Request, limit: int = 100) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [
        {
            "id": r.id,
            "url": r.url,
            "status": r.status.value,
            "status_code": r.status_code,
            "redirect_url": r.redirect_url,
            "error_message": r.error_message,
            "response_time": r.response_time_ms,
            "checked_at": r.checked_at,
        }
        for r in validations_db.list_results(conn, LinkStatus.BROKEN, limit)
    ]


@router.get("/health", response_model=list[dict[str, Any]])
def health_metrics_endpoint(request: Request, limit: int = 30) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [
        {
            "date": m.date,
            "total_links": m.total_links,
            "broken_links": m.broken_links,
            "health_score": m.health_score,
            "response_time_avg": m.response_time_avg,
        }
        for m in history_db.list_health_metrics(conn, limit)
    ]
