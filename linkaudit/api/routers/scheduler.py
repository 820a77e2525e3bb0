"""Scheduler control endpoints.

Routes
------
POST /scheduler/full-audit           Queue a full audit (optional future time)
POST /scheduler/quick-check          Queue a quick check
POST /scheduler/process              Run the next due job now
POST /scheduler/jobs/{id}/cancel     Cancel a pending job
PUT  /scheduler/config               Update scheduler configuration
GET  /scheduler/status               Queue status
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter()


class FullAuditRequest(BaseModel):
    scheduled_at: Optional[float] = None
    priority: Optional[int] = None


class QuickCheckRequest(BaseModel):
    priority: Optional[int] = None


class SchedulerConfigUpdate(BaseModel):
    enabled: Optional[bool] = None
    job_max_age_hours: Optional[float] = None
    run_timeout_minutes: Optional[float] = None
    dedupe_window_seconds: Optional[float] = None
    full_audit_priority: Optional[int] = None
    quick_check_priority: Optional[int] = None


def _scheduler(request: Request):
    return request.app.state.service.scheduler


@router.post("/full-audit", status_code=201, response_model=dict[str, Any])
def schedule_full_audit_endpoint(body: FullAuditRequest, request: Request) -> dict[str, Any]:
    try:
        job = _scheduler(request).schedule_full_audit(at=body.scheduled_at, priority=body.priority)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return job.to_dict()


@router.post("/quick-check", status_code=201, response_model=dict[str, Any])
def schedule_quick_check_endpoint(body: QuickCheckRequest, request: Request) -> dict[str, Any]:
    try:
        job = _scheduler(request).schedule_quick_check(priority=body.priority)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return job.to_dict()


@router.post("/process", response_model=dict[str, Any])
def process_queue_endpoint(request: Request) -> dict[str, Any]:
    job = _scheduler(request).process_queue()
    return {"processed": job is not None, "job": job.to_dict() if job else None}


@router.post("/jobs/{job_id}/cancel", response_model=dict[str, Any])
def cancel_job_endpoint(job_id: str, request: Request) -> dict[str, Any]:
    try:
        cancelled = _scheduler(request).cancel_job(job_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if not cancelled:
        raise HTTPException(status_code=409, detail=f"Job '{job_id}' is not pending and cannot be cancelled.")
    return {"cancelled": True, "job_id": job_id}


@router.put("/config", response_model=dict[str, Any])
def update_config_endpoint(body: SchedulerConfigUpdate, request: Request) -> dict[str, Any]:
    changes = body.model_dump(exclude_none=True)
    try:
        config = _scheduler(request).update_config(**changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return asdict(config)


@router.get("/status", response_model=dict[str, Any])
def status_endpoint(request: Request) -> dict[str, Any]:
    return _scheduler(request).get_queue_status()
