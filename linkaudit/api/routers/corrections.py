"""Correction endpoints.

Routes
------
POST /corrections/fix/{validation_id}        Manual single-link fix
GET  /corrections                            Applied corrections
POST /corrections/{rollback_id}/rollback     Undo an applied correction
GET  /corrections/{rollback_id}/verify       Check the file still holds the fix
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from linkaudit.db import corrections as corrections_db
from linkaudit.db.models import AppliedCorrection
from linkaudit.errors import CorrectionError, LowConfidenceError, RollbackError

router = APIRouter()


def _correction_dict(c: AppliedCorrection) -> dict[str, Any]:
    return {
        "id": c.id,
        "original_url": c.original_url,
        "corrected_url": c.corrected_url,
        "file_path": c.file_path,
        "source_line": c.source_line,
        "correction_type": c.correction_type.value,
        "confidence": c.confidence,
        "rollback_id": c.rollback_id,
        "applied_at": c.applied_at,
        "backup_created": c.backup_created,
    }


@router.post("/fix/{validation_id}", response_model=dict[str, Any])
def fix_link_endpoint(validation_id: int, request: Request) -> dict[str, Any]:
    service = request.app.state.service
    try:
        applied = service.fix_link(validation_id)
    except LowConfidenceError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except CorrectionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"success": True, "corrections": [_correction_dict(c) for c in applied]}


@router.get("", response_model=list[dict[str, Any]])
def list_corrections_endpoint(request: Request, include_rolled_back: bool = False) -> list[dict[str, Any]]:
    conn = request.app.state.db
    return [_correction_dict(c) for c in corrections_db.list_corrections(conn, include_rolled_back)]


@router.post("/{rollback_id}/rollback", response_model=dict[str, Any])
def rollback_endpoint(rollback_id: str, request: Request) -> dict[str, Any]:
    service = request.app.state.service
    try:
        correction = service.corrector.rollback_correction(rollback_id)
    except RollbackError as exc:
        if corrections_db.get_by_rollback_id(request.app.state.db, rollback_id) is None:
            raise HTTPException(status_code=404, detail=str(exc))
        raise HTTPException(status_code=409, detail=str(exc))
    return {"rolled_back": True, "correction": _correction_dict(correction)}


@router.get("/{rollback_id}/verify", response_model=dict[str, Any])
def verify_endpoint(rollback_id: str, request: Request) -> dict[str, Any]:
    service = request.app.state.service
    try:
        verified = service.corrector.verify_correction(rollback_id)
    except RollbackError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"rollback_id": rollback_id, "verified": verified}
