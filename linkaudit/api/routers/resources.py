"""Resource-request intake.

Routes
------
POST /resources/requests    Record a request for a missing page or file
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from linkaudit.errors import RateLimitError

router = APIRouter()


class ResourceRequestCreate(BaseModel):
    user_email: str
    requested_url: str
    source_url: str
    message: Optional[str] = None


@router.post("/requests", status_code=201, response_model=dict[str, Any])
def create_request_endpoint(body: ResourceRequestCreate, request: Request) -> dict[str, Any]:
    service = request.app.state.service
    try:
        created = service.submit_resource_request(
            body.user_email, body.requested_url, body.source_url, body.message
        )
    except RateLimitError as exc:
        raise HTTPException(status_code=429, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "id": created.id,
        "user_email": created.user_email,
        "requested_url": created.requested_url,
        "source_url": created.source_url,
        "message": created.message,
        "created_at": created.created_at,
    }
