from __future__ import annotations

from fastapi import APIRouter, Request

from reporthub.errors import ApiError
from reporthub.routes._deps import require_found, trace_id_from_request
from reporthub.schemas import BatchUpdateRequest, success_envelope
from reporthub.service import service

router = APIRouter(prefix="/api/v1", tags=["batches"])


@router.get("/batches/{batch_id}/reports")
def list_batch_reports(batch_id: str, request: Request):
    data = require_found(service.list_batch_reports(batch_id))
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/batches/{batch_id}")
def update_batch(batch_id: str, payload: BatchUpdateRequest, request: Request):
    blocked = sorted(k for k in payload.fields if k == "_id" or k.startswith("$") or not k.strip())
    if blocked:
        raise ApiError(
            code="REQ_VALIDATION_FAILED",
            message=f"fields cannot be updated: {', '.join(blocked)}",
            error_class="validation",
            retryable=False,
            http_status=400,
        )
    data = service.apply_batch_update(batch_id, payload.fields)
    return success_envelope(data, trace_id_from_request(request))
