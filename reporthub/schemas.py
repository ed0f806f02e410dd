from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class StatusUpdateRequest(BaseModel):
    status: str = Field(min_length=1)


class SubmitStateRequest(BaseModel):
    submit_state: int | bool | str


class AssetIdsRequest(BaseModel):
    ids_with_pages: list[tuple[str | int, str | int]] = Field(min_length=1)


class BatchUpdateRequest(BaseModel):
    fields: dict[str, Any] = Field(min_length=1)


class CommonAssetFieldsRequest(BaseModel):
    region: str | None = None
    city: str | None = None
    inspection_date: str | None = None
    owner_name: str | None = None


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
