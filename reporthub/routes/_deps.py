from __future__ import annotations

import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from reporthub.errors import ApiError
from reporthub.schemas import error_envelope


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def owner_id_from_request(request: Request) -> str:
    owner_id = request.headers.get("x-user-id", "").strip()
    if not owner_id:
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="x-user-id header is required",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )
    return owner_id


def office_id_from_request(request: Request) -> str | None:
    """Office scope from the query string, else the ``x-company-office-id`` header."""
    for raw in (
        request.query_params.get("office_id"),
        request.query_params.get("company_office_id"),
        request.headers.get("x-company-office-id"),
        request.headers.get("x-office-id"),
    ):
        if raw is not None and raw.strip():
            return raw.strip()
    return None


def report_not_found() -> ApiError:
    return ApiError(
        code="REPORT_NOT_FOUND",
        message="Report does not exist",
        error_class="validation",
        retryable=False,
        http_status=404,
    )


def require_found(data: Any) -> Any:
    if data is None:
        raise report_not_found()
    return data


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )
