from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query, Request

from reporthub.pipeline import FeedFilters
from reporthub.routes._deps import office_id_from_request, owner_id_from_request, trace_id_from_request
from reporthub.schemas import success_envelope
from reporthub.service import service

router = APIRouter(prefix="/api/v1", tags=["feed"])


def _feed_filters(
    unassigned: bool,
    unassigned_only: bool,
    report_status: str | None,
    exclude_report_status: str | None,
) -> FeedFilters:
    return FeedFilters.from_params(
        unassigned=unassigned or unassigned_only,
        report_status=report_status,
        exclude_report_status=exclude_report_status,
    )


@router.get("/feed")
def list_feed(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    strategy: Literal["fanout", "pipeline"] | None = None,
    unassigned: bool = False,
    unassigned_only: bool = False,
    report_status: str | None = None,
    exclude_report_status: str | None = None,
):
    data = service.list_feed(
        owner_id_from_request(request),
        scope_id=office_id_from_request(request),
        filters=_feed_filters(unassigned, unassigned_only, report_status, exclude_report_status),
        page=page,
        limit=limit,
        strategy=strategy,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/feed/latest")
def latest_report(
    request: Request,
    unassigned: bool = False,
    unassigned_only: bool = False,
    report_status: str | None = None,
    exclude_report_status: str | None = None,
):
    data = service.latest_report(
        owner_id_from_request(request),
        scope_id=office_id_from_request(request),
        filters=_feed_filters(unassigned, unassigned_only, report_status, exclude_report_status),
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/providers")
def list_providers(request: Request):
    return success_envelope(service.describe_providers(), trace_id_from_request(request))
