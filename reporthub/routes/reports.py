from __future__ import annotations

from fastapi import APIRouter, Query, Request

from reporthub.routes._deps import (
    office_id_from_request,
    owner_id_from_request,
    require_found,
    trace_id_from_request,
)
from reporthub.schemas import (
    AssetIdsRequest,
    CommonAssetFieldsRequest,
    StatusUpdateRequest,
    SubmitStateRequest,
    success_envelope,
)
from reporthub.service import service

router = APIRouter(prefix="/api/v1", tags=["reports"])


@router.get("/reports/lookup")
def lookup_report(request: Request, report_id: str = Query(min_length=1)):
    owner_id = owner_id_from_request(request)
    found = require_found(service.resolve_by_external_id(report_id, owner_id=owner_id))
    return success_envelope(found.to_dict(), trace_id_from_request(request))


@router.get("/reports/by-report-id/{report_id}")
def get_report_by_report_id(report_id: str, request: Request):
    found = require_found(service.resolve_by_external_id(report_id))
    return success_envelope(found.to_dict(), trace_id_from_request(request))


@router.get("/reports/by-report-id/{report_id}/exists")
def report_exists(report_id: str, request: Request):
    summary = service.check_existence(report_id, office_id=office_id_from_request(request))
    if summary is None:
        return success_envelope({"exists": False}, trace_id_from_request(request), message="Report does not exist")
    return success_envelope(
        {"exists": True, **summary},
        trace_id_from_request(request),
        message="Report already exists",
    )


@router.get("/reports/by-report-id/{report_id}/missing-pages")
def report_missing_pages(report_id: str, request: Request):
    data = require_found(service.check_missing_pages(report_id))
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/reports/by-report-id/{report_id}/assets/common-fields")
def apply_common_asset_fields(report_id: str, payload: CommonAssetFieldsRequest, request: Request):
    data = require_found(
        service.apply_common_asset_fields(
            report_id,
            payload.model_dump(),
            office_id=office_id_from_request(request),
        )
    )
    return success_envelope(data, trace_id_from_request(request))


@router.get("/reports/{internal_id}")
def get_report(internal_id: str, request: Request):
    found = require_found(service.resolve_by_internal_id(internal_id))
    return success_envelope(found.to_dict(), trace_id_from_request(request))


@router.patch("/reports/{internal_id}/status")
def set_report_status(internal_id: str, payload: StatusUpdateRequest, request: Request):
    data = require_found(service.set_direct_status(internal_id, payload.status))
    return success_envelope(data, trace_id_from_request(request))


@router.post("/reports/{internal_id}/recompute-status")
def recompute_report_status(internal_id: str, request: Request):
    data = require_found(service.set_derived_status(internal_id))
    return success_envelope(data, trace_id_from_request(request))


@router.patch("/reports/{internal_id}/assets/{asset_id}/submit-state")
def update_submit_state(internal_id: str, asset_id: str, payload: SubmitStateRequest, request: Request):
    data = require_found(service.update_asset_submit_state(internal_id, asset_id, payload.submit_state))
    return success_envelope(data, trace_id_from_request(request))


@router.post("/reports/{internal_id}/assets/mark-complete")
def mark_assets_complete(internal_id: str, request: Request):
    data = require_found(service.mark_all_assets_complete(internal_id))
    return success_envelope(data, trace_id_from_request(request))


@router.put("/reports/{internal_id}/assets/ids")
def assign_asset_ids(internal_id: str, payload: AssetIdsRequest, request: Request):
    pairs = [(asset_id, page) for asset_id, page in payload.ids_with_pages]
    data = require_found(service.assign_asset_ids(internal_id, pairs))
    return success_envelope(data, trace_id_from_request(request))
