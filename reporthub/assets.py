"""Asset-level edits and checks on one resolved report.

Assets are addressed by ordinal position (``asset_data.3.submitState``);
edits mutate in place and never reorder. Flat providers store a single
asset on the report document itself.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from reporthub.documents import get_path, loose_text
from reporthub.errors import ProviderFailure, ReportHasNoAssets
from reporthub.providers import Provider
from reporthub.status import asset_list

logger = logging.getLogger(__name__)

COMMON_ASSET_FIELDS = ("region", "city", "inspection_date", "owner_name")


def _asset_path(provider: Provider, index: int, field: str) -> str:
    if provider.assets_field_name is None:
        return field
    return f"{provider.assets_field_name}.{index}.{field}"


def _update(
    provider: Provider,
    filter: dict[str, Any],
    fields: dict[str, Any],
    *,
    operation: str,
    timeout_s: float | None,
) -> dict[str, int]:
    try:
        return provider.collection.update_many(filter, fields, timeout_s=timeout_s)
    except Exception as exc:
        logger.error("asset_write_failed operation=%s provider=%s error=%s", operation, provider.name, exc)
        raise ProviderFailure(provider=provider.name, operation=operation, cause=exc) from exc


def find_asset_index(document: dict[str, Any], provider: Provider, asset_id: Any) -> int | None:
    wanted = loose_text(asset_id)
    for index, asset in enumerate(asset_list(document, provider)):
        if isinstance(asset, dict) and loose_text(asset.get(provider.asset_id_field_name)) == wanted:
            return index
    return None


def update_asset_submit_state(
    provider: Provider,
    document: dict[str, Any],
    asset_id: Any,
    state: Any,
    *,
    timeout_s: float | None = None,
) -> dict[str, Any] | None:
    """Set one asset's submission flag; ``None`` when the report has no such asset."""
    index = find_asset_index(document, provider, asset_id)
    if index is None:
        return None
    id_path = _asset_path(provider, index, provider.asset_id_field_name)
    # pin the position to the asset id so a concurrent rewrite cannot retarget the edit
    result = _update(
        provider,
        {"_id": document["_id"], id_path: asset_id},
        {_asset_path(provider, index, provider.asset_state_field_name): state},
        operation="update_asset_submit_state",
        timeout_s=timeout_s,
    )
    return {"index": index, **result}


def mark_all_assets_complete(
    provider: Provider,
    document: dict[str, Any],
    *,
    timeout_s: float | None = None,
) -> dict[str, Any]:
    assets = asset_list(document, provider)
    if not assets:
        return {"asset_count": 0, "matched_count": 1, "modified_count": 0}
    fields = {
        _asset_path(provider, index, provider.asset_state_field_name): provider.complete_value
        for index in range(len(assets))
    }
    result = _update(
        provider,
        {"_id": document["_id"]},
        fields,
        operation="mark_all_assets_complete",
        timeout_s=timeout_s,
    )
    return {"asset_count": len(assets), **result}


def assign_asset_ids(
    provider: Provider,
    document: dict[str, Any],
    ids_with_pages: Sequence[tuple[Any, Any]],
    *,
    timeout_s: float | None = None,
) -> dict[str, Any]:
    """Write ``(asset id, page)`` pairs onto assets in order; extra assets stay as they are."""
    if provider.assets_field_name is None:
        raise ReportHasNoAssets(document.get("_id"))
    assets = asset_list(document, provider)
    if not assets:
        raise ReportHasNoAssets(document.get("_id"))
    fields: dict[str, Any] = {}
    assigned = min(len(assets), len(ids_with_pages))
    for index in range(assigned):
        asset_id, page = ids_with_pages[index]
        fields[_asset_path(provider, index, provider.asset_id_field_name)] = str(asset_id)
        fields[_asset_path(provider, index, provider.asset_page_field_name)] = str(page)
    if not fields:
        return {"assigned": 0, "matched_count": 1, "modified_count": 0}
    result = _update(
        provider,
        {"_id": document["_id"]},
        fields,
        operation="assign_asset_ids",
        timeout_s=timeout_s,
    )
    return {"assigned": assigned, **result}


def _filled(value: Any) -> bool:
    if value is None:
        return False
    return not (isinstance(value, str) and not value.strip())


def apply_common_asset_fields(
    provider: Provider,
    document: dict[str, Any],
    fields: dict[str, Any],
    *,
    timeout_s: float | None = None,
) -> dict[str, Any]:
    """Copy the non-empty common values onto every asset; empty values keep what each asset has."""
    values = {name: fields.get(name) for name in COMMON_ASSET_FIELDS if _filled(fields.get(name))}
    assets = asset_list(document, provider)
    if not values or not assets:
        return {"asset_count": len(assets), "fields": sorted(values), "matched_count": 1, "modified_count": 0}
    updates = {
        _asset_path(provider, index, name): value
        for index in range(len(assets))
        for name, value in values.items()
    }
    result = _update(
        provider,
        {"_id": document["_id"]},
        updates,
        operation="apply_common_asset_fields",
        timeout_s=timeout_s,
    )
    logger.info(
        "common_asset_fields_applied provider=%s _id=%s assets=%s fields=%s",
        provider.name,
        document["_id"],
        len(assets),
        ",".join(sorted(values)),
    )
    return {"asset_count": len(assets), "fields": sorted(values), **result}


def _as_page(value: Any) -> int | None:
    text = loose_text(value)
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def check_missing_pages(provider: Provider, document: dict[str, Any]) -> dict[str, Any]:
    page_count = _as_page(get_path(document, provider.page_count_field_name)) or 0
    present = {
        page
        for asset in asset_list(document, provider)
        if isinstance(asset, dict)
        for page in [_as_page(asset.get(provider.asset_page_field_name))]
        if page is not None
    }
    missing = [page for page in range(1, page_count + 1) if page not in present]
    return {"page_count": page_count, "missing_pages": missing, "has_missing": bool(missing)}
