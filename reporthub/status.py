"""Report lifecycle status.

``NEW``, ``INCOMPLETE`` and ``COMPLETE`` are derived from the external id and
the asset submission flags every time they are asked for. ``SENT`` and
``CONFIRMED`` are only ever set directly, and a derived write never
replaces them.
"""

from __future__ import annotations

import logging
from typing import Any

from reporthub.documents import first_present, get_path, loose_text
from reporthub.errors import InvalidStatus, ProviderFailure
from reporthub.providers import Provider

logger = logging.getLogger(__name__)

STATUS_NEW = "NEW"
STATUS_INCOMPLETE = "INCOMPLETE"
STATUS_COMPLETE = "COMPLETE"
STATUS_SENT = "SENT"
STATUS_CONFIRMED = "CONFIRMED"

DERIVED_STATUSES = frozenset({STATUS_NEW, STATUS_INCOMPLETE, STATUS_COMPLETE})
GUARDED_STATUSES = frozenset({STATUS_SENT, STATUS_CONFIRMED})
ALL_STATUSES = DERIVED_STATUSES | GUARDED_STATUSES

_COMPLETE_FLAGS = {"1", "true"}


def normalize_status(value: Any) -> str | None:
    text = loose_text(value)
    if text is None or not text.strip():
        return None
    return text.strip().upper()


def asset_list(document: dict[str, Any], provider: Provider) -> list[Any]:
    """Assets of a report; flat providers count the document as its only asset."""
    if provider.assets_field_name is None:
        return [document]
    assets = get_path(document, provider.assets_field_name)
    return assets if isinstance(assets, list) else []


def is_asset_complete(asset: Any, provider: Provider) -> bool:
    if not isinstance(asset, dict):
        return False
    return loose_text(asset.get(provider.asset_state_field_name)) in _COMPLETE_FLAGS


def has_external_id(document: dict[str, Any], provider: Provider) -> bool:
    value = first_present(document, provider.report_id_field_names)
    return value is not None and str(value).strip() != ""


def derive_status(document: dict[str, Any], provider: Provider) -> str:
    if not has_external_id(document, provider):
        return STATUS_NEW
    assets = asset_list(document, provider)
    if assets and all(is_asset_complete(asset, provider) for asset in assets):
        return STATUS_COMPLETE
    return STATUS_INCOMPLETE


def _write_status(
    provider: Provider,
    filter: dict[str, Any],
    status: str,
    *,
    timeout_s: float | None,
    operation: str,
) -> dict[str, int]:
    try:
        return provider.collection.update_many(filter, {provider.status_field_name: status}, timeout_s=timeout_s)
    except Exception as exc:
        logger.error("status_write_failed provider=%s status=%s error=%s", provider.name, status, exc)
        raise ProviderFailure(provider=provider.name, operation=operation, cause=exc) from exc


def set_derived_status(
    provider: Provider,
    document: dict[str, Any],
    *,
    timeout_s: float | None = None,
) -> dict[str, Any]:
    """Recompute and store the derived status unless a guarded status is stored."""
    stored = normalize_status(document.get(provider.status_field_name))
    if stored in GUARDED_STATUSES:
        return {"status": stored, "applied": False}
    derived = derive_status(document, provider)
    guard_values: list[Any] = []
    for status in sorted(GUARDED_STATUSES):
        guard_values.extend([status, status.lower(), status.capitalize()])
    result = _write_status(
        provider,
        {"_id": document["_id"], provider.status_field_name: {"$nin": guard_values}},
        derived,
        timeout_s=timeout_s,
        operation="set_derived_status",
    )
    if result.get("matched_count", 0) == 0:
        # guarded status was written concurrently, or the document is gone
        current = provider.collection.find({"_id": document["_id"]}, timeout_s=timeout_s)
        current_status = normalize_status((current or {}).get(provider.status_field_name))
        logger.info(
            "derived_status_suppressed provider=%s _id=%s stored=%s",
            provider.name,
            document["_id"],
            current_status,
        )
        return {"status": current_status, "applied": False}
    return {"status": derived, "applied": True}


def set_direct_status(
    provider: Provider,
    document: dict[str, Any],
    status: Any,
    *,
    timeout_s: float | None = None,
) -> dict[str, Any]:
    normalized = normalize_status(status)
    if normalized not in ALL_STATUSES:
        raise InvalidStatus(status)
    _write_status(
        provider,
        {"_id": document["_id"]},
        normalized,
        timeout_s=timeout_s,
        operation="set_direct_status",
    )
    logger.info("direct_status_set provider=%s _id=%s status=%s", provider.name, document["_id"], normalized)
    return {"status": normalized}
