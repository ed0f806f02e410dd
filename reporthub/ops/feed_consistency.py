from __future__ import annotations

from typing import Any

from reporthub.service import ReportService


def _row_keys(items: list[dict[str, Any]]) -> list[str]:
    return [f"{row.get('provider')}:{row.get('_id')}" for row in items]


def compare_feed_strategies(
    service: ReportService,
    owner_id: str,
    *,
    scope_id: str | None = None,
    page: int = 1,
    limit: int | None = None,
) -> dict[str, Any]:
    """Run both feed strategies for one page and report where their orderings diverge.

    The fan-out total is an approximation; it is recorded next to the exact
    total, never compared for equality.
    """
    fanout = service.list_feed(owner_id, scope_id=scope_id, page=page, limit=limit, strategy="fanout")
    pipeline = service.list_feed(owner_id, scope_id=scope_id, page=page, limit=limit, strategy="pipeline")
    fanout_keys = _row_keys(fanout["items"])
    pipeline_keys = _row_keys(pipeline["items"])
    mismatch_positions = [
        index
        for index in range(max(len(fanout_keys), len(pipeline_keys)))
        if index >= len(fanout_keys) or index >= len(pipeline_keys) or fanout_keys[index] != pipeline_keys[index]
    ]
    return {
        "page": pipeline["page"],
        "limit": pipeline["limit"],
        "order_matched": not mismatch_positions,
        "mismatch_positions": mismatch_positions,
        "fanout_keys": fanout_keys,
        "pipeline_keys": pipeline_keys,
        "exact_total": pipeline["total"],
        "fanout_total": fanout["total"],
        "fanout_omitted_providers": list(fanout["omitted_providers"]),
    }
