"""Unified, time-ordered feed over every provider.

Two strategies honour the same contract (newest first, ties by internal id
descending, each row tagged with its provider):

``fanout``
    One bounded query per provider, sorted in the store by the same key as
    the merge, run concurrently, then merged and sliced in process. ``total``
    is the number of rows loaded into the merge buffer, reported with
    ``exact=False``. Providers that fail or time out are left out of the
    page and listed in ``omitted_providers``.

``pipeline``
    One store-side pipeline on the first provider's collection, unioning the
    rest, with an exact total (``exact=True``).
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import Any

from reporthub.documents import parse_instant
from reporthub.errors import ProviderFailure
from reporthub.fanout import Deadline, dispatch
from reporthub.pipeline import SORT_FIELD, FeedFilters, build_feed_pipeline, build_provider_pipeline
from reporthub.providers import ProviderRegistry
from reporthub.settings import FEED_STRATEGIES

logger = logging.getLogger(__name__)

_NO_INSTANT = datetime.min.replace(tzinfo=UTC)


def _projected_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "provider": row.get("provider"),
        "provider_label": row.get("provider_label"),
        "_id": row.get("_id"),
        "report_id": row.get("report_id"),
        "title": row.get("title"),
        "owner_id": row.get("owner_id"),
        "scope_id": row.get("scope_id"),
        "company": row.get("company"),
        "createdAt": parse_instant(row.get("createdAt")),
        "updatedAt": parse_instant(row.get("updatedAt")),
        SORT_FIELD: parse_instant(row.get(SORT_FIELD)),
        "raw": row.get("raw"),
    }


def _row_key(row: dict[str, Any]) -> tuple[bool, datetime, str]:
    # rows without a sort instant go last, as in the store-side sort
    instant = row.get(SORT_FIELD)
    return instant is not None, instant or _NO_INSTANT, str(row.get("_id") or "")


class FeedService:
    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        default_strategy: str = "pipeline",
        fanout_slack: int = 5,
        default_limit: int = 20,
        max_limit: int = 100,
        timeout_s: float | None = None,
    ) -> None:
        if default_strategy not in FEED_STRATEGIES:
            raise ValueError(f"unknown feed strategy: {default_strategy}")
        self.registry = registry
        self.default_strategy = default_strategy
        self.fanout_slack = max(fanout_slack, 0)
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.timeout_s = timeout_s

    def _page_params(self, page: Any, limit: Any) -> tuple[int, int]:
        try:
            page_value = int(page or 1)
        except (TypeError, ValueError):
            page_value = 1
        try:
            limit_value = int(limit or self.default_limit)
        except (TypeError, ValueError):
            limit_value = self.default_limit
        return max(page_value, 1), min(max(limit_value, 1), self.max_limit)

    def list_feed(
        self,
        owner_id: str,
        *,
        scope_id: str | None = None,
        filters: FeedFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        strategy: str | None = None,
        deadline: Deadline | None = None,
    ) -> dict[str, Any]:
        selected = (strategy or self.default_strategy).strip().lower()
        if selected not in FEED_STRATEGIES:
            raise ValueError(f"unknown feed strategy: {selected}")
        page_value, limit_value = self._page_params(page, limit)
        deadline = deadline or Deadline.after(self.timeout_s)
        filters = filters or FeedFilters()
        if selected == "fanout":
            result = self._list_fanout(owner_id, scope_id, filters, page_value, limit_value, deadline)
        else:
            result = self._list_pipeline(owner_id, scope_id, filters, page_value, limit_value, deadline)
        result.update({"page": page_value, "limit": limit_value, "strategy": selected})
        return result

    def fanout_cap(self, *, skip: int, limit: int) -> int:
        """Rows pulled per provider: enough to fill the page from an even spread, plus slack."""
        per_provider = math.ceil(limit / len(self.registry))
        return skip + per_provider + self.fanout_slack

    def _newest_per_provider(
        self,
        owner_id: str,
        scope_id: str | None,
        filters: FeedFilters,
        limit: int,
        deadline: Deadline,
    ) -> tuple[list[dict[str, Any]], list[str]]:
        """Each provider's newest ``limit`` rows, sorted store-side by the feed key."""
        outcomes = dispatch(
            self.registry.list_providers(),
            lambda p, timeout_s: p.collection.aggregate(
                build_provider_pipeline(p, owner_id, scope_id=scope_id, filters=filters, limit=limit),
                timeout_s=timeout_s,
            ),
            deadline=deadline,
        )
        rows: list[dict[str, Any]] = []
        omitted: list[str] = []
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning(
                    "feed_provider_omitted provider=%s timed_out=%s error=%s",
                    outcome.provider.name,
                    outcome.timed_out,
                    outcome.error,
                )
                omitted.append(outcome.provider.name)
                continue
            rows.extend(_projected_row(row) for row in outcome.value or [])
        rows.sort(key=_row_key, reverse=True)
        return rows, omitted

    def _list_fanout(
        self,
        owner_id: str,
        scope_id: str | None,
        filters: FeedFilters,
        page: int,
        limit: int,
        deadline: Deadline,
    ) -> dict[str, Any]:
        skip = (page - 1) * limit
        cap = self.fanout_cap(skip=skip, limit=limit)
        rows, omitted = self._newest_per_provider(owner_id, scope_id, filters, cap, deadline)
        return {
            "items": rows[skip : skip + limit],
            "total": len(rows),
            "exact": False,
            "omitted_providers": omitted,
        }

    def _list_pipeline(
        self,
        owner_id: str,
        scope_id: str | None,
        filters: FeedFilters,
        page: int,
        limit: int,
        deadline: Deadline,
    ) -> dict[str, Any]:
        providers = self.registry.list_providers()
        base = providers[0]
        stages = build_feed_pipeline(
            providers,
            owner_id,
            scope_id=scope_id,
            filters=filters,
            skip=(page - 1) * limit,
            limit=limit,
        )
        try:
            result = base.collection.aggregate(stages, timeout_s=deadline.remaining())
        except Exception as exc:
            logger.error("feed_pipeline_failed base=%s error=%s", base.name, exc)
            raise ProviderFailure(provider=base.name, operation="list_feed", cause=exc) from exc
        facet = result[0] if result else {}
        meta = facet.get("meta") or []
        return {
            "items": [_projected_row(row) for row in facet.get("items") or []],
            "total": int(meta[0].get("total", 0)) if meta else 0,
            "exact": True,
            "omitted_providers": [],
        }

    def latest_report(
        self,
        owner_id: str,
        *,
        scope_id: str | None = None,
        filters: FeedFilters | None = None,
        deadline: Deadline | None = None,
    ) -> dict[str, Any] | None:
        deadline = deadline or Deadline.after(self.timeout_s)
        rows, _ = self._newest_per_provider(owner_id, scope_id, filters or FeedFilters(), 1, deadline)
        return rows[0] if rows else None
