"""Pure builders for the store-side feed pipeline.

Each builder returns plain stage dicts; nothing here touches a collection.
``build_feed_pipeline`` composes them: base provider match + project, one
``$unionWith`` per remaining provider, the global sort, then a paging facet
that also counts every matching row. ``build_provider_pipeline`` is the
single-provider variant used by the fan-out strategy.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from reporthub.providers import Provider

SORT_FIELD = "sort_at"
FEED_SORT: list[tuple[str, int]] = [(SORT_FIELD, -1), ("_id", -1)]

_TRUE_FLAGS = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class FeedFilters:
    """Optional narrowing of an owner's feed.

    ``unassigned`` wins over any office scope. ``report_status`` wins over
    ``exclude_statuses``.
    """

    unassigned: bool = False
    report_status: str | None = None
    exclude_statuses: tuple[str, ...] = ()

    @classmethod
    def from_params(
        cls,
        *,
        unassigned: Any = None,
        report_status: str | None = None,
        exclude_report_status: str | None = None,
    ) -> "FeedFilters":
        flag = unassigned if isinstance(unassigned, bool) else str(unassigned or "").strip().lower() in _TRUE_FLAGS
        status = (report_status or "").strip() or None
        excluded = tuple(v.strip() for v in (exclude_report_status or "").split(",") if v.strip())
        return cls(unassigned=flag, report_status=status, exclude_statuses=excluded)


def feed_filter(
    provider: Provider,
    owner_id: str,
    scope_id: str | None = None,
    *,
    filters: FeedFilters | None = None,
) -> dict[str, Any]:
    """Ownership over every owner-field candidate, plus scope and status narrowing when given."""
    filters = filters or FeedFilters()
    clauses = [provider.owner_filter(owner_id)]
    if filters.unassigned:
        clauses.append(provider.unscoped_filter())
    elif scope_id is not None and str(scope_id).strip() != "":
        clauses.append(provider.scope_filter(str(scope_id).strip()))
    if filters.report_status:
        clauses.append({provider.status_field_name: filters.report_status})
    elif filters.exclude_statuses:
        clauses.append({provider.status_field_name: {"$nin": list(filters.exclude_statuses)}})
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def _coalesce(fields: Sequence[str]) -> Any:
    refs = [f"${name}" for name in fields]
    return refs[0] if len(refs) == 1 else {"$ifNull": refs}


def build_match_stage(
    provider: Provider,
    owner_id: str,
    scope_id: str | None = None,
    *,
    filters: FeedFilters | None = None,
) -> dict[str, Any]:
    return {"$match": feed_filter(provider, owner_id, scope_id, filters=filters)}


def build_project_stage(provider: Provider) -> dict[str, Any]:
    return {
        "$project": {
            "provider": {"$literal": provider.name},
            "provider_label": {"$literal": provider.label},
            "_id": 1,
            "report_id": _coalesce(provider.report_id_field_names),
            "title": _coalesce(provider.title_field_names),
            "owner_id": _coalesce(provider.owner_field_names),
            "scope_id": _coalesce(provider.scope_field_names),
            "company": "$company",
            "createdAt": "$createdAt",
            "updatedAt": "$updatedAt",
            # createdAt, then updatedAt, then the instant inside _id
            SORT_FIELD: {"$toDate": {"$ifNull": ["$createdAt", "$updatedAt", "$_id"]}},
            "raw": "$$ROOT",
        }
    }


def build_union_stage(
    provider: Provider,
    owner_id: str,
    scope_id: str | None = None,
    *,
    filters: FeedFilters | None = None,
) -> dict[str, Any]:
    return {
        "$unionWith": {
            "coll": provider.collection.name,
            "pipeline": [
                build_match_stage(provider, owner_id, scope_id, filters=filters),
                build_project_stage(provider),
            ],
        }
    }


def build_sort_stage() -> dict[str, Any]:
    return {"$sort": dict(FEED_SORT)}


def build_facet_stage(*, skip: int, limit: int) -> dict[str, Any]:
    return {
        "$facet": {
            "items": [{"$skip": max(skip, 0)}, {"$limit": max(limit, 0)}],
            "meta": [{"$count": "total"}],
        }
    }


def build_provider_pipeline(
    provider: Provider,
    owner_id: str,
    *,
    scope_id: str | None = None,
    filters: FeedFilters | None = None,
    limit: int,
) -> list[dict[str, Any]]:
    """Newest ``limit`` feed rows of one provider, ordered by the feed sort key."""
    return [
        build_match_stage(provider, owner_id, scope_id, filters=filters),
        build_project_stage(provider),
        build_sort_stage(),
        {"$limit": max(limit, 0)},
    ]


def build_feed_pipeline(
    providers: Sequence[Provider],
    owner_id: str,
    *,
    scope_id: str | None = None,
    filters: FeedFilters | None = None,
    skip: int = 0,
    limit: int = 20,
) -> list[dict[str, Any]]:
    """Full pipeline, to be run on ``providers[0]``'s collection."""
    if not providers:
        raise ValueError("providers must not be empty")
    base, *rest = providers
    return [
        build_match_stage(base, owner_id, scope_id, filters=filters),
        build_project_stage(base),
        *(build_union_stage(p, owner_id, scope_id, filters=filters) for p in rest),
        build_sort_stage(),
        build_facet_stage(skip=skip, limit=limit),
    ]
