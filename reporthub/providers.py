"""Collection registry: the ordered list of report providers.

Registry order is the lookup priority. It is declared explicitly in
``DEFAULT_PROVIDER_SPECS`` and versioned by ``REGISTRY_VERSION``; changing the
order changes which document wins when an external report id exists in more
than one collection.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from reporthub.repositories.base import ReportCollection

REGISTRY_VERSION = "2"


@dataclass(frozen=True)
class Provider:
    name: str
    label: str
    collection: ReportCollection = field(compare=False, repr=False)
    batch_field_name: str | None = None
    report_id_field_names: tuple[str, ...] = ("report_id", "reportId")
    owner_field_names: tuple[str, ...] = ("user_id", "userId")
    scope_field_names: tuple[str, ...] = ("company_office_id",)
    title_field_names: tuple[str, ...] = ("title",)
    status_field_name: str = "report_status"
    # None means the document is its own single asset
    assets_field_name: str | None = "asset_data"
    asset_state_field_name: str = "submitState"
    asset_id_field_name: str = "id"
    asset_page_field_name: str = "pg_no"
    page_count_field_name: str = "pg_count"
    complete_value: Any = 1
    incomplete_value: Any = 0

    @property
    def has_batch_field(self) -> bool:
        return bool(self.batch_field_name)

    def report_id_filter(self, external_id: str) -> dict[str, Any]:
        clauses = [{name: external_id} for name in self.report_id_field_names]
        return clauses[0] if len(clauses) == 1 else {"$or": clauses}

    def owner_filter(self, owner_id: str) -> dict[str, Any]:
        clauses = [{name: owner_id} for name in self.owner_field_names]
        return clauses[0] if len(clauses) == 1 else {"$or": clauses}

    def scope_filter(self, scope_id: str) -> dict[str, Any]:
        clauses = [{name: scope_id} for name in self.scope_field_names]
        return clauses[0] if len(clauses) == 1 else {"$or": clauses}

    def unscoped_filter(self) -> dict[str, Any]:
        clauses = []
        for name in self.scope_field_names:
            clauses.append({"$or": [{name: {"$exists": False}}, {name: None}, {name: ""}]})
        return clauses[0] if len(clauses) == 1 else {"$and": clauses}

    def batch_filter(self, batch_id: str) -> dict[str, Any]:
        if not self.batch_field_name:
            raise ValueError(f"provider {self.name} has no batch field")
        return {self.batch_field_name: batch_id}


class ProviderRegistry:
    def __init__(self, providers: Iterable[Provider], *, version: str = REGISTRY_VERSION) -> None:
        items = tuple(providers)
        if not items:
            raise ValueError("provider registry must not be empty")
        names = [p.name for p in items]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate provider names: {', '.join(duplicates)}")
        self._providers = items
        self._by_name = {p.name: p for p in items}
        self.version = version

    def list_providers(self) -> tuple[Provider, ...]:
        return self._providers

    def providers_with_batch_field(self) -> tuple[Provider, ...]:
        return tuple(p for p in self._providers if p.has_batch_field)

    def get(self, name: str) -> Provider | None:
        return self._by_name.get(name)

    def rank(self, name: str) -> int:
        for index, provider in enumerate(self._providers, start=1):
            if provider.name == name:
                return index
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self._providers)

    def describe(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "providers": [
                {
                    "rank": rank,
                    "name": p.name,
                    "label": p.label,
                    "collection": p.collection.name,
                    "batch_field_name": p.batch_field_name,
                    "report_id_field_names": list(p.report_id_field_names),
                    "owner_field_names": list(p.owner_field_names),
                }
                for rank, p in enumerate(self._providers, start=1)
            ],
        }


# (name, label, collection, overrides) in lookup priority order.
DEFAULT_PROVIDER_SPECS: tuple[tuple[str, str, str, dict[str, Any]], ...] = (
    ("duplicate_reports", "Upload Manual Report", "duplicatereports", {}),
    (
        "elrajhi_reports",
        "Legacy Batch Upload",
        "elrajhireports",
        {"batch_field_name": "batchId", "assets_field_name": None, "asset_id_field_name": "asset_id"},
    ),
    (
        "multi_approach_reports",
        "Multi Excel Upload",
        "multiapproachreports",
        {"batch_field_name": "batchId"},
    ),
    (
        "submit_reports_quickly",
        "Submit Reports Quickly",
        "submitreportsquicklies",
        {"batch_field_name": "batch_id"},
    ),
    (
        "urgent_reports",
        "Upload Report (ElRajhi)",
        "urgentreports",
        {
            "batch_field_name": "batch_id",
            "assets_field_name": None,
            "asset_state_field_name": "submit_state",
            "asset_id_field_name": "asset_id",
        },
    ),
    ("reports", "Upload Assets", "reports", {"title_field_names": ("title", "report_title")}),
)


def build_default_registry(collection_for: Callable[[str], ReportCollection]) -> ProviderRegistry:
    providers = [
        Provider(name=name, label=label, collection=collection_for(coll), **overrides)
        for name, label, coll, overrides in DEFAULT_PROVIDER_SPECS
    ]
    return ProviderRegistry(providers, version=REGISTRY_VERSION)
