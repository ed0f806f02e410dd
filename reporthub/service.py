from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from reporthub import assets as asset_ops
from reporthub import status as status_ops
from reporthub.db.postgres import PostgresTxRunner
from reporthub.documents import first_present
from reporthub.errors import AssetNotFound
from reporthub.fanout import Deadline
from reporthub.feed import FeedService
from reporthub.pipeline import FeedFilters
from reporthub.propagator import BatchPropagator
from reporthub.providers import ProviderRegistry, build_default_registry
from reporthub.repositories import InMemoryDatabase, PostgresCollection
from reporthub.repositories.base import ReportCollection
from reporthub.resolver import IdentityResolver, Resolution
from reporthub.settings import HubSettings, true_stack_required

logger = logging.getLogger(__name__)

_BATCH_SORT: list[tuple[str, int]] = [("createdAt", 1), ("_id", 1)]


class ReportService:
    """Entry point for HTTP-facing callers.

    Read paths return ``None`` when nothing matches; write paths raise
    ``ProviderFailure`` when a provider call fails.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        settings: HubSettings | None = None,
        database: InMemoryDatabase | None = None,
    ) -> None:
        self.settings = settings or HubSettings.from_env({})
        self.registry = registry
        self.database = database
        timeout_s = self.settings.provider_timeout_s
        self.resolver = IdentityResolver(
            registry,
            ambiguity_check=self.settings.ambiguity_check,
            timeout_s=timeout_s,
        )
        self.propagator = BatchPropagator(registry, timeout_s=timeout_s)
        self.feed = FeedService(
            registry,
            default_strategy=self.settings.feed_strategy,
            fanout_slack=self.settings.fanout_slack,
            default_limit=self.settings.feed_default_limit,
            max_limit=self.settings.feed_max_limit,
            timeout_s=timeout_s,
        )

    def _timeout_s(self) -> float:
        return self.settings.provider_timeout_s

    def reset(self) -> None:
        if self.database is not None:
            self.database.reset()

    def describe_providers(self) -> dict[str, Any]:
        return self.registry.describe()

    # Identity

    def resolve_by_external_id(self, external_id: str, *, owner_id: str | None = None) -> Resolution | None:
        return self.resolver.find_by_external_id(external_id, owner_id=owner_id)

    def resolve_by_internal_id(self, internal_id: Any) -> Resolution | None:
        return self.resolver.find_by_internal_id(internal_id)

    def check_existence(self, external_id: str, *, office_id: str | None = None) -> dict[str, Any] | None:
        found = self.resolver.find_by_external_id_in_scope(external_id, office_id)
        if found is None:
            return None
        doc = found.document
        provider = found.provider
        return {
            "provider": provider.name,
            "report_id": external_id.strip(),
            "_id": doc.get("_id"),
            "title": first_present(doc, provider.title_field_names),
            "asset_count": len(status_ops.asset_list(doc, provider)),
        }

    def check_missing_pages(self, external_id: str) -> dict[str, Any] | None:
        found = self.resolver.find_by_external_id(external_id)
        if found is None:
            return None
        return {"provider": found.provider.name, **asset_ops.check_missing_pages(found.provider, found.document)}

    # Batches

    def apply_batch_update(self, batch_id: str, fields: dict[str, Any]) -> dict[str, int]:
        return self.propagator.apply_batch_update(batch_id, fields)

    def list_batch_reports(self, batch_id: str) -> dict[str, Any] | None:
        provider = self.resolver.find_by_batch_id(batch_id)
        if provider is None:
            return None
        docs = provider.collection.find_many(
            provider.batch_filter(batch_id.strip()),
            sort=_BATCH_SORT,
            timeout_s=self._timeout_s(),
        )
        return {
            "batch_id": batch_id.strip(),
            "provider": provider.name,
            "total": len(docs),
            "items": docs,
        }

    # Status

    def set_derived_status(self, internal_id: Any) -> dict[str, Any] | None:
        found = self.resolver.find_by_internal_id(internal_id)
        if found is None:
            return None
        return status_ops.set_derived_status(found.provider, found.document, timeout_s=self._timeout_s())

    def set_direct_status(self, internal_id: Any, status: Any) -> dict[str, Any] | None:
        found = self.resolver.find_by_internal_id(internal_id)
        if found is None:
            return None
        return status_ops.set_direct_status(found.provider, found.document, status, timeout_s=self._timeout_s())

    # Assets

    def update_asset_submit_state(self, internal_id: Any, asset_id: Any, state: Any) -> dict[str, Any] | None:
        found = self.resolver.find_by_internal_id(internal_id)
        if found is None:
            return None
        result = asset_ops.update_asset_submit_state(
            found.provider, found.document, asset_id, state, timeout_s=self._timeout_s()
        )
        if result is None:
            raise AssetNotFound(asset_id)
        return result

    def mark_all_assets_complete(self, internal_id: Any) -> dict[str, Any] | None:
        found = self.resolver.find_by_internal_id(internal_id)
        if found is None:
            return None
        return asset_ops.mark_all_assets_complete(found.provider, found.document, timeout_s=self._timeout_s())

    def assign_asset_ids(self, internal_id: Any, ids_with_pages: Sequence[tuple[Any, Any]]) -> dict[str, Any] | None:
        found = self.resolver.find_by_internal_id(internal_id)
        if found is None:
            return None
        return asset_ops.assign_asset_ids(found.provider, found.document, ids_with_pages, timeout_s=self._timeout_s())

    def apply_common_asset_fields(
        self,
        external_id: str,
        fields: dict[str, Any],
        *,
        office_id: str | None = None,
    ) -> dict[str, Any] | None:
        found = self.resolver.find_by_external_id_in_scope(external_id, office_id)
        if found is None:
            return None
        result = asset_ops.apply_common_asset_fields(
            found.provider, found.document, fields, timeout_s=self._timeout_s()
        )
        return {"provider": found.provider.name, "_id": found.document.get("_id"), **result}

    # Feed

    def list_feed(
        self,
        owner_id: str,
        *,
        scope_id: str | None = None,
        filters: FeedFilters | None = None,
        page: int = 1,
        limit: int | None = None,
        strategy: str | None = None,
    ) -> dict[str, Any]:
        return self.feed.list_feed(
            owner_id,
            scope_id=scope_id,
            filters=filters,
            page=page,
            limit=limit,
            strategy=strategy,
            deadline=Deadline.after(self._timeout_s()),
        )

    def latest_report(
        self,
        owner_id: str,
        *,
        scope_id: str | None = None,
        filters: FeedFilters | None = None,
    ) -> dict[str, Any] | None:
        return self.feed.latest_report(owner_id, scope_id=scope_id, filters=filters)


def create_memory_service(settings: HubSettings | None = None) -> ReportService:
    database = InMemoryDatabase()
    return ReportService(build_default_registry(database.collection), settings=settings, database=database)


def _postgres_collection_factory(settings: HubSettings) -> Callable[[str], ReportCollection]:
    runner = PostgresTxRunner(settings.postgres_dsn)

    def table_for(coll: str) -> str:
        return f"{settings.table_prefix}{coll}"

    def collection_for(coll: str) -> ReportCollection:
        return PostgresCollection(tx_runner=runner, name=coll, table_for=table_for)

    return collection_for


def create_service_from_env(environ: Mapping[str, str] | None = None) -> ReportService:
    env = os.environ if environ is None else environ
    settings = HubSettings.from_env(env)
    if true_stack_required(env) and settings.store_backend != "postgres":
        raise RuntimeError("REPORTHUB_STORE_BACKEND must be postgres when REPORTHUB_REQUIRE_TRUESTACK=true")
    if settings.store_backend == "postgres":
        if not settings.postgres_dsn:
            raise ValueError("POSTGRES_DSN must be set when REPORTHUB_STORE_BACKEND=postgres")
        registry = build_default_registry(_postgres_collection_factory(settings))
        logger.info("report_service_ready backend=postgres registry_version=%s", registry.version)
        return ReportService(registry, settings=settings)
    if settings.store_backend != "memory":
        raise ValueError(f"unsupported REPORTHUB_STORE_BACKEND: {settings.store_backend}")
    return create_memory_service(settings)


service = create_service_from_env()
