"""Cross-collection identity resolution.

Lookups scan providers sequentially in registry order and stop at the first
hit. A provider that raises is logged and skipped; the scan continues.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from reporthub.documents import first_present, loose_text
from reporthub.fanout import Deadline
from reporthub.identifiers import coerce_internal_id
from reporthub.providers import Provider, ProviderRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AmbiguousIdentity:
    """Same external id held by providers with different owners. Diagnostic only."""

    external_id: str
    winner: str
    provider: str
    winner_owner: str | None
    owner: str | None


@dataclass
class Resolution:
    provider: Provider
    document: dict[str, Any]
    ambiguities: list[AmbiguousIdentity] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "provider": self.provider.name,
            "provider_label": self.provider.label,
            "document": self.document,
        }
        if self.ambiguities:
            out["ambiguities"] = [
                {"provider": a.provider, "owner": a.owner, "winner_owner": a.winner_owner}
                for a in self.ambiguities
            ]
        return out


class IdentityResolver:
    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        ambiguity_check: bool = False,
        timeout_s: float | None = None,
    ) -> None:
        self.registry = registry
        self.ambiguity_check = ambiguity_check
        self.timeout_s = timeout_s

    def _call(
        self,
        provider: Provider,
        operation: str,
        fn: Callable[[float | None], T],
        deadline: Deadline | None,
    ) -> tuple[bool, T | None]:
        """Run one provider call; ``(False, None)`` when it raised."""
        timeout_s = deadline.remaining() if deadline is not None else self.timeout_s
        try:
            return True, fn(timeout_s)
        except Exception as exc:
            logger.warning(
                "provider_skipped operation=%s provider=%s error=%s",
                operation,
                provider.name,
                exc,
            )
            return False, None

    def find_by_external_id(
        self,
        external_id: str,
        *,
        owner_id: str | None = None,
        deadline: Deadline | None = None,
    ) -> Resolution | None:
        external_id = (external_id or "").strip()
        if not external_id:
            return None
        found: Resolution | None = None
        for provider in self.registry.list_providers():
            query = provider.report_id_filter(external_id)
            if owner_id is not None:
                query = {"$and": [query, provider.owner_filter(owner_id)]}
            ok, doc = self._call(
                provider,
                "find_by_external_id",
                lambda timeout_s, p=provider, q=query: p.collection.find(q, timeout_s=timeout_s),
                deadline,
            )
            if not ok or doc is None:
                continue
            if found is None:
                found = Resolution(provider=provider, document=doc)
                if not self.ambiguity_check:
                    break
                continue
            winner_owner = _owner_text(found.provider, found.document)
            owner = _owner_text(provider, doc)
            if owner != winner_owner:
                ambiguity = AmbiguousIdentity(
                    external_id=external_id,
                    winner=found.provider.name,
                    provider=provider.name,
                    winner_owner=winner_owner,
                    owner=owner,
                )
                logger.warning(
                    "ambiguous_identity report_id=%s winner=%s other=%s winner_owner=%s other_owner=%s",
                    external_id,
                    ambiguity.winner,
                    ambiguity.provider,
                    winner_owner,
                    owner,
                )
                found.ambiguities.append(ambiguity)
        if found is None:
            logger.debug("identity_miss report_id=%s", external_id)
        return found

    def find_by_external_id_in_scope(
        self,
        external_id: str,
        office_id: str | None,
        *,
        deadline: Deadline | None = None,
    ) -> Resolution | None:
        """Office-scoped lookup: per provider, a document in the office wins, else one with no office set."""
        office_id = (office_id or "").strip() or None
        if office_id is None:
            return self.find_by_external_id(external_id, deadline=deadline)
        external_id = (external_id or "").strip()
        if not external_id:
            return None
        for provider in self.registry.list_providers():
            base = provider.report_id_filter(external_id)
            for query in (
                {"$and": [base, provider.scope_filter(office_id)]},
                {"$and": [base, provider.unscoped_filter()]},
            ):
                ok, doc = self._call(
                    provider,
                    "find_by_external_id_in_scope",
                    lambda timeout_s, p=provider, q=query: p.collection.find(q, timeout_s=timeout_s),
                    deadline,
                )
                if ok and doc is not None:
                    return Resolution(provider=provider, document=doc)
        logger.debug("identity_miss report_id=%s office_id=%s", external_id, office_id)
        return None

    def find_by_internal_id(
        self,
        internal_id: Any,
        *,
        deadline: Deadline | None = None,
    ) -> Resolution | None:
        canonical = coerce_internal_id(internal_id)
        for provider in self.registry.list_providers():
            ok, doc = self._call(
                provider,
                "find_by_internal_id",
                lambda timeout_s, p=provider: p.collection.find({"_id": canonical}, timeout_s=timeout_s),
                deadline,
            )
            if ok and doc is not None:
                return Resolution(provider=provider, document=doc)
        logger.debug("identity_miss internal_id=%s", canonical)
        return None

    def find_by_batch_id(
        self,
        batch_id: str,
        *,
        deadline: Deadline | None = None,
    ) -> Provider | None:
        batch_id = (batch_id or "").strip()
        if not batch_id:
            return None
        for provider in self.registry.providers_with_batch_field():
            ok, doc = self._call(
                provider,
                "find_by_batch_id",
                lambda timeout_s, p=provider: p.collection.find(p.batch_filter(batch_id), timeout_s=timeout_s),
                deadline,
            )
            if ok and doc is not None:
                return provider
        logger.debug("identity_miss batch_id=%s", batch_id)
        return None


def _owner_text(provider: Provider, document: dict[str, Any]) -> str | None:
    return loose_text(first_present(document, provider.owner_field_names))
