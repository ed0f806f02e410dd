from __future__ import annotations

import logging

import pytest

from reporthub.errors import InvalidIdentifier
from reporthub.providers import Provider, ProviderRegistry
from reporthub.repositories import InMemoryDatabase
from reporthub.resolver import IdentityResolver


def _collections(registry):
    return {p.name: p.collection for p in registry.list_providers()}


def test_unique_external_id_resolves_to_its_provider(registry):
    resolver = IdentityResolver(registry)
    inserted = {}
    for index, provider in enumerate(registry.list_providers()):
        inserted[provider.name] = provider.collection.insert_one({"report_id": f"R-{index}", "user_id": "u1"})

    for index, provider in enumerate(registry.list_providers()):
        found = resolver.find_by_external_id(f"R-{index}")
        assert found is not None
        assert found.provider.name == provider.name
        assert found.document == inserted[provider.name]


def test_duplicate_external_id_returns_first_priority_match_every_time(registry):
    colls = _collections(registry)
    first = colls["duplicate_reports"].insert_one({"report_id": "X", "user_id": "owner-a"})
    colls["multi_approach_reports"].insert_one({"report_id": "X", "userId": "owner-c"})
    resolver = IdentityResolver(registry)

    for _ in range(5):
        found = resolver.find_by_external_id("X")
        assert found.provider.name == "duplicate_reports"
        assert found.document["_id"] == first["_id"]
        assert found.ambiguities == []


def test_ambiguity_check_reports_different_owners_without_changing_result(registry, caplog):
    colls = _collections(registry)
    colls["elrajhi_reports"].insert_one({"report_id": "X", "user_id": "owner-a"})
    colls["multi_approach_reports"].insert_one({"report_id": "X", "userId": "owner-a"})
    colls["reports"].insert_one({"report_id": "X", "user_id": "owner-c"})
    resolver = IdentityResolver(registry, ambiguity_check=True)

    with caplog.at_level(logging.WARNING, logger="reporthub.resolver"):
        found = resolver.find_by_external_id("X")

    assert found.provider.name == "elrajhi_reports"
    assert [(a.provider, a.owner) for a in found.ambiguities] == [("reports", "owner-c")]
    assert "ambiguous_identity" in caplog.text


def test_owner_scoped_lookup_skips_other_owners(registry):
    colls = _collections(registry)
    colls["duplicate_reports"].insert_one({"report_id": "X", "user_id": "someone-else"})
    mine = colls["multi_approach_reports"].insert_one({"report_id": "X", "userId": "u1"})
    resolver = IdentityResolver(registry)

    found = resolver.find_by_external_id("X", owner_id="u1")
    assert found.provider.name == "multi_approach_reports"
    assert found.document["_id"] == mine["_id"]
    assert resolver.find_by_external_id("X", owner_id="nobody") is None


def test_missing_external_id_is_not_found(registry):
    resolver = IdentityResolver(registry)
    assert resolver.find_by_external_id("nope") is None
    assert resolver.find_by_external_id("   ") is None


def test_internal_id_lookup_coerces_loose_forms(registry):
    doc = _collections(registry)["urgent_reports"].insert_one({"report_id": "U-1"})
    resolver = IdentityResolver(registry)

    found = resolver.find_by_internal_id(f'  ObjectId("{doc["_id"].upper()}") ')
    assert found.provider.name == "urgent_reports"
    assert resolver.find_by_internal_id("665f1c2a9b1e8a0012345678") is None
    with pytest.raises(InvalidIdentifier):
        resolver.find_by_internal_id("not-an-id")


def test_batch_lookup_returns_first_provider_holding_the_batch(registry):
    colls = _collections(registry)
    colls["submit_reports_quickly"].insert_one({"batch_id": "B1"})
    colls["urgent_reports"].insert_one({"batch_id": "B1"})
    colls["reports"].insert_one({"batch_id": "B2"})
    resolver = IdentityResolver(registry)

    assert resolver.find_by_batch_id("B1").name == "submit_reports_quickly"
    # reports has no batch field, so its documents are never considered
    assert resolver.find_by_batch_id("B2") is None


class _ExplodingCollection:
    name = "exploding"

    def find(self, filter, *, timeout_s=None):
        raise RuntimeError("connection reset")


def test_failing_provider_is_skipped_with_a_warning(caplog):
    healthy = InMemoryDatabase().collection("healthy")
    doc = healthy.insert_one({"report_id": "R-1"})
    registry = ProviderRegistry(
        [
            Provider(name="broken", label="Broken", collection=_ExplodingCollection()),
            Provider(name="healthy", label="Healthy", collection=healthy),
        ]
    )
    resolver = IdentityResolver(registry)

    with caplog.at_level(logging.WARNING, logger="reporthub.resolver"):
        found = resolver.find_by_external_id("R-1")

    assert found.provider.name == "healthy"
    assert found.document["_id"] == doc["_id"]
    assert "provider_skipped" in caplog.text
    assert "broken" in caplog.text


def test_office_scoped_lookup_prefers_office_then_unscoped(registry):
    reports = _collections(registry)["reports"]
    reports.insert_one({"report_id": "R-9", "company_office_id": "other-office"})
    unscoped = reports.insert_one({"report_id": "R-9"})
    resolver = IdentityResolver(registry)

    assert resolver.find_by_external_id_in_scope("R-9", "office-1").document["_id"] == unscoped["_id"]
    scoped = reports.insert_one({"report_id": "R-9", "company_office_id": "office-1"})
    assert resolver.find_by_external_id_in_scope("R-9", "office-1").document["_id"] == scoped["_id"]
    assert resolver.find_by_external_id_in_scope("R-10", "office-1") is None
