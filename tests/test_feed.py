from __future__ import annotations

from datetime import datetime, timezone

import pytest

from reporthub.errors import ProviderFailure
from reporthub.feed import FeedService
from reporthub.identifiers import new_internal_id
from reporthub.pipeline import FeedFilters
from reporthub.providers import Provider, ProviderRegistry
from reporthub.repositories import InMemoryDatabase

STRATEGIES = ["fanout", "pipeline"]


def _t(hour: int) -> datetime:
    return datetime(2024, 5, 1, hour, tzinfo=timezone.utc)


def _seed_three(registry):
    a = registry.get("duplicate_reports").collection
    b = registry.get("multi_approach_reports").collection
    docs = {
        "t1": a.insert_one({"report_id": "A-1", "user_id": "u1", "createdAt": _t(1)}),
        "t3": a.insert_one({"report_id": "A-3", "user_id": "u1", "createdAt": _t(3)}),
        "t2": b.insert_one({"report_id": "B-2", "userId": "u1", "createdAt": _t(2)}),
    }
    a.insert_one({"report_id": "A-9", "user_id": "u2", "createdAt": _t(9)})
    return docs


def _keys(result):
    return [(row["provider"], row["_id"]) for row in result["items"]]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_feed_merges_providers_newest_first(registry, strategy):
    docs = _seed_three(registry)
    feed = FeedService(registry)

    page1 = feed.list_feed("u1", page=1, limit=2, strategy=strategy)
    page2 = feed.list_feed("u1", page=2, limit=2, strategy=strategy)

    assert _keys(page1) == [
        ("duplicate_reports", docs["t3"]["_id"]),
        ("multi_approach_reports", docs["t2"]["_id"]),
    ]
    assert _keys(page2) == [("duplicate_reports", docs["t1"]["_id"])]
    assert page1["items"][0]["report_id"] == "A-3"
    assert page1["items"][1]["owner_id"] == "u1"
    assert page1["items"][1]["provider_label"] == "Multi Excel Upload"
    assert page1["strategy"] == strategy


def test_pipeline_total_is_exact(registry):
    _seed_three(registry)
    result = FeedService(registry).list_feed("u1", page=1, limit=2, strategy="pipeline")
    assert result["total"] == 3
    assert result["exact"] is True


def test_fanout_total_is_approximate_loaded_count(registry):
    _seed_three(registry)
    result = FeedService(registry, fanout_slack=0).list_feed("u1", page=1, limit=2, strategy="fanout")
    assert result["exact"] is False
    assert result["total"] >= len(result["items"])
    assert result["omitted_providers"] == []


def test_fanout_cap_grows_with_page_depth(registry):
    feed = FeedService(registry, fanout_slack=5)
    assert feed.fanout_cap(skip=0, limit=12) == 2 + 5
    assert feed.fanout_cap(skip=24, limit=12) == 24 + 2 + 5


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_ordering_falls_back_to_updated_at_then_internal_id(registry, strategy):
    reports = registry.get("reports").collection
    by_id = reports.insert_one({"_id": new_internal_id(at=_t(5)), "user_id": "u1"})
    by_updated = reports.insert_one({"user_id": "u1", "updatedAt": _t(4)})
    by_created = reports.insert_one({"user_id": "u1", "createdAt": _t(6), "updatedAt": _t(1)})

    result = FeedService(registry).list_feed("u1", limit=10, strategy=strategy)

    assert [row["_id"] for row in result["items"]] == [by_created["_id"], by_id["_id"], by_updated["_id"]]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_equal_creation_times_break_ties_by_internal_id_descending(registry, strategy):
    reports = registry.get("reports").collection
    low = reports.insert_one({"_id": "665f1c2a9b1e8a0000000001", "user_id": "u1", "createdAt": _t(2)})
    high = reports.insert_one({"_id": "665f1c2a9b1e8a0000000002", "user_id": "u1", "createdAt": _t(2)})

    result = FeedService(registry).list_feed("u1", strategy=strategy)

    assert [row["_id"] for row in result["items"]] == [high["_id"], low["_id"]]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_scope_filters_only_when_supplied(registry, strategy):
    reports = registry.get("reports").collection
    reports.insert_one({"user_id": "u1", "company_office_id": "office-1", "createdAt": _t(1)})
    reports.insert_one({"user_id": "u1", "company_office_id": "office-2", "createdAt": _t(2)})
    feed = FeedService(registry)

    scoped = feed.list_feed("u1", scope_id="office-1", strategy=strategy)
    assert [row["scope_id"] for row in scoped["items"]] == ["office-1"]
    assert len(feed.list_feed("u1", strategy=strategy)["items"]) == 2


def test_page_and_limit_are_normalized(registry):
    feed = FeedService(registry, default_limit=20, max_limit=100)
    result = feed.list_feed("u1", page=0, limit=1000, strategy="fanout")
    assert (result["page"], result["limit"]) == (1, 100)
    assert feed.list_feed("u1")["limit"] == 20


def test_unknown_strategy_is_rejected(registry):
    with pytest.raises(ValueError, match="unknown feed strategy"):
        FeedService(registry).list_feed("u1", strategy="merge")


class _BrokenCollection:
    name = "broken"

    def find_many(self, filter, *, skip=0, limit=None, sort=None, timeout_s=None):
        raise RuntimeError("shard unavailable")

    def aggregate(self, stages, *, timeout_s=None):
        raise RuntimeError("shard unavailable")


def _registry_with_broken_provider(first: str):
    healthy = InMemoryDatabase().collection("healthy")
    healthy.insert_one({"user_id": "u1", "createdAt": _t(1)})
    providers = {
        "healthy": Provider(name="healthy", label="Healthy", collection=healthy),
        "broken": Provider(name="broken", label="Broken", collection=_BrokenCollection()),
    }
    order = [first] + [name for name in providers if name != first]
    return ProviderRegistry([providers[name] for name in order])


def test_fanout_omits_failed_provider_and_reports_it():
    feed = FeedService(_registry_with_broken_provider("broken"))
    result = feed.list_feed("u1", strategy="fanout")
    assert result["omitted_providers"] == ["broken"]
    assert [row["provider"] for row in result["items"]] == ["healthy"]


def test_pipeline_failure_surfaces_as_provider_failure():
    feed = FeedService(_registry_with_broken_provider("broken"))
    with pytest.raises(ProviderFailure) as exc_info:
        feed.list_feed("u1", strategy="pipeline")
    assert exc_info.value.provider == "broken"


def test_latest_report_picks_newest_across_providers(registry):
    docs = _seed_three(registry)
    latest = FeedService(registry).latest_report("u1")
    assert latest["_id"] == docs["t3"]["_id"]
    assert latest["provider"] == "duplicate_reports"
    assert FeedService(registry).latest_report("nobody") is None


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_newest_row_without_created_at_survives_provider_cap(registry, strategy):
    reports = registry.get("duplicate_reports").collection
    for day in range(1, 9):
        created = datetime(2020, 1, day, tzinfo=timezone.utc)
        reports.insert_one({"report_id": f"R{day}", "user_id": "u1", "createdAt": created})
    reports.insert_one({"report_id": "NEW", "user_id": "u1", "updatedAt": datetime(2025, 1, 1, tzinfo=timezone.utc)})
    feed = FeedService(registry, fanout_slack=2)
    assert feed.fanout_cap(skip=0, limit=2) < 9

    result = feed.list_feed("u1", page=1, limit=2, strategy=strategy)

    assert [row["report_id"] for row in result["items"]] == ["NEW", "R8"]
    assert feed.latest_report("u1")["report_id"] == "NEW"


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_iso_text_and_datetime_creation_times_order_together(registry, strategy):
    reports = registry.get("reports").collection
    for hour in range(1, 6):
        reports.insert_one({"report_id": f"D{hour}", "user_id": "u1", "createdAt": _t(hour)})
    reports.insert_one({"report_id": "S", "user_id": "u1", "createdAt": "2024-05-01T08:30:00Z"})
    reports.insert_one({"report_id": "S-old", "user_id": "u1", "createdAt": "2024-05-01T00:30:00+00:00"})

    result = FeedService(registry, fanout_slack=2).list_feed("u1", page=1, limit=3, strategy=strategy)

    assert [row["report_id"] for row in result["items"]] == ["S", "D5", "D4"]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_camel_case_owner_and_report_id_appear_in_feed(registry, strategy):
    reports = registry.get("reports").collection
    reports.insert_one({"reportId": "R-9", "userId": "u1", "createdAt": _t(1)})

    result = FeedService(registry).list_feed("u1", strategy=strategy)

    assert [(row["report_id"], row["owner_id"]) for row in result["items"]] == [("R-9", "u1")]


def _seed_offices_and_statuses(registry):
    reports = registry.get("reports").collection
    reports.insert_one({"report_id": "OFF", "user_id": "u1", "company_office_id": "office-1", "createdAt": _t(5)})
    reports.insert_one({"report_id": "NONE", "user_id": "u1", "report_status": "SENT", "createdAt": _t(4)})
    reports.insert_one({"report_id": "NULL", "user_id": "u1", "company_office_id": None, "createdAt": _t(3)})
    empty = {"report_id": "EMPTY", "user_id": "u1", "company_office_id": ""}
    reports.insert_one({**empty, "report_status": "CONFIRMED", "createdAt": _t(2)})


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_unassigned_filter_keeps_reports_without_office(registry, strategy):
    _seed_offices_and_statuses(registry)
    feed = FeedService(registry)

    result = feed.list_feed("u1", scope_id="office-1", filters=FeedFilters(unassigned=True), strategy=strategy)

    assert [row["report_id"] for row in result["items"]] == ["NONE", "NULL", "EMPTY"]


@pytest.mark.parametrize("strategy", STRATEGIES)
def test_status_filters_include_and_exclude(registry, strategy):
    _seed_offices_and_statuses(registry)
    feed = FeedService(registry)

    sent = feed.list_feed("u1", filters=FeedFilters(report_status="SENT"), strategy=strategy)
    open_reports = feed.list_feed("u1", filters=FeedFilters(exclude_statuses=("SENT", "CONFIRMED")), strategy=strategy)

    assert [row["report_id"] for row in sent["items"]] == ["NONE"]
    assert [row["report_id"] for row in open_reports["items"]] == ["OFF", "NULL"]
