from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from reporthub.documents import get_path, has_path, loose_text, parse_instant, set_path, to_utc
from reporthub.errors import InvalidIdentifier
from reporthub.identifiers import coerce_internal_id, internal_id_timestamp, new_internal_id
from reporthub.repositories.base import Filter, SortSpec


def _candidates(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    return [value]


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is None
    expected_text = loose_text(expected)
    return any(loose_text(item) == expected_text for item in _candidates(value))


def _match_operators(document: dict[str, Any], path: str, clause: dict[str, Any]) -> bool:
    value = get_path(document, path)
    for op, operand in clause.items():
        if op == "$in":
            if not any(_equals(value, item) for item in operand):
                return False
        elif op == "$nin":
            if any(_equals(value, item) for item in operand):
                return False
        elif op == "$ne":
            if _equals(value, operand):
                return False
        elif op == "$exists":
            if has_path(document, path) != bool(operand):
                return False
        else:
            raise ValueError(f"unsupported filter operator: {op}")
    return True


def matches(document: dict[str, Any], filter: Filter) -> bool:
    for key, clause in filter.items():
        if key == "$or":
            if not any(matches(document, sub) for sub in clause):
                return False
        elif key == "$and":
            if not all(matches(document, sub) for sub in clause):
                return False
        elif isinstance(clause, dict) and clause and all(str(k).startswith("$") for k in clause):
            if not _match_operators(document, key, clause):
                return False
        elif not _equals(get_path(document, key), clause):
            return False
    return True


def _sort_value(value: Any) -> tuple[int, Any]:
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (4, value)
    if isinstance(value, (int, float)):
        return (1, float(value))
    if isinstance(value, str):
        # ISO instants order with datetimes, as their JSONB text does in Postgres
        instant = parse_instant(value)
        return (2, value) if instant is None else (3, instant)
    if isinstance(value, datetime):
        return (3, to_utc(value))
    return (2, str(value))


def sort_rows(rows: list[dict[str, Any]], sort: Iterable[tuple[str, int]]) -> list[dict[str, Any]]:
    ordered = list(rows)
    for field, direction in reversed(list(sort)):
        ordered.sort(key=lambda row: _sort_value(get_path(row, field)), reverse=direction < 0)
    return ordered


def _to_date(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str):
        try:
            return internal_id_timestamp(value)
        except InvalidIdentifier:
            return parse_instant(value)
    return parse_instant(value)


def evaluate(expr: Any, row: dict[str, Any]) -> Any:
    if isinstance(expr, str):
        if expr == "$$ROOT":
            return copy.deepcopy(row)
        if expr.startswith("$"):
            return copy.deepcopy(get_path(row, expr[1:]))
        return expr
    if isinstance(expr, dict) and len(expr) == 1:
        op, operand = next(iter(expr.items()))
        if op == "$literal":
            return operand
        if op == "$ifNull":
            for item in operand:
                value = evaluate(item, row)
                if value is not None:
                    return value
            return None
        if op == "$toDate":
            return _to_date(evaluate(operand, row))
        if op.startswith("$"):
            raise ValueError(f"unsupported expression operator: {op}")
    return expr


def project(row: dict[str, Any], clause: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if clause.get("_id", 1) not in (0, False) and "_id" in row:
        out["_id"] = row["_id"]
    for field, rule in clause.items():
        if field == "_id":
            continue
        if isinstance(rule, (bool, int)):
            if rule and has_path(row, field):
                out[field] = copy.deepcopy(get_path(row, field))
            continue
        out[field] = evaluate(rule, row)
    return out


class InMemoryDatabase:
    """Named in-memory collections sharing one lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._collections: dict[str, InMemoryCollection] = {}

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def collection(self, name: str) -> "InMemoryCollection":
        with self._lock:
            if name not in self._collections:
                self._collections[name] = InMemoryCollection(name, database=self)
            return self._collections[name]

    def reset(self) -> None:
        with self._lock:
            for coll in self._collections.values():
                coll.clear()


class InMemoryCollection:
    def __init__(self, name: str, *, database: InMemoryDatabase | None = None) -> None:
        self.name = name
        self._database = database or InMemoryDatabase()
        self._documents: dict[str, dict[str, Any]] = {}

    def clear(self) -> None:
        with self._database.lock:
            self._documents.clear()

    def insert_one(self, document: dict[str, Any]) -> dict[str, Any]:
        item = copy.deepcopy(document)
        raw_id = item.get("_id")
        item["_id"] = new_internal_id() if raw_id is None else coerce_internal_id(raw_id)
        with self._database.lock:
            if item["_id"] in self._documents:
                raise ValueError(f"duplicate _id in {self.name}: {item['_id']}")
            self._documents[item["_id"]] = item
        return copy.deepcopy(item)

    def find(self, filter: Filter, *, timeout_s: float | None = None) -> dict[str, Any] | None:
        with self._database.lock:
            for doc in self._documents.values():
                if matches(doc, filter):
                    return copy.deepcopy(doc)
        return None

    def find_many(
        self,
        filter: Filter,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
        timeout_s: float | None = None,
    ) -> list[dict[str, Any]]:
        with self._database.lock:
            rows = [copy.deepcopy(doc) for doc in self._documents.values() if matches(doc, filter)]
        if sort:
            rows = sort_rows(rows, sort)
        rows = rows[max(skip, 0) :]
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return rows

    def count(self, filter: Filter, *, timeout_s: float | None = None) -> int:
        with self._database.lock:
            return sum(1 for doc in self._documents.values() if matches(doc, filter))

    def update_many(
        self,
        filter: Filter,
        fields: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> dict[str, int]:
        matched = 0
        modified = 0
        with self._database.lock:
            for doc in self._documents.values():
                if not matches(doc, filter):
                    continue
                matched += 1
                changed = False
                for path, value in fields.items():
                    changed = set_path(doc, path, value) or changed
                if changed:
                    modified += 1
                    if "updatedAt" not in fields:
                        doc["updatedAt"] = datetime.now(UTC)
        return {"matched_count": matched, "modified_count": modified}

    def aggregate(self, stages: list[dict[str, Any]], *, timeout_s: float | None = None) -> list[dict[str, Any]]:
        with self._database.lock:
            rows = [copy.deepcopy(doc) for doc in self._documents.values()]
            return self._run_stages(rows, stages)

    def _run_stages(self, rows: list[dict[str, Any]], stages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for stage in stages:
            if len(stage) != 1:
                raise ValueError(f"pipeline stage must have exactly one operator: {stage}")
            op, clause = next(iter(stage.items()))
            if op == "$match":
                rows = [row for row in rows if matches(row, clause)]
            elif op == "$project":
                rows = [project(row, clause) for row in rows]
            elif op == "$unionWith":
                other = self._database.collection(clause["coll"])
                rows = rows + other.aggregate(list(clause.get("pipeline", [])))
            elif op == "$sort":
                rows = sort_rows(rows, list(clause.items()))
            elif op == "$skip":
                rows = rows[int(clause) :]
            elif op == "$limit":
                rows = rows[: int(clause)]
            elif op == "$count":
                rows = [{clause: len(rows)}]
            elif op == "$facet":
                rows = [{name: self._run_stages(list(rows), sub) for name, sub in clause.items()}]
            else:
                raise ValueError(f"unsupported pipeline stage: {op}")
        return rows
