from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from reporthub.db.postgres import PostgresTxRunner, validate_identifier
from reporthub.documents import loose_text, to_utc
from reporthub.identifiers import coerce_internal_id, new_internal_id
from reporthub.repositories.base import Filter, SortSpec

_BRANCH_STAGES = {"$match", "$project"}
# strings $toDate casts to timestamptz; any other string maps to NULL
_ISO_INSTANT_RE = (
    r"^\d{4}-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])"
    r"([T ]([01]\d|2[0-3]):[0-5]\d(:[0-5]\d(\.\d+)?)?)?"
    r"(Z|[+-]\d{2}(:?\d{2})?)?$"
)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    return str(value)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, sort_keys=True, default=_json_default)


def _path(field: str) -> list[str]:
    return field.split(".")


@dataclass(frozen=True)
class _Target:
    """SQL expressions addressing a document: payload body, id text and full root."""

    doc: str
    id: str
    root: str


_TABLE = _Target(doc="t.payload", id="t.id", root="(t.payload || jsonb_build_object('_id', t.id))")
_ROW = _Target(doc="s.doc", id="(s.doc->>'_id')", root="s.doc")


def _field_json(field: str, target: _Target, params: list[Any]) -> str:
    if field == "_id":
        return f"to_jsonb({target.id})"
    params.append(_path(field))
    return f"NULLIF({target.doc} #> %s::text[], 'null'::jsonb)"


def _field_text(field: str, target: _Target, params: list[Any]) -> str:
    if field == "_id":
        return target.id
    params.append(_path(field))
    return f"({target.doc} #>> %s::text[])"


def _null_check(field: str, target: _Target, params: list[Any]) -> str:
    return f"({_field_json(field, target, params)} IS NULL)"


def _compile_condition(field: str, expected: Any, target: _Target, params: list[Any]) -> str:
    if isinstance(expected, dict) and expected and all(str(k).startswith("$") for k in expected):
        parts: list[str] = []
        for op, operand in expected.items():
            if op in ("$in", "$nin"):
                texts = [loose_text(x) for x in operand if x is not None]
                clause = f"COALESCE({_field_text(field, target, params)} = ANY(%s::text[]), false)"
                params.append(texts)
                if any(x is None for x in operand):
                    clause = f"({clause} OR {_null_check(field, target, params)})"
                parts.append(clause if op == "$in" else f"NOT {clause}")
            elif op == "$ne":
                if operand is None:
                    parts.append(f"NOT {_null_check(field, target, params)}")
                else:
                    parts.append(f"({_field_text(field, target, params)} IS DISTINCT FROM %s)")
                    params.append(loose_text(operand))
            elif op == "$exists":
                if field == "_id":
                    parts.append("TRUE" if operand else "FALSE")
                    continue
                params.append(_path(field))
                null_sql = "IS NOT NULL" if operand else "IS NULL"
                parts.append(f"({target.doc} #> %s::text[] {null_sql})")
            else:
                raise ValueError(f"unsupported filter operator: {op}")
        return "(" + " AND ".join(parts) + ")"
    if expected is None:
        return _null_check(field, target, params)
    clause = f"({_field_text(field, target, params)} = %s)"
    params.append(loose_text(expected))
    return clause


def compile_filter(filter: Filter, target: _Target, params: list[Any]) -> str:
    if not filter:
        return "TRUE"
    parts: list[str] = []
    for key, clause in filter.items():
        if key in ("$or", "$and"):
            if not clause:
                parts.append("FALSE" if key == "$or" else "TRUE")
                continue
            joiner = " OR " if key == "$or" else " AND "
            parts.append("(" + joiner.join(compile_filter(sub, target, params) for sub in clause) + ")")
        else:
            parts.append(_compile_condition(key, clause, target, params))
    return " AND ".join(parts)


def _compile_order(sort: SortSpec, target: _Target, params: list[Any]) -> str:
    keys: list[str] = []
    for field, direction in sort:
        expr = _field_json(field, target, params)
        keys.append(f"{expr} DESC NULLS LAST" if direction < 0 else f"{expr} ASC NULLS FIRST")
    return ", ".join(keys)


def compile_expression(expr: Any, target: _Target, params: list[Any]) -> str:
    if isinstance(expr, str) and expr.startswith("$"):
        if expr == "$$ROOT":
            return target.root
        return _field_json(expr[1:], target, params)
    if isinstance(expr, dict) and len(expr) == 1:
        op, operand = next(iter(expr.items()))
        if op == "$literal":
            params.append(_dumps(operand))
            return "%s::jsonb"
        if op == "$ifNull":
            return "COALESCE(" + ", ".join(compile_expression(x, target, params) for x in operand) + ")"
        if op == "$toDate":
            inner_params: list[Any] = []
            inner = compile_expression(operand, target, inner_params)
            text = f"({inner} #>> '{{}}')"
            # inner is referenced six times below
            params.extend(inner_params * 6)
            return (
                "to_jsonb(CASE"
                f" WHEN {inner} IS NULL THEN NULL"
                f" WHEN jsonb_typeof({inner}) <> 'string' THEN NULL"
                f" WHEN {text} ~ '^[0-9a-f]{{24}}$'"
                f" THEN to_timestamp(('x' || substr({text}, 1, 8))::bit(32)::bigint)"
                f" WHEN {text} ~ '{_ISO_INSTANT_RE}' THEN {text}::timestamptz"
                " ELSE NULL END)"
            )
        if op.startswith("$"):
            raise ValueError(f"unsupported expression operator: {op}")
    params.append(_dumps(expr))
    return "%s::jsonb"


def compile_projection(clause: dict[str, Any], target: _Target, params: list[Any]) -> str:
    args: list[str] = []
    if clause.get("_id", 1) not in (0, False):
        args.append("'_id', " + f"to_jsonb({target.id})")
    for field, rule in clause.items():
        if field == "_id":
            continue
        if isinstance(rule, (bool, int)):
            if not rule:
                continue
            params.append(field)
            args.append("%s, " + _field_json(field, target, params))
            continue
        params.append(field)
        args.append("%s, " + compile_expression(rule, target, params))
    return "jsonb_build_object(" + ", ".join(args) + ")"


class PostgresCollection:
    """One provider collection stored as ``(id TEXT PRIMARY KEY, payload JSONB)``."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        name: str,
        table_name: str | None = None,
        table_for: Callable[[str], str] | None = None,
    ) -> None:
        self._tx_runner = tx_runner
        self.name = name
        self._table_for = table_for or (lambda coll: coll)
        self._table_name = validate_identifier(table_name or self._table_for(name))

    @property
    def table_name(self) -> str:
        return self._table_name

    def _run(self, fn: Callable[[Any], Any], timeout_s: float | None) -> Any:
        return self._tx_runner.run_in_tx(fn=fn, timeout_s=timeout_s)

    @staticmethod
    def _to_document(row: tuple[Any, ...]) -> dict[str, Any]:
        payload = row[1] if isinstance(row[1], dict) else json.loads(row[1] or "{}")
        return {"_id": row[0], **payload}

    def insert_one(self, document: dict[str, Any]) -> dict[str, Any]:
        item = dict(document)
        raw_id = item.pop("_id", None)
        doc_id = new_internal_id() if raw_id is None else coerce_internal_id(raw_id)
        sql = f"INSERT INTO {self._table_name} (id, payload) VALUES (%s, %s::jsonb)"

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, (doc_id, _dumps(item)))
            return {"_id": doc_id, **item}

        return self._run(_op, None)

    def find(self, filter: Filter, *, timeout_s: float | None = None) -> dict[str, Any] | None:
        params: list[Any] = []
        where = compile_filter(filter, _TABLE, params)
        sql = f"SELECT t.id, t.payload FROM {self._table_name} AS t WHERE {where} ORDER BY t.id LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            return None if row is None else self._to_document(row)

        return self._run(_op, timeout_s)

    def find_many(
        self,
        filter: Filter,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
        timeout_s: float | None = None,
    ) -> list[dict[str, Any]]:
        params: list[Any] = []
        where = compile_filter(filter, _TABLE, params)
        sql = f"SELECT t.id, t.payload FROM {self._table_name} AS t WHERE {where}"
        if sort:
            sql += f" ORDER BY {_compile_order(sort, _TABLE, params)}"
        else:
            sql += " ORDER BY t.id"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(max(limit, 0))
        if skip:
            sql += " OFFSET %s"
            params.append(max(skip, 0))

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [self._to_document(row) for row in rows]

        return self._run(_op, timeout_s)

    def count(self, filter: Filter, *, timeout_s: float | None = None) -> int:
        params: list[Any] = []
        where = compile_filter(filter, _TABLE, params)
        sql = f"SELECT count(*) FROM {self._table_name} AS t WHERE {where}"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._run(_op, timeout_s)

    def update_many(
        self,
        filter: Filter,
        fields: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> dict[str, int]:
        if "_id" in fields:
            raise ValueError("_id cannot be updated")
        params: list[Any] = []
        where = compile_filter(filter, _TABLE, params)
        set_params: list[Any] = []
        new_payload = "t.payload"
        for path, value in fields.items():
            new_payload = f"jsonb_set({new_payload}, %s::text[], %s::jsonb, true)"
            set_params.extend([_path(path), _dumps(value)])
        stamped = new_payload
        if "updatedAt" not in fields:
            stamped = f"jsonb_set({new_payload}, '{{updatedAt}}', to_jsonb(now()), true)"
        sql = f"""
            WITH matched AS (
                SELECT t.id FROM {self._table_name} AS t WHERE {where}
            ),
            updated AS (
                UPDATE {self._table_name} AS t
                SET payload = {stamped}
                WHERE t.id IN (SELECT id FROM matched)
                  AND {new_payload} IS DISTINCT FROM t.payload
                RETURNING t.id
            )
            SELECT (SELECT count(*) FROM matched), (SELECT count(*) FROM updated)
        """
        all_params = params + set_params + set_params

        def _op(conn: Any) -> dict[str, int]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(all_params))
                row = cur.fetchone()
            matched, modified = (int(row[0]), int(row[1])) if row else (0, 0)
            return {"matched_count": matched, "modified_count": modified}

        return self._run(_op, timeout_s)

    def aggregate(self, stages: list[dict[str, Any]], *, timeout_s: float | None = None) -> list[dict[str, Any]]:
        sql, params = self.compile_pipeline(stages)

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [row[0] if isinstance(row[0], dict) else json.loads(row[0]) for row in rows]

        return self._run(_op, timeout_s)

    def _compile_branch(self, table: str, stages: list[dict[str, Any]], params: list[Any]) -> str:
        filters: list[Filter] = []
        projection: dict[str, Any] | None = None
        for stage in stages:
            op, clause = next(iter(stage.items()))
            if op == "$match":
                if projection is not None:
                    raise ValueError("$match after $project is not supported in a branch")
                filters.append(clause)
            elif op == "$project":
                if projection is not None:
                    raise ValueError("only one $project per branch is supported")
                projection = clause
            else:
                raise ValueError(f"unsupported branch stage: {op}")
        select_params: list[Any] = []
        select = _TABLE.root if projection is None else compile_projection(projection, _TABLE, select_params)
        where_params: list[Any] = []
        where = compile_filter({"$and": filters}, _TABLE, where_params) if filters else "TRUE"
        params.extend(select_params + where_params)
        return f"SELECT {select} AS doc FROM {validate_identifier(table)} AS t WHERE {where}"

    def compile_pipeline(self, stages: list[dict[str, Any]]) -> tuple[str, list[Any]]:
        """Compile a union/sort/facet pipeline into one statement returning a ``doc`` column."""
        for stage in stages:
            if len(stage) != 1:
                raise ValueError(f"pipeline stage must have exactly one operator: {stage}")
        index = 0
        head: list[dict[str, Any]] = []
        while index < len(stages) and next(iter(stages[index])) in _BRANCH_STAGES:
            head.append(stages[index])
            index += 1
        params: list[Any] = []
        branches = [self._compile_branch(self._table_name, head, params)]
        while index < len(stages) and next(iter(stages[index])) == "$unionWith":
            clause = stages[index]["$unionWith"]
            table = self._table_for(clause["coll"])
            branches.append(self._compile_branch(table, list(clause.get("pipeline", [])), params))
            index += 1
        relation = (
            "SELECT b.doc, row_number() OVER () AS ord FROM ("
            + " UNION ALL ".join(branches)
            + ") AS b"
        )
        ctes: list[str] = []
        cte_params: list[Any] = []
        relation, params = self._compile_tail(relation, params, stages[index:], ctes, cte_params)
        with_sql = ("WITH " + ", ".join(ctes) + " ") if ctes else ""
        return f"{with_sql}SELECT z.doc FROM ({relation}) AS z ORDER BY z.ord", cte_params + params

    def _compile_tail(
        self,
        relation: str,
        params: list[Any],
        stages: list[dict[str, Any]],
        ctes: list[str],
        cte_params: list[Any],
    ) -> tuple[str, list[Any]]:
        for stage in stages:
            op, clause = next(iter(stage.items()))
            if op == "$match":
                where_params: list[Any] = []
                where = compile_filter(clause, _ROW, where_params)
                relation = f"SELECT s.doc, s.ord FROM ({relation}) AS s WHERE {where}"
                params = params + where_params
            elif op == "$project":
                proj_params: list[Any] = []
                proj = compile_projection(clause, _ROW, proj_params)
                relation = f"SELECT {proj} AS doc, s.ord FROM ({relation}) AS s"
                params = proj_params + params
            elif op == "$sort":
                order_params: list[Any] = []
                order = _compile_order(list(clause.items()), _ROW, order_params)
                relation = f"SELECT s.doc, row_number() OVER (ORDER BY {order}, s.ord) AS ord FROM ({relation}) AS s"
                params = order_params + params
            elif op in ("$skip", "$limit"):
                keyword = "OFFSET" if op == "$skip" else "LIMIT"
                relation = f"SELECT s.doc, s.ord FROM ({relation}) AS s ORDER BY s.ord {keyword} %s"
                params = params + [int(clause)]
            elif op == "$count":
                relation = f"SELECT jsonb_build_object(%s, count(*)) AS doc, 1::bigint AS ord FROM ({relation}) AS s"
                params = [str(clause)] + params
            elif op == "$facet":
                cte_name = f"facet_src_{len(ctes)}"
                ctes.append(f"{cte_name} AS ({relation})")
                cte_params.extend(params)
                args: list[str] = []
                facet_params: list[Any] = []
                for name, sub in clause.items():
                    sub_relation, sub_params = self._compile_tail(
                        f"SELECT src.doc, src.ord FROM {cte_name} AS src", [], sub, ctes, cte_params
                    )
                    args.append(
                        "%s, (SELECT COALESCE(jsonb_agg(f.doc ORDER BY f.ord), '[]'::jsonb) "
                        f"FROM ({sub_relation}) AS f)"
                    )
                    facet_params.extend([name, *sub_params])
                relation = f"SELECT jsonb_build_object({', '.join(args)}) AS doc, 1::bigint AS ord"
                params = facet_params
            else:
                raise ValueError(f"unsupported pipeline stage: {op}")
        return relation, params
