from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


def validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction pinned to UTC with an optional statement timeout."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(
        self,
        *,
        fn: Callable[[Any], Any],
        timeout_s: float | None = None,
    ) -> Any:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT set_config('TimeZone', 'UTC', true)")
                if timeout_s is not None:
                    timeout_ms = max(1, int(timeout_s * 1000))
                    cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(timeout_ms),))
            result = fn(conn)
            conn.commit()
            return result


class PostgresSchemaManager:
    """Create provider tables (id + jsonb payload) and their lookup indexes."""

    def __init__(self, dsn: str, *, tables: list[str] | tuple[str, ...]) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()
        if not tables:
            raise ValueError("tables must not be empty")
        self._tables = [validate_identifier(name) for name in tables]

    def apply(self) -> list[str]:
        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                for table in self._tables:
                    cur.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            id TEXT PRIMARY KEY,
                            payload JSONB NOT NULL
                        )
                        """
                    )
                    cur.execute(f"CREATE INDEX IF NOT EXISTS {table}_payload_gin ON {table} USING GIN (payload)")
                    cur.execute(
                        f"CREATE INDEX IF NOT EXISTS {table}_created_at ON {table} ((payload->>'createdAt') DESC, id DESC)"
                    )
            conn.commit()
        return list(self._tables)
