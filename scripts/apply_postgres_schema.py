#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from reporthub.db.postgres import PostgresSchemaManager
from reporthub.providers import DEFAULT_PROVIDER_SPECS


def main() -> int:
    parser = argparse.ArgumentParser(description="Create PostgreSQL tables and indexes for every report provider")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument(
        "--table-prefix",
        default=os.getenv("REPORTHUB_TABLE_PREFIX", ""),
        help="prefix prepended to each provider collection name",
    )
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    tables = [f"{args.table_prefix.strip()}{coll}" for _, _, coll, _ in DEFAULT_PROVIDER_SPECS]
    applied = PostgresSchemaManager(dsn, tables=tables).apply()
    print(json.dumps({"applied_tables": applied, "count": len(applied)}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
