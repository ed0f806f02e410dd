#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from reporthub.ops.feed_consistency import compare_feed_strategies
from reporthub.service import create_service_from_env


def main() -> int:
    parser = argparse.ArgumentParser(description="Compare fan-out and pipeline feed ordering for one owner page")
    parser.add_argument("--owner-id", required=True, help="owner (user) id")
    parser.add_argument("--office-id", default="", help="optional office scope id")
    parser.add_argument("--page", type=int, default=1, help="page number (1-based)")
    parser.add_argument("--limit", type=int, default=0, help="page size; 0 uses the configured default")
    args = parser.parse_args()

    service = create_service_from_env()
    result = compare_feed_strategies(
        service,
        args.owner_id.strip(),
        scope_id=args.office_id.strip() or None,
        page=args.page,
        limit=args.limit or None,
    )
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0 if result["order_matched"] else 2


if __name__ == "__main__":
    raise SystemExit(main())
