from __future__ import annotations

import copy
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from reporthub.errors import InvalidIdentifier
from reporthub.identifiers import internal_id_timestamp

_MISSING = object()
_EPOCH = datetime.fromtimestamp(0, tz=UTC)


def get_path(document: Any, path: str, default: Any = None) -> Any:
    current = document
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def has_path(document: Any, path: str) -> bool:
    return get_path(document, path, _MISSING) is not _MISSING


def set_path(document: dict[str, Any], path: str, value: Any) -> bool:
    """Set *path* to *value*, creating intermediate objects. Returns True on change."""
    parts = path.split(".")
    current: Any = document
    for part in parts[:-1]:
        if isinstance(current, list) and part.isdigit():
            index = int(part)
            while len(current) <= index:
                current.append({})
            current = current[index]
            continue
        nxt = current.get(part)
        if not isinstance(nxt, (dict, list)):
            nxt = {}
            current[part] = nxt
        current = nxt
    last = parts[-1]
    if isinstance(current, list) and last.isdigit():
        index = int(last)
        while len(current) <= index:
            current.append(None)
        if current[index] == value and type(current[index]) is type(value):
            return False
        current[index] = copy.deepcopy(value)
        return True
    if last in current and current[last] == value and type(current[last]) is type(value):
        return False
    current[last] = copy.deepcopy(value)
    return True


def first_present(document: dict[str, Any], fields: Iterable[str]) -> Any:
    for field in fields:
        value = get_path(document, field)
        if value is not None:
            return value
    return None


def loose_text(value: Any) -> str | None:
    """Text form used for loose scalar equality across backends."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return to_utc(value).isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_instant(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(float(value), tz=UTC)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(raw))
        except ValueError:
            return None
    return None


def ordering_instant(document: dict[str, Any]) -> datetime:
    """createdAt, then updatedAt, then the instant encoded in ``_id``."""
    for field in ("createdAt", "updatedAt"):
        instant = parse_instant(document.get(field))
        if instant is not None:
            return instant
    try:
        return internal_id_timestamp(document.get("_id"))
    except InvalidIdentifier:
        return _EPOCH


def ordering_key(document: dict[str, Any]) -> tuple[datetime, str]:
    return ordering_instant(document), str(document.get("_id") or "")
