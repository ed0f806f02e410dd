"""Internal identifier handling.

Internal ids are ObjectId-shaped: 24 lowercase hex characters whose first
eight characters encode the creation second (big-endian UNIX time).
"""

from __future__ import annotations

import itertools
import os
import re
import threading
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from reporthub.errors import InvalidIdentifier

_HEX_ID_RE = re.compile(r"[0-9a-f]{24}")
_WRAPPED_RE = re.compile(r"""ObjectId\(\s*['"]?([0-9A-Fa-f]{24})['"]?\s*\)""")

_counter = itertools.count(int.from_bytes(os.urandom(3), "big"))
_counter_lock = threading.Lock()
_process_tag = os.urandom(5)


def is_internal_id(value: Any) -> bool:
    return isinstance(value, str) and _HEX_ID_RE.fullmatch(value) is not None


def coerce_internal_id(value: Any) -> str:
    """Return the canonical form of *value* or raise ``InvalidIdentifier``."""
    if is_internal_id(value):
        return value
    if isinstance(value, Mapping) and "$oid" in value:
        return coerce_internal_id(value["$oid"])
    if isinstance(value, (bytes, bytearray)) and len(value) == 12:
        return bytes(value).hex()
    if isinstance(value, str):
        raw = value.strip()
        wrapped = _WRAPPED_RE.fullmatch(raw)
        if wrapped:
            raw = wrapped.group(1)
        raw = raw.lower()
        if _HEX_ID_RE.fullmatch(raw):
            return raw
    raise InvalidIdentifier(value)


def new_internal_id(*, at: datetime | None = None) -> str:
    seconds = int(at.timestamp()) if at is not None else int(time.time())
    with _counter_lock:
        count = next(_counter) & 0xFFFFFF
    return (
        seconds.to_bytes(4, "big")
        + _process_tag
        + count.to_bytes(3, "big")
    ).hex()


def internal_id_timestamp(value: str) -> datetime:
    """Creation instant encoded in an internal id."""
    canonical = coerce_internal_id(value)
    return datetime.fromtimestamp(int(canonical[:8], 16), tz=UTC)
