from __future__ import annotations

from typing import Any, Protocol

Filter = dict[str, Any]
SortSpec = list[tuple[str, int]]


class ReportCollection(Protocol):
    """Uniform handle over one physical report collection.

    ``timeout_s`` bounds a single call; backends that cannot interrupt work
    server-side may ignore it.
    """

    name: str

    def find(self, filter: Filter, *, timeout_s: float | None = None) -> dict[str, Any] | None: ...

    def find_many(
        self,
        filter: Filter,
        *,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec | None = None,
        timeout_s: float | None = None,
    ) -> list[dict[str, Any]]: ...

    def update_many(
        self,
        filter: Filter,
        fields: dict[str, Any],
        *,
        timeout_s: float | None = None,
    ) -> dict[str, int]: ...

    def aggregate(self, stages: list[dict[str, Any]], *, timeout_s: float | None = None) -> list[dict[str, Any]]: ...

    def count(self, filter: Filter, *, timeout_s: float | None = None) -> int: ...

    def insert_one(self, document: dict[str, Any]) -> dict[str, Any]: ...
