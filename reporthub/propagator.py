from __future__ import annotations

import logging
from typing import Any

from reporthub.errors import ProviderFailure
from reporthub.fanout import Deadline, dispatch, first_failure
from reporthub.providers import ProviderRegistry

logger = logging.getLogger(__name__)


class BatchPropagator:
    """Apply set-to-value updates to every provider exposing a batch field.

    All batch-capable providers are updated concurrently, every time. Any
    provider error or deadline expiry fails the whole call with
    ``ProviderFailure``; the providers that did succeed keep their writes, and
    re-running the same update is safe.
    """

    def __init__(self, registry: ProviderRegistry, *, timeout_s: float | None = None) -> None:
        self.registry = registry
        self.timeout_s = timeout_s

    def apply_batch_update(
        self,
        batch_id: str,
        fields: dict[str, Any],
        *,
        deadline: Deadline | None = None,
    ) -> dict[str, int]:
        batch_id = (batch_id or "").strip()
        if not batch_id:
            raise ValueError("batch_id must not be empty")
        if not fields:
            raise ValueError("fields must not be empty")
        deadline = deadline or Deadline.after(self.timeout_s)
        providers = self.registry.providers_with_batch_field()
        outcomes = dispatch(
            providers,
            lambda p, timeout_s: p.collection.update_many(p.batch_filter(batch_id), fields, timeout_s=timeout_s),
            deadline=deadline,
            fail_fast=True,
        )
        failed = first_failure(outcomes)
        if failed is not None:
            logger.error(
                "batch_update_failed batch_id=%s provider=%s error=%s",
                batch_id,
                failed.provider.name,
                failed.error,
            )
            raise ProviderFailure(
                provider=failed.provider.name,
                operation="apply_batch_update",
                cause=failed.error,
            ) from failed.error
        matched = 0
        modified = 0
        per_provider: list[str] = []
        for outcome in outcomes:
            counts = outcome.value or {}
            matched += int(counts.get("matched_count", 0))
            modified += int(counts.get("modified_count", 0))
            per_provider.append(
                f"{outcome.provider.name}:{counts.get('matched_count', 0)}/{counts.get('modified_count', 0)}"
            )
        logger.info(
            "batch_update_applied batch_id=%s matched=%s modified=%s providers=%s",
            batch_id,
            matched,
            modified,
            ",".join(per_provider),
        )
        return {"matched_count": matched, "modified_count": modified}
