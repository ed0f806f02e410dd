from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from concurrent.futures import ALL_COMPLETED, FIRST_EXCEPTION, CancelledError, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from reporthub.providers import Provider

T = TypeVar("T")


class Deadline:
    """Absolute expiry on the monotonic clock; ``None`` timeout means unbounded."""

    def __init__(self, timeout_s: float | None) -> None:
        self._expires_at = None if timeout_s is None else time.monotonic() + max(timeout_s, 0.0)

    @classmethod
    def after(cls, timeout_s: float | None) -> "Deadline":
        return cls(timeout_s)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0


@dataclass
class ProviderOutcome(Generic[T]):
    provider: Provider
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, TimeoutError)


def dispatch(
    providers: Sequence[Provider],
    call: Callable[[Provider, float | None], T],
    *,
    deadline: Deadline,
    fail_fast: bool = False,
) -> list[ProviderOutcome[T]]:
    """Run ``call(provider, timeout_s)`` for every provider concurrently.

    Outcomes come back in provider order. Calls still pending when the
    deadline passes (or, with ``fail_fast``, after the first error) are
    cancelled and reported as ``TimeoutError``/``CancelledError`` outcomes.
    """
    if not providers:
        return []
    outcomes: list[ProviderOutcome[T]] = [ProviderOutcome(provider=p) for p in providers]
    executor = ThreadPoolExecutor(max_workers=len(providers), thread_name_prefix="reporthub-fanout")
    try:
        futures = {executor.submit(call, p, deadline.remaining()): i for i, p in enumerate(providers)}
        done, pending = wait(
            futures,
            timeout=deadline.remaining(),
            return_when=FIRST_EXCEPTION if fail_fast else ALL_COMPLETED,
        )
        stopped_on_error = False
        for future in done:
            index = futures[future]
            error = future.exception()
            if error is not None:
                outcomes[index].error = error
                stopped_on_error = True
            else:
                outcomes[index].value = future.result()
        for future in pending:
            future.cancel()
            index = futures[future]
            outcomes[index].error = (
                CancelledError(f"provider {providers[index].name} call cancelled")
                if fail_fast and stopped_on_error
                else TimeoutError(f"provider {providers[index].name} exceeded deadline")
            )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return outcomes


def first_failure(outcomes: Sequence[ProviderOutcome[Any]]) -> ProviderOutcome[Any] | None:
    """First failed outcome in provider order, preferring root causes over cancellations."""
    failed = [o for o in outcomes if not o.ok]
    for outcome in failed:
        if not isinstance(outcome.error, CancelledError):
            return outcome
    return failed[0] if failed else None
