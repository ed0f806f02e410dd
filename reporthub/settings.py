from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

FEED_STRATEGIES = ("fanout", "pipeline")


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    return _as_bool(raw)


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return _as_bool(env.get("REPORTHUB_REQUIRE_TRUESTACK", "false"))


@dataclass
class HubSettings:
    store_backend: str
    postgres_dsn: str
    table_prefix: str
    feed_strategy: str
    fanout_slack: int
    feed_default_limit: int
    feed_max_limit: int
    provider_timeout_ms: int
    ambiguity_check: bool

    @property
    def provider_timeout_s(self) -> float:
        return self.provider_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "HubSettings":
        env = os.environ if environ is None else environ
        strategy = env.get("REPORTHUB_FEED_STRATEGY", "pipeline").strip().lower() or "pipeline"
        if strategy not in FEED_STRATEGIES:
            raise ValueError(f"REPORTHUB_FEED_STRATEGY must be one of {', '.join(FEED_STRATEGIES)}")
        max_limit = _env_int(env, "REPORTHUB_FEED_MAX_LIMIT", default=100, minimum=1)
        return cls(
            store_backend=env.get("REPORTHUB_STORE_BACKEND", "memory").strip().lower() or "memory",
            postgres_dsn=env.get("POSTGRES_DSN", "").strip(),
            table_prefix=env.get("REPORTHUB_TABLE_PREFIX", "").strip(),
            feed_strategy=strategy,
            fanout_slack=_env_int(env, "REPORTHUB_FEED_FANOUT_SLACK", default=5, minimum=0),
            feed_default_limit=min(
                _env_int(env, "REPORTHUB_FEED_DEFAULT_LIMIT", default=20, minimum=1),
                max_limit,
            ),
            feed_max_limit=max_limit,
            provider_timeout_ms=_env_int(env, "REPORTHUB_PROVIDER_TIMEOUT_MS", default=5000, minimum=1),
            ambiguity_check=_env_bool(env, "REPORTHUB_AMBIGUITY_CHECK", False),
        )
