"""Runtime settings read from ``RENEWLAB_*`` environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from utils.defaults import DEFAULT_MONTE_CARLO_TRIALS


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_origins() -> list[str]:
    raw = os.environ.get("RENEWLAB_CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass(frozen=True)
class RuntimeSettings:
    """Process-wide knobs that callers may override through the environment."""

    monte_carlo_trials: int = DEFAULT_MONTE_CARLO_TRIALS
    ear_concurrency: str | None = None
    ear_max_workers: int | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"


def load_settings() -> RuntimeSettings:
    """Build :class:`RuntimeSettings` from the current environment."""

    concurrency = os.environ.get("RENEWLAB_EAR_CONCURRENCY", "").strip().lower() or None
    if concurrency == "none":
        concurrency = None
    if concurrency not in {None, "thread"}:
        raise ValueError("RENEWLAB_EAR_CONCURRENCY must be 'none' or 'thread'")

    return RuntimeSettings(
        monte_carlo_trials=_env_int("RENEWLAB_MONTE_CARLO_TRIALS", DEFAULT_MONTE_CARLO_TRIALS) or DEFAULT_MONTE_CARLO_TRIALS,
        ear_concurrency=concurrency,
        ear_max_workers=_env_int("RENEWLAB_EAR_MAX_WORKERS", None),
        cors_origins=_env_origins(),
        log_level=os.environ.get("RENEWLAB_LOG_LEVEL", "INFO").upper(),
    )


__all__ = ["RuntimeSettings", "load_settings"]
