from __future__ import annotations

import pytest

from utils.settings import load_settings


def test_defaults_without_environment(monkeypatch) -> None:
    for name in (
        "RENEWLAB_MONTE_CARLO_TRIALS",
        "RENEWLAB_EAR_CONCURRENCY",
        "RENEWLAB_EAR_MAX_WORKERS",
        "RENEWLAB_CORS_ORIGINS",
        "RENEWLAB_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()
    assert settings.monte_carlo_trials == 1000
    assert settings.ear_concurrency is None
    assert settings.ear_max_workers is None
    assert settings.cors_origins == ["*"]
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("RENEWLAB_MONTE_CARLO_TRIALS", "250")
    monkeypatch.setenv("RENEWLAB_EAR_CONCURRENCY", "Thread")
    monkeypatch.setenv("RENEWLAB_EAR_MAX_WORKERS", "3")
    monkeypatch.setenv("RENEWLAB_CORS_ORIGINS", "http://localhost:3000, https://app.example.com")
    monkeypatch.setenv("RENEWLAB_LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.monte_carlo_trials == 250
    assert settings.ear_concurrency == "thread"
    assert settings.ear_max_workers == 3
    assert settings.cors_origins == ["http://localhost:3000", "https://app.example.com"]
    assert settings.log_level == "DEBUG"


def test_invalid_environment_values(monkeypatch) -> None:
    monkeypatch.setenv("RENEWLAB_EAR_CONCURRENCY", "process")
    with pytest.raises(ValueError):
        load_settings()
    monkeypatch.setenv("RENEWLAB_EAR_CONCURRENCY", "none")
    monkeypatch.setenv("RENEWLAB_MONTE_CARLO_TRIALS", "many")
    with pytest.raises(ValueError):
        load_settings()
