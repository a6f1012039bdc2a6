"""Tests for settings loading (YAML + env)."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from asset_ingest.core.config import load_env_if_present, load_settings
from asset_ingest.core.errors import ConfigError


def test_bundled_defaults_load() -> None:
    settings = load_settings(use_env=False)

    assert settings.rate_limit.max_requests == 10
    assert settings.rate_limit.min_delay_seconds == 2
    assert settings.retry.max_attempts == 3
    assert "status" in settings.rate_limit_overrides
    assert settings.resolver.young_asset_threshold == timedelta(minutes=5)
    assert settings.credential is None


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    cfg = tmp_path / "ingest.yaml"
    cfg.write_text("rate_limit:\n  max_requests: 4\nretry:\n  max_attempts: 2\n", encoding="utf-8")
    monkeypatch.setenv("AIN_RATE_LIMIT_MAX_REQUESTS", "7")
    monkeypatch.setenv("AIN_CREDENTIAL", "secret-token")

    settings = load_settings(cfg)

    assert settings.rate_limit.max_requests == 7
    assert settings.retry.max_attempts == 2
    assert settings.credential.get_secret_value() == "secret-token"
    assert "secret-token" not in repr(settings)


def test_policies_are_built_per_key(tmp_path: Path) -> None:
    cfg = tmp_path / "ingest.yaml"
    cfg.write_text(
        "rate_limit_overrides:\n  status:\n    max_requests: 30\n    min_delay_seconds: 0\n",
        encoding="utf-8",
    )

    default, overrides = load_settings(cfg, use_env=False).rate_limit_policies()

    assert default.max_requests == 10
    assert overrides["status"].max_requests == 30


def test_invalid_values_raise_config_error(tmp_path: Path) -> None:
    cfg = tmp_path / "ingest.yaml"
    cfg.write_text("rate_limit:\n  max_requests: 0\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(cfg, use_env=False)


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    cfg = tmp_path / "ingest.yaml"
    cfg.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_settings(cfg, use_env=False)


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "nope.yaml", use_env=False)


def test_env_file_does_not_override_existing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("AIN_TEST_A='from-file'\nAIN_TEST_B=from-file\n# comment\n", encoding="utf-8")
    monkeypatch.setenv("AIN_TEST_B", "from-env")
    monkeypatch.delenv("AIN_TEST_A", raising=False)

    load_env_if_present(search_dirs=[tmp_path])

    assert os.environ["AIN_TEST_A"] == "from-file"
    assert os.environ["AIN_TEST_B"] == "from-env"
    monkeypatch.delenv("AIN_TEST_A")
