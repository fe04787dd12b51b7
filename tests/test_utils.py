import logging

import pytest

from shared.config import ServiceConfig
from shared.utils import config, ensure_directory, new_id, sanitize_filename, setup_logging, truncate, utc_now


def test_config_env_loading() -> None:
    # Keys should resolve even when not explicitly configured
    assert config.get("heygen_api_key") in (None, "") or isinstance(config.get("heygen_api_key"), str)
    assert isinstance(config.get("redis_url"), str)
    allowed_origins = config.get("allowed_origins")
    assert isinstance(allowed_origins, list)
    assert config.get("missing_key", "fallback") == "fallback"


def test_pipeline_values_from_yaml() -> None:
    assert config.get_pipeline_value("orchestration.defaults.max_concurrent") == 5
    assert config.get_pipeline_value("webhooks.queue_key") == "webhook_events:pending"
    assert config.get_pipeline_value("orchestration.nope.max_concurrent", 7) == 7
    assert config.get_pipeline_section("providers.heygen")["auth_header"] == "X-Api-Key"
    assert config.get_pipeline_section("providers.missing") == {}


def test_pipeline_env_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIPELINE_FLAG_WEBHOOKS_MAX_RETRIES", "9")
    monkeypatch.setenv("PIPELINE_FLAG_ORCHESTRATION_DEFAULTS_PARALLEL_ENABLED", "false")
    monkeypatch.setenv("PIPELINE_FLAG_WEBHOOKS_BACKOFF_BASE_SECONDS", "0.5")

    assert config.get_pipeline_value("webhooks.max_retries") == 9
    assert config.get_pipeline_value("orchestration.defaults.parallel_enabled") is False
    assert config.get_pipeline_value("webhooks.backoff_base_seconds") == 0.5


def test_missing_pipeline_file(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setenv("PIPELINE_CONFIG_PATH", str(tmp_path / "absent.yaml"))
    fresh = ServiceConfig()
    assert fresh.pipeline_config == {}
    assert fresh.get_pipeline_value("registry.max_errors", 50) == 50


def test_setup_logging_is_idempotent() -> None:
    logger = setup_logging("test-service", "DEBUG")
    again = setup_logging("test-service", "DEBUG")
    assert logger is again
    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG


def test_sanitize_filename() -> None:
    fname = "bad:file/name?.mp4"
    safe = sanitize_filename(fname)
    assert ":" not in safe and "/" not in safe and "?" not in safe


def test_truncate() -> None:
    assert truncate("short") == "short"
    clipped = truncate("x" * 600)
    assert len(clipped) == 500
    assert clipped.endswith("...")


def test_ids_and_timestamps(tmp_path) -> None:
    assert new_id() != new_id()
    assert utc_now().tzinfo is not None
    target = tmp_path / "a" / "b"
    ensure_directory(str(target))
    assert target.is_dir()
