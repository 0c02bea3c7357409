"""
Tests for engine settings, logging setup and the Redis client factory.

CHANGELOG:
- 2026-03-02: INTEGRATION_MAX_GAP_S validation
- 2026-02-27: LATEST_REJECT_OUT_OF_ORDER default
- 2026-02-20: Initial creation

TODO:
- None
"""

import json
import logging

import pytest
from pydantic import ValidationError as SettingsError

from telemetry_engine.cache.redis_client import create_redis
from telemetry_engine.config import EngineSettings, get_settings
from telemetry_engine.logging_setup import JsonFormatter, configure_logging


class TestEngineSettings:
    """Environment-driven configuration."""

    def test_defaults(self) -> None:
        settings = get_settings()
        assert settings.database_url == "sqlite+aiosqlite:///:memory:"
        assert settings.redis_key_prefix == ""
        assert settings.raw_retention_days == 14
        assert settings.agg_5m_retention_days == 180
        assert settings.agg_1d_retention_days == 0
        assert settings.latest_reject_out_of_order is True
        assert settings.integration_max_gap_s == 900
        assert settings.max_observations_per_request == 5000
        assert settings.log_level == "INFO"

    def test_settings_are_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RAW_RETENTION_DAYS", "3")
        monkeypatch.setenv("LATEST_REJECT_OUT_OF_ORDER", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.raw_retention_days == 3
        assert settings.latest_reject_out_of_order is False
        assert settings.log_level == "DEBUG"

    def test_database_url_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL")
        with pytest.raises(SettingsError):
            EngineSettings(_env_file=None)

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("raw_retention_days", 0),
            ("agg_5m_retention_days", 0),
            ("agg_1d_retention_days", -1),
            ("integration_max_gap_s", 299),
            ("max_observations_per_request", 0),
            ("max_observations_per_request", 100_001),
            ("log_level", "LOUD"),
        ],
    )
    def test_rejects_invalid_values(self, field: str, value: object) -> None:
        with pytest.raises(SettingsError):
            EngineSettings(**{field: value})


class TestLogging:
    """JSON log output."""

    def test_json_formatter(self) -> None:
        record = logging.LogRecord(
            "telemetry_engine.test", logging.INFO, __file__, 1, "rows=%d", (3,), None
        )
        entry = json.loads(JsonFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "telemetry_engine.test"
        assert entry["msg"] == "rows=3"
        assert "ts" in entry

    def test_configure_logging_sets_level(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging("WARNING")
            assert root.level == logging.WARNING
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestRedisClient:
    """Redis client factory."""

    def test_requires_url(self) -> None:
        with pytest.raises(RuntimeError):
            create_redis("")

    def test_decodes_responses(self) -> None:
        client = create_redis("redis://localhost:6379/0")
        assert client.connection_pool.connection_kwargs["decode_responses"] is True
