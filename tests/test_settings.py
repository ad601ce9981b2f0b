"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import DEFAULT_CACHE_MAX_BYTES, MEGABYTE, Settings


def test_defaults_match_the_documented_values() -> None:
    settings = Settings(_env_file=None)

    assert settings.server_port == 3000
    assert settings.catalog_page_size == 100
    assert settings.catalog_page_delay == 2.0
    assert settings.sync_batch_size == 50
    assert settings.sync_freshness_seconds == 3600
    assert settings.cache_max_bytes == DEFAULT_CACHE_MAX_BYTES
    assert settings.cache_max_age_seconds == 7 * 24 * 60 * 60
    assert settings.image_duration_seconds == 8.0
    assert settings.device_heartbeat_ttl_seconds == 30


def test_blank_catalog_token_is_treated_as_missing() -> None:
    """Whitespace-only tokens should not produce an Authorization header."""

    settings = Settings(_env_file=None, CATALOG_API_TOKEN="   ")

    assert settings.catalog_api_token is None


def test_log_level_is_normalised() -> None:
    settings = Settings(_env_file=None, LOG_LEVEL="debug")

    assert settings.log_level == "DEBUG"


def test_unknown_log_level_raises() -> None:
    with pytest.raises(ValueError, match="LOG_LEVEL must be a standard logging level name"):
        Settings(_env_file=None, LOG_LEVEL="chatty")


def test_cache_ceiling_is_reported_in_megabytes() -> None:
    settings = Settings(_env_file=None, CACHE_MAX_BYTES=3 * MEGABYTE)

    assert settings.cache_max_megabytes == 3.0


def test_sync_interval_has_a_floor() -> None:
    """Scheduled syncs more often than once a minute are rejected."""

    with pytest.raises(ValueError):
        Settings(_env_file=None, SYNC_INTERVAL=5)
