"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from releasebot.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.cache_dir == Path.home() / ".cache" / "releasebot" / "layers"
        assert (
            settings.artifacts_dir
            == Path.home() / ".local" / "share" / "releasebot" / "artifacts"
        )
        assert "sqlite" in settings.db_url
        assert settings.container_binary == "docker"
        assert settings.max_concurrent_builds >= 1
        assert settings.build_timeout >= 1
        assert settings.publish_url is None

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "RELEASEBOT_LOG_LEVEL": "DEBUG",
                "RELEASEBOT_MAX_CONCURRENT_BUILDS": "4",
                "RELEASEBOT_CONTAINER_BINARY": "podman",
                "RELEASEBOT_PUBLISH_URL": "https://uploads.example.com/releases",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_builds == 4
            assert settings.container_binary == "podman"
            assert settings.publish_url == "https://uploads.example.com/releases"

    def test_settings_paths_from_env(self) -> None:
        """Path settings should be configurable via env."""
        with patch.dict(
            os.environ,
            {
                "RELEASEBOT_CACHE_DIR": "/tmp/test-cache",
                "RELEASEBOT_MATRIX_FILE": "ci/platforms.yaml",
            },
        ):
            settings = Settings()
            assert settings.cache_dir == Path("/tmp/test-cache")
            assert settings.matrix_file == Path("ci/platforms.yaml")

    def test_concurrency_bounds(self) -> None:
        """Zero concurrent builds should be rejected."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_builds=0)

    def test_invalid_log_level(self) -> None:
        """Unknown log levels should be rejected."""
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        parsed = json.loads(print_settings_json(settings))

        assert "cache_dir" in parsed
        assert "artifacts_dir" in parsed
        assert "db_url" in parsed
        assert "max_concurrent_builds" in parsed

    def test_publish_token_is_omitted(self) -> None:
        """The upload token should never be rendered."""
        settings = Settings(publish_token="s3cr3t")
        json_str = print_settings_json(settings)

        assert "s3cr3t" not in json_str
        assert "publish_token" not in json.loads(json_str)

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        parsed = json.loads(print_settings_json())
        assert "cache_dir" in parsed
