"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from bootimage.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.build_dir.parts[-2:] == ("target", "qemu-image")
        assert settings.cache_dir is None
        assert settings.offline is False
        assert settings.log_level == "INFO"
        assert settings.max_concurrent_downloads >= 1
        assert settings.download_timeout == 600
        assert settings.compile_timeout == 3600

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "BOOTIMG_OFFLINE": "true",
                "BOOTIMG_LOG_LEVEL": "DEBUG",
                "BOOTIMG_MAX_CONCURRENT_DOWNLOADS": "4",
            },
        ):
            settings = Settings()
            assert settings.offline is True
            assert settings.log_level == "DEBUG"
            assert settings.max_concurrent_downloads == 4

    def test_settings_build_dir_from_env(self) -> None:
        """Build dir should be configurable via env."""
        with patch.dict(os.environ, {"BOOTIMG_BUILD_DIR": "/tmp/test-build"}):
            settings = Settings()
            assert settings.build_dir == Path("/tmp/test-build")

    def test_effective_cache_dir_defaults_under_build_dir(self) -> None:
        """Cache dir should default to <build_dir>/cache."""
        settings = Settings(build_dir=Path("/tmp/b"))
        assert settings.effective_cache_dir == Path("/tmp/b/cache")

    def test_effective_cache_dir_explicit(self) -> None:
        """An explicit cache dir should win over the default."""
        settings = Settings(build_dir=Path("/tmp/b"), cache_dir=Path("/tmp/c"))
        assert settings.effective_cache_dir == Path("/tmp/c")

    def test_concurrency_bounds(self) -> None:
        """Download concurrency outside 1-10 should be rejected."""
        with pytest.raises(ValidationError):
            Settings(max_concurrent_downloads=0)
        with pytest.raises(ValidationError):
            Settings(max_concurrent_downloads=11)


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
        json_str = print_settings_json(settings)

        parsed = json.loads(json_str)

        assert "build_dir" in parsed
        assert "cache_dir" in parsed
        assert "offline" in parsed
        assert "compile_timeout" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        json_str = print_settings_json()
        parsed = json.loads(json_str)
        assert "build_dir" in parsed
