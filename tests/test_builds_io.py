"""Tests for build config file loading and export."""

import json
from pathlib import Path

import pytest

from bootimage.builds.io import (
    dump_build_config,
    load_build_config,
    load_json,
    load_yaml,
    save_build_config,
)
from bootimage.builds.schema import BuildConfig
from bootimage.errors import ConfigError
from bootimage.types import BuildProfile, Compression

YAML_CONFIG = """\
profile: release
target: aarch64-unknown-linux-gnu
init:
  prebuilt: bin/init
overlay_dir: overlay
kernel:
  source: https://example.com/vmlinuz
utility:
  source: /opt/busybox
  commands: [sh, ls]
libraries: []
compression: xz
"""


class TestLoadRaw:
    """Tests for load_yaml and load_json."""

    def test_load_yaml_empty(self, tmp_path):
        """Should return an empty dict for an empty YAML file."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_load_yaml_not_mapping(self, tmp_path):
        """Should reject a YAML list."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError):
            load_yaml(path)

    def test_load_json(self, tmp_path):
        """Should load a JSON object."""
        path = tmp_path / "c.json"
        path.write_text('{"profile": "debug"}')
        assert load_json(path) == {"profile": "debug"}


class TestLoadBuildConfig:
    """Tests for load_build_config."""

    def test_load_yaml_config(self, tmp_path):
        """Should load and validate a YAML config."""
        path = tmp_path / "build.yaml"
        path.write_text(YAML_CONFIG)

        config = load_build_config(path)

        assert config.profile == BuildProfile.RELEASE
        assert config.compression == Compression.XZ
        assert config.utility.commands == ["sh", "ls"]
        assert config.libraries == []

    def test_relative_paths_anchored(self, tmp_path):
        """Should resolve relative paths against the config file directory."""
        path = tmp_path / "build.yaml"
        path.write_text(YAML_CONFIG)

        config = load_build_config(path)
        base = tmp_path.resolve()

        assert config.init.prebuilt == base / "bin" / "init"
        assert config.overlay_dir == base / "overlay"
        assert config.init.workspace_dir == base

    def test_load_json_config(self, tmp_path):
        """Should load a JSON config."""
        path = tmp_path / "build.json"
        path.write_text(json.dumps({"compression": "none"}))
        assert load_build_config(path).compression == Compression.NONE

    def test_missing_file(self, tmp_path):
        """Should raise ConfigError with code not_found."""
        with pytest.raises(ConfigError) as exc_info:
            load_build_config(tmp_path / "missing.yaml")
        assert exc_info.value.code == "not_found"

    def test_unsupported_extension(self, tmp_path):
        """Should reject unknown extensions."""
        path = tmp_path / "build.toml"
        path.write_text("")
        with pytest.raises(ConfigError) as exc_info:
            load_build_config(path)
        assert exc_info.value.code == "unsupported_format"

    def test_validation_error(self, tmp_path):
        """Should wrap schema errors."""
        path = tmp_path / "build.yaml"
        path.write_text("target: nope\n")
        with pytest.raises(ConfigError) as exc_info:
            load_build_config(path)
        assert exc_info.value.code == "validation"

    def test_parse_error(self, tmp_path):
        """Should wrap YAML syntax errors."""
        path = tmp_path / "build.yaml"
        path.write_text("profile: [unterminated\n")
        with pytest.raises(ConfigError) as exc_info:
            load_build_config(path)
        assert exc_info.value.code == "parse_error"


class TestSaveBuildConfig:
    """Tests for dump_build_config and save_build_config."""

    def test_dump_is_plain_data(self):
        """Should produce JSON-compatible data without None values."""
        data = dump_build_config(BuildConfig())
        assert data["profile"] == "debug"
        assert "overlay_dir" not in data
        json.dumps(data)

    def test_save_and_reload_yaml(self, tmp_path):
        """A saved default config should load back unchanged."""
        path = save_build_config(BuildConfig(), tmp_path / "out" / "build.yaml")
        loaded = load_build_config(path)
        assert loaded.kernel == BuildConfig().kernel
        assert loaded.libraries == BuildConfig().libraries

    def test_save_json(self, tmp_path):
        """Should write JSON for a .json path."""
        path = save_build_config(BuildConfig(), tmp_path / "build.json")
        assert json.loads(path.read_text())["target"] == "aarch64-unknown-linux-gnu"
