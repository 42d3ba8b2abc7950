"""Build configuration file loading and export.

This module loads BuildConfig instances from YAML/JSON files and writes
them back out, e.g. to seed a project with the default configuration.
Relative paths inside a config file are resolved against the file's
directory.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from bootimage.builds.schema import BuildConfig
from bootimage.errors import ConfigError


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _resolve_relative_paths(config: BuildConfig, base_dir: Path) -> BuildConfig:
    """Anchor relative local paths in a config to base_dir."""
    init = config.init
    updates: dict[str, Any] = {}

    init_updates: dict[str, Any] = {}
    if not init.workspace_dir.is_absolute():
        init_updates["workspace_dir"] = base_dir / init.workspace_dir
    if init.target_dir is not None and not init.target_dir.is_absolute():
        init_updates["target_dir"] = base_dir / init.target_dir
    if init.prebuilt is not None and not init.prebuilt.is_absolute():
        init_updates["prebuilt"] = base_dir / init.prebuilt
    if init_updates:
        updates["init"] = init.model_copy(update=init_updates)

    if config.overlay_dir is not None and not config.overlay_dir.is_absolute():
        updates["overlay_dir"] = base_dir / config.overlay_dir

    return config.model_copy(update=updates) if updates else config


def load_build_config(path: Path) -> BuildConfig:
    """Load and validate a build configuration file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        path: Path to the configuration file.

    Returns:
        Validated BuildConfig instance.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ConfigError(
                f"Unsupported config file extension: {suffix}",
                path=str(path),
                code="unsupported_format",
            )
        config = BuildConfig.model_validate(data)
    except FileNotFoundError as e:
        raise ConfigError(
            f"Config file not found: {path}", path=str(path), code="not_found"
        ) from e
    except ValidationError as e:
        raise ConfigError(
            f"Invalid build config {path}: {e}", path=str(path), code="validation"
        ) from e
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ConfigError(
            f"Failed to parse {path}: {e}", path=str(path), code="parse_error"
        ) from e

    return _resolve_relative_paths(config, path.resolve().parent)


def dump_build_config(config: BuildConfig) -> dict[str, Any]:
    """Convert a BuildConfig to a plain dict suitable for YAML/JSON."""
    return config.model_dump(mode="json", exclude_none=True)


def save_build_config(config: BuildConfig, path: Path) -> Path:
    """Write a build configuration to a YAML or JSON file.

    Args:
        config: Configuration to write.
        path: Output path; .json selects JSON, anything else YAML.

    Returns:
        Path to the written file.
    """
    data = dump_build_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            json.dump(data, f, indent=2)
            f.write("\n")
        else:
            yaml.safe_dump(data, f, sort_keys=False, default_flow_style=False)
    return path


__all__ = [
    "dump_build_config",
    "load_build_config",
    "load_json",
    "load_yaml",
    "save_build_config",
]
