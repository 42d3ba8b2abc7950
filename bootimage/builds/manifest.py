"""Boot manifest generation.

A BootManifest is the hand-off to the launch step: kernel image path,
initramfs archive path and the kernel command line. It is written next to
the archive as manifest.json together with build metadata.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bootimage.builds.schema import BootSpec
from bootimage.errors import ConfigError
from bootimage.tree.builder import INIT_PATH

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "1.0"
MANIFEST_FILENAME = "manifest.json"


@dataclass(frozen=True)
class BootManifest:
    """Everything the launch step needs to boot an image."""

    kernel_image_path: Path
    initramfs_archive_path: Path
    boot_command_line: str


def compose_boot_command_line(boot: BootSpec, init_path: str = INIT_PATH) -> str:
    """Compose the kernel command line.

    Args:
        boot: Command line settings.
        init_path: Path of the init program inside the initramfs.

    Returns:
        Command line with the console, the init path and any extra args.
    """
    parts = [f"console={boot.console}", f"rdinit={init_path}"]
    parts.extend(boot.extra_args)
    return " ".join(parts)


def generate_manifest(
    manifest: BootManifest,
    archive_sha256: str | None = None,
    archive_size_bytes: int | None = None,
    build_inputs: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate the manifest document.

    Args:
        manifest: Boot manifest.
        archive_sha256: Optional archive checksum.
        archive_size_bytes: Optional archive size.
        build_inputs: Optional build inputs dictionary.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    doc: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "kernel_image_path": str(manifest.kernel_image_path),
        "initramfs_archive_path": str(manifest.initramfs_archive_path),
        "boot_command_line": manifest.boot_command_line,
    }
    if archive_sha256:
        doc["initramfs_sha256"] = archive_sha256
    if archive_size_bytes is not None:
        doc["initramfs_size_bytes"] = archive_size_bytes
    if build_inputs:
        doc["build_inputs"] = build_inputs
    return doc


def write_manifest(doc: dict[str, Any], output_path: Path) -> Path:
    """Write a manifest document to a JSON file.

    Args:
        doc: Manifest dictionary.
        output_path: Output file path.

    Returns:
        Path to written manifest file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(doc, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


def load_manifest(path: Path) -> BootManifest:
    """Load a BootManifest from a manifest.json file.

    Raises:
        ConfigError: If the file is missing or malformed.
    """
    try:
        with path.open(encoding="utf-8") as f:
            doc = json.load(f)
        return BootManifest(
            kernel_image_path=Path(doc["kernel_image_path"]),
            initramfs_archive_path=Path(doc["initramfs_archive_path"]),
            boot_command_line=doc["boot_command_line"],
        )
    except FileNotFoundError as e:
        raise ConfigError(
            f"Manifest not found: {path}", path=str(path), code="not_found"
        ) from e
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise ConfigError(
            f"Invalid manifest {path}: {e}", path=str(path), code="parse_error"
        ) from e


__all__ = [
    "MANIFEST_FILENAME",
    "BootManifest",
    "compose_boot_command_line",
    "generate_manifest",
    "load_manifest",
    "write_manifest",
]
