"""Overlay import for filesystem trees.

This module handles:
- Walking an overlay directory in deterministic order
- Copying its entries over a FilesystemTree (overlay wins on collision)
- Preserving file modes, symlinks and device nodes from the overlay

A missing overlay directory is not an error: early boot must work without
any extra configuration files.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from bootimage.errors import TreeBuildError
from bootimage.tree.models import Directory, FilesystemTree
from bootimage.types import DeviceType

logger = logging.getLogger(__name__)


def _iter_overlay(overlay_dir: Path) -> list[Path]:
    """List overlay entries in lexical order without following symlinks."""
    items: list[Path] = []
    for root, dirs, files in os.walk(overlay_dir, followlinks=False):
        dirs.sort()
        root_path = Path(root)
        items.extend(root_path / name for name in dirs)
        items.extend(root_path / name for name in sorted(files))
    return sorted(items, key=lambda p: p.relative_to(overlay_dir).as_posix())


def import_entry(tree: FilesystemTree, item: Path, rel_path: str) -> None:
    """Copy one overlay entry into the tree.

    Args:
        tree: Tree to modify.
        item: Host path of the overlay entry.
        rel_path: Path of the entry inside the image.

    Raises:
        TreeBuildError: If the entry cannot be read or has an unsupported type.
    """
    try:
        st = item.lstat()
    except OSError as e:
        raise TreeBuildError(
            f"Failed to stat overlay entry {item}: {e}", path=str(item), code="os_error"
        ) from e

    mode = stat.S_IMODE(st.st_mode)
    existing = tree.get(rel_path)

    if stat.S_ISDIR(st.st_mode):
        if existing is not None and not isinstance(existing, Directory):
            tree.remove(rel_path)
        tree.add_directory(rel_path, mode=mode)
    elif stat.S_ISLNK(st.st_mode):
        tree.add_symlink(rel_path, os.readlink(item))
    elif stat.S_ISREG(st.st_mode):
        tree.add_file(rel_path, source=item, mode=mode)
    elif stat.S_ISCHR(st.st_mode) or stat.S_ISBLK(st.st_mode):
        device_type = DeviceType.CHAR if stat.S_ISCHR(st.st_mode) else DeviceType.BLOCK
        tree.add_device(
            rel_path,
            device_type,
            os.major(st.st_rdev),
            os.minor(st.st_rdev),
            mode,
        )
    else:
        raise TreeBuildError(
            f"Unsupported file type in overlay: {item}",
            path=str(item),
            code="unsupported_file_type",
        )


def apply_overlay(tree: FilesystemTree, overlay_dir: Path | None) -> int:
    """Copy an overlay directory over a tree.

    Args:
        tree: Tree to modify.
        overlay_dir: Overlay directory, or None.

    Returns:
        Number of overlay entries applied (0 when there is no overlay).

    Raises:
        TreeBuildError: If the overlay path is not a directory or an entry
            cannot be imported.
    """
    if overlay_dir is None:
        return 0
    if not overlay_dir.exists():
        logger.info("Overlay directory %s does not exist, skipping", overlay_dir)
        return 0
    if not overlay_dir.is_dir():
        raise TreeBuildError(
            f"Overlay path is not a directory: {overlay_dir}",
            path=str(overlay_dir),
            code="overlay_not_dir",
        )

    try:
        items = _iter_overlay(overlay_dir)
    except OSError as e:
        raise TreeBuildError(
            f"Failed to read overlay directory {overlay_dir}: {e}",
            path=str(overlay_dir),
            code="os_error",
        ) from e

    for item in items:
        rel_path = item.relative_to(overlay_dir).as_posix()
        logger.debug("Overlay entry: %s", rel_path)
        import_entry(tree, item, rel_path)

    logger.info("Applied %d overlay entries from %s", len(items), overlay_dir)
    return len(items)


__all__ = ["apply_overlay", "import_entry"]
