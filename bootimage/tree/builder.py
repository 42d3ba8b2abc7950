"""Root filesystem tree construction.

This module lays out the initramfs root:
1. Directory skeleton (bin, sbin, dev, proc, sys, tmp, run, etc, lib)
2. The init program at /init
3. The multi-call utility at /bin/<name> plus one symlink per command
4. Shared libraries under /lib, with optional alias symlinks
5. The optional overlay directory (overlay wins on collision)
6. Static device nodes for early boot

Mount points such as /proc and /sys are left empty; the init program
mounts them at boot. The finished tree can be materialized to a scratch
directory for inspection, but packing works from the in-memory tree.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path

from bootimage.builds.schema import BuildConfig
from bootimage.errors import TreeBuildError
from bootimage.tree.models import (
    DeviceNode,
    Directory,
    FilesystemTree,
    RegularFile,
    Symlink,
)
from bootimage.tree.overlay import apply_overlay
from bootimage.types import DeviceType

logger = logging.getLogger(__name__)

SKELETON_DIRS = ["bin", "sbin", "dev", "proc", "sys", "tmp", "run", "etc", "lib"]

INIT_PATH = "/init"
EXECUTABLE_MODE = 0o755
LIBRARY_MODE = 0o755


@dataclass(frozen=True)
class DeviceNodeSpec:
    """A device node created in every image."""

    path: str
    device_type: DeviceType
    major: int
    minor: int
    mode: int


# devtmpfs takes over once the init program mounts it
DEVICE_NODES = [
    DeviceNodeSpec("dev/console", DeviceType.CHAR, 5, 1, 0o622),
    DeviceNodeSpec("dev/null", DeviceType.CHAR, 1, 3, 0o666),
    DeviceNodeSpec("dev/zero", DeviceType.CHAR, 1, 5, 0o666),
    DeviceNodeSpec("dev/random", DeviceType.CHAR, 1, 8, 0o444),
    DeviceNodeSpec("dev/urandom", DeviceType.CHAR, 1, 9, 0o444),
    DeviceNodeSpec("dev/tty", DeviceType.CHAR, 5, 0, 0o666),
]


@dataclass
class ResolvedArtifacts:
    """Local paths of the artifacts a tree is built from.

    Attributes:
        kernel: Kernel image (not placed in the tree).
        utility: Multi-call utility binary.
        libraries: Library soname to local path.
    """

    kernel: Path
    utility: Path
    libraries: dict[str, Path] = field(default_factory=dict)


def _require_file(path: Path, what: str) -> None:
    if not path.is_file():
        raise TreeBuildError(
            f"Required {what} not found: {path}", path=str(path), code="missing_input"
        )


def create_skeleton(tree: FilesystemTree) -> None:
    """Create the fixed top-level directories."""
    for name in SKELETON_DIRS:
        tree.add_directory(name)


def install_init(tree: FilesystemTree, init_binary: Path) -> None:
    """Place the init program at /init."""
    _require_file(init_binary, "init binary")
    tree.add_file(INIT_PATH, source=init_binary, mode=EXECUTABLE_MODE)


def install_utility(
    tree: FilesystemTree,
    utility_binary: Path,
    name: str,
    commands: list[str],
) -> None:
    """Place the multi-call utility and its command aliases in /bin."""
    _require_file(utility_binary, "utility binary")
    tree.add_file(f"bin/{name}", source=utility_binary, mode=EXECUTABLE_MODE)
    for cmd in commands:
        if cmd == name:
            continue
        tree.add_symlink(f"bin/{cmd}", name)
    logger.debug("Installed %s with %d command aliases", name, len(commands))


def install_libraries(
    tree: FilesystemTree,
    config: BuildConfig,
    libraries: dict[str, Path],
) -> None:
    """Copy shared libraries into /lib and create their alias symlinks."""
    for spec in config.libraries:
        soname = spec.effective_soname
        source = libraries.get(soname)
        if source is None:
            raise TreeBuildError(
                f"Library {soname} was not resolved", path=spec.source, code="missing_input"
            )
        _require_file(source, f"library {soname}")
        tree.add_file(f"lib/{soname}", source=source, mode=LIBRARY_MODE)
        for alias in spec.aliases:
            tree.add_symlink(alias, f"/lib/{soname}")
            logger.debug("Library alias %s -> /lib/%s", alias, soname)


def create_device_nodes(tree: FilesystemTree) -> None:
    """Create the static device nodes that are not already in the tree."""
    for node in DEVICE_NODES:
        if node.path in tree:
            logger.debug("Keeping existing entry at %s", node.path)
            continue
        tree.add_device(node.path, node.device_type, node.major, node.minor, node.mode)


def materialize_tree(tree: FilesystemTree, root: Path) -> Path:
    """Write a tree to a scratch directory, replacing any previous tree.

    Device nodes are only created when running as root; the packed archive
    carries them either way.

    Args:
        tree: Tree to write.
        root: Scratch directory.

    Returns:
        root.

    Raises:
        TreeBuildError: On any I/O failure.
    """
    current = str(root)
    try:
        if root.exists() or root.is_symlink():
            shutil.rmtree(root)
        root.mkdir(parents=True)

        can_mknod = hasattr(os, "geteuid") and os.geteuid() == 0
        if not can_mknod:
            logger.debug("Not running as root, device nodes stay archive-only")

        dir_modes: list[tuple[Path, int]] = []
        for rel_path, entry in tree:
            dest = root / rel_path
            current = str(dest)
            if isinstance(entry, Directory):
                dest.mkdir(exist_ok=True)
                dir_modes.append((dest, entry.mode))
            elif isinstance(entry, RegularFile):
                if entry.source is not None:
                    shutil.copyfile(entry.source, dest)
                else:
                    dest.write_bytes(entry.data or b"")
                dest.chmod(entry.mode)
            elif isinstance(entry, Symlink):
                os.symlink(entry.target, dest)
            elif isinstance(entry, DeviceNode) and can_mknod:
                kind = (
                    stat.S_IFCHR
                    if entry.device_type == DeviceType.CHAR
                    else stat.S_IFBLK
                )
                try:
                    os.mknod(
                        dest, kind | entry.mode, os.makedev(entry.major, entry.minor)
                    )
                except PermissionError:
                    logger.warning("mknod not permitted, device nodes stay archive-only")
                    can_mknod = False

        # Apply directory modes last so read-only directories can be filled
        for dest, mode in reversed(dir_modes):
            current = str(dest)
            dest.chmod(mode)

    except OSError as e:
        raise TreeBuildError(
            f"Failed to materialize tree at {current}: {e}", path=current, code="os_error"
        ) from e

    logger.info("Materialized %d entries to %s", len(tree), root)
    return root


class FilesystemTreeBuilder:
    """Builds the initramfs root tree from resolved inputs."""

    def __init__(self, scratch_dir: Path | None = None) -> None:
        """Initialize FilesystemTreeBuilder.

        Args:
            scratch_dir: If set, the finished tree is also written here.
        """
        self.scratch_dir = scratch_dir

    def build(
        self,
        config: BuildConfig,
        init_binary: Path,
        artifacts: ResolvedArtifacts,
        overlay_dir: Path | None = None,
    ) -> FilesystemTree:
        """Build a fresh tree.

        Args:
            config: Build configuration.
            init_binary: Compiled init program.
            artifacts: Resolved artifact paths.
            overlay_dir: Overlay directory; defaults to config.overlay_dir.

        Returns:
            The finished FilesystemTree.

        Raises:
            TreeBuildError: If any input is missing or an entry conflicts.
        """
        if overlay_dir is None:
            overlay_dir = config.overlay_dir

        tree = FilesystemTree()
        create_skeleton(tree)
        install_init(tree, init_binary)
        install_utility(
            tree, artifacts.utility, config.utility.name, config.utility.commands
        )
        install_libraries(tree, config, artifacts.libraries)
        apply_overlay(tree, overlay_dir)
        create_device_nodes(tree)
        tree.validate_symlinks()

        logger.info("Built tree with %d entries", len(tree))

        if self.scratch_dir is not None:
            materialize_tree(tree, self.scratch_dir)
        return tree


__all__ = [
    "DEVICE_NODES",
    "INIT_PATH",
    "SKELETON_DIRS",
    "DeviceNodeSpec",
    "FilesystemTreeBuilder",
    "ResolvedArtifacts",
    "create_device_nodes",
    "create_skeleton",
    "install_init",
    "install_libraries",
    "install_utility",
    "materialize_tree",
]
