"""In-memory model of a root filesystem tree.

A FilesystemTree maps normalized relative paths ('bin/sh', 'dev/null') to
entries. Regular files reference their content by source path or literal
bytes, so the tree can be packed without being written to disk first, and
device nodes can be described without privileges.
"""

from __future__ import annotations

import io
import logging
import posixpath
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, ClassVar, Union

from bootimage.errors import TreeBuildError
from bootimage.types import DeviceType, EntryKind

logger = logging.getLogger(__name__)

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644
SYMLINK_MODE = 0o777

# Linux MAXSYMLINKS
MAX_SYMLINK_DEPTH = 40


@dataclass(frozen=True)
class Directory:
    """A directory entry."""

    kind: ClassVar[EntryKind] = EntryKind.DIRECTORY

    mode: int = DEFAULT_DIR_MODE


@dataclass(frozen=True)
class RegularFile:
    """A regular file whose content comes from a host file or literal bytes."""

    kind: ClassVar[EntryKind] = EntryKind.FILE

    mode: int = DEFAULT_FILE_MODE
    source: Path | None = None
    data: bytes | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if (self.source is None) == (self.data is None):
            raise ValueError("RegularFile needs exactly one of source or data")

    def size(self) -> int:
        """Return the content size in bytes."""
        if self.source is not None:
            return self.source.stat().st_size
        return len(self.data or b"")

    def open(self) -> BinaryIO:
        """Open the content for reading."""
        if self.source is not None:
            return self.source.open("rb")
        return io.BytesIO(self.data or b"")


@dataclass(frozen=True)
class Symlink:
    """A symbolic link."""

    kind: ClassVar[EntryKind] = EntryKind.SYMLINK

    target: str
    mode: int = SYMLINK_MODE


@dataclass(frozen=True)
class DeviceNode:
    """A character or block device node."""

    kind: ClassVar[EntryKind] = EntryKind.DEVICE

    device_type: DeviceType
    major: int
    minor: int
    mode: int


TreeEntry = Union[Directory, RegularFile, Symlink, DeviceNode]


def normalize_path(path: str) -> str:
    """Normalize an image path to its relative form.

    '/bin/sh', 'bin//sh' and './bin/sh' all become 'bin/sh'. The root
    itself normalizes to ''.

    Raises:
        TreeBuildError: If the path escapes the root.
    """
    parts: list[str] = []
    for part in path.replace("\\", "/").split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise TreeBuildError(
                    f"Path escapes the image root: {path}",
                    path=path,
                    code="path_traversal",
                )
            parts.pop()
            continue
        parts.append(part)
    return "/".join(parts)


class FilesystemTree:
    """Ordered mapping of image paths to entries.

    Parent directories are created implicitly. Iteration yields entries in
    lexical path order, which puts every directory before its contents.
    """

    def __init__(self) -> None:
        self._entries: dict[str, TreeEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self._entries

    def __iter__(self) -> Iterator[tuple[str, TreeEntry]]:
        for path in sorted(self._entries):
            yield path, self._entries[path]

    def get(self, path: str) -> TreeEntry | None:
        """Return the entry at path, or None."""
        return self._entries.get(normalize_path(path))

    def paths(self) -> list[str]:
        """Return all entry paths in lexical order."""
        return sorted(self._entries)

    def children(self, path: str) -> list[str]:
        """Return paths directly under a directory."""
        base = normalize_path(path)
        prefix = f"{base}/" if base else ""
        return [
            p
            for p in sorted(self._entries)
            if p.startswith(prefix) and "/" not in p[len(prefix) :]
        ]

    def _ensure_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        if not parent:
            return
        existing = self._entries.get(parent)
        if existing is None:
            self._ensure_parents(parent)
            self._entries[parent] = Directory()
        elif not isinstance(existing, Directory):
            raise TreeBuildError(
                f"Parent of {path} is not a directory: {parent}",
                path=parent,
                code="not_a_directory",
            )

    def _put(self, path: str, entry: TreeEntry) -> str:
        norm = normalize_path(path)
        if not norm:
            raise TreeBuildError("Cannot replace the image root", path=path)
        self._ensure_parents(norm)
        existing = self._entries.get(norm)
        if isinstance(existing, Directory) and not isinstance(entry, Directory):
            if self.children(norm):
                raise TreeBuildError(
                    f"Cannot replace non-empty directory {norm} with a {entry.kind.value}",
                    path=norm,
                    code="directory_not_empty",
                )
        self._entries[norm] = entry
        return norm

    def add_directory(self, path: str, mode: int = DEFAULT_DIR_MODE) -> str:
        """Add a directory; an existing directory keeps its entry.

        Raises:
            TreeBuildError: If a non-directory already occupies path.
        """
        norm = normalize_path(path)
        existing = self._entries.get(norm)
        if isinstance(existing, Directory):
            return norm
        if existing is not None:
            raise TreeBuildError(
                f"Cannot create directory {norm}: a {existing.kind.value} exists",
                path=norm,
                code="not_a_directory",
            )
        return self._put(norm, Directory(mode=mode))

    def add_file(
        self,
        path: str,
        source: Path | None = None,
        data: bytes | None = None,
        mode: int = DEFAULT_FILE_MODE,
    ) -> str:
        """Add or replace a regular file."""
        return self._put(path, RegularFile(mode=mode, source=source, data=data))

    def add_symlink(self, path: str, target: str) -> str:
        """Add or replace a symbolic link."""
        return self._put(path, Symlink(target=target))

    def add_device(
        self,
        path: str,
        device_type: DeviceType,
        major: int,
        minor: int,
        mode: int,
    ) -> str:
        """Add a device node; an identical existing node is left as is."""
        node = DeviceNode(device_type=device_type, major=major, minor=minor, mode=mode)
        norm = normalize_path(path)
        if self._entries.get(norm) == node:
            logger.debug("Device node %s already present", norm)
            return norm
        return self._put(norm, node)

    def remove(self, path: str) -> None:
        """Remove an entry and, for directories, everything below it."""
        norm = normalize_path(path)
        prefix = f"{norm}/"
        for p in [p for p in self._entries if p == norm or p.startswith(prefix)]:
            del self._entries[p]

    def resolve_symlink(self, path: str) -> str | None:
        """Follow a symlink chain inside the tree.

        Args:
            path: Path of a symlink.

        Returns:
            Normalized path of the final non-symlink entry, or None if the
            chain dangles, leaves the tree or loops.
        """
        norm = normalize_path(path)
        entry = self._entries.get(norm)
        if not isinstance(entry, Symlink):
            return norm if entry is not None else None
        return self._follow(posixpath.dirname(norm), entry.target, 0)

    def _follow(self, base: str, target: str, depth: int) -> str | None:
        if depth >= MAX_SYMLINK_DEPTH:
            return None
        current = "" if target.startswith("/") else base
        for part in target.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                current = posixpath.dirname(current)
                continue
            candidate = f"{current}/{part}" if current else part
            entry = self._entries.get(candidate)
            if entry is None:
                return None
            if isinstance(entry, Symlink):
                resolved = self._follow(
                    posixpath.dirname(candidate), entry.target, depth + 1
                )
                if resolved is None:
                    return None
                current = resolved
            else:
                current = candidate
        # '' is the image root
        return current if current == "" or current in self._entries else None

    def validate_symlinks(self) -> None:
        """Check that every symlink resolves to an entry in the tree.

        Raises:
            TreeBuildError: For the first dangling symlink in path order.
        """
        for path, entry in self:
            if isinstance(entry, Symlink) and self.resolve_symlink(path) is None:
                raise TreeBuildError(
                    f"Symlink {path} -> {entry.target} does not resolve inside the tree",
                    path=path,
                    code="dangling_symlink",
                )


__all__ = [
    "DEFAULT_DIR_MODE",
    "DEFAULT_FILE_MODE",
    "DeviceNode",
    "Directory",
    "FilesystemTree",
    "RegularFile",
    "Symlink",
    "TreeEntry",
    "normalize_path",
]
