"""Initramfs packing.

This module serializes a FilesystemTree into a newc cpio stream and
compresses it. Packing is a pure function of the tree: entries are written
in lexical path order with fixed ownership and timestamps, and the gzip
header carries no name or mtime, so identical trees produce byte-identical
archives. The archive is written to a temp file and moved into place.
"""

from __future__ import annotations

import gzip
import logging
import lzma
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from bootimage.archive.cpio import CpioEntry, CpioFormatError, CpioWriter, iter_entries
from bootimage.artifacts.fetch import compute_file_sha256
from bootimage.errors import PackError
from bootimage.tree.models import (
    DeviceNode,
    Directory,
    FilesystemTree,
    RegularFile,
    Symlink,
)
from bootimage.types import Compression

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
XZ_MAGIC = b"\xfd7zXZ\x00"


@dataclass
class PackResult:
    """Result of packing a tree."""

    path: Path
    size_bytes: int
    sha256: str
    entry_count: int


def archive_filename(compression: Compression) -> str:
    """Return the conventional archive file name for a compression."""
    return f"initramfs.cpio{compression.suffix}"


def _open_compressor(raw: BinaryIO, compression: Compression, level: int) -> BinaryIO:
    if compression == Compression.GZIP:
        return gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, compresslevel=level, mtime=0
        )
    if compression == Compression.XZ:
        # The kernel's xz decoder only supports CRC32 integrity checks
        return lzma.LZMAFile(raw, mode="wb", check=lzma.CHECK_CRC32, preset=level)
    return raw


def write_tree(writer: CpioWriter, tree: FilesystemTree) -> int:
    """Write every tree entry as a cpio record.

    Args:
        writer: Open CpioWriter.
        tree: Tree to serialize.

    Returns:
        Number of records written (excluding the trailer).

    Raises:
        PackError: If a file's content cannot be read.
    """
    count = 0
    for path, entry in tree:
        if isinstance(entry, Directory):
            writer.add_directory(path, entry.mode)
        elif isinstance(entry, RegularFile):
            try:
                size = entry.size()
                with entry.open() as stream:
                    writer.add_file(path, entry.mode, size, stream)
            except (OSError, CpioFormatError) as e:
                source = str(entry.source) if entry.source is not None else path
                raise PackError(
                    f"Failed to read {path} from {source}: {e}",
                    path=source,
                    code="read_error",
                ) from e
        elif isinstance(entry, Symlink):
            writer.add_symlink(path, entry.target)
        elif isinstance(entry, DeviceNode):
            writer.add_device(
                path, entry.device_type, entry.major, entry.minor, entry.mode
            )
        count += 1
        logger.debug("Packed %s (%s)", path, entry.kind.value)
    return count


class ArchivePacker:
    """Packs filesystem trees into compressed cpio archives."""

    def __init__(
        self,
        compression: Compression = Compression.GZIP,
        level: int = 9,
    ) -> None:
        """Initialize ArchivePacker.

        Args:
            compression: Compression applied to the cpio stream.
            level: Compression level (gzip 1-9, xz preset 0-9).
        """
        self.compression = compression
        self.level = level

    def pack(self, tree: FilesystemTree, output_path: Path) -> PackResult:
        """Serialize and compress a tree, replacing output_path.

        Args:
            tree: Tree to pack.
            output_path: Archive path.

        Returns:
            PackResult describing the written archive.

        Raises:
            PackError: If any entry cannot be read or the archive cannot be
                written. No archive is left at output_path on failure.
        """
        logger.info(
            "Packing %d entries into %s (%s)",
            len(tree),
            output_path,
            self.compression.value,
        )
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".part"
            )
        except OSError as e:
            raise PackError(
                f"Cannot create archive in {output_path.parent}: {e}",
                path=str(output_path),
                code="os_error",
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as raw:
                stream = _open_compressor(raw, self.compression, self.level)
                writer = CpioWriter(stream)
                count = write_tree(writer, tree)
                writer.close()
                if stream is not raw:
                    stream.close()
            os.replace(tmp_path, output_path)
        except PackError:
            tmp_path.unlink(missing_ok=True)
            raise
        except (OSError, lzma.LZMAError) as e:
            tmp_path.unlink(missing_ok=True)
            raise PackError(
                f"Failed to write archive {output_path}: {e}",
                path=str(output_path),
                code="write_error",
            ) from e

        result = PackResult(
            path=output_path,
            size_bytes=output_path.stat().st_size,
            sha256=compute_file_sha256(output_path),
            entry_count=count,
        )
        logger.info(
            "Created initramfs %s (%d bytes, %d entries)",
            output_path,
            result.size_bytes,
            count,
        )
        return result


def detect_compression(path: Path) -> Compression:
    """Detect an archive's compression from its magic bytes."""
    with path.open("rb") as f:
        head = f.read(6)
    if head.startswith(GZIP_MAGIC):
        return Compression.GZIP
    if head.startswith(XZ_MAGIC):
        return Compression.XZ
    return Compression.NONE


def read_archive(path: Path) -> list[CpioEntry]:
    """Decompress and parse an initramfs archive.

    Args:
        path: Archive path (gzip, xz or uncompressed cpio).

    Returns:
        Parsed entries in archive order.

    Raises:
        PackError: If the archive cannot be read or parsed.
    """
    try:
        compression = detect_compression(path)
        opener = {
            Compression.GZIP: gzip.open,
            Compression.XZ: lzma.open,
            Compression.NONE: open,
        }[compression]
        with opener(path, "rb") as stream:
            return list(iter_entries(stream))
    except (OSError, EOFError, lzma.LZMAError, CpioFormatError) as e:
        raise PackError(
            f"Failed to read archive {path}: {e}", path=str(path), code="read_error"
        ) from e


__all__ = [
    "ArchivePacker",
    "PackResult",
    "archive_filename",
    "detect_compression",
    "read_archive",
    "write_tree",
]
