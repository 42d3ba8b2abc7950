"""SVR4 "newc" cpio records, the format the Linux kernel unpacks as initramfs.

Each record is a 110 byte ASCII header ("070701" followed by thirteen
8-digit hex fields), the NUL-terminated name padded to a 4 byte boundary,
and the content padded to a 4 byte boundary. The archive ends with a
record named "TRAILER!!!".
"""

from __future__ import annotations

import stat
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import BinaryIO

from bootimage.types import DeviceType, EntryKind

NEWC_MAGIC = b"070701"
HEADER_SIZE = 110
TRAILER_NAME = "TRAILER!!!"
BLOCK_SIZE = 512
COPY_CHUNK_SIZE = 64 * 1024

_FIELDS = (
    "ino",
    "mode",
    "uid",
    "gid",
    "nlink",
    "mtime",
    "filesize",
    "devmajor",
    "devminor",
    "rdevmajor",
    "rdevminor",
    "namesize",
    "check",
)


class CpioFormatError(ValueError):
    """Raised when a cpio stream is malformed or truncated."""


def _pad(length: int) -> int:
    return (4 - length % 4) % 4


@dataclass
class CpioEntry:
    """A record parsed from a newc archive."""

    name: str
    mode: int
    ino: int = 0
    uid: int = 0
    gid: int = 0
    nlink: int = 1
    mtime: int = 0
    rdevmajor: int = 0
    rdevminor: int = 0
    data: bytes = field(default=b"", repr=False)

    @property
    def permissions(self) -> int:
        return stat.S_IMODE(self.mode)

    @property
    def kind(self) -> EntryKind:
        if stat.S_ISDIR(self.mode):
            return EntryKind.DIRECTORY
        if stat.S_ISLNK(self.mode):
            return EntryKind.SYMLINK
        if stat.S_ISCHR(self.mode) or stat.S_ISBLK(self.mode):
            return EntryKind.DEVICE
        return EntryKind.FILE

    @property
    def device_type(self) -> DeviceType | None:
        if stat.S_ISCHR(self.mode):
            return DeviceType.CHAR
        if stat.S_ISBLK(self.mode):
            return DeviceType.BLOCK
        return None

    @property
    def link_target(self) -> str | None:
        if stat.S_ISLNK(self.mode):
            return self.data.decode("utf-8")
        return None


class CpioWriter:
    """Streams newc records to a binary file object.

    Ownership is always root:root and mtime is 0; inode numbers are
    assigned sequentially, so the output depends only on the records
    written and their order.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._f = fileobj
        self._offset = 0
        self._next_ino = 1
        self._closed = False

    def _write(self, data: bytes) -> None:
        self._f.write(data)
        self._offset += len(data)

    def _align(self) -> None:
        pad = _pad(self._offset)
        if pad:
            self._write(b"\0" * pad)

    def _header(
        self,
        name: str,
        mode: int,
        filesize: int,
        nlink: int,
        rdevmajor: int = 0,
        rdevminor: int = 0,
        ino: int | None = None,
    ) -> None:
        if self._closed:
            raise ValueError("cpio archive already closed")
        name_bytes = name.encode("utf-8") + b"\0"
        if ino is None:
            ino = self._next_ino
            self._next_ino += 1
        values = {
            "ino": ino,
            "mode": mode,
            "uid": 0,
            "gid": 0,
            "nlink": nlink,
            "mtime": 0,
            "filesize": filesize,
            "devmajor": 0,
            "devminor": 0,
            "rdevmajor": rdevmajor,
            "rdevminor": rdevminor,
            "namesize": len(name_bytes),
            "check": 0,
        }
        header = NEWC_MAGIC + b"".join(b"%08X" % values[f] for f in _FIELDS)
        self._write(header)
        self._write(name_bytes)
        self._align()

    def add_directory(self, name: str, mode: int) -> None:
        self._header(name, stat.S_IFDIR | stat.S_IMODE(mode), 0, nlink=2)

    def add_file(self, name: str, mode: int, size: int, stream: BinaryIO) -> None:
        """Write a regular file record, copying exactly size bytes from stream.

        Raises:
            CpioFormatError: If the stream does not hold exactly size bytes.
        """
        self._header(name, stat.S_IFREG | stat.S_IMODE(mode), size, nlink=1)
        remaining = size
        while remaining:
            chunk = stream.read(min(COPY_CHUNK_SIZE, remaining))
            if not chunk:
                raise CpioFormatError(f"{name}: content shorter than {size} bytes")
            self._write(chunk)
            remaining -= len(chunk)
        if stream.read(1):
            raise CpioFormatError(f"{name}: content longer than {size} bytes")
        self._align()

    def add_symlink(self, name: str, target: str) -> None:
        target_bytes = target.encode("utf-8")
        self._header(name, stat.S_IFLNK | 0o777, len(target_bytes), nlink=1)
        self._write(target_bytes)
        self._align()

    def add_device(
        self,
        name: str,
        device_type: DeviceType,
        major: int,
        minor: int,
        mode: int,
    ) -> None:
        kind = stat.S_IFCHR if device_type == DeviceType.CHAR else stat.S_IFBLK
        self._header(
            name,
            kind | stat.S_IMODE(mode),
            0,
            nlink=1,
            rdevmajor=major,
            rdevminor=minor,
        )

    def close(self) -> None:
        """Write the trailer record and pad to a whole block."""
        if self._closed:
            return
        self._header(TRAILER_NAME, 0, 0, nlink=1, ino=0)
        self._closed = True
        pad = (BLOCK_SIZE - self._offset % BLOCK_SIZE) % BLOCK_SIZE
        if pad:
            self._write(b"\0" * pad)


def _read_exact(stream: BinaryIO, size: int, what: str) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise CpioFormatError(f"Truncated cpio archive while reading {what}")
    return data


def iter_entries(stream: BinaryIO) -> Iterator[CpioEntry]:
    """Parse newc records from a binary stream up to the trailer.

    Raises:
        CpioFormatError: On bad magic or truncated data.
    """
    offset = 0
    while True:
        header = _read_exact(stream, HEADER_SIZE, "header")
        if header[:6] != NEWC_MAGIC:
            raise CpioFormatError(f"Bad cpio magic at offset {offset}: {header[:6]!r}")
        try:
            values = {
                name: int(header[6 + i * 8 : 14 + i * 8], 16)
                for i, name in enumerate(_FIELDS)
            }
        except ValueError as e:
            raise CpioFormatError(f"Bad cpio header at offset {offset}") from e
        offset += HEADER_SIZE

        raw_name = _read_exact(stream, values["namesize"], "name")
        offset += values["namesize"]
        _read_exact(stream, _pad(offset), "name padding")
        offset += _pad(offset)
        name = raw_name.rstrip(b"\0").decode("utf-8")

        if name == TRAILER_NAME:
            return

        data = _read_exact(stream, values["filesize"], name)
        offset += values["filesize"]
        _read_exact(stream, _pad(offset), "data padding")
        offset += _pad(offset)

        yield CpioEntry(
            name=name,
            mode=values["mode"],
            ino=values["ino"],
            uid=values["uid"],
            gid=values["gid"],
            nlink=values["nlink"],
            mtime=values["mtime"],
            rdevmajor=values["rdevmajor"],
            rdevminor=values["rdevminor"],
            data=data,
        )


__all__ = [
    "NEWC_MAGIC",
    "TRAILER_NAME",
    "CpioEntry",
    "CpioFormatError",
    "CpioWriter",
    "iter_entries",
]
