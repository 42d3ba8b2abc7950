"""Tests for the newc cpio writer and reader."""

import io
import stat

import pytest

from bootimage.archive.cpio import (
    HEADER_SIZE,
    NEWC_MAGIC,
    CpioFormatError,
    CpioWriter,
    iter_entries,
)
from bootimage.types import DeviceType, EntryKind


def write_archive(build) -> bytes:
    """Run build(writer) against an in-memory archive."""
    buf = io.BytesIO()
    writer = CpioWriter(buf)
    build(writer)
    writer.close()
    return buf.getvalue()


def header_field(data: bytes, index: int, offset: int = 0) -> int:
    start = offset + 6 + index * 8
    return int(data[start : start + 8], 16)


class TestCpioWriter:
    """Tests for CpioWriter."""

    def test_directory_header(self):
        """Should write a newc header with fixed ownership and mtime."""
        data = write_archive(lambda w: w.add_directory("bin", 0o755))

        assert data[:6] == NEWC_MAGIC
        assert header_field(data, 0) == 1  # ino
        assert header_field(data, 1) == stat.S_IFDIR | 0o755
        assert header_field(data, 2) == 0  # uid
        assert header_field(data, 3) == 0  # gid
        assert header_field(data, 4) == 2  # nlink
        assert header_field(data, 5) == 0  # mtime
        assert header_field(data, 11) == 4  # namesize includes NUL
        assert data[HEADER_SIZE : HEADER_SIZE + 4] == b"bin\0"

    def test_padding_and_trailer(self):
        """Records should be 4 byte aligned and the archive 512 byte aligned."""
        data = write_archive(
            lambda w: w.add_file("init", 0o755, 3, io.BytesIO(b"abc"))
        )

        # header + "init\0" padded to 116, then 3 data bytes padded to 120
        assert data[116:119] == b"abc"
        assert data[119:120] == b"\0"
        assert data[120:126] == NEWC_MAGIC
        assert b"TRAILER!!!\0" in data
        assert len(data) % 512 == 0

    def test_trailer_inode_zero(self):
        """The trailer record should carry inode 0."""
        data = write_archive(lambda w: None)
        assert header_field(data, 0) == 0
        assert data[HEADER_SIZE : HEADER_SIZE + 11] == b"TRAILER!!!\0"

    def test_sequential_inodes(self):
        """Each record should get the next inode number."""

        def build(w):
            w.add_directory("a", 0o755)
            w.add_directory("b", 0o755)

        entries = list(iter_entries(io.BytesIO(write_archive(build))))
        assert [e.ino for e in entries] == [1, 2]

    def test_file_size_mismatch(self):
        """Should reject content that does not match the declared size."""
        writer = CpioWriter(io.BytesIO())
        with pytest.raises(CpioFormatError):
            writer.add_file("short", 0o644, 10, io.BytesIO(b"abc"))
        writer = CpioWriter(io.BytesIO())
        with pytest.raises(CpioFormatError):
            writer.add_file("long", 0o644, 2, io.BytesIO(b"abc"))

    def test_write_after_close(self):
        """Should refuse records after the trailer."""
        writer = CpioWriter(io.BytesIO())
        writer.close()
        with pytest.raises(ValueError):
            writer.add_directory("late", 0o755)


class TestIterEntries:
    """Tests for iter_entries function."""

    def test_parse_all_kinds(self):
        """Should parse files, symlinks, directories and devices."""

        def build(w):
            w.add_directory("dev", 0o755)
            w.add_device("dev/console", DeviceType.CHAR, 5, 1, 0o622)
            w.add_device("dev/sda", DeviceType.BLOCK, 8, 0, 0o660)
            w.add_file("init", 0o755, 5, io.BytesIO(b"hello"))
            w.add_symlink("sh", "busybox")

        entries = {e.name: e for e in iter_entries(io.BytesIO(write_archive(build)))}

        assert entries["dev"].kind == EntryKind.DIRECTORY
        console = entries["dev/console"]
        assert console.kind == EntryKind.DEVICE
        assert console.device_type == DeviceType.CHAR
        assert (console.rdevmajor, console.rdevminor) == (5, 1)
        assert console.permissions == 0o622
        assert entries["dev/sda"].device_type == DeviceType.BLOCK
        assert entries["init"].data == b"hello"
        assert entries["init"].kind == EntryKind.FILE
        assert entries["sh"].link_target == "busybox"
        assert entries["sh"].permissions == 0o777

    def test_bad_magic(self):
        """Should reject a stream with the wrong magic."""
        with pytest.raises(CpioFormatError):
            list(iter_entries(io.BytesIO(b"070707" + b"0" * 200)))

    def test_truncated(self):
        """Should reject a truncated stream."""
        data = write_archive(lambda w: w.add_file("f", 0o644, 4, io.BytesIO(b"data")))
        with pytest.raises(CpioFormatError):
            list(iter_entries(io.BytesIO(data[:115])))
