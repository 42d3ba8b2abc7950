"""Shared type definitions for bootimage.

This module contains enums shared across subpackages to avoid circular
imports.
"""

from enum import Enum


class BuildProfile(str, Enum):
    """Compile profile for the init binary."""

    DEBUG = "debug"
    RELEASE = "release"


class BuildState(str, Enum):
    """State of a boot image build."""

    INIT = "init"
    COMPILING_INIT = "compiling_init"
    RESOLVING_ARTIFACTS = "resolving_artifacts"
    BUILDING_TREE = "building_tree"
    PACKING = "packing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (BuildState.READY, BuildState.FAILED)


class EntryKind(str, Enum):
    """Kind of an entry in a filesystem tree."""

    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"
    DEVICE = "device"


class DeviceType(str, Enum):
    """Device node type."""

    CHAR = "char"
    BLOCK = "block"


class Compression(str, Enum):
    """Compression applied to the packed initramfs."""

    GZIP = "gzip"
    XZ = "xz"
    NONE = "none"

    @property
    def suffix(self) -> str:
        """File suffix appended after ``.cpio``."""
        return {"gzip": ".gz", "xz": ".xz", "none": ""}[self.value]


__all__ = [
    "BuildProfile",
    "BuildState",
    "Compression",
    "DeviceType",
    "EntryKind",
]
