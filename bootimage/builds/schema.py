"""Pydantic models for build configuration.

A BuildConfig is supplied at build start and never mutated during a build.
It is validated from YAML/JSON files (see ``bootimage.builds.io``) or built
directly in code.
"""

import re
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bootimage.types import BuildProfile, Compression

TARGET_TRIPLE_PATTERN = re.compile(r"^[A-Za-z0-9_.]+(-[A-Za-z0-9_.]+){1,3}$")
SHA256_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")
COMMAND_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.\-\[]+$")

ALPINE_MIRROR = "https://dl-cdn.alpinelinux.org/alpine/v3.21"
DEFAULT_KERNEL_URL = f"{ALPINE_MIRROR}/releases/aarch64/netboot/vmlinuz-lts"
DEFAULT_BUSYBOX_URL = f"{ALPINE_MIRROR}/main/aarch64/busybox-static-1.37.0-r14.apk"
DEFAULT_SYSROOT_LIBDIR = "/usr/aarch64-linux-gnu/lib"

# Names answered by the multi-call utility binary
ESSENTIAL_COMMANDS = [
    "sh",
    "ls",
    "cat",
    "echo",
    "mkdir",
    "mount",
    "umount",
    "ps",
    "kill",
    "sleep",
]


class ArtifactSpec(BaseModel):
    """Schema for an external artifact.

    Attributes:
        source: URL (http, https, file) or local filesystem path.
        filename: Cached file name (defaults to the source basename).
        sha256: Optional expected checksum of the fetched blob.
        extract_member: Member to extract when the source is a tar archive.
    """

    model_config = ConfigDict(extra="forbid")

    source: Annotated[str, Field(min_length=1, description="URL or local path")]
    filename: str | None = Field(default=None, description="Cached file name")
    sha256: str | None = Field(default=None, description="Expected SHA-256")
    extract_member: str | None = Field(
        default=None, description="Tar member holding the real payload"
    )

    @field_validator("sha256")
    @classmethod
    def validate_sha256(cls, v: str | None) -> str | None:
        """Validate sha256 is a 64 character hex digest."""
        if v is None:
            return v
        if not SHA256_PATTERN.match(v):
            raise ValueError("sha256 must be a 64 character hex digest")
        return v.lower()

    @field_validator("filename")
    @classmethod
    def validate_filename(cls, v: str | None) -> str | None:
        """Validate filename is a bare name."""
        if v is not None and ("/" in v or v in ("", ".", "..")):
            raise ValueError(f"filename must be a bare file name, got '{v}'")
        return v


class UtilitySpec(ArtifactSpec):
    """Schema for the multi-call shell utility binary.

    Attributes:
        name: Name installed as /bin/<name>.
        commands: Names symlinked to the utility in /bin.
    """

    name: str = Field(default="busybox", description="Binary name in /bin")
    commands: list[str] = Field(
        default_factory=lambda: list(ESSENTIAL_COMMANDS),
        description="Essential command aliases",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is usable as a file name."""
        if not COMMAND_NAME_PATTERN.match(v):
            raise ValueError(f"invalid utility name '{v}'")
        return v

    @field_validator("commands")
    @classmethod
    def validate_commands(cls, v: list[str]) -> list[str]:
        """Validate command names and drop duplicates preserving order."""
        seen: list[str] = []
        for cmd in v:
            if not COMMAND_NAME_PATTERN.match(cmd):
                raise ValueError(f"invalid command name '{cmd}'")
            if cmd not in seen:
                seen.append(cmd)
        return seen


class LibrarySpec(BaseModel):
    """Schema for a required shared library.

    Attributes:
        source: URL or local path of the library.
        soname: Name installed under /lib (defaults to the source basename).
        aliases: Extra image paths symlinked to /lib/<soname>.
    """

    model_config = ConfigDict(extra="forbid")

    source: Annotated[str, Field(min_length=1)]
    soname: str | None = Field(default=None)
    aliases: list[str] = Field(default_factory=list)

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: list[str]) -> list[str]:
        """Validate aliases are absolute image paths."""
        for alias in v:
            if not alias.startswith("/"):
                raise ValueError(f"alias must start with '/', got '{alias}'")
        return v

    @property
    def effective_soname(self) -> str:
        """Name of the library under /lib."""
        return self.soname or self.source.rstrip("/").rsplit("/", 1)[-1]


class InitSpec(BaseModel):
    """Schema for the init program compile step.

    Attributes:
        package: Cargo package to build.
        binary_name: Output binary name (defaults to package).
        workspace_dir: Directory the compile command runs in.
        target_dir: Cargo target directory (defaults to <workspace_dir>/target).
        command: Compile tool executable.
        prebuilt: Use this binary and skip compiling.
    """

    model_config = ConfigDict(extra="forbid")

    package: str = Field(default="mos-initd")
    binary_name: str | None = Field(default=None)
    workspace_dir: Path = Field(default=Path("."))
    target_dir: Path | None = Field(default=None)
    command: str = Field(default="cargo")
    prebuilt: Path | None = Field(default=None)

    @property
    def effective_binary_name(self) -> str:
        return self.binary_name or self.package

    @property
    def effective_target_dir(self) -> Path:
        return self.target_dir or self.workspace_dir / "target"


class BootSpec(BaseModel):
    """Schema for the kernel command line."""

    model_config = ConfigDict(extra="forbid")

    console: str = Field(default="ttyAMA0", description="Console device")
    extra_args: list[str] = Field(default_factory=list)


class LaunchSpec(BaseModel):
    """Schema for the emulator invocation.

    Machine type, CPU model and memory size are environment specific, so
    they are configuration rather than constants.
    """

    model_config = ConfigDict(extra="forbid")

    emulator: str = Field(default="qemu-system-aarch64")
    machine: str | None = Field(default="virt")
    cpu: str | None = Field(default="cortex-a53")
    memory: str | None = Field(default="512M")
    nographic: bool = Field(default=True)
    no_reboot: bool = Field(default=True)
    extra_args: list[str] = Field(default_factory=list)


def _default_kernel() -> ArtifactSpec:
    return ArtifactSpec(source=DEFAULT_KERNEL_URL, filename="vmlinuz")


def _default_utility() -> UtilitySpec:
    return UtilitySpec(
        source=DEFAULT_BUSYBOX_URL,
        filename="busybox",
        extract_member="bin/busybox.static",
    )


def _default_libraries() -> list[LibrarySpec]:
    return [
        LibrarySpec(source=f"{DEFAULT_SYSROOT_LIBDIR}/{name}")
        for name in ("ld-linux-aarch64.so.1", "libc.so.6", "libgcc_s.so.1")
    ]


class BuildConfig(BaseModel):
    """Complete build configuration.

    Attributes:
        profile: Init compile profile (debug or release).
        target: Target triple for the init compile step.
        init: Init program compile settings.
        kernel: Kernel image artifact.
        utility: Multi-call utility artifact and its command aliases.
        libraries: Shared libraries copied into /lib.
        overlay_dir: Optional directory copied over the tree.
        boot: Kernel command line settings.
        launch: Emulator invocation settings.
        compression: Initramfs compression.
    """

    model_config = ConfigDict(extra="forbid")

    profile: BuildProfile = Field(default=BuildProfile.DEBUG)
    target: str = Field(default="aarch64-unknown-linux-gnu")
    init: InitSpec = Field(default_factory=InitSpec)
    kernel: ArtifactSpec = Field(default_factory=_default_kernel)
    utility: UtilitySpec = Field(default_factory=_default_utility)
    libraries: list[LibrarySpec] = Field(default_factory=_default_libraries)
    overlay_dir: Path | None = Field(default=None)
    boot: BootSpec = Field(default_factory=BootSpec)
    launch: LaunchSpec = Field(default_factory=LaunchSpec)
    compression: Compression = Field(default=Compression.GZIP)

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Validate target looks like a target triple."""
        if not TARGET_TRIPLE_PATTERN.match(v):
            raise ValueError(f"target must be a target triple, got '{v}'")
        return v

    @field_validator("libraries")
    @classmethod
    def validate_unique_sonames(cls, v: list[LibrarySpec]) -> list[LibrarySpec]:
        """Validate no two libraries install to the same soname."""
        names = [lib.effective_soname for lib in v]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate library sonames: {', '.join(dupes)}")
        return v


__all__ = [
    "ESSENTIAL_COMMANDS",
    "ArtifactSpec",
    "BootSpec",
    "BuildConfig",
    "InitSpec",
    "LaunchSpec",
    "LibrarySpec",
    "UtilitySpec",
]
