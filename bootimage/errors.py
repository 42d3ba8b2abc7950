"""Error taxonomy for boot image builds.

Every error carries a stable ``code`` for structured handling and, where
one exists, the offending path or locator. ``stage`` is set by the build
orchestrator when an error aborts a build.
"""

from __future__ import annotations


class BootImageError(Exception):
    """Base error for all boot image build failures."""

    default_code = "bootimage_error"

    def __init__(
        self,
        message: str,
        path: str | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize BootImageError.

        Args:
            message: Error description.
            path: Offending filesystem path or source locator.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.path = path
        self.code = code or self.default_code
        self.stage: str | None = None


class FetchError(BootImageError):
    """Raised when an artifact source is unreachable or returns a bad status."""

    default_code = "fetch_error"


class IntegrityError(BootImageError):
    """Raised when a fetched artifact is not in the expected shape."""

    default_code = "integrity_error"


class TreeBuildError(BootImageError):
    """Raised when the root filesystem tree cannot be constructed."""

    default_code = "tree_build_error"


class PackError(BootImageError):
    """Raised when the initramfs archive cannot be written."""

    default_code = "pack_error"


class ConfigError(BootImageError):
    """Raised when a required input is missing before the build starts."""

    default_code = "config_error"


class CompileError(BootImageError):
    """Raised when the external init compile step fails."""

    default_code = "compile_error"

    def __init__(
        self,
        message: str,
        path: str | None = None,
        code: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        """Initialize CompileError.

        Args:
            message: Error message.
            path: Log file or binary involved, if any.
            code: Error code; defaults to "compile_error".
            exit_code: Exit code of the compile command, if it ran.
        """
        super().__init__(message, path=path, code=code)
        self.exit_code = exit_code


class BuildCancelledError(BootImageError):
    """Raised when a build is cancelled between stages."""

    default_code = "cancelled"


__all__ = [
    "BootImageError",
    "BuildCancelledError",
    "CompileError",
    "ConfigError",
    "FetchError",
    "IntegrityError",
    "PackError",
    "TreeBuildError",
]
