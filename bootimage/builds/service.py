"""Build service module.

This module provides the high-level build API:
- BootImageBuilder.build_image(): run one build through its state machine
- Preflight checks that fail fast with ConfigError before any side effect
- Cancellation checks at every state transition
- build_image(): convenience wrapper with default settings

States advance Init -> CompilingInit -> ResolvingArtifacts -> BuildingTree
-> Packing -> Ready. Any error moves the build to Failed and propagates; a
failed build is never resumed, a new call starts again from Init. All
output lands in the build directory.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bootimage.archive.packer import ArchivePacker, archive_filename
from bootimage.artifacts.cache import (
    ArtifactCache,
    artifact_from_library,
    artifact_from_spec,
)
from bootimage.artifacts.fetch import is_remote, local_source_path
from bootimage.builds.manifest import (
    MANIFEST_FILENAME,
    BootManifest,
    compose_boot_command_line,
    generate_manifest,
    write_manifest,
)
from bootimage.builds.runner import check_compile_tool, compile_init
from bootimage.builds.schema import BuildConfig
from bootimage.config import Settings, get_settings
from bootimage.errors import BootImageError, BuildCancelledError, ConfigError, PackError
from bootimage.tree.builder import FilesystemTreeBuilder, ResolvedArtifacts
from bootimage.types import BuildState


logger = logging.getLogger(__name__)

TREE_DIRNAME = "initramfs"
LOG_DIRNAME = "logs"

ALLOWED_TRANSITIONS: dict[BuildState, set[BuildState]] = {
    BuildState.INIT: {BuildState.COMPILING_INIT, BuildState.FAILED},
    BuildState.COMPILING_INIT: {BuildState.RESOLVING_ARTIFACTS, BuildState.FAILED},
    BuildState.RESOLVING_ARTIFACTS: {BuildState.BUILDING_TREE, BuildState.FAILED},
    BuildState.BUILDING_TREE: {BuildState.PACKING, BuildState.FAILED},
    BuildState.PACKING: {BuildState.READY, BuildState.FAILED},
    BuildState.READY: set(),
    BuildState.FAILED: set(),
}

# (config, log_dir) -> init binary path
InitCompiler = Callable[[BuildConfig, Path], Path]


@dataclass
class BuildFailure:
    """Why a build ended in the Failed state."""

    stage: BuildState
    code: str
    message: str
    path: str | None = None


class BootImageBuilder:
    """Orchestrates one boot image build at a time."""

    def __init__(
        self,
        settings: Settings | None = None,
        cache: ArtifactCache | None = None,
        compiler: InitCompiler | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize BootImageBuilder.

        Args:
            settings: Application settings (build_dir, cache_dir, timeouts).
            cache: Artifact cache; one is created per build if not given.
            compiler: Replacement for the external init compile step.
            cancel_event: Set to cancel the build at the next transition.
        """
        self.settings = settings if settings is not None else get_settings()
        self.cache = cache
        self.compiler = compiler
        self.cancel_event = cancel_event
        self.state = BuildState.INIT
        self.history: list[BuildState] = [BuildState.INIT]
        self.failure: BuildFailure | None = None

    @property
    def build_dir(self) -> Path:
        return self.settings.build_dir

    @property
    def tree_dir(self) -> Path:
        return self.build_dir / TREE_DIRNAME

    @property
    def manifest_path(self) -> Path:
        return self.build_dir / MANIFEST_FILENAME

    @property
    def cache_dir(self) -> Path:
        if self.cache is not None:
            return self.cache.cache_dir
        return self.settings.effective_cache_dir

    def _reset(self) -> None:
        self.state = BuildState.INIT
        self.history = [BuildState.INIT]
        self.failure = None

    def _transition(self, new_state: BuildState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid build transition {self.state.value} -> {new_state.value}"
            )
        # Entering Ready is checked before the manifest write instead
        if new_state not in (BuildState.FAILED, BuildState.READY):
            self._check_cancelled(new_state.value)
        logger.debug("Build state %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def _check_cancelled(self, before: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise BuildCancelledError(f"Build cancelled before {before}", code="cancelled")

    def _fail(self, error: Exception) -> None:
        stage = self.state
        if isinstance(error, BootImageError):
            error.stage = stage.value
            failure = BuildFailure(
                stage=stage, code=error.code, message=str(error), path=error.path
            )
        else:
            failure = BuildFailure(stage=stage, code="internal_error", message=str(error))
        self.failure = failure
        self.state = BuildState.FAILED
        self.history.append(BuildState.FAILED)
        logger.error(
            "Build failed during %s [%s]: %s%s",
            stage.value,
            failure.code,
            failure.message,
            f" (path: {failure.path})" if failure.path else "",
        )

    def preflight(self, config: BuildConfig) -> None:
        """Check required local inputs before anything is written.

        Raises:
            ConfigError: If a local library, binary or tool is missing.
        """
        for lib in config.libraries:
            if is_remote(lib.source):
                continue
            path = local_source_path(lib.source)
            if not path.is_file():
                raise ConfigError(
                    f"Required library not found: {path}",
                    path=str(path),
                    code="missing_library",
                )

        cache_dir = self.cache_dir
        for name, spec in (("kernel", config.kernel), (config.utility.name, config.utility)):
            if is_remote(spec.source):
                continue
            artifact = artifact_from_spec(name, spec, cache_dir)
            if not artifact.destination.is_file() and not local_source_path(spec.source).is_file():
                raise ConfigError(
                    f"Required {name} not found: {spec.source}",
                    path=spec.source,
                    code="missing_artifact",
                )

        if config.init.prebuilt is not None:
            if not config.init.prebuilt.is_file():
                raise ConfigError(
                    f"Prebuilt init binary not found: {config.init.prebuilt}",
                    path=str(config.init.prebuilt),
                    code="missing_init",
                )
        elif self.compiler is None and check_compile_tool(config.init) is None:
            raise ConfigError(
                f"Compile tool not found on PATH: {config.init.command}",
                path=config.init.command,
                code="missing_tool",
            )

    def _compile(self, config: BuildConfig) -> Path:
        log_dir = self.build_dir / LOG_DIRNAME
        if self.compiler is not None and config.init.prebuilt is None:
            return self.compiler(config, log_dir)
        result = compile_init(config, log_dir, timeout=self.settings.compile_timeout)
        return result.binary_path

    def _resolve(self, config: BuildConfig, cache: ArtifactCache) -> ResolvedArtifacts:
        cache_dir = cache.cache_dir
        kernel = artifact_from_spec("kernel", config.kernel, cache_dir)
        utility = artifact_from_spec(
            config.utility.name, config.utility, cache_dir, executable=True
        )
        libraries = [artifact_from_library(lib, cache_dir) for lib in config.libraries]

        paths = cache.resolve_all([kernel, utility, *libraries])
        return ResolvedArtifacts(
            kernel=paths[0],
            utility=paths[1],
            libraries={lib.name: path for lib, path in zip(libraries, paths[2:])},
        )

    def _open_cache(self) -> ArtifactCache:
        if self.cache is not None:
            return self.cache
        return ArtifactCache(
            self.cache_dir,
            offline=self.settings.offline,
            timeout=self.settings.download_timeout,
            max_workers=self.settings.max_concurrent_downloads,
        )

    def build_image(self, config: BuildConfig) -> BootManifest:
        """Run a full build.

        Args:
            config: Build configuration; not modified.

        Returns:
            BootManifest for the launch step.

        Raises:
            ConfigError: If a required input is missing before the build.
            CompileError: If the init compile step fails.
            FetchError: If an artifact cannot be fetched.
            IntegrityError: If a fetched artifact has the wrong shape.
            TreeBuildError: If the root tree cannot be built.
            PackError: If the archive cannot be written.
            BuildCancelledError: If cancelled between stages.
        """
        self._reset()
        logger.info("Building boot image in %s (profile: %s)", self.build_dir, config.profile.value)

        try:
            self.manifest_path.unlink(missing_ok=True)
            self.preflight(config)

            self._transition(BuildState.COMPILING_INIT)
            init_binary = self._compile(config)

            self._transition(BuildState.RESOLVING_ARTIFACTS)
            cache = self._open_cache()
            try:
                artifacts = self._resolve(config, cache)
            finally:
                if cache is not self.cache:
                    cache.close()

            self._transition(BuildState.BUILDING_TREE)
            tree = FilesystemTreeBuilder(scratch_dir=self.tree_dir).build(
                config, init_binary, artifacts
            )

            self._transition(BuildState.PACKING)
            archive_path = self.build_dir / archive_filename(config.compression)
            packed = ArchivePacker(config.compression).pack(tree, archive_path)

            manifest = BootManifest(
                kernel_image_path=artifacts.kernel,
                initramfs_archive_path=packed.path,
                boot_command_line=compose_boot_command_line(config.boot),
            )
            doc = generate_manifest(
                manifest,
                archive_sha256=packed.sha256,
                archive_size_bytes=packed.size_bytes,
                build_inputs=_build_inputs(config, init_binary),
            )
            self._check_cancelled(BuildState.READY.value)
            try:
                write_manifest(doc, self.manifest_path)
            except OSError as e:
                raise PackError(
                    f"Failed to write manifest {self.manifest_path}: {e}",
                    path=str(self.manifest_path),
                    code="manifest_error",
                ) from e

            self._transition(BuildState.READY)

        except Exception as e:
            self._fail(e)
            raise

        logger.info("Boot image ready: %s", manifest.initramfs_archive_path)
        return manifest


def _build_inputs(config: BuildConfig, init_binary: Path) -> dict[str, Any]:
    return {
        "profile": config.profile.value,
        "target": config.target,
        "init_binary": str(init_binary),
        "utility": config.utility.name,
        "commands": list(config.utility.commands),
        "libraries": [lib.effective_soname for lib in config.libraries],
        "overlay_dir": str(config.overlay_dir) if config.overlay_dir else None,
        "compression": config.compression.value,
    }


def build_image(
    config: BuildConfig,
    settings: Settings | None = None,
    cancel_event: threading.Event | None = None,
) -> BootManifest:
    """Build a boot image with a fresh BootImageBuilder.

    Args:
        config: Build configuration.
        settings: Application settings.
        cancel_event: Optional cancellation event.

    Returns:
        BootManifest for the launch step.
    """
    return BootImageBuilder(settings=settings, cancel_event=cancel_event).build_image(
        config
    )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "BootImageBuilder",
    "BuildFailure",
    "build_image",
]
