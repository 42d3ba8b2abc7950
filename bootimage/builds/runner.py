"""Init program compile step.

This module handles:
- Composing the cargo command that cross-builds the init program
- Executing it with subprocess, capturing output to a log file
- Enforcing the compile timeout
- Locating the compiled binary
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from bootimage.builds.schema import BuildConfig, InitSpec
from bootimage.errors import CompileError
from bootimage.types import BuildProfile

logger = logging.getLogger(__name__)


@dataclass
class CompileResult:
    """Result of the init compile step.

    Attributes:
        binary_path: Path to the init binary.
        command: The command that was executed ('' when prebuilt).
        log_path: Path to the compile log, if a compile ran.
        started_at: Compile start time.
        finished_at: Compile finish time.
    """

    binary_path: Path
    command: str
    log_path: Path | None
    started_at: datetime
    finished_at: datetime


def compose_compile_command(init: InitSpec, target: str, profile: BuildProfile) -> list[str]:
    """Compose the cargo build command for the init program.

    Args:
        init: Init compile settings.
        target: Target triple.
        profile: Build profile.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [init.command, "build", "-p", init.package, "--target", target]
    if init.target_dir is not None:
        cmd.extend(["--target-dir", str(init.target_dir)])
    if profile == BuildProfile.RELEASE:
        cmd.append("--release")
    return cmd


def expected_binary_path(init: InitSpec, target: str, profile: BuildProfile) -> Path:
    """Return where cargo places the compiled init binary."""
    return init.effective_target_dir / target / profile.value / init.effective_binary_name


def check_compile_tool(init: InitSpec) -> str | None:
    """Return the resolved compile tool path, or None if it is not on PATH."""
    return shutil.which(init.command)


def compile_init(
    config: BuildConfig,
    log_dir: Path,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> CompileResult:
    """Build the init program, or use the configured prebuilt binary.

    Args:
        config: Build configuration.
        log_dir: Directory for the compile log.
        timeout: Compile timeout in seconds (None = no timeout).
        env_override: Optional environment variable overrides.

    Returns:
        CompileResult with the binary path.

    Raises:
        CompileError: If the compile fails, times out, or produces no binary.
    """
    init = config.init
    started_at = datetime.now(timezone.utc)

    if init.prebuilt is not None:
        if not init.prebuilt.is_file():
            raise CompileError(
                f"Prebuilt init binary not found: {init.prebuilt}",
                path=str(init.prebuilt),
                code="missing_binary",
            )
        logger.info("Using prebuilt init binary %s", init.prebuilt)
        return CompileResult(
            binary_path=init.prebuilt,
            command="",
            log_path=None,
            started_at=started_at,
            finished_at=started_at,
        )

    cmd = compose_compile_command(init, config.target, config.profile)
    cmd_str = shlex.join(cmd)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "compile.log"

    logger.info("Building %s for %s", init.package, config.target)
    logger.info("Executing: %s", cmd_str)

    env: dict[str, str] | None = None
    if env_override:
        env = dict(os.environ)
        env.update(env_override)

    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {init.workspace_dir}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = subprocess.run(
                cmd,
                cwd=init.workspace_dir,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                env=env,
                check=False,
            )
    except subprocess.TimeoutExpired as e:
        raise CompileError(
            f"Init compile timed out after {timeout} seconds. See log: {log_path}",
            path=str(log_path),
            code="compile_timeout",
            exit_code=-1,
        ) from e
    except OSError as e:
        raise CompileError(
            f"Failed to execute {cmd_str}: {e}",
            path=str(init.workspace_dir),
            code="execution_error",
        ) from e

    finished_at = datetime.now(timezone.utc)

    if result.returncode != 0:
        logger.error("Init compile failed with exit code %d. See log: %s", result.returncode, log_path)
        raise CompileError(
            f"Init compile failed with exit code {result.returncode}. See log: {log_path}",
            path=str(log_path),
            code="compile_failed",
            exit_code=result.returncode,
        )

    binary_path = expected_binary_path(init, config.target, config.profile)
    if not binary_path.is_file():
        raise CompileError(
            f"Compiled init binary not found: {binary_path}",
            path=str(binary_path),
            code="missing_binary",
        )

    logger.info("Built: %s", binary_path)
    return CompileResult(
        binary_path=binary_path,
        command=cmd_str,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
    )


__all__ = [
    "CompileResult",
    "check_compile_tool",
    "compile_init",
    "compose_compile_command",
    "expected_binary_path",
]
