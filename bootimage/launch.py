"""Emulator launch step.

Boots a built image under the emulator with the manifest's kernel,
initramfs and command line. Emulator flags come from the build config's
launch section.
"""

from __future__ import annotations

import logging
import shlex
import subprocess

from bootimage.builds.manifest import BootManifest
from bootimage.builds.schema import LaunchSpec
from bootimage.errors import BootImageError

logger = logging.getLogger(__name__)


class LaunchError(BootImageError):
    """Raised when the emulator cannot be started."""

    default_code = "launch_error"


def compose_launch_command(manifest: BootManifest, launch: LaunchSpec) -> list[str]:
    """Compose the emulator command line.

    Args:
        manifest: Boot manifest of a finished build.
        launch: Emulator settings.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [launch.emulator]
    if launch.machine:
        cmd.extend(["-machine", launch.machine])
    if launch.cpu:
        cmd.extend(["-cpu", launch.cpu])
    if launch.memory:
        cmd.extend(["-m", launch.memory])
    if launch.nographic:
        cmd.append("-nographic")
    cmd.extend(
        [
            "-kernel",
            str(manifest.kernel_image_path),
            "-initrd",
            str(manifest.initramfs_archive_path),
            "-append",
            manifest.boot_command_line,
        ]
    )
    if launch.no_reboot:
        cmd.append("-no-reboot")
    cmd.extend(launch.extra_args)
    return cmd


def launch(manifest: BootManifest, launch: LaunchSpec) -> int:
    """Run the emulator in the foreground.

    Args:
        manifest: Boot manifest of a finished build.
        launch: Emulator settings.

    Returns:
        Emulator exit code.

    Raises:
        LaunchError: If the emulator executable cannot be run.
    """
    cmd = compose_launch_command(manifest, launch)
    logger.info("Executing: %s", shlex.join(cmd))
    try:
        result = subprocess.run(cmd, check=False)
    except OSError as e:
        raise LaunchError(
            f"Failed to execute {launch.emulator}: {e}",
            path=launch.emulator,
            code="execution_error",
        ) from e
    return result.returncode


__all__ = ["LaunchError", "compose_launch_command", "launch"]
