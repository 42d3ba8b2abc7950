"""Tests for the emulator launch step."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from bootimage.builds.manifest import BootManifest
from bootimage.builds.schema import LaunchSpec
from bootimage.launch import LaunchError, compose_launch_command, launch


@pytest.fixture
def manifest() -> BootManifest:
    """Create a sample manifest."""
    return BootManifest(
        kernel_image_path=Path("/b/vmlinuz"),
        initramfs_archive_path=Path("/b/initramfs.cpio.gz"),
        boot_command_line="console=ttyAMA0 rdinit=/init",
    )


class TestComposeLaunchCommand:
    """Tests for compose_launch_command function."""

    def test_default_command(self, manifest):
        """Should match the stock emulator invocation."""
        cmd = compose_launch_command(manifest, LaunchSpec())
        assert cmd == [
            "qemu-system-aarch64",
            "-machine",
            "virt",
            "-cpu",
            "cortex-a53",
            "-m",
            "512M",
            "-nographic",
            "-kernel",
            "/b/vmlinuz",
            "-initrd",
            "/b/initramfs.cpio.gz",
            "-append",
            "console=ttyAMA0 rdinit=/init",
            "-no-reboot",
        ]

    def test_optional_flags(self, manifest):
        """Should omit unset flags and append extra args."""
        launch_spec = LaunchSpec(
            emulator="qemu-system-x86_64",
            machine=None,
            cpu=None,
            memory="1G",
            nographic=False,
            no_reboot=False,
            extra_args=["-smp", "2"],
        )
        cmd = compose_launch_command(manifest, launch_spec)
        assert cmd[:3] == ["qemu-system-x86_64", "-m", "1G"]
        assert "-nographic" not in cmd
        assert "-no-reboot" not in cmd
        assert cmd[-2:] == ["-smp", "2"]


class TestLaunch:
    """Tests for launch function."""

    def test_returns_exit_code(self, manifest):
        """Should run the emulator and return its exit code."""
        with patch("bootimage.launch.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=3)
            assert launch(manifest, LaunchSpec()) == 3
        assert mock_run.call_args.args[0][0] == "qemu-system-aarch64"

    def test_missing_emulator(self, manifest):
        """Should raise LaunchError when the emulator cannot run."""
        with patch("bootimage.launch.subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError("qemu")
            with pytest.raises(LaunchError) as exc_info:
                launch(manifest, LaunchSpec())
        assert exc_info.value.code == "execution_error"
