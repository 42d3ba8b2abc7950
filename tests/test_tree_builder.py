"""Tests for tree/builder.py module.

Tests root tree layout, utility aliases, libraries, device nodes,
overlays, and materialization to a scratch directory.
"""

import os

import pytest

from bootimage.builds.schema import BuildConfig, LibrarySpec, UtilitySpec
from bootimage.errors import TreeBuildError
from bootimage.tree.builder import (
    DEVICE_NODES,
    SKELETON_DIRS,
    FilesystemTreeBuilder,
    ResolvedArtifacts,
    create_device_nodes,
    materialize_tree,
)
from bootimage.tree.models import DeviceNode, Directory, FilesystemTree, RegularFile, Symlink
from bootimage.types import DeviceType


@pytest.fixture
def inputs(tmp_path):
    """Create fake init, utility and library files."""
    files = {}
    for name in ("init", "busybox", "ld-linux-aarch64.so.1", "libc.so.6"):
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(f"{name} contents".encode())
        files[name] = path
    return files


@pytest.fixture
def config(inputs):
    """Create a build config pointing at the fake inputs."""
    return BuildConfig(
        utility=UtilitySpec(source=str(inputs["busybox"]), commands=["sh", "ls", "mount"]),
        libraries=[
            LibrarySpec(
                source=str(inputs["ld-linux-aarch64.so.1"]),
                aliases=["/lib64/ld-linux-aarch64.so.1"],
            ),
            LibrarySpec(source=str(inputs["libc.so.6"])),
        ],
    )


@pytest.fixture
def artifacts(inputs, tmp_path):
    """Resolved artifact paths for the fake inputs."""
    return ResolvedArtifacts(
        kernel=tmp_path / "vmlinuz",
        utility=inputs["busybox"],
        libraries={
            "ld-linux-aarch64.so.1": inputs["ld-linux-aarch64.so.1"],
            "libc.so.6": inputs["libc.so.6"],
        },
    )


class TestFilesystemTreeBuilder:
    """Tests for FilesystemTreeBuilder.build."""

    def test_skeleton(self, config, inputs, artifacts):
        """Should create every skeleton directory."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        for name in SKELETON_DIRS:
            assert isinstance(tree.get(name), Directory)

    def test_init_installed(self, config, inputs, artifacts):
        """Should place the init program at /init, executable."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        entry = tree.get("/init")
        assert isinstance(entry, RegularFile)
        assert entry.source == inputs["init"]
        assert entry.mode == 0o755

    def test_utility_and_aliases(self, config, inputs, artifacts):
        """Should install the utility with one relative link per command."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        assert isinstance(tree.get("bin/busybox"), RegularFile)
        for cmd in ("sh", "ls", "mount"):
            assert tree.get(f"bin/{cmd}") == Symlink(target="busybox")
            assert tree.resolve_symlink(f"bin/{cmd}") == "bin/busybox"

    def test_libraries_and_aliases(self, config, inputs, artifacts):
        """Should copy libraries into /lib and link aliases."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        assert tree.get("lib/libc.so.6") == RegularFile(mode=0o755, source=inputs["libc.so.6"])
        assert tree.get("lib64/ld-linux-aarch64.so.1") == Symlink(
            target="/lib/ld-linux-aarch64.so.1"
        )

    def test_device_nodes(self, config, inputs, artifacts):
        """Should create the static device nodes."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        assert tree.get("dev/console") == DeviceNode(DeviceType.CHAR, 5, 1, 0o622)
        assert tree.get("dev/null") == DeviceNode(DeviceType.CHAR, 1, 3, 0o666)
        for node in DEVICE_NODES:
            assert node.path in tree

    def test_proc_and_sys_empty(self, config, inputs, artifacts):
        """Mount points should be empty directories."""
        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        assert tree.children("proc") == []
        assert tree.children("sys") == []

    def test_overlay_applied(self, config, inputs, artifacts, tmp_path):
        """Overlay entries should be added and win on collision."""
        overlay = tmp_path / "overlay"
        (overlay / "etc").mkdir(parents=True)
        (overlay / "etc" / "hostname").write_text("mos\n")
        (overlay / "bin").mkdir()
        (overlay / "bin" / "ls").write_text("custom ls\n")

        tree = FilesystemTreeBuilder().build(
            config, inputs["init"], artifacts, overlay_dir=overlay
        )

        assert isinstance(tree.get("etc/hostname"), RegularFile)
        assert isinstance(tree.get("bin/ls"), RegularFile)
        assert tree.get("bin/sh") == Symlink(target="busybox")

    def test_overlay_from_config(self, config, inputs, artifacts, tmp_path):
        """Should default to config.overlay_dir."""
        overlay = tmp_path / "overlay"
        (overlay / "etc").mkdir(parents=True)
        (overlay / "etc" / "motd").write_text("hi\n")
        config = config.model_copy(update={"overlay_dir": overlay})

        tree = FilesystemTreeBuilder().build(config, inputs["init"], artifacts)

        assert "etc/motd" in tree

    def test_missing_init(self, config, artifacts, tmp_path):
        """Should fail when the init binary is missing."""
        with pytest.raises(TreeBuildError) as exc_info:
            FilesystemTreeBuilder().build(config, tmp_path / "nope", artifacts)
        assert exc_info.value.code == "missing_input"

    def test_unresolved_library(self, config, inputs, artifacts):
        """Should fail when a configured library was not resolved."""
        del artifacts.libraries["libc.so.6"]
        with pytest.raises(TreeBuildError) as exc_info:
            FilesystemTreeBuilder().build(config, inputs["init"], artifacts)
        assert exc_info.value.code == "missing_input"

    def test_dangling_overlay_link(self, config, inputs, artifacts, tmp_path):
        """A dangling overlay symlink should fail the build."""
        overlay = tmp_path / "overlay"
        (overlay / "etc").mkdir(parents=True)
        os.symlink("/nowhere", overlay / "etc" / "broken")

        with pytest.raises(TreeBuildError) as exc_info:
            FilesystemTreeBuilder().build(
                config, inputs["init"], artifacts, overlay_dir=overlay
            )
        assert exc_info.value.code == "dangling_symlink"

    def test_build_is_repeatable(self, config, inputs, artifacts):
        """Two builds from the same inputs should produce equal trees."""
        builder = FilesystemTreeBuilder()
        first = builder.build(config, inputs["init"], artifacts)
        second = builder.build(config, inputs["init"], artifacts)
        assert list(first) == list(second)


class TestCreateDeviceNodes:
    """Tests for create_device_nodes function."""

    def test_existing_entry_kept(self):
        """An entry already at a device path should be kept."""
        tree = FilesystemTree()
        tree.add_file("dev/null", data=b"")
        create_device_nodes(tree)
        assert isinstance(tree.get("dev/null"), RegularFile)
        assert isinstance(tree.get("dev/zero"), DeviceNode)


class TestMaterializeTree:
    """Tests for materialize_tree function."""

    def test_writes_tree(self, tmp_path):
        """Should write files, directories and symlinks."""
        tree = FilesystemTree()
        tree.add_file("bin/busybox", data=b"bb", mode=0o755)
        tree.add_symlink("bin/sh", "busybox")
        tree.add_directory("proc", mode=0o555)

        root = materialize_tree(tree, tmp_path / "rootfs")

        assert (root / "bin" / "busybox").read_bytes() == b"bb"
        assert os.readlink(root / "bin" / "sh") == "busybox"
        assert (root / "proc").stat().st_mode & 0o777 == 0o555

    def test_replaces_previous_tree(self, tmp_path):
        """Should remove stale files from an earlier run."""
        root = tmp_path / "rootfs"
        root.mkdir()
        (root / "stale").write_text("old")

        tree = FilesystemTree()
        tree.add_directory("etc")
        materialize_tree(tree, root)

        assert sorted(p.name for p in root.iterdir()) == ["etc"]

    def test_scratch_dir_used_by_builder(self, config, inputs, artifacts, tmp_path):
        """The builder should materialize into its scratch dir."""
        scratch = tmp_path / "initramfs"
        FilesystemTreeBuilder(scratch_dir=scratch).build(config, inputs["init"], artifacts)
        assert (scratch / "init").read_bytes() == b"init contents"
        assert os.readlink(scratch / "bin" / "sh") == "busybox"
