"""Tests for shared types module."""

from bootimage.types import BuildProfile, BuildState, Compression, DeviceType, EntryKind


class TestEnums:
    """Test enum definitions."""

    def test_build_profile_values(self) -> None:
        """BuildProfile should have expected values."""
        assert BuildProfile.DEBUG.value == "debug"
        assert BuildProfile.RELEASE.value == "release"

    def test_build_state_values(self) -> None:
        """BuildState should list every stage in order."""
        assert [s.value for s in BuildState] == [
            "init",
            "compiling_init",
            "resolving_artifacts",
            "building_tree",
            "packing",
            "ready",
            "failed",
        ]

    def test_terminal_states(self) -> None:
        """Only Ready and Failed should be terminal."""
        terminal = {s for s in BuildState if s.is_terminal}
        assert terminal == {BuildState.READY, BuildState.FAILED}

    def test_entry_kind_values(self) -> None:
        """EntryKind should have expected values."""
        assert EntryKind.DIRECTORY.value == "directory"
        assert EntryKind.DEVICE.value == "device"

    def test_device_type_values(self) -> None:
        """DeviceType should have expected values."""
        assert DeviceType.CHAR.value == "char"
        assert DeviceType.BLOCK.value == "block"

    def test_compression_suffix(self) -> None:
        """Compression should map to archive suffixes."""
        assert Compression.GZIP.suffix == ".gz"
        assert Compression.XZ.suffix == ".xz"
        assert Compression.NONE.suffix == ""

    def test_enums_are_strings(self) -> None:
        """Enums should compare equal to their string values."""
        assert BuildState.READY == "ready"
        assert Compression("xz") is Compression.XZ
