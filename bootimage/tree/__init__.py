"""Initramfs root tree construction and overlays."""

from bootimage.tree.models import FilesystemTree

__all__ = ["FilesystemTree"]
