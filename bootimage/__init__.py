"""Boot image builder - assemble kernel + initramfs boot images.

This package resolves boot artifacts, lays out a minimal root filesystem,
packs it into a compressed newc cpio initramfs and hands the result to an
emulator or bootloader.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
