"""newc cpio serialization and initramfs packing."""
