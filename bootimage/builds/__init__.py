"""Build orchestration module.

This module handles:
- Build configuration schema and file loading
- Compiling the init program
- Boot manifest generation
- The build state machine (BootImageBuilder)
"""

# Submodules are imported directly to avoid circular imports
# Access via bootimage.builds.service, bootimage.builds.schema, etc.
