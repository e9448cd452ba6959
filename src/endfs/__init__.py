"""
endfs - A FUSE mirror filesystem with transparent content encryption.

Features:
- Mirrors an existing directory tree at a mount point
- File content encrypted at rest with a single passphrase
- Names, attributes and directory structure pass through unchanged
- Per-file serialized, atomically committed writes
- Optional JSON audit trail
"""

__version__ = "1.0.0"
__author__ = "endfs Team"
