"""
src/endfs/paths.py - Virtual to Real Path Translation

Maps a mount-relative path onto the mirror tree by plain concatenation:
``/data`` + ``/a/b`` -> ``/data/a/b``.

The result is length-checked but neither normalised nor confined to the
mirror root, so a virtual path containing ``..`` components can address
files outside it.
"""

import os

from .exceptions import NameTooLong

# Linux PATH_MAX, including the terminating NUL of the C API
PATH_MAX = 4096


class PathTranslator:
    """Translates virtual paths into real paths under the mirror root."""

    def __init__(self, mirror_root: str, max_length: int = PATH_MAX):
        self.mirror_root = mirror_root
        self.max_length = max_length

    def translate(self, virtual_path: str) -> str:
        """
        Build the real path for a virtual path.

        Args:
            virtual_path: Mount-relative path as delivered by the kernel

        Returns:
            ``mirror_root + virtual_path``

        Raises:
            NameTooLong: If the encoded result does not fit in ``max_length``
        """
        real_path = self.mirror_root + virtual_path
        if len(os.fsencode(real_path)) >= self.max_length:
            raise NameTooLong(
                f"Real path exceeds {self.max_length - 1} bytes", virtual_path
            )
        return real_path
