"""
src/endfs/passthrough.py - Metadata Passthrough

Attribute and directory operations forwarded to the backing tree through
translated paths. No content is touched here, and native OSErrors
propagate unchanged so fusepy reports the original errno.

Known limitation: getattr reports the backing file's st_size, which is the
ciphertext length (magic, padding and MAC included), not the plaintext
length. Reads still stop at plaintext EOF, but O_APPEND writes land at the
ciphertext length and leave a zero-filled gap after the real content.
Mounting with direct_io does not change this, since the kernel still takes
the append offset from st_size.
"""

import os
import stat
from typing import Any, Dict, List, Optional, Tuple

import xattr

from .exceptions import NotFound, PermissionDenied
from .paths import PathTranslator

# Reserved marker attribute. No operation reads or writes it.
ENCRYPTED_XATTR = "user.endfs.encrypted"

STAT_KEYS = ('st_atime', 'st_ctime', 'st_gid', 'st_mode', 'st_mtime',
             'st_nlink', 'st_size', 'st_uid')

STATVFS_KEYS = ('f_bavail', 'f_bfree', 'f_blocks', 'f_bsize', 'f_favail',
                'f_ffree', 'f_files', 'f_flag', 'f_frsize', 'f_namemax')


class MetadataPassthrough:
    """Delegates metadata operations for virtual paths to the mirror tree."""

    def __init__(self, translator: PathTranslator):
        self.translator = translator

    def _real(self, path: str) -> str:
        return self.translator.translate(path)

    # Attributes

    def getattr(self, path: str) -> Dict[str, Any]:
        """lstat of the backing entry; st_size is the ciphertext size."""
        st = os.lstat(self._real(path))
        return {key: getattr(st, key) for key in STAT_KEYS}

    def access(self, path: str, amode: int):
        real_path = self._real(path)
        if not os.access(real_path, amode):
            if not os.path.lexists(real_path):
                raise NotFound(path=path)
            raise PermissionDenied(path=path)

    def chmod(self, path: str, mode: int):
        os.chmod(self._real(path), mode)

    def chown(self, path: str, uid: int, gid: int):
        os.lchown(self._real(path), uid, gid)

    def utimens(self, path: str, times: Optional[Tuple[float, float]] = None):
        os.utime(self._real(path), times)

    def statfs(self, path: str) -> Dict[str, int]:
        stv = os.statvfs(self._real(path))
        return {key: getattr(stv, key) for key in STATVFS_KEYS}

    # Directory entries

    def readdir(self, path: str) -> List[str]:
        return ['.', '..'] + os.listdir(self._real(path))

    def mknod(self, path: str, mode: int, dev: int):
        real_path = self._real(path)
        if stat.S_ISREG(mode):
            os.close(os.open(real_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, mode))
        elif stat.S_ISFIFO(mode):
            os.mkfifo(real_path, mode)
        else:
            os.mknod(real_path, mode, dev)

    def mkdir(self, path: str, mode: int):
        os.mkdir(self._real(path), mode)

    def rmdir(self, path: str):
        os.rmdir(self._real(path))

    def unlink(self, path: str):
        os.unlink(self._real(path))

    def rename(self, old: str, new: str):
        os.rename(self._real(old), self._real(new))

    def link(self, target: str, source: str):
        """Create hard link ``target`` to the existing file ``source``."""
        os.link(self._real(source), self._real(target))

    def symlink(self, target: str, source: str):
        """Create symlink ``target`` whose text is ``source``, untranslated."""
        os.symlink(source, self._real(target))

    def readlink(self, path: str) -> str:
        return os.readlink(self._real(path))

    # Handles (none are kept)

    def open(self, path: str, flags: int) -> int:
        os.close(os.open(self._real(path), flags))
        return 0

    def release(self, path: str) -> int:
        return 0

    def fsync(self, path: str, datasync: int) -> int:
        fd = os.open(self._real(path), os.O_RDONLY)
        try:
            if datasync and hasattr(os, "fdatasync"):
                os.fdatasync(fd)
            else:
                os.fsync(fd)
        finally:
            os.close(fd)
        return 0

    # Extended attributes

    def setxattr(self, path: str, name: str, value: bytes, options: int):
        xattr.setxattr(self._real(path), name, value, options, symlink=True)

    def getxattr(self, path: str, name: str) -> bytes:
        return xattr.getxattr(self._real(path), name, symlink=True)

    def listxattr(self, path: str) -> List[str]:
        return list(xattr.listxattr(self._real(path), symlink=True))

    def removexattr(self, path: str, name: str):
        xattr.removexattr(self._real(path), name, symlink=True)
