"""
src/endfs/exceptions.py - Filesystem Error Taxonomy

Every error raised by endfs is an ``OSError`` carrying a real ``errno``, so
fusepy can hand ``-errno`` straight back to the kernel and callers see the
usual filesystem error semantics.
"""

import errno
import os
from typing import Optional


class EndFSError(OSError):
    """Base exception for endfs errors."""

    errno_code = errno.EIO

    def __init__(self, message: Optional[str] = None, path: Optional[str] = None,
                 code: Optional[int] = None):
        code = code or self.errno_code
        super().__init__(code, message or os.strerror(code), path)


class NotFound(EndFSError):
    """Raised when a backing path does not exist."""
    errno_code = errno.ENOENT


class PermissionDenied(EndFSError):
    """Raised when the backing store refuses access."""
    errno_code = errno.EACCES


class AlreadyExists(EndFSError):
    errno_code = errno.EEXIST


class NotADirectory(EndFSError):
    errno_code = errno.ENOTDIR


class IsADirectory(EndFSError):
    errno_code = errno.EISDIR


class NameTooLong(EndFSError):
    """Raised when a translated real path exceeds the allowed length."""
    errno_code = errno.ENAMETOOLONG


class NoSpace(EndFSError):
    errno_code = errno.ENOSPC


class TransformFailure(EndFSError):
    """Raised when content encryption or decryption fails."""
    errno_code = errno.EIO


class ShortWrite(EndFSError):
    """Raised when fewer ciphertext bytes reach the backing file than produced."""
    errno_code = errno.EIO


class InvalidArgument(EndFSError):
    errno_code = errno.EINVAL


_ERRNO_MAP = {
    errno.ENOENT: NotFound,
    errno.EACCES: PermissionDenied,
    errno.EPERM: PermissionDenied,
    errno.EEXIST: AlreadyExists,
    errno.ENOTDIR: NotADirectory,
    errno.EISDIR: IsADirectory,
    errno.ENAMETOOLONG: NameTooLong,
    errno.ENOSPC: NoSpace,
    errno.EDQUOT: NoSpace,
    errno.EINVAL: InvalidArgument,
}


def from_os_error(exc: OSError) -> OSError:
    """
    Map a native OSError into the endfs taxonomy.

    The original errno, message and filename are kept. Errors that are
    already endfs errors, or whose errno has no taxonomy class, are
    returned unchanged.

    Args:
        exc: Error raised by the backing filesystem

    Returns:
        Error to raise in its place
    """
    if isinstance(exc, EndFSError):
        return exc

    error_class = _ERRNO_MAP.get(exc.errno)
    if error_class is None:
        return exc

    return error_class(exc.strerror, exc.filename, code=exc.errno)
