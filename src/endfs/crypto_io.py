"""
src/endfs/crypto_io.py - Transparent Crypto I/O Bridge

Implements read, write, create and truncate against backing files with
whole-file round trips:

    decrypt backing file -> slice / modify plaintext -> re-encrypt -> commit

Nothing is cached between calls. Each round trip holds an exclusive lock
for its real path, and new ciphertext is staged in a temporary file that
atomically replaces the backing file whenever that keeps the file's
ownership, link count and extended attributes intact.
"""

import contextlib
import errno
import logging
import os
import stat
import tempfile
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Union

import xattr

from .crypto import ContentTransform, Direction
from .exceptions import (
    EndFSError, InvalidArgument, ShortWrite, TransformFailure, from_os_error
)

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".endfs-"


class PathLockRegistry:
    """
    Per-path exclusive locks.

    An entry exists only while at least one caller holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, path: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(path, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[path]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class _BufferSink:
    """Write-only stream appending into a bytearray."""

    def __init__(self, buffer: bytearray):
        self.buffer = buffer

    def write(self, data: bytes) -> int:
        self.buffer += data
        return len(data)


class _BufferSource:
    """Read-only stream over a bytearray without copying it up front."""

    def __init__(self, buffer: bytearray):
        self._view = memoryview(buffer)
        self._pos = 0

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._view) - self._pos
        data = bytes(self._view[self._pos:self._pos + size])
        self._pos += len(data)
        return data

    def close(self):
        self._view.release()


class CryptoIOBridge:
    """
    Content I/O on backing files through a ContentTransform.

    All paths handed to this class are real paths inside the mirror tree.
    """

    def __init__(self, transform: ContentTransform, lock_paths: bool = True,
                 atomic_writes: bool = True):
        """
        Initialize the bridge.

        Args:
            transform: Content transform bound to the mount passphrase
            lock_paths: Serialize round trips per real path. Disabling it
                allows concurrent writers to lose updates.
            atomic_writes: Stage new ciphertext in a temporary file and
                replace the backing file in one step
        """
        self.transform = transform
        self.atomic_writes = atomic_writes
        self._locks = PathLockRegistry() if lock_paths else None

    @contextmanager
    def _exclusive(self, real_path: str) -> Iterator[None]:
        """
        Hold the lock for a real path, and for its inode when hard-linked.

        Hard-linked files are rewritten in place, so their inode is stable
        and shared by every name. The inode lock is always taken last.
        """
        if self._locks is None:
            yield
            return

        with self._locks.hold(real_path):
            inode_key = _shared_inode_key(real_path)
            if inode_key is None:
                yield
            else:
                with self._locks.hold(inode_key):
                    yield

    # Plaintext round trip

    @contextmanager
    def _plaintext(self, real_path: str) -> Iterator[bytearray]:
        """Decrypt a backing file into a buffer that is wiped on exit."""
        buffer = bytearray()
        try:
            self._decrypt_into(real_path, buffer)
            yield buffer
        finally:
            buffer[:] = bytes(len(buffer))
            del buffer[:]

    def _decrypt_into(self, real_path: str, buffer: bytearray):
        try:
            with open(real_path, "rb") as backing:
                self.transform.transform(backing, _BufferSink(buffer), Direction.DECRYPT)
        except TransformFailure as e:
            logger.error("Failed to decrypt %s: %s", real_path, e.strerror)
            raise TransformFailure(e.strerror, real_path) from e
        except OSError as e:
            raise from_os_error(e) from e

    def _encrypt_to(self, plaintext: bytearray, output) -> int:
        source = _BufferSource(plaintext)
        try:
            return self.transform.transform(source, output, Direction.ENCRYPT)
        finally:
            source.close()

    # Committing ciphertext

    def _commit(self, real_path: str, plaintext: bytearray):
        try:
            # mkstemp and os.replace only need access to the directory
            os.close(os.open(real_path, os.O_WRONLY))
            st = os.stat(real_path)
            if self.atomic_writes and self._replaceable(real_path, st):
                self._replace_atomically(real_path, plaintext, st)
            else:
                self._rewrite_in_place(real_path, plaintext)
        except EndFSError:
            raise
        except OSError as e:
            raise from_os_error(e) from e

    def _replaceable(self, real_path: str, st: os.stat_result) -> bool:
        """Whether a rename-based replace would leave the metadata unchanged."""
        if st.st_nlink != 1:
            return False
        if st.st_uid != os.geteuid() or st.st_gid != os.getegid():
            return False
        if not os.access(os.path.dirname(real_path), os.W_OK | os.X_OK):
            return False
        return all(name.startswith("user.") for name in _list_xattrs(real_path))

    def _replace_atomically(self, real_path: str, plaintext: bytearray,
                            st: os.stat_result):
        fd, temp_path = tempfile.mkstemp(
            prefix=TEMP_PREFIX, suffix=".tmp", dir=os.path.dirname(real_path)
        )
        try:
            with os.fdopen(fd, "wb") as staged:
                expected = self._encrypt_to(plaintext, staged)
                staged.flush()
                os.fsync(staged.fileno())
                actual = os.fstat(staged.fileno()).st_size
            if actual != expected:
                raise ShortWrite(f"Staged {actual} of {expected} bytes", real_path)

            os.chmod(temp_path, stat.S_IMODE(st.st_mode))
            for name in _list_xattrs(real_path):
                xattr.setxattr(temp_path, name,
                               xattr.getxattr(real_path, name, symlink=True),
                               symlink=True)
            os.replace(temp_path, real_path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(temp_path)
            raise

        logger.debug("Replaced %s with %d ciphertext bytes", real_path, expected)

    def _rewrite_in_place(self, real_path: str, plaintext: bytearray):
        with open(real_path, "r+b") as backing:
            expected = self._encrypt_to(plaintext, backing)
            backing.truncate()
            backing.flush()
            actual = os.fstat(backing.fileno()).st_size
        if actual != expected:
            raise ShortWrite(f"Wrote {actual} of {expected} bytes", real_path)

        logger.debug("Rewrote %s in place with %d ciphertext bytes", real_path, expected)

    # Operations

    def read_range(self, real_path: str, offset: int, length: int) -> bytes:
        """
        Read plaintext bytes from a backing file.

        Args:
            real_path: Backing file path
            offset: Plaintext offset
            length: Maximum number of bytes to return

        Returns:
            Up to ``length`` bytes; empty at or beyond end of file

        Raises:
            NotFound, PermissionDenied: Backing file cannot be opened
            TransformFailure: Backing file does not decrypt
        """
        _check_range(offset, length)
        with self._exclusive(real_path), self._plaintext(real_path) as plaintext:
            if offset >= len(plaintext):
                return b""
            return bytes(plaintext[offset:offset + length])

    def write_range(self, real_path: str, offset: int,
                    payload: Union[bytes, bytearray, memoryview]) -> int:
        """
        Write plaintext bytes into an existing backing file.

        A gap between the current end of file and ``offset`` is zero-filled.

        Args:
            real_path: Backing file path, must already exist
            offset: Plaintext offset
            payload: Bytes to write

        Returns:
            Number of payload bytes written

        Raises:
            NotFound, PermissionDenied: Backing file cannot be opened
            TransformFailure: Backing file does not decrypt
            ShortWrite, NoSpace: New ciphertext could not be stored
        """
        _check_range(offset, len(payload))
        with self._exclusive(real_path), self._plaintext(real_path) as plaintext:
            if offset > len(plaintext):
                plaintext.extend(bytes(offset - len(plaintext)))
            plaintext[offset:offset + len(payload)] = payload
            self._commit(real_path, plaintext)
        return len(payload)

    def truncate(self, real_path: str, length: int):
        """Cut or zero-extend the plaintext of a backing file to ``length``."""
        if length < 0:
            raise InvalidArgument("Negative length", real_path)
        with self._exclusive(real_path), self._plaintext(real_path) as plaintext:
            if length < len(plaintext):
                plaintext[length:] = bytes(len(plaintext) - length)
                del plaintext[length:]
            else:
                plaintext.extend(bytes(length - len(plaintext)))
            self._commit(real_path, plaintext)

    def create(self, real_path: str, mode: int):
        """
        Create an empty backing file, truncating an existing one.

        No ciphertext is written: a zero-length backing file decrypts to
        empty plaintext.
        """
        with self._exclusive(real_path):
            try:
                fd = os.open(real_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            except OSError as e:
                raise from_os_error(e) from e
            os.close(fd)


def _check_range(offset: int, length: int):
    if offset < 0:
        raise InvalidArgument(f"Negative offset {offset}")
    if length < 0:
        raise InvalidArgument(f"Negative length {length}")


def _shared_inode_key(path: str) -> Optional[str]:
    try:
        st = os.stat(path)
    except OSError:
        # The operation itself reports the missing or unreadable file
        return None
    if st.st_nlink < 2:
        return None
    return f"inode:{st.st_dev}:{st.st_ino}"


def _list_xattrs(path: str) -> List[str]:
    try:
        return list(xattr.listxattr(path, symlink=True))
    except OSError as e:
        if e.errno in (errno.ENOTSUP, errno.EOPNOTSUPP):
            return []
        raise
