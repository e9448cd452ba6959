"""
src/endfs/secure_fs.py - FUSE Filesystem Integration

Encrypted mirror filesystem:
- Mirrors the directory tree under the mirror root at the mount point
- Transparent encryption/decryption of file content with one passphrase
- Names, attributes and directory operations pass straight through
- Optional JSON audit trail of content operations
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from fuse import FUSE, LoggingMixIn, Operations

from .audit_logger import AuditLogger, EventType
from .config import MountContext, MountOptions
from .crypto import ContentTransform
from .crypto_io import CryptoIOBridge
from .exceptions import TransformFailure
from .passthrough import MetadataPassthrough
from .paths import PathTranslator

logger = logging.getLogger(__name__)
# Logger LoggingMixIn writes operation traces to
content_log = logging.getLogger('fuse.log-mixin')


class EncryptedMirrorFS(LoggingMixIn, Operations):
    """
    FUSE operation surface of an encrypted mirror.

    read, write, truncate and create go through the CryptoIOBridge; every
    other operation is delegated to MetadataPassthrough. Both receive paths
    produced by the same PathTranslator.
    """

    def __init__(self, context: MountContext,
                 transform: Optional[ContentTransform] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 lock_paths: bool = True, atomic_writes: bool = True):
        """
        Initialize the filesystem.

        Args:
            context: Mount context shared by every operation
            transform: Content transform; derived from the context
                passphrase when omitted
            audit_logger: Optional audit trail for content operations
            lock_paths: Serialize round trips per backing file
            atomic_writes: Replace backing files atomically on write
        """
        self.context = context
        self.translator = PathTranslator(context.mirror_root)
        self.transform = transform or ContentTransform(context.passphrase)
        self.crypto_io = CryptoIOBridge(
            self.transform, lock_paths=lock_paths, atomic_writes=atomic_writes
        )
        self.passthrough = MetadataPassthrough(self.translator)
        self.audit_logger = audit_logger

        self._stats_lock = threading.Lock()
        self._stats = {
            'files_created': 0,
            'files_read': 0,
            'files_written': 0,
            'files_truncated': 0,
            'transform_failures': 0,
        }

    def __call__(self, op, path, *args):
        """
        Dispatch an operation, keeping file content out of the debug log.

        LoggingMixIn logs every argument and return value; for read and
        write those are plaintext, so only their length is logged.
        """
        if op not in ('read', 'write'):
            return super().__call__(op, path, *args)

        shown = args
        if op == 'write':
            shown = (f"<{len(args[0])} bytes>",) + args[1:]
        content_log.debug('-> %s %s %s', op, path, repr(shown))
        ret = '[Unhandled Exception]'
        try:
            ret = getattr(self, op)(path, *args)
            return ret
        except OSError as e:
            ret = str(e)
            raise
        finally:
            if isinstance(ret, bytes):
                ret = f"<{len(ret)} bytes>"
            content_log.debug('<- %s %s', op, repr(ret))

    def init(self, path):
        """Called by FUSE once the mount is up, after any daemonizing fork."""
        if self.audit_logger:
            self.audit_logger.log_system_event(
                EventType.MOUNT, "Encrypted mirror mounted",
                {"mirror_root": self.context.mirror_root,
                 "mount_point": self.context.mount_point}
            )

    def _count(self, key: str):
        with self._stats_lock:
            self._stats[key] += 1

    def _audit(self, operation: str, path: str, details: Dict[str, Any]):
        if self.audit_logger:
            self.audit_logger.log_file_operation(operation, path, "SUCCESS", details)

    def _audit_failure(self, operation: str, path: str, error: OSError):
        if isinstance(error, TransformFailure):
            self._count('transform_failures')
            if self.audit_logger:
                self.audit_logger.log_transform_failure(operation, path, str(error.strerror))
        if self.audit_logger:
            self.audit_logger.log_file_operation(
                operation, path, "ERROR", {"errno": error.errno, "error": str(error.strerror)}
            )

    # Content operations

    def read(self, path, size, offset, fh):
        """Read decrypted file data."""
        real_path = self.translator.translate(path)
        try:
            data = self.crypto_io.read_range(real_path, offset, size)
        except OSError as e:
            self._audit_failure("READ", path, e)
            raise

        self._count('files_read')
        self._audit("READ", path, {"bytes_read": len(data), "offset": offset})
        return data

    def write(self, path, data, offset, fh):
        """Write file data, re-encrypting the whole file."""
        real_path = self.translator.translate(path)
        try:
            written = self.crypto_io.write_range(real_path, offset, data)
        except OSError as e:
            self._audit_failure("WRITE", path, e)
            raise

        self._count('files_written')
        self._audit("WRITE", path, {"bytes_written": written, "offset": offset})
        return written

    def truncate(self, path, length, fh=None):
        """Truncate or extend the plaintext of a file."""
        real_path = self.translator.translate(path)
        try:
            self.crypto_io.truncate(real_path, length)
        except OSError as e:
            self._audit_failure("TRUNCATE", path, e)
            raise

        self._count('files_truncated')
        self._audit("TRUNCATE", path, {"length": length})

    def create(self, path, mode, fi=None):
        """Create an empty file."""
        real_path = self.translator.translate(path)
        try:
            self.crypto_io.create(real_path, mode)
        except OSError as e:
            self._audit_failure("CREATE", path, e)
            raise

        self._count('files_created')
        self._audit("CREATE", path, {"mode": oct(mode)})
        return 0

    # Passthrough operations

    def getattr(self, path, fh=None):
        return self.passthrough.getattr(path)

    def access(self, path, amode):
        return self.passthrough.access(path, amode)

    def readlink(self, path):
        return self.passthrough.readlink(path)

    def readdir(self, path, fh):
        return self.passthrough.readdir(path)

    def mknod(self, path, mode, dev):
        return self.passthrough.mknod(path, mode, dev)

    def mkdir(self, path, mode):
        return self.passthrough.mkdir(path, mode)

    def unlink(self, path):
        return self.passthrough.unlink(path)

    def rmdir(self, path):
        return self.passthrough.rmdir(path)

    def symlink(self, target, source):
        return self.passthrough.symlink(target, source)

    def rename(self, old, new):
        return self.passthrough.rename(old, new)

    def link(self, target, source):
        return self.passthrough.link(target, source)

    def chmod(self, path, mode):
        return self.passthrough.chmod(path, mode)

    def chown(self, path, uid, gid):
        return self.passthrough.chown(path, uid, gid)

    def utimens(self, path, times=None):
        return self.passthrough.utimens(path, times)

    def open(self, path, flags):
        return self.passthrough.open(path, flags)

    def statfs(self, path):
        return self.passthrough.statfs(path)

    def release(self, path, fh):
        return self.passthrough.release(path)

    def fsync(self, path, datasync, fh):
        return self.passthrough.fsync(path, datasync)

    def setxattr(self, path, name, value, options, position=0):
        return self.passthrough.setxattr(path, name, value, options)

    def getxattr(self, path, name, position=0):
        return self.passthrough.getxattr(path, name)

    def listxattr(self, path):
        return self.passthrough.listxattr(path)

    def removexattr(self, path, name):
        return self.passthrough.removexattr(path, name)

    def get_statistics(self) -> Dict[str, int]:
        """Get content operation counters."""
        with self._stats_lock:
            return dict(self._stats)

    def shutdown(self):
        """Shutdown filesystem gracefully."""
        if self.audit_logger:
            self.audit_logger.log_system_event(
                EventType.UNMOUNT, "Encrypted mirror unmounting", self.get_statistics()
            )
            self.audit_logger.shutdown()


def mount_encrypted_filesystem(context: MountContext, options: MountOptions):
    """
    Mount the encrypted mirror and block until it is unmounted.

    Args:
        context: Mount context
        options: Bridge options
    """
    # Caller-supplied permission bits must reach the backing tree unchanged
    os.umask(0)

    audit_logger = None
    if options.audit_log_dir:
        audit_logger = AuditLogger(Path(options.audit_log_dir))

    filesystem = EncryptedMirrorFS(context, audit_logger=audit_logger)

    logger.info("Mounting %s on %s", context.mirror_root, context.mount_point)
    try:
        FUSE(filesystem, context.mount_point, **options.fuse_kwargs())
    except KeyboardInterrupt:
        print("\n🛑 Received interrupt signal")
    finally:
        filesystem.shutdown()
