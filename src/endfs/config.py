"""
src/endfs/config.py - Mount Configuration

Immutable values built once at startup and injected into every handler:
the mount context (directories + passphrase) and the options forwarded to
the FUSE bridge.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Union

from .exceptions import NotADirectory, NotFound


@dataclass(frozen=True)
class MountContext:
    """Directories and passphrase shared read-only by all operations."""
    mirror_root: str
    mount_point: str
    passphrase: bytes = field(repr=False)

    @classmethod
    def create(cls, passphrase: Union[str, bytes], mirror_root: str,
               mount_point: str) -> "MountContext":
        """
        Build a context from command-line values.

        Both directories are resolved to canonical absolute paths and must
        already exist.

        Raises:
            NotFound: If either directory is missing
            NotADirectory: If either path is not a directory
        """
        if isinstance(passphrase, str):
            passphrase = passphrase.encode("utf-8")

        return cls(
            mirror_root=_resolve_directory(mirror_root),
            mount_point=_resolve_directory(mount_point),
            passphrase=passphrase,
        )


@dataclass(frozen=True)
class MountOptions:
    """Options passed through to the FUSE bridge."""
    foreground: bool = False
    nothreads: bool = False
    debug: bool = False
    fuse_options: Dict[str, Union[str, bool]] = field(default_factory=dict)
    audit_log_dir: Optional[str] = None

    def fuse_kwargs(self) -> Dict[str, Union[str, bool]]:
        """Keyword arguments for ``fuse.FUSE``."""
        kwargs: Dict[str, Union[str, bool]] = dict(self.fuse_options)
        kwargs["foreground"] = self.foreground
        kwargs["nothreads"] = self.nothreads
        if self.debug:
            kwargs["debug"] = True
        return kwargs


def parse_fuse_options(values: Iterable[str]) -> Dict[str, Union[str, bool]]:
    """
    Parse ``-o`` values into a keyword dictionary.

    ``["allow_other,ro", "uid=1000"]`` becomes
    ``{"allow_other": True, "ro": True, "uid": "1000"}``.
    """
    options: Dict[str, Union[str, bool]] = {}
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if not item:
                continue
            name, sep, setting = item.partition("=")
            options[name] = setting if sep else True
    return options


def _resolve_directory(path: str) -> str:
    resolved = os.path.realpath(path)
    if not os.path.exists(resolved):
        raise NotFound("Directory does not exist", path)
    if not os.path.isdir(resolved):
        raise NotADirectory("Not a directory", path)
    return resolved
