"""
src/endfs/cli.py - Mount Front-End

Usage::

    endfs <passphrase> <mirror_root> <mount_point> [-f] [-s] [-d] [-o opt,...]

A passphrase of ``-`` is read from the terminal instead of the command line.
"""

import argparse
import logging
import sys
from getpass import getpass
from typing import List, Optional

from .config import MountContext, MountOptions, parse_fuse_options
from .exceptions import EndFSError


class _UsageParser(argparse.ArgumentParser):
    """Argument parser that exits with status 1 on usage errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _UsageParser(
        prog="endfs",
        description="Mount a directory tree with transparently encrypted file content.",
    )
    parser.add_argument("passphrase", help="Encryption passphrase, or - to prompt")
    parser.add_argument("mirror_root", help="Directory holding the encrypted files")
    parser.add_argument("mount_point", help="Where the decrypted view is mounted")
    parser.add_argument("-f", "--foreground", action="store_true",
                        help="Stay in the foreground")
    parser.add_argument("-s", dest="nothreads", action="store_true",
                        help="Single-threaded operation")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Debug logging, implies -f")
    parser.add_argument("-o", dest="options", action="append", default=[],
                        metavar="OPT[,OPT...]", help="FUSE mount options")
    parser.add_argument("--audit-log", dest="audit_log_dir", metavar="DIR",
                        help="Write a JSON audit trail of content operations to DIR")
    return parser


def _mount(context: MountContext, options: MountOptions) -> int:
    try:
        from .secure_fs import mount_encrypted_filesystem
    except (ImportError, OSError) as e:
        print(f"Error: fusepy/libfuse not available: {e}", file=sys.stderr)
        return 1

    mount_encrypted_filesystem(context, options)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    passphrase = args.passphrase
    if passphrase == "-":
        passphrase = getpass("Passphrase: ")
    if not passphrase:
        print("Error: empty passphrase", file=sys.stderr)
        return 1

    try:
        context = MountContext.create(passphrase, args.mirror_root, args.mount_point)
    except EndFSError as e:
        print(f"Error: {e.filename}: {e.strerror}", file=sys.stderr)
        return 1

    options = MountOptions(
        foreground=args.foreground or args.debug,
        nothreads=args.nothreads,
        debug=args.debug,
        fuse_options=parse_fuse_options(args.options),
        audit_log_dir=args.audit_log_dir,
    )

    print("🔒 Starting endfs...")
    print(f"   Mirror: {context.mirror_root}")
    print(f"   Mount: {context.mount_point}")
    return _mount(context, options)


if __name__ == "__main__":
    sys.exit(main())
