"""
test_exceptions.py - Error Taxonomy Tests
"""

import errno

import pytest

from endfs.exceptions import (
    EndFSError, NameTooLong, NoSpace, NotFound, PermissionDenied, ShortWrite,
    TransformFailure, from_os_error
)


class TestErrorTaxonomy:
    """Test cases for the endfs error classes."""

    @pytest.mark.parametrize("error_class, code", [
        (NotFound, errno.ENOENT),
        (PermissionDenied, errno.EACCES),
        (NameTooLong, errno.ENAMETOOLONG),
        (NoSpace, errno.ENOSPC),
        (TransformFailure, errno.EIO),
        (ShortWrite, errno.EIO),
    ])
    def test_errors_carry_errno(self, error_class, code):
        error = error_class("message", "/some/path")

        assert isinstance(error, OSError)
        assert error.errno == code
        assert error.strerror == "message"
        assert error.filename == "/some/path"

    def test_default_message(self):
        assert NotFound().strerror == "No such file or directory"

    def test_from_os_error_keeps_errno(self):
        native = PermissionError(errno.EPERM, "Operation not permitted", "/x")

        mapped = from_os_error(native)

        assert isinstance(mapped, PermissionDenied)
        assert mapped.errno == errno.EPERM
        assert mapped.filename == "/x"

    def test_from_os_error_unmapped(self):
        native = OSError(errno.EBUSY, "Device or resource busy")

        assert from_os_error(native) is native

    def test_from_os_error_passes_endfs_errors(self):
        error = TransformFailure("bad tag")

        assert from_os_error(error) is error
        assert isinstance(error, EndFSError)
