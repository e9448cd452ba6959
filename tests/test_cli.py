"""
test_cli.py - Mount Front-End Tests

Argument handling and mount context construction, with the actual mount
replaced by a recorder.
"""

import shutil
import tempfile
from pathlib import Path

import pytest

from endfs import cli
from endfs.config import MountContext, MountOptions, parse_fuse_options
from endfs.exceptions import NotADirectory, NotFound


@pytest.fixture
def mounts(monkeypatch):
    """Record mount requests instead of mounting."""
    calls = []

    def fake_mount(context, options):
        calls.append((context, options))
        return 0

    monkeypatch.setattr(cli, "_mount", fake_mount)
    return calls


class TestCommandLine:
    """Test cases for the endfs command line."""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.mirror = self.temp_dir / "mirror"
        self.mount = self.temp_dir / "mnt"
        self.mirror.mkdir()
        self.mount.mkdir()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @pytest.mark.parametrize("argv", [
        [],
        ["secret"],
        ["secret", "/tmp"],
    ])
    def test_insufficient_arguments_exit_1_without_mounting(self, argv, mounts, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(argv)

        assert exc_info.value.code == 1
        assert mounts == []
        assert "usage:" in capsys.readouterr().err

    def test_mounts_with_resolved_context(self, mounts):
        relative_mirror = str(self.mirror / ".." / "mirror")

        assert cli.main(["secret", relative_mirror, str(self.mount)]) == 0

        context, options = mounts[0]
        assert context.mirror_root == str(self.mirror.resolve())
        assert context.mount_point == str(self.mount.resolve())
        assert context.passphrase == b"secret"
        assert options == MountOptions()

    def test_bridge_options(self, mounts):
        cli.main([
            "secret", str(self.mirror), str(self.mount),
            "-f", "-s", "-o", "allow_other,ro", "-o", "uid=1000",
            "--audit-log", str(self.temp_dir / "logs"),
        ])

        _, options = mounts[0]
        assert options.foreground
        assert options.nothreads
        assert options.fuse_options == {"allow_other": True, "ro": True, "uid": "1000"}
        assert options.audit_log_dir == str(self.temp_dir / "logs")

    def test_debug_implies_foreground(self, mounts):
        cli.main(["secret", str(self.mirror), str(self.mount), "-d"])

        _, options = mounts[0]
        assert options.debug and options.foreground

    def test_prompted_passphrase(self, mounts, monkeypatch):
        monkeypatch.setattr(cli, "getpass", lambda prompt: "typed secret")

        cli.main(["-", str(self.mirror), str(self.mount)])

        context, _ = mounts[0]
        assert context.passphrase == b"typed secret"

    def test_empty_passphrase_rejected(self, mounts):
        assert cli.main(["", str(self.mirror), str(self.mount)]) == 1
        assert mounts == []

    def test_missing_mirror_root(self, mounts, capsys):
        assert cli.main(["secret", str(self.temp_dir / "nope"), str(self.mount)]) == 1
        assert mounts == []
        assert "nope" in capsys.readouterr().err


class TestMountConfiguration:
    """Test cases for MountContext and MountOptions."""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_context_is_immutable(self):
        context = MountContext.create("secret", str(self.temp_dir), str(self.temp_dir))

        with pytest.raises(AttributeError):
            context.passphrase = b"other"

    def test_passphrase_not_in_repr(self):
        context = MountContext.create("hunter2", str(self.temp_dir), str(self.temp_dir))

        assert "hunter2" not in repr(context)

    def test_missing_directory(self):
        with pytest.raises(NotFound):
            MountContext.create("secret", str(self.temp_dir / "nope"), str(self.temp_dir))

    def test_file_is_not_a_directory(self):
        target = self.temp_dir / "file"
        target.write_text("x")

        with pytest.raises(NotADirectory):
            MountContext.create("secret", str(self.temp_dir), str(target))

    def test_parse_fuse_options(self):
        assert parse_fuse_options(["allow_other, default_permissions", "fsname=endfs", ""]) == {
            "allow_other": True,
            "default_permissions": True,
            "fsname": "endfs",
        }

    def test_fuse_kwargs(self):
        options = MountOptions(foreground=True, debug=True, fuse_options={"ro": True})

        assert options.fuse_kwargs() == {
            "ro": True, "foreground": True, "nothreads": False, "debug": True
        }
