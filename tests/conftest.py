"""Pytest configuration and fixtures for fleetcmd tests."""

import io
import stat
from pathlib import Path

import pytest

# Stand-in for the ssh client: skips the host and the options fleetcmd
# passes, then evaluates the remote command locally the way sshd would.
FAKE_SSH = """#!/bin/sh
shift
while [ $# -gt 1 ]; do
  case "$1" in
    -tt) shift ;;
    -p|-i) shift 2 ;;
    *) break ;;
  esac
done
exec sh -c "$1"
"""


def make_executable(path: Path, content: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture(autouse=True)
def posix_shell(monkeypatch):
    """Run test commands under sh whatever the developer's login shell is."""
    monkeypatch.setenv("SHELL", "sh")


@pytest.fixture
def fake_ssh(tmp_path, monkeypatch) -> Path:
    """Point SSH_BIN_PATH at a local fake ssh client."""
    path = make_executable(tmp_path / "fake-ssh", FAKE_SSH)
    monkeypatch.setenv("SSH_BIN_PATH", str(path))
    return path


@pytest.fixture
def sinks():
    """Capture console output: (stdout, stderr)."""
    return io.StringIO(), io.StringIO()


@pytest.fixture
def no_color(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")
