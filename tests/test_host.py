"""Tests for LocalHost."""

import os
import sys
import time

import pytest

from steward import __version__, limits
from steward.host import DIR, FILE, LocalHost


@pytest.fixture
def piped_stdin(monkeypatch):
    """Replace stdin with a pipe; yields the write end's file descriptor."""
    read_fd, write_fd = os.pipe()
    stdin = os.fdopen(read_fd, "r")
    monkeypatch.setattr(sys, "stdin", stdin)
    yield write_fd
    os.close(write_fd)
    stdin.close()


def test_filesystem_operations(host, tmp_path):
    host.mkdir("sub/inner", recursive=True)
    host.write_file("sub/a.txt", "alpha")
    assert host.read_file(str(tmp_path / "sub" / "a.txt")) == "alpha"
    assert host.exists("sub/a.txt")

    entries = host.readdir("sub")
    assert [(e.name, e.type) for e in entries] == [("a.txt", FILE), ("inner", DIR)]
    assert entries[0].size == 5

    st = host.stat("sub/a.txt")
    assert st.is_file() and not st.is_dir()

    host.rename("sub/a.txt", "sub/b.txt")
    assert not host.exists("sub/a.txt")
    host.unlink("sub/b.txt")
    assert not host.exists("sub/b.txt")


def test_cwd_is_tracked_per_instance(host, tmp_path):
    (tmp_path / "nested").mkdir()
    other = LocalHost(str(tmp_path))
    host.set_cwd("nested")
    assert host.get_cwd() == str(tmp_path.resolve() / "nested")
    assert other.get_cwd() == str(tmp_path.resolve())
    assert host.resolve_path("../x") == str(tmp_path.resolve() / "x")

    with pytest.raises(NotADirectoryError):
        host.set_cwd("does-not-exist")


def test_exec_runs_in_host_cwd(host, tmp_path):
    (tmp_path / "marker").write_text("")
    result = host.exec("ls")
    assert "marker" in result.stdout
    assert result.exit_code == 0


def test_exec_timeout(tmp_path):
    slow = LocalHost(str(tmp_path), shell_timeout=0.2)
    result = slow.exec("sleep 5")
    assert result.exit_code == 124
    assert "timed out" in result.stderr


def test_host_info(host):
    info = host.get_host_info()
    assert info.version == __version__
    assert info.name.startswith("steward on ")


def test_shell_timeout_defaults_to_tool_limit(tmp_path, monkeypatch):
    monkeypatch.setattr(limits, "_overrides", {**limits._overrides, "tool.timeout_s": 1})
    host = LocalHost(str(tmp_path))

    result = host.exec("sleep 2; touch late.txt")
    assert result.exit_code == 124

    time.sleep(1.5)
    assert not (tmp_path / "late.txt").exists()


def test_read_from_user_returns_answer(host, piped_stdin):
    os.write(piped_stdin, b"blue\n")
    assert host.read_from_user("Favourite colour?", timeout=5) == "blue"


def test_unanswered_read_leaves_input_for_next_reader(host, piped_stdin):
    with pytest.raises(TimeoutError, match="No answer from the user after 0.1s"):
        host.read_from_user("Anyone there?", timeout=0.1)

    os.write(piped_stdin, b"my next message\n")
    assert sys.stdin.readline() == "my next message\n"
