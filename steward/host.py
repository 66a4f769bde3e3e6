"""Host capability interface consumed by the tools and the agent loop.

Everything that touches the outside world (filesystem, shell, terminal)
goes through a ``HostEnvironment``. ``LocalHost`` is the implementation
used by the CLI; tests substitute an in-memory host.
"""

from __future__ import annotations

import os
import platform
import select
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from . import __version__
from .limits import get_limit

FILE = "file"
DIR = "dir"
SYMLINK = "symlink"


@dataclass(frozen=True)
class FileInfo:
    name: str
    path: str
    type: str  # "file", "dir" or "symlink"
    size: int
    mtime: float


@dataclass(frozen=True)
class StatResult:
    type: str
    size: int
    mtime: float

    def is_file(self) -> bool:
        return self.type == FILE

    def is_dir(self) -> bool:
        return self.type == DIR


@dataclass(frozen=True)
class ShellResult:
    stdout: str
    stderr: str
    exit_code: int


@dataclass(frozen=True)
class HostInfo:
    name: str
    version: str


class HostEnvironment(ABC):
    """Narrow capability interface every host must provide.

    All methods are synchronous and may raise (``OSError`` and friends);
    callers convert failures into tool error results.
    """

    # ---- Filesystem ----

    @abstractmethod
    def read_file(self, path: str) -> str: ...

    @abstractmethod
    def write_file(self, path: str, content: str) -> None: ...

    @abstractmethod
    def mkdir(self, path: str, recursive: bool = False) -> None: ...

    @abstractmethod
    def readdir(self, path: str) -> list[FileInfo]: ...

    @abstractmethod
    def stat(self, path: str) -> StatResult: ...

    @abstractmethod
    def exists(self, path: str) -> bool: ...

    @abstractmethod
    def unlink(self, path: str) -> None: ...

    @abstractmethod
    def rename(self, old_path: str, new_path: str) -> None: ...

    # ---- Path / env ----

    @abstractmethod
    def resolve_path(self, path: str) -> str: ...

    @abstractmethod
    def get_cwd(self) -> str: ...

    @abstractmethod
    def set_cwd(self, path: str) -> None: ...

    @abstractmethod
    def get_env(self) -> dict[str, str]: ...

    # ---- Search ----

    @abstractmethod
    def glob(self, pattern: str, base: str | None = None) -> list[str]: ...

    # ---- Shell ----

    @abstractmethod
    def exec(self, command: str) -> ShellResult: ...

    # ---- Terminal I/O ----

    @abstractmethod
    def write_to_terminal(self, text: str) -> None: ...

    @abstractmethod
    def read_from_user(self, prompt: str, timeout: float | None = None) -> str:
        """Block for one line of user input.

        Raises ``TimeoutError`` when no answer arrives within *timeout*
        seconds; input typed later is left for the next reader.
        """

    @abstractmethod
    def get_host_info(self) -> HostInfo: ...


def _stdin_ready(timeout: float) -> bool:
    """Wait up to *timeout* seconds for a line on stdin without reading it.

    Returns True straight away when stdin cannot be polled (no file
    descriptor, or a platform where select only takes sockets).
    """
    try:
        ready, _, _ = select.select([sys.stdin], [], [], timeout)
    except (AttributeError, OSError, ValueError):
        return True
    return bool(ready)


def _entry_type(path: Path) -> str:
    if path.is_symlink():
        return SYMLINK
    return DIR if path.is_dir() else FILE


class LocalHost(HostEnvironment):
    """Real filesystem and subprocess shell.

    The working directory is tracked per instance; ``os.chdir`` is never
    called, so several hosts (and threads) can coexist in one process.
    Shell commands are killed after *shell_timeout* seconds (default: the
    ``tool.timeout_s`` limit), so a command the loop gave up on cannot
    keep committing side effects.
    """

    def __init__(self, cwd: str | None = None, *, shell_timeout: float | None = None):
        self._cwd = str(Path(cwd or os.getcwd()).resolve())
        self._shell_timeout = shell_timeout or get_limit("tool.timeout_s")

    def _path(self, path: str) -> Path:
        return Path(self.resolve_path(path))

    def read_file(self, path: str) -> str:
        return self._path(path).read_text(encoding="utf-8", errors="replace")

    def write_file(self, path: str, content: str) -> None:
        self._path(path).write_text(content, encoding="utf-8")

    def mkdir(self, path: str, recursive: bool = False) -> None:
        self._path(path).mkdir(parents=recursive, exist_ok=recursive)

    def readdir(self, path: str) -> list[FileInfo]:
        entries = []
        for child in sorted(self._path(path).iterdir()):
            st = child.lstat()
            entries.append(FileInfo(
                name=child.name,
                path=str(child),
                type=_entry_type(child),
                size=st.st_size,
                mtime=st.st_mtime,
            ))
        return entries

    def stat(self, path: str) -> StatResult:
        p = self._path(path)
        st = p.stat()
        return StatResult(type=_entry_type(p), size=st.st_size, mtime=st.st_mtime)

    def exists(self, path: str) -> bool:
        return self._path(path).exists()

    def unlink(self, path: str) -> None:
        self._path(path).unlink()

    def rename(self, old_path: str, new_path: str) -> None:
        self._path(old_path).rename(self._path(new_path))

    def resolve_path(self, path: str) -> str:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = Path(self._cwd) / p
        return os.path.normpath(str(p))

    def get_cwd(self) -> str:
        return self._cwd

    def set_cwd(self, path: str) -> None:
        resolved = self._path(path)
        if not resolved.is_dir():
            raise NotADirectoryError(f"Not a directory: {resolved}")
        self._cwd = str(resolved)

    def get_env(self) -> dict[str, str]:
        return dict(os.environ)

    def glob(self, pattern: str, base: str | None = None) -> list[str]:
        root = self._path(base) if base else Path(self._cwd)
        return sorted(
            str(p.relative_to(root)) for p in root.glob(pattern)
            if p.is_file()
        )

    def exec(self, command: str) -> ShellResult:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=self._cwd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self._shell_timeout,
            )
        except subprocess.TimeoutExpired as e:
            return ShellResult(
                stdout=e.stdout if isinstance(e.stdout, str) else "",
                stderr=f"Command timed out after {self._shell_timeout}s",
                exit_code=124,
            )
        return ShellResult(stdout=proc.stdout, stderr=proc.stderr, exit_code=proc.returncode)

    def write_to_terminal(self, text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    def read_from_user(self, prompt: str, timeout: float | None = None) -> str:
        if timeout is None:
            return input(f"{prompt}\n> ")
        self.write_to_terminal(f"{prompt}\n> ")
        if not _stdin_ready(timeout):
            self.write_to_terminal("\n")
            raise TimeoutError(f"No answer from the user after {timeout}s")
        return input()

    def get_host_info(self) -> HostInfo:
        return HostInfo(
            name=f"steward on {platform.system() or 'unknown'} (Python {platform.python_version()})",
            version=__version__,
        )
