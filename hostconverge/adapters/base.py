"""
Host access — the protocol contract between components and a target host.

Components never call subprocess or touch the filesystem directly.
They receive a HostAccess and go through it, which makes the
privilege to change a host an explicit object rather than an ambient
assumption, and lets tests swap in an in-memory host.

Command execution never raises on a non-zero exit; the result carries
the exit code and captured streams. Filesystem methods raise
ManagedPathError when the host refuses a change.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field


@dataclass
class CommandResult:
    """Outcome of one command on the target."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)

    def describe(self) -> dict:
        """Diagnostic dict suitable for a StepError detail."""
        return {
            "command": self.command_line,
            "exit_code": self.returncode,
            "stderr": self.stderr[-2000:],
            "stdout": self.stdout[-2000:],
            "timed_out": self.timed_out,
        }


@dataclass
class FileState:
    """What a managed path currently looks like."""

    exists: bool
    is_dir: bool = False
    mode: int | None = None
    owner: str | None = None
    group: str | None = None
    extra: dict = field(default_factory=dict)


class HostAccess(ABC):
    """Abstract capability over one target host.

    To add a transport:
        1. Subclass HostAccess
        2. Implement run plus the filesystem primitives
        3. Return it from ``hostconverge.adapters.factory.open_host``
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Target identifier used in logs and results."""

    @abstractmethod
    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command. Never raises for a failing command."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes | None:
        """Return file content, or None if the file does not exist."""

    @abstractmethod
    def stat(self, path: str) -> FileState:
        """Describe a path without following it into content."""

    @abstractmethod
    def write_atomic(self, path: str, data: bytes, mode: int) -> None:
        """Replace ``path`` with ``data`` via temp file + rename.

        A reader never observes a partially written ``path``.
        """

    @abstractmethod
    def copy(self, src: str, dst: str) -> None:
        """Copy a file preserving its mode."""

    @abstractmethod
    def remove(self, path: str) -> bool:
        """Remove a file or directory tree. Returns False if it was already absent."""

    @abstractmethod
    def make_dir(self, path: str, mode: int) -> None:
        """Create a directory (and parents)."""

    @abstractmethod
    def chmod(self, path: str, mode: int) -> None: ...

    @abstractmethod
    def chown(self, path: str, owner: str | None, group: str | None) -> None: ...

    def exists(self, path: str) -> bool:
        return self.stat(path).exists

    def read_text(self, path: str) -> str | None:
        data = self.read_bytes(path)
        return None if data is None else data.decode("utf-8")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
