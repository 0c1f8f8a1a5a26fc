"""
Local host adapter — converge the machine we are running on.

Commands go through ``subprocess.run``; managed paths are written
with the atomic temp+rename helper. An optional ``root`` prefix maps
every absolute path under another directory, which is how tests and
image builds converge a tree without touching ``/etc``.
"""

from __future__ import annotations

import grp
import logging
import os
import pwd
import shutil
import stat as stat_mod
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from hostconverge.adapters.base import CommandResult, FileState, HostAccess
from hostconverge.core.errors import ManagedPathError
from hostconverge.core.persistence.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

# Cap on captured stream size kept in results.
_MAX_CAPTURE = 64 * 1024


class LocalHost(HostAccess):
    """Run commands and write files on the local machine.

    Commands and file writes run with the caller's own privileges, so
    converging ``/`` needs a root process; ``run_converge`` refuses
    otherwise.

    Args:
        root: Optional directory that stands in for ``/``.
    """

    def __init__(self, root: Path | None = None):
        self._root = root

    @property
    def name(self) -> str:
        return "localhost" if self._root is None else f"localhost:{self._root}"

    def path(self, path: str) -> Path:
        """Resolve a managed path against the root prefix."""
        if self._root is None:
            return Path(path)
        return self._root / path.lstrip("/")

    # ── Commands ────────────────────────────────────────────────

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        cmd = list(argv)

        full_env = os.environ.copy()
        if env:
            full_env.update(env)

        logger.debug("Run: %s (timeout=%s)", subprocess.list2cmdline(cmd), timeout)
        start = time.monotonic()
        try:
            r = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                timeout=timeout,
                env=full_env,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                argv=list(argv),
                returncode=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) or f"Command timed out ({timeout}s)",
                timed_out=True,
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
        except FileNotFoundError:
            return CommandResult(
                argv=list(argv),
                returncode=127,
                stderr=f"{cmd[0]}: command not found",
            )

        return CommandResult(
            argv=list(argv),
            returncode=r.returncode,
            stdout=_decode(r.stdout),
            stderr=_decode(r.stderr),
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    # ── Filesystem ──────────────────────────────────────────────

    def read_bytes(self, path: str) -> bytes | None:
        try:
            return self.path(path).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ManagedPathError(f"Cannot read {path}: {e}", path=path) from e

    def stat(self, path: str) -> FileState:
        try:
            st = self.path(path).stat()
        except FileNotFoundError:
            return FileState(exists=False)
        except OSError as e:
            raise ManagedPathError(f"Cannot stat {path}: {e}", path=path) from e
        return FileState(
            exists=True,
            is_dir=stat_mod.S_ISDIR(st.st_mode),
            mode=stat_mod.S_IMODE(st.st_mode),
            owner=_user_name(st.st_uid),
            group=_group_name(st.st_gid),
        )

    def write_atomic(self, path: str, data: bytes, mode: int) -> None:
        try:
            atomic_write_bytes(self.path(path), data, mode)
        except OSError as e:
            raise ManagedPathError(f"Cannot write {path}: {e}", path=path) from e

    def copy(self, src: str, dst: str) -> None:
        try:
            shutil.copy2(self.path(src), self.path(dst))
        except OSError as e:
            raise ManagedPathError(f"Cannot copy {src} to {dst}: {e}", path=dst) from e

    def remove(self, path: str) -> bool:
        target = self.path(path)
        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ManagedPathError(f"Cannot remove {path}: {e}", path=path) from e

    def make_dir(self, path: str, mode: int) -> None:
        target = self.path(path)
        try:
            target.mkdir(parents=True, exist_ok=True)
            os.chmod(target, mode)
        except OSError as e:
            raise ManagedPathError(f"Cannot create {path}: {e}", path=path) from e

    def chmod(self, path: str, mode: int) -> None:
        try:
            os.chmod(self.path(path), mode)
        except OSError as e:
            raise ManagedPathError(f"Cannot chmod {path}: {e}", path=path) from e

    def chown(self, path: str, owner: str | None, group: str | None) -> None:
        try:
            shutil.chown(self.path(path), user=owner, group=group)
        except (OSError, LookupError) as e:
            raise ManagedPathError(f"Cannot chown {path}: {e}", path=path) from e


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data[-_MAX_CAPTURE:].decode("utf-8", errors="replace")


def _user_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)
