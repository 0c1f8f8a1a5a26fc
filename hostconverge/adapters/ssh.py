"""
SSH host adapter — converge a remote machine through the OpenSSH client.

Every operation is a single ``ssh`` invocation in BatchMode, so a host
that would prompt for a password fails fast instead of hanging.
Filesystem primitives are short POSIX shell snippets; content travels
on stdin (writes) or as base64 on stdout (reads) so binary keyrings
survive the round trip.
"""

from __future__ import annotations

import base64
import logging
import shlex
import subprocess
import time
from collections.abc import Mapping, Sequence

from hostconverge.adapters.base import CommandResult, FileState, HostAccess
from hostconverge.core.errors import HostConnectionError, ManagedPathError

logger = logging.getLogger(__name__)

# ssh itself exits with 255 when the connection cannot be set up.
_SSH_CONNECT_FAILED = 255
# Exit code our snippets use for "path does not exist".
_ABSENT = 3
_FS_TIMEOUT = 60


class SshHost(HostAccess):
    """Run commands on ``host`` over ssh.

    Args:
        host: Anything ssh accepts (``user@addr``, an alias from ssh_config).
        use_sudo: Prefix remote commands with ``sudo -n``.
        options: Extra ssh arguments, e.g. ``("-p", "2222")``.
    """

    def __init__(self, host: str, use_sudo: bool = True, options: Sequence[str] = ()):
        self._host = host
        self._use_sudo = use_sudo
        self._options = tuple(options)

    @property
    def name(self) -> str:
        return self._host

    def _build(self, remote: str) -> list[str]:
        return ["ssh", "-oBatchMode=yes", *self._options, self._host, remote]

    def _remote_command(self, argv: Sequence[str], env: Mapping[str, str] | None) -> str:
        prefix: list[str] = []
        if self._use_sudo:
            prefix += ["sudo", "-n"]
        if env:
            prefix += ["env", *(f"{k}={v}" for k, v in env.items())]
        return shlex.join([*prefix, *argv])

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        command = self._build(self._remote_command(argv, env))
        logger.debug("Run: %s", shlex.join(command))
        start = time.monotonic()
        try:
            r = subprocess.run(
                command,
                input=input,
                # Without input, ssh may wait on stdin that nobody feeds.
                stdin=None if input is not None else subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return CommandResult(
                argv=list(argv),
                returncode=-1,
                stderr=f"Command timed out ({timeout}s)",
                timed_out=True,
                elapsed_ms=int((time.monotonic() - start) * 1000),
            )
        except FileNotFoundError as e:
            raise HostConnectionError(f"ssh client not available: {e}", host=self._host) from e

        stderr = r.stderr.decode("utf-8", errors="replace")
        if r.returncode == _SSH_CONNECT_FAILED:
            raise HostConnectionError(
                f"Cannot connect to {self._host}: {stderr.strip()}",
                host=self._host,
            )
        return CommandResult(
            argv=list(argv),
            returncode=r.returncode,
            stdout=r.stdout.decode("utf-8", errors="replace"),
            stderr=stderr,
            elapsed_ms=int((time.monotonic() - start) * 1000),
        )

    # ── Filesystem ──────────────────────────────────────────────

    def _sh(self, script: str, path: str, input: bytes | None = None) -> CommandResult:
        r = self.run(["sh", "-c", script], timeout=_FS_TIMEOUT, input=input)
        if r.returncode not in (0, _ABSENT):
            raise ManagedPathError(
                f"{path}: {r.stderr.strip() or f'exit {r.returncode}'}",
                path=path,
                **r.describe(),
            )
        return r

    def read_bytes(self, path: str) -> bytes | None:
        p = shlex.quote(path)
        r = self._sh(f"test -f {p} || exit {_ABSENT}; base64 {p}", path)
        if r.returncode == _ABSENT:
            return None
        return base64.b64decode(r.stdout)

    def stat(self, path: str) -> FileState:
        p = shlex.quote(path)
        r = self._sh(f"test -e {p} || exit {_ABSENT}; stat -c '%F|%a|%U|%G' {p}", path)
        if r.returncode == _ABSENT:
            return FileState(exists=False)
        kind, mode, owner, group = r.stdout.strip().split("|", 3)
        return FileState(
            exists=True,
            is_dir=kind == "directory",
            mode=int(mode, 8),
            owner=owner,
            group=group,
        )

    def write_atomic(self, path: str, data: bytes, mode: int) -> None:
        p = shlex.quote(path)
        script = (
            "set -e; "
            f"d=$(dirname {p}); mkdir -p \"$d\"; "
            "t=$(mktemp \"$d/.hcv_XXXXXX\"); "
            "trap 'rm -f \"$t\"' EXIT; "
            "cat > \"$t\"; "
            f"chmod {mode:o} \"$t\"; "
            f"mv -f \"$t\" {p}; "
            "trap - EXIT"
        )
        self._sh(script, path, input=data)

    def copy(self, src: str, dst: str) -> None:
        self._sh(f"cp -p {shlex.quote(src)} {shlex.quote(dst)}", dst)

    def remove(self, path: str) -> bool:
        p = shlex.quote(path)
        r = self._sh(f"test -e {p} || exit {_ABSENT}; rm -rf {p}", path)
        return r.returncode != _ABSENT

    def make_dir(self, path: str, mode: int) -> None:
        self._sh(f"install -d -m {mode:o} {shlex.quote(path)}", path)

    def chmod(self, path: str, mode: int) -> None:
        self._sh(f"chmod {mode:o} {shlex.quote(path)}", path)

    def chown(self, path: str, owner: str | None, group: str | None) -> None:
        spec = (owner or "") + (f":{group}" if group else "")
        if not spec:
            return
        self._sh(f"chown {shlex.quote(spec)} {shlex.quote(path)}", path)
