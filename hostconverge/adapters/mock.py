"""
Mock host — in-memory simulation of a Debian host running systemd.

Used by the test suite and by ``converge --mock`` to exercise full
convergence runs without touching a real machine. It understands the
handful of commands the components issue (dpkg-query, apt-get,
systemctl, journalctl, curl, ss) and keeps enough state for a second
run to observe what the first one did.

Every state-changing call is appended to ``mutations``; idempotence
tests assert that list stays empty on a converged host.
"""

from __future__ import annotations

import base64
import posixpath
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from hostconverge.adapters.base import CommandResult, FileState, HostAccess
from hostconverge.core.errors import ManagedPathError

DEFAULT_VERSION = "8.13.4"

# Ports and URLs a unit serves once active. Lets health probes pass
# against a simulated stack.
KNOWN_UNITS: dict[str, dict] = {
    "elasticsearch": {"ports": {9200, 9300}, "urls": {"http://127.0.0.1:9200": 200}},
    "kibana": {"ports": {5601}, "urls": {"http://127.0.0.1:5601/api/status": 200}},
    "logstash": {"ports": {5044}, "urls": {}},
    "filebeat": {"ports": set(), "urls": {}},
}

# A syntactically valid ASCII-armored block; its body is arbitrary bytes.
MOCK_SIGNING_KEY = (
    b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n"
    b"Version: mock\n"
    b"\n"
    + base64.encodebytes(b"\x99\x01\x0d\x04mock-elastic-signing-key" * 4)
    + b"=AbCd\n"
    b"-----END PGP PUBLIC KEY BLOCK-----\n"
)


def mock_key_fetcher(url: str, timeout: float | None = None) -> bytes:
    """Key fetcher that never touches the network."""
    return MOCK_SIGNING_KEY


@dataclass
class MockUnit:
    """A systemd unit as the mock host sees it."""

    name: str
    enabled: bool = False
    active: bool = False
    failed: bool = False
    fail_start: bool = False
    ports: set[int] = field(default_factory=set)
    urls: dict[str, int] = field(default_factory=dict)
    journal: list[str] = field(default_factory=list)

    @property
    def definition(self) -> str:
        return (
            f"# /lib/systemd/system/{self.name}.service\n"
            "[Unit]\n"
            f"Description={self.name}\n"
            "\n"
            "[Service]\n"
            f"ExecStart=/usr/share/{self.name}/bin/{self.name}\n"
        )


class MockHost(HostAccess):
    """Universal host double.

    By default every package is installable at ``DEFAULT_VERSION`` and
    every unit starts. Tweak the public attributes to script failures.
    """

    def __init__(self, name: str = "mock", files: Mapping[str, bytes | str] | None = None):
        self._name = name
        self.files: dict[str, bytes] = {}
        self.modes: dict[str, int] = {}
        self.owners: dict[str, tuple[str, str]] = {}
        self.dirs: dict[str, int] = {"/": 0o755}

        self.installed: dict[str, str] = {}
        self.unavailable: set[str] = set()
        self.units: dict[str, MockUnit] = {}
        self.fail_index_refresh = False
        self.hanging_commands: set[str] = set()
        self.read_only_paths: set[str] = set()

        self.index_refreshes = 0
        self.daemon_reloads = 0
        self.commands: list[list[str]] = []
        self.mutations: list[str] = []

        for path, content in (files or {}).items():
            self._seed_file(path, content)
        self.mutations.clear()

    @property
    def name(self) -> str:
        return self._name

    # ── Scripting helpers ───────────────────────────────────────

    def _seed_file(self, path: str, content: bytes | str, mode: int = 0o644) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        self._ensure_parents(path)
        self.files[path] = data
        self.modes[path] = mode
        self.owners.setdefault(path, ("root", "root"))

    def seed_file(self, path: str, content: bytes | str, mode: int = 0o644) -> None:
        """Place a file without recording a mutation."""
        self._seed_file(path, content, mode)

    def add_unit(self, name: str, **kwargs) -> MockUnit:
        known = KNOWN_UNITS.get(name, {})
        kwargs.setdefault("ports", set(known.get("ports", set())))
        kwargs.setdefault("urls", dict(known.get("urls", {})))
        unit = MockUnit(name=name, **kwargs)
        self.units[name] = unit
        return unit

    def reset_log(self) -> None:
        """Forget calls and mutations, keep state."""
        self.commands.clear()
        self.mutations.clear()

    # ── Commands ────────────────────────────────────────────────

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv = list(argv)
        self.commands.append(argv)
        if argv and argv[0] in self.hanging_commands:
            return CommandResult(
                argv=argv,
                returncode=-1,
                stderr=f"Command timed out ({timeout}s)",
                timed_out=True,
            )

        handler = {
            "dpkg-query": self._dpkg_query,
            "apt-get": self._apt_get,
            "systemctl": self._systemctl,
            "journalctl": self._journalctl,
            "curl": self._curl,
            "ss": self._ss,
        }.get(argv[0] if argv else "")
        if handler is None:
            return CommandResult(argv=argv, returncode=127, stderr=f"{argv[0]}: command not found")
        returncode, stdout, stderr = handler(argv[1:])
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def _dpkg_query(self, args: list[str]) -> tuple[int, str, str]:
        names = [a for a in args if not a.startswith("-")]
        out, err = [], []
        for pkg in names:
            if pkg in self.installed:
                out.append(f"{pkg}\tinstall ok installed\t{self.installed[pkg]}")
            else:
                err.append(f"dpkg-query: no packages found matching {pkg}")
        return (1 if err else 0), "\n".join(out) + ("\n" if out else ""), "\n".join(err)

    def _apt_get(self, args: list[str]) -> tuple[int, str, str]:
        words = [a for a in args if not a.startswith("-")]
        if not words:
            return 100, "", "E: Invalid operation"
        op, pkgs = words[0], words[1:]
        if op == "update":
            if self.fail_index_refresh:
                return 100, "", "E: Failed to fetch https://artifacts.elastic.co/packages/8.x/apt/dists/stable/InRelease"
            self.index_refreshes += 1
            self.mutations.append("apt-get update")
            return 0, "Reading package lists... Done\n", ""
        if op == "install":
            resolved: dict[str, str] = {}
            for spec in pkgs:
                name, _, version = spec.partition("=")
                if name in self.unavailable:
                    return 100, "", f"E: Unable to locate package {name}"
                resolved[name] = version or DEFAULT_VERSION
            for name, version in resolved.items():
                self.installed[name] = version
                if name not in self.units:
                    self.add_unit(name)
            self.mutations.append("apt-get install " + " ".join(pkgs))
            return 0, f"Setting up {', '.join(resolved)} ...\n", ""
        return 100, "", f"E: Invalid operation {op}"

    def _systemctl(self, args: list[str]) -> tuple[int, str, str]:
        if not args:
            return 1, "", "missing verb"
        verb, rest = args[0], args[1:]
        if verb == "daemon-reload":
            self.daemon_reloads += 1
            self.mutations.append("systemctl daemon-reload")
            return 0, "", ""

        names = [a for a in rest if not a.startswith("-")]
        if not names:
            return 1, "", f"Too few arguments for {verb}"
        name = names[0].removesuffix(".service")
        unit = self.units.get(name)

        if verb == "show":
            props = [a.split("=", 1)[1] for a in rest if a.startswith("--property=")]
            wanted = ",".join(props).split(",") if props else []
            values = self._unit_properties(unit)
            return 0, "".join(f"{p}={values.get(p, '')}\n" for p in wanted), ""
        if verb == "is-active":
            state = "active" if unit and unit.active else ("failed" if unit and unit.failed else "inactive")
            return (0 if state == "active" else 3), state + "\n", ""

        if unit is None:
            return 1, "", f"Unit {name}.service could not be found."

        if verb == "is-enabled":
            return (0 if unit.enabled else 1), ("enabled" if unit.enabled else "disabled") + "\n", ""
        if verb == "cat":
            text = unit.definition
            drop_in = f"/etc/systemd/system/{name}.service.d/override.conf"
            if drop_in in self.files:
                text += f"\n# {drop_in}\n" + self.files[drop_in].decode("utf-8")
            return 0, text, ""
        if verb in ("enable", "disable"):
            unit.enabled = verb == "enable"
            self.mutations.append(f"systemctl {verb} {name}")
            return 0, "", ""
        if verb in ("start", "restart"):
            self.mutations.append(f"systemctl {verb} {name}")
            if unit.fail_start:
                unit.active, unit.failed = False, True
                unit.journal += [
                    f"Starting {name}.service - {name}...",
                    f"{name}.service: Main process exited, code=exited, status=1/FAILURE",
                    f"{name}.service: Failed with result 'exit-code'.",
                    f"Failed to start {name}.service - {name}.",
                ]
                return 1, "", (
                    f"Job for {name}.service failed because the control process exited "
                    f"with error code.\nSee \"systemctl status {name}.service\" and "
                    f"\"journalctl -xeu {name}.service\" for details."
                )
            unit.active, unit.failed = True, False
            unit.journal.append(f"Started {name}.service - {name}.")
            return 0, "", ""
        if verb == "stop":
            unit.active = False
            unit.journal.append(f"Stopped {name}.service - {name}.")
            self.mutations.append(f"systemctl stop {name}")
            return 0, "", ""
        return 1, "", f"Unknown command verb {verb}."

    def _unit_properties(self, unit: MockUnit | None) -> dict[str, str]:
        if unit is None:
            return {
                "LoadState": "not-found",
                "ActiveState": "inactive",
                "SubState": "dead",
                "UnitFileState": "",
            }
        if unit.active:
            active, sub = "active", "running"
        elif unit.failed:
            active, sub = "failed", "failed"
        else:
            active, sub = "inactive", "dead"
        return {
            "LoadState": "loaded",
            "ActiveState": active,
            "SubState": sub,
            "UnitFileState": "enabled" if unit.enabled else "disabled",
        }

    def _journalctl(self, args: list[str]) -> tuple[int, str, str]:
        name, limit = "", 200
        for i, a in enumerate(args):
            if a == "-u" and i + 1 < len(args):
                name = args[i + 1].removesuffix(".service")
            if a == "-n" and i + 1 < len(args):
                limit = int(args[i + 1])
        unit = self.units.get(name)
        if unit is None or not unit.journal:
            return 0, "-- No entries --\n", ""
        return 0, "\n".join(unit.journal[-limit:]) + "\n", ""

    def _curl(self, args: list[str]) -> tuple[int, str, str]:
        url = next((a for a in reversed(args) if a.startswith("http")), "")
        for unit in self.units.values():
            if unit.active and url in unit.urls:
                return 0, str(unit.urls[url]), ""
        return 7, "000", f"curl: (7) Failed to connect to {url}"

    def _ss(self, args: list[str]) -> tuple[int, str, str]:
        lines = ["State  Recv-Q Send-Q Local Address:Port Peer Address:Port"]
        for unit in self.units.values():
            if unit.active:
                lines += [f"LISTEN 0      4096   0.0.0.0:{p}        0.0.0.0:*" for p in sorted(unit.ports)]
        return 0, "\n".join(lines) + "\n", ""

    # ── Filesystem ──────────────────────────────────────────────

    def _check_writable(self, path: str) -> None:
        for prefix in self.read_only_paths:
            if path == prefix or path.startswith(prefix.rstrip("/") + "/"):
                raise ManagedPathError(f"Cannot write {path}: Permission denied", path=path)

    def _ensure_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        while parent and parent not in self.dirs:
            self.dirs[parent] = 0o755
            parent = posixpath.dirname(parent)

    def read_bytes(self, path: str) -> bytes | None:
        return self.files.get(path)

    def stat(self, path: str) -> FileState:
        if path in self.files:
            owner, group = self.owners.get(path, ("root", "root"))
            return FileState(exists=True, mode=self.modes.get(path, 0o644), owner=owner, group=group)
        if path in self.dirs:
            owner, group = self.owners.get(path, ("root", "root"))
            return FileState(exists=True, is_dir=True, mode=self.dirs[path], owner=owner, group=group)
        return FileState(exists=False)

    def write_atomic(self, path: str, data: bytes, mode: int) -> None:
        self._check_writable(path)
        self._ensure_parents(path)
        self.files[path] = bytes(data)
        self.modes[path] = mode
        self.owners.setdefault(path, ("root", "root"))
        self.mutations.append(f"write {path}")

    def copy(self, src: str, dst: str) -> None:
        self._check_writable(dst)
        if src not in self.files:
            raise ManagedPathError(f"Cannot copy {src}: No such file or directory", path=src)
        self.files[dst] = self.files[src]
        self.modes[dst] = self.modes.get(src, 0o644)
        self.mutations.append(f"copy {src} {dst}")

    def remove(self, path: str) -> bool:
        if path in self.dirs:
            self._check_writable(path)
            prefix = path.rstrip("/") + "/"
            for p in [p for p in self.files if p.startswith(prefix)]:
                del self.files[p]
            for d in [d for d in self.dirs if d == path or d.startswith(prefix)]:
                del self.dirs[d]
            self.mutations.append(f"remove {path}")
            return True
        if path not in self.files:
            return False
        self._check_writable(path)
        del self.files[path]
        self.modes.pop(path, None)
        self.mutations.append(f"remove {path}")
        return True

    def make_dir(self, path: str, mode: int) -> None:
        self._check_writable(path)
        self._ensure_parents(path)
        self.dirs[path] = mode
        self.mutations.append(f"mkdir {path}")

    def chmod(self, path: str, mode: int) -> None:
        self._check_writable(path)
        if path in self.dirs:
            self.dirs[path] = mode
        elif path in self.files:
            self.modes[path] = mode
        else:
            raise ManagedPathError(f"Cannot chmod {path}: No such file or directory", path=path)
        self.mutations.append(f"chmod {mode:o} {path}")

    def chown(self, path: str, owner: str | None, group: str | None) -> None:
        self._check_writable(path)
        current = self.owners.get(path, ("root", "root"))
        self.owners[path] = (owner or current[0], group or current[1])
        self.mutations.append(f"chown {owner}:{group} {path}")
