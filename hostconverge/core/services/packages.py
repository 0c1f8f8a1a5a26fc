"""
Package installer — make sure a set of APT packages is present.

Installed state comes from ``dpkg-query``; missing packages go into a
single ``apt-get install`` transaction so interdependent packages are
never left half-installed. There is no per-package retry.

Entries may pin a version as ``name=version``; a pinned package
installed at another version counts as missing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from hostconverge.core.errors import IndexRefreshError, InstallError
from hostconverge.core.models.result import StepResult
from hostconverge.core.services.base import Component

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT = 1800.0
UPDATE_TIMEOUT = 300.0
QUERY_TIMEOUT = 30.0

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

_DPKG_FORMAT = "-f=${Package}\t${Status}\t${Version}\n"
_UNABLE_TO_LOCATE_RE = re.compile(r"Unable to locate package (\S+)")
_VERSION_NOT_FOUND_RE = re.compile(r"Version '[^']*' for '([^']+)' was not found")


def parse_package(spec: str) -> tuple[str, str | None]:
    """Split ``name=version`` into its parts.

    >>> parse_package("filebeat=8.13.4")
    ('filebeat', '8.13.4')
    >>> parse_package("kibana")
    ('kibana', None)
    """
    name, sep, version = spec.partition("=")
    return name, (version if sep else None)


class PackageInstaller(Component):
    """Ensure packages are installed through dpkg/apt."""

    step_name = "packages"

    def installed_versions(self, names: Sequence[str]) -> dict[str, str]:
        """Return ``{name: version}`` for every fully installed package in ``names``.

        ``dpkg-query`` exits non-zero when some names are unknown but
        still reports the known ones, so the exit code is ignored.
        """
        if not names:
            return {}
        r = self._run(["dpkg-query", "-W", _DPKG_FORMAT, *names], timeout=QUERY_TIMEOUT)
        installed: dict[str, str] = {}
        for line in r.stdout.splitlines():
            parts = line.split("\t")
            if len(parts) != 3:
                continue
            name, status, version = parts
            if status.strip() == "install ok installed":
                installed[name.split(":", 1)[0]] = version.strip()
        return installed

    def missing(self, packages: Sequence[str]) -> list[str]:
        """Package specs from ``packages`` that are absent or at the wrong version."""
        wanted = [parse_package(p) for p in packages]
        installed = self.installed_versions([name for name, _ in wanted])
        result: list[str] = []
        for spec, (name, version) in zip(packages, wanted):
            if name not in installed:
                result.append(spec)
            elif version is not None and installed[name] != version:
                result.append(spec)
        return result

    def ensure(self, packages: Sequence[str], refresh_index: bool = False) -> StepResult:
        return self._step(self.step_name, lambda: self._ensure(list(packages), refresh_index))

    def _ensure(self, packages: list[str], refresh_index: bool) -> StepResult:
        if not packages and not refresh_index:
            return StepResult.satisfied(self.step_name, "No packages requested")

        missing = self.missing(packages)
        if not missing and not refresh_index:
            return StepResult.satisfied(
                self.step_name,
                f"All {len(packages)} packages already installed",
                metadata={"installed": [], "index_refreshed": False},
            )

        if self.dry_run:
            return StepResult.would_apply(
                self.step_name,
                f"Would install {', '.join(missing)}" if missing else "Would refresh package index",
                metadata={"installed": missing, "index_refreshed": True},
            )

        self._refresh_index()
        if missing:
            self._install(missing)
            logger.info("packages: installed %s", ", ".join(missing))

        message = f"Installed {', '.join(missing)}" if missing else "Refreshed package index"
        return StepResult.applied(
            self.step_name,
            message,
            metadata={"installed": missing, "index_refreshed": True},
        )

    def _refresh_index(self) -> None:
        r = self._run(["apt-get", "update", "-y"], timeout=UPDATE_TIMEOUT, env=APT_ENV)
        if not r.ok:
            raise IndexRefreshError(
                f"apt-get update failed (exit {r.returncode})",
                **r.describe(),
            )

    def _install(self, missing: list[str]) -> None:
        r = self._run(
            ["apt-get", "install", "-y", *missing],
            timeout=INSTALL_TIMEOUT,
            env=APT_ENV,
        )
        if r.ok:
            return

        culprit = _culprit(r.stderr) or " ".join(missing)
        reason = r.stderr.strip().splitlines()[-1] if r.stderr.strip() else f"exit {r.returncode}"
        if r.timed_out:
            reason = f"timed out after {r.elapsed_ms // 1000}s"
        raise InstallError(culprit, reason, **r.describe())


def _culprit(stderr: str) -> str | None:
    """Pull the offending package name out of apt-get's error text."""
    for pattern in (_UNABLE_TO_LOCATE_RE, _VERSION_NOT_FOUND_RE):
        m = pattern.search(stderr)
        if m:
            return m.group(1)
    return None
