"""
Converge use case — settings to RoleSpec to one result per target.

The full vertical slice behind ``hostconverge converge``: load settings,
build the role, open a host per target, run the orchestrators (in
parallel when there are several) and optionally persist the report.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostconverge.adapters.factory import is_local, open_host
from hostconverge.adapters.mock import mock_key_fetcher
from hostconverge.core.config.loader import ConfigError, load_settings
from hostconverge.core.config.roles import build_role_spec
from hostconverge.core.engine.cancel import CancelToken
from hostconverge.core.engine.orchestrator import converge_many
from hostconverge.core.models.result import ConvergenceResult, OverallStatus
from hostconverge.core.models.role import RoleSpec
from hostconverge.core.persistence.atomic import save_json
from hostconverge.core.services.repository import KeyFetcher

logger = logging.getLogger(__name__)

# Exit code for settings problems: nothing was attempted.
CONFIG_ERROR_EXIT = 2

_SEVERITY = {
    OverallStatus.SUCCESS: 0,
    OverallStatus.PARTIAL_FAILURE: 1,
    OverallStatus.FATAL: 2,
}


@dataclass
class ConvergeRunResult:
    """Result of converging one role on one or more targets."""

    role: RoleSpec | None = None
    results: list[ConvergenceResult] = field(default_factory=list)
    dry_run: bool = False
    report_path: Path | None = None
    error: str | None = None

    @property
    def overall_status(self) -> OverallStatus:
        if self.error or not self.results:
            return OverallStatus.FATAL
        return max((r.overall_status for r in self.results), key=_SEVERITY.__getitem__)

    @property
    def exit_code(self) -> int:
        if self.error:
            return CONFIG_ERROR_EXIT
        return _SEVERITY[self.overall_status]

    def to_dict(self) -> dict:
        result: dict = {}
        if self.error:
            result["error"] = self.error
            result["overall_status"] = OverallStatus.FATAL.value
            return result

        result["role"] = self.role.role_name if self.role else None
        result["dry_run"] = self.dry_run
        result["overall_status"] = self.overall_status.value
        result["targets"] = [r.to_dict() for r in self.results]
        if self.report_path:
            result["report_path"] = str(self.report_path)
        return result


def run_converge(
    targets: Sequence[str],
    role: str | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    dry_run: bool = False,
    timeout: float | None = None,
    mock_mode: bool = False,
    report_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    key_fetcher: KeyFetcher | None = None,
    root: Path | None = None,
) -> ConvergeRunResult:
    """Converge ``role`` on every target.

    Args:
        targets: Host names; ``localhost`` converges this machine.
        role: ``server`` or ``client``; defaults to the settings file.
        config_path: Optional settings YAML.
        overrides: Settings from CLI flags (None values ignored).
        dry_run: Inspect only.
        timeout: Overall budget in seconds for the whole run.
        mock_mode: Simulate every target in memory.
        report_path: Write the JSON report here (atomically).
        environ: Environment for settings overrides (default: os.environ).
        key_fetcher: Override the signing-key download.
        root: For local targets, a directory standing in for ``/``.

    Returns:
        ConvergeRunResult; ``error`` is set for settings problems.
    """
    result = ConvergeRunResult(dry_run=dry_run)

    # ── Settings and role ───────────────────────────────────────
    try:
        settings = load_settings(config_path, overrides={**(overrides or {}), "role": role}, environ=environ)
        spec = build_role_spec(settings)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.role = spec

    if not targets:
        result.error = "No targets given; use --target HOST"
        return result

    # Managed paths under / are written with our own privileges.
    if not mock_mode and not dry_run and root is None and any(is_local(t) for t in targets):
        if os.geteuid() != 0:
            result.error = "Converging localhost needs root; rerun with sudo or pass --root DIR"
            return result

    # ── Hosts ───────────────────────────────────────────────────
    if mock_mode and key_fetcher is None:
        key_fetcher = mock_key_fetcher
    hosts = [open_host(t, mock=mock_mode, root=root) for t in targets]

    # ── Converge ────────────────────────────────────────────────
    cancel = CancelToken(timeout)
    result.results = converge_many(
        [(host, spec) for host in hosts],
        key_fetcher=key_fetcher,
        dry_run=dry_run,
        cancel=cancel,
    )

    # ── Persist report ──────────────────────────────────────────
    if report_path is not None:
        save_json(result.to_dict(), report_path)
        result.report_path = report_path
        logger.info("Report written to %s", report_path)

    return result
