"""
Service controller — systemd units.

Converges, per unit:
    override_env   → ``<unit>.service.d/override.conf`` + daemon-reload
    enabled        → systemctl enable / disable
    desired_state  → systemctl start / stop
    changed config → systemctl restart (when running and a watched file changed)
    purge          → systemctl stop before state under the unit is removed

A unit that fails to start is reported with its last journal lines and
its effective definition (``systemctl cat``), the two things you look
at first when a start fails.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping

from hostconverge.core.errors import ConvergeError, ServiceStartError, StatusQueryError
from hostconverge.core.models.result import StepResult
from hostconverge.core.models.role import DesiredState, ServiceSpec
from hostconverge.core.models.service import ServiceStatus
from hostconverge.core.services.base import Component
from hostconverge.core.services.config_writer import MANAGED_MARKER

logger = logging.getLogger(__name__)

LOG_TAIL_LINES = 200
OVERRIDE_MODE = 0o644
OVERRIDE_DIR_MODE = 0o755
SYSTEMCTL_TIMEOUT = 90.0
START_TIMEOUT = 300.0

_PROPERTIES = ("LoadState", "ActiveState", "SubState", "UnitFileState")


def render_override(env: Mapping[str, str]) -> str:
    """Render a drop-in that sets environment variables for a unit.

    >>> print(render_override({"ES_PATH_CONF": "/etc/elasticsearch"}), end="")
    # Managed by hostconverge
    [Service]
    Environment=ES_PATH_CONF=/etc/elasticsearch
    """
    lines = [MANAGED_MARKER, "[Service]"]
    for key, value in env.items():
        assignment = f"{key}={value}"
        if any(c.isspace() for c in value) or '"' in value:
            escaped = assignment.replace("\\", "\\\\").replace('"', '\\"')
            assignment = f'"{escaped}"'
        lines.append(f"Environment={assignment}")
    return "\n".join(lines) + "\n"


class ServiceController(Component):
    """Ensure systemd units are enabled and in their desired state.

    Set ``needs_reload`` when packages dropped new unit files on the host;
    the next unit converged runs one ``systemctl daemon-reload`` first.
    """

    needs_reload = False

    # ── Status ──────────────────────────────────────────────────

    def status(self, unit_name: str, log_lines: int = LOG_TAIL_LINES) -> ServiceStatus:
        """Observe a unit. Never raises; query failures land in ``errors``."""
        status = ServiceStatus(unit_name=unit_name)
        try:
            props = self._properties(unit_name)
            status.load_state = props.get("LoadState") or "unknown"
            status.active_state = props.get("ActiveState") or "unknown"
            status.sub_state = props.get("SubState") or "unknown"
            status.unit_file_state = props.get("UnitFileState") or "unknown"
        except ConvergeError as e:
            status.errors.append(e.message)

        try:
            r = self._run(
                ["journalctl", "-u", unit_name, "--no-pager", "-n", str(log_lines)],
                timeout=SYSTEMCTL_TIMEOUT,
            )
            if r.ok:
                status.log_tail = r.stdout.splitlines()[-log_lines:]
            else:
                status.errors.append(f"journalctl: {r.stderr.strip() or f'exit {r.returncode}'}")
        except ConvergeError as e:
            status.errors.append(e.message)

        try:
            r = self._run(["systemctl", "cat", unit_name, "--no-pager"], timeout=SYSTEMCTL_TIMEOUT)
            if r.ok:
                status.unit_definition = r.stdout
            else:
                status.errors.append(f"systemctl cat: {r.stderr.strip() or f'exit {r.returncode}'}")
        except ConvergeError as e:
            status.errors.append(e.message)

        return status

    def _properties(self, unit_name: str) -> dict[str, str]:
        r = self._run(
            ["systemctl", "show", unit_name, f"--property={','.join(_PROPERTIES)}"],
            timeout=SYSTEMCTL_TIMEOUT,
        )
        if not r.ok:
            raise StatusQueryError(
                f"systemctl show {unit_name} failed (exit {r.returncode})",
                **r.describe(),
            )
        props: dict[str, str] = {}
        for line in r.stdout.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                props[key.strip()] = value.strip()
        return props

    # ── Convergence ─────────────────────────────────────────────

    def ensure_running(
        self,
        spec: ServiceSpec,
        changed_paths: Collection[str] = (),
    ) -> StepResult:
        """Converge one unit.

        Args:
            spec: Desired unit state.
            changed_paths: Config paths written earlier in this run; a
                running unit watching any of them is restarted.
        """
        return self._step(
            f"service:{spec.unit_name}",
            lambda: self._ensure(spec, set(changed_paths)),
        )

    def _ensure(self, spec: ServiceSpec, changed_paths: set[str]) -> StepResult:
        step = f"service:{spec.unit_name}"
        unit = spec.unit_name
        changes: list[str] = []

        override_changed = False
        if spec.override_env:
            override_changed = self._ensure_override(spec)
            if override_changed:
                changes.append("override written")
        if self.needs_reload and not self.dry_run:
            self._daemon_reload()
            changes.append("daemon reloaded")

        props = self._properties(unit)
        if props.get("LoadState") == "not-found":
            if self.dry_run:
                return StepResult.would_apply(
                    step,
                    f"Unit {unit} not installed yet",
                    metadata={"changes": changes + ["enable", "start"]},
                )
            raise ServiceStartError(f"Unit {unit}.service not found", unit=unit)

        enabled = props.get("UnitFileState") in ("enabled", "enabled-runtime", "static", "alias")
        if spec.enabled and not enabled:
            self._systemctl("enable", unit)
            changes.append("enabled")
        elif not spec.enabled and props.get("UnitFileState") == "enabled":
            self._systemctl("disable", unit)
            changes.append("disabled")

        running = props.get("ActiveState") == "active"
        watched = sorted(p for p in spec.restart_on if p in changed_paths)
        if spec.desired_state == DesiredState.RUNNING:
            if not running:
                self._start(unit, "start")
                changes.append("started")
            elif override_changed or watched:
                self._start(unit, "restart")
                changes.append("restarted" + (f" ({', '.join(watched)} changed)" if watched else ""))
        elif running:
            self._systemctl("stop", unit)
            changes.append("stopped")

        if not changes:
            return StepResult.satisfied(step, f"{unit} already {spec.desired_state.value}")
        logger.info("service %s: %s", unit, ", ".join(changes))
        return self._changed(step, ", ".join(changes), metadata={"changes": changes})

    def stop_for_purge(self, unit: str, paths: Collection[str]) -> StepResult:
        """Stop ``unit`` if any of ``paths`` is about to be removed under it."""
        return self._step(f"stop:{unit}", lambda: self._stop_for_purge(unit, paths))

    def _stop_for_purge(self, unit: str, paths: Collection[str]) -> StepResult:
        step = f"stop:{unit}"
        present = [p for p in paths if self.host.exists(p)]
        if not present:
            return StepResult.satisfied(step, "Nothing to purge")
        if self._properties(unit).get("ActiveState") != "active":
            return StepResult.satisfied(step, f"{unit} not running", metadata={"purge": present})
        self._systemctl("stop", unit)
        logger.info("service %s: stopped before purging %s", unit, ", ".join(present))
        return self._changed(step, f"Stopped {unit} before purge", metadata={"purge": present})

    def _ensure_override(self, spec: ServiceSpec) -> bool:
        body = render_override(spec.override_env).encode("utf-8")
        if (
            self.host.read_bytes(spec.override_path) == body
            and self.host.stat(spec.override_path).mode == OVERRIDE_MODE
        ):
            return False
        if self.dry_run:
            return True
        if not self.host.stat(spec.override_dir).exists:
            self.host.make_dir(spec.override_dir, OVERRIDE_DIR_MODE)
        self.host.write_atomic(spec.override_path, body, OVERRIDE_MODE)
        self._daemon_reload()
        return True

    def _daemon_reload(self) -> None:
        r = self._run(["systemctl", "daemon-reload"], timeout=SYSTEMCTL_TIMEOUT)
        if not r.ok:
            raise ServiceStartError("systemctl daemon-reload failed", **r.describe())
        self.needs_reload = False

    def _systemctl(self, verb: str, unit: str) -> None:
        if self.dry_run:
            return
        r = self._run(["systemctl", verb, unit], timeout=SYSTEMCTL_TIMEOUT)
        if not r.ok:
            raise ServiceStartError(
                f"systemctl {verb} {unit} failed (exit {r.returncode})",
                unit=unit,
                **r.describe(),
            )

    def _start(self, unit: str, verb: str) -> None:
        if self.dry_run:
            return
        r = self._run(["systemctl", verb, unit], timeout=START_TIMEOUT)
        if r.ok and self._properties(unit).get("ActiveState") == "active":
            return

        status = self.status(unit)
        logger.error(
            "%s did not %s; last %d journal lines captured",
            unit, verb, len(status.log_tail),
        )
        raise ServiceStartError(
            f"{unit} failed to {verb}",
            unit=unit,
            **r.describe(),
            active_state=status.active_state,
            sub_state=status.sub_state,
            log_tail=status.log_tail,
            unit_definition=status.unit_definition,
            status_errors=status.errors,
        )
