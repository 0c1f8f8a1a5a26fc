"""
Config writer — render templates and write them atomically.

Templates use ``{name}`` placeholders where ``name`` is an identifier.
Anything else in braces (``${path.config}``, ``{}``) is left alone, so
runtime references understood by the target program pass through.
An undefined placeholder is an error, never empty text.

Backups: on the first managed write of a file that existed before we
managed it, the original is copied to ``<target>.bak``. A file that
already carries ``MANAGED_MARKER`` is our own output and is not backed
up, and an existing backup is never touched again.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from hostconverge.core.errors import TemplateError
from hostconverge.core.models.result import StepResult
from hostconverge.core.models.role import ConfigFileSpec, DirectorySpec
from hostconverge.core.services.base import Component

logger = logging.getLogger(__name__)

MANAGED_MARKER = "# Managed by hostconverge"

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render_template(body: str, variables: Mapping[str, object], target: str = "") -> str:
    """Substitute ``{name}`` placeholders from ``variables``.

    Booleans render lowercase, as YAML expects.

    Raises:
        TemplateError: A placeholder has no matching variable.

    >>> render_template("hosts: [\\"{host}:{port}\\"]", {"host": "10.0.1.81", "port": 5044})
    'hosts: ["10.0.1.81:5044"]'
    >>> render_template("path: ${path.config}/modules.d", {})
    'path: ${path.config}/modules.d'
    """

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        if key not in variables:
            raise TemplateError(key, target)
        value = variables[key]
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    return _PLACEHOLDER_RE.sub(_sub, body)


class ConfigWriter(Component):
    """Converge managed config files, directories and purge paths."""

    def write(self, spec: ConfigFileSpec) -> StepResult:
        return self._step(f"config:{spec.target_path}", lambda: self._write(spec))

    def _write(self, spec: ConfigFileSpec) -> StepResult:
        step = f"config:{spec.target_path}"
        rendered = render_template(spec.template_body, spec.variables, spec.target_path)
        data = rendered.encode("utf-8")

        current = self.host.read_bytes(spec.target_path)
        if current == data:
            mode = self.host.stat(spec.target_path).mode
            if mode == spec.mode:
                return StepResult.satisfied(step, "Content and mode match")
            if not self.dry_run:
                self.host.chmod(spec.target_path, spec.mode)
            return self._changed(
                step,
                f"Mode {mode:o} -> {spec.mode:o}",
                metadata={"content_changed": False, "backup": None},
            )

        backup = None
        if spec.backup_on_first_write and self._needs_backup(spec, current):
            backup = spec.backup_path
            if not self.dry_run:
                self.host.copy(spec.target_path, backup)
                logger.info("Backed up %s → %s", spec.target_path, backup)

        if not self.dry_run:
            self.host.write_atomic(spec.target_path, data, spec.mode)
            logger.info("config: wrote %s (%d bytes)", spec.target_path, len(data))

        verb = "Created" if current is None else "Updated"
        return self._changed(
            step,
            f"{verb} {spec.target_path}",
            metadata={"content_changed": True, "backup": backup},
        )

    def _needs_backup(self, spec: ConfigFileSpec, current: bytes | None) -> bool:
        if current is None:
            return False
        if self.host.exists(spec.backup_path):
            return False
        return not current.decode("utf-8", errors="replace").startswith(MANAGED_MARKER)

    # ── Directories ─────────────────────────────────────────────

    def ensure_directory(self, spec: DirectorySpec) -> StepResult:
        return self._step(f"directory:{spec.path}", lambda: self._ensure_directory(spec))

    def _ensure_directory(self, spec: DirectorySpec) -> StepResult:
        step = f"directory:{spec.path}"
        state = self.host.stat(spec.path)
        changes: list[str] = []

        if not state.exists:
            if not self.dry_run:
                self.host.make_dir(spec.path, spec.mode)
            changes.append("created")
        elif state.mode != spec.mode:
            if not self.dry_run:
                self.host.chmod(spec.path, spec.mode)
            changes.append(f"mode {state.mode:o} -> {spec.mode:o}")

        wrong_owner = spec.owner is not None and state.owner != spec.owner
        wrong_group = spec.group is not None and state.group != spec.group
        if not state.exists or wrong_owner or wrong_group:
            if spec.owner or spec.group:
                if not self.dry_run:
                    self.host.chown(spec.path, spec.owner, spec.group)
                changes.append(f"owner {spec.owner or ''}:{spec.group or ''}")

        if not changes:
            return StepResult.satisfied(step, "Directory matches")
        return self._changed(step, ", ".join(changes))

    # ── Purge ───────────────────────────────────────────────────

    def purge(self, path: str) -> StepResult:
        return self._step(f"purge:{path}", lambda: self._purge(path))

    def _purge(self, path: str) -> StepResult:
        step = f"purge:{path}"
        if not self.host.exists(path):
            return StepResult.satisfied(step, "Already absent")
        if not self.dry_run:
            self.host.remove(path)
            logger.info("purge: removed %s", path)
        return self._changed(step, f"Removed {path}")
