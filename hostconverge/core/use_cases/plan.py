"""
Plan use case — show what a role consists of without touching a host.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from hostconverge.core.config.loader import ConfigError, load_settings
from hostconverge.core.config.roles import build_role_spec
from hostconverge.core.engine.orchestrator import plan_steps
from hostconverge.core.models.role import RoleSpec


@dataclass
class PlanResult:
    role: RoleSpec | None = None
    steps: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        assert self.role is not None
        return {
            "role": self.role.role_name,
            "steps": self.steps,
            "spec": self.role.model_dump(mode="json"),
        }


def build_plan(
    role: str | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> PlanResult:
    """Resolve settings into a RoleSpec and list the steps a run would take."""
    result = PlanResult()
    try:
        settings = load_settings(config_path, overrides={**(overrides or {}), "role": role}, environ=environ)
        result.role = build_role_spec(settings)
    except ConfigError as e:
        result.error = str(e)
        return result
    result.steps = plan_steps(result.role)
    return result
