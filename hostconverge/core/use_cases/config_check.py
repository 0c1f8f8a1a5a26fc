"""
Config check use case — validate role settings and report issues.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from hostconverge.core.config.loader import ConfigError, RoleSettings, load_settings
from hostconverge.core.config.roles import build_role_spec


@dataclass
class ConfigCheckResult:
    """Result of settings validation."""

    valid: bool = False
    settings: RoleSettings | None = None
    config_path: Path | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "config_path": str(self.config_path) if self.config_path else None,
            "errors": self.errors,
            "warnings": self.warnings,
            "settings": self.settings.model_dump(mode="json") if self.settings else None,
        }


def check_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigCheckResult:
    """Validate role settings and report issues.

    Args:
        config_path: Optional explicit settings file.
        environ: Environment for overrides (default: os.environ).

    Returns:
        ConfigCheckResult with validation status and any issues.
    """
    result = ConfigCheckResult(config_path=config_path)

    try:
        settings = load_settings(config_path, environ=environ)
        result.settings = settings
    except ConfigError as e:
        result.errors.append(str(e))
        return result

    # Semantic checks
    if settings.role is None:
        result.warnings.append("No role set; 'converge' will need --role.")
    else:
        try:
            build_role_spec(settings)
        except ConfigError as e:
            result.errors.append(str(e))

    if settings.role == "server" and settings.es_network_host in ("127.0.0.1", "localhost"):
        if settings.output_mode == "elasticsearch":
            result.warnings.append(
                "output_mode is 'elasticsearch' but es_network_host binds loopback only; "
                "remote shippers cannot reach Elasticsearch."
            )

    if settings.role == "client" and settings.elk_host in ("127.0.0.1", "localhost"):
        result.warnings.append("elk_host points at loopback; the client will ship to itself.")

    result.valid = not result.errors
    return result
