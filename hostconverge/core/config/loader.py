"""
Settings loader — reads a role settings YAML into a RoleSettings model.

Values are layered in precedence order:
    CLI flags  >  environment (ELK_HOST, OUTPUT_MODE, ...)  >  file  >  defaults

The file is optional; a host can be converged from flags and
environment alone.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

# Default settings filename, looked up in the working directory
SETTINGS_FILE = "hostconverge.yml"

# Environment variable → settings field
ENV_VARS = {
    "ELK_HOST": "elk_host",
    "OUTPUT_MODE": "output_mode",
    "LOGSTASH_PORT": "logstash_port",
    "ES_PORT": "es_port",
    "RESET_ES_AUTOCONFIG": "reset_autoconfig",
}

_TRUE = {"1", "true", "yes", "on"}

# RFC 1123 host name: dot-separated labels of letters, digits and inner hyphens
_HOSTNAME_RE = re.compile(
    r"^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$"
)


class ConfigError(Exception):
    """Raised when role settings are invalid or cannot be read."""


class RoleSettings(BaseModel):
    """Validated settings for building a RoleSpec."""

    model_config = ConfigDict(extra="forbid")

    role: Literal["server", "client"] | None = None
    elk_host: str | None = None
    output_mode: Literal["logstash", "elasticsearch"] = "logstash"
    logstash_port: int = Field(default=5044, ge=1, le=65535)
    es_port: int = Field(default=9200, ge=1, le=65535)
    kibana_port: int = Field(default=5601, ge=1, le=65535)
    elastic_major: str = "8.x"
    es_network_host: str = "127.0.0.1"
    kibana_server_host: str = "0.0.0.0"
    cluster_name: str = "elk-cluster"
    node_name: str = "node-1"
    reset_autoconfig: bool = False
    extra_packages: list[str] = Field(default_factory=list)

    @field_validator("reset_autoconfig", mode="before")
    @classmethod
    def _flag(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() in _TRUE
        return v

    @field_validator("elk_host")
    @classmethod
    def _check_host(cls, v: str | None) -> str | None:
        """Accept a host name or an IP address; IPv6 comes back bracketed."""
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        try:
            addr = ipaddress.ip_address(v.strip("[]"))
        except ValueError:
            if not _HOSTNAME_RE.match(v):
                raise ValueError(f"not a host name or IP address: {v!r}") from None
            return v
        return f"[{addr}]" if addr.version == 6 else str(addr)

    @model_validator(mode="after")
    def _client_needs_elk_host(self) -> RoleSettings:
        if self.role == "client" and not self.elk_host:
            raise ValueError("elk_host is required for the client role")
        return self


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Settings taken from the environment (only variables that are set)."""
    environ = os.environ if environ is None else environ
    return {field: environ[var] for var, field in ENV_VARS.items() if environ.get(var, "") != ""}


def read_settings_file(path: Path) -> dict[str, Any]:
    """Read a settings YAML file into a plain mapping.

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping.
    """
    if not path.is_file():
        raise ConfigError(f"Settings file not found: {path}")

    logger.debug("Loading settings from %s", path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def load_settings(
    path: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> RoleSettings:
    """Load and validate role settings.

    Args:
        path: Settings YAML. If None, ``hostconverge.yml`` in the working
            directory is used when present.
        overrides: Values from CLI flags; None values are ignored.
        environ: Environment to read overrides from (default: os.environ).

    Raises:
        ConfigError: If the file or the merged settings are invalid.
    """
    if path is None:
        candidate = Path.cwd() / SETTINGS_FILE
        path = candidate if candidate.is_file() else None

    data: dict[str, Any] = read_settings_file(path) if path is not None else {}
    data.update(env_overrides(environ))
    data.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        settings = RoleSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {_summarize(e)}") from e

    logger.debug("Settings: role=%s elk_host=%s output=%s", settings.role, settings.elk_host, settings.output_mode)
    return settings


def _summarize(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "settings"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)
