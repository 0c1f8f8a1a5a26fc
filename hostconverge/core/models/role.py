"""
Role models — the declared desired state of one host.

A RoleSpec is value data: built once by the role catalog (or loaded
from a document), then passed read-only through a convergence run.
Every model here is frozen.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DesiredState(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class RepoDefinition(_Frozen):
    """A signed APT repository plus the list files it supersedes."""

    key_url: str
    keyring_path: str
    repo_list_path: str
    base_url: str
    channel: str = "stable"
    components: tuple[str, ...] = ("main",)
    obsolete_paths: frozenset[str] = frozenset()

    @property
    def keyring_dir(self) -> str:
        return self.keyring_path.rsplit("/", 1)[0] or "/"

    @property
    def repo_line(self) -> str:
        """The single ``deb`` line written to ``repo_list_path``."""
        return (
            f"deb [signed-by={self.keyring_path}] {self.base_url} "
            f"{self.channel} {' '.join(self.components)}"
        )


class ConfigFileSpec(_Frozen):
    """A config file rendered from a template and written atomically."""

    target_path: str
    template_body: str
    variables: dict[str, str | int | bool] = Field(default_factory=dict)
    backup_on_first_write: bool = False
    mode: int = 0o644

    @property
    def backup_path(self) -> str:
        return f"{self.target_path}.bak"


class DirectorySpec(_Frozen):
    path: str
    mode: int = 0o755
    owner: str | None = None
    group: str | None = None


class HealthCheck(_Frozen):
    """A post-start probe run on the target host.

    ``http`` checks compare the status code of ``url``; ``port`` checks
    look for a TCP listener on ``port``.
    """

    kind: Literal["http", "port"]
    url: str | None = None
    port: int | None = None
    expect_status: int = 200
    attempts: int = 10
    interval: float = 3.0

    @field_validator("attempts")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("attempts must be >= 1")
        return v

    @property
    def label(self) -> str:
        return self.url if self.kind == "http" else f"port {self.port}"


class ServiceSpec(_Frozen):
    """A systemd unit and how it should look after convergence.

    ``restart_on`` lists config paths; if any of them changed during
    the run the unit is restarted so the new config takes effect.
    """

    unit_name: str
    enabled: bool = True
    desired_state: DesiredState = DesiredState.RUNNING
    override_env: dict[str, str] = Field(default_factory=dict)
    restart_on: tuple[str, ...] = ()
    health_checks: tuple[HealthCheck, ...] = ()

    @property
    def override_dir(self) -> str:
        return f"/etc/systemd/system/{self.unit_name}.service.d"

    @property
    def override_path(self) -> str:
        return f"{self.override_dir}/override.conf"


class RoleSpec(_Frozen):
    """Everything one convergence run needs to know about a host."""

    role_name: str
    repo_definition: RepoDefinition | None = None
    packages: tuple[str, ...] = ()
    directories: tuple[DirectorySpec, ...] = ()
    purge_paths: tuple[str, ...] = ()
    # Units stopped before any purge path is removed; restarted by their service step.
    stop_before_purge: tuple[str, ...] = ()
    config_files: tuple[ConfigFileSpec, ...] = ()
    services: tuple[ServiceSpec, ...] = ()
