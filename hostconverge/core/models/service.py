"""
ServiceStatus — observed state of a systemd unit.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ServiceStatus(BaseModel):
    """Snapshot returned by ``ServiceController.status``.

    Query failures land in ``errors``; the snapshot itself is always
    returned so diagnostics survive a broken unit.
    """

    unit_name: str
    load_state: str = "unknown"
    active_state: str = "unknown"
    sub_state: str = "unknown"
    unit_file_state: str = "unknown"
    log_tail: list[str] = Field(default_factory=list)
    unit_definition: str = ""
    errors: list[str] = Field(default_factory=list)

    @property
    def running(self) -> bool:
        return self.active_state == "active"

    @property
    def enabled(self) -> bool:
        return self.unit_file_state in ("enabled", "enabled-runtime", "static", "alias")

    @property
    def loaded(self) -> bool:
        return self.load_state == "loaded"
