"""
Status use case — observe one systemd unit on a target.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from hostconverge.adapters.base import HostAccess
from hostconverge.adapters.factory import open_host
from hostconverge.core.models.service import ServiceStatus
from hostconverge.core.services.service_control import LOG_TAIL_LINES, ServiceController

logger = logging.getLogger(__name__)


@dataclass
class UnitStatusResult:
    target: str = ""
    status: ServiceStatus | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"target": self.target, "error": self.error}
        assert self.status is not None
        data = self.status.model_dump(mode="json")
        data["target"] = self.target
        data["running"] = self.status.running
        data["enabled"] = self.status.enabled
        return data


def get_unit_status(
    target: str,
    unit_name: str,
    mock_mode: bool = False,
    log_lines: int = LOG_TAIL_LINES,
    host: HostAccess | None = None,
) -> UnitStatusResult:
    """Query ``unit_name`` on ``target``.

    Partial query failures stay inside the ServiceStatus; when not even
    the unit state could be read (unreachable host) they are also
    summarized in ``error``.
    """
    result = UnitStatusResult(target=target)
    if host is None:
        host = open_host(target, mock=mock_mode)

    result.status = ServiceController(host).status(unit_name, log_lines=log_lines)
    if result.status.errors and not result.status.loaded:
        result.error = "; ".join(result.status.errors)
        logger.warning("%s on %s: %s", unit_name, target, result.error)
    return result
