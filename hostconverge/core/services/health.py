"""
Health probe — is a started unit actually serving?

``systemctl start`` returning 0 only means the process was launched.
Elasticsearch and Kibana take tens of seconds before their HTTP port
answers, so each check retries on a fixed interval within the run's
cancellation budget.

Probes run on the target host (curl, ss) so that loopback URLs mean
the target's loopback, not ours. A failed probe is recoverable: the
orchestrator records it and carries on.
"""

from __future__ import annotations

import logging
import re

from hostconverge.core.errors import HealthCheckError
from hostconverge.core.models.result import StepResult
from hostconverge.core.models.role import HealthCheck
from hostconverge.core.services.base import Component

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10.0


class HealthProbe(Component):
    """Poll HTTP endpoints and listening ports on the target."""

    def check(self, unit_name: str, check: HealthCheck) -> StepResult:
        step = f"health:{unit_name}:{check.label}"
        return self._step(step, lambda: self._check(step, check))

    def _check(self, step: str, check: HealthCheck) -> StepResult:
        last = ""
        for attempt in range(1, check.attempts + 1):
            ok, last = self._probe(check)
            if ok:
                logger.debug("%s healthy after %d attempt(s)", check.label, attempt)
                return StepResult.satisfied(
                    step,
                    f"{check.label} healthy",
                    metadata={"attempts": attempt},
                )
            logger.debug("%s attempt %d/%d: %s", check.label, attempt, check.attempts, last)
            if attempt < check.attempts and self.cancel.wait(check.interval):
                self.cancel.raise_if_cancelled(f"health check {check.label}")

        raise HealthCheckError(
            f"{check.label} not healthy after {check.attempts} attempts: {last}",
            attempts=check.attempts,
            last=last,
        )

    def _probe(self, check: HealthCheck) -> tuple[bool, str]:
        if check.kind == "http":
            r = self._run(
                ["curl", "-s", "-o", "/dev/null", "-w", "%{http_code}",
                 "--max-time", str(int(PROBE_TIMEOUT)), check.url],
                timeout=PROBE_TIMEOUT + 5,
            )
            code = r.stdout.strip()
            if code == str(check.expect_status):
                return True, code
            return False, f"HTTP {code or '000'} (curl exit {r.returncode})"

        r = self._run(["ss", "-ltnH"], timeout=PROBE_TIMEOUT)
        if not r.ok:
            return False, f"ss exit {r.returncode}"
        if listening(r.stdout, check.port):
            return True, "listening"
        return False, f"nothing listening on port {check.port}"


def listening(ss_output: str, port: int | None) -> bool:
    """Whether ``ss -ltn`` output shows a socket bound to ``port``.

    >>> listening("LISTEN 0 4096 [::]:9200 [::]:*", 9200)
    True
    >>> listening("LISTEN 0 4096 0.0.0.0:19200 0.0.0.0:*", 9200)
    False
    """
    if port is None:
        return False
    pattern = re.compile(rf":{port}\s")
    return any(pattern.search(line + " ") for line in ss_output.splitlines())
