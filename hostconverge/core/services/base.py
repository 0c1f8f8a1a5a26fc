"""
Component base — shared plumbing for every convergence step.

A component owns one concern (repository, packages, ...). Its public
methods return StepResults and never raise: ``_step()`` times the body
and converts any ConvergeError into a failed result. Inside the body,
helpers raise freely.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime

from hostconverge.adapters.base import CommandResult, HostAccess
from hostconverge.core.engine.cancel import CancelToken
from hostconverge.core.errors import Cancelled, ConvergeError
from hostconverge.core.models.result import StepResult

logger = logging.getLogger(__name__)

# Default per-command timeout in seconds; install overrides it.
DEFAULT_TIMEOUT = 120.0


class Component:
    """Base for leaf components.

    Args:
        host: Capability over the target host.
        cancel: Shared cancellation token for the run.
        dry_run: Inspect only; report ``would_apply`` instead of acting.
    """

    def __init__(
        self,
        host: HostAccess,
        cancel: CancelToken | None = None,
        dry_run: bool = False,
    ):
        self.host = host
        self.cancel = cancel or CancelToken()
        self.dry_run = dry_run

    def _run(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = DEFAULT_TIMEOUT,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command under the run's cancellation budget.

        Raises Cancelled if the budget is spent before or during the call.
        """
        what = " ".join(argv[:2])
        self.cancel.raise_if_cancelled(what)
        result = self.host.run(argv, timeout=self.cancel.clamp(timeout), input=input, env=env)
        if result.timed_out and self.cancel.cancelled:
            raise Cancelled(f"Run {self.cancel.reason} during {what}", **result.describe())
        return result

    def _step(self, step_name: str, body: Callable[[], StepResult]) -> StepResult:
        """Execute ``body`` and stamp timing; ConvergeError becomes a failed result."""
        started = datetime.now(UTC).isoformat()
        start = time.monotonic()
        try:
            self.cancel.raise_if_cancelled(step_name)
            result = body()
        except ConvergeError as e:
            logger.debug("Step %s failed: %s", step_name, e.message)
            result = StepResult.failure(step_name, e)
        result.started_at = started
        result.ended_at = datetime.now(UTC).isoformat()
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def _changed(self, step_name: str, message: str, **kwargs) -> StepResult:
        """Result for a step that acted, or would act in dry-run."""
        if self.dry_run:
            return StepResult.would_apply(step_name, message, **kwargs)
        return StepResult.applied(step_name, message, **kwargs)
