"""
StepResult and ConvergenceResult — the outcome contract.

Components return StepResults, never exceptions. The orchestrator
collects them into a ConvergenceResult that is handed back to the
caller and then forgotten.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from hostconverge.core.errors import ConvergeError, ErrorKind


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Outcome(StrEnum):
    APPLIED = "applied"
    ALREADY_SATISFIED = "already_satisfied"
    WOULD_APPLY = "would_apply"      # dry-run only
    FAILED = "failed"


class OverallStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FATAL = "fatal"


class Stage(StrEnum):
    """Orchestrator state machine positions."""

    INIT = "init"
    REPO_ENSURED = "repo_ensured"
    PACKAGES_INSTALLED = "packages_installed"
    CONFIGS_WRITTEN = "configs_written"
    SERVICES_ENSURED = "services_ensured"
    DONE = "done"
    FAILED = "failed"


class StepError(BaseModel):
    """Typed failure attached to a StepResult."""

    kind: ErrorKind
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: ConvergeError) -> StepError:
        return cls(kind=exc.kind, message=exc.message, detail=dict(exc.detail))


class StepResult(BaseModel):
    """Result of one convergence step."""

    step_name: str
    outcome: Outcome
    message: str = ""
    error: StepError | None = None
    fatal: bool = False

    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.outcome != Outcome.FAILED

    @property
    def failed(self) -> bool:
        return self.outcome == Outcome.FAILED

    @property
    def changed(self) -> bool:
        """Whether this step changed (or in dry-run would change) the host."""
        return self.outcome in (Outcome.APPLIED, Outcome.WOULD_APPLY)

    @property
    def cancelled(self) -> bool:
        return self.error is not None and self.error.kind == ErrorKind.CANCELLED

    @classmethod
    def applied(cls, step_name: str, message: str = "", **kwargs: Any) -> StepResult:
        return cls(step_name=step_name, outcome=Outcome.APPLIED, message=message, **kwargs)

    @classmethod
    def satisfied(cls, step_name: str, message: str = "", **kwargs: Any) -> StepResult:
        return cls(
            step_name=step_name,
            outcome=Outcome.ALREADY_SATISFIED,
            message=message,
            **kwargs,
        )

    @classmethod
    def would_apply(cls, step_name: str, message: str = "", **kwargs: Any) -> StepResult:
        return cls(step_name=step_name, outcome=Outcome.WOULD_APPLY, message=message, **kwargs)

    @classmethod
    def failure(cls, step_name: str, exc: ConvergeError, **kwargs: Any) -> StepResult:
        return cls(
            step_name=step_name,
            outcome=Outcome.FAILED,
            message=exc.message,
            error=StepError.from_exception(exc),
            **kwargs,
        )


class ConvergenceResult(BaseModel):
    """Everything a caller needs to act on one run, in step order."""

    role_name: str
    target: str = ""
    dry_run: bool = False
    per_step: list[StepResult] = Field(default_factory=list)
    stage: Stage = Stage.INIT
    failed_at: str | None = None

    @property
    def overall_status(self) -> OverallStatus:
        if any(s.failed and s.fatal for s in self.per_step):
            return OverallStatus.FATAL
        if any(s.failed for s in self.per_step):
            return OverallStatus.PARTIAL_FAILURE
        return OverallStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        return {
            OverallStatus.SUCCESS: 0,
            OverallStatus.PARTIAL_FAILURE: 1,
            OverallStatus.FATAL: 2,
        }[self.overall_status]

    def step(self, step_name: str) -> StepResult | None:
        for s in self.per_step:
            if s.step_name == step_name:
                return s
        return None

    def count(self, outcome: Outcome) -> int:
        return sum(1 for s in self.per_step if s.outcome == outcome)

    def to_dict(self) -> dict:
        return {
            "role_name": self.role_name,
            "target": self.target,
            "dry_run": self.dry_run,
            "overall_status": self.overall_status.value,
            "stage": self.stage.value,
            "failed_at": self.failed_at,
            "steps": [s.model_dump(mode="json") for s in self.per_step],
        }
