"""
Convergence orchestrator — the per-host pipeline.

Takes a RoleSpec and drives one host to it through the leaf
components, in a fixed order, collecting a StepResult per step.

Flow:
    repository → packages → stop/purge → directories/configs → services → health

Stage machine:
    init → repo_ensured → packages_installed → configs_written
         → services_ensured → done
    (any fatal step) → failed, with ``failed_at`` naming the step

Components never raise; the orchestrator only reads the error kind of
failed steps. Kinds in RECOVERABLE_KINDS are recorded and the run goes
on; anything else ends the run and the partial result is returned.
"""

from __future__ import annotations

import concurrent.futures
import logging
from collections.abc import Callable, Sequence

from hostconverge.adapters.base import HostAccess
from hostconverge.core.engine.cancel import CancelToken
from hostconverge.core.errors import RECOVERABLE_KINDS, ConvergeError, ErrorKind
from hostconverge.core.models.result import (
    ConvergenceResult,
    Outcome,
    Stage,
    StepError,
    StepResult,
)
from hostconverge.core.models.role import DesiredState, RoleSpec
from hostconverge.core.observability.logging_config import target_context
from hostconverge.core.services.config_writer import ConfigWriter
from hostconverge.core.services.health import HealthProbe
from hostconverge.core.services.packages import PackageInstaller
from hostconverge.core.services.repository import KeyFetcher, PackageRepositoryManager
from hostconverge.core.services.service_control import ServiceController

logger = logging.getLogger(__name__)

MARKERS = {
    Outcome.APPLIED: "✓",
    Outcome.ALREADY_SATISFIED: "⊘",
    Outcome.WOULD_APPLY: "…",
    Outcome.FAILED: "✗",
}


class _Halt(Exception):
    """Internal: a fatal step ended the run."""


def plan_steps(role: RoleSpec, dry_run: bool = False) -> list[str]:
    """Step names a run of ``role`` walks through, in order.

    Health steps are listed only when they would run (not in dry-run).
    """
    steps: list[str] = []
    if role.repo_definition is not None:
        steps.append(PackageRepositoryManager.step_name)
    steps.append(PackageInstaller.step_name)
    if role.purge_paths:
        steps += [f"stop:{u}" for u in role.stop_before_purge]
    steps += [f"purge:{p}" for p in role.purge_paths]
    steps += [f"directory:{d.path}" for d in role.directories]
    steps += [f"config:{c.target_path}" for c in role.config_files]
    steps += [f"service:{s.unit_name}" for s in role.services]
    if not dry_run:
        for svc in role.services:
            if svc.desired_state == DesiredState.RUNNING:
                steps += [f"health:{svc.unit_name}:{c.label}" for c in svc.health_checks]
    return steps


class ConvergenceOrchestrator:
    """Converge one host to one RoleSpec.

    Args:
        host: Capability over the target.
        key_fetcher: Override for signing-key download (tests, --mock).
        dry_run: Inspect only.
        cancel: Shared token; a fresh unbounded one by default.
    """

    def __init__(
        self,
        host: HostAccess,
        *,
        key_fetcher: KeyFetcher | None = None,
        dry_run: bool = False,
        cancel: CancelToken | None = None,
    ):
        self.host = host
        self.dry_run = dry_run
        self.cancel = cancel or CancelToken()

        common = {"cancel": self.cancel, "dry_run": dry_run}
        self.repository = PackageRepositoryManager(host, key_fetcher=key_fetcher, **common)
        self.packages = PackageInstaller(host, **common)
        self.configs = ConfigWriter(host, **common)
        self.services = ServiceController(host, **common)
        self.health = HealthProbe(host, **common)

    def converge(self, role: RoleSpec) -> ConvergenceResult:
        with target_context(self.host.name):
            return self._run_role(role)

    def _run_role(self, role: RoleSpec) -> ConvergenceResult:
        result = ConvergenceResult(
            role_name=role.role_name,
            target=self.host.name,
            dry_run=self.dry_run,
        )
        mode = " (dry-run)" if self.dry_run else ""
        logger.info("Converging %s as %s%s", self.host.name, role.role_name, mode)

        try:
            self._converge(role, result)
        except _Halt:
            result.stage = Stage.FAILED
        else:
            result.stage = Stage.DONE

        logger.info(
            "%s: %s (%d applied, %d satisfied, %d would apply, %d failed)",
            self.host.name,
            result.overall_status.value,
            result.count(Outcome.APPLIED),
            result.count(Outcome.ALREADY_SATISFIED),
            result.count(Outcome.WOULD_APPLY),
            result.count(Outcome.FAILED),
        )
        return result

    def _converge(self, role: RoleSpec, result: ConvergenceResult) -> None:
        refresh = False
        if role.repo_definition is not None:
            repo = self._record(
                result,
                PackageRepositoryManager.step_name,
                lambda: self.repository.ensure(role.repo_definition),
            )
            refresh = bool(repo.metadata.get("index_invalidated"))
        result.stage = Stage.REPO_ENSURED

        packages = self._record(
            result,
            PackageInstaller.step_name,
            lambda: self.packages.ensure(role.packages, refresh_index=refresh),
        )
        if packages.outcome == Outcome.APPLIED and packages.metadata.get("installed"):
            self.services.needs_reload = True
        result.stage = Stage.PACKAGES_INSTALLED

        changed_paths: set[str] = set()
        if role.purge_paths:
            for unit in role.stop_before_purge:
                self._record(
                    result,
                    f"stop:{unit}",
                    lambda u=unit: self.services.stop_for_purge(u, role.purge_paths),
                )
        for path in role.purge_paths:
            step = self._record(result, f"purge:{path}", lambda p=path: self.configs.purge(p))
            if step.changed:
                changed_paths.add(path)
        for directory in role.directories:
            self._record(
                result,
                f"directory:{directory.path}",
                lambda d=directory: self.configs.ensure_directory(d),
            )
        for spec in role.config_files:
            step = self._record(
                result,
                f"config:{spec.target_path}",
                lambda s=spec: self.configs.write(s),
            )
            if step.changed and step.metadata.get("content_changed"):
                changed_paths.add(spec.target_path)
        result.stage = Stage.CONFIGS_WRITTEN

        for svc in role.services:
            self._record(
                result,
                f"service:{svc.unit_name}",
                lambda s=svc: self.services.ensure_running(s, changed_paths),
            )
        result.stage = Stage.SERVICES_ENSURED

        if self.dry_run:
            return
        for svc in role.services:
            if svc.desired_state != DesiredState.RUNNING:
                continue
            for check in svc.health_checks:
                self._record(
                    result,
                    f"health:{svc.unit_name}:{check.label}",
                    lambda s=svc, c=check: self.health.check(s.unit_name, c),
                )

    def _record(
        self,
        result: ConvergenceResult,
        step_name: str,
        body: Callable[[], StepResult],
    ) -> StepResult:
        """Run one step, append its result, halt the run if it is fatal."""
        try:
            step = body()
        except ConvergeError as e:
            step = StepResult.failure(step_name, e)
        except Exception as e:
            logger.exception("Unexpected error in step %s", step_name)
            step = StepResult(
                step_name=step_name,
                outcome=Outcome.FAILED,
                message=f"{type(e).__name__}: {e}",
                error=StepError(
                    kind=ErrorKind.INTERNAL,
                    message=str(e) or type(e).__name__,
                    detail={"exception": type(e).__name__},
                ),
            )

        if step.failed and step.error is not None:
            step.fatal = step.error.kind not in RECOVERABLE_KINDS
        result.per_step.append(step)

        marker = MARKERS[step.outcome]
        if step.failed:
            logger.warning("%s %s → %s: %s", marker, step_name, step.outcome.value, step.message)
        else:
            logger.info("%s %s → %s", marker, step_name, step.outcome.value)

        if step.failed and step.fatal:
            result.failed_at = step_name
            raise _Halt()
        return step


# ── Several hosts ──────────────────────────────────────────────


def converge_many(
    jobs: Sequence[tuple[HostAccess, RoleSpec]],
    *,
    key_fetcher: KeyFetcher | None = None,
    dry_run: bool = False,
    cancel: CancelToken | None = None,
    max_workers: int = 8,
) -> list[ConvergenceResult]:
    """Converge several hosts in parallel.

    Each job gets its own orchestrator; only the cancel token is
    shared. Results come back in job order.
    """
    cancel = cancel or CancelToken()

    def _one(job: tuple[HostAccess, RoleSpec]) -> ConvergenceResult:
        host, role = job
        orch = ConvergenceOrchestrator(host, key_fetcher=key_fetcher, dry_run=dry_run, cancel=cancel)
        return orch.converge(role)

    if len(jobs) <= 1:
        return [_one(job) for job in jobs]

    workers = max(1, min(max_workers, len(jobs)))
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(_one, jobs))
