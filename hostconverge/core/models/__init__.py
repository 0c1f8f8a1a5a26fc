"""
Domain models — pydantic types for desired state and results.

    from hostconverge.core.models import RoleSpec, StepResult, ConvergenceResult
"""

from hostconverge.core.models.result import (
    ConvergenceResult,
    Outcome,
    OverallStatus,
    Stage,
    StepError,
    StepResult,
)
from hostconverge.core.models.role import (
    ConfigFileSpec,
    DesiredState,
    DirectorySpec,
    HealthCheck,
    RepoDefinition,
    RoleSpec,
    ServiceSpec,
)
from hostconverge.core.models.service import ServiceStatus

__all__ = [
    # result.py
    "ConvergenceResult",
    "Outcome",
    "OverallStatus",
    "Stage",
    "StepError",
    "StepResult",
    # role.py
    "ConfigFileSpec",
    "DesiredState",
    "DirectorySpec",
    "HealthCheck",
    "RepoDefinition",
    "RoleSpec",
    "ServiceSpec",
    # service.py
    "ServiceStatus",
]
