"""
Error taxonomy for convergence steps.

Components raise these internally and convert them to a failed
StepResult at their public boundary. The orchestrator never sees
a raised ConvergeError; it only reads ``StepError.kind`` and decides
whether the failure halts the run.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Machine-readable failure categories."""

    FETCH = "fetch"
    PERMISSION = "permission"
    INDEX_REFRESH = "index_refresh"
    INSTALL = "install"
    TEMPLATE = "template"
    SERVICE_START = "service_start"
    HEALTH = "health"
    STATUS = "status"
    CONNECTION = "connection"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


# Kinds the orchestrator records without halting the run.
RECOVERABLE_KINDS = frozenset({ErrorKind.HEALTH, ErrorKind.STATUS})


class ConvergeError(Exception):
    """Base class for every failure a convergence step can report."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail


class FetchError(ConvergeError):
    """Signing key (or other remote material) could not be downloaded."""

    kind = ErrorKind.FETCH


class ManagedPathError(ConvergeError):
    """A managed path could not be written, removed or chmod-ed."""

    kind = ErrorKind.PERMISSION


class IndexRefreshError(ConvergeError):
    kind = ErrorKind.INDEX_REFRESH


class InstallError(ConvergeError):
    """Package transaction failed. ``package`` names the culprit when known."""

    kind = ErrorKind.INSTALL

    def __init__(self, package: str, reason: str, **detail: Any):
        super().__init__(f"Failed to install {package}: {reason}", package=package, **detail)
        self.package = package
        self.reason = reason


class TemplateError(ConvergeError):
    kind = ErrorKind.TEMPLATE

    def __init__(self, missing_key: str, target: str = ""):
        where = f" in template for {target}" if target else ""
        super().__init__(
            f"Undefined variable '{missing_key}'{where}",
            missing_key=missing_key,
        )
        self.missing_key = missing_key


class ServiceStartError(ConvergeError):
    kind = ErrorKind.SERVICE_START


class HealthCheckError(ConvergeError):
    kind = ErrorKind.HEALTH


class StatusQueryError(ConvergeError):
    kind = ErrorKind.STATUS


class HostConnectionError(ConvergeError):
    """The target host could not be reached (ssh exit 255 and the like)."""

    kind = ErrorKind.CONNECTION


class Cancelled(ConvergeError):
    """The run's deadline passed or it was cancelled explicitly."""

    kind = ErrorKind.CANCELLED
