"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.mock import MockHost, mock_key_fetcher
from hostconverge.core.config.loader import ENV_VARS, RoleSettings
from hostconverge.core.config.roles import build_role_spec
from hostconverge.core.engine.orchestrator import ConvergenceOrchestrator
from hostconverge.core.models.role import RoleSpec


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's shell from leaking settings into tests."""
    for var in (*ENV_VARS, "HCV_LOG_LEVEL", "HCV_LOG_FILE", "HCV_LOG_FILE_LEVEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the test fixtures directory."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def host() -> MockHost:
    return MockHost(name="node-1")


@pytest.fixture
def server_role() -> RoleSpec:
    return build_role_spec(RoleSettings(role="server"))


@pytest.fixture
def client_role() -> RoleSpec:
    return build_role_spec(RoleSettings(role="client", elk_host="10.0.1.81"))


@pytest.fixture
def converge():
    """Run one convergence of ``role`` on ``host`` with the offline key fetcher."""

    def _converge(host, role, **kwargs):
        orch = ConvergenceOrchestrator(host, key_fetcher=mock_key_fetcher, **kwargs)
        return orch.converge(role)

    return _converge
