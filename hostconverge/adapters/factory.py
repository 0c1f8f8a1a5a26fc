"""
Host factory — pick a HostAccess implementation for a target string.

    localhost / 127.0.0.1 / ::1   → LocalHost
    anything else                 → SshHost
    mock=True                     → MockHost (no real host touched)
"""

from __future__ import annotations

import logging
from pathlib import Path

from hostconverge.adapters.base import HostAccess
from hostconverge.adapters.local import LocalHost
from hostconverge.adapters.mock import MockHost
from hostconverge.adapters.ssh import SshHost

logger = logging.getLogger(__name__)

LOCAL_TARGETS = frozenset({"localhost", "127.0.0.1", "::1", "local"})


def is_local(target: str) -> bool:
    return target in LOCAL_TARGETS


def open_host(
    target: str,
    *,
    mock: bool = False,
    root: Path | None = None,
    ssh_options: tuple[str, ...] = (),
) -> HostAccess:
    """Return the capability object for ``target``.

    Args:
        target: Host name or ``user@host``.
        mock: Simulate the host in memory.
        root: For local targets, a directory standing in for ``/``.
        ssh_options: Extra arguments for the ssh client.
    """
    if mock:
        logger.debug("Target %s: mock host", target)
        return MockHost(name=target)
    if is_local(target):
        logger.debug("Target %s: local host (root=%s)", target, root)
        return LocalHost(root=root)
    logger.debug("Target %s: ssh", target)
    return SshHost(target, options=ssh_options)
