"""Host adapters: the capability to run commands and write managed paths on a target."""

from hostconverge.adapters.base import CommandResult, HostAccess

__all__ = ["CommandResult", "HostAccess"]
