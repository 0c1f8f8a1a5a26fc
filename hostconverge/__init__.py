"""hostconverge — idempotent single-host provisioning for a log-aggregation stack."""

__version__ = "0.1.0"
