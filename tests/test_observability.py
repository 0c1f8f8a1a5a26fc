"""
Tests for logging setup and per-target record tagging.
"""

import logging

from hostconverge.adapters.mock import MockHost, mock_key_fetcher
from hostconverge.core.config.loader import RoleSettings
from hostconverge.core.config.roles import build_role_spec
from hostconverge.core.engine.orchestrator import converge_many
from hostconverge.core.observability.logging_config import (
    TargetFilter,
    _parse_level,
    current_target,
    setup_logging,
    target_context,
)


def _record(msg="x") -> logging.LogRecord:
    return logging.LogRecord("hostconverge.test", logging.INFO, __file__, 1, msg, None, None)


def _flush():
    for handler in logging.getLogger().handlers:
        handler.flush()


class TestSetupLogging:
    def teardown_method(self):
        setup_logging("WARNING")

    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_file_handler_lowers_root(self, tmp_path):
        log_file = tmp_path / "hcv.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2

        logging.getLogger("hostconverge.test").debug("written to file only")
        _flush()
        assert "written to file only" in log_file.read_text()

    def test_parse_level(self):
        assert _parse_level("debug") == logging.DEBUG
        assert _parse_level("bogus") == logging.WARNING
        assert _parse_level(None) == logging.WARNING


class TestTargetContext:
    def teardown_method(self):
        setup_logging("WARNING")

    def test_filter_outside_run(self):
        record = _record()
        TargetFilter().filter(record)
        assert record.target == "-"
        assert record.target_prefix == ""

    def test_filter_inside_run(self):
        record = _record()
        with target_context("web-1"):
            assert current_target() == "web-1"
            TargetFilter().filter(record)
        assert record.target == "web-1"
        assert record.target_prefix == "[web-1] "
        assert current_target() is None

    def test_nested_context_restores(self):
        with target_context("elk"):
            with target_context("web-1"):
                assert current_target() == "web-1"
            assert current_target() == "elk"

    def test_file_lines_name_their_host(self, tmp_path):
        log_file = tmp_path / "hcv.log"
        setup_logging("WARNING", log_file=str(log_file), log_file_level="INFO")
        role = build_role_spec(RoleSettings(role="client", elk_host="10.0.1.81"))
        converge_many(
            [(MockHost(name="web-1"), role), (MockHost(name="web-2"), role)],
            key_fetcher=mock_key_fetcher,
        )
        _flush()

        text = log_file.read_text()
        assert "INFO  web-1 hostconverge.core.engine.orchestrator" in text
        assert "INFO  web-2 hostconverge.core.engine.orchestrator" in text
        assert " - hostconverge.core.engine.orchestrator" not in text
