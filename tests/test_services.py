"""
Tests for the service controller and health probe.
"""

from hostconverge.adapters.mock import MockHost
from hostconverge.core.engine.cancel import CancelToken
from hostconverge.core.errors import ErrorKind
from hostconverge.core.models.result import Outcome
from hostconverge.core.models.role import DesiredState, HealthCheck, ServiceSpec
from hostconverge.core.services.health import HealthProbe, listening
from hostconverge.core.services.service_control import ServiceController, render_override

ES_ENV = {
    "ES_PATH_CONF": "/etc/elasticsearch",
    "ES_PATH_DATA": "/var/lib/elasticsearch",
    "ES_PATH_LOGS": "/var/log/elasticsearch",
}
OVERRIDE = "/etc/systemd/system/elasticsearch.service.d/override.conf"


# ── Override drop-ins ───────────────────────────────────────────────


class TestRenderOverride:
    def test_lines(self):
        text = render_override(ES_ENV)
        assert "[Service]\n" in text
        assert "Environment=ES_PATH_DATA=/var/lib/elasticsearch\n" in text

    def test_value_with_space_quoted(self):
        text = render_override({"ES_JAVA_OPTS": "-Xms1g -Xmx1g"})
        assert 'Environment="ES_JAVA_OPTS=-Xms1g -Xmx1g"' in text


# ── ensure_running ──────────────────────────────────────────────────


class TestEnsureRunning:
    def test_enables_and_starts(self, host: MockHost):
        host.add_unit("filebeat")
        result = ServiceController(host).ensure_running(ServiceSpec(unit_name="filebeat"))
        assert result.outcome == Outcome.APPLIED
        assert result.metadata["changes"] == ["enabled", "started"]
        assert host.units["filebeat"].enabled
        assert host.units["filebeat"].active

    def test_running_unit_is_satisfied(self, host: MockHost):
        host.add_unit("filebeat", enabled=True, active=True)
        result = ServiceController(host).ensure_running(ServiceSpec(unit_name="filebeat"))
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert host.mutations == []

    def test_override_written_and_reloaded(self, host: MockHost):
        host.add_unit("elasticsearch")
        spec = ServiceSpec(unit_name="elasticsearch", override_env=ES_ENV)
        ServiceController(host).ensure_running(spec)
        assert host.files[OVERRIDE].decode() == render_override(ES_ENV)
        assert host.modes[OVERRIDE] == 0o644
        assert host.daemon_reloads == 1

        host.reset_log()
        again = ServiceController(host).ensure_running(spec)
        assert again.outcome == Outcome.ALREADY_SATISFIED
        assert host.daemon_reloads == 1

    def test_override_change_restarts_running_unit(self, host: MockHost):
        host.add_unit("elasticsearch", enabled=True, active=True)
        spec = ServiceSpec(unit_name="elasticsearch", override_env=ES_ENV)
        result = ServiceController(host).ensure_running(spec)
        assert "restarted" in result.metadata["changes"]
        assert "systemctl restart elasticsearch" in host.mutations

    def test_restart_on_changed_config(self, host: MockHost):
        host.add_unit("kibana", enabled=True, active=True)
        spec = ServiceSpec(unit_name="kibana", restart_on=("/etc/kibana/kibana.yml",))
        controller = ServiceController(host)

        untouched = controller.ensure_running(spec, changed_paths={"/etc/elasticsearch/elasticsearch.yml"})
        assert untouched.outcome == Outcome.ALREADY_SATISFIED

        result = controller.ensure_running(spec, changed_paths={"/etc/kibana/kibana.yml"})
        assert result.outcome == Outcome.APPLIED
        assert host.mutations == ["systemctl restart kibana"]

    def test_stop_and_disable(self, host: MockHost):
        host.add_unit("logstash", enabled=True, active=True)
        spec = ServiceSpec(unit_name="logstash", enabled=False, desired_state=DesiredState.STOPPED)
        result = ServiceController(host).ensure_running(spec)
        assert result.metadata["changes"] == ["disabled", "stopped"]
        assert not host.units["logstash"].active

    def test_missing_unit_fails(self, host: MockHost):
        result = ServiceController(host).ensure_running(ServiceSpec(unit_name="filebeat"))
        assert result.failed
        assert result.error.kind == ErrorKind.SERVICE_START

    def test_missing_unit_in_dry_run(self, host: MockHost):
        result = ServiceController(host, dry_run=True).ensure_running(ServiceSpec(unit_name="filebeat"))
        assert result.outcome == Outcome.WOULD_APPLY
        assert host.mutations == []

    def test_start_failure_carries_diagnostics(self, host: MockHost):
        host.add_unit("elasticsearch", fail_start=True)
        spec = ServiceSpec(unit_name="elasticsearch", override_env=ES_ENV)
        result = ServiceController(host).ensure_running(spec)

        assert result.failed
        assert result.error.kind == ErrorKind.SERVICE_START
        detail = result.error.detail
        assert any("status=1/FAILURE" in line for line in detail["log_tail"])
        assert "ExecStart=" in detail["unit_definition"]
        assert "ES_PATH_CONF" in detail["unit_definition"]
        assert detail["exit_code"] == 1

    def test_pending_reload_runs_once(self, host: MockHost):
        host.add_unit("kibana")
        host.add_unit("logstash")
        controller = ServiceController(host)
        controller.needs_reload = True

        first = controller.ensure_running(ServiceSpec(unit_name="kibana"))
        controller.ensure_running(ServiceSpec(unit_name="logstash"))
        assert first.metadata["changes"][0] == "daemon reloaded"
        assert host.daemon_reloads == 1


# ── Stop before purge ───────────────────────────────────────────────


class TestStopForPurge:
    KEYSTORE = "/etc/elasticsearch/elasticsearch.keystore"

    def test_stops_running_unit(self, host: MockHost):
        host.add_unit("elasticsearch", enabled=True, active=True)
        host.seed_file(self.KEYSTORE, b"x")
        result = ServiceController(host).stop_for_purge("elasticsearch", [self.KEYSTORE])
        assert result.outcome == Outcome.APPLIED
        assert result.metadata["purge"] == [self.KEYSTORE]
        assert not host.units["elasticsearch"].active

    def test_nothing_present(self, host: MockHost):
        host.add_unit("elasticsearch", enabled=True, active=True)
        result = ServiceController(host).stop_for_purge("elasticsearch", [self.KEYSTORE])
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert host.units["elasticsearch"].active
        assert host.commands == []

    def test_dry_run(self, host: MockHost):
        host.add_unit("elasticsearch", enabled=True, active=True)
        host.seed_file(self.KEYSTORE, b"x")
        result = ServiceController(host, dry_run=True).stop_for_purge("elasticsearch", [self.KEYSTORE])
        assert result.outcome == Outcome.WOULD_APPLY
        assert host.mutations == []


# ── status ──────────────────────────────────────────────────────────


class TestStatus:
    def test_failed_unit_still_reports(self, host: MockHost):
        unit = host.add_unit("elasticsearch", fail_start=True)
        host.run(["systemctl", "start", "elasticsearch"])
        status = ServiceController(host).status("elasticsearch")
        assert status.active_state == "failed"
        assert status.loaded
        assert len(status.log_tail) >= 1
        assert status.log_tail[-1] == unit.journal[-1]
        assert status.errors == []

    def test_log_tail_bounded(self, host: MockHost):
        unit = host.add_unit("kibana")
        unit.journal = [f"line {i}" for i in range(500)]
        status = ServiceController(host).status("kibana", log_lines=200)
        assert len(status.log_tail) == 200
        assert status.log_tail[-1] == "line 499"

    def test_unknown_unit(self, host: MockHost):
        status = ServiceController(host).status("nope")
        assert status.load_state == "not-found"
        assert not status.running
        assert status.errors


# ── Health probe ────────────────────────────────────────────────────


class TestHealthProbe:
    def test_http_ok(self, host: MockHost):
        host.add_unit("elasticsearch", active=True)
        check = HealthCheck(kind="http", url="http://127.0.0.1:9200", attempts=1)
        result = HealthProbe(host).check("elasticsearch", check)
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert result.step_name == "health:elasticsearch:http://127.0.0.1:9200"

    def test_port_ok(self, host: MockHost):
        host.add_unit("kibana", active=True)
        result = HealthProbe(host).check("kibana", HealthCheck(kind="port", port=5601, attempts=1))
        assert result.ok

    def test_retries_then_fails(self, host: MockHost):
        host.add_unit("kibana", active=False)
        check = HealthCheck(kind="port", port=5601, attempts=3, interval=0.0)
        result = HealthProbe(host).check("kibana", check)
        assert result.failed
        assert result.error.kind == ErrorKind.HEALTH
        assert result.error.detail["attempts"] == 3
        assert sum(1 for c in host.commands if c[0] == "ss") == 3

    def test_cancel_stops_retries(self, host: MockHost):
        cancel = CancelToken()
        cancel.cancel("operator abort")
        check = HealthCheck(kind="http", url="http://127.0.0.1:9200", attempts=5, interval=0.0)
        result = HealthProbe(host, cancel=cancel).check("elasticsearch", check)
        assert result.failed
        assert result.error.kind == ErrorKind.CANCELLED
        assert host.commands == []

    def test_listening_helper(self):
        out = "LISTEN 0 4096 *:5601 *:*\nLISTEN 0 4096 127.0.0.1:9200 0.0.0.0:*"
        assert listening(out, 5601)
        assert listening(out, 9200)
        assert not listening(out, 920)
