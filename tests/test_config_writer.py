"""
Tests for template rendering and the config writer — backups, atomic
writes, directories and purge paths.
"""

import os
from pathlib import Path

import pytest

from hostconverge.adapters.local import LocalHost
from hostconverge.adapters.mock import MockHost
from hostconverge.core.errors import ErrorKind, TemplateError
from hostconverge.core.models.result import Outcome
from hostconverge.core.models.role import ConfigFileSpec, DirectorySpec
from hostconverge.core.services.config_writer import (
    MANAGED_MARKER,
    ConfigWriter,
    render_template,
)

TARGET = "/etc/filebeat/filebeat.yml"
DISTRO_DEFAULT = "# Default filebeat.yml shipped by the package\nfilebeat.inputs: []\n"


def _spec(elk_host: str = "10.0.1.81", **kwargs) -> ConfigFileSpec:
    body = f"{MANAGED_MARKER}\noutput.logstash:\n  hosts: [\"{{elk_host}}:{{port}}\"]\n"
    return ConfigFileSpec(
        target_path=TARGET,
        template_body=body,
        variables={"elk_host": elk_host, "port": 5044},
        backup_on_first_write=True,
        **kwargs,
    )


# ── Rendering ───────────────────────────────────────────────────────


class TestRenderTemplate:
    def test_substitutes(self):
        assert render_template("{a}-{b}", {"a": "x", "b": 2}) == "x-2"

    def test_runtime_references_pass_through(self):
        body = "path: ${path.config}/modules.d/*.yml\nempty: {}\n"
        assert render_template(body, {}) == body

    def test_bool_lowercase(self):
        assert render_template("enabled: {on}", {"on": False}) == "enabled: false"

    def test_missing_key(self):
        with pytest.raises(TemplateError) as exc:
            render_template("hosts: [{elk_host}]", {}, target=TARGET)
        assert exc.value.missing_key == "elk_host"
        assert exc.value.kind == ErrorKind.TEMPLATE

    def test_missing_key_is_never_empty_text(self, host: MockHost):
        spec = ConfigFileSpec(target_path=TARGET, template_body="hosts: [{elk_host}]")
        result = ConfigWriter(host).write(spec)
        assert result.failed
        assert result.error.detail["missing_key"] == "elk_host"
        assert TARGET not in host.files


# ── Writes and backups ──────────────────────────────────────────────


class TestConfigWriter:
    def test_creates_file(self, host: MockHost):
        result = ConfigWriter(host).write(_spec())
        assert result.outcome == Outcome.APPLIED
        assert b'hosts: ["10.0.1.81:5044"]' in host.files[TARGET]
        assert host.modes[TARGET] == 0o644
        assert result.metadata["backup"] is None

    def test_second_write_is_satisfied(self, host: MockHost):
        writer = ConfigWriter(host)
        writer.write(_spec())
        host.reset_log()
        result = writer.write(_spec())
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert host.mutations == []

    def test_mode_drift_fixed_without_rewrite(self, host: MockHost):
        writer = ConfigWriter(host)
        writer.write(_spec())
        host.modes[TARGET] = 0o600
        host.reset_log()
        result = writer.write(_spec())
        assert result.outcome == Outcome.APPLIED
        assert result.metadata["content_changed"] is False
        assert host.mutations == [f"chmod 644 {TARGET}"]

    def test_backup_on_first_write(self, host: MockHost):
        host.seed_file(TARGET, DISTRO_DEFAULT)
        result = ConfigWriter(host).write(_spec())
        assert result.metadata["backup"] == TARGET + ".bak"
        assert host.files[TARGET + ".bak"] == DISTRO_DEFAULT.encode()

    def test_backup_never_overwritten(self, host: MockHost):
        """After N runs with changing content the backup still holds the original."""
        host.seed_file(TARGET, DISTRO_DEFAULT)
        writer = ConfigWriter(host)
        for elk_host in ("10.0.1.81", "10.0.1.82", "10.0.1.83"):
            writer.write(_spec(elk_host))
        assert host.files[TARGET + ".bak"] == DISTRO_DEFAULT.encode()
        assert b"10.0.1.83" in host.files[TARGET]

    def test_managed_file_not_backed_up(self, host: MockHost):
        host.seed_file(TARGET, f"{MANAGED_MARKER}\nold: true\n")
        result = ConfigWriter(host).write(_spec())
        assert result.metadata["backup"] is None
        assert TARGET + ".bak" not in host.files

    def test_no_backup_without_flag(self, host: MockHost):
        host.seed_file(TARGET, DISTRO_DEFAULT)
        spec = _spec().model_copy(update={"backup_on_first_write": False})
        ConfigWriter(host).write(spec)
        assert TARGET + ".bak" not in host.files

    def test_dry_run(self, host: MockHost):
        host.seed_file(TARGET, DISTRO_DEFAULT)
        result = ConfigWriter(host, dry_run=True).write(_spec())
        assert result.outcome == Outcome.WOULD_APPLY
        assert result.metadata["backup"] == TARGET + ".bak"
        assert host.mutations == []
        assert host.files[TARGET] == DISTRO_DEFAULT.encode()

    def test_permission_denied(self, host: MockHost):
        host.read_only_paths.add("/etc/filebeat")
        result = ConfigWriter(host).write(_spec())
        assert result.failed
        assert result.error.kind == ErrorKind.PERMISSION


# ── Atomicity on a real filesystem ──────────────────────────────────


class TestAtomicWrite:
    def test_writes_under_root(self, tmp_path: Path):
        local = LocalHost(root=tmp_path)
        result = ConfigWriter(local).write(_spec())
        assert result.outcome == Outcome.APPLIED
        written = tmp_path / "etc" / "filebeat" / "filebeat.yml"
        assert written.read_text().startswith(MANAGED_MARKER)
        assert (written.stat().st_mode & 0o777) == 0o644

    def test_interrupted_write_keeps_old_content(self, tmp_path: Path, monkeypatch):
        target = tmp_path / "etc" / "filebeat" / "filebeat.yml"
        target.parent.mkdir(parents=True)
        target.write_text(DISTRO_DEFAULT)

        def _crash(src, dst):
            raise OSError("simulated crash before rename")

        monkeypatch.setattr("hostconverge.core.persistence.atomic.os.replace", _crash)
        spec = _spec().model_copy(update={"backup_on_first_write": False})
        result = ConfigWriter(LocalHost(root=tmp_path)).write(spec)

        assert result.failed
        assert result.error.kind == ErrorKind.PERMISSION
        assert target.read_text() == DISTRO_DEFAULT
        assert os.listdir(target.parent) == ["filebeat.yml"]


# ── Directories and purge ───────────────────────────────────────────


class TestDirectories:
    def test_create_with_owner(self, host: MockHost):
        spec = DirectorySpec(path="/var/lib/elasticsearch", mode=0o750, owner="elasticsearch", group="elasticsearch")
        result = ConfigWriter(host).ensure_directory(spec)
        assert result.outcome == Outcome.APPLIED
        assert host.dirs["/var/lib/elasticsearch"] == 0o750
        assert host.owners["/var/lib/elasticsearch"] == ("elasticsearch", "elasticsearch")

        host.reset_log()
        again = ConfigWriter(host).ensure_directory(spec)
        assert again.outcome == Outcome.ALREADY_SATISFIED
        assert host.mutations == []

    def test_mode_fixed(self, host: MockHost):
        host.make_dir("/var/log/elasticsearch", 0o777)
        host.reset_log()
        result = ConfigWriter(host).ensure_directory(DirectorySpec(path="/var/log/elasticsearch", mode=0o750))
        assert result.outcome == Outcome.APPLIED
        assert host.dirs["/var/log/elasticsearch"] == 0o750


class TestPurge:
    def test_removes_file_and_tree(self, host: MockHost):
        host.seed_file("/etc/elasticsearch/elasticsearch.keystore", b"\x00ks")
        host.seed_file("/etc/elasticsearch/certs/http.p12", b"\x00p12")
        writer = ConfigWriter(host)
        assert writer.purge("/etc/elasticsearch/elasticsearch.keystore").outcome == Outcome.APPLIED
        assert writer.purge("/etc/elasticsearch/certs").outcome == Outcome.APPLIED
        assert "/etc/elasticsearch/certs/http.p12" not in host.files
        assert not host.exists("/etc/elasticsearch/certs")

    def test_absent_is_satisfied(self, host: MockHost):
        result = ConfigWriter(host).purge("/etc/elasticsearch/certs")
        assert result.outcome == Outcome.ALREADY_SATISFIED
