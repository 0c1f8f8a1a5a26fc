"""
Tests for the package installer (dpkg-query / apt-get).
"""

from hostconverge.adapters.mock import DEFAULT_VERSION, MockHost
from hostconverge.core.errors import ErrorKind
from hostconverge.core.models.result import Outcome
from hostconverge.core.services.packages import PackageInstaller, parse_package


class TestParsePackage:
    def test_plain(self):
        assert parse_package("logstash") == ("logstash", None)

    def test_pinned(self):
        assert parse_package("kibana=8.13.4") == ("kibana", "8.13.4")


class TestPackageInstaller:
    def test_installs_missing_in_one_transaction(self, host: MockHost):
        result = PackageInstaller(host).ensure(["elasticsearch", "logstash", "kibana"])
        assert result.outcome == Outcome.APPLIED
        assert result.metadata["installed"] == ["elasticsearch", "logstash", "kibana"]
        installs = [c for c in host.commands if c[:2] == ["apt-get", "install"]]
        assert len(installs) == 1
        assert host.index_refreshes == 1

    def test_only_missing_installed(self, host: MockHost):
        host.installed["elasticsearch"] = DEFAULT_VERSION
        result = PackageInstaller(host).ensure(["elasticsearch", "kibana"])
        assert result.metadata["installed"] == ["kibana"]

    def test_all_present_is_satisfied(self, host: MockHost):
        host.installed.update({"filebeat": DEFAULT_VERSION})
        result = PackageInstaller(host).ensure(["filebeat"])
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert host.mutations == []

    def test_refresh_requested_even_when_present(self, host: MockHost):
        host.installed.update({"filebeat": DEFAULT_VERSION})
        result = PackageInstaller(host).ensure(["filebeat"], refresh_index=True)
        assert result.outcome == Outcome.APPLIED
        assert result.metadata["index_refreshed"] is True
        assert host.index_refreshes == 1

    def test_pinned_version_mismatch_reinstalls(self, host: MockHost):
        host.installed["filebeat"] = "8.12.0"
        installer = PackageInstaller(host)
        assert installer.missing(["filebeat=8.13.4"]) == ["filebeat=8.13.4"]
        installer.ensure(["filebeat=8.13.4"])
        assert host.installed["filebeat"] == "8.13.4"

    def test_unknown_package_names_culprit(self, host: MockHost):
        host.unavailable.add("kibana")
        result = PackageInstaller(host).ensure(["elasticsearch", "kibana"])
        assert result.failed
        assert result.error.kind == ErrorKind.INSTALL
        assert result.error.detail["package"] == "kibana"
        assert "Unable to locate package kibana" in result.error.detail["stderr"]

    def test_index_refresh_failure(self, host: MockHost):
        host.fail_index_refresh = True
        result = PackageInstaller(host).ensure(["filebeat"])
        assert result.failed
        assert result.error.kind == ErrorKind.INDEX_REFRESH
        assert "filebeat" not in host.installed

    def test_noninteractive_env(self, host: MockHost, monkeypatch):
        seen = []
        original = host.run

        def _spy(argv, **kwargs):
            seen.append((list(argv), kwargs.get("env")))
            return original(argv, **kwargs)

        monkeypatch.setattr(host, "run", _spy)
        PackageInstaller(host).ensure(["filebeat"])
        apt_envs = [env for argv, env in seen if argv[0] == "apt-get"]
        assert apt_envs and all(env == {"DEBIAN_FRONTEND": "noninteractive"} for env in apt_envs)

    def test_dry_run(self, host: MockHost):
        result = PackageInstaller(host, dry_run=True).ensure(["filebeat"])
        assert result.outcome == Outcome.WOULD_APPLY
        assert "filebeat" in result.message
        assert host.mutations == []
        assert host.index_refreshes == 0
