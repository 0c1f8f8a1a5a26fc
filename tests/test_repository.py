"""
Tests for the package repository manager and key handling.
"""

import base64
import urllib.error

import pytest

from hostconverge.adapters.mock import MOCK_SIGNING_KEY, MockHost, mock_key_fetcher
from hostconverge.core.config.roles import elastic_repository
from hostconverge.core.errors import ErrorKind, FetchError
from hostconverge.core.models.result import Outcome
from hostconverge.core.services import repository
from hostconverge.core.services.repository import PackageRepositoryManager, dearmor, fetch_key

LEGACY = "/etc/apt/sources.list.d/elastic-8.x.list"
LIST = "/etc/apt/sources.list.d/elastic.list"
KEYRING = "/usr/share/keyrings/elastic-keyring.gpg"


def _manager(host: MockHost, **kwargs) -> PackageRepositoryManager:
    return PackageRepositoryManager(host, key_fetcher=mock_key_fetcher, **kwargs)


# ── De-armoring ─────────────────────────────────────────────────────


class TestDearmor:
    def test_armored(self):
        payload = b"\x99\x01\x0dbinary-key-material"
        armored = (
            b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n"
            b"\n"
            + base64.encodebytes(payload)
            + b"=XyZw\n-----END PGP PUBLIC KEY BLOCK-----\n"
        )
        assert dearmor(armored) == payload

    def test_armor_headers_skipped(self):
        assert dearmor(MOCK_SIGNING_KEY).startswith(b"\x99\x01\x0d\x04mock-elastic")

    def test_binary_unchanged(self):
        assert dearmor(b"\x99\x01raw") == b"\x99\x01raw"

    def test_truncated(self):
        with pytest.raises(FetchError):
            dearmor(b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n\nAAAA\n")


class TestFetchKey:
    def test_network_error(self, monkeypatch):
        def _fail(req, timeout=None):
            raise urllib.error.URLError("Name or service not known")

        monkeypatch.setattr(repository.urllib.request, "urlopen", _fail)
        with pytest.raises(FetchError) as exc:
            fetch_key("https://artifacts.elastic.co/GPG-KEY-elasticsearch")
        assert exc.value.kind == ErrorKind.FETCH

    def test_http_error(self, monkeypatch):
        def _fail(req, timeout=None):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr(repository.urllib.request, "urlopen", _fail)
        with pytest.raises(FetchError) as exc:
            fetch_key("https://artifacts.elastic.co/missing")
        assert exc.value.detail["status"] == 404


# ── Repository manager ──────────────────────────────────────────────


class TestPackageRepositoryManager:
    def test_obsolete_list_removed_and_single_line_written(self, host: MockHost):
        host.seed_file(LEGACY, "deb artifacts.elastic.co stable main\n")
        result = _manager(host).ensure(elastic_repository("8.x"))

        assert result.outcome == Outcome.APPLIED
        assert LEGACY not in host.files
        lines = host.files[LIST].decode().splitlines()
        assert lines == [
            "deb [signed-by=/usr/share/keyrings/elastic-keyring.gpg] "
            "https://artifacts.elastic.co/packages/8.x/apt stable main"
        ]
        assert result.metadata["index_invalidated"] is True

    def test_keyring_is_binary_and_world_readable(self, host: MockHost):
        _manager(host).ensure(elastic_repository("8.x"))
        assert host.files[KEYRING] == dearmor(MOCK_SIGNING_KEY)
        assert host.modes[KEYRING] == 0o644
        assert host.dirs["/usr/share/keyrings"] == 0o755

    def test_converged_is_satisfied(self, host: MockHost):
        manager = _manager(host)
        manager.ensure(elastic_repository("8.x"))
        host.reset_log()
        result = manager.ensure(elastic_repository("8.x"))
        assert result.outcome == Outcome.ALREADY_SATISFIED
        assert result.metadata["index_invalidated"] is False
        assert host.mutations == []

    def test_major_change_rewrites_line(self, host: MockHost):
        manager = _manager(host)
        manager.ensure(elastic_repository("8.x"))
        result = manager.ensure(elastic_repository("9.x"))
        assert result.outcome == Outcome.APPLIED
        assert b"/packages/9.x/apt" in host.files[LIST]

    def test_key_rotation_detected(self, host: MockHost):
        _manager(host).ensure(elastic_repository("8.x"))
        rotated = PackageRepositoryManager(host, key_fetcher=lambda url, timeout: b"\x99\x02new-key")
        result = rotated.ensure(elastic_repository("8.x"))
        assert result.outcome == Outcome.APPLIED
        assert host.files[KEYRING] == b"\x99\x02new-key"

    def test_fetch_failure_is_reported_not_raised(self, host: MockHost):
        def _offline(url, timeout):
            raise FetchError(f"Cannot fetch {url}: timed out", url=url)

        result = PackageRepositoryManager(host, key_fetcher=_offline).ensure(elastic_repository("8.x"))
        assert result.failed
        assert result.error.kind == ErrorKind.FETCH
        assert KEYRING not in host.files

    def test_dry_run_touches_nothing(self, host: MockHost):
        host.seed_file(LEGACY, "stale\n")
        result = _manager(host, dry_run=True).ensure(elastic_repository("8.x"))
        assert result.outcome == Outcome.WOULD_APPLY
        assert host.mutations == []
        assert LEGACY in host.files
