"""
Package repository manager — signed APT source definitions.

Converges three things, in order:
    1. stale list files (``obsolete_paths``) are gone
    2. the signing key sits de-armored in ``keyring_path``
    3. ``repo_list_path`` holds exactly one ``deb [signed-by=...]`` line

Any change invalidates the package index; the result says so in
``metadata["index_invalidated"]`` and the orchestrator asks the
installer to refresh before installing.
"""

from __future__ import annotations

import base64
import binascii
import logging
import urllib.error
import urllib.request
from collections.abc import Callable

from hostconverge.core.errors import FetchError
from hostconverge.core.models.result import StepResult
from hostconverge.core.models.role import RepoDefinition
from hostconverge.core.services.base import Component

logger = logging.getLogger(__name__)

KEYRING_DIR_MODE = 0o755
KEYRING_MODE = 0o644
REPO_LIST_MODE = 0o644
FETCH_TIMEOUT = 30.0

_ARMOR_BEGIN = b"-----BEGIN PGP"
_ARMOR_END = b"-----END PGP"

KeyFetcher = Callable[[str, float | None], bytes]


def fetch_key(url: str, timeout: float | None = FETCH_TIMEOUT) -> bytes:
    """Download key material over HTTP(S).

    Raises:
        FetchError: On network failure or a non-2xx response.
    """
    req = urllib.request.Request(url, headers={"User-Agent": "hostconverge/1.0"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            status = getattr(resp, "status", 200)
            if not 200 <= status < 300:
                raise FetchError(f"GET {url} returned HTTP {status}", url=url, status=status)
            data = resp.read()
    except urllib.error.HTTPError as e:
        raise FetchError(f"GET {url} returned HTTP {e.code}", url=url, status=e.code) from e
    except (urllib.error.URLError, OSError) as e:
        raise FetchError(f"Cannot fetch {url}: {e}", url=url) from e

    if not data:
        raise FetchError(f"GET {url} returned an empty body", url=url)
    return data


def dearmor(data: bytes) -> bytes:
    """Convert an ASCII-armored OpenPGP block to binary (``gpg --dearmor``).

    Binary input is returned unchanged.

    >>> dearmor(b"\\x99\\x01binary")
    b'\\x99\\x01binary'
    """
    stripped = data.lstrip()
    if not stripped.startswith(_ARMOR_BEGIN):
        return data

    lines = stripped.splitlines()[1:]
    # Armor headers ("Version: ...") end at the first blank line.
    if lines and b":" in lines[0]:
        while lines and lines[0].strip():
            lines.pop(0)

    body: list[bytes] = []
    for line in lines:
        line = line.strip()
        if line.startswith(_ARMOR_END) or line.startswith(b"="):
            break
        if line:
            body.append(line)
    else:
        raise FetchError("Armored key has no END line")

    try:
        return base64.b64decode(b"".join(body), validate=True)
    except binascii.Error as e:
        raise FetchError(f"Armored key body is not valid base64: {e}") from e


class PackageRepositoryManager(Component):
    """Ensure a signed APT repository definition.

    Args:
        key_fetcher: ``(url, timeout) -> bytes``. Defaults to HTTP.
    """

    step_name = "repository"

    def __init__(self, *args, key_fetcher: KeyFetcher | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._fetch = key_fetcher or fetch_key

    def ensure(self, repo: RepoDefinition) -> StepResult:
        return self._step(self.step_name, lambda: self._ensure(repo))

    def _ensure(self, repo: RepoDefinition) -> StepResult:
        changes: list[str] = []

        for path in sorted(repo.obsolete_paths):
            if self.host.exists(path):
                if not self.dry_run:
                    self.host.remove(path)
                changes.append(f"removed {path}")

        keyring_dir = self.host.stat(repo.keyring_dir)
        if not keyring_dir.exists:
            if not self.dry_run:
                self.host.make_dir(repo.keyring_dir, KEYRING_DIR_MODE)
            changes.append(f"created {repo.keyring_dir}")
        elif keyring_dir.mode != KEYRING_DIR_MODE:
            if not self.dry_run:
                self.host.chmod(repo.keyring_dir, KEYRING_DIR_MODE)
            changes.append(f"chmod {KEYRING_DIR_MODE:o} {repo.keyring_dir}")

        self.cancel.raise_if_cancelled("key fetch")
        logger.debug("Fetching signing key from %s", repo.key_url)
        keyring = dearmor(self._fetch(repo.key_url, self.cancel.clamp(FETCH_TIMEOUT)))
        self.cancel.raise_if_cancelled("key fetch")
        if self._differs(repo.keyring_path, keyring, KEYRING_MODE):
            if not self.dry_run:
                self.host.write_atomic(repo.keyring_path, keyring, KEYRING_MODE)
            changes.append(f"wrote {repo.keyring_path}")

        line = (repo.repo_line + "\n").encode("utf-8")
        if self._differs(repo.repo_list_path, line, REPO_LIST_MODE):
            if not self.dry_run:
                self.host.write_atomic(repo.repo_list_path, line, REPO_LIST_MODE)
            changes.append(f"wrote {repo.repo_list_path}")

        if not changes:
            return StepResult.satisfied(
                self.step_name,
                f"Repository {repo.base_url} already configured",
                metadata={"index_invalidated": False},
            )

        for change in changes:
            logger.info("repository: %s", change)
        return self._changed(
            self.step_name,
            "; ".join(changes),
            metadata={"index_invalidated": True, "changes": changes},
        )

    def _differs(self, path: str, data: bytes, mode: int) -> bool:
        if self.host.read_bytes(path) != data:
            return True
        return self.host.stat(path).mode != mode
