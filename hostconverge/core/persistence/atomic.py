"""
Atomic file writes — temp file in the same directory, then rename.

Used for every managed path on a local host and for run reports.
If the process dies mid-write the target keeps its previous content;
the only leftover is a ``.hcv_*.tmp`` file that the next write ignores.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Write ``data`` to ``path`` atomically with permission bits ``mode``.

    Args:
        path: Target path. Parent directories are created.
        data: Full new content.
        mode: Permission bits applied to the temp file before rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".hcv_",
        suffix=".tmp",
    )
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
        logger.debug("Wrote %d bytes to %s (mode %o)", len(data), path, mode)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def save_json(data: dict, path: Path) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    try:
        atomic_write_bytes(path, content.encode("utf-8"))
    except OSError as e:
        logger.error("Failed to save %s: %s", path, e)
        raise
