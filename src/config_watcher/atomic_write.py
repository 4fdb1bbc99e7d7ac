"""Crash-safe file replacement: temp sibling + fsync + rename."""
from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


def _fsync_dir(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_DIRECTORY)
    except (OSError, AttributeError):
        # O_DIRECTORY is POSIX-only; the rename itself is still atomic.
        return
    try:
        os.fsync(dir_fd)
    except OSError as exc:
        logger.debug("fsync of %s failed: %s", directory, exc)
    finally:
        os.close(dir_fd)


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """Replace ``path`` with ``data`` without exposing a partial file.

    The temp file lives in the target's directory so ``os.replace`` never
    crosses filesystems. Permission bits of an existing target are copied
    onto the replacement; a new target keeps the temp file's ``0600``.
    On failure the temp file is removed and the target is left untouched.
    """
    path = Path(path)
    try:
        original_mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        original_mode = None

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            if original_mode is not None:
                os.fchmod(f.fileno(), original_mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
    _fsync_dir(path.parent)
