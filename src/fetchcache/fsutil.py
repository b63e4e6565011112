"""Atomic file helpers shared by the cache, snapshot, and config modules.

Every write into a cache directory goes through a temp-file-then-rename
sequence so that a concurrent reader sees either the old content or the new
content, never a mix. Temporary files are created in the destination's own
directory so that ``os.replace`` is a single-syscall rename on POSIX and
Windows alike.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes | str) -> None:
    """Write *data* to *path* atomically using temp file + rename.

    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up and the error re-raised.

    Args:
        path: Destination file. Its parent directory is created if needed.
        data: Bytes, or text encoded as UTF-8.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode("utf-8") if isinstance(data, str) else data

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = fd.name
        fd.write(payload)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            remove_quietly(Path(tmp_path))
        raise


def promote(temp_path: Path, cache_path: Path) -> None:
    """Atomically replace *cache_path* with the content of *temp_path*.

    When the temp file already lives in the cache directory it is simply
    renamed into place. Otherwise its bytes are first copied to a sibling
    temp file so the final step is still a same-directory rename.

    Args:
        temp_path: A fully written, validated download.
        cache_path: The cache entry to overwrite.

    Raises:
        OSError: If the copy or rename fails. *cache_path* is untouched.
    """
    cache_path.parent.mkdir(parents=True, exist_ok=True)
    if temp_path.parent.resolve() == cache_path.parent.resolve():
        os.replace(temp_path, cache_path)
        return

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="wb",
            dir=cache_path.parent,
            prefix=f".{cache_path.name}.",
            suffix=".tmp",
            delete=False,
        )
        tmp_path = fd.name
        with open(temp_path, "rb") as src:
            shutil.copyfileobj(src, fd)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, cache_path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            remove_quietly(Path(tmp_path))
        raise


def remove_quietly(path: Optional[Path]) -> None:
    """Delete *path* if it exists, logging instead of raising on failure."""
    if path is None:
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.debug("Could not remove %s: %s", path, exc)
