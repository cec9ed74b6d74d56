"""Shared filesystem helpers used by the store and the pipeline stages."""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path


def _atomic_write(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and rename.

    Readers see either the previous file or the complete new one, never a
    partially written artifact.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


def _atomic_copy(source: Path, destination: Path) -> None:
    """Copy a file into place with the same temp-file-and-rename guarantee."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".tmp"
    )
    os.close(fd)
    try:
        shutil.copyfile(source, tmp_name)
        os.replace(tmp_name, destination)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
