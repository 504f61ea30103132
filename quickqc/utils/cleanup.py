"""Scoped scratch directories.

Intermediate volumes (e.g. the ghost-region masks) are written into a
uniquely named directory that is removed on every exit path so files of one
run never leak into the next.
"""

from __future__ import annotations

import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import structlog

log = structlog.get_logger()

__all__ = ["scratch_dir", "remove_tree"]


def remove_tree(path: Path) -> bool:
    """Recursively delete *path*; return *True* when it is gone afterwards."""
    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
    except OSError as exc:
        log.error("scratch-cleanup-failed", path=str(path), error=str(exc))
        return False
    log.debug("scratch-removed", path=str(path))
    return True


@contextmanager
def scratch_dir(parent: Path, prefix: str = "__tmp_") -> Iterator[Path]:
    """Yield a fresh ``<parent>/<prefix><hex>`` directory and delete it on exit."""
    parent.mkdir(parents=True, exist_ok=True)
    path = parent / f"{prefix}{uuid.uuid4().hex[:12]}"
    path.mkdir()
    try:
        yield path
    finally:
        remove_tree(path)
