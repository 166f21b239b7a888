"""Atomic artifact writes.

Encoders write to a ``.partial`` sibling that is renamed into place only
after the encoder succeeds. A file at the final path is therefore always
complete, which is what makes re-running a job safe.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

PARTIAL_MARKER = ".partial"


def partial_path(path: Path) -> Path:
    """Return the in-progress path for an artifact.

    The real suffix is kept last so tools that infer the container from
    the extension still work: ``video/output_hd.webm`` becomes
    ``video/output_hd.partial.webm``.
    """
    return path.with_name(f"{path.stem}{PARTIAL_MARKER}{path.suffix}")


def is_partial(path: Path) -> bool:
    return path.stem.endswith(PARTIAL_MARKER)


def artifact_exists(path: Path) -> bool:
    """True if a complete, non-empty artifact is present."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


@contextmanager
def atomic_output(path: Path) -> Iterator[Path]:
    """Yield a temporary path and move it to path on success.

    If the body raises, the partial file is removed and the exception
    propagates. If the body returns without creating the file, nothing is
    committed.

    Example:
        with atomic_output(workspace / "thumbnail.jpg") as tmp:
            runner.run([ffmpeg, ..., tmp])
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = partial_path(path)
    tmp.unlink(missing_ok=True)
    try:
        yield tmp
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    if tmp.exists():
        os.replace(tmp, path)


def remove_partials(root: Path) -> int:
    """Delete leftover partial artifacts under root.

    Returns:
        Number of files removed.
    """
    removed = 0
    if not root.is_dir():
        return 0
    for candidate in root.rglob(f"*{PARTIAL_MARKER}*"):
        if candidate.is_file() and is_partial(candidate):
            candidate.unlink(missing_ok=True)
            removed += 1
    if removed:
        logger.debug("Removed %d partial artifacts under %s", removed, root)
    return removed
