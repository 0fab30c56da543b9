"""
Advisory lock files that keep two instances of the same job from overlapping.

The check in ``is_overlapping`` and the write in ``create_lock`` are separate
filesystem operations, so two processes can both pass the check before either
writes. This is best-effort exclusion, not a mutex.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)

OverlapPredicate = Callable[[float], bool]
PathLike = Union[str, Path]


def never_override(_: float) -> bool:
    return False


def lock_path_for(job_id: str, directory: Optional[PathLike], default_dir: PathLike) -> Path:
    if directory is None or not Path(directory).is_dir():
        directory = default_dir
    return Path(str(directory).strip()) / f"{job_id.strip()}.lock"


def is_overlapping(lock_path: Optional[Path], when_overlapping: OverlapPredicate) -> bool:
    """True if a lock exists and the predicate, given its mtime, does not override it."""
    if lock_path is None:
        return False
    try:
        modified = lock_path.stat().st_mtime
    except FileNotFoundError:
        return False
    return when_overlapping(modified) is False


def create_lock(lock_path: Optional[Path], content: str) -> None:
    if lock_path is None:
        return
    lock_path.write_text(content, encoding="utf-8")
    logger.debug("Created lock file %s", lock_path)


def remove_lock(lock_path: Optional[Path]) -> None:
    if lock_path is None:
        return
    try:
        lock_path.unlink()
    except FileNotFoundError:
        return
    logger.debug("Removed lock file %s", lock_path)
