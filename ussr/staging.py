"""Temporary copies, the one-time ``.bak`` backup and cleanup of a run."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Set

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"


def clone_file(source: Path, dest: Path) -> Path:
    """Copy ``source`` to ``dest`` byte for byte and return ``dest``.

    A missing source is logged rather than raised; the intended destination
    is still returned so callers can detect the failure by its absence.
    """

    source = Path(source)
    dest = Path(dest)
    if not source.is_file():
        logger.error("Source file to duplicate doesn't exist: %s", source)
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, dest)
    return dest


def backup_path_for(source: Path) -> Path:
    source = Path(source)
    return source.with_name(source.name + BACKUP_SUFFIX)


def backup_only_once(source: Path) -> Path:
    """Back up ``source`` as ``<source>.bak`` unless a backup already exists.

    An existing backup is never overwritten, so the first original survives
    any number of later runs.
    """

    backup = backup_path_for(source)
    if backup.exists():
        logger.debug("Backup already present: %s", backup)
        return backup

    logger.info("Backup %s as %s...", Path(source).name, backup)
    return clone_file(source, backup)


def clean_up(paths: Iterable[Path]) -> None:
    """Delete every file or directory tree in ``paths``; missing ones are skipped."""

    paths = [Path(path) for path in paths]
    if not paths:
        return

    logger.info("Cleaning up temporary files...")
    for path in paths:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()


class StagingArea:
    """Tracks the intermediate artifacts of one run and removes them on exit.

    Cleanup happens exactly once, whether the ``with`` block succeeds or
    raises; the original exception is never swallowed.  Protected paths (the
    backup and the final output) are never removed even when tracked.
    """

    def __init__(self) -> None:
        self._tracked: List[Path] = []
        self._protected: Set[Path] = set()
        self._closed = False

    def track(self, path: Path) -> Path:
        path = Path(path)
        if path not in self._tracked:
            self._tracked.append(path)
        return path

    def protect(self, path: Path) -> Path:
        path = Path(path)
        self._protected.add(path)
        return path

    @property
    def tracked(self) -> List[Path]:
        return [path for path in self._tracked if path not in self._protected]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        clean_up(self.tracked)

    def __enter__(self) -> "StagingArea":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        try:
            self.close()
        except OSError:
            logger.exception("Error cleaning up temporary files!")
