"""
Named-resource locks.

Two runs that touch the same host resource (say two database backups
writing into one directory) must not overlap. A procedure declares a
resource name and the orchestrator holds an exclusive lock on
``<state_dir>/locks/<name>.lock`` for the length of the run.

Acquisition never waits: if another process holds the lock the run is
rejected with ``ResourceBusyError``.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import sys
from pathlib import Path
from typing import IO, Generator

from hostops.errors import ResourceBusyError

__all__ = ["resource_lock", "lock_path_for"]

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Lock paths that are symlinks fail to open
_OPEN_FLAGS = os.O_RDWR | os.O_CREAT | getattr(os, "O_NOFOLLOW", 0)


# Cross-platform non-blocking file locking
if sys.platform == "win32":
    import msvcrt

    def _try_lock(f: IO) -> bool:
        """Lock file on Windows without waiting."""
        try:
            msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(f: IO) -> None:
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _try_lock(f: IO) -> bool:
        """Lock file on Unix without waiting."""
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(f: IO) -> None:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def lock_path_for(lock_dir: Path, resource: str) -> Path:
    """
    Map a resource name onto its lock file.

    Raises:
        ValueError: If the name could escape ``lock_dir``
    """
    if not _SAFE_NAME.match(resource):
        raise ValueError(f"invalid resource name: {resource!r}")
    return lock_dir / f"{resource}.lock"


@contextlib.contextmanager
def resource_lock(lock_dir: Path, resource: str) -> Generator[Path, None, None]:
    """
    Hold an exclusive lock on ``resource`` for the body of the block.

    Args:
        lock_dir: Directory for lock files (created if missing)
        resource: Resource identifier, e.g. ``"database-backup"``

    Yields:
        Path of the lock file

    Raises:
        ResourceBusyError: If another process holds the lock
        OSError: If the lock path is a symlink

    Example:
        with resource_lock(config.get_lock_dir(), "system-backup"):
            runner.run(steps, context)
    """
    lock_path = lock_path_for(lock_dir, resource)
    lock_dir.mkdir(parents=True, exist_ok=True)

    lock_file = os.fdopen(os.open(lock_path, _OPEN_FLAGS, 0o600), "r+")
    try:
        if not _try_lock(lock_file):
            raise ResourceBusyError(resource)
        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        logger.debug("Acquired resource lock %s", lock_path)
        try:
            yield lock_path
        finally:
            try:
                _unlock(lock_file)
            except OSError:
                logger.warning("Failed to release resource lock %s", lock_path)
    finally:
        lock_file.close()
