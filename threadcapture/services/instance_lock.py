"""One capture poller per session database.

Two pollers writing the same database would race on the active workbook
thread. The lock file sits next to the database (``sessions.db`` ->
``sessions.db.lock``), so pollers on different ``--db`` files run side by side.
Uses ``fcntl.flock`` on macOS/Linux and ``msvcrt.locking`` on Windows.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"


class InstanceAlreadyRunning(RuntimeError):
    """Another poller already holds the lock for this database."""


def lock_path_for(db_path: Path) -> Path:
    db_path = Path(db_path)
    return db_path.with_name(db_path.name + _LOCK_SUFFIX)


@contextmanager
def acquire_instance_lock(db_path: Path | None = None) -> Generator[Path, None, None]:
    """Hold the poller lock for ``db_path`` (default ``settings.DB_PATH``).

    Raises:
        InstanceAlreadyRunning: If another process polls the same database.
    """
    if db_path is None:
        from threadcapture.config import settings
        db_path = settings.DB_PATH

    lock_path = lock_path_for(db_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
    if not _try_lock(fd):
        os.close(fd)
        raise InstanceAlreadyRunning(
            f"Another capture poller is using {db_path} (pid={_owner_pid(lock_path)}). "
            f"Lock file: {lock_path}"
        )

    try:
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.info("[LOCK] Poller lock acquired for %s (pid=%s)", db_path, os.getpid())
        yield lock_path
    finally:
        _unlock(fd)
        os.close(fd)
        try:
            lock_path.unlink(missing_ok=True)
        except OSError:
            pass
        logger.info("[LOCK] Poller lock released for %s", db_path)


def _owner_pid(lock_path: Path) -> str:
    try:
        return lock_path.read_text().strip() or "unknown"
    except OSError:
        return "unknown"


# ---------------------------------------------------------------------------
# Platform-specific lock helpers
# ---------------------------------------------------------------------------

def _try_lock(fd: int) -> bool:
    try:
        if sys.platform == "win32":
            import msvcrt
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        else:
            import fcntl
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _unlock(fd: int) -> None:
    try:
        if sys.platform == "win32":
            import msvcrt
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
        else:
            import fcntl
            fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError:
        pass
