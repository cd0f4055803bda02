from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


def _is_locked_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return "database is locked" in message or "database schema is locked" in message


def _open(
    db_path: Path,
    *,
    readonly: bool,
    retries: int,
    backoff_seconds: float,
) -> sqlite3.Connection:
    uri = f"file:{db_path.as_posix()}?mode={'ro' if readonly else 'rwc'}"
    attempt = 0

    while True:
        attempt += 1
        conn = None
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=1.0)
            conn.row_factory = sqlite3.Row
            # Touch the schema so a held lock surfaces here, inside the retry loop.
            conn.execute("PRAGMA schema_version").fetchone()
            return conn
        except sqlite3.OperationalError as exc:
            if conn is not None:
                conn.close()
            if not _is_locked_error(exc) or attempt >= retries:
                raise
            logger.warning("[STORE] Session db locked; retrying (%s/%s)", attempt, retries)
            time.sleep(backoff_seconds * attempt)


@contextmanager
def connect(
    db_path: Path,
    *,
    readonly: bool = False,
    retries: int = 3,
    backoff_seconds: float = 0.35,
) -> Iterator[sqlite3.Connection]:
    """Open a SQLite connection with retries for lock errors.

    Writable connections commit on clean exit and roll back on error.
    """

    if readonly and not db_path.exists():
        raise FileNotFoundError(f"Session db not found: {db_path}")
    if not readonly:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = _open(db_path, readonly=readonly, retries=retries, backoff_seconds=backoff_seconds)
    try:
        yield conn
        if not readonly:
            conn.commit()
    except BaseException:
        if not readonly:
            conn.rollback()
        raise
    finally:
        conn.close()


def fetch_all(conn: sqlite3.Connection, query: str, params: tuple = ()) -> list[sqlite3.Row]:
    cur = conn.execute(query, params)
    return list(cur.fetchall())


def fetch_one(conn: sqlite3.Connection, query: str, params: tuple = ()) -> sqlite3.Row | None:
    cur = conn.execute(query, params)
    return cur.fetchone()
