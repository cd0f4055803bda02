"""SQLite-backed store for captured conversation threads.

One row per thread. The canonical transcript lives in ``request_body`` (and is
mirrored in ``response_body``) as ``{"messages": [...]}`` JSON; the prompt and
response columns hold display/search text derived from it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from threadcapture.config import settings
from threadcapture.utils.db_client import connect, fetch_all, fetch_one
from .interfaces import CapturedSession, Message, SessionSummary
from .reconciler import dump_history

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 200

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    workbook_name TEXT,
    captured_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    request_body TEXT,
    response_body TEXT,
    model TEXT,
    input_tokens INTEGER,
    output_tokens INTEGER,
    user_prompt TEXT,
    assistant_response TEXT
)
"""

_SUMMARY_COLUMNS = f"""
    id, workbook_name, captured_at, model, input_tokens, output_tokens,
    SUBSTR(user_prompt, 1, {PREVIEW_CHARS}) AS user_prompt_preview
"""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_session_fields(messages: Sequence[Message]) -> Dict[str, Any]:
    """Bodies plus the first user prompt and all assistant text for display/search."""
    body = dump_history(messages)
    first_user = next((m.content for m in messages if m.role == "user"), "")
    full_response = "\n\n".join(m.content for m in messages if m.role == "assistant")
    return {
        "request_body": body,
        "response_body": body,
        "user_prompt": first_user,
        "assistant_response": full_response,
    }


def new_session(workbook_name: str, messages: Sequence[Message]) -> CapturedSession:
    return CapturedSession(
        id=str(uuid.uuid4()),
        workbook_name=workbook_name,
        captured_at=utc_now_iso(),
        model=settings.CAPTURE_MODEL_LABEL,
        input_tokens=None,
        output_tokens=None,
        **build_session_fields(messages),
    )


class SessionStore:
    """Persistent thread store. Call ``initialize()`` once before use."""

    def __init__(
        self,
        db_path: Path = settings.DB_PATH,
        *,
        retries: int = settings.DB_LOCKED_RETRIES,
        backoff_seconds: float = settings.DB_LOCKED_BACKOFF_SECONDS,
    ) -> None:
        self.db_path = Path(db_path)
        self._retries = retries
        self._backoff = backoff_seconds

    def _connect(self):
        return connect(self.db_path, retries=self._retries, backoff_seconds=self._backoff)

    def initialize(self) -> None:
        with self._connect() as conn:
            conn.execute(_SCHEMA)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_workbook ON sessions(workbook_name)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_captured ON sessions(captured_at)")
        logger.info("[STORE] Session db ready at %s", self.db_path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, session: CapturedSession) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    id, workbook_name, captured_at, request_body, response_body,
                    model, input_tokens, output_tokens, user_prompt, assistant_response
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.workbook_name,
                    session.captured_at,
                    session.request_body,
                    session.response_body,
                    session.model,
                    session.input_tokens,
                    session.output_tokens,
                    session.user_prompt,
                    session.assistant_response,
                ),
            )
        logger.info("[STORE] Inserted session %s", session.id)

    def update(self, session: CapturedSession) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE sessions SET
                    captured_at = ?,
                    request_body = ?,
                    response_body = ?,
                    user_prompt = ?,
                    assistant_response = ?
                WHERE id = ?
                """,
                (
                    session.captured_at,
                    session.request_body,
                    session.response_body,
                    session.user_prompt,
                    session.assistant_response,
                    session.id,
                ),
            )
        logger.info("[STORE] Updated session %s", session.id)

    def delete(self, session_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.info("[STORE] Deleted session %s", session_id)
        return deleted

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions")
        logger.info("[STORE] Cleared all sessions")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[CapturedSession]:
        with self._connect() as conn:
            row = fetch_one(conn, "SELECT * FROM sessions WHERE id = ?", (session_id,))
        return CapturedSession.from_row(row) if row else None

    def get_active_by_workbook(self, workbook_name: str) -> Optional[CapturedSession]:
        """Most recently captured thread for a workbook."""
        with self._connect() as conn:
            row = fetch_one(
                conn,
                """
                SELECT * FROM sessions
                WHERE workbook_name = ?
                ORDER BY captured_at DESC
                LIMIT 1
                """,
                (workbook_name,),
            )
        return CapturedSession.from_row(row) if row else None

    def list_all(self) -> List[SessionSummary]:
        return self._summaries(
            f"SELECT {_SUMMARY_COLUMNS} FROM sessions ORDER BY captured_at DESC"
        )

    def list_by_workbook(self, workbook_name: str) -> List[SessionSummary]:
        return self._summaries(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM sessions
            WHERE workbook_name = ?
            ORDER BY captured_at DESC
            """,
            (workbook_name,),
        )

    def search(self, query: str) -> List[SessionSummary]:
        term = f"%{query}%"
        return self._summaries(
            f"""
            SELECT {_SUMMARY_COLUMNS} FROM sessions
            WHERE user_prompt LIKE ? OR assistant_response LIKE ?
            ORDER BY captured_at DESC
            """,
            (term, term),
        )

    def count(self) -> int:
        with self._connect() as conn:
            row = fetch_one(conn, "SELECT COUNT(*) AS count FROM sessions")
        return int(row["count"]) if row else 0

    def _summaries(self, query: str, params: tuple = ()) -> List[SessionSummary]:
        with self._connect() as conn:
            rows = fetch_all(conn, query, params)
        return [SessionSummary(**{k: r[k] for k in r.keys()}) for r in rows]
