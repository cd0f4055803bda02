"""Write a captured thread to a standalone JSON file.

The file is written to a ``.tmp`` sibling and moved into place with
``os.replace``, so an existing export is never left half-written.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Sequence

from .interfaces import CapturedSession, Message

logger = logging.getLogger(__name__)


def export_payload(session: CapturedSession, messages: Sequence[Message]) -> Dict[str, Any]:
    return {
        "id": session.id,
        "workbook_name": session.workbook_name,
        "captured_at": session.captured_at,
        "model": session.model,
        "messages": [m.to_dict() for m in messages],
    }


def write_export(path: Path, session: CapturedSession, messages: Sequence[Message]) -> Path:
    """Export ``messages`` (full or summarized) under ``session``'s metadata."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")

    try:
        tmp.write_text(
            json.dumps(export_payload(session, messages), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("[EXPORT] %s -> %s (%d messages)", session.id, path, len(messages))
    return path
