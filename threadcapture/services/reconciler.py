"""Reconcile repeated, partial snapshots of a conversation into one transcript.

A snapshot only reaches ``merge_messages`` when it passes the gate:

- its whole-snapshot digest differs from the last accepted one, and
- after cleanup it still holds at least one user and one assistant message.

Merging is keyed on ``content_fingerprint``. A known fingerprint with longer
content replaces the stored entry in place; so does the completion of a short
streaming tail (see ``_completes_tail``); anything else is appended. The
transcript therefore reflects admission order, not conversation order: a
message first seen late lands at the end.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from threadcapture.utils.text import (
    FINGERPRINT_PREFIX_CHARS,
    content_fingerprint,
    normalize_fragment,
    simple_hash,
)
from .interfaces import ROLES, ConversationSnapshot, Fragment, HistoryLoad, Message

logger = logging.getLogger(__name__)

_DIGEST_SEPARATOR = "|||"


@dataclass
class ReconcileContext:
    """Mutable capture state owned by one poller."""

    last_digest: str = ""
    capturing: bool = True

    def reset(self) -> None:
        """Forget the last accepted digest so the next snapshot is reprocessed."""
        self.last_digest = ""

    def enable(self) -> None:
        self.capturing = True

    def disable(self) -> None:
        self.capturing = False


def snapshot_digest(fragments: Sequence[Fragment]) -> str:
    return simple_hash(_DIGEST_SEPARATOR.join(f.text for f in fragments))


def parse_snapshot(fragments: Iterable[Fragment]) -> Optional[ConversationSnapshot]:
    """Order, clean and role-check one capture. None when it lacks a user/assistant pair."""
    ordered = sorted(fragments, key=lambda f: f.position)
    if not ordered:
        return None

    messages: List[Message] = []
    for frag in ordered:
        if frag.role not in ROLES:
            continue
        content = normalize_fragment(frag.text)
        if content is None:
            continue
        messages.append(Message(role=frag.role, content=content))

    roles = {m.role for m in messages}
    if "user" not in roles or "assistant" not in roles:
        logger.debug("Snapshot rejected: roles present=%s", sorted(roles))
        return None

    return ConversationSnapshot(messages=messages, digest=snapshot_digest(ordered))


def _fingerprint_index(messages: Sequence[Message]) -> Dict[str, int]:
    # fingerprint -> position of the longest entry carrying it (first on ties)
    index: Dict[str, int] = {}
    for pos, msg in enumerate(messages):
        fp = content_fingerprint(msg.content)
        current = index.get(fp)
        if current is None or len(msg.content) > len(messages[current].content):
            index[fp] = pos
    return index


def _completes_tail(tail: Message, msg: Message, visible: Set[str]) -> bool:
    """True when ``msg`` is the finished form of a short, still-streaming tail.

    Entries shorter than the fingerprint window cannot be matched by
    fingerprint once they grow ("Hel" -> "Hello there"). Only the last stored
    entry can still be streaming, and only while nothing new has been
    appended after it. It counts as a partial capture of ``msg`` when it has
    the same role, is a strict prefix of it, and is no longer on screen.
    """
    if tail.role != msg.role or len(tail.content) >= FINGERPRINT_PREFIX_CHARS:
        return False
    if len(tail.content) >= len(msg.content) or not msg.content.startswith(tail.content):
        return False
    return content_fingerprint(tail.content) not in visible


def merge_messages(canonical: Sequence[Message], incoming: Sequence[Message]) -> List[Message]:
    """Fold ``incoming`` into ``canonical`` without reordering entries."""
    if not canonical:
        return list(incoming)

    result = list(canonical)
    index = _fingerprint_index(result)
    visible = {content_fingerprint(m.content) for m in incoming}
    tail_open = True

    for msg in incoming:
        fp = content_fingerprint(msg.content)
        pos = index.get(fp)
        if pos is not None:
            if len(msg.content) > len(result[pos].content):
                result[pos] = msg
            continue

        if tail_open and _completes_tail(result[-1], msg, visible):
            index[fp] = len(result) - 1
            result[-1] = msg
        else:
            index[fp] = len(result)
            result.append(msg)
        tail_open = False

    return result


def reconcile(
    existing: Sequence[Message],
    fragments: Iterable[Fragment],
    context: Optional[ReconcileContext] = None,
) -> Optional[List[Message]]:
    """Merge one capture into ``existing``.

    Returns the updated transcript, or None for "no update" (capture disabled,
    unchanged digest, or a snapshot without both roles). ``existing`` is never
    mutated.
    """
    if context is not None and not context.capturing:
        return None

    snapshot = parse_snapshot(fragments)
    if snapshot is None:
        return None

    if context is not None:
        if snapshot.digest == context.last_digest:
            return None
        context.last_digest = snapshot.digest

    return merge_messages(existing, snapshot.messages)


def _coerce_message(item: Any) -> Optional[Message]:
    if not isinstance(item, dict):
        return None
    role = item.get("role")
    content = item.get("content")
    if role not in ROLES or not isinstance(content, str) or not content:
        return None
    return Message(role=role, content=content)


def load_history(body: Optional[str]) -> HistoryLoad:
    """Parse a stored ``{"messages": [...]}`` body.

    Unreadable or wrongly shaped bodies yield an empty, invalid result rather
    than an exception. Malformed entries are skipped and flag the load invalid.
    """
    if not body:
        return HistoryLoad()

    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        logger.warning("Stored history unreadable; treating as empty")
        return HistoryLoad(messages=[], valid=False)

    raw = data.get("messages") if isinstance(data, dict) else None
    if not isinstance(raw, list):
        logger.warning("Stored history has no message list; treating as empty")
        return HistoryLoad(messages=[], valid=False)

    messages: List[Message] = []
    skipped = 0
    for item in raw:
        msg = _coerce_message(item)
        if msg is None:
            skipped += 1
            continue
        messages.append(msg)

    if skipped:
        logger.warning("Stored history: skipped %d malformed entries", skipped)
    return HistoryLoad(messages=messages, valid=skipped == 0)


def dump_history(messages: Sequence[Message]) -> str:
    return json.dumps({"messages": [m.to_dict() for m in messages]}, ensure_ascii=False)
