"""Text cleanup and approximate identity for captured conversation text.

``content_fingerprint`` is a cheap 32-bit rolling hash over the leading 100
characters of a message. It groups captures of the same message taken at
different levels of completeness; collisions are possible and accepted.
"""

from __future__ import annotations

import re
from typing import Optional

FINGERPRINT_PREFIX_CHARS = 100

# "<newline(s)>B12 selected" / "<newline(s)>A1:C9 selected" appended by the pane
_SELECTION_SUFFIX_RE = re.compile(r"\n+[A-Z]+\d+(?::[A-Z]+\d+)? selected$")
_SELECTION_NOTICE_RE = re.compile(r"^[A-Z]+\d+(?::[A-Z]+\d+)? selected$")
_BUTTON_WORD_RE = re.compile(r"^[A-Za-z]{1,15}$")

# Chrome labels rendered inside the conversation pane
UI_ELEMENTS = frozenset(
    {
        "BETA",
        "Untitled",
        "Build a new analysis",
        "Import data",
        "Check a different file",
        "Let me know what you'd like to accomplish!",
        "What can I do for you?",
        "Type a message",
        "Send",
        "Stop",
        "Copy",
        "Retry",
        "New chat",
        "Claude",
    }
)


def clean_text(text: str) -> str:
    """Remove the trailing cell-selection notice and surrounding whitespace."""
    return _SELECTION_SUFFIX_RE.sub("", text or "").strip()


def normalize_fragment(text: str) -> Optional[str]:
    """Cleaned text, or None when nothing is left."""
    cleaned = clean_text(text)
    return cleaned or None


def is_ui_element(text: str) -> bool:
    if text in UI_ELEMENTS:
        return True
    if len(text) < 10:
        return True
    if _BUTTON_WORD_RE.match(text):
        return True
    return bool(_SELECTION_NOTICE_RE.match(text.strip()))


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def simple_hash(text: str) -> str:
    """``h = h*31 + unit`` over UTF-16 code units with signed 32-bit wrap, as hex."""
    h = 0
    raw = text.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(raw), 2):
        h = _to_int32(h * 31 + (raw[i] | (raw[i + 1] << 8)))
    return format(h, "x")


def content_fingerprint(content: str) -> str:
    return simple_hash(content[:FINGERPRINT_PREFIX_CHARS].lower().strip())
