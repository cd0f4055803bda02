"""Extractive summarization of assistant replies (TextRank-style).

Pipeline per message:

1. ``split_sentences``: sentence-like units; fenced code blocks stay whole.
2. ``build_similarity_matrix``: Jaccard overlap of unit token sets.
3. ``rank_sentences``: fixed-iteration damped random walk over that graph.
4. ``select_units``: top-ranked prose plus every code block, in original order.

Everything here is pure and deterministic. Cost is quadratic in the number of
units, so callers cap very long inputs through ``max_units``.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Sequence

from .interfaces import Message

logger = logging.getLogger(__name__)

CODE_FENCE = "```"
CODE_SENTINEL_TOKEN = "__code_block__"
MIN_UNIT_CHARS = 11
NOOP_UNIT_THRESHOLD = 3
MIN_KEPT_UNITS = 2

DEFAULT_RATIO = 0.3
DEFAULT_ITERATIONS = 50
DEFAULT_DAMPING = 0.85

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n\n+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def is_code_unit(unit: str) -> bool:
    return unit.startswith(CODE_FENCE)


def _placeholder_marker(text: str) -> str:
    # A marker absent from the input, so stashed blocks cannot be confused with text.
    marker = "\x00"
    while marker in text:
        marker += "\x01"
    return marker


def split_sentences(text: str) -> List[str]:
    """Split ``text`` into units; each fenced block becomes its own unit."""
    text = text or ""
    marker = _placeholder_marker(text)
    placeholder_re = re.compile(re.escape(marker) + r"CODE(\d+)" + re.escape(marker))
    blocks: List[str] = []

    def _stash(match: re.Match) -> str:
        blocks.append(match.group(0))
        return f"{marker}CODE{len(blocks) - 1}{marker}"

    masked = _CODE_BLOCK_RE.sub(_stash, text)

    units: List[str] = []
    for piece in _SPLIT_RE.split(masked):
        # A piece may still hold a placeholder glued to prose; cut it out.
        cursor = 0
        for match in placeholder_re.finditer(piece):
            _append_prose(units, piece[cursor:match.start()])
            units.append(blocks[int(match.group(1))])
            cursor = match.end()
        _append_prose(units, piece[cursor:])

    return units


def _append_prose(units: List[str], piece: str) -> None:
    piece = piece.strip()
    if len(piece) >= MIN_UNIT_CHARS:
        units.append(piece)


def tokenize(unit: str) -> List[str]:
    if is_code_unit(unit):
        return [CODE_SENTINEL_TOKEN]
    words = _NON_ALNUM_RE.sub(" ", unit.lower()).split()
    return [w for w in words if len(w) >= 3]


def jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    if not a or not b:
        return 0.0
    set_a, set_b = set(a), set(b)
    union = len(set_a | set_b)
    return len(set_a & set_b) / union if union else 0.0


def build_similarity_matrix(tokenized: Sequence[Sequence[str]]) -> List[List[float]]:
    n = len(tokenized)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            sim = jaccard(tokenized[i], tokenized[j])
            matrix[i][j] = sim
            matrix[j][i] = sim
    return matrix


def rank_sentences(
    matrix: Sequence[Sequence[float]],
    iterations: int = DEFAULT_ITERATIONS,
    damping: float = DEFAULT_DAMPING,
) -> List[float]:
    """Damped random-walk scores. Runs exactly ``iterations`` rounds."""
    n = len(matrix)
    if n == 0:
        return []

    normalized: List[List[float]] = []
    for row in matrix:
        total = sum(row)
        normalized.append(list(row) if total == 0 else [v / total for v in row])

    scores = [1.0 / n] * n
    base = (1.0 - damping) / n
    for _ in range(iterations):
        scores = [
            base + damping * sum(normalized[j][i] * scores[j] for j in range(n))
            for i in range(n)
        ]
    return scores


def kept_text_count(n_text: int, ratio: float) -> int:
    # round() first: 10 * 0.7 is 7.000000000000001 in floats and must keep 7, not 8
    wanted = math.ceil(round(n_text * ratio, 9))
    return min(n_text, max(MIN_KEPT_UNITS, wanted))


def select_units(units: Sequence[str], scores: Sequence[float], ratio: float) -> List[str]:
    code_idx = [i for i, u in enumerate(units) if is_code_unit(u)]
    text_idx = [i for i, u in enumerate(units) if not is_code_unit(u)]

    keep = kept_text_count(len(text_idx), ratio)
    ranked = sorted(text_idx, key=lambda i: scores[i], reverse=True)[:keep]

    chosen = sorted(set(code_idx) | set(ranked))
    return [units[i] for i in chosen]


def summarize_text(
    text: str,
    ratio: float = DEFAULT_RATIO,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    damping: float = DEFAULT_DAMPING,
    max_units: Optional[int] = None,
) -> str:
    """Shorten one block of text; returns it unchanged when there is little to cut."""
    units = split_sentences(text)
    if len(units) <= NOOP_UNIT_THRESHOLD:
        return text
    if max_units and len(units) > max_units:
        logger.debug("Skipping summarization: %d units exceeds cap %d", len(units), max_units)
        return text

    matrix = build_similarity_matrix([tokenize(u) for u in units])
    scores = rank_sentences(matrix, iterations=iterations, damping=damping)
    return "\n\n".join(select_units(units, scores, ratio))


def summarize(
    messages: Sequence[Message],
    ratio: float = DEFAULT_RATIO,
    *,
    iterations: int = DEFAULT_ITERATIONS,
    damping: float = DEFAULT_DAMPING,
    max_units: Optional[int] = None,
) -> List[Message]:
    """Compress assistant replies one by one; user messages pass through untouched."""
    out: List[Message] = []
    for msg in messages:
        if msg.role != "assistant":
            out.append(msg)
            continue
        content = summarize_text(
            msg.content,
            ratio,
            iterations=iterations,
            damping=damping,
            max_units=max_units,
        )
        out.append(Message(role=msg.role, content=content))
    return out
