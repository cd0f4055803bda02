from __future__ import annotations

import json
import logging
import re
from typing import List, Optional, Sequence

from threadcapture.config import settings
from .interfaces import ROLES, Message
from .lotl_client import LotLClient
from .summarizer import summarize

logger = logging.getLogger(__name__)

_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

SUMMARY_PROMPT = """You are summarizing a conversation between a user and an assistant working in a spreadsheet. Your goal is to compress this conversation while preserving all important context, decisions, data insights, and any code or formulas mentioned.

Rules:
1. Keep user messages short but preserve their intent
2. For assistant responses: Keep key findings, conclusions, numbers, and any code/formulas
3. Remove verbose explanations and filler text
4. Preserve the conversation structure (alternating user/assistant)
5. Output format: Return ONLY a JSON array of messages like [{{"role": "user", "content": "..."}}, {{"role": "assistant", "content": "..."}}]
6. Target ~{percent}% of the original length while keeping all critical information

Conversation to summarize:

{conversation}

Return ONLY the JSON array, no other text:"""


def build_prompt(messages: Sequence[Message], ratio: float = settings.SUMMARY_RATIO) -> str:
    conversation = "\n\n---\n\n".join(f"[{m.role.upper()}]: {m.content}" for m in messages)
    return SUMMARY_PROMPT.format(percent=round(ratio * 100), conversation=conversation)


def parse_reply(text: str) -> Optional[List[Message]]:
    """First JSON array in the reply, if every item is a well-formed message."""
    match = _JSON_ARRAY_RE.search(text or "")
    if not match:
        logger.warning("[SUMMARY] No JSON array found in model reply")
        return None
    try:
        items = json.loads(match.group(0))
    except ValueError as exc:
        logger.warning("[SUMMARY] Model reply is not valid JSON: %s", exc)
        return None
    if not isinstance(items, list):
        return None

    out: List[Message] = []
    for item in items:
        if not isinstance(item, dict):
            return None
        role, content = item.get("role"), item.get("content")
        if role not in ROLES or not isinstance(content, str) or not content:
            return None
        out.append(Message(role=role, content=content))
    return out


class RemoteSummarizer:
    """LLM-backed conversation compression. Every failure resolves to None."""

    def __init__(
        self,
        provider: str = settings.SUMMARY_PROVIDER,
        *,
        api_key: str | None = None,
        model: str = settings.ANTHROPIC_MODEL,
        lotl_client: LotLClient | None = None,
    ) -> None:
        self.provider = provider
        self.api_key = api_key if api_key is not None else settings.ANTHROPIC_API_KEY
        self.model = model
        self._lotl = lotl_client

    @property
    def enabled(self) -> bool:
        if self.provider == "anthropic":
            return bool(self.api_key)
        return self.provider == "lotl"

    def summarize(
        self, messages: Sequence[Message], ratio: float = settings.SUMMARY_RATIO
    ) -> Optional[List[Message]]:
        if not self.enabled or not messages:
            return None

        prompt = build_prompt(messages, ratio)
        try:
            if self.provider == "anthropic":
                reply = self._anthropic_reply(prompt)
            else:
                reply = self._lotl_reply(prompt)
        except Exception as exc:
            logger.error("[SUMMARY] %s request failed: %s", self.provider, exc)
            return None

        if not reply:
            logger.error("[SUMMARY] Empty reply from %s", self.provider)
            return None
        return parse_reply(reply)

    def _anthropic_reply(self, prompt: str) -> str:
        import anthropic

        client = anthropic.Anthropic(api_key=self.api_key)
        resp = client.messages.create(
            model=self.model,
            max_tokens=settings.ANTHROPIC_MAX_TOKENS,
            messages=[{"role": "user", "content": prompt}],
        )
        if not resp.content:
            return ""
        return (getattr(resp.content[0], "text", "") or "").strip()

    def _lotl_reply(self, prompt: str) -> str:
        if self._lotl is None:
            self._lotl = LotLClient()
        return self._lotl.chat(prompt).strip()

    def check(self) -> bool:
        """True when the provider answers: the API key is accepted or the controller is up."""
        if self.provider == "anthropic":
            return bool(self.api_key) and check_api_key(self.api_key, self.model)
        if self.provider == "lotl":
            if self._lotl is None:
                self._lotl = LotLClient()
            return self._lotl.is_available()
        return False


def check_api_key(api_key: str, model: str = settings.ANTHROPIC_MODEL) -> bool:
    """True when a minimal request with ``api_key`` succeeds."""
    import anthropic

    try:
        anthropic.Anthropic(api_key=api_key).messages.create(
            model=model,
            max_tokens=10,
            messages=[{"role": "user", "content": "Hi"}],
        )
        return True
    except anthropic.APIError:
        return False


def summarize_with_fallback(
    messages: Sequence[Message],
    ratio: float = settings.SUMMARY_RATIO,
    *,
    remote: RemoteSummarizer | None = None,
) -> List[Message]:
    """Try the remote model first, then the local extractive summarizer."""
    if remote is not None:
        result = remote.summarize(messages, ratio)
        if result is not None:
            logger.info("[SUMMARY] Remote summary via %s", remote.provider)
            return result
        logger.info("[SUMMARY] Falling back to extractive summary")

    return summarize(
        messages,
        ratio,
        iterations=settings.RANK_ITERATIONS,
        damping=settings.RANK_DAMPING,
        max_units=settings.SUMMARY_MAX_UNITS or None,
    )
