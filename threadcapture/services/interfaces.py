from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

ROLES = ("user", "assistant")


@dataclass(frozen=True)
class Fragment:
    """Raw text observed on screen; position only orders fragments within one snapshot."""

    role: str
    text: str
    position: float = 0.0


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ConversationSnapshot:
    messages: List[Message]
    digest: str


@dataclass(frozen=True)
class HistoryLoad:
    """Result of parsing persisted history. ``valid`` is False when the stored
    body did not match the expected shape and an empty transcript was substituted."""

    messages: List[Message] = field(default_factory=list)
    valid: bool = True


@dataclass
class CaptureResult:
    found: bool
    workbook_name: str = ""
    fragments: List[Fragment] = field(default_factory=list)


@dataclass
class CapturedSession:
    id: str
    workbook_name: Optional[str]
    captured_at: str
    request_body: str
    response_body: str
    model: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    user_prompt: Optional[str] = None
    assistant_response: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "CapturedSession":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: row[k] for k in row.keys() if k in known})


@dataclass(frozen=True)
class SessionSummary:
    id: str
    workbook_name: Optional[str]
    captured_at: str
    model: Optional[str]
    input_tokens: Optional[int]
    output_tokens: Optional[int]
    user_prompt_preview: Optional[str]


class SnapshotProbe(Protocol):
    def capture(self) -> Optional[CaptureResult]:
        """Take one look at the conversation pane. None when nothing is visible."""
        ...


class TranscriptStore(Protocol):
    def get_active_by_workbook(self, workbook_name: str) -> Optional[CapturedSession]:
        ...

    def insert(self, session: CapturedSession) -> None:
        ...

    def update(self, session: CapturedSession) -> None:
        ...
