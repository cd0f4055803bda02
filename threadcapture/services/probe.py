"""Snapshot probes: adapters that turn a screen-reader payload into fragments.

The screen reader itself is platform specific and lives outside this package.
It prints a payload shaped like::

    {"found": true, "workbookName": "Budget.xlsx",
     "messages": [{"role": "user", "content": "...", "y": 120.0}, ...]}

``CommandProbe`` runs it and expects that JSON base64-encoded on stdout (which
keeps control characters in captured text from breaking the pipe).
``JsonFileProbe`` reads the same payload as plain JSON from disk.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from threadcapture.config import settings
from threadcapture.utils.text import is_ui_element
from .interfaces import ROLES, CaptureResult, Fragment

logger = logging.getLogger(__name__)

# User text shorter than this is almost always pane chrome.
MIN_USER_FRAGMENT_CHARS = 16


class ProbeError(RuntimeError):
    """The screen reader could not be run or returned an unusable payload."""


def parse_capture_payload(data: Any) -> Optional[CaptureResult]:
    if not isinstance(data, dict) or not data.get("found"):
        return None

    fragments: List[Fragment] = []
    for item in data.get("messages") or []:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        text = item.get("content")
        if role not in ROLES or not isinstance(text, str):
            continue
        if role == "user" and (len(text) < MIN_USER_FRAGMENT_CHARS or is_ui_element(text.strip())):
            continue
        try:
            position = float(item.get("y") or 0.0)
        except (TypeError, ValueError):
            position = 0.0
        fragments.append(Fragment(role=role, text=text, position=position))

    if not fragments:
        return None

    return CaptureResult(
        found=True,
        workbook_name=str(data.get("workbookName") or "").strip() or settings.UNKNOWN_WORKBOOK,
        fragments=fragments,
    )


def decode_base64_payload(output: str) -> Dict[str, Any]:
    try:
        raw = base64.b64decode(output.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ProbeError("Screen reader output is not base64 JSON") from exc
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ProbeError("Screen reader output is not valid JSON") from exc


class CommandProbe:
    """Runs the configured screen-reader command once per ``capture()``."""

    def __init__(
        self,
        command: str = settings.CAPTURE_COMMAND,
        *,
        timeout: float = settings.CAPTURE_TIMEOUT_SECONDS,
    ) -> None:
        if not command:
            raise ValueError("No capture command configured (set CAPTURE_COMMAND)")
        self.command = command
        self.timeout = timeout

    def capture(self) -> Optional[CaptureResult]:
        try:
            result = subprocess.run(
                shlex.split(self.command),
                capture_output=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProbeError(f"Capture command failed to run: {exc}") from exc

        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise ProbeError(f"Capture command exited with code {result.returncode}: {stderr}")

        output = result.stdout.decode("utf-8", errors="replace").strip()
        if not output:
            return None
        return parse_capture_payload(decode_base64_payload(output))


class JsonFileProbe:
    """Replays a saved capture payload."""

    def __init__(self, path: Path, *, workbook_name: str | None = None) -> None:
        self.path = Path(path)
        self.workbook_name = workbook_name

    def capture(self) -> Optional[CaptureResult]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ProbeError(f"Cannot read capture file {self.path}: {exc}") from exc
        result = parse_capture_payload(data)
        if result is not None and self.workbook_name:
            result.workbook_name = self.workbook_name
        return result
