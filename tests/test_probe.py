"""Tests for screen-reader payload parsing and the probes that produce it."""

from __future__ import annotations

import base64
import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from threadcapture.services.probe import (
    CommandProbe,
    JsonFileProbe,
    ProbeError,
    decode_base64_payload,
    parse_capture_payload,
)

PAYLOAD = {
    "found": True,
    "workbookName": "Budget.xlsx",
    "messages": [
        {"role": "assistant", "content": "Added the totals row.", "y": 240},
        {"role": "user", "content": "Please add a totals row at the bottom", "y": 120},
        {"role": "user", "content": "Copy", "y": 300},
        {"role": "user", "content": "New chat", "y": 10},
        {"role": "system", "content": "ignored entirely here", "y": 5},
    ],
}


def _encoded(data) -> bytes:
    return base64.b64encode(json.dumps(data).encode("utf-8"))


def _completed(stdout: bytes = b"", returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    proc = MagicMock()
    proc.stdout = stdout
    proc.stderr = stderr
    proc.returncode = returncode
    return proc


# ---------------------------------------------------------------------------
# parse_capture_payload
# ---------------------------------------------------------------------------

class TestParseCapturePayload:
    def test_keeps_real_messages(self) -> None:
        result = parse_capture_payload(PAYLOAD)

        assert result.found
        assert result.workbook_name == "Budget.xlsx"
        assert [(f.role, f.text, f.position) for f in result.fragments] == [
            ("assistant", "Added the totals row.", 240.0),
            ("user", "Please add a totals row at the bottom", 120.0),
        ]

    def test_short_assistant_text_is_kept(self) -> None:
        data = {"found": True, "messages": [{"role": "assistant", "content": "Done.", "y": 1}]}
        assert [f.text for f in parse_capture_payload(data).fragments] == ["Done."]

    @pytest.mark.parametrize(
        "data",
        [
            None,
            [],
            {"found": False, "messages": PAYLOAD["messages"]},
            {"found": True, "messages": []},
            {"found": True, "messages": [{"role": "user", "content": "Retry", "y": 1}]},
        ],
    )
    def test_nothing_usable(self, data) -> None:
        assert parse_capture_payload(data) is None

    def test_defaults(self) -> None:
        data = {
            "found": True,
            "workbookName": "   ",
            "messages": [{"role": "assistant", "content": "Hello", "y": "not a number"}],
        }
        result = parse_capture_payload(data)
        assert result.workbook_name == "Unknown"
        assert result.fragments[0].position == 0.0


# ---------------------------------------------------------------------------
# CommandProbe
# ---------------------------------------------------------------------------

class TestCommandProbe:
    def test_requires_command(self) -> None:
        with pytest.raises(ValueError):
            CommandProbe("")

    def test_decodes_base64_output(self) -> None:
        with patch(
            "threadcapture.services.probe.subprocess.run",
            return_value=_completed(_encoded(PAYLOAD) + b"\n"),
        ) as run:
            result = CommandProbe("reader --pane excel", timeout=2.0).capture()

        assert result.workbook_name == "Budget.xlsx"
        assert len(result.fragments) == 2
        args, kwargs = run.call_args
        assert args[0] == ["reader", "--pane", "excel"]
        assert kwargs["timeout"] == 2.0

    def test_empty_output_is_nothing_visible(self) -> None:
        with patch("threadcapture.services.probe.subprocess.run", return_value=_completed(b"  \n")):
            assert CommandProbe("reader").capture() is None

    def test_nonzero_exit(self) -> None:
        with patch(
            "threadcapture.services.probe.subprocess.run",
            return_value=_completed(returncode=2, stderr=b"no window"),
        ):
            with pytest.raises(ProbeError, match="no window"):
                CommandProbe("reader").capture()

    def test_timeout(self) -> None:
        with patch(
            "threadcapture.services.probe.subprocess.run",
            side_effect=subprocess.TimeoutExpired("reader", 1.0),
        ):
            with pytest.raises(ProbeError):
                CommandProbe("reader").capture()

    def test_missing_binary(self) -> None:
        with patch("threadcapture.services.probe.subprocess.run", side_effect=FileNotFoundError("reader")):
            with pytest.raises(ProbeError):
                CommandProbe("reader").capture()

    @pytest.mark.parametrize(
        "output",
        ["%%% not base64 %%%", base64.b64encode(b"{broken json").decode()],
    )
    def test_bad_output(self, output: str) -> None:
        with pytest.raises(ProbeError):
            decode_base64_payload(output)


# ---------------------------------------------------------------------------
# JsonFileProbe
# ---------------------------------------------------------------------------

class TestJsonFileProbe:
    def test_reads_payload(self, tmp_path: Path) -> None:
        path = tmp_path / "capture.json"
        path.write_text(json.dumps(PAYLOAD), encoding="utf-8")

        result = JsonFileProbe(path).capture()

        assert result.workbook_name == "Budget.xlsx"
        assert len(result.fragments) == 2

    def test_workbook_override(self, tmp_path: Path) -> None:
        path = tmp_path / "capture.json"
        path.write_text(json.dumps(PAYLOAD), encoding="utf-8")

        assert JsonFileProbe(path, workbook_name="Other.xlsx").capture().workbook_name == "Other.xlsx"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ProbeError):
            JsonFileProbe(tmp_path / "nope.json").capture()

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "capture.json"
        path.write_text("{nope", encoding="utf-8")
        with pytest.raises(ProbeError):
            JsonFileProbe(path).capture()
