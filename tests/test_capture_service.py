"""Tests for the capture poller: snapshot -> reconcile -> store."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional
from unittest.mock import MagicMock, patch

import pytest

from threadcapture.services.capture_service import CaptureService
from threadcapture.services.interfaces import CaptureResult, Fragment, Message
from threadcapture.services.probe import ProbeError
from threadcapture.services.reconciler import dump_history, load_history
from threadcapture.services.session_store import SessionStore, new_session


class FakeProbe:
    """Returns queued results in order, then keeps returning the last one."""

    def __init__(self, *results: Optional[CaptureResult]) -> None:
        self.results: List[Optional[CaptureResult]] = list(results)
        self.calls = 0

    def capture(self) -> Optional[CaptureResult]:
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0] if self.results else None


def snapshot(*pairs, workbook: str = "Budget.xlsx") -> CaptureResult:
    return CaptureResult(
        found=True,
        workbook_name=workbook,
        fragments=[Fragment(role, text, float(i)) for i, (role, text) in enumerate(pairs)],
    )


FIRST = snapshot(("user", "Total the revenue column"), ("assistant", "Adding a SUM"))
GROWN = snapshot(
    ("user", "Total the revenue column"),
    ("assistant", "Adding a SUM formula in C41 now."),
)


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    s = SessionStore(tmp_path / "sessions.db", retries=1, backoff_seconds=0.0)
    s.initialize()
    return s


def _messages(store: SessionStore, workbook: str = "Budget.xlsx") -> List[Message]:
    return load_history(store.get_active_by_workbook(workbook).request_body).messages


# ---------------------------------------------------------------------------
# capture_once
# ---------------------------------------------------------------------------

class TestCaptureOnce:
    def test_first_snapshot_creates_thread(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST), store)

        session_id = service.capture_once()

        assert session_id is not None
        assert store.count() == 1
        assert _messages(store) == [
            Message("user", "Total the revenue column"),
            Message("assistant", "Adding a SUM"),
        ]

    def test_growing_reply_updates_same_thread(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST, GROWN), store)

        first_id = service.capture_once()
        second_id = service.capture_once()

        assert first_id == second_id
        assert store.count() == 1
        assert _messages(store)[-1] == Message("assistant", "Adding a SUM formula in C41 now.")

    def test_unchanged_snapshot_is_skipped(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST), store)
        service.capture_once()
        store_update = MagicMock(wraps=store.update)

        with patch.object(store, "update", store_update):
            assert service.capture_once() is None
        store_update.assert_not_called()

    def test_reprocessed_snapshot_with_nothing_new_is_not_written(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST), store)
        service.capture_once()
        service.reset()

        with patch.object(store, "update") as update:
            assert service.capture_once() is None
        update.assert_not_called()

    def test_threads_are_per_workbook(self, store: SessionStore) -> None:
        other = snapshot(("user", "Forecast next year"), ("assistant", "Sure"), workbook="Forecast.xlsx")
        service = CaptureService(FakeProbe(FIRST, other), store)

        service.capture_once()
        service.capture_once()

        assert store.count() == 2
        assert _messages(store, "Forecast.xlsx")[0] == Message("user", "Forecast next year")

    def test_missing_workbook_name_uses_placeholder(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(snapshot(("user", "Hi there"), ("assistant", "Hello"), workbook="")), store)
        service.capture_once()
        assert store.get_active_by_workbook("Unknown") is not None

    @pytest.mark.parametrize(
        "result",
        [None, CaptureResult(found=False), CaptureResult(found=True, workbook_name="Budget.xlsx")],
    )
    def test_nothing_visible(self, store: SessionStore, result) -> None:
        service = CaptureService(FakeProbe(result), store)
        assert service.capture_once() is None
        assert store.count() == 0

    def test_one_sided_snapshot_is_skipped(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(snapshot(("user", "Anyone there?"))), store)
        assert service.capture_once() is None
        assert store.count() == 0

    def test_disabled_does_not_probe(self, store: SessionStore) -> None:
        probe = FakeProbe(FIRST)
        service = CaptureService(probe, store)
        service.disable()

        assert service.capture_once() is None
        assert probe.calls == 0

        service.enable()
        assert service.capture_once() is not None

    def test_corrupt_history_is_replaced(self, store: SessionStore) -> None:
        broken = new_session("Budget.xlsx", [])
        broken.request_body = "{not json"
        store.insert(broken)
        service = CaptureService(FakeProbe(FIRST), store)

        assert service.capture_once() == broken.id
        assert len(_messages(store)) == 2

    def test_write_failure_allows_retry(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST), store)

        with patch.object(store, "insert", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                service.capture_once()
        assert service.context.last_digest == ""

        assert service.capture_once() is not None
        assert store.count() == 1

    def test_callback_receives_session_id(self, store: SessionStore) -> None:
        seen: List[str] = []
        service = CaptureService(FakeProbe(FIRST), store, on_captured=seen.append)

        session_id = service.capture_once()

        assert seen == [session_id]

    def test_existing_history_is_merged_not_replaced(self, store: SessionStore) -> None:
        earlier = [Message("user", "Sort by date please"), Message("assistant", "Sorted ascending.")]
        session = new_session("Budget.xlsx", earlier)
        store.insert(session)
        assert store.get(session.id).request_body == dump_history(earlier)

        CaptureService(FakeProbe(FIRST), store).capture_once()

        messages = _messages(store)
        assert messages[:2] == earlier
        assert len(messages) == 4


# ---------------------------------------------------------------------------
# run loop
# ---------------------------------------------------------------------------

class TestRunLoop:
    def test_runs_requested_ticks(self, store: SessionStore) -> None:
        probe = FakeProbe(FIRST, GROWN)
        service = CaptureService(probe, store, poll_interval=0.5, initial_delay=0.1)

        with patch("threadcapture.services.capture_service.time.sleep") as sleep:
            service.run(max_ticks=3)

        assert probe.calls == 3
        assert store.count() == 1
        assert not service.is_running
        assert sleep.call_args_list[0].args == (0.1,)

    def test_probe_errors_do_not_stop_loop(self, store: SessionStore) -> None:
        probe = MagicMock()
        probe.capture.side_effect = [ProbeError("reader crashed"), FIRST]
        service = CaptureService(probe, store)

        with patch("threadcapture.services.capture_service.time.sleep"):
            service.run(max_ticks=2)

        assert probe.capture.call_count == 2
        assert store.count() == 1

    def test_unexpected_errors_are_logged(self, store: SessionStore, caplog) -> None:
        probe = MagicMock()
        probe.capture.side_effect = ValueError("boom")
        service = CaptureService(probe, store)

        with patch("threadcapture.services.capture_service.time.sleep"):
            service.run(max_ticks=2)

        assert probe.capture.call_count == 2
        assert "Tick failed" in caplog.text

    def test_keyboard_interrupt_stops(self, store: SessionStore) -> None:
        probe = MagicMock()
        probe.capture.side_effect = KeyboardInterrupt
        service = CaptureService(probe, store)

        with patch("threadcapture.services.capture_service.time.sleep"):
            service.run()

        assert probe.capture.call_count == 1
        assert not service.is_running

    def test_stop_from_callback(self, store: SessionStore) -> None:
        service = CaptureService(FakeProbe(FIRST), store)
        service.on_captured = lambda _id: service.stop()

        with patch("threadcapture.services.capture_service.time.sleep"):
            service.run(max_ticks=10)

        assert store.count() == 1
        assert not service.is_running
