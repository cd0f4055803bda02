from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional

from threadcapture.config import settings
from .interfaces import CapturedSession, Message, SnapshotProbe, TranscriptStore
from .probe import ProbeError
from .reconciler import ReconcileContext, load_history, reconcile
from .session_store import build_session_fields, new_session, utc_now_iso

logger = logging.getLogger(__name__)


class CaptureService:
    """Ingress service: polls the probe and folds each snapshot into the thread store."""

    def __init__(
        self,
        probe: SnapshotProbe,
        store: TranscriptStore,
        *,
        context: ReconcileContext | None = None,
        on_captured: Optional[Callable[[str], None]] = None,
        poll_interval: float = settings.POLL_INTERVAL_SECONDS,
        initial_delay: float = settings.INITIAL_DELAY_SECONDS,
    ) -> None:
        self.probe = probe
        self.store = store
        self.context = context or ReconcileContext()
        self.on_captured = on_captured
        self.poll_interval = poll_interval
        self.initial_delay = initial_delay
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def enable(self) -> None:
        self.context.enable()
        logger.info("[CAPTURE] Enabled")

    def disable(self) -> None:
        self.context.disable()
        logger.info("[CAPTURE] Disabled")

    def reset(self) -> None:
        self.context.reset()

    def stop(self) -> None:
        self._running = False

    def capture_once(self) -> str | None:
        """Take one snapshot and store it. Returns the session id when something changed."""
        if not self.context.capturing:
            return None

        result = self.probe.capture()
        if result is None or not result.found or not result.fragments:
            return None

        workbook = result.workbook_name or settings.UNKNOWN_WORKBOOK
        existing = self.store.get_active_by_workbook(workbook)
        history = load_history(existing.request_body) if existing else None
        previous = history.messages if history else []

        merged = reconcile(previous, result.fragments, self.context)
        if merged is None:
            return None

        if existing is not None and merged == previous and history.valid:
            logger.debug("[CAPTURE] Snapshot for %s added nothing", workbook)
            return None

        try:
            session = self._write(workbook, existing, merged)
        except Exception:
            # Unstored snapshot must be retried on the next tick.
            self.context.reset()
            raise

        if existing is None:
            logger.info("[CAPTURE] New thread for %s: %d messages", workbook, len(merged))
        else:
            logger.info(
                "[CAPTURE] Merged thread for %s: existing=%d final=%d",
                workbook,
                len(previous),
                len(merged),
            )

        if self.on_captured is not None:
            self.on_captured(session.id)
        return session.id

    def _write(
        self,
        workbook: str,
        existing: CapturedSession | None,
        merged: List[Message],
    ) -> CapturedSession:
        if existing is None:
            session = new_session(workbook, merged)
            self.store.insert(session)
            return session

        session = replace(existing, captured_at=utc_now_iso(), **build_session_fields(merged))
        self.store.update(session)
        return session

    def run(self, *, max_ticks: int | None = None) -> None:
        """Poll until ``stop()``, Ctrl-C, or ``max_ticks`` ticks have run."""
        self._running = True
        logger.info("[CAPTURE] Starting capture (every %ss)", self.poll_interval)
        time.sleep(self.initial_delay)

        ticks = 0
        while self._running:
            try:
                self.capture_once()
            except KeyboardInterrupt:
                logger.info("[CAPTURE] Stopped by user.")
                break
            except ProbeError as exc:
                logger.warning("[CAPTURE] Probe failed: %s", exc)
            except Exception as exc:
                logger.exception("[CAPTURE] Tick failed: %s", exc)

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            try:
                time.sleep(self.poll_interval)
            except KeyboardInterrupt:
                logger.info("[CAPTURE] Stopped by user.")
                break

        self._running = False
        logger.info("[CAPTURE] Stopped")
