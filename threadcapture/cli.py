"""
threadcapture CLI

Usage:
    threadcapture run                     Poll the screen reader and keep threads up to date
    threadcapture ingest snapshot.json    Fold one saved snapshot into the store
    threadcapture list [--search TEXT]    List captured threads
    threadcapture show ID                 Print a thread
    threadcapture summarize ID            Print a compressed thread
    threadcapture export ID out.json      Write a thread to disk
    threadcapture delete ID | clear --yes
    threadcapture status [--check]        Show settings; --check tests the summary provider
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from threadcapture import __version__
from threadcapture.config import settings
from threadcapture.services.capture_service import CaptureService
from threadcapture.services.exporter import write_export
from threadcapture.services.instance_lock import InstanceAlreadyRunning, acquire_instance_lock
from threadcapture.services.interfaces import CapturedSession, Message
from threadcapture.services.probe import CommandProbe, JsonFileProbe, ProbeError
from threadcapture.services.reconciler import load_history
from threadcapture.services.remote_summarizer import RemoteSummarizer, summarize_with_fallback
from threadcapture.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    settings.LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    if any(isinstance(h, logging.FileHandler) for h in root_logger.handlers):
        return

    level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(settings.LOG_FILE, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def _db_path(args) -> Path:
    return Path(args.db) if args.db else settings.DB_PATH


def _open_store(args) -> SessionStore:
    store = SessionStore(_db_path(args))
    store.initialize()
    return store


def _require_session(store: SessionStore, session_id: str) -> CapturedSession:
    session = store.get(session_id)
    if session is None:
        print(f"Session not found: {session_id}", file=sys.stderr)
        sys.exit(1)
    return session


def _print_messages(messages: List[Message]) -> None:
    for msg in messages:
        print(f"[{msg.role.upper()}]")
        print(msg.content)
        print()


def cmd_run(args):
    """Poll the configured screen reader until interrupted."""
    command = args.command_line or settings.CAPTURE_COMMAND
    if not command:
        print("No capture command configured (set CAPTURE_COMMAND or pass --command)", file=sys.stderr)
        sys.exit(1)

    store = _open_store(args)
    service = CaptureService(
        CommandProbe(command),
        store,
        poll_interval=args.interval,
    )
    try:
        with acquire_instance_lock(store.db_path):
            service.run(max_ticks=args.ticks)
    except InstanceAlreadyRunning as exc:
        logger.error(str(exc))
        sys.exit(1)


def cmd_ingest(args):
    """Fold one saved snapshot into the store."""
    store = _open_store(args)
    service = CaptureService(JsonFileProbe(Path(args.file), workbook_name=args.workbook), store)
    try:
        session_id = service.capture_once()
    except ProbeError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)
    print(session_id if session_id else "No update")


def cmd_list(args):
    store = _open_store(args)
    if args.search:
        sessions = store.search(args.search)
    elif args.workbook:
        sessions = store.list_by_workbook(args.workbook)
    else:
        sessions = store.list_all()

    if args.json:
        print(json.dumps([s.__dict__ for s in sessions], indent=2, ensure_ascii=False))
        return
    for s in sessions:
        preview = (s.user_prompt_preview or "").replace("\n", " ")[:60]
        print(f"{s.id}  {s.captured_at}  {s.workbook_name or '-'}  {preview}")


def cmd_show(args):
    store = _open_store(args)
    session = _require_session(store, args.id)
    messages = load_history(session.request_body).messages
    if args.json:
        print(json.dumps([m.to_dict() for m in messages], indent=2, ensure_ascii=False))
    else:
        _print_messages(messages)


def cmd_summarize(args):
    store = _open_store(args)
    session = _require_session(store, args.id)
    messages = load_history(session.request_body).messages
    remote = RemoteSummarizer() if args.remote else None
    compressed = summarize_with_fallback(messages, args.ratio, remote=remote)
    if args.json:
        print(json.dumps([m.to_dict() for m in compressed], indent=2, ensure_ascii=False))
    else:
        _print_messages(compressed)


def cmd_export(args):
    store = _open_store(args)
    session = _require_session(store, args.id)
    messages = load_history(session.request_body).messages
    if args.summarized:
        messages = summarize_with_fallback(messages, args.ratio)
    write_export(Path(args.path), session, messages)
    print(f"Exported {session.id} -> {args.path}")


def cmd_delete(args):
    store = _open_store(args)
    if not store.delete(args.id):
        print(f"Session not found: {args.id}", file=sys.stderr)
        sys.exit(1)
    print(f"Deleted {args.id}")


def cmd_clear(args):
    if not args.yes:
        print("Refusing to clear all sessions without --yes", file=sys.stderr)
        sys.exit(1)
    store = _open_store(args)
    store.clear()
    print("All sessions cleared")


def cmd_status(args):
    store = _open_store(args)
    print(f"threadcapture {__version__}")
    print(f"  db:               {store.db_path}")
    print(f"  sessions:         {store.count()}")
    print(f"  capture command:  {'set' if settings.CAPTURE_COMMAND else 'not set'}")
    print(f"  poll interval:    {settings.POLL_INTERVAL_SECONDS}s")
    print(f"  summary provider: {settings.SUMMARY_PROVIDER}")

    if args.check:
        remote = RemoteSummarizer()
        if not remote.enabled:
            state = "not configured"
        elif remote.check():
            state = "ok"
        else:
            state = "unreachable or key rejected"
        print(f"  provider check:   {state}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threadcapture",
        description="Capture and compress spreadsheet assistant conversations",
    )
    parser.add_argument("--db", help=f"Session database (default: {settings.DB_PATH})")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    p_run = subparsers.add_parser("run", help="Poll the screen reader")
    p_run.add_argument("--command", dest="command_line", help="Screen-reader command (overrides CAPTURE_COMMAND)")
    p_run.add_argument("--interval", type=float, default=settings.POLL_INTERVAL_SECONDS, help="Seconds between captures")
    p_run.add_argument("--ticks", type=int, default=None, help="Stop after this many captures")
    p_run.set_defaults(func=cmd_run)

    p_ingest = subparsers.add_parser("ingest", help="Fold a saved snapshot into the store")
    p_ingest.add_argument("file", help="Snapshot JSON file")
    p_ingest.add_argument("--workbook", help="Override the workbook name")
    p_ingest.set_defaults(func=cmd_ingest)

    p_list = subparsers.add_parser("list", help="List threads")
    p_list.add_argument("--search", "-s", help="Match prompt/response text")
    p_list.add_argument("--workbook", "-w", help="Only threads for this workbook")
    p_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    p_list.set_defaults(func=cmd_list)

    p_show = subparsers.add_parser("show", help="Print a thread")
    p_show.add_argument("id")
    p_show.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    p_show.set_defaults(func=cmd_show)

    p_sum = subparsers.add_parser("summarize", help="Print a compressed thread")
    p_sum.add_argument("id")
    p_sum.add_argument("--ratio", "-r", type=float, default=settings.SUMMARY_RATIO, help="Share of sentences to keep")
    p_sum.add_argument("--remote", action="store_true", help="Try the configured LLM provider first")
    p_sum.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    p_sum.set_defaults(func=cmd_summarize)

    p_export = subparsers.add_parser("export", help="Write a thread to a JSON file")
    p_export.add_argument("id")
    p_export.add_argument("path")
    p_export.add_argument("--summarized", action="store_true", help="Export the compressed thread")
    p_export.add_argument("--ratio", "-r", type=float, default=settings.SUMMARY_RATIO)
    p_export.set_defaults(func=cmd_export)

    p_delete = subparsers.add_parser("delete", help="Delete a thread")
    p_delete.add_argument("id")
    p_delete.set_defaults(func=cmd_delete)

    p_clear = subparsers.add_parser("clear", help="Delete every thread")
    p_clear.add_argument("--yes", action="store_true", help="Confirm")
    p_clear.set_defaults(func=cmd_clear)

    p_status = subparsers.add_parser("status", help="Show configuration and counts")
    p_status.add_argument("--check", action="store_true", help="Test the summary provider (API key or LotL controller)")
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _configure_logging()
    args.func(args)


if __name__ == "__main__":
    main()
