"""
threadcapture - canonical transcripts from repeated conversation snapshots

Usage:
    from threadcapture import reconcile, summarize, Fragment, Message

    transcript = reconcile([], [
        Fragment("user", "How do I total column B?", 10),
        Fragment("assistant", "Use =SUM(B:B).", 40),
    ]) or []

    short = summarize(transcript, ratio=0.3)
"""

__version__ = "1.0.0"

from .services.interfaces import CaptureResult, Fragment, Message
from .services.reconciler import ReconcileContext, merge_messages, reconcile
from .services.summarizer import summarize, summarize_text

__all__ = [
    "CaptureResult",
    "Fragment",
    "Message",
    "ReconcileContext",
    "merge_messages",
    "reconcile",
    "summarize",
    "summarize_text",
]
