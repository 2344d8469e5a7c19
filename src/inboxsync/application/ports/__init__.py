"""Ports: the capabilities the sync engine needs from the outside world."""

from inboxsync.application.ports.message_source import (
    Disposition,
    DispositionAction,
    MailboxSession,
    MessageSource,
    RawMessage,
    SelectionMode,
    SelectionQuery,
)
from inboxsync.application.ports.record_sink import RecordSink
from inboxsync.application.ports.watermark_store import Watermark, WatermarkStore

__all__ = [
    "Disposition",
    "DispositionAction",
    "MailboxSession",
    "MessageSource",
    "RawMessage",
    "RecordSink",
    "SelectionMode",
    "SelectionQuery",
    "Watermark",
    "WatermarkStore",
]
