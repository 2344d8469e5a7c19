from __future__ import annotations
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, Optional, Protocol

from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.domain.errors import ConfigError


@dataclass(frozen=True)
class RawMessage:
    # identifier: IMAP UID or POP3 UIDL, stable within a session only
    identifier: str
    mailbox: str
    uid: Optional[int] = None
    uidvalidity: Optional[int] = None
    received_at: Optional[datetime] = None
    sender: Optional[str] = None
    subject: Optional[str] = None
    message_id: Optional[str] = None
    body: Optional[bytes] = None  # full RFC822 bytes, None until fetched


class SelectionMode(str, Enum):
    SINCE_WATERMARK = "since-watermark"
    EXPLICIT_IDS = "explicit-ids"
    FULL_SCAN_CAPPED = "full-scan-capped"


class DispositionAction(str, Enum):
    DELETE = "delete"
    MOVE = "move"
    FLAG = "flag"


@dataclass(frozen=True)
class Disposition:
    action: DispositionAction
    target: Optional[str] = None  # destination folder or flag name

    @classmethod
    def parse(cls, value: str) -> Disposition:
        """Parse ``delete``, ``move:<destination>`` or ``flag:<name>``."""
        raw = (value or "").strip()
        action, _, target = raw.partition(":")
        action = action.strip().lower()
        target = target.strip()

        if action == DispositionAction.DELETE.value and not target:
            return cls(DispositionAction.DELETE)
        if action in (DispositionAction.MOVE.value, DispositionAction.FLAG.value) and target:
            return cls(DispositionAction(action), target)
        raise ConfigError(
            f"Invalid disposition {value!r}: expected delete, move:<destination> or flag:<name>"
        )

    def __str__(self) -> str:
        if self.target:
            return f"{self.action.value}:{self.target}"
        return self.action.value


@dataclass(frozen=True)
class SelectionQuery:
    mode: SelectionMode
    limit: int
    watermark: Optional[Watermark] = None
    # explicit-ids with a flag disposition skips messages already carrying the flag
    exclude_flag: Optional[str] = None


class MailboxSession(Protocol):
    def snapshot_cursor(self) -> Watermark: ...
    def list_messages(self, query: SelectionQuery) -> Iterator[RawMessage]: ...
    def fetch(self, message: RawMessage) -> RawMessage: ...
    def dispose(self, message: RawMessage, disposition: Disposition) -> None: ...


class MessageSource(Protocol):
    provider: str
    mailbox: str

    def session(self) -> AbstractContextManager[MailboxSession]: ...


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
