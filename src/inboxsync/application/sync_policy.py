"""Selection and disposition policy for a sync pass.

The policy decides which messages a pass asks for and what happens to a
message once its record has landed. Together these fix the delivery
guarantee:

* ``explicit-ids`` + ``flag:<name>``: a message that was persisted and
  flagged is never selected again, and one that was persisted but not yet
  flagged hits the sink's duplicate check. Passes are re-entrant
  (``idempotent``).
* every other combination is ``at-least-once``: a crash between persisting
  a record and disposing of its message, or between disposal and the
  watermark write, leaves the message to be seen again next pass, where it
  lands on the duplicate-detection path.

In ``since-watermark`` mode a failed message that is older than a later
successful one stays in the mailbox but is behind the watermark, so it is
not retried automatically. Use ``explicit-ids`` when every message must be
retried until it lands. POP3 listings carry no timestamp, so there the
baseline alone decides and failed messages are retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from inboxsync.application.ports.message_source import (
    Disposition,
    DispositionAction,
    RawMessage,
    SelectionMode,
    SelectionQuery,
    to_utc,
)
from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.domain.errors import ConfigError
from inboxsync.domain.models import Guarantee

DEFAULT_MAX_MESSAGES = 50


@dataclass(frozen=True)
class SyncPolicy:
    selection: SelectionMode = SelectionMode.SINCE_WATERMARK
    disposition: Disposition = field(
        default_factory=lambda: Disposition(DispositionAction.FLAG, "\\Seen")
    )
    max_messages: int = DEFAULT_MAX_MESSAGES

    def __post_init__(self) -> None:
        if self.max_messages < 1:
            raise ConfigError(f"max_messages must be at least 1, got {self.max_messages}")

    @classmethod
    def from_strings(cls, selection: str, disposition: str, max_messages: int) -> SyncPolicy:
        try:
            mode = SelectionMode(selection.strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in SelectionMode)
            raise ConfigError(f"Invalid selection mode {selection!r}: expected one of {choices}") from None
        return cls(selection=mode, disposition=Disposition.parse(disposition), max_messages=max_messages)

    @property
    def guarantee(self) -> Guarantee:
        if (
            self.selection is SelectionMode.EXPLICIT_IDS
            and self.disposition.action is DispositionAction.FLAG
        ):
            return Guarantee.IDEMPOTENT
        return Guarantee.AT_LEAST_ONCE

    @property
    def needs_baseline(self) -> bool:
        """Whether an absent watermark must be anchored to "now" instead of listing."""
        return self.selection is SelectionMode.SINCE_WATERMARK

    def query(self, watermark: Optional[Watermark]) -> SelectionQuery:
        exclude_flag = None
        if (
            self.selection is SelectionMode.EXPLICIT_IDS
            and self.disposition.action is DispositionAction.FLAG
        ):
            exclude_flag = self.disposition.target
        return SelectionQuery(
            mode=self.selection,
            limit=self.max_messages,
            watermark=watermark,
            exclude_flag=exclude_flag,
        )

    def admits(self, message: RawMessage, watermark: Optional[Watermark]) -> bool:
        """Re-check the since-watermark predicate on a listed message.

        Transports filter coarsely (IMAP SINCE is day-granular), so the engine
        applies the exact predicate itself.
        """
        if self.selection is not SelectionMode.SINCE_WATERMARK:
            return True
        return after_watermark(message, watermark)


def after_watermark(message: RawMessage, watermark: Optional[Watermark]) -> bool:
    """Whether a message lies beyond the watermark.

    The identifier cursor wins when both sides share a UIDVALIDITY. Otherwise
    timestamps decide, and a message at exactly the boundary timestamp is
    admitted unless its identifier was already persisted there. A message
    without an arrival timestamp (POP3) is admitted unless its identifier is
    in ``boundary_ids``.
    """
    if watermark is None:
        return True

    if (
        message.uid is not None
        and watermark.last_uid is not None
        and message.uidvalidity is not None
        and message.uidvalidity == watermark.uidvalidity
    ):
        return message.uid > watermark.last_uid

    if watermark.received_at is None or message.received_at is None:
        # No comparable timestamp: only identifiers the watermark covers are skipped
        return message.identifier not in watermark.boundary_ids

    received_at = to_utc(message.received_at)
    boundary = to_utc(watermark.received_at)
    if received_at > boundary:
        return True
    if received_at == boundary:
        return message.identifier not in watermark.boundary_ids
    return False


class WatermarkTracker:
    """Collect watermark candidates from persisted messages during a pass."""

    def __init__(self, start: Optional[Watermark]) -> None:
        self.start = start
        self._candidate = Watermark()
        self._observed = 0

    @property
    def observed(self) -> int:
        return self._observed

    def observe(self, message: RawMessage) -> None:
        """Call only after the message's record durably landed."""
        self._observed += 1
        candidate = Watermark(
            received_at=to_utc(message.received_at) if message.received_at else None,
            last_uid=message.uid,
            uidvalidity=message.uidvalidity,
            boundary_ids=frozenset({message.identifier}),
        )
        self._candidate = self._candidate.advanced_to(candidate)

    def result(self) -> Optional[Watermark]:
        """The merged watermark, or the starting one if nothing was persisted."""
        if self._observed == 0:
            return self.start
        if self.start is None:
            return self._candidate
        return self.start.advanced_to(self._candidate)
