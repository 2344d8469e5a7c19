from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class Watermark:
    # Timestamp cursor: arrival time of the last persisted message
    received_at: Optional[datetime] = None
    # Identifier cursor, used instead of the timestamp when the transport has one
    last_uid: Optional[int] = None
    uidvalidity: Optional[int] = None
    # Identifiers already persisted at exactly received_at (tie-break)
    boundary_ids: frozenset[str] = field(default_factory=frozenset)

    def advanced_to(self, other: Watermark) -> Watermark:
        """Merge ``other`` into this watermark without moving any cursor backwards."""
        merged = self

        if other.received_at is not None:
            if self.received_at is None or other.received_at > self.received_at:
                merged = replace(merged, received_at=other.received_at, boundary_ids=other.boundary_ids)
            elif other.received_at == self.received_at:
                merged = replace(merged, boundary_ids=self.boundary_ids | other.boundary_ids)

        if other.last_uid is not None:
            if other.uidvalidity is not None and other.uidvalidity != self.uidvalidity:
                # New UID space: the old last_uid means nothing there
                merged = replace(merged, last_uid=other.last_uid, uidvalidity=other.uidvalidity)
            elif self.last_uid is None or other.last_uid > self.last_uid:
                merged = replace(merged, last_uid=other.last_uid)

        return merged


class WatermarkStore(Protocol):
    def read(self, mailbox: str) -> Optional[Watermark]: ...
    def advance(self, mailbox: str, watermark: Watermark) -> None: ...
