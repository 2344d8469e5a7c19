from __future__ import annotations
from typing import Protocol
from inboxsync.domain.entities.email_record import EmailRecord

class RecordSink(Protocol):
    # Raises DuplicateRecordError when message_id is already stored, MessageError on other failures
    def insert(self, record: EmailRecord) -> None: ...
