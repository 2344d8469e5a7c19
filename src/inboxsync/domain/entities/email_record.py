from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

STATUS_NEW = "new"


@dataclass(frozen=True)
class EmailRecord:
    # message_id is the dedup key: Message-ID header or provenance:mailbox:identifier
    message_id: str
    source_id: str
    sender: str
    subject: str
    body: str
    provenance: str  # "imap" | "pop3"
    received_at: datetime
    status: str = STATUS_NEW
