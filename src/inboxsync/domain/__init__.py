"""Domain models and entities."""

from inboxsync.domain.entities import STATUS_NEW, EmailRecord
from inboxsync.domain.models import (
    Guarantee,
    MessageFailure,
    ProcessedMessage,
    SyncPassResult,
)

__all__ = [
    "EmailRecord",
    "STATUS_NEW",
    "Guarantee",
    "MessageFailure",
    "ProcessedMessage",
    "SyncPassResult",
]
