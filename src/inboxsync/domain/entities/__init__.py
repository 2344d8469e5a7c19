"""Domain entities."""

from inboxsync.domain.entities.email_record import STATUS_NEW, EmailRecord

__all__ = ["EmailRecord", "STATUS_NEW"]
