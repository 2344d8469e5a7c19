"""IMAP message source."""

from inboxsync.infrastructure.email.providers.imap.client import (
    ImapConfig,
    ImapMessageSource,
    ImapSession,
)

__all__ = ["ImapConfig", "ImapMessageSource", "ImapSession"]
