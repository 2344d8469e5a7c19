"""POP3 message source."""

from inboxsync.infrastructure.email.providers.pop3.client import (
    Pop3Config,
    Pop3MessageSource,
    Pop3Session,
)

__all__ = ["Pop3Config", "Pop3MessageSource", "Pop3Session"]
