"""Use cases."""

from inboxsync.application.use_cases.sync_mailbox import SyncEngine

__all__ = ["SyncEngine"]
