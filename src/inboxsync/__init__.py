"""inboxsync - incremental mailbox synchronization."""

__version__ = "0.1.0"
