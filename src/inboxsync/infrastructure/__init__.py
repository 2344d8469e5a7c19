"""Infrastructure layer - mailbox transports, stores, and configuration."""

from inboxsync.infrastructure.factory import MailStore, SyncEngineFactory
from inboxsync.infrastructure.settings import Settings, get_settings, load_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "load_settings",
    # Wiring
    "MailStore",
    "SyncEngineFactory",
]
