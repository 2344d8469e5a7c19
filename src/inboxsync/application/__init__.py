"""Application layer - the synchronization core and its ports."""

from inboxsync.application.normalizer import Normalizer
from inboxsync.application.sync_policy import SyncPolicy, WatermarkTracker
from inboxsync.application.use_cases import SyncEngine

__all__ = [
    "Normalizer",
    "SyncEngine",
    "SyncPolicy",
    "WatermarkTracker",
]
