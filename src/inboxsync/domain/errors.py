"""Error taxonomy for a synchronization pass.

Pass-fatal errors (config, auth, transport, store) abort the pass and surface
as a single error response. ``MessageError`` and its subclasses are local to
one message: the engine records them in the pass result and keeps going.
"""

from __future__ import annotations


class InboxSyncError(Exception):
    """Base class for all inboxsync errors."""


class ConfigError(InboxSyncError):
    """Missing or invalid required settings. Raised before any connection."""


class AuthError(InboxSyncError):
    """The invocation credential is missing or wrong."""


class TransportError(InboxSyncError):
    """The mailbox could not be reached, authenticated against, or listed."""


class StoreError(InboxSyncError):
    """The durable store failed outside of a single-record insert."""


class StoreReadError(StoreError):
    """The watermark could not be read. The pass must not guess a start."""


class SyncInProgressError(InboxSyncError):
    """Another pass already holds the in-flight guard for this mailbox."""


class MessageError(InboxSyncError):
    """A failure confined to one message (fetch, persist or dispose)."""

    def __init__(self, message: str, stage: str = "fetch") -> None:
        super().__init__(message)
        self.stage = stage


class DuplicateRecordError(MessageError):
    """The record sink already holds a record with the same message id."""

    def __init__(self, message: str) -> None:
        super().__init__(message, stage="persist")


class DisposalError(MessageError):
    """Post-persist cleanup (delete, move, flag) failed. The record is safe."""

    def __init__(self, message: str) -> None:
        super().__init__(message, stage="dispose")
