"""Domain models for inboxsync."""

from enum import Enum

from pydantic import BaseModel, Field


class Guarantee(str, Enum):
    """Delivery guarantee provided by a selection/disposition combination."""

    AT_LEAST_ONCE = "at-least-once"
    IDEMPOTENT = "idempotent"


class ProcessedMessage(BaseModel):
    """A message that was persisted during a pass."""

    subject: str
    identifier: str


class MessageFailure(BaseModel):
    """A message-local failure recorded during a pass."""

    identifier: str
    stage: str
    reason: str


class SyncPassResult(BaseModel):
    """Summary of one synchronization pass."""

    mailbox: str
    guarantee: Guarantee = Guarantee.AT_LEAST_ONCE
    seen: int = 0
    processed: list[ProcessedMessage] = Field(default_factory=list)
    failures: list[MessageFailure] = Field(default_factory=list)
    watermark_advanced: bool = False

    @property
    def processed_count(self) -> int:
        return len(self.processed)

    def record_success(self, subject: str, identifier: str) -> None:
        self.processed.append(ProcessedMessage(subject=subject, identifier=identifier))

    def record_failure(self, identifier: str, stage: str, reason: str) -> None:
        self.failures.append(MessageFailure(identifier=identifier, stage=stage, reason=reason))
