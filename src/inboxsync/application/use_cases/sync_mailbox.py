"""Run one incremental synchronization pass over a mailbox."""

from __future__ import annotations

import threading
from typing import Optional

from loguru import logger

from inboxsync.application.normalizer import Normalizer
from inboxsync.application.ports.message_source import MailboxSession, MessageSource, RawMessage
from inboxsync.application.ports.record_sink import RecordSink
from inboxsync.application.ports.watermark_store import Watermark, WatermarkStore
from inboxsync.application.sync_policy import SyncPolicy, WatermarkTracker
from inboxsync.domain.errors import (
    DuplicateRecordError,
    MessageError,
    StoreError,
    StoreReadError,
    SyncInProgressError,
)
from inboxsync.domain.models import SyncPassResult


class SyncEngine:
    """Incremental mailbox sync with watermark and per-message failure isolation.

    Flow:
    1. Read the watermark (abort if unreadable)
    2. Open a mailbox session and list messages the policy selects
    3. Per message: fetch -> normalize -> insert -> dispose
    4. Advance the watermark over persisted messages only
    5. Release the session on every exit path

    Messages are processed strictly one at a time. Overlapping passes on the
    same engine are rejected with SyncInProgressError.
    """

    def __init__(
        self,
        source: MessageSource,
        sink: RecordSink,
        watermarks: WatermarkStore,
        normalizer: Normalizer,
        policy: SyncPolicy,
    ) -> None:
        self.source = source
        self.sink = sink
        self.watermarks = watermarks
        self.normalizer = normalizer
        self.policy = policy
        self._in_flight = threading.Lock()

    @property
    def mailbox(self) -> str:
        return self.source.mailbox

    def run_sync_pass(self) -> SyncPassResult:
        if not self._in_flight.acquire(blocking=False):
            raise SyncInProgressError(f"A sync pass for {self.mailbox} is already running")
        try:
            return self._run()
        finally:
            self._in_flight.release()

    def _run(self) -> SyncPassResult:
        result = SyncPassResult(mailbox=self.mailbox, guarantee=self.policy.guarantee)
        logger.info(
            f"Starting sync pass for {self.mailbox} "
            f"(selection={self.policy.selection.value}, disposition={self.policy.disposition}, "
            f"guarantee={result.guarantee.value})"
        )

        watermark = self._read_watermark()
        tracker = WatermarkTracker(watermark)

        with self.source.session() as session:
            if watermark is None and self.policy.needs_baseline:
                baseline = session.snapshot_cursor()
                self._write_watermark(baseline)
                result.watermark_advanced = True
                logger.info(
                    f"No watermark for {self.mailbox}; anchored at {baseline.received_at} "
                    f"(uid {baseline.last_uid}), only newer mail will be processed"
                )
                return result

            query = self.policy.query(watermark)
            for message in session.list_messages(query):
                if not self.policy.admits(message, watermark):
                    logger.debug(f"Skipping {message.identifier}: behind watermark")
                    continue
                result.seen += 1
                self._process_message(session, message, result, tracker)

        if result.seen == 0:
            logger.info(f"No new messages in {self.mailbox}")
            return result

        advanced = tracker.result()
        if tracker.observed and advanced != watermark:
            self._write_watermark(advanced)
            result.watermark_advanced = True

        logger.info(
            f"Sync pass for {self.mailbox} done: seen={result.seen}, "
            f"processed={result.processed_count}, failed={len(result.failures)}"
        )
        return result

    def _process_message(
        self,
        session: MailboxSession,
        message: RawMessage,
        result: SyncPassResult,
        tracker: WatermarkTracker,
    ) -> None:
        try:
            full = session.fetch(message)
        except MessageError as e:
            logger.warning(f"Failed to fetch {message.identifier}: {e}")
            result.record_failure(message.identifier, e.stage, str(e))
            return

        record = self.normalizer.normalize(full)

        try:
            self.sink.insert(record)
        except DuplicateRecordError as e:
            logger.warning(f"Duplicate record for {message.identifier} ({record.message_id}), left in mailbox")
            result.record_failure(message.identifier, e.stage, str(e))
            return
        except MessageError as e:
            logger.error(f"Failed to persist {message.identifier}: {e}")
            result.record_failure(message.identifier, "persist", str(e))
            return

        tracker.observe(full)
        result.record_success(record.subject, message.identifier)
        logger.debug(f"Persisted {message.identifier}: {record.subject[:50]}")

        try:
            session.dispose(message, self.policy.disposition)
        except MessageError as e:
            # Record is already stored; re-seeing the message only hits dedup
            logger.warning(f"Failed to dispose {message.identifier} ({self.policy.disposition}): {e}")
            result.record_failure(message.identifier, "dispose", str(e))

    def _read_watermark(self) -> Optional[Watermark]:
        try:
            return self.watermarks.read(self.mailbox)
        except StoreReadError:
            raise
        except StoreError as e:
            raise StoreReadError(f"Could not read watermark for {self.mailbox}: {e}") from e

    def _write_watermark(self, watermark: Watermark) -> None:
        self.watermarks.advance(self.mailbox, watermark)
        logger.info(
            f"Watermark for {self.mailbox} advanced to {watermark.received_at} "
            f"(uid {watermark.last_uid})"
        )
