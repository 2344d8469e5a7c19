"""Sync worker - runs sync passes against the mailbox at a configurable interval."""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from inboxsync.application.use_cases.sync_mailbox import SyncEngine
from inboxsync.cli import configure_logging
from inboxsync.domain.errors import ConfigError, InboxSyncError
from inboxsync.infrastructure import SyncEngineFactory, load_settings


@dataclass
class WorkerStats:
    """Track worker statistics."""
    total_processed: int = 0
    total_failures: int = 0
    total_errors: int = 0
    last_poll: datetime | None = None
    polls_completed: int = 0


class SyncWorker:
    """
    Polling sync worker.

    Runs one sync pass per interval. A pass-fatal error is logged and
    counted; the next interval tries again from the stored watermark.
    """

    def __init__(self, engine: SyncEngine, poll_interval_minutes: int = 5):
        self.engine = engine
        self.poll_interval = poll_interval_minutes * 60  # Convert to seconds
        self.running = False
        self.stats = WorkerStats()

    def poll_once(self) -> None:
        """Run a single pass and fold its outcome into the stats."""
        self.stats.last_poll = datetime.now()
        logger.info(f"Starting poll cycle #{self.stats.polls_completed + 1}")

        try:
            result = self.engine.run_sync_pass()
            self.stats.total_processed += result.processed_count
            self.stats.total_failures += len(result.failures)
        except InboxSyncError as e:
            self.stats.total_errors += 1
            logger.error(f"Sync pass for {self.engine.mailbox} failed: {type(e).__name__}: {e}")
        except Exception as e:
            self.stats.total_errors += 1
            logger.exception(f"Unexpected error syncing {self.engine.mailbox}: {e}")

        self.stats.polls_completed += 1
        self._log_stats()

    def _log_stats(self) -> None:
        """Log current worker statistics."""
        logger.info(
            f"Worker stats: "
            f"polls={self.stats.polls_completed}, "
            f"processed={self.stats.total_processed}, "
            f"message_failures={self.stats.total_failures}, "
            f"errors={self.stats.total_errors}"
        )

    def _handle_shutdown(self, signum, frame) -> None:
        """Handle graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.running = False

    def run(self) -> int:
        """Run the worker loop."""
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        logger.info(f"Sync worker starting for {self.engine.mailbox}")
        logger.info(f"Poll interval: {self.poll_interval // 60} minutes")

        self.running = True

        # Initial poll
        self.poll_once()

        while self.running:
            logger.debug(f"Sleeping for {self.poll_interval} seconds...")

            # Sleep in small increments to respond to signals quickly
            sleep_remaining = self.poll_interval
            while sleep_remaining > 0 and self.running:
                sleep_time = min(sleep_remaining, 10)
                time.sleep(sleep_time)
                sleep_remaining -= sleep_time

            if self.running:
                self.poll_once()

        logger.info("Worker shutdown complete")
        self._log_stats()
        return 0


def main() -> int:
    """Entry point for the sync worker."""
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        return 1

    configure_logging(settings.log_level)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} sync worker")
    logger.info("=" * 60)

    try:
        engine = SyncEngineFactory.from_settings(settings)
    except InboxSyncError as e:
        logger.error(f"Failed to initialize sync engine: {e}")
        return 1

    worker = SyncWorker(engine=engine, poll_interval_minutes=settings.poll_interval_minutes)
    return worker.run()


if __name__ == "__main__":
    raise SystemExit(main())
