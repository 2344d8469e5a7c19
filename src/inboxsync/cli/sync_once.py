"""Run a single sync pass from the command line (cron / scheduled jobs)."""

from __future__ import annotations

import argparse
import json
from typing import Optional, Sequence

from loguru import logger

from inboxsync.cli import configure_logging
from inboxsync.domain.errors import ConfigError, InboxSyncError
from inboxsync.infrastructure import Settings, SyncEngineFactory, load_settings


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update = {}
    if args.selection:
        update["sync_selection"] = args.selection
    if args.disposition:
        update["sync_disposition"] = args.disposition
    if args.max_messages is not None:
        if args.max_messages < 1:
            raise ConfigError("--max-messages must be at least 1")
        update["sync_max_messages"] = args.max_messages
    return settings.model_copy(update=update) if update else settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one incremental mailbox sync pass")
    parser.add_argument(
        "--selection",
        choices=["since-watermark", "explicit-ids", "full-scan-capped"],
        help="Override SYNC_SELECTION",
    )
    parser.add_argument(
        "--disposition",
        help=(
            "Override SYNC_DISPOSITION (delete | move:<folder> | flag:<name>). "
            "On IMAP servers without UIDPLUS, delete and move expunge every \\Deleted message in the folder"
        ),
    )
    parser.add_argument("--max-messages", type=int, default=None, help="Override SYNC_MAX_MESSAGES")
    parser.add_argument("--json", action="store_true", help="Print the pass result as JSON")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = apply_overrides(load_settings(), args)
        configure_logging(settings.log_level)
        engine = SyncEngineFactory.from_settings(settings)
    except ConfigError as e:
        configure_logging("INFO")
        logger.error(f"Configuration error: {e}")
        return 2

    print(f"Syncing mailbox: {engine.mailbox}")
    print(f"Selection: {engine.policy.selection.value}, disposition: {engine.policy.disposition}")
    print(f"Guarantee: {engine.policy.guarantee.value}")

    try:
        result = engine.run_sync_pass()
    except InboxSyncError as e:
        logger.error(f"Sync pass failed: {type(e).__name__}: {e}")
        return 1

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        print(f"Processed {result.processed_count} of {result.seen} messages from {engine.mailbox}")
        for failure in result.failures:
            print(f"  failed {failure.identifier} at {failure.stage}: {failure.reason}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
