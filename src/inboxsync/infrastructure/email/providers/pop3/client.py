"""POP3 message source.

POP3 has no folders, no flags, no ordered identifiers and no arrival time.
The only disposition is DELE, so the maildrop holds nothing but mail that
has not been stored yet, and selection goes by UIDL: listed messages carry
no timestamp and are admitted unless the watermark already names their
UIDL. The sender's Date header only feeds the record, never the cursor.
The baseline watermark names every UIDL present when syncing started.

Deletions are committed by QUIT; a session that ends without a clean QUIT
leaves every message in place, which is safe because their records are
deduplicated on the next pass.
"""

from __future__ import annotations

import poplib
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email import policy
from email.parser import BytesParser
from typing import Iterator

from loguru import logger

from inboxsync.application.ports.message_source import (
    Disposition,
    DispositionAction,
    RawMessage,
    SelectionMode,
    SelectionQuery,
)
from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.application.sync_policy import after_watermark
from inboxsync.domain.errors import DisposalError, MessageError, TransportError

POP3_MAILBOX = "INBOX"


@dataclass
class Pop3Config:
    host: str
    username: str
    password: str
    port: int = 995
    use_ssl: bool = True
    timeout: float = 30.0


def _ok(response: bytes) -> bool:
    return response.startswith(b"+OK")


class Pop3Session:
    def __init__(self, server: poplib.POP3) -> None:
        self.server = server
        # message number by UIDL, valid for this session only
        self._numbers: dict[str, int] = {}

    def _call(self, error: type[Exception], fn, *args):
        try:
            return fn(*args)
        except poplib.error_proto as e:
            raise error(f"POP3 error: {e}") from e
        except OSError as e:
            raise TransportError(f"POP3 transport error: {e}") from e

    def snapshot_cursor(self) -> Watermark:
        present = frozenset(uidl for _, uidl in self._uidl())
        return Watermark(received_at=datetime.now(timezone.utc), boundary_ids=present)

    def _uidl(self) -> list[tuple[int, str]]:
        response, listings, _ = self._call(TransportError, self.server.uidl)
        if not _ok(response):
            raise TransportError(f"POP3 UIDL failed: {response!r}")
        entries = []
        for line in listings or []:
            parts = line.decode("utf-8", errors="ignore").split()
            if len(parts) < 2:
                continue
            try:
                entries.append((int(parts[0]), parts[1]))
            except ValueError as e:
                raise TransportError(f"Malformed POP3 UIDL line: {line!r}") from e
        self._numbers = {uidl: number for number, uidl in entries}
        logger.info(f"POP3 UIDL: {len(entries)} messages in maildrop")
        return entries

    def list_messages(self, query: SelectionQuery) -> Iterator[RawMessage]:
        entries = self._uidl()
        if query.mode is SelectionMode.FULL_SCAN_CAPPED:
            entries = entries[-query.limit:]

        yielded = 0
        for number, uidl in entries:
            if yielded >= query.limit:
                break
            bare = RawMessage(identifier=uidl, mailbox=POP3_MAILBOX)
            if query.mode is SelectionMode.SINCE_WATERMARK and not after_watermark(bare, query.watermark):
                continue
            yielded += 1
            yield self._headers(number, bare)

    def _headers(self, number: int, bare: RawMessage) -> RawMessage:
        try:
            response, lines, _ = self._call(MessageError, self.server.top, number, 0)
        except MessageError as e:
            logger.warning(f"TOP {number} failed, deferring to RETR: {e}")
            return bare
        if not _ok(response):
            return bare

        try:
            em = BytesParser(policy=policy.default).parsebytes(b"\r\n".join(lines) + b"\r\n", headersonly=True)
            return replace(
                bare,
                sender=str(em.get("From") or "").strip() or None,
                subject=str(em.get("Subject") or "").strip() or None,
                message_id=str(em.get("Message-Id") or "").strip() or None,
            )
        except Exception as e:  # headers are re-read from the full body later
            logger.debug(f"Could not parse headers of POP3 message {bare.identifier}: {e}")
            return bare

    def _number(self, message: RawMessage, error: type[MessageError]) -> int:
        number = self._numbers.get(message.identifier)
        if number is None:
            raise error(f"POP3 message {message.identifier} is not in this session's listing")
        return number

    def fetch(self, message: RawMessage) -> RawMessage:
        number = self._number(message, MessageError)
        response, lines, _ = self._call(MessageError, self.server.retr, number)
        if not _ok(response) or not lines:
            raise MessageError(f"RETR {number} failed: {response!r}")
        return replace(message, body=b"\r\n".join(lines) + b"\r\n")

    def dispose(self, message: RawMessage, disposition: Disposition) -> None:
        if disposition.action is not DispositionAction.DELETE:
            raise DisposalError(f"POP3 cannot apply disposition {disposition}")
        number = self._number(message, DisposalError)
        response = self._call(DisposalError, self.server.dele, number)
        if not _ok(response):
            raise DisposalError(f"DELE {number} failed: {response!r}")
        logger.debug(f"Marked POP3 message {message.identifier} for deletion")


class Pop3MessageSource:
    provider = "pop3"

    def __init__(self, cfg: Pop3Config) -> None:
        self.cfg = cfg
        self.mailbox = f"{cfg.username}@{cfg.host}/{POP3_MAILBOX}"

    def _connect(self) -> poplib.POP3:
        try:
            if self.cfg.use_ssl:
                server = poplib.POP3_SSL(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout)
            else:
                server = poplib.POP3(self.cfg.host, self.cfg.port, timeout=self.cfg.timeout)
        except (OSError, poplib.error_proto) as e:
            raise TransportError(f"Cannot connect to {self.cfg.host}:{self.cfg.port}: {e}") from e

        try:
            server.user(self.cfg.username)
            server.pass_(self.cfg.password)
        except (OSError, poplib.error_proto) as e:
            self._quit(server)
            raise TransportError(f"POP3 login failed for {self.cfg.username}: {e}") from e
        return server

    @staticmethod
    def _quit(server: poplib.POP3) -> None:
        try:
            server.quit()
        except (OSError, poplib.error_proto) as e:
            logger.warning(f"POP3 QUIT failed, pending deletions rolled back: {e}")

    @contextmanager
    def session(self) -> Iterator[Pop3Session]:
        server = self._connect()
        try:
            yield Pop3Session(server)
        finally:
            self._quit(server)
            logger.debug(f"POP3 session to {self.cfg.host} closed")
