"""Turn a fetched RawMessage into a bounded EmailRecord.

Normalization never fails: anything that cannot be parsed degrades to a
sentinel or to a cruder extraction, because one malformed message must not
block the rest of the pass.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage as MimeMessage
from email.parser import BytesParser
from email.utils import parseaddr
from typing import Optional

import html2text
from loguru import logger

from inboxsync.application.ports.message_source import RawMessage, to_utc
from inboxsync.domain.entities.email_record import STATUS_NEW, EmailRecord

DEFAULT_BODY_MAX_LENGTH = 5000
DEFAULT_SENDER_SENTINEL = "unknown"
DEFAULT_SUBJECT_SENTINEL = "no subject"

_BLANK_LINE = re.compile(rb"\r?\n\r?\n")


def _html_to_text(html: str) -> str:
    converter = html2text.HTML2Text()
    converter.ignore_images = True
    converter.body_width = 0
    return converter.handle(html)


def _part_text(part: MimeMessage) -> str:
    try:
        return part.get_content()
    except (LookupError, UnicodeError, ValueError, AttributeError):
        # Unknown charset or broken transfer encoding
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _as_text(msg: MimeMessage) -> str:
    # Prefer text/plain; fallback to HTML rendered as text
    for part in msg.walk():
        if part.get_content_type() == "text/plain" and not part.is_attachment():
            return _part_text(part).strip()
    for part in msg.walk():
        if part.get_content_type() == "text/html" and not part.is_attachment():
            return _html_to_text(_part_text(part)).strip()
    return ""


def _split_body(raw: bytes) -> str:
    """Everything after the first blank line, when MIME parsing is unavailable."""
    pieces = _BLANK_LINE.split(raw, maxsplit=1)
    body = pieces[1] if len(pieces) > 1 else b""
    return body.decode("utf-8", errors="replace").strip()


class Normalizer:
    """Build EmailRecords for one transport with fixed bounds and sentinels."""

    def __init__(
        self,
        provenance: str,
        mailbox: str,
        body_max_length: int = DEFAULT_BODY_MAX_LENGTH,
        sender_sentinel: str = DEFAULT_SENDER_SENTINEL,
        subject_sentinel: str = DEFAULT_SUBJECT_SENTINEL,
    ) -> None:
        self.provenance = provenance
        self.mailbox = mailbox
        self.body_max_length = body_max_length
        self.sender_sentinel = sender_sentinel
        self.subject_sentinel = subject_sentinel

    def normalize(self, raw: RawMessage) -> EmailRecord:
        parsed = self._parse(raw.body)

        sender = self._sender(parsed, raw)
        subject = self._subject(parsed, raw)
        body = self._body(parsed, raw.body)
        message_id = self._message_id(parsed, raw)

        return EmailRecord(
            message_id=message_id,
            source_id=raw.identifier,
            sender=sender,
            subject=subject,
            body=body,
            provenance=self.provenance,
            received_at=self._received_at(parsed, raw),
            status=STATUS_NEW,
        )

    def _parse(self, body: Optional[bytes]) -> Optional[MimeMessage]:
        if not body:
            return None
        try:
            return BytesParser(policy=policy.default).parsebytes(body)
        except Exception as e:  # parser bugs on hostile input must not escape
            logger.debug(f"MIME parse failed, using header-less fallback: {e}")
            return None

    @staticmethod
    def _header(parsed: Optional[MimeMessage], name: str) -> str:
        if parsed is None:
            return ""
        try:
            return str(parsed.get(name) or "").strip()
        except (ValueError, TypeError, IndexError):
            # Malformed header that policy.default could not decode
            return ""

    def _sender(self, parsed: Optional[MimeMessage], raw: RawMessage) -> str:
        for candidate in (self._header(parsed, "From"), raw.sender or ""):
            _, address = parseaddr(candidate)
            address = address.strip()
            if address and "@" in address:
                return address
        return self.sender_sentinel

    def _subject(self, parsed: Optional[MimeMessage], raw: RawMessage) -> str:
        subject = self._header(parsed, "Subject") or (raw.subject or "").strip()
        # Folded headers leave CR/LF behind
        subject = " ".join(subject.split())
        return subject or self.subject_sentinel

    def _body(self, parsed: Optional[MimeMessage], body: Optional[bytes]) -> str:
        text = ""
        if parsed is not None:
            try:
                text = _as_text(parsed)
            except Exception as e:  # structured extraction is best effort
                logger.debug(f"Structured body extraction failed: {e}")
                text = ""
        if not text and body:
            text = _split_body(body)
        # PostgreSQL text columns reject NUL
        text = text.replace("\x00", "")
        return text[: self.body_max_length]

    def _message_id(self, parsed: Optional[MimeMessage], raw: RawMessage) -> str:
        message_id = self._header(parsed, "Message-Id") or (raw.message_id or "").strip()
        if message_id:
            return message_id
        return f"{self.provenance}:{self.mailbox}:{raw.identifier}"

    def _received_at(self, parsed: Optional[MimeMessage], raw: RawMessage) -> datetime:
        if raw.received_at is not None:
            return to_utc(raw.received_at)
        # Date parsing can be messy; default to now if absent/unparseable
        if parsed is not None:
            try:
                header = parsed.get("Date")
                if header is not None and header.datetime is not None:
                    return to_utc(header.datetime)
            except (AttributeError, TypeError, ValueError):
                pass
        return datetime.now(timezone.utc)
