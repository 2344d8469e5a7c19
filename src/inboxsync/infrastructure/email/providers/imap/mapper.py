from __future__ import annotations
import imaplib
import re
import time
from datetime import datetime, timezone
from email import policy
from email.parser import BytesParser
from typing import Optional

from loguru import logger

from inboxsync.application.ports.message_source import RawMessage

HEADER_FIELDS = "BODY.PEEK[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)]"

_UIDNEXT = re.compile(rb"UIDNEXT\s+(\d+)")
_UIDVALIDITY = re.compile(rb"UIDVALIDITY\s+(\d+)")


def parse_internaldate(meta: bytes) -> Optional[datetime]:
    tt = imaplib.Internaldate2tuple(meta)
    if tt is None:
        return None
    # Internaldate2tuple returns local time
    return datetime.fromtimestamp(time.mktime(tt), tz=timezone.utc)


def parse_status(data: list) -> tuple[Optional[int], Optional[int]]:
    """(UIDNEXT, UIDVALIDITY) from a STATUS response."""
    line = data[0] if data and isinstance(data[0], bytes) else b""
    uidnext = _UIDNEXT.search(line)
    uidvalidity = _UIDVALIDITY.search(line)
    return (
        int(uidnext.group(1)) if uidnext else None,
        int(uidvalidity.group(1)) if uidvalidity else None,
    )


def fetch_parts(data: list) -> tuple[bytes, Optional[bytes]]:
    """Split a single-message FETCH response into (metadata line, literal)."""
    for item in data or []:
        if isinstance(item, tuple) and len(item) >= 2:
            return item[0], item[1]
    for item in data or []:
        if isinstance(item, bytes):
            return item, None
    return b"", None


def header_response_to_raw(mailbox: str, uid: int, uidvalidity: Optional[int], data: list) -> RawMessage:
    meta, header_bytes = fetch_parts(data)

    sender = subject = message_id = None
    if header_bytes:
        try:
            em = BytesParser(policy=policy.default).parsebytes(header_bytes, headersonly=True)
            sender = str(em.get("From") or "").strip() or None
            subject = str(em.get("Subject") or "").strip() or None
            message_id = str(em.get("Message-Id") or "").strip() or None
        except Exception as e:  # headers are re-read from the full body later
            logger.debug(f"Could not parse listing headers for UID {uid}: {e}")

    return RawMessage(
        identifier=str(uid),
        mailbox=mailbox,
        uid=uid,
        uidvalidity=uidvalidity,
        received_at=parse_internaldate(meta) if meta else None,
        sender=sender,
        subject=subject,
        message_id=message_id,
    )
