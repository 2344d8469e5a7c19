from __future__ import annotations
import imaplib
import re
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, Optional

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
from inboxsync.infrastructure.email.providers.imap.auth import (
    ImapAuthenticator,
    ImapCredentials,
    close_quietly,
)
from inboxsync.infrastructure.email.providers.imap.mapper import (
    HEADER_FIELDS,
    fetch_parts,
    header_response_to_raw,
    parse_internaldate,
    parse_status,
)

# Search keys that negate IMAP system flags; anything else is a keyword
_UNSET_SYSTEM_FLAG = {
    "\\seen": "UNSEEN",
    "\\flagged": "UNFLAGGED",
    "\\answered": "UNANSWERED",
    "\\deleted": "UNDELETED",
    "\\draft": "UNDRAFT",
}
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
_LIST_LINE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')


def _quote(folder: str) -> str:
    if folder.startswith('"') or not re.search(r'[\s"\\]', folder):
        return folder
    escaped = folder.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _imap_date(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def _since_date(watermark_at: datetime) -> str:
    """SINCE date that cannot miss mail after ``watermark_at``.

    SINCE compares whole days in the server's timezone, which may be up to a
    day off from UTC; the exact cut is re-applied per message.
    """
    return _imap_date(watermark_at - timedelta(days=1))


@dataclass
class ImapConfig:
    host: str
    username: str
    password: str
    port: int = 993
    use_ssl: bool = True
    folder: str = "INBOX"
    timeout: float = 30.0

    @property
    def credentials(self) -> ImapCredentials:
        return ImapCredentials(
            host=self.host,
            username=self.username,
            password=self.password,
            port=self.port,
            use_ssl=self.use_ssl,
            timeout=self.timeout,
        )


class ImapSession:
    """One selected folder on one authenticated connection."""

    def __init__(self, conn: imaplib.IMAP4, folder: str) -> None:
        self.conn = conn
        self.folder = folder
        self.uidvalidity: Optional[int] = None
        self._known_folders: Optional[set[str]] = None
        self._warned_plain_expunge = False

    # -- command plumbing ---------------------------------------------------

    def _transport(self, fn: Callable, *args, **kwargs):
        """Run a command whose failure is fatal for the pass."""
        try:
            typ, data = fn(*args, **kwargs)
        except (OSError, imaplib.IMAP4.error) as e:
            raise TransportError(f"IMAP command failed: {e}") from e
        if typ != "OK":
            raise TransportError(f"IMAP command returned {typ}: {data!r}")
        return data

    def _local(self, error: type[MessageError], fn: Callable, *args, **kwargs):
        """Run a command whose failure concerns only the current message."""
        try:
            typ, data = fn(*args, **kwargs)
        except imaplib.IMAP4.abort as e:
            # Connection is gone; nothing further can succeed
            raise TransportError(f"IMAP connection lost: {e}") from e
        except OSError as e:
            raise TransportError(f"IMAP transport error: {e}") from e
        except imaplib.IMAP4.error as e:
            raise error(str(e)) from e
        if typ != "OK":
            raise error(f"IMAP returned {typ}: {data!r}")
        return data

    # -- session lifecycle --------------------------------------------------

    def open(self) -> None:
        self._transport(self.conn.select, _quote(self.folder), readonly=False)
        _, data = self.conn.response("UIDVALIDITY")
        if data and data[0]:
            self.uidvalidity = int(data[0])
        logger.debug(f"Selected {self.folder} (UIDVALIDITY {self.uidvalidity})")

    def snapshot_cursor(self) -> Watermark:
        data = self._transport(self.conn.status, _quote(self.folder), "(UIDNEXT UIDVALIDITY)")
        uidnext, uidvalidity = parse_status(data)
        return Watermark(
            received_at=datetime.now(timezone.utc),
            last_uid=uidnext - 1 if uidnext else None,
            uidvalidity=uidvalidity if uidvalidity is not None else self.uidvalidity,
        )

    # -- selection ------------------------------------------------------------

    def _search_criteria(self, query: SelectionQuery) -> list[str]:
        if query.mode is SelectionMode.SINCE_WATERMARK:
            wm = query.watermark
            if wm is not None and wm.last_uid is not None and wm.uidvalidity == self.uidvalidity:
                return [f"UID {wm.last_uid + 1}:*"]
            if wm is not None and wm.received_at is not None:
                return [f"SINCE {_since_date(wm.received_at)}"]
            return ["ALL"]

        if query.mode is SelectionMode.EXPLICIT_IDS:
            criteria = ["UNDELETED"]
            if query.exclude_flag:
                system = _UNSET_SYSTEM_FLAG.get(query.exclude_flag.lower())
                criteria.append(system or f"UNKEYWORD {query.exclude_flag}")
            return criteria

        return ["UNDELETED"]

    def _search(self, query: SelectionQuery) -> list[int]:
        criteria = self._search_criteria(query)
        data = self._transport(self.conn.uid, "SEARCH", None, *criteria)
        uids = sorted(int(x) for x in data[0].split()) if data and data[0] else []
        logger.info(f"UID SEARCH {' '.join(criteria)} in {self.folder}: {len(uids)} candidates")
        return uids

    def list_messages(self, query: SelectionQuery) -> Iterator[RawMessage]:
        uids = self._search(query)

        if query.mode is SelectionMode.FULL_SCAN_CAPPED:
            uids = uids[-query.limit:]
        elif query.mode is SelectionMode.EXPLICIT_IDS:
            uids = uids[: query.limit]

        yielded = 0
        for uid in uids:
            if yielded >= query.limit:
                break
            message = self._headers(uid)
            if message is None:
                continue
            if query.mode is SelectionMode.SINCE_WATERMARK and not after_watermark(message, query.watermark):
                continue
            yielded += 1
            yield message

    def _headers(self, uid: int) -> Optional[RawMessage]:
        try:
            data = self._local(MessageError, self.conn.uid, "FETCH", str(uid), f"(UID INTERNALDATE {HEADER_FIELDS})")
        except MessageError as e:
            logger.warning(f"Header fetch for UID {uid} failed, deferring to body fetch: {e}")
            return RawMessage(identifier=str(uid), mailbox=self.folder, uid=uid, uidvalidity=self.uidvalidity)
        if not data or data == [None]:
            logger.debug(f"UID {uid} vanished before its headers were read")
            return None
        return header_response_to_raw(self.folder, uid, self.uidvalidity, data)

    # -- per-message operations -------------------------------------------

    def fetch(self, message: RawMessage) -> RawMessage:
        data = self._local(MessageError, self.conn.uid, "FETCH", message.identifier, "(INTERNALDATE BODY.PEEK[])")
        meta, body = fetch_parts(data)
        if body is None:
            raise MessageError(f"UID {message.identifier} is no longer in {self.folder}")
        received_at = message.received_at or (parse_internaldate(meta) if meta else None)
        return replace(message, body=body, received_at=received_at)

    def dispose(self, message: RawMessage, disposition: Disposition) -> None:
        uid = message.identifier
        if disposition.action is DispositionAction.FLAG:
            self._local(DisposalError, self.conn.uid, "STORE", uid, "+FLAGS", f"({disposition.target})")
            logger.debug(f"Flagged UID {uid} with {disposition.target}")
            return

        if disposition.action is DispositionAction.MOVE:
            self.ensure_folder_exists(disposition.target)
            self._local(DisposalError, self.conn.uid, "COPY", uid, _quote(disposition.target))

        self._local(DisposalError, self.conn.uid, "STORE", uid, "+FLAGS", "(\\Deleted)")
        self._expunge(uid)
        logger.debug(f"Disposed UID {uid} ({disposition})")

    def _expunge(self, uid: str) -> None:
        # UID EXPUNGE only touches this message; plain EXPUNGE clears every \Deleted one
        if "UIDPLUS" in getattr(self.conn, "capabilities", ()):
            self._local(DisposalError, self.conn.uid, "EXPUNGE", uid)
            return
        if not self._warned_plain_expunge:
            logger.warning(
                f"Server lacks UIDPLUS: EXPUNGE in {self.folder} also removes messages "
                "other clients marked \\Deleted"
            )
            self._warned_plain_expunge = True
        self._local(DisposalError, self.conn.expunge)

    def ensure_folder_exists(self, folder: str) -> None:
        """Create folder if it doesn't exist."""
        if self._known_folders is None:
            data = self._local(DisposalError, self.conn.list)
            names = set()
            for line in data or []:
                if not isinstance(line, bytes):
                    continue
                match = _LIST_LINE.match(line)
                if match:
                    names.add(match.group("name").decode(errors="replace").strip('"'))
            self._known_folders = names

        if folder in self._known_folders:
            return

        logger.info(f"Creating folder: {folder}")
        self._local(DisposalError, self.conn.create, _quote(folder))
        self._known_folders.add(folder)
        try:
            self.conn.subscribe(_quote(folder))
        except imaplib.IMAP4.error as e:
            logger.warning(f"Could not subscribe to {folder}: {e}")


class ImapMessageSource:
    provider = "imap"

    def __init__(self, cfg: ImapConfig) -> None:
        self.cfg = cfg
        # Watermark key: one cursor per account and folder
        self.mailbox = f"{cfg.username}@{cfg.host}/{cfg.folder}"
        self.authenticator = ImapAuthenticator(cfg.credentials)

    @contextmanager
    def session(self) -> Iterator[ImapSession]:
        conn = self.authenticator.login()
        try:
            session = ImapSession(conn, self.cfg.folder)
            session.open()
            yield session
        finally:
            close_quietly(conn)
            logger.debug(f"IMAP session to {self.cfg.host} closed")
