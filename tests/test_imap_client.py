"""Tests for the IMAP message source against a mocked imaplib connection."""

import imaplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, call, patch

import pytest

from inboxsync.application.ports.message_source import Disposition, RawMessage, SelectionMode, SelectionQuery
from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.domain.errors import DisposalError, MessageError, TransportError
from inboxsync.infrastructure.email.providers.imap import ImapConfig, ImapMessageSource, ImapSession

from tests.fakes import T0, at, rfc822

INTERNALDATES = {
    1: "01-May-2024 11:00:00 +0000",
    2: "01-May-2024 12:00:00 +0000",
    3: "01-May-2024 12:03:00 +0000",
    4: "01-May-2024 12:04:00 +0000",
    5: "01-May-2024 12:05:00 +0000",
}


def fetch_response(uid, spec, literal):
    meta = f'{uid} (UID {uid} INTERNALDATE "{INTERNALDATES[int(uid)]}" {spec} {{{len(literal)}}}'
    return ("OK", [(meta.encode(), literal), b")"])


def make_conn(search=b"", capabilities=("IMAP4REV1", "UIDPLUS")):
    conn = MagicMock()
    conn.capabilities = capabilities
    conn.select.return_value = ("OK", [b"5"])
    conn.response.return_value = ("UIDVALIDITY", [b"7"])
    conn.status.return_value = ("OK", [b"INBOX (UIDNEXT 12 UIDVALIDITY 7)"])
    conn.list.return_value = ("OK", [b'(\\HasNoChildren) "/" INBOX', b'(\\HasNoChildren) "/" Sent'])
    conn.create.return_value = ("OK", [b"CREATE completed"])
    conn.expunge.return_value = ("OK", [None])

    def uid(command, *args):
        if command == "SEARCH":
            return ("OK", [search])
        if command == "FETCH":
            uid_s, spec = args
            if int(uid_s) not in INTERNALDATES:
                return ("OK", [None])
            if "BODY.PEEK[]" in spec:
                return fetch_response(uid_s, "BODY[]", rfc822(subject=f"Full {uid_s}"))
            return fetch_response(uid_s, "BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)]",
                                  b"From: alice@example.com\r\nSubject: Listed\r\n\r\n")
        return ("OK", [b""])

    conn.uid.side_effect = uid
    return conn


def open_session(conn):
    session = ImapSession(conn, "INBOX")
    session.open()
    return session


def listed(session, mode, limit=50, watermark=None, exclude_flag=None):
    query = SelectionQuery(mode=mode, limit=limit, watermark=watermark, exclude_flag=exclude_flag)
    return [m.identifier for m in session.list_messages(query)]


def search_call(conn):
    return next(c for c in conn.uid.call_args_list if c.args[0] == "SEARCH")


class TestImapMessageSource:
    def config(self):
        return ImapConfig(host="mail.example.com", username="user", password="pw", folder="INBOX")

    def test_mailbox_key(self):
        assert ImapMessageSource(self.config()).mailbox == "user@mail.example.com/INBOX"

    def test_session_selects_folder_and_always_logs_out(self):
        with patch("imaplib.IMAP4_SSL") as ssl_cls:
            conn = make_conn()
            ssl_cls.return_value = conn

            with pytest.raises(RuntimeError):
                with ImapMessageSource(self.config()).session() as session:
                    assert session.uidvalidity == 7
                    raise RuntimeError("boom")

        ssl_cls.assert_called_once_with("mail.example.com", 993, timeout=30.0)
        conn.login.assert_called_once_with("user", "pw")
        conn.select.assert_called_once_with("INBOX", readonly=False)
        conn.logout.assert_called_once()

    def test_login_failure_is_transport_error(self):
        with patch("imaplib.IMAP4_SSL") as ssl_cls:
            conn = make_conn()
            conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
            ssl_cls.return_value = conn

            with pytest.raises(TransportError, match="login failed"):
                with ImapMessageSource(self.config()).session():
                    pass

        conn.logout.assert_called_once()

    def test_unreachable_host_is_transport_error(self):
        with patch("imaplib.IMAP4_SSL", side_effect=OSError("connection refused")):
            with pytest.raises(TransportError, match="Cannot connect"):
                with ImapMessageSource(self.config()).session():
                    pass

    def test_select_failure_is_transport_error(self):
        with patch("imaplib.IMAP4_SSL") as ssl_cls:
            conn = make_conn()
            conn.select.return_value = ("NO", [b"Mailbox does not exist"])
            ssl_cls.return_value = conn

            with pytest.raises(TransportError):
                with ImapMessageSource(self.config()).session():
                    pass

        conn.logout.assert_called_once()


class TestSelection:
    def test_uid_cursor_search_drops_echoed_last_uid(self):
        # "UID n:*" always returns the highest UID, even when it is below n
        conn = make_conn(search=b"5")
        session = open_session(conn)
        wm = Watermark(received_at=at(5), last_uid=5, uidvalidity=7)

        assert listed(session, SelectionMode.SINCE_WATERMARK, watermark=wm) == []
        assert search_call(conn) == call("SEARCH", None, "UID 6:*")

    def test_timestamp_cursor_uses_since_and_exact_filter(self):
        conn = make_conn(search=b"1 2 3 4")
        session = open_session(conn)
        wm = Watermark(received_at=T0, boundary_ids=frozenset({"2"}))

        assert listed(session, SelectionMode.SINCE_WATERMARK, watermark=wm) == ["3", "4"]
        assert search_call(conn) == call("SEARCH", None, "SINCE 30-Apr-2024")

    def test_other_uidvalidity_falls_back_to_timestamp(self):
        conn = make_conn(search=b"3")
        session = open_session(conn)
        wm = Watermark(received_at=T0, last_uid=900, uidvalidity=1)

        assert listed(session, SelectionMode.SINCE_WATERMARK, watermark=wm) == ["3"]
        assert search_call(conn) == call("SEARCH", None, "SINCE 30-Apr-2024")

    def test_since_date_reaches_back_a_day_for_server_timezones(self):
        conn = make_conn(search=b"")
        session = open_session(conn)
        wm = Watermark(received_at=datetime(2024, 5, 2, 0, 30, tzinfo=timezone.utc))

        listed(session, SelectionMode.SINCE_WATERMARK, watermark=wm)

        assert search_call(conn) == call("SEARCH", None, "SINCE 01-May-2024")

    def test_since_cap_counts_only_admitted_messages(self):
        conn = make_conn(search=b"1 2 3 4 5")
        session = open_session(conn)
        wm = Watermark(received_at=at(2))

        assert listed(session, SelectionMode.SINCE_WATERMARK, limit=2, watermark=wm) == ["3", "4"]

    def test_explicit_ids_excludes_system_flag(self):
        conn = make_conn(search=b"3 1 2")
        session = open_session(conn)

        assert listed(session, SelectionMode.EXPLICIT_IDS, limit=2, exclude_flag="\\Seen") == ["1", "2"]
        assert search_call(conn) == call("SEARCH", None, "UNDELETED", "UNSEEN")

    def test_explicit_ids_excludes_keyword(self):
        conn = make_conn(search=b"")
        session = open_session(conn)

        assert listed(session, SelectionMode.EXPLICIT_IDS, exclude_flag="$Ingested") == []
        assert search_call(conn) == call("SEARCH", None, "UNDELETED", "UNKEYWORD $Ingested")

    def test_full_scan_keeps_newest(self):
        conn = make_conn(search=b"1 2 3 4 5")
        session = open_session(conn)

        assert listed(session, SelectionMode.FULL_SCAN_CAPPED, limit=2) == ["4", "5"]

    def test_vanished_message_is_skipped(self):
        conn = make_conn(search=b"2 9")
        session = open_session(conn)

        assert listed(session, SelectionMode.FULL_SCAN_CAPPED) == ["2"]

    def test_listing_carries_headers_and_internaldate(self):
        session = open_session(make_conn(search=b"2"))
        query = SelectionQuery(mode=SelectionMode.FULL_SCAN_CAPPED, limit=5)

        (message,) = list(session.list_messages(query))

        assert message.uid == 2
        assert message.uidvalidity == 7
        assert message.received_at == T0
        assert message.subject == "Listed"
        assert message.body is None

    def test_snapshot_cursor_uses_uidnext(self):
        wm = open_session(make_conn()).snapshot_cursor()

        assert wm.last_uid == 11
        assert wm.uidvalidity == 7
        assert wm.received_at is not None


class TestMessageOperations:
    def message(self, uid=3):
        return RawMessage(identifier=str(uid), mailbox="INBOX", uid=uid, uidvalidity=7)

    def test_fetch_returns_body_and_internaldate(self):
        session = open_session(make_conn())

        full = session.fetch(self.message())

        assert b"Subject: Full 3" in full.body
        assert full.received_at == at(3)

    def test_fetch_of_vanished_message_is_message_error(self):
        session = open_session(make_conn())

        with pytest.raises(MessageError):
            session.fetch(self.message(uid=9))

    def test_connection_abort_during_fetch_is_transport_error(self):
        conn = make_conn()
        conn.uid.side_effect = imaplib.IMAP4.abort("socket error: EOF")
        session = ImapSession(conn, "INBOX")

        with pytest.raises(TransportError):
            session.fetch(self.message())

    def test_flag_disposition(self):
        conn = make_conn()
        session = open_session(conn)

        session.dispose(self.message(), Disposition.parse("flag:\\Seen"))

        conn.uid.assert_called_once_with("STORE", "3", "+FLAGS", "(\\Seen)")
        conn.expunge.assert_not_called()

    def test_move_creates_folder_then_copies_and_expunges(self):
        conn = make_conn()
        session = open_session(conn)

        session.dispose(self.message(), Disposition.parse("move:Processed"))

        conn.create.assert_called_once_with("Processed")
        conn.subscribe.assert_called_once_with("Processed")
        assert conn.uid.call_args_list == [
            call("COPY", "3", "Processed"),
            call("STORE", "3", "+FLAGS", "(\\Deleted)"),
            call("EXPUNGE", "3"),
        ]

    def test_move_to_existing_folder_skips_create(self):
        conn = make_conn()
        session = open_session(conn)

        session.dispose(self.message(), Disposition.parse("move:Sent"))

        conn.create.assert_not_called()

    def test_delete_without_uidplus_uses_plain_expunge(self):
        conn = make_conn(capabilities=("IMAP4REV1",))
        session = open_session(conn)

        session.dispose(self.message(), Disposition.parse("delete"))

        conn.expunge.assert_called_once_with()

    def test_plain_expunge_warns_once_per_session(self):
        conn = make_conn(capabilities=("IMAP4REV1",))
        session = open_session(conn)

        with patch("inboxsync.infrastructure.email.providers.imap.client.logger") as log:
            session.dispose(self.message(), Disposition.parse("delete"))
            session.dispose(self.message(), Disposition.parse("delete"))

        assert conn.expunge.call_count == 2
        log.warning.assert_called_once()
        assert "UIDPLUS" in log.warning.call_args.args[0]

    def test_rejected_store_is_disposal_error(self):
        conn = make_conn()
        conn.uid.side_effect = lambda *args: ("NO", [b"STORE failed"])
        session = open_session(conn)

        with pytest.raises(DisposalError) as exc_info:
            session.dispose(self.message(), Disposition.parse("delete"))

        assert exc_info.value.stage == "dispose"
