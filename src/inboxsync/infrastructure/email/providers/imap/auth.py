from __future__ import annotations
from dataclasses import dataclass
import imaplib

from loguru import logger

from inboxsync.domain.errors import TransportError


@dataclass(frozen=True)
class ImapCredentials:
    """
    Represents credentials and endpoint for a single IMAP mailbox.
    """
    host: str
    username: str
    password: str
    port: int = 993
    use_ssl: bool = True
    timeout: float = 30.0


class ImapAuthenticator:
    """
    Responsible ONLY for establishing an authenticated IMAP connection.
    No folder logic, no fetching, no parsing.
    """

    def __init__(self, creds: ImapCredentials) -> None:
        self.creds = creds

    def login(self) -> imaplib.IMAP4:
        """
        Returns an authenticated IMAP4 / IMAP4_SSL connection.
        Every socket operation on it is bounded by creds.timeout.
        """
        try:
            if self.creds.use_ssl:
                conn = imaplib.IMAP4_SSL(self.creds.host, self.creds.port, timeout=self.creds.timeout)
            else:
                conn = imaplib.IMAP4(self.creds.host, self.creds.port, timeout=self.creds.timeout)
        except (OSError, imaplib.IMAP4.error) as e:
            raise TransportError(f"Cannot connect to {self.creds.host}:{self.creds.port}: {e}") from e

        try:
            conn.login(self.creds.username, self.creds.password)
        except (OSError, imaplib.IMAP4.error) as e:
            close_quietly(conn)
            raise TransportError(f"IMAP login failed for {self.creds.username}: {e}") from e

        logger.debug(f"IMAP session opened to {self.creds.host} as {self.creds.username}")
        return conn


def close_quietly(conn: imaplib.IMAP4) -> None:
    """Logout, logging rather than raising; used on every exit path."""
    try:
        conn.logout()
    except (OSError, imaplib.IMAP4.error) as e:
        logger.warning(f"IMAP logout failed: {e}")
