"""Factory for wiring a SyncEngine from settings."""

from __future__ import annotations

from typing import Union

from loguru import logger

from inboxsync.application.normalizer import Normalizer
from inboxsync.application.ports.message_source import DispositionAction, MessageSource, SelectionMode
from inboxsync.application.sync_policy import SyncPolicy
from inboxsync.application.use_cases.sync_mailbox import SyncEngine
from inboxsync.domain.errors import ConfigError
from inboxsync.infrastructure.email.providers.imap import ImapConfig, ImapMessageSource
from inboxsync.infrastructure.email.providers.pop3 import Pop3Config, Pop3MessageSource
from inboxsync.infrastructure.settings import Settings
from inboxsync.infrastructure.stores import PostgresMailStore, SQLiteMailStore

MailStore = Union[SQLiteMailStore, PostgresMailStore]


class SyncEngineFactory:
    """Factory for creating engines and their collaborators."""

    @staticmethod
    def policy(settings: Settings) -> SyncPolicy:
        policy = SyncPolicy.from_strings(
            settings.sync_selection,
            settings.sync_disposition,
            settings.sync_max_messages,
        )
        if settings.mail_transport == "pop3":
            if policy.disposition.action is not DispositionAction.DELETE:
                raise ConfigError(f"POP3 only supports the delete disposition, got {policy.disposition}")
            if policy.selection is SelectionMode.EXPLICIT_IDS:
                # Without flags every retained message would be selected again
                logger.warning("explicit-ids over POP3 relies on delete disposition to make progress")
        return policy

    @staticmethod
    def source(settings: Settings) -> MessageSource:
        settings.require_mailbox()
        password = settings.mail_password.get_secret_value()

        if settings.mail_transport == "imap":
            return ImapMessageSource(
                ImapConfig(
                    host=settings.mail_host,
                    username=settings.mail_username,
                    password=password,
                    port=settings.resolved_mail_port,
                    use_ssl=settings.mail_use_ssl,
                    folder=settings.mail_folder,
                    timeout=settings.mailbox_timeout_seconds,
                )
            )
        if settings.mail_transport == "pop3":
            return Pop3MessageSource(
                Pop3Config(
                    host=settings.mail_host,
                    username=settings.mail_username,
                    password=password,
                    port=settings.resolved_mail_port,
                    use_ssl=settings.mail_use_ssl,
                    timeout=settings.mailbox_timeout_seconds,
                )
            )
        raise ConfigError(f"Unknown mail transport: {settings.mail_transport}")

    @staticmethod
    def store(settings: Settings) -> MailStore:
        if settings.store_backend == "sqlite":
            return SQLiteMailStore(settings.sqlite_db_path)
        if settings.store_backend == "postgres":
            store = PostgresMailStore(settings)
            store.setup_schema()
            return store
        raise ConfigError(f"Unknown store backend: {settings.store_backend}")

    @classmethod
    def from_settings(cls, settings: Settings, store: MailStore | None = None) -> SyncEngine:
        """Create an engine; ConfigError is raised before any mailbox connection."""
        policy = cls.policy(settings)
        source = cls.source(settings)
        store = store if store is not None else cls.store(settings)

        normalizer = Normalizer(
            provenance=source.provider,
            mailbox=source.mailbox,
            body_max_length=settings.body_max_length,
            sender_sentinel=settings.sender_sentinel,
            subject_sentinel=settings.subject_sentinel,
        )
        logger.info(
            f"Sync engine for {source.mailbox} via {source.provider}, "
            f"store={settings.store_backend}, guarantee={policy.guarantee.value}"
        )
        return SyncEngine(
            source=source,
            sink=store,
            watermarks=store,
            normalizer=normalizer,
            policy=policy,
        )
