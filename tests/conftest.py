"""Shared fixtures for inboxsync tests."""

import pytest

from inboxsync.application.normalizer import Normalizer
from inboxsync.application.ports.message_source import Disposition, SelectionMode
from inboxsync.application.sync_policy import SyncPolicy
from inboxsync.application.use_cases.sync_mailbox import SyncEngine

from tests.fakes import FakeSink, FakeSource, FakeWatermarkStore


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def watermarks():
    return FakeWatermarkStore()


@pytest.fixture
def make_engine(source, sink, watermarks):
    """Build an engine over the fakes with a chosen policy."""

    def _make(
        selection: SelectionMode = SelectionMode.SINCE_WATERMARK,
        disposition: str = "delete",
        max_messages: int = 50,
    ) -> SyncEngine:
        policy = SyncPolicy(
            selection=selection,
            disposition=Disposition.parse(disposition),
            max_messages=max_messages,
        )
        return SyncEngine(
            source=source,
            sink=sink,
            watermarks=watermarks,
            normalizer=Normalizer(provenance="imap", mailbox=source.mailbox),
            policy=policy,
        )

    return _make
