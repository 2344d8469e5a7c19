"""Tests for selection/disposition policy and watermark arithmetic."""

import pytest

from inboxsync.application.ports.message_source import Disposition, DispositionAction, SelectionMode
from inboxsync.application.ports.watermark_store import Watermark
from inboxsync.application.sync_policy import SyncPolicy, WatermarkTracker, after_watermark
from inboxsync.domain.errors import ConfigError
from inboxsync.domain.models import Guarantee

from tests.fakes import T0, at, make_message


class TestDisposition:
    def test_parse_valid_values(self):
        assert Disposition.parse("delete") == Disposition(DispositionAction.DELETE)
        assert Disposition.parse("move:Archive/2024") == Disposition(DispositionAction.MOVE, "Archive/2024")
        assert Disposition.parse(" FLAG:\\Seen ") == Disposition(DispositionAction.FLAG, "\\Seen")

    @pytest.mark.parametrize("value", ["", "archive", "move", "move:", "flag:", "delete:Trash"])
    def test_parse_rejects_invalid_values(self, value):
        with pytest.raises(ConfigError):
            Disposition.parse(value)

    def test_str_round_trips_the_setting(self):
        assert str(Disposition.parse("move:Processed")) == "move:Processed"
        assert str(Disposition.parse("delete")) == "delete"


class TestSyncPolicy:
    def test_guarantee_by_combination(self):
        flag = Disposition.parse("flag:$Ingested")
        delete = Disposition.parse("delete")

        assert SyncPolicy(SelectionMode.EXPLICIT_IDS, flag).guarantee is Guarantee.IDEMPOTENT
        assert SyncPolicy(SelectionMode.EXPLICIT_IDS, delete).guarantee is Guarantee.AT_LEAST_ONCE
        assert SyncPolicy(SelectionMode.SINCE_WATERMARK, flag).guarantee is Guarantee.AT_LEAST_ONCE
        assert SyncPolicy(SelectionMode.FULL_SCAN_CAPPED, delete).guarantee is Guarantee.AT_LEAST_ONCE

    def test_query_excludes_flag_only_for_explicit_ids(self):
        wm = Watermark(received_at=T0)
        explicit = SyncPolicy(SelectionMode.EXPLICIT_IDS, Disposition.parse("flag:$Ingested"), 10)
        since = SyncPolicy(SelectionMode.SINCE_WATERMARK, Disposition.parse("flag:$Ingested"), 10)

        query = explicit.query(wm)
        assert query.exclude_flag == "$Ingested"
        assert query.limit == 10
        assert query.watermark == wm
        assert since.query(wm).exclude_flag is None

    def test_from_strings(self):
        policy = SyncPolicy.from_strings("Full-Scan-Capped", "move:Done", 5)

        assert policy.selection is SelectionMode.FULL_SCAN_CAPPED
        assert policy.disposition == Disposition(DispositionAction.MOVE, "Done")
        assert policy.max_messages == 5
        assert not policy.needs_baseline

    def test_from_strings_rejects_unknown_mode(self):
        with pytest.raises(ConfigError, match="since-watermark"):
            SyncPolicy.from_strings("newest", "delete", 5)

    def test_cap_must_be_positive(self):
        with pytest.raises(ConfigError):
            SyncPolicy(max_messages=0)

    def test_default_is_since_watermark_flag_seen(self):
        policy = SyncPolicy()

        assert policy.needs_baseline
        assert str(policy.disposition) == "flag:\\Seen"


class TestAfterWatermark:
    def test_no_watermark_admits_everything(self):
        assert after_watermark(make_message("a", at(-100)), None)

    def test_strictly_later_and_earlier(self):
        wm = Watermark(received_at=T0)

        assert after_watermark(make_message("a", at(1)), wm)
        assert not after_watermark(make_message("a", at(-1)), wm)

    def test_equal_timestamp_uses_boundary_ids(self):
        wm = Watermark(received_at=T0, boundary_ids=frozenset({"seen"}))

        assert not after_watermark(make_message("seen", T0), wm)
        assert after_watermark(make_message("other", T0), wm)

    def test_uid_cursor_within_same_uidvalidity(self):
        wm = Watermark(received_at=at(10), last_uid=5, uidvalidity=1)

        assert after_watermark(make_message("6", at(0), uid=6, uidvalidity=1), wm)
        assert not after_watermark(make_message("5", at(20), uid=5, uidvalidity=1), wm)

    def test_uidvalidity_change_falls_back_to_timestamp(self):
        wm = Watermark(received_at=at(10), last_uid=500, uidvalidity=1)

        assert after_watermark(make_message("3", at(11), uid=3, uidvalidity=2), wm)
        assert not after_watermark(make_message("4", at(9), uid=4, uidvalidity=2), wm)

    def test_missing_timestamp_admits(self):
        assert after_watermark(make_message("a", None), Watermark(received_at=T0))

    def test_missing_timestamp_skips_identifiers_in_boundary(self):
        wm = Watermark(received_at=at(60), boundary_ids=frozenset({"uid-a"}))

        assert not after_watermark(make_message("uid-a", None), wm)
        assert after_watermark(make_message("uid-b", None), wm)


class TestWatermark:
    def test_advanced_to_never_moves_back(self):
        wm = Watermark(received_at=at(5), last_uid=10, uidvalidity=1, boundary_ids=frozenset({"10"}))
        older = Watermark(received_at=at(1), last_uid=3, uidvalidity=1, boundary_ids=frozenset({"3"}))

        assert wm.advanced_to(older) == wm

    def test_advanced_to_later_replaces_boundary(self):
        wm = Watermark(received_at=at(5), boundary_ids=frozenset({"a"}))
        merged = wm.advanced_to(Watermark(received_at=at(6), boundary_ids=frozenset({"b"})))

        assert merged.received_at == at(6)
        assert merged.boundary_ids == frozenset({"b"})

    def test_advanced_to_equal_unions_boundary(self):
        wm = Watermark(received_at=at(5), boundary_ids=frozenset({"a"}))
        merged = wm.advanced_to(Watermark(received_at=at(5), boundary_ids=frozenset({"b"})))

        assert merged.boundary_ids == frozenset({"a", "b"})

    def test_new_uidvalidity_resets_uid_cursor(self):
        wm = Watermark(received_at=at(5), last_uid=900, uidvalidity=1)
        merged = wm.advanced_to(Watermark(received_at=at(6), last_uid=2, uidvalidity=2))

        assert merged.last_uid == 2
        assert merged.uidvalidity == 2


class TestWatermarkTracker:
    def test_nothing_observed_keeps_start(self):
        start = Watermark(received_at=T0)

        assert WatermarkTracker(start).result() is start
        assert WatermarkTracker(None).result() is None

    def test_result_is_max_over_observed(self):
        tracker = WatermarkTracker(Watermark(received_at=T0))
        tracker.observe(make_message("m1", at(1)))
        tracker.observe(make_message("m3", at(3)))
        tracker.observe(make_message("m2", at(2)))

        result = tracker.result()
        assert tracker.observed == 3
        assert result.received_at == at(3)
        assert result.boundary_ids == frozenset({"m3"})
