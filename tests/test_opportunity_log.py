"""Tests for the append-only opportunity log."""

import json
import re
from datetime import timedelta

from catalyst_desk.models import (
    Checkpoint,
    CheckpointType,
    MarketState,
    Verdict,
)
from catalyst_desk.opportunity_log import final_verdict, new_entry_from_signal, new_entry_id
from tests.conftest import MARKET_OPEN_UTC, make_signal

NOW = MARKET_OPEN_UTC


def _entry(**overrides):
    entry = new_entry_from_signal(
        make_signal(),
        MarketState(global_ticker="HG=F", base_price=4.0),
        local_ticker="HINDCOPPER.NS",
        local_base_price=250.0,
        at=NOW,
    )
    for k, v in overrides.items():
        setattr(entry, k, v)
    return entry


def _cp(verdict, minutes=90, change=1.0):
    return Checkpoint(
        checked_at=NOW + timedelta(minutes=minutes),
        price=4.04,
        price_change_pct=change,
        verdict=verdict,
    )


class TestEntryIds:
    def test_format(self):
        entry_id = new_entry_id(NOW)
        assert re.fullmatch(r"\d{13}-[a-z0-9]{6}", entry_id)
        assert entry_id.startswith(str(int(NOW.timestamp() * 1000)))


class TestFinalVerdict:
    def test_precedence(self):
        entry = _entry()
        assert final_verdict(entry) == Verdict.PENDING
        entry.checkpoints[CheckpointType.AFTER_1HR] = _cp(Verdict.NEUTRAL)
        assert final_verdict(entry) == Verdict.NEUTRAL
        entry.checkpoints[CheckpointType.NEXT_SESSION] = _cp(Verdict.BAD_CALL)
        assert final_verdict(entry) == Verdict.BAD_CALL
        entry.checkpoints[CheckpointType.AFTER_24HR] = _cp(Verdict.GOOD_CALL)
        assert final_verdict(entry) == Verdict.GOOD_CALL


class TestAppendAndRead:
    def test_round_trip(self, opportunity_log):
        entry = _entry()
        opportunity_log.append(entry)
        [loaded] = opportunity_log.read_all()
        assert loaded.id == entry.id
        assert loaded.keyword == "Copper"
        assert loaded.market_state.base_price == 4.0
        assert loaded.prediction.confidence == 9
        assert loaded.final_verdict == Verdict.PENDING

    def test_wire_format_uses_checkpoint_keys(self, opportunity_log):
        entry = _entry()
        entry.checkpoints[CheckpointType.AFTER_1HR] = _cp(Verdict.GOOD_CALL)
        opportunity_log.append(entry)
        raw = json.loads(opportunity_log.path.read_text().strip())
        assert list(raw["checkpoints"]) == ["after1hr"]
        assert raw["timestamp"].endswith("Z")

    def test_missing_file_reads_empty(self, opportunity_log):
        assert opportunity_log.read_all() == []

    def test_bad_lines_skipped(self, opportunity_log):
        opportunity_log.append(_entry())
        with open(opportunity_log.path, "a", encoding="utf-8") as fh:
            fh.write("{not json\n\n")
        opportunity_log.append(_entry())
        assert len(opportunity_log.read_all()) == 2


class TestUpdateCheckpoint:
    def test_records_and_recomputes_verdict(self, opportunity_log):
        entry = _entry()
        opportunity_log.append(entry)
        assert opportunity_log.update_checkpoint(
            entry.id, CheckpointType.AFTER_1HR, _cp(Verdict.GOOD_CALL)
        )
        loaded = opportunity_log.get(entry.id)
        assert loaded.checkpoints[CheckpointType.AFTER_1HR].verdict == Verdict.GOOD_CALL
        assert loaded.final_verdict == Verdict.GOOD_CALL

    def test_never_overwrites(self, opportunity_log):
        entry = _entry()
        opportunity_log.append(entry)
        opportunity_log.update_checkpoint(entry.id, CheckpointType.AFTER_1HR, _cp(Verdict.GOOD_CALL))
        assert not opportunity_log.update_checkpoint(
            entry.id, CheckpointType.AFTER_1HR, _cp(Verdict.BAD_CALL)
        )
        assert opportunity_log.get(entry.id).checkpoints[CheckpointType.AFTER_1HR].verdict == Verdict.GOOD_CALL

    def test_refuses_out_of_order(self, opportunity_log):
        entry = _entry()
        opportunity_log.append(entry)
        opportunity_log.update_checkpoint(entry.id, CheckpointType.AFTER_24HR, _cp(Verdict.BAD_CALL))
        assert not opportunity_log.update_checkpoint(
            entry.id, CheckpointType.AFTER_1HR, _cp(Verdict.GOOD_CALL)
        )

    def test_other_lines_untouched(self, opportunity_log):
        first, second = _entry(), _entry()
        opportunity_log.append(first)
        with open(opportunity_log.path, "a", encoding="utf-8") as fh:
            fh.write("garbage line kept verbatim\n")
        opportunity_log.append(second)
        before = opportunity_log.path.read_text().splitlines()

        opportunity_log.update_checkpoint(second.id, CheckpointType.AFTER_1HR, _cp(Verdict.NEUTRAL))
        after = opportunity_log.path.read_text().splitlines()
        assert after[0] == before[0]
        assert after[1] == "garbage line kept verbatim"
        assert after[2] != before[2]
        assert len(after) == 3

    def test_unknown_id(self, opportunity_log):
        opportunity_log.append(_entry())
        assert not opportunity_log.update_checkpoint("missing", CheckpointType.AFTER_1HR, _cp(Verdict.GOOD_CALL))
