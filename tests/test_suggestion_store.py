"""Tests for SQLite persistence of signals, suggestions and gate decisions."""

from datetime import timedelta

import pytest

from catalyst_desk.config import GateConfig
from catalyst_desk.errors import StoreError
from catalyst_desk.models import (
    CatalystSuggestion,
    Decision,
    GateAction,
    PotentialStatus,
    SignalStatus,
    SuggestionAction,
    SuggestionStatus,
    WatchCriteria,
)
from catalyst_desk.portfolio.exits import PhasedTrailingStop, build_exit_plan
from catalyst_desk.storage import connect, migrate
from catalyst_desk.suggestion_store import SUPERSEDED_REASON, SuggestionStore
from tests.conftest import MARKET_OPEN_UTC, make_signal

NOW = MARKET_OPEN_UTC


def _suggestion(**overrides) -> CatalystSuggestion:
    fields = dict(
        symbol="HINDCOPPER.NS",
        action=SuggestionAction.BUY,
        confidence=8,
        entry_price=100.0,
        target_price=110.0,
        stop_loss=95.0,
        quantity=200,
        min_hold_hours=48,
        max_hold_days=30,
        trailing_stop=True,
        exit_plan=build_exit_plan(GateConfig(), 95.0, 48),
        risk_reward=2.0,
        rationale="BUY 200 HINDCOPPER",
    )
    fields.update(overrides)
    return CatalystSuggestion(**fields)


class TestMigrate:
    def test_migrate_is_idempotent(self, tmp_path):
        conn = connect(str(tmp_path / "db" / "catalyst.db"))
        migrate(conn)
        migrate(conn)
        tables = {
            r["name"] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        }
        assert {
            "catalyst_signals",
            "potential_catalysts",
            "suggestions",
            "gate_decisions",
            "suggestion_transactions",
        } <= tables
        conn.close()

    def test_upgrades_older_potential_catalysts_table(self, tmp_path):
        path = str(tmp_path / "old.db")
        conn = connect(path)
        conn.execute(
            """
            CREATE TABLE potential_catalysts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                symbol TEXT NOT NULL,
                headline TEXT NOT NULL,
                source TEXT,
                signal_id TEXT,
                detected_at TEXT NOT NULL,
                notes TEXT
            )
            """
        )
        conn.execute(
            "INSERT INTO potential_catalysts (symbol, headline, detected_at) VALUES (?, ?, ?)",
            ("HINDCOPPER", "Old row", "2026-03-01T04:30:00Z"),
        )
        conn.commit()
        conn.close()

        s = SuggestionStore.open(path)
        try:
            [old] = s.list_potential_catalysts(PotentialStatus.MONITORING)
            assert old.headline == "Old row"
            assert old.criteria == WatchCriteria()
            assert old.affected_symbols == []
            new_id = s.record_potential_catalyst("VEDL", "New row", detected_at=NOW)
            assert s.get_potential_catalyst(new_id).status == PotentialStatus.MONITORING
        finally:
            s.close()


class TestSignals:
    def test_save_and_get(self, store):
        saved = store.save_signal(make_signal(expires_at=NOW + timedelta(hours=48)))
        got = store.get_signal(saved.id)
        assert got.keyword == "Copper"
        assert got.status == SignalStatus.ACTIVE
        assert got.created_at == NOW
        assert got.expires_at == NOW + timedelta(hours=48)

    def test_save_is_upsert(self, store):
        store.save_signal(make_signal(confidence=7))
        store.save_signal(make_signal(confidence=9))
        assert len(store.list_signals()) == 1
        assert store.get_signal("sig-1").confidence == 9

    def test_legal_transition_sets_acted_at(self, store):
        store.save_signal(make_signal())
        acted = store.set_signal_status("sig-1", SignalStatus.ACTED, now=NOW)
        assert acted.acted_at == NOW
        assert store.get_signal("sig-1").status == SignalStatus.ACTED

    @pytest.mark.parametrize(
        "start, target",
        [
            (SignalStatus.PENDING_MARKET_OPEN, SignalStatus.ACTED),
            (SignalStatus.EXPIRED, SignalStatus.ACTIVE),
            (SignalStatus.DISMISSED, SignalStatus.ACTIVE),
            (SignalStatus.ACTED, SignalStatus.EXPIRED),
        ],
    )
    def test_illegal_transitions_raise(self, store, start, target):
        store.save_signal(make_signal(status=start))
        with pytest.raises(StoreError):
            store.set_signal_status("sig-1", target)

    def test_unknown_signal(self, store):
        with pytest.raises(StoreError):
            store.set_signal_status("nope", SignalStatus.ACTIVE)

    def test_activate_and_expire(self, store):
        store.save_signal(
            make_signal(id="a", status=SignalStatus.PENDING_MARKET_OPEN, expires_at=NOW + timedelta(hours=1))
        )
        store.save_signal(
            make_signal(id="b", status=SignalStatus.PENDING_MARKET_OPEN, expires_at=NOW - timedelta(hours=1))
        )
        store.save_signal(make_signal(id="c", status=SignalStatus.ACTIVE, expires_at=NOW - timedelta(minutes=5)))

        assert store.activate_pending_signals(NOW) == 1
        assert store.get_signal("a").status == SignalStatus.ACTIVE
        assert store.expire_signals(NOW) == 2
        assert store.get_signal("b").status == SignalStatus.EXPIRED
        assert store.get_signal("c").status == SignalStatus.EXPIRED
        assert store.get_signal("a").status == SignalStatus.ACTIVE


class TestPropose:
    def test_round_trip_with_exit_plan(self, store):
        s = store.propose(_suggestion(), now=NOW)
        assert s.id is not None
        assert s.symbol == "HINDCOPPER"
        assert s.status == SuggestionStatus.PENDING
        assert s.expires_at == NOW + timedelta(days=7)
        assert s.exit_plan == _suggestion().exit_plan
        assert s.trailing_stop is True

    def test_newer_pending_supersedes_older(self, store):
        first = store.propose(_suggestion(), now=NOW)
        second = store.propose(_suggestion(entry_price=101.0), now=NOW + timedelta(hours=1))
        old = store.get(first.id)
        assert old.status == SuggestionStatus.SUPERSEDED
        assert old.superseded_by == second.id
        assert old.superseded_reason == SUPERSEDED_REASON
        assert old.reviewed_at == NOW + timedelta(hours=1)
        assert [p.id for p in store.list_pending()] == [second.id]

    def test_other_symbols_untouched(self, store):
        a = store.propose(_suggestion(), now=NOW)
        store.propose(_suggestion(symbol="NATIONALUM"), now=NOW)
        assert store.get(a.id).status == SuggestionStatus.PENDING

    def test_reviewed_suggestions_are_not_superseded(self, store):
        a = store.propose(_suggestion(), now=NOW)
        store.review(a.id, approve=True, now=NOW)
        store.propose(_suggestion(), now=NOW + timedelta(hours=1))
        assert store.get(a.id).status == SuggestionStatus.APPROVED

    def test_unknown_catalyst_reference_is_nulled(self, store, caplog):
        with caplog.at_level("WARNING"):
            s = store.propose(_suggestion(catalyst_id=999), now=NOW)
        assert s.catalyst_id is None
        assert "suggestion_unknown_catalyst" in caplog.text

    def test_known_catalyst_reference_is_kept(self, store):
        cid = store.record_potential_catalyst("HINDCOPPER", "Mine halts output", signal_id="sig-1")
        s = store.propose(_suggestion(catalyst_id=cid), now=NOW)
        assert s.catalyst_id == cid


class TestReviewAndExpiry:
    def test_approve(self, store):
        s = store.propose(_suggestion(), now=NOW)
        approved = store.review(s.id, approve=True, now=NOW + timedelta(hours=2))
        assert approved.status == SuggestionStatus.APPROVED
        assert approved.reviewed_at == NOW + timedelta(hours=2)

    def test_cannot_review_twice(self, store):
        s = store.propose(_suggestion(), now=NOW)
        store.review(s.id, approve=False, now=NOW)
        with pytest.raises(StoreError):
            store.review(s.id, approve=True, now=NOW)

    def test_expire_stale(self, store):
        s = store.propose(_suggestion(), now=NOW)
        assert store.expire_stale(NOW + timedelta(days=6)) == 0
        assert store.expire_stale(NOW + timedelta(days=7)) == 1
        assert store.get(s.id).status == SuggestionStatus.EXPIRED

    def test_list_by_status_and_action(self, store):
        buy = store.propose(_suggestion(), now=NOW)
        store.propose(_suggestion(symbol="NATIONALUM", action=SuggestionAction.WATCH), now=NOW)
        store.review(buy.id, approve=True, now=NOW)
        approved_buys = store.list_by_status(SuggestionStatus.APPROVED, SuggestionAction.BUY)
        assert [s.id for s in approved_buys] == [buy.id]


class TestExitStateAndLinks:
    def test_update_exit_state(self, store):
        s = store.propose(_suggestion(), now=NOW)
        state = PhasedTrailingStop().start(100.0, NOW, 95.0)
        store.update_exit_state(s.id, state)
        assert store.get(s.id).exit_state == state

    def test_update_exit_state_unknown(self, store):
        with pytest.raises(StoreError):
            store.update_exit_state(12345, PhasedTrailingStop().start(100.0, NOW, 95.0))

    def test_link_transaction(self, store):
        s = store.propose(_suggestion(), now=NOW)
        store.link_transaction(s.id, "txn-1", 90.0, auto=True, now=NOW)
        links = store.linked_transactions(s.id)
        assert len(links) == 1
        assert links[0]["auto_linked"] == 1


class TestDecisions:
    def test_every_decision_is_recorded(self, store):
        store.record_decision(
            Decision(GateAction.PASS, "HINDCOPPER", reasons=["washout"], signal_id="sig-1", evaluated_at=NOW)
        )
        store.record_decision(Decision(GateAction.BUY, "HINDCOPPER", reasons=["ok"], evaluated_at=NOW))
        rows = store.list_decisions("HINDCOPPER.NS")
        assert [r["action"] for r in rows] == ["PASS", "BUY"]
        assert rows[0]["rationale"] == "washout"

    def test_open_on_file(self, tmp_path):
        path = str(tmp_path / "catalyst.db")
        s1 = SuggestionStore.open(path)
        s1.propose(_suggestion(), now=NOW)
        s1.close()
        s2 = SuggestionStore.open(path)
        assert len(s2.list_pending()) == 1
        s2.close()
