"""Tests for the sweep, exit refresh, scan and trade-linking cron jobs."""

import json
from datetime import timedelta
from unittest.mock import Mock

import pytest

from catalyst_desk.config import GateConfig
from catalyst_desk.jobs import link_trades, scan_catalysts, sweep
from catalyst_desk.jobs.refresh_exits import refresh_all
from catalyst_desk.market_validator import MarketValidator
from catalyst_desk.models import (
    CatalystAsset,
    CatalystSuggestion,
    PortfolioContext,
    PotentialStatus,
    SignalStatus,
    SuggestionAction,
    SuggestionStatus,
    TradeRecord,
)
from catalyst_desk.portfolio.exits import PhasedTrailingStop, build_exit_plan
from catalyst_desk.suggestion_store import SuggestionStore
from catalyst_desk.time_utils import FrozenClock, now as utc_now
from catalyst_desk.tracker import CatalystTracker
from tests.conftest import MARKET_CLOSED_UTC, MARKET_OPEN_UTC, make_bars, make_signal

NOW = MARKET_OPEN_UTC


class TestSweep:
    def _seed(self, store):
        store.save_signal(
            make_signal(id="pending", status=SignalStatus.PENDING_MARKET_OPEN, expires_at=NOW + timedelta(hours=12))
        )
        store.save_signal(make_signal(id="stale", expires_at=NOW - timedelta(hours=1)))

    def test_open_market_activates_pending(self, store):
        self._seed(store)
        result = sweep.sweep(store, now=NOW)
        assert result.market_mode == "OPEN"
        assert (result.signals_expired, result.signals_activated) == (1, 1)
        assert store.get_signal("pending").status == SignalStatus.ACTIVE
        assert store.get_signal("stale").status == SignalStatus.EXPIRED

    def test_closed_market_leaves_pending(self, store):
        self._seed(store)
        result = sweep.sweep(store, now=MARKET_CLOSED_UTC)
        assert result.signals_activated == 0
        assert store.get_signal("pending").status == SignalStatus.PENDING_MARKET_OPEN

    def test_main_runs_against_db_file(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("CATALYST_DB_PATH", str(tmp_path / "catalyst.db"))
        assert sweep.main([]) == 0
        assert "expired 0 signals" in capsys.readouterr().out

    def _watch(self, store, detected_at):
        return store.record_potential_catalyst(
            "HINDCOPPER",
            "Chile copper mine halts output after strike",
            detected_at=detected_at,
            affected_symbols=["HINDCOPPER.NS"],
        )

    def _tracker(self, store, history):
        clock = FrozenClock(NOW)
        return CatalystTracker(store, MarketValidator(history, clock=clock), clock=clock)

    def test_open_market_confirms_monitored_catalysts(self, store):
        catalyst_id = self._watch(store, NOW - timedelta(hours=2))
        history = Mock(return_value=make_bars([100.0] * 11 + [103.0]))

        result = sweep.sweep(store, now=NOW, tracker=self._tracker(store, history))

        assert (result.catalysts_confirmed, result.catalysts_expired) == (1, 0)
        assert store.get_potential_catalyst(catalyst_id).status == PotentialStatus.CONFIRMED

    def test_closed_market_only_expires_catalysts(self, store):
        stale = self._watch(store, MARKET_CLOSED_UTC - timedelta(hours=49))
        self._watch(store, MARKET_CLOSED_UTC - timedelta(hours=2))
        history = Mock()

        result = sweep.sweep(store, now=MARKET_CLOSED_UTC, tracker=self._tracker(store, history))

        assert (result.catalysts_confirmed, result.catalysts_expired) == (0, 1)
        assert store.get_potential_catalyst(stale).status == PotentialStatus.EXPIRED
        history.assert_not_called()

    def test_without_tracker_still_expires_catalysts(self, store):
        stale = self._watch(store, NOW - timedelta(hours=49))
        result = sweep.sweep(store, now=NOW)
        assert result.catalysts_expired == 1
        assert store.get_potential_catalyst(stale).status == PotentialStatus.EXPIRED


def _approved_buy(store, symbol="HINDCOPPER", stop=95.0, approved_at=NOW - timedelta(hours=72)):
    s = store.propose(
        CatalystSuggestion(
            symbol=symbol,
            action=SuggestionAction.BUY,
            entry_price=100.0,
            target_price=110.0,
            stop_loss=stop,
            quantity=100,
            min_hold_hours=48,
            max_hold_days=30,
            trailing_stop=True,
            exit_plan=build_exit_plan(GateConfig(), stop or 95.0, 48),
        ),
        now=approved_at - timedelta(hours=1),
    )
    return store.review(s.id, approve=True, now=approved_at)


class TestRefreshExits:
    @pytest.fixture
    def engine(self):
        return PhasedTrailingStop(GateConfig())

    def test_hard_stop_exit_is_persisted(self, store, engine):
        s = _approved_buy(store)
        history = Mock(return_value=make_bars([100.0] * 20 + [94.0]))

        [update] = refresh_all(store, engine, history, now=NOW)

        history.assert_called_once_with("HINDCOPPER.NS")
        assert update.state.exit_triggered is True
        assert update.state.exit_reason == "stop_loss_hit"
        assert update.state.entered_at == NOW - timedelta(hours=72)
        assert store.get(s.id).exit_state == update.state

    def test_triggered_positions_are_not_refetched(self, store, engine):
        _approved_buy(store)
        refresh_all(store, engine, Mock(return_value=make_bars([100.0] * 20 + [94.0])), now=NOW)
        history = Mock()
        [update] = refresh_all(store, engine, history, now=NOW + timedelta(days=1))
        assert update.detail == "exit already triggered"
        history.assert_not_called()

    def test_only_approved_buys_are_tracked(self, store, engine):
        store.propose(CatalystSuggestion(symbol="NATIONALUM", action=SuggestionAction.BUY), now=NOW)
        watch = store.propose(CatalystSuggestion(symbol="VEDL", action=SuggestionAction.WATCH), now=NOW)
        store.review(watch.id, approve=True, now=NOW)
        assert refresh_all(store, engine, Mock(), now=NOW) == []

    def test_skips_without_stop_or_history(self, store, engine):
        _approved_buy(store, symbol="NOSTOP", stop=None)
        _approved_buy(store, symbol="NODATA")
        updates = refresh_all(store, engine, Mock(return_value=None), now=NOW)
        details = {u.symbol: u.detail for u in updates}
        assert details == {"NOSTOP": "missing entry or stop", "NODATA": "no price history"}

    def test_one_failure_does_not_stop_the_run(self, store, engine):
        _approved_buy(store, symbol="BROKEN")
        ok = _approved_buy(store, symbol="HINDCOPPER")

        def history(ticker):
            if ticker.startswith("BROKEN"):
                raise RuntimeError("feed down")
            return make_bars([100.0] * 20)

        updates = refresh_all(store, engine, history, now=NOW)
        assert {u.symbol: u.detail for u in updates}["BROKEN"] == "feed down"
        assert store.get(ok.id).exit_state is not None
        assert store.get(ok.id).status == SuggestionStatus.APPROVED


class TestScanJobInputs:
    def test_load_headlines_groups_by_keyword(self, tmp_path, caplog):
        path = tmp_path / "headlines.jsonl"
        lines = [
            json.dumps({"keyword": "Copper", "title": "Mine halts output", "source": "Reuters",
                        "published_at": "2026-03-02T04:00:00Z"}),
            "{broken",
            json.dumps({"keyword": "Copper", "title": ""}),
            json.dumps({"title": "No keyword"}),
            "",
            json.dumps({"keyword": "Crude Oil", "title": "OPEC+ cut"}),
        ]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        with caplog.at_level("WARNING"):
            grouped = scan_catalysts.load_headlines(str(path))
        assert sorted(grouped) == ["Copper", "Crude Oil"]
        [item] = grouped["Copper"]
        assert item.source == "Reuters"
        assert item.published_at == NOW - timedelta(minutes=30)
        assert "headline_bad_line line=2" in caplog.text

    def test_load_assets_and_empty_portfolio(self, tmp_path):
        path = tmp_path / "assets.json"
        path.write_text(json.dumps([{"keyword": "Copper", "ticker": "HINDCOPPER.NS"}]), encoding="utf-8")
        [asset] = scan_catalysts.load_assets(str(path))
        assert asset.id == "Copper"
        assert asset.validation_ticker == "HG=F"
        assert scan_catalysts.load_portfolio("").holdings == []

    def test_fill_adv_only_fills_gaps(self):
        context = PortfolioContext(adv_10d={"HINDCOPPER": 5_000.0})
        prices = Mock()
        prices.get_average_daily_volume.return_value = 80_000.0
        assets = [
            CatalystAsset(id="copper", keyword="Copper", ticker="HINDCOPPER.NS"),
            CatalystAsset(id="oil", keyword="Crude Oil", ticker="ONGC.NS"),
            CatalystAsset(id="gold", keyword="Gold"),
        ]
        scan_catalysts.fill_adv(context, assets, prices)
        prices.get_average_daily_volume.assert_called_once_with("ONGC.NS")
        assert context.adv_10d == {"HINDCOPPER": 5_000.0, "ONGC": 80_000.0}

    def test_missing_api_key_is_fatal(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("GEMINI_API_KEY", "")
        assets = tmp_path / "assets.json"
        assets.write_text("[]", encoding="utf-8")
        headlines = tmp_path / "headlines.jsonl"
        headlines.write_text("", encoding="utf-8")
        code = scan_catalysts.main(["--assets", str(assets), "--headlines", str(headlines)])
        assert code == 1
        assert "GEMINI_API_KEY" in capsys.readouterr().err


def _trade(symbol="HINDCOPPER", price=101.0, executed_at=NOW - timedelta(hours=60), trade_id="t1"):
    return TradeRecord(
        symbol=symbol, action="BUY", quantity=100, price=price, executed_at=executed_at, id=trade_id
    )


class TestLinkTrades:
    def test_confident_match_is_linked(self, store):
        s = _approved_buy(store)
        result = link_trades.link_pass(store, [_trade()], now=NOW)
        assert [(m.suggestion_id, m.transaction_id, m.confidence) for m in result.linked] == [(s.id, "t1", 100.0)]
        [row] = store.linked_transactions(s.id)
        assert (row["transaction_id"], row["auto_linked"]) == ("t1", 1)

    def test_weaker_match_is_left_for_review(self, store):
        s = _approved_buy(store)
        # six days after approval, 8% off the entry
        late = _trade(price=108.0, executed_at=NOW + timedelta(days=3))
        result = link_trades.link_pass(store, [late], now=NOW + timedelta(days=3))
        assert result.linked == []
        assert [(m.suggestion_id, m.confidence) for m in result.to_review] == [(s.id, 75.0)]
        assert store.linked_transactions(s.id) == []

    def test_already_linked_pairs_are_not_proposed_again(self, store):
        _approved_buy(store)
        link_trades.link_pass(store, [_trade()], now=NOW)
        again = link_trades.link_pass(store, [_trade()], now=NOW)
        assert (again.linked, again.to_review) == ([], [])

    def test_trade_links_to_one_suggestion_only(self, store):
        older = _approved_buy(store, approved_at=NOW - timedelta(hours=72))
        newer = _approved_buy(store, approved_at=NOW - timedelta(hours=60))
        trade = _trade(price=100.0, executed_at=NOW - timedelta(hours=48))
        result = link_trades.link_pass(store, [trade], now=NOW)
        assert [m.suggestion_id for m in result.linked] == [newer.id]
        assert store.linked_transactions(older.id) == []

    def test_dry_run_writes_nothing(self, store):
        s = _approved_buy(store)
        result = link_trades.link_pass(store, [_trade()], now=NOW, dry_run=True)
        assert len(result.linked) == 1
        assert store.linked_transactions(s.id) == []

    def test_old_approvals_are_ignored(self, store):
        _approved_buy(store, approved_at=NOW - timedelta(days=40))
        trade = _trade(executed_at=NOW - timedelta(days=40) + timedelta(hours=2))
        result = link_trades.link_pass(store, [trade], now=NOW)
        assert (result.linked, result.to_review) == ([], [])

    def test_main_links_trades_from_portfolio_file(self, tmp_path, monkeypatch, capsys):
        db_path = tmp_path / "catalyst.db"
        monkeypatch.setenv("CATALYST_DB_PATH", str(db_path))
        reviewed = utc_now() - timedelta(days=1)
        seeded = SuggestionStore.open(str(db_path))
        try:
            suggestion = _approved_buy(seeded, approved_at=reviewed)
        finally:
            seeded.close()
        portfolio = tmp_path / "portfolio.json"
        portfolio.write_text(
            json.dumps(
                {
                    "recent_trades": [
                        {
                            "id": "T-42",
                            "symbol": "HINDCOPPER.NS",
                            "action": "buy",
                            "quantity": 100,
                            "price": 100.5,
                            "executed_at": (reviewed + timedelta(hours=3)).isoformat(),
                        }
                    ]
                }
            ),
            encoding="utf-8",
        )

        assert link_trades.main(["--portfolio", str(portfolio)]) == 0

        assert f"linked T-42 -> suggestion {suggestion.id} (100%)" in capsys.readouterr().out
        check = SuggestionStore.open(str(db_path))
        try:
            assert [r["transaction_id"] for r in check.linked_transactions(suggestion.id)] == ["T-42"]
        finally:
            check.close()

    def test_main_missing_portfolio_is_fatal(self, tmp_path, capsys):
        assert link_trades.main(["--portfolio", str(tmp_path / "missing.json")]) == 1
        assert "Fatal" in capsys.readouterr().err
