"""Tests for the catalyst-verify command line entry point."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from catalyst_desk.jobs import verify_signals
from catalyst_desk.models import (
    CheckpointType,
    ImpactType,
    LLMPrediction,
    MarketState,
    OpportunityLogEntry,
    Sentiment,
)
from catalyst_desk.opportunity_log import OpportunityLog


@pytest.fixture
def log_path(tmp_path):
    path = tmp_path / "opportunities.jsonl"
    OpportunityLog(path).append(
        OpportunityLogEntry(
            id="e1",
            timestamp=datetime.now(timezone.utc) - timedelta(minutes=90),
            keyword="Copper",
            headline="Chile copper mine halts output after strike",
            prediction=LLMPrediction(Sentiment.BULLISH, ImpactType.SUPPLY_SHOCK, 9),
            market_state=MarketState(global_ticker="HG=F", base_price=4.0),
        )
    )
    return path


@pytest.fixture
def prices():
    with patch.object(verify_signals, "PriceService") as service:
        service.return_value.get_current_price.return_value = 4.16
        yield service.return_value


def test_report_only(log_path, prices, capsys):
    assert verify_signals.main(["--report", "--log", str(log_path)]) == 0
    out = capsys.readouterr().out
    assert "CATALYST VERIFICATION REPORT" in out
    assert "Pending:         1" in out
    prices.get_current_price.assert_not_called()


def test_dry_run_does_not_write(log_path, prices, capsys):
    before = log_path.read_text()
    assert verify_signals.main(["--dry-run", "--log", str(log_path)]) == 0
    out = capsys.readouterr().out
    assert "DRY RUN" in out
    assert "+4.00% GOOD_CALL" in out
    assert "Checked 1 | skipped 0 | not ready 0 | failed 0" in out
    assert log_path.read_text() == before


def test_live_run_records_checkpoint(log_path, prices):
    assert verify_signals.main(["--log", str(log_path)]) == 0
    entry = OpportunityLog(log_path).get("e1")
    assert entry.checkpoints[CheckpointType.AFTER_1HR].price == 4.16
    prices.get_current_price.assert_called_once_with("HG=F")


def test_min_age_holds_back_young_signals(log_path, prices, capsys):
    assert verify_signals.main(["--min-age", "120", "--log", str(log_path)]) == 0
    assert "not ready 1" in capsys.readouterr().out
    prices.get_current_price.assert_not_called()


def test_manual_checkpoint(log_path, prices, capsys):
    assert verify_signals.main(["--checkpoint", "session", "--log", str(log_path)]) == 0
    assert "Checkpoint: nextSession" in capsys.readouterr().out
    entry = OpportunityLog(log_path).get("e1")
    assert list(entry.checkpoints) == [CheckpointType.NEXT_SESSION]


def test_unknown_checkpoint_is_rejected():
    with pytest.raises(SystemExit) as excinfo:
        verify_signals.main(["--checkpoint", "weekly"])
    assert excinfo.value.code == 2


def test_fatal_error_exits_nonzero(log_path, capsys):
    with patch.object(verify_signals, "run", side_effect=RuntimeError("disk full")):
        assert verify_signals.main(["--log", str(log_path)]) == 1
    assert "Fatal: disk full" in capsys.readouterr().err
