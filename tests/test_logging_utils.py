"""Tests for per-job structured logging."""

import json
import logging

from catalyst_desk.config import get_settings
from catalyst_desk.logging_utils import (
    JobFilter,
    JsonFormatter,
    PlainFormatter,
    get_logger,
    setup_logging,
)


def _record(msg="verification_pass_complete checked=%d", args=(3,), **extra):
    record = logging.LogRecord("catalyst_desk.test", logging.INFO, __file__, 1, msg, args, None)
    record.created = 0.0
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def _flush():
    for h in logging.getLogger().handlers:
        h.flush()


class TestFormatters:
    def test_json_includes_extras_and_stringifies_unserialisable(self):
        out = json.loads(JsonFormatter().format(_record(ticker="HG=F", obj=object())))
        assert out["ts"] == "1970-01-01T00:00:00Z"
        assert out["level"] == "INFO"
        assert out["msg"] == "verification_pass_complete checked=3"
        assert out["ticker"] == "HG=F"
        assert isinstance(out["obj"], str)
        assert "args" not in out

    def test_plain_without_colour(self):
        line = PlainFormatter(colour=False).format(_record(job="sweep", ticker="HG=F"))
        assert line == (
            "1970-01-01T00:00:00Z INFO     [sweep] catalyst_desk.test: "
            "verification_pass_complete checked=3 ticker=HG=F"
        )

    def test_job_filter_keeps_explicit_job(self):
        record = _record(job="manual")
        assert JobFilter("sweep").filter(record) is True
        assert record.job == "manual"
        plain = _record()
        JobFilter("sweep").filter(plain)
        assert plain.job == "sweep"


class TestSetupLogging:
    def test_writes_job_file_and_shared_error_log(self):
        setup_logging("sweep", "DEBUG")
        log = get_logger("catalyst_desk.sweep")
        log.info("sweep_start rows=%d", 2)
        log.warning("price_missing ticker=%s", "HG=F")
        _flush()

        logs = get_settings().data_dir / "logs"
        job_lines = [json.loads(x) for x in (logs / "sweep.jsonl").read_text().splitlines()]
        assert [x["msg"] for x in job_lines] == ["sweep_start rows=2", "price_missing ticker=HG=F"]
        assert all(x["job"] == "sweep" for x in job_lines)

        error_lines = [json.loads(x) for x in (logs / "errors.log").read_text().splitlines()]
        assert len(error_lines) == 1
        assert error_lines[0]["level"] == "WARNING"

    def test_level_filters_and_repeat_calls_replace_handlers(self):
        setup_logging("verify_signals", "WARNING")
        setup_logging("verify_signals", "WARNING")
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 3

    def test_plain_console(self, monkeypatch, capsys):
        monkeypatch.setenv("LOG_PLAIN", "1")
        from catalyst_desk.config import reset_settings

        reset_settings()
        setup_logging("refresh_exits", "INFO")
        get_logger("catalyst_desk.exits").info("exit_check ticker=%s", "NVDA")
        _flush()
        out = capsys.readouterr().out
        assert "[refresh_exits] catalyst_desk.exits: exit_check ticker=NVDA" in out
