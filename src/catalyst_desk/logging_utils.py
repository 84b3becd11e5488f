# src/catalyst_desk/logging_utils.py
"""Structured logging for the desk's cron jobs.

Every job writes JSON lines to ``<data_dir>/logs/<job>.jsonl`` and shares one
``errors.log`` for WARNING and above.  Each record is tagged with the job name
so the shared error log stays attributable.  Console output is JSON unless
LOG_PLAIN=1.

Messages use ``event_name key=value`` so they grep cleanly in either format.
"""

import json
import logging
import logging.handlers
import sys
import time
from typing import Any, Dict, Optional

from .config import get_settings

# Attributes every LogRecord carries; anything else arrived via ``extra=``
_RECORD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

_MAX_BYTES = 10 * 1024 * 1024


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in record.__dict__.items():
        if k in _RECORD_ATTRS or k.startswith("_"):
            continue
        try:
            json.dumps(v)
            out[k] = v
        except (TypeError, ValueError):
            out[k] = str(v)
    return out


def _utc(created: float) -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(created))


class JobFilter(logging.Filter):
    """Stamp ``record.job`` so every handler can report which job logged."""

    def __init__(self, job: str):
        super().__init__()
        self.job = job

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "job"):
            record.job = self.job
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _utc(record.created),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k, v in _extras(record).items():
            payload.setdefault(k, v)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class PlainFormatter(logging.Formatter):
    """One line per record, level coloured when writing to a terminal."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.colour and record.levelname in self.COLOURS:
            level = f"{self.COLOURS[record.levelname]}{level}\033[0m"
        extras = _extras(record)
        job = extras.pop("job", "-")
        tail = "".join(f" {k}={v}" for k, v in extras.items())
        line = f"{_utc(record.created)} {level} [{job}] {record.name}: {record.getMessage()}{tail}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _rotating(path, level: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=get_settings().log_backups,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def setup_logging(job: str, level: Optional[str] = None) -> None:
    """Route all loggers for one job run.

    Replaces any handlers already on the root logger, so calling it twice in a
    process is harmless.  An unwritable data dir degrades to console-only.
    """
    settings = get_settings()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel((level or settings.log_level or "INFO").upper())
    job_filter = JobFilter(job)

    handlers = []
    try:
        log_dir = settings.data_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating(log_dir / f"{job}.jsonl", logging.NOTSET))
        handlers.append(_rotating(log_dir / "errors.log", logging.WARNING))
    except OSError as e:
        sys.stderr.write(f"log_file_handler_unavailable job={job} err={e}\n")

    console = logging.StreamHandler(sys.stdout)
    if settings.log_plain:
        console.setFormatter(PlainFormatter(colour=sys.stdout.isatty()))
    else:
        console.setFormatter(JsonFormatter())
    handlers.append(console)

    for handler in handlers:
        handler.addFilter(job_filter)
        root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
