"""Append-only JSONL log of fired signals: the audit trail and accuracy dataset.

Entries are only ever appended.  The verification engine may fill in
checkpoint fields, and a populated checkpoint is never overwritten.  A
checkpoint earlier than one already recorded is refused as well, keeping
checkpoints monotonic in time.
"""

from __future__ import annotations

import json
import os
import random
import string
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .logging_utils import get_logger
from .models import (
    CHECKPOINT_ORDER,
    CatalystSignal,
    Checkpoint,
    CheckpointType,
    LLMPrediction,
    MarketState,
    OpportunityLogEntry,
    Verdict,
)
from .time_utils import now as utc_now

log = get_logger("opportunity_log")

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_entry_id(at: Optional[datetime] = None) -> str:
    """``<epoch millis>-<6 random base36 chars>``."""
    at = at or utc_now()
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"{int(at.timestamp() * 1000)}-{suffix}"


def final_verdict(entry: OpportunityLogEntry) -> Verdict:
    """GOOD_CALL beats BAD_CALL beats NEUTRAL; PENDING with no checkpoints."""
    verdicts = {cp.verdict for cp in entry.checkpoints.values()}
    for verdict in (Verdict.GOOD_CALL, Verdict.BAD_CALL, Verdict.NEUTRAL):
        if verdict in verdicts:
            return verdict
    return Verdict.PENDING


def new_entry_from_signal(
    signal: CatalystSignal,
    market_state: MarketState,
    local_ticker: Optional[str] = None,
    local_base_price: Optional[float] = None,
    at: Optional[datetime] = None,
) -> OpportunityLogEntry:
    at = at or signal.created_at or utc_now()
    return OpportunityLogEntry(
        id=new_entry_id(at),
        timestamp=at,
        keyword=signal.keyword,
        headline=signal.headline,
        summary=signal.summary,
        local_ticker=local_ticker,
        local_base_price=local_base_price,
        prediction=LLMPrediction(
            sentiment=signal.sentiment,
            impact_type=signal.impact_type,
            confidence=signal.confidence,
        ),
        market_state=market_state,
    )


class OpportunityLog:
    def __init__(self, path: str | Path):
        self.path = Path(path)

    def append(self, entry: OpportunityLogEntry) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")
        log.info("opportunity_logged id=%s keyword=%s", entry.id, entry.keyword)

    def read_all(self) -> List[OpportunityLogEntry]:
        if not self.path.exists():
            return []
        entries: List[OpportunityLogEntry] = []
        with open(self.path, "r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(OpportunityLogEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    log.warning("opportunity_log_bad_line line=%d err=%s", lineno, str(e)[:200])
        return entries

    def get(self, entry_id: str) -> Optional[OpportunityLogEntry]:
        for entry in self.read_all():
            if entry.id == entry_id:
                return entry
        return None

    def update_checkpoint(
        self, entry_id: str, checkpoint_type: CheckpointType, checkpoint: Checkpoint
    ) -> bool:
        """Record ``checkpoint`` on an entry; False if refused or not found.

        Only the target line is rewritten; every other line, including lines
        that fail to parse, is carried over verbatim.
        """
        if not self.path.exists():
            log.warning("opportunity_not_found id=%s", entry_id)
            return False
        with open(self.path, "r", encoding="utf-8") as fh:
            lines = fh.readlines()

        target = None
        target_index = -1
        for i, line in enumerate(lines):
            if entry_id not in line:
                continue
            try:
                candidate = OpportunityLogEntry.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                continue
            if candidate.id == entry_id:
                target, target_index = candidate, i
                break
        if target is None:
            log.warning("opportunity_not_found id=%s", entry_id)
            return False
        if checkpoint_type in target.checkpoints:
            log.info("checkpoint_already_set id=%s checkpoint=%s", entry_id, checkpoint_type.value)
            return False
        order = CHECKPOINT_ORDER.index(checkpoint_type)
        if any(CHECKPOINT_ORDER.index(ct) > order for ct in target.checkpoints):
            log.warning(
                "checkpoint_out_of_order id=%s checkpoint=%s existing=%s",
                entry_id,
                checkpoint_type.value,
                ",".join(ct.value for ct in target.checkpoints),
            )
            return False

        target.checkpoints[checkpoint_type] = checkpoint
        target.final_verdict = final_verdict(target)
        lines[target_index] = json.dumps(target.to_dict(), ensure_ascii=False) + "\n"
        self._rewrite(lines)
        log.info(
            "checkpoint_recorded id=%s checkpoint=%s verdict=%s",
            entry_id,
            checkpoint_type.value,
            checkpoint.verdict.value,
        )
        return True

    def _rewrite(self, lines: List[str]) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".opportunities-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                for line in lines:
                    fh.write(line if line.endswith("\n") else line + "\n")
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
