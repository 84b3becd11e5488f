"""SQLite persistence for catalyst signals, suggestions and gate decisions.

Suggestions are never overwritten: a newer pending suggestion for a symbol
supersedes the older one, which keeps its row with a back-reference to the
new id.  Foreign references coming from model output (catalyst ids) are
validated before they are stored.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from .errors import StoreError
from .logging_utils import get_logger
from .models import (
    CatalystSignal,
    CatalystSuggestion,
    Decision,
    ExitPlan,
    ExitState,
    ImpactType,
    MarketConfirmation,
    PotentialCatalyst,
    PotentialStatus,
    Sentiment,
    SignalStatus,
    SuggestionAction,
    SuggestionStatus,
    WatchCheck,
    WatchCriteria,
    normalize_symbol,
)
from .storage import connect, from_ts, migrate, ts
from .time_utils import now as utc_now

log = get_logger("suggestion_store")

SUPERSEDED_REASON = "Superseded by newer pending suggestion"

# Legal signal status transitions; terminal states have no entry
SIGNAL_TRANSITIONS: Dict[SignalStatus, Set[SignalStatus]] = {
    SignalStatus.PENDING_MARKET_OPEN: {
        SignalStatus.ACTIVE,
        SignalStatus.EXPIRED,
        SignalStatus.DISMISSED,
    },
    SignalStatus.ACTIVE: {
        SignalStatus.ACTED,
        SignalStatus.EXPIRED,
        SignalStatus.DISMISSED,
    },
}


def _json(value) -> Optional[str]:
    return json.dumps(value.to_dict()) if value is not None else None


def _load(cls, raw: Optional[str]):
    return cls.from_dict(json.loads(raw)) if raw else None


class SuggestionStore:
    def __init__(self, conn: sqlite3.Connection, suggestion_expiry_days: int = 7):
        self.conn = conn
        self.suggestion_expiry_days = suggestion_expiry_days
        migrate(conn)

    @classmethod
    def open(cls, db_path: Optional[str] = None, **kwargs) -> "SuggestionStore":
        return cls(connect(db_path), **kwargs)

    def close(self) -> None:
        self.conn.close()

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def save_signal(self, signal: CatalystSignal) -> CatalystSignal:
        """Insert or update ``signal`` keyed by its id."""
        now = utc_now()
        created = signal.created_at or now
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO catalyst_signals (
                    id, keyword, ticker, headline, source, published_at, sentiment,
                    impact_type, confidence, summary, reasoning, is_catalyst, status,
                    created_at, expires_at, acted_at, updated_at, technical
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    headline = excluded.headline,
                    sentiment = excluded.sentiment,
                    impact_type = excluded.impact_type,
                    confidence = excluded.confidence,
                    summary = excluded.summary,
                    reasoning = excluded.reasoning,
                    is_catalyst = excluded.is_catalyst,
                    status = excluded.status,
                    expires_at = excluded.expires_at,
                    acted_at = excluded.acted_at,
                    updated_at = excluded.updated_at,
                    technical = COALESCE(excluded.technical, catalyst_signals.technical)
                """,
                (
                    signal.id,
                    signal.keyword,
                    signal.ticker,
                    signal.headline,
                    signal.source,
                    ts(signal.published_at),
                    signal.sentiment.value,
                    signal.impact_type.value,
                    signal.confidence,
                    signal.summary,
                    signal.reasoning,
                    int(signal.is_catalyst),
                    signal.status.value,
                    ts(created),
                    ts(signal.expires_at),
                    ts(signal.acted_at),
                    ts(now),
                    _json(signal.technical),
                ),
            )
        return replace(signal, created_at=created)

    def get_signal(self, signal_id: str) -> Optional[CatalystSignal]:
        row = self.conn.execute(
            "SELECT * FROM catalyst_signals WHERE id = ?", (signal_id,)
        ).fetchone()
        return self._row_to_signal(row) if row else None

    def list_signals(self, status: Optional[SignalStatus] = None) -> List[CatalystSignal]:
        if status is None:
            rows = self.conn.execute(
                "SELECT * FROM catalyst_signals ORDER BY created_at DESC"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM catalyst_signals WHERE status = ? ORDER BY created_at DESC",
                (status.value,),
            ).fetchall()
        return [self._row_to_signal(r) for r in rows]

    def set_signal_status(
        self, signal_id: str, status: SignalStatus, now: Optional[datetime] = None
    ) -> CatalystSignal:
        """Move a signal to ``status``; raises StoreError on an illegal transition."""
        signal = self.get_signal(signal_id)
        if signal is None:
            raise StoreError(f"unknown signal {signal_id}")
        allowed = SIGNAL_TRANSITIONS.get(signal.status, set())
        if status not in allowed:
            raise StoreError(
                f"illegal signal transition {signal.status.value} -> {status.value}"
            )
        now = now or utc_now()
        acted_at = now if status == SignalStatus.ACTED else signal.acted_at
        with self.conn:
            self.conn.execute(
                "UPDATE catalyst_signals SET status = ?, acted_at = ?, updated_at = ? WHERE id = ?",
                (status.value, ts(acted_at), ts(now), signal_id),
            )
        log.info("signal_status id=%s from=%s to=%s", signal_id, signal.status.value, status.value)
        return replace(signal, status=status, acted_at=acted_at)

    def activate_pending_signals(self, now: Optional[datetime] = None) -> int:
        """Promote unexpired pending_market_open signals to active."""
        now = now or utc_now()
        with self.conn:
            cur = self.conn.execute(
                """
                UPDATE catalyst_signals SET status = ?, updated_at = ?
                WHERE status = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (
                    SignalStatus.ACTIVE.value,
                    ts(now),
                    SignalStatus.PENDING_MARKET_OPEN.value,
                    ts(now),
                ),
            )
        return cur.rowcount

    def expire_signals(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        with self.conn:
            cur = self.conn.execute(
                """
                UPDATE catalyst_signals SET status = ?, updated_at = ?
                WHERE status IN (?, ?) AND expires_at IS NOT NULL AND expires_at <= ?
                """,
                (
                    SignalStatus.EXPIRED.value,
                    ts(now),
                    SignalStatus.ACTIVE.value,
                    SignalStatus.PENDING_MARKET_OPEN.value,
                    ts(now),
                ),
            )
        return cur.rowcount

    @staticmethod
    def _row_to_signal(row: sqlite3.Row) -> CatalystSignal:
        return CatalystSignal(
            id=row["id"],
            keyword=row["keyword"],
            ticker=row["ticker"],
            headline=row["headline"],
            source=row["source"] or "",
            published_at=from_ts(row["published_at"]),
            sentiment=Sentiment(row["sentiment"]),
            impact_type=ImpactType(row["impact_type"]),
            confidence=row["confidence"],
            summary=row["summary"] or "",
            reasoning=row["reasoning"] or "",
            is_catalyst=bool(row["is_catalyst"]),
            status=SignalStatus(row["status"]),
            created_at=from_ts(row["created_at"]),
            expires_at=from_ts(row["expires_at"]),
            acted_at=from_ts(row["acted_at"]),
            technical=_load(MarketConfirmation, row["technical"]),
        )

    # ------------------------------------------------------------------
    # Potential catalysts and decision audit
    # ------------------------------------------------------------------

    def record_potential_catalyst(
        self,
        symbol: str,
        headline: str,
        source: str = "",
        signal_id: Optional[str] = None,
        detected_at: Optional[datetime] = None,
        notes: str = "",
        criteria: Optional[WatchCriteria] = None,
        affected_symbols: Optional[List[str]] = None,
    ) -> int:
        """Start monitoring a catalyst; ``affected_symbols`` are market tickers to watch."""
        criteria = criteria or WatchCriteria()
        with self.conn:
            cur = self.conn.execute(
                """
                INSERT INTO potential_catalysts (
                    symbol, headline, source, signal_id, detected_at, notes,
                    status, watch_criteria, affected_symbols, validation_log
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    normalize_symbol(symbol),
                    headline,
                    source,
                    signal_id,
                    ts(detected_at or utc_now()),
                    notes,
                    PotentialStatus.MONITORING.value,
                    json.dumps(criteria.to_dict()),
                    json.dumps(list(affected_symbols or [])),
                    json.dumps([]),
                ),
            )
        return int(cur.lastrowid)

    def catalyst_exists(self, catalyst_id: Optional[int]) -> bool:
        if catalyst_id is None:
            return False
        row = self.conn.execute(
            "SELECT 1 FROM potential_catalysts WHERE id = ?", (catalyst_id,)
        ).fetchone()
        return row is not None

    def get_potential_catalyst(self, catalyst_id: int) -> Optional[PotentialCatalyst]:
        row = self.conn.execute(
            "SELECT * FROM potential_catalysts WHERE id = ?", (catalyst_id,)
        ).fetchone()
        return self._row_to_potential(row) if row else None

    def list_potential_catalysts(
        self, status: Optional[PotentialStatus] = None
    ) -> List[PotentialCatalyst]:
        if status is None:
            rows = self.conn.execute(
                "SELECT * FROM potential_catalysts ORDER BY detected_at, id"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM potential_catalysts WHERE status = ? ORDER BY detected_at, id",
                (status.value,),
            ).fetchall()
        return [self._row_to_potential(r) for r in rows]

    def update_potential_catalyst(
        self,
        catalyst_id: int,
        checks: List[WatchCheck],
        status: Optional[PotentialStatus] = None,
        now: Optional[datetime] = None,
    ) -> PotentialCatalyst:
        """Append ``checks`` to the validation log and optionally resolve the item.

        Only MONITORING items can change status; a resolved item is final.
        """
        item = self.get_potential_catalyst(catalyst_id)
        if item is None:
            raise StoreError(f"unknown potential catalyst {catalyst_id}")
        if status is not None and status != item.status:
            if item.status != PotentialStatus.MONITORING:
                raise StoreError(
                    f"potential catalyst {catalyst_id} already {item.status.value}"
                )
        else:
            status = item.status
        resolved_at = item.resolved_at
        if status != PotentialStatus.MONITORING and resolved_at is None:
            resolved_at = now or utc_now()
        validation_log = item.validation_log + list(checks)
        with self.conn:
            self.conn.execute(
                """
                UPDATE potential_catalysts
                SET status = ?, validation_log = ?, resolved_at = ?
                WHERE id = ?
                """,
                (
                    status.value,
                    json.dumps([c.to_dict() for c in validation_log]),
                    ts(resolved_at),
                    catalyst_id,
                ),
            )
        return replace(
            item, status=status, validation_log=validation_log, resolved_at=resolved_at
        )

    def expire_potential_catalysts(self, now: Optional[datetime] = None) -> int:
        """Expire monitoring items older than their own watch timeout."""
        now = now or utc_now()
        expired = 0
        for item in self.list_potential_catalysts(PotentialStatus.MONITORING):
            if item.is_timed_out(now):
                self.update_potential_catalyst(item.id, [], PotentialStatus.EXPIRED, now)
                expired += 1
        if expired:
            log.info("potential_catalysts_expired count=%d", expired)
        return expired

    @staticmethod
    def _row_to_potential(row: sqlite3.Row) -> PotentialCatalyst:
        criteria = WatchCriteria.from_dict(json.loads(row["watch_criteria"] or "{}"))
        checks = [WatchCheck.from_dict(c) for c in json.loads(row["validation_log"] or "[]")]
        return PotentialCatalyst(
            id=row["id"],
            symbol=row["symbol"],
            headline=row["headline"],
            source=row["source"] or "",
            signal_id=row["signal_id"],
            detected_at=from_ts(row["detected_at"]),
            notes=row["notes"] or "",
            status=PotentialStatus(row["status"] or PotentialStatus.MONITORING.value),
            criteria=criteria,
            affected_symbols=json.loads(row["affected_symbols"] or "[]"),
            validation_log=checks,
            resolved_at=from_ts(row["resolved_at"]),
        )

    def set_signal_technical(
        self, signal_id: str, confirmation: MarketConfirmation, now: Optional[datetime] = None
    ) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE catalyst_signals SET technical = ?, updated_at = ? WHERE id = ?",
                (_json(confirmation), ts(now or utc_now()), signal_id),
            )

    def record_decision(self, decision: Decision) -> int:
        """Persist every gate decision, PASS included, for audit."""
        with self.conn:
            cur = self.conn.execute(
                """
                INSERT INTO gate_decisions (signal_id, symbol, action, rationale, payload, evaluated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.signal_id,
                    decision.symbol,
                    decision.action.value,
                    decision.rationale,
                    json.dumps(decision.to_dict()),
                    ts(decision.evaluated_at or utc_now()),
                ),
            )
        return int(cur.lastrowid)

    def list_decisions(self, symbol: Optional[str] = None) -> List[Dict]:
        if symbol:
            rows = self.conn.execute(
                "SELECT * FROM gate_decisions WHERE symbol = ? ORDER BY id",
                (normalize_symbol(symbol),),
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT * FROM gate_decisions ORDER BY id").fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def propose(
        self, suggestion: CatalystSuggestion, now: Optional[datetime] = None
    ) -> CatalystSuggestion:
        """Store ``suggestion`` as pending, superseding any pending one for the symbol."""
        now = now or utc_now()
        symbol = normalize_symbol(suggestion.symbol)

        catalyst_id = suggestion.catalyst_id
        if catalyst_id is not None and not self.catalyst_exists(catalyst_id):
            log.warning(
                "suggestion_unknown_catalyst symbol=%s catalyst_id=%s stored_as=null",
                symbol,
                catalyst_id,
            )
            catalyst_id = None

        expires_at = suggestion.expires_at or now + timedelta(days=self.suggestion_expiry_days)

        with self.conn:
            previous = self.conn.execute(
                "SELECT id FROM suggestions WHERE symbol = ? AND status = ?",
                (symbol, SuggestionStatus.PENDING.value),
            ).fetchall()

            cur = self.conn.execute(
                """
                INSERT INTO suggestions (
                    symbol, action, confidence, entry_price, target_price, stop_loss,
                    quantity, allocation_amount, min_hold_hours, max_hold_days,
                    trailing_stop, entry_trigger, exit_plan, exit_state, risk_reward,
                    rationale, catalyst_id, signal_id, status, created_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    symbol,
                    suggestion.action.value,
                    suggestion.confidence,
                    suggestion.entry_price,
                    suggestion.target_price,
                    suggestion.stop_loss,
                    suggestion.quantity,
                    suggestion.allocation_amount,
                    suggestion.min_hold_hours,
                    suggestion.max_hold_days,
                    int(suggestion.trailing_stop),
                    suggestion.entry_trigger,
                    _json(suggestion.exit_plan),
                    _json(suggestion.exit_state),
                    suggestion.risk_reward,
                    suggestion.rationale,
                    catalyst_id,
                    suggestion.signal_id,
                    SuggestionStatus.PENDING.value,
                    ts(now),
                    ts(expires_at),
                ),
            )
            new_id = int(cur.lastrowid)

            for row in previous:
                self.conn.execute(
                    """
                    UPDATE suggestions
                    SET status = ?, superseded_by = ?, superseded_reason = ?, reviewed_at = ?
                    WHERE id = ?
                    """,
                    (
                        SuggestionStatus.SUPERSEDED.value,
                        new_id,
                        SUPERSEDED_REASON,
                        ts(now),
                        row["id"],
                    ),
                )
                log.info("suggestion_superseded id=%d by=%d symbol=%s", row["id"], new_id, symbol)

        log.info(
            "suggestion_proposed id=%d symbol=%s action=%s catalyst_id=%s",
            new_id,
            symbol,
            suggestion.action.value,
            catalyst_id,
        )
        return self.get(new_id)

    def get(self, suggestion_id: int) -> Optional[CatalystSuggestion]:
        row = self.conn.execute(
            "SELECT * FROM suggestions WHERE id = ?", (suggestion_id,)
        ).fetchone()
        return self._row_to_suggestion(row) if row else None

    def list_by_status(
        self, status: SuggestionStatus, action: Optional[SuggestionAction] = None
    ) -> List[CatalystSuggestion]:
        sql = "SELECT * FROM suggestions WHERE status = ?"
        params: list = [status.value]
        if action is not None:
            sql += " AND action = ?"
            params.append(action.value)
        rows = self.conn.execute(sql + " ORDER BY id", params).fetchall()
        return [self._row_to_suggestion(r) for r in rows]

    def list_pending(self) -> List[CatalystSuggestion]:
        return self.list_by_status(SuggestionStatus.PENDING)

    def review(
        self, suggestion_id: int, approve: bool, now: Optional[datetime] = None
    ) -> CatalystSuggestion:
        """Approve or reject a pending suggestion."""
        current = self.get(suggestion_id)
        if current is None:
            raise StoreError(f"unknown suggestion {suggestion_id}")
        if current.status != SuggestionStatus.PENDING:
            raise StoreError(
                f"suggestion {suggestion_id} is {current.status.value}, not pending"
            )
        status = SuggestionStatus.APPROVED if approve else SuggestionStatus.REJECTED
        now = now or utc_now()
        with self.conn:
            self.conn.execute(
                "UPDATE suggestions SET status = ?, reviewed_at = ? WHERE id = ?",
                (status.value, ts(now), suggestion_id),
            )
        log.info("suggestion_reviewed id=%d status=%s", suggestion_id, status.value)
        return self.get(suggestion_id)

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        with self.conn:
            cur = self.conn.execute(
                """
                UPDATE suggestions SET status = ?, reviewed_at = ?
                WHERE status = ? AND expires_at IS NOT NULL AND expires_at <= ?
                """,
                (
                    SuggestionStatus.EXPIRED.value,
                    ts(now),
                    SuggestionStatus.PENDING.value,
                    ts(now),
                ),
            )
        return cur.rowcount

    def update_exit_state(self, suggestion_id: int, state: ExitState) -> None:
        with self.conn:
            cur = self.conn.execute(
                "UPDATE suggestions SET exit_state = ? WHERE id = ?",
                (_json(state), suggestion_id),
            )
        if cur.rowcount == 0:
            raise StoreError(f"unknown suggestion {suggestion_id}")

    def link_transaction(
        self,
        suggestion_id: int,
        transaction_id: str,
        confidence: float,
        auto: bool = False,
        now: Optional[datetime] = None,
    ) -> None:
        with self.conn:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO suggestion_transactions
                    (suggestion_id, transaction_id, confidence, auto_linked, linked_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (suggestion_id, transaction_id, confidence, int(auto), ts(now or utc_now())),
            )

    def linked_transactions(self, suggestion_id: int) -> List[Dict]:
        rows = self.conn.execute(
            "SELECT * FROM suggestion_transactions WHERE suggestion_id = ?",
            (suggestion_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def linked_pairs(self) -> Set[Tuple[int, str]]:
        rows = self.conn.execute(
            "SELECT suggestion_id, transaction_id FROM suggestion_transactions"
        ).fetchall()
        return {(r["suggestion_id"], r["transaction_id"]) for r in rows}

    @staticmethod
    def _row_to_suggestion(row: sqlite3.Row) -> CatalystSuggestion:
        exit_plan = ExitPlan.from_dict(json.loads(row["exit_plan"])) if row["exit_plan"] else None
        exit_state = (
            ExitState.from_dict(json.loads(row["exit_state"])) if row["exit_state"] else None
        )
        return CatalystSuggestion(
            id=row["id"],
            symbol=row["symbol"],
            action=SuggestionAction(row["action"]),
            confidence=row["confidence"],
            entry_price=row["entry_price"],
            target_price=row["target_price"],
            stop_loss=row["stop_loss"],
            quantity=row["quantity"],
            allocation_amount=row["allocation_amount"],
            min_hold_hours=row["min_hold_hours"],
            max_hold_days=row["max_hold_days"],
            trailing_stop=bool(row["trailing_stop"]),
            entry_trigger=row["entry_trigger"] or "",
            exit_plan=exit_plan,
            exit_state=exit_state,
            risk_reward=row["risk_reward"],
            rationale=row["rationale"] or "",
            catalyst_id=row["catalyst_id"],
            signal_id=row["signal_id"],
            status=SuggestionStatus(row["status"]),
            created_at=from_ts(row["created_at"]),
            expires_at=from_ts(row["expires_at"]),
            reviewed_at=from_ts(row["reviewed_at"]),
            superseded_by=row["superseded_by"],
            superseded_reason=row["superseded_reason"],
        )
