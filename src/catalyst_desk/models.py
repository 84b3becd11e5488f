"""Domain types for the catalyst lifecycle.

Nested records (exit plans, exit state, checkpoints) are real value types here
and are only turned into JSON at the persistence boundary via ``to_dict`` /
``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .time_utils import iso, parse_ts


# ============================================================================
# Enumerations
# ============================================================================


class Sentiment(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class ImpactType(str, Enum):
    SUPPLY_SHOCK = "SUPPLY_SHOCK"
    DEMAND_SHOCK = "DEMAND_SHOCK"
    REGULATORY = "REGULATORY"
    NOISE = "NOISE"


class AssetType(str, Enum):
    COMMODITY = "COMMODITY"
    EQUITY = "EQUITY"
    ETF = "ETF"
    CURRENCY = "CURRENCY"
    GLOBAL = "GLOBAL"


class SignalStatus(str, Enum):
    """Signal lifecycle; transitions are driven by market hours, humans, or expiry."""
    ACTIVE = "active"
    PENDING_MARKET_OPEN = "pending_market_open"
    ACTED = "acted"
    EXPIRED = "expired"
    DISMISSED = "dismissed"


class PotentialStatus(str, Enum):
    MONITORING = "monitoring"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class SuggestionAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WATCH = "WATCH"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"


class GateAction(str, Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    PASS = "PASS"


class Verdict(str, Enum):
    GOOD_CALL = "GOOD_CALL"
    BAD_CALL = "BAD_CALL"
    NEUTRAL = "NEUTRAL"
    PENDING = "PENDING"


class CheckpointType(str, Enum):
    AFTER_1HR = "after1hr"
    NEXT_SESSION = "nextSession"
    AFTER_24HR = "after24hr"


# Evaluation order of checkpoints; later checkpoints never precede earlier ones.
CHECKPOINT_ORDER: List[CheckpointType] = [
    CheckpointType.AFTER_1HR,
    CheckpointType.NEXT_SESSION,
    CheckpointType.AFTER_24HR,
]

# Cross-market reference ticker per commodity keyword
GLOBAL_VALIDATION_TICKERS: Dict[str, str] = {
    "Copper": "HG=F",
    "Crude Oil": "CL=F",
    "Natural Gas": "NG=F",
    "Gold": "GC=F",
    "Silver": "SI=F",
    "Uranium": "URA",
    "Coffee": "KC=F",
    "Wheat": "ZW=F",
    "Lithium": "LIT",
}


def _enum(cls, value, default):
    if isinstance(value, cls):
        return value
    try:
        return cls(value)
    except ValueError:
        return default


def normalize_symbol(symbol: Optional[str]) -> str:
    """Uppercase and strip exchange suffixes (``RELIANCE.NS`` -> ``RELIANCE``)."""
    s = (symbol or "").strip().upper()
    for suffix in (".NS", ".BO"):
        if s.endswith(suffix):
            s = s[: -len(suffix)]
    return s


# ============================================================================
# News and classification
# ============================================================================


@dataclass
class NewsItem:
    """A headline as handed to the noise filter and classifier."""

    title: str
    link: str = ""
    source: str = ""
    published_at: Optional[datetime] = None
    source_id: str = ""
    source_priority: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "NewsItem":
        return cls(
            title=str(d.get("title") or ""),
            link=str(d.get("link") or d.get("url") or ""),
            source=str(d.get("source") or ""),
            published_at=parse_ts(d.get("published_at") or d.get("pubDate") or d.get("ts")),
            source_id=str(d.get("source_id") or ""),
            source_priority=int(d.get("source_priority") or 0),
        )


@dataclass
class CatalystAsset:
    """A tracked keyword (commodity, theme or equity) and its tickers."""

    id: str
    keyword: str
    ticker: Optional[str] = None
    asset_type: AssetType = AssetType.COMMODITY
    related_tickers: List[str] = field(default_factory=list)
    global_validation_ticker: Optional[str] = None
    notes: str = ""
    enabled: bool = True

    @property
    def validation_ticker(self) -> Optional[str]:
        """Ticker used for cross-market verification of this asset's signals."""
        return (
            self.global_validation_ticker
            or GLOBAL_VALIDATION_TICKERS.get(self.keyword)
            or self.ticker
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CatalystAsset":
        return cls(
            id=str(d.get("id") or d.get("keyword")),
            keyword=str(d["keyword"]),
            ticker=d.get("ticker") or None,
            asset_type=_enum(AssetType, d.get("asset_type", "COMMODITY"), AssetType.COMMODITY),
            related_tickers=list(d.get("related_tickers") or []),
            global_validation_ticker=d.get("global_validation_ticker") or None,
            notes=str(d.get("notes") or ""),
            enabled=bool(d.get("enabled", True)),
        )


@dataclass
class BatchResult:
    """Holistic verdict for one asset's batch of headlines."""

    is_catalyst: bool
    sentiment: Sentiment
    impact_type: ImpactType
    confidence: int
    key_headline: str = ""
    summary: str = ""
    reasoning: str = ""
    headlines_analyzed: int = 0
    # True when the result is a fallback for an LLM or parse failure
    failed: bool = False

    def __post_init__(self):
        if self.impact_type == ImpactType.NOISE:
            self.is_catalyst = False


# ============================================================================
# Signals and suggestions
# ============================================================================


@dataclass
class MarketConfirmation:
    """Price/volume snapshot taken when a signal is checked against the market."""

    ticker: str
    current_price: float
    price_change_pct: float
    average_volume: float
    current_volume: float
    volume_ratio: float
    volume_spike: bool
    is_trending: bool
    price_confirms_sentiment: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ticker": self.ticker,
            "current_price": self.current_price,
            "price_change_pct": self.price_change_pct,
            "average_volume": self.average_volume,
            "current_volume": self.current_volume,
            "volume_ratio": self.volume_ratio,
            "volume_spike": self.volume_spike,
            "is_trending": self.is_trending,
            "price_confirms_sentiment": self.price_confirms_sentiment,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MarketConfirmation":
        return cls(
            ticker=str(d.get("ticker") or ""),
            current_price=float(d.get("current_price") or 0.0),
            price_change_pct=float(d.get("price_change_pct") or 0.0),
            average_volume=float(d.get("average_volume") or 0.0),
            current_volume=float(d.get("current_volume") or 0.0),
            volume_ratio=float(d.get("volume_ratio") or 0.0),
            volume_spike=bool(d.get("volume_spike")),
            is_trending=bool(d.get("is_trending")),
            price_confirms_sentiment=bool(d.get("price_confirms_sentiment")),
        )


@dataclass
class CatalystSignal:
    id: str
    keyword: str
    headline: str
    sentiment: Sentiment
    impact_type: ImpactType
    confidence: int
    ticker: Optional[str] = None
    source: str = ""
    published_at: Optional[datetime] = None
    summary: str = ""
    reasoning: str = ""
    is_catalyst: bool = True
    status: SignalStatus = SignalStatus.ACTIVE
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    acted_at: Optional[datetime] = None
    technical: Optional[MarketConfirmation] = None

    def __post_init__(self):
        self.confidence = max(1, min(10, int(self.confidence)))
        if self.impact_type == ImpactType.NOISE:
            self.is_catalyst = False

    @property
    def action(self) -> str:
        return "SELL_WATCH" if self.sentiment == Sentiment.BEARISH else "BUY_WATCH"


@dataclass
class ExitPhase:
    phase: int
    name: str
    trigger: str
    stop_rule: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "name": self.name,
            "trigger": self.trigger,
            "stop_rule": self.stop_rule,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExitPhase":
        return cls(
            phase=int(d["phase"]),
            name=str(d.get("name", "")),
            trigger=str(d.get("trigger", "")),
            stop_rule=str(d.get("stop_rule", "")),
        )


@dataclass
class ExitPlan:
    """Phased exit conditions attached to an approved BUY."""

    hard_stop: float
    min_hold_hours: float
    max_hold_days: int
    phases: List[ExitPhase] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hard_stop": self.hard_stop,
            "min_hold_hours": self.min_hold_hours,
            "max_hold_days": self.max_hold_days,
            "phases": [p.to_dict() for p in self.phases],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExitPlan":
        return cls(
            hard_stop=float(d["hard_stop"]),
            min_hold_hours=float(d.get("min_hold_hours", 48)),
            max_hold_days=int(d.get("max_hold_days", 30)),
            phases=[ExitPhase.from_dict(p) for p in d.get("phases", [])],
        )


@dataclass
class ExitState:
    """Per-position state of the phased trailing stop."""

    entry_price: float
    entered_at: datetime
    hard_stop: float
    trailing_stop: float
    phase: int = 1
    highest_high: float = 0.0
    last_close: Optional[float] = None
    exit_triggered: bool = False
    exit_reason: str = ""
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_price": self.entry_price,
            "entered_at": iso(self.entered_at),
            "hard_stop": self.hard_stop,
            "trailing_stop": self.trailing_stop,
            "phase": self.phase,
            "highest_high": self.highest_high,
            "last_close": self.last_close,
            "exit_triggered": self.exit_triggered,
            "exit_reason": self.exit_reason,
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ExitState":
        return cls(
            entry_price=float(d["entry_price"]),
            entered_at=parse_ts(d["entered_at"]),
            hard_stop=float(d["hard_stop"]),
            trailing_stop=float(d["trailing_stop"]),
            phase=int(d.get("phase", 1)),
            highest_high=float(d.get("highest_high") or 0.0),
            last_close=d.get("last_close"),
            exit_triggered=bool(d.get("exit_triggered", False)),
            exit_reason=str(d.get("exit_reason") or ""),
            updated_at=parse_ts(d.get("updated_at")),
        )


@dataclass
class CatalystSuggestion:
    symbol: str
    action: SuggestionAction
    confidence: int = 5
    entry_price: Optional[float] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    quantity: Optional[int] = None
    allocation_amount: Optional[float] = None
    min_hold_hours: Optional[float] = None
    max_hold_days: Optional[int] = None
    trailing_stop: bool = False
    entry_trigger: str = ""
    exit_plan: Optional[ExitPlan] = None
    risk_reward: Optional[float] = None
    rationale: str = ""
    catalyst_id: Optional[int] = None
    signal_id: Optional[str] = None
    id: Optional[int] = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    superseded_by: Optional[int] = None
    superseded_reason: Optional[str] = None
    exit_state: Optional[ExitState] = None


@dataclass
class WatchCriteria:
    """What the market must do before a potential catalyst counts as confirmed.

    PRICE thresholds are a percent move in ``direction``.  VOLUME thresholds are
    a volume ratio expressed in percent, so 150 means 1.5x the 10-day average.
    """

    metric: str = "PRICE"  # PRICE | VOLUME
    direction: str = "UP"  # UP | DOWN
    threshold_pct: float = 2.0
    timeout_hours: float = 48.0

    @property
    def expected_sentiment(self) -> Sentiment:
        return Sentiment.BULLISH if self.direction == "UP" else Sentiment.BEARISH

    def is_met(self, confirmation: "MarketConfirmation") -> bool:
        change = confirmation.price_change_pct
        if self.metric == "PRICE":
            if self.direction == "UP":
                return change >= self.threshold_pct
            return change <= -self.threshold_pct
        if self.metric == "VOLUME" and self.direction == "UP":
            return confirmation.volume_ratio >= self.threshold_pct / 100.0
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "direction": self.direction,
            "threshold_pct": self.threshold_pct,
            "timeout_hours": self.timeout_hours,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WatchCriteria":
        return cls(
            metric=str(d.get("metric") or "PRICE").upper(),
            direction=str(d.get("direction") or "UP").upper(),
            threshold_pct=float(d.get("threshold_pct") or 2.0),
            timeout_hours=float(d.get("timeout_hours") or 48.0),
        )


@dataclass
class WatchCheck:
    checked_at: datetime
    ticker: str
    price: float
    change_pct: float
    met: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": iso(self.checked_at),
            "ticker": self.ticker,
            "price": self.price,
            "change_pct": self.change_pct,
            "met": self.met,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "WatchCheck":
        return cls(
            checked_at=parse_ts(d["checked_at"]),
            ticker=str(d.get("ticker") or ""),
            price=float(d.get("price") or 0.0),
            change_pct=float(d.get("change_pct") or 0.0),
            met=bool(d.get("met")),
        )


@dataclass
class PotentialCatalyst:
    """A fired signal waiting for the market to confirm or ignore it."""

    symbol: str
    headline: str
    source: str = ""
    signal_id: Optional[str] = None
    detected_at: Optional[datetime] = None
    notes: str = ""
    status: PotentialStatus = PotentialStatus.MONITORING
    criteria: WatchCriteria = field(default_factory=WatchCriteria)
    affected_symbols: List[str] = field(default_factory=list)
    validation_log: List[WatchCheck] = field(default_factory=list)
    resolved_at: Optional[datetime] = None
    id: Optional[int] = None

    def age_hours(self, now: datetime) -> float:
        if self.detected_at is None:
            return 0.0
        return (now - self.detected_at).total_seconds() / 3600.0

    def is_timed_out(self, now: datetime) -> bool:
        return self.age_hours(now) > self.criteria.timeout_hours


# ============================================================================
# Portfolio snapshot (read-only input to the gate)
# ============================================================================


@dataclass
class Holding:
    symbol: str
    quantity: int
    avg_price: float
    current_price: Optional[float] = None
    bought_at: Optional[datetime] = None
    stop_loss: Optional[float] = None

    @property
    def price(self) -> float:
        return self.current_price if self.current_price else self.avg_price

    @property
    def market_value(self) -> float:
        return self.quantity * self.price

    @property
    def return_pct(self) -> float:
        if not self.avg_price:
            return 0.0
        return (self.price - self.avg_price) / self.avg_price * 100.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Holding":
        return cls(
            symbol=normalize_symbol(d["symbol"]),
            quantity=int(d["quantity"]),
            avg_price=float(d["avg_price"]),
            current_price=float(d["current_price"]) if d.get("current_price") else None,
            bought_at=parse_ts(d.get("bought_at")),
            stop_loss=float(d["stop_loss"]) if d.get("stop_loss") else None,
        )


@dataclass
class TradeRecord:
    symbol: str
    action: str  # BUY or SELL
    quantity: int
    price: float
    executed_at: datetime
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TradeRecord":
        return cls(
            symbol=normalize_symbol(d["symbol"]),
            action=str(d["action"]).upper(),
            quantity=int(d["quantity"]),
            price=float(d["price"]),
            executed_at=parse_ts(d["executed_at"]),
            id=str(d["id"]) if d.get("id") is not None else None,
        )


@dataclass
class PortfolioContext:
    """Catalyst-book snapshot: holdings, cash, recent trades and liquidity data."""

    holdings: List[Holding] = field(default_factory=list)
    available_cash: float = 0.0
    recent_trades: List[TradeRecord] = field(default_factory=list)
    # 10-day average daily volume per symbol; missing means "unknown"
    adv_10d: Dict[str, float] = field(default_factory=dict)

    @property
    def holdings_value(self) -> float:
        return sum(h.market_value for h in self.holdings)

    @property
    def total_capital(self) -> float:
        return self.holdings_value + self.available_cash

    def holding(self, symbol: str) -> Optional[Holding]:
        sym = normalize_symbol(symbol)
        for h in self.holdings:
            if normalize_symbol(h.symbol) == sym:
                return h
        return None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PortfolioContext":
        return cls(
            holdings=[Holding.from_dict(h) for h in d.get("holdings", [])],
            available_cash=float(d.get("available_cash", 0.0)),
            recent_trades=[TradeRecord.from_dict(t) for t in d.get("recent_trades", [])],
            adv_10d={normalize_symbol(k): float(v) for k, v in (d.get("adv_10d") or {}).items()},
        )


# ============================================================================
# Gate input/output
# ============================================================================


@dataclass
class TradeProposal:
    """Advisory trade plan returned by the LLM; the gate re-checks all of it."""

    action: GateAction
    entry_price: Optional[float] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    quantity: Optional[int] = None
    allocation_amount: Optional[float] = None
    min_hold_hours: Optional[float] = None
    confidence: int = 5
    rationale: str = ""


@dataclass
class SellLeg:
    """Paired SELL-to-fund leg recommended alongside a BUY."""

    symbol: str
    quantity: int
    est_price: float
    reason: str = ""

    @property
    def proceeds(self) -> float:
        return self.quantity * self.est_price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "quantity": self.quantity,
            "est_price": self.est_price,
            "proceeds": self.proceeds,
            "reason": self.reason,
        }


@dataclass
class Decision:
    """Auditable outcome of one gate evaluation."""

    action: GateAction
    symbol: str
    reasons: List[str] = field(default_factory=list)
    market_mode: str = ""
    signal_id: Optional[str] = None
    evaluated_at: Optional[datetime] = None
    # Sizing
    quantity: int = 0
    cost: float = 0.0
    liquidity_capped: bool = False
    funding_sell: Optional[SellLeg] = None
    # Risk params
    entry_price: Optional[float] = None
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    risk_reward: Optional[float] = None
    min_hold_hours: Optional[float] = None
    max_hold_days: Optional[int] = None
    trailing_stop: bool = False
    exit_plan: Optional[ExitPlan] = None

    @property
    def rationale(self) -> str:
        return "; ".join(self.reasons)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "symbol": self.symbol,
            "rationale": self.rationale,
            "market_mode": self.market_mode,
            "signal_id": self.signal_id,
            "evaluated_at": iso(self.evaluated_at),
            "quantity": self.quantity,
            "cost": round(self.cost, 2),
            "liquidity_capped": self.liquidity_capped,
            "funding_sell": self.funding_sell.to_dict() if self.funding_sell else None,
            "entry_price": self.entry_price,
            "target_price": self.target_price,
            "stop_loss": self.stop_loss,
            "risk_reward": self.risk_reward,
            "min_hold_hours": self.min_hold_hours,
            "max_hold_days": self.max_hold_days,
            "trailing_stop": self.trailing_stop,
            "exit_plan": self.exit_plan.to_dict() if self.exit_plan else None,
        }


# ============================================================================
# Opportunity log and verification
# ============================================================================


@dataclass
class Checkpoint:
    checked_at: datetime
    price: float
    price_change_pct: float
    verdict: Verdict
    local_price: Optional[float] = None
    local_change_pct: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": iso(self.checked_at),
            "price": self.price,
            "price_change_pct": self.price_change_pct,
            "verdict": self.verdict.value,
            "local_price": self.local_price,
            "local_change_pct": self.local_change_pct,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Checkpoint":
        return cls(
            checked_at=parse_ts(d["checked_at"]),
            price=float(d["price"]),
            price_change_pct=float(d["price_change_pct"]),
            verdict=_enum(Verdict, d.get("verdict"), Verdict.NEUTRAL),
            local_price=d.get("local_price"),
            local_change_pct=d.get("local_change_pct"),
        )


@dataclass
class LLMPrediction:
    sentiment: Sentiment
    impact_type: ImpactType
    confidence: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.value,
            "impact_type": self.impact_type.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LLMPrediction":
        return cls(
            sentiment=_enum(Sentiment, d.get("sentiment"), Sentiment.NEUTRAL),
            impact_type=_enum(ImpactType, d.get("impact_type"), ImpactType.NOISE),
            confidence=int(d.get("confidence") or 0),
        )


@dataclass
class MarketState:
    """Prices captured when the signal fired."""

    global_ticker: Optional[str]
    base_price: Optional[float]
    price_change_pct: Optional[float] = None
    volume_ratio: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "global_ticker": self.global_ticker,
            "base_price": self.base_price,
            "price_change_pct": self.price_change_pct,
            "volume_ratio": self.volume_ratio,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MarketState":
        return cls(
            global_ticker=d.get("global_ticker"),
            base_price=d.get("base_price"),
            price_change_pct=d.get("price_change_pct"),
            volume_ratio=d.get("volume_ratio"),
        )


@dataclass
class OpportunityLogEntry:
    id: str
    timestamp: datetime
    keyword: str
    headline: str
    prediction: LLMPrediction
    market_state: MarketState
    summary: str = ""
    local_ticker: Optional[str] = None
    local_base_price: Optional[float] = None
    checkpoints: Dict[CheckpointType, Checkpoint] = field(default_factory=dict)
    final_verdict: Verdict = Verdict.PENDING
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": iso(self.timestamp),
            "keyword": self.keyword,
            "headline": self.headline,
            "summary": self.summary,
            "local_ticker": self.local_ticker,
            "local_base_price": self.local_base_price,
            "prediction": self.prediction.to_dict(),
            "market_state": self.market_state.to_dict(),
            "checkpoints": {
                ct.value: self.checkpoints[ct].to_dict()
                for ct in CHECKPOINT_ORDER
                if ct in self.checkpoints
            },
            "final_verdict": self.final_verdict.value,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OpportunityLogEntry":
        checkpoints: Dict[CheckpointType, Checkpoint] = {}
        for key, raw in (d.get("checkpoints") or {}).items():
            ct = _enum(CheckpointType, key, None)
            if raw is None or ct is None:
                continue
            checkpoints[ct] = Checkpoint.from_dict(raw)
        return cls(
            id=str(d["id"]),
            timestamp=parse_ts(d["timestamp"]),
            keyword=str(d.get("keyword", "")),
            headline=str(d.get("headline", "")),
            summary=str(d.get("summary") or ""),
            local_ticker=d.get("local_ticker"),
            local_base_price=d.get("local_base_price"),
            prediction=LLMPrediction.from_dict(d.get("prediction") or {}),
            market_state=MarketState.from_dict(d.get("market_state") or {}),
            checkpoints=checkpoints,
            final_verdict=_enum(Verdict, d.get("final_verdict"), Verdict.PENDING),
            notes=str(d.get("notes") or ""),
        )


@dataclass
class VerdictCounts:
    good: int = 0
    bad: int = 0
    neutral: int = 0

    def add(self, verdict: Verdict) -> None:
        if verdict == Verdict.GOOD_CALL:
            self.good += 1
        elif verdict == Verdict.BAD_CALL:
            self.bad += 1
        elif verdict == Verdict.NEUTRAL:
            self.neutral += 1

    @property
    def decided(self) -> int:
        return self.good + self.bad

    @property
    def accuracy(self) -> Optional[float]:
        """GOOD / (GOOD + BAD) as a percentage, or None with nothing decided."""
        if self.decided == 0:
            return None
        return self.good / self.decided * 100.0


@dataclass
class CatalystVerificationMetrics:
    """Derived accuracy stats; always recomputed from log entries."""

    total: int = 0
    verified: int = 0
    pending: int = 0
    overall: VerdictCounts = field(default_factory=VerdictCounts)
    avg_confidence: Optional[float] = None
    by_keyword: Dict[str, VerdictCounts] = field(default_factory=dict)
    by_checkpoint: Dict[CheckpointType, VerdictCounts] = field(default_factory=dict)

    @property
    def accuracy(self) -> Optional[float]:
        return self.overall.accuracy
