import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_float_opt(name: str) -> Optional[float]:
    """
    Read an optional float from env. Returns None if unset, blank, or non-numeric.
    """
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if raw == "" or raw.lower() in {"none", "null"} or raw.startswith("#"):
        return None
    try:
        return float(raw)
    except Exception:
        return None


def _env_float(name: str, default: float) -> float:
    val = _env_float_opt(name)
    return default if val is None else val


def _env_int(name: str, default: int) -> int:
    val = _env_float_opt(name)
    return default if val is None else int(val)


def _b(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {
        "1",
        "true",
        "yes",
        "y",
        "on",
    }


@dataclass
class Settings:
    # --- Paths ---
    data_dir: Path = field(
        default_factory=lambda: Path(os.getenv("DATA_DIR", "data")).resolve()
    )
    # SQLite database holding signals, suggestions and gate decisions.
    db_path: str = field(
        default_factory=lambda: os.getenv("CATALYST_DB_PATH", "data/catalyst.db")
    )
    # Append-only JSONL accuracy dataset written when a signal fires.
    opportunities_log_path: str = field(
        default_factory=lambda: os.getenv(
            "OPPORTUNITIES_LOG_PATH", "data/logs/opportunities.jsonl"
        )
    )

    # --- Logging ---
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_plain: bool = field(default_factory=lambda: _b("LOG_PLAIN", False))
    log_backups: int = field(default_factory=lambda: _env_int("LOG_BACKUPS", 7))

    # --- LLM (Gemini) ---
    gemini_api_key: str = field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY", "")
    )
    gemini_model: str = field(
        default_factory=lambda: os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    )
    llm_temperature: float = field(
        default_factory=lambda: _env_float("LLM_TEMPERATURE", 0.3)
    )
    llm_max_tokens: int = field(
        default_factory=lambda: _env_int("LLM_MAX_TOKENS", 1500)
    )
    llm_timeout_sec: float = field(
        default_factory=lambda: _env_float("LLM_TIMEOUT_SEC", 30.0)
    )
    llm_max_retries: int = field(
        default_factory=lambda: _env_int("LLM_MAX_RETRIES", 3)
    )
    # Spacing between sequential LLM calls within one run.
    llm_call_delay_sec: float = field(
        default_factory=lambda: _env_float("LLM_CALL_DELAY_SEC", 1.0)
    )

    # --- Catalyst scanning ---
    confidence_threshold: int = field(
        default_factory=lambda: _env_int("CATALYST_CONFIDENCE_THRESHOLD", 7)
    )
    news_max_age_hours: float = field(
        default_factory=lambda: _env_float("CATALYST_NEWS_MAX_AGE_HOURS", 2.0)
    )
    signal_expiry_hours: float = field(
        default_factory=lambda: _env_float("CATALYST_SIGNAL_EXPIRY_HOURS", 48.0)
    )
    suggestion_expiry_days: int = field(
        default_factory=lambda: _env_int("SUGGESTION_EXPIRY_DAYS", 7)
    )
    # Potential catalysts: move needed to confirm, and how long to wait for it.
    watch_threshold_pct: float = field(
        default_factory=lambda: _env_float("CATALYST_WATCH_THRESHOLD_PCT", 2.0)
    )
    watch_timeout_hours: float = field(
        default_factory=lambda: _env_float("CATALYST_WATCH_TIMEOUT_HOURS", 48.0)
    )

    # --- Price lookups ---
    price_fetch_delay_sec: float = field(
        default_factory=lambda: _env_float("PRICE_FETCH_DELAY_SEC", 0.5)
    )
    price_max_retries: int = field(
        default_factory=lambda: _env_int("PRICE_MAX_RETRIES", 3)
    )
    price_timeout_sec: float = field(
        default_factory=lambda: _env_float("PRICE_TIMEOUT_SEC", 10.0)
    )
    price_cache_ttl_sec: float = field(
        default_factory=lambda: _env_float("PRICE_CACHE_TTL_SEC", 30 * 60)
    )
    adv_cache_ttl_sec: float = field(
        default_factory=lambda: _env_float("ADV_CACHE_TTL_SEC", 2 * 60 * 60)
    )

    # --- Portfolio gate thresholds (see GateConfig) ---
    gate_max_position_pct: float = field(
        default_factory=lambda: _env_float("GATE_MAX_POSITION_PCT", 0.20)
    )
    gate_max_positions: int = field(
        default_factory=lambda: _env_int("GATE_MAX_POSITIONS", 5)
    )
    gate_adv_cap_pct: float = field(
        default_factory=lambda: _env_float("GATE_ADV_CAP_PCT", 0.01)
    )
    gate_min_risk_reward: float = field(
        default_factory=lambda: _env_float("GATE_MIN_RISK_REWARD", 2.0)
    )
    gate_friction_multiple: float = field(
        default_factory=lambda: _env_float("GATE_FRICTION_MULTIPLE", 10.0)
    )
    # Estimated round-trip brokerage + statutory charges, in INR.
    gate_round_trip_cost: float = field(
        default_factory=lambda: _env_float("GATE_ROUND_TRIP_COST", 90.0)
    )
    gate_washout_days: int = field(
        default_factory=lambda: _env_int("GATE_WASHOUT_DAYS", 3)
    )
    gate_min_hold_hours: float = field(
        default_factory=lambda: _env_float("GATE_MIN_HOLD_HOURS", 48.0)
    )
    gate_max_hold_days: int = field(
        default_factory=lambda: _env_int("GATE_MAX_HOLD_DAYS", 30)
    )
    gate_allow_rotation: bool = field(
        default_factory=lambda: _b("GATE_ALLOW_ROTATION", True)
    )


@dataclass(frozen=True)
class GateConfig:
    """Typed thresholds enforced by the portfolio gate and the exit engine.

    Prompt text may describe these rules to the model, but the gate is the only
    place they are enforced.
    """

    max_position_pct: float = 0.20
    max_positions: int = 5
    adv_cap_pct: float = 0.01
    min_risk_reward: float = 2.0
    friction_multiple: float = 10.0
    round_trip_cost: float = 90.0
    washout_days: int = 3
    min_hold_hours: float = 48.0
    max_hold_days: int = 30
    min_confidence: int = 7
    allow_rotation: bool = True

    # Phased trailing exit
    phase1_atr_multiple: float = 3.0
    phase2_gain_pct: float = 3.0
    phase2_ema_span: int = 20
    phase3_rsi: float = 75.0
    phase3_ema_span: int = 9
    atr_period: int = 14
    rsi_period: int = 14

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GateConfig":
        return cls(
            max_position_pct=settings.gate_max_position_pct,
            max_positions=settings.gate_max_positions,
            adv_cap_pct=settings.gate_adv_cap_pct,
            min_risk_reward=settings.gate_min_risk_reward,
            friction_multiple=settings.gate_friction_multiple,
            round_trip_cost=settings.gate_round_trip_cost,
            washout_days=settings.gate_washout_days,
            min_hold_hours=settings.gate_min_hold_hours,
            max_hold_days=settings.gate_max_hold_days,
            min_confidence=settings.confidence_threshold,
            allow_rotation=settings.gate_allow_rotation,
        )


_SETTINGS: Optional[Settings] = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        load_dotenv(override=False)
        _SETTINGS = Settings()
    return _SETTINGS


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _SETTINGS
    _SETTINGS = None
