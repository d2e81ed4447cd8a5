"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Storage
    DATABASE_URL: str = "sqlite:///./matchsignal.db"
    STATE_DIR: str = "./state"
    LEARNING_STORE: str = "file"               # file | sql | memory

    # Provider credentials (never hardcoded; empty = provider disabled)
    API_FOOTBALL_KEY: str = ""
    API_FOOTBALL_HOST: str = "v3.football.api-sports.io"
    FOOTBALL_DATA_KEY: str = ""
    LIVESCORE_API_KEY: str = ""
    LIVESCORE_API_SECRET: str = ""
    ODDS_API_KEY: str = ""
    ODDS_API_SPORT: str = "soccer_epl"

    # ═══════════════════════════════════════════════════════════════
    # Source admission: hourly rate limits, priority, circuit breaker
    # ═══════════════════════════════════════════════════════════════
    SOURCE_API_FOOTBALL_RATE_LIMIT: int = 100
    SOURCE_API_FOOTBALL_PRIORITY: int = 1
    SOURCE_FOOTBALL_DATA_RATE_LIMIT: int = 10
    SOURCE_FOOTBALL_DATA_PRIORITY: int = 2
    SOURCE_LIVESCORE_RATE_LIMIT: int = 50
    SOURCE_LIVESCORE_PRIORITY: int = 3
    SOURCE_ODDS_API_RATE_LIMIT: int = 20
    SOURCE_ODDS_API_PRIORITY: int = 4

    CIRCUIT_BREAKER_THRESHOLD: int = 3          # Consecutive failures before OPEN
    CIRCUIT_BREAKER_COOLDOWN_SECONDS: float = 300.0
    RATE_LIMIT_WINDOW_SECONDS: float = 3600.0
    SOURCE_TIMEOUT_SECONDS: float = 10.0        # Per-call bound, no retries

    # ═══════════════════════════════════════════════════════════════
    # Synthesizer policy constants (kept as-is, no derivation on record)
    # ═══════════════════════════════════════════════════════════════
    BLEND_H2H_WEIGHT: float = 0.4               # vs 0.6 retained odds probability
    BLEND_H2H_MIN_MATCHES: int = 3
    BLEND_FORM_FACTOR: float = 0.3
    BLEND_SEASON_WEIGHT: float = 0.15           # vs 0.85 running probability
    BLEND_LIVE_MOMENTUM_WEIGHT: float = 0.15
    LIVE_LEAD_BONUS_PER_GOAL: float = 10.0
    LIVE_LEAD_PENALTY_PER_GOAL: float = 8.0
    GATE_MIN_CONFIDENCE: float = 40.0
    GATE_MIN_EV: float = -5.0                   # Percent
    STAKE_MAX_UNITS: float = 10.0
    DEVIG_METHOD: str = "proportional"          # proportional | power | shin

    # Meta-learner: static weights per named estimator (sum 1.0)
    META_MODEL_WEIGHTS: dict = {
        "synthesizer": 0.30,
        "xg_poisson": 0.20,
        "live_in_play": 0.15,
        "momentum": 0.15,
        "market": 0.10,
        "form": 0.10,
    }

    # Online learning loop
    LEARNING_INTERVAL: int = 10                 # Iteration every Nth result
    LEARNING_WINDOW: int = 50                   # Results per iteration
    LEARNING_HISTORY_CAP: int = 200
    LEARNING_ROLLBACK_MARGIN: float = 5.0       # Accuracy points below best

    # Stake recommendation: Kelly Criterion sizing for final decisions
    TRADING_KELLY_FRACTION: float = 0.125       # Eighth-Kelly
    TRADING_BANKROLL_UNITS: float = 1000.0      # Abstract units for stake_units
    TRADING_MIN_EV: float = 0.05
    TRADING_MAX_ODDS_PENALTY_THRESHOLD: float = 5.0
    TRADING_MAX_ODDS_PENALTY_FACTOR: float = 0.5
    TRADING_MAX_STAKE_PCT: float = 0.05

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
