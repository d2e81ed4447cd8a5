"""Database models using SQLModel."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, LargeBinary
from sqlmodel import Field, SQLModel


class PredictionRecord(SQLModel, table=True):
    """Append-only log of emitted candidates and final decisions."""

    __tablename__ = "prediction_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(max_length=100, index=True)
    kind: str = Field(max_length=20, description="'candidate' or 'decision'")
    market: str = Field(max_length=50, description="e.g. '1X2', 'Over/Under 2.5', 'BTTS'")
    prediction: str = Field(max_length=50, description="Predicted outcome label")
    confidence: float = Field(description="0-100")
    recommended_odds: Optional[float] = Field(default=None)
    expected_value: Optional[float] = Field(default=None)
    stake_suggested: Optional[float] = Field(default=None)
    recommendation: Optional[str] = Field(
        default=None, max_length=20, description="STRONG_BET / MODERATE_BET / PASS / AVOID"
    )
    model_version: str = Field(max_length=50)
    details: Optional[dict] = Field(
        default=None, sa_column=Column(JSON), description="Reasoning and breakdown"
    )
    predicted_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class ArchivedMatch(SQLModel, table=True):
    """Finished match kept for head-to-head, form and season aggregates."""

    __tablename__ = "match_history"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: str = Field(max_length=100, unique=True, index=True)
    home_team: str = Field(max_length=255, index=True)
    away_team: str = Field(max_length=255, index=True)
    league: str = Field(max_length=255, index=True)
    country: Optional[str] = Field(default=None, max_length=100)
    match_date: datetime = Field(index=True)

    home_goals: int
    away_goals: int
    final_result: str = Field(max_length=1, description="'1', 'X' or '2'")
    total_goals: int
    btts: bool

    odds_home: Optional[float] = Field(default=None)
    odds_draw: Optional[float] = Field(default=None)
    odds_away: Optional[float] = Field(default=None)

    data_sources: Optional[list] = Field(default=None, sa_column=Column(JSON))
    data_quality: int = Field(default=0)


class KeyValueEntry(SQLModel, table=True):
    """Opaque blobs for the learning loop state (current, best, history)."""

    __tablename__ = "kv_store"

    key: str = Field(primary_key=True, max_length=255)
    value: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.utcnow)
