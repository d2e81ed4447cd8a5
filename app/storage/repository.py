"""
Append-only prediction log.

Best-effort by contract: a database failure is logged and never reaches the
prediction path. save() returns False in that case so callers can count it.

Every record written by one save() shares a predicted_at stamp, so the
candidates of the most recent cycle can be read back as a batch when the
match is settled, possibly by another process.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.models import PredictionRecord

if TYPE_CHECKING:
    from app.ml.meta_learner import BettingDecision
    from app.ml.synthesizer import PredictionCandidate

logger = logging.getLogger(__name__)

KIND_CANDIDATE = "candidate"
KIND_DECISION = "decision"


def to_record(match_id: str, item: Union["PredictionCandidate", "BettingDecision"], model_version: str) -> PredictionRecord:
    # Decisions carry a recommendation; candidates do not
    if hasattr(item, "recommendation"):
        return PredictionRecord(
            match_id=match_id,
            kind=KIND_DECISION,
            market=item.market or "-",
            prediction=item.outcome or "-",
            confidence=item.confidence,
            expected_value=item.expected_value,
            stake_suggested=item.stake_recommendation.stake_units,
            recommendation=item.recommendation,
            model_version=model_version,
            details={
                "risk_level": item.risk_level,
                "consensus": item.consensus,
                "reasoning": list(item.reasoning),
                "model_breakdown": item.model_breakdown,
            },
        )
    return PredictionRecord(
        match_id=match_id,
        kind=KIND_CANDIDATE,
        market=item.market,
        prediction=item.outcome,
        confidence=item.confidence,
        recommended_odds=item.recommended_odds,
        expected_value=item.expected_value,
        stake_suggested=item.stake,
        model_version=model_version,
        details={
            "reasoning": list(item.reasoning),
            "risk": item.risk,
            "timing": item.timing,
            "implied_probability": item.implied_probability,
            "value_percentage": item.value_percentage,
        },
    )


class PredictionRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def save(
        self,
        match_id: str,
        items: Union["PredictionCandidate", "BettingDecision", list],
        model_version: str = "v1",
    ) -> bool:
        if not isinstance(items, (list, tuple)):
            items = [items]
        if not items:
            return True
        try:
            now = datetime.utcnow()
            records = [to_record(match_id, item, model_version) for item in items]
            for record in records:
                record.predicted_at = now
            async with self._session_factory() as session:
                session.add_all(records)
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.warning(f"[REPOSITORY] Save failed for {match_id}: {e}")
            return False

    async def query(self, match_id: str) -> list[PredictionRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(PredictionRecord)
                    .where(PredictionRecord.match_id == match_id)
                    .order_by(PredictionRecord.predicted_at, PredictionRecord.id)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning(f"[REPOSITORY] Query failed for {match_id}: {e}")
            return []

    async def latest_candidates(self, match_id: str) -> list[PredictionRecord]:
        """Candidates from the most recent save() for a match; [] if that save had none."""
        records = await self.query(match_id)
        if not records:
            return []
        latest = records[-1].predicted_at
        return [r for r in records if r.kind == KIND_CANDIDATE and r.predicted_at == latest]
