"""
Prediction pipeline: one request-driven cycle over the current live matches.

run_cycle():
    fetch_enriched -> archive lookups -> features -> synthesize_all
    -> estimators -> meta-learner combine -> save (best-effort)

settle() closes the loop once a match finishes: the match is archived and the
candidates logged by its latest cycle become MatchResults for the learning
loop. Candidates are read back from the prediction log, so a match can be
settled by a later process (scripts/settle_match.py). Scheduling is external
(cron / operator script).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from app.etl.base import EnrichedMatch
from app.ml.estimators import run_estimators
from app.ml.features import MatchFeatures, extract_features
from app.ml.learning import MatchResult
from app.ml.meta_learner import BettingDecision
from app.ml.synthesizer import (
    MARKET_1X2,
    MARKET_BTTS,
    OUTCOME_AWAY,
    OUTCOME_DRAW,
    OUTCOME_HOME,
    PredictionCandidate,
)
from app.state import Services

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchAnalysis:
    match: EnrichedMatch
    candidates: tuple[PredictionCandidate, ...]
    decision: BettingDecision

    def to_dict(self) -> dict:
        return {
            "match": self.match.to_dict(),
            "candidates": [c.to_dict() for c in self.candidates],
            "decision": self.decision.to_dict(),
        }


def settled_outcome(market: str, home_goals: int, away_goals: int) -> Optional[str]:
    """Winning outcome label of a market for a final score, in candidate terms."""
    if market == MARKET_1X2:
        if home_goals > away_goals:
            return OUTCOME_HOME
        if home_goals < away_goals:
            return OUTCOME_AWAY
        return OUTCOME_DRAW
    if market == MARKET_BTTS:
        return "Yes" if home_goals > 0 and away_goals > 0 else "No"
    if market.startswith("Over/Under "):
        line = market.split(" ", 1)[1]
        side = "Over" if home_goals + away_goals > float(line) else "Under"
        return f"{side} {line}"
    return None


class PredictionPipeline:
    def __init__(self, services: Services):
        self.services = services

    async def run_cycle(self) -> list[MatchAnalysis]:
        services = self.services
        await services.start()

        matches = await services.aggregator.fetch_enriched()
        analyses = []
        for match in matches:
            try:
                analysis = await self.analyze(match)
            except Exception as e:
                logger.exception(f"[PIPELINE] Analysis failed for {match.id}: {e}")
                continue
            analyses.append(analysis)

        logger.info(
            f"[PIPELINE] Cycle complete: {len(analyses)}/{len(matches)} matches analyzed, "
            f"{sum(len(a.candidates) for a in analyses)} candidates"
        )
        return analyses

    async def build_features(self, match: EnrichedMatch) -> MatchFeatures:
        archive = self.services.archive
        h2h_rows, home_form, away_form, home_stats, away_stats = await asyncio.gather(
            archive.get_h2h(match.home, match.away),
            archive.get_team_form(match.home),
            archive.get_team_form(match.away),
            archive.get_team_stats(match.home, match.league),
            archive.get_team_stats(match.away, match.league),
        )
        return extract_features(
            match,
            h2h_rows=h2h_rows,
            home_form=home_form,
            away_form=away_form,
            home_stats=home_stats,
            away_stats=away_stats,
        )

    async def analyze(self, match: EnrichedMatch) -> MatchAnalysis:
        services = self.services
        features = await self.build_features(match)

        candidates = services.synthesizer.synthesize_all(features)
        named = run_estimators(services.estimators, features)
        decision = services.meta_learner.combine(match.id, named, alternatives=candidates)

        await services.predictions.save(
            match.id,
            [*candidates, decision],
            model_version=f"v{services.learning.current.version}",
        )
        return MatchAnalysis(match=match, candidates=tuple(candidates), decision=decision)

    async def record_outcome(self, result: MatchResult) -> None:
        await self.services.learning.record(result)

    async def settle(self, match: EnrichedMatch, home_goals: int, away_goals: int) -> list[MatchResult]:
        """
        Archive a finished match and feed its logged candidates' outcomes to the learning loop.

        The archive write doubles as the settled marker: a match that is not
        newly archived (already settled, or the archive is down) feeds nothing,
        so a result is never learned twice.
        """
        services = self.services
        await services.start()

        if not await services.archive.archive_match(match, home_goals, away_goals):
            logger.info(f"[PIPELINE] {match.id} not newly archived, skipping settlement")
            return []

        records = await services.predictions.latest_candidates(match.id)
        results = []
        for record in records:
            actual = settled_outcome(record.market, home_goals, away_goals)
            if actual is None:
                continue
            result = MatchResult(
                match_id=match.id,
                predicted=record.prediction,
                actual=actual,
                confidence=record.confidence,
                correct=record.prediction == actual,
                bet_type=record.market,
                league=match.league,
            )
            await self.record_outcome(result)
            results.append(result)

        logger.info(f"[PIPELINE] Settled {match.id} {home_goals}-{away_goals}: {len(results)} results")
        return results

    def get_status(self) -> dict:
        return self.services.aggregator.get_status()

    def get_statistics(self) -> dict:
        return self.services.learning.get_statistics()
