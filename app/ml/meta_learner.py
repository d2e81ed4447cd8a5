"""
Meta-learner: weighted combination of named estimator candidates.

Confidence and value (EV as a fraction) are weight-averaged over the models
that actually produced a candidate, so a missing estimator does not drag the
blend toward zero. Consensus is the share of present models that agree with
the modal outcome.

Recommendation rules, first match wins:
    STRONG_BET    confidence > 75, EV > 0.10, risk LOW
    MODERATE_BET  confidence > 65, EV > 0.05, risk not HIGH
    AVOID         EV < 0 or confidence < 60
    PASS          otherwise
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from app.ml.synthesizer import PredictionCandidate
from app.telemetry import record_decision
from app.trading.kelly import NO_STAKE, KellySizing, StakeRecommendation, recommend_stake

logger = logging.getLogger(__name__)

STRONG_BET = "STRONG_BET"
MODERATE_BET = "MODERATE_BET"
PASS = "PASS"
AVOID = "AVOID"

RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_HIGH = "HIGH"

DEFAULT_MODEL_WEIGHTS = {
    "synthesizer": 0.30,
    "xg_poisson": 0.20,
    "live_in_play": 0.15,
    "momentum": 0.15,
    "market": 0.10,
    "form": 0.10,
}

MAX_ALTERNATIVES = 3


@dataclass(frozen=True)
class BettingDecision:
    match_id: str
    recommendation: str
    market: Optional[str]
    outcome: Optional[str]
    confidence: float
    expected_value: float                   # Fraction, 0.08 = +8%
    risk_level: str
    consensus: float                        # 0-1
    stake_recommendation: StakeRecommendation = NO_STAKE
    reasoning: tuple[str, ...] = ()
    model_breakdown: dict = field(default_factory=dict)
    alternative_markets: tuple = ()

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "recommendation": self.recommendation,
            "market": self.market,
            "outcome": self.outcome,
            "confidence": self.confidence,
            "expected_value": self.expected_value,
            "risk_level": self.risk_level,
            "consensus": self.consensus,
            "stake_recommendation": self.stake_recommendation.to_dict(),
            "reasoning": list(self.reasoning),
            "model_breakdown": self.model_breakdown,
            "alternative_markets": [c.to_dict() for c in self.alternative_markets],
        }


def classify_risk(confidence: float, consensus: float) -> str:
    if confidence > 75 and consensus > 0.8:
        return RISK_LOW
    if confidence > 60 and consensus > 0.6:
        return RISK_MEDIUM
    return RISK_HIGH


def classify_recommendation(confidence: float, ev: float, risk: str) -> str:
    if confidence > 75 and ev > 0.10 and risk == RISK_LOW:
        return STRONG_BET
    if confidence > 65 and ev > 0.05 and risk != RISK_HIGH:
        return MODERATE_BET
    if ev < 0 or confidence < 60:
        return AVOID
    return PASS


class MetaLearner:
    def __init__(self, weights: Mapping[str, float] = None, sizing: KellySizing = None):
        self.weights = dict(weights or DEFAULT_MODEL_WEIGHTS)
        self.sizing = sizing or KellySizing()

    def combine(
        self,
        match_id: str,
        named_candidates: Mapping[str, PredictionCandidate],
        alternatives: Sequence[PredictionCandidate] = (),
    ) -> BettingDecision:
        present = {
            name: candidate
            for name, candidate in named_candidates.items()
            if candidate is not None and self.weights.get(name, 0.0) > 0
        }
        ignored = set(named_candidates) - set(present)
        if ignored:
            logger.debug(f"[META] {match_id}: ignoring unweighted/empty models {sorted(ignored)}")

        if not present:
            decision = BettingDecision(
                match_id=match_id,
                recommendation=AVOID,
                market=None,
                outcome=None,
                confidence=0.0,
                expected_value=0.0,
                risk_level=RISK_HIGH,
                consensus=0.0,
                reasoning=("No model produced a candidate",),
            )
            record_decision(decision.recommendation)
            return decision

        weight_sum = sum(self.weights[name] for name in present)
        confidence = sum(self.weights[n] * c.confidence for n, c in present.items()) / weight_sum
        ev = sum(self.weights[n] * c.expected_value / 100 for n, c in present.items()) / weight_sum

        votes = Counter(c.outcome for c in present.values())
        top_count = max(votes.values())
        # Ties go to the outcome carrying more weight
        modal = max(
            (o for o, count in votes.items() if count == top_count),
            key=lambda o: sum(self.weights[n] for n, c in present.items() if c.outcome == o),
        )
        consensus = top_count / len(present)

        risk = classify_risk(confidence, consensus)
        recommendation = classify_recommendation(confidence, ev, risk)

        lead = next(c for c in present.values() if c.outcome == modal)
        stake = NO_STAKE
        if recommendation in (STRONG_BET, MODERATE_BET):
            stake = recommend_stake(confidence / 100, lead.recommended_odds, ev, self.sizing)

        breakdown = {
            name: {
                "outcome": c.outcome,
                "confidence": c.confidence,
                "expected_value": c.expected_value,
                "weight": self.weights[name],
            }
            for name, c in present.items()
        }
        alternatives = tuple(
            sorted(
                (a for a in alternatives if a.market != lead.market),
                key=lambda a: a.expected_value,
                reverse=True,
            )[:MAX_ALTERNATIVES]
        )

        decision = BettingDecision(
            match_id=match_id,
            recommendation=recommendation,
            market=lead.market,
            outcome=modal,
            confidence=round(confidence, 1),
            expected_value=round(ev, 4),
            risk_level=risk,
            consensus=round(consensus, 3),
            stake_recommendation=stake,
            reasoning=(
                f"{top_count}/{len(present)} models agree on {modal}",
                f"Weighted confidence {confidence:.1f}%",
                f"Weighted EV {ev * 100:+.1f}%",
                f"Risk {risk}",
            ),
            model_breakdown=breakdown,
            alternative_markets=alternatives,
        )
        record_decision(recommendation)
        logger.info(
            f"[META] {match_id}: {recommendation} {modal} "
            f"(conf={confidence:.1f}, ev={ev:+.3f}, consensus={consensus:.2f})"
        )
        return decision
