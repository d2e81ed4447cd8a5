"""
Named 1X2 estimators feeding the meta-learner.

Each estimator looks at the same MatchFeatures from a different angle and
returns a PredictionCandidate for the 1X2 market, or None when its inputs are
missing. Estimators state an opinion (the outcome they find most likely);
gating and stake policy belong to the meta-learner.

    synthesizer   full blend from PredictionSynthesizer (gated)
    xg_poisson    independent Poisson scorelines from season scoring rates
    momentum      recency-weighted form plus season goal difference
    live_in_play  projected final score from score, clock and pressure
    market        de-margined favourite
    form          form differential
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np
from scipy.stats import poisson

from app.ml.features import MatchFeatures
from app.ml.synthesizer import (
    MARKET_1X2,
    OUTCOME_AWAY,
    OUTCOME_DRAW,
    OUTCOME_HOME,
    PredictionCandidate,
    PredictionSynthesizer,
    expected_value,
    risk_level,
    stake_units,
    value_percentage,
)

logger = logging.getLogger(__name__)

OUTCOMES = (OUTCOME_HOME, OUTCOME_DRAW, OUTCOME_AWAY)

DEFAULT_HOME_XG = 1.5
DEFAULT_AWAY_XG = 1.2
MAX_GOALS = 10
LIVE_GOALS_PER_MATCH = 2.5
MOMENTUM_WEIGHTS = (1.5, 1.3, 1.1, 0.9, 0.7)


def build_candidate(
    features: MatchFeatures,
    outcome: str,
    confidence: float,
    reasoning: Sequence[str],
) -> Optional[PredictionCandidate]:
    """1X2 candidate priced against the match's odds; None without 1X2 prices."""
    odds = features.odds
    if odds is None or not odds.has_1x2:
        return None

    price = {OUTCOME_HOME: odds.home, OUTCOME_DRAW: odds.draw, OUTCOME_AWAY: odds.away}[outcome]
    confidence = max(0.0, min(100.0, confidence))
    ev = expected_value(confidence, price)
    return PredictionCandidate(
        market=MARKET_1X2,
        outcome=outcome,
        confidence=round(confidence, 1),
        recommended_odds=price,
        expected_value=round(ev, 1),
        value_percentage=round(value_percentage(confidence, price), 1),
        stake=stake_units(confidence, ev),
        reasoning=tuple(reasoning),
        risk=risk_level(confidence),
        timing="live" if features.is_live else "prematch",
        implied_probability=round(100 / price, 1),
    )


class Estimator(ABC):
    name: str = "estimator"

    @abstractmethod
    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        """1X2 opinion for the match, or None when the inputs are missing."""
        pass


class SynthesizerEstimator(Estimator):
    name = "synthesizer"

    def __init__(self, synthesizer: PredictionSynthesizer):
        self.synthesizer = synthesizer

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        return self.synthesizer.synthesize(MARKET_1X2, features)


class XGPoissonEstimator(Estimator):
    """Outcome probabilities from independent Poisson goal counts."""

    name = "xg_poisson"

    @staticmethod
    def scoring_rates(features: MatchFeatures) -> tuple[float, float]:
        home, away = features.home_stats, features.away_stats
        if home and away and home.matches_played and away.matches_played:
            return (
                (home.goals_for_per_match + away.goals_against_per_match) / 2,
                (away.goals_for_per_match + home.goals_against_per_match) / 2,
            )
        return DEFAULT_HOME_XG, DEFAULT_AWAY_XG

    @staticmethod
    def outcome_probabilities(home_rate: float, away_rate: float, home_lead: int = 0) -> tuple[float, float, float]:
        """P(home, draw, away) in percent for remaining goals on top of a current lead."""
        k = np.arange(MAX_GOALS + 1)
        # Joint scoreline matrix: rows home goals, columns away goals
        matrix = np.outer(poisson.pmf(k, max(home_rate, 0.0)), poisson.pmf(k, max(away_rate, 0.0)))
        margin = home_lead + k[:, None] - k[None, :]

        # Renormalize over the truncated grid
        total = matrix.sum()
        win = matrix[margin > 0].sum() / total * 100
        draw = matrix[margin == 0].sum() / total * 100
        loss = matrix[margin < 0].sum() / total * 100
        return float(win), float(draw), float(loss)

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        home_rate, away_rate = self.scoring_rates(features)
        lead = 0
        if features.is_live and features.live is not None:
            remaining = max(0, 90 - features.live.minute) / 90
            home_rate, away_rate = home_rate * remaining, away_rate * remaining
            lead = features.live.goal_diff

        probs = self.outcome_probabilities(home_rate, away_rate, lead)
        index = max(range(3), key=lambda i: probs[i])
        return build_candidate(
            features,
            OUTCOMES[index],
            probs[index],
            [f"xG {home_rate:.2f} vs {away_rate:.2f}", f"P(1/X/2) {probs[0]:.0f}/{probs[1]:.0f}/{probs[2]:.0f}"],
        )


class MomentumEstimator(Estimator):
    name = "momentum"

    @staticmethod
    def recent_form(form: Sequence[str]) -> float:
        """Points per match over the last five, newest weighted highest (0-3)."""
        recent = list(form)[: len(MOMENTUM_WEIGHTS)]
        if not recent:
            return 1.0
        score = 0.0
        for result, weight in zip(recent, MOMENTUM_WEIGHTS):
            if result == "W":
                score += 3 * weight
            elif result == "D":
                score += weight
        return score / sum(MOMENTUM_WEIGHTS[: len(recent)])

    def momentum(self, form: Sequence[str], stats) -> float:
        goal_diff = (stats.goals_for - stats.goals_against) if stats else 0
        return self.recent_form(form) / 3 * 0.7 + goal_diff / 10 * 0.3

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        if not features.home_form and not features.away_form:
            return None

        diff = (
            self.momentum(features.home_form, features.home_stats)
            - self.momentum(features.away_form, features.away_stats)
        )
        if diff > 0.5:
            outcome = OUTCOME_HOME
        elif diff < -0.5:
            outcome = OUTCOME_AWAY
        else:
            outcome = OUTCOME_DRAW
        confidence = min(abs(diff) * 30 + 55, 85)
        return build_candidate(features, outcome, confidence, [f"Momentum diff {diff:+.2f}"])


class LiveInPlayEstimator(Estimator):
    name = "live_in_play"

    @staticmethod
    def pressure(features: MatchFeatures) -> float:
        live = features.live
        shot_diff = ((live.shots_home or 0) - (live.shots_away or 0)) / 10
        possession = live.possession_home if live.possession_home is not None else 50
        return shot_diff * 0.6 + (possession - 50) / 50 * 0.4

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        live = features.live
        if not features.is_live or live is None:
            return None

        pressure = self.pressure(features)
        remaining_goals = max(0, 90 - live.minute) / 90 * LIVE_GOALS_PER_MATCH
        home_final = round(live.home_score + remaining_goals * (0.5 + pressure * 0.3))
        away_final = round(live.away_score + remaining_goals * (0.5 - pressure * 0.3))

        if home_final > away_final:
            outcome = OUTCOME_HOME
        elif away_final > home_final:
            outcome = OUTCOME_AWAY
        else:
            outcome = OUTCOME_DRAW

        confidence = min(50 + live.minute / 90 * 30 + abs(pressure) * 10, 90)
        return build_candidate(
            features,
            outcome,
            confidence,
            [f"Projected {home_final}-{away_final} from {live.home_score}-{live.away_score} at {live.minute}'"],
        )


class MarketEstimator(Estimator):
    name = "market"

    def __init__(self, synthesizer: PredictionSynthesizer):
        self.synthesizer = synthesizer

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        odds = features.odds
        if odds is None or not odds.has_1x2:
            return None
        implied = self.synthesizer.implied_1x2(odds)
        index = max(range(3), key=lambda i: implied[i])
        return build_candidate(features, OUTCOMES[index], implied[index], ["Market favourite"])


class FormEstimator(Estimator):
    name = "form"

    def estimate(self, features: MatchFeatures) -> Optional[PredictionCandidate]:
        if not features.home_form and not features.away_form:
            return None

        diff = features.form.diff
        if diff > 10:
            outcome = OUTCOME_HOME
        elif diff < -10:
            outcome = OUTCOME_AWAY
        else:
            outcome = OUTCOME_DRAW
        confidence = min(max(50 + abs(diff) / 2, 55), 85)
        return build_candidate(
            features,
            outcome,
            confidence,
            [f"Form {features.form.home:.0f} vs {features.form.away:.0f}"],
        )


def default_estimators(synthesizer: PredictionSynthesizer) -> list[Estimator]:
    return [
        SynthesizerEstimator(synthesizer),
        XGPoissonEstimator(),
        LiveInPlayEstimator(),
        MomentumEstimator(),
        MarketEstimator(synthesizer),
        FormEstimator(),
    ]


def run_estimators(estimators: Sequence[Estimator], features: MatchFeatures) -> dict[str, PredictionCandidate]:
    """name -> candidate for every estimator that produced one. One failing estimator never sinks the rest."""
    candidates = {}
    for estimator in estimators:
        try:
            candidate = estimator.estimate(features)
        except Exception as e:
            logger.warning(f"[ESTIMATORS] {estimator.name} failed: {e}")
            continue
        if candidate is not None:
            candidates[estimator.name] = candidate
    return candidates
