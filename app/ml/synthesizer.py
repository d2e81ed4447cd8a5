"""
Prediction synthesizer: market odds blended with historical and live signals.

1X2 blend, applied in order on percent probabilities:
1. De-margined implied probabilities from the 1X2 prices.
2. H2H outcome rates (0.4 vs 0.6 odds) once there are >= 3 meetings.
3. Form differential: +0.3 x gap to home, -0.3 x gap to away.
4. Season win rates (0.15 vs 0.85 running probability).
5. Live only: momentum adjustment x 0.15, then +10 / -8 per goal of lead.
6. Clamp at 0 and re-normalize to 100.

The outcome maximizing EV = (p/100 x odds - 1) x 100 is picked, not the most
likely one. A candidate is gated (None) when confidence < 40 or EV < -5 in
every market. Over/Under and BTTS follow the same shape with their own
signals (H2H over-line / BTTS rates, season scoring, live settlement and a
time-decayed Poisson estimate of remaining goals).

Learning parameters are read at each call, never cached.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from scipy.stats import poisson

from app.etl.base import MatchOdds
from app.ml.devig import get_devig_function
from app.ml.features import OVER_UNDER_LINES, LiveFeatures, MatchFeatures
from app.ml.learning import ModelParameters
from app.telemetry import record_candidate

logger = logging.getLogger(__name__)

MARKET_1X2 = "1X2"
MARKET_BTTS = "BTTS"

OUTCOME_HOME = "1 (Home)"
OUTCOME_DRAW = "X (Draw)"
OUTCOME_AWAY = "2 (Away)"

REGULATION_MINUTES = 90
DEFAULT_GOALS_PER_MATCH = 2.6
SETTLED_PROBABILITY = 99.0


def over_under_market(line: str) -> str:
    return f"Over/Under {line}"


MARKETS = (MARKET_1X2,) + tuple(over_under_market(line) for line in OVER_UNDER_LINES) + (MARKET_BTTS,)


@dataclass(frozen=True)
class SynthesizerPolicy:
    """Blend weights and gates. Preserved as configurable constants."""

    h2h_weight: float = 0.4
    h2h_min_matches: int = 3
    form_factor: float = 0.3
    season_weight: float = 0.15
    live_momentum_weight: float = 0.15
    lead_bonus_per_goal: float = 10.0
    lead_penalty_per_goal: float = 8.0
    gate_min_confidence: float = 40.0
    gate_min_ev: float = -5.0
    stake_max_units: float = 10.0
    devig_method: str = "proportional"

    @classmethod
    def from_settings(cls, settings) -> "SynthesizerPolicy":
        return cls(
            h2h_weight=settings.BLEND_H2H_WEIGHT,
            h2h_min_matches=settings.BLEND_H2H_MIN_MATCHES,
            form_factor=settings.BLEND_FORM_FACTOR,
            season_weight=settings.BLEND_SEASON_WEIGHT,
            live_momentum_weight=settings.BLEND_LIVE_MOMENTUM_WEIGHT,
            lead_bonus_per_goal=settings.LIVE_LEAD_BONUS_PER_GOAL,
            lead_penalty_per_goal=settings.LIVE_LEAD_PENALTY_PER_GOAL,
            gate_min_confidence=settings.GATE_MIN_CONFIDENCE,
            gate_min_ev=settings.GATE_MIN_EV,
            stake_max_units=settings.STAKE_MAX_UNITS,
            devig_method=settings.DEVIG_METHOD,
        )


@dataclass(frozen=True)
class PredictionCandidate:
    market: str
    outcome: str
    confidence: float               # 0-100
    recommended_odds: float
    expected_value: float           # Percent
    value_percentage: float
    stake: float                    # Units, 0-10
    reasoning: tuple[str, ...]
    risk: str                       # low / medium / high
    timing: str                     # prematch / live
    implied_probability: float      # Percent, de-margined

    def to_dict(self) -> dict:
        return {
            "market": self.market,
            "outcome": self.outcome,
            "confidence": self.confidence,
            "recommended_odds": self.recommended_odds,
            "expected_value": self.expected_value,
            "value_percentage": self.value_percentage,
            "stake": self.stake,
            "reasoning": list(self.reasoning),
            "risk": self.risk,
            "timing": self.timing,
            "implied_probability": self.implied_probability,
        }


# =============================================================================
# PURE HELPERS
# =============================================================================


def expected_value(probability: float, odds: float) -> float:
    """EV in percent for a percent probability at decimal odds."""
    return (probability / 100 * odds - 1) * 100


def value_percentage(confidence: float, odds: float) -> float:
    """How far the offered price sits above the fair price implied by confidence."""
    if confidence <= 0:
        return 0.0
    fair = 100 / confidence
    return (odds - fair) / fair * 100


def passes_gate(confidence: float, ev: float, min_confidence: float = 40.0, min_ev: float = -5.0) -> bool:
    return confidence >= min_confidence and ev >= min_ev


def stake_units(confidence: float, ev: float, max_units: float = 10.0) -> float:
    if ev <= 0:
        return 0.0
    raw = (confidence / 100 - 0.5) * 2 * max_units
    return max(0.0, min(max_units, round(raw, 1)))


def risk_level(confidence: float) -> str:
    if confidence >= 65:
        return "low"
    if confidence >= 50:
        return "medium"
    return "high"


def normalize(probs: list[float]) -> list[float]:
    """Clamp at zero and rescale to 100; uniform when nothing survives."""
    clamped = [max(0.0, p) for p in probs]
    total = sum(clamped)
    if total <= 0:
        return [100 / len(probs)] * len(probs)
    return [p / total * 100 for p in clamped]


def poisson_at_least(k: int, lam: float) -> float:
    """P(X >= k) for X ~ Poisson(lam)."""
    if k <= 0:
        return 1.0
    if lam <= 0:
        return 0.0
    return float(poisson.sf(k - 1, lam))


def expected_goals_per_match(features: MatchFeatures) -> float:
    """Combined scoring rate from season stats, else H2H average, else league-neutral."""
    home, away = features.home_stats, features.away_stats
    if home and away and home.matches_played and away.matches_played:
        home_rate = (home.goals_for_per_match + away.goals_against_per_match) / 2
        away_rate = (away.goals_for_per_match + home.goals_against_per_match) / 2
        return home_rate + away_rate
    if features.h2h.total_matches:
        return features.h2h.avg_goals
    return DEFAULT_GOALS_PER_MATCH


# =============================================================================
# SYNTHESIZER
# =============================================================================


class PredictionSynthesizer:
    """Turns MatchFeatures into gated, value-ranked candidates."""

    def __init__(
        self,
        parameters_provider: Callable[[], ModelParameters] = ModelParameters,
        policy: Optional[SynthesizerPolicy] = None,
    ):
        self._parameters_provider = parameters_provider
        self.policy = policy or SynthesizerPolicy()
        self._devig = get_devig_function(self.policy.devig_method)

    def synthesize(self, market: str, features: MatchFeatures) -> Optional[PredictionCandidate]:
        """One market; None when the market has no prices or the gate rejects it."""
        params = self._parameters_provider()

        if market == MARKET_1X2:
            candidate = self._predict_1x2(features, params)
        elif market == MARKET_BTTS:
            candidate = self._predict_btts(features, params)
        elif market.startswith("Over/Under "):
            candidate = self._predict_over_under(features, params, market.split(" ", 1)[1])
        else:
            raise ValueError(f"Unknown market: {market}")

        if self._has_prices(market, features.odds):
            record_candidate(market, candidate is not None)
        return candidate

    def synthesize_all(self, features: MatchFeatures) -> list[PredictionCandidate]:
        """Every market with prices, sorted by expected value (best first)."""
        candidates = []
        for market in MARKETS:
            if not self._has_prices(market, features.odds):
                continue
            candidate = self.synthesize(market, features)
            if candidate is not None:
                candidates.append(candidate)
        return sorted(candidates, key=lambda c: c.expected_value, reverse=True)

    @staticmethod
    def _has_prices(market: str, odds: Optional[MatchOdds]) -> bool:
        if odds is None:
            return False
        if market == MARKET_1X2:
            return odds.has_1x2
        if market == MARKET_BTTS:
            return bool(odds.btts_yes and odds.btts_no)
        over, _ = odds.over_under(market.split(" ", 1)[1])
        return bool(over)

    # -----------------------------------------------------------------
    # Candidate assembly
    # -----------------------------------------------------------------

    def _finalize(
        self,
        market: str,
        outcome: str,
        probability: float,
        odds: float,
        implied: float,
        reasoning: list[str],
        features: MatchFeatures,
        params: ModelParameters,
    ) -> Optional[PredictionCandidate]:
        confidence = probability
        if features.odds_synthetic:
            confidence *= params.confidence_decay_factor
            reasoning.append(f"Synthetic odds: confidence x{params.confidence_decay_factor:.2f}")

        ev = expected_value(confidence, odds)
        if not passes_gate(confidence, ev, self.policy.gate_min_confidence, self.policy.gate_min_ev):
            logger.debug(
                f"[SYNTH] {market} {outcome} gated (conf={confidence:.1f}, ev={ev:.1f})"
            )
            return None

        reasoning.append(f"Model: {confidence:.1f}% vs implied {implied:.1f}% @ {odds}")
        reasoning.append(f"EV: {ev:+.1f}%")

        return PredictionCandidate(
            market=market,
            outcome=outcome,
            confidence=round(confidence, 1),
            recommended_odds=odds,
            expected_value=round(ev, 1),
            value_percentage=round(value_percentage(confidence, odds), 1),
            stake=stake_units(confidence, ev, self.policy.stake_max_units),
            reasoning=tuple(reasoning),
            risk=risk_level(confidence),
            timing="live" if features.is_live else "prematch",
            implied_probability=round(implied, 1),
        )

    @staticmethod
    def _best_by_ev(options: list[tuple[str, float, float, float]]):
        """options: (outcome, probability, odds, implied). Highest EV wins, first on ties."""
        return max(options, key=lambda o: expected_value(o[1], o[2]))

    # -----------------------------------------------------------------
    # 1X2
    # -----------------------------------------------------------------

    def implied_1x2(self, odds: MatchOdds) -> list[float]:
        """De-margined 1X2 probabilities in percent."""
        return [p * 100 for p in self._devig(odds.home, odds.draw, odds.away)]

    def _predict_1x2(self, features: MatchFeatures, params: ModelParameters) -> Optional[PredictionCandidate]:
        odds = features.odds
        if odds is None or not odds.has_1x2:
            return None

        policy = self.policy
        implied = self.implied_1x2(odds)
        home, draw, away = implied
        reasoning: list[str] = []

        h2h = features.h2h
        if h2h.total_matches >= policy.h2h_min_matches:
            w = policy.h2h_weight
            home = home * (1 - w) + h2h.rate(h2h.home_wins) * w
            draw = draw * (1 - w) + h2h.rate(h2h.draws) * w
            away = away * (1 - w) + h2h.rate(h2h.away_wins) * w
            reasoning.append(
                f"H2H ({h2h.total_matches}): {h2h.home_wins}W-{h2h.draws}D-{h2h.away_wins}L"
            )

        form_shift = features.form.diff * policy.form_factor
        home += form_shift
        away -= form_shift
        reasoning.append(f"Form: home {features.form.home:.0f}% vs away {features.form.away:.0f}%")

        if features.home_stats and features.away_stats:
            w = policy.season_weight
            home = home * (1 - w) + features.home_stats.win_rate * w
            away = away * (1 - w) + features.away_stats.win_rate * w

        if features.is_live and features.live is not None:
            home, away = self._apply_live_1x2(home, away, features.live, params)
            reasoning.append(
                f"LIVE: {features.live.home_score}-{features.live.away_score} | min {features.live.minute}'"
            )

        home, draw, away = normalize([home, draw, away])

        outcome, probability, price, implied_p = self._best_by_ev([
            (OUTCOME_HOME, home, odds.home, implied[0]),
            (OUTCOME_DRAW, draw, odds.draw, implied[1]),
            (OUTCOME_AWAY, away, odds.away, implied[2]),
        ])
        return self._finalize(
            MARKET_1X2, outcome, probability, price, implied_p, reasoning, features, params
        )

    def _apply_live_1x2(
        self,
        home: float,
        away: float,
        live: LiveFeatures,
        params: ModelParameters,
    ) -> tuple[float, float]:
        policy = self.policy
        momentum = live.momentum_adjustment * policy.live_momentum_weight
        home += momentum
        away -= momentum

        lead = abs(live.goal_diff)
        if lead:
            # Decisive leads are trusted more as the learning loop sees fit
            scale = params.one_x_two_time_multiplier if lead >= params.one_x_two_lead_threshold else 1.0
            bonus = lead * policy.lead_bonus_per_goal * scale
            penalty = lead * policy.lead_penalty_per_goal * scale
            if live.goal_diff > 0:
                home, away = home + bonus, away - penalty
            else:
                home, away = home - penalty, away + bonus
        return home, away

    # -----------------------------------------------------------------
    # Over/Under
    # -----------------------------------------------------------------

    def _predict_over_under(
        self,
        features: MatchFeatures,
        params: ModelParameters,
        line: str,
    ) -> Optional[PredictionCandidate]:
        over_odds, under_odds = features.odds.over_under(line) if features.odds else (None, None)
        if not over_odds:
            return None

        policy = self.policy
        threshold = float(line)
        reasoning: list[str] = []

        if under_odds:
            implied_over = self._devig(over_odds, under_odds)[0] * 100
        else:
            implied_over = 50.0
        over = implied_over

        h2h = features.h2h
        if h2h.total_matches >= policy.h2h_min_matches:
            w = policy.h2h_weight
            over = over * (1 - w) + h2h.over_percent.get(line, 0.0) * w
            reasoning.append(f"H2H avg: {h2h.avg_goals:.1f} goals, over {line} in {h2h.over_percent.get(line, 0.0):.0f}%")

        if features.home_stats and features.away_stats:
            season_over = poisson_at_least(math.floor(threshold) + 1, expected_goals_per_match(features)) * 100
            w = policy.season_weight
            over = over * (1 - w) + season_over * w

        if features.is_live and features.live is not None:
            over = self._apply_live_over_under(over, threshold, features, params)
            reasoning.append(
                f"LIVE: {features.live.total_goals} goals at min {features.live.minute}'"
            )

        over = max(0.0, min(100.0, over))
        under = 100.0 - over

        options = [(f"Over {line}", over, over_odds, implied_over)]
        if under_odds:
            options.append((f"Under {line}", under, under_odds, 100.0 - implied_over))
        outcome, probability, price, implied_p = self._best_by_ev(options)
        return self._finalize(
            over_under_market(line), outcome, probability, price, implied_p, reasoning, features, params
        )

    def _apply_live_over_under(
        self,
        over: float,
        threshold: float,
        features: MatchFeatures,
        params: ModelParameters,
    ) -> float:
        live = features.live
        if live.total_goals > threshold:
            return SETTLED_PROBABILITY

        needed = math.floor(threshold) + 1 - live.total_goals
        remaining_share = max(0, REGULATION_MINUTES - live.minute) / REGULATION_MINUTES
        lam = expected_goals_per_match(features) * remaining_share
        live_over = poisson_at_least(needed, lam) * 100

        if live.minute < params.minimum_minute_for_prediction:
            # Too early for the scoreline to say much: shrink toward 50
            return 50 + (over - 50) * params.over_under_early_game_caution

        if live.minute >= params.over_under_late_game_threshold:
            weight = 0.5
        else:
            weight = min(1.0, self.policy.live_momentum_weight * params.over_under_mid_game_multiplier)
        return over * (1 - weight) + live_over * weight

    # -----------------------------------------------------------------
    # BTTS
    # -----------------------------------------------------------------

    def _predict_btts(self, features: MatchFeatures, params: ModelParameters) -> Optional[PredictionCandidate]:
        odds = features.odds
        if odds is None or not (odds.btts_yes and odds.btts_no):
            return None

        policy = self.policy
        reasoning: list[str] = []
        implied_yes = self._devig(odds.btts_yes, odds.btts_no)[0] * 100
        yes = implied_yes

        h2h = features.h2h
        if h2h.total_matches >= policy.h2h_min_matches:
            w = policy.h2h_weight
            yes = yes * (1 - w) + h2h.btts_percent * w
            reasoning.append(f"H2H BTTS: {h2h.btts_percent:.0f}%")

        home, away = features.home_stats, features.away_stats
        if home and away and home.matches_played and away.matches_played:
            home_rate = (home.goals_for_per_match + away.goals_against_per_match) / 2
            away_rate = (away.goals_for_per_match + home.goals_against_per_match) / 2
            season_yes = poisson_at_least(1, home_rate) * poisson_at_least(1, away_rate) * 100
            w = policy.season_weight
            yes = yes * (1 - w) + season_yes * w

        live = features.live
        if features.is_live and live is not None:
            if live.home_score > 0 and live.away_score > 0:
                yes = SETTLED_PROBABILITY
            elif live.minute >= params.btts_time_threshold:
                yes = yes / params.btts_confidence_boost
            reasoning.append(f"LIVE: {live.home_score}-{live.away_score} | min {live.minute}'")

        yes = max(0.0, min(100.0, yes))
        outcome, probability, price, implied_p = self._best_by_ev([
            ("Yes", yes, odds.btts_yes, implied_yes),
            ("No", 100.0 - yes, odds.btts_no, 100.0 - implied_yes),
        ])
        return self._finalize(
            MARKET_BTTS, outcome, probability, price, implied_p, reasoning, features, params
        )