"""
Gap-filling for matches whose source did not supply odds or statistics.

These are estimates, not data: every match touched here is tagged with a
synthetic marker in data_sources (calculated-odds / estimated-stats) so the
quality score and the synthesizer can tell real from inferred inputs.
"""

import random
from typing import Optional

from app.etl.base import MatchOdds, MatchStatistics

REGULATION_MINUTES = 90

# Data quality weights (max 100)
QUALITY_SOURCES = 30
QUALITY_ODDS = 30
QUALITY_STATISTICS = 20
QUALITY_LINEUPS = 20


def compute_data_quality(
    data_sources,
    odds: Optional[MatchOdds],
    statistics: Optional[MatchStatistics],
    lineups: Optional[dict],
) -> int:
    """Data quality is derived from which optional fields are populated, nothing else."""
    score = 0
    if data_sources:
        score += QUALITY_SOURCES
    if odds is not None:
        score += QUALITY_ODDS
    if statistics is not None:
        score += QUALITY_STATISTICS
    if lineups:
        score += QUALITY_LINEUPS
    return score


def calculate_odds_ladder(home_score: int, away_score: int, minute: int) -> MatchOdds:
    """
    Synthetic odds from the current score and time remaining.

    The leader shortens toward 1.01 as time runs out; draw and trailer drift
    out, capped at 15.00 / 20.00. Totals and BTTS settle once the line is hit.
    """
    score_diff = home_score - away_score
    total_goals = home_score + away_score
    time_remaining = max(0, REGULATION_MINUTES - minute)
    remaining_share = time_remaining / REGULATION_MINUTES
    lead = abs(score_diff)

    if score_diff != 0:
        leader = max(1.01, 1.10 + remaining_share * 0.8 - lead * 0.15)
        draw = min(15.00, 5.00 + lead * 1.5)
        trailer = min(20.00, 7.00 + lead * 2.0)
        home, away = (leader, trailer) if score_diff > 0 else (trailer, leader)
    else:
        home = 2.30 - remaining_share * 0.3
        draw = 2.80 + (minute / REGULATION_MINUTES) * 0.5
        away = 3.00 - remaining_share * 0.3

    if total_goals >= 3:
        over25, under25 = 1.01, 15.00
    elif total_goals == 2:
        over25, under25 = 1.65, 2.20
    else:
        over25, under25 = 2.50, 1.50

    both_scored = home_score > 0 and away_score > 0
    if both_scored:
        btts_yes, btts_no = 1.01, 15.00
    elif minute >= 80:
        btts_yes, btts_no = 8.00, 1.12
    else:
        btts_yes, btts_no = 2.20, 1.70

    return MatchOdds(
        home=round(home, 2),
        draw=round(draw, 2),
        away=round(away, 2),
        over25=round(over25, 2),
        under25=round(under25, 2),
        btts_yes=round(btts_yes, 2),
        btts_no=round(btts_no, 2),
    )


def estimate_statistics(
    home_score: int,
    away_score: int,
    minute: int,
    rng: random.Random = None,
) -> MatchStatistics:
    """Rough in-play statistics from score and elapsed time (jittered by rng)."""
    rng = rng or random.Random()

    home_possession = 50 + (home_score - away_score) * 3
    away_possession = 100 - home_possession

    def jitter(scale: float) -> float:
        return rng.random() * scale

    return MatchStatistics(
        possession_home=max(30, min(70, home_possession)),
        possession_away=max(30, min(70, away_possession)),
        shots_home=round(minute * 0.12 + home_score * 2 + jitter(2)),
        shots_away=round(minute * 0.08 + away_score * 2 + jitter(2)),
        shots_on_target_home=home_score + round(minute * 0.04 + jitter(1)),
        shots_on_target_away=away_score + round(minute * 0.03 + jitter(1)),
        corners_home=round(minute * 0.07 + jitter(2)),
        corners_away=round(minute * 0.05 + jitter(2)),
        cards_home=round(minute * 0.02 + jitter(1)),
        cards_away=round(minute * 0.02 + jitter(1)),
        fouls_home=round(minute * 0.1 + jitter(3)),
        fouls_away=round(minute * 0.1 + jitter(3)),
    )
