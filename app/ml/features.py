"""
Typed feature records consumed by the synthesizer and estimators.

extract_features() turns archive rows (H2H meetings, recent form, season
aggregates) plus one EnrichedMatch into a MatchFeatures record. Every field
has a neutral default so a match with no history still produces features.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from app.etl.base import EnrichedMatch, MatchOdds
from app.etl.name_normalization import normalize_team_name

OVER_UNDER_LINES = ("1.5", "2.5", "3.5")

NEUTRAL_FORM = 50.0
MOMENTUM_CAP = 30.0


@dataclass(frozen=True)
class H2HFeatures:
    """Head-to-head record from the home side's point of view."""

    total_matches: int = 0
    home_wins: int = 0
    draws: int = 0
    away_wins: int = 0
    avg_goals: float = 0.0
    btts_percent: float = 0.0
    over_percent: dict = field(default_factory=dict)  # line -> percent

    def rate(self, count: int) -> float:
        return count / self.total_matches * 100 if self.total_matches else 0.0


@dataclass(frozen=True)
class FormFeatures:
    home: float = NEUTRAL_FORM
    away: float = NEUTRAL_FORM

    @property
    def diff(self) -> float:
        return self.home - self.away


@dataclass(frozen=True)
class SeasonStats:
    matches_played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.matches_played * 100 if self.matches_played else 0.0

    @property
    def goals_for_per_match(self) -> float:
        return self.goals_for / self.matches_played if self.matches_played else 0.0

    @property
    def goals_against_per_match(self) -> float:
        return self.goals_against / self.matches_played if self.matches_played else 0.0


@dataclass(frozen=True)
class LiveFeatures:
    home_score: int = 0
    away_score: int = 0
    minute: int = 0
    possession_home: Optional[float] = None
    shots_home: Optional[int] = None
    shots_away: Optional[int] = None
    corners_home: Optional[int] = None
    corners_away: Optional[int] = None

    @property
    def goal_diff(self) -> int:
        return self.home_score - self.away_score

    @property
    def total_goals(self) -> int:
        return self.home_score + self.away_score

    @property
    def momentum_adjustment(self) -> float:
        """Home-positive pressure score from possession, shots and corners, clamped to +/-30."""
        adjustment = 0.0
        if self.possession_home is not None:
            adjustment += (self.possession_home - 50) * 0.5
        if self.shots_home is not None or self.shots_away is not None:
            adjustment += ((self.shots_home or 0) - (self.shots_away or 0)) * 2
        if self.corners_home is not None or self.corners_away is not None:
            adjustment += ((self.corners_home or 0) - (self.corners_away or 0)) * 3
        return max(-MOMENTUM_CAP, min(MOMENTUM_CAP, adjustment))


@dataclass(frozen=True)
class MatchFeatures:
    h2h: H2HFeatures = field(default_factory=H2HFeatures)
    form: FormFeatures = field(default_factory=FormFeatures)
    home_stats: Optional[SeasonStats] = None
    away_stats: Optional[SeasonStats] = None
    odds: Optional[MatchOdds] = None
    live: Optional[LiveFeatures] = None
    is_live: bool = False
    odds_synthetic: bool = False
    league: str = ""
    home_form: tuple = ()
    away_form: tuple = ()


def form_score(form: Sequence[str]) -> float:
    """
    Recency-weighted form, 0-100.

    form is most-recent-first ('W', 'D', 'L'). The newest result weighs
    len(form), the oldest 1; a win is worth 3 and a draw 1. Unknown form is 50.
    """
    if not form:
        return NEUTRAL_FORM

    n = len(form)
    score = 0
    max_score = 0
    for index, result in enumerate(form):
        weight = n - index
        max_score += 3 * weight
        if result == "W":
            score += 3 * weight
        elif result == "D":
            score += weight
    return score / max_score * 100


def _row(row, name: str):
    return row.get(name) if isinstance(row, dict) else getattr(row, name, None)


def build_h2h(home: str, away: str, meetings: Iterable) -> H2HFeatures:
    """
    H2H record from archived meetings (either venue), home side's perspective.

    Rows are ArchivedMatch objects or dicts with home_team, away_team,
    final_result ('1'/'X'/'2'), total_goals and btts.
    """
    meetings = list(meetings)
    if not meetings:
        return H2HFeatures(over_percent={line: 0.0 for line in OVER_UNDER_LINES})

    home_key = normalize_team_name(home)
    home_wins = draws = away_wins = 0
    goals = []
    btts = 0
    for row in meetings:
        result = _row(row, "final_result")
        home_was_host = normalize_team_name(_row(row, "home_team") or "") == home_key
        if result == "X":
            draws += 1
        elif result in ("1", "2"):
            if (result == "1") == home_was_host:
                home_wins += 1
            else:
                away_wins += 1
        goals.append(_row(row, "total_goals") or 0)
        if _row(row, "btts"):
            btts += 1

    n = len(meetings)
    return H2HFeatures(
        total_matches=n,
        home_wins=home_wins,
        draws=draws,
        away_wins=away_wins,
        avg_goals=sum(goals) / n,
        btts_percent=btts / n * 100,
        over_percent={
            line: sum(1 for g in goals if g > float(line)) / n * 100
            for line in OVER_UNDER_LINES
        },
    )


def build_live(match: EnrichedMatch) -> LiveFeatures:
    stats = match.statistics
    return LiveFeatures(
        home_score=match.home_score,
        away_score=match.away_score,
        minute=match.minute,
        possession_home=stats.possession_home if stats else None,
        shots_home=stats.shots_home if stats else None,
        shots_away=stats.shots_away if stats else None,
        corners_home=stats.corners_home if stats else None,
        corners_away=stats.corners_away if stats else None,
    )


def extract_features(
    match: EnrichedMatch,
    *,
    h2h_rows: Iterable = (),
    home_form: Sequence[str] = (),
    away_form: Sequence[str] = (),
    home_stats: Optional[SeasonStats] = None,
    away_stats: Optional[SeasonStats] = None,
) -> MatchFeatures:
    return MatchFeatures(
        h2h=build_h2h(match.home, match.away, h2h_rows),
        form=FormFeatures(home=form_score(home_form), away=form_score(away_form)),
        home_stats=home_stats,
        away_stats=away_stats,
        odds=match.odds,
        live=build_live(match) if match.is_live else None,
        is_live=match.is_live,
        odds_synthetic=match.odds is not None and not match.has_real_odds,
        league=match.league,
        home_form=tuple(home_form),
        away_form=tuple(away_form),
    )
