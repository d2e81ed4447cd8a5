"""
Finished-match archive: the history behind H2H, form and season features.

Reads degrade to empty results on database errors; the synthesizer treats
missing history as neutral.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.etl.base import EnrichedMatch
from app.ml.features import SeasonStats
from app.models import ArchivedMatch

logger = logging.getLogger(__name__)


def final_result(home_goals: int, away_goals: int) -> str:
    if home_goals > away_goals:
        return "1"
    if home_goals < away_goals:
        return "2"
    return "X"


def result_for(team: str, row: ArchivedMatch) -> str:
    """'W', 'D' or 'L' from team's point of view."""
    if row.final_result == "X":
        return "D"
    won_at_home = row.final_result == "1"
    return "W" if (row.home_team == team) == won_at_home else "L"


class MatchArchive:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def archive_match(self, match: EnrichedMatch, home_goals: int, away_goals: int) -> bool:
        """Store a finished match once; re-archiving the same id is a no-op."""
        try:
            async with self._session_factory() as session:
                existing = await session.execute(
                    select(ArchivedMatch.id).where(ArchivedMatch.match_id == match.id)
                )
                if existing.first() is not None:
                    return False

                odds = match.odds
                session.add(ArchivedMatch(
                    match_id=match.id,
                    home_team=match.home,
                    away_team=match.away,
                    league=match.league,
                    country=match.country,
                    match_date=match.kickoff or datetime.utcnow(),
                    home_goals=home_goals,
                    away_goals=away_goals,
                    final_result=final_result(home_goals, away_goals),
                    total_goals=home_goals + away_goals,
                    btts=home_goals > 0 and away_goals > 0,
                    odds_home=odds.home if odds else None,
                    odds_draw=odds.draw if odds else None,
                    odds_away=odds.away if odds else None,
                    data_sources=list(match.data_sources),
                    data_quality=match.data_quality,
                ))
                await session.commit()
            logger.info(f"[ARCHIVE] Archived {match.home} {home_goals}-{away_goals} {match.away}")
            return True
        except SQLAlchemyError as e:
            logger.warning(f"[ARCHIVE] Failed to archive {match.id}: {e}")
            return False

    async def get_h2h(self, home: str, away: str, limit: int = 10) -> list[ArchivedMatch]:
        """Meetings at either venue, newest first."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ArchivedMatch)
                    .where(or_(
                        and_(ArchivedMatch.home_team == home, ArchivedMatch.away_team == away),
                        and_(ArchivedMatch.home_team == away, ArchivedMatch.away_team == home),
                    ))
                    .order_by(ArchivedMatch.match_date.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning(f"[ARCHIVE] H2H query failed for {home} vs {away}: {e}")
            return []

    async def _team_matches(self, team: str, league: Optional[str] = None, limit: Optional[int] = None) -> list[ArchivedMatch]:
        query = (
            select(ArchivedMatch)
            .where(or_(ArchivedMatch.home_team == team, ArchivedMatch.away_team == team))
            .order_by(ArchivedMatch.match_date.desc())
        )
        if league:
            query = query.where(ArchivedMatch.league == league)
        if limit:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_team_form(self, team: str, last_n: int = 5) -> list[str]:
        """Most-recent-first 'W'/'D'/'L' list."""
        try:
            rows = await self._team_matches(team, limit=last_n)
        except SQLAlchemyError as e:
            logger.warning(f"[ARCHIVE] Form query failed for {team}: {e}")
            return []
        return [result_for(team, row) for row in rows]

    async def get_team_stats(self, team: str, league: str) -> Optional[SeasonStats]:
        """Aggregates over every archived match of team in league; None without history."""
        try:
            rows = await self._team_matches(team, league=league)
        except SQLAlchemyError as e:
            logger.warning(f"[ARCHIVE] Stats query failed for {team}: {e}")
            return None
        if not rows:
            return None

        wins = draws = losses = goals_for = goals_against = 0
        for row in rows:
            at_home = row.home_team == team
            scored = row.home_goals if at_home else row.away_goals
            conceded = row.away_goals if at_home else row.home_goals
            goals_for += scored
            goals_against += conceded
            outcome = result_for(team, row)
            if outcome == "W":
                wins += 1
            elif outcome == "D":
                draws += 1
            else:
                losses += 1

        return SeasonStats(
            matches_played=len(rows),
            wins=wins,
            draws=draws,
            losses=losses,
            goals_for=goals_for,
            goals_against=goals_against,
        )
