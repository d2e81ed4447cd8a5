"""football-data.org v4 provider (live scores only)."""

import logging
from typing import Optional

import httpx

from app.config import get_settings
from app.errors import SourceUnavailable
from app.etl.base import (
    CAP_LIVE_SCORES,
    LIVE,
    HTTPSourceProvider,
    MatchData,
    MatchOdds,
    MatchStatistics,
    parse_int,
    parse_kickoff,
)

logger = logging.getLogger(__name__)

ID_PREFIX = "fd-"
LIVE_STATUSES = {"IN_PLAY", "PAUSED"}


class FootballDataProvider(HTTPSourceProvider):
    """Live matches from football-data.org. No odds, no statistics."""

    name = "football-data"
    capabilities = (CAP_LIVE_SCORES,)
    BASE_URL = "https://api.football-data.org/v4"

    def __init__(self, api_key: str = None, *, client: httpx.AsyncClient = None, timeout: float = None):
        settings = get_settings()
        self.api_key = settings.FOOTBALL_DATA_KEY if api_key is None else api_key
        super().__init__(
            {"X-Auth-Token": self.api_key},
            client=client,
            timeout=timeout or settings.SOURCE_TIMEOUT_SECONDS,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _parse_match(self, match: dict) -> Optional[MatchData]:
        if match.get("status") not in LIVE_STATUSES or match.get("id") is None:
            return None

        competition = match.get("competition") or {}
        full_time = (match.get("score") or {}).get("fullTime") or {}
        return MatchData(
            external_id=f"{ID_PREFIX}{match['id']}",
            home=(match.get("homeTeam") or {}).get("name", ""),
            away=(match.get("awayTeam") or {}).get("name", ""),
            league=competition.get("name", ""),
            country=(competition.get("area") or {}).get("name"),
            status=LIVE,
            source=self.name,
            home_score=full_time.get("home") or 0,
            away_score=full_time.get("away") or 0,
            minute=parse_int(match.get("minute")),
            kickoff=parse_kickoff(match.get("utcDate")),
        )

    async def fetch_matches(self) -> list[MatchData]:
        try:
            data = await self._get_json("matches")
        except SourceUnavailable as e:
            logger.warning(f"[FOOTBALL-DATA] Matches unavailable: {e.reason}")
            return []

        raw = data.get("matches") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            logger.info("[FOOTBALL-DATA] No matches data")
            return []

        matches = [m for m in (self._parse_match(item) for item in raw) if m is not None]
        logger.info(f"[FOOTBALL-DATA] {len(matches)} live matches")
        return matches

    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        return None

    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        return None
