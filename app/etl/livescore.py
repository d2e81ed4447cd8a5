"""livescore-api.com provider (live scores only)."""

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

ID_PREFIX = "ls-"


def parse_score(score: Optional[str]) -> tuple[int, int]:
    """'2 - 1' -> (2, 1); anything unparseable is 0 - 0."""
    if not score or "-" not in score:
        return 0, 0
    home, _, away = score.partition("-")
    return parse_int(home.strip()), parse_int(away.strip())


class LiveScoreProvider(HTTPSourceProvider):
    name = "livescore-api"
    capabilities = (CAP_LIVE_SCORES,)
    BASE_URL = "https://livescore-api.com/api-client"

    def __init__(self, api_key: str = None, api_secret: str = None, *, client: httpx.AsyncClient = None, timeout: float = None):
        settings = get_settings()
        self.api_key = settings.LIVESCORE_API_KEY if api_key is None else api_key
        self.api_secret = settings.LIVESCORE_API_SECRET if api_secret is None else api_secret
        super().__init__(client=client, timeout=timeout or settings.SOURCE_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def _parse_match(self, match: dict) -> Optional[MatchData]:
        # The feed flags in-play fixtures with live == "1"
        if str(match.get("live", "")) != "1" or match.get("id") is None:
            return None

        home_score, away_score = parse_score(match.get("score"))
        return MatchData(
            external_id=f"{ID_PREFIX}{match['id']}",
            home=match.get("home_name", ""),
            away=match.get("away_name", ""),
            league=match.get("league_name", ""),
            country=match.get("country_name"),
            status=LIVE,
            source=self.name,
            home_score=home_score,
            away_score=away_score,
            minute=parse_int(match.get("time")),
            kickoff=parse_kickoff(match.get("added")),
        )

    async def fetch_matches(self) -> list[MatchData]:
        try:
            data = await self._get_json(
                "scores/live.json",
                {"key": self.api_key, "secret": self.api_secret},
            )
        except SourceUnavailable as e:
            logger.warning(f"[LIVESCORE-API] Live scores unavailable: {e.reason}")
            return []

        raw = ((data.get("data") or {}).get("match")) if isinstance(data, dict) else None
        if not isinstance(raw, list):
            logger.info("[LIVESCORE-API] No match data")
            return []

        matches = [m for m in (self._parse_match(item) for item in raw) if m is not None]
        logger.info(f"[LIVESCORE-API] {len(matches)} live matches")
        return matches

    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        return None

    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        return None
