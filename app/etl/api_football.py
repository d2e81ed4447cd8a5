"""API-Football data provider implementation."""

import logging
from typing import Optional

import httpx

from app.config import get_settings
from app.errors import SourceUnavailable
from app.etl.base import (
    CAP_LIVE_SCORES,
    CAP_ODDS,
    CAP_STATISTICS,
    FINISHED,
    LIVE,
    SCHEDULED,
    HTTPSourceProvider,
    MatchData,
    MatchOdds,
    MatchStatistics,
    SourceFailure,
    parse_int,
    parse_kickoff,
)

logger = logging.getLogger(__name__)

ID_PREFIX = "af-"

LIVE_STATUSES = {"1H", "2H", "HT", "ET", "P", "LIVE", "BT", "INT"}
FINISHED_STATUSES = {"FT", "AET", "PEN"}


def map_status(short: str) -> str:
    if short in LIVE_STATUSES:
        return LIVE
    if short in FINISHED_STATUSES:
        return FINISHED
    return SCHEDULED


class APIFootballProvider(HTTPSourceProvider):
    """API-Football (api-sports.io or RapidAPI) live fixtures, odds and statistics."""

    name = "api-football"
    capabilities = (CAP_LIVE_SCORES, CAP_ODDS, CAP_STATISTICS)

    def __init__(self, api_key: str = None, host: str = None, *, client: httpx.AsyncClient = None, timeout: float = None):
        settings = get_settings()
        self.api_key = settings.API_FOOTBALL_KEY if api_key is None else api_key
        host = host or settings.API_FOOTBALL_HOST

        # Direct API-Sports vs RapidAPI
        if "api-sports.io" in host:
            self.BASE_URL = f"https://{host}"
            headers = {"x-apisports-key": self.api_key}
        else:
            self.BASE_URL = f"https://{host}/v3"
            headers = {
                "X-RapidAPI-Key": self.api_key,
                "X-RapidAPI-Host": host,
            }
        super().__init__(headers, client=client, timeout=timeout or settings.SOURCE_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _request(self, endpoint: str, params: dict = None) -> list:
        data = await self._get_json(endpoint, params)
        if not isinstance(data, dict):
            raise SourceUnavailable(self.name, "unexpected_payload")
        if data.get("errors"):
            logger.error(f"[API-FOOTBALL] API error: {data['errors']}")
            raise SourceUnavailable(self.name, "api_error_response")
        response = data.get("response")
        return response if isinstance(response, list) else []

    def _parse_fixture(self, item: dict) -> Optional[MatchData]:
        """Parse API fixture response into MatchData (live fixtures only)."""
        fixture = item.get("fixture") or {}
        teams = item.get("teams") or {}
        goals = item.get("goals") or {}
        league = item.get("league") or {}
        status_info = fixture.get("status") or {}

        status = map_status(status_info.get("short", "NS"))
        if status != LIVE or fixture.get("id") is None:
            return None

        return MatchData(
            external_id=f"{ID_PREFIX}{fixture['id']}",
            home=(teams.get("home") or {}).get("name", ""),
            away=(teams.get("away") or {}).get("name", ""),
            league=league.get("name", ""),
            country=league.get("country"),
            status=status,
            source=self.name,
            home_score=goals.get("home") or 0,
            away_score=goals.get("away") or 0,
            minute=status_info.get("elapsed") or 0,
            kickoff=parse_kickoff(fixture.get("date")),
        )

    @staticmethod
    def _parse_odds(odds_data: list) -> Optional[MatchOdds]:
        """Odds from the first bookmaker listed for the fixture."""
        if not odds_data:
            return None
        bookmakers = odds_data[0].get("bookmakers") or []
        if not bookmakers:
            return None

        values: dict = {}
        for bet in bookmakers[0].get("bets", []):
            by_value = {v.get("value"): v.get("odd") for v in bet.get("values", [])}
            name = bet.get("name")
            if name == "Match Winner":
                values["home"] = by_value.get("Home")
                values["draw"] = by_value.get("Draw")
                values["away"] = by_value.get("Away")
            elif name == "Goals Over/Under":
                for line in ("1.5", "2.5", "3.5"):
                    suffix = line.replace(".", "")
                    values[f"over{suffix}"] = by_value.get(f"Over {line}")
                    values[f"under{suffix}"] = by_value.get(f"Under {line}")
            elif name == "Both Teams Score":
                values["btts_yes"] = by_value.get("Yes")
                values["btts_no"] = by_value.get("No")

        parsed = {}
        for key, odd in values.items():
            try:
                price = float(odd) if odd is not None else None
            except (TypeError, ValueError):
                price = None
            if price and price > 1.0:
                parsed[key] = price

        return MatchOdds(**parsed) if parsed else None

    @staticmethod
    def _parse_stats(statistics: list) -> Optional[MatchStatistics]:
        """Parse match statistics from API response.

        API returns stats in order: [home_team, away_team]
        Each item has team info and statistics array.
        """
        if not statistics or len(statistics) != 2:
            return None

        def team_values(team_stats: dict) -> dict:
            return {s.get("type"): s.get("value") for s in team_stats.get("statistics", [])}

        home, away = team_values(statistics[0]), team_values(statistics[1])

        def cards(side: dict) -> int:
            return parse_int(side.get("Yellow Cards")) + parse_int(side.get("Red Cards")) * 2

        return MatchStatistics(
            possession_home=parse_int(home.get("Ball Possession")),
            possession_away=parse_int(away.get("Ball Possession")),
            shots_home=parse_int(home.get("Total Shots")),
            shots_away=parse_int(away.get("Total Shots")),
            shots_on_target_home=parse_int(home.get("Shots on Goal")),
            shots_on_target_away=parse_int(away.get("Shots on Goal")),
            corners_home=parse_int(home.get("Corner Kicks")),
            corners_away=parse_int(away.get("Corner Kicks")),
            cards_home=cards(home),
            cards_away=cards(away),
            fouls_home=parse_int(home.get("Fouls")),
            fouls_away=parse_int(away.get("Fouls")),
        )

    @staticmethod
    def _fixture_id(match_id: str) -> Optional[str]:
        if not match_id or not match_id.startswith(ID_PREFIX):
            return None
        return match_id[len(ID_PREFIX):]

    async def fetch_matches(self) -> list[MatchData]:
        try:
            response = await self._request("fixtures", {"live": "all"})
        except SourceUnavailable as e:
            logger.warning(f"[API-FOOTBALL] Live fixtures unavailable: {e.reason}")
            return []

        matches = [m for m in (self._parse_fixture(item) for item in response) if m is not None]
        logger.info(f"[API-FOOTBALL] {len(matches)} live fixtures")
        return matches

    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        fixture_id = self._fixture_id(match_id)
        if fixture_id is None:
            return None
        try:
            return self._parse_odds(await self._request("odds", {"fixture": fixture_id}))
        except SourceUnavailable as e:
            logger.warning(f"[API-FOOTBALL] Odds unavailable for {match_id}: {e.reason}")
            return SourceFailure(self.name, e.reason)

    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        fixture_id = self._fixture_id(match_id)
        if fixture_id is None:
            return None
        try:
            return self._parse_stats(await self._request("fixtures/statistics", {"fixture": fixture_id}))
        except SourceUnavailable as e:
            logger.warning(f"[API-FOOTBALL] Statistics unavailable for {match_id}: {e.reason}")
            return SourceFailure(self.name, e.reason)
