"""
The Odds API provider (odds only).

The feed has its own event ids, so fetch_odds() takes a match identity key
(normalized home|away|date) and resolves it against the sport's event list.
The whole event list comes back in one response, so the aggregator asks for
every match of a cycle through fetch_odds_batch() and is charged one request.
The list is also cached briefly for repeated single lookups.
"""

import asyncio
import logging
from typing import Optional, Union

import httpx

from app.config import get_settings
from app.errors import SourceUnavailable
from app.etl.base import (
    CAP_ODDS,
    HTTPSourceProvider,
    MatchData,
    MatchOdds,
    MatchStatistics,
    SourceFailure,
    parse_kickoff,
)
from app.etl.name_normalization import match_identity_key, normalize_team_name
from app.utils.cache import TTLCache

logger = logging.getLogger(__name__)

EVENTS_CACHE_TTL = 120  # seconds
TOTALS_LINES = (1.5, 2.5, 3.5)


def _price(outcomes: list, name: str, point: float = None) -> Optional[float]:
    for outcome in outcomes:
        if outcome.get("name") != name:
            continue
        if point is not None and outcome.get("point") != point:
            continue
        price = outcome.get("price")
        return float(price) if price else None
    return None


def parse_event_odds(event: dict) -> Optional[MatchOdds]:
    """h2h, totals and btts markets from the event's first bookmaker."""
    bookmakers = event.get("bookmakers") or []
    if not bookmakers:
        return None

    home_team, away_team = event.get("home_team"), event.get("away_team")
    values: dict = {}
    for market in bookmakers[0].get("markets", []):
        outcomes = market.get("outcomes") or []
        key = market.get("key")
        if key == "h2h":
            values["home"] = _price(outcomes, home_team)
            values["draw"] = _price(outcomes, "Draw")
            values["away"] = _price(outcomes, away_team)
        elif key == "totals":
            for line in TOTALS_LINES:
                suffix = str(line).replace(".", "")
                values[f"over{suffix}"] = _price(outcomes, "Over", line)
                values[f"under{suffix}"] = _price(outcomes, "Under", line)
        elif key == "btts":
            values["btts_yes"] = _price(outcomes, "Yes")
            values["btts_no"] = _price(outcomes, "No")

    parsed = {k: v for k, v in values.items() if v and v > 1.0}
    return MatchOdds(**parsed) if parsed else None


class OddsAPIProvider(HTTPSourceProvider):
    name = "odds-api"
    capabilities = (CAP_ODDS,)
    batch_odds = True
    BASE_URL = "https://api.the-odds-api.com/v4"

    def __init__(self, api_key: str = None, sport: str = None, *, client: httpx.AsyncClient = None, timeout: float = None):
        settings = get_settings()
        self.api_key = settings.ODDS_API_KEY if api_key is None else api_key
        self.sport = sport or settings.ODDS_API_SPORT
        self._events_cache = TTLCache(ttl=EVENTS_CACHE_TTL)
        self._events_lock = asyncio.Lock()
        super().__init__(client=client, timeout=timeout or settings.SOURCE_TIMEOUT_SECONDS)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch_matches(self) -> list[MatchData]:
        # Odds feed, not a live-score feed
        return []

    async def _events(self) -> list:
        async with self._events_lock:
            return await self._load_events()

    async def _load_events(self) -> list:
        hit, events = self._events_cache.get(self.sport)
        if hit:
            return events

        events = await self._get_json(
            f"sports/{self.sport}/odds",
            {
                "apiKey": self.api_key,
                "regions": "eu",
                "markets": "h2h,totals,btts",
                "oddsFormat": "decimal",
            },
        )
        if not isinstance(events, list):
            raise SourceUnavailable(self.name, "unexpected_payload")
        self._events_cache.set(self.sport, events)
        return events

    @staticmethod
    def _event_matches(event: dict, identity_key: str) -> bool:
        home, away = event.get("home_team", ""), event.get("away_team", "")
        key = match_identity_key(home, away, parse_kickoff(event.get("commence_time")))
        if key == identity_key:
            return True
        # Undated keys match on team names alone
        team_part = f"{normalize_team_name(home)}|{normalize_team_name(away)}|"
        return identity_key == f"{team_part}undated"

    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        """match_id is a match identity key, see match_identity_key()."""
        found = await self.fetch_odds_batch([match_id])
        if isinstance(found, SourceFailure):
            return found
        return found.get(match_id)

    async def fetch_odds_batch(self, match_ids: list[str]) -> Union[dict, SourceFailure]:
        """Identity key -> MatchOdds for every key found in the event list."""
        try:
            events = await self._events()
        except SourceUnavailable as e:
            logger.warning(f"[ODDS-API] Events unavailable: {e.reason}")
            return SourceFailure(self.name, e.reason)

        found = {}
        for match_id in match_ids:
            for event in events:
                if self._event_matches(event, match_id):
                    odds = parse_event_odds(event)
                    if odds is not None:
                        found[match_id] = odds
                    break
        return found

    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        return None
