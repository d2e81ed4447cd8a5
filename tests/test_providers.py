"""Tests for the provider adapters against canned HTTP payloads."""

from datetime import datetime

import httpx
import pytest

from app.etl.api_football import APIFootballProvider, map_status
from app.etl.base import FINISHED, LIVE, SCHEDULED, SourceFailure
from app.etl.football_data import FootballDataProvider
from app.etl.livescore import LiveScoreProvider, parse_score
from app.etl.name_normalization import match_identity_key
from app.etl.odds_api import OddsAPIProvider


def mock_client(routes: dict, calls: list = None, status_code: int = 200) -> httpx.AsyncClient:
    """AsyncClient whose responses come from a path -> JSON mapping."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if status_code != 200:
            return httpx.Response(status_code, json={"message": "boom"})
        for suffix, payload in routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(200, json=payload)
        return httpx.Response(404, json={})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


AF_FIXTURES = {
    "errors": [],
    "response": [
        {
            "fixture": {"id": 101, "date": "2026-03-14T15:00:00+00:00", "status": {"short": "2H", "elapsed": 67}},
            "league": {"name": "Premier League", "country": "England"},
            "teams": {"home": {"name": "Arsenal"}, "away": {"name": "Chelsea"}},
            "goals": {"home": 2, "away": 1},
        },
        {
            "fixture": {"id": 102, "date": "2026-03-14T17:30:00+00:00", "status": {"short": "NS", "elapsed": None}},
            "league": {"name": "Premier League", "country": "England"},
            "teams": {"home": {"name": "Spurs"}, "away": {"name": "Everton"}},
            "goals": {"home": None, "away": None},
        },
    ],
}

AF_ODDS = {
    "errors": [],
    "response": [{
        "bookmakers": [{
            "bets": [
                {"name": "Match Winner", "values": [
                    {"value": "Home", "odd": "1.90"},
                    {"value": "Draw", "odd": "3.50"},
                    {"value": "Away", "odd": "4.20"},
                ]},
                {"name": "Goals Over/Under", "values": [
                    {"value": "Over 2.5", "odd": "1.85"},
                    {"value": "Under 2.5", "odd": "1.95"},
                ]},
                {"name": "Both Teams Score", "values": [
                    {"value": "Yes", "odd": "1.70"},
                    {"value": "No", "odd": "bad"},
                ]},
            ],
        }],
    }],
}

AF_STATS = {
    "errors": [],
    "response": [
        {"team": {"name": "Arsenal"}, "statistics": [
            {"type": "Ball Possession", "value": "58%"},
            {"type": "Total Shots", "value": 11},
            {"type": "Shots on Goal", "value": 5},
            {"type": "Corner Kicks", "value": 6},
            {"type": "Yellow Cards", "value": 2},
            {"type": "Red Cards", "value": 1},
            {"type": "Fouls", "value": None},
        ]},
        {"team": {"name": "Chelsea"}, "statistics": [
            {"type": "Ball Possession", "value": "42%"},
            {"type": "Total Shots", "value": 4},
            {"type": "Shots on Goal", "value": 1},
            {"type": "Corner Kicks", "value": 2},
            {"type": "Yellow Cards", "value": None},
            {"type": "Red Cards", "value": None},
            {"type": "Fouls", "value": 9},
        ]},
    ],
}


class TestAPIFootball:

    def test_status_mapping(self):
        assert map_status("HT") == LIVE
        assert map_status("AET") == FINISHED
        assert map_status("NS") == SCHEDULED

    def test_disabled_without_key(self):
        assert not APIFootballProvider(api_key="", client=mock_client({})).enabled

    @pytest.mark.asyncio
    async def test_live_fixtures_only(self):
        calls = []
        provider = APIFootballProvider(api_key="k", client=mock_client({"/fixtures": AF_FIXTURES}, calls))

        matches = await provider.fetch_matches()

        assert provider.enabled
        assert [m.external_id for m in matches] == ["af-101"]
        match = matches[0]
        assert (match.home, match.away, match.league, match.country) == ("Arsenal", "Chelsea", "Premier League", "England")
        assert (match.home_score, match.away_score, match.minute) == (2, 1, 67)
        assert match.kickoff == datetime(2026, 3, 14, 15, 0)
        assert match.source == "api-football"
        assert calls[0].url.params["live"] == "all"
        assert calls[0].headers["x-apisports-key"] == "k"

    @pytest.mark.asyncio
    async def test_rapidapi_host(self):
        calls = []
        provider = APIFootballProvider(
            api_key="k", host="api-football-v1.p.rapidapi.com",
            client=mock_client({"/fixtures": AF_FIXTURES}, calls),
        )
        await provider.fetch_matches()
        assert calls[0].url.path == "/v3/fixtures"
        assert calls[0].headers["X-RapidAPI-Host"] == "api-football-v1.p.rapidapi.com"

    @pytest.mark.asyncio
    async def test_error_payload_is_empty(self):
        payload = {"errors": {"token": "Invalid key"}, "response": []}
        provider = APIFootballProvider(api_key="k", client=mock_client({"/fixtures": payload}))
        assert await provider.fetch_matches() == []

    @pytest.mark.asyncio
    async def test_http_failure_is_reported(self):
        provider = APIFootballProvider(api_key="k", client=mock_client({}, status_code=500))
        assert await provider.fetch_matches() == []

        odds = await provider.fetch_odds("af-101")
        stats = await provider.fetch_statistics("af-101")

        assert isinstance(odds, SourceFailure) and not odds
        assert isinstance(stats, SourceFailure)
        assert stats.reason == "http_500"

    @pytest.mark.asyncio
    async def test_odds(self):
        calls = []
        provider = APIFootballProvider(api_key="k", client=mock_client({"/odds": AF_ODDS}, calls))

        odds = await provider.fetch_odds("af-101")

        assert (odds.home, odds.draw, odds.away) == (1.9, 3.5, 4.2)
        assert odds.over_under("2.5") == (1.85, 1.95)
        assert odds.btts_yes == 1.7
        assert odds.btts_no is None
        assert calls[0].url.params["fixture"] == "101"

    @pytest.mark.asyncio
    async def test_foreign_ids_skip_the_request(self):
        calls = []
        provider = APIFootballProvider(api_key="k", client=mock_client({"/odds": AF_ODDS}, calls))
        assert await provider.fetch_odds("fd-101") is None
        assert calls == []

    @pytest.mark.asyncio
    async def test_statistics(self):
        provider = APIFootballProvider(api_key="k", client=mock_client({"/fixtures/statistics": AF_STATS}))

        stats = await provider.fetch_statistics("af-101")

        assert (stats.possession_home, stats.possession_away) == (58, 42)
        assert (stats.shots_home, stats.shots_away) == (11, 4)
        assert stats.shots_on_target_home == 5
        assert stats.cards_home == 4
        assert stats.cards_away == 0
        assert (stats.fouls_home, stats.fouls_away) == (0, 9)


class TestFootballData:

    @pytest.mark.asyncio
    async def test_in_play_and_paused_only(self):
        payload = {"matches": [
            {
                "id": 9, "status": "IN_PLAY", "minute": "55", "utcDate": "2026-03-14T15:00:00Z",
                "competition": {"name": "Primera Division", "area": {"name": "Spain"}},
                "homeTeam": {"name": "Real Madrid CF"}, "awayTeam": {"name": "Sevilla FC"},
                "score": {"fullTime": {"home": 1, "away": 0}},
            },
            {
                "id": 10, "status": "PAUSED",
                "competition": {"name": "Serie A"},
                "homeTeam": {"name": "Inter"}, "awayTeam": {"name": "Milan"},
                "score": {"fullTime": {"home": None, "away": None}},
            },
            {"id": 11, "status": "FINISHED", "homeTeam": {"name": "A"}, "awayTeam": {"name": "B"}},
            {"id": 12, "status": "TIMED", "homeTeam": {"name": "C"}, "awayTeam": {"name": "D"}},
        ]}
        calls = []
        provider = FootballDataProvider(api_key="token", client=mock_client({"/matches": payload}, calls))

        matches = await provider.fetch_matches()

        assert [m.external_id for m in matches] == ["fd-9", "fd-10"]
        assert matches[0].minute == 55
        assert matches[0].country == "Spain"
        assert matches[0].home_score == 1
        assert matches[1].home_score == 0
        assert matches[1].kickoff is None
        assert calls[0].headers["X-Auth-Token"] == "token"

    @pytest.mark.asyncio
    async def test_no_odds_or_statistics(self):
        provider = FootballDataProvider(api_key="token", client=mock_client({}))
        assert await provider.fetch_odds("fd-9") is None
        assert await provider.fetch_statistics("fd-9") is None

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        provider = FootballDataProvider(api_key="token", client=mock_client({"/matches": {"matches": None}}))
        assert await provider.fetch_matches() == []


class TestLiveScore:

    def test_parse_score(self):
        assert parse_score("2 - 1") == (2, 1)
        assert parse_score("0-3") == (0, 3)
        assert parse_score("?") == (0, 0)
        assert parse_score(None) == (0, 0)

    def test_needs_key_and_secret(self):
        assert not LiveScoreProvider(api_key="k", api_secret="", client=mock_client({})).enabled
        assert LiveScoreProvider(api_key="k", api_secret="s", client=mock_client({})).enabled

    @pytest.mark.asyncio
    async def test_live_flag_filters(self):
        payload = {"data": {"match": [
            {"id": 5, "live": "1", "score": "1 - 1", "time": "73", "home_name": "Ajax",
             "away_name": "PSV", "league_name": "Eredivisie", "country_name": "Netherlands"},
            {"id": 6, "live": "0", "score": "0 - 0", "time": "FT", "home_name": "AZ", "away_name": "Twente"},
        ]}}
        calls = []
        provider = LiveScoreProvider(api_key="k", api_secret="s", client=mock_client({"/scores/live.json": payload}, calls))

        matches = await provider.fetch_matches()

        assert [m.external_id for m in matches] == ["ls-5"]
        assert (matches[0].home_score, matches[0].away_score, matches[0].minute) == (1, 1, 73)
        assert calls[0].url.params["secret"] == "s"

    @pytest.mark.asyncio
    async def test_http_failure_is_empty(self):
        provider = LiveScoreProvider(api_key="k", api_secret="s", client=mock_client({}, status_code=503))
        assert await provider.fetch_matches() == []


ODDS_EVENTS = [
    {
        "id": "e1",
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "commence_time": "2026-03-14T15:00:00Z",
        "bookmakers": [{"markets": [
            {"key": "h2h", "outcomes": [
                {"name": "Arsenal", "price": 2.05},
                {"name": "Draw", "price": 3.4},
                {"name": "Chelsea", "price": 3.7},
            ]},
            {"key": "totals", "outcomes": [
                {"name": "Over", "point": 2.5, "price": 1.9},
                {"name": "Under", "point": 2.5, "price": 1.9},
                {"name": "Over", "point": 3.5, "price": 3.1},
            ]},
        ]}],
    },
    {
        "id": "e2",
        "home_team": "Spurs",
        "away_team": "Everton",
        "commence_time": "2026-03-15T14:00:00Z",
        "bookmakers": [],
    },
]


class TestOddsAPI:

    @pytest.mark.asyncio
    async def test_resolves_by_identity_key(self):
        calls = []
        provider = OddsAPIProvider(api_key="k", client=mock_client({"/odds": ODDS_EVENTS}, calls))
        key = match_identity_key("Arsenal", "Chelsea", datetime(2026, 3, 14, 17, 30))

        odds = await provider.fetch_odds(key)

        assert (odds.home, odds.draw, odds.away) == (2.05, 3.4, 3.7)
        assert odds.over_under("2.5") == (1.9, 1.9)
        assert odds.over_under("3.5") == (3.1, None)
        assert calls[0].url.path == "/v4/sports/soccer_epl/odds"
        assert calls[0].url.params["apiKey"] == "k"

    @pytest.mark.asyncio
    async def test_undated_key_matches_on_names(self):
        provider = OddsAPIProvider(api_key="k", client=mock_client({"/odds": ODDS_EVENTS}))
        odds = await provider.fetch_odds(match_identity_key("Arsenal", "Chelsea", None))
        assert odds.home == 2.05

    @pytest.mark.asyncio
    async def test_event_list_cached_across_lookups(self):
        calls = []
        provider = OddsAPIProvider(api_key="k", client=mock_client({"/odds": ODDS_EVENTS}, calls))

        await provider.fetch_odds(match_identity_key("Arsenal", "Chelsea", datetime(2026, 3, 14)))
        missing = await provider.fetch_odds(match_identity_key("Spurs", "Everton", datetime(2026, 3, 15)))
        unknown = await provider.fetch_odds(match_identity_key("Ajax", "PSV", datetime(2026, 3, 15)))

        assert missing is None
        assert unknown is None
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_not_a_live_feed(self):
        provider = OddsAPIProvider(api_key="k", client=mock_client({"/odds": ODDS_EVENTS}))
        assert await provider.fetch_matches() == []
        assert await provider.fetch_statistics("anything") is None

    @pytest.mark.asyncio
    async def test_failure_is_reported(self):
        provider = OddsAPIProvider(api_key="k", client=mock_client({}, status_code=429))
        key = match_identity_key("Arsenal", "Chelsea", datetime(2026, 3, 14))

        failure = await provider.fetch_odds(key)

        assert isinstance(failure, SourceFailure)
        assert failure.reason == "http_429"
        assert isinstance(await provider.fetch_odds_batch([key]), SourceFailure)

    @pytest.mark.asyncio
    async def test_batch_lookup_is_one_request(self):
        calls = []
        provider = OddsAPIProvider(api_key="k", client=mock_client({"/odds": ODDS_EVENTS}, calls))
        arsenal = match_identity_key("Arsenal", "Chelsea", datetime(2026, 3, 14))
        spurs = match_identity_key("Spurs", "Everton", datetime(2026, 3, 15))
        ajax = match_identity_key("Ajax", "PSV", datetime(2026, 3, 15))

        found = await provider.fetch_odds_batch([arsenal, spurs, ajax])

        assert list(found) == [arsenal]
        assert found[arsenal].home == 2.05
        assert len(calls) == 1
