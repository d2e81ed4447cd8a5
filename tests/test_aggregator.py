"""Tests for priority fallback, de-duplication and concurrent enrichment."""

import asyncio
import random
from datetime import datetime
from typing import Optional

import httpx
import pytest

from app.etl.aggregator import MultiSourceAggregator
from app.etl.api_football import APIFootballProvider
from app.etl.base import (
    CALCULATED_ODDS,
    CAP_LIVE_SCORES,
    CAP_ODDS,
    CAP_STATISTICS,
    ESTIMATED_STATS,
    LIVE,
    MatchData,
    MatchOdds,
    MatchStatistics,
    SourceProvider,
)
from app.etl.circuit_breaker import CircuitBreakerRegistry, SourceState
from app.etl.odds_api import OddsAPIProvider

KICKOFF = datetime(2026, 3, 14, 15, 0)
REAL_ODDS = MatchOdds(home=2.0, draw=3.4, away=3.8)
REAL_STATS = MatchStatistics(possession_home=55, possession_away=45)


class FakeProvider(SourceProvider):
    def __init__(
        self,
        name,
        matches=None,
        *,
        capabilities=(CAP_LIVE_SCORES,),
        odds=None,
        statistics=None,
        delay: float = 0.0,
        error: Exception = None,
    ):
        self.name = name
        self.capabilities = capabilities
        self._matches = matches or []
        self._odds = odds
        self._statistics = statistics
        self._delay = delay
        self._error = error
        self.calls = []

    async def fetch_matches(self) -> list[MatchData]:
        self.calls.append(("matches", None))
        if self._error:
            raise self._error
        return list(self._matches)

    async def fetch_odds(self, match_id: str) -> Optional[MatchOdds]:
        self.calls.append(("odds", match_id))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._odds

    async def fetch_statistics(self, match_id: str) -> Optional[MatchStatistics]:
        self.calls.append(("statistics", match_id))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error:
            raise self._error
        return self._statistics


def live_match(source, index, home=None, away=None, **kwargs):
    prefix = source[:2]
    return MatchData(
        external_id=f"{prefix}-{index}",
        home=home or f"Home {index}",
        away=away or f"Away {index}",
        league="Premier League",
        status=LIVE,
        source=source,
        home_score=1,
        away_score=0,
        minute=60,
        kickoff=KICKOFF,
        **kwargs,
    )


def build(providers, limits=None, **kwargs):
    limits = limits or {}
    registry = CircuitBreakerRegistry(
        [
            SourceState(
                name=p.name,
                rate_limit_per_window=limits.get(p.name, 100),
                priority=priority,
                capabilities=p.capabilities,
            )
            for priority, p in enumerate(providers, start=1)
        ],
        clock=lambda: 1_000_000.0,
    )
    kwargs.setdefault("rng", random.Random(7))
    return MultiSourceAggregator(providers, registry, **kwargs), registry


def http_client(routes: dict, calls: list = None) -> httpx.AsyncClient:
    """AsyncClient answering from a path suffix -> (status, JSON) mapping."""

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        for suffix, (status, payload) in routes.items():
            if request.url.path.endswith(suffix):
                return httpx.Response(status, json=payload)
        return httpx.Response(404, json={})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def af_fixture(fixture_id, home, away):
    return {
        "fixture": {"id": fixture_id, "date": "2026-03-14T15:00:00+00:00", "status": {"short": "2H", "elapsed": 60}},
        "league": {"name": "Premier League", "country": "England"},
        "teams": {"home": {"name": home}, "away": {"name": away}},
        "goals": {"home": 1, "away": 0},
    }


# ---------------------------------------------------------------------------
# Base discovery: sequential priority fallback
# ---------------------------------------------------------------------------

class TestBaseFallback:

    @pytest.mark.asyncio
    async def test_first_non_empty_source_wins(self):
        a = FakeProvider("a")
        b = FakeProvider("b", [live_match("b", i) for i in range(3)])
        c = FakeProvider("c", [live_match("c", 9)])
        aggregator, _ = build([a, b, c])

        matches = await aggregator.fetch_enriched()

        assert [m.id for m in matches] == ["b-0", "b-1", "b-2"]
        assert c.calls == []

    @pytest.mark.asyncio
    async def test_empty_source_counts_as_failure(self):
        a = FakeProvider("a")
        b = FakeProvider("b", [live_match("b", 1)])
        aggregator, registry = build([a, b])

        await aggregator.fetch_enriched()

        assert registry.get("a").consecutive_failures == 1
        assert registry.get("b").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_raising_source_falls_back(self):
        a = FakeProvider("a", error=RuntimeError("boom"))
        b = FakeProvider("b", [live_match("b", 1)])
        aggregator, registry = build([a, b])

        matches = await aggregator.fetch_enriched()

        assert [m.id for m in matches] == ["b-1"]
        assert registry.get("a").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_all_sources_exhausted_returns_empty(self):
        aggregator, _ = build([FakeProvider("a"), FakeProvider("b")])
        assert await aggregator.fetch_enriched() == []

    @pytest.mark.asyncio
    async def test_open_breaker_source_skipped(self):
        a = FakeProvider("a", [live_match("a", 1)])
        b = FakeProvider("b", [live_match("b", 1)])
        aggregator, registry = build([a, b])
        for _ in range(3):
            registry.record_outcome("a", False)

        matches = await aggregator.fetch_enriched()

        assert a.calls == []
        assert [m.id for m in matches] == ["b-1"]

    @pytest.mark.asyncio
    async def test_rate_limited_source_skipped(self):
        a = FakeProvider("a", [live_match("a", 1)])
        b = FakeProvider("b", [live_match("b", 1)])
        aggregator, _ = build([a, b], limits={"a": 0})

        matches = await aggregator.fetch_enriched()

        assert a.calls == []
        assert [m.id for m in matches] == ["b-1"]

    @pytest.mark.asyncio
    async def test_odds_only_feed_never_used_for_discovery(self):
        odds_feed = FakeProvider("odds", [live_match("odds", 1)], capabilities=(CAP_ODDS,))
        b = FakeProvider("b", [live_match("b", 1)])
        aggregator, _ = build([odds_feed, b])

        await aggregator.fetch_enriched()

        assert ("matches", None) not in odds_feed.calls

    @pytest.mark.asyncio
    async def test_duplicates_merge_sources(self):
        first = live_match("b", 1, home="Manchester United FC", away="Liverpool")
        dup = live_match("b", 2, home="Manchester United", away="Liverpool FC")
        dup.data_sources = ["b", "mirror"]
        b = FakeProvider("b", [first, dup])
        aggregator, _ = build([b])

        matches = await aggregator.fetch_enriched()

        assert len(matches) == 1
        assert matches[0].id == "b-1"
        assert matches[0].data_sources[:2] == ("b", "mirror")


# ---------------------------------------------------------------------------
# Enrichment: concurrent, isolated, bounded
# ---------------------------------------------------------------------------

class TestEnrichment:

    @pytest.mark.asyncio
    async def test_owner_supplies_odds_and_statistics(self):
        owner = FakeProvider(
            "owner",
            [live_match("owner", 1)],
            capabilities=(CAP_LIVE_SCORES, CAP_ODDS, CAP_STATISTICS),
            odds=REAL_ODDS,
            statistics=REAL_STATS,
        )
        aggregator, _ = build([owner])

        [match] = await aggregator.fetch_enriched()

        assert match.odds == REAL_ODDS
        assert match.statistics == REAL_STATS
        assert match.has_real_odds
        assert CALCULATED_ODDS not in match.data_sources
        assert ("odds", "ow-1") in owner.calls

    @pytest.mark.asyncio
    async def test_odds_only_feed_resolves_by_identity_key(self):
        base = FakeProvider("base", [live_match("base", 1, home="Arsenal", away="Chelsea")])
        odds_feed = FakeProvider("odds", capabilities=(CAP_ODDS,), odds=REAL_ODDS)
        aggregator, _ = build([base, odds_feed])

        [match] = await aggregator.fetch_enriched()

        assert ("odds", "arsenal|chelsea|2026-03-14") in odds_feed.calls
        assert match.odds == REAL_ODDS
        assert "odds" in match.data_sources

    @pytest.mark.asyncio
    async def test_failing_enrichment_does_not_sink_others(self):
        base = FakeProvider("base", [live_match("base", 1)])
        broken = FakeProvider("broken", capabilities=(CAP_ODDS,), error=RuntimeError("down"))
        working = FakeProvider("working", capabilities=(CAP_ODDS,), odds=REAL_ODDS)
        aggregator, registry = build([base, broken, working])

        [match] = await aggregator.fetch_enriched()

        assert match.odds == REAL_ODDS
        assert registry.get("broken").consecutive_failures == 1
        assert registry.get("working").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_slow_source_times_out_as_failure(self):
        base = FakeProvider("base", [live_match("base", 1)])
        slow = FakeProvider("slow", capabilities=(CAP_ODDS,), odds=REAL_ODDS, delay=1.0)
        aggregator, registry = build([base, slow], timeout_seconds=0.05)

        [match] = await aggregator.fetch_enriched()

        assert CALCULATED_ODDS in match.data_sources
        assert registry.get("slow").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_no_data_is_not_a_failure(self):
        base = FakeProvider("base", [live_match("base", 1)])
        quiet = FakeProvider("quiet", capabilities=(CAP_ODDS,), odds=None)
        aggregator, registry = build([base, quiet])

        await aggregator.fetch_enriched()

        assert registry.get("quiet").consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_enrichment_respects_rate_limit(self):
        base = FakeProvider("base", [live_match("base", i) for i in range(5)])
        odds_feed = FakeProvider("odds", capabilities=(CAP_ODDS,), odds=REAL_ODDS)
        aggregator, registry = build([base, odds_feed], limits={"odds": 2})

        matches = await aggregator.fetch_enriched()

        assert len([c for c in odds_feed.calls if c[0] == "odds"]) == 2
        assert sum(1 for m in matches if m.has_real_odds) == 2
        assert registry.get("odds").request_count == 2


# ---------------------------------------------------------------------------
# Real adapters: failure accounting and per-request budgets
# ---------------------------------------------------------------------------

ODDS_EVENTS = [
    {
        "home_team": "Arsenal",
        "away_team": "Chelsea",
        "commence_time": "2026-03-14T15:00:00Z",
        "bookmakers": [{"markets": [
            {"key": "h2h", "outcomes": [
                {"name": "Arsenal", "price": 2.05},
                {"name": "Draw", "price": 3.4},
                {"name": "Chelsea", "price": 3.7},
            ]},
        ]}],
    },
]


class TestAdapterAccounting:

    @pytest.mark.asyncio
    async def test_failed_enrichment_requests_open_the_breaker(self):
        fixtures = {"errors": [], "response": [af_fixture(1, "Arsenal", "Chelsea"), af_fixture(2, "Spurs", "Everton")]}
        provider = APIFootballProvider(
            api_key="k",
            client=http_client({
                "/fixtures": (200, fixtures),
                "/odds": (500, {}),
                "/statistics": (500, {}),
            }),
        )
        aggregator, registry = build([provider])

        matches = await aggregator.fetch_enriched()

        state = registry.get("api-football")
        assert len(matches) == 2
        assert all(CALCULATED_ODDS in m.data_sources for m in matches)
        assert state.consecutive_failures == 4
        assert state.breaker_open
        assert aggregator.get_status()["api-football"]["circuit_breaker_state"] == "OPEN"

    @pytest.mark.asyncio
    async def test_odds_feed_failure_counts_once_per_cycle(self):
        base = FakeProvider("base", [live_match("base", i) for i in range(5)])
        odds_feed = OddsAPIProvider(api_key="k", client=http_client({"/odds": (429, {})}))
        aggregator, registry = build([base, odds_feed])

        await aggregator.fetch_enriched()

        state = registry.get("odds-api")
        assert state.consecutive_failures == 1
        assert state.request_count == 1

    @pytest.mark.asyncio
    async def test_odds_feed_charged_per_request_not_per_match(self):
        matches = [live_match("base", 0, home="Arsenal", away="Chelsea")]
        matches += [live_match("base", i) for i in range(1, 5)]
        base = FakeProvider("base", matches)
        calls = []
        odds_feed = OddsAPIProvider(api_key="k", client=http_client({"/odds": (200, ODDS_EVENTS)}, calls))
        aggregator, registry = build([base, odds_feed], limits={"odds-api": 2})

        enriched = await aggregator.fetch_enriched()

        assert len(calls) == 1
        assert registry.get("odds-api").request_count == 1
        assert registry.get("odds-api").consecutive_failures == 0
        by_id = {m.id: m for m in enriched}
        assert by_id["ba-0"].odds.home == 2.05
        assert "odds-api" in by_id["ba-0"].data_sources
        assert sum(1 for m in enriched if m.has_real_odds) == 1


# ---------------------------------------------------------------------------
# Gap filling and quality
# ---------------------------------------------------------------------------

class TestGapFilling:

    @pytest.mark.asyncio
    async def test_synthetic_markers_added(self):
        base = FakeProvider("base", [live_match("base", 1)])
        aggregator, _ = build([base])

        [match] = await aggregator.fetch_enriched()

        assert match.odds is not None
        assert match.statistics is not None
        assert CALCULATED_ODDS in match.data_sources
        assert ESTIMATED_STATS in match.data_sources
        assert not match.has_real_odds
        # sources + odds + statistics, no lineups
        assert match.data_quality == 80

    @pytest.mark.asyncio
    async def test_enriched_match_is_frozen(self):
        aggregator, _ = build([FakeProvider("base", [live_match("base", 1)])])
        [match] = await aggregator.fetch_enriched()
        with pytest.raises(AttributeError):
            match.home_score = 5

    @pytest.mark.asyncio
    async def test_status_delegates_to_registry(self):
        aggregator, _ = build([FakeProvider("a"), FakeProvider("b")])
        status = aggregator.get_status()
        assert list(status) == ["a", "b"]
        assert status["a"]["circuit_breaker_state"] == "CLOSED"
