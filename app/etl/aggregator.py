"""
Multi-source match aggregation.

Base discovery is fallback-only: sources are tried in ascending priority and
the first one that returns a non-empty list wins; later sources are not
called. Enrichment then fills gaps on that base set:

1. Real data: odds/statistics requested concurrently from admissible
   providers that advertise the capability. Each call is bounded by its own
   timeout and one failure never cancels the others
   (asyncio.gather(return_exceptions=True)); results fan in once all settle.
   Batch odds feeds get one request per cycle covering every match.
2. Synthetic data: whatever is still missing is estimated and tagged with
   calculated-odds / estimated-stats.

fetch_enriched() never raises. No live matches anywhere is the normal quiet
case and yields [].
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Optional

from app.errors import RateLimitExceeded, SourceUnavailable
from app.etl.base import (
    CALCULATED_ODDS,
    CAP_LIVE_SCORES,
    CAP_ODDS,
    CAP_STATISTICS,
    ESTIMATED_STATS,
    EnrichedMatch,
    MatchData,
    SourceFailure,
    SourceProvider,
)
from app.etl.circuit_breaker import CircuitBreakerRegistry
from app.etl.enrichment import calculate_odds_ladder, compute_data_quality, estimate_statistics
from app.telemetry import observe_data_quality, record_source_request

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_CONCURRENCY = 8

_TIMED_OUT = object()


class MultiSourceAggregator:
    """Priority-ordered fetch-with-fallback, de-duplication and enrichment."""

    def __init__(
        self,
        providers: list[SourceProvider],
        registry: CircuitBreakerRegistry,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        rng: Optional[random.Random] = None,
    ):
        self._providers = {p.name: p for p in providers}
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._rng = rng or random.Random()

    async def fetch_enriched(self) -> list[EnrichedMatch]:
        """Run one aggregation cycle. Never raises."""
        logger.info("[AGGREGATOR] Starting multi-source fetch")
        try:
            base = await self._fetch_base_matches()
            if base:
                await self._enrich_from_sources(base)
                self._fill_gaps(base)
            enriched = [self._finalize(m) for m in base]
        except Exception as e:
            logger.exception(f"[AGGREGATOR] Cycle failed, returning no matches: {e}")
            return []

        if enriched:
            avg_quality = sum(m.data_quality for m in enriched) / len(enriched)
            logger.info(
                f"[AGGREGATOR] {len(enriched)} matches enriched, avg quality {avg_quality:.1f}%"
            )
        return enriched

    def get_status(self) -> dict:
        return self.registry.get_status()

    # -----------------------------------------------------------------
    # Base discovery
    # -----------------------------------------------------------------

    async def _fetch_base_matches(self) -> list[MatchData]:
        for state in self.registry.ordered_sources():
            provider = self._providers.get(state.name)
            if provider is None or CAP_LIVE_SCORES not in provider.capabilities:
                continue

            try:
                self.registry.acquire_or_raise(state.name)
            except RateLimitExceeded as e:
                logger.info(f"[AGGREGATOR] Skipping {state.name}: {e}")
                continue
            except SourceUnavailable as e:
                logger.debug(f"[AGGREGATOR] Skipping {state.name}: {e.reason}")
                continue

            logger.info(f"[AGGREGATOR] Fetching base matches from {state.name}")
            result = await self._guarded_call(state.name, provider.fetch_matches())
            matches = result if isinstance(result, list) else []

            # Empty counts as a failure: a source with nothing to say is not healthy
            self.registry.record_outcome(state.name, bool(matches), reserved=True)

            if matches:
                logger.info(f"[AGGREGATOR] {state.name} returned {len(matches)} matches")
                return self._deduplicate(matches)

        logger.info("[AGGREGATOR] No matches from any source (normal outside match hours)")
        return []

    @staticmethod
    def _deduplicate(matches: list[MatchData]) -> list[MatchData]:
        """First report of a fixture wins; later duplicates only add their sources."""
        by_key: dict[str, MatchData] = {}
        for match in matches:
            existing = by_key.get(match.identity_key)
            if existing is None:
                by_key[match.identity_key] = match
                continue
            for source in match.data_sources:
                if source not in existing.data_sources:
                    existing.data_sources.append(source)
        return list(by_key.values())

    # -----------------------------------------------------------------
    # Real-data enrichment (concurrent fan-out)
    # -----------------------------------------------------------------

    async def _enrich_from_sources(self, matches: list[MatchData]) -> None:
        odds_only = [
            p for p in self._providers.values()
            if CAP_ODDS in p.capabilities and CAP_LIVE_SCORES not in p.capabilities
        ]

        jobs: list[tuple[MatchData, str, str, Awaitable]] = []
        for match in matches:
            owner = self._providers.get(match.source)
            if match.odds is None:
                if owner is not None and CAP_ODDS in owner.capabilities:
                    jobs.append((match, "odds", owner.name, owner.fetch_odds(match.external_id)))
                # Odds-only feeds have their own id space and resolve by identity key
                for provider in odds_only:
                    if not provider.batch_odds:
                        jobs.append((match, "odds", provider.name, provider.fetch_odds(match.identity_key)))
            if match.statistics is None and owner is not None and CAP_STATISTICS in owner.capabilities:
                jobs.append((match, "statistics", owner.name, owner.fetch_statistics(match.external_id)))

        needing_odds = [m for m in matches if m.odds is None]
        batches: list[tuple[str, Awaitable]] = []
        if needing_odds:
            keys = list(dict.fromkeys(m.identity_key for m in needing_odds))
            batches = [(p.name, p.fetch_odds_batch(keys)) for p in odds_only if p.batch_odds]

        if not jobs and not batches:
            return

        results = await asyncio.gather(
            *(self._admitted_call(name, coro) for _, _, name, coro in jobs),
            *(self._admitted_call(name, coro) for name, coro in batches),
            return_exceptions=True,
        )

        for (match, kind, name, _), result in zip(jobs, results):
            if result is None or isinstance(result, BaseException):
                continue
            if kind == "odds" and match.odds is None:
                match.odds = result
            elif kind == "statistics" and match.statistics is None:
                match.statistics = result
            else:
                continue
            if name not in match.data_sources:
                match.data_sources.append(name)

        # Batched feeds fill only what the per-match sources left empty
        for (name, _), found in zip(batches, results[len(jobs):]):
            if not isinstance(found, dict):
                continue
            for match in needing_odds:
                odds = found.get(match.identity_key)
                if odds is None or match.odds is not None:
                    continue
                match.odds = odds
                if name not in match.data_sources:
                    match.data_sources.append(name)

    async def _admitted_call(self, name: str, coro: Awaitable):
        """
        One enrichment request under admission control.

        A None result is "no data for this match", not a source failure, so it
        leaves the failure streak alone. Timeouts, errors and a SourceFailure
        reported by the provider count against the breaker.
        """
        if not self.registry.acquire(name):
            coro.close()
            return None
        async with self._semaphore:
            result = await self._guarded_call(name, coro)
        if result is _TIMED_OUT or isinstance(result, SourceFailure):
            self.registry.record_outcome(name, False, reserved=True)
            return None
        if result is not None:
            self.registry.record_outcome(name, True, reserved=True)
        return result

    async def _guarded_call(self, name: str, coro: Awaitable):
        """Await a provider call with a timeout; any error becomes _TIMED_OUT."""
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"[AGGREGATOR] {name} timed out after {self.timeout_seconds:.1f}s")
            record_source_request(name, "failure", (time.monotonic() - start) * 1000)
            return _TIMED_OUT
        except Exception as e:
            logger.warning(f"[AGGREGATOR] {name} failed: {e}")
            record_source_request(name, "failure", (time.monotonic() - start) * 1000)
            return _TIMED_OUT

        if isinstance(result, SourceFailure):
            logger.warning(f"[AGGREGATOR] {name} failed: {result.reason}")
            outcome = "failure"
        else:
            outcome = "success" if result else "empty"
        record_source_request(name, outcome, (time.monotonic() - start) * 1000)
        return result

    # -----------------------------------------------------------------
    # Synthetic gap-filling
    # -----------------------------------------------------------------

    def _fill_gaps(self, matches: list[MatchData]) -> None:
        for match in matches:
            if match.odds is None:
                match.odds = calculate_odds_ladder(match.home_score, match.away_score, match.minute)
                if CALCULATED_ODDS not in match.data_sources:
                    match.data_sources.append(CALCULATED_ODDS)
            if match.statistics is None:
                match.statistics = estimate_statistics(
                    match.home_score, match.away_score, match.minute, self._rng
                )
                if ESTIMATED_STATS not in match.data_sources:
                    match.data_sources.append(ESTIMATED_STATS)

    @staticmethod
    def _finalize(match: MatchData) -> EnrichedMatch:
        quality = compute_data_quality(
            match.data_sources, match.odds, match.statistics, match.lineups
        )
        observe_data_quality(quality)
        return EnrichedMatch(
            id=match.external_id,
            home=match.home,
            away=match.away,
            league=match.league,
            country=match.country,
            status=match.status,
            home_score=match.home_score,
            away_score=match.away_score,
            minute=match.minute,
            kickoff=match.kickoff,
            odds=match.odds,
            statistics=match.statistics,
            lineups=match.lineups,
            data_sources=tuple(match.data_sources),
            data_quality=quality,
        )
