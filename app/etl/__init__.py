"""ETL module: source providers, circuit breaker and multi-source aggregation."""

from app.etl.aggregator import MultiSourceAggregator
from app.etl.api_football import APIFootballProvider
from app.etl.base import EnrichedMatch, HTTPSourceProvider, MatchData, SourceProvider
from app.etl.circuit_breaker import CircuitBreakerRegistry, SourceState
from app.etl.football_data import FootballDataProvider
from app.etl.livescore import LiveScoreProvider
from app.etl.odds_api import OddsAPIProvider

__all__ = [
    "APIFootballProvider",
    "CircuitBreakerRegistry",
    "EnrichedMatch",
    "FootballDataProvider",
    "HTTPSourceProvider",
    "LiveScoreProvider",
    "MatchData",
    "MultiSourceAggregator",
    "OddsAPIProvider",
    "SourceProvider",
    "SourceState",
]
