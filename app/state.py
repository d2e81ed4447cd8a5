"""Service wiring for the match signal pipeline.

Everything is built once by build_services() and handed around explicitly;
nothing here is a module-level singleton. Tests build their own Services
with fake providers and an in-memory database.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from app.config import Settings, get_settings
from app.database import close_db, create_engine, create_session_factory, init_db
from app.etl.aggregator import MultiSourceAggregator
from app.etl.api_football import APIFootballProvider
from app.etl.base import SourceProvider
from app.etl.circuit_breaker import CircuitBreakerRegistry, SourceState
from app.etl.football_data import FootballDataProvider
from app.etl.livescore import LiveScoreProvider
from app.etl.odds_api import OddsAPIProvider
from app.ml.estimators import Estimator, default_estimators
from app.ml.learning import LearningLoop
from app.ml.meta_learner import MetaLearner
from app.ml.synthesizer import PredictionSynthesizer, SynthesizerPolicy
from app.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
    MatchArchive,
    PredictionRepository,
    SQLKeyValueStore,
)
from app.trading.kelly import KellySizing

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    registry: CircuitBreakerRegistry
    providers: list[SourceProvider]
    aggregator: MultiSourceAggregator
    learning: LearningLoop
    synthesizer: PredictionSynthesizer
    estimators: list[Estimator]
    meta_learner: MetaLearner
    predictions: PredictionRepository
    archive: MatchArchive
    engine: Optional[AsyncEngine] = None
    _started: bool = field(default=False, repr=False)

    async def start(self) -> None:
        """Create tables and restore learning state. Idempotent."""
        if self._started:
            return
        if self.engine is not None:
            await init_db(self.engine)
        await self.learning.load()
        self._started = True

    async def close(self) -> None:
        for provider in self.providers:
            await provider.close()
        if self.engine is not None:
            await close_db(self.engine)


def build_providers(settings: Settings) -> list[SourceProvider]:
    timeout = settings.SOURCE_TIMEOUT_SECONDS
    return [
        APIFootballProvider(settings.API_FOOTBALL_KEY, settings.API_FOOTBALL_HOST, timeout=timeout),
        FootballDataProvider(settings.FOOTBALL_DATA_KEY, timeout=timeout),
        LiveScoreProvider(settings.LIVESCORE_API_KEY, settings.LIVESCORE_API_SECRET, timeout=timeout),
        OddsAPIProvider(settings.ODDS_API_KEY, settings.ODDS_API_SPORT, timeout=timeout),
    ]


def build_registry(settings: Settings, providers: list[SourceProvider]) -> CircuitBreakerRegistry:
    """One SourceState per provider; disabled (no credentials) providers are never admitted."""
    policy = {
        "api-football": (settings.SOURCE_API_FOOTBALL_RATE_LIMIT, settings.SOURCE_API_FOOTBALL_PRIORITY),
        "football-data": (settings.SOURCE_FOOTBALL_DATA_RATE_LIMIT, settings.SOURCE_FOOTBALL_DATA_PRIORITY),
        "livescore-api": (settings.SOURCE_LIVESCORE_RATE_LIMIT, settings.SOURCE_LIVESCORE_PRIORITY),
        "odds-api": (settings.SOURCE_ODDS_API_RATE_LIMIT, settings.SOURCE_ODDS_API_PRIORITY),
    }
    registry = CircuitBreakerRegistry(
        failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
        cooldown_seconds=settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    for provider in providers:
        limit, priority = policy.get(provider.name, (0, len(policy) + 1))
        registry.register(SourceState(
            name=provider.name,
            rate_limit_per_window=limit,
            priority=priority,
            enabled=provider.enabled,
            capabilities=tuple(provider.capabilities),
        ))
        if not provider.enabled:
            logger.warning(f"[STATE] {provider.name} disabled: no credentials configured")
    return registry


def build_learning_store(settings: Settings, session_factory: sessionmaker) -> KeyValueStore:
    kind = settings.LEARNING_STORE.lower()
    if kind == "sql":
        return SQLKeyValueStore(session_factory)
    if kind == "memory":
        return InMemoryKeyValueStore()
    return FileKeyValueStore(settings.STATE_DIR)


def build_services(
    settings: Optional[Settings] = None,
    *,
    providers: Optional[list[SourceProvider]] = None,
    registry: Optional[CircuitBreakerRegistry] = None,
    engine: Optional[AsyncEngine] = None,
) -> Services:
    settings = settings or get_settings()
    providers = providers if providers is not None else build_providers(settings)
    registry = registry or build_registry(settings, providers)

    engine = engine or create_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)

    learning = LearningLoop(
        build_learning_store(settings, session_factory),
        interval=settings.LEARNING_INTERVAL,
        window=settings.LEARNING_WINDOW,
        history_cap=settings.LEARNING_HISTORY_CAP,
        rollback_margin=settings.LEARNING_ROLLBACK_MARGIN,
    )
    # Parameters are read through the loop on every call, never cached
    synthesizer = PredictionSynthesizer(
        learning.get_parameters,
        SynthesizerPolicy.from_settings(settings),
    )

    return Services(
        settings=settings,
        registry=registry,
        providers=providers,
        aggregator=MultiSourceAggregator(
            providers,
            registry,
            timeout_seconds=settings.SOURCE_TIMEOUT_SECONDS,
        ),
        learning=learning,
        synthesizer=synthesizer,
        estimators=default_estimators(synthesizer),
        meta_learner=MetaLearner(
            settings.META_MODEL_WEIGHTS,
            KellySizing.from_settings(settings),
        ),
        predictions=PredictionRepository(session_factory),
        archive=MatchArchive(session_factory),
        engine=engine,
    )
