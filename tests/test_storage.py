"""Tests for key-value stores, the prediction repository and the match archive."""

from datetime import datetime

import pytest

from app.database import close_db, create_engine, create_session_factory, init_db
from app.errors import PersistenceFailure
from app.etl.base import FINISHED, EnrichedMatch, MatchOdds
from app.ml.meta_learner import MetaLearner
from app.ml.synthesizer import MARKET_1X2, PredictionCandidate
from app.storage import (
    FileKeyValueStore,
    InMemoryKeyValueStore,
    MatchArchive,
    PredictionRepository,
    SQLKeyValueStore,
)


async def sqlite_factory(create_tables: bool = True):
    engine = create_engine("sqlite:///:memory:")
    if create_tables:
        await init_db(engine)
    return engine, create_session_factory(engine)


def candidate(outcome="1 (Home)", confidence=72.0, ev=12.0):
    return PredictionCandidate(
        market=MARKET_1X2,
        outcome=outcome,
        confidence=confidence,
        recommended_odds=1.8,
        expected_value=ev,
        value_percentage=29.6,
        stake=4.4,
        reasoning=("Form: home 80% vs away 40%",),
        risk="low",
        timing="live",
        implied_probability=55.6,
    )


def finished(match_id, home, away, kickoff, league="Premier League"):
    return EnrichedMatch(
        id=match_id,
        home=home,
        away=away,
        league=league,
        status=FINISHED,
        home_score=0,
        away_score=0,
        minute=90,
        kickoff=kickoff,
        data_sources=("api-football",),
        data_quality=60,
        odds=MatchOdds(home=2.1, draw=3.3, away=3.6),
    )


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------

class TestInMemoryStore:

    @pytest.mark.asyncio
    async def test_roundtrip(self):
        store = InMemoryKeyValueStore()
        assert await store.get("ml_current_model") is None
        await store.set("ml_current_model", b"v1")
        await store.set("ml_current_model", b"v2")
        assert await store.get("ml_current_model") == b"v2"


class TestFileStore:

    @pytest.mark.asyncio
    async def test_roundtrip_creates_directory(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "state")
        assert await store.get("ml_best_model") is None

        await store.set("ml_best_model", b'{"version": 3}')

        assert await store.get("ml_best_model") == b'{"version": 3}'
        assert [p.name for p in (tmp_path / "state").iterdir()] == ["ml_best_model.bin"]

    @pytest.mark.asyncio
    async def test_unsafe_keys_stay_inside_directory(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        await store.set("../escape/key", b"x")
        assert await store.get("../escape/key") == b"x"
        assert not (tmp_path.parent / "escape").exists()

    @pytest.mark.asyncio
    async def test_io_error_becomes_persistence_failure(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = FileKeyValueStore(blocker / "state")

        with pytest.raises(PersistenceFailure) as exc_info:
            await store.set("ml_history", b"[]")
        assert exc_info.value.store == "file"


class TestSQLStore:

    @pytest.mark.asyncio
    async def test_upsert(self):
        engine, factory = await sqlite_factory()
        store = SQLKeyValueStore(factory)
        try:
            assert await store.get("ml_history") is None
            await store.set("ml_history", b"[]")
            await store.set("ml_history", b"[1]")
            assert await store.get("ml_history") == b"[1]"
        finally:
            await close_db(engine)

    @pytest.mark.asyncio
    async def test_missing_table_raises_persistence_failure(self):
        engine, factory = await sqlite_factory(create_tables=False)
        store = SQLKeyValueStore(factory)
        try:
            with pytest.raises(PersistenceFailure):
                await store.get("ml_history")
        finally:
            await close_db(engine)


# ---------------------------------------------------------------------------
# Prediction repository
# ---------------------------------------------------------------------------

class TestPredictionRepository:

    @pytest.mark.asyncio
    async def test_save_and_query(self):
        engine, factory = await sqlite_factory()
        repo = PredictionRepository(factory)
        decision = MetaLearner().combine("af-7", {"synthesizer": candidate()})
        try:
            assert await repo.save("af-7", [candidate(), decision], model_version="v4") is True
            assert await repo.save("af-8", candidate(outcome="2 (Away)")) is True

            records = await repo.query("af-7")
        finally:
            await close_db(engine)

        assert [r.kind for r in records] == ["candidate", "decision"]
        assert records[0].prediction == "1 (Home)"
        assert records[0].recommended_odds == 1.8
        assert records[0].details["reasoning"] == ["Form: home 80% vs away 40%"]
        assert records[1].recommendation == decision.recommendation
        assert records[1].model_version == "v4"

    @pytest.mark.asyncio
    async def test_latest_candidates_come_from_the_last_save(self):
        engine, factory = await sqlite_factory()
        repo = PredictionRepository(factory)
        decision = MetaLearner().combine("af-7", {"synthesizer": candidate()})
        try:
            await repo.save("af-7", [candidate(outcome="2 (Away)"), decision])
            await repo.save("af-7", [candidate(), candidate(outcome="X (Draw)", confidence=41.0), decision])

            latest = await repo.latest_candidates("af-7")
            decision_only = await repo.save("af-9", decision)
            none_logged = await repo.latest_candidates("af-9")
        finally:
            await close_db(engine)

        assert [r.prediction for r in latest] == ["1 (Home)", "X (Draw)"]
        assert {r.kind for r in latest} == {"candidate"}
        assert len({r.predicted_at for r in latest}) == 1
        assert decision_only is True
        assert none_logged == []

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self):
        engine, factory = await sqlite_factory(create_tables=False)
        repo = PredictionRepository(factory)
        try:
            assert await repo.save("af-7", candidate()) is False
            assert await repo.query("af-7") == []
            assert await repo.latest_candidates("af-7") == []
        finally:
            await close_db(engine)


# ---------------------------------------------------------------------------
# Match archive
# ---------------------------------------------------------------------------

class TestMatchArchive:

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self):
        engine, factory = await sqlite_factory()
        archive = MatchArchive(factory)
        match = finished("af-1", "Arsenal", "Chelsea", datetime(2026, 1, 10))
        try:
            assert await archive.archive_match(match, 2, 1) is True
            assert await archive.archive_match(match, 2, 1) is False
            rows = await archive.get_h2h("Arsenal", "Chelsea")
        finally:
            await close_db(engine)

        assert len(rows) == 1
        assert rows[0].final_result == "1"
        assert rows[0].total_goals == 3
        assert rows[0].btts is True
        assert rows[0].odds_home == 2.1

    @pytest.mark.asyncio
    async def test_history_queries(self):
        engine, factory = await sqlite_factory()
        archive = MatchArchive(factory)
        fixtures = [
            (finished("af-1", "Arsenal", "Chelsea", datetime(2026, 1, 10)), 2, 1),
            (finished("af-2", "Chelsea", "Arsenal", datetime(2026, 2, 10)), 1, 1),
            (finished("af-3", "Arsenal", "Spurs", datetime(2026, 3, 1)), 0, 2),
            (finished("af-4", "Spurs", "Chelsea", datetime(2026, 3, 8)), 3, 0),
            (finished("af-5", "Arsenal", "Lyon", datetime(2026, 3, 12), league="Friendlies"), 4, 0),
        ]
        try:
            for match, home_goals, away_goals in fixtures:
                await archive.archive_match(match, home_goals, away_goals)

            h2h = await archive.get_h2h("Arsenal", "Chelsea")
            form = await archive.get_team_form("Arsenal", last_n=3)
            stats = await archive.get_team_stats("Arsenal", "Premier League")
            nothing = await archive.get_team_stats("Lyon", "Premier League")
        finally:
            await close_db(engine)

        assert [r.match_id for r in h2h] == ["af-2", "af-1"]
        assert form == ["W", "L", "D"]
        assert stats.matches_played == 3
        assert (stats.wins, stats.draws, stats.losses) == (1, 1, 1)
        assert (stats.goals_for, stats.goals_against) == (3, 4)
        assert nothing is None

    @pytest.mark.asyncio
    async def test_reads_degrade_without_tables(self):
        engine, factory = await sqlite_factory(create_tables=False)
        archive = MatchArchive(factory)
        try:
            assert await archive.get_h2h("Arsenal", "Chelsea") == []
            assert await archive.get_team_form("Arsenal") == []
            assert await archive.get_team_stats("Arsenal", "Premier League") is None
        finally:
            await close_db(engine)
