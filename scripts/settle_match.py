#!/usr/bin/env python3
"""
Settle a finished match: archive the final score and feed the outcomes of
the candidates logged by its latest cycle to the learning loop.

Uses the same storage as run_cycle.py (DATABASE_URL / LEARNING_STORE), so it
can run any time after the match ends:

    python scripts/settle_match.py af-1035123 2-1 \
        --home Arsenal --away Chelsea --league "Premier League" \
        --kickoff 2026-03-14T15:00

Settling the same match twice is a no-op.
"""
import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime

# Ensure project root is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("settle_match")


def parse_score(value: str) -> tuple[int, int]:
    try:
        home, away = value.split("-")
        return int(home), int(away)
    except ValueError:
        raise argparse.ArgumentTypeError(f"score must look like 2-1, got {value!r}")


async def main(args) -> int:
    # Import after sys.path setup
    from app.etl.base import FINISHED, EnrichedMatch
    from app.pipeline import PredictionPipeline
    from app.state import build_services

    home_goals, away_goals = args.score
    match = EnrichedMatch(
        id=args.match_id,
        home=args.home,
        away=args.away,
        league=args.league,
        country=args.country,
        status=FINISHED,
        home_score=home_goals,
        away_score=away_goals,
        minute=90,
        kickoff=args.kickoff,
        data_sources=("manual",),
        data_quality=0,
    )

    services = build_services(providers=[])
    pipeline = PredictionPipeline(services)
    try:
        results = await pipeline.settle(match, home_goals, away_goals)
        learning = pipeline.get_statistics()
    finally:
        await services.close()

    print(json.dumps({
        "match_id": match.id,
        "score": match.score,
        "settled": [
            {"market": r.bet_type, "predicted": r.predicted, "actual": r.actual, "correct": r.correct}
            for r in results
        ],
        "learning": learning,
    }, indent=2, default=str))

    logger.info(f"Done: {len(results)} results fed to the learning loop")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Settle a finished match")
    parser.add_argument("match_id", help="Match id as logged by run_cycle.py, e.g. af-1035123")
    parser.add_argument("score", type=parse_score, help="Final score, home-away (e.g. 2-1)")
    parser.add_argument("--home", required=True, help="Home team name")
    parser.add_argument("--away", required=True, help="Away team name")
    parser.add_argument("--league", required=True, help="League name")
    parser.add_argument("--country", default=None, help="League country")
    parser.add_argument(
        "--kickoff",
        type=datetime.fromisoformat,
        default=None,
        help="Kickoff time, ISO-8601 UTC (defaults to now)",
    )
    sys.exit(asyncio.run(main(parser.parse_args())))
