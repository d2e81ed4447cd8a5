#!/usr/bin/env python3
"""
Run one aggregation + prediction cycle and print the result as JSON.

Credentials and storage come from the environment / .env:

    set -a && source .env && set +a
    python scripts/run_cycle.py --decisions-only

One-shot: periodic triggering is left to cron or the operator.
"""
import argparse
import asyncio
import json
import logging
import os
import sys

# Ensure project root is importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("run_cycle")


async def main(decisions_only: bool, with_status: bool, metrics_file: str = None) -> int:
    # Import after sys.path setup
    from app.pipeline import PredictionPipeline
    from app.state import build_services
    from app.telemetry import get_metrics_text

    services = build_services()
    pipeline = PredictionPipeline(services)
    try:
        analyses = await pipeline.run_cycle()
    finally:
        await services.close()

    if decisions_only:
        payload = {"decisions": [a.decision.to_dict() for a in analyses]}
    else:
        payload = {"matches": [a.to_dict() for a in analyses]}
    if with_status:
        payload["sources"] = pipeline.get_status()
        payload["learning"] = pipeline.get_statistics()

    print(json.dumps(payload, indent=2, default=str))

    if metrics_file:
        # Prometheus textfile-collector format
        body, _ = get_metrics_text()
        with open(metrics_file, "wb") as fh:
            fh.write(body)
        logger.info(f"Metrics written to {metrics_file}")

    logger.info(f"Done: {len(analyses)} matches")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one match signal cycle")
    parser.add_argument("--decisions-only", action="store_true", help="Print final decisions only")
    parser.add_argument("--status", action="store_true", help="Include source and learning status")
    parser.add_argument("--metrics-file", help="Write Prometheus metrics to this path after the cycle")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.decisions_only, args.status, args.metrics_file)))
