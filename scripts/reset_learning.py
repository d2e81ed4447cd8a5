#!/usr/bin/env python3
"""
Operator-triggered reset of the online learning loop.

Restores default parameters for both the current and best model versions and
clears the outcome log in the configured store (LEARNING_STORE / STATE_DIR).

    python scripts/reset_learning.py            # show what would be reset
    python scripts/reset_learning.py --confirm  # reset
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
logger = logging.getLogger("reset_learning")


async def main(confirm: bool) -> int:
    from app.state import build_services

    services = build_services(providers=[])
    try:
        await services.start()
        before = services.learning.get_statistics()
        if not confirm:
            logger.warning("Dry run: pass --confirm to reset")
            print(json.dumps({"reset": False, "current": before}, indent=2, default=str))
            return 0

        await services.learning.reset()
        after = services.learning.get_statistics()
        print(json.dumps({"reset": True, "before": before, "after": after}, indent=2, default=str))
    finally:
        await services.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset the online learning loop")
    parser.add_argument("--confirm", action="store_true", help="Actually reset persisted state")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.confirm)))
