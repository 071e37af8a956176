"""
backend/run_cycle.py

Purpose:
    CLI entrypoint that runs one match status cycle (poll + re-evaluation)
    outside the web process, e.g. from cron or during an incident.

Dependencies:
    - kupon.database
    - kupon.providers.api_football
    - kupon.workers.match_status
"""

import argparse
import asyncio
import os
import sys
from pprint import pprint

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from kupon.database import close_db, connect_db
from kupon.middleware.logging import setup_logging
from kupon.providers.api_football import ApiFootballProvider
from kupon.workers.match_status import reevaluate_finished_matches, run_match_status_cycle


async def main(reevaluate_only: bool) -> int:
    setup_logging()
    provider = ApiFootballProvider()
    try:
        await connect_db()
        if reevaluate_only:
            summary = await reevaluate_finished_matches(provider)
        else:
            summary = await run_match_status_cycle(provider)
        pprint(summary, indent=2)
        return 0
    except Exception as e:
        print(f"FATAL ERROR: {e}")
        return 1
    finally:
        await provider.aclose()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one match status cycle.")
    parser.add_argument(
        "--reevaluate-only",
        action="store_true",
        help="Skip the status poll; only fetch missing scores and grade pending bets.",
    )
    args = parser.parse_args()
    raise SystemExit(asyncio.run(main(args.reevaluate_only)))
