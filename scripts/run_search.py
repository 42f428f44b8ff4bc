#!/usr/bin/env python3
"""
Run a restaurant search from the command line and print its progress events.

Creates a search at the given point (or resumes an existing one with --search-id)
and streams the engine events as JSON lines, like the API stream does.

Usage:
    python scripts/run_search.py --lat 50.85 --lon 4.35
    python scripts/run_search.py --lat 50.85 --lon 4.35 --range MidRange --timeslot Dinner --avoid-fast-food
    python scripts/run_search.py --search-id 12 --locale fr-BE
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
import asyncio
import json
from datetime import datetime

from sqlmodel import Session

from app.core.config import settings
from app.db import create_db_and_tables, engine
from app.models.search import DistanceRange, ServiceTimeslot
from app.repositories.search import SqlSearchRepository
from app.services.factory import build_runtime, build_search_context
from app.services.search_engine import search_candidate


async def main():
    parser = argparse.ArgumentParser(description="Run a restaurant search and print its events")
    parser.add_argument("--search-id", type=int, default=None, help="Resume an existing search")
    parser.add_argument("--lat", type=float, default=None, help="Latitude of the search")
    parser.add_argument("--lon", type=float, default=None, help="Longitude of the search")
    parser.add_argument(
        "--range", choices=[r.value for r in DistanceRange], default=DistanceRange.CLOSE.value, help="Distance range"
    )
    parser.add_argument(
        "--timeslot",
        choices=[t.value for t in ServiceTimeslot],
        default=ServiceTimeslot.RIGHT_NOW.value,
        help="Service timeslot",
    )
    parser.add_argument("--avoid-fast-food", action="store_true", help="Reject fast food restaurants")
    parser.add_argument("--avoid-takeaway", action="store_true", help="Reject takeaway restaurants")
    parser.add_argument("--locale", type=str, default="en", help="Locale used by the matchers (e.g. fr-BE)")
    args = parser.parse_args()

    if args.search_id is None and (args.lat is None or args.lon is None):
        parser.error("--lat and --lon are required unless --search-id is given")

    create_db_and_tables()
    runtime = build_runtime(settings, engine)
    try:
        with Session(engine) as session:
            search_id = args.search_id
            if search_id is None:
                search = SqlSearchRepository(session).create(
                    latitude=args.lat,
                    longitude=args.lon,
                    service_date=datetime.now(),
                    service_timeslot=ServiceTimeslot(args.timeslot),
                    distance_range=DistanceRange(args.range),
                    avoid_fast_food=args.avoid_fast_food,
                    avoid_takeaway=args.avoid_takeaway,
                )
                search_id = search.id
                print(f"Created search {search_id}")

            context = build_search_context(session, runtime)
            async for event in search_candidate(search_id, args.locale, context):
                print(json.dumps(event.to_dict(), default=str))
    finally:
        await runtime.aclose()


if __name__ == "__main__":
    asyncio.run(main())
