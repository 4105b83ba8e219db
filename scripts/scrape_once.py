from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import httpx

from app.logger import setup_logging
from app.settings import Settings
from ingest.pipeline import run_cleanup, run_cycle
from store.db import close_database, open_database


async def _run(settings: Settings, *, ignore_interval: bool) -> dict:
    db = open_database(settings.db_path)
    try:
        async with httpx.AsyncClient(
            follow_redirects=True, verify=settings.verify_tls
        ) as client:
            result = await run_cycle(
                client,
                db,
                settings,
                min_interval_seconds=0 if ignore_interval else None,
            )
        return result.to_dict()
    finally:
        close_database(db)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run one scrape-and-store cycle against the bulletin page."
    )
    parser.add_argument("--db", type=Path, default=None)
    parser.add_argument("--sweep-only", action="store_true")
    parser.add_argument("--ignore-interval", action="store_true")
    args = parser.parse_args()

    settings = Settings()
    if args.db is not None:
        settings = settings.model_copy(update={"db_path": args.db})
    setup_logging(settings)

    if args.sweep_only:
        db = open_database(settings.db_path)
        try:
            summary = {"success": True, **run_cleanup(db, settings)}
        finally:
            close_database(db)
    else:
        summary = asyncio.run(_run(settings, ignore_interval=args.ignore_interval))

    print(json.dumps(summary, indent=2))
    if not summary["success"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
