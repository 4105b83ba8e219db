from __future__ import annotations

import asyncio
import sqlite3

import httpx

from app.logger import get_logger
from app.settings import Settings
from ingest.pipeline import run_cycle
from store.db import Database


logger = get_logger(__name__)


async def run_scheduler(
    *, settings: Settings, db: Database, client: httpx.AsyncClient
) -> None:
    logger.info("scheduler started", interval=settings.scrape_interval_seconds)
    while True:
        delay = settings.scrape_interval_seconds
        try:
            result = await run_cycle(client, db, settings)
        except sqlite3.Error:
            logger.exception("scheduled cycle aborted by store failure")
        else:
            if result.error == "rate_limited" and result.retry_after:
                delay = min(result.retry_after, delay)
        await asyncio.sleep(delay)
