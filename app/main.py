from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.logger import get_logger, setup_logging
from app.service import list_recent_events
from app.settings import Settings
from health.health import get_scrape_state
from ingest.pipeline import SOURCE_ID, Clock, run_cleanup, run_cycle
from ingest.scheduler import run_scheduler
from normalize.timestamps import to_iso, utc_now
from store.db import Database, close_database, open_database


logger = get_logger(__name__)

_CYCLE_ERROR_STATUS = {
    "rate_limited": 429,
    "timeout": 504,
    "parse_error": 502,
}


def _cycle_status_code(error: str | None) -> int:
    if error is None:
        return 200
    if error in _CYCLE_ERROR_STATUS:
        return _CYCLE_ERROR_STATUS[error]
    if error.startswith("store_error"):
        return 500
    return 502


def _to_api_event(row: dict) -> dict:
    return {
        "id": row["id"],
        "datetime": row["occurred_at"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
        "depth": row["depth_km"],
        "magnitude": row["magnitude"],
        "location": row["location_text"],
    }


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app_settings = settings or Settings()
        setup_logging(app_settings)
        db = open_database(app_settings.db_path)
        client = httpx.AsyncClient(
            follow_redirects=True,
            verify=app_settings.verify_tls,
            transport=transport,
        )
        app.state.settings = app_settings
        app.state.db = db
        app.state.http = client
        app.state.clock = clock

        scheduler_task = None
        if app_settings.scheduler_enabled:
            scheduler_task = asyncio.create_task(
                run_scheduler(settings=app_settings, db=db, client=client)
            )
        try:
            yield
        finally:
            if scheduler_task is not None:
                scheduler_task.cancel()
                with suppress(asyncio.CancelledError):
                    await scheduler_task
            await client.aclose()
            close_database(db)

    app = FastAPI(lifespan=lifespan)

    @app.get("/api/events")
    async def api_events(request: Request) -> JSONResponse:
        db: Database = request.app.state.db
        try:
            recent = await list_recent_events(
                request.app.state.http,
                db,
                request.app.state.settings,
                clock=request.app.state.clock,
            )
        except sqlite3.Error:
            logger.exception("reading events failed")
            return JSONResponse(
                {"success": False, "error": "Failed to fetch events"},
                status_code=500,
            )
        events = [_to_api_event(r) for r in recent.events]
        return JSONResponse(
            {
                "success": True,
                "events": events,
                "count": len(events),
                "lastUpdated": recent.last_updated,
            }
        )

    @app.api_route("/api/scrape", methods=["GET", "POST"])
    async def api_scrape(request: Request) -> JSONResponse:
        db: Database = request.app.state.db
        result = await run_cycle(
            request.app.state.http,
            db,
            request.app.state.settings,
            clock=request.app.state.clock,
        )
        status_code = _cycle_status_code(result.error)
        headers = None
        if result.retry_after is not None:
            headers = {"Retry-After": str(result.retry_after)}
        body = {**result.to_dict(), "timestamp": to_iso(request.app.state.clock())}
        return JSONResponse(body, status_code=status_code, headers=headers)

    @app.post("/api/cleanup")
    def api_cleanup(request: Request) -> JSONResponse:
        db: Database = request.app.state.db
        try:
            summary = run_cleanup(
                db, request.app.state.settings, clock=request.app.state.clock
            )
        except sqlite3.Error as e:
            logger.exception("cleanup failed")
            return JSONResponse({"success": False, "error": str(e)}, status_code=500)
        return JSONResponse({"success": True, **summary})

    @app.get("/api/health")
    def api_health(request: Request) -> JSONResponse:
        db: Database = request.app.state.db
        state = get_scrape_state(db, SOURCE_ID)
        return JSONResponse({"source_id": SOURCE_ID, "state": state})

    return app


app = create_app()
