"""
main.py – FastAPI host for the discovery feed
=============================================

The host plays the part of the device UI:

* device reports arrive on ``POST /location`` and ``POST /signal`` and are
  pushed into in-process location / signal sources;
* the pipeline's single subscriber stores the latest feed on
  ``app.state.feed``, served by ``GET /feed.json``;
* ``GET /categories`` and ``GET /recent.json`` serve category browsing and
  recently visited businesses;
* ``POST /tracking/start`` and ``POST /tracking/stop`` drive the lifecycle.

Tracking starts automatically in the lifespan unless ``AUTO_START=0``.
"""

from __future__ import annotations

# ─── Std-lib / third-party ────────────────────────────────────────────
import datetime as dt
import logging
import math
import os
import sys
from contextlib import asynccontextmanager
from typing import Any

from dateutil import tz
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

# ─── Project modules ──────────────────────────────────────────────────
from .categories import popular_categories, suggest_categories
from .exceptions import PermissionDenied, SourceUnavailable
from .local_store import InMemoryLocalStore
from .models import BusinessRecord, Coordinate, Feed, LocationReading, SignalReading
from .pipeline import PipelineSettings, UpdatePipeline
from .places_service import GooglePlacesProvider
from .sources import PushLocationSource, PushSignalSource, signal_from_accuracy
from .visits import VisitLog

# ─── Logging ──────────────────────────────────────────────────────────
LOG = logging.getLogger("host")

_handler = logging.StreamHandler(sys.stdout)
_handler.setFormatter(logging.Formatter("%(levelname)s:     %(name)s - %(message)s"))
for _name in ("host", "pipeline", "places_service", "visits", "extapi"):
    _logger = logging.getLogger(_name)
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------
AUTO_START = os.getenv("AUTO_START", "1") not in ("0", "false", "False")

UTC = tz.UTC

limiter = Limiter(key_func=get_remote_address)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def build_pipeline(app: FastAPI) -> UpdatePipeline:
    """Wire push sources, stores and the places provider into a pipeline."""
    app.state.location_source = PushLocationSource()
    app.state.signal_source = PushSignalSource()
    app.state.local_store = InMemoryLocalStore()
    app.state.visits = VisitLog()
    app.state.feed = None

    def _store_feed(feed: Feed) -> None:
        app.state.feed = feed

    settings = PipelineSettings.from_env()
    return UpdatePipeline(
        app.state.location_source,
        app.state.signal_source,
        app.state.local_store,
        GooglePlacesProvider(),
        _store_feed,
        settings=settings,
        visits=app.state.visits,
    )


def _float_field(body: dict, name: str, default: float | None = None) -> float:
    value = body.get(name, default)
    if value is None:
        raise HTTPException(status_code=422, detail=f"missing field '{name}'")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=422, detail=f"'{name}' must be a number") from None
    if not math.isfinite(number):
        raise HTTPException(status_code=422, detail=f"'{name}' must be finite")
    return number


def _known_records(app: FastAPI) -> list[BusinessRecord]:
    """Latest feed plus the whole local dataset, one entry per (id, origin)."""
    feed: Feed | None = app.state.feed
    seen: set[tuple[str, str]] = set()
    out: list[BusinessRecord] = []
    for rec in [*(feed.records if feed is not None else ()), *app.state.local_store.records]:
        key = (rec.id, rec.origin.value)
        if key not in seen:
            seen.add(key)
            out.append(rec)
    return out


# ---------------------------------------------------------------------
# Lifespan – pipeline start / stop
# ---------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: N802 – FastAPI naming style
    """Build the pipeline, optionally start tracking, stop it on shutdown."""
    app.state.pipeline = build_pipeline(app)

    if AUTO_START:
        try:
            await app.state.pipeline.start()
        except (PermissionDenied, SourceUnavailable) as exc:
            LOG.warning("[init] Could not start tracking: %s", exc)

    yield  # ⇢ application runs here

    await app.state.pipeline.aclose()


# ---------------------------------------------------------------------
# FastAPI instance & middleware
# ---------------------------------------------------------------------
app = FastAPI(title="Nearby Feed", lifespan=lifespan)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Return 429 when rate limit is exceeded."""
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
    )


ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:8090,http://127.0.0.1:8090").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


# Health check --------------------------------------------------------
@app.get("/healthz", response_class=PlainTextResponse)
async def healthz() -> PlainTextResponse:
    """Return HTTP 200 with body “ok” if the app is up."""
    return PlainTextResponse("ok", status_code=200)


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------
@app.get("/feed.json")
async def feed_json(request: Request) -> JSONResponse:
    """Latest delivered feed; empty until the first fetch cycle completes."""
    pipeline: UpdatePipeline = request.app.state.pipeline
    feed: Feed | None = request.app.state.feed

    payload: dict[str, Any] = (
        feed.as_dict()
        if feed is not None
        else {"records": [], "query": None, "local_count": 0, "remote_count": 0, "generated_at": None}
    )
    payload["status"] = pipeline.status.value
    payload["timestamp"] = dt.datetime.now(UTC).isoformat()
    return JSONResponse(payload)


@app.post("/location")
@limiter.limit("120/minute")
async def report_location(body: dict, request: Request) -> dict[str, Any]:
    """
    Device position report.

    A signal reading is emitted alongside: ``strength_dbm`` from the body,
    or one derived from the fix accuracy.
    """
    lat = _float_field(body, "lat")
    lon = _float_field(body, "lon")
    accuracy = _float_field(body, "accuracy_m", 0.0)
    if accuracy < 0:
        raise HTTPException(status_code=422, detail="'accuracy_m' must be >= 0")
    try:
        coordinate = Coordinate(lat, lon)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    strength = _float_field(body, "strength_dbm", signal_from_accuracy(accuracy))

    now = dt.datetime.now(UTC)
    request.app.state.location_source.emit(LocationReading(coordinate, accuracy, now))
    request.app.state.signal_source.emit(SignalReading(strength, now))

    pipeline: UpdatePipeline = request.app.state.pipeline
    await pipeline.join()
    return {"ok": True, "status": pipeline.status.value}


@app.post("/signal")
@limiter.limit("120/minute")
async def report_signal(body: dict, request: Request) -> dict[str, Any]:
    """Device Wi-Fi strength report (dBm)."""
    strength = _float_field(body, "strength_dbm")
    request.app.state.signal_source.emit(SignalReading(strength, dt.datetime.now(UTC)))

    pipeline: UpdatePipeline = request.app.state.pipeline
    await pipeline.join()
    return {"ok": True, "status": pipeline.status.value}


@app.get("/categories")
async def categories(request: Request, q: str = "", limit: int = 5) -> dict[str, Any]:
    """Popular categories, plus suggestions for *q* when given."""
    records = _known_records(request.app)
    limit = max(1, min(limit, 20))
    return {
        "popular": popular_categories(records, limit),
        "suggested": suggest_categories(records, q, limit) if q.strip() else [],
        "query": q,
    }


@app.get("/recent.json")
async def recent_visits(request: Request) -> dict[str, Any]:
    """Recently visited businesses, newest first."""
    visits: VisitLog = request.app.state.visits
    return {"visits": [v.as_dict() for v in visits.recent()]}


@app.post("/tracking/start")
async def tracking_start(request: Request) -> dict[str, Any]:
    pipeline: UpdatePipeline = request.app.state.pipeline
    try:
        await pipeline.start()
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except SourceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "status": pipeline.status.value}


@app.post("/tracking/stop")
async def tracking_stop(request: Request) -> dict[str, Any]:
    pipeline: UpdatePipeline = request.app.state.pipeline
    try:
        await pipeline.stop()
    except SourceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "status": pipeline.status.value}
