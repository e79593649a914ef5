"""JSON API endpoints over the query service and collector status."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/latest")
async def get_latest(request: Request) -> JSONResponse:
    """Most recent sample with every instrument's rate."""
    data = await request.app.state.query_service.get_latest()
    return JSONResponse(content=data)


@router.get("/historical")
async def get_historical(
    request: Request,
    startTime: str | None = None,
    endTime: str | None = None,
) -> JSONResponse:
    """All samples in [startTime, endTime] (ms), newest first."""
    data = await request.app.state.query_service.get_range(startTime, endTime)
    return JSONResponse(content=data)


@router.get("/analytics/rates")
async def get_rate_analytics(
    request: Request,
    startTime: str | None = None,
    endTime: str | None = None,
) -> JSONResponse:
    """Per-instrument average, min and max rate over the range."""
    data = await request.app.state.query_service.get_rate_stats_by_instrument(
        startTime, endTime
    )
    return JSONResponse(content=data)


@router.get("/analytics/reference")
async def get_reference_analytics(
    request: Request,
    startTime: str | None = None,
    endTime: str | None = None,
) -> JSONResponse:
    """Average, min and max reference value over the range."""
    data = await request.app.state.query_service.get_reference_value_stats(
        startTime, endTime
    )
    return JSONResponse(content=data)


@router.get("/instruments")
async def get_instruments(request: Request) -> JSONResponse:
    return JSONResponse(content=request.app.state.query_service.list_instruments())


@router.get("/instruments/{instrument_id}/history")
async def get_instrument_history(
    request: Request,
    instrument_id: str,
    startTime: str | None = None,
    endTime: str | None = None,
    granularity: str | None = None,
) -> JSONResponse:
    """One instrument's history; raw rows unless a granularity is given."""
    data = await request.app.state.query_service.get_instrument_history(
        instrument_id, startTime, endTime, granularity
    )
    return JSONResponse(content=data)


@router.get("/instruments/{instrument_id}/history/{duration}")
async def get_instrument_history_by_duration(
    request: Request,
    instrument_id: str,
    duration: str,
    granularity: str | None = None,
) -> JSONResponse:
    """One instrument's history over a trailing window such as 24h, 30d or 4w."""
    data = await request.app.state.query_service.get_instrument_history_by_duration(
        instrument_id, duration, granularity
    )
    return JSONResponse(content=data)


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Collector state, counters and last cycle result."""
    collector = getattr(request.app.state, "collector", None)
    if collector is None:
        return JSONResponse(content={"enabled": False})
    store = request.app.state.store
    return JSONResponse(
        content={
            "enabled": True,
            "samples_stored": await store.sample_count(),
            **collector.status(),
        }
    )
