# caption_worker/app/routers/status.py
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/status")
async def status(request: Request):
    """
    Returns worker counters + dispatcher state.
      - channels: input / output channel names
      - subscribed: redis subscription currently established
      - queue_depth, in_flight: dispatcher snapshot
      - counters from telemetry (messages_total, enrich_failed, ...)
    """
    worker = request.app.state.worker
    settings = worker.context.settings
    telemetry_stats = worker.context.telemetry.get_stats()

    data = {
        "ok": True,
        "channels": {
            "input": settings.WORKER_REDIS_CHANNEL,
            "output": settings.output_channel,
        },
        "caption_url": settings.WORKER_CAPTION_URL,
        "pool_size": worker.dispatcher.pool_size,
        "single_flight": worker.dispatcher.single_flight is not None,
        "subscribed": worker.broker.subscribed,
        "queue_depth": worker.dispatcher.queue_depth,
        "in_flight": worker.dispatcher.in_flight,
        **telemetry_stats,
    }
    return JSONResponse(data)
