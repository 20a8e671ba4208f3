"""
Manual ingestion trigger.

    POST /api/run-ingestion?mode=incremental|full

Runs the pipeline in-process and answers once it finishes. Only one run may
be in flight per API process; a second request gets 409.
"""

from __future__ import annotations

import asyncio
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import Engine

from mgnrega_shared.db import get_engine
from mgnrega_pipeline.pipelines.ingestion import run as run_ingestion

from mgnrega_api.responses import IngestionError, IngestionResponse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ingestion"])

_run_lock = asyncio.Lock()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=IngestionError(error=message).model_dump(),
    )


@router.post(
    "/run-ingestion",
    response_model=IngestionResponse,
    responses={409: {"model": IngestionError}, 500: {"model": IngestionError}},
)
async def run_ingestion_now(
    mode: Literal["incremental", "full"] = Query("incremental"),
    engine: Engine = Depends(get_engine),
):
    if _run_lock.locked():
        return _error(409, "An ingestion run is already in progress")

    async with _run_lock:
        log = logger.bind(mode=mode)
        log.info("manual_ingestion_requested")
        try:
            result = await run_ingestion(mode, engine=engine)
        except Exception as exc:
            log.error("manual_ingestion_failed", error=str(exc), exc_info=True)
            return _error(500, str(exc) or type(exc).__name__)

    if not result.succeeded:
        return _error(500, result.last_error or f"Ingestion ended in state {result.state.value}")

    return IngestionResponse(
        message=f"Ingestion ({mode}) completed successfully",
        summary=result.summary(),
    )
