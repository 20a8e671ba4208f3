"""FastAPI application factory for the ingestion trigger API.

Start with:
    uvicorn mgnrega_api.app:app --port 8000
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mgnrega_shared import __version__
from mgnrega_shared.config import settings

from mgnrega_api.middleware.logging import LoggingMiddleware
from mgnrega_api.routers.health import router as health_router
from mgnrega_api.routers.ingestion import router as ingestion_router

logger = structlog.get_logger()


def create_app() -> FastAPI:
    app = FastAPI(
        title="MGNREGA Pipeline API",
        description="Manual trigger for the MGNREGA ingestion pipeline",
        version=__version__,
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    # Routers
    app.include_router(health_router)
    app.include_router(ingestion_router, prefix="/api")

    logger.info("app_created", cors_origins=settings.cors_origins_list)
    return app


app = create_app()
