"""
mgnrega_pipeline — daily ingestion of MGNREGA district data from data.gov.in.

Architecture:
  sources/     — paginated upstream adapter (data.gov.in, httpx + tenacity)
  transforms/  — number/month normalization, district KPIs, state averages (polars)
  loaders/     — idempotent raw-table batches and derived-table aggregation (SQLAlchemy)
  pipelines/   — the page-by-page ingestion orchestrator
  utils/       — structlog configuration, retry decorator, last-run state file
  scheduler.py — daily trigger daemon with catch-up on restart
  cli.py       — `mgnrega-pipeline` command

Quick start:
    from mgnrega_pipeline.pipelines.ingestion import run
    import asyncio
    result = asyncio.run(run(mode="incremental", max_pages=1))

CLI:
    mgnrega-pipeline run
    mgnrega-pipeline run --full
    mgnrega-pipeline daemon

Shared code from mgnrega_shared:
    from mgnrega_shared.config import settings
    from mgnrega_shared.db import get_engine
    from mgnrega_shared.schema import raw_data, district_performance, state_averages
"""

__version__ = "0.1.0"
