"""
cli.py — Click CLI entrypoint for the ingestion pipeline.

Usage:
    mgnrega-pipeline run                 # daily incremental pass
    mgnrega-pipeline run --full          # resync + full rebuild
    mgnrega-pipeline run --dry-run       # fetch + normalize one page, no DB
    mgnrega-pipeline rebuild
    mgnrega-pipeline daemon
    mgnrega-pipeline init-db
    mgnrega-pipeline status
"""

from __future__ import annotations

import asyncio
import sys

import click
import structlog

from mgnrega_shared.config import settings
from mgnrega_pipeline.utils.logging import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--log-level",
    default=settings.log_level,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default=settings.log_format,
    type=click.Choice(["console", "json"]),
    help="Console log format",
)
def main(log_level: str, log_format: str) -> None:
    """MGNREGA ingestion and KPI aggregation pipeline."""
    configure_logging(log_level=log_level, log_format=log_format, log_file=settings.log_path)


@main.command()
@click.option("--full", is_flag=True, help="Replace every row and rebuild derived tables.")
@click.option("--max-pages", type=click.IntRange(min=1), default=None, help="Stop after N pages.")
@click.option("--dry-run", is_flag=True, help="Fetch and normalize one page; write nothing.")
def run(full: bool, max_pages: int | None, dry_run: bool) -> None:
    """Run one ingestion pass. Exits 1 if the run aborts or fails."""
    if dry_run:
        asyncio.run(_dry_run())
        return

    from mgnrega_pipeline.pipelines.ingestion import run as run_ingestion

    mode = "full" if full else "incremental"
    click.echo(f"Running ingestion: {mode}")
    try:
        result = asyncio.run(run_ingestion(mode, max_pages=max_pages))
    except Exception as exc:
        log.error("ingestion_failed", mode=mode, error=str(exc), exc_info=True)
        click.echo(f"  Ingestion failed: {exc}", err=True)
        sys.exit(1)

    click.echo(
        f"  {result.state.value}: {result.records_received} records, "
        f"{result.rows_inserted} inserted, {result.rows_skipped} skipped, "
        f"{result.pages_failed} failed pages"
    )
    if not result.succeeded:
        sys.exit(1)


async def _dry_run() -> None:
    from mgnrega_pipeline.sources.datagov import DataGovSource
    from mgnrega_pipeline.transforms.normalize import normalize_records

    async with DataGovSource() as source:
        records = await source.fetch_page(0, settings.page_size)
    df = normalize_records(records)
    click.echo(f"  [dry-run] fetched {len(records)} records, {len(df)} unique valid rows")


@main.command()
def rebuild() -> None:
    """Recompute district KPIs and state averages from mgnrega_data."""
    from mgnrega_shared.db import get_engine
    from mgnrega_pipeline.loaders.aggregates import AggregationEngine

    try:
        result = AggregationEngine(get_engine()).full_rebuild()
    except Exception as exc:
        click.echo(f"  Rebuild failed: {exc}", err=True)
        sys.exit(1)
    click.echo(
        f"  Rebuilt {result.district_rows} district rows, "
        f"{result.state_rows} state rows in {result.duration_ms} ms"
    )


@main.command()
def daemon() -> None:
    """Run the daily scheduler in the foreground."""
    from mgnrega_pipeline.scheduler import main as scheduler_main

    scheduler_main()


@main.command("init-db")
def init_db() -> None:
    """Create the pipeline tables if they do not exist (local development)."""
    from mgnrega_shared.db import get_engine
    from mgnrega_shared.schema import metadata

    metadata.create_all(get_engine())
    click.echo(f"  Created tables: {', '.join(sorted(metadata.tables))}")


@main.command()
def status() -> None:
    """Show table row counts and the last successful run."""
    from mgnrega_shared.db import get_engine
    from mgnrega_pipeline.loaders.aggregates import AggregationEngine
    from mgnrega_pipeline.utils.run_state import RunStateStore

    last_run = RunStateStore(settings.last_run_path).load_last_run()
    click.echo(f"Last successful run: {last_run.isoformat() if last_run else 'never'}")
    try:
        counts = AggregationEngine(get_engine()).count_rows()
    except Exception as exc:
        click.echo(f"  Error fetching counts: {exc}", err=True)
        sys.exit(1)
    for table, count in counts.items():
        click.echo(f"  {table:32s} {count:>10,d} rows")


if __name__ == "__main__":
    main()
