"""
pipelines/ingestion.py — Paginated ingestion from data.gov.in into PostgreSQL.

Orchestrates, page by page and strictly in sequence:
  1. DataGovSource.fetch_page(offset, page_size)
  2. RawRecordStore.ingest() → mgnrega_data
  3. AggregationEngine → district_monthly_performance, state_monthly_averages

Two paths share the pagination loop:

  run_incremental()  (daily)   — DO NOTHING inserts; a page that adds no new
                                 rows is fast-forwarded without aggregation,
                                 otherwise an incremental aggregation runs.
                                 Tolerates max_consecutive_errors failed
                                 fetches in a row before aborting.
  run_full_sync()    (resync)  — DO UPDATE inserts, no per-page aggregation,
                                 stops on the first failed fetch, and always
                                 ends with one full rebuild of the derived tables.

Per-run state machine:

  FETCHING ─ empty page ──────→ FETCHING, or DONE after the empty streak
           ─ fetch failure ───→ FETCHING, or ABORT after the error streak
           ─ records ─────────→ INGESTING ─ new rows → AGGREGATING → FETCHING
                                           ─ nothing new ────────────→ FETCHING

A non-empty page shorter than page_size ends the run (DONE) when
stop_on_short_page is set. Database errors are not fetch failures: they
abort the run and propagate.

Usage:
    from mgnrega_pipeline.pipelines.ingestion import run
    result = await run(mode="incremental")
    print(result.state, result.rows_inserted)
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx
from sqlalchemy import Engine

from mgnrega_shared.config import settings
from mgnrega_shared.db import create_db_engine
from mgnrega_pipeline.loaders.aggregates import AggregationEngine
from mgnrega_pipeline.loaders.raw_store import ConflictPolicy, RawRecordStore
from mgnrega_pipeline.sources.base import BaseSource, SourceError
from mgnrega_pipeline.sources.datagov import DataGovSource
from mgnrega_pipeline.utils.logging import get_logger

log = get_logger(__name__)

RunMode = Literal["incremental", "full"]

# Failures that skip the page instead of stopping the run
FETCH_ERRORS: tuple[type[BaseException], ...] = (
    SourceError,
    httpx.HTTPError,
    asyncio.TimeoutError,
)


class RunState(str, enum.Enum):
    FETCHING = "FETCHING"
    INGESTING = "INGESTING"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"
    ABORT = "ABORT"


@dataclass
class IngestionRunResult:
    """Totals for one ingestion run."""

    mode: RunMode
    state: RunState = RunState.FETCHING
    started_at: float = field(default_factory=time.monotonic, repr=False)
    pages_fetched: int = 0
    pages_failed: int = 0
    pages_fast_forwarded: int = 0
    records_received: int = 0
    rows_inserted: int = 0
    rows_skipped: int = 0
    rows_rejected: int = 0
    district_rows: int = 0
    aggregation_runs: int = 0
    table_counts: dict[str, int] = field(default_factory=dict)
    last_error: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    def summary(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "state": self.state.value,
            "pages_fetched": self.pages_fetched,
            "pages_failed": self.pages_failed,
            "pages_fast_forwarded": self.pages_fast_forwarded,
            "records_received": self.records_received,
            "rows_inserted": self.rows_inserted,
            "rows_skipped": self.rows_skipped,
            "rows_rejected": self.rows_rejected,
            "district_rows": self.district_rows,
            "aggregation_runs": self.aggregation_runs,
            "table_counts": dict(self.table_counts),
            "last_error": self.last_error,
            "duration_ms": self.duration_ms,
        }


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return "upstream request timed out"
    return f"{type(exc).__name__}: {exc}"


class IngestionOrchestrator:
    """Drives the source → raw store → aggregation loop for one run."""

    def __init__(
        self,
        source: BaseSource,
        store: RawRecordStore,
        aggregator: AggregationEngine,
        *,
        page_size: int | None = None,
        max_consecutive_empty: int | None = None,
        max_consecutive_errors: int | None = None,
        stop_on_short_page: bool | None = None,
        max_pages: int | None = None,
        daily_policy: ConflictPolicy | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._aggregator = aggregator
        self._page_size = page_size or settings.page_size
        self._max_empty = max_consecutive_empty or settings.max_consecutive_empty_pages
        self._max_errors = max_consecutive_errors or settings.max_consecutive_errors
        self._stop_on_short_page = (
            settings.stop_on_short_page if stop_on_short_page is None else stop_on_short_page
        )
        self._max_pages = max_pages
        self._daily_policy = daily_policy or ConflictPolicy(settings.daily_conflict_policy)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_incremental(self) -> IngestionRunResult:
        """Daily path: insert new rows only, aggregate after pages that added any."""
        result = IngestionRunResult(mode="incremental")
        await self._paginate(
            result,
            policy=self._daily_policy,
            error_limit=self._max_errors,
            aggregate_per_page=True,
        )
        return await self._finish(result)

    async def run_full_sync(self) -> IngestionRunResult:
        """
        Resync path: replace every row, then rebuild the derived tables once.

        A fetch failure stops pagination but the rebuild still runs over the
        pages already committed, so derived rows always match mgnrega_data.
        The run is then reported as ABORT. Database errors propagate and skip
        the rebuild.
        """
        result = IngestionRunResult(mode="full")
        await self._paginate(
            result,
            policy=ConflictPolicy.DO_UPDATE,
            error_limit=1,
            aggregate_per_page=False,
        )
        final_state = result.state
        result.state = RunState.AGGREGATING
        aggregation = await self._guard(result, self._aggregator.full_rebuild)
        result.aggregation_runs += 1
        result.district_rows = aggregation.district_rows
        result.state = final_state
        return await self._finish(result)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _paginate(
        self,
        result: IngestionRunResult,
        *,
        policy: ConflictPolicy,
        error_limit: int,
        aggregate_per_page: bool,
    ) -> None:
        run_log = log.bind(mode=result.mode, policy=policy.value)
        run_log.info(
            "ingestion_start",
            page_size=self._page_size,
            source=self._source.get_metadata(),
        )
        offset = 0
        empty_streak = 0
        error_streak = 0

        while True:
            attempted = result.pages_fetched + result.pages_failed
            if self._max_pages is not None and attempted >= self._max_pages:
                run_log.info("max_pages_reached", max_pages=self._max_pages)
                result.state = RunState.DONE
                break

            result.state = RunState.FETCHING
            page_log = run_log.bind(offset=offset)
            try:
                records = await self._source.fetch_page(offset, self._page_size)
            except FETCH_ERRORS as exc:
                error_streak += 1
                empty_streak = 0
                result.pages_failed += 1
                result.last_error = _describe(exc)
                page_log.warning(
                    "page_fetch_failed",
                    error=result.last_error,
                    consecutive_errors=error_streak,
                )
                if error_streak >= error_limit:
                    result.state = RunState.ABORT
                    run_log.error(
                        "ingestion_aborted",
                        consecutive_errors=error_streak,
                        last_error=result.last_error,
                    )
                    break
                offset += self._page_size
                continue

            error_streak = 0
            result.pages_fetched += 1

            if not records:
                empty_streak += 1
                page_log.info("empty_page", consecutive_empty=empty_streak)
                if empty_streak >= self._max_empty:
                    result.state = RunState.DONE
                    break
                offset += self._page_size
                continue

            empty_streak = 0
            result.records_received += len(records)

            result.state = RunState.INGESTING
            batch = await self._guard(
                result, self._store.ingest, records, on_conflict=policy
            )
            result.rows_inserted += batch.inserted
            result.rows_skipped += batch.skipped
            result.rows_rejected += batch.rejected
            page_log.info(
                "page_ingested",
                records=len(records),
                inserted=batch.inserted,
                skipped=batch.skipped,
            )

            if aggregate_per_page:
                if batch.inserted == 0:
                    result.pages_fast_forwarded += 1
                    page_log.info("page_fast_forwarded")
                else:
                    result.state = RunState.AGGREGATING
                    aggregation = await self._guard(
                        result, self._aggregator.incremental_upsert
                    )
                    result.aggregation_runs += 1
                    result.district_rows += aggregation.district_rows

            if self._stop_on_short_page and len(records) < self._page_size:
                page_log.info("short_page", records=len(records))
                result.state = RunState.DONE
                break

            offset += self._page_size

    async def _guard(self, result: IngestionRunResult, fn: Any, *args: Any, **kwargs: Any) -> Any:
        """Run a blocking database step off the event loop; failures abort the run."""
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as exc:
            result.state = RunState.ABORT
            result.last_error = _describe(exc)
            log.error(
                "ingestion_database_error",
                mode=result.mode,
                error=result.last_error,
                exc_info=True,
            )
            raise

    async def _finish(self, result: IngestionRunResult) -> IngestionRunResult:
        result.duration_ms = int((time.monotonic() - result.started_at) * 1000)
        result.table_counts = await self._guard(result, self._aggregator.count_rows)
        summary_log = log.bind(mode=result.mode)
        emit = summary_log.info if result.succeeded else summary_log.error
        emit("ingestion_summary", **{k: v for k, v in result.summary().items() if k != "mode"})
        return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run(
    mode: RunMode = "incremental",
    *,
    engine: Engine | None = None,
    source: BaseSource | None = None,
    max_pages: int | None = None,
) -> IngestionRunResult:
    """
    Run one ingestion pass end-to-end.

    Args:
        mode:      "incremental" (daily path) or "full" (resync + rebuild).
        engine:    Database engine. Created from settings and disposed
                   afterwards when omitted.
        source:    Upstream source (default: DataGovSource from settings).
                   Closed when the run ends.
        max_pages: Stop after this many page attempts (None = no limit).

    Returns:
        IngestionRunResult with the terminal state and totals.

    Raises:
        ValueError: unknown mode.
        sqlalchemy.exc.SQLAlchemyError: a database step failed.
    """
    if mode not in ("incremental", "full"):
        raise ValueError(f"Unknown ingestion mode: {mode!r}")

    owns_engine = engine is None
    engine = engine or create_db_engine()
    try:
        async with (source or DataGovSource()) as src:
            orchestrator = IngestionOrchestrator(
                src,
                RawRecordStore(engine),
                AggregationEngine(engine),
                max_pages=max_pages,
            )
            if mode == "full":
                return await orchestrator.run_full_sync()
            return await orchestrator.run_incremental()
    finally:
        if owns_engine:
            engine.dispose()
