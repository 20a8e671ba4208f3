"""
loaders/aggregates.py — Rebuilds the derived district and state tables.

The derived tables are a pure function of mgnrega_data, so both modes read
the whole raw table, compute KPIs in polars (transforms.kpis) and write the
result back in ONE transaction:

  full_rebuild()        — empty both derived tables, insert everything
  incremental_upsert()  — upsert everything on the natural keys;
                          district created_at is never touched

Both finish with the latest-month pass, which flags exactly one row per
district_code as is_latest_month, and then write the state averages.

Usage:
    from mgnrega_pipeline.loaders.aggregates import AggregationEngine

    aggregator = AggregationEngine(engine)
    result = aggregator.incremental_upsert()
    print(result.district_rows, result.latest_rows)
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal

import polars as pl
import structlog
from sqlalchemy import Connection, Engine, func, select, update

from mgnrega_pipeline.transforms.kpis import compute_district_kpis, compute_state_averages
from mgnrega_pipeline.transforms.normalize import RAW_FRAME_SCHEMA
from mgnrega_shared.db import truncate_tables, upsert_insert
from mgnrega_shared.schema import (
    AVERAGE_COLUMNS,
    KPI_COLUMNS,
    NATURAL_KEY,
    STATE_KEY,
    district_performance,
    raw_data,
    state_averages,
)
from mgnrega_shared.time_utils import fiscal_month_order

log = structlog.get_logger(__name__)

AggregationMode = Literal["full", "incremental"]


@dataclass
class AggregationResult:
    """Summary of one aggregation pass."""

    mode: AggregationMode
    district_rows: int = 0
    state_rows: int = 0
    latest_rows: int = 0
    duration_ms: int = 0
    started_at: float = field(default_factory=time.monotonic, repr=False)

    def finish(self) -> "AggregationResult":
        self.duration_ms = int((time.monotonic() - self.started_at) * 1000)
        return self


class AggregationEngine:
    """Derives district_monthly_performance and state_monthly_averages."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def full_rebuild(self) -> AggregationResult:
        """Recompute both derived tables from scratch."""
        result = AggregationResult(mode="full")
        agg_log = log.bind(mode=result.mode)
        agg_log.info("aggregation_started")

        try:
            with self._engine.begin() as conn:
                truncate_tables(conn, district_performance, state_averages)
                district_df = compute_district_kpis(self._read_raw(conn))
                self._insert(conn, district_performance, district_df.to_dicts())
                result.latest_rows = self._mark_latest_months(conn)
                state_df = compute_state_averages(district_df)
                self._insert(conn, state_averages, state_df.to_dicts())
        except Exception as exc:
            agg_log.error("aggregation_failed", error=str(exc))
            raise

        result.district_rows = len(district_df)
        result.state_rows = len(state_df)
        return self._log_done(result)

    def incremental_upsert(self) -> AggregationResult:
        """Bring both derived tables in line with mgnrega_data without emptying them."""
        result = AggregationResult(mode="incremental")
        agg_log = log.bind(mode=result.mode)
        agg_log.info("aggregation_started")

        try:
            with self._engine.begin() as conn:
                district_df = compute_district_kpis(self._read_raw(conn))
                self._upsert(
                    conn,
                    district_performance,
                    district_df.to_dicts(),
                    key=NATURAL_KEY,
                    replaced=("state_name", "district_name", *KPI_COLUMNS),
                )
                result.latest_rows = self._mark_latest_months(conn)
                state_df = compute_state_averages(district_df)
                self._upsert(
                    conn,
                    state_averages,
                    state_df.to_dicts(),
                    key=STATE_KEY,
                    replaced=("state_name", *AVERAGE_COLUMNS),
                )
        except Exception as exc:
            agg_log.error("aggregation_failed", error=str(exc))
            raise

        result.district_rows = len(district_df)
        result.state_rows = len(state_df)
        return self._log_done(result)

    def count_rows(self) -> dict[str, int]:
        """Row counts of the raw and derived tables, keyed by table name."""
        counts: dict[str, int] = {}
        with self._engine.connect() as conn:
            for table in (raw_data, district_performance, state_averages):
                counts[table.name] = conn.execute(
                    select(func.count()).select_from(table)
                ).scalar_one()
        return counts

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _read_raw(conn: Connection) -> pl.DataFrame:
        columns = [raw_data.c[name] for name in RAW_FRAME_SCHEMA]
        rows = conn.execute(select(*columns)).mappings().all()
        return pl.DataFrame([dict(r) for r in rows], schema=RAW_FRAME_SCHEMA)

    @staticmethod
    def _insert(conn: Connection, table: Any, rows: list[dict[str, Any]]) -> None:
        if rows:
            conn.execute(table.insert(), rows)

    @staticmethod
    def _upsert(
        conn: Connection,
        table: Any,
        rows: list[dict[str, Any]],
        *,
        key: tuple[str, ...],
        replaced: tuple[str, ...],
    ) -> None:
        if not rows:
            return
        stmt = upsert_insert(conn, table)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={
                **{c: stmt.excluded[c] for c in replaced},
                "updated_at": func.now(),
            },
        )
        conn.execute(stmt, rows)

    @staticmethod
    def _mark_latest_months(conn: Connection) -> int:
        """Flag one row per district_code: newest created_at, then newest fiscal period."""
        t = district_performance
        ranked = select(
            t.c.id,
            func.row_number()
            .over(
                partition_by=t.c.district_code,
                order_by=(
                    t.c.created_at.desc(),
                    t.c.fin_year.desc(),
                    fiscal_month_order(t.c.month).desc(),
                    t.c.id.desc(),
                ),
            )
            .label("rn"),
        ).subquery()

        conn.execute(update(t).values(is_latest_month=False))
        flagged = conn.execute(
            update(t)
            .where(t.c.id.in_(select(ranked.c.id).where(ranked.c.rn == 1)))
            .values(is_latest_month=True)
        )
        return flagged.rowcount

    @staticmethod
    def _log_done(result: AggregationResult) -> AggregationResult:
        result.finish()
        log.info(
            "aggregation_complete",
            mode=result.mode,
            district_rows=result.district_rows,
            state_rows=result.state_rows,
            latest_rows=result.latest_rows,
            duration_ms=result.duration_ms,
        )
        return result
