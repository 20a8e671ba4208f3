"""
loaders/raw_store.py — Idempotent batch writer for the mgnrega_data table.

Every page fetched from data.gov.in funnels through RawRecordStore.ingest().
The store:
  - Normalizes the page (numbers, month names, in-batch duplicates)
  - Writes it with ONE multi-row INSERT … ON CONFLICT, all values bound
  - Runs the statement in its own transaction: commit on success,
    rollback and re-raise on any error (no partial pages)
  - Returns an IngestResult with received / inserted / skipped counts

Conflict policy:
  ConflictPolicy.DO_NOTHING — first-seen data wins; duplicates are skipped
                              and counted (daily incremental path)
  ConflictPolicy.DO_UPDATE  — every measure column is replaced and
                              updated_at bumped (full resync path)

Usage:
    from mgnrega_pipeline.loaders.raw_store import ConflictPolicy, RawRecordStore

    store = RawRecordStore(engine)
    result = store.ingest(records, on_conflict=ConflictPolicy.DO_NOTHING)
    print(result.inserted, result.skipped)
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import Engine, func

from mgnrega_pipeline.transforms.normalize import normalize_batch
from mgnrega_shared.db import upsert_insert
from mgnrega_shared.schema import MEASURE_COLUMNS, NATURAL_KEY, raw_data

log = structlog.get_logger(__name__)

# Columns replaced on conflict in DO_UPDATE mode
_REPLACED_COLUMNS: tuple[str, ...] = ("state_name", "district_name", *MEASURE_COLUMNS, "remarks")


class ConflictPolicy(str, enum.Enum):
    DO_NOTHING = "do_nothing"
    DO_UPDATE = "do_update"


@dataclass
class IngestResult:
    """Summary of one RawRecordStore.ingest() call."""

    policy: ConflictPolicy
    received: int = 0
    rejected: int = 0
    inserted: int = 0
    duration_ms: int = 0

    @property
    def skipped(self) -> int:
        """Records that did not produce a new or replaced row."""
        return max(self.received - self.rejected - self.inserted, 0)

    @property
    def has_new_rows(self) -> bool:
        return self.inserted > 0


class RawRecordStore:
    """Writes upstream records into mgnrega_data, one transaction per batch."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def ingest(
        self,
        records: list[dict[str, Any]],
        *,
        on_conflict: ConflictPolicy = ConflictPolicy.DO_NOTHING,
    ) -> IngestResult:
        """
        Persist one batch of upstream records.

        Calling this twice with the same batch converges to the same stored
        state.

        Args:
            records:     Records exactly as returned by the upstream API.
            on_conflict: What to do when a natural key already exists.

        Returns:
            IngestResult. For DO_UPDATE, inserted counts inserted-or-replaced
            rows as reported by the driver.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: after the batch was rolled back.
        """
        result = IngestResult(policy=on_conflict)
        if not records:
            log.warning("ingest_empty_batch")
            return result

        t0 = time.monotonic()
        result.received = len(records)

        frame, result.rejected = normalize_batch(records)
        rows = frame.to_dicts()

        store_log = log.bind(policy=on_conflict.value, batch_size=len(records))
        if not rows:
            store_log.warning("ingest_no_valid_rows", rejected=result.rejected)
            return result

        stmt = upsert_insert(self._engine, raw_data).values(rows)
        if on_conflict is ConflictPolicy.DO_NOTHING:
            stmt = stmt.on_conflict_do_nothing(index_elements=list(NATURAL_KEY))
        else:
            stmt = stmt.on_conflict_do_update(
                index_elements=list(NATURAL_KEY),
                set_={
                    **{c: stmt.excluded[c] for c in _REPLACED_COLUMNS},
                    "updated_at": func.now(),
                },
            )

        try:
            with self._engine.begin() as conn:
                outcome = conn.execute(stmt)
        except Exception as exc:
            store_log.error("ingest_rolled_back", error=str(exc))
            raise

        result.inserted = outcome.rowcount
        result.duration_ms = int((time.monotonic() - t0) * 1000)
        store_log.info(
            "batch_ingested",
            rows=len(rows),
            inserted=result.inserted,
            skipped=result.skipped,
            collapsed=len(records) - result.rejected - len(rows),
            duration_ms=result.duration_ms,
        )
        return result
