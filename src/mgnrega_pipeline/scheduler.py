"""
scheduler.py — Long-running daemon that triggers the daily ingestion.

The daemon sleeps until the next schedule_hour:schedule_minute in
schedule_timezone (03:00 Asia/Kolkata by default), runs one ingestion in a
child process (``python -m mgnrega_pipeline.cli run``), records the
completion time on success and goes back to sleep. A failed run is logged
and the next day's run is scheduled as usual.

    IDLE(next) ──timer──→ RUNNING ──child exits──→ IDLE(next')

On startup, if the last successful run is older than catch_up_after_hours,
one run is made immediately, before the first timer is armed. With no
recorded run at all, the daemon just waits for the schedule.

Runs never overlap: the next timer is armed only after the child exits.
SIGTERM/SIGINT cancel the pending timer; a run already in flight finishes
first. Any uncaught exception in the daemon itself is fatal (exit 1).

Usage:
    mgnrega-pipeline daemon
    python -m mgnrega_pipeline.scheduler
"""

from __future__ import annotations

import asyncio
import enum
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from mgnrega_shared.config import settings
from mgnrega_pipeline.utils.logging import configure_logging, get_logger
from mgnrega_pipeline.utils.run_state import RunStateStore

log = get_logger(__name__)

Runner = Callable[[], Awaitable[int]]
Clock = Callable[[], datetime]


class SchedulerState(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"


async def run_ingestion_subprocess() -> int:
    """Run one incremental ingestion in a child interpreter and return its exit code."""
    process = await asyncio.create_subprocess_exec(
        sys.executable, "-m", "mgnrega_pipeline.cli", "run"
    )
    return await process.wait()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestionScheduler:
    """Daily trigger with catch-up on restart."""

    def __init__(
        self,
        *,
        runner: Runner | None = None,
        state_store: RunStateStore | None = None,
        clock: Clock | None = None,
        hour: int | None = None,
        minute: int | None = None,
        tz: str | None = None,
        catch_up_after_hours: float | None = None,
    ) -> None:
        self._runner = runner or run_ingestion_subprocess
        self._state_store = state_store or RunStateStore(settings.last_run_path)
        self._clock = clock or _utcnow
        self._at = time(
            settings.schedule_hour if hour is None else hour,
            settings.schedule_minute if minute is None else minute,
        )
        self._tz = ZoneInfo(tz or settings.schedule_timezone)
        self._catch_up_after = timedelta(
            hours=catch_up_after_hours or settings.catch_up_after_hours
        )

        self.state = SchedulerState.IDLE
        self.next_run: datetime | None = None
        self._stopping = False
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Schedule arithmetic
    # ------------------------------------------------------------------

    def next_run_time(self, now: datetime | None = None) -> datetime:
        """Next occurrence of the daily run time strictly after *now*."""
        local_now = (now or self._clock()).astimezone(self._tz)
        candidate = datetime.combine(local_now.date(), self._at, tzinfo=self._tz)
        if candidate <= local_now:
            candidate = datetime.combine(
                local_now.date() + timedelta(days=1), self._at, tzinfo=self._tz
            )
        return candidate

    def should_catch_up(self, now: datetime | None = None) -> bool:
        """True when a run was recorded and it is older than the catch-up window."""
        last_run = self._state_store.load_last_run()
        if last_run is None:
            log.info("no_previous_run_recorded", state_file=str(self._state_store.path))
            return False

        age = (now or self._clock()) - last_run
        hours = round(age.total_seconds() / 3600, 1)
        if age > self._catch_up_after:
            log.info("catch_up_needed", last_run=last_run.isoformat(), hours_since=hours)
            return True
        log.info("last_run_recent", last_run=last_run.isoformat(), hours_since=hours)
        return False

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run_once(self) -> bool:
        """Run one ingestion; return True on success. Never raises."""
        self.state = SchedulerState.RUNNING
        log.info("ingestion_run_started")
        try:
            exit_code = await self._runner()
        except Exception as exc:
            log.error("ingestion_spawn_failed", error=str(exc))
            return False
        finally:
            self.state = SchedulerState.IDLE

        if exit_code != 0:
            log.error("ingestion_run_failed", exit_code=exit_code)
            return False

        try:
            when = self._state_store.save_last_run(self._clock())
        except OSError as exc:
            log.error("run_state_save_failed", error=str(exc))
            return True
        log.info("ingestion_run_succeeded", last_run=when.isoformat())
        return True

    async def serve(self) -> None:
        """Catch up if needed, then run daily until stop() is called."""
        log.info(
            "scheduler_started",
            run_at=self._at.strftime("%H:%M"),
            timezone=str(self._tz),
        )
        if self.should_catch_up(self._clock()):
            await self.run_once()

        while not self._stopping:
            self.next_run = self.next_run_time(self._clock())
            delay = max((self.next_run - self._clock()).total_seconds(), 0.0)
            log.info(
                "next_run_scheduled",
                at=self.next_run.isoformat(),
                in_hours=round(delay / 3600, 2),
            )
            if await self._wait(delay):
                break
            await self.run_once()

        log.info("scheduler_stopped")

    def stop(self) -> None:
        """Cancel the pending timer; a run in flight completes first."""
        self._stopping = True
        self._stop_event.set()

    async def _wait(self, delay: float) -> bool:
        """Sleep *delay* seconds; return True if stop() interrupted the sleep."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True


# ---------------------------------------------------------------------------
# Process entry point
# ---------------------------------------------------------------------------


def _fatal_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    log.critical(
        "scheduler_fatal",
        message=context.get("message"),
        error=str(exc) if exc else None,
    )
    raise SystemExit(1)


async def _serve_until_signalled(scheduler: IngestionScheduler) -> None:
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_fatal_exception_handler)

    def on_signal(sig: signal.Signals) -> None:
        log.info("shutdown_signal_received", signal=sig.name)
        scheduler.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, on_signal, sig)

    await scheduler.serve()


def main(scheduler: IngestionScheduler | None = None) -> None:
    """Start the daemon. Returns after a shutdown signal; exits 1 on a fatal error."""
    configure_logging(log_file=settings.log_path)
    try:
        asyncio.run(_serve_until_signalled(scheduler or IngestionScheduler()))
    except Exception as exc:
        log.critical("scheduler_fatal", error=str(exc), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
