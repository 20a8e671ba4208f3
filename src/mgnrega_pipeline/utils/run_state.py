"""
utils/run_state.py — Last-successful-run marker for the scheduler daemon.

The daemon records the completion time of every successful ingestion in a
small JSON file so a restarted daemon can tell whether it missed a run:

    {"lastRun": "2024-05-01T21:30:04.512000+00:00"}

Default file: ``<settings.state_dir>/last-run.json``
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import structlog
from filelock import FileLock

log = structlog.get_logger(__name__)


class RunStateStore:
    """Reads and writes the lastRun marker under a file lock."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = FileLock(str(self._path) + ".lock")

    @property
    def path(self) -> Path:
        return self._path

    def load_last_run(self) -> datetime | None:
        """Return the last successful run as an aware datetime, or None."""
        if not self._path.exists():
            return None
        try:
            with self._lock:
                data = json.loads(self._path.read_text())
            when = datetime.fromisoformat(data["lastRun"])
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
            log.warning("run_state_unreadable", path=str(self._path), error=str(exc))
            return None

        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when

    def save_last_run(self, when: datetime | None = None) -> datetime:
        """Persist *when* (default: now, UTC) as the last successful run."""
        when = when or datetime.now(timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        when = when.astimezone(timezone.utc)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._path.write_text(json.dumps({"lastRun": when.isoformat()}, indent=2))
        log.debug("run_state_saved", path=str(self._path), last_run=when.isoformat())
        return when
