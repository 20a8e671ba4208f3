"""
tests/test_run_state.py — Tests for the lastRun state file.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from mgnrega_pipeline.utils.run_state import RunStateStore


def test_missing_file_returns_none(tmp_path):
    assert RunStateStore(tmp_path / "last-run.json").load_last_run() is None


def test_save_then_load(tmp_path):
    store = RunStateStore(tmp_path / "state" / "last-run.json")
    when = datetime(2024, 5, 1, 21, 30, 4, tzinfo=timezone.utc)
    store.save_last_run(when)
    assert store.load_last_run() == when


def test_file_format(tmp_path):
    path = tmp_path / "last-run.json"
    RunStateStore(path).save_last_run(
        datetime(2024, 5, 2, 3, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
    )
    assert json.loads(path.read_text()) == {"lastRun": "2024-05-01T21:30:00+00:00"}


def test_default_is_now(tmp_path):
    store = RunStateStore(tmp_path / "last-run.json")
    before = datetime.now(timezone.utc)
    saved = store.save_last_run()
    assert before <= saved <= datetime.now(timezone.utc)


def test_naive_timestamp_read_as_utc(tmp_path):
    path = tmp_path / "last-run.json"
    path.write_text(json.dumps({"lastRun": "2024-05-01T21:30:00"}))
    loaded = RunStateStore(path).load_last_run()
    assert loaded == datetime(2024, 5, 1, 21, 30, tzinfo=timezone.utc)


def test_accepts_z_suffix(tmp_path):
    path = tmp_path / "last-run.json"
    path.write_text(json.dumps({"lastRun": "2024-05-01T21:30:00.512Z"}))
    loaded = RunStateStore(path).load_last_run()
    assert loaded == datetime(2024, 5, 1, 21, 30, 0, 512000, tzinfo=timezone.utc)


def test_corrupt_file_returns_none(tmp_path):
    path = tmp_path / "last-run.json"
    path.write_text("{not json")
    assert RunStateStore(path).load_last_run() is None


def test_missing_key_returns_none(tmp_path):
    path = tmp_path / "last-run.json"
    path.write_text(json.dumps({"last": "2024-05-01T21:30:00Z"}))
    assert RunStateStore(path).load_last_run() is None
