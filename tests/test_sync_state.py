from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from models import SyncState
from sync_state import (
    JsonFileSyncStore,
    MemorySyncStore,
    cleared,
    is_sync_due,
    record_sync_completion,
)

_NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)


def test_never_synced_is_due() -> None:
    assert is_sync_due(SyncState(), _NOW) is True


def test_not_due_right_after_completion() -> None:
    state = record_sync_completion(SyncState(), _NOW)
    assert state.last_sync == _NOW
    assert is_sync_due(state, _NOW) is False


def test_due_again_after_interval() -> None:
    state = record_sync_completion(SyncState(), _NOW)
    assert is_sync_due(state, _NOW + timedelta(hours=23, minutes=59)) is False
    assert is_sync_due(state, _NOW + timedelta(hours=24)) is True
    assert is_sync_due(state, _NOW + timedelta(days=3)) is True


def test_naive_clock_is_treated_as_utc() -> None:
    state = SyncState(last_sync=datetime(2026, 1, 1, tzinfo=UTC))
    assert is_sync_due(state, datetime(2026, 1, 3)) is True
    assert is_sync_due(state, datetime(2026, 1, 1, 12)) is False


def test_cleared_state_is_due() -> None:
    state = cleared(SyncState(last_sync=_NOW))
    assert state.last_sync is None
    assert is_sync_due(state, _NOW) is True


def test_memory_store_counts_saves() -> None:
    store = MemorySyncStore()
    store.save(SyncState(last_sync=_NOW))
    assert store.load().last_sync == _NOW
    assert store.saves == 1


def test_json_store_missing_file_means_never_synced(tmp_path: Path) -> None:
    store = JsonFileSyncStore(tmp_path / "state.json")
    assert store.load() == SyncState()


def test_json_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileSyncStore(tmp_path / "state.json")
    store.save(SyncState(last_sync=_NOW))
    assert JsonFileSyncStore(tmp_path / "state.json").load().last_sync == _NOW


def test_json_store_reads_browser_style_timestamp(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text('{"evidence_last_sync": "2026-03-01T08:00:00.000Z"}', encoding="utf-8")
    assert JsonFileSyncStore(path).load().last_sync == _NOW


def test_json_store_corrupt_file_means_never_synced(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonFileSyncStore(path).load() == SyncState()


def test_json_store_saves_cleared_state(tmp_path: Path) -> None:
    store = JsonFileSyncStore(tmp_path / "state.json")
    store.save(SyncState(last_sync=_NOW))
    store.save(cleared(store.load()))
    assert store.load().last_sync is None
