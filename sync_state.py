"""Sync gate: decides when an evidence refresh is due, and where that is stored."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from models import SyncState

SYNC_INTERVAL_HOURS = 24
SYNC_STATE_PATH = os.getenv("EVIDENCE_SYNC_STATE_PATH", ".evidence_sync_state.json")
LAST_SYNC_KEY = "evidence_last_sync"

LOGGER = logging.getLogger(__name__)


def is_sync_due(state: SyncState, now: datetime) -> bool:
    """True if never synced, or at least SYNC_INTERVAL_HOURS have passed."""
    if state.last_sync is None:
        return True
    return _as_utc(now) - _as_utc(state.last_sync) >= timedelta(hours=SYNC_INTERVAL_HOURS)


def record_sync_completion(state: SyncState, now: datetime) -> SyncState:
    """Mark a sync attempt as finished, whatever the per-source outcome was."""
    return replace(state, last_sync=now)


def cleared(state: SyncState) -> SyncState:
    return replace(state, last_sync=None)


class SyncStateStore(Protocol):
    def load(self) -> SyncState: ...

    def save(self, state: SyncState) -> None: ...


class MemorySyncStore:
    """Keeps the sync state in process memory."""

    def __init__(self, state: SyncState | None = None) -> None:
        self.state = state or SyncState()
        self.saves = 0

    def load(self) -> SyncState:
        return self.state

    def save(self, state: SyncState) -> None:
        self.state = state
        self.saves += 1


class JsonFileSyncStore:
    """Persists the last sync timestamp as a small JSON document.

    A missing file means "never synced". A corrupt file is treated the same
    way so that the next login simply triggers a fresh sync.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or SYNC_STATE_PATH)

    def load(self) -> SyncState:
        if not self.path.exists():
            return SyncState()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            raw = data.get(LAST_SYNC_KEY) if isinstance(data, dict) else None
            return SyncState(last_sync=_parse_timestamp(raw))
        except (OSError, ValueError) as exc:
            LOGGER.warning("Ignoring unreadable sync state at %s: %s", self.path, exc)
            return SyncState()

    def save(self, state: SyncState) -> None:
        payload = {
            LAST_SYNC_KEY: state.last_sync.isoformat() if state.last_sync else None,
        }
        self.path.write_text(json.dumps(payload), encoding="utf-8")
        LOGGER.debug("Saved sync state to %s: %s", self.path, payload)


def _parse_timestamp(raw: object) -> datetime | None:
    if not isinstance(raw, str) or not raw:
        return None
    return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
