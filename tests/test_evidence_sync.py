"""Tests for the best-effort evidence sync orchestrator."""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock

import pytest

from evidence_sync import (
    DEFAULT_SOURCES,
    EvidenceSource,
    build_query,
    force_sync,
    get_last_sync_info,
    sync_all,
    sync_evidence_on_login,
)
from models import SyncState
from sync_state import MemorySyncStore

_NOW = datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

_SOURCES = (
    EvidenceSource("A", "a-integration", 10, 3, "default a"),
    EvidenceSource("B", "b-integration", 5, 2, "default b"),
    EvidenceSource("C", "c-integration", 5, 2, "default c"),
    EvidenceSource("D", "d-integration", 5, 2, "default d"),
)


def _clock() -> datetime:
    return _NOW


class _RecordingInvoker:
    """Thread-safe fake for the Edge Function invoker."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def __call__(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((name, body))
        if name in self.failing:
            raise RuntimeError(f"{name} unavailable")
        return {"success": True, "articles": [{"title": "x"}]}


def test_build_query_joins_leading_topics() -> None:
    source = EvidenceSource("PubMed", "pubmed-integration", 10, 3, "physiotherapy rehabilitation")
    assert build_query(["knee", "hip", "back", "neck"], source) == "knee OR hip OR back"


def test_build_query_respects_source_term_limit() -> None:
    source = EvidenceSource("Cochrane", "cochrane-integration", 5, 2, "physiotherapy")
    assert build_query(["knee", "hip", "back"], source) == "knee OR hip"


def test_build_query_default_when_no_topics() -> None:
    source = EvidenceSource("Cochrane", "cochrane-integration", 5, 2, "physiotherapy")
    assert build_query([], source) == "physiotherapy"
    assert build_query(["  "], source) == "physiotherapy"


def test_default_sources_cover_all_integrations() -> None:
    assert [s.function_name for s in DEFAULT_SOURCES] == [
        "pubmed-integration",
        "cochrane-integration",
        "pedro-integration",
        "guidelines-integration",
    ]


def test_sync_all_records_completion_once_despite_failures() -> None:
    """Two sources reject, two resolve: completion is still recorded exactly once."""
    store = MemorySyncStore()
    invoke = _RecordingInvoker(failing={"a-integration", "c-integration"})

    sync_all("user-1", ["knee"], store=store, invoke=invoke, sources=_SOURCES, clock=_clock)

    assert store.saves == 1
    assert store.load().last_sync == _NOW
    assert sorted(name for name, _ in invoke.calls) == [
        "a-integration",
        "b-integration",
        "c-integration",
        "d-integration",
    ]


def test_sync_all_records_completion_when_every_source_fails() -> None:
    store = MemorySyncStore()
    invoke = _RecordingInvoker(failing={s.function_name for s in _SOURCES})

    sync_all("user-1", [], store=store, invoke=invoke, sources=_SOURCES, clock=_clock)

    assert store.load().last_sync == _NOW
    assert len(invoke.calls) == 4


def test_sync_all_caps_topics_and_sends_result_limits() -> None:
    store = MemorySyncStore()
    invoke = _RecordingInvoker()

    sync_all(
        "user-1",
        ["knee", "hip", "back", "shoulder"],
        store=store,
        invoke=invoke,
        sources=_SOURCES,
        clock=_clock,
    )

    bodies = dict(invoke.calls)
    assert bodies["a-integration"] == {"searchTerms": "knee OR hip OR back", "maxResults": 10, "autoSync": True}
    assert bodies["b-integration"]["searchTerms"] == "knee OR hip"
    assert bodies["b-integration"]["maxResults"] == 5


def test_sync_all_tolerates_odd_payloads() -> None:
    store = MemorySyncStore()
    invoke = MagicMock(side_effect=[None, {"reviews": "not a list"}, {}, {"guidelines": []}])

    sync_all("user-1", [], store=store, invoke=invoke, sources=_SOURCES, clock=_clock)

    assert invoke.call_count == 4
    assert store.saves == 1


def test_sync_all_runs_sources_concurrently_and_waits_for_all() -> None:
    """A's call can only finish while B's call is also in flight."""
    b_started = threading.Event()
    finished: list[str] = []
    a_saw_b: list[bool] = []

    def invoke(name: str, body: dict[str, Any]) -> dict[str, Any]:
        if name == "a-integration":
            a_saw_b.append(b_started.wait(timeout=5))
        else:
            b_started.set()
        finished.append(name)
        return {}

    class _SnapshotStore(MemorySyncStore):
        def save(self, state: SyncState) -> None:
            self.finished_at_save = sorted(finished)
            super().save(state)

    store = _SnapshotStore()

    sync_all("user-1", [], store=store, invoke=invoke, sources=_SOURCES[:2], clock=_clock)

    assert a_saw_b == [True]
    assert store.finished_at_save == ["a-integration", "b-integration"]
    assert store.saves == 1


def test_sync_on_login_logs_state_save_failure(caplog: pytest.LogCaptureFixture) -> None:
    class _ReadOnlyStore(MemorySyncStore):
        def save(self, state: SyncState) -> None:
            raise OSError("read-only file system")

    invoke = _RecordingInvoker()

    with caplog.at_level("WARNING", logger="evidence_sync"):
        ran = sync_evidence_on_login(
            "user-1",
            store=_ReadOnlyStore(),
            invoke=invoke,
            fetch_preferences=lambda user_id: [],
            sources=_SOURCES,
            clock=_clock,
        )

    assert ran is True
    assert len(invoke.calls) == 4
    assert "read-only file system" in caplog.text


def test_sync_on_login_skips_when_recent() -> None:
    store = MemorySyncStore(SyncState(last_sync=_NOW - timedelta(hours=1)))
    invoke = _RecordingInvoker()
    fetch_preferences = MagicMock(return_value=["knee"])

    ran = sync_evidence_on_login(
        "user-1",
        store=store,
        invoke=invoke,
        fetch_preferences=fetch_preferences,
        sources=_SOURCES,
        clock=_clock,
    )

    assert ran is False
    assert invoke.calls == []
    fetch_preferences.assert_not_called()
    assert store.saves == 0


def test_sync_on_login_runs_when_due_and_uses_preferences() -> None:
    store = MemorySyncStore(SyncState(last_sync=_NOW - timedelta(hours=25)))
    invoke = _RecordingInvoker()

    ran = sync_evidence_on_login(
        "user-1",
        store=store,
        invoke=invoke,
        fetch_preferences=lambda user_id: ["low back pain"],
        sources=_SOURCES,
        clock=_clock,
    )

    assert ran is True
    assert {body["searchTerms"] for _, body in invoke.calls} == {"low back pain"}
    assert store.load().last_sync == _NOW


def test_sync_on_login_falls_back_to_defaults_when_preferences_fail() -> None:
    store = MemorySyncStore()
    invoke = _RecordingInvoker()
    fetch_preferences = MagicMock(side_effect=RuntimeError("backend down"))

    ran = sync_evidence_on_login(
        "user-1",
        store=store,
        invoke=invoke,
        fetch_preferences=fetch_preferences,
        sources=_SOURCES,
        clock=_clock,
    )

    assert ran is True
    bodies = dict(invoke.calls)
    assert bodies["a-integration"]["searchTerms"] == "default a"
    assert store.load().last_sync == _NOW


def test_force_sync_runs_even_when_recent() -> None:
    store = MemorySyncStore(SyncState(last_sync=_NOW - timedelta(minutes=5)))
    invoke = _RecordingInvoker()

    ran = force_sync(
        "user-1",
        store=store,
        invoke=invoke,
        fetch_preferences=lambda user_id: [],
        sources=_SOURCES,
        clock=_clock,
    )

    assert ran is True
    assert len(invoke.calls) == 4
    assert store.load().last_sync == _NOW


@pytest.mark.parametrize("state, expected_due", [
    (SyncState(), True),
    (SyncState(last_sync=_NOW - timedelta(hours=2)), False),
    (SyncState(last_sync=_NOW - timedelta(hours=30)), True),
])
def test_get_last_sync_info(state: SyncState, expected_due: bool) -> None:
    info = get_last_sync_info(MemorySyncStore(state), now=_NOW)
    assert info.last_sync == state.last_sync
    assert info.needs_sync is expected_due
