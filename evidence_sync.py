"""Best-effort evidence refresh from the external source integrations.

Each source is one Edge Function call. Calls run concurrently and fail
independently; once every call has settled the sync timestamp is recorded,
whether or not any source succeeded.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import UTC, datetime
from typing import Any, Callable, NamedTuple, Sequence

from functions_client import fetch_preferred_conditions, invoke_function
from models import SyncState
from sync_state import (
    SyncStateStore,
    cleared,
    is_sync_due,
    record_sync_completion,
)

MAX_TOPICS = 3

LOGGER = logging.getLogger(__name__)

Invoker = Callable[[str, dict[str, Any]], dict[str, Any]]
PreferenceFetcher = Callable[[str], list[str]]
Clock = Callable[[], datetime]


class EvidenceSource(NamedTuple):
    name: str
    function_name: str
    max_results: int
    term_limit: int
    default_query: str


class SyncInfo(NamedTuple):
    last_sync: datetime | None
    needs_sync: bool


DEFAULT_SOURCES: tuple[EvidenceSource, ...] = (
    EvidenceSource("PubMed", "pubmed-integration", 10, 3, "physiotherapy rehabilitation"),
    EvidenceSource("Cochrane", "cochrane-integration", 5, 2, "physiotherapy"),
    EvidenceSource("PEDro", "pedro-integration", 5, 2, "physiotherapy"),
    EvidenceSource("NICE", "guidelines-integration", 5, 2, "physiotherapy rehabilitation"),
)

# Integrations name their result list after what they return.
_RESULT_KEYS = ("results", "articles", "reviews", "studies", "guidelines")


def utc_now() -> datetime:
    return datetime.now(UTC)


def build_query(topics: Sequence[str], source: EvidenceSource) -> str:
    """OR-join the leading topics, capped to keep external queries small."""
    cleaned = [topic.strip() for topic in topics if isinstance(topic, str) and topic.strip()]
    limit = min(MAX_TOPICS, source.term_limit)
    selected = cleaned[:limit]
    return " OR ".join(selected) if selected else source.default_query


def sync_all(
    user_id: str,
    preferred_topics: Sequence[str],
    *,
    store: SyncStateStore,
    invoke: Invoker = invoke_function,
    sources: Sequence[EvidenceSource] = DEFAULT_SOURCES,
    clock: Clock = utc_now,
) -> None:
    """Refresh every source once, then record the attempt.

    Per-source failures are logged and dropped; nothing is retried and
    nothing propagates to the caller.
    """
    topics = list(preferred_topics)[:MAX_TOPICS]
    LOGGER.info(
        "Evidence sync: user=%s topics=%s sources=%s",
        user_id,
        topics,
        [source.name for source in sources],
    )

    if sources:
        with ThreadPoolExecutor(max_workers=len(sources)) as executor:
            futures = [
                executor.submit(_sync_source, source, topics, invoke)
                for source in sources
            ]
            wait(futures)

    state = record_sync_completion(store.load(), clock())
    store.save(state)
    LOGGER.info("Evidence sync attempt recorded at %s", state.last_sync.isoformat())


def sync_evidence_on_login(
    user_id: str,
    *,
    store: SyncStateStore,
    invoke: Invoker = invoke_function,
    fetch_preferences: PreferenceFetcher = fetch_preferred_conditions,
    sources: Sequence[EvidenceSource] = DEFAULT_SOURCES,
    clock: Clock = utc_now,
) -> bool:
    """Run a sync if one is due. Returns True when a sync was attempted."""
    if not is_sync_due(store.load(), clock()):
        LOGGER.info("Evidence sync not needed for user=%s, last sync was recent", user_id)
        return False

    try:
        preferences = fetch_preferences(user_id)
    except Exception as exc:  # preferences only narrow the query
        LOGGER.warning("Could not load preferences for user=%s, using defaults: %s", user_id, exc)
        preferences = []

    try:
        sync_all(
            user_id,
            preferences,
            store=store,
            invoke=invoke,
            sources=sources,
            clock=clock,
        )
    except Exception as exc:  # login must not fail on a background refresh
        LOGGER.warning("Evidence sync for user=%s did not complete: %s", user_id, exc)
    return True


def force_sync(
    user_id: str,
    *,
    store: SyncStateStore,
    invoke: Invoker = invoke_function,
    fetch_preferences: PreferenceFetcher = fetch_preferred_conditions,
    sources: Sequence[EvidenceSource] = DEFAULT_SOURCES,
    clock: Clock = utc_now,
) -> bool:
    """Forget the last sync and run one now."""
    store.save(cleared(store.load()))
    return sync_evidence_on_login(
        user_id,
        store=store,
        invoke=invoke,
        fetch_preferences=fetch_preferences,
        sources=sources,
        clock=clock,
    )


def get_last_sync_info(store: SyncStateStore, now: datetime | None = None) -> SyncInfo:
    state: SyncState = store.load()
    return SyncInfo(last_sync=state.last_sync, needs_sync=is_sync_due(state, now or utc_now()))


def _sync_source(source: EvidenceSource, topics: Sequence[str], invoke: Invoker) -> None:
    query = build_query(topics, source)
    body = {"searchTerms": query, "maxResults": source.max_results, "autoSync": True}
    LOGGER.info("Syncing %s evidence: query=%r max_results=%s", source.name, query, source.max_results)

    try:
        data = invoke(source.function_name, body)
    except Exception as exc:  # isolate per-source failures
        LOGGER.warning("%s sync failed: %s", source.name, exc)
        return

    LOGGER.info("%s sync: %s new items found", source.name, _result_count(data))


def _result_count(data: Any) -> int:
    if not isinstance(data, dict):
        return 0
    for key in _RESULT_KEYS:
        value = data.get(key)
        if isinstance(value, list):
            return len(value)
    return 0
