"""Shared typed models for evidence links and sync."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Evidence:
    """Bibliographic record for one evidence row (article, review, guideline)."""

    title: str | None = None
    journal: str | None = None
    doi: str | None = None
    pmid: str | None = None
    tags: tuple[str, ...] = ()
    # grade_assessment.url on the stored row; "#" means unset.
    source_url: str | None = None
    evidence_id: str | None = None
    abstract: str | None = None
    study_type: str | None = None
    publication_date: str | None = None
    authors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SyncState:
    """Persisted evidence sync bookkeeping. None means never synced."""

    last_sync: datetime | None = None


def evidence_from_row(row: dict[str, Any]) -> Evidence:
    """Build an Evidence record from a backend or CSV row.

    ``grade_assessment``, ``tags`` and ``authors`` may arrive either decoded
    (dict / list) or as JSON text, depending on where the row came from.
    """
    grade = _as_json(row.get("grade_assessment"))
    source_url = row.get("source_url")
    if isinstance(grade, dict) and source_url is None:
        source_url = grade.get("url")

    return Evidence(
        title=_as_str(row.get("title")),
        journal=_as_str(row.get("journal")),
        doi=_as_str(row.get("doi")),
        pmid=_as_str(row.get("pmid")),
        tags=_as_str_tuple(row.get("tags")),
        source_url=_as_str(source_url),
        evidence_id=_as_str(row.get("id") or row.get("evidence_id")),
        abstract=_as_str(row.get("abstract")),
        study_type=_as_str(row.get("study_type")),
        publication_date=_as_str(row.get("publication_date")),
        authors=_as_str_tuple(row.get("authors")),
    )


def _as_json(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return None


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    decoded = _as_json(value)
    if not isinstance(decoded, list):
        return ()
    return tuple(item for item in decoded if isinstance(item, str))


def _as_str(value: Any) -> str | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value if isinstance(value, str) and value.strip() else None
