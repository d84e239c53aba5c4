"""Local CSV cache of ingested evidence with resolved external links."""

from __future__ import annotations

import csv
import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path

from evidence_links import get_external_evidence_link
from identifiers import normalize_doi
from models import Evidence, evidence_from_row

EVIDENCE_CSV_PATH = os.getenv("EVIDENCE_CSV_PATH", "evidence_cache.csv")

LOGGER = logging.getLogger(__name__)

CSV_COLUMNS = [
    "evidence_id",
    "title",
    "journal",
    "doi",
    "pmid",
    "tags",              # JSON list
    "authors",           # JSON list
    "abstract",
    "study_type",
    "publication_date",
    "source_url",        # stored override (grade_assessment.url)
    "external_url",      # resolved link at write time
    "created_at",
]


def evidence_already_exists(record: Evidence) -> bool:
    """Return True if the cache holds a row with the same PMID or DOI."""
    path = Path(EVIDENCE_CSV_PATH)
    if not path.exists():
        return False

    pmid = (record.pmid or "").strip()
    doi = normalize_doi(record.doi).lower()
    if not pmid and not doi:
        return False

    with path.open(newline="", encoding="utf-8") as fh:
        for row in csv.DictReader(fh):
            if pmid and row.get("pmid") == pmid:
                return True
            if doi and normalize_doi(row.get("doi")).lower() == doi:
                return True
    return False


def write_evidence_entry(record: Evidence) -> str | None:
    """Append a row for ``record`` and return the external link written with it."""
    path = Path(EVIDENCE_CSV_PATH)
    write_header = not path.exists() or path.stat().st_size == 0
    external_url = get_external_evidence_link(record)

    row = {
        "evidence_id": record.evidence_id or "",
        "title": record.title or "",
        "journal": record.journal or "",
        "doi": normalize_doi(record.doi),
        "pmid": record.pmid or "",
        "tags": json.dumps(list(record.tags)),
        "authors": json.dumps(list(record.authors)),
        "abstract": _truncate(record.abstract or "", max_len=2000),
        "study_type": record.study_type or "",
        "publication_date": record.publication_date or "",
        "source_url": record.source_url or "",
        "external_url": external_url or "",
        "created_at": datetime.now(UTC).isoformat(),
    }

    with path.open("a", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_COLUMNS)
        if write_header:
            writer.writeheader()
        writer.writerow(row)

    LOGGER.info("Wrote CSV row for pmid=%s doi=%s to %s", record.pmid, row["doi"], EVIDENCE_CSV_PATH)
    return external_url


def read_evidence_entries() -> list[Evidence]:
    """Load every cached row back into Evidence records."""
    path = Path(EVIDENCE_CSV_PATH)
    if not path.exists():
        return []

    with path.open(newline="", encoding="utf-8") as fh:
        return [evidence_from_row(row) for row in csv.DictReader(fh)]


def _truncate(value: str, max_len: int) -> str:
    value = value.strip()
    if len(value) > max_len:
        return value[: max_len - 1] + "…"
    return value
