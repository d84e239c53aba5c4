"""Audit of stored guideline links.

Guideline rows carry an explicit URL in ``grade_assessment.url``. Older
imports mapped several guidelines to the wrong NICE guidance page; this module
finds those rows and proposes a search link in their place.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, NamedTuple

from evidence_links import (
    PLACEHOLDER_URL,
    encode_component,
    is_nice_guidance_url,
    is_nice_guideline,
    is_nice_search_url,
    primary_tag,
    strip_stop_words,
)
from models import Evidence

CKS_SEARCH_URL = "https://cks.nice.org.uk/#?q="
TRIP_SEARCH_URL = "https://www.tripdatabase.com/search?criteria="
EPISTEMONIKOS_SEARCH_URL = "https://www.epistemonikos.org/en/search?q={query}&classification=systematic-review"
WHO_SEARCH_URL = "https://www.who.int/publications/guidelines?keywords="

# Keywords this short only count as whole words ("oa" is not in "load").
SHORT_KEYWORD_LENGTH = 4

# NICE codes known to have been attached to unrelated guidelines, with the
# keywords a row must mention to legitimately point at that code.
CODE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ng226": ("osteoarthritis", "oa"),
    "ng59": ("low back pain", "sciatica", "back pain"),
    "ng236": ("stroke", "cerebrovascular"),
    "ng115": ("copd", "chronic obstructive pulmonary"),
}

_CODE_RE = re.compile(r"/((?:ng|cg|qs)\d+)/?$", re.IGNORECASE)

LOGGER = logging.getLogger(__name__)


class LinkRepair(NamedTuple):
    record: Evidence
    code: str
    reason: str
    fallback_url: str


class AuditReport(NamedTuple):
    valid_nice: int
    valid_other: int
    invalid_nice: int
    invalid_other: int
    invalid: list[Evidence]
    repairs: list[LinkRepair]


def has_valid_url(record: Evidence) -> bool:
    """True if the row's stored URL points at a specific, usable page."""
    url = (record.source_url or "").strip()
    if not url or url == PLACEHOLDER_URL:
        return False
    if is_nice_search_url(url):
        return False
    if is_nice_guideline(record):
        return is_nice_guidance_url(url)
    return True


def find_link_mismatches(records: Iterable[Evidence]) -> list[LinkRepair]:
    """Find rows whose NICE code does not match what the row is about."""
    repairs: list[LinkRepair] = []
    for record in records:
        match = _CODE_RE.search((record.source_url or "").strip())
        if not match:
            continue

        code = match.group(1).lower()
        keywords = CODE_KEYWORDS.get(code)
        if not keywords:
            continue

        text = " ".join(
            [record.title or "", record.abstract or "", *record.tags]
        ).lower()
        if any(_mentions(text, keyword) for keyword in keywords):
            continue

        LOGGER.info("Link mismatch: %s for %r", code, (record.title or "")[:50])
        repairs.append(
            LinkRepair(
                record=record,
                code=code,
                reason=f"Content does not match {code.upper()} ({', '.join(keywords)})",
                fallback_url=_fallback_url(record),
            )
        )
    return repairs


def audit_guidelines(records: Iterable[Evidence]) -> AuditReport:
    """Count valid and invalid guideline links and collect proposed repairs."""
    records = list(records)
    counts = {"valid_nice": 0, "valid_other": 0, "invalid_nice": 0, "invalid_other": 0}
    invalid: list[Evidence] = []

    for record in records:
        kind = "nice" if is_nice_guideline(record) else "other"
        if has_valid_url(record):
            counts[f"valid_{kind}"] += 1
        else:
            counts[f"invalid_{kind}"] += 1
            invalid.append(record)

    repairs = find_link_mismatches(records)
    LOGGER.info(
        "Guideline audit: checked=%s invalid=%s repairs=%s",
        len(records),
        len(invalid),
        len(repairs),
    )
    return AuditReport(invalid=invalid, repairs=repairs, **counts)


def _fallback_url(record: Evidence) -> str:
    parts = [strip_stop_words(record.title)]
    tag = primary_tag(record)
    if tag:
        parts.append(tag.lower())
    query = " ".join(part for part in parts if part).strip()
    if query:
        return f"{CKS_SEARCH_URL}{encode_component(query)}"

    journal = (record.journal or "").lower()
    title = record.title or ""
    if "trip" in journal:
        return f"{TRIP_SEARCH_URL}{encode_component(title or 'physiotherapy')}"
    if "epistemonikos" in journal:
        return EPISTEMONIKOS_SEARCH_URL.format(query=encode_component(title or "physiotherapy"))
    if "who" in journal:
        return f"{WHO_SEARCH_URL}{encode_component(title or 'rehabilitation')}"
    return PLACEHOLDER_URL


def _mentions(text: str, keyword: str) -> bool:
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return re.search(rf"\b{re.escape(keyword)}\b", text) is not None
    return keyword in text
