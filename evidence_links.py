"""External link resolution for evidence items.

Handles DOI codes, full DOI URLs, Cochrane reviews, PubMed IDs, and guideline
URLs. Resolution is an ordered table of rules; the first rule that yields a
URL wins. Everything here is pure: no I/O, and the same record always maps to
the same URL.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, NamedTuple
from urllib.parse import quote, urlsplit

from identifiers import normalize_doi, normalize_pmid, to_doi_url
from models import Evidence

PLACEHOLDER_URL = "#"

NICE_SEARCH_URL = "https://www.nice.org.uk/search"
NICE_MARKER = "nice"
NICE_QUERY_QUALIFIER = "guidance"

COCHRANE_SEARCH_URL = "https://www.cochranelibrary.com/search"
COCHRANE_HOST = "cochranelibrary.com"
# Registrant code shared by every Cochrane Database of Systematic Reviews DOI.
COCHRANE_DOI_CODE = "14651858"

PUBMED_BASE_URL = "https://pubmed.ncbi.nlm.nih.gov"

_NICE_GUIDANCE_RE = re.compile(r"nice\.org\.uk/guidance/[a-z]{1,3}\d+", re.IGNORECASE)
_NICE_SEARCH_RE = re.compile(r"nice\.org\.uk/search", re.IGNORECASE)

STOP_WORDS: frozenset[str] = frozenset({
    "guideline",
    "guidelines",
    "nice",
    "clinical",
    "practice",
    "recommendation",
    "recommendations",
    "evidence",
    "rehabilitation",
    "physiotherapy",
})
_STOP_WORDS_RE = re.compile(r"\b(?:" + "|".join(sorted(STOP_WORDS)) + r")\b", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class _LinkContext:
    """Values derived once per record and shared by every rule."""

    record: Evidence
    override: str
    override_kind: str  # "", "verbatim", "nice_guidance", "deferred"
    doi_raw: str
    doi: str
    journal: str


class LinkRule(NamedTuple):
    name: str
    build: Callable[[_LinkContext], str | None]


def get_external_evidence_link(record: Evidence | None) -> str | None:
    """Return the single external URL for an evidence record, or None."""
    if record is None:
        return None

    context = _build_context(record)
    for rule in LINK_RULES:
        url = rule.build(context)
        if url:
            return url
    return None


def matching_rule(record: Evidence) -> str | None:
    """Return the name of the rule that resolves ``record`` (for diagnostics)."""
    context = _build_context(record)
    for rule in LINK_RULES:
        if rule.build(context):
            return rule.name
    return None


# ---------------------------------------------------------------------------
# NICE helpers
# ---------------------------------------------------------------------------

def is_nice_guidance_url(url: str | None) -> bool:
    """True if ``url`` points at one specific NICE guidance page (e.g. /guidance/ng59)."""
    if not url:
        return False
    try:
        parts = urlsplit(url)
        target = f"{parts.hostname or ''}{parts.path}"
    except ValueError:
        target = url
    return bool(_NICE_GUIDANCE_RE.search(target))


def is_nice_search_url(url: str | None) -> bool:
    return bool(url) and bool(_NICE_SEARCH_RE.search(url))


def is_nice_guideline(record: Evidence) -> bool:
    """True if the journal, title or any tag names NICE."""
    fields = [record.journal or "", record.title or "", *record.tags]
    return any(NICE_MARKER in value.lower() for value in fields)


def strip_stop_words(text: str | None) -> str:
    """Drop generic guideline vocabulary and collapse whitespace."""
    cleaned = _STOP_WORDS_RE.sub("", text or "")
    return _WHITESPACE_RE.sub(" ", cleaned).strip()


def primary_tag(record: Evidence) -> str | None:
    """First tag that is not itself a stop word."""
    for tag in record.tags:
        value = tag.strip()
        if value and value.lower() not in STOP_WORDS:
            return value
    return None


def nice_search_url(record: Evidence) -> str:
    """Build a NICE site search for the record's title and primary tag.

    Stored guidance URLs are frequently mapped to the wrong guideline, so a
    search is always produced instead of a direct guidance page.
    """
    parts: list[str] = []
    title = strip_stop_words(record.title)
    if title:
        parts.append(f'"{title}"')
    tag = primary_tag(record)
    if tag:
        parts.append(tag)
    parts.append(NICE_QUERY_QUALIFIER)
    return f"{NICE_SEARCH_URL}?q={encode_component(' '.join(parts))}"


def encode_component(value: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(value, safe="!~*'()")


# ---------------------------------------------------------------------------
# Rules, in precedence order
# ---------------------------------------------------------------------------

def _build_context(record: Evidence) -> _LinkContext:
    override = (record.source_url or "").strip()
    if not override or override == PLACEHOLDER_URL:
        override, kind = "", ""
    else:
        kind = _classify_override(override)

    doi_raw = (record.doi or "").strip()
    return _LinkContext(
        record=record,
        override=override,
        override_kind=kind,
        doi_raw=doi_raw,
        doi=normalize_doi(doi_raw),
        journal=(record.journal or "").lower(),
    )


def _classify_override(url: str) -> str:
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        host = ""

    if host.endswith("nice.org.uk"):
        return "nice_guidance" if is_nice_guidance_url(url) else "deferred"
    if host.endswith(COCHRANE_HOST):
        return "deferred"
    return "verbatim"


def _override_rule(ctx: _LinkContext) -> str | None:
    if ctx.override_kind == "nice_guidance":
        return nice_search_url(ctx.record)
    if ctx.override_kind == "verbatim":
        return ctx.override
    return None


def _nice_rule(ctx: _LinkContext) -> str | None:
    if is_nice_guideline(ctx.record):
        return nice_search_url(ctx.record)
    return None


def _doi_url_rule(ctx: _LinkContext) -> str | None:
    if ctx.doi_raw.lower().startswith(("http://", "https://")):
        return to_doi_url(ctx.doi_raw) or None
    return None


def _cochrane_rule(ctx: _LinkContext) -> str | None:
    if COCHRANE_DOI_CODE not in ctx.doi and "cochrane" not in ctx.journal:
        return None
    # Review DOIs in this dataset are often synthetic and may not resolve.
    query = (ctx.record.title or "").strip() or ctx.doi
    if not query:
        return None
    return f"{COCHRANE_SEARCH_URL}?searchText={encode_component(query)}"


def _publisher_rule(ctx: _LinkContext) -> str | None:
    if not ctx.doi:
        return None
    if "bmj" in ctx.journal:
        return f"https://bmjopenquality.bmj.com/content/{ctx.doi.replace('10.1136/', '')}"
    if "physical therapy" in ctx.journal:
        return f"https://academic.oup.com/ptj/article-lookup/doi/{ctx.doi}"
    return None


def _doi_rule(ctx: _LinkContext) -> str | None:
    if ctx.doi.startswith("10."):
        return to_doi_url(ctx.doi)
    return None


def _pmid_rule(ctx: _LinkContext) -> str | None:
    pmid = normalize_pmid(ctx.record.pmid)
    return f"{PUBMED_BASE_URL}/{pmid}" if pmid else None


def _title_search_rule(ctx: _LinkContext) -> str | None:
    title = ctx.record.title
    if not title or not title.strip():
        return None
    return f"{PUBMED_BASE_URL}/?term={encode_component(title)}"


def _deferred_override_rule(ctx: _LinkContext) -> str | None:
    return ctx.override if ctx.override_kind == "deferred" else None


LINK_RULES: tuple[LinkRule, ...] = (
    LinkRule("override", _override_rule),
    LinkRule("nice", _nice_rule),
    LinkRule("doi_url", _doi_url_rule),
    LinkRule("cochrane", _cochrane_rule),
    LinkRule("publisher", _publisher_rule),
    LinkRule("doi", _doi_rule),
    LinkRule("pmid", _pmid_rule),
    LinkRule("title_search", _title_search_rule),
    LinkRule("deferred_override", _deferred_override_rule),
)
