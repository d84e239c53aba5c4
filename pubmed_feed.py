"""PubMed E-utilities ingestion helpers."""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from typing import Any

import requests

from models import Evidence

# Official NCBI endpoints; esearch returns ids as JSON, efetch returns full
# records only as XML.
EUTILS_BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
REQUEST_TIMEOUT_SECONDS = 20
PHYSIOTHERAPY_FILTER = '"physical therapy"[MeSH Terms] OR "physiotherapy"[All Fields]'
DEFAULT_STUDY_TYPE = "Research Article"

_MONTHS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

LOGGER = logging.getLogger(__name__)


def search_pubmed(
    search_terms: str,
    max_results: int = 20,
    reldate_days: int = 365,
) -> list[Evidence]:
    """Search PubMed for physiotherapy articles and return Evidence records.

    Args:
        search_terms: Free-text query; also used as the records' tags.
        max_results: Maximum number of PubMed ids requested from esearch.
        reldate_days: Only articles published within this many days.
    """
    if not search_terms or not search_terms.strip():
        raise ValueError("search_terms must be a non-empty string")

    term = f"{search_terms} AND {PHYSIOTHERAPY_FILTER}"
    search = _get(
        "esearch.fcgi",
        {
            "db": "pubmed",
            "term": term,
            "retmax": str(max_results),
            "reldate": str(reldate_days),
            "datetype": "pdat",
            "retmode": "json",
        },
    ).json()

    pmids = _parse_id_list(search)
    LOGGER.info("PubMed search: terms=%r found=%s", search_terms, len(pmids))
    if not pmids:
        return []

    xml_text = _get(
        "efetch.fcgi",
        {"db": "pubmed", "id": ",".join(pmids), "retmode": "xml"},
    ).text

    records = _parse_articles(xml_text, tags=tuple(search_terms.split()))
    LOGGER.info("PubMed fetch: requested=%s parsed=%s", len(pmids), len(records))
    return records


def _get(endpoint: str, params: dict[str, str]) -> requests.Response:
    api_key = os.getenv("NCBI_API_KEY")
    email = os.getenv("NCBI_EMAIL")
    if api_key:
        params["api_key"] = api_key
    if email:
        params["email"] = email

    url = f"{EUTILS_BASE_URL}/{endpoint}"
    try:
        response = requests.get(url, params=params, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise RuntimeError(f"PubMed request to {endpoint} failed: {exc}") from exc
    return response


def _parse_id_list(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        raise RuntimeError("Unexpected esearch payload shape: expected an object")
    result = payload.get("esearchresult")
    ids = result.get("idlist") if isinstance(result, dict) else None
    if not isinstance(ids, list):
        return []
    return [str(item) for item in ids if str(item).isdigit()]


def _parse_articles(xml_text: str, tags: tuple[str, ...] = ()) -> list[Evidence]:
    """Parse an efetch XML document into Evidence records."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise RuntimeError(f"Could not parse PubMed efetch XML: {exc}") from exc

    parsed: list[Evidence] = []
    for article in root.iter("PubmedArticle"):
        pmid = _text(article.find("MedlineCitation/PMID"))
        title = _text(article.find(".//ArticleTitle"))
        if not pmid or not title:
            LOGGER.warning("Skipping PubMed article without PMID or title (pmid=%s)", pmid)
            continue

        parsed.append(
            Evidence(
                title=title,
                journal=_text(article.find(".//Journal/Title")) or "Unknown Journal",
                doi=_doi(article),
                pmid=pmid,
                tags=tags,
                abstract=_text(article.find(".//Abstract/AbstractText")),
                study_type=DEFAULT_STUDY_TYPE,
                publication_date=_publication_date(article.find(".//Journal/JournalIssue/PubDate")),
                authors=_authors(article),
            )
        )
    return parsed


def _doi(article: ET.Element) -> str | None:
    for node in article.iter("ArticleId"):
        if node.get("IdType") == "doi":
            return _text(node)
    return None


def _authors(article: ET.Element) -> tuple[str, ...]:
    names: list[str] = []
    for author in article.iter("Author"):
        last = _text(author.find("LastName"))
        first = _text(author.find("ForeName"))
        if last and first:
            names.append(f"{first} {last}")
    return tuple(names)


def _publication_date(pub_date: ET.Element | None) -> str:
    if pub_date is None:
        return "2024-01-01"

    year = _text(pub_date.find("Year")) or "2024"
    month_raw = (_text(pub_date.find("Month")) or "01").lower()
    if month_raw.isdigit():
        month = int(month_raw)
    else:
        month = _MONTHS.index(month_raw[:3]) + 1 if month_raw[:3] in _MONTHS else 1
    day = _text(pub_date.find("Day")) or "01"
    return f"{year}-{month:02d}-{day.zfill(2)}"


def _text(node: ET.Element | None) -> str | None:
    """Element text with nested markup (<i>, <sup>) flattened."""
    if node is None:
        return None
    value = " ".join("".join(node.itertext()).split())
    return value or None
