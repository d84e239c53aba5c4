"""Normalization of bibliographic identifiers (DOI, PMID)."""

from __future__ import annotations

import string
from urllib.parse import urlsplit

DOI_RESOLVER_URL = "https://doi.org"

# Citation-style marks that commonly trail a copied DOI.
_TRAILING_PUNCTUATION = ".,;)]"


def normalize_doi(raw: str | None) -> str:
    """Return the canonical DOI (no scheme, prefix, whitespace, or trailing punctuation).

    Accepts a bare DOI, a ``doi:``/``doi `` prefixed value, or a doi.org URL.
    Never raises: when the value only looks like a URL, the best-effort
    cleaned text is returned.
    """
    value = raw or ""

    # Each pass can expose another prefix or trailing mark, so repeat to a fixed point.
    previous = None
    while value != previous:
        previous = value
        value = value.strip()
        if value.lower().startswith(("doi:", "doi ")):
            value = value[4:]
        value = _strip_resolver(value)
        value = value.rstrip(_TRAILING_PUNCTUATION + string.whitespace)
        value = "".join(value.split())
    return value


def to_doi_url(raw: str | None) -> str:
    """Return ``https://doi.org/<doi>`` or an empty string."""
    doi = normalize_doi(raw)
    return f"{DOI_RESOLVER_URL}/{doi}" if doi else ""


def normalize_pmid(raw: str | None) -> str:
    """Return a numeric PubMed id, or an empty string if the value isn't one."""
    value = (raw or "").strip()
    if value.lower().startswith("pmid:"):
        value = value[5:].strip()
    return value if value.isdigit() else ""


def _strip_resolver(value: str) -> str:
    """Replace a doi.org URL with its path; leave anything else untouched."""
    if not value.lower().startswith(("http://", "https://")):
        return value
    try:
        parts = urlsplit(value)
        host = (parts.hostname or "").lower()
    except ValueError:
        return value
    if not host.endswith("doi.org"):
        return value
    return parts.path[1:] if parts.path.startswith("/") else parts.path
