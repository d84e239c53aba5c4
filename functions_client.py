"""Supabase REST and Edge Function access for the evidence backend."""

from __future__ import annotations

import json
import logging
import os
from typing import Any

import requests

REQUEST_TIMEOUT_SECONDS = 30

EVIDENCE_COLUMNS = (
    "id,title,journal,doi,pmid,tags,abstract,study_type,"
    "publication_date,authors,grade_assessment"
)

LOGGER = logging.getLogger(__name__)


def invoke_function(name: str, body: dict[str, Any]) -> dict[str, Any]:
    """Invoke one Edge Function and return its decoded JSON body."""
    base_url, headers = _backend_context()
    LOGGER.debug("Invoking function %s with %s", name, body)

    response = _request(
        method="POST",
        url=f"{base_url}/functions/v1/{name}",
        headers=headers,
        json_payload=body,
    )
    data = _decode(response)
    if not isinstance(data, dict):
        raise RuntimeError(f"Unexpected response shape from function {name}: {data!r}")
    return data


def fetch_preferred_conditions(user_id: str) -> list[str]:
    """Return the user's preferred conditions, or [] if none are stored."""
    base_url, headers = _backend_context()
    response = _request(
        method="GET",
        url=f"{base_url}/rest/v1/user_preferences",
        headers=headers,
        params={"select": "preferred_conditions", "user_id": f"eq.{user_id}", "limit": "1"},
    )
    rows = _decode(response)
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        return []

    conditions = rows[0].get("preferred_conditions")
    if not isinstance(conditions, list):
        return []
    return [item for item in conditions if isinstance(item, str) and item.strip()]


def fetch_evidence_rows(study_type: str | None = None, limit: int = 500) -> list[dict[str, Any]]:
    """Fetch evidence rows with the columns needed for link resolution."""
    base_url, headers = _backend_context()
    params = {"select": EVIDENCE_COLUMNS, "limit": str(limit)}
    if study_type:
        params["study_type"] = f"eq.{study_type}"

    response = _request(
        method="GET",
        url=f"{base_url}/rest/v1/evidence",
        headers=headers,
        params=params,
    )
    rows = _decode(response)
    if not isinstance(rows, list):
        raise RuntimeError("Unexpected evidence payload shape: expected a list")
    return [row for row in rows if isinstance(row, dict)]


def _backend_context() -> tuple[str, dict[str, str]]:
    base_url = os.getenv("SUPABASE_URL")
    anon_key = os.getenv("SUPABASE_ANON_KEY")
    if not base_url:
        raise RuntimeError("SUPABASE_URL environment variable is required")
    if not anon_key:
        raise RuntimeError("SUPABASE_ANON_KEY environment variable is required")

    # A signed-in user's JWT scopes requests to their rows; the anon key
    # alone only sees public data.
    token = os.getenv("SUPABASE_ACCESS_TOKEN") or anon_key
    headers = {
        "apikey": anon_key,
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }
    return base_url.rstrip("/"), headers


def _request(
    *,
    method: str,
    url: str,
    headers: dict[str, str],
    json_payload: dict[str, Any] | None = None,
    params: dict[str, str] | None = None,
) -> requests.Response:
    """Send one request; HTTP and transport errors become RuntimeError."""
    try:
        response = requests.request(
            method=method,
            url=url,
            headers=headers,
            json=json_payload,
            params=params,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        return response
    except requests.RequestException as exc:
        response_text = ""
        if isinstance(exc, requests.HTTPError) and exc.response is not None:
            try:
                response_text = json.dumps(exc.response.json())
            except ValueError:
                response_text = exc.response.text
        raise RuntimeError(f"Backend request failed: {method} {url}: {exc} {response_text}") from exc


def _decode(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise RuntimeError(f"Backend returned invalid JSON from {response.url}") from exc
