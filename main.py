"""CLI entrypoint for evidence link resolution and evidence sync."""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

from evidence_links import get_external_evidence_link, matching_rule
from evidence_sink import evidence_already_exists, read_evidence_entries, write_evidence_entry
from evidence_summarizer import REQUEST_TYPES, summarize_evidence
from evidence_sync import (
    DEFAULT_SOURCES,
    build_query,
    force_sync,
    get_last_sync_info,
    sync_evidence_on_login,
)
from functions_client import fetch_evidence_rows, fetch_preferred_conditions
from guideline_audit import audit_guidelines
from models import Evidence, evidence_from_row
from pubmed_feed import search_pubmed
from sync_state import JsonFileSyncStore

GUIDELINE_STUDY_TYPE = "Clinical Practice Guideline"
DEFAULT_PUBMED_QUERY = "physiotherapy rehabilitation"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Resolve evidence links and refresh evidence from external sources")
    parser.add_argument(
        "--mode",
        choices=["sync", "force_sync", "status", "link", "pubmed", "audit_links", "summarize"],
        default="sync",
        help=(
            "'sync' (default): refresh evidence if the daily interval has passed. "
            "'force_sync': refresh now. 'status': show the last sync. "
            "'link': resolve one record's external link. 'pubmed': search PubMed into the local cache. "
            "'audit_links': check stored guideline links. 'summarize': AI summary of evidence text."
        ),
    )
    parser.add_argument("--user-id", default=None, help="User whose preferences drive the sync (sync modes)")
    parser.add_argument("--topics", nargs="*", default=None, help="Override the user's preferred conditions")
    parser.add_argument("--state-path", default=None, help="Sync state file (default: EVIDENCE_SYNC_STATE_PATH)")
    parser.add_argument("--dry-run", action="store_true", help="Only log what would be done, without API calls or writes")
    parser.add_argument("--query", default=None, help="PubMed search terms (pubmed mode)")
    parser.add_argument("--limit", type=int, default=20, help="Maximum PubMed results (pubmed mode)")
    parser.add_argument("--from-cache", action="store_true", help="Audit the local CSV cache instead of the backend")
    # link mode
    parser.add_argument("--title", default=None)
    parser.add_argument("--journal", default=None)
    parser.add_argument("--doi", default=None)
    parser.add_argument("--pmid", default=None)
    parser.add_argument("--tag", action="append", default=[], help="Repeatable topical tag")
    parser.add_argument("--source-url", default=None, help="Stored override URL")
    # summarize mode
    parser.add_argument("--text", default=None, help="Evidence text to summarize")
    parser.add_argument("--condition", default=None)
    parser.add_argument("--request-type", choices=sorted(REQUEST_TYPES), default="summary")
    return parser.parse_args(argv)


def run_sync(user_id: str, topics: list[str] | None, force: bool, state_path: str | None, dry_run: bool) -> bool:
    """Run a login-style or forced sync. Returns True if a sync was attempted."""
    store = JsonFileSyncStore(state_path)

    if dry_run:
        info = get_last_sync_info(store)
        logging.info("[dry-run] last_sync=%s needs_sync=%s force=%s", info.last_sync, info.needs_sync, force)
        for source in DEFAULT_SOURCES:
            logging.info("[dry-run] Would query %s: %r", source.name, build_query(topics or [], source))
        return False

    if topics is not None:
        def fetch_preferences(_user_id: str) -> list[str]:
            return topics
    else:
        fetch_preferences = fetch_preferred_conditions

    runner = force_sync if force else sync_evidence_on_login
    return runner(user_id, store=store, fetch_preferences=fetch_preferences)


def show_status(state_path: str | None) -> None:
    info = get_last_sync_info(JsonFileSyncStore(state_path))
    last = info.last_sync.isoformat() if info.last_sync else "never"
    print(f"Last sync: {last}")
    print(f"Sync due: {'yes' if info.needs_sync else 'no'}")


def resolve_link(record: Evidence) -> str | None:
    url = get_external_evidence_link(record)
    logging.info("Resolved link via rule=%s", matching_rule(record))
    print(url or "No external link available")
    return url


def run_pubmed(query: str, limit: int, dry_run: bool) -> None:
    """Search PubMed and append new articles to the local evidence cache."""
    records = search_pubmed(query, max_results=limit)
    logging.info("Fetched %s articles from PubMed", len(records))

    processed = 0
    skipped = 0
    failed = 0

    for record in records:
        if evidence_already_exists(record):
            skipped += 1
            logging.info("Skipping existing pmid=%s", record.pmid)
            continue

        if dry_run:
            processed += 1
            logging.info("[dry-run] Would write: %s -> %s", record.title, get_external_evidence_link(record))
            continue

        try:
            url = write_evidence_entry(record)
            processed += 1
            logging.info("Cached pmid=%s link=%s", record.pmid, url)
        except Exception as exc:  # keep the batch going
            failed += 1
            logging.exception("Failed caching pmid=%s: %s", record.pmid, exc)

    logging.info("Run complete. processed=%s skipped=%s failed=%s", processed, skipped, failed)


def run_audit(from_cache: bool) -> None:
    """Report invalid and mis-mapped guideline links."""
    if from_cache:
        records = [r for r in read_evidence_entries() if r.study_type == GUIDELINE_STUDY_TYPE]
    else:
        records = [evidence_from_row(row) for row in fetch_evidence_rows(study_type=GUIDELINE_STUDY_TYPE)]

    report = audit_guidelines(records)
    print(
        f"Checked {len(records)} guidelines: "
        f"valid NICE={report.valid_nice} other={report.valid_other}, "
        f"invalid NICE={report.invalid_nice} other={report.invalid_other}"
    )
    for repair in report.repairs:
        print(f"- [{repair.code.upper()}] {repair.record.title}: {repair.reason} -> {repair.fallback_url}")


def main(argv: list[str] | None = None) -> None:
    """Initialize config and execute the selected mode."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.mode in ("sync", "force_sync"):
        if not args.user_id:
            raise SystemExit("--user-id is required for sync modes")
        run_sync(
            user_id=args.user_id,
            topics=args.topics,
            force=args.mode == "force_sync",
            state_path=args.state_path,
            dry_run=args.dry_run,
        )
    elif args.mode == "status":
        show_status(args.state_path)
    elif args.mode == "link":
        resolve_link(
            Evidence(
                title=args.title,
                journal=args.journal,
                doi=args.doi,
                pmid=args.pmid,
                tags=tuple(args.tag),
                source_url=args.source_url,
            )
        )
    elif args.mode == "pubmed":
        run_pubmed(query=args.query or DEFAULT_PUBMED_QUERY, limit=args.limit, dry_run=args.dry_run)
    elif args.mode == "audit_links":
        run_audit(from_cache=args.from_cache)
    elif args.mode == "summarize":
        if not args.text:
            raise SystemExit("--text is required for summarize mode")
        print(summarize_evidence(args.text, condition=args.condition, request_type=args.request_type))


if __name__ == "__main__":
    main()
