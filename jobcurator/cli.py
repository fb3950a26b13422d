"""
Command-line interface for JobCurator.

Usage:
    python -m jobcurator ingest crawl.json
    python -m jobcurator expire --max-age-days 45
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from jobcurator.config import Settings, get_settings
from jobcurator.dedupe import DedupeEngine, dedup_sweep, ingest_record
from jobcurator.featured import refresh_featured
from jobcurator.fetchers.http import LivenessProber
from jobcurator.lifecycle import expire_sweep, restore_sweep
from jobcurator.logging_config import configure_logging
from jobcurator.models import JobRecord
from jobcurator.similarity import fuzzy_search
from jobcurator.storage.sqlite import JobDatabase

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="jobcurator",
        description="Deduplicate, rank and expire a multi-source job catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load a crawler dump through the duplicate gate
  python -m jobcurator ingest ./out/web3career.json

  # Retire duplicates already in the catalog (report only)
  python -m jobcurator dedup --dry-run

  # Recompute the featured set
  python -m jobcurator refresh-featured --limit 6

  # Deadline/age expiry only, no outbound requests
  python -m jobcurator expire --no-network

  # Settings can also come from JOBCURATOR_* environment variables
  JOBCURATOR_DB_PATH=./data/jobs.db python -m jobcurator stats
""",
    )

    parser.add_argument(
        "--db",
        default=None,
        help="SQLite database path (default: JOBCURATOR_DB_PATH or jobcurator.db)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging and tracebacks on error",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only warnings and errors",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("ingest", help="Ingest a JSON array of crawled records")
    p.add_argument("file", help="Path to a JSON file holding a list of records")

    p = sub.add_parser("dedup", help="Retire duplicates among active records")
    p.add_argument("--dry-run", action="store_true", help="Report without writing")

    p = sub.add_parser("refresh-featured", help="Rescore records and rewrite the featured set")
    p.add_argument("--limit", type=int, default=None, help="Featured slots (default: 6)")

    p = sub.add_parser("expire", help="Retire records by deadline, age and liveness probe")
    p.add_argument("--max-age-days", type=int, default=None, help="Max posting age (default: 60)")
    p.add_argument("--probe-limit", type=int, default=None, help="Records to probe (default: 100)")
    p.add_argument("--no-network", action="store_true", help="Skip liveness probes")

    p = sub.add_parser("restore", help="Re-probe retired records and restore live ones")
    p.add_argument("--limit", type=int, default=None, help="Records to re-check (default: 200)")

    p = sub.add_parser("pin", help="Pin a record into the featured set")
    p.add_argument("job_id")
    p.add_argument("--unpin", action="store_true", help="Remove the pin instead")

    p = sub.add_parser("search", help="Fuzzy search active records")
    p.add_argument("query")
    p.add_argument("--max-results", type=int, default=20)

    sub.add_parser("stats", help="Show catalog counts")

    p = sub.add_parser("export", help="Export the catalog to CSV")
    p.add_argument("csv", help="Output CSV path")
    p.add_argument("--all", action="store_true", help="Include inactive records")

    return parser.parse_args(argv)


def _make_prober(settings: Settings) -> LivenessProber:
    return LivenessProber(
        head_timeout_s=settings.head_timeout_s,
        get_timeout_s=settings.get_timeout_s,
        user_agent=settings.user_agent,
    )


def _load_records(path: str) -> List[JobRecord]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("jobs", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of records")
    return [JobRecord.from_dict(item) for item in data if isinstance(item, dict)]


def _print_summary(title: str, rows: List[tuple]) -> None:
    print("=" * 50)
    print(title)
    print("=" * 50)
    width = max(len(label) for label, _ in rows) + 1
    for label, value in rows:
        print(f"  {label + ':':<{width}} {value}")


def cmd_ingest(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    records = _load_records(args.file)

    engine = DedupeEngine(
        similarity_threshold=settings.similarity_threshold,
        date_window_days=settings.date_window_days,
    )
    batch = engine.dedupe(records)

    stored = duplicates = failed = 0
    for record in batch.unique_records:
        try:
            result = ingest_record(
                db,
                record,
                similarity_threshold=settings.similarity_threshold,
                date_window_days=settings.date_window_days,
            )
        except Exception:
            logger.exception("Failed to ingest %s", record.url)
            failed += 1
            continue
        stored += int(result.stored)
        duplicates += int(result.is_duplicate)

    if not args.quiet:
        _print_summary("Ingest Summary", [
            ("Records read", len(records)),
            ("In-file duplicates", batch.duplicates_removed),
            ("Stored", stored),
            ("Catalog duplicates", duplicates),
            ("Failed", failed),
        ])


def cmd_dedup(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    result = dedup_sweep(
        db,
        dry_run=args.dry_run,
        similarity_threshold=settings.similarity_threshold,
        date_window_days=settings.date_window_days,
    )
    if not args.quiet:
        _print_summary("Dedup Summary" + (" (dry run)" if args.dry_run else ""), [
            ("Scanned", result.scanned),
            ("Groups", result.groups),
            ("Duplicates", result.duplicates),
            ("Deactivated", result.deactivated),
            ("Failed", result.failed),
        ])
        if args.verbose:
            for retired, canonical in result.pairs:
                print(f"  {retired} -> {canonical}")


def cmd_refresh_featured(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    limit = args.limit if args.limit is not None else settings.featured_limit
    result = refresh_featured(db, limit=limit)
    if not args.quiet:
        _print_summary("Featured Refresh Summary", [
            ("Scores updated", result.updated),
            ("Pinned", result.pinned),
            ("Top scored", result.top_scored),
            ("Failed", result.failed),
        ])


async def cmd_expire(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    async with _make_prober(settings) as prober:
        result = await expire_sweep(
            db,
            prober=prober,
            max_age_days=args.max_age_days or settings.max_age_days,
            probe_limit=args.probe_limit if args.probe_limit is not None else settings.probe_limit,
            revalidate_after_days=settings.revalidate_after_days,
            delay_s=settings.probe_delay_s,
            network=not args.no_network,
        )
    if not args.quiet:
        _print_summary("Expire Summary", [
            ("Deadline passed", result.deadline_expired),
            ("Too old", result.age_expired),
            ("Probed", result.probed),
            ("Valid", result.valid),
            ("Expired", result.expired),
            ("Kept (uncertain)", result.kept_uncertain),
            ("Failed", result.failed),
        ])
        for reason, count in sorted(result.reasons.items()):
            print(f"    {reason}: {count}")


async def cmd_restore(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    async with _make_prober(settings) as prober:
        result = await restore_sweep(
            db,
            prober=prober,
            limit=args.limit if args.limit is not None else settings.restore_limit,
            delay_s=settings.probe_delay_s,
            similarity_threshold=settings.similarity_threshold,
            date_window_days=settings.date_window_days,
        )
    if not args.quiet:
        _print_summary("Restore Summary", [
            ("Checked", result.checked),
            ("Restored", result.restored),
            ("Still expired", result.still_expired),
            ("Kept (duplicate)", result.kept_duplicate),
            ("Failed", result.failed),
        ])


def cmd_pin(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    if db.get(args.job_id) is None:
        raise ValueError(f"Unknown job id: {args.job_id}")
    db.set_pinned(args.job_id, not args.unpin)
    if not args.quiet:
        print(f"{'Unpinned' if args.unpin else 'Pinned'} {args.job_id}")


def cmd_search(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    results = fuzzy_search(
        db.list_active(),
        args.query,
        keys=("title", "company", "location"),
        max_results=args.max_results,
    )
    for r in results:
        job = r.item
        print(f"{r.score:.2f}  {job.job_id}  {job.company} | {job.title} | {job.location}")


def cmd_stats(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    stats = db.stats()
    _print_summary("Catalog", [
        ("Total", stats.total),
        ("Active", stats.active),
        ("Inactive", stats.inactive),
        ("Featured", stats.featured),
    ])
    for reason, count in stats.by_reason.items():
        print(f"    {reason}: {count}")


def cmd_export(db: JobDatabase, args: argparse.Namespace, settings: Settings) -> None:
    count = db.export_to_csv(args.csv, active_only=not args.all)
    if not args.quiet:
        print(f"Exported {count} records to {args.csv}")


COMMANDS = {
    "ingest": cmd_ingest,
    "dedup": cmd_dedup,
    "refresh-featured": cmd_refresh_featured,
    "expire": cmd_expire,
    "restore": cmd_restore,
    "pin": cmd_pin,
    "search": cmd_search,
    "stats": cmd_stats,
    "export": cmd_export,
}


def run(args: argparse.Namespace, settings: Settings) -> None:
    """Dispatch a parsed command against the configured database."""
    handler = COMMANDS[args.command]
    with JobDatabase(args.db or settings.db_path) as db:
        outcome = handler(db, args, settings)
        if asyncio.iscoroutine(outcome):
            asyncio.run(outcome)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings()

    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = settings.log_level
    configure_logging(level)

    try:
        run(args, settings)
        return 0

    except KeyboardInterrupt:
        if not args.quiet:
            print("\nInterrupted by user")
        return 130

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
