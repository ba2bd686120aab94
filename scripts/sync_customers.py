#!/usr/bin/env python3
"""
Manual customer sync / enrichment runner

Runs the same services as the API and scheduler, from a shell.

Usage:
    python scripts/sync_customers.py sync [--full] [--start-date 2024-01-01]
    python scripts/sync_customers.py enrich [--batch-size 50]
    python scripts/sync_customers.py reset-enrichment
    python scripts/sync_customers.py gender-tags

Examples:
    # First import: pull every customer, then enrich
    python scripts/sync_customers.py sync --full
    python scripts/sync_customers.py enrich

    # Re-pull everything Shopify changed since March
    python scripts/sync_customers.py sync --start-date 2024-03-01
"""
import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from audience_sync.models.base import SessionLocal, init_db
from audience_sync.services.customer_store import CustomerStore
from audience_sync.services.enrichment_service import EnrichmentService
from audience_sync.services.sync_service import CustomerSyncService
from audience_sync.utils.logger import log


async def run_sync(full: bool, start_date: str = None) -> int:
    service = CustomerSyncService(enrich_after_sync=False)
    summary = await service.sync_customers(incremental=not full, start_date=start_date)
    print(
        f"\nSync finished: {summary.processed} processed, {summary.created} created, "
        f"{summary.updated} updated, {summary.skipped} skipped"
    )
    return 0


async def run_enrichment(batch_size: int) -> int:
    service = EnrichmentService()
    if not service.inference.is_available():
        print("Gender inference is not configured (set ANTHROPIC_API_KEY)")
        return 1
    enriched = await service.enrich_all_pending_customers(batch_size=batch_size)
    print(f"\nEnriched {enriched} customers")
    return 0


def run_reset() -> int:
    db = SessionLocal()
    try:
        count = CustomerStore(db).reset_all_enrichments()
    finally:
        db.close()
    print(f"\n{count} customers marked pending")
    return 0


async def run_gender_tags() -> int:
    updated = await CustomerSyncService(enrich_after_sync=False).sync_gender_tags_to_shopify()
    print(f"\nUpdated gender tags for {updated} customers")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Audience sync maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sync_parser = sub.add_parser("sync", help="Sync customers from Shopify")
    sync_parser.add_argument("--full", action="store_true", help="Ignore the watermark and pull every customer")
    sync_parser.add_argument("--start-date", help="Explicit incremental watermark (ISO date)")

    enrich_parser = sub.add_parser("enrich", help="Enrich all pending customers")
    enrich_parser.add_argument("--batch-size", type=int, default=50)

    sub.add_parser("reset-enrichment", help="Mark every customer pending")
    sub.add_parser("gender-tags", help="Push gender:<value> tags to Shopify")

    args = parser.parse_args()
    init_db()

    try:
        if args.command == "sync":
            return asyncio.run(run_sync(args.full, args.start_date))
        if args.command == "enrich":
            return asyncio.run(run_enrichment(args.batch_size))
        if args.command == "reset-enrichment":
            return run_reset()
        return asyncio.run(run_gender_tags())
    except Exception as e:
        log.error(f"{args.command} failed: {str(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
