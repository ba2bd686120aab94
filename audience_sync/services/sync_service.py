"""
Customer Sync Service

Pulls customers from Shopify page by page, reconciles each one against the
local store, runs gender inference where it is still missing, and records
every run in sync_logs. At most one sync runs per process.
"""
import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from audience_sync.config import get_settings
from audience_sync.connectors.shopify import NormalizedCustomer
from audience_sync.models.base import SessionLocal
from audience_sync.models.customer import Customer
from audience_sync.schemas import CustomerExportFilter
from audience_sync.services.customer_merge import build_customer_row
from audience_sync.services.customer_store import CustomerStore
from audience_sync.services.enrichment_service import (
    EnrichmentService,
    GenderInference,
    GenderInferenceService,
)
from audience_sync.utils.dates import parse_datetime
from audience_sync.utils.logger import log
from audience_sync.utils.tags import TagSet, apply_gender_tag

WATERMARK_OVERLAP = timedelta(minutes=5)
POST_SYNC_ENRICH_BATCH = 20


class SyncState:
    """In-process single-flight flag for customer syncs"""

    def __init__(self):
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def try_start(self) -> bool:
        """Claim the flag; False if a sync already holds it"""
        if self._running:
            return False
        self._running = True
        return True

    def finish(self) -> None:
        self._running = False


# Shared by the admin endpoint, the scheduler and anything else in this process
sync_state = SyncState()


@dataclass
class SyncSummary:
    """Counters for one sync run"""
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    sync_log_id: Optional[int] = None
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CustomerSyncService:
    """
    Orchestrates Shopify -> local store customer syncs

    Collaborators are injectable so the whole pipeline can run against
    fakes; by default they are built from settings.
    """

    def __init__(
        self,
        connector=None,
        inference: Optional[GenderInferenceService] = None,
        enrichment: Optional[EnrichmentService] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        state: Optional[SyncState] = None,
        inference_delay: float = 0.2,
        enrich_after_sync: bool = True,
        sweep_delay: float = 1.0,
        sync_gender_to_tags: Optional[bool] = None,
        sleep=asyncio.sleep,
    ):
        settings = get_settings()
        self.settings = settings

        if connector is None:
            from audience_sync.connectors.shopify import ShopifyConnector
            connector = ShopifyConnector()
        self.connector = connector
        self.inference = inference or GenderInferenceService()
        self.enrichment = enrichment or EnrichmentService(
            inference=self.inference,
            connector=self.connector,
            session_factory=session_factory,
        )
        self.session_factory = session_factory
        self.state = state if state is not None else sync_state
        self.inference_delay = inference_delay
        self.enrich_after_sync = enrich_after_sync
        self.sweep_delay = sweep_delay
        self.sync_gender_to_tags = (
            settings.sync_gender_to_tags if sync_gender_to_tags is None else sync_gender_to_tags
        )
        self._sleep = sleep
        self._sweep_task: Optional[asyncio.Task] = None

    # Watermark

    def resolve_updated_since(self, store: CustomerStore, start_date: Optional[str] = None) -> Optional[datetime]:
        """
        Lower bound for an incremental sync

        First match wins: explicit start_date, configured
        incremental_sync_start_date, newest stored Shopify updated_at,
        completion time of the last successful sync. Five minutes are
        subtracted from whichever is found.

        Raises:
            ValueError: start_date is not a parseable date
        """
        watermark: Optional[datetime] = None

        if start_date:
            watermark = parse_datetime(start_date)
            if watermark is None:
                raise ValueError(f"Invalid start_date: {start_date}")
        elif self.settings.incremental_sync_start_date:
            watermark = parse_datetime(self.settings.incremental_sync_start_date)
            if watermark is None:
                log.warning(
                    f"Ignoring invalid INCREMENTAL_SYNC_START_DATE: {self.settings.incremental_sync_start_date}"
                )

        if watermark is None and not start_date:
            watermark = store.get_latest_source_update()

        if watermark is None and not start_date:
            last_sync = store.get_last_completed_sync()
            if last_sync is not None:
                watermark = last_sync.completed_at

        if watermark is None:
            return None
        return watermark - WATERMARK_OVERLAP

    # Sync

    async def sync_customers(self, incremental: bool = True, start_date: Optional[str] = None) -> SyncSummary:
        """
        Run one customer sync

        Args:
            incremental: Only fetch customers updated since the watermark
            start_date: Explicit watermark override (ISO date / datetime)

        Returns:
            SyncSummary; skipped_reason is "already_running" when another
            sync holds the flag

        Raises:
            Whatever aborted the run, after the sync log is marked failed
        """
        if not self.state.try_start():
            log.info("Customer sync already in progress, skipping...")
            return SyncSummary(skipped_reason="already_running")

        summary = SyncSummary()
        sync_type = "incremental" if incremental else "full"
        db = self.session_factory()
        store = CustomerStore(db)

        try:
            updated_since = self.resolve_updated_since(store, start_date) if incremental else None

            sync_log = store.create_sync_log(sync_type)
            summary.sync_log_id = sync_log.id

            log.info(f"Starting {sync_type} customer sync")
            if updated_since:
                log.info(f"Incremental sync starting from {updated_since.isoformat()}")

            async def on_batch(records: List[NormalizedCustomer]) -> None:
                for record in records:
                    await self._process_record(store, record, summary)
                log.info(f"Processed batch: {len(records)} customers (total: {summary.processed})")

            await self.connector.fetch_all(updated_since=updated_since, on_batch=on_batch)

            store.complete_sync_log(
                summary.sync_log_id,
                processed=summary.processed,
                created=summary.created,
                updated=summary.updated,
            )
            log.info(
                f"Sync completed: {summary.processed} processed, {summary.created} created, "
                f"{summary.updated} updated, {summary.skipped} skipped"
            )

        except Exception as e:
            log.error(f"Customer sync failed: {str(e)}")
            db.rollback()
            if summary.sync_log_id is not None:
                try:
                    store.fail_sync_log(summary.sync_log_id, str(e))
                except Exception as log_error:
                    log.error(f"Could not mark sync log {summary.sync_log_id} as failed: {str(log_error)}")
            raise

        finally:
            db.close()
            self.state.finish()

        if self.enrich_after_sync:
            self._schedule_enrichment_sweep()

        return summary

    async def _process_record(self, store: CustomerStore, record: NormalizedCustomer, summary: SyncSummary) -> None:
        existing_id = None
        try:
            existing = store.get_by_external_id(record.external_id)
            existing_id = existing.id if existing else None

            enrichment: Optional[GenderInference] = None
            if self.inference.is_available() and (existing is None or existing.enrichment_status != "complete"):
                enrichment = await self.inference.infer_gender(
                    record.first_name, record.last_name, record.email, record.country
                )
                await self._sleep(self.inference_delay)

            row = build_customer_row(existing, record, enrichment=enrichment)
            stored = store.upsert_customer(row)

            if self.sync_gender_to_tags:
                await self.apply_gender_tag(store, stored)

            if existing is None:
                summary.created += 1
            else:
                summary.updated += 1
            summary.processed += 1

        except Exception as e:
            log.error(f"Failed to process customer {record.external_id}: {str(e)}")
            store.db.rollback()
            summary.skipped += 1
            if existing_id is not None:
                try:
                    store.mark_enrichment_failed(record.external_id)
                except Exception as mark_error:
                    log.error(f"Could not mark customer {record.external_id} as failed: {str(mark_error)}")
                    store.db.rollback()

    # Tag write-back

    async def apply_gender_tag(self, store: CustomerStore, customer: Customer) -> bool:
        """
        Project the inferred gender onto the customer's Shopify tags

        Returns:
            True if Shopify was updated; False when there is nothing to do
            or the push failed
        """
        if not customer.gender_inferred or customer.gender_inferred == "unknown":
            return False

        current = TagSet.parse(customer.tags)
        desired = apply_gender_tag(current, customer.gender_inferred)

        if desired.serialize() == customer.tags:
            return False

        try:
            await self.connector.update_customer_tags(customer.external_id, desired)
        except Exception as e:
            log.error(f"Failed to update gender tag for customer {customer.external_id}: {str(e)}")
            return False

        store.update_tags(customer.external_id, desired)
        return True

    async def sync_gender_tags_to_shopify(self) -> int:
        """Push gender:<value> tags for every male/female customer"""
        log.info("Starting bulk sync of gender tags to Shopify")
        updated_count = 0

        db = self.session_factory()
        try:
            store = CustomerStore(db)
            result = store.get_customers(CustomerExportFilter(gender_inferred=["male", "female"]))

            for customer in result.data:
                if await self.apply_gender_tag(store, customer):
                    updated_count += 1
        finally:
            db.close()

        log.info(f"Bulk sync completed: {updated_count} customers updated")
        return updated_count

    # Status / post-sync work

    def get_sync_status(self) -> Dict[str, Any]:
        db = self.session_factory()
        try:
            status = CustomerStore(db).get_sync_status()
        finally:
            db.close()
        status["is_running"] = self.state.is_running
        return status

    def _schedule_enrichment_sweep(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._sweep_task = loop.create_task(self._post_sync_enrichment())

    async def _post_sync_enrichment(self) -> None:
        await self._sleep(self.sweep_delay)
        try:
            enriched = await self.enrichment.enrich_pending_customers(POST_SYNC_ENRICH_BATCH)
            if enriched > 0:
                log.info(f"Enriched {enriched} customers after sync")
        except Exception as e:
            log.error(f"Post-sync enrichment error: {str(e)}")
