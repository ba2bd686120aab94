"""
Scheduler for automated customer syncs and enrichment sweeps

Uses APScheduler inside the FastAPI event loop.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from audience_sync.config import get_settings
from audience_sync.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def run_daily_customer_sync():
    """Incremental customer sync (daily)"""
    from audience_sync.api.dependencies import get_sync_service
    try:
        log.info("Running daily incremental customer sync")
        summary = await get_sync_service().sync_customers(incremental=True)
        if summary.skipped_reason:
            log.info(f"Scheduled sync skipped: {summary.skipped_reason}")
    except Exception as e:
        log.error(f"Scheduled sync failed: {str(e)}")


async def run_enrichment_sweep():
    """Enrich a batch of pending customers (every few minutes)"""
    from audience_sync.api.dependencies import get_enrichment_service
    try:
        enriched = await get_enrichment_service().enrich_pending_customers(batch_size=10)
        if enriched > 0:
            log.info(f"Enriched {enriched} pending customers")
    except Exception as e:
        log.error(f"Enrichment sweep failed: {str(e)}")


def start_scheduler():
    """Register jobs and start the scheduler"""
    if not settings.enable_scheduler:
        log.info("Scheduler disabled (ENABLE_SCHEDULER=false)")
        return

    scheduler.add_job(
        run_daily_customer_sync,
        CronTrigger(hour=settings.sync_schedule_hour, minute=0),
        id="customer_sync_daily",
        name="Daily incremental customer sync",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.add_job(
        run_enrichment_sweep,
        IntervalTrigger(minutes=settings.enrichment_interval_minutes),
        id="enrichment_sweep",
        name="Pending customer enrichment",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    log.info(
        f"Scheduler started: customer sync daily at {settings.sync_schedule_hour:02d}:00, "
        f"enrichment every {settings.enrichment_interval_minutes} minutes"
    )


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")
