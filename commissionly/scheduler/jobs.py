"""
Background job definitions using APScheduler.

Jobs include:
- Missing-commission sweep: calculates SALE transactions that are still
  PENDING (no rule matched at creation time, or created by an import)
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from commissionly.auth.context import RequestContext
from commissionly.config import settings
from commissionly.db import get_db_context
from commissionly.models import Organization
from commissionly.services.commission import recalculate_missing

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

BATCH_SIZE = 200


async def recalculate_missing_job():
    """Calculate pending SALE transactions, organization by organization."""
    logger.debug("Running missing-commission sweep")
    try:
        async with get_db_context() as db:
            organization_ids = (await db.execute(select(Organization.id))).scalars().all()
    except Exception as e:
        logger.error(f"Missing-commission sweep could not list organizations: {e}")
        return

    for organization_id in organization_ids:
        try:
            async with get_db_context() as db:
                result = await recalculate_missing(
                    db, RequestContext.system(organization_id), limit=BATCH_SIZE
                )
            if result.items:
                logger.info(
                    f"Missing-commission sweep for organization {organization_id}: "
                    f"{result.succeeded} calculated, {result.failed} still pending"
                )
        except Exception as e:
            logger.error(f"Missing-commission sweep error for organization {organization_id}: {e}")


def setup_scheduler():
    """
    Configure and add all scheduled jobs.

    Called during application startup.
    """
    scheduler.add_job(
        recalculate_missing_job,
        trigger=IntervalTrigger(minutes=settings.recalculation_interval_minutes),
        id="recalculate_missing",
        name="Calculate pending commissions",
        replace_existing=True,
    )

    logger.info("Scheduler configured with jobs")
