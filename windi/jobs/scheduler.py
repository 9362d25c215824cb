"""
APScheduler Configuration

Background jobs for the billing service. Currently a single job drains
the mirror outbox so request handlers never talk to the remote mirror.

Architecture:
- Ledger services write MirrorOutbox markers inside their transactions
- drain_mirror_outbox runs on an interval, one instance at a time
- The job is only registered when MIRROR_PUSH_URL is configured
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from windi.config import settings

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one drain at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone='UTC'
)


async def drain_mirror_outbox() -> int:
    """Push one debounced batch of outbox markers to the remote mirror."""
    from windi.database import get_db_session
    from windi.services.mirror_service import MirrorOutboxService, HttpMirrorPusher

    try:
        async with get_db_session() as db:
            pushed = await MirrorOutboxService(db).drain(HttpMirrorPusher())
        if pushed:
            logger.info(f"Job 'drain_mirror_outbox' pushed {pushed} rows")
        return pushed
    except Exception as e:
        logger.error(f"Job 'drain_mirror_outbox' failed: {e}")
        return 0


def start_scheduler():
    """Start the background job scheduler."""
    if scheduler.running:
        return

    if settings.MIRROR_PUSH_URL:
        scheduler.add_job(
            drain_mirror_outbox,
            'interval',
            seconds=settings.MIRROR_DRAIN_INTERVAL_SECONDS,
            id='drain_mirror_outbox',
            name='Drain Mirror Outbox',
            replace_existing=True,
        )
    else:
        logger.info("MIRROR_PUSH_URL not set, mirror drain job not scheduled")

    scheduler.start()
    logger.info(f"Background job scheduler started with {len(scheduler.get_jobs())} jobs")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
