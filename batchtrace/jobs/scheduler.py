"""
APScheduler Configuration

Background job scheduler with tenant-aware job execution.

Architecture:
- Jobs are registered with @tenant_job decorator
- Scheduler triggers jobs on their configured triggers
- TenantJobRunner iterates through all active tenants
- Failures in one tenant don't affect others
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from batchtrace.config import settings

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
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.APP_TIMEZONE
)


async def run_tenant_aware_job(job_name: str):
    """
    Wrapper to run a tenant-aware job from the scheduler.

    Delegates to the TenantJobRunner which handles iterating through all tenants.
    """
    from batchtrace.jobs.tenant_job_runner import run_tenant_job

    try:
        result = await run_tenant_job(job_name)
        logger.info(
            f"Job '{job_name}' completed: "
            f"{result.get('successful', 0)}/{result.get('tenant_count', 0)} tenants successful"
        )
    except Exception as e:
        logger.error(f"Job '{job_name}' failed: {e}")


def register_jobs(target=None):
    """Add the scheduled jobs to a scheduler (the module scheduler by default)."""
    from batchtrace.jobs import tenant_job_runner  # noqa: F401  registers @tenant_job functions
    from batchtrace.jobs.lifecycle_scanner import register_lifecycle_scan_job

    target = target or scheduler
    if settings.LIFECYCLE_SCAN_ENABLED:
        register_lifecycle_scan_job(target)
    else:
        logger.info("Lifecycle scan disabled (LIFECYCLE_SCAN_ENABLED=false)")


def start_scheduler():
    """Start the background job scheduler with tenant-aware jobs."""
    if not scheduler.running:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Multi-tenant background job scheduler started")

        for job in scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")

