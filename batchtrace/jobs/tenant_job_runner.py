"""
Tenant-Aware Job Runner

Runs background jobs once per active tenant.

Architecture:
- Jobs are registered with the @tenant_job decorator
- Runner iterates through all active tenants
- Each job receives the tenant and a session factory; every tenant's
  work is scoped by tenant_id
- Failures in one tenant don't affect others

Usage:
    @tenant_job("lifecycle_scan")
    async def lifecycle_scan_job(tenant: dict, session_factory):
        ...
"""

import asyncio
import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from batchtrace.config import settings
from batchtrace.models.tenant import Tenant, TenantStatus

logger = logging.getLogger(__name__)

# Registry of tenant-aware jobs
_tenant_jobs: Dict[str, Callable] = {}


def tenant_job(name: str):
    """
    Decorator to register a tenant-aware background job.

    The decorated function receives:
    - tenant: dict with id, name, status, settings
    - session_factory: async_sessionmaker to open sessions with
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(tenant: dict, session_factory: async_sessionmaker):
            return await func(tenant, session_factory)

        _tenant_jobs[name] = wrapper
        logger.debug(f"Registered tenant job: {name}")
        return wrapper
    return decorator


def registered_jobs() -> List[str]:
    return list(_tenant_jobs.keys())


class TenantJobRunner:
    """
    Executes background jobs across all active tenants.

    Features:
    - Automatic tenant iteration
    - Error isolation (one tenant failure doesn't affect others)
    - Execution metrics and logging
    - Configurable concurrency
    """

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        """
        Initialize the job runner.

        Args:
            max_concurrent: Max tenants to process concurrently
            session_factory: Session factory (defaults to the application's)
        """
        if session_factory is None:
            from batchtrace.database import async_session_factory
            session_factory = async_session_factory
        self.max_concurrent = max_concurrent or settings.TENANT_JOB_MAX_CONCURRENT
        self.session_factory = session_factory
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def get_active_tenants(self) -> List[dict]:
        """Fetch all active tenants."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Tenant)
                .where(Tenant.status == TenantStatus.ACTIVE.value)
                .order_by(Tenant.created_at)
            )
            return [
                {
                    "id": tenant.id,
                    "name": tenant.name,
                    "status": tenant.status,
                    "settings": tenant.settings or {},
                }
                for tenant in result.scalars().all()
            ]

    async def run_job_for_tenant(
        self,
        job_name: str,
        job_func: Callable,
        tenant: dict
    ) -> dict:
        """
        Execute a job for a single tenant.

        Returns:
            Result dictionary with status and metrics
        """
        start_time = datetime.now(timezone.utc)

        result = {
            "tenant_id": str(tenant["id"]),
            "tenant": tenant["name"],
            "job": job_name,
            "status": "pending",
            "started_at": start_time.isoformat(),
            "error": None,
            "output": None,
            "duration_ms": 0
        }

        try:
            async with self._semaphore:
                result["output"] = await job_func(tenant, self.session_factory)
                result["status"] = "success"
        except Exception as e:
            result["status"] = "failed"
            result["error"] = str(e)
            logger.error(
                f"Job '{job_name}' failed for tenant '{tenant['name']}': {e}"
            )

        end_time = datetime.now(timezone.utc)
        result["duration_ms"] = int((end_time - start_time).total_seconds() * 1000)
        result["completed_at"] = end_time.isoformat()

        return result

    async def run_job(self, job_name: str) -> dict:
        """
        Run a job across all active tenants.

        Returns:
            Summary dictionary with results per tenant
        """
        if job_name not in _tenant_jobs:
            raise ValueError(f"Unknown job: {job_name}. Registered: {list(_tenant_jobs.keys())}")

        job_func = _tenant_jobs[job_name]
        start_time = datetime.now(timezone.utc)

        logger.info(f"Starting tenant job: {job_name}")

        tenants = await self.get_active_tenants()

        if not tenants:
            logger.info(f"No active tenants found. Job '{job_name}' skipped.")
            return {
                "job": job_name,
                "status": "skipped",
                "reason": "no_active_tenants",
                "tenant_count": 0
            }

        logger.info(f"Running '{job_name}' for {len(tenants)} tenants")

        tasks = [
            self.run_job_for_tenant(job_name, job_func, tenant)
            for tenant in tenants
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        successful = sum(1 for r in results if isinstance(r, dict) and r.get("status") == "success")
        failed = sum(1 for r in results if isinstance(r, dict) and r.get("status") == "failed")

        end_time = datetime.now(timezone.utc)
        total_duration = int((end_time - start_time).total_seconds() * 1000)

        summary = {
            "job": job_name,
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": total_duration,
            "tenant_count": len(tenants),
            "successful": successful,
            "failed": failed,
            "results": [r for r in results if isinstance(r, dict)]
        }

        logger.info(
            f"Job '{job_name}' completed: {successful}/{len(tenants)} successful "
            f"in {total_duration}ms"
        )

        return summary


# Global runner instance
_runner: Optional[TenantJobRunner] = None


def get_tenant_job_runner() -> TenantJobRunner:
    """Get or create the global tenant job runner."""
    global _runner
    if _runner is None:
        _runner = TenantJobRunner()
    return _runner


async def run_tenant_job(job_name: str) -> dict:
    """Convenience function to run a tenant job."""
    runner = get_tenant_job_runner()
    return await runner.run_job(job_name)


# ============================================================
# TENANT-AWARE JOB IMPLEMENTATIONS
# ============================================================

@tenant_job("lifecycle_scan")
async def lifecycle_scan_job(tenant: dict, session_factory: async_sessionmaker) -> dict:
    """Daily lifecycle scan for one tenant."""
    from batchtrace.jobs.lifecycle_scanner import LifecycleScanner

    scanner = LifecycleScanner(session_factory=session_factory)
    summary = await scanner.run(tenant_id=tenant["id"])
    if summary.has_errors:
        logger.warning(
            f"Tenant '{tenant['name']}': lifecycle scan finished with errors in "
            f"{[r.rule_id for r in summary.per_rule.values() if r.errors]}"
        )
    return summary.model_dump(mode="json")
