"""Tests for the tenant job runner and scheduler registration."""
from uuid import uuid4

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from batchtrace.config import settings
from batchtrace.jobs.scheduler import register_jobs
from batchtrace.jobs.tenant_job_runner import TenantJobRunner, registered_jobs, tenant_job
from batchtrace.models.tenant import Tenant, TenantStatus


@tenant_job("test_tenant_echo")
async def echo_job(tenant: dict, session_factory):
    if tenant["name"] == "Broken Bakes":
        raise RuntimeError("tenant data corrupt")
    return {"tenant": tenant["name"]}


@pytest.fixture
async def tenants(db, seed):
    db.add_all([
        Tenant(id=uuid4(), name="Broken Bakes", status=TenantStatus.ACTIVE.value, settings={}),
        Tenant(id=uuid4(), name="Dormant Dairy", status=TenantStatus.SUSPENDED.value, settings={}),
    ])
    await db.commit()


@pytest.fixture
def runner(session_factory):
    return TenantJobRunner(max_concurrent=1, session_factory=session_factory)


async def test_only_active_tenants(runner, tenants):
    names = {t["name"] for t in await runner.get_active_tenants()}
    assert names == {"Bakehouse Ltd", "Broken Bakes"}


async def test_failure_isolated_per_tenant(runner, tenants):
    summary = await runner.run_job("test_tenant_echo")

    assert summary["tenant_count"] == 2
    assert summary["successful"] == 1
    assert summary["failed"] == 1
    by_tenant = {r["tenant"]: r for r in summary["results"]}
    assert by_tenant["Bakehouse Ltd"]["output"] == {"tenant": "Bakehouse Ltd"}
    assert by_tenant["Broken Bakes"]["error"] == "tenant data corrupt"


async def test_lifecycle_scan_job_runs_per_tenant(runner, seed):
    summary = await runner.run_job("lifecycle_scan")

    assert summary["successful"] == 1
    (result,) = summary["results"]
    assert result["output"]["tenant_id"] == str(seed.tenant.id)
    assert "auto_expire" in result["output"]["per_rule"]


async def test_no_tenants_skips(runner):
    summary = await runner.run_job("lifecycle_scan")
    assert summary["status"] == "skipped"


async def test_unknown_job(runner):
    with pytest.raises(ValueError, match="Unknown job"):
        await runner.run_job("defrost_freezers")


def test_lifecycle_scan_registered():
    assert "lifecycle_scan" in registered_jobs()


def test_register_jobs_adds_daily_cron():
    target = AsyncIOScheduler()
    register_jobs(target)

    job = target.get_job("lifecycle_scan")
    assert job is not None
    assert job.args == ("lifecycle_scan",)
    assert f"hour='{settings.LIFECYCLE_SCAN_CRON_HOUR}'" in str(job.trigger)


def test_register_jobs_respects_disable_flag(monkeypatch):
    monkeypatch.setattr(settings, "LIFECYCLE_SCAN_ENABLED", False)
    target = AsyncIOScheduler()
    register_jobs(target)
    assert target.get_jobs() == []
