"""
Lifecycle Scan Job.

Runs every lifecycle rule against the store:
- each rule in its own session and transaction
- a failing rule is rolled back and its error recorded in the summary;
  the remaining rules still run
- alerts are inserted with the dedupe key as conflict target, so only
  newly raised alerts count as notified and reach the notifier

Re-running a scan for the same date is safe, even when two scans overlap:
the expiry transition is a conditional update on the stored status and
every alert is deduplicated.

Triggers:
- Daily scheduled job (via APScheduler, per active tenant)
- scripts/run_lifecycle_scan.py
"""
import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from batchtrace.config import settings
from batchtrace.core.clock import Clock, SystemClock
from batchtrace.jobs.lifecycle_rules import LIFECYCLE_RULES, LifecycleRule, ScanContext
from batchtrace.models.alert import ComplianceAlert
from batchtrace.schemas.lifecycle import RuleSummary, ScanSummary
from batchtrace.services.notification_service import AlertService, Notifier, LoggingNotifier

logger = logging.getLogger(__name__)


class LifecycleScanner:
    """Generic executor for the lifecycle rule set."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        notifier: Optional[Notifier] = None,
        rules: Optional[Sequence[LifecycleRule]] = None,
        concurrency: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        if session_factory is None:
            from batchtrace.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory
        self.notifier = notifier or LoggingNotifier()
        self.rules = list(rules) if rules is not None else list(LIFECYCLE_RULES)
        self.concurrency = max(1, concurrency or settings.LIFECYCLE_SCAN_CONCURRENCY)
        self.clock = clock or SystemClock()

    async def run(self, as_of: Optional[date] = None, tenant_id: Optional[UUID] = None) -> ScanSummary:
        """
        Run one scan.

        Args:
            as_of: The date treated as "today" (defaults to the clock's today)
            tenant_id: Restrict the scan to one tenant; None scans all rows

        Returns:
            ScanSummary with evaluated/transitioned/notified/errors per rule
        """
        as_of = as_of or self.clock.today()
        ctx = ScanContext(as_of=as_of, tenant_id=tenant_id)
        summary = ScanSummary(as_of=as_of, tenant_id=tenant_id, started_at=self.clock.now())

        logger.info(
            f"Starting lifecycle scan as of {as_of.isoformat()}"
            + (f" for tenant {tenant_id}" if tenant_id else "")
        )

        if self.concurrency > 1:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def limited(rule: LifecycleRule) -> RuleSummary:
                async with semaphore:
                    return await self._run_rule(rule, ctx)

            results = await asyncio.gather(*(limited(rule) for rule in self.rules))
        else:
            results = [await self._run_rule(rule, ctx) for rule in self.rules]

        for rule_summary in results:
            summary.per_rule[rule_summary.rule_id] = rule_summary
        summary.completed_at = self.clock.now()

        logger.info(
            f"Lifecycle scan completed as of {as_of.isoformat()}: "
            f"{summary.total_transitioned} transitioned, {summary.total_notified} notified, "
            f"{sum(len(r.errors) for r in results)} errors"
        )
        return summary

    async def _run_rule(self, rule: LifecycleRule, ctx: ScanContext) -> RuleSummary:
        summary = RuleSummary(rule_id=rule.rule_id, entity_type=rule.entity_type.value)
        new_alerts: List[ComplianceAlert] = []

        try:
            async with self.session_factory() as session:
                try:
                    await self._evaluate(session, rule, ctx, summary, new_alerts)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except Exception as e:
            error_msg = f"Rule '{rule.rule_id}' failed: {e}"
            logger.error(error_msg)
            summary.errors.append(error_msg)
            # Nothing from a rolled back rule persisted
            summary.transitioned = 0
            return summary

        summary.notified = len(new_alerts)
        for alert in new_alerts:
            try:
                await self.notifier.deliver(alert)
            except Exception as e:
                error_msg = f"Delivery failed for alert {alert.dedupe_key}: {e}"
                logger.error(error_msg)
                summary.errors.append(error_msg)

        logger.debug(
            f"Rule '{rule.rule_id}': {summary.evaluated} evaluated, "
            f"{summary.transitioned} transitioned, {summary.notified} notified"
        )
        return summary

    async def _evaluate(
        self,
        session: AsyncSession,
        rule: LifecycleRule,
        ctx: ScanContext,
        summary: RuleSummary,
        new_alerts: List[ComplianceAlert],
    ) -> None:
        alerts = AlertService(session)
        for candidate in await rule.candidates(session, ctx):
            summary.evaluated += 1
            if rule.transition is not None and await rule.transition(session, candidate, ctx):
                summary.transitioned += 1
            for draft in rule.evaluate(candidate, ctx):
                alert = await alerts.emit(draft)
                if alert is not None:
                    new_alerts.append(alert)


async def run_lifecycle_scan(
    as_of: Optional[date] = None,
    tenant_id: Optional[UUID] = None,
    session_factory: Optional[async_sessionmaker] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
) -> ScanSummary:
    """Convenience function to run a lifecycle scan."""
    scanner = LifecycleScanner(session_factory=session_factory, notifier=notifier, clock=clock)
    return await scanner.run(as_of=as_of, tenant_id=tenant_id)


def register_lifecycle_scan_job(scheduler):
    """
    Register the daily lifecycle scan with APScheduler.

    The scan is fanned out per active tenant by the tenant job runner.
    """
    from batchtrace.jobs.scheduler import run_tenant_aware_job

    scheduler.add_job(
        run_tenant_aware_job,
        'cron',
        hour=settings.LIFECYCLE_SCAN_CRON_HOUR,
        minute=settings.LIFECYCLE_SCAN_CRON_MINUTE,
        args=['lifecycle_scan'],
        id='lifecycle_scan',
        name='[Multi-Tenant] Daily Lifecycle Scan',
        replace_existing=True,
    )

    logger.info(
        f"Lifecycle scan job registered to run daily at "
        f"{settings.LIFECYCLE_SCAN_CRON_HOUR:02d}:{settings.LIFECYCLE_SCAN_CRON_MINUTE:02d} "
        f"({settings.APP_TIMEZONE})"
    )
