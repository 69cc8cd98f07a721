"""
Compliance Alert Notification Service

The engine only produces alert records; delivery (email, push, SMS) is
handled by whatever ``Notifier`` the host application plugs in.

This module provides:
- AlertService: deduplicated persistence of compliance alerts
- Notifier: delivery interface
- LoggingNotifier: placeholder implementation that logs alerts
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.core.enum_utils import get_enum_value
from batchtrace.database import insert_for
from batchtrace.models.alert import ComplianceAlert, build_dedupe_key
from batchtrace.schemas.lifecycle import AlertDraft


logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Accepts a fully composed alert and handles downstream delivery."""

    @abstractmethod
    async def deliver(self, alert: ComplianceAlert) -> None:
        pass


class LoggingNotifier(Notifier):
    """
    Placeholder notifier that logs alerts.

    In production, replace with an email/push provider integration.
    """

    async def deliver(self, alert: ComplianceAlert) -> None:
        logger.info(
            f"[NOTIFICATION] {alert.severity.upper()} {alert.rule_id} "
            f"{alert.entity_type}:{alert.entity_id}: {alert.title}"
        )


class AlertService:
    """
    Persists compliance alerts at most once per dedupe key.

    The insert uses the (tenant_id, dedupe_key) unique constraint as its
    conflict target, so concurrent or repeated scans cannot double-alert.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(self, draft: AlertDraft) -> Optional[ComplianceAlert]:
        """
        Insert an alert unless one with the same dedupe key already exists.

        Returns:
            The new alert, or None if it was a duplicate
        """
        dedupe_key = build_dedupe_key(
            draft.entity_type, draft.entity_id, draft.rule_id, draft.threshold_tier
        )
        stmt = (
            insert_for(self.db, ComplianceAlert)
            .values(
                id=uuid4(),
                tenant_id=draft.tenant_id,
                entity_type=draft.entity_type,
                entity_id=draft.entity_id,
                rule_id=draft.rule_id,
                threshold_tier=draft.threshold_tier,
                severity=get_enum_value(draft.severity),
                dedupe_key=dedupe_key,
                title=draft.title,
                message=draft.message,
                extra_data=draft.extra_data,
            )
            .on_conflict_do_nothing(index_elements=["tenant_id", "dedupe_key"])
            .returning(ComplianceAlert.id)
        )
        result = await self.db.execute(stmt)
        alert_id = result.scalar_one_or_none()
        if alert_id is None:
            logger.debug(f"Alert already raised: {dedupe_key}")
            return None
        return await self.db.get(ComplianceAlert, alert_id)

    async def list_alerts(
        self,
        tenant_id: UUID,
        rule_id: Optional[str] = None,
        entity_id: Optional[UUID] = None,
    ) -> List[ComplianceAlert]:
        query = select(ComplianceAlert).where(ComplianceAlert.tenant_id == tenant_id)
        if rule_id:
            query = query.where(ComplianceAlert.rule_id == rule_id)
        if entity_id:
            query = query.where(ComplianceAlert.entity_id == entity_id)
        result = await self.db.execute(query.order_by(ComplianceAlert.created_at))
        return list(result.scalars().all())
