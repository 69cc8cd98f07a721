"""
Compliance alert records produced by the lifecycle scan.

Each alert is keyed by a dedupe key derived from
(entity_type, entity_id, rule_id, threshold_tier); the unique constraint
on (tenant_id, dedupe_key) is the conflict target that makes repeated
scans idempotent.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.core.enum_utils import enum_comment
from batchtrace.database import Base
from batchtrace.db_types import UUIDType, JSONType


class AlertSeverity(str, Enum):
    """Severity levels for compliance alerts."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class LifecycleEntityType(str, Enum):
    """Entity kinds the lifecycle scan watches."""
    STOCK_BATCH = "stock_batch"
    CALIBRATION = "calibration"
    CORRECTIVE_ACTION = "corrective_action"
    RECALL_NOTIFICATION = "recall_notification"
    SUPPLIER_DOCUMENT = "supplier_document"


def build_dedupe_key(entity_type: str, entity_id, rule_id: str, threshold_tier: str) -> str:
    """
    Derive the alert dedupe key.

    Example:
        >>> build_dedupe_key("stock_batch", "9b1d...", "use_by_approaching", "days_left=1")
        'stock_batch:9b1d...:use_by_approaching:days_left=1'
    """
    return f"{entity_type}:{entity_id}:{rule_id}:{threshold_tier}"


class ComplianceAlert(Base):
    """At-most-once alert for one (entity, rule, threshold tier)."""
    __tablename__ = "compliance_alerts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "dedupe_key", name="uq_compliance_alert_dedupe"),
        Index("idx_ca_tenant_rule", "tenant_id", "rule_id"),
        Index("idx_ca_entity", "tenant_id", "entity_type", "entity_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )

    entity_type: Mapped[str] = mapped_column(
        String(30), nullable=False, comment=enum_comment(LifecycleEntityType)
    )
    entity_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    rule_id: Mapped[str] = mapped_column(String(50), nullable=False)
    threshold_tier: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, comment=enum_comment(AlertSeverity)
    )
    dedupe_key: Mapped[str] = mapped_column(String(200), nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text)
    extra_data: Mapped[Optional[dict]] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )
