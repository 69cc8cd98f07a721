"""
Compliance Models - time-bound records watched by the lifecycle scan.

- Asset calibrations (probes, scales)
- Non-conformances with corrective-action deadlines
- Recalls and their customer notifications
- Supplier documents (certificates, insurance, spec sheets)
"""
from datetime import datetime, date, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, DateTime, ForeignKey, Index, Text, Boolean, Date
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.core.enum_utils import enum_comment
from batchtrace.database import Base
from batchtrace.db_types import UUIDType


# ============================================================================
# ENUMS
# ============================================================================

class CalibrationResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    ADJUSTED = "adjusted"


class NonConformanceStatus(str, Enum):
    """Corrective-action workflow status."""
    OPEN = "open"
    INVESTIGATING = "investigating"
    CORRECTIVE_ACTION = "corrective_action"
    VERIFICATION = "verification"
    CLOSED = "closed"


class RecallStatus(str, Enum):
    """Status of a recall or withdrawal."""
    DRAFT = "draft"
    ACTIVE = "active"
    INVESTIGATING = "investigating"
    NOTIFIED = "notified"
    RESOLVED = "resolved"
    CLOSED = "closed"


class RecallType(str, Enum):
    RECALL = "recall"
    WITHDRAWAL = "withdrawal"


class SupplierDocumentType(str, Enum):
    CERTIFICATE = "certificate"
    INSURANCE = "insurance"
    SPEC_SHEET = "spec_sheet"
    AUDIT_REPORT = "audit_report"
    CONTRACT = "contract"
    OTHER = "other"


# ============================================================================
# MODELS
# ============================================================================

class AssetCalibration(Base):
    """
    Calibration record for an asset.

    An asset accumulates records over time; only the one with the latest
    ``next_calibration_due`` is the live schedule.
    """
    __tablename__ = "asset_calibrations"
    __table_args__ = (
        Index("idx_ac_tenant_asset", "tenant_id", "asset_id"),
        Index("idx_ac_next_due", "tenant_id", "next_calibration_due"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    asset_id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), nullable=False)
    asset_name: Mapped[Optional[str]] = mapped_column(String(200))

    calibration_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_calibration_due: Mapped[Optional[date]] = mapped_column(Date)
    calibrated_by: Mapped[Optional[str]] = mapped_column(String(200))
    certificate_reference: Mapped[Optional[str]] = mapped_column(String(100))
    result: Mapped[str] = mapped_column(
        String(20), default=CalibrationResult.PASS.value, comment=enum_comment(CalibrationResult)
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class NonConformance(Base):
    """Non-conformance raised by audit or monitoring, carrying a corrective-action deadline."""
    __tablename__ = "non_conformances"
    __table_args__ = (
        Index("idx_nc_tenant_status", "tenant_id", "status"),
        Index("idx_nc_due", "tenant_id", "corrective_action_due"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    nc_code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(30))  # hygiene, allergen, calibration, ...
    severity: Mapped[Optional[str]] = mapped_column(String(20))  # minor, major, critical

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=NonConformanceStatus.OPEN.value,
        comment=enum_comment(NonConformanceStatus)
    )
    corrective_action: Mapped[Optional[str]] = mapped_column(Text)
    corrective_action_due: Mapped[Optional[date]] = mapped_column(Date)
    corrective_action_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    raised_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# Corrective actions are tracked on the non-conformance record
CorrectiveAction = NonConformance


class Recall(Base):
    """Product recall or withdrawal."""
    __tablename__ = "recalls"
    __table_args__ = (
        Index("idx_recall_tenant_status", "tenant_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    recall_code: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    recall_type: Mapped[str] = mapped_column(
        String(20), default=RecallType.RECALL.value, comment=enum_comment(RecallType)
    )
    severity: Mapped[Optional[str]] = mapped_column(String(20))  # class_1, class_2, class_3
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RecallStatus.DRAFT.value,
        comment=enum_comment(RecallStatus)
    )
    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class RecallNotification(Base):
    """A customer who must be told about a recall. ``notified_at`` NULL means not yet told."""
    __tablename__ = "recall_notifications"
    __table_args__ = (
        Index("idx_rn_tenant_recall", "tenant_id", "recall_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    recall_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("recalls.id"), nullable=False
    )
    customer_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("customers.id")
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(String(200))
    notification_method: Mapped[Optional[str]] = mapped_column(String(30))
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def notified(self) -> bool:
        return self.notified_at is not None


class SupplierDocument(Base):
    """Certificate or contract held on file for a supplier."""
    __tablename__ = "supplier_documents"
    __table_args__ = (
        Index("idx_sd_tenant_expiry", "tenant_id", "expiry_date"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    supplier_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("suppliers.id"), nullable=False
    )
    document_type: Mapped[str] = mapped_column(
        String(20), default=SupplierDocumentType.OTHER.value,
        comment=enum_comment(SupplierDocumentType)
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[Optional[str]] = mapped_column(String(20))
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)

    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
