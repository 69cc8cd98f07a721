"""
Stock Batch Models - physical lots of one stock item.

Models for batch tracking including:
- Stock batches (raw-material and production-origin)
- Append-only batch movement history
- Dispatch records (terminal edge of the forward trace)
- Product specifications (shelf-life rules)
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    String, Integer, DateTime, ForeignKey, Index, Text,
    Date, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.core.enum_utils import enum_comment
from batchtrace.database import Base
from batchtrace.db_types import UUIDType, JSONType, QuantityType


# ============================================================================
# ENUMS
# ============================================================================

class BatchStatus(str, Enum):
    """Status of a stock batch. Transitions only move away from ACTIVE."""
    ACTIVE = "active"
    EXPIRED = "expired"
    QUARANTINED = "quarantined"
    RECALLED = "recalled"


class MovementType(str, Enum):
    """Quantity-affecting events recorded against a batch."""
    RECEIVED = "received"
    CONSUMED_PRODUCTION = "consumed_production"
    DISPATCH = "dispatch"
    ADJUSTMENT = "adjustment"


class SpecStatus(str, Enum):
    """Product specification status."""
    DRAFT = "draft"
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class ShelfLifeUnit(str, Enum):
    """Unit the shelf life was declared in (display only)."""
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


# ============================================================================
# MODELS
# ============================================================================

class StockBatch(Base):
    """
    A quantified lot of a single stock item.

    Provenance is either a delivery line (raw material) or a production
    batch (finished product / byproduct), never both.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        UniqueConstraint("tenant_id", "batch_code", name="uq_stock_batch_code"),
        CheckConstraint("quantity_remaining >= 0", name="ck_sb_remaining_non_negative"),
        CheckConstraint(
            "quantity_remaining <= quantity_received", name="ck_sb_remaining_le_received"
        ),
        CheckConstraint(
            "NOT (delivery_line_id IS NOT NULL AND production_batch_id IS NOT NULL)",
            name="ck_sb_single_origin",
        ),
        Index("idx_sb_tenant_item", "tenant_id", "stock_item_id"),
        Index("idx_sb_use_by", "tenant_id", "status", "use_by_date"),
        Index("idx_sb_origin_pb", "tenant_id", "production_batch_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_items.id"), nullable=False
    )

    # Identity
    batch_code: Mapped[str] = mapped_column(String(100), nullable=False)
    supplier_batch_code: Mapped[Optional[str]] = mapped_column(String(100))

    # Provenance
    delivery_line_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("delivery_lines.id")
    )
    production_batch_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("production_batches.id")
    )

    # Quantity
    quantity_received: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    quantity_remaining: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    # Dates
    use_by_date: Mapped[Optional[date]] = mapped_column(Date)  # safety-critical
    best_before_date: Mapped[Optional[date]] = mapped_column(Date)  # quality

    allergens: Mapped[Optional[List[str]]] = mapped_column(JSONType, default=list)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.ACTIVE.value,
        comment=enum_comment(BatchStatus)
    )
    condition_notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_raw_material(self) -> bool:
        return self.production_batch_id is None


class BatchMovement(Base):
    """
    Append-only audit record of a quantity-affecting event.

    Rows are never updated or deleted. ``quantity`` is signed: positive
    for stock in, negative for stock out, zero for status-only adjustments.
    """
    __tablename__ = "batch_movements"
    __table_args__ = (
        Index("idx_bm_tenant_batch", "tenant_id", "batch_id"),
        Index("idx_bm_type", "tenant_id", "movement_type"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    batch_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_batches.id"), nullable=False
    )
    movement_type: Mapped[str] = mapped_column(
        String(30), nullable=False, comment=enum_comment(MovementType)
    )
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)

    # Reference
    reference_type: Mapped[Optional[str]] = mapped_column(String(50))  # production_batch, dispatch, lifecycle_scan
    reference_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class BatchDispatchRecord(Base):
    """Quantity of a batch shipped to a customer."""
    __tablename__ = "batch_dispatch_records"
    __table_args__ = (
        Index("idx_bdr_tenant_batch", "tenant_id", "stock_batch_id"),
        Index("idx_bdr_customer", "tenant_id", "customer_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    stock_batch_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_batches.id"), nullable=False
    )
    customer_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("customers.id")
    )
    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)

    dispatch_date: Mapped[date] = mapped_column(Date, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    delivery_note_reference: Mapped[Optional[str]] = mapped_column(String(100))

    created_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class ProductSpecification(Base):
    """
    Versioned specification of a stock item.

    Only the most recently updated ACTIVE specification governs shelf life.
    """
    __tablename__ = "product_specifications"
    __table_args__ = (
        Index("idx_ps_tenant_item_status", "tenant_id", "stock_item_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_items.id"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, default=1)

    shelf_life_days: Mapped[Optional[int]] = mapped_column(Integer)
    shelf_life_unit: Mapped[str] = mapped_column(
        String(10), default=ShelfLifeUnit.DAYS.value, comment=enum_comment(ShelfLifeUnit)
    )
    allergens: Mapped[Optional[List[str]]] = mapped_column(JSONType)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SpecStatus.DRAFT.value,
        comment=enum_comment(SpecStatus)
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
