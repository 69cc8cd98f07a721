"""
Production Models - production runs and their genealogy edges.

A production batch consumes input stock batches (ProductionBatchInput) and
emits outputs (ProductionBatchOutput). Non-waste outputs materialize a new
StockBatch; waste is tracked for yield accounting only.
"""
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    String, DateTime, ForeignKey, Index, Text, Boolean,
    Date, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.core.enum_utils import enum_comment
from batchtrace.database import Base
from batchtrace.db_types import UUIDType, QuantityType


class ProductionBatchStatus(str, Enum):
    """Status of a production run."""
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_PRODUCTION_STATUSES = {
    ProductionBatchStatus.COMPLETED.value,
    ProductionBatchStatus.CANCELLED.value,
}


class OutputType(str, Enum):
    """Kind of production output."""
    FINISHED_PRODUCT = "finished_product"
    BYPRODUCT = "byproduct"
    WASTE = "waste"


class ProductionBatch(Base):
    """One production run of a recipe."""
    __tablename__ = "production_batches"
    __table_args__ = (
        UniqueConstraint("tenant_id", "batch_code", name="uq_production_batch_code"),
        Index("idx_pb_tenant_date", "tenant_id", "production_date"),
        Index("idx_pb_status", "tenant_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    batch_code: Mapped[str] = mapped_column(String(100), nullable=False)
    recipe_id: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))

    production_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProductionBatchStatus.PLANNED.value,
        comment=enum_comment(ProductionBatchStatus)
    )

    planned_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    unit: Mapped[Optional[str]] = mapped_column(String(20))

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PRODUCTION_STATUSES


class ProductionBatchInput(Base):
    """
    Consumption edge: a stock batch used by a production batch.

    A stock batch may feed many production batches (partial consumption).
    """
    __tablename__ = "production_batch_inputs"
    __table_args__ = (
        Index("idx_pbi_production", "tenant_id", "production_batch_id"),
        Index("idx_pbi_stock_batch", "tenant_id", "stock_batch_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    production_batch_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("production_batches.id"), nullable=False
    )
    stock_batch_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_batches.id"), nullable=False
    )
    stock_item_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_items.id")
    )

    planned_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    actual_quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    unit: Mapped[Optional[str]] = mapped_column(String(20))

    # Rework: the input is itself the output of an earlier production run
    is_rework: Mapped[bool] = mapped_column(Boolean, default=False)
    rework_source_batch_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("production_batches.id")
    )

    added_by: Mapped[Optional[UUID]] = mapped_column(UUIDType(as_uuid=True))
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class ProductionBatchOutput(Base):
    """
    Output of a production batch.

    ``stock_batch_id`` points at the materialized StockBatch; it and
    ``generated_batch_code`` stay NULL for waste.
    """
    __tablename__ = "production_batch_outputs"
    __table_args__ = (
        Index("idx_pbo_production", "tenant_id", "production_batch_id"),
        Index("idx_pbo_stock_batch", "tenant_id", "stock_batch_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    production_batch_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("production_batches.id"), nullable=False
    )
    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_items.id"), nullable=False
    )
    output_type: Mapped[str] = mapped_column(
        String(20), nullable=False, comment=enum_comment(OutputType)
    )

    quantity: Mapped[Decimal] = mapped_column(QuantityType, nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    use_by_date: Mapped[Optional[date]] = mapped_column(Date)
    best_before_date: Mapped[Optional[date]] = mapped_column(Date)

    generated_batch_code: Mapped[Optional[str]] = mapped_column(String(100))
    stock_batch_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_batches.id")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
