"""
Reference data the genealogy walk labels its nodes with.

Maintenance of these rows (suppliers, customers, stock items, deliveries)
lives outside the engine; only the columns the trace and scan read are
modelled here.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, Date, DateTime, ForeignKey, Index, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.database import Base
from batchtrace.db_types import UUIDType, QuantityType


class StockItem(Base):
    """A purchasable or producible item (ingredient, packaging, finished product)."""
    __tablename__ = "stock_items"
    __table_args__ = (
        Index("idx_si_tenant", "tenant_id"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    stock_unit: Mapped[Optional[str]] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Supplier(Base):
    """Approved supplier of raw materials."""
    __tablename__ = "suppliers"

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50))
    approval_status: Mapped[Optional[str]] = mapped_column(String(20))  # pending, approved, suspended


class Delivery(Base):
    """Goods-in delivery from a supplier."""
    __tablename__ = "deliveries"

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    supplier_id: Mapped[Optional[UUID]] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("suppliers.id")
    )
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    delivery_note_number: Mapped[Optional[str]] = mapped_column(String(100))


class DeliveryLine(Base):
    """One stock item received on a delivery; raw-material batches point here."""
    __tablename__ = "delivery_lines"

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    delivery_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("deliveries.id"), nullable=False
    )
    stock_item_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("stock_items.id"), nullable=False
    )
    quantity: Mapped[Optional[Decimal]] = mapped_column(QuantityType)
    unit: Mapped[Optional[str]] = mapped_column(String(20))


class Customer(Base):
    """Wholesale customer receiving dispatched batches."""
    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
