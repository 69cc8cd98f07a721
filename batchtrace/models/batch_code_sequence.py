"""
Batch Code Sequence Model for Atomic Number Generation

One counter row per (tenant, scope key). The scope key combines the code
scope with the date part the template renders, e.g.
``stock_batches:finished_product:2024-01-02`` so ``{SEQ}`` restarts daily
for daily templates.

The counter only ever moves forward; it is advanced with a single
``UPDATE ... SET current_value = current_value + 1 RETURNING`` so
concurrent service instances never hand out the same value.
"""
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.database import Base
from batchtrace.db_types import UUIDType


class BatchCodeSequence(Base):
    """Per-tenant, per-scope rolling counter backing the ``{SEQ}`` token."""
    __tablename__ = "batch_code_sequences"
    __table_args__ = (
        UniqueConstraint("tenant_id", "scope_key", name="uq_batch_code_sequence_scope"),
    )

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        UUIDType(as_uuid=True), ForeignKey("tenants.id"), nullable=False
    )
    scope_key: Mapped[str] = mapped_column(String(150), nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
