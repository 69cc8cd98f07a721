"""Tenant registry used to fan background jobs out per company."""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from batchtrace.database import Base
from batchtrace.db_types import UUIDType, JSONType


class TenantStatus(str, Enum):
    """Tenant lifecycle status."""
    ACTIVE = "active"
    SUSPENDED = "suspended"


class Tenant(Base):
    """
    A company owning batches, production runs and compliance records.

    ``settings`` may carry ``batch_code_formats`` overriding the default
    templates per code kind, e.g. ``{"raw_material": "GI-{YYYY}{MMDD}-{SEQ}"}``.
    """
    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(UUIDType(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TenantStatus.ACTIVE.value)
    settings: Mapped[Optional[dict]] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
