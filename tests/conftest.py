"""Pytest configuration and shared fixtures."""

from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from batchtrace import models  # noqa: F401  registers all tables
from batchtrace.core.clock import FixedClock
from batchtrace.database import Base
from batchtrace.models.batch import StockBatch, ProductSpecification, SpecStatus
from batchtrace.models.production import ProductionBatch, ProductionBatchStatus
from batchtrace.models.reference import StockItem, Supplier, Delivery, DeliveryLine, Customer
from batchtrace.models.tenant import Tenant
from batchtrace.services.genealogy_service import GenealogyService


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    """Clock pinned to the production day of the reference scenario."""
    return FixedClock(date(2024, 1, 2))


@pytest.fixture
async def seed(db):
    """
    Tenant with reference data:
    - flour (raw, kg) delivered by Mill & Co on 2024-01-01
    - milk (raw, l) on the same delivery
    - bread (finished, kg) with an active 5-day shelf life
    - crumbs (byproduct, kg)
    - three wholesale customers
    """
    tenant = Tenant(id=uuid4(), name="Bakehouse Ltd", settings={})
    db.add(tenant)
    await db.flush()

    flour = StockItem(id=uuid4(), tenant_id=tenant.id, name="Flour", stock_unit="kg")
    milk = StockItem(id=uuid4(), tenant_id=tenant.id, name="Milk", stock_unit="l")
    bread = StockItem(id=uuid4(), tenant_id=tenant.id, name="Sourdough Loaf", stock_unit="kg")
    crumbs = StockItem(id=uuid4(), tenant_id=tenant.id, name="Breadcrumbs", stock_unit="kg")
    db.add_all([flour, milk, bread, crumbs])

    supplier = Supplier(id=uuid4(), tenant_id=tenant.id, name="Mill & Co", code="MILL")
    db.add(supplier)
    await db.flush()

    delivery = Delivery(
        id=uuid4(), tenant_id=tenant.id, supplier_id=supplier.id,
        delivery_date=date(2024, 1, 1), delivery_note_number="DN-1001",
    )
    db.add(delivery)
    await db.flush()

    flour_line = DeliveryLine(
        id=uuid4(), tenant_id=tenant.id, delivery_id=delivery.id,
        stock_item_id=flour.id, quantity=Decimal("100"), unit="kg",
    )
    milk_line = DeliveryLine(
        id=uuid4(), tenant_id=tenant.id, delivery_id=delivery.id,
        stock_item_id=milk.id, quantity=Decimal("20"), unit="l",
    )
    db.add_all([flour_line, milk_line])

    customers = [
        Customer(id=uuid4(), tenant_id=tenant.id, name=name)
        for name in ("Corner Cafe", "Hotel Grand", "Deli Direct")
    ]
    db.add_all(customers)

    db.add(ProductSpecification(
        id=uuid4(), tenant_id=tenant.id, stock_item_id=bread.id,
        shelf_life_days=5, status=SpecStatus.ACTIVE.value,
    ))
    await db.commit()

    return SimpleNamespace(
        tenant=tenant,
        flour=flour,
        milk=milk,
        bread=bread,
        crumbs=crumbs,
        supplier=supplier,
        delivery=delivery,
        flour_line=flour_line,
        milk_line=milk_line,
        customers=customers,
    )


@pytest.fixture
def genealogy(db, seed, clock):
    return GenealogyService(db, seed.tenant.id, clock)


@pytest.fixture
def make_stock_batch(db, seed):
    """Factory inserting a stock batch directly (bypassing the genealogy service)."""
    async def _make(code, quantity="10", **kwargs):
        values = dict(
            id=uuid4(),
            tenant_id=seed.tenant.id,
            stock_item_id=seed.flour.id,
            batch_code=code,
            quantity_received=Decimal(quantity),
            quantity_remaining=Decimal(quantity),
            unit="kg",
            allergens=[],
            status="active",
        )
        values.update(kwargs)
        batch = StockBatch(**values)
        db.add(batch)
        await db.commit()
        return batch
    return _make


@pytest.fixture
def make_production_batch(db, seed):
    async def _make(code, production_date=date(2024, 1, 2), unit="kg",
                    status=ProductionBatchStatus.IN_PROGRESS.value):
        batch = ProductionBatch(
            id=uuid4(),
            tenant_id=seed.tenant.id,
            batch_code=code,
            production_date=production_date,
            unit=unit,
            status=status,
            started_at=datetime(2024, 1, 2, 6, 0, tzinfo=timezone.utc),
        )
        db.add(batch)
        await db.commit()
        return batch
    return _make
