"""Tests for the genealogy write path: runs, inputs, outputs, receipt and dispatch."""
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select, func

from batchtrace.core.exceptions import (
    EntityNotFoundError, InvalidStateError, ShelfLifeExceededError,
    StoreConflictError, UnitMismatchError,
)
from batchtrace.models.batch import BatchMovement, BatchDispatchRecord, StockBatch
from batchtrace.models.production import ProductionBatchOutput, ProductionBatchStatus
from batchtrace.schemas.production import (
    DispatchCreate, ProductionBatchCreate, ProductionInputCreate,
    ProductionOutputCreate, RawBatchReceive,
)
from batchtrace.services.genealogy_service import record_production_output


async def count_rows(session_factory, model, **filters):
    """Count rows through a fresh session so nothing cached in the test session leaks in."""
    async with session_factory() as session:
        stmt = select(func.count()).select_from(model)
        for column, value in filters.items():
            stmt = stmt.where(getattr(model, column) == value)
        return (await session.execute(stmt)).scalar_one()


@pytest.fixture
async def run_with_flour(genealogy, seed, make_stock_batch, make_production_batch):
    """In-progress run that consumed 80kg of a gluten-bearing flour batch."""
    flour = await make_stock_batch("RM-2024-0101-001", quantity="100", allergens=["gluten"])
    pb = await make_production_batch("PB-2024-0102-001")
    await genealogy.record_input(pb.id, ProductionInputCreate(
        stock_batch_id=flour.id, actual_quantity=Decimal("80"), unit="kg",
    ))
    return pb, flour


# ------------------------------------------------------------------
# Outputs
# ------------------------------------------------------------------

class TestRecordOutput:

    async def test_finished_product_materializes_batch(self, db, genealogy, seed, run_with_flour):
        pb, _ = run_with_flour
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("75"), unit="kg",
            use_by_date=date(2024, 1, 6),
        ))

        assert result.stock_batch is not None
        assert result.stock_batch.batch_code == "FP-2024-0102-001"
        assert result.stock_batch.production_batch_id == pb.id
        assert result.stock_batch.quantity_remaining == Decimal("75")
        assert result.stock_batch.status == "active"
        assert result.stock_batch.allergens == ["gluten"]
        assert result.inherited_allergens == ["gluten"]
        assert result.max_use_by == date(2024, 1, 7)
        assert result.output.generated_batch_code == "FP-2024-0102-001"
        assert result.output.stock_batch_id == result.stock_batch.id

        movements = await genealogy.get_movements(result.stock_batch.id)
        assert len(movements) == 1
        assert movements[0].movement_type == "received"
        assert movements[0].quantity == Decimal("75")
        assert movements[0].notes == "Finished product from production batch PB-2024-0102-001"

    async def test_byproduct_uses_its_own_counter(self, genealogy, seed, run_with_flour):
        pb, _ = run_with_flour
        await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("70"),
        ))
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.crumbs.id, output_type="BYPRODUCT", quantity=Decimal("3"),
        ))

        assert result.stock_batch.batch_code == "BP-2024-0102-001"
        movements = await genealogy.get_movements(result.stock_batch.id)
        assert movements[0].notes == "Byproduct from production batch PB-2024-0102-001"

    async def test_waste_has_no_batch_or_code(self, genealogy, seed, session_factory, run_with_flour):
        pb, _ = run_with_flour
        pb_id = pb.id
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, output_type="waste", quantity=Decimal("5"),
        ))

        assert result.stock_batch is None
        assert result.output.generated_batch_code is None
        assert result.output.stock_batch_id is None
        assert result.output.unit == "kg"
        assert await count_rows(session_factory, StockBatch, production_batch_id=pb_id) == 0

    async def test_waste_with_manual_code_rejected(self, seed):
        with pytest.raises(ValueError):
            ProductionOutputCreate(
                stock_item_id=seed.bread.id, output_type="waste",
                quantity=Decimal("1"), batch_code="W-1",
            )

    async def test_unit_falls_back_to_stock_item(self, genealogy, seed, make_production_batch):
        pb = await make_production_batch("PB-9", unit=None)
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("10"),
        ))
        assert result.stock_batch.unit == "kg"

    async def test_unit_comparison_ignores_case(self, genealogy, seed, run_with_flour):
        pb, _ = run_with_flour
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("10"), unit="KG",
        ))
        assert result.stock_batch is not None

    async def test_manual_code_is_used(self, genealogy, seed, run_with_flour):
        pb, _ = run_with_flour
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("10"), batch_code="LOAF-A",
        ))
        assert result.stock_batch.batch_code == "LOAF-A"

    async def test_module_level_entry_point(self, db, seed, clock, run_with_flour):
        pb, _ = run_with_flour
        result = await record_production_output(
            seed.tenant.id, pb.id,
            ProductionOutputCreate(stock_item_id=seed.bread.id, quantity=Decimal("10")),
            db=db, clock=clock,
        )
        assert result.stock_batch.batch_code == "FP-2024-0102-001"


class TestRecordOutputRejections:
    """Every rejection leaves no output, batch or movement behind."""

    async def assert_nothing_written(self, session_factory, pb_id):
        assert await count_rows(session_factory, ProductionBatchOutput, production_batch_id=pb_id) == 0
        assert await count_rows(session_factory, StockBatch, production_batch_id=pb_id) == 0
        assert await count_rows(session_factory, BatchMovement, reference_id=pb_id, movement_type="received") == 0

    async def test_unit_mismatch(self, genealogy, seed, session_factory, run_with_flour):
        pb, _ = run_with_flour
        pb_id, bread_id = pb.id, seed.bread.id
        with pytest.raises(UnitMismatchError) as exc_info:
            await genealogy.record_output(pb_id, ProductionOutputCreate(
                stock_item_id=bread_id, quantity=Decimal("75"), unit="l",
            ))
        assert exc_info.value.expected == "kg"
        assert exc_info.value.actual == "l"
        await self.assert_nothing_written(session_factory, pb_id)

    async def test_shelf_life_exceeded(self, genealogy, seed, session_factory, run_with_flour):
        pb, _ = run_with_flour
        pb_id, bread_id = pb.id, seed.bread.id
        with pytest.raises(ShelfLifeExceededError) as exc_info:
            await genealogy.record_output(pb_id, ProductionOutputCreate(
                stock_item_id=bread_id, quantity=Decimal("75"), use_by_date=date(2024, 1, 8),
            ))
        assert exc_info.value.max_use_by == date(2024, 1, 7)
        await self.assert_nothing_written(session_factory, pb_id)

    async def test_cancelled_production_batch(self, genealogy, seed, session_factory, make_production_batch):
        pb = await make_production_batch("PB-X", status=ProductionBatchStatus.CANCELLED.value)
        pb_id, bread_id = pb.id, seed.bread.id
        with pytest.raises(InvalidStateError):
            await genealogy.record_output(pb_id, ProductionOutputCreate(
                stock_item_id=bread_id, quantity=Decimal("1"),
            ))
        await self.assert_nothing_written(session_factory, pb_id)

    async def test_missing_production_batch(self, genealogy, seed):
        missing = uuid4()
        bread_id = seed.bread.id
        with pytest.raises(EntityNotFoundError) as exc_info:
            await genealogy.record_output(missing, ProductionOutputCreate(
                stock_item_id=bread_id, quantity=Decimal("1"),
            ))
        assert exc_info.value.entity_id == missing

    async def test_manual_code_conflict(self, genealogy, seed, session_factory,
                                        make_stock_batch, run_with_flour):
        pb, _ = run_with_flour
        await make_stock_batch("LOAF-A")
        pb_id, bread_id = pb.id, seed.bread.id
        with pytest.raises(StoreConflictError):
            await genealogy.record_output(pb_id, ProductionOutputCreate(
                stock_item_id=bread_id, quantity=Decimal("1"), batch_code="LOAF-A",
            ))
        await self.assert_nothing_written(session_factory, pb_id)


# ------------------------------------------------------------------
# Inputs
# ------------------------------------------------------------------

class TestRecordInput:

    async def test_consumption_decrements_and_logs(self, db, genealogy, run_with_flour):
        pb, flour = run_with_flour
        batch = await genealogy.get_stock_batch(flour.id)
        assert batch.quantity_remaining == Decimal("20")

        movements = await genealogy.get_movements(flour.id)
        assert [m.movement_type for m in movements] == ["consumed_production"]
        assert movements[0].quantity == Decimal("-80")
        assert movements[0].notes == "Consumed by production batch PB-2024-0102-001"

        inputs = await genealogy.get_inputs(pb.id)
        assert len(inputs) == 1
        assert inputs[0].actual_quantity == Decimal("80")

    async def test_over_consumption_rejected(self, genealogy, run_with_flour):
        pb, flour = run_with_flour
        pb_id, flour_id = pb.id, flour.id
        with pytest.raises(InvalidStateError, match="remaining"):
            await genealogy.record_input(pb_id, ProductionInputCreate(
                stock_batch_id=flour_id, actual_quantity=Decimal("21"),
            ))
        batch = await genealogy.get_stock_batch(flour_id)
        assert batch.quantity_remaining == Decimal("20")

    async def test_unit_mismatch_rejected(self, genealogy, run_with_flour):
        pb, flour = run_with_flour
        with pytest.raises(UnitMismatchError) as exc_info:
            await genealogy.record_input(pb.id, ProductionInputCreate(
                stock_batch_id=flour.id, actual_quantity=Decimal("1"), unit="l",
            ))
        assert exc_info.value.expected == "kg"

    async def test_inactive_batch_rejected(self, genealogy, make_stock_batch, make_production_batch):
        quarantined = await make_stock_batch("RM-Q", status="quarantined")
        pb = await make_production_batch("PB-1")
        with pytest.raises(InvalidStateError, match="quarantined"):
            await genealogy.record_input(pb.id, ProductionInputCreate(
                stock_batch_id=quarantined.id, actual_quantity=Decimal("1"),
            ))

    async def test_completed_run_rejects_inputs(self, genealogy, make_stock_batch, make_production_batch):
        batch = await make_stock_batch("RM-1")
        pb = await make_production_batch("PB-1", status=ProductionBatchStatus.COMPLETED.value)
        with pytest.raises(InvalidStateError):
            await genealogy.record_input(pb.id, ProductionInputCreate(
                stock_batch_id=batch.id, actual_quantity=Decimal("1"),
            ))

    async def test_own_output_rejected(self, genealogy, seed, run_with_flour):
        pb, _ = run_with_flour
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("10"),
        ))
        with pytest.raises(InvalidStateError, match="own output"):
            await genealogy.record_input(pb.id, ProductionInputCreate(
                stock_batch_id=result.stock_batch.id, actual_quantity=Decimal("1"),
            ))

    async def test_rework_links_source_run(self, genealogy, seed, run_with_flour, make_production_batch):
        pb, _ = run_with_flour
        result = await genealogy.record_output(pb.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("10"),
        ))
        second = await make_production_batch("PB-2024-0102-002")
        rework = await genealogy.record_input(second.id, ProductionInputCreate(
            stock_batch_id=result.stock_batch.id, actual_quantity=Decimal("4"), is_rework=True,
        ))

        assert rework.is_rework is True
        assert rework.rework_source_batch_id == pb.id
        movements = await genealogy.get_movements(result.stock_batch.id)
        assert movements[-1].notes == "Rework into production batch PB-2024-0102-002"

    async def test_raw_material_cannot_be_rework(self, genealogy, make_stock_batch, make_production_batch):
        batch = await make_stock_batch("RM-1")
        pb = await make_production_batch("PB-1")
        with pytest.raises(InvalidStateError, match="rework"):
            await genealogy.record_input(pb.id, ProductionInputCreate(
                stock_batch_id=batch.id, actual_quantity=Decimal("1"), is_rework=True,
            ))


# ------------------------------------------------------------------
# Production run lifecycle
# ------------------------------------------------------------------

class TestProductionRuns:

    async def test_plan_generates_code(self, genealogy):
        batch = await genealogy.create_production_batch(ProductionBatchCreate(
            production_date=date(2024, 1, 2), unit="kg", planned_quantity=Decimal("80"),
        ))
        assert batch.batch_code == "PB-2024-0102-001"
        assert batch.status == "planned"

    async def test_plan_with_duplicate_manual_code(self, genealogy, make_production_batch):
        await make_production_batch("PB-MANUAL")
        with pytest.raises(StoreConflictError):
            await genealogy.create_production_batch(ProductionBatchCreate(
                production_date=date(2024, 1, 2), batch_code="PB-MANUAL",
            ))

    async def test_start_complete(self, genealogy, clock):
        batch = await genealogy.create_production_batch(ProductionBatchCreate(
            production_date=date(2024, 1, 2),
        ))
        started = await genealogy.start_production_batch(batch.id)
        assert started.status == "in_progress"
        assert started.started_at == clock.now()

        completed = await genealogy.complete_production_batch(batch.id)
        assert completed.status == "completed"

    async def test_complete_requires_in_progress(self, genealogy):
        batch = await genealogy.create_production_batch(ProductionBatchCreate(
            production_date=date(2024, 1, 2),
        ))
        batch_id = batch.id
        with pytest.raises(InvalidStateError):
            await genealogy.complete_production_batch(batch_id)

    async def test_cancel_terminal_rejected(self, genealogy, make_production_batch):
        pb = await make_production_batch("PB-1")
        cancelled = await genealogy.cancel_production_batch(pb.id, reason="Oven failure")
        assert cancelled.status == "cancelled"
        assert cancelled.notes == "Oven failure"
        with pytest.raises(InvalidStateError):
            await genealogy.cancel_production_batch(cancelled.id)


# ------------------------------------------------------------------
# Raw-material receipt
# ------------------------------------------------------------------

class TestReceiveRawBatch:

    async def test_receipt_against_delivery_line(self, genealogy, seed):
        batch = await genealogy.receive_raw_batch(RawBatchReceive(
            stock_item_id=seed.flour.id, delivery_line_id=seed.flour_line.id,
            quantity=Decimal("100"), unit="kg", allergens=["Gluten", "gluten "],
            received_on=date(2024, 1, 1),
        ))
        assert batch.batch_code == "RM-2024-0101-001"
        assert batch.is_raw_material
        assert batch.allergens == ["gluten"]

        movements = await genealogy.get_movements(batch.id)
        assert movements[0].movement_type == "received"
        assert movements[0].reference_type == "delivery_line"

    async def test_receipt_defaults_to_today(self, genealogy, seed):
        batch = await genealogy.receive_raw_batch(RawBatchReceive(
            stock_item_id=seed.milk.id, delivery_line_id=seed.milk_line.id,
            quantity=Decimal("20"), unit="l",
        ))
        assert batch.batch_code == "RM-2024-0102-001"

    async def test_item_must_match_delivery_line(self, genealogy, seed):
        milk_id, line_id = seed.milk.id, seed.flour_line.id
        with pytest.raises(ValueError):
            await genealogy.receive_raw_batch(RawBatchReceive(
                stock_item_id=milk_id, delivery_line_id=line_id,
                quantity=Decimal("1"), unit="l",
            ))


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------

class TestDispatch:

    async def test_dispatch_to_known_customer(self, genealogy, seed, make_stock_batch):
        batch = await make_stock_batch("FP-1", quantity="75", stock_item_id=seed.bread.id)
        customer = seed.customers[0]
        dispatch = await genealogy.record_dispatch(DispatchCreate(
            stock_batch_id=batch.id, customer_id=customer.id,
            quantity=Decimal("25"), dispatch_date=date(2024, 1, 3),
        ))
        assert dispatch.customer_name == "Corner Cafe"
        assert dispatch.unit == "kg"

        refreshed = await genealogy.get_stock_batch(batch.id)
        assert refreshed.quantity_remaining == Decimal("50")
        movements = await genealogy.get_movements(batch.id)
        assert movements[-1].movement_type == "dispatch"
        assert movements[-1].quantity == Decimal("-25")

    async def test_dispatch_beyond_remaining(self, genealogy, session_factory, make_stock_batch):
        batch = await make_stock_batch("FP-1", quantity="5")
        batch_id = batch.id
        with pytest.raises(InvalidStateError):
            await genealogy.record_dispatch(DispatchCreate(
                stock_batch_id=batch_id, customer_name="Walk-in",
                quantity=Decimal("6"), dispatch_date=date(2024, 1, 3),
            ))
        assert await count_rows(session_factory, BatchDispatchRecord, stock_batch_id=batch_id) == 0

    async def test_unknown_customer(self, genealogy, make_stock_batch):
        batch = await make_stock_batch("FP-1")
        with pytest.raises(EntityNotFoundError):
            await genealogy.record_dispatch(DispatchCreate(
                stock_batch_id=batch.id, customer_id=uuid4(),
                quantity=Decimal("1"), dispatch_date=date(2024, 1, 3),
            ))

    def test_customer_required(self):
        with pytest.raises(ValueError):
            DispatchCreate(stock_batch_id=uuid4(), quantity=Decimal("1"), dispatch_date=date(2024, 1, 3))
