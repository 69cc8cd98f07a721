"""Tests for forward/backward lineage traces."""
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from batchtrace.core.exceptions import CycleDetectedError, EntityNotFoundError
from batchtrace.models.production import ProductionBatchInput
from batchtrace.schemas.production import (
    DispatchCreate, ProductionInputCreate, ProductionOutputCreate, RawBatchReceive,
)
from batchtrace.schemas.traceability import (
    TraceDirection, TraceGraph, TraceNodeType, TraceRelation,
)
from batchtrace.services.traceability_service import (
    TraceabilityService, batch_node_id, production_node_id, supplier_node_id, trace_batch,
)


def as_graph(result):
    return TraceGraph(
        seed_node_id=batch_node_id(result.seed_batch_id),
        nodes=result.nodes,
        links=result.links,
    )


@pytest.fixture
def tracer(db, seed):
    return TraceabilityService(db, seed.tenant.id)


@pytest.fixture
async def bakery_run(genealogy, seed, make_production_batch):
    """
    Reference scenario:
    RM-2024-0101-001 (100kg flour) -> 80kg into PB-2024-0102-001
    -> FP-2024-0102-001 (75kg bread) + 5kg waste
    """
    raw = await genealogy.receive_raw_batch(RawBatchReceive(
        stock_item_id=seed.flour.id, delivery_line_id=seed.flour_line.id,
        quantity=Decimal("100"), unit="kg", allergens=["gluten"],
        received_on=date(2024, 1, 1),
    ))
    pb = await make_production_batch("PB-2024-0102-001")
    await genealogy.record_input(pb.id, ProductionInputCreate(
        stock_batch_id=raw.id, actual_quantity=Decimal("80"),
    ))
    finished = await genealogy.record_output(pb.id, ProductionOutputCreate(
        stock_item_id=seed.bread.id, quantity=Decimal("75"), use_by_date=date(2024, 1, 6),
    ))
    await genealogy.record_output(pb.id, ProductionOutputCreate(
        stock_item_id=seed.bread.id, output_type="waste", quantity=Decimal("5"),
    ))
    return SimpleNamespace(raw=raw, production=pb, finished=finished.stock_batch)


# ------------------------------------------------------------------
# Forward
# ------------------------------------------------------------------

class TestForwardTrace:

    async def test_reference_scenario(self, tracer, seed, bakery_run):
        result = await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD)
        graph = as_graph(result)

        raw_node = graph.node(batch_node_id(bakery_run.raw.id))
        assert raw_node.type == TraceNodeType.RAW_MATERIAL_BATCH
        assert raw_node.label == "RM-2024-0101-001"
        assert raw_node.sublabel == "Flour"

        pb_node = graph.node(production_node_id(bakery_run.production.id))
        assert pb_node.type == TraceNodeType.PRODUCTION_BATCH
        assert pb_node.label == "PB-2024-0102-001"

        fp_node = graph.node(batch_node_id(bakery_run.finished.id))
        assert fp_node.type == TraceNodeType.FINISHED_PRODUCT_BATCH
        assert fp_node.label == "FP-2024-0102-001"
        assert fp_node.quantity == Decimal("75")
        assert fp_node.allergens == ["gluten"]
        assert fp_node.output_type == "finished_product"

        supplier = graph.node(supplier_node_id(seed.supplier.id))
        assert supplier.type == TraceNodeType.SUPPLIER
        assert supplier.label == "Mill & Co"

        # Waste never materializes a node
        assert len(graph.nodes_of_type(TraceNodeType.FINISHED_PRODUCT_BATCH)) == 1

        balance = result.mass_balance
        assert balance.total_input == Decimal("100")
        assert balance.total_output == Decimal("75")
        assert balance.variance == Decimal("25")
        assert balance.variance_percent == Decimal("25.00")
        assert balance.unit == "kg"

    async def test_links_point_in_material_flow(self, tracer, seed, bakery_run):
        graph = as_graph(await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD))
        raw_id = batch_node_id(bakery_run.raw.id)
        pb_id = production_node_id(bakery_run.production.id)
        fp_id = batch_node_id(bakery_run.finished.id)

        (supplied,) = graph.links_from(supplier_node_id(seed.supplier.id), TraceRelation.SUPPLIED)
        assert supplied.target == raw_id
        (consumed,) = graph.links_from(raw_id, TraceRelation.INPUT)
        assert consumed.target == pb_id
        assert consumed.quantity == Decimal("80")
        (output,) = graph.links_from(pb_id, TraceRelation.OUTPUT)
        assert output.target == fp_id

    async def test_dispatches_reach_customers(self, genealogy, tracer, seed, bakery_run):
        for customer in seed.customers:
            await genealogy.record_dispatch(DispatchCreate(
                stock_batch_id=bakery_run.finished.id, customer_id=customer.id,
                quantity=Decimal("20"), dispatch_date=date(2024, 1, 3),
            ))

        result = await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD)
        graph = as_graph(result)

        assert len(graph.nodes_of_type(TraceNodeType.FINISHED_PRODUCT_BATCH)) == 1
        customers = graph.nodes_of_type(TraceNodeType.CUSTOMER)
        assert sorted(c.label for c in customers) == ["Corner Cafe", "Deli Direct", "Hotel Grand"]
        dispatched = graph.links_from(batch_node_id(bakery_run.finished.id), TraceRelation.DISPATCHED)
        assert len(dispatched) == 3

        # Dispatched quantity replaces the received quantity
        assert result.mass_balance.total_output == Decimal("60")
        assert result.mass_balance.variance_percent == Decimal("40.00")

    async def test_repeat_dispatches_accumulate_on_customer(self, genealogy, tracer, seed, bakery_run):
        customer = seed.customers[0]
        for qty in ("10", "15"):
            await genealogy.record_dispatch(DispatchCreate(
                stock_batch_id=bakery_run.finished.id, customer_id=customer.id,
                quantity=Decimal(qty), dispatch_date=date(2024, 1, 3),
            ))

        graph = as_graph(await tracer.trace(bakery_run.finished.id, TraceDirection.FORWARD))
        (node,) = graph.nodes_of_type(TraceNodeType.CUSTOMER)
        assert node.quantity == Decimal("25")

    async def test_rework_counts_final_output_only(
        self, genealogy, tracer, seed, bakery_run, make_production_batch
    ):
        second = await make_production_batch("PB-2024-0102-002")
        await genealogy.record_input(second.id, ProductionInputCreate(
            stock_batch_id=bakery_run.finished.id, actual_quantity=Decimal("75"), is_rework=True,
        ))
        reworked = await genealogy.record_output(second.id, ProductionOutputCreate(
            stock_item_id=seed.bread.id, quantity=Decimal("70"),
        ))

        result = await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD)
        graph = as_graph(result)

        assert graph.node(production_node_id(second.id)) is not None
        assert graph.node(batch_node_id(reworked.stock_batch.id)).label == "FP-2024-0102-002"
        assert result.mass_balance.total_output == Decimal("70")

    async def test_diamond_is_not_a_cycle(
        self, genealogy, tracer, seed, bakery_run, make_production_batch
    ):
        # The raw batch reaches PB-2 directly and through FP-1
        second = await make_production_batch("PB-2024-0102-002")
        await genealogy.record_input(second.id, ProductionInputCreate(
            stock_batch_id=bakery_run.raw.id, actual_quantity=Decimal("10"),
        ))
        await genealogy.record_input(second.id, ProductionInputCreate(
            stock_batch_id=bakery_run.finished.id, actual_quantity=Decimal("5"), is_rework=True,
        ))

        graph = as_graph(await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD))
        pb2 = production_node_id(second.id)
        assert [n.id for n in graph.nodes].count(pb2) == 1
        assert len([link for link in graph.links if link.target == pb2]) == 2

    async def test_cycle_is_reported(self, db, tracer, seed, bakery_run):
        # Corrupt the store: the finished batch feeds the run that made it
        db.add(ProductionBatchInput(
            id=uuid4(), tenant_id=seed.tenant.id,
            production_batch_id=bakery_run.production.id,
            stock_batch_id=bakery_run.finished.id,
            actual_quantity=Decimal("1"), unit="kg",
        ))
        await db.commit()

        with pytest.raises(CycleDetectedError) as exc_info:
            await tracer.trace(bakery_run.raw.id, TraceDirection.FORWARD)

        pb_id = production_node_id(bakery_run.production.id)
        assert exc_info.value.node_id == pb_id
        assert exc_info.value.path[0] == batch_node_id(bakery_run.raw.id)
        assert exc_info.value.path[-1] == pb_id

    async def test_module_level_entry_point(self, db, seed, bakery_run):
        result = await trace_batch(seed.tenant.id, bakery_run.raw.id, db=db)
        assert result.direction == TraceDirection.FORWARD
        assert result.batch.batch_code == "RM-2024-0101-001"


# ------------------------------------------------------------------
# Backward
# ------------------------------------------------------------------

class TestBackwardTrace:

    async def test_finished_batch_back_to_supplier(self, tracer, seed, bakery_run):
        result = await tracer.trace(bakery_run.finished.id, TraceDirection.BACKWARD)
        graph = as_graph(result)

        assert {n.type for n in graph.nodes} == {
            TraceNodeType.FINISHED_PRODUCT_BATCH,
            TraceNodeType.PRODUCTION_BATCH,
            TraceNodeType.RAW_MATERIAL_BATCH,
            TraceNodeType.SUPPLIER,
        }

        raw_id = batch_node_id(bakery_run.raw.id)
        pb_id = production_node_id(bakery_run.production.id)
        fp_id = batch_node_id(bakery_run.finished.id)
        assert graph.links_from(pb_id, TraceRelation.OUTPUT)[0].target == fp_id
        assert graph.links_from(raw_id, TraceRelation.INPUT)[0].target == pb_id
        assert graph.links_from(supplier_node_id(seed.supplier.id))[0].target == raw_id

    async def test_backward_balance_is_the_producing_run(self, tracer, bakery_run):
        result = await tracer.trace(bakery_run.finished.id, TraceDirection.BACKWARD)

        balance = result.mass_balance
        assert balance.total_input == Decimal("80")
        assert balance.total_output == Decimal("75")
        # The 5kg of recorded waste
        assert balance.variance == Decimal("5")
        assert balance.variance_percent == Decimal("6.25")
        assert balance.unit == "kg"

    async def test_backward_balance_includes_sibling_outputs(self, genealogy, tracer, seed, bakery_run):
        await genealogy.record_output(bakery_run.production.id, ProductionOutputCreate(
            stock_item_id=seed.crumbs.id, output_type="byproduct", quantity=Decimal("3"),
        ))

        result = await tracer.trace(bakery_run.finished.id, TraceDirection.BACKWARD)

        assert result.mass_balance.total_output == Decimal("78")
        assert result.mass_balance.variance_percent == Decimal("2.50")

    async def test_raw_batch_backward_has_no_balance(self, tracer, bakery_run):
        result = await tracer.trace(bakery_run.raw.id, TraceDirection.BACKWARD)
        assert result.mass_balance is None

    async def test_backward_excludes_customers(self, genealogy, tracer, seed, bakery_run):
        await genealogy.record_dispatch(DispatchCreate(
            stock_batch_id=bakery_run.finished.id, customer_name="Walk-in",
            quantity=Decimal("5"), dispatch_date=date(2024, 1, 3),
        ))
        graph = as_graph(await tracer.trace(bakery_run.finished.id, TraceDirection.BACKWARD))
        assert graph.nodes_of_type(TraceNodeType.CUSTOMER) == []

    async def test_trace_from_dispatch(self, genealogy, tracer, seed, bakery_run):
        dispatch = await genealogy.record_dispatch(DispatchCreate(
            stock_batch_id=bakery_run.finished.id, customer_id=seed.customers[1].id,
            quantity=Decimal("30"), dispatch_date=date(2024, 1, 3),
            delivery_note_reference="DEL-77",
        ))

        result = await tracer.trace_dispatch(dispatch.id)
        graph = as_graph(result)

        customer = result.nodes[0]
        assert customer.type == TraceNodeType.CUSTOMER
        assert customer.label == "Hotel Grand"
        assert customer.sublabel == "DEL-77"
        assert result.links[0].label == TraceRelation.DISPATCHED
        assert result.links[0].target == customer.id
        assert result.links[0].quantity == Decimal("30")
        assert graph.node(supplier_node_id(seed.supplier.id)) is not None
        assert result.mass_balance.variance == Decimal("5")

    async def test_unknown_dispatch(self, tracer):
        with pytest.raises(EntityNotFoundError):
            await tracer.trace_dispatch(uuid4())


# ------------------------------------------------------------------
# Lookups
# ------------------------------------------------------------------

async def test_missing_seed_batch(tracer):
    with pytest.raises(EntityNotFoundError):
        await tracer.trace(uuid4(), TraceDirection.FORWARD)


async def test_other_tenant_cannot_trace(db, bakery_run):
    other = TraceabilityService(db, uuid4())
    with pytest.raises(EntityNotFoundError):
        await other.trace(bakery_run.raw.id, TraceDirection.FORWARD)


async def test_raw_batch_forward_without_use(tracer, seed, make_stock_batch):
    batch = await make_stock_batch("RM-LONE", quantity="12")
    result = await tracer.trace(batch.id, TraceDirection.FORWARD)
    assert [n.label for n in result.nodes] == ["RM-LONE"]
    assert result.links == []
    assert result.mass_balance.total_output == Decimal("0")
    assert result.mass_balance.variance_percent == Decimal("100.00")
