"""
Traceability Service.

Builds the lineage graph around a seed batch:

    supplier -> raw batch -> production batch -> output batch -> customer

Forward traces follow material flow towards customers; backward traces
follow it in reverse towards suppliers. Links always point in the
direction material moved, whichever way the walk runs.

The walk is an iterative depth-first search. Nodes are coloured
white/grey/black: re-entering a grey node (one still on the current
path) means the stored genealogy contains a cycle, which is reported as
CycleDetectedError instead of looping.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, List, Dict, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.core.exceptions import CycleDetectedError, EntityNotFoundError
from batchtrace.models.batch import StockBatch, BatchDispatchRecord
from batchtrace.models.production import ProductionBatch, ProductionBatchInput, ProductionBatchOutput
from batchtrace.models.reference import StockItem, Supplier, Delivery, DeliveryLine
from batchtrace.schemas.production import StockBatchResponse
from batchtrace.schemas.traceability import (
    TraceDirection, TraceNodeType, TraceRelation,
    TraceNode, TraceLink, TraceGraph, TraceResult, MassBalance,
)
from batchtrace.services.mass_balance import reconcile, reconcile_run

logger = logging.getLogger(__name__)

WHITE, GREY, BLACK = 0, 1, 2


def batch_node_id(batch_id) -> str:
    return f"batch:{batch_id}"


def production_node_id(production_batch_id) -> str:
    return f"production:{production_batch_id}"


def supplier_node_id(supplier_id) -> str:
    return f"supplier:{supplier_id}"


def customer_node_id(dispatch: BatchDispatchRecord) -> str:
    return f"customer:{dispatch.customer_id or dispatch.customer_name}"


@dataclass
class _Frame:
    node_id: str
    children: List[str] = field(default_factory=list)
    index: int = 0


class TraceabilityService:
    """Read-only lineage graph builder."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def trace(self, seed_batch_id: UUID, direction: TraceDirection) -> TraceResult:
        """
        Trace a stock batch forward (to customers) or backward (to suppliers).

        Forward traces reconcile the seed against its reachable output;
        backward traces from a produced batch reconcile the run that made it.

        Raises:
            EntityNotFoundError: If the seed batch does not exist
            CycleDetectedError: If the stored genealogy contains a cycle
        """
        direction = TraceDirection(direction)
        seed = await self._get_batch(seed_batch_id)
        walk = _Walk(self, direction)
        graph = await walk.run(batch_node_id(seed.id))

        if direction == TraceDirection.FORWARD:
            mass_balance = reconcile(graph, seed.unit)
        else:
            mass_balance = await self._run_balance(seed, graph)

        logger.info(
            f"Traced batch {seed.batch_code} {direction.value}: "
            f"{len(graph.nodes)} nodes, {len(graph.links)} links"
        )
        return TraceResult(
            direction=direction,
            batch=StockBatchResponse.model_validate(seed),
            seed_batch_id=seed.id,
            nodes=graph.nodes,
            links=graph.links,
            mass_balance=mass_balance,
        )

    async def trace_dispatch(self, dispatch_id: UUID) -> TraceResult:
        """
        Backward trace seeded by a dispatch record.

        The result contains the receiving customer plus everything the
        dispatched batch was made from.
        """
        result = await self.db.execute(
            select(BatchDispatchRecord).where(
                BatchDispatchRecord.id == dispatch_id,
                BatchDispatchRecord.tenant_id == self.tenant_id,
            )
        )
        dispatch = result.scalar_one_or_none()
        if dispatch is None:
            raise EntityNotFoundError("BatchDispatchRecord", dispatch_id)

        seed = await self._get_batch(dispatch.stock_batch_id)
        walk = _Walk(self, TraceDirection.BACKWARD)
        graph = await walk.run(batch_node_id(seed.id))
        mass_balance = await self._run_balance(seed, graph)

        customer_id = customer_node_id(dispatch)
        graph.nodes.insert(0, TraceNode(
            id=customer_id,
            type=TraceNodeType.CUSTOMER,
            label=dispatch.customer_name,
            sublabel=dispatch.delivery_note_reference,
            date=dispatch.dispatch_date,
            quantity=dispatch.quantity,
            unit=dispatch.unit,
        ))
        graph.links.insert(0, TraceLink(
            source=batch_node_id(seed.id),
            target=customer_id,
            label=TraceRelation.DISPATCHED,
            quantity=dispatch.quantity,
        ))

        return TraceResult(
            direction=TraceDirection.BACKWARD,
            batch=StockBatchResponse.model_validate(seed),
            seed_batch_id=seed.id,
            nodes=graph.nodes,
            links=graph.links,
            mass_balance=mass_balance,
        )

    async def _run_balance(self, seed: StockBatch, graph: TraceGraph) -> Optional[MassBalance]:
        # Raw-material batches have no run to reconcile
        if seed.production_batch_id is None:
            return None
        outputs = await self._outputs_of(seed.production_batch_id)
        return reconcile_run(
            graph,
            production_node_id(seed.production_batch_id),
            [(output.quantity, output.unit) for output in outputs],
            seed.unit,
        )

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def _get_batch(self, batch_id: UUID) -> StockBatch:
        result = await self.db.execute(
            select(StockBatch).where(
                StockBatch.id == batch_id,
                StockBatch.tenant_id == self.tenant_id,
            )
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            raise EntityNotFoundError("StockBatch", batch_id)
        return batch

    async def _get_production(self, production_batch_id: UUID) -> ProductionBatch:
        result = await self.db.execute(
            select(ProductionBatch).where(
                ProductionBatch.id == production_batch_id,
                ProductionBatch.tenant_id == self.tenant_id,
            )
        )
        production = result.scalar_one_or_none()
        if production is None:
            raise EntityNotFoundError("ProductionBatch", production_batch_id)
        return production

    async def _item_name(self, stock_item_id: UUID) -> Optional[str]:
        item = await self.db.get(StockItem, stock_item_id)
        return item.name if item else None

    async def _supplier_for(self, batch: StockBatch) -> Optional[Tuple[Supplier, Delivery]]:
        if batch.delivery_line_id is None:
            return None
        result = await self.db.execute(
            select(Supplier, Delivery)
            .join(Delivery, Delivery.supplier_id == Supplier.id)
            .join(DeliveryLine, DeliveryLine.delivery_id == Delivery.id)
            .where(
                DeliveryLine.id == batch.delivery_line_id,
                DeliveryLine.tenant_id == self.tenant_id,
            )
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def _inputs_consuming(self, batch_id: UUID) -> List[ProductionBatchInput]:
        result = await self.db.execute(
            select(ProductionBatchInput)
            .where(
                ProductionBatchInput.tenant_id == self.tenant_id,
                ProductionBatchInput.stock_batch_id == batch_id,
            )
            .order_by(ProductionBatchInput.added_at)
        )
        return list(result.scalars().all())

    async def _inputs_of(self, production_batch_id: UUID) -> List[ProductionBatchInput]:
        result = await self.db.execute(
            select(ProductionBatchInput)
            .where(
                ProductionBatchInput.tenant_id == self.tenant_id,
                ProductionBatchInput.production_batch_id == production_batch_id,
            )
            .order_by(ProductionBatchInput.added_at)
        )
        return list(result.scalars().all())

    async def _outputs_of(self, production_batch_id: UUID) -> List[ProductionBatchOutput]:
        # Waste rows carry no stock batch and never enter the graph
        result = await self.db.execute(
            select(ProductionBatchOutput)
            .where(
                ProductionBatchOutput.tenant_id == self.tenant_id,
                ProductionBatchOutput.production_batch_id == production_batch_id,
                ProductionBatchOutput.stock_batch_id.is_not(None),
            )
            .order_by(ProductionBatchOutput.created_at)
        )
        return list(result.scalars().all())

    async def _output_for_batch(self, batch_id: UUID) -> Optional[ProductionBatchOutput]:
        result = await self.db.execute(
            select(ProductionBatchOutput).where(
                ProductionBatchOutput.tenant_id == self.tenant_id,
                ProductionBatchOutput.stock_batch_id == batch_id,
            )
        )
        return result.scalars().first()

    async def _dispatches_of(self, batch_id: UUID) -> List[BatchDispatchRecord]:
        result = await self.db.execute(
            select(BatchDispatchRecord)
            .where(
                BatchDispatchRecord.tenant_id == self.tenant_id,
                BatchDispatchRecord.stock_batch_id == batch_id,
            )
            .order_by(BatchDispatchRecord.dispatch_date, BatchDispatchRecord.created_at)
        )
        return list(result.scalars().all())


class _Walk:
    """State of one trace: discovered nodes, links, and DFS colouring."""

    def __init__(self, service: TraceabilityService, direction: TraceDirection):
        self.service = service
        self.direction = direction
        self.nodes: Dict[str, TraceNode] = {}
        self.links: List[TraceLink] = []
        self._edge_keys = set()
        self._colour: Dict[str, int] = {}

    async def run(self, seed_node_id: str) -> TraceGraph:
        stack: List[_Frame] = []
        await self._enter(seed_node_id, stack)

        while stack:
            frame = stack[-1]
            if frame.index >= len(frame.children):
                self._colour[frame.node_id] = BLACK
                stack.pop()
                continue

            child = frame.children[frame.index]
            frame.index += 1
            colour = self._colour.get(child, WHITE)
            if colour == GREY:
                path = [f.node_id for f in stack] + [child]
                logger.error(
                    f"Genealogy cycle detected for tenant {self.service.tenant_id} "
                    f"while tracing {self.direction.value} from {seed_node_id}: "
                    f"{' -> '.join(path)}"
                )
                raise CycleDetectedError(child, path)
            if colour == WHITE:
                await self._enter(child, stack)

        return TraceGraph(
            seed_node_id=seed_node_id,
            nodes=list(self.nodes.values()),
            links=self.links,
        )

    async def _enter(self, node_id: str, stack: List[_Frame]) -> None:
        self._colour[node_id] = GREY
        kind, _, key = node_id.partition(":")
        if kind == "batch":
            children = await self._expand_batch(UUID(key))
        elif kind == "production":
            children = await self._expand_production(UUID(key))
        else:
            children = []
        stack.append(_Frame(node_id=node_id, children=children))

    def _link(self, edge_key: str, source: str, target: str, label: TraceRelation,
              quantity: Optional[Decimal]) -> None:
        if edge_key in self._edge_keys:
            return
        self._edge_keys.add(edge_key)
        self.links.append(TraceLink(source=source, target=target, label=label, quantity=quantity))

    def _leaf(self, node: TraceNode) -> None:
        # Suppliers and customers are never expanded
        if node.id not in self.nodes:
            self.nodes[node.id] = node
            self._colour[node.id] = BLACK

    async def _expand_batch(self, batch_id: UUID) -> List[str]:
        service = self.service
        batch = await service._get_batch(batch_id)
        node_id = batch_node_id(batch.id)

        output = None
        if batch.production_batch_id is not None:
            output = await service._output_for_batch(batch.id)
        self.nodes[node_id] = TraceNode(
            id=node_id,
            type=(TraceNodeType.RAW_MATERIAL_BATCH if batch.is_raw_material
                  else TraceNodeType.FINISHED_PRODUCT_BATCH),
            label=batch.batch_code,
            sublabel=await service._item_name(batch.stock_item_id),
            date=batch.created_at.date() if batch.created_at else None,
            quantity=batch.quantity_received,
            unit=batch.unit,
            allergens=list(batch.allergens or []),
            status=batch.status,
            output_type=output.output_type if output else None,
        )

        children: List[str] = []

        supplier = await service._supplier_for(batch)
        if supplier is not None:
            supplier_row, delivery = supplier
            supplier_id = supplier_node_id(supplier_row.id)
            self._leaf(TraceNode(
                id=supplier_id,
                type=TraceNodeType.SUPPLIER,
                label=supplier_row.name,
                sublabel=delivery.delivery_note_number,
                date=delivery.delivery_date,
            ))
            self._link(f"supplied:{batch.id}", supplier_id, node_id,
                       TraceRelation.SUPPLIED, batch.quantity_received)

        if self.direction == TraceDirection.FORWARD:
            for consumption in await service._inputs_consuming(batch.id):
                target = production_node_id(consumption.production_batch_id)
                self._link(f"input:{consumption.id}", node_id, target,
                           TraceRelation.INPUT, consumption.actual_quantity)
                children.append(target)

            for dispatch in await service._dispatches_of(batch.id):
                customer_id = customer_node_id(dispatch)
                customer = self.nodes.get(customer_id)
                if customer is None:
                    self._leaf(TraceNode(
                        id=customer_id,
                        type=TraceNodeType.CUSTOMER,
                        label=dispatch.customer_name,
                        date=dispatch.dispatch_date,
                        quantity=dispatch.quantity,
                        unit=dispatch.unit,
                    ))
                else:
                    customer.quantity = (customer.quantity or Decimal("0")) + dispatch.quantity
                self._link(f"dispatch:{dispatch.id}", node_id, customer_id,
                           TraceRelation.DISPATCHED, dispatch.quantity)
        elif batch.production_batch_id is not None:
            source = production_node_id(batch.production_batch_id)
            quantity = output.quantity if output else batch.quantity_received
            self._link(f"output:{batch.id}", source, node_id, TraceRelation.OUTPUT, quantity)
            children.append(source)

        return children

    async def _expand_production(self, production_batch_id: UUID) -> List[str]:
        service = self.service
        production = await service._get_production(production_batch_id)
        node_id = production_node_id(production.id)
        self.nodes[node_id] = TraceNode(
            id=node_id,
            type=TraceNodeType.PRODUCTION_BATCH,
            label=production.batch_code,
            sublabel="Production run",
            date=production.production_date,
            quantity=production.planned_quantity,
            unit=production.unit,
            status=production.status,
        )

        children: List[str] = []
        if self.direction == TraceDirection.FORWARD:
            for output in await service._outputs_of(production.id):
                target = batch_node_id(output.stock_batch_id)
                self._link(f"output:{output.stock_batch_id}", node_id, target,
                           TraceRelation.OUTPUT, output.quantity)
                children.append(target)
        else:
            for consumption in await service._inputs_of(production.id):
                source = batch_node_id(consumption.stock_batch_id)
                self._link(f"input:{consumption.id}", source, node_id,
                           TraceRelation.INPUT, consumption.actual_quantity)
                children.append(source)
        return children


async def trace_batch(
    tenant_id: UUID,
    batch_id: UUID,
    direction: TraceDirection = TraceDirection.FORWARD,
    db: Optional[AsyncSession] = None,
) -> TraceResult:
    """Trace a batch using the caller's session or a fresh one."""
    if db is not None:
        return await TraceabilityService(db, tenant_id).trace(batch_id, direction)

    from batchtrace.database import async_session_factory

    async with async_session_factory() as session:
        return await TraceabilityService(session, tenant_id).trace(batch_id, direction)
