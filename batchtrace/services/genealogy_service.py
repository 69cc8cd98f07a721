"""
Genealogy Service - write side of batch lineage.

Business logic for:
- Production runs (plan, start, complete, cancel)
- Raw-material receipt against a delivery line
- Consumption of stock batches by a production run
- Production outputs (finished product, byproduct, waste)
- Dispatch of batches to customers

Every write runs in a single transaction: it commits on success and
rolls back on any error, so a rejected output never leaves a partial
output/batch/movement triple behind.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.core.clock import Clock, SystemClock
from batchtrace.core.enum_utils import get_enum_value, is_status
from batchtrace.core.exceptions import (
    EntityNotFoundError, InvalidStateError, StoreConflictError, UnitMismatchError
)
from batchtrace.models.batch import (
    StockBatch, BatchMovement, BatchDispatchRecord, BatchStatus, MovementType
)
from batchtrace.models.production import (
    ProductionBatch, ProductionBatchInput, ProductionBatchOutput,
    ProductionBatchStatus, OutputType
)
from batchtrace.models.reference import Customer, DeliveryLine, StockItem
from batchtrace.schemas.production import (
    ProductionBatchCreate, ProductionInputCreate, ProductionOutputCreate,
    RawBatchReceive, DispatchCreate,
    OutputResult, ProductionOutputResponse, StockBatchResponse,
)
from batchtrace.services.allergen_service import AllergenService, union_allergens
from batchtrace.services.batch_code_service import BatchCodeService, CodeScope
from batchtrace.services.shelf_life_service import ShelfLifeService

logger = logging.getLogger(__name__)


def _same_unit(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class GenealogyService:
    """Service for recording production genealogy."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        clock: Optional[Clock] = None,
        user_id: Optional[UUID] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.clock = clock or SystemClock()
        self.user_id = user_id
        self.codes = BatchCodeService(db, tenant_id, self.clock)
        self.shelf_life = ShelfLifeService(db, tenant_id)
        self.allergens = AllergenService(db, tenant_id)

    @asynccontextmanager
    async def _transaction(self, action: str):
        """Commit on success; roll back and re-raise on any failure."""
        try:
            yield
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Integrity error while {action}: {e.orig}")
            raise StoreConflictError(f"Conflicting write while {action}: {e.orig}") from e
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Rolled back while {action}: {e}")
            raise

    # ========================================================================
    # LOOKUPS
    # ========================================================================

    async def get_production_batch(self, production_batch_id: UUID) -> ProductionBatch:
        result = await self.db.execute(
            select(ProductionBatch).where(
                ProductionBatch.id == production_batch_id,
                ProductionBatch.tenant_id == self.tenant_id,
            )
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            raise EntityNotFoundError("ProductionBatch", production_batch_id)
        return batch

    async def get_stock_batch(self, stock_batch_id: UUID) -> StockBatch:
        result = await self.db.execute(
            select(StockBatch).where(
                StockBatch.id == stock_batch_id,
                StockBatch.tenant_id == self.tenant_id,
            )
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            raise EntityNotFoundError("StockBatch", stock_batch_id)
        return batch

    async def get_inputs(self, production_batch_id: UUID) -> List[ProductionBatchInput]:
        result = await self.db.execute(
            select(ProductionBatchInput)
            .where(
                ProductionBatchInput.tenant_id == self.tenant_id,
                ProductionBatchInput.production_batch_id == production_batch_id,
            )
            .order_by(ProductionBatchInput.added_at)
        )
        return list(result.scalars().all())

    async def get_movements(self, stock_batch_id: UUID) -> List[BatchMovement]:
        result = await self.db.execute(
            select(BatchMovement)
            .where(
                BatchMovement.tenant_id == self.tenant_id,
                BatchMovement.batch_id == stock_batch_id,
            )
            .order_by(BatchMovement.created_at)
        )
        return list(result.scalars().all())

    # ========================================================================
    # PRODUCTION RUNS
    # ========================================================================

    async def create_production_batch(self, data: ProductionBatchCreate) -> ProductionBatch:
        """Plan a production run, generating its code unless one is supplied."""
        async with self._transaction("creating production batch"):
            if data.batch_code:
                code = await self.codes.ensure_unique(data.batch_code, CodeScope.PRODUCTION_BATCHES)
            else:
                code = await self.codes.generate_for_kind(
                    "production", CodeScope.PRODUCTION_BATCHES, on_date=data.production_date
                )

            batch = ProductionBatch(
                id=uuid4(),
                tenant_id=self.tenant_id,
                batch_code=code,
                recipe_id=data.recipe_id,
                production_date=data.production_date,
                status=ProductionBatchStatus.PLANNED.value,
                planned_quantity=data.planned_quantity,
                unit=data.unit,
                notes=data.notes,
                created_by=self.user_id,
            )
            self.db.add(batch)
            await self.db.flush()

        logger.info(f"Production batch {code} planned for {data.production_date}")
        return batch

    async def start_production_batch(self, production_batch_id: UUID) -> ProductionBatch:
        async with self._transaction("starting production batch"):
            batch = await self.get_production_batch(production_batch_id)
            if not is_status(batch.status, ProductionBatchStatus.PLANNED):
                raise InvalidStateError(
                    f"Production batch {batch.batch_code} cannot start from status '{batch.status}'"
                )
            batch.status = ProductionBatchStatus.IN_PROGRESS.value
            batch.started_at = self.clock.now()
        return batch

    async def complete_production_batch(self, production_batch_id: UUID) -> ProductionBatch:
        async with self._transaction("completing production batch"):
            batch = await self.get_production_batch(production_batch_id)
            if not is_status(batch.status, ProductionBatchStatus.IN_PROGRESS):
                raise InvalidStateError(
                    f"Production batch {batch.batch_code} cannot complete from status '{batch.status}'"
                )
            batch.status = ProductionBatchStatus.COMPLETED.value
            batch.completed_at = self.clock.now()
        return batch

    async def cancel_production_batch(
        self,
        production_batch_id: UUID,
        reason: Optional[str] = None,
    ) -> ProductionBatch:
        async with self._transaction("cancelling production batch"):
            batch = await self.get_production_batch(production_batch_id)
            if batch.is_terminal:
                raise InvalidStateError(
                    f"Production batch {batch.batch_code} is already {batch.status}"
                )
            batch.status = ProductionBatchStatus.CANCELLED.value
            if reason:
                batch.notes = f"{batch.notes}\n{reason}" if batch.notes else reason
        logger.info(f"Production batch {batch.batch_code} cancelled")
        return batch

    # ========================================================================
    # RAW MATERIAL RECEIPT
    # ========================================================================

    async def receive_raw_batch(self, data: RawBatchReceive) -> StockBatch:
        """Book in a raw-material batch against a delivery line."""
        async with self._transaction("receiving raw material batch"):
            line = await self.db.get(DeliveryLine, data.delivery_line_id)
            if line is None or line.tenant_id != self.tenant_id:
                raise EntityNotFoundError("DeliveryLine", data.delivery_line_id)
            if line.stock_item_id != data.stock_item_id:
                raise ValueError(
                    f"Delivery line {line.id} is for stock item {line.stock_item_id}, "
                    f"not {data.stock_item_id}"
                )

            received_on = data.received_on or self.clock.today()
            if data.batch_code:
                code = await self.codes.ensure_unique(data.batch_code, CodeScope.STOCK_BATCHES)
            else:
                code = await self.codes.generate_for_kind(
                    "raw_material", CodeScope.STOCK_BATCHES, on_date=received_on
                )

            batch = StockBatch(
                id=uuid4(),
                tenant_id=self.tenant_id,
                stock_item_id=data.stock_item_id,
                batch_code=code,
                supplier_batch_code=data.supplier_batch_code,
                delivery_line_id=line.id,
                quantity_received=data.quantity,
                quantity_remaining=data.quantity,
                unit=data.unit,
                use_by_date=data.use_by_date,
                best_before_date=data.best_before_date,
                allergens=sorted(union_allergens([data.allergens])),
                status=BatchStatus.ACTIVE.value,
                condition_notes=data.condition_notes,
            )
            self.db.add(batch)
            await self.db.flush()

            self.db.add(BatchMovement(
                id=uuid4(),
                tenant_id=self.tenant_id,
                batch_id=batch.id,
                movement_type=MovementType.RECEIVED.value,
                quantity=data.quantity,
                reference_type="delivery_line",
                reference_id=line.id,
                notes=f"Received on delivery line {line.id}",
                created_by=self.user_id,
            ))
            await self.db.flush()

        logger.info(f"Raw material batch {code} received: {data.quantity} {data.unit}")
        return batch

    # ========================================================================
    # INPUTS
    # ========================================================================

    async def record_input(
        self,
        production_batch_id: UUID,
        data: ProductionInputCreate,
    ) -> ProductionBatchInput:
        """
        Record a stock batch consumed by a production run.

        Raises:
            InvalidStateError: If the run is terminal, the batch is not
                active, or the batch has less remaining than requested
            UnitMismatchError: If the declared unit differs from the batch's
        """
        async with self._transaction("recording production input"):
            production = await self.get_production_batch(production_batch_id)
            if production.is_terminal:
                raise InvalidStateError(
                    f"Cannot add inputs to production batch {production.batch_code} "
                    f"in status '{production.status}'"
                )

            batch = await self.get_stock_batch(data.stock_batch_id)
            if not is_status(batch.status, BatchStatus.ACTIVE):
                raise InvalidStateError(
                    f"Stock batch {batch.batch_code} is {batch.status} and cannot be consumed"
                )
            if batch.production_batch_id == production.id:
                raise InvalidStateError(
                    f"Production batch {production.batch_code} cannot consume its own output "
                    f"{batch.batch_code}"
                )
            if data.unit and not _same_unit(data.unit, batch.unit):
                raise UnitMismatchError(expected=batch.unit, actual=data.unit)
            if data.actual_quantity > batch.quantity_remaining:
                raise InvalidStateError(
                    f"Stock batch {batch.batch_code} has {batch.quantity_remaining} {batch.unit} "
                    f"remaining, cannot consume {data.actual_quantity}"
                )
            if data.is_rework and batch.production_batch_id is None:
                raise InvalidStateError(
                    f"Stock batch {batch.batch_code} is raw material and cannot be used as rework"
                )

            production_input = ProductionBatchInput(
                id=uuid4(),
                tenant_id=self.tenant_id,
                production_batch_id=production.id,
                stock_batch_id=batch.id,
                stock_item_id=batch.stock_item_id,
                planned_quantity=data.planned_quantity,
                actual_quantity=data.actual_quantity,
                unit=batch.unit,
                is_rework=data.is_rework,
                rework_source_batch_id=batch.production_batch_id if data.is_rework else None,
                added_by=self.user_id,
            )
            self.db.add(production_input)

            batch.quantity_remaining = batch.quantity_remaining - data.actual_quantity
            self.db.add(BatchMovement(
                id=uuid4(),
                tenant_id=self.tenant_id,
                batch_id=batch.id,
                movement_type=MovementType.CONSUMED_PRODUCTION.value,
                quantity=-data.actual_quantity,
                reference_type="production_batch",
                reference_id=production.id,
                notes=f"{'Rework into' if data.is_rework else 'Consumed by'} production batch "
                      f"{production.batch_code}",
                created_by=self.user_id,
            ))
            await self.db.flush()

        return production_input

    # ========================================================================
    # OUTPUTS
    # ========================================================================

    async def record_output(
        self,
        production_batch_id: UUID,
        data: ProductionOutputCreate,
    ) -> OutputResult:
        """
        Record a production output.

        Non-waste outputs materialize a new active StockBatch carrying the
        union of the input allergens and a ``received`` movement. Waste is
        recorded for yield accounting only: no code, no batch, no movement.

        Raises:
            EntityNotFoundError: If the production batch does not exist
            InvalidStateError: If the production batch is cancelled
            UnitMismatchError: If the output unit differs from the run's unit
            ShelfLifeExceededError: If use_by_date exceeds the maximum shelf life
            StoreConflictError: If a unique constraint rejected the write
        """
        async with self._transaction("recording production output"):
            production = await self.get_production_batch(production_batch_id)
            if is_status(production.status, ProductionBatchStatus.CANCELLED):
                raise InvalidStateError(
                    f"Cannot record output against cancelled production batch {production.batch_code}"
                )
            if data.unit and production.unit and not _same_unit(data.unit, production.unit):
                raise UnitMismatchError(expected=production.unit, actual=data.unit)

            unit = data.unit or production.unit
            if not unit:
                item = await self.db.get(StockItem, data.stock_item_id)
                unit = item.stock_unit if item else None
            if not unit:
                raise ValueError(
                    f"No unit declared for output of production batch {production.batch_code}"
                )

            max_use_by = await self.shelf_life.validate(
                data.use_by_date, data.stock_item_id, production.production_date
            )

            output_type = get_enum_value(data.output_type)
            is_waste = output_type == OutputType.WASTE.value

            code = None
            if not is_waste:
                if data.batch_code:
                    code = await self.codes.ensure_unique(data.batch_code, CodeScope.STOCK_BATCHES)
                else:
                    code = await self.codes.generate_for_kind(
                        output_type, CodeScope.STOCK_BATCHES, on_date=production.production_date
                    )

            allergens = sorted(await self.allergens.inherited(production.id))

            stock_batch = None
            if not is_waste:
                stock_batch = StockBatch(
                    id=uuid4(),
                    tenant_id=self.tenant_id,
                    stock_item_id=data.stock_item_id,
                    batch_code=code,
                    production_batch_id=production.id,
                    quantity_received=data.quantity,
                    quantity_remaining=data.quantity,
                    unit=unit,
                    use_by_date=data.use_by_date,
                    best_before_date=data.best_before_date,
                    allergens=allergens,
                    status=BatchStatus.ACTIVE.value,
                )
                self.db.add(stock_batch)
                await self.db.flush()

            output = ProductionBatchOutput(
                id=uuid4(),
                tenant_id=self.tenant_id,
                production_batch_id=production.id,
                stock_item_id=data.stock_item_id,
                output_type=output_type,
                quantity=data.quantity,
                unit=unit,
                use_by_date=data.use_by_date,
                best_before_date=data.best_before_date,
                generated_batch_code=code,
                stock_batch_id=stock_batch.id if stock_batch else None,
            )
            self.db.add(output)

            if stock_batch is not None:
                label = "Byproduct" if output_type == OutputType.BYPRODUCT.value else "Finished product"
                self.db.add(BatchMovement(
                    id=uuid4(),
                    tenant_id=self.tenant_id,
                    batch_id=stock_batch.id,
                    movement_type=MovementType.RECEIVED.value,
                    quantity=data.quantity,
                    reference_type="production_batch",
                    reference_id=production.id,
                    notes=f"{label} from production batch {production.batch_code}",
                    created_by=self.user_id,
                ))
            await self.db.flush()

            result = OutputResult(
                output=ProductionOutputResponse.model_validate(output),
                stock_batch=StockBatchResponse.model_validate(stock_batch) if stock_batch else None,
                inherited_allergens=allergens,
                max_use_by=max_use_by,
            )

        logger.info(
            f"Recorded {output_type} output {data.quantity} {unit} for production batch "
            f"{production.batch_code}" + (f" as {code}" if code else "")
        )
        return result

    # ========================================================================
    # DISPATCH
    # ========================================================================

    async def record_dispatch(self, data: DispatchCreate) -> BatchDispatchRecord:
        """Dispatch (part of) an active batch to a customer."""
        async with self._transaction("recording dispatch"):
            batch = await self.get_stock_batch(data.stock_batch_id)
            if not is_status(batch.status, BatchStatus.ACTIVE):
                raise InvalidStateError(
                    f"Stock batch {batch.batch_code} is {batch.status} and cannot be dispatched"
                )
            if data.unit and not _same_unit(data.unit, batch.unit):
                raise UnitMismatchError(expected=batch.unit, actual=data.unit)
            if data.quantity > batch.quantity_remaining:
                raise InvalidStateError(
                    f"Stock batch {batch.batch_code} has {batch.quantity_remaining} {batch.unit} "
                    f"remaining, cannot dispatch {data.quantity}"
                )

            customer_name = data.customer_name
            if data.customer_id:
                customer = await self.db.get(Customer, data.customer_id)
                if customer is None or customer.tenant_id != self.tenant_id:
                    raise EntityNotFoundError("Customer", data.customer_id)
                customer_name = customer_name or customer.name

            dispatch = BatchDispatchRecord(
                id=uuid4(),
                tenant_id=self.tenant_id,
                stock_batch_id=batch.id,
                customer_id=data.customer_id,
                customer_name=customer_name,
                dispatch_date=data.dispatch_date,
                quantity=data.quantity,
                unit=batch.unit,
                delivery_note_reference=data.delivery_note_reference,
                created_by=self.user_id,
            )
            self.db.add(dispatch)

            batch.quantity_remaining = batch.quantity_remaining - data.quantity
            self.db.add(BatchMovement(
                id=uuid4(),
                tenant_id=self.tenant_id,
                batch_id=batch.id,
                movement_type=MovementType.DISPATCH.value,
                quantity=-data.quantity,
                reference_type="dispatch",
                reference_id=dispatch.id,
                notes=f"Dispatched to {customer_name}",
                created_by=self.user_id,
            ))
            await self.db.flush()

        return dispatch


async def record_production_output(
    tenant_id: UUID,
    production_batch_id: UUID,
    data: ProductionOutputCreate,
    db: Optional[AsyncSession] = None,
    clock: Optional[Clock] = None,
) -> OutputResult:
    """Record a production output using the caller's session or a fresh one."""
    if db is not None:
        return await GenealogyService(db, tenant_id, clock).record_output(production_batch_id, data)

    from batchtrace.database import async_session_factory

    async with async_session_factory() as session:
        return await GenealogyService(session, tenant_id, clock).record_output(production_batch_id, data)
