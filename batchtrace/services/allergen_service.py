"""Allergen inheritance from production inputs to outputs."""
from typing import FrozenSet, Iterable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.models.batch import StockBatch
from batchtrace.models.production import ProductionBatchInput


def normalize_allergen(value: str) -> str:
    return value.strip().lower()


def union_allergens(allergen_lists: Iterable[Optional[Iterable[str]]]) -> FrozenSet[str]:
    """
    Set union of several allergen lists.

    Order independent and idempotent; None or empty lists contribute nothing.
    """
    result = set()
    for allergens in allergen_lists:
        for allergen in allergens or ():
            if allergen and allergen.strip():
                result.add(normalize_allergen(allergen))
    return frozenset(result)


class AllergenService:
    """Computes the allergens a production output inherits."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def inherited(self, production_batch_id: UUID) -> FrozenSet[str]:
        """Union of the allergens of every input batch of a production run."""
        result = await self.db.execute(
            select(StockBatch.allergens)
            .join(ProductionBatchInput, ProductionBatchInput.stock_batch_id == StockBatch.id)
            .where(
                ProductionBatchInput.tenant_id == self.tenant_id,
                ProductionBatchInput.production_batch_id == production_batch_id,
            )
        )
        return union_allergens(result.scalars().all())
