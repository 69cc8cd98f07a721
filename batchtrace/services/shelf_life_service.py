"""
Shelf-Life Service.

The governing rule for a stock item is its most recently updated ACTIVE
product specification. ``shelf_life_days`` is always read as days;
``shelf_life_unit`` only records how the limit was originally declared.
"""
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from batchtrace.core.exceptions import ShelfLifeExceededError
from batchtrace.models.batch import ProductSpecification, SpecStatus


class ShelfLifeService:
    """Checks use-by dates against a product's maximum shelf life."""

    def __init__(self, db: AsyncSession, tenant_id: UUID):
        self.db = db
        self.tenant_id = tenant_id

    async def get_active_specification(self, stock_item_id: UUID) -> Optional[ProductSpecification]:
        result = await self.db.execute(
            select(ProductSpecification)
            .where(
                ProductSpecification.tenant_id == self.tenant_id,
                ProductSpecification.stock_item_id == stock_item_id,
                ProductSpecification.status == SpecStatus.ACTIVE.value,
            )
            .order_by(
                ProductSpecification.updated_at.desc(),
                ProductSpecification.version_number.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def max_use_by(self, stock_item_id: UUID, production_date: date) -> Optional[date]:
        """
        Latest permitted use-by date, or None when no active specification
        declares a shelf life (any date is then allowed).
        """
        spec = await self.get_active_specification(stock_item_id)
        if spec is None or spec.shelf_life_days is None:
            return None
        return production_date + timedelta(days=spec.shelf_life_days)

    async def validate(
        self,
        proposed_use_by: Optional[date],
        stock_item_id: UUID,
        production_date: date,
    ) -> Optional[date]:
        """
        Validate a proposed use-by date.

        Returns:
            The computed maximum use-by date (None if unconstrained)

        Raises:
            ShelfLifeExceededError: If proposed_use_by is later than the maximum
        """
        max_date = await self.max_use_by(stock_item_id, production_date)
        if proposed_use_by is not None and max_date is not None and proposed_use_by > max_date:
            raise ShelfLifeExceededError(max_use_by=max_date, proposed=proposed_use_by)
        return max_date
