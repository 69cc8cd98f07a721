"""
Production / Genealogy Schemas.

Pydantic schemas for the write side of the genealogy: production runs,
their inputs and outputs, raw-material receipt and dispatch.
"""
from datetime import date
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from batchtrace.core.enum_utils import normalize_to_lowercase, enum_values
from batchtrace.models.production import OutputType
from batchtrace.schemas.base import BaseCreateSchema, BaseResponseSchema


# ============================================================================
# PRODUCTION BATCH SCHEMAS
# ============================================================================

class ProductionBatchCreate(BaseCreateSchema):
    """Schema for planning a production run."""
    recipe_id: Optional[UUID] = None
    production_date: date
    planned_quantity: Optional[Decimal] = Field(None, ge=0)
    unit: Optional[str] = Field(None, max_length=20)
    batch_code: Optional[str] = Field(None, max_length=100)  # manual override
    notes: Optional[str] = None



class ProductionInputCreate(BaseCreateSchema):
    """Schema for recording a stock batch consumed by a production run."""
    stock_batch_id: UUID
    planned_quantity: Optional[Decimal] = Field(None, ge=0)
    actual_quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    is_rework: bool = False



class ProductionOutputCreate(BaseCreateSchema):
    """Schema for recording a production output."""
    stock_item_id: UUID
    output_type: OutputType = OutputType.FINISHED_PRODUCT
    quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    use_by_date: Optional[date] = None
    best_before_date: Optional[date] = None
    batch_code: Optional[str] = Field(None, max_length=100)  # manual override

    @field_validator('output_type', mode='before')
    @classmethod
    def normalize_output_type(cls, v):
        return normalize_to_lowercase(v, set(enum_values(OutputType)))

    @model_validator(mode='after')
    def waste_has_no_code(self):
        if self.output_type == OutputType.WASTE and self.batch_code:
            raise ValueError("Waste outputs do not carry a batch code")
        return self


class ProductionOutputResponse(BaseResponseSchema):
    id: UUID
    production_batch_id: UUID
    stock_item_id: UUID
    output_type: str
    quantity: Decimal
    unit: Optional[str] = None
    use_by_date: Optional[date] = None
    best_before_date: Optional[date] = None
    generated_batch_code: Optional[str] = None
    stock_batch_id: Optional[UUID] = None


# ============================================================================
# STOCK BATCH SCHEMAS
# ============================================================================

class RawBatchReceive(BaseCreateSchema):
    """Schema for booking in a raw-material batch against a delivery line."""
    stock_item_id: UUID
    delivery_line_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit: str = Field(..., max_length=20)
    use_by_date: Optional[date] = None
    best_before_date: Optional[date] = None
    allergens: List[str] = Field(default_factory=list)
    supplier_batch_code: Optional[str] = Field(None, max_length=100)
    batch_code: Optional[str] = Field(None, max_length=100)  # manual override
    received_on: Optional[date] = None
    condition_notes: Optional[str] = None


class StockBatchResponse(BaseResponseSchema):
    id: UUID
    tenant_id: UUID
    stock_item_id: UUID
    batch_code: str
    delivery_line_id: Optional[UUID] = None
    production_batch_id: Optional[UUID] = None
    quantity_received: Decimal
    quantity_remaining: Decimal
    unit: str
    use_by_date: Optional[date] = None
    best_before_date: Optional[date] = None
    allergens: List[str] = Field(default_factory=list)
    status: str

    @field_validator('allergens', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class DispatchCreate(BaseCreateSchema):
    """Schema for dispatching (part of) a batch to a customer."""
    stock_batch_id: UUID
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = Field(None, max_length=200)
    quantity: Decimal = Field(..., gt=0)
    unit: Optional[str] = Field(None, max_length=20)
    dispatch_date: date
    delivery_note_reference: Optional[str] = Field(None, max_length=100)

    @model_validator(mode='after')
    def customer_identified(self):
        if not self.customer_id and not self.customer_name:
            raise ValueError("Either customer_id or customer_name is required")
        return self



# ============================================================================
# RESULTS
# ============================================================================

class OutputResult(BaseResponseSchema):
    """Result of recording a production output."""
    output: ProductionOutputResponse
    stock_batch: Optional[StockBatchResponse] = None
    inherited_allergens: List[str] = Field(default_factory=list)
    max_use_by: Optional[date] = None
