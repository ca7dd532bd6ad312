from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal

from erp_core.modules.inventory.models import StockMovementType


class StockOut(BaseModel):
    id: UUID
    warehouse_id: UUID
    product_id: UUID
    quantity: Decimal
    product_name: Optional[str] = None
    warehouse_name: Optional[str] = None

    class Config:
        from_attributes = True


class StockAdjustment(BaseModel):
    quantity: Decimal = Field(..., description="Diferencia a aplicar (positiva o negativa)")
    notes: Optional[str] = Field(None, max_length=255, description="Motivo del ajuste")


class StockMovementOut(BaseModel):
    id: UUID
    warehouse_id: UUID
    product_id: UUID
    quantity: Decimal
    type: StockMovementType
    reference_type: Optional[str]
    reference_id: Optional[UUID]
    notes: Optional[str]
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class StockMovementList(BaseModel):
    items: List[StockMovementOut]
    total: int
    limit: int
    offset: int
