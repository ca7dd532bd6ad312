from fastapi import APIRouter, Query, status
from typing import List, Optional
from uuid import UUID

from erp_core.dependencies.dbDependencies import db_dependency
from erp_core.dependencies.companyDependencies import TenantContext
from erp_core.modules.inventory.service import InventoryService
from erp_core.modules.inventory.schemas import StockOut, StockAdjustment, StockMovementOut, StockMovementList

stock_router = APIRouter(prefix="/stock", tags=["Stock"])


@stock_router.get("/warehouse/{warehouse_id}", response_model=List[StockOut])
def get_warehouse_stock(warehouse_id: UUID, db: db_dependency, context: TenantContext):
    """Saldo de cada producto en un depósito."""
    service = InventoryService(db)
    return service.get_warehouse_stock(warehouse_id, context.tenant_id)


@stock_router.get("/product/{product_id}/movements", response_model=StockMovementList)
def get_product_movements(
    product_id: UUID,
    db: db_dependency,
    context: TenantContext,
    warehouse_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Historial de movimientos de un producto."""
    service = InventoryService(db)
    return service.get_product_movements(product_id, context.tenant_id, warehouse_id, limit, offset)


@stock_router.post("/warehouse/{warehouse_id}/product/{product_id}/adjust",
                   response_model=StockMovementOut, status_code=status.HTTP_201_CREATED)
def adjust_stock(warehouse_id: UUID, product_id: UUID, data: StockAdjustment,
                 db: db_dependency, context: TenantContext):
    service = InventoryService(db)
    return service.adjust_stock(warehouse_id, product_id, data, context.tenant_id, context.user_id)
