from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from erp_core.common.exceptions import BusinessRuleViolation, InvalidInputError, NotFoundError
from erp_core.database.database import atomic
from erp_core.modules.inventory.models import (
    Warehouse, WarehouseType, Product, WarehouseStock, StockMovement, StockMovementType, StockReferenceType
)
from erp_core.modules.inventory.schemas import StockOut, StockAdjustment, StockMovementList

logger = logging.getLogger(__name__)


class StockLedger:
    """
    Único punto de escritura del stock.

    Cada cambio inserta un StockMovement firmado y ajusta WarehouseStock en
    la misma sesión; no confirma la transacción, eso queda a cargo de la
    operación que lo invoca.
    """

    def __init__(self, db: Session):
        self.db = db

    def _lock_stock(self, tenant_id: UUID, warehouse_id: UUID, product_id: UUID) -> Optional[WarehouseStock]:
        return self.db.query(WarehouseStock).filter(
            WarehouseStock.tenant_id == tenant_id,
            WarehouseStock.warehouse_id == warehouse_id,
            WarehouseStock.product_id == product_id
        ).with_for_update().first()

    def get_quantity(self, tenant_id: UUID, warehouse_id: UUID, product_id: UUID) -> Decimal:
        stock = self.db.query(WarehouseStock).filter(
            WarehouseStock.tenant_id == tenant_id,
            WarehouseStock.warehouse_id == warehouse_id,
            WarehouseStock.product_id == product_id
        ).first()
        return Decimal(stock.quantity) if stock else Decimal("0")

    def reconstruct_quantity(self, tenant_id: UUID, warehouse_id: UUID, product_id: UUID) -> Decimal:
        """Suma firmada de todos los movimientos del par (depósito, producto)"""
        total = self.db.query(func.coalesce(func.sum(StockMovement.quantity), 0)).filter(
            StockMovement.tenant_id == tenant_id,
            StockMovement.warehouse_id == warehouse_id,
            StockMovement.product_id == product_id
        ).scalar()
        return Decimal(total)

    def ensure_available(self, tenant_id: UUID, warehouse_id: UUID, product_id: UUID,
                         quantity: Decimal, product_name: str = "") -> None:
        available = self.get_quantity(tenant_id, warehouse_id, product_id)
        if available < quantity:
            raise BusinessRuleViolation(
                f"Stock insuficiente para revertir {product_name or product_id}: "
                f"disponible {available}, requerido {quantity}"
            )

    def apply_movement(
        self,
        tenant_id: UUID,
        warehouse_id: UUID,
        product_id: UUID,
        quantity: Decimal,
        movement_type: StockMovementType,
        user_id: UUID,
        reference_type: Optional[StockReferenceType] = None,
        reference_id: Optional[UUID] = None,
        notes: Optional[str] = None,
        allow_negative: bool = False,
    ) -> StockMovement:
        quantity = Decimal(quantity)
        if quantity == 0:
            raise InvalidInputError("La cantidad del movimiento no puede ser cero")

        stock = self._lock_stock(tenant_id, warehouse_id, product_id)
        if not stock:
            stock = WarehouseStock(
                tenant_id=tenant_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=Decimal("0")
            )
            self.db.add(stock)
            self.db.flush()

        new_quantity = Decimal(stock.quantity) + quantity
        if new_quantity < 0 and not allow_negative:
            raise BusinessRuleViolation(
                f"Stock insuficiente: disponible {stock.quantity}, movimiento {quantity}"
            )
        stock.quantity = new_quantity

        movement = StockMovement(
            tenant_id=tenant_id,
            warehouse_id=warehouse_id,
            product_id=product_id,
            quantity=quantity,
            type=movement_type,
            reference_type=reference_type.value if reference_type else None,
            reference_id=reference_id,
            notes=notes,
            created_by=user_id
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def get_main_warehouse(self, tenant_id: UUID) -> Warehouse:
        warehouse = self.db.query(Warehouse).filter(
            Warehouse.tenant_id == tenant_id,
            Warehouse.type == WarehouseType.MAIN,
            Warehouse.is_active == True
        ).first()
        if not warehouse:
            raise BusinessRuleViolation("No hay un depósito principal configurado")
        return warehouse


class InventoryService:
    """Consultas de stock y ajustes manuales."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)

    def _get_warehouse(self, warehouse_id: UUID, tenant_id: UUID) -> Warehouse:
        warehouse = self.db.query(Warehouse).filter(
            Warehouse.id == warehouse_id,
            Warehouse.tenant_id == tenant_id
        ).first()
        if not warehouse:
            raise NotFoundError("Depósito no encontrado")
        return warehouse

    def _get_product(self, product_id: UUID, tenant_id: UUID) -> Product:
        product = self.db.query(Product).filter(
            Product.id == product_id,
            Product.tenant_id == tenant_id
        ).first()
        if not product:
            raise NotFoundError("Producto no encontrado")
        return product

    def get_warehouse_stock(self, warehouse_id: UUID, tenant_id: UUID) -> List[StockOut]:
        warehouse = self._get_warehouse(warehouse_id, tenant_id)
        stocks = self.db.query(WarehouseStock).options(
            selectinload(WarehouseStock.product)
        ).filter(
            WarehouseStock.tenant_id == tenant_id,
            WarehouseStock.warehouse_id == warehouse_id
        ).all()

        return [
            StockOut(
                id=stock.id,
                warehouse_id=stock.warehouse_id,
                product_id=stock.product_id,
                quantity=stock.quantity,
                product_name=stock.product.name if stock.product else None,
                warehouse_name=warehouse.name
            )
            for stock in stocks
        ]

    def get_product_movements(self, product_id: UUID, tenant_id: UUID,
                              warehouse_id: Optional[UUID] = None,
                              limit: int = 100, offset: int = 0) -> StockMovementList:
        self._get_product(product_id, tenant_id)
        query = self.db.query(StockMovement).filter(
            StockMovement.tenant_id == tenant_id,
            StockMovement.product_id == product_id
        )
        if warehouse_id:
            query = query.filter(StockMovement.warehouse_id == warehouse_id)

        total = query.count()
        movements = query.order_by(StockMovement.created_at.desc()).offset(offset).limit(limit).all()
        return StockMovementList(items=movements, total=total, limit=limit, offset=offset)

    def adjust_stock(self, warehouse_id: UUID, product_id: UUID, data: StockAdjustment,
                     tenant_id: UUID, user_id: UUID) -> StockMovement:
        """Ajuste manual: registra un movimiento ADJUSTMENT por la diferencia indicada"""
        with atomic(self.db, "al ajustar stock"):
            self._get_warehouse(warehouse_id, tenant_id)
            product = self._get_product(product_id, tenant_id)
            if not product.track_stock:
                raise BusinessRuleViolation(f"El producto '{product.name}' no controla stock")

            movement = self.ledger.apply_movement(
                tenant_id=tenant_id,
                warehouse_id=warehouse_id,
                product_id=product_id,
                quantity=data.quantity,
                movement_type=StockMovementType.ADJUSTMENT,
                user_id=user_id,
                reference_type=StockReferenceType.MANUAL,
                notes=data.notes
            )
        self.db.refresh(movement)
        logger.info(f"Ajuste de stock {data.quantity} en producto {product_id}, depósito {warehouse_id}")
        return movement
