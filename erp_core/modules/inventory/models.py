"""
Modelos del libro de stock

- Warehouse: depósitos de la empresa (uno marcado como principal)
- Product: datos mínimos del producto que el motor necesita
- WarehouseStock: saldo materializado por (depósito, producto)
- StockMovement: eventos firmados que componen ese saldo
"""

from erp_core.database.database import Base
from sqlalchemy import Column, String, Boolean, ForeignKey, Numeric, Enum, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from erp_core.common.mixins import TenantMixin, TimestampMixin
import enum


# ===== ENUMS =====

class WarehouseType(enum.Enum):
    MAIN = "main"             # Depósito principal
    SECONDARY = "secondary"   # Depósito secundario


class StockMovementType(enum.Enum):
    PURCHASE = "purchase"       # Ingreso por recepción de compra
    RETURN = "return"           # Devolución a proveedor (nota de crédito)
    ADJUSTMENT = "adjustment"   # Ajuste o reversión


class StockReferenceType(str, enum.Enum):
    RECEIVING_NOTE = "receiving_note"
    RECEIVING_NOTE_CANCELLATION = "receiving_note_cancellation"
    PURCHASE_CREDIT_NOTE = "purchase_credit_note"
    PURCHASE_CREDIT_NOTE_CANCELLATION = "purchase_credit_note_cancellation"
    MANUAL = "manual"


# ===== MODELOS =====

class Warehouse(Base, TenantMixin, TimestampMixin):
    __tablename__ = "warehouses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    type = Column(Enum(WarehouseType), nullable=False, default=WarehouseType.SECONDARY)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_warehouse_tenant_name"),
    )


class Product(Base, TenantMixin, TimestampMixin):
    __tablename__ = "products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    track_stock = Column(Boolean, nullable=False, default=True)  # False para servicios
    is_active = Column(Boolean, nullable=False, default=True)

    stocks = relationship("WarehouseStock", back_populates="product")

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_product_tenant_code"),
    )


class WarehouseStock(Base, TenantMixin, TimestampMixin):
    """
    Saldo materializado de un producto en un depósito.

    Sólo se modifica a través de StockLedger, que registra un StockMovement
    por cada cambio; la cantidad siempre equivale a la suma de movimientos.
    """
    __tablename__ = "warehouse_stocks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False, index=True)
    quantity = Column(Numeric(15, 3), nullable=False, default=0)

    warehouse = relationship("Warehouse")
    product = relationship("Product", back_populates="stocks")

    __table_args__ = (
        UniqueConstraint("tenant_id", "warehouse_id", "product_id", name="uq_stock_tenant_warehouse_product"),
    )


class StockMovement(Base, TenantMixin, TimestampMixin):
    __tablename__ = "stock_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)

    quantity = Column(Numeric(15, 3), nullable=False)  # Positivo ingresa, negativo egresa
    type = Column(Enum(StockMovementType), nullable=False)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(UUID(as_uuid=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)

    warehouse = relationship("Warehouse")
    product = relationship("Product")

    __table_args__ = (
        Index("idx_stock_movements_warehouse_product", "warehouse_id", "product_id"),
        Index("idx_stock_movements_reference", "reference_type", "reference_id"),
    )
