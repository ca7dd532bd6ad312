"""
Modelos SQLAlchemy para el módulo de Compras

- Proveedores (Supplier)
- Órdenes de compra (PurchaseOrder) con seguimiento de cantidades recibidas/facturadas
- Comprobantes de proveedor (PurchaseInvoice): facturas, notas de débito y de crédito
- Aplicaciones explícitas de notas de crédito (CreditNoteApplication)
- Remitos de recepción (ReceivingNote) que mueven el stock al confirmarse

Arquitectura multi-tenant: Todas las tablas de cabecera incluyen tenant_id
"""

from erp_core.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Date, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from erp_core.common.mixins import TenantMixin, TimestampMixin
from erp_core.modules.inventory import models as inventory_models  # noqa: F401  registra Product y Warehouse
import enum


# ===== ENUMS =====

class PurchaseOrderStatus(enum.Enum):
    """Estados de órdenes de compra"""
    DRAFT = "draft"                             # Borrador
    APPROVED = "approved"                       # Aprobada, pendiente de recepción
    PARTIALLY_RECEIVED = "partially_received"   # Recepción parcial
    COMPLETED = "completed"                     # Recibida por completo
    CANCELLED = "cancelled"                     # Anulada


class VoucherType(enum.Enum):
    """Tipos de comprobante de proveedor"""
    INVOICE_A = "invoice_a"
    INVOICE_B = "invoice_b"
    INVOICE_C = "invoice_c"
    DEBIT_NOTE_A = "debit_note_a"
    DEBIT_NOTE_B = "debit_note_b"
    DEBIT_NOTE_C = "debit_note_c"
    CREDIT_NOTE_A = "credit_note_a"
    CREDIT_NOTE_B = "credit_note_b"
    CREDIT_NOTE_C = "credit_note_c"

    @property
    def is_credit_note(self) -> bool:
        return self.value.startswith("credit_note")

    @property
    def is_debit_note(self) -> bool:
        return self.value.startswith("debit_note")


class PurchaseInvoiceStatus(enum.Enum):
    """Estados de comprobantes de proveedor"""
    DRAFT = "draft"                 # Borrador (sin efectos)
    CONFIRMED = "confirmed"         # Confirmada, saldo pendiente completo
    PARTIAL_PAID = "partial_paid"   # Pago parcial
    PAID = "paid"                   # Cancelada en su totalidad
    CANCELLED = "cancelled"         # Anulada


class ReceivingNoteStatus(enum.Enum):
    """Estados de remitos de recepción"""
    DRAFT = "draft"           # Borrador (no afecta stock)
    CONFIRMED = "confirmed"   # Confirmado (stock incrementado)
    CANCELLED = "cancelled"   # Anulado (stock revertido)


class ReceptionStatus(enum.Enum):
    """Estado de recepción de una factura, derivado de sus remitos confirmados"""
    PENDING = "pending"       # Nada recibido
    PARTIAL = "partial"       # Recepción parcial
    COMPLETE = "complete"     # Todo lo facturado fue recibido


RECEPTION_TRACKED_STATUSES = (
    PurchaseInvoiceStatus.CONFIRMED, PurchaseInvoiceStatus.PARTIAL_PAID, PurchaseInvoiceStatus.PAID
)


# ===== MODELOS =====

class Supplier(Base, TenantMixin, TimestampMixin):
    """
    Proveedores de la empresa

    El CUIT/NIT queda fijo una vez que el proveedor tiene comprobantes confirmados.
    """
    __tablename__ = "suppliers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False, index=True)
    tax_id = Column(String(20), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    payment_term_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    invoices = relationship("PurchaseInvoice", back_populates="supplier")

    __table_args__ = (
        UniqueConstraint("tenant_id", "tax_id", name="uq_supplier_tenant_tax_id"),
    )


class PurchaseOrder(Base, TenantMixin, TimestampMixin):
    __tablename__ = "purchase_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String(20), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False, index=True)
    issue_date = Column(Date, nullable=False, default=date.today)
    status = Column(Enum(PurchaseOrderStatus), nullable=False, default=PurchaseOrderStatus.DRAFT, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), nullable=False)

    supplier = relationship("Supplier")
    lines = relationship("PurchaseOrderLine", back_populates="purchase_order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_purchase_order_tenant_number"),
    )


class PurchaseOrderLine(Base, TimestampMixin):
    __tablename__ = "purchase_order_lines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    purchase_order_id = Column(UUID(as_uuid=True), ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False, default=0)
    received_qty = Column(Numeric(15, 3), nullable=False, default=0)   # Informativo, no se valida sobre-recepción
    invoiced_qty = Column(Numeric(15, 3), nullable=False, default=0)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    product = relationship("Product")


class PurchaseInvoice(Base, TenantMixin, TimestampMixin):
    """
    Comprobantes de proveedor

    Facturas, notas de débito y notas de crédito comparten tabla. Una nota
    puede referenciar el comprobante que corrige con original_invoice_id.
    El contenido es inmutable una vez confirmado.
    """
    __tablename__ = "purchase_invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False, index=True)
    purchase_order_id = Column(UUID(as_uuid=True), ForeignKey("purchase_orders.id"), nullable=True, index=True)
    original_invoice_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=True, index=True)

    voucher_type = Column(Enum(VoucherType), nullable=False)
    number = Column(String(50), nullable=False)  # Número impreso del proveedor
    issue_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(Enum(PurchaseInvoiceStatus), nullable=False, default=PurchaseInvoiceStatus.DRAFT, index=True)
    notes = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    supplier = relationship("Supplier", back_populates="invoices")
    purchase_order = relationship("PurchaseOrder")
    original_invoice = relationship("PurchaseInvoice", remote_side=[id])
    lines = relationship("PurchaseInvoiceLine", back_populates="invoice", cascade="all, delete-orphan")
    receiving_notes = relationship("ReceivingNote", back_populates="purchase_invoice")

    __table_args__ = (
        UniqueConstraint("tenant_id", "supplier_id", "voucher_type", "number", name="uq_purchase_invoice_supplier_number"),
    )

    @property
    def is_credit_note(self) -> bool:
        return self.voucher_type.is_credit_note

    @property
    def reception_status(self) -> Optional[ReceptionStatus]:
        """
        Compara las líneas con productos que controlan stock contra lo
        recibido por producto en remitos confirmados que referencian la
        factura. None para notas, borradores, anulados o facturas sin stock.
        """
        if self.status not in RECEPTION_TRACKED_STATUSES:
            return None
        if self.voucher_type.is_credit_note or self.voucher_type.is_debit_note:
            return None
        stock_lines = [l for l in self.lines if l.product_id and l.product and l.product.track_stock]
        if not stock_lines:
            return None

        received: Dict[Any, Decimal] = {}
        for note in self.receiving_notes:
            if note.status != ReceivingNoteStatus.CONFIRMED:
                continue
            for line in note.lines:
                received[line.product_id] = received.get(line.product_id, Decimal("0")) + Decimal(line.quantity)

        quantities = [(received.get(l.product_id, Decimal("0")), Decimal(l.quantity)) for l in stock_lines]
        if all(got >= wanted for got, wanted in quantities):
            return ReceptionStatus.COMPLETE
        if any(got > 0 for got, _ in quantities):
            return ReceptionStatus.PARTIAL
        return ReceptionStatus.PENDING


class PurchaseInvoiceLine(Base, TimestampMixin):
    __tablename__ = "purchase_invoice_lines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=True)
    purchase_order_line_id = Column(UUID(as_uuid=True), ForeignKey("purchase_order_lines.id"), nullable=True)
    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(15, 3), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    line_total = Column(Numeric(15, 2), nullable=False)

    invoice = relationship("PurchaseInvoice", back_populates="lines")
    product = relationship("Product")


class CreditNoteApplication(Base, TenantMixin, TimestampMixin):
    """Monto de una nota de crédito imputado de forma explícita a un comprobante"""
    __tablename__ = "credit_note_applications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    credit_note_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)
    created_by = Column(UUID(as_uuid=True), nullable=False)

    credit_note = relationship("PurchaseInvoice", foreign_keys=[credit_note_id])
    invoice = relationship("PurchaseInvoice", foreign_keys=[invoice_id])


class ReceivingNote(Base, TenantMixin, TimestampMixin):
    """
    Remitos de recepción de mercadería

    Al confirmarse incrementan el stock del depósito; al anularse lo
    decrementan exactamente en las mismas cantidades.
    """
    __tablename__ = "receiving_notes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String(20), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False, index=True)
    warehouse_id = Column(UUID(as_uuid=True), ForeignKey("warehouses.id"), nullable=False, index=True)
    purchase_order_id = Column(UUID(as_uuid=True), ForeignKey("purchase_orders.id"), nullable=True, index=True)
    purchase_invoice_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=True, index=True)

    receipt_date = Column(Date, nullable=False, default=date.today)
    status = Column(Enum(ReceivingNoteStatus), nullable=False, default=ReceivingNoteStatus.DRAFT, index=True)
    notes = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    supplier = relationship("Supplier")
    warehouse = relationship("Warehouse")
    purchase_order = relationship("PurchaseOrder")
    purchase_invoice = relationship("PurchaseInvoice", back_populates="receiving_notes")
    lines = relationship("ReceivingNoteLine", back_populates="receiving_note", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_receiving_note_tenant_number"),
    )


class ReceivingNoteLine(Base, TimestampMixin):
    __tablename__ = "receiving_note_lines"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    receiving_note_id = Column(UUID(as_uuid=True), ForeignKey("receiving_notes.id"), nullable=False, index=True)
    product_id = Column(UUID(as_uuid=True), ForeignKey("products.id"), nullable=False)
    purchase_order_line_id = Column(UUID(as_uuid=True), ForeignKey("purchase_order_lines.id"), nullable=True)
    quantity = Column(Numeric(15, 3), nullable=False)
    notes = Column(Text, nullable=True)

    receiving_note = relationship("ReceivingNote", back_populates="lines")
    product = relationship("Product")
    purchase_order_line = relationship("PurchaseOrderLine")
