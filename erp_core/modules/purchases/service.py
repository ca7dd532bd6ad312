"""
Servicios del módulo de Compras

- SupplierService: alta de proveedores y guardas de modificación/baja
- PurchaseOrderService: órdenes de compra y su estado de recepción
- PurchaseInvoiceService: ciclo de vida de comprobantes de proveedor

Los comprobantes en borrador no tienen efectos. Al confirmar una nota de
crédito se devuelve la mercadería (egreso de stock del depósito principal)
y se imputa automáticamente contra los comprobantes pendientes; al anularla
se revierte el egreso.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session, selectinload

from erp_core.common.exceptions import BusinessRuleViolation, ConflictError, NotFoundError
from erp_core.common.numbering import next_document_number
from erp_core.common.state_machine import TransitionResult, apply_transition, get_for_update, get_or_404
from erp_core.database.database import atomic
from erp_core.modules.inventory.models import Product, StockMovement, StockMovementType, StockReferenceType
from erp_core.modules.inventory.service import StockLedger
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.purchases.credit_notes import CreditNoteService
from erp_core.modules.purchases.models import (
    Supplier, PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus,
    PurchaseInvoice, PurchaseInvoiceLine, PurchaseInvoiceStatus, ReceivingNote
)
from erp_core.modules.purchases.schemas import (
    SupplierCreate, SupplierUpdate, PurchaseOrderCreate,
    PurchaseInvoiceCreate, PurchaseInvoiceUpdate, PurchaseInvoiceLineCreate, PurchaseInvoiceList
)
from erp_core.modules.purchases.states import PURCHASE_ORDER_MACHINE, PURCHASE_INVOICE_MACHINE

logger = logging.getLogger(__name__)

INV = PurchaseInvoiceStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SupplierService:
    """Servicio para gestión de proveedores"""

    def __init__(self, db: Session):
        self.db = db

    def _has_invoices(self, supplier_id: UUID, tenant_id: UUID, confirmed_only: bool = False) -> bool:
        query = self.db.query(PurchaseInvoice.id).filter(
            PurchaseInvoice.tenant_id == tenant_id,
            PurchaseInvoice.supplier_id == supplier_id
        )
        if confirmed_only:
            query = query.filter(PurchaseInvoice.status != INV.DRAFT)
        return query.first() is not None

    def _ensure_unique_tax_id(self, tax_id: Optional[str], tenant_id: UUID, exclude_id: Optional[UUID] = None):
        if not tax_id:
            return
        query = self.db.query(Supplier).filter(
            Supplier.tenant_id == tenant_id,
            Supplier.tax_id == tax_id
        )
        if exclude_id:
            query = query.filter(Supplier.id != exclude_id)
        if query.first():
            raise ConflictError(f"Ya existe un proveedor con CUIT/NIT {tax_id}")

    def create_supplier(self, data: SupplierCreate, tenant_id: UUID) -> Supplier:
        with atomic(self.db, "al crear proveedor"):
            self._ensure_unique_tax_id(data.tax_id, tenant_id)
            supplier = Supplier(tenant_id=tenant_id, **data.model_dump())
            self.db.add(supplier)
        self.db.refresh(supplier)
        return supplier

    def list_suppliers(self, tenant_id: UUID, search: Optional[str] = None) -> List[Supplier]:
        query = self.db.query(Supplier).filter(Supplier.tenant_id == tenant_id)
        if search:
            query = query.filter(Supplier.name.ilike(f"%{search}%"))
        return query.order_by(Supplier.name).all()

    def update_supplier(self, supplier_id: UUID, data: SupplierUpdate, tenant_id: UUID) -> Supplier:
        with atomic(self.db, "al actualizar proveedor"):
            supplier = get_for_update(self.db, Supplier, supplier_id, tenant_id, "Proveedor")
            changes = data.model_dump(exclude_unset=True)

            if "tax_id" in changes and changes["tax_id"] != supplier.tax_id:
                if self._has_invoices(supplier_id, tenant_id, confirmed_only=True):
                    raise BusinessRuleViolation(
                        "No se puede modificar el CUIT/NIT de un proveedor con comprobantes confirmados"
                    )
                self._ensure_unique_tax_id(changes["tax_id"], tenant_id, exclude_id=supplier_id)

            for field, value in changes.items():
                setattr(supplier, field, value)
        self.db.refresh(supplier)
        return supplier

    def delete_supplier(self, supplier_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar proveedor"):
            supplier = get_for_update(self.db, Supplier, supplier_id, tenant_id, "Proveedor")
            if self._has_invoices(supplier_id, tenant_id):
                raise BusinessRuleViolation("No se puede eliminar un proveedor con comprobantes asociados")
            self.db.delete(supplier)
        logger.info(f"Proveedor {supplier_id} eliminado")


class PurchaseOrderService:
    """Órdenes de compra y seguimiento de recepción"""

    def __init__(self, db: Session):
        self.db = db

    def create_purchase_order(self, data: PurchaseOrderCreate, tenant_id: UUID, user_id: UUID) -> PurchaseOrder:
        with atomic(self.db, "al crear la orden de compra"):
            get_or_404(self.db, Supplier, data.supplier_id, tenant_id, "Proveedor")
            for line in data.lines:
                get_or_404(self.db, Product, line.product_id, tenant_id, "Producto")

            order = PurchaseOrder(
                tenant_id=tenant_id,
                number=next_document_number(self.db, PurchaseOrder.number, tenant_id, "OC"),
                supplier_id=data.supplier_id,
                issue_date=data.issue_date or date.today(),
                status=PurchaseOrderStatus.DRAFT,
                notes=data.notes,
                created_by=user_id,
                lines=[
                    PurchaseOrderLine(product_id=l.product_id, quantity=l.quantity, unit_price=l.unit_price)
                    for l in data.lines
                ]
            )
            self.db.add(order)
        self.db.refresh(order)
        return order

    def get_purchase_order(self, order_id: UUID, tenant_id: UUID) -> PurchaseOrder:
        order = self.db.query(PurchaseOrder).options(
            selectinload(PurchaseOrder.lines)
        ).filter(
            PurchaseOrder.id == order_id,
            PurchaseOrder.tenant_id == tenant_id
        ).first()
        if not order:
            raise NotFoundError("Orden de compra no encontrada")
        return order

    def approve_purchase_order(self, order_id: UUID, tenant_id: UUID) -> TransitionResult:
        order = get_for_update(self.db, PurchaseOrder, order_id, tenant_id, "Orden de compra")
        return apply_transition(self.db, PURCHASE_ORDER_MACHINE, order, PurchaseOrderStatus.APPROVED)

    def cancel_purchase_order(self, order_id: UUID, tenant_id: UUID) -> TransitionResult:
        order = get_for_update(self.db, PurchaseOrder, order_id, tenant_id, "Orden de compra")
        return apply_transition(
            self.db, PURCHASE_ORDER_MACHINE, order, PurchaseOrderStatus.CANCELLED,
            effect=self._ensure_without_activity
        )

    def _ensure_without_activity(self, order: PurchaseOrder):
        if any(Decimal(line.received_qty) > 0 or Decimal(line.invoiced_qty) > 0 for line in order.lines):
            raise BusinessRuleViolation("No se puede anular una orden con recepciones o facturas registradas")
        return []

    def delete_purchase_order(self, order_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar la orden de compra"):
            order = get_for_update(self.db, PurchaseOrder, order_id, tenant_id, "Orden de compra")
            PURCHASE_ORDER_MACHINE.ensure_deletable(order.status)
            self.db.delete(order)

    def sync_receiving_status(self, order_id: Optional[UUID], tenant_id: UUID) -> Optional[TransitionResult]:
        """
        Recalcula el estado de recepción de la orden a partir de received_qty.

        No confirma; se llama dentro de la transacción del remito.
        """
        if not order_id:
            return None
        order = get_for_update(self.db, PurchaseOrder, order_id, tenant_id, "Orden de compra")
        if order.status in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.CANCELLED):
            return None

        if order.lines and all(Decimal(l.received_qty) >= Decimal(l.quantity) for l in order.lines):
            target = PurchaseOrderStatus.COMPLETED
        elif any(Decimal(l.received_qty) > 0 for l in order.lines):
            target = PurchaseOrderStatus.PARTIALLY_RECEIVED
        else:
            target = PurchaseOrderStatus.APPROVED

        if target == order.status:
            return None
        return PURCHASE_ORDER_MACHINE.transition(order, target)


class PurchaseInvoiceService:
    """Servicio para comprobantes de proveedor"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)
        self.credit_notes = CreditNoteService(db)

    # ===== CONSULTAS =====

    @staticmethod
    def _detail_options():
        # Remitos con sus líneas para derivar el estado de recepción
        return (
            selectinload(PurchaseInvoice.lines).selectinload(PurchaseInvoiceLine.product),
            selectinload(PurchaseInvoice.receiving_notes).selectinload(ReceivingNote.lines),
        )

    def get_invoice(self, invoice_id: UUID, tenant_id: UUID) -> PurchaseInvoice:
        invoice = self.db.query(PurchaseInvoice).options(*self._detail_options()).filter(
            PurchaseInvoice.id == invoice_id,
            PurchaseInvoice.tenant_id == tenant_id
        ).first()
        if not invoice:
            raise NotFoundError("Comprobante no encontrado")
        return invoice

    def list_invoices(self, tenant_id: UUID, limit: int = 100, offset: int = 0,
                      status: Optional[PurchaseInvoiceStatus] = None,
                      supplier_id: Optional[UUID] = None) -> PurchaseInvoiceList:
        query = self.db.query(PurchaseInvoice).filter(PurchaseInvoice.tenant_id == tenant_id)
        if status:
            query = query.filter(PurchaseInvoice.status == status)
        if supplier_id:
            query = query.filter(PurchaseInvoice.supplier_id == supplier_id)

        total = query.count()
        invoices = query.options(*self._detail_options()).order_by(
            PurchaseInvoice.issue_date.desc()
        ).offset(offset).limit(limit).all()
        return PurchaseInvoiceList(items=invoices, total=total, limit=limit, offset=offset)

    # ===== BORRADOR =====

    def _build_lines(self, lines: List[PurchaseInvoiceLineCreate], tenant_id: UUID,
                     purchase_order_id: Optional[UUID]) -> List[PurchaseInvoiceLine]:
        built = []
        for line in lines:
            if line.product_id:
                get_or_404(self.db, Product, line.product_id, tenant_id, "Producto")
            if line.purchase_order_line_id:
                po_line = self.db.query(PurchaseOrderLine).filter(
                    PurchaseOrderLine.id == line.purchase_order_line_id
                ).first()
                if not po_line or po_line.purchase_order_id != purchase_order_id:
                    raise BusinessRuleViolation("La línea de orden de compra no pertenece a la orden indicada")
            built.append(PurchaseInvoiceLine(
                product_id=line.product_id,
                purchase_order_line_id=line.purchase_order_line_id,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=money(line.quantity * line.unit_price)
            ))
        return built

    def create_invoice(self, data: PurchaseInvoiceCreate, tenant_id: UUID, user_id: UUID) -> PurchaseInvoice:
        with atomic(self.db, "al crear el comprobante"):
            get_or_404(self.db, Supplier, data.supplier_id, tenant_id, "Proveedor")

            if data.purchase_order_id:
                order = get_or_404(self.db, PurchaseOrder, data.purchase_order_id, tenant_id, "Orden de compra")
                if order.supplier_id != data.supplier_id:
                    raise BusinessRuleViolation("La orden de compra pertenece a otro proveedor")

            if data.original_invoice_id:
                original = get_or_404(self.db, PurchaseInvoice, data.original_invoice_id, tenant_id, "Comprobante original")
                if original.supplier_id != data.supplier_id:
                    raise BusinessRuleViolation("El comprobante original pertenece a otro proveedor")
                if original.is_credit_note:
                    raise BusinessRuleViolation("Una nota no puede corregir a otra nota de crédito")

            lines = self._build_lines(data.lines, tenant_id, data.purchase_order_id)
            invoice = PurchaseInvoice(
                tenant_id=tenant_id,
                supplier_id=data.supplier_id,
                purchase_order_id=data.purchase_order_id,
                original_invoice_id=data.original_invoice_id,
                voucher_type=data.voucher_type,
                number=data.number,
                issue_date=data.issue_date,
                due_date=data.due_date,
                total=sum((l.line_total for l in lines), Decimal("0")),
                status=INV.DRAFT,
                notes=data.notes,
                created_by=user_id,
                lines=lines
            )
            self.db.add(invoice)
        self.db.refresh(invoice)
        logger.info(f"Comprobante {invoice.voucher_type.value} {invoice.number} creado en borrador")
        return invoice

    def update_invoice(self, invoice_id: UUID, data: PurchaseInvoiceUpdate, tenant_id: UUID) -> PurchaseInvoice:
        with atomic(self.db, "al actualizar el comprobante"):
            invoice = get_for_update(self.db, PurchaseInvoice, invoice_id, tenant_id, "Comprobante")
            if invoice.status != INV.DRAFT:
                raise BusinessRuleViolation("Sólo se pueden modificar comprobantes en borrador")

            changes = data.model_dump(exclude_unset=True, exclude={"lines"})
            for field, value in changes.items():
                setattr(invoice, field, value)

            if data.lines is not None:
                invoice.lines = self._build_lines(data.lines, tenant_id, invoice.purchase_order_id)
                invoice.total = sum((l.line_total for l in invoice.lines), Decimal("0"))

            if invoice.due_date and invoice.due_date < invoice.issue_date:
                raise BusinessRuleViolation("La fecha de vencimiento no puede ser anterior a la de emisión")
        self.db.refresh(invoice)
        return invoice

    def delete_invoice(self, invoice_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar el comprobante"):
            invoice = get_for_update(self.db, PurchaseInvoice, invoice_id, tenant_id, "Comprobante")
            PURCHASE_INVOICE_MACHINE.ensure_deletable(invoice.status)
            self.db.delete(invoice)
        logger.info(f"Comprobante {invoice_id} eliminado")

    # ===== TRANSICIONES =====

    def confirm_invoice(self, invoice_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        """
        Confirmar comprobante

        - Facturas y notas de débito ligadas a una orden suman invoiced_qty.
        - Notas de crédito egresan stock del depósito principal y se imputan
          contra los comprobantes pendientes del proveedor.
        """
        with atomic(self.db, "al confirmar el comprobante"):
            invoice = get_for_update(self.db, PurchaseInvoice, invoice_id, tenant_id, "Comprobante")
            result = PURCHASE_INVOICE_MACHINE.transition(
                invoice, INV.CONFIRMED, self._apply_confirmation, user_id=user_id
            )
            invoice.confirmed_at = utcnow()
            self.db.flush()
            if invoice.is_credit_note:
                result.side_effects.extend(self.credit_notes.auto_apply(invoice, user_id))
        self.db.refresh(invoice)
        logger.info(f"Comprobante {invoice.id} ({tenant_id}) confirmado, estado {invoice.status.value}")
        return result

    def _apply_confirmation(self, invoice: PurchaseInvoice, user_id: UUID):
        if Decimal(invoice.total) <= 0:
            raise BusinessRuleViolation("El total del comprobante debe ser mayor a cero")
        if not invoice.lines:
            raise BusinessRuleViolation("El comprobante debe tener al menos una línea")

        if invoice.is_credit_note:
            return self._return_stock(invoice, user_id)
        self._track_invoiced_qty(invoice, sign=1)
        return []

    def cancel_invoice(self, invoice_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        """
        Anular comprobante

        Los comprobantes con pagos o imputaciones (PARTIAL_PAID, PAID) no se
        pueden anular. Revierte todo efecto producido al confirmar.
        """
        invoice = get_for_update(self.db, PurchaseInvoice, invoice_id, tenant_id, "Comprobante")
        result = apply_transition(
            self.db, PURCHASE_INVOICE_MACHINE, invoice, INV.CANCELLED,
            effect=self._revert_confirmation, user_id=user_id
        )
        return result

    def _revert_confirmation(self, invoice: PurchaseInvoice, user_id: UUID):
        was_confirmed = invoice.status == INV.CONFIRMED
        invoice.cancelled_at = utcnow()
        if not was_confirmed:
            return []
        if invoice.is_credit_note:
            return self._restore_returned_stock(invoice, user_id)
        self._track_invoiced_qty(invoice, sign=-1)
        return []

    # ===== EFECTOS =====

    def _track_invoiced_qty(self, invoice: PurchaseInvoice, sign: int) -> None:
        for line in invoice.lines:
            if not line.purchase_order_line_id:
                continue
            po_line = self.db.query(PurchaseOrderLine).filter(
                PurchaseOrderLine.id == line.purchase_order_line_id
            ).with_for_update().first()
            if po_line:
                po_line.invoiced_qty = max(Decimal("0"), Decimal(po_line.invoiced_qty) + sign * Decimal(line.quantity))

    def _stock_lines(self, invoice: PurchaseInvoice):
        return [line for line in invoice.lines if line.product_id and line.product and line.product.track_stock]

    def _return_stock(self, invoice: PurchaseInvoice, user_id: UUID):
        lines = self._stock_lines(invoice)
        if not lines:
            return []
        warehouse = self.ledger.get_main_warehouse(invoice.tenant_id)
        return [
            self.ledger.apply_movement(
                tenant_id=invoice.tenant_id,
                warehouse_id=warehouse.id,
                product_id=line.product_id,
                quantity=-Decimal(line.quantity),
                movement_type=StockMovementType.RETURN,
                user_id=user_id,
                reference_type=StockReferenceType.PURCHASE_CREDIT_NOTE,
                reference_id=invoice.id,
                notes=f"Nota de crédito {invoice.number}"
            )
            for line in lines
        ]

    def _restore_returned_stock(self, invoice: PurchaseInvoice, user_id: UUID):
        """Reingresa exactamente lo egresado al confirmar la nota de crédito"""
        movements = self.db.query(StockMovement).filter(
            StockMovement.tenant_id == invoice.tenant_id,
            StockMovement.reference_type == StockReferenceType.PURCHASE_CREDIT_NOTE.value,
            StockMovement.reference_id == invoice.id
        ).all()
        return [
            self.ledger.apply_movement(
                tenant_id=invoice.tenant_id,
                warehouse_id=movement.warehouse_id,
                product_id=movement.product_id,
                quantity=-Decimal(movement.quantity),
                movement_type=StockMovementType.ADJUSTMENT,
                user_id=user_id,
                reference_type=StockReferenceType.PURCHASE_CREDIT_NOTE_CANCELLATION,
                reference_id=invoice.id,
                notes=f"Anulación nota de crédito {invoice.number}"
            )
            for movement in movements
        ]
