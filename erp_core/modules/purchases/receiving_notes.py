"""
Remitos de recepción de mercadería

DRAFT -> CONFIRMED -> CANCELLED. Confirmar ingresa cada línea al stock del
depósito y suma lo recibido en la orden de compra; anular registra el
contramovimiento exacto y descuenta lo recibido. Un borrador puede
eliminarse sin efectos.
"""
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session, selectinload

from erp_core.common.exceptions import BusinessRuleViolation, NotFoundError
from erp_core.common.numbering import next_document_number
from erp_core.common.state_machine import TransitionResult, apply_transition, get_for_update, get_or_404
from erp_core.database.database import atomic
from erp_core.modules.inventory.models import Product, Warehouse, StockMovementType, StockReferenceType
from erp_core.modules.inventory.service import StockLedger
from erp_core.modules.purchases.models import (
    Supplier, PurchaseOrder, PurchaseOrderLine, PurchaseOrderStatus, PurchaseInvoice,
    ReceivingNote, ReceivingNoteLine, ReceivingNoteStatus
)
from erp_core.modules.purchases.schemas import ReceivingNoteCreate, ReceivingNoteUpdate, ReceivingNoteLineCreate
from erp_core.modules.purchases.service import PurchaseOrderService
from erp_core.modules.purchases.states import RECEIVING_NOTE_MACHINE

logger = logging.getLogger(__name__)

RN = ReceivingNoteStatus


class ReceivingNoteService:
    """Servicio para remitos de recepción"""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)
        self.purchase_orders = PurchaseOrderService(db)

    # ===== CONSULTAS =====

    def get_receiving_note(self, note_id: UUID, tenant_id: UUID) -> ReceivingNote:
        note = self.db.query(ReceivingNote).options(
            selectinload(ReceivingNote.lines)
        ).filter(
            ReceivingNote.id == note_id,
            ReceivingNote.tenant_id == tenant_id
        ).first()
        if not note:
            raise NotFoundError("Remito no encontrado")
        return note

    def list_receiving_notes(self, tenant_id: UUID, status: Optional[ReceivingNoteStatus] = None,
                             supplier_id: Optional[UUID] = None, limit: int = 100, offset: int = 0) -> List[ReceivingNote]:
        query = self.db.query(ReceivingNote).options(
            selectinload(ReceivingNote.lines)
        ).filter(ReceivingNote.tenant_id == tenant_id)
        if status:
            query = query.filter(ReceivingNote.status == status)
        if supplier_id:
            query = query.filter(ReceivingNote.supplier_id == supplier_id)
        return query.order_by(ReceivingNote.number.desc()).offset(offset).limit(limit).all()

    # ===== BORRADOR =====

    def _validate_header(self, tenant_id: UUID, supplier_id: UUID, warehouse_id: UUID,
                         purchase_order_id: Optional[UUID], purchase_invoice_id: Optional[UUID]) -> None:
        get_or_404(self.db, Supplier, supplier_id, tenant_id, "Proveedor")
        warehouse = get_or_404(self.db, Warehouse, warehouse_id, tenant_id, "Depósito")
        if not warehouse.is_active:
            raise BusinessRuleViolation(f"El depósito '{warehouse.name}' está inactivo")

        if purchase_order_id:
            order = get_or_404(self.db, PurchaseOrder, purchase_order_id, tenant_id, "Orden de compra")
            if order.supplier_id != supplier_id:
                raise BusinessRuleViolation("La orden de compra pertenece a otro proveedor")
            if order.status in (PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.CANCELLED):
                raise BusinessRuleViolation(
                    f"No se puede recibir contra una orden en estado '{order.status.value}'"
                )

        if purchase_invoice_id:
            invoice = get_or_404(self.db, PurchaseInvoice, purchase_invoice_id, tenant_id, "Comprobante")
            if invoice.supplier_id != supplier_id:
                raise BusinessRuleViolation("El comprobante pertenece a otro proveedor")

    def _build_lines(self, lines: List[ReceivingNoteLineCreate], tenant_id: UUID,
                     purchase_order_id: Optional[UUID]) -> List[ReceivingNoteLine]:
        built = []
        for line in lines:
            get_or_404(self.db, Product, line.product_id, tenant_id, "Producto")
            if line.purchase_order_line_id:
                po_line = self.db.query(PurchaseOrderLine).filter(
                    PurchaseOrderLine.id == line.purchase_order_line_id
                ).first()
                if not po_line or po_line.purchase_order_id != purchase_order_id:
                    raise BusinessRuleViolation("La línea de orden de compra no pertenece a la orden del remito")
                if po_line.product_id != line.product_id:
                    raise BusinessRuleViolation("El producto no coincide con la línea de la orden de compra")
            built.append(ReceivingNoteLine(
                product_id=line.product_id,
                purchase_order_line_id=line.purchase_order_line_id,
                quantity=line.quantity,
                notes=line.notes
            ))
        return built

    def create_receiving_note(self, data: ReceivingNoteCreate, tenant_id: UUID, user_id: UUID) -> ReceivingNote:
        with atomic(self.db, "al crear el remito"):
            self._validate_header(tenant_id, data.supplier_id, data.warehouse_id,
                                  data.purchase_order_id, data.purchase_invoice_id)
            note = ReceivingNote(
                tenant_id=tenant_id,
                number=next_document_number(self.db, ReceivingNote.number, tenant_id, "RR"),
                supplier_id=data.supplier_id,
                warehouse_id=data.warehouse_id,
                purchase_order_id=data.purchase_order_id,
                purchase_invoice_id=data.purchase_invoice_id,
                receipt_date=data.receipt_date or date.today(),
                status=RN.DRAFT,
                notes=data.notes,
                created_by=user_id,
                lines=self._build_lines(data.lines, tenant_id, data.purchase_order_id)
            )
            self.db.add(note)
        self.db.refresh(note)
        logger.info(f"Remito {note.number} creado en borrador")
        return note

    def update_receiving_note(self, note_id: UUID, data: ReceivingNoteUpdate, tenant_id: UUID) -> ReceivingNote:
        with atomic(self.db, "al actualizar el remito"):
            note = get_for_update(self.db, ReceivingNote, note_id, tenant_id, "Remito")
            if note.status != RN.DRAFT:
                raise BusinessRuleViolation("Sólo se pueden modificar remitos en borrador")

            if data.warehouse_id and data.warehouse_id != note.warehouse_id:
                self._validate_header(tenant_id, note.supplier_id, data.warehouse_id, None, None)
                note.warehouse_id = data.warehouse_id
            if data.receipt_date:
                note.receipt_date = data.receipt_date
            if data.notes is not None:
                note.notes = data.notes
            if data.lines is not None:
                note.lines = self._build_lines(data.lines, tenant_id, note.purchase_order_id)
        self.db.refresh(note)
        return note

    def delete_receiving_note(self, note_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar el remito"):
            note = get_for_update(self.db, ReceivingNote, note_id, tenant_id, "Remito")
            RECEIVING_NOTE_MACHINE.ensure_deletable(note.status)
            self.db.delete(note)
        logger.info(f"Remito {note_id} eliminado")

    # ===== TRANSICIONES =====

    def confirm_receiving_note(self, note_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        note = get_for_update(self.db, ReceivingNote, note_id, tenant_id, "Remito")
        return apply_transition(
            self.db, RECEIVING_NOTE_MACHINE, note, RN.CONFIRMED,
            effect=self._receive_stock, user_id=user_id
        )

    def cancel_receiving_note(self, note_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        note = get_for_update(self.db, ReceivingNote, note_id, tenant_id, "Remito")
        return apply_transition(
            self.db, RECEIVING_NOTE_MACHINE, note, RN.CANCELLED,
            effect=self._revert_stock, user_id=user_id
        )

    # ===== EFECTOS =====

    def _receive_stock(self, note: ReceivingNote, user_id: UUID):
        if not note.lines:
            raise BusinessRuleViolation("El remito debe tener al menos una línea")

        movements = []
        for line in note.lines:
            if line.product.track_stock:
                movements.append(self.ledger.apply_movement(
                    tenant_id=note.tenant_id,
                    warehouse_id=note.warehouse_id,
                    product_id=line.product_id,
                    quantity=Decimal(line.quantity),
                    movement_type=StockMovementType.PURCHASE,
                    user_id=user_id,
                    reference_type=StockReferenceType.RECEIVING_NOTE,
                    reference_id=note.id,
                    notes=f"Remito {note.number}"
                ))
            if line.purchase_order_line:
                line.purchase_order_line.received_qty = Decimal(line.purchase_order_line.received_qty) + Decimal(line.quantity)

        note.confirmed_at = datetime.now(timezone.utc)
        self.db.flush()
        self.purchase_orders.sync_receiving_status(note.purchase_order_id, note.tenant_id)
        return movements

    def _revert_stock(self, note: ReceivingNote, user_id: UUID):
        stock_lines = [line for line in note.lines if line.product.track_stock]

        # Se valida todo antes de escribir el primer contramovimiento
        required = defaultdict(Decimal)
        names = {}
        for line in stock_lines:
            required[line.product_id] += Decimal(line.quantity)
            names[line.product_id] = line.product.name
        for product_id, quantity in required.items():
            self.ledger.ensure_available(note.tenant_id, note.warehouse_id, product_id, quantity, names[product_id])

        movements = [
            self.ledger.apply_movement(
                tenant_id=note.tenant_id,
                warehouse_id=note.warehouse_id,
                product_id=line.product_id,
                quantity=-Decimal(line.quantity),
                movement_type=StockMovementType.ADJUSTMENT,
                user_id=user_id,
                reference_type=StockReferenceType.RECEIVING_NOTE_CANCELLATION,
                reference_id=note.id,
                notes=f"Anulación remito {note.number}"
            )
            for line in stock_lines
        ]

        for line in note.lines:
            if line.purchase_order_line:
                po_line = line.purchase_order_line
                po_line.received_qty = max(Decimal("0"), Decimal(po_line.received_qty) - Decimal(line.quantity))

        note.cancelled_at = datetime.now(timezone.utc)
        self.db.flush()
        self.purchase_orders.sync_receiving_status(note.purchase_order_id, note.tenant_id)
        return movements
