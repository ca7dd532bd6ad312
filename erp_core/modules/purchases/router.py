"""
Routers FastAPI para el módulo de Compras

- Proveedores: alta, modificación y baja con guardas
- Órdenes de compra: alta, aprobación y anulación
- Comprobantes: borrador, confirmación (con efectos de stock e imputación) y anulación
- Notas de crédito: imputación manual
- Remitos: borrador, confirmación y anulación con movimientos de stock
"""

from fastapi import APIRouter, Query, status
from typing import List, Optional
from uuid import UUID

from erp_core.dependencies.dbDependencies import db_dependency
from erp_core.dependencies.companyDependencies import TenantContext
from erp_core.modules.purchases.models import PurchaseInvoiceStatus, ReceivingNoteStatus
from erp_core.modules.purchases.service import SupplierService, PurchaseOrderService, PurchaseInvoiceService
from erp_core.modules.purchases.credit_notes import CreditNoteService
from erp_core.modules.purchases.receiving_notes import ReceivingNoteService
from erp_core.modules.purchases.schemas import (
    SupplierCreate, SupplierUpdate, SupplierOut,
    PurchaseOrderCreate, PurchaseOrderOut,
    PurchaseInvoiceCreate, PurchaseInvoiceUpdate, PurchaseInvoiceOut, PurchaseInvoiceList,
    CreditNoteApplicationCreate, CreditNoteApplicationOut,
    ReceivingNoteCreate, ReceivingNoteUpdate, ReceivingNoteOut
)

suppliers_router = APIRouter(prefix="/suppliers", tags=["Suppliers"])
purchase_orders_router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])
purchase_invoices_router = APIRouter(prefix="/purchase-invoices", tags=["Purchase Invoices"])
receiving_notes_router = APIRouter(prefix="/receiving-notes", tags=["Receiving Notes"])


# ===== SUPPLIERS ENDPOINTS =====

@suppliers_router.post("/", response_model=SupplierOut, status_code=status.HTTP_201_CREATED)
def create_supplier(data: SupplierCreate, db: db_dependency, context: TenantContext):
    return SupplierService(db).create_supplier(data, context.tenant_id)


@suppliers_router.get("/", response_model=List[SupplierOut])
def list_suppliers(db: db_dependency, context: TenantContext, search: Optional[str] = Query(None)):
    return SupplierService(db).list_suppliers(context.tenant_id, search)


@suppliers_router.patch("/{supplier_id}", response_model=SupplierOut)
def update_supplier(supplier_id: UUID, data: SupplierUpdate, db: db_dependency, context: TenantContext):
    """
    Actualizar proveedor

    El CUIT/NIT no puede cambiarse si el proveedor tiene comprobantes confirmados.
    """
    return SupplierService(db).update_supplier(supplier_id, data, context.tenant_id)


@suppliers_router.delete("/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_supplier(supplier_id: UUID, db: db_dependency, context: TenantContext):
    SupplierService(db).delete_supplier(supplier_id, context.tenant_id)


# ===== PURCHASE ORDERS ENDPOINTS =====

@purchase_orders_router.post("/", response_model=PurchaseOrderOut, status_code=status.HTTP_201_CREATED)
def create_purchase_order(data: PurchaseOrderCreate, db: db_dependency, context: TenantContext):
    return PurchaseOrderService(db).create_purchase_order(data, context.tenant_id, context.user_id)


@purchase_orders_router.get("/{order_id}", response_model=PurchaseOrderOut)
def get_purchase_order(order_id: UUID, db: db_dependency, context: TenantContext):
    return PurchaseOrderService(db).get_purchase_order(order_id, context.tenant_id)


@purchase_orders_router.post("/{order_id}/approve", response_model=PurchaseOrderOut)
def approve_purchase_order(order_id: UUID, db: db_dependency, context: TenantContext):
    return PurchaseOrderService(db).approve_purchase_order(order_id, context.tenant_id).document


@purchase_orders_router.post("/{order_id}/cancel", response_model=PurchaseOrderOut)
def cancel_purchase_order(order_id: UUID, db: db_dependency, context: TenantContext):
    return PurchaseOrderService(db).cancel_purchase_order(order_id, context.tenant_id).document


@purchase_orders_router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_purchase_order(order_id: UUID, db: db_dependency, context: TenantContext):
    PurchaseOrderService(db).delete_purchase_order(order_id, context.tenant_id)


# ===== PURCHASE INVOICES ENDPOINTS =====

@purchase_invoices_router.post("/", response_model=PurchaseInvoiceOut, status_code=status.HTTP_201_CREATED)
def create_purchase_invoice(data: PurchaseInvoiceCreate, db: db_dependency, context: TenantContext):
    """
    Crear comprobante en borrador

    Los borradores no afectan stock ni la cuenta corriente del proveedor.
    """
    return PurchaseInvoiceService(db).create_invoice(data, context.tenant_id, context.user_id)


@purchase_invoices_router.get("/", response_model=PurchaseInvoiceList)
def list_purchase_invoices(
    db: db_dependency,
    context: TenantContext,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    status: Optional[PurchaseInvoiceStatus] = Query(None, description="Filtrar por estado"),
    supplier_id: Optional[UUID] = Query(None, description="Filtrar por proveedor"),
):
    return PurchaseInvoiceService(db).list_invoices(context.tenant_id, limit, offset, status, supplier_id)


@purchase_invoices_router.get("/{invoice_id}", response_model=PurchaseInvoiceOut)
def get_purchase_invoice(invoice_id: UUID, db: db_dependency, context: TenantContext):
    return PurchaseInvoiceService(db).get_invoice(invoice_id, context.tenant_id)


@purchase_invoices_router.patch("/{invoice_id}", response_model=PurchaseInvoiceOut)
def update_purchase_invoice(invoice_id: UUID, data: PurchaseInvoiceUpdate, db: db_dependency, context: TenantContext):
    return PurchaseInvoiceService(db).update_invoice(invoice_id, data, context.tenant_id)


@purchase_invoices_router.delete("/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_purchase_invoice(invoice_id: UUID, db: db_dependency, context: TenantContext):
    PurchaseInvoiceService(db).delete_invoice(invoice_id, context.tenant_id)


@purchase_invoices_router.post("/{invoice_id}/confirm", response_model=PurchaseInvoiceOut)
def confirm_purchase_invoice(invoice_id: UUID, db: db_dependency, context: TenantContext):
    """
    Confirmar comprobante

    Las notas de crédito egresan stock del depósito principal y se imputan
    contra los comprobantes pendientes del proveedor.
    """
    return PurchaseInvoiceService(db).confirm_invoice(invoice_id, context.tenant_id, context.user_id).document


@purchase_invoices_router.post("/{invoice_id}/cancel", response_model=PurchaseInvoiceOut)
def cancel_purchase_invoice(invoice_id: UUID, db: db_dependency, context: TenantContext):
    return PurchaseInvoiceService(db).cancel_invoice(invoice_id, context.tenant_id, context.user_id).document


@purchase_invoices_router.get("/{credit_note_id}/applications", response_model=List[CreditNoteApplicationOut])
def list_credit_note_applications(credit_note_id: UUID, db: db_dependency, context: TenantContext):
    return CreditNoteService(db).list_applications(credit_note_id, context.tenant_id)


@purchase_invoices_router.post("/{credit_note_id}/applications", response_model=CreditNoteApplicationOut,
                               status_code=status.HTTP_201_CREATED)
def apply_credit_note(credit_note_id: UUID, data: CreditNoteApplicationCreate,
                      db: db_dependency, context: TenantContext):
    """Imputar manualmente una nota de crédito a un comprobante del mismo proveedor."""
    return CreditNoteService(db).apply(
        credit_note_id, data.invoice_id, data.amount, context.tenant_id, context.user_id
    )


# ===== RECEIVING NOTES ENDPOINTS =====

@receiving_notes_router.post("/", response_model=ReceivingNoteOut, status_code=status.HTTP_201_CREATED)
def create_receiving_note(data: ReceivingNoteCreate, db: db_dependency, context: TenantContext):
    return ReceivingNoteService(db).create_receiving_note(data, context.tenant_id, context.user_id)


@receiving_notes_router.get("/", response_model=List[ReceivingNoteOut])
def list_receiving_notes(
    db: db_dependency,
    context: TenantContext,
    status: Optional[ReceivingNoteStatus] = Query(None),
    supplier_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    return ReceivingNoteService(db).list_receiving_notes(context.tenant_id, status, supplier_id, limit, offset)


@receiving_notes_router.get("/{note_id}", response_model=ReceivingNoteOut)
def get_receiving_note(note_id: UUID, db: db_dependency, context: TenantContext):
    return ReceivingNoteService(db).get_receiving_note(note_id, context.tenant_id)


@receiving_notes_router.patch("/{note_id}", response_model=ReceivingNoteOut)
def update_receiving_note(note_id: UUID, data: ReceivingNoteUpdate, db: db_dependency, context: TenantContext):
    return ReceivingNoteService(db).update_receiving_note(note_id, data, context.tenant_id)


@receiving_notes_router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_receiving_note(note_id: UUID, db: db_dependency, context: TenantContext):
    """Eliminar un remito en borrador. No tiene efecto sobre el stock."""
    ReceivingNoteService(db).delete_receiving_note(note_id, context.tenant_id)


@receiving_notes_router.post("/{note_id}/confirm", response_model=ReceivingNoteOut)
def confirm_receiving_note(note_id: UUID, db: db_dependency, context: TenantContext):
    """
    Confirmar remito

    Ingresa cada línea al stock del depósito y actualiza lo recibido en la
    orden de compra. Confirmar dos veces falla con 409.
    """
    return ReceivingNoteService(db).confirm_receiving_note(note_id, context.tenant_id, context.user_id).document


@receiving_notes_router.post("/{note_id}/cancel", response_model=ReceivingNoteOut)
def cancel_receiving_note(note_id: UUID, db: db_dependency, context: TenantContext):
    """Anular remito confirmado, revirtiendo exactamente el ingreso de stock."""
    return ReceivingNoteService(db).cancel_receiving_note(note_id, context.tenant_id, context.user_id).document
