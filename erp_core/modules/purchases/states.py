"""Tablas de transición de los documentos de compra"""
from erp_core.common.state_machine import StateMachine
from erp_core.modules.purchases.models import (
    PurchaseOrderStatus, PurchaseInvoiceStatus, ReceivingNoteStatus
)

PO = PurchaseOrderStatus
INV = PurchaseInvoiceStatus
RN = ReceivingNoteStatus

PURCHASE_ORDER_MACHINE = StateMachine(
    "Orden de compra",
    {
        PO.DRAFT: {PO.APPROVED, PO.CANCELLED},
        PO.APPROVED: {PO.PARTIALLY_RECEIVED, PO.COMPLETED, PO.CANCELLED},
        # Las recepciones anuladas pueden devolver la orden a un estado anterior
        PO.PARTIALLY_RECEIVED: {PO.APPROVED, PO.COMPLETED},
        PO.COMPLETED: {PO.APPROVED, PO.PARTIALLY_RECEIVED},
    },
    deletable_from={PO.DRAFT},
)

PURCHASE_INVOICE_MACHINE = StateMachine(
    "Comprobante de compra",
    {
        INV.DRAFT: {INV.CONFIRMED, INV.CANCELLED},
        INV.CONFIRMED: {INV.PARTIAL_PAID, INV.PAID, INV.CANCELLED},
        # Sólo las toma la sincronización de pagos
        INV.PARTIAL_PAID: {INV.PAID, INV.CONFIRMED},
        INV.PAID: {INV.PARTIAL_PAID, INV.CONFIRMED},
    },
    deletable_from={INV.DRAFT},
)

RECEIVING_NOTE_MACHINE = StateMachine(
    "Remito",
    {
        RN.DRAFT: {RN.CONFIRMED},
        RN.CONFIRMED: {RN.CANCELLED},
    },
    deletable_from={RN.DRAFT},
)
