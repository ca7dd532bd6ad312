from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from erp_core.core.config import settings
from erp_core.common.exceptions import NotFoundError
from erp_core.common.state_machine import TransitionResult
from erp_core.modules.purchases.models import (
    Supplier, PurchaseInvoice, PurchaseInvoiceStatus, CreditNoteApplication
)
from erp_core.modules.purchases.states import PURCHASE_INVOICE_MACHINE
from erp_core.modules.treasury.models import PaymentOrder, PaymentOrderItem
from erp_core.modules.payables.reconciliation import (
    InvoiceFact, PaymentFact, ApplicationFact, SupplierReconciliation,
    reconcile_supplier, settlement_status
)
from erp_core.modules.payables.schemas import (
    InvoiceBalanceOut, SupplierSummaryOut, SupplierAccountStatement, PendingInvoiceOut, SupplierBalanceRow
)

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = (
    PurchaseInvoiceStatus.CONFIRMED,
    PurchaseInvoiceStatus.PARTIAL_PAID,
    PurchaseInvoiceStatus.PAID,
)


def invoice_fact(invoice: PurchaseInvoice) -> InvoiceFact:
    return InvoiceFact(
        id=invoice.id,
        total=Decimal(invoice.total),
        status=invoice.status,
        is_credit_note=invoice.is_credit_note,
        original_invoice_id=invoice.original_invoice_id,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        number=invoice.number,
    )


class AccountsPayableService:
    """
    Cuenta corriente de proveedores.

    Separa la lectura de hechos (este servicio) del cálculo, que vive en
    `reconciliation` como funciones puras. Nada de lo que se calcula aquí
    se persiste como saldo autoritativo; sólo el estado de pago de cada
    comprobante se sincroniza con el resultado.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_supplier(self, supplier_id: UUID, tenant_id: UUID) -> Supplier:
        supplier = self.db.query(Supplier).filter(
            Supplier.id == supplier_id,
            Supplier.tenant_id == tenant_id
        ).first()
        if not supplier:
            raise NotFoundError("Proveedor no encontrado")
        return supplier

    def load_facts(self, supplier_id: UUID, tenant_id: UUID) -> Tuple[List[PurchaseInvoice], List[PaymentFact], List[ApplicationFact]]:
        invoices = self.db.query(PurchaseInvoice).filter(
            PurchaseInvoice.tenant_id == tenant_id,
            PurchaseInvoice.supplier_id == supplier_id
        ).all()

        payment_rows = self.db.query(PaymentOrderItem.invoice_id, PaymentOrderItem.amount, PaymentOrder.status).join(
            PaymentOrder, PaymentOrderItem.payment_order_id == PaymentOrder.id
        ).filter(
            PaymentOrder.tenant_id == tenant_id,
            PaymentOrder.supplier_id == supplier_id
        ).all()
        payments = [PaymentFact(invoice_id=r[0], amount=Decimal(r[1]), order_status=r[2]) for r in payment_rows]

        invoice_ids = [inv.id for inv in invoices]
        applications = []
        if invoice_ids:
            rows = self.db.query(CreditNoteApplication).filter(
                CreditNoteApplication.tenant_id == tenant_id,
                CreditNoteApplication.credit_note_id.in_(invoice_ids)
            ).all()
            applications = [
                ApplicationFact(credit_note_id=a.credit_note_id, invoice_id=a.invoice_id, amount=Decimal(a.amount))
                for a in rows
            ]
        return invoices, payments, applications

    def reconcile(self, supplier_id: UUID, tenant_id: UUID,
                  exclude_ids: Iterable[UUID] = ()) -> Tuple[Dict[UUID, PurchaseInvoice], SupplierReconciliation]:
        invoices, payments, applications = self.load_facts(supplier_id, tenant_id)
        excluded = set(exclude_ids)
        invoices = [inv for inv in invoices if inv.id not in excluded]
        applications = [a for a in applications if a.credit_note_id not in excluded]
        result = reconcile_supplier([invoice_fact(inv) for inv in invoices], payments, applications)
        return {inv.id: inv for inv in invoices}, result

    def get_account_statement(self, supplier_id: UUID, tenant_id: UUID) -> SupplierAccountStatement:
        supplier = self._get_supplier(supplier_id, tenant_id)
        invoices, result = self.reconcile(supplier_id, tenant_id)

        documents = []
        for row in result.balances:
            invoice = invoices[row.invoice_id]
            documents.append(InvoiceBalanceOut(
                invoice_id=invoice.id,
                number=invoice.number,
                voucher_type=invoice.voucher_type,
                issue_date=invoice.issue_date,
                due_date=invoice.due_date,
                status=invoice.status,
                total=row.total,
                total_payments=row.total_payments,
                explicit_credit=row.explicit_credit,
                fallback_credit=row.fallback_credit,
                paid=row.paid,
                balance=row.balance,
            ))

        return SupplierAccountStatement(
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            documents=documents,
            summary=SupplierSummaryOut(
                total_invoiced=result.summary.total_invoiced,
                total_paid=result.summary.total_paid,
                total_balance=result.summary.total_balance,
            ),
        )

    def get_pending_invoices(self, supplier_id: UUID, tenant_id: UUID) -> List[PendingInvoiceOut]:
        """Comprobantes con saldo pendiente, para armar órdenes de pago"""
        self._get_supplier(supplier_id, tenant_id)
        invoices, result = self.reconcile(supplier_id, tenant_id)

        pending = []
        for row in result.balances:
            if row.is_credit_note or row.pending <= settings.MONEY_TOLERANCE:
                continue
            invoice = invoices[row.invoice_id]
            pending.append(PendingInvoiceOut(
                invoice_id=invoice.id,
                number=invoice.number,
                voucher_type=invoice.voucher_type,
                issue_date=invoice.issue_date,
                due_date=invoice.due_date,
                total=row.total,
                paid=row.paid,
                pending=row.pending,
            ))
        return pending

    def get_supplier_balances(self, tenant_id: UUID, only_with_balance: bool = False) -> List[SupplierBalanceRow]:
        suppliers = self.db.query(Supplier).filter(
            Supplier.tenant_id == tenant_id
        ).order_by(Supplier.name).all()

        rows = []
        for supplier in suppliers:
            _, result = self.reconcile(supplier.id, tenant_id)
            if only_with_balance and abs(result.summary.total_balance) <= settings.MONEY_TOLERANCE:
                continue
            rows.append(SupplierBalanceRow(
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                total_invoiced=result.summary.total_invoiced,
                total_paid=result.summary.total_paid,
                total_balance=result.summary.total_balance,
            ))
        return rows

    def sync_payment_statuses(self, supplier_id: UUID, tenant_id: UUID,
                              invoice_ids: Optional[Iterable[UUID]] = None) -> List[TransitionResult]:
        """
        Lleva el estado de pago de cada comprobante al que surge de la conciliación.

        No confirma la transacción: se invoca dentro de la operación que
        registró el pago o la aplicación.
        """
        self.db.flush()
        invoices, result = self.reconcile(supplier_id, tenant_id)
        wanted = set(invoice_ids) if invoice_ids is not None else None

        transitions = []
        for row in result.balances:
            if wanted is not None and row.invoice_id not in wanted:
                continue
            invoice = invoices[row.invoice_id]
            if invoice.status not in SETTLEABLE_STATUSES:
                continue
            target = settlement_status(row, settings.MONEY_TOLERANCE)
            if target != invoice.status:
                transitions.append(PURCHASE_INVOICE_MACHINE.transition(invoice, target))
                logger.debug(f"Comprobante {invoice.id}: estado de pago {target.value}")
        return transitions
