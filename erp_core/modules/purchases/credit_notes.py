"""
Imputación de notas de crédito de proveedor.

Toda imputación queda registrada como CreditNoteApplication, que es la
fuente autoritativa para la conciliación.
"""
from decimal import Decimal
from typing import List
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from erp_core.core.config import settings
from erp_core.common.exceptions import BusinessRuleViolation, InvalidStateTransition
from erp_core.common.state_machine import get_for_update
from erp_core.database.database import atomic
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.payables.service import AccountsPayableService
from erp_core.modules.purchases.models import CreditNoteApplication, PurchaseInvoice, PurchaseInvoiceStatus

logger = logging.getLogger(__name__)

APPLICABLE_STATUSES = (PurchaseInvoiceStatus.CONFIRMED, PurchaseInvoiceStatus.PARTIAL_PAID)


class CreditNoteService:
    def __init__(self, db: Session):
        self.db = db
        self.payables = AccountsPayableService(db)

    def list_applications(self, credit_note_id: UUID, tenant_id: UUID) -> List[CreditNoteApplication]:
        return self.db.query(CreditNoteApplication).filter(
            CreditNoteApplication.tenant_id == tenant_id,
            CreditNoteApplication.credit_note_id == credit_note_id
        ).order_by(CreditNoteApplication.created_at).all()

    def auto_apply(self, credit_note: PurchaseInvoice, user_id: UUID) -> List[CreditNoteApplication]:
        """
        Imputa una nota recién confirmada contra los comprobantes pendientes del proveedor.

        Primero el comprobante que la nota corrige, luego el resto por fecha
        de emisión. No confirma la transacción.
        """
        self.db.flush()
        # La propia nota queda fuera para que no se descuente como vínculo inferido
        invoices, result = self.payables.reconcile(
            credit_note.supplier_id, credit_note.tenant_id, exclude_ids=[credit_note.id]
        )

        already_applied = sum(
            (Decimal(a.amount) for a in self.list_applications(credit_note.id, credit_note.tenant_id)),
            Decimal("0")
        )
        remaining = Decimal(credit_note.total) - already_applied

        pending = [
            row for row in result.balances
            if not row.is_credit_note
            and invoices[row.invoice_id].status in APPLICABLE_STATUSES
            and row.pending > settings.MONEY_TOLERANCE
        ]
        pending.sort(key=lambda row: row.invoice_id != credit_note.original_invoice_id)

        applications = []
        for row in pending:
            if remaining <= settings.MONEY_TOLERANCE:
                break
            amount = money(min(remaining, row.pending))
            if amount <= 0:
                continue
            application = CreditNoteApplication(
                tenant_id=credit_note.tenant_id,
                credit_note_id=credit_note.id,
                invoice_id=row.invoice_id,
                amount=amount,
                created_by=user_id
            )
            self.db.add(application)
            applications.append(application)
            remaining -= amount

        if applications:
            # La imputación explícita anula el crédito inferido en el comprobante original
            self.payables.sync_payment_statuses(credit_note.supplier_id, credit_note.tenant_id)
            logger.info(
                f"Nota de crédito {credit_note.id} imputada en {len(applications)} comprobantes, "
                f"remanente {money(remaining)}"
            )
        return applications

    def apply(self, credit_note_id: UUID, invoice_id: UUID, amount: Decimal,
              tenant_id: UUID, user_id: UUID) -> CreditNoteApplication:
        """Imputación manual de una nota de crédito a un comprobante"""
        amount = money(amount)
        with atomic(self.db, "al imputar la nota de crédito"):
            credit_note = get_for_update(self.db, PurchaseInvoice, credit_note_id, tenant_id, "Nota de crédito")
            invoice = get_for_update(self.db, PurchaseInvoice, invoice_id, tenant_id, "Comprobante")

            if not credit_note.is_credit_note:
                raise BusinessRuleViolation("El documento indicado no es una nota de crédito")
            if invoice.is_credit_note:
                raise BusinessRuleViolation("No se puede imputar una nota de crédito a otra nota de crédito")
            if invoice.supplier_id != credit_note.supplier_id:
                raise BusinessRuleViolation("La nota de crédito y el comprobante pertenecen a distintos proveedores")
            if credit_note.status not in APPLICABLE_STATUSES:
                raise InvalidStateTransition(
                    f"No se puede imputar una nota de crédito en estado '{credit_note.status.value}'"
                )
            if invoice.status not in APPLICABLE_STATUSES:
                raise InvalidStateTransition(
                    f"No se puede imputar a un comprobante en estado '{invoice.status.value}'"
                )

            _, result = self.payables.reconcile(credit_note.supplier_id, tenant_id)
            credit_row = result.for_invoice(credit_note.id)
            invoice_row = result.for_invoice(invoice.id)
            unapplied = -credit_row.balance
            if amount > unapplied + settings.MONEY_TOLERANCE:
                raise BusinessRuleViolation(
                    f"El monto ({amount}) excede el remanente de la nota de crédito ({unapplied})"
                )
            if amount > invoice_row.pending + settings.MONEY_TOLERANCE:
                raise BusinessRuleViolation(
                    f"El monto ({amount}) excede el saldo pendiente del comprobante ({invoice_row.pending})"
                )

            application = CreditNoteApplication(
                tenant_id=tenant_id,
                credit_note_id=credit_note.id,
                invoice_id=invoice.id,
                amount=amount,
                created_by=user_id
            )
            self.db.add(application)
            self.payables.sync_payment_statuses(credit_note.supplier_id, tenant_id)
        self.db.refresh(application)
        logger.info(f"Nota de crédito {credit_note_id} imputada a {invoice_id} por {amount}")
        return application
