"""
Órdenes de pago a proveedores

Una orden imputa montos a comprobantes del proveedor (items) y declara los
medios con que se paga (payments). Al confirmar se registran los egresos
de caja, las transferencias y los cheques propios, y se sincroniza el
estado de pago de los comprobantes. Anular revierte todo lo anterior.
"""
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session, selectinload

from erp_core.core.config import settings
from erp_core.common.exceptions import BusinessRuleViolation, InvalidInputError, InvalidStateTransition, NotFoundError
from erp_core.common.numbering import next_document_number
from erp_core.common.state_machine import TransitionResult, get_for_update, get_or_404
from erp_core.database.database import atomic
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.payables.service import AccountsPayableService
from erp_core.modules.purchases.models import Supplier, PurchaseInvoice, PurchaseInvoiceStatus
from erp_core.modules.treasury.banking import BankLedger
from erp_core.modules.treasury.cash_sessions import CashSessionService
from erp_core.modules.treasury.checks import CheckService
from erp_core.modules.treasury.models import (
    BankAccount, BankMovement, BankMovementType, CashMovement, CashMovementType, CashRegister,
    CashRegisterSession, Check, CheckStatus, CheckType, PaymentMethod, PaymentOrder, PaymentOrderItem,
    PaymentOrderPayment, PaymentOrderStatus
)
from erp_core.modules.treasury.schemas import CheckCreate, PaymentOrderCreate
from erp_core.modules.treasury.states import CHECK_MACHINE, PAYMENT_ORDER_MACHINE

logger = logging.getLogger(__name__)

PAYABLE_STATUSES = (PurchaseInvoiceStatus.CONFIRMED, PurchaseInvoiceStatus.PARTIAL_PAID)


class PaymentOrderService:
    def __init__(self, db: Session):
        self.db = db
        self.payables = AccountsPayableService(db)
        self.bank = BankLedger(db)
        self.cash = CashSessionService(db)
        self.checks = CheckService(db)

    def get_payment_order(self, order_id: UUID, tenant_id: UUID) -> PaymentOrder:
        order = self.db.query(PaymentOrder).options(
            selectinload(PaymentOrder.items),
            selectinload(PaymentOrder.payments)
        ).filter(
            PaymentOrder.id == order_id,
            PaymentOrder.tenant_id == tenant_id
        ).first()
        if not order:
            raise NotFoundError("Orden de pago no encontrada")
        return order

    def list_payment_orders(self, tenant_id: UUID, supplier_id: Optional[UUID] = None,
                            status: Optional[PaymentOrderStatus] = None,
                            limit: int = 100, offset: int = 0) -> List[PaymentOrder]:
        query = self.db.query(PaymentOrder).options(
            selectinload(PaymentOrder.items),
            selectinload(PaymentOrder.payments)
        ).filter(PaymentOrder.tenant_id == tenant_id)
        if supplier_id:
            query = query.filter(PaymentOrder.supplier_id == supplier_id)
        if status:
            query = query.filter(PaymentOrder.status == status)
        return query.order_by(PaymentOrder.number.desc()).offset(offset).limit(limit).all()

    # ===== BORRADOR =====

    def create_payment_order(self, data: PaymentOrderCreate, tenant_id: UUID, user_id: UUID) -> PaymentOrder:
        with atomic(self.db, "al crear la orden de pago"):
            get_or_404(self.db, Supplier, data.supplier_id, tenant_id, "Proveedor")

            for item in data.items:
                invoice = get_or_404(self.db, PurchaseInvoice, item.invoice_id, tenant_id, "Comprobante")
                if invoice.supplier_id != data.supplier_id:
                    raise BusinessRuleViolation(f"El comprobante {invoice.number} pertenece a otro proveedor")
                if invoice.is_credit_note:
                    raise BusinessRuleViolation("No se puede pagar una nota de crédito")
                if invoice.status not in PAYABLE_STATUSES:
                    raise BusinessRuleViolation(
                        f"El comprobante {invoice.number} está en estado '{invoice.status.value}' y no admite pagos"
                    )

            payment_date = data.payment_date or date.today()
            payments = []
            for payment in data.payments:
                if payment.check_due_date and payment.check_due_date < payment_date:
                    raise InvalidInputError("La fecha de pago del cheque no puede ser anterior a la de la orden")
                check_bank_name = None
                if payment.cash_register_id:
                    get_or_404(self.db, CashRegister, payment.cash_register_id, tenant_id, "Caja")
                if payment.bank_account_id:
                    account = get_or_404(self.db, BankAccount, payment.bank_account_id, tenant_id, "Cuenta bancaria")
                    check_bank_name = account.bank_name
                payments.append(PaymentOrderPayment(
                    method=payment.method,
                    amount=money(payment.amount),
                    bank_account_id=payment.bank_account_id,
                    cash_register_id=payment.cash_register_id,
                    check_number=payment.check_number,
                    check_bank_name=check_bank_name if payment.method == PaymentMethod.CHECK else None,
                    check_due_date=payment.check_due_date
                ))

            items = [PaymentOrderItem(invoice_id=i.invoice_id, amount=money(i.amount)) for i in data.items]
            order = PaymentOrder(
                tenant_id=tenant_id,
                number=next_document_number(self.db, PaymentOrder.number, tenant_id, "OP"),
                supplier_id=data.supplier_id,
                payment_date=payment_date,
                total=sum((i.amount for i in items), Decimal("0")),
                status=PaymentOrderStatus.DRAFT,
                notes=data.notes,
                created_by=user_id,
                items=items,
                payments=payments
            )
            self.db.add(order)
        self.db.refresh(order)
        logger.info(f"Orden de pago {order.number} creada por {order.total}")
        return order

    def delete_payment_order(self, order_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar la orden de pago"):
            order = get_for_update(self.db, PaymentOrder, order_id, tenant_id, "Orden de pago")
            PAYMENT_ORDER_MACHINE.ensure_deletable(order.status)
            self.db.delete(order)
        logger.info(f"Orden de pago {order_id} eliminada")

    # ===== TRANSICIONES =====

    def confirm_payment_order(self, order_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        """
        Confirmar la orden

        Cada item debe caber en el saldo pendiente del comprobante. El
        estado de pago de los comprobantes se sincroniza después de que la
        orden pasa a CONFIRMED, porque sólo entonces cuenta como pago.
        """
        with atomic(self.db, "al confirmar la orden de pago"):
            order = get_for_update(self.db, PaymentOrder, order_id, tenant_id, "Orden de pago")
            result = PAYMENT_ORDER_MACHINE.transition(
                order, PaymentOrderStatus.CONFIRMED, effect=self._execute, user_id=user_id
            )
            order.confirmed_at = datetime.now(timezone.utc)
            self.db.flush()
            result.side_effects.extend(self.payables.sync_payment_statuses(
                order.supplier_id, tenant_id, [item.invoice_id for item in order.items]
            ))
        self.db.refresh(order)
        logger.info(f"Orden de pago {order.number} confirmada, {len(result.side_effects)} efectos")
        return result

    def cancel_payment_order(self, order_id: UUID, tenant_id: UUID, user_id: UUID) -> TransitionResult:
        with atomic(self.db, "al anular la orden de pago"):
            order = get_for_update(self.db, PaymentOrder, order_id, tenant_id, "Orden de pago")
            result = PAYMENT_ORDER_MACHINE.transition(
                order, PaymentOrderStatus.CANCELLED, effect=self._reverse, user_id=user_id
            )
            order.cancelled_at = datetime.now(timezone.utc)
            self.db.flush()
            result.side_effects.extend(self.payables.sync_payment_statuses(
                order.supplier_id, tenant_id, [item.invoice_id for item in order.items]
            ))
        self.db.refresh(order)
        logger.info(f"Orden de pago {order.number} anulada")
        return result

    # ===== EFECTOS =====

    def _ensure_items_fit(self, order: PaymentOrder) -> None:
        invoices, reconciliation = self.payables.reconcile(order.supplier_id, order.tenant_id)

        per_invoice = defaultdict(Decimal)
        for item in order.items:
            per_invoice[item.invoice_id] += Decimal(item.amount)

        for invoice_id, amount in per_invoice.items():
            invoice = invoices.get(invoice_id)
            if invoice is None or invoice.status not in PAYABLE_STATUSES:
                raise BusinessRuleViolation("La orden incluye comprobantes que ya no admiten pagos")
            pending = reconciliation.for_invoice(invoice_id).pending
            if amount > pending + settings.MONEY_TOLERANCE:
                raise BusinessRuleViolation(
                    f"El monto a pagar del comprobante {invoice.number} ({amount}) "
                    f"excede su saldo pendiente ({pending})"
                )

    def _execute(self, order: PaymentOrder, user_id: UUID):
        self._ensure_items_fit(order)

        effects = []
        for payment in order.payments:
            if payment.method == PaymentMethod.CASH:
                session = self.cash.get_open_session(payment.cash_register_id, order.tenant_id, for_update=True)
                if not session:
                    raise BusinessRuleViolation("La caja no tiene una sesión abierta")
                effects.append(self.cash.add_movement(
                    session, CashMovementType.EXPENSE, payment.amount,
                    f"Orden de pago {order.number}", user_id,
                    reference=order.number, payment_order_id=order.id
                ))

            elif payment.method == PaymentMethod.TRANSFER:
                account = self.bank.lock_account(payment.bank_account_id, order.tenant_id)
                effects.append(self.bank.post_movement(
                    account, BankMovementType.TRANSFER_OUT, payment.amount,
                    f"Transferencia orden de pago {order.number}", user_id,
                    movement_date=order.payment_date, reference=order.number,
                    payment_order_id=order.id
                ))

            elif payment.method == PaymentMethod.CHECK:
                effects.append(self.checks.build_check(
                    CheckCreate(
                        type=CheckType.OWN,
                        check_number=payment.check_number,
                        bank_name=payment.check_bank_name,
                        amount=payment.amount,
                        issue_date=order.payment_date,
                        due_date=payment.check_due_date or order.payment_date,
                        bank_account_id=payment.bank_account_id,
                        supplier_id=order.supplier_id
                    ),
                    order.tenant_id, user_id, payment_order_id=order.id
                ))
        return effects

    def _reverse(self, order: PaymentOrder, user_id: UUID):
        effects = []

        bank_movements = self.db.query(BankMovement).filter(
            BankMovement.tenant_id == order.tenant_id,
            BankMovement.payment_order_id == order.id
        ).all()
        for movement in bank_movements:
            if movement.is_reconciled:
                raise BusinessRuleViolation(
                    "La orden tiene movimientos bancarios conciliados; desconcílielos antes de anular"
                )
            effects.append(self.bank.remove_movement(movement))

        cash_movements = self.db.query(CashMovement).filter(
            CashMovement.tenant_id == order.tenant_id,
            CashMovement.payment_order_id == order.id
        ).all()
        for movement in cash_movements:
            session = get_for_update(self.db, CashRegisterSession, movement.session_id, order.tenant_id,
                                     "Sesión de caja")
            effects.append(self.cash.remove_movement(session, movement))

        checks = self.db.query(Check).filter(
            Check.tenant_id == order.tenant_id,
            Check.payment_order_id == order.id
        ).all()
        for check in checks:
            if check.status != CheckStatus.DELIVERED:
                raise InvalidStateTransition(
                    f"El cheque {check.check_number} está en estado '{check.status.value}' y no puede anularse"
                )
            CHECK_MACHINE.transition(
                check, CheckStatus.VOIDED, self.checks.void_effect,
                reason=f"Anulación orden de pago {order.number}"
            )
            effects.append(check)
        return effects
