"""
Cheques propios y de terceros

Los cheques de terceros ingresan en cartera (PORTFOLIO) y pueden
depositarse, endosarse o anularse. El depósito genera un movimiento
bancario pendiente de acreditación; la acreditación lo concilia y el
rechazo lo elimina, dejando el saldo de la cuenta como antes del depósito.
"""
from datetime import date, datetime, timezone
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from erp_core.common.exceptions import BusinessRuleViolation, ConflictError, InvalidInputError, NotFoundError
from erp_core.common.state_machine import TransitionResult, apply_transition, get_for_update, get_or_404
from erp_core.database.database import atomic
from erp_core.modules.purchases.models import Supplier
from erp_core.modules.treasury.banking import BankLedger
from erp_core.modules.treasury.models import Check, CheckStatus, CheckType, BankAccount, BankMovement, BankMovementType
from erp_core.modules.treasury.schemas import CheckCreate
from erp_core.modules.treasury.states import CHECK_MACHINE

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CheckService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = BankLedger(db)

    # ===== CONSULTAS =====

    def get_check(self, check_id: UUID, tenant_id: UUID) -> Check:
        check = self.db.query(Check).filter(
            Check.id == check_id,
            Check.tenant_id == tenant_id
        ).first()
        if not check:
            raise NotFoundError("Cheque no encontrado")
        return check

    def list_checks(self, tenant_id: UUID, status: Optional[CheckStatus] = None,
                    check_type: Optional[CheckType] = None, limit: int = 100, offset: int = 0) -> List[Check]:
        query = self.db.query(Check).filter(Check.tenant_id == tenant_id)
        if status:
            query = query.filter(Check.status == status)
        if check_type:
            query = query.filter(Check.type == check_type)
        return query.order_by(Check.due_date, Check.check_number).offset(offset).limit(limit).all()

    # ===== ALTA Y BAJA =====

    def create_check(self, data: CheckCreate, tenant_id: UUID, user_id: UUID,
                     payment_order_id: Optional[UUID] = None) -> Check:
        """
        Registrar un cheque

        Los de terceros quedan en cartera; los propios se registran como
        entregados y requieren la cuenta de emisión.
        """
        with atomic(self.db, "al registrar el cheque"):
            check = self.build_check(data, tenant_id, user_id, payment_order_id)
        self.db.refresh(check)
        logger.info(f"Cheque {check.check_number} ({check.type.value}) registrado en {check.status.value}")
        return check

    def build_check(self, data: CheckCreate, tenant_id: UUID, user_id: UUID,
                    payment_order_id: Optional[UUID] = None) -> Check:
        """Alta sin commit, para componer con otras operaciones"""
        if data.type == CheckType.OWN and not data.bank_account_id:
            raise InvalidInputError("Los cheques propios requieren la cuenta bancaria de emisión")
        if data.bank_account_id:
            get_or_404(self.db, BankAccount, data.bank_account_id, tenant_id, "Cuenta bancaria")
        if data.supplier_id:
            get_or_404(self.db, Supplier, data.supplier_id, tenant_id, "Proveedor")

        duplicate = self.db.query(Check).filter(
            Check.tenant_id == tenant_id,
            Check.type == data.type,
            Check.bank_name == data.bank_name,
            Check.check_number == data.check_number
        ).first()
        if duplicate:
            raise ConflictError(f"Ya existe el cheque {data.check_number} del banco {data.bank_name}")

        check = Check(
            tenant_id=tenant_id,
            type=data.type,
            check_number=data.check_number,
            bank_name=data.bank_name,
            amount=data.amount,
            issue_date=data.issue_date,
            due_date=data.due_date,
            status=CheckStatus.PORTFOLIO if data.type == CheckType.THIRD_PARTY else CheckStatus.DELIVERED,
            drawer_name=data.drawer_name,
            drawer_tax_id=data.drawer_tax_id,
            bank_account_id=data.bank_account_id,
            supplier_id=data.supplier_id,
            payment_order_id=payment_order_id,
            notes=data.notes,
            created_by=user_id
        )
        self.db.add(check)
        self.db.flush()
        return check

    def delete_check(self, check_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar el cheque"):
            check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
            CHECK_MACHINE.ensure_deletable(check.status)
            if check.payment_order_id:
                raise BusinessRuleViolation("El cheque pertenece a una orden de pago; anule la orden")
            self.db.delete(check)
        logger.info(f"Cheque {check_id} eliminado")

    # ===== TRANSICIONES =====

    def deposit_check(self, check_id: UUID, bank_account_id: UUID, tenant_id: UUID, user_id: UUID,
                      deposit_date: Optional[date] = None) -> TransitionResult:
        check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
        return apply_transition(
            self.db, CHECK_MACHINE, check, CheckStatus.DEPOSITED,
            effect=self._deposit, bank_account_id=bank_account_id, user_id=user_id,
            deposit_date=deposit_date
        )

    def clear_check(self, check_id: UUID, tenant_id: UUID) -> TransitionResult:
        check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
        return apply_transition(self.db, CHECK_MACHINE, check, CheckStatus.CLEARED, effect=self._clear)

    def reject_check(self, check_id: UUID, reason: str, tenant_id: UUID) -> TransitionResult:
        check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
        return apply_transition(
            self.db, CHECK_MACHINE, check, CheckStatus.REJECTED, effect=self._reject, reason=reason
        )

    def endorse_check(self, check_id: UUID, endorsed_to_name: str, tenant_id: UUID,
                      endorsed_to_tax_id: Optional[str] = None,
                      supplier_id: Optional[UUID] = None) -> TransitionResult:
        check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
        if supplier_id:
            get_or_404(self.db, Supplier, supplier_id, tenant_id, "Proveedor")
        return apply_transition(
            self.db, CHECK_MACHINE, check, CheckStatus.ENDORSED, effect=self._endorse,
            endorsed_to_name=endorsed_to_name, endorsed_to_tax_id=endorsed_to_tax_id,
            supplier_id=supplier_id
        )

    def void_check(self, check_id: UUID, tenant_id: UUID, reason: Optional[str] = None) -> TransitionResult:
        check = get_for_update(self.db, Check, check_id, tenant_id, "Cheque")
        if check.payment_order_id:
            raise BusinessRuleViolation("El cheque pertenece a una orden de pago; anule la orden")
        return apply_transition(self.db, CHECK_MACHINE, check, CheckStatus.VOIDED, effect=self.void_effect,
                                reason=reason)

    # ===== EFECTOS =====

    def _deposit(self, check: Check, bank_account_id: UUID, user_id: UUID, deposit_date: Optional[date] = None):
        account = self.ledger.lock_account(bank_account_id, check.tenant_id)
        movement = self.ledger.post_movement(
            account,
            BankMovementType.DEPOSIT,
            check.amount,
            f"Depósito cheque N° {check.check_number} - {check.bank_name}",
            user_id,
            movement_date=deposit_date,
            reference=check.check_number,
            check_id=check.id
        )
        check.bank_account_id = account.id
        check.bank_movement_id = movement.id
        check.deposited_at = utcnow()
        return [movement]

    def _deposit_movement(self, check: Check) -> BankMovement:
        movement = self.db.query(BankMovement).filter(
            BankMovement.id == check.bank_movement_id,
            BankMovement.tenant_id == check.tenant_id
        ).with_for_update().first()
        if not movement:
            raise BusinessRuleViolation(f"El cheque {check.check_number} no tiene movimiento de depósito")
        return movement

    def _clear(self, check: Check):
        movement = self._deposit_movement(check)
        now = utcnow()
        movement.is_reconciled = True
        movement.reconciled_at = now
        check.cleared_at = now
        return [movement]

    def _reject(self, check: Check, reason: str):
        movement = self._deposit_movement(check)
        if movement.is_reconciled:
            raise BusinessRuleViolation("El depósito ya fue conciliado; no se puede rechazar el cheque")
        check.bank_movement_id = None
        self.db.flush()
        self.ledger.remove_movement(movement)
        check.rejection_reason = reason
        check.rejected_at = utcnow()
        return [movement]

    def _endorse(self, check: Check, endorsed_to_name: str, endorsed_to_tax_id: Optional[str],
                 supplier_id: Optional[UUID]):
        check.endorsed_to_name = endorsed_to_name
        check.endorsed_to_tax_id = endorsed_to_tax_id
        check.supplier_id = supplier_id or check.supplier_id
        check.endorsed_at = utcnow()
        return []

    def void_effect(self, check: Check, reason: Optional[str] = None):
        """
        Anulación; también la usa la anulación de órdenes de pago.

        Sólo se anulan cheques en cartera o entregados, que nunca tienen
        movimiento bancario.
        """
        if reason:
            check.notes = f"{check.notes}\n{reason}" if check.notes else reason
        check.voided_at = utcnow()
        return []
