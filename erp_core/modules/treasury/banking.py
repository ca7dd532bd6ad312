"""
Cuentas y movimientos bancarios

BankLedger es el único camino para registrar o eliminar movimientos: cada
alta o baja ajusta el saldo de la cuenta por el monto firmado del
movimiento, de modo que el saldo coincide siempre con la suma de sus
movimientos.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from erp_core.common.exceptions import BusinessRuleViolation, ConflictError, InvalidInputError, NotFoundError
from erp_core.common.state_machine import get_for_update
from erp_core.database.database import atomic
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.treasury.models import BankAccount, BankMovement, BankMovementType
from erp_core.modules.treasury.schemas import (
    BankAccountCreate, BankMovementCreate, BankMovementList, ReconciliationStats
)

logger = logging.getLogger(__name__)


def signed_amount(movement_type: BankMovementType, amount: Decimal) -> Decimal:
    amount = abs(Decimal(amount))
    return amount if movement_type.is_income else -amount


class BankLedger:
    """Libro de movimientos bancarios. No confirma la transacción."""

    def __init__(self, db: Session):
        self.db = db

    def lock_account(self, account_id: UUID, tenant_id: UUID, require_active: bool = True) -> BankAccount:
        account = get_for_update(self.db, BankAccount, account_id, tenant_id, "Cuenta bancaria")
        if require_active and not account.is_active:
            raise BusinessRuleViolation(f"La cuenta bancaria {account.account_number} está inactiva")
        return account

    def post_movement(
        self,
        account: BankAccount,
        movement_type: BankMovementType,
        amount: Decimal,
        description: str,
        user_id: UUID,
        movement_date: Optional[date] = None,
        reference: Optional[str] = None,
        statement_number: Optional[str] = None,
        is_reconciled: bool = False,
        check_id: Optional[UUID] = None,
        payment_order_id: Optional[UUID] = None,
    ) -> BankMovement:
        amount = money(amount)
        if amount <= 0:
            raise InvalidInputError("El monto del movimiento bancario debe ser mayor a cero")

        movement = BankMovement(
            tenant_id=account.tenant_id,
            bank_account_id=account.id,
            type=movement_type,
            amount=amount,
            movement_date=movement_date or date.today(),
            description=description,
            reference=reference,
            statement_number=statement_number,
            is_reconciled=is_reconciled,
            reconciled_at=datetime.now(timezone.utc) if is_reconciled else None,
            check_id=check_id,
            payment_order_id=payment_order_id,
            created_by=user_id
        )
        self.db.add(movement)
        account.balance = Decimal(account.balance) + signed_amount(movement_type, amount)
        self.db.flush()
        return movement

    def remove_movement(self, movement: BankMovement) -> BankMovement:
        account = self.lock_account(movement.bank_account_id, movement.tenant_id, require_active=False)
        account.balance = Decimal(account.balance) - movement.signed_amount
        self.db.delete(movement)
        self.db.flush()
        return movement

    def recompute_balance(self, account_id: UUID, tenant_id: UUID) -> Decimal:
        """Saldo reconstruido desde los movimientos"""
        movements = self.db.query(BankMovement).filter(
            BankMovement.tenant_id == tenant_id,
            BankMovement.bank_account_id == account_id
        ).all()
        return money(sum((m.signed_amount for m in movements), Decimal("0")))


class BankAccountService:
    def __init__(self, db: Session):
        self.db = db

    def create_account(self, data: BankAccountCreate, tenant_id: UUID) -> BankAccount:
        existing = self.db.query(BankAccount).filter(
            BankAccount.tenant_id == tenant_id,
            BankAccount.account_number == data.account_number
        ).first()
        if existing:
            raise ConflictError(f"Ya existe una cuenta con número {data.account_number}")

        with atomic(self.db, "al crear la cuenta bancaria"):
            account = BankAccount(tenant_id=tenant_id, balance=Decimal("0"), **data.model_dump())
            self.db.add(account)
        self.db.refresh(account)
        logger.info(f"Cuenta bancaria {account.account_number} creada")
        return account

    def list_accounts(self, tenant_id: UUID, active_only: bool = True) -> List[BankAccount]:
        query = self.db.query(BankAccount).filter(BankAccount.tenant_id == tenant_id)
        if active_only:
            query = query.filter(BankAccount.is_active == True)
        return query.order_by(BankAccount.bank_name, BankAccount.account_number).all()

    def get_account(self, account_id: UUID, tenant_id: UUID) -> BankAccount:
        account = self.db.query(BankAccount).filter(
            BankAccount.id == account_id,
            BankAccount.tenant_id == tenant_id
        ).first()
        if not account:
            raise NotFoundError("Cuenta bancaria no encontrada")
        return account

    def get_reconciliation_stats(self, account_id: UUID, tenant_id: UUID) -> ReconciliationStats:
        self.get_account(account_id, tenant_id)
        base = self.db.query(func.count(BankMovement.id)).filter(
            BankMovement.tenant_id == tenant_id,
            BankMovement.bank_account_id == account_id
        )
        total = base.scalar() or 0
        reconciled = base.filter(BankMovement.is_reconciled == True).scalar() or 0
        percentage = (Decimal(reconciled) * 100 / Decimal(total)) if total else Decimal("0")
        return ReconciliationStats(
            total=total,
            reconciled=reconciled,
            pending=total - reconciled,
            percentage=money(percentage)
        )


class BankMovementService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = BankLedger(db)

    def list_movements(self, account_id: UUID, tenant_id: UUID, limit: int = 100, offset: int = 0,
                       is_reconciled: Optional[bool] = None, start_date: Optional[date] = None,
                       end_date: Optional[date] = None) -> BankMovementList:
        query = self.db.query(BankMovement).filter(
            BankMovement.tenant_id == tenant_id,
            BankMovement.bank_account_id == account_id
        )
        if is_reconciled is not None:
            query = query.filter(BankMovement.is_reconciled == is_reconciled)
        if start_date:
            query = query.filter(BankMovement.movement_date >= start_date)
        if end_date:
            query = query.filter(BankMovement.movement_date <= end_date)

        total = query.count()
        items = query.order_by(
            BankMovement.movement_date.desc(), BankMovement.created_at.desc()
        ).offset(offset).limit(limit).all()
        return BankMovementList(items=items, total=total, limit=limit, offset=offset)

    def create_movement(self, account_id: UUID, data: BankMovementCreate,
                        tenant_id: UUID, user_id: UUID) -> BankMovement:
        with atomic(self.db, "al registrar el movimiento bancario"):
            account = self.ledger.lock_account(account_id, tenant_id)
            movement = self.ledger.post_movement(
                account,
                data.type,
                data.amount,
                data.description,
                user_id,
                movement_date=data.movement_date,
                reference=data.reference,
                statement_number=data.statement_number
            )
        self.db.refresh(movement)
        logger.info(f"Movimiento bancario {movement.id} registrado en cuenta {account_id}")
        return movement

    def delete_movement(self, movement_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar el movimiento bancario"):
            movement = get_for_update(self.db, BankMovement, movement_id, tenant_id, "Movimiento bancario")
            if movement.is_reconciled:
                raise BusinessRuleViolation("No se puede eliminar un movimiento conciliado")
            if movement.check_id or movement.payment_order_id:
                raise BusinessRuleViolation(
                    "El movimiento fue generado por otro documento; anule el documento de origen"
                )
            self.ledger.remove_movement(movement)
        logger.info(f"Movimiento bancario {movement_id} eliminado")

    def _set_reconciled(self, movement_ids: List[UUID], tenant_id: UUID, reconciled: bool) -> List[BankMovement]:
        now = datetime.now(timezone.utc)
        with atomic(self.db, "al conciliar movimientos"):
            movements = self.db.query(BankMovement).filter(
                BankMovement.tenant_id == tenant_id,
                BankMovement.id.in_(movement_ids)
            ).with_for_update().all()
            if len(movements) != len(set(movement_ids)):
                raise NotFoundError("Uno o más movimientos bancarios no existen")
            for movement in movements:
                movement.is_reconciled = reconciled
                movement.reconciled_at = now if reconciled else None
        for movement in movements:
            self.db.refresh(movement)
        return movements

    def reconcile(self, movement_id: UUID, tenant_id: UUID) -> BankMovement:
        return self._set_reconciled([movement_id], tenant_id, True)[0]

    def unreconcile(self, movement_id: UUID, tenant_id: UUID) -> BankMovement:
        return self._set_reconciled([movement_id], tenant_id, False)[0]

    def reconcile_many(self, movement_ids: List[UUID], tenant_id: UUID) -> List[BankMovement]:
        movements = self._set_reconciled(movement_ids, tenant_id, True)
        logger.info(f"{len(movements)} movimientos conciliados")
        return movements
