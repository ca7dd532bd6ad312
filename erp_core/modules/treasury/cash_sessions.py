"""
Cajas y sesiones de arqueo

Cada caja admite una única sesión abierta. El saldo esperado de la sesión
es la suma firmada de sus movimientos mientras está abierta; al cerrar se
registra el saldo contado, la diferencia y, si la hay, un ajuste por
sobrante o faltante. Tras el cierre la suma de movimientos coincide con el
saldo contado y expected_balance conserva lo que se esperaba.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from erp_core.common.exceptions import BusinessRuleViolation, ConflictError, NotFoundError
from erp_core.common.state_machine import TransitionResult, apply_transition, get_for_update
from erp_core.database.database import atomic
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.treasury.models import (
    CashRegister, CashRegisterStatus, CashRegisterSession, CashSessionStatus, CashMovement, CashMovementType
)
from erp_core.modules.treasury.schemas import CashRegisterCreate, CashMovementCreate
from erp_core.modules.treasury.states import CASH_SESSION_MACHINE

logger = logging.getLogger(__name__)

USER_MOVEMENT_TYPES = (CashMovementType.INCOME, CashMovementType.EXPENSE, CashMovementType.ADJUSTMENT)


class CashSessionService:
    def __init__(self, db: Session):
        self.db = db

    # ===== CAJAS =====

    def create_register(self, data: CashRegisterCreate, tenant_id: UUID) -> CashRegister:
        existing = self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id,
            CashRegister.code == data.code
        ).first()
        if existing:
            raise ConflictError(f"Ya existe una caja con código {data.code}")

        with atomic(self.db, "al crear la caja"):
            register = CashRegister(tenant_id=tenant_id, code=data.code, name=data.name,
                                    status=CashRegisterStatus.ACTIVE)
            self.db.add(register)
        self.db.refresh(register)
        return register

    def list_registers(self, tenant_id: UUID) -> List[CashRegister]:
        return self.db.query(CashRegister).filter(
            CashRegister.tenant_id == tenant_id
        ).order_by(CashRegister.code).all()

    # ===== SESIONES =====

    def get_session(self, session_id: UUID, tenant_id: UUID) -> CashRegisterSession:
        session = self.db.query(CashRegisterSession).filter(
            CashRegisterSession.id == session_id,
            CashRegisterSession.tenant_id == tenant_id
        ).first()
        if not session:
            raise NotFoundError("Sesión de caja no encontrada")
        return session

    def get_open_session(self, cash_register_id: UUID, tenant_id: UUID,
                         for_update: bool = False) -> Optional[CashRegisterSession]:
        query = self.db.query(CashRegisterSession).filter(
            CashRegisterSession.tenant_id == tenant_id,
            CashRegisterSession.cash_register_id == cash_register_id,
            CashRegisterSession.status == CashSessionStatus.OPEN
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def list_sessions(self, cash_register_id: UUID, tenant_id: UUID,
                      limit: int = 50, offset: int = 0) -> List[CashRegisterSession]:
        return self.db.query(CashRegisterSession).filter(
            CashRegisterSession.tenant_id == tenant_id,
            CashRegisterSession.cash_register_id == cash_register_id
        ).order_by(CashRegisterSession.session_number.desc()).offset(offset).limit(limit).all()

    def open_session(self, cash_register_id: UUID, opening_balance: Decimal, tenant_id: UUID,
                     user_id: UUID, notes: Optional[str] = None) -> CashRegisterSession:
        """
        Abrir una sesión de caja

        Falla con 409 si la caja ya tiene una sesión abierta. El índice único
        parcial cubre la carrera entre dos aperturas simultáneas.
        """
        opening_balance = money(opening_balance)
        with atomic(self.db, "al abrir la caja"):
            register = get_for_update(self.db, CashRegister, cash_register_id, tenant_id, "Caja")
            if register.status != CashRegisterStatus.ACTIVE:
                raise BusinessRuleViolation(f"La caja '{register.name}' está inactiva")

            if self.get_open_session(register.id, tenant_id):
                raise ConflictError(f"La caja '{register.name}' ya tiene una sesión abierta")

            last_number = self.db.query(func.max(CashRegisterSession.session_number)).filter(
                CashRegisterSession.cash_register_id == register.id
            ).scalar() or 0

            session = CashRegisterSession(
                tenant_id=tenant_id,
                cash_register_id=register.id,
                session_number=last_number + 1,
                status=CashSessionStatus.OPEN,
                opening_balance=opening_balance,
                expected_balance=opening_balance,
                opened_by=user_id,
                opened_at=datetime.now(timezone.utc),
                opening_notes=notes
            )
            self.db.add(session)
            self.db.flush()

            self.db.add(CashMovement(
                tenant_id=tenant_id,
                session_id=session.id,
                type=CashMovementType.OPENING,
                amount=opening_balance,
                description=f"Apertura de caja - Sesión {session.session_number}",
                created_by=user_id
            ))
        self.db.refresh(session)
        logger.info(f"Caja {register.code}: sesión {session.session_number} abierta con {opening_balance}")
        return session

    def close_session(self, session_id: UUID, actual_balance: Decimal, tenant_id: UUID,
                      user_id: UUID, notes: Optional[str] = None) -> TransitionResult:
        session = get_for_update(self.db, CashRegisterSession, session_id, tenant_id, "Sesión de caja")
        return apply_transition(
            self.db, CASH_SESSION_MACHINE, session, CashSessionStatus.CLOSED,
            effect=self._close, actual_balance=money(actual_balance), user_id=user_id, notes=notes
        )

    def _close(self, session: CashRegisterSession, actual_balance: Decimal, user_id: UUID,
               notes: Optional[str] = None):
        difference = actual_balance - Decimal(session.expected_balance)
        session.actual_balance = actual_balance
        session.difference = difference
        session.closed_by = user_id
        session.closed_at = datetime.now(timezone.utc)
        session.closing_notes = notes

        movements = [CashMovement(
            tenant_id=session.tenant_id,
            session_id=session.id,
            type=CashMovementType.CLOSING,
            amount=actual_balance,
            description=f"Cierre de caja - Sesión {session.session_number}",
            created_by=user_id
        )]
        if difference != 0:
            label = "Sobrante" if difference > 0 else "Faltante"
            movements.append(CashMovement(
                tenant_id=session.tenant_id,
                session_id=session.id,
                type=CashMovementType.ADJUSTMENT,
                amount=difference,
                description=f"{label} de caja al cierre",
                created_by=user_id
            ))
            logger.warning(f"Sesión de caja {session.id}: {label.lower()} de {abs(difference)}")
        self.db.add_all(movements)
        return movements

    # ===== MOVIMIENTOS =====

    def _lock_open_session(self, session_id: UUID, tenant_id: UUID) -> CashRegisterSession:
        session = get_for_update(self.db, CashRegisterSession, session_id, tenant_id, "Sesión de caja")
        if session.status != CashSessionStatus.OPEN:
            raise BusinessRuleViolation("La sesión de caja no está abierta")
        return session

    def add_movement(self, session: CashRegisterSession, movement_type: CashMovementType, amount: Decimal,
                     description: str, user_id: UUID, reference: Optional[str] = None,
                     payment_order_id: Optional[UUID] = None) -> CashMovement:
        """Registra el movimiento y ajusta el saldo esperado. No confirma la transacción."""
        if movement_type not in USER_MOVEMENT_TYPES:
            raise BusinessRuleViolation("Los movimientos de apertura y cierre los genera la sesión")
        movement = CashMovement(
            tenant_id=session.tenant_id,
            session_id=session.id,
            type=movement_type,
            amount=money(amount),
            description=description,
            reference=reference,
            payment_order_id=payment_order_id,
            created_by=user_id
        )
        self.db.add(movement)
        session.expected_balance = Decimal(session.expected_balance) + movement.signed_amount
        self.db.flush()
        return movement

    def remove_movement(self, session: CashRegisterSession, movement: CashMovement) -> CashMovement:
        if session.status != CashSessionStatus.OPEN:
            raise BusinessRuleViolation("La sesión de caja no está abierta")
        session.expected_balance = Decimal(session.expected_balance) - movement.signed_amount
        self.db.delete(movement)
        self.db.flush()
        return movement

    def record_movement(self, session_id: UUID, data: CashMovementCreate,
                        tenant_id: UUID, user_id: UUID) -> CashMovement:
        with atomic(self.db, "al registrar el movimiento de caja"):
            session = self._lock_open_session(session_id, tenant_id)
            movement = self.add_movement(session, data.type, data.amount, data.description,
                                         user_id, reference=data.reference)
        self.db.refresh(movement)
        return movement

    def list_movements(self, session_id: UUID, tenant_id: UUID) -> List[CashMovement]:
        self.get_session(session_id, tenant_id)
        return self.db.query(CashMovement).filter(
            CashMovement.tenant_id == tenant_id,
            CashMovement.session_id == session_id
        ).order_by(CashMovement.created_at).all()

    def delete_movement(self, movement_id: UUID, tenant_id: UUID) -> None:
        with atomic(self.db, "al eliminar el movimiento de caja"):
            movement = get_for_update(self.db, CashMovement, movement_id, tenant_id, "Movimiento de caja")
            if movement.type not in USER_MOVEMENT_TYPES:
                raise BusinessRuleViolation("No se pueden eliminar los movimientos de apertura o cierre")
            if movement.payment_order_id:
                raise BusinessRuleViolation(
                    "El movimiento fue generado por una orden de pago; anule la orden"
                )
            session = self._lock_open_session(movement.session_id, tenant_id)
            self.remove_movement(session, movement)
        logger.info(f"Movimiento de caja {movement_id} eliminado")
