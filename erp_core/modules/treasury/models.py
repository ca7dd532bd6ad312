"""
Modelos SQLAlchemy para el módulo de Tesorería

- BankAccount / BankMovement: cuentas bancarias con saldo corriente
- Check: cheques propios y de terceros con su ciclo de vida
- CashRegister / CashRegisterSession / CashMovement: cajas con sesiones de arqueo
- PaymentOrder / PaymentOrderItem / PaymentOrderPayment: órdenes de pago a proveedores

Invariante de saldos: BankAccount.balance es siempre la suma firmada de sus
movimientos y CashRegisterSession.expected_balance la de los movimientos
de la sesión.
"""

from erp_core.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Date, Integer, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import date
from decimal import Decimal
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from erp_core.common.mixins import TenantMixin, TimestampMixin
from erp_core.modules.purchases import models as purchases_models  # noqa: F401  registra proveedores y comprobantes
import enum


# ===== ENUMS =====

class BankMovementType(enum.Enum):
    """Tipos de movimiento bancario"""
    DEPOSIT = "deposit"             # Depósito (crédito)
    TRANSFER_IN = "transfer_in"     # Transferencia recibida (crédito)
    INTEREST = "interest"           # Intereses (crédito)
    WITHDRAWAL = "withdrawal"       # Extracción (débito)
    TRANSFER_OUT = "transfer_out"   # Transferencia emitida (débito)
    CHECK = "check"                 # Cheque debitado (débito)
    DEBIT = "debit"                 # Débito automático (débito)
    FEE = "fee"                     # Comisión (débito)

    @property
    def is_income(self) -> bool:
        return self in INCOME_MOVEMENT_TYPES


INCOME_MOVEMENT_TYPES = frozenset({
    BankMovementType.DEPOSIT,
    BankMovementType.TRANSFER_IN,
    BankMovementType.INTEREST,
})


class CheckType(enum.Enum):
    OWN = "own"                   # Cheque propio emitido
    THIRD_PARTY = "third_party"   # Cheque de terceros recibido


class CheckStatus(enum.Enum):
    """Estados de cheques"""
    PORTFOLIO = "portfolio"   # En cartera
    DELIVERED = "delivered"   # Entregado (propio)
    DEPOSITED = "deposited"   # Depositado, pendiente de acreditación
    CLEARED = "cleared"       # Acreditado
    REJECTED = "rejected"     # Rechazado
    ENDORSED = "endorsed"     # Endosado a un tercero
    CASHED = "cashed"         # Cobrado por ventanilla
    VOIDED = "voided"         # Anulado


class CashRegisterStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CashSessionStatus(enum.Enum):
    """Estados de sesión de caja"""
    OPEN = "open"       # Sesión abierta
    CLOSED = "closed"   # Sesión cerrada con arqueo


class CashMovementType(enum.Enum):
    """Tipos de movimiento de caja"""
    OPENING = "opening"         # Saldo inicial
    INCOME = "income"           # Ingreso
    EXPENSE = "expense"         # Egreso
    ADJUSTMENT = "adjustment"   # Ajuste (puede ser + o -)
    CLOSING = "closing"         # Registro de cierre (informativo)


class PaymentOrderStatus(enum.Enum):
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentMethod(enum.Enum):
    """Medios de pago"""
    CASH = "cash"           # Efectivo desde caja
    TRANSFER = "transfer"   # Transferencia desde cuenta bancaria
    CHECK = "check"         # Cheque propio


# ===== MODELOS =====

class BankAccount(Base, TenantMixin, TimestampMixin):
    __tablename__ = "bank_accounts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    bank_name = Column(String(100), nullable=False)
    account_number = Column(String(50), nullable=False)
    account_type = Column(String(30), nullable=False, default="checking")
    currency = Column(String(3), nullable=False, default="ARS")
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    movements = relationship("BankMovement", back_populates="bank_account")

    __table_args__ = (
        UniqueConstraint("tenant_id", "account_number", name="uq_bank_account_tenant_number"),
    )


class BankMovement(Base, TenantMixin, TimestampMixin):
    __tablename__ = "bank_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    bank_account_id = Column(UUID(as_uuid=True), ForeignKey("bank_accounts.id"), nullable=False, index=True)
    type = Column(Enum(BankMovementType), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)  # Siempre el valor absoluto
    movement_date = Column(Date, nullable=False, default=date.today)
    description = Column(String(500), nullable=False)
    reference = Column(String(100), nullable=True)
    statement_number = Column(String(50), nullable=True)
    is_reconciled = Column(Boolean, nullable=False, default=False, index=True)
    reconciled_at = Column(DateTime(timezone=True), nullable=True)

    # Origen del movimiento, cuando lo genera otro documento
    check_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    payment_order_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)

    bank_account = relationship("BankAccount", back_populates="movements")

    @property
    def signed_amount(self) -> Decimal:
        """Monto con signo según el tipo: créditos suman, débitos restan"""
        amount = Decimal(self.amount)
        return amount if self.type.is_income else -amount


class Check(Base, TenantMixin, TimestampMixin):
    """
    Cheques propios y de terceros

    El depósito genera un movimiento bancario pendiente que luego se acredita
    (CLEARED) o se elimina si el cheque es rechazado (REJECTED).
    """
    __tablename__ = "checks"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    type = Column(Enum(CheckType), nullable=False)
    check_number = Column(String(30), nullable=False)
    bank_name = Column(String(100), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(Enum(CheckStatus), nullable=False, index=True)
    drawer_name = Column(String(200), nullable=True)     # Librador
    drawer_tax_id = Column(String(20), nullable=True)

    bank_account_id = Column(UUID(as_uuid=True), ForeignKey("bank_accounts.id"), nullable=True)
    bank_movement_id = Column(UUID(as_uuid=True), ForeignKey("bank_movements.id"), nullable=True)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=True)
    payment_order_id = Column(UUID(as_uuid=True), ForeignKey("payment_orders.id"), nullable=True)

    endorsed_to_name = Column(String(200), nullable=True)
    endorsed_to_tax_id = Column(String(20), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    deposited_at = Column(DateTime(timezone=True), nullable=True)
    cleared_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    endorsed_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)

    bank_account = relationship("BankAccount")
    bank_movement = relationship("BankMovement")

    __table_args__ = (
        UniqueConstraint("tenant_id", "type", "bank_name", "check_number", name="uq_check_tenant_bank_number"),
    )


class CashRegister(Base, TenantMixin, TimestampMixin):
    __tablename__ = "cash_registers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    code = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    status = Column(Enum(CashRegisterStatus), nullable=False, default=CashRegisterStatus.ACTIVE)

    sessions = relationship("CashRegisterSession", back_populates="cash_register")

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_cash_register_tenant_code"),
    )


class CashRegisterSession(Base, TenantMixin, TimestampMixin):
    """
    Sesión de caja (apertura a cierre)

    Sólo puede existir una sesión abierta por caja; lo garantiza el índice
    único parcial sobre (cash_register_id) con status = OPEN.
    """
    __tablename__ = "cash_register_sessions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=False, index=True)
    session_number = Column(Integer, nullable=False)
    status = Column(Enum(CashSessionStatus), nullable=False, default=CashSessionStatus.OPEN, index=True)

    opening_balance = Column(Numeric(15, 2), nullable=False, default=0)
    expected_balance = Column(Numeric(15, 2), nullable=False, default=0)
    actual_balance = Column(Numeric(15, 2), nullable=True)   # Sólo al cerrar
    difference = Column(Numeric(15, 2), nullable=True)       # actual - esperado, informativo

    opened_by = Column(UUID(as_uuid=True), nullable=False)
    closed_by = Column(UUID(as_uuid=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    opening_notes = Column(Text, nullable=True)
    closing_notes = Column(Text, nullable=True)

    cash_register = relationship("CashRegister", back_populates="sessions")
    movements = relationship("CashMovement", back_populates="session", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("cash_register_id", "session_number", name="uq_cash_session_register_number"),
        Index(
            "uq_cash_session_one_open_per_register",
            "cash_register_id",
            unique=True,
            postgresql_where=(status == CashSessionStatus.OPEN),
            sqlite_where=(status == CashSessionStatus.OPEN),
        ),
    )


class CashMovement(Base, TenantMixin, TimestampMixin):
    __tablename__ = "cash_movements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    session_id = Column(UUID(as_uuid=True), ForeignKey("cash_register_sessions.id"), nullable=False, index=True)
    type = Column(Enum(CashMovementType), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)  # ADJUSTMENT conserva el signo
    description = Column(String(255), nullable=False)
    reference = Column(String(100), nullable=True)
    payment_order_id = Column(UUID(as_uuid=True), nullable=True, index=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)

    session = relationship("CashRegisterSession", back_populates="movements")

    @property
    def signed_amount(self) -> Decimal:
        """Efecto del movimiento sobre el saldo esperado"""
        amount = Decimal(self.amount)
        if self.type == CashMovementType.EXPENSE:
            return -abs(amount)
        if self.type in (CashMovementType.INCOME, CashMovementType.OPENING):
            return abs(amount)
        if self.type == CashMovementType.ADJUSTMENT:
            return amount
        return Decimal("0")  # CLOSING


class PaymentOrder(Base, TenantMixin, TimestampMixin):
    """
    Orden de pago a proveedor

    Sólo las órdenes CONFIRMED cuentan como pagos en la cuenta corriente.
    """
    __tablename__ = "payment_orders"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    number = Column(String(20), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id"), nullable=False, index=True)
    payment_date = Column(Date, nullable=False, default=date.today)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(Enum(PaymentOrderStatus), nullable=False, default=PaymentOrderStatus.DRAFT, index=True)
    notes = Column(Text, nullable=True)

    created_by = Column(UUID(as_uuid=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("PaymentOrderItem", back_populates="payment_order", cascade="all, delete-orphan")
    payments = relationship("PaymentOrderPayment", back_populates="payment_order", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("tenant_id", "number", name="uq_payment_order_tenant_number"),
    )


class PaymentOrderItem(Base, TimestampMixin):
    __tablename__ = "payment_order_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_order_id = Column(UUID(as_uuid=True), ForeignKey("payment_orders.id"), nullable=False, index=True)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("purchase_invoices.id"), nullable=False, index=True)
    amount = Column(Numeric(15, 2), nullable=False)

    payment_order = relationship("PaymentOrder", back_populates="items")


class PaymentOrderPayment(Base, TimestampMixin):
    __tablename__ = "payment_order_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_order_id = Column(UUID(as_uuid=True), ForeignKey("payment_orders.id"), nullable=False, index=True)
    method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    bank_account_id = Column(UUID(as_uuid=True), ForeignKey("bank_accounts.id"), nullable=True)
    cash_register_id = Column(UUID(as_uuid=True), ForeignKey("cash_registers.id"), nullable=True)
    check_number = Column(String(30), nullable=True)
    check_bank_name = Column(String(100), nullable=True)
    check_due_date = Column(Date, nullable=True)

    payment_order = relationship("PaymentOrder", back_populates="payments")
