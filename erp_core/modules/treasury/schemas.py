"""
Esquemas Pydantic para el módulo de Tesorería
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import date, datetime

from erp_core.modules.treasury.models import (
    BankMovementType, CheckType, CheckStatus, CashRegisterStatus, CashSessionStatus,
    CashMovementType, PaymentOrderStatus, PaymentMethod
)


# ===== BANK ACCOUNT SCHEMAS =====

class BankAccountCreate(BaseModel):
    bank_name: str = Field(..., min_length=1, max_length=100)
    account_number: str = Field(..., min_length=1, max_length=50)
    account_type: str = Field("checking", max_length=30)
    currency: str = Field("ARS", min_length=3, max_length=3)

    @field_validator('account_number')
    @classmethod
    def strip_account_number(cls, v):
        return v.strip()


class BankAccountOut(BaseModel):
    id: UUID
    bank_name: str
    account_number: str
    account_type: str
    currency: str
    balance: Decimal
    is_active: bool

    class Config:
        from_attributes = True


class ReconciliationStats(BaseModel):
    total: int
    reconciled: int
    pending: int
    percentage: Decimal


# ===== BANK MOVEMENT SCHEMAS =====

class BankMovementCreate(BaseModel):
    type: BankMovementType
    amount: Decimal = Field(..., gt=0)
    movement_date: date
    description: str = Field(..., min_length=1, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)
    statement_number: Optional[str] = Field(None, max_length=50)


class BankMovementOut(BaseModel):
    id: UUID
    bank_account_id: UUID
    type: BankMovementType
    amount: Decimal
    movement_date: date
    description: str
    reference: Optional[str] = None
    statement_number: Optional[str] = None
    is_reconciled: bool
    reconciled_at: Optional[datetime] = None
    check_id: Optional[UUID] = None
    payment_order_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class BankMovementList(BaseModel):
    items: List[BankMovementOut]
    total: int
    limit: int
    offset: int


class ReconcileManyRequest(BaseModel):
    movement_ids: List[UUID] = Field(..., min_length=1)


# ===== BANK IMPORT SCHEMAS =====

class BankImportRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(
        default_factory=list,
        description="Filas con date, type, amount, description, reference y statement_number"
    )


class ImportRowError(BaseModel):
    row: int
    errors: List[str]


class BankImportResult(BaseModel):
    success: bool
    imported: int
    errors: List[ImportRowError] = []
    message: str = ""


# ===== CHECK SCHEMAS =====

class CheckCreate(BaseModel):
    type: CheckType
    check_number: str = Field(..., min_length=1, max_length=30)
    bank_name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    issue_date: date
    due_date: date
    drawer_name: Optional[str] = Field(None, max_length=200)
    drawer_tax_id: Optional[str] = Field(None, max_length=20)
    bank_account_id: Optional[UUID] = Field(None, description="Cuenta de emisión para cheques propios")
    supplier_id: Optional[UUID] = None
    notes: Optional[str] = None

    @model_validator(mode='after')
    def validate_dates(self):
        if self.due_date < self.issue_date:
            raise ValueError('La fecha de pago no puede ser anterior a la de emisión')
        return self


class CheckDeposit(BaseModel):
    bank_account_id: UUID
    deposit_date: Optional[date] = None


class CheckReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class CheckEndorse(BaseModel):
    endorsed_to_name: str = Field(..., min_length=1, max_length=200)
    endorsed_to_tax_id: Optional[str] = Field(None, max_length=20)
    supplier_id: Optional[UUID] = None


class CheckVoid(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class CheckOut(BaseModel):
    id: UUID
    type: CheckType
    check_number: str
    bank_name: str
    amount: Decimal
    issue_date: date
    due_date: date
    status: CheckStatus
    drawer_name: Optional[str] = None
    bank_account_id: Optional[UUID] = None
    bank_movement_id: Optional[UUID] = None
    supplier_id: Optional[UUID] = None
    payment_order_id: Optional[UUID] = None
    endorsed_to_name: Optional[str] = None
    endorsed_to_tax_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    deposited_at: Optional[datetime] = None
    cleared_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ===== CASH SCHEMAS =====

class CashRegisterCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)


class CashRegisterOut(BaseModel):
    id: UUID
    code: str
    name: str
    status: CashRegisterStatus

    class Config:
        from_attributes = True


class CashSessionOpen(BaseModel):
    opening_balance: Decimal = Field(Decimal("0"), ge=0, description="Saldo inicial contado")
    notes: Optional[str] = None


class CashSessionClose(BaseModel):
    actual_balance: Decimal = Field(..., ge=0, description="Saldo contado al cierre")
    notes: Optional[str] = None


class CashSessionOut(BaseModel):
    id: UUID
    cash_register_id: UUID
    session_number: int
    status: CashSessionStatus
    opening_balance: Decimal
    expected_balance: Decimal
    actual_balance: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    opened_by: UUID
    opened_at: datetime
    closed_by: Optional[UUID] = None
    closed_at: Optional[datetime] = None
    opening_notes: Optional[str] = None
    closing_notes: Optional[str] = None

    class Config:
        from_attributes = True


class CashMovementCreate(BaseModel):
    type: CashMovementType
    amount: Decimal
    description: str = Field(..., min_length=1, max_length=255)
    reference: Optional[str] = Field(None, max_length=100)

    @model_validator(mode='after')
    def validate_amount(self):
        if self.type in (CashMovementType.OPENING, CashMovementType.CLOSING):
            raise ValueError('Los movimientos de apertura y cierre los genera la sesión')
        if self.type == CashMovementType.ADJUSTMENT:
            if self.amount == 0:
                raise ValueError('El ajuste no puede ser cero')
        elif self.amount <= 0:
            raise ValueError('El monto debe ser mayor a cero')
        return self


class CashMovementOut(BaseModel):
    id: UUID
    session_id: UUID
    type: CashMovementType
    amount: Decimal
    description: str
    reference: Optional[str] = None
    payment_order_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


# ===== PAYMENT ORDER SCHEMAS =====

class PaymentOrderItemCreate(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., gt=0)


class PaymentOrderPaymentCreate(BaseModel):
    method: PaymentMethod
    amount: Decimal = Field(..., gt=0)
    bank_account_id: Optional[UUID] = None
    cash_register_id: Optional[UUID] = None
    check_number: Optional[str] = Field(None, max_length=30)
    check_due_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_source(self):
        if self.method == PaymentMethod.CASH and not self.cash_register_id:
            raise ValueError('El pago en efectivo requiere una caja')
        if self.method == PaymentMethod.TRANSFER and not self.bank_account_id:
            raise ValueError('La transferencia requiere una cuenta bancaria')
        if self.method == PaymentMethod.CHECK:
            if not self.bank_account_id or not self.check_number:
                raise ValueError('El pago con cheque requiere cuenta bancaria y número de cheque')
        return self


class PaymentOrderCreate(BaseModel):
    supplier_id: UUID
    payment_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[PaymentOrderItemCreate] = Field(..., min_length=1)
    payments: List[PaymentOrderPaymentCreate] = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_totals(self):
        items_total = sum((i.amount for i in self.items), Decimal("0"))
        payments_total = sum((p.amount for p in self.payments), Decimal("0"))
        if items_total != payments_total:
            raise ValueError(
                f'El total de pagos ({payments_total}) no coincide con el total imputado ({items_total})'
            )
        return self


class PaymentOrderItemOut(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal

    class Config:
        from_attributes = True


class PaymentOrderPaymentOut(BaseModel):
    id: UUID
    method: PaymentMethod
    amount: Decimal
    bank_account_id: Optional[UUID] = None
    cash_register_id: Optional[UUID] = None
    check_number: Optional[str] = None

    class Config:
        from_attributes = True


class PaymentOrderOut(BaseModel):
    id: UUID
    number: str
    supplier_id: UUID
    payment_date: date
    total: Decimal
    status: PaymentOrderStatus
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[PaymentOrderItemOut] = []
    payments: List[PaymentOrderPaymentOut] = []

    class Config:
        from_attributes = True
