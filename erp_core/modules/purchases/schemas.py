"""
Esquemas Pydantic para el módulo de Compras

- Suppliers: alta y modificación con validación de CUIT/NIT y email
- PurchaseOrders: órdenes con líneas y seguimiento de recepción
- PurchaseInvoices: facturas, notas de débito y de crédito
- CreditNoteApplications: imputaciones manuales de notas de crédito
- ReceivingNotes: remitos de recepción con sus líneas
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from erp_core.modules.purchases.models import (
    PurchaseOrderStatus, PurchaseInvoiceStatus, ReceivingNoteStatus, ReceptionStatus, VoucherType
)


# ===== SUPPLIER SCHEMAS =====

def _clean_tax_id(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    cleaned = v.replace('-', '').replace('.', '').strip()
    if not cleaned.isdigit():
        raise ValueError('El CUIT/NIT debe contener sólo dígitos')
    return cleaned


class SupplierBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Razón social del proveedor")
    tax_id: Optional[str] = Field(None, max_length=20, description="CUIT/NIT del proveedor")
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    payment_term_days: int = Field(0, ge=0, le=365, description="Plazo de pago en días")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        if v and v.strip():
            if '@' not in v or '.' not in v:
                raise ValueError('Email debe tener formato válido')
        return v

    @field_validator('tax_id')
    @classmethod
    def normalize_tax_id(cls, v):
        return _clean_tax_id(v)


class SupplierCreate(SupplierBase):
    pass


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    tax_id: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    payment_term_days: Optional[int] = Field(None, ge=0, le=365)

    @field_validator('tax_id')
    @classmethod
    def normalize_tax_id(cls, v):
        return _clean_tax_id(v)


class SupplierOut(SupplierBase):
    id: UUID
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


# ===== PURCHASE ORDER SCHEMAS =====

class PurchaseOrderLineCreate(BaseModel):
    product_id: UUID
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_id: UUID
    issue_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[PurchaseOrderLineCreate] = Field(..., min_length=1)


class PurchaseOrderLineOut(BaseModel):
    id: UUID
    product_id: UUID
    quantity: Decimal
    unit_price: Decimal
    received_qty: Decimal
    invoiced_qty: Decimal

    class Config:
        from_attributes = True


class PurchaseOrderOut(BaseModel):
    id: UUID
    number: str
    supplier_id: UUID
    issue_date: date
    status: PurchaseOrderStatus
    notes: Optional[str] = None
    lines: List[PurchaseOrderLineOut] = []

    class Config:
        from_attributes = True


# ===== PURCHASE INVOICE SCHEMAS =====

class PurchaseInvoiceLineCreate(BaseModel):
    product_id: Optional[UUID] = None
    purchase_order_line_id: Optional[UUID] = None
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class PurchaseInvoiceCreate(BaseModel):
    supplier_id: UUID
    voucher_type: VoucherType
    number: str = Field(..., min_length=1, max_length=50, description="Número impreso del comprobante")
    issue_date: date
    due_date: Optional[date] = None
    purchase_order_id: Optional[UUID] = None
    original_invoice_id: Optional[UUID] = Field(None, description="Comprobante que corrige una nota")
    notes: Optional[str] = None
    lines: List[PurchaseInvoiceLineCreate] = Field(..., min_length=1)

    @model_validator(mode='after')
    def validate_dates(self):
        if self.due_date and self.due_date < self.issue_date:
            raise ValueError('La fecha de vencimiento no puede ser anterior a la de emisión')
        return self

    @model_validator(mode='after')
    def validate_original_invoice(self):
        if self.original_invoice_id and self.voucher_type.value.startswith('invoice'):
            raise ValueError('Sólo las notas de débito o crédito pueden referenciar un comprobante original')
        return self


class PurchaseInvoiceUpdate(BaseModel):
    number: Optional[str] = Field(None, min_length=1, max_length=50)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[PurchaseInvoiceLineCreate]] = Field(None, min_length=1)


class PurchaseInvoiceLineOut(BaseModel):
    id: UUID
    product_id: Optional[UUID] = None
    purchase_order_line_id: Optional[UUID] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True


class PurchaseInvoiceOut(BaseModel):
    id: UUID
    supplier_id: UUID
    purchase_order_id: Optional[UUID] = None
    original_invoice_id: Optional[UUID] = None
    voucher_type: VoucherType
    number: str
    issue_date: date
    due_date: Optional[date] = None
    total: Decimal
    status: PurchaseInvoiceStatus
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: List[PurchaseInvoiceLineOut] = []
    reception_status: Optional[ReceptionStatus] = None

    class Config:
        from_attributes = True


class PurchaseInvoiceList(BaseModel):
    items: List[PurchaseInvoiceOut]
    total: int
    limit: int
    offset: int


# ===== CREDIT NOTE APPLICATION SCHEMAS =====

class CreditNoteApplicationCreate(BaseModel):
    invoice_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class CreditNoteApplicationOut(BaseModel):
    id: UUID
    credit_note_id: UUID
    invoice_id: UUID
    amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


# ===== RECEIVING NOTE SCHEMAS =====

class ReceivingNoteLineCreate(BaseModel):
    product_id: UUID
    quantity: Decimal = Field(..., gt=0)
    purchase_order_line_id: Optional[UUID] = None
    notes: Optional[str] = None


class ReceivingNoteCreate(BaseModel):
    supplier_id: UUID
    warehouse_id: UUID
    purchase_order_id: Optional[UUID] = None
    purchase_invoice_id: Optional[UUID] = None
    receipt_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[ReceivingNoteLineCreate] = []


class ReceivingNoteUpdate(BaseModel):
    warehouse_id: Optional[UUID] = None
    receipt_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[ReceivingNoteLineCreate]] = None


class ReceivingNoteLineOut(BaseModel):
    id: UUID
    product_id: UUID
    quantity: Decimal
    purchase_order_line_id: Optional[UUID] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ReceivingNoteOut(BaseModel):
    id: UUID
    number: str
    supplier_id: UUID
    warehouse_id: UUID
    purchase_order_id: Optional[UUID] = None
    purchase_invoice_id: Optional[UUID] = None
    receipt_date: date
    status: ReceivingNoteStatus
    notes: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: List[ReceivingNoteLineOut] = []

    class Config:
        from_attributes = True
