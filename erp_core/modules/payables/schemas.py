from pydantic import BaseModel
from typing import Optional, List
from uuid import UUID
from datetime import date
from decimal import Decimal

from erp_core.modules.purchases.models import PurchaseInvoiceStatus, VoucherType


class InvoiceBalanceOut(BaseModel):
    invoice_id: UUID
    number: str
    voucher_type: VoucherType
    issue_date: date
    due_date: Optional[date] = None
    status: PurchaseInvoiceStatus
    total: Decimal
    total_payments: Decimal
    explicit_credit: Decimal
    fallback_credit: Decimal
    paid: Decimal
    balance: Decimal


class SupplierSummaryOut(BaseModel):
    total_invoiced: Decimal
    total_paid: Decimal
    total_balance: Decimal


class SupplierAccountStatement(BaseModel):
    supplier_id: UUID
    supplier_name: str
    documents: List[InvoiceBalanceOut]
    summary: SupplierSummaryOut


class PendingInvoiceOut(BaseModel):
    invoice_id: UUID
    number: str
    voucher_type: VoucherType
    issue_date: date
    due_date: Optional[date] = None
    total: Decimal
    paid: Decimal
    pending: Decimal


class SupplierBalanceRow(BaseModel):
    supplier_id: UUID
    supplier_name: str
    total_invoiced: Decimal
    total_paid: Decimal
    total_balance: Decimal
