"""
Conciliación de cuenta corriente de proveedores.

Funciones puras sobre valores planos: no consultan la base ni modifican
nada. El servicio arma los hechos (comprobantes, pagos, aplicaciones de
notas de crédito) y este módulo deriva, para cada comprobante, cuánto lleva
pagado y cuánto resta.

Hay dos estrategias de imputación de notas de crédito:

- ExplicitApplicationStrategy: las aplicaciones registradas en
  CreditNoteApplication. Es la fuente autoritativa.
- FallbackMatchStrategy ("fallback-match"): notas de crédito que sólo
  referencian el comprobante por original_invoice_id y no tienen ninguna
  aplicación explícita. Su efecto se infiere y se topea para que el
  comprobante nunca quede sobrepagado.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from erp_core.modules.purchases.models import PurchaseInvoiceStatus
from erp_core.modules.treasury.models import PaymentOrderStatus

ZERO = Decimal("0")
CENT = Decimal("0.01")

RECONCILED_STATUSES = frozenset({
    PurchaseInvoiceStatus.CONFIRMED,
    PurchaseInvoiceStatus.PARTIAL_PAID,
    PurchaseInvoiceStatus.PAID,
})
FALLBACK_EXCLUDED_STATUSES = frozenset({
    PurchaseInvoiceStatus.DRAFT,
    PurchaseInvoiceStatus.CANCELLED,
})


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# ===== HECHOS DE ENTRADA =====

@dataclass(frozen=True)
class InvoiceFact:
    id: Any
    total: Decimal
    status: PurchaseInvoiceStatus
    is_credit_note: bool = False
    original_invoice_id: Optional[Any] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    number: str = ""


@dataclass(frozen=True)
class PaymentFact:
    invoice_id: Any
    amount: Decimal
    order_status: PaymentOrderStatus


@dataclass(frozen=True)
class ApplicationFact:
    credit_note_id: Any
    invoice_id: Any
    amount: Decimal


# ===== RESULTADOS =====

@dataclass(frozen=True)
class InvoiceBalance:
    invoice_id: Any
    is_credit_note: bool
    total: Decimal
    total_payments: Decimal
    explicit_credit: Decimal
    fallback_credit_raw: Decimal
    fallback_credit: Decimal
    paid: Decimal
    balance: Decimal

    @property
    def pending(self) -> Decimal:
        return max(ZERO, self.balance)


@dataclass(frozen=True)
class SupplierSummary:
    total_invoiced: Decimal
    total_paid: Decimal
    total_balance: Decimal


@dataclass
class SupplierReconciliation:
    balances: List[InvoiceBalance] = field(default_factory=list)
    summary: SupplierSummary = field(default_factory=lambda: SupplierSummary(ZERO, ZERO, ZERO))

    def for_invoice(self, invoice_id) -> Optional[InvoiceBalance]:
        for row in self.balances:
            if row.invoice_id == invoice_id:
                return row
        return None


# ===== ESTRATEGIAS =====

def total_payments(invoice: InvoiceFact, payments: Iterable[PaymentFact]) -> Decimal:
    """Suma de ítems de órdenes de pago CONFIRMED imputados al comprobante"""
    return sum(
        (Decimal(p.amount) for p in payments
         if p.invoice_id == invoice.id and p.order_status == PaymentOrderStatus.CONFIRMED),
        ZERO,
    )


class ExplicitApplicationStrategy:
    """Aplicaciones de notas de crédito registradas explícitamente"""

    tag = "explicit"

    def __init__(self, applications: Iterable[ApplicationFact]):
        self.applications = list(applications)

    @property
    def applied_credit_note_ids(self) -> frozenset:
        return frozenset(a.credit_note_id for a in self.applications)

    def credit_received(self, invoice: InvoiceFact) -> Decimal:
        return sum((Decimal(a.amount) for a in self.applications if a.invoice_id == invoice.id), ZERO)

    def credit_given(self, credit_note: InvoiceFact) -> Decimal:
        return sum((Decimal(a.amount) for a in self.applications if a.credit_note_id == credit_note.id), ZERO)


class FallbackMatchStrategy:
    """
    Imputación inferida de notas de crédito vinculadas sólo por original_invoice_id.

    Las notas con al menos una aplicación explícita (en cualquier comprobante)
    quedan excluidas. El consumo de cada nota se lleva de forma global: lo
    que una nota aporta por esta vía, sumado sobre todos los comprobantes,
    nunca supera su total.
    """

    tag = "fallback-match"

    def __init__(self, documents: Iterable[InvoiceFact], explicitly_applied_ids: Iterable[Any]):
        excluded = frozenset(explicitly_applied_ids)
        self._candidates: Dict[Any, List[InvoiceFact]] = {}
        for doc in sorted(documents, key=_document_order):
            if (
                doc.is_credit_note
                and doc.original_invoice_id is not None
                and doc.status not in FALLBACK_EXCLUDED_STATUSES
                and doc.id not in excluded
            ):
                self._candidates.setdefault(doc.original_invoice_id, []).append(doc)
        self._consumed: Dict[Any, Decimal] = {}

    def _remaining(self, credit_note: InvoiceFact) -> Decimal:
        return Decimal(credit_note.total) - self._consumed.get(credit_note.id, ZERO)

    def candidates_for(self, invoice: InvoiceFact) -> List[InvoiceFact]:
        return list(self._candidates.get(invoice.id, []))

    def raw_credit(self, invoice: InvoiceFact) -> Decimal:
        return sum((self._remaining(cn) for cn in self.candidates_for(invoice)), ZERO)

    def capped_credit(self, invoice: InvoiceFact, payments_total: Decimal, explicit_total: Decimal) -> Tuple[Decimal, Decimal]:
        """Devuelve (crédito sin tope, crédito topeado) y registra el consumo"""
        raw = self.raw_credit(invoice)
        cap = max(ZERO, Decimal(invoice.total) - payments_total - explicit_total)
        capped = min(raw, cap)

        left = capped
        for credit_note in self.candidates_for(invoice):
            if left <= ZERO:
                break
            take = min(left, self._remaining(credit_note))
            self._consumed[credit_note.id] = self._consumed.get(credit_note.id, ZERO) + take
            left -= take
        return raw, capped


# ===== CONCILIACIÓN =====

def _document_order(doc: InvoiceFact):
    return (doc.issue_date or date.min, doc.number, str(doc.id))


def reconcile_invoice(
    invoice: InvoiceFact,
    payments: Iterable[PaymentFact],
    explicit: ExplicitApplicationStrategy,
    fallback: FallbackMatchStrategy,
) -> InvoiceBalance:
    total = Decimal(invoice.total)

    if invoice.is_credit_note:
        paid = explicit.credit_given(invoice)
        return InvoiceBalance(
            invoice_id=invoice.id,
            is_credit_note=True,
            total=money(total),
            total_payments=ZERO,
            explicit_credit=ZERO,
            fallback_credit_raw=ZERO,
            fallback_credit=ZERO,
            paid=money(paid),
            balance=money(-(total - paid)),
        )

    payments_total = total_payments(invoice, payments)
    explicit_total = explicit.credit_received(invoice)
    raw, capped = fallback.capped_credit(invoice, payments_total, explicit_total)
    paid = payments_total + explicit_total + capped
    return InvoiceBalance(
        invoice_id=invoice.id,
        is_credit_note=False,
        total=money(total),
        total_payments=money(payments_total),
        explicit_credit=money(explicit_total),
        fallback_credit_raw=money(raw),
        fallback_credit=money(capped),
        paid=money(paid),
        balance=money(total - paid),
    )


def reconcile_supplier(
    documents: Iterable[InvoiceFact],
    payments: Iterable[PaymentFact],
    applications: Iterable[ApplicationFact],
) -> SupplierReconciliation:
    """
    Saldo por comprobante y resumen de un proveedor.

    Sólo se concilian comprobantes CONFIRMED, PARTIAL_PAID o PAID, en orden
    de emisión. El resumen excluye las notas de crédito: su efecto ya está
    reflejado en lo pagado de los comprobantes a los que se imputan.
    """
    documents = list(documents)
    payments = list(payments)
    explicit = ExplicitApplicationStrategy(applications)
    fallback = FallbackMatchStrategy(documents, explicit.applied_credit_note_ids)

    balances = [
        reconcile_invoice(doc, payments, explicit, fallback)
        for doc in sorted(documents, key=_document_order)
        if doc.status in RECONCILED_STATUSES
    ]

    regular = [row for row in balances if not row.is_credit_note]
    total_invoiced = sum((row.total for row in regular), ZERO)
    total_paid = sum((row.paid for row in regular), ZERO)
    summary = SupplierSummary(
        total_invoiced=money(total_invoiced),
        total_paid=money(total_paid),
        total_balance=money(total_invoiced - total_paid),
    )
    return SupplierReconciliation(balances=balances, summary=summary)


def settlement_status(row: InvoiceBalance, tolerance: Decimal = Decimal("0.005")) -> PurchaseInvoiceStatus:
    """Estado que corresponde a un comprobante confirmado según lo pagado"""
    if row.paid <= tolerance:
        return PurchaseInvoiceStatus.CONFIRMED
    if row.total - row.paid <= tolerance:
        return PurchaseInvoiceStatus.PAID
    return PurchaseInvoiceStatus.PARTIAL_PAID
