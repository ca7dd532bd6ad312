"""
Tests para la conciliación de cuenta corriente de proveedores

Cubre:
- Pagos: sólo cuentan las órdenes confirmadas
- Notas de crédito con imputación explícita y por vínculo inferido
- Tope del vínculo inferido: un comprobante nunca queda sobrepagado
- Resumen por proveedor y sincronización de estados de pago
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from erp_core.modules.payables.reconciliation import (
    InvoiceFact, PaymentFact, ApplicationFact, reconcile_supplier, settlement_status
)
from erp_core.modules.purchases.models import PurchaseInvoiceStatus as S
from erp_core.modules.treasury.models import PaymentOrderStatus


def invoice(total, status=S.CONFIRMED, day=1, number="0001-00000001"):
    return InvoiceFact(id=uuid4(), total=Decimal(total), status=status,
                       issue_date=date(2024, 3, day), number=number)


def credit_note(total, original=None, status=S.CONFIRMED, day=2, number="0001-00000101"):
    return InvoiceFact(id=uuid4(), total=Decimal(total), status=status, is_credit_note=True,
                       original_invoice_id=original.id if original else None,
                       issue_date=date(2024, 3, day), number=number)


def payment(inv, amount, status=PaymentOrderStatus.CONFIRMED):
    return PaymentFact(invoice_id=inv.id, amount=Decimal(amount), order_status=status)


# ===== TESTS DE PAGOS =====

class TestPayments:

    def test_only_confirmed_orders_count(self):
        inv = invoice("1000")
        result = reconcile_supplier(
            [inv],
            [payment(inv, "300"), payment(inv, "200", PaymentOrderStatus.DRAFT),
             payment(inv, "100", PaymentOrderStatus.CANCELLED)],
            []
        )
        row = result.for_invoice(inv.id)
        assert row.total_payments == Decimal("300.00")
        assert row.paid == Decimal("300.00")
        assert row.balance == Decimal("700.00")

    def test_draft_and_cancelled_invoices_are_ignored(self):
        draft = invoice("500", status=S.DRAFT)
        cancelled = invoice("400", status=S.CANCELLED)
        result = reconcile_supplier([draft, cancelled], [], [])
        assert result.balances == []
        assert result.summary.total_invoiced == Decimal("0.00")


# ===== TESTS DE NOTAS DE CRÉDITO =====

class TestCreditNotes:

    def test_fallback_match_is_capped(self):
        """INV-1 por 1000 con pago de 400 y nota CN-1 de 700 vinculada sin imputar"""
        inv = invoice("1000")
        cn = credit_note("700", original=inv)

        result = reconcile_supplier([inv, cn], [payment(inv, "400")], [])
        row = result.for_invoice(inv.id)

        assert row.fallback_credit_raw == Decimal("700.00")
        assert row.fallback_credit == Decimal("600.00")
        assert row.paid == Decimal("1000.00")
        assert row.balance == Decimal("0.00")

    def test_explicit_application_disables_fallback(self):
        """Una nota con imputación explícita no se vuelve a contar por vínculo"""
        inv = invoice("1000")
        cn = credit_note("300", original=inv)
        applications = [ApplicationFact(credit_note_id=cn.id, invoice_id=inv.id, amount=Decimal("300"))]

        row = reconcile_supplier([inv, cn], [], applications).for_invoice(inv.id)

        assert row.explicit_credit == Decimal("300.00")
        assert row.fallback_credit == Decimal("0.00")
        assert row.paid == Decimal("300.00")

    def test_partially_applied_note_does_not_fallback_elsewhere(self):
        first = invoice("1000", day=1, number="A-1")
        second = invoice("500", day=3, number="A-2")
        cn = credit_note("400", original=second)
        applications = [ApplicationFact(credit_note_id=cn.id, invoice_id=first.id, amount=Decimal("100"))]

        result = reconcile_supplier([first, second, cn], [], applications)

        assert result.for_invoice(first.id).explicit_credit == Decimal("100.00")
        assert result.for_invoice(second.id).fallback_credit == Decimal("0.00")

    def test_draft_or_cancelled_notes_never_fallback(self):
        inv = invoice("1000")
        cancelled = credit_note("200", original=inv, status=S.CANCELLED)
        draft = credit_note("100", original=inv, status=S.DRAFT, number="0001-00000102")

        row = reconcile_supplier([inv, cancelled, draft], [], []).for_invoice(inv.id)
        assert row.fallback_credit_raw == Decimal("0.00")

    @pytest.mark.parametrize("applied,expected_balance", [
        ("0", "-500.00"),
        ("200", "-300.00"),
        ("500", "0.00"),
    ])
    def test_credit_note_balance(self, applied, expected_balance):
        """Remanente negativo mientras la nota tenga crédito disponible"""
        inv = invoice("1000")
        cn = credit_note("500")
        applications = []
        if Decimal(applied):
            applications.append(ApplicationFact(credit_note_id=cn.id, invoice_id=inv.id, amount=Decimal(applied)))

        row = reconcile_supplier([inv, cn], [], applications).for_invoice(cn.id)

        assert row.is_credit_note
        assert row.paid == Decimal(applied).quantize(Decimal("0.01"))
        assert row.balance == Decimal(expected_balance)

    def test_paid_never_exceeds_total(self):
        """Varias notas vinculadas al mismo comprobante no lo sobrepagan"""
        inv = invoice("1000")
        notes = [credit_note("600", original=inv, number=f"NC-{i}") for i in range(3)]
        explicit_cn = credit_note("150", number="NC-X")
        applications = [ApplicationFact(credit_note_id=explicit_cn.id, invoice_id=inv.id, amount=Decimal("150"))]

        result = reconcile_supplier([inv, explicit_cn] + notes, [payment(inv, "250")], applications)
        row = result.for_invoice(inv.id)

        assert row.fallback_credit + row.explicit_credit + row.total_payments <= row.total
        assert row.balance == Decimal("0.00")

    def test_fallback_credit_consumed_once_across_invoices(self):
        """El consumo de una nota por vínculo se descuenta globalmente"""
        inv = invoice("100")
        cn = credit_note("300", original=inv)

        result = reconcile_supplier([inv, cn], [], [])

        assert result.for_invoice(inv.id).fallback_credit == Decimal("100.00")
        assert result.summary.total_balance == Decimal("0.00")


# ===== TESTS DE RESUMEN Y ESTADO =====

class TestSummary:

    def test_summary_excludes_credit_notes(self):
        first = invoice("1000", day=1, number="A-1")
        second = invoice("250.50", day=5, number="A-2")
        cn = credit_note("100")
        applications = [ApplicationFact(credit_note_id=cn.id, invoice_id=second.id, amount=Decimal("100"))]

        result = reconcile_supplier([first, second, cn], [payment(first, "1000")], applications)

        assert result.summary.total_invoiced == Decimal("1250.50")
        assert result.summary.total_paid == Decimal("1100.00")
        assert result.summary.total_balance == Decimal("150.50")

    def test_reconciliation_is_deterministic(self):
        inv = invoice("1000")
        cn = credit_note("700", original=inv)
        docs, pays = [inv, cn], [payment(inv, "400")]

        assert reconcile_supplier(docs, pays, []).balances == reconcile_supplier(list(reversed(docs)), pays, []).balances

    @pytest.mark.parametrize("paid,expected", [
        ("0", S.CONFIRMED),
        ("0.004", S.CONFIRMED),
        ("10", S.PARTIAL_PAID),
        ("99.996", S.PAID),
        ("100", S.PAID),
    ])
    def test_settlement_status(self, paid, expected):
        inv = invoice("100")
        row = reconcile_supplier([inv], [payment(inv, paid)], []).for_invoice(inv.id)
        assert settlement_status(row) == expected


# ===== TESTS DE API =====

class TestPayablesAPI:

    def test_supplier_statement_endpoint(self, client, auth_headers, sample_supplier):
        response = client.get(f"/payables/suppliers/{sample_supplier.id}/statement", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["supplier_name"] == sample_supplier.name
        assert data["documents"] == []

    def test_statement_unknown_supplier(self, client, auth_headers):
        response = client.get(f"/payables/suppliers/{uuid4()}/statement", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["kind"] == "NotFound"
