"""
Tests para el módulo de Compras

Tests que cubren:
- Remitos: confirmación, anulación simétrica, doble confirmación y baja
- Seguimiento de recepción en órdenes de compra
- Comprobantes: confirmación de notas de crédito con devolución de stock
  e imputación automática, anulación e imputación manual
- Guardas de proveedores
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from erp_core.common.exceptions import BusinessRuleViolation, InvalidStateTransition, NotFoundError
from erp_core.modules.inventory.models import StockMovement, StockMovementType
from erp_core.modules.inventory.service import StockLedger
from erp_core.modules.purchases.models import (
    CreditNoteApplication, PurchaseInvoiceStatus, PurchaseOrderStatus, ReceivingNote, ReceivingNoteStatus,
    ReceptionStatus, VoucherType
)
from erp_core.modules.purchases.schemas import (
    PurchaseInvoiceCreate, PurchaseInvoiceLineCreate, PurchaseOrderCreate, PurchaseOrderLineCreate,
    ReceivingNoteCreate, ReceivingNoteLineCreate, ReceivingNoteUpdate, SupplierUpdate
)
from erp_core.modules.purchases.credit_notes import CreditNoteService
from erp_core.modules.purchases.receiving_notes import ReceivingNoteService
from erp_core.modules.purchases.service import PurchaseInvoiceService, PurchaseOrderService, SupplierService


# ===== FIXTURES =====

@pytest.fixture
def stocked_product(db_session, main_warehouse, sample_product, user_id):
    """Producto con 10 unidades en el depósito principal"""
    StockLedger(db_session).apply_movement(
        main_warehouse.tenant_id, main_warehouse.id, sample_product.id,
        Decimal("10"), StockMovementType.PURCHASE, user_id
    )
    db_session.commit()
    return sample_product


def stock_of(db_session, warehouse, product):
    return StockLedger(db_session).get_quantity(warehouse.tenant_id, warehouse.id, product.id)


def make_note(db_session, supplier, warehouse, product, user_id, quantity="5", purchase_invoice_id=None):
    data = ReceivingNoteCreate(
        supplier_id=supplier.id,
        warehouse_id=warehouse.id,
        purchase_invoice_id=purchase_invoice_id,
        lines=[ReceivingNoteLineCreate(product_id=product.id, quantity=Decimal(quantity))]
    )
    return ReceivingNoteService(db_session).create_receiving_note(data, supplier.tenant_id, user_id)


def make_invoice(db_session, supplier, user_id, total, voucher_type=VoucherType.INVOICE_A, product=None,
                 quantity="1", number=None, original_invoice_id=None):
    quantity = Decimal(quantity)
    data = PurchaseInvoiceCreate(
        supplier_id=supplier.id,
        voucher_type=voucher_type,
        number=number or f"0001-{uuid4().hex[:8]}",
        issue_date=date(2024, 3, 1),
        original_invoice_id=original_invoice_id,
        lines=[PurchaseInvoiceLineCreate(
            product_id=product.id if product else None,
            description="Mercadería",
            quantity=quantity,
            unit_price=Decimal(total) / quantity
        )]
    )
    return PurchaseInvoiceService(db_session).create_invoice(data, supplier.tenant_id, user_id)


# ===== TESTS DE REMITOS =====

class TestReceivingNotes:

    def test_confirm_then_cancel_restores_stock(self, db_session, sample_supplier, main_warehouse,
                                                 stocked_product, user_id):
        """Stock 10, remito por 5: confirmar deja 15 y anular vuelve a 10"""
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        assert note.number == "RR-00001"
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("10")

        result = service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        assert result.document.status == ReceivingNoteStatus.CONFIRMED
        assert len(result.side_effects) == 1
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("15")

        result = service.cancel_receiving_note(note.id, note.tenant_id, user_id)
        assert result.document.status == ReceivingNoteStatus.CANCELLED
        assert result.side_effects[0].quantity == Decimal("-5")
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("10")

    def test_double_confirm_fails(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        service.confirm_receiving_note(note.id, note.tenant_id, user_id)

        with pytest.raises(InvalidStateTransition):
            service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("15")

    def test_double_cancel_fails(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        service.cancel_receiving_note(note.id, note.tenant_id, user_id)

        with pytest.raises(InvalidStateTransition):
            service.cancel_receiving_note(note.id, note.tenant_id, user_id)
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("10")

    def test_cancel_draft_fails(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        with pytest.raises(InvalidStateTransition):
            ReceivingNoteService(db_session).cancel_receiving_note(note.id, note.tenant_id, user_id)

    def test_cancel_without_stock_leaves_everything(self, db_session, sample_supplier, main_warehouse,
                                                    sample_product, user_id):
        """Si ya se consumió lo recibido, la anulación falla sin movimientos parciales"""
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, sample_product, user_id, quantity="5")
        service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        StockLedger(db_session).apply_movement(note.tenant_id, main_warehouse.id, sample_product.id,
                                               Decimal("-3"), StockMovementType.ADJUSTMENT, user_id)
        db_session.commit()
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(BusinessRuleViolation):
            service.cancel_receiving_note(note.id, note.tenant_id, user_id)

        assert service.get_receiving_note(note.id, note.tenant_id).status == ReceivingNoteStatus.CONFIRMED
        assert db_session.query(StockMovement).count() == movements_before
        assert stock_of(db_session, main_warehouse, sample_product) == Decimal("2")

    def test_confirm_without_lines_fails(self, db_session, sample_supplier, main_warehouse, user_id):
        service = ReceivingNoteService(db_session)
        note = service.create_receiving_note(
            ReceivingNoteCreate(supplier_id=sample_supplier.id, warehouse_id=main_warehouse.id),
            sample_supplier.tenant_id, user_id
        )
        with pytest.raises(BusinessRuleViolation):
            service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        assert service.get_receiving_note(note.id, note.tenant_id).status == ReceivingNoteStatus.DRAFT

    def test_service_lines_do_not_move_stock(self, db_session, sample_supplier, main_warehouse,
                                             service_product, user_id):
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, service_product, user_id)
        result = service.confirm_receiving_note(note.id, note.tenant_id, user_id)
        assert result.side_effects == []

    def test_delete_only_drafts(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        service = ReceivingNoteService(db_session)
        draft = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        confirmed = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        service.confirm_receiving_note(confirmed.id, confirmed.tenant_id, user_id)

        service.delete_receiving_note(draft.id, draft.tenant_id)
        assert db_session.query(ReceivingNote).filter(ReceivingNote.id == draft.id).first() is None

        with pytest.raises(InvalidStateTransition):
            service.delete_receiving_note(confirmed.id, confirmed.tenant_id)

    def test_update_only_drafts(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        service = ReceivingNoteService(db_session)
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        service.update_receiving_note(note.id, ReceivingNoteUpdate(notes="Llegó con demora"), note.tenant_id)
        service.confirm_receiving_note(note.id, note.tenant_id, user_id)

        with pytest.raises(BusinessRuleViolation):
            service.update_receiving_note(note.id, ReceivingNoteUpdate(notes="otra"), note.tenant_id)

    def test_other_tenant_cannot_confirm(self, db_session, sample_supplier, main_warehouse, stocked_product, user_id):
        note = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id)
        with pytest.raises(NotFoundError):
            ReceivingNoteService(db_session).confirm_receiving_note(note.id, uuid4(), user_id)


class TestPurchaseOrderReceiving:

    def test_receiving_updates_order(self, db_session, sample_supplier, main_warehouse, sample_product, user_id):
        orders = PurchaseOrderService(db_session)
        order = orders.create_purchase_order(
            PurchaseOrderCreate(
                supplier_id=sample_supplier.id,
                lines=[PurchaseOrderLineCreate(product_id=sample_product.id, quantity=Decimal("8"),
                                               unit_price=Decimal("120"))]
            ),
            sample_supplier.tenant_id, user_id
        )
        orders.approve_purchase_order(order.id, order.tenant_id)
        po_line = order.lines[0]

        service = ReceivingNoteService(db_session)

        def receive(quantity):
            note = service.create_receiving_note(
                ReceivingNoteCreate(
                    supplier_id=sample_supplier.id,
                    warehouse_id=main_warehouse.id,
                    purchase_order_id=order.id,
                    lines=[ReceivingNoteLineCreate(product_id=sample_product.id, quantity=Decimal(quantity),
                                                   purchase_order_line_id=po_line.id)]
                ),
                sample_supplier.tenant_id, user_id
            )
            service.confirm_receiving_note(note.id, note.tenant_id, user_id)
            return note

        first = receive("3")
        order = orders.get_purchase_order(order.id, order.tenant_id)
        assert order.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert order.lines[0].received_qty == Decimal("3")

        receive("5")
        order = orders.get_purchase_order(order.id, order.tenant_id)
        assert order.status == PurchaseOrderStatus.COMPLETED

        service.cancel_receiving_note(first.id, first.tenant_id, user_id)
        order = orders.get_purchase_order(order.id, order.tenant_id)
        assert order.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert order.lines[0].received_qty == Decimal("5")

        with pytest.raises(InvalidStateTransition):
            orders.cancel_purchase_order(order.id, order.tenant_id)


# ===== TESTS DE COMPROBANTES =====

class TestPurchaseInvoices:

    def test_reception_status_follows_confirmed_notes(self, db_session, sample_supplier, main_warehouse,
                                                       stocked_product, user_id):
        service = PurchaseInvoiceService(db_session)
        notes = ReceivingNoteService(db_session)
        tenant = sample_supplier.tenant_id
        invoice = make_invoice(db_session, sample_supplier, user_id, "400", product=stocked_product, quantity="4")
        assert service.get_invoice(invoice.id, tenant).reception_status is None

        service.confirm_invoice(invoice.id, tenant, user_id)
        assert service.get_invoice(invoice.id, tenant).reception_status == ReceptionStatus.PENDING

        first = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id, "3",
                          purchase_invoice_id=invoice.id)
        assert service.get_invoice(invoice.id, tenant).reception_status == ReceptionStatus.PENDING
        notes.confirm_receiving_note(first.id, tenant, user_id)
        assert service.get_invoice(invoice.id, tenant).reception_status == ReceptionStatus.PARTIAL

        second = make_note(db_session, sample_supplier, main_warehouse, stocked_product, user_id, "1",
                           purchase_invoice_id=invoice.id)
        notes.confirm_receiving_note(second.id, tenant, user_id)
        assert service.get_invoice(invoice.id, tenant).reception_status == ReceptionStatus.COMPLETE
        listed = service.list_invoices(tenant).items
        assert listed[0].reception_status == ReceptionStatus.COMPLETE

        notes.cancel_receiving_note(second.id, tenant, user_id)
        assert service.get_invoice(invoice.id, tenant).reception_status == ReceptionStatus.PARTIAL

    def test_reception_status_not_tracked(self, db_session, sample_supplier, service_product, stocked_product,
                                          user_id):
        """Sin productos con stock o en notas de crédito no hay estado de recepción"""
        service = PurchaseInvoiceService(db_session)
        tenant = sample_supplier.tenant_id
        services_only = make_invoice(db_session, sample_supplier, user_id, "100", product=service_product)
        service.confirm_invoice(services_only.id, tenant, user_id)
        credit_note = make_invoice(db_session, sample_supplier, user_id, "50", VoucherType.CREDIT_NOTE_A,
                                   product=stocked_product)
        service.confirm_invoice(credit_note.id, tenant, user_id)

        assert service.get_invoice(services_only.id, tenant).reception_status is None
        assert service.get_invoice(credit_note.id, tenant).reception_status is None

    def test_confirm_and_double_confirm(self, db_session, sample_supplier, user_id):
        service = PurchaseInvoiceService(db_session)
        invoice = make_invoice(db_session, sample_supplier, user_id, "1000")
        assert invoice.total == Decimal("1000.00")

        result = service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)
        assert result.document.status == PurchaseInvoiceStatus.CONFIRMED
        assert result.document.confirmed_at is not None

        with pytest.raises(InvalidStateTransition):
            service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)

    def test_credit_note_returns_stock_and_auto_applies(self, db_session, sample_supplier, main_warehouse,
                                                        stocked_product, user_id):
        service = PurchaseInvoiceService(db_session)
        invoice = make_invoice(db_session, sample_supplier, user_id, "1000")
        service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)

        credit_note = make_invoice(db_session, sample_supplier, user_id, "300", VoucherType.CREDIT_NOTE_A,
                                   product=stocked_product, quantity="2", original_invoice_id=invoice.id)
        result = service.confirm_invoice(credit_note.id, credit_note.tenant_id, user_id)

        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("8")
        applications = CreditNoteService(db_session).list_applications(credit_note.id, credit_note.tenant_id)
        assert len(applications) == 1
        assert applications[0].invoice_id == invoice.id
        assert applications[0].amount == Decimal("300.00")
        assert any(isinstance(e, CreditNoteApplication) for e in result.side_effects)

        assert service.get_invoice(invoice.id, invoice.tenant_id).status == PurchaseInvoiceStatus.PARTIAL_PAID
        assert service.get_invoice(credit_note.id, credit_note.tenant_id).status == PurchaseInvoiceStatus.PAID

        with pytest.raises(InvalidStateTransition):
            service.cancel_invoice(credit_note.id, credit_note.tenant_id, user_id)

    def test_credit_note_auto_apply_spills_over(self, db_session, sample_supplier, user_id):
        """El remanente se imputa al resto de comprobantes pendientes"""
        service = PurchaseInvoiceService(db_session)
        first = make_invoice(db_session, sample_supplier, user_id, "200")
        second = make_invoice(db_session, sample_supplier, user_id, "500")
        for invoice in (first, second):
            service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)

        credit_note = make_invoice(db_session, sample_supplier, user_id, "350", VoucherType.CREDIT_NOTE_B,
                                   original_invoice_id=second.id)
        service.confirm_invoice(credit_note.id, credit_note.tenant_id, user_id)

        applications = {
            a.invoice_id: a.amount
            for a in CreditNoteService(db_session).list_applications(credit_note.id, credit_note.tenant_id)
        }
        assert applications == {second.id: Decimal("350.00")}
        assert service.get_invoice(first.id, first.tenant_id).status == PurchaseInvoiceStatus.CONFIRMED

    def test_cancel_unapplied_credit_note_restores_stock(self, db_session, sample_supplier, main_warehouse,
                                                         stocked_product, user_id):
        service = PurchaseInvoiceService(db_session)
        credit_note = make_invoice(db_session, sample_supplier, user_id, "150", VoucherType.CREDIT_NOTE_A,
                                   product=stocked_product, quantity="3")
        service.confirm_invoice(credit_note.id, credit_note.tenant_id, user_id)
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("7")
        assert service.get_invoice(credit_note.id, credit_note.tenant_id).status == PurchaseInvoiceStatus.CONFIRMED

        result = service.cancel_invoice(credit_note.id, credit_note.tenant_id, user_id)

        assert result.document.status == PurchaseInvoiceStatus.CANCELLED
        assert stock_of(db_session, main_warehouse, stocked_product) == Decimal("10")

    def test_credit_note_without_stock_fails_atomically(self, db_session, sample_supplier, main_warehouse,
                                                        sample_product, user_id):
        service = PurchaseInvoiceService(db_session)
        credit_note = make_invoice(db_session, sample_supplier, user_id, "150", VoucherType.CREDIT_NOTE_A,
                                   product=sample_product, quantity="3")

        with pytest.raises(BusinessRuleViolation):
            service.confirm_invoice(credit_note.id, credit_note.tenant_id, user_id)
        assert service.get_invoice(credit_note.id, credit_note.tenant_id).status == PurchaseInvoiceStatus.DRAFT
        assert db_session.query(StockMovement).count() == 0

    def test_manual_application(self, db_session, sample_supplier, user_id):
        service = PurchaseInvoiceService(db_session)
        credit_note = make_invoice(db_session, sample_supplier, user_id, "400", VoucherType.CREDIT_NOTE_A)
        service.confirm_invoice(credit_note.id, credit_note.tenant_id, user_id)
        invoice = make_invoice(db_session, sample_supplier, user_id, "250")
        service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)

        credit_notes = CreditNoteService(db_session)
        with pytest.raises(BusinessRuleViolation):
            credit_notes.apply(credit_note.id, invoice.id, Decimal("300"), invoice.tenant_id, user_id)

        credit_notes.apply(credit_note.id, invoice.id, Decimal("250"), invoice.tenant_id, user_id)

        assert service.get_invoice(invoice.id, invoice.tenant_id).status == PurchaseInvoiceStatus.PAID
        assert service.get_invoice(credit_note.id, credit_note.tenant_id).status == PurchaseInvoiceStatus.PARTIAL_PAID

    def test_delete_only_drafts(self, db_session, sample_supplier, user_id):
        service = PurchaseInvoiceService(db_session)
        invoice = make_invoice(db_session, sample_supplier, user_id, "100")
        service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)

        with pytest.raises(InvalidStateTransition):
            service.delete_invoice(invoice.id, invoice.tenant_id)


# ===== TESTS DE PROVEEDORES =====

class TestSupplierGuards:

    def test_cannot_delete_supplier_with_invoices(self, db_session, sample_supplier, user_id):
        make_invoice(db_session, sample_supplier, user_id, "100")
        with pytest.raises(BusinessRuleViolation):
            SupplierService(db_session).delete_supplier(sample_supplier.id, sample_supplier.tenant_id)

    def test_cannot_change_tax_id_with_confirmed_invoices(self, db_session, sample_supplier, user_id):
        invoice = make_invoice(db_session, sample_supplier, user_id, "100")
        suppliers = SupplierService(db_session)
        suppliers.update_supplier(sample_supplier.id, SupplierUpdate(tax_id="30-99999999-1"), sample_supplier.tenant_id)

        PurchaseInvoiceService(db_session).confirm_invoice(invoice.id, invoice.tenant_id, user_id)
        with pytest.raises(BusinessRuleViolation):
            suppliers.update_supplier(sample_supplier.id, SupplierUpdate(tax_id="30712345678"),
                                      sample_supplier.tenant_id)


# ===== TESTS DE API =====

class TestReceivingNotesAPI:

    def test_confirm_twice_returns_conflict(self, client, auth_headers, sample_supplier, main_warehouse,
                                            stocked_product):
        response = client.post("/receiving-notes/", json={
            "supplier_id": str(sample_supplier.id),
            "warehouse_id": str(main_warehouse.id),
            "lines": [{"product_id": str(stocked_product.id), "quantity": "5"}]
        }, headers=auth_headers)
        assert response.status_code == 201
        note_id = response.json()["id"]

        response = client.post(f"/receiving-notes/{note_id}/confirm", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

        response = client.post(f"/receiving-notes/{note_id}/confirm", headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["kind"] == "InvalidStateTransition"

    def test_delete_supplier_with_invoices_is_business_rule(self, client, auth_headers, db_session,
                                                            sample_supplier, user_id):
        make_invoice(db_session, sample_supplier, user_id, "100")
        response = client.delete(f"/suppliers/{sample_supplier.id}", headers=auth_headers)
        assert response.status_code == 422
        assert response.json()["kind"] == "BusinessRuleViolation"
