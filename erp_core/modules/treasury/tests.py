"""
Tests para el módulo de Tesorería

Tests que cubren:
- Cheques: depósito, acreditación, rechazo, endoso, anulación y baja
- Libro bancario: el saldo coincide con la suma firmada de movimientos
- Importación masiva todo o nada
- Sesiones de caja: apertura única, arqueo y ajuste por diferencia
- Órdenes de pago: efectos al confirmar y reversión al anular
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from uuid import uuid4

from openpyxl import Workbook

from erp_core.common.exceptions import (
    BusinessRuleViolation, ConflictError, InvalidInputError, InvalidStateTransition, NotFoundError
)
from erp_core.modules.payables.service import AccountsPayableService
from erp_core.modules.purchases.credit_notes import CreditNoteService
from erp_core.modules.purchases.models import PurchaseInvoiceStatus, VoucherType
from erp_core.modules.purchases.schemas import PurchaseInvoiceCreate, PurchaseInvoiceLineCreate
from erp_core.modules.purchases.service import PurchaseInvoiceService
from erp_core.modules.treasury.bank_import import BankMovementImporter, EMPTY_BATCH_MESSAGE, parse_date, validate_rows
from erp_core.modules.treasury.banking import BankLedger, BankAccountService, BankMovementService
from erp_core.modules.treasury.cash_sessions import CashSessionService
from erp_core.modules.treasury.checks import CheckService
from erp_core.modules.treasury.models import (
    BankMovement, BankMovementType, CashMovement, CashMovementType, CashRegisterStatus, CashSessionStatus,
    CheckStatus, CheckType, PaymentMethod, PaymentOrderStatus
)
from erp_core.modules.treasury.payment_orders import PaymentOrderService
from erp_core.modules.treasury.schemas import (
    BankMovementCreate, CashMovementCreate, CheckCreate, PaymentOrderCreate, PaymentOrderItemCreate,
    PaymentOrderPaymentCreate
)


# ===== FIXTURES =====

@pytest.fixture
def third_party_check(db_session, tenant_id, user_id):
    return CheckService(db_session).create_check(
        CheckCreate(
            type=CheckType.THIRD_PARTY,
            check_number="00012345",
            bank_name="Banco Galicia",
            amount=Decimal("500"),
            issue_date=date(2024, 3, 1),
            due_date=date(2024, 3, 15),
            drawer_name="Distribuidora del Sur S.R.L."
        ),
        tenant_id, user_id
    )


@pytest.fixture
def funded_account(db_session, bank_account, user_id):
    """Cuenta con un depósito inicial de 1000"""
    deposit(db_session, bank_account, user_id, "1000")
    db_session.refresh(bank_account)
    return bank_account


@pytest.fixture
def open_session(db_session, cash_register, user_id):
    return CashSessionService(db_session).open_session(
        cash_register.id, Decimal("500"), cash_register.tenant_id, user_id
    )


@pytest.fixture
def confirmed_invoice(db_session, sample_supplier, user_id):
    service = PurchaseInvoiceService(db_session)
    invoice = service.create_invoice(
        PurchaseInvoiceCreate(
            supplier_id=sample_supplier.id,
            voucher_type=VoucherType.INVOICE_A,
            number="0003-00000456",
            issue_date=date(2024, 3, 1),
            lines=[PurchaseInvoiceLineCreate(description="Mercadería", quantity=Decimal("1"),
                                             unit_price=Decimal("1000"))]
        ),
        sample_supplier.tenant_id, user_id
    )
    service.confirm_invoice(invoice.id, invoice.tenant_id, user_id)
    return invoice


def confirmed_document(db_session, supplier, user_id, number, total, voucher_type=VoucherType.INVOICE_A,
                       original_invoice_id=None):
    service = PurchaseInvoiceService(db_session)
    document = service.create_invoice(
        PurchaseInvoiceCreate(
            supplier_id=supplier.id,
            voucher_type=voucher_type,
            number=number,
            issue_date=date(2024, 3, 10),
            original_invoice_id=original_invoice_id,
            lines=[PurchaseInvoiceLineCreate(description="Servicios", quantity=Decimal("1"),
                                             unit_price=Decimal(total))]
        ),
        supplier.tenant_id, user_id
    )
    service.confirm_invoice(document.id, document.tenant_id, user_id)
    return document


def deposit(db_session, account, user_id, amount, movement_type=BankMovementType.DEPOSIT):
    return BankMovementService(db_session).create_movement(
        account.id,
        BankMovementCreate(type=movement_type, amount=Decimal(amount), movement_date=date(2024, 3, 1),
                           description="Movimiento manual"),
        account.tenant_id, user_id
    )


def balance_of(db_session, account):
    return BankAccountService(db_session).get_account(account.id, account.tenant_id).balance


# ===== TESTS DE CHEQUES =====

class TestChecks:

    def test_third_party_check_starts_in_portfolio(self, third_party_check):
        assert third_party_check.status == CheckStatus.PORTFOLIO
        assert third_party_check.bank_movement_id is None

    def test_deposit_then_reject_restores_balance(self, db_session, third_party_check, bank_account, user_id):
        """Depositar 500 deja el saldo en 500; rechazar lo vuelve a 0 y elimina el movimiento"""
        service = CheckService(db_session)
        tenant = third_party_check.tenant_id

        check = service.deposit_check(third_party_check.id, bank_account.id, tenant, user_id).document
        assert check.status == CheckStatus.DEPOSITED
        assert check.bank_movement_id is not None
        assert balance_of(db_session, bank_account) == Decimal("500")
        movement = db_session.query(BankMovement).filter(BankMovement.check_id == check.id).one()
        assert movement.type == BankMovementType.DEPOSIT
        assert movement.reference == "00012345"
        assert not movement.is_reconciled

        check = service.reject_check(check.id, "Sin fondos suficientes", tenant).document
        assert check.status == CheckStatus.REJECTED
        assert check.rejection_reason == "Sin fondos suficientes"
        assert check.bank_movement_id is None
        assert balance_of(db_session, bank_account) == Decimal("0")
        assert db_session.query(BankMovement).count() == 0

    def test_clear_reconciles_deposit(self, db_session, third_party_check, bank_account, user_id):
        service = CheckService(db_session)
        tenant = third_party_check.tenant_id
        service.deposit_check(third_party_check.id, bank_account.id, tenant, user_id)

        check = service.clear_check(third_party_check.id, tenant).document

        assert check.status == CheckStatus.CLEARED
        assert check.cleared_at is not None
        movement = db_session.query(BankMovement).filter(BankMovement.check_id == check.id).one()
        assert movement.is_reconciled
        assert balance_of(db_session, bank_account) == Decimal("500")

        with pytest.raises(InvalidStateTransition):
            service.reject_check(check.id, "tarde", tenant)

    def test_double_deposit_fails(self, db_session, third_party_check, bank_account, user_id):
        service = CheckService(db_session)
        tenant = third_party_check.tenant_id
        service.deposit_check(third_party_check.id, bank_account.id, tenant, user_id)

        with pytest.raises(InvalidStateTransition):
            service.deposit_check(third_party_check.id, bank_account.id, tenant, user_id)
        assert balance_of(db_session, bank_account) == Decimal("500")

    def test_deposit_into_inactive_account_fails(self, db_session, third_party_check, bank_account, user_id):
        bank_account.is_active = False
        db_session.commit()

        with pytest.raises(BusinessRuleViolation):
            CheckService(db_session).deposit_check(third_party_check.id, bank_account.id,
                                                   third_party_check.tenant_id, user_id)
        check = CheckService(db_session).get_check(third_party_check.id, third_party_check.tenant_id)
        assert check.status == CheckStatus.PORTFOLIO

    def test_deposit_movement_cannot_be_deleted_directly(self, db_session, third_party_check, bank_account, user_id):
        CheckService(db_session).deposit_check(third_party_check.id, bank_account.id,
                                               third_party_check.tenant_id, user_id)
        movement = db_session.query(BankMovement).one()

        with pytest.raises(BusinessRuleViolation):
            BankMovementService(db_session).delete_movement(movement.id, movement.tenant_id)

    def test_endorse(self, db_session, third_party_check, sample_supplier):
        check = CheckService(db_session).endorse_check(
            third_party_check.id, "Ferretería Mayorista S.A.", third_party_check.tenant_id,
            endorsed_to_tax_id="30712345678", supplier_id=sample_supplier.id
        ).document

        assert check.status == CheckStatus.ENDORSED
        assert check.endorsed_to_name == "Ferretería Mayorista S.A."
        assert check.supplier_id == sample_supplier.id

    def test_void_records_reason(self, db_session, third_party_check):
        check = CheckService(db_session).void_check(third_party_check.id, third_party_check.tenant_id,
                                                    "Cheque extraviado").document
        assert check.status == CheckStatus.VOIDED
        assert "Cheque extraviado" in check.notes

    def test_deposited_check_cannot_be_voided(self, db_session, third_party_check, bank_account, user_id):
        service = CheckService(db_session)
        tenant = third_party_check.tenant_id
        service.deposit_check(third_party_check.id, bank_account.id, tenant, user_id)

        with pytest.raises(InvalidStateTransition):
            service.void_check(third_party_check.id, tenant, "Error de carga")
        assert service.get_check(third_party_check.id, tenant).status == CheckStatus.DEPOSITED
        assert db_session.query(BankMovement).count() == 1
        assert balance_of(db_session, bank_account) == Decimal("500")

    def test_delete_rules(self, db_session, third_party_check, bank_account, tenant_id, user_id):
        service = CheckService(db_session)
        other = service.create_check(
            CheckCreate(type=CheckType.THIRD_PARTY, check_number="00099999", bank_name="Banco Galicia",
                        amount=Decimal("50"), issue_date=date(2024, 3, 1), due_date=date(2024, 3, 1)),
            tenant_id, user_id
        )
        service.deposit_check(other.id, bank_account.id, tenant_id, user_id)

        service.delete_check(third_party_check.id, tenant_id)
        with pytest.raises(NotFoundError):
            service.get_check(third_party_check.id, tenant_id)

        with pytest.raises(InvalidStateTransition):
            service.delete_check(other.id, tenant_id)

    def test_duplicate_check_conflicts(self, db_session, third_party_check, tenant_id, user_id):
        with pytest.raises(ConflictError):
            CheckService(db_session).create_check(
                CheckCreate(type=CheckType.THIRD_PARTY, check_number="00012345", bank_name="Banco Galicia",
                            amount=Decimal("10"), issue_date=date(2024, 3, 1), due_date=date(2024, 3, 2)),
                tenant_id, user_id
            )

    def test_own_check_requires_account(self, db_session, tenant_id, user_id):
        with pytest.raises(InvalidInputError):
            CheckService(db_session).create_check(
                CheckCreate(type=CheckType.OWN, check_number="1", bank_name="Banco Nación",
                            amount=Decimal("10"), issue_date=date(2024, 3, 1), due_date=date(2024, 3, 2)),
                tenant_id, user_id
            )


# ===== TESTS DEL LIBRO BANCARIO =====

class TestBankLedger:

    def test_balance_matches_movements(self, db_session, funded_account, third_party_check, user_id):
        tenant = funded_account.tenant_id
        deposit(db_session, funded_account, user_id, "120.35", BankMovementType.FEE)
        withdrawal = deposit(db_session, funded_account, user_id, "300", BankMovementType.WITHDRAWAL)
        deposit(db_session, funded_account, user_id, "15.10", BankMovementType.INTEREST)
        checks = CheckService(db_session)
        checks.deposit_check(third_party_check.id, funded_account.id, tenant, user_id)
        checks.reject_check(third_party_check.id, "Firma no coincide", tenant)
        BankMovementService(db_session).delete_movement(withdrawal.id, tenant)

        balance = balance_of(db_session, funded_account)
        assert balance == Decimal("894.75")
        assert BankLedger(db_session).recompute_balance(funded_account.id, tenant) == balance

    def test_reconciled_movement_cannot_be_deleted(self, db_session, funded_account):
        service = BankMovementService(db_session)
        movement = db_session.query(BankMovement).one()
        service.reconcile(movement.id, movement.tenant_id)

        with pytest.raises(BusinessRuleViolation):
            service.delete_movement(movement.id, movement.tenant_id)

        service.unreconcile(movement.id, movement.tenant_id)
        service.delete_movement(movement.id, movement.tenant_id)
        assert balance_of(db_session, funded_account) == Decimal("0")

    def test_reconcile_many_requires_all_ids(self, db_session, funded_account, user_id):
        service = BankMovementService(db_session)
        movement = db_session.query(BankMovement).one()
        with pytest.raises(NotFoundError):
            service.reconcile_many([movement.id, uuid4()], movement.tenant_id)
        assert not db_session.query(BankMovement).one().is_reconciled

    def test_reconciliation_stats(self, db_session, funded_account, user_id):
        deposit(db_session, funded_account, user_id, "10", BankMovementType.FEE)
        movement = db_session.query(BankMovement).filter(BankMovement.type == BankMovementType.DEPOSIT).one()
        BankMovementService(db_session).reconcile(movement.id, movement.tenant_id)

        stats = BankAccountService(db_session).get_reconciliation_stats(funded_account.id, funded_account.tenant_id)
        assert (stats.total, stats.reconciled, stats.pending) == (2, 1, 1)
        assert stats.percentage == Decimal("50.00")


# ===== TESTS DE IMPORTACIÓN =====

VALID_ROWS = [
    {"date": "15/03/2024", "type": "deposit", "amount": "1000", "description": "Depósito en efectivo"},
    {"date": "2024-03-16", "type": "fee", "amount": "12.50", "description": "Comisión mantenimiento",
     "statement_number": "EXT-03"},
    {"date": "03/17/2024", "type": "TRANSFER_IN", "amount": 250, "description": "Transferencia cliente",
     "reference": "TRF-889"},
]


class TestBankImport:

    def test_one_bad_row_imports_nothing(self, db_session, bank_account, user_id):
        rows = VALID_ROWS + [{"date": "31/02/2024", "type": "deposit", "amount": "5", "description": "Fecha mala"}]

        result = BankMovementImporter(db_session).import_rows(bank_account.id, rows, bank_account.tenant_id, user_id)

        assert result.success is False
        assert result.imported == 0
        assert [e.row for e in result.errors] == [4]
        assert db_session.query(BankMovement).count() == 0
        assert balance_of(db_session, bank_account) == Decimal("0")

    def test_valid_batch_updates_balance(self, db_session, bank_account, user_id):
        result = BankMovementImporter(db_session).import_rows(bank_account.id, VALID_ROWS,
                                                              bank_account.tenant_id, user_id)

        assert result.success is True
        assert result.imported == 3
        assert balance_of(db_session, bank_account) == Decimal("1237.50")
        dates = sorted(m.movement_date for m in db_session.query(BankMovement).all())
        assert dates == [date(2024, 3, 15), date(2024, 3, 16), date(2024, 3, 17)]

    def test_empty_batch(self):
        report = validate_rows([{}, {"date": None, "description": "  "}])
        assert not report.is_valid
        assert report.errors[0].row == 0
        assert report.errors[0].errors == [EMPTY_BATCH_MESSAGE]

    def test_errors_are_collected_per_row(self):
        report = validate_rows([
            {"date": "", "type": "cheque", "amount": "-3", "description": "x"},
            VALID_ROWS[0],
        ])
        assert len(report.errors) == 1
        assert report.errors[0].row == 1
        assert len(report.errors[0].errors) == 3
        assert len(report.movements) == 1

    @pytest.mark.parametrize("amount", ["1e30", "-1e30", "0.001", "10000000000000", "9999999999999.999"])
    def test_out_of_range_amount_rejects_batch(self, db_session, bank_account, user_id, amount):
        rows = VALID_ROWS + [{"date": "01/03/2024", "type": "deposit", "amount": amount, "description": "x"}]

        result = BankMovementImporter(db_session).import_rows(bank_account.id, rows, bank_account.tenant_id, user_id)

        assert result.success is False
        assert result.imported == 0
        assert [e.row for e in result.errors] == [4]
        assert db_session.query(BankMovement).count() == 0
        assert balance_of(db_session, bank_account) == Decimal("0")

    def test_amount_is_rounded_to_cents(self):
        report = validate_rows([{"date": "01/03/2024", "type": "deposit", "amount": "9999999999999.994",
                                 "description": "Tope"}])
        assert report.is_valid
        assert report.movements[0].amount == Decimal("9999999999999.99")

    @pytest.mark.parametrize("value,expected", [
        ("01/02/2024", date(2024, 2, 1)),
        ("2024-02-01", date(2024, 2, 1)),
        ("12/31/2024", date(2024, 12, 31)),
        (datetime(2024, 5, 4, 10, 30), date(2024, 5, 4)),
        ("2024/02/01", None),
        ("30/02/2024", None),
    ])
    def test_parse_date(self, value, expected):
        assert parse_date(value) == expected

    def test_import_workbook(self, db_session, bank_account, user_id):
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Movimientos"
        sheet.append(["Fecha", "Tipo", "Monto", "Descripción", "Referencia", "Extracto"])
        sheet.append([datetime(2024, 3, 1), "deposit", 800, "Depósito", None, "EXT-01"])
        sheet.append([datetime(2024, 3, 2), "debit", 45.5, "Débito automático", "SERV", "EXT-01"])
        buffer = BytesIO()
        workbook.save(buffer)

        result = BankMovementImporter(db_session).import_workbook(bank_account.id, buffer.getvalue(),
                                                                  bank_account.tenant_id, user_id)

        assert result.success is True
        assert result.imported == 2
        assert balance_of(db_session, bank_account) == Decimal("754.50")

    def test_workbook_without_sheet(self, db_session, bank_account, user_id):
        workbook = Workbook()
        workbook.active.title = "Hoja1"
        buffer = BytesIO()
        workbook.save(buffer)

        with pytest.raises(InvalidInputError):
            BankMovementImporter(db_session).import_workbook(bank_account.id, buffer.getvalue(),
                                                             bank_account.tenant_id, user_id)


# ===== TESTS DE CAJA =====

class TestCashSessions:

    def test_only_one_open_session(self, db_session, cash_register, open_session, user_id):
        with pytest.raises(ConflictError):
            CashSessionService(db_session).open_session(cash_register.id, Decimal("0"),
                                                        cash_register.tenant_id, user_id)

    def test_close_records_difference_and_adjustment(self, db_session, open_session, user_id):
        service = CashSessionService(db_session)
        tenant = open_session.tenant_id
        service.record_movement(open_session.id, CashMovementCreate(
            type=CashMovementType.INCOME, amount=Decimal("300"), description="Cobranza mostrador"), tenant, user_id)
        service.record_movement(open_session.id, CashMovementCreate(
            type=CashMovementType.EXPENSE, amount=Decimal("120"), description="Compra de insumos"), tenant, user_id)

        session = service.get_session(open_session.id, tenant)
        assert session.expected_balance == Decimal("680")

        session = service.close_session(open_session.id, Decimal("670"), tenant, user_id, "Faltan 10").document

        assert session.status == CashSessionStatus.CLOSED
        assert session.actual_balance == Decimal("670")
        assert session.difference == Decimal("-10")
        assert session.expected_balance == Decimal("680")

        movements = service.list_movements(session.id, tenant)
        adjustments = [m for m in movements if m.type == CashMovementType.ADJUSTMENT]
        assert len(adjustments) == 1
        assert adjustments[0].amount == Decimal("-10")
        assert sum(m.signed_amount for m in movements) == Decimal("670")

    def test_close_without_difference_adds_no_adjustment(self, db_session, open_session, user_id):
        service = CashSessionService(db_session)
        service.close_session(open_session.id, Decimal("500"), open_session.tenant_id, user_id)

        types = sorted(m.type.value for m in service.list_movements(open_session.id, open_session.tenant_id))
        assert types == ["closing", "opening"]

    def test_reopen_after_close(self, db_session, cash_register, open_session, user_id):
        service = CashSessionService(db_session)
        tenant = cash_register.tenant_id
        service.close_session(open_session.id, Decimal("500"), tenant, user_id)

        with pytest.raises(InvalidStateTransition):
            service.close_session(open_session.id, Decimal("500"), tenant, user_id)

        second = service.open_session(cash_register.id, Decimal("500"), tenant, user_id)
        assert second.session_number == 2
        assert service.get_open_session(cash_register.id, tenant).id == second.id

    def test_closed_session_rejects_movements(self, db_session, open_session, user_id):
        service = CashSessionService(db_session)
        tenant = open_session.tenant_id
        service.close_session(open_session.id, Decimal("500"), tenant, user_id)

        with pytest.raises(BusinessRuleViolation):
            service.record_movement(open_session.id, CashMovementCreate(
                type=CashMovementType.INCOME, amount=Decimal("1"), description="Tarde"), tenant, user_id)

    def test_delete_movement(self, db_session, open_session, user_id):
        service = CashSessionService(db_session)
        tenant = open_session.tenant_id
        movement = service.record_movement(open_session.id, CashMovementCreate(
            type=CashMovementType.ADJUSTMENT, amount=Decimal("-25"), description="Billete falso"), tenant, user_id)
        assert service.get_session(open_session.id, tenant).expected_balance == Decimal("475")

        service.delete_movement(movement.id, tenant)
        assert service.get_session(open_session.id, tenant).expected_balance == Decimal("500")

        opening = db_session.query(CashMovement).filter(CashMovement.type == CashMovementType.OPENING).one()
        with pytest.raises(BusinessRuleViolation):
            service.delete_movement(opening.id, tenant)

    def test_inactive_register_cannot_open(self, db_session, cash_register, user_id):
        cash_register.status = CashRegisterStatus.INACTIVE
        db_session.commit()
        with pytest.raises(BusinessRuleViolation):
            CashSessionService(db_session).open_session(cash_register.id, Decimal("0"),
                                                        cash_register.tenant_id, user_id)


# ===== TESTS DE ÓRDENES DE PAGO =====

def mixed_order(db_session, supplier, invoice, account, register, user_id):
    """Orden por 600: 200 en efectivo, 300 por transferencia y 100 con cheque propio"""
    return PaymentOrderService(db_session).create_payment_order(
        PaymentOrderCreate(
            supplier_id=supplier.id,
            payment_date=date(2024, 3, 20),
            items=[PaymentOrderItemCreate(invoice_id=invoice.id, amount=Decimal("600"))],
            payments=[
                PaymentOrderPaymentCreate(method=PaymentMethod.CASH, amount=Decimal("200"),
                                          cash_register_id=register.id),
                PaymentOrderPaymentCreate(method=PaymentMethod.TRANSFER, amount=Decimal("300"),
                                          bank_account_id=account.id),
                PaymentOrderPaymentCreate(method=PaymentMethod.CHECK, amount=Decimal("100"),
                                          bank_account_id=account.id, check_number="70000001",
                                          check_due_date=date(2024, 4, 20)),
            ]
        ),
        supplier.tenant_id, user_id
    )


def cash_order(db_session, supplier, invoice, register, user_id, amount):
    return PaymentOrderService(db_session).create_payment_order(
        PaymentOrderCreate(
            supplier_id=supplier.id,
            items=[PaymentOrderItemCreate(invoice_id=invoice.id, amount=Decimal(amount))],
            payments=[PaymentOrderPaymentCreate(method=PaymentMethod.CASH, amount=Decimal(amount),
                                                cash_register_id=register.id)]
        ),
        supplier.tenant_id, user_id
    )


class TestPaymentOrders:

    def test_confirm_and_cancel(self, db_session, sample_supplier, confirmed_invoice, funded_account,
                                cash_register, open_session, user_id):
        service = PaymentOrderService(db_session)
        invoices = PurchaseInvoiceService(db_session)
        tenant = sample_supplier.tenant_id
        order = mixed_order(db_session, sample_supplier, confirmed_invoice, funded_account, cash_register, user_id)
        assert order.number == "OP-00001"
        assert order.total == Decimal("600")

        result = service.confirm_payment_order(order.id, tenant, user_id)

        assert result.document.status == PaymentOrderStatus.CONFIRMED
        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.PARTIAL_PAID
        assert CashSessionService(db_session).get_session(open_session.id, tenant).expected_balance == Decimal("300")
        assert balance_of(db_session, funded_account) == Decimal("700")
        transfer = db_session.query(BankMovement).filter(BankMovement.payment_order_id == order.id).one()
        assert transfer.type == BankMovementType.TRANSFER_OUT
        assert not transfer.is_reconciled

        checks = CheckService(db_session).list_checks(tenant, check_type=CheckType.OWN)
        assert len(checks) == 1
        own_check = checks[0]
        assert own_check.status == CheckStatus.DELIVERED
        assert own_check.bank_name == "Banco Nación"
        assert own_check.payment_order_id == order.id

        result = service.cancel_payment_order(order.id, tenant, user_id)

        assert result.document.status == PaymentOrderStatus.CANCELLED
        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.CONFIRMED
        assert CashSessionService(db_session).get_session(open_session.id, tenant).expected_balance == Decimal("500")
        assert balance_of(db_session, funded_account) == Decimal("1000")
        assert CheckService(db_session).get_check(own_check.id, tenant).status == CheckStatus.VOIDED

        with pytest.raises(InvalidStateTransition):
            service.cancel_payment_order(order.id, tenant, user_id)

    def test_generated_records_are_protected(self, db_session, sample_supplier, confirmed_invoice, funded_account,
                                             cash_register, open_session, user_id):
        tenant = sample_supplier.tenant_id
        order = mixed_order(db_session, sample_supplier, confirmed_invoice, funded_account, cash_register, user_id)
        PaymentOrderService(db_session).confirm_payment_order(order.id, tenant, user_id)

        own_check = CheckService(db_session).list_checks(tenant, check_type=CheckType.OWN)[0]
        with pytest.raises(BusinessRuleViolation):
            CheckService(db_session).void_check(own_check.id, tenant)
        with pytest.raises(BusinessRuleViolation):
            CheckService(db_session).delete_check(own_check.id, tenant)

        cash_movement = db_session.query(CashMovement).filter(CashMovement.payment_order_id == order.id).one()
        with pytest.raises(BusinessRuleViolation):
            CashSessionService(db_session).delete_movement(cash_movement.id, tenant)

        transfer = db_session.query(BankMovement).filter(BankMovement.payment_order_id == order.id).one()
        with pytest.raises(BusinessRuleViolation):
            BankMovementService(db_session).delete_movement(transfer.id, tenant)

    def test_reconciled_transfer_blocks_cancel(self, db_session, sample_supplier, confirmed_invoice, funded_account,
                                               cash_register, open_session, user_id):
        tenant = sample_supplier.tenant_id
        service = PaymentOrderService(db_session)
        order = mixed_order(db_session, sample_supplier, confirmed_invoice, funded_account, cash_register, user_id)
        service.confirm_payment_order(order.id, tenant, user_id)
        transfer = db_session.query(BankMovement).filter(BankMovement.payment_order_id == order.id).one()
        BankMovementService(db_session).reconcile(transfer.id, tenant)

        with pytest.raises(BusinessRuleViolation):
            service.cancel_payment_order(order.id, tenant, user_id)
        assert service.get_payment_order(order.id, tenant).status == PaymentOrderStatus.CONFIRMED
        assert balance_of(db_session, funded_account) == Decimal("700")

    def test_full_payment_marks_invoice_paid(self, db_session, sample_supplier, confirmed_invoice,
                                             cash_register, open_session, user_id):
        tenant = sample_supplier.tenant_id
        service = PaymentOrderService(db_session)
        first = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "400")
        second = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "600")
        service.confirm_payment_order(first.id, tenant, user_id)
        service.confirm_payment_order(second.id, tenant, user_id)

        invoice = PurchaseInvoiceService(db_session).get_invoice(confirmed_invoice.id, tenant)
        assert invoice.status == PurchaseInvoiceStatus.PAID

    def test_manual_application_resyncs_fallback_invoice(self, db_session, sample_supplier, confirmed_invoice,
                                                         cash_register, open_session, user_id):
        """
        Una nota vinculada sólo por original_invoice_id cubre 300 del comprobante;
        al imputarla explícitamente a otro, el original vuelve a tener saldo.
        """
        tenant = sample_supplier.tenant_id
        orders = PaymentOrderService(db_session)
        invoices = PurchaseInvoiceService(db_session)

        full = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "1000")
        orders.confirm_payment_order(full.id, tenant, user_id)
        credit_note = confirmed_document(db_session, sample_supplier, user_id, "0003-00000900", "300",
                                         VoucherType.CREDIT_NOTE_A, original_invoice_id=confirmed_invoice.id)
        assert CreditNoteService(db_session).list_applications(credit_note.id, tenant) == []

        orders.cancel_payment_order(full.id, tenant, user_id)
        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.PARTIAL_PAID
        rest = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "700")
        orders.confirm_payment_order(rest.id, tenant, user_id)
        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.PAID

        other = confirmed_document(db_session, sample_supplier, user_id, "0003-00000901", "500")
        CreditNoteService(db_session).apply(credit_note.id, other.id, Decimal("300"), tenant, user_id)

        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.PARTIAL_PAID
        assert invoices.get_invoice(other.id, tenant).status == PurchaseInvoiceStatus.PARTIAL_PAID
        _, result = AccountsPayableService(db_session).reconcile(sample_supplier.id, tenant)
        assert result.for_invoice(confirmed_invoice.id).balance == Decimal("300.00")

        # El saldo liberado vuelve a poder pagarse
        settle = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "300")
        orders.confirm_payment_order(settle.id, tenant, user_id)
        assert invoices.get_invoice(confirmed_invoice.id, tenant).status == PurchaseInvoiceStatus.PAID

    def test_overpayment_rejected(self, db_session, sample_supplier, confirmed_invoice, cash_register,
                                  open_session, user_id):
        tenant = sample_supplier.tenant_id
        service = PaymentOrderService(db_session)
        first = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "700")
        second = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "700")
        service.confirm_payment_order(first.id, tenant, user_id)

        with pytest.raises(BusinessRuleViolation):
            service.confirm_payment_order(second.id, tenant, user_id)
        assert service.get_payment_order(second.id, tenant).status == PaymentOrderStatus.DRAFT
        assert db_session.query(CashMovement).filter(CashMovement.payment_order_id == second.id).count() == 0

    def test_cash_payment_requires_open_session(self, db_session, sample_supplier, confirmed_invoice,
                                                cash_register, user_id):
        tenant = sample_supplier.tenant_id
        service = PaymentOrderService(db_session)
        order = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "100")

        with pytest.raises(BusinessRuleViolation):
            service.confirm_payment_order(order.id, tenant, user_id)
        assert service.get_payment_order(order.id, tenant).status == PaymentOrderStatus.DRAFT
        invoice = PurchaseInvoiceService(db_session).get_invoice(confirmed_invoice.id, tenant)
        assert invoice.status == PurchaseInvoiceStatus.CONFIRMED

    def test_delete_only_drafts(self, db_session, sample_supplier, confirmed_invoice, cash_register,
                                open_session, user_id):
        tenant = sample_supplier.tenant_id
        service = PaymentOrderService(db_session)
        draft = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "10")
        confirmed = cash_order(db_session, sample_supplier, confirmed_invoice, cash_register, user_id, "20")
        service.confirm_payment_order(confirmed.id, tenant, user_id)

        service.delete_payment_order(draft.id, tenant)
        with pytest.raises(InvalidStateTransition):
            service.delete_payment_order(confirmed.id, tenant)


# ===== TESTS DE API =====

class TestTreasuryAPI:

    def test_check_deposit_and_reject(self, client, auth_headers, third_party_check, bank_account):
        response = client.post(f"/checks/{third_party_check.id}/deposit",
                               json={"bank_account_id": str(bank_account.id)}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "deposited"

        response = client.get(f"/bank-accounts/{bank_account.id}", headers=auth_headers)
        assert Decimal(response.json()["balance"]) == Decimal("500")

        response = client.post(f"/checks/{third_party_check.id}/reject",
                               json={"reason": "Sin fondos"}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["rejection_reason"] == "Sin fondos"

        response = client.post(f"/checks/{third_party_check.id}/reject",
                               json={"reason": "Sin fondos"}, headers=auth_headers)
        assert response.status_code == 409

    def test_import_returns_row_errors(self, client, auth_headers, bank_account):
        response = client.post(
            f"/bank-accounts/{bank_account.id}/movements/import",
            json={"rows": [{"date": "hoy", "type": "deposit", "amount": "10", "description": "x"}]},
            headers=auth_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["imported"] == 0
        assert data["errors"][0]["row"] == 1

    def test_open_session_twice(self, client, auth_headers, cash_register):
        url = f"/cash-registers/{cash_register.id}/sessions"
        response = client.post(url, json={"opening_balance": "100"}, headers=auth_headers)
        assert response.status_code == 201
        assert response.json()["session_number"] == 1

        response = client.post(url, json={"opening_balance": "100"}, headers=auth_headers)
        assert response.status_code == 409
        assert response.json()["kind"] == "ConflictError"
