"""
Routers FastAPI para el módulo de Tesorería

- Cuentas bancarias, movimientos, conciliación e importación masiva
- Cheques: depósito, acreditación, rechazo, endoso y anulación
- Cajas: apertura y cierre de sesiones, movimientos
- Órdenes de pago a proveedores
"""

from datetime import date
from fastapi import APIRouter, File, Query, UploadFile, status
from typing import List, Optional
from uuid import UUID

from erp_core.dependencies.dbDependencies import db_dependency
from erp_core.dependencies.companyDependencies import TenantContext
from erp_core.common.exceptions import InvalidInputError
from erp_core.modules.treasury.models import CheckStatus, CheckType, PaymentOrderStatus
from erp_core.modules.treasury.banking import BankAccountService, BankMovementService
from erp_core.modules.treasury.bank_import import BankMovementImporter
from erp_core.modules.treasury.checks import CheckService
from erp_core.modules.treasury.cash_sessions import CashSessionService
from erp_core.modules.treasury.payment_orders import PaymentOrderService
from erp_core.modules.treasury.schemas import (
    BankAccountCreate, BankAccountOut, ReconciliationStats,
    BankMovementCreate, BankMovementOut, BankMovementList, ReconcileManyRequest,
    BankImportRequest, BankImportResult,
    CheckCreate, CheckOut, CheckDeposit, CheckReject, CheckEndorse, CheckVoid,
    CashRegisterCreate, CashRegisterOut, CashSessionOpen, CashSessionClose, CashSessionOut,
    CashMovementCreate, CashMovementOut,
    PaymentOrderCreate, PaymentOrderOut
)

XLSX_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/octet-stream",
)

bank_router = APIRouter(prefix="/bank-accounts", tags=["Bank Accounts"])
checks_router = APIRouter(prefix="/checks", tags=["Checks"])
cash_router = APIRouter(prefix="/cash-registers", tags=["Cash Registers"])
payment_orders_router = APIRouter(prefix="/payment-orders", tags=["Payment Orders"])


# ===== BANK ACCOUNTS ENDPOINTS =====

@bank_router.post("/", response_model=BankAccountOut, status_code=status.HTTP_201_CREATED)
def create_bank_account(data: BankAccountCreate, db: db_dependency, context: TenantContext):
    return BankAccountService(db).create_account(data, context.tenant_id)


@bank_router.get("/", response_model=List[BankAccountOut])
def list_bank_accounts(db: db_dependency, context: TenantContext, active_only: bool = Query(True)):
    return BankAccountService(db).list_accounts(context.tenant_id, active_only)


@bank_router.get("/{account_id}", response_model=BankAccountOut)
def get_bank_account(account_id: UUID, db: db_dependency, context: TenantContext):
    return BankAccountService(db).get_account(account_id, context.tenant_id)


@bank_router.get("/{account_id}/reconciliation-stats", response_model=ReconciliationStats)
def get_reconciliation_stats(account_id: UUID, db: db_dependency, context: TenantContext):
    return BankAccountService(db).get_reconciliation_stats(account_id, context.tenant_id)


@bank_router.get("/{account_id}/movements", response_model=BankMovementList)
def list_bank_movements(
    account_id: UUID,
    db: db_dependency,
    context: TenantContext,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    is_reconciled: Optional[bool] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    return BankMovementService(db).list_movements(
        account_id, context.tenant_id, limit, offset, is_reconciled, start_date, end_date
    )


@bank_router.post("/{account_id}/movements", response_model=BankMovementOut, status_code=status.HTTP_201_CREATED)
def create_bank_movement(account_id: UUID, data: BankMovementCreate, db: db_dependency, context: TenantContext):
    return BankMovementService(db).create_movement(account_id, data, context.tenant_id, context.user_id)


@bank_router.post("/{account_id}/movements/import", response_model=BankImportResult)
def import_bank_movements(account_id: UUID, data: BankImportRequest, db: db_dependency, context: TenantContext):
    """
    Importación masiva de movimientos

    Todo o nada: si alguna fila es inválida no se importa ninguna y se
    devuelven los errores por número de fila.
    """
    return BankMovementImporter(db).import_rows(account_id, data.rows, context.tenant_id, context.user_id)


@bank_router.post("/{account_id}/movements/import-file", response_model=BankImportResult)
async def import_bank_movements_file(
    account_id: UUID,
    db: db_dependency,
    context: TenantContext,
    file: UploadFile = File(..., description="Archivo .xlsx con la hoja de movimientos"),
):
    if file.content_type and file.content_type not in XLSX_CONTENT_TYPES:
        raise InvalidInputError("El archivo debe ser un Excel (.xlsx)")
    content = await file.read()
    return BankMovementImporter(db).import_workbook(account_id, content, context.tenant_id, context.user_id)


@bank_router.delete("/movements/{movement_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bank_movement(movement_id: UUID, db: db_dependency, context: TenantContext):
    BankMovementService(db).delete_movement(movement_id, context.tenant_id)


@bank_router.post("/movements/{movement_id}/reconcile", response_model=BankMovementOut)
def reconcile_bank_movement(movement_id: UUID, db: db_dependency, context: TenantContext):
    return BankMovementService(db).reconcile(movement_id, context.tenant_id)


@bank_router.post("/movements/{movement_id}/unreconcile", response_model=BankMovementOut)
def unreconcile_bank_movement(movement_id: UUID, db: db_dependency, context: TenantContext):
    return BankMovementService(db).unreconcile(movement_id, context.tenant_id)


@bank_router.post("/movements/reconcile", response_model=List[BankMovementOut])
def reconcile_bank_movements(data: ReconcileManyRequest, db: db_dependency, context: TenantContext):
    return BankMovementService(db).reconcile_many(data.movement_ids, context.tenant_id)


# ===== CHECKS ENDPOINTS =====

@checks_router.post("/", response_model=CheckOut, status_code=status.HTTP_201_CREATED)
def create_check(data: CheckCreate, db: db_dependency, context: TenantContext):
    return CheckService(db).create_check(data, context.tenant_id, context.user_id)


@checks_router.get("/", response_model=List[CheckOut])
def list_checks(
    db: db_dependency,
    context: TenantContext,
    status: Optional[CheckStatus] = Query(None),
    type: Optional[CheckType] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    return CheckService(db).list_checks(context.tenant_id, status, type, limit, offset)


@checks_router.get("/{check_id}", response_model=CheckOut)
def get_check(check_id: UUID, db: db_dependency, context: TenantContext):
    return CheckService(db).get_check(check_id, context.tenant_id)


@checks_router.delete("/{check_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_check(check_id: UUID, db: db_dependency, context: TenantContext):
    CheckService(db).delete_check(check_id, context.tenant_id)


@checks_router.post("/{check_id}/deposit", response_model=CheckOut)
def deposit_check(check_id: UUID, data: CheckDeposit, db: db_dependency, context: TenantContext):
    """Depositar un cheque en cartera. Genera un movimiento bancario pendiente."""
    return CheckService(db).deposit_check(
        check_id, data.bank_account_id, context.tenant_id, context.user_id, data.deposit_date
    ).document


@checks_router.post("/{check_id}/clear", response_model=CheckOut)
def clear_check(check_id: UUID, db: db_dependency, context: TenantContext):
    return CheckService(db).clear_check(check_id, context.tenant_id).document


@checks_router.post("/{check_id}/reject", response_model=CheckOut)
def reject_check(check_id: UUID, data: CheckReject, db: db_dependency, context: TenantContext):
    """Rechazar un cheque depositado. Elimina el movimiento y restaura el saldo."""
    return CheckService(db).reject_check(check_id, data.reason, context.tenant_id).document


@checks_router.post("/{check_id}/endorse", response_model=CheckOut)
def endorse_check(check_id: UUID, data: CheckEndorse, db: db_dependency, context: TenantContext):
    return CheckService(db).endorse_check(
        check_id, data.endorsed_to_name, context.tenant_id,
        endorsed_to_tax_id=data.endorsed_to_tax_id, supplier_id=data.supplier_id
    ).document


@checks_router.post("/{check_id}/void", response_model=CheckOut)
def void_check(check_id: UUID, data: CheckVoid, db: db_dependency, context: TenantContext):
    return CheckService(db).void_check(check_id, context.tenant_id, data.reason).document


# ===== CASH REGISTERS ENDPOINTS =====

@cash_router.post("/", response_model=CashRegisterOut, status_code=status.HTTP_201_CREATED)
def create_cash_register(data: CashRegisterCreate, db: db_dependency, context: TenantContext):
    return CashSessionService(db).create_register(data, context.tenant_id)


@cash_router.get("/", response_model=List[CashRegisterOut])
def list_cash_registers(db: db_dependency, context: TenantContext):
    return CashSessionService(db).list_registers(context.tenant_id)


@cash_router.post("/{register_id}/sessions", response_model=CashSessionOut, status_code=status.HTTP_201_CREATED)
def open_cash_session(register_id: UUID, data: CashSessionOpen, db: db_dependency, context: TenantContext):
    """
    Abrir sesión de caja

    Falla con 409 si la caja ya tiene una sesión abierta.
    """
    return CashSessionService(db).open_session(
        register_id, data.opening_balance, context.tenant_id, context.user_id, data.notes
    )


@cash_router.get("/{register_id}/sessions", response_model=List[CashSessionOut])
def list_cash_sessions(
    register_id: UUID,
    db: db_dependency,
    context: TenantContext,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return CashSessionService(db).list_sessions(register_id, context.tenant_id, limit, offset)


@cash_router.get("/sessions/{session_id}", response_model=CashSessionOut)
def get_cash_session(session_id: UUID, db: db_dependency, context: TenantContext):
    return CashSessionService(db).get_session(session_id, context.tenant_id)


@cash_router.post("/sessions/{session_id}/close", response_model=CashSessionOut)
def close_cash_session(session_id: UUID, data: CashSessionClose, db: db_dependency, context: TenantContext):
    """Cerrar sesión con arqueo. La diferencia queda registrada como sobrante o faltante."""
    return CashSessionService(db).close_session(
        session_id, data.actual_balance, context.tenant_id, context.user_id, data.notes
    ).document


@cash_router.get("/sessions/{session_id}/movements", response_model=List[CashMovementOut])
def list_cash_movements(session_id: UUID, db: db_dependency, context: TenantContext):
    return CashSessionService(db).list_movements(session_id, context.tenant_id)


@cash_router.post("/sessions/{session_id}/movements", response_model=CashMovementOut,
                  status_code=status.HTTP_201_CREATED)
def record_cash_movement(session_id: UUID, data: CashMovementCreate, db: db_dependency, context: TenantContext):
    return CashSessionService(db).record_movement(session_id, data, context.tenant_id, context.user_id)


@cash_router.delete("/movements/{movement_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cash_movement(movement_id: UUID, db: db_dependency, context: TenantContext):
    CashSessionService(db).delete_movement(movement_id, context.tenant_id)


# ===== PAYMENT ORDERS ENDPOINTS =====

@payment_orders_router.post("/", response_model=PaymentOrderOut, status_code=status.HTTP_201_CREATED)
def create_payment_order(data: PaymentOrderCreate, db: db_dependency, context: TenantContext):
    return PaymentOrderService(db).create_payment_order(data, context.tenant_id, context.user_id)


@payment_orders_router.get("/", response_model=List[PaymentOrderOut])
def list_payment_orders(
    db: db_dependency,
    context: TenantContext,
    supplier_id: Optional[UUID] = Query(None),
    status: Optional[PaymentOrderStatus] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    return PaymentOrderService(db).list_payment_orders(context.tenant_id, supplier_id, status, limit, offset)


@payment_orders_router.get("/{order_id}", response_model=PaymentOrderOut)
def get_payment_order(order_id: UUID, db: db_dependency, context: TenantContext):
    return PaymentOrderService(db).get_payment_order(order_id, context.tenant_id)


@payment_orders_router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment_order(order_id: UUID, db: db_dependency, context: TenantContext):
    PaymentOrderService(db).delete_payment_order(order_id, context.tenant_id)


@payment_orders_router.post("/{order_id}/confirm", response_model=PaymentOrderOut)
def confirm_payment_order(order_id: UUID, db: db_dependency, context: TenantContext):
    """
    Confirmar orden de pago

    Registra egresos de caja, transferencias y cheques propios, y actualiza
    el estado de pago de los comprobantes imputados.
    """
    return PaymentOrderService(db).confirm_payment_order(order_id, context.tenant_id, context.user_id).document


@payment_orders_router.post("/{order_id}/cancel", response_model=PaymentOrderOut)
def cancel_payment_order(order_id: UUID, db: db_dependency, context: TenantContext):
    return PaymentOrderService(db).cancel_payment_order(order_id, context.tenant_id, context.user_id).document
