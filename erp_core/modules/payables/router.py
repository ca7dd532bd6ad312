from fastapi import APIRouter, Query
from typing import List
from uuid import UUID

from erp_core.dependencies.dbDependencies import db_dependency
from erp_core.dependencies.companyDependencies import TenantContext
from erp_core.modules.payables.service import AccountsPayableService
from erp_core.modules.payables.schemas import SupplierAccountStatement, PendingInvoiceOut, SupplierBalanceRow

payables_router = APIRouter(prefix="/payables", tags=["Accounts Payable"])


@payables_router.get("/suppliers", response_model=List[SupplierBalanceRow])
def list_supplier_balances(
    db: db_dependency,
    context: TenantContext,
    only_with_balance: bool = Query(False, description="Omitir proveedores sin saldo"),
):
    """Saldo de cuenta corriente por proveedor."""
    service = AccountsPayableService(db)
    return service.get_supplier_balances(context.tenant_id, only_with_balance)


@payables_router.get("/suppliers/{supplier_id}/statement", response_model=SupplierAccountStatement)
def get_supplier_statement(supplier_id: UUID, db: db_dependency, context: TenantContext):
    """
    Cuenta corriente de un proveedor

    Comprobantes confirmados con lo pagado y el saldo de cada uno, más el
    resumen total. Se recalcula en cada lectura.
    """
    service = AccountsPayableService(db)
    return service.get_account_statement(supplier_id, context.tenant_id)


@payables_router.get("/suppliers/{supplier_id}/pending-invoices", response_model=List[PendingInvoiceOut])
def get_pending_invoices(supplier_id: UUID, db: db_dependency, context: TenantContext):
    service = AccountsPayableService(db)
    return service.get_pending_invoices(supplier_id, context.tenant_id)
