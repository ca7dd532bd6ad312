"""
Fixtures compartidas para los tests de los módulos

Usa SQLite en memoria con una única conexión compartida; las tablas se
crean y destruyen en cada test.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

import pytest
from decimal import Decimal
from uuid import uuid4
from fastapi.testclient import TestClient

from erp_core.database.database import Base, SessionLocal, sync_engine, get_db
from erp_core.main import app
from erp_core.modules.inventory.models import Warehouse, WarehouseType, Product
from erp_core.modules.purchases.models import Supplier
from erp_core.modules.treasury.models import BankAccount, CashRegister, CashRegisterStatus


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=sync_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=sync_engine)


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def main_warehouse(db_session, tenant_id):
    warehouse = Warehouse(tenant_id=tenant_id, name="Depósito Central", type=WarehouseType.MAIN, is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def secondary_warehouse(db_session, tenant_id):
    warehouse = Warehouse(tenant_id=tenant_id, name="Sucursal Norte", type=WarehouseType.SECONDARY, is_active=True)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def sample_product(db_session, tenant_id):
    product = Product(tenant_id=tenant_id, code="TOR-001", name="Tornillo 8mm", track_stock=True)
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def service_product(db_session, tenant_id):
    product = Product(tenant_id=tenant_id, code="FLETE", name="Servicio de flete", track_stock=False)
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product


@pytest.fixture
def sample_supplier(db_session, tenant_id):
    supplier = Supplier(tenant_id=tenant_id, name="Ferretería Mayorista S.A.", tax_id="30712345678",
                        payment_term_days=30)
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier


@pytest.fixture
def bank_account(db_session, tenant_id):
    account = BankAccount(tenant_id=tenant_id, bank_name="Banco Nación", account_number="0011-2233",
                          balance=Decimal("0"))
    db_session.add(account)
    db_session.commit()
    db_session.refresh(account)
    return account


@pytest.fixture
def cash_register(db_session, tenant_id):
    register = CashRegister(tenant_id=tenant_id, code="CAJA-1", name="Caja principal",
                            status=CashRegisterStatus.ACTIVE)
    db_session.add(register)
    db_session.commit()
    db_session.refresh(register)
    return register


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(tenant_id, user_id):
    return {"X-Company-ID": str(tenant_id), "X-User-ID": str(user_id)}
