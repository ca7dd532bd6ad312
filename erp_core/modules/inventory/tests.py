"""
Tests para el libro de stock

- Cada movimiento ajusta el stock materializado en la misma sesión
- El stock nunca queda negativo salvo que se permita explícitamente
- El stock materializado coincide con la suma de movimientos
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from erp_core.common.exceptions import BusinessRuleViolation, InvalidInputError, NotFoundError
from erp_core.modules.inventory.models import StockMovementType, StockReferenceType, WarehouseStock
from erp_core.modules.inventory.schemas import StockAdjustment
from erp_core.modules.inventory.service import StockLedger, InventoryService


# ===== TESTS DEL LIBRO =====

class TestStockLedger:

    def test_movement_creates_stock_row(self, db_session, main_warehouse, sample_product, user_id):
        ledger = StockLedger(db_session)

        movement = ledger.apply_movement(
            tenant_id=main_warehouse.tenant_id,
            warehouse_id=main_warehouse.id,
            product_id=sample_product.id,
            quantity=Decimal("12.5"),
            movement_type=StockMovementType.PURCHASE,
            user_id=user_id,
            reference_type=StockReferenceType.MANUAL
        )
        db_session.commit()

        assert movement.reference_type == "manual"
        assert ledger.get_quantity(main_warehouse.tenant_id, main_warehouse.id, sample_product.id) == Decimal("12.5")

    def test_negative_stock_rejected(self, db_session, main_warehouse, sample_product, user_id):
        ledger = StockLedger(db_session)
        ledger.apply_movement(main_warehouse.tenant_id, main_warehouse.id, sample_product.id,
                              Decimal("3"), StockMovementType.PURCHASE, user_id)

        with pytest.raises(BusinessRuleViolation):
            ledger.apply_movement(main_warehouse.tenant_id, main_warehouse.id, sample_product.id,
                                  Decimal("-4"), StockMovementType.ADJUSTMENT, user_id)

    def test_zero_quantity_rejected(self, db_session, main_warehouse, sample_product, user_id):
        with pytest.raises(InvalidInputError):
            StockLedger(db_session).apply_movement(main_warehouse.tenant_id, main_warehouse.id, sample_product.id,
                                                   Decimal("0"), StockMovementType.ADJUSTMENT, user_id)

    def test_materialized_stock_matches_movements(self, db_session, main_warehouse, sample_product, user_id):
        ledger = StockLedger(db_session)
        tenant = main_warehouse.tenant_id
        for quantity in ("10", "-2.5", "7", "-4"):
            movement_type = StockMovementType.PURCHASE if Decimal(quantity) > 0 else StockMovementType.ADJUSTMENT
            ledger.apply_movement(tenant, main_warehouse.id, sample_product.id, Decimal(quantity), movement_type, user_id)
        db_session.commit()

        assert ledger.get_quantity(tenant, main_warehouse.id, sample_product.id) == Decimal("10.5")
        assert ledger.reconstruct_quantity(tenant, main_warehouse.id, sample_product.id) == Decimal("10.5")

    def test_ensure_available(self, db_session, main_warehouse, sample_product, user_id):
        ledger = StockLedger(db_session)
        ledger.apply_movement(main_warehouse.tenant_id, main_warehouse.id, sample_product.id,
                              Decimal("2"), StockMovementType.PURCHASE, user_id)

        ledger.ensure_available(main_warehouse.tenant_id, main_warehouse.id, sample_product.id, Decimal("2"))
        with pytest.raises(BusinessRuleViolation):
            ledger.ensure_available(main_warehouse.tenant_id, main_warehouse.id, sample_product.id, Decimal("2.001"))

    def test_main_warehouse_required(self, db_session, secondary_warehouse):
        with pytest.raises(BusinessRuleViolation):
            StockLedger(db_session).get_main_warehouse(secondary_warehouse.tenant_id)


# ===== TESTS DEL SERVICIO =====

class TestInventoryService:

    def test_adjust_stock(self, db_session, main_warehouse, sample_product, user_id):
        service = InventoryService(db_session)
        service.adjust_stock(main_warehouse.id, sample_product.id, StockAdjustment(quantity=Decimal("8")),
                             main_warehouse.tenant_id, user_id)
        movement = service.adjust_stock(main_warehouse.id, sample_product.id,
                                        StockAdjustment(quantity=Decimal("-3"), notes="Rotura"),
                                        main_warehouse.tenant_id, user_id)

        assert movement.type == StockMovementType.ADJUSTMENT
        stock = service.get_warehouse_stock(main_warehouse.id, main_warehouse.tenant_id)
        assert len(stock) == 1
        assert stock[0].quantity == Decimal("5")

    def test_adjust_service_product_rejected(self, db_session, main_warehouse, service_product, user_id):
        with pytest.raises(BusinessRuleViolation):
            InventoryService(db_session).adjust_stock(
                main_warehouse.id, service_product.id, StockAdjustment(quantity=Decimal("1")),
                main_warehouse.tenant_id, user_id
            )
        assert db_session.query(WarehouseStock).count() == 0

    def test_other_tenant_cannot_see_warehouse(self, db_session, main_warehouse):
        with pytest.raises(NotFoundError):
            InventoryService(db_session).get_warehouse_stock(main_warehouse.id, uuid4())


# ===== TESTS DE API =====

class TestStockAPI:

    def test_adjust_and_list_movements(self, client, auth_headers, main_warehouse, sample_product):
        response = client.post(
            f"/stock/warehouse/{main_warehouse.id}/product/{sample_product.id}/adjust",
            json={"quantity": "4", "notes": "Inventario inicial"},
            headers=auth_headers
        )
        assert response.status_code == 201

        response = client.get(f"/stock/product/{sample_product.id}/movements", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_missing_tenant_header(self, client, main_warehouse):
        response = client.get(f"/stock/warehouse/{main_warehouse.id}")
        assert response.status_code == 400

    def test_missing_user_header(self, client, tenant_id, main_warehouse):
        response = client.get(f"/stock/warehouse/{main_warehouse.id}", headers={"X-Company-ID": str(tenant_id)})
        assert response.status_code == 401
