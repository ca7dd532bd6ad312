"""
Tests del runtime de máquinas de estado y de la transacción atómica
"""

import enum
import pytest
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from erp_core.common.exceptions import InvalidStateTransition, NotFoundError, BusinessRuleViolation, ConflictError
from erp_core.common.state_machine import StateMachine, apply_transition, get_for_update
from erp_core.database.database import atomic
from erp_core.modules.inventory.models import Product, StockMovement, StockMovementType
from erp_core.modules.purchases.models import Supplier


class Light(enum.Enum):
    OFF = "off"
    ON = "on"
    BROKEN = "broken"


LIGHT_MACHINE = StateMachine(
    "Lámpara",
    {
        Light.OFF: {Light.ON, Light.BROKEN},
        Light.ON: {Light.OFF},
    },
    deletable_from={Light.OFF},
)


# ===== TESTS DE LA TABLA DE TRANSICIONES =====

class TestStateMachine:

    def test_allowed_targets(self):
        assert LIGHT_MACHINE.allowed_targets(Light.OFF) == frozenset({Light.ON, Light.BROKEN})
        assert LIGHT_MACHINE.allowed_targets(Light.BROKEN) == frozenset()

    def test_transition_applies_effect_and_status(self):
        """El efecto corre antes de escribir el estado y sus registros se devuelven"""
        doc = SimpleNamespace(status=Light.OFF, seen=None)

        def effect(document, who):
            document.seen = (document.status, who)
            return ["registro"]

        result = LIGHT_MACHINE.transition(doc, Light.ON, effect, who="ana")

        assert doc.status == Light.ON
        assert doc.seen == (Light.OFF, "ana")
        assert result.document is doc
        assert result.side_effects == ["registro"]

    def test_transition_to_same_state_fails(self):
        """Repetir una transición falla sin volver a correr el efecto"""
        doc = SimpleNamespace(status=Light.ON)
        calls = []

        with pytest.raises(InvalidStateTransition) as exc_info:
            LIGHT_MACHINE.transition(doc, Light.ON, lambda d: calls.append(d))

        assert exc_info.value.status_code == 409
        assert exc_info.value.kind == "InvalidStateTransition"
        assert calls == []

    def test_failing_effect_keeps_status(self):
        doc = SimpleNamespace(status=Light.OFF)

        def effect(document):
            raise BusinessRuleViolation("sin corriente")

        with pytest.raises(BusinessRuleViolation):
            LIGHT_MACHINE.transition(doc, Light.ON, effect)
        assert doc.status == Light.OFF

    def test_terminal_state_has_no_exit(self):
        doc = SimpleNamespace(status=Light.BROKEN)
        with pytest.raises(InvalidStateTransition):
            LIGHT_MACHINE.transition(doc, Light.OFF)

    def test_ensure_deletable(self):
        LIGHT_MACHINE.ensure_deletable(Light.OFF)
        with pytest.raises(InvalidStateTransition):
            LIGHT_MACHINE.ensure_deletable(Light.ON)


# ===== TESTS DE PERSISTENCIA =====

class TestAtomic:

    def test_domain_error_rolls_back(self, db_session, tenant_id):
        with pytest.raises(BusinessRuleViolation):
            with atomic(db_session, "al probar"):
                db_session.add(Product(tenant_id=tenant_id, code="X", name="Temporal"))
                db_session.flush()
                raise BusinessRuleViolation("falla")

        assert db_session.query(Product).count() == 0

    def test_integrity_error_becomes_conflict(self, db_session, tenant_id):
        db_session.add(Supplier(tenant_id=tenant_id, name="Uno", tax_id="20111111112"))
        db_session.commit()

        with pytest.raises(ConflictError) as exc_info:
            with atomic(db_session, "al duplicar"):
                db_session.add(Supplier(tenant_id=tenant_id, name="Dos", tax_id="20111111112"))

        assert exc_info.value.status_code == 409
        assert db_session.query(Supplier).count() == 1

    def test_get_for_update_scoped_by_tenant(self, db_session, sample_supplier):
        with pytest.raises(NotFoundError):
            get_for_update(db_session, Supplier, sample_supplier.id, uuid4(), "Proveedor")

    def test_apply_transition_persists_nothing_on_failure(self, db_session, main_warehouse, sample_product, user_id):
        """Si el efecto falla a mitad de camino no queda nada escrito"""
        def effect(document):
            db_session.add(StockMovement(
                tenant_id=main_warehouse.tenant_id, warehouse_id=main_warehouse.id,
                product_id=sample_product.id, quantity=Decimal("1"),
                type=StockMovementType.ADJUSTMENT, created_by=user_id
            ))
            db_session.flush()
            raise BusinessRuleViolation("falla tardía")

        doc = SimpleNamespace(status=Light.OFF, id=uuid4(), tenant_id=main_warehouse.tenant_id)
        with pytest.raises(BusinessRuleViolation):
            apply_transition(db_session, LIGHT_MACHINE, doc, Light.ON, effect=effect)

        assert doc.status == Light.OFF
        assert db_session.query(StockMovement).count() == 0
