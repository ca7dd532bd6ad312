"""
Runtime compartido de máquinas de estado para documentos comerciales.

Cada tipo de documento declara una única tabla de transiciones
(estado actual -> estados destino permitidos) y los estados desde los que
puede eliminarse. Las transiciones se ejecutan con `apply_transition`, que
valida, corre el efecto colateral y escribe el nuevo estado dentro de una
sola transacción.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from erp_core.common.exceptions import InvalidStateTransition, NotFoundError
from erp_core.database.database import atomic

logger = logging.getLogger(__name__)

SideEffect = Callable[..., Optional[Iterable[Any]]]


@dataclass
class TransitionResult:
    """Documento en su nuevo estado y registros de libro mayor creados o eliminados"""
    document: Any
    side_effects: List[Any] = field(default_factory=list)


class StateMachine:
    def __init__(
        self,
        name: str,
        transitions: Dict[Enum, Iterable[Enum]],
        deletable_from: Iterable[Enum] = (),
    ):
        self.name = name
        self.transitions: Dict[Enum, FrozenSet[Enum]] = {
            source: frozenset(targets) for source, targets in transitions.items()
        }
        self.deletable_from: FrozenSet[Enum] = frozenset(deletable_from)

    def allowed_targets(self, current: Enum) -> FrozenSet[Enum]:
        return self.transitions.get(current, frozenset())

    def can_transition(self, current: Enum, target: Enum) -> bool:
        return target in self.allowed_targets(current)

    def ensure_transition(self, current: Enum, target: Enum) -> None:
        if not self.can_transition(current, target):
            raise InvalidStateTransition(
                f"{self.name}: no se puede pasar de '{current.value}' a '{target.value}'"
            )

    def ensure_deletable(self, current: Enum) -> None:
        if current not in self.deletable_from:
            raise InvalidStateTransition(
                f"{self.name}: no se puede eliminar en estado '{current.value}'"
            )

    def transition(self, document, target: Enum, effect: Optional[SideEffect] = None, **payload) -> TransitionResult:
        """
        Valida y aplica la transición sin confirmar la transacción.

        Sirve para componer varias transiciones dentro de una operación mayor;
        el llamador es responsable del commit.
        """
        self.ensure_transition(document.status, target)
        side_effects = list(effect(document, **payload) or []) if effect else []
        document.status = target
        return TransitionResult(document=document, side_effects=side_effects)


def apply_transition(
    db: Session,
    machine: StateMachine,
    document,
    target: Enum,
    effect: Optional[SideEffect] = None,
    **payload,
) -> TransitionResult:
    """
    Ejecuta una transición completa: validación, efecto y estado en una
    única transacción. Si algo falla no queda nada persistido.

    El documento debe haberse leído con `get_for_update` en la misma
    transacción para que dos llamadas concurrentes no apliquen el efecto
    dos veces.
    """
    source = document.status
    with atomic(db, f"al aplicar {machine.name} {source.value} -> {target.value}"):
        result = machine.transition(document, target, effect, **payload)
        db.flush()
    db.refresh(document)
    logger.info(
        f"{machine.name} {document.id} ({document.tenant_id}): "
        f"{source.value} -> {target.value}, {len(result.side_effects)} efectos"
    )
    return result


def get_for_update(db: Session, model, document_id: UUID, tenant_id: UUID, label: str):
    """Lee un documento del tenant bloqueando la fila hasta el fin de la transacción"""
    document = db.query(model).filter(
        model.id == document_id,
        model.tenant_id == tenant_id
    ).with_for_update().first()

    if not document:
        raise NotFoundError(f"{label} no encontrado")
    return document


def get_or_404(db: Session, model, document_id: UUID, tenant_id: UUID, label: str):
    document = db.query(model).filter(
        model.id == document_id,
        model.tenant_id == tenant_id
    ).first()

    if not document:
        raise NotFoundError(f"{label} no encontrado")
    return document
