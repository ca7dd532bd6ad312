"""
Errores de dominio del motor de documentos.

Cada clase es un HTTPException con un `kind` estable para que el llamador
distinga el tipo de fallo sin depender del mensaje.
"""
from typing import Any, Optional
from fastapi import HTTPException, status


class DomainError(HTTPException):
    kind = "DomainError"
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: Any, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.default_status, detail=detail)


class NotFoundError(DomainError):
    """El documento, cuenta o caja no existe dentro del tenant"""
    kind = "NotFound"
    default_status = status.HTTP_404_NOT_FOUND


class InvalidStateTransition(DomainError):
    """El estado actual no permite la transición pedida"""
    kind = "InvalidStateTransition"
    default_status = status.HTTP_409_CONFLICT


class ConflictError(DomainError):
    """Violación de una restricción de unicidad"""
    kind = "ConflictError"
    default_status = status.HTTP_409_CONFLICT


class InvalidInputError(DomainError):
    """Datos de entrada mal formados"""
    kind = "ValidationError"
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class BusinessRuleViolation(DomainError):
    """Regla de negocio incumplida"""
    kind = "BusinessRuleViolation"
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY
