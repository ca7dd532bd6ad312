from typing import Annotated
from dataclasses import dataclass
from fastapi import Depends, Request, HTTPException, status
from uuid import UUID


@dataclass(frozen=True)
class RequestContext:
    """Empresa activa y usuario que ejecuta la operación"""
    tenant_id: UUID
    user_id: UUID


def get_tenant_id(request: Request) -> UUID:
    """Empresa activa, cargada por TenantMiddleware"""
    if not hasattr(request.state, 'tenant_id'):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Falta el contexto de empresa (header X-Company-ID)"
        )
    return request.state.tenant_id


def get_tenant_context(request: Request) -> RequestContext:
    """
    Contexto de tenant y usuario.

    La autenticación se resuelve antes de llegar a este servicio; aquí sólo
    se exige que el usuario venga identificado en X-User-ID.
    """
    tenant_id = get_tenant_id(request)
    user_id = getattr(request.state, 'user_id', None)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Falta el usuario (header X-User-ID)"
        )
    return RequestContext(tenant_id=tenant_id, user_id=user_id)


TenantContext = Annotated[RequestContext, Depends(get_tenant_context)]
