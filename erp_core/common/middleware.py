"""
Contexto de empresa y usuario por request
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)


def _bad_header(detail: str) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Lee la empresa de X-Company-ID y el usuario de X-User-ID y los deja en
    request.state. El usuario es opcional acá; lo exige TenantContext.
    """

    OPEN_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/health")

    def _is_open(self, request: Request) -> bool:
        path = request.url.path
        return request.method == "OPTIONS" or path == "/" or path.startswith(self.OPEN_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        if self._is_open(request):
            return await call_next(request)

        company = request.headers.get("X-Company-ID")
        if not company:
            return _bad_header("Falta el header X-Company-ID")
        try:
            request.state.tenant_id = UUID(company)
        except ValueError:
            return _bad_header("X-Company-ID debe ser un UUID válido")

        user = request.headers.get("X-User-ID")
        if user:
            try:
                request.state.user_id = UUID(user)
            except ValueError:
                return _bad_header("X-User-ID debe ser un UUID válido")

        logger.debug(f"{request.method} {request.url.path} empresa={request.state.tenant_id}")
        return await call_next(request)
