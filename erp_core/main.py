"""
ERP Core API

Compras, stock, cuenta corriente de proveedores y tesorería. Cada módulo
expone su router; el contexto de empresa y usuario llega por headers.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import logging

from erp_core.core.config import settings
from erp_core.database.database import sync_engine, Base
from erp_core.common.middleware import TenantMiddleware
from erp_core.common.exceptions import DomainError

from erp_core.modules.inventory.router import stock_router
from erp_core.modules.purchases.router import (
    suppliers_router,
    purchase_orders_router,
    purchase_invoices_router,
    receiving_notes_router
)
from erp_core.modules.payables.router import payables_router
from erp_core.modules.treasury.router import (
    bank_router,
    checks_router,
    cash_router,
    payment_orders_router
)

# Registra las tablas de cada módulo en Base.metadata
import erp_core.modules.inventory.models
import erp_core.modules.purchases.models
import erp_core.modules.treasury.models

logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
SHOW_DOCS = settings.ENVIRONMENT != "production"

app = FastAPI(
    title="ERP Core API",
    description="Ciclo de vida de documentos comerciales, stock, cuenta corriente de proveedores y tesorería",
    version=API_VERSION,
    docs_url="/docs" if SHOW_DOCS else None,
    redoc_url="/redoc" if SHOW_DOCS else None
)

# El último middleware agregado es el primero en ejecutarse
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(TenantMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    """Errores de negocio con su tipo estable para el cliente"""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "kind": exc.kind}
    )


for router in (
    suppliers_router,
    purchase_orders_router,
    purchase_invoices_router,
    receiving_notes_router,
    payables_router,
    bank_router,
    checks_router,
    cash_router,
    payment_orders_router,
):
    app.include_router(router)
app.include_router(stock_router, tags=["Inventory"])

# Fuera de desarrollo el esquema lo administran las migraciones
if settings.ENVIRONMENT == "development":
    Base.metadata.create_all(bind=sync_engine)


@app.get("/")
async def root():
    return {"service": "erp-core", "version": API_VERSION, "environment": settings.ENVIRONMENT}


@app.get("/health")
async def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def on_startup():
    logger.info(f"ERP Core API {API_VERSION} iniciando ({settings.ENVIRONMENT}, debug={settings.DEBUG})")


@app.on_event("shutdown")
async def on_shutdown():
    logger.info("ERP Core API detenida")
