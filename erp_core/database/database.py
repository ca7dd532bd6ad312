from contextlib import contextmanager
from fastapi import HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from erp_core.core.config import settings
from erp_core.common.exceptions import ConflictError
import logging

logger = logging.getLogger(__name__)

def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # SQLite en memoria necesita una única conexión compartida
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}

sync_engine = create_engine(
    settings.database_url,
    echo=settings.SQL_ECHO,
    **_engine_options(settings.database_url)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)

Base = declarative_base()

def get_db():
    """Genera una sesión de base de datos síncrona por request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def atomic(db, action: str):
    """
    Ejecuta un bloque como una única transacción.

    Confirma al salir sin errores. Ante cualquier error revierte la sesión
    completa: los errores de dominio se propagan tal cual, un IntegrityError
    se reporta como conflicto y cualquier otro error como 500.
    """
    try:
        yield db
        db.commit()
    except HTTPException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Integrity error {action}: {e.orig}")
        raise ConflictError(f"Conflicto de integridad {action}")
    except Exception as e:
        db.rollback()
        logger.error(f"Error {action}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error interno {action}: {str(e)}"
        )
