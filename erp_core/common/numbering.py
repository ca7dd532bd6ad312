from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session


def next_document_number(db: Session, column, tenant_id: UUID, prefix: str, width: int = 5) -> str:
    """
    Siguiente número correlativo por tenant, por ejemplo RR-00001.

    La unicidad final la garantiza la restricción (tenant_id, number) de cada tabla.
    """
    model = column.class_
    last = db.query(func.max(column)).filter(
        model.tenant_id == tenant_id,
        column.like(f"{prefix}-%")
    ).scalar()

    sequence = 1
    if last:
        try:
            sequence = int(last.split("-")[-1]) + 1
        except ValueError:
            sequence = 1
    return f"{prefix}-{sequence:0{width}d}"
