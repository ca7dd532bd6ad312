"""
Importación masiva de movimientos bancarios

Se valida el lote completo antes de escribir: si alguna fila tiene errores
no se importa ninguna. Las filas válidas se aplican en una sola
transacción, y el saldo de la cuenta queda incrementado por la suma
firmada de lo importado.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID
import logging

from openpyxl import load_workbook
from sqlalchemy.orm import Session

from erp_core.core.config import settings
from erp_core.common.exceptions import InvalidInputError
from erp_core.database.database import atomic
from erp_core.modules.payables.reconciliation import money
from erp_core.modules.treasury.banking import BankLedger
from erp_core.modules.treasury.models import BankMovementType
from erp_core.modules.treasury.schemas import BankImportResult, ImportRowError

logger = logging.getLogger(__name__)

DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%m/%d/%Y")
COLUMNS = ("date", "type", "amount", "description", "reference", "statement_number")
MAX_DESCRIPTION = 500
MAX_REFERENCE = 100
MAX_STATEMENT_NUMBER = 50
# Numeric(15, 2)
MAX_AMOUNT = Decimal("9999999999999.99")
EMPTY_BATCH_MESSAGE = "No se encontraron movimientos para importar"


@dataclass
class ParsedMovement:
    row: int
    movement_date: date
    type: BankMovementType
    amount: Decimal
    description: str
    reference: Optional[str] = None
    statement_number: Optional[str] = None


@dataclass
class ValidationReport:
    movements: List[ParsedMovement] = field(default_factory=list)
    errors: List[ImportRowError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors and bool(self.movements)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(value: Any) -> Optional[date]:
    """Acepta DD/MM/YYYY, YYYY-MM-DD y MM/DD/YYYY, en ese orden; no corrige fechas inválidas"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_amount(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or _is_blank(value):
        return None
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_type(value: Any) -> Optional[BankMovementType]:
    if not isinstance(value, str):
        return None
    text = value.strip().lower()
    for movement_type in BankMovementType:
        if text in (movement_type.value, movement_type.name.lower()):
            return movement_type
    return None


def _text(value: Any) -> Optional[str]:
    if _is_blank(value):
        return None
    return str(value).strip()


def validate_row(raw: Dict[str, Any], row_number: int) -> Tuple[Optional[ParsedMovement], List[str]]:
    errors = []

    movement_date = None
    if _is_blank(raw.get("date")):
        errors.append("La fecha es obligatoria")
    else:
        movement_date = parse_date(raw.get("date"))
        if movement_date is None:
            errors.append(f"Fecha inválida: '{raw.get('date')}'")

    movement_type = None
    if _is_blank(raw.get("type")):
        errors.append("El tipo es obligatorio")
    else:
        movement_type = parse_type(raw.get("type"))
        if movement_type is None:
            errors.append(f"Tipo de movimiento inválido: '{raw.get('type')}'")

    amount = None
    if _is_blank(raw.get("amount")):
        errors.append("El monto es obligatorio")
    else:
        amount = parse_amount(raw.get("amount"))
        if amount is not None:
            try:
                amount = money(amount)
            except InvalidOperation:
                # Excede la precisión decimal; se conserva el signo
                amount = MAX_AMOUNT + 1 if amount > 0 else Decimal("0")
        if amount is None:
            errors.append(f"Monto inválido: '{raw.get('amount')}'")
        elif amount <= 0:
            errors.append("El monto debe ser mayor a cero")
        elif amount > MAX_AMOUNT:
            errors.append(f"El monto supera el máximo de {MAX_AMOUNT}")

    description = _text(raw.get("description"))
    if not description:
        errors.append("La descripción es obligatoria")
    elif len(description) > MAX_DESCRIPTION:
        errors.append(f"La descripción supera los {MAX_DESCRIPTION} caracteres")

    reference = _text(raw.get("reference"))
    if reference and len(reference) > MAX_REFERENCE:
        errors.append(f"La referencia supera los {MAX_REFERENCE} caracteres")

    statement_number = _text(raw.get("statement_number"))
    if statement_number and len(statement_number) > MAX_STATEMENT_NUMBER:
        errors.append(f"El número de extracto supera los {MAX_STATEMENT_NUMBER} caracteres")

    if errors:
        return None, errors
    return ParsedMovement(
        row=row_number,
        movement_date=movement_date,
        type=movement_type,
        amount=amount,
        description=description,
        reference=reference,
        statement_number=statement_number,
    ), []


def validate_rows(rows: Iterable[Dict[str, Any]], first_row_number: int = 1) -> ValidationReport:
    """
    Valida todas las filas sin tocar la base.

    Las filas completamente vacías se ignoran. Los errores se informan por
    número de fila; un lote sin filas devuelve un único error en la fila 0.
    """
    report = ValidationReport()
    count = 0
    for offset, raw in enumerate(rows):
        if all(_is_blank(raw.get(column)) for column in COLUMNS):
            continue
        count += 1
        row_number = first_row_number + offset
        movement, errors = validate_row(raw, row_number)
        if errors:
            report.errors.append(ImportRowError(row=row_number, errors=errors))
        else:
            report.movements.append(movement)

    if count == 0:
        report.errors.append(ImportRowError(row=0, errors=[EMPTY_BATCH_MESSAGE]))
    elif count > settings.BANK_IMPORT_MAX_ROWS:
        report.errors.insert(0, ImportRowError(
            row=0, errors=[f"El lote supera el máximo de {settings.BANK_IMPORT_MAX_ROWS} movimientos"]
        ))
    return report


def read_workbook(content: bytes) -> List[Dict[str, Any]]:
    """
    Lee la hoja de movimientos de un .xlsx.

    La primera fila es el encabezado; las columnas se toman por posición:
    fecha, tipo, monto, descripción, referencia y número de extracto.
    """
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise InvalidInputError(f"No se pudo leer el archivo Excel: {exc}")

    try:
        if settings.BANK_IMPORT_SHEET_NAME not in workbook.sheetnames:
            raise InvalidInputError(f"No se encontró la hoja '{settings.BANK_IMPORT_SHEET_NAME}'")
        sheet = workbook[settings.BANK_IMPORT_SHEET_NAME]
        rows = []
        for values in sheet.iter_rows(min_row=2, values_only=True):
            values = tuple(values or ()) + (None,) * len(COLUMNS)
            rows.append(dict(zip(COLUMNS, values[:len(COLUMNS)])))
        return rows
    finally:
        workbook.close()


class BankMovementImporter:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = BankLedger(db)

    def import_rows(self, bank_account_id: UUID, rows: List[Dict[str, Any]], tenant_id: UUID,
                    user_id: UUID, first_row_number: int = 1) -> BankImportResult:
        """
        Importa un lote todo o nada.

        Con errores de validación devuelve success=False e imported=0 sin
        escribir nada.
        """
        report = validate_rows(rows, first_row_number)
        if not report.is_valid:
            logger.warning(f"Importación a cuenta {bank_account_id} rechazada: {len(report.errors)} filas con errores")
            return BankImportResult(
                success=False,
                imported=0,
                errors=report.errors,
                message="No se importó ningún movimiento; corrija los errores e intente nuevamente"
            )

        with atomic(self.db, "al importar movimientos bancarios"):
            account = self.ledger.lock_account(bank_account_id, tenant_id)
            for movement in report.movements:
                self.ledger.post_movement(
                    account,
                    movement.type,
                    movement.amount,
                    movement.description,
                    user_id,
                    movement_date=movement.movement_date,
                    reference=movement.reference,
                    statement_number=movement.statement_number
                )

        imported = len(report.movements)
        logger.info(f"{imported} movimientos importados en cuenta {bank_account_id}")
        return BankImportResult(
            success=True,
            imported=imported,
            errors=[],
            message=f"Se importaron {imported} movimientos"
        )

    def import_workbook(self, bank_account_id: UUID, content: bytes, tenant_id: UUID,
                        user_id: UUID) -> BankImportResult:
        if len(content) > settings.MAX_UPLOAD_SIZE:
            raise InvalidInputError("El archivo supera el tamaño máximo permitido")
        rows = read_workbook(content)
        # Los números de fila coinciden con los de la hoja
        return self.import_rows(bank_account_id, rows, tenant_id, user_id, first_row_number=2)
