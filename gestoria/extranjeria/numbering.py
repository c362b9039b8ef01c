"""Case file numbering: ``YY/NNN`` per calendar year.

The sequence restarts every year and is derived from the highest suffix
already issued for that year, compared numerically. Allocation goes through
a per-year counter row locked for update so two concurrent creations never
receive the same number; the unique constraint on ``expedientes`` backs it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from gestoria.core.errors import ValidationError
from gestoria.core.extensions import db
from gestoria.core.models import Expediente, ExpedienteSecuencia

logger = logging.getLogger(__name__)

CASE_NUMBER_RE = re.compile(r"^(\d{2})/(\d{3,})$")


def year_prefix(year: int) -> str:
    return f"{year % 100:02d}/"


def format_case_number(year: int, sequence: int) -> str:
    if sequence < 1:
        raise ValidationError("La secuencia de expediente empieza en 1")
    return f"{year_prefix(year)}{sequence:03d}"


def parse_case_number(numero: str) -> tuple[int, int]:
    match = CASE_NUMBER_RE.match((numero or "").strip())
    if not match:
        raise ValidationError(f"Número de expediente inválido: {numero!r}")
    return int(match.group(1)), int(match.group(2))


def max_sequence(year: int, existing_numbers: Iterable[str]) -> int:
    yy = year % 100
    highest = 0
    for numero in existing_numbers:
        match = CASE_NUMBER_RE.match((numero or "").strip())
        if not match or int(match.group(1)) != yy:
            continue
        highest = max(highest, int(match.group(2)))
    return highest


def next_case_number(year: int, existing_numbers: Iterable[str]) -> str:
    return format_case_number(year, max_sequence(year, existing_numbers) + 1)


def _issued_numbers(year: int) -> list[str]:
    rows = (
        db.session.query(Expediente.numero)
        .filter(Expediente.numero.like(f"{year_prefix(year)}%"))
        .all()
    )
    return [row[0] for row in rows]


def allocate_case_number(year: int) -> str:
    """Reserve the next number for ``year`` in the current transaction.

    The caller commits; a rollback releases the reservation.
    """
    counter = (
        db.session.query(ExpedienteSecuencia)
        .filter(ExpedienteSecuencia.year == year)
        .with_for_update()
        .first()
    )
    if counter is None:
        counter = ExpedienteSecuencia(year=year, last_value=0)
        db.session.add(counter)

    sequence = max(counter.last_value or 0, max_sequence(year, _issued_numbers(year))) + 1
    counter.last_value = sequence
    db.session.flush()

    numero = format_case_number(year, sequence)
    logger.debug("Allocated case number %s", numero)
    return numero
