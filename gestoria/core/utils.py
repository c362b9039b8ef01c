from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from gestoria.core.errors import ValidationError

CENT = Decimal("0.01")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def money(value: Decimal | float | int | None) -> str:
    amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value or 0)
    return f"{amount.quantize(CENT):.2f}€".replace(".", ",")


def clean_text(value: str | None) -> str:
    return (value or "").strip()


def parse_iso_date(value: str | None, field_name: str) -> date:
    raw = clean_text(value)
    if not raw:
        raise ValidationError(f"Falta {field_name}")
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationError(f"Formato de fecha inválido para {field_name}") from exc


def parse_optional_iso_date(value: str | None, field_name: str = "fecha") -> date | None:
    if not clean_text(value):
        return None
    return parse_iso_date(value, field_name)


def parse_decimal(value: str | Decimal | None, field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value.quantize(CENT)
    raw = clean_text(value).replace(",", ".")
    if not raw:
        raise ValidationError(f"Falta {field_name}")
    try:
        amount = Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"Importe inválido en {field_name}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Importe inválido en {field_name}")
    return amount.quantize(CENT)


def parse_id(value: str | int | None, label: str) -> int:
    if isinstance(value, int):
        return value
    raw = clean_text(value)
    if not raw:
        raise ValidationError(f"Debe seleccionar un {label}")
    if not raw.isdigit():
        raise ValidationError(f"Identificador de {label} inválido")
    return int(raw)


def parse_flag(value: str | bool | None) -> bool:
    if isinstance(value, bool):
        return value
    return clean_text(value).lower() in {"1", "on", "true", "si", "sí", "yes"}


def validate_email(value: str | None) -> str:
    email = clean_text(value).lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Email inválido")
    return email
