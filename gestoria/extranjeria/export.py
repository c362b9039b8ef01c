"""Full JSON snapshot of the agency data, used for backups."""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from gestoria.core.models import Cliente, Expediente, Pago, TipoTramite, utcnow
from gestoria.core.session import SessionContext


def _plain(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _row(instance: object, fields: list[str]) -> dict[str, object]:
    return {field: _plain(getattr(instance, field)) for field in fields}


CLIENTE_FIELDS = [
    "id",
    "nombre",
    "apellidos",
    "email",
    "telefono",
    "nacionalidad",
    "nie_pasaporte",
    "fecha_vencimiento_nie",
    "fecha_nacimiento",
    "calle",
    "numero",
    "piso",
    "puerta",
    "observaciones",
    "created_at",
]
EXPEDIENTE_FIELDS = [
    "id",
    "numero",
    "cliente_id",
    "tipo_tramite_id",
    "estado",
    "precio_acordado",
    "numero_oficial",
    "fecha_inicio",
    "fecha_presentacion",
    "observaciones",
    "created_at",
    "updated_at",
]
PAGO_FIELDS = [
    "id",
    "expediente_id",
    "cliente_id",
    "importe",
    "fecha_pago",
    "metodo_pago",
    "concepto",
    "observaciones",
]
TIPO_FIELDS = ["id", "nombre", "codigo", "precio_base", "active"]


def export_snapshot(now: datetime | None = None) -> dict[str, object]:
    now = now or utcnow()
    return {
        "timestamp": now.isoformat(),
        "clientes": [_row(c, CLIENTE_FIELDS) for c in Cliente.query.order_by(Cliente.id.asc()).all()],
        "expedientes": [
            _row(e, EXPEDIENTE_FIELDS) for e in Expediente.query.order_by(Expediente.id.asc()).all()
        ],
        "pagos": [_row(p, PAGO_FIELDS) for p in Pago.query.order_by(Pago.id.asc()).all()],
        "tipos_tramite": [
            {
                **_row(t, TIPO_FIELDS),
                "documentos": [
                    _row(d, ["id", "nombre_documento", "descripcion", "orden", "active"]) for d in t.documentos
                ],
            }
            for t in TipoTramite.query.order_by(TipoTramite.id.asc()).all()
        ],
    }


def export_json_bytes(now: datetime | None = None, actor: SessionContext | None = None) -> bytes:
    if actor is not None:
        actor.require_admin()
    return json.dumps(export_snapshot(now), ensure_ascii=False, indent=2).encode("utf-8")


def export_filename(now: datetime) -> str:
    return f"gestoria-export-{now:%Y%m%d-%H%M%S}.json"
