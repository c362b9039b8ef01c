"""Expediente creation, status changes and checklist tracking."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from flask import current_app

from gestoria.core.errors import NotFoundError, ValidationError
from gestoria.core.extensions import db
from gestoria.core.models import (
    Cliente,
    DocumentoEstado,
    DocumentoRequerido,
    Expediente,
    ExpedienteDocumento,
    ExpedienteEstado,
    HistorialEstado,
    TipoTramite,
    utcnow,
)
from gestoria.core.session import SessionContext
from gestoria.core.transactions import atomic
from gestoria.core.utils import clean_text, parse_decimal, parse_id, parse_optional_iso_date
from gestoria.extranjeria.numbering import allocate_case_number

logger = logging.getLogger(__name__)


def parse_estado(value: str | ExpedienteEstado | None) -> ExpedienteEstado:
    if isinstance(value, ExpedienteEstado):
        return value
    raw = clean_text(value).lower()
    try:
        return ExpedienteEstado(raw)
    except ValueError as exc:
        raise ValidationError(f"Estado de expediente inválido: {value}") from exc


def expediente_by_id(expediente_id: int) -> Expediente:
    expediente = db.session.get(Expediente, expediente_id)
    if not expediente:
        raise NotFoundError("Expediente no encontrado")
    return expediente


def _record_transition(
    expediente: Expediente,
    new_status: ExpedienteEstado,
    actor: SessionContext,
) -> HistorialEstado | None:
    previous = expediente.estado
    if previous == new_status and not current_app.config.get("RECORD_SAME_STATUS_TRANSITIONS", True):
        return None
    expediente.estado = new_status
    expediente.updated_at = utcnow()
    entry = HistorialEstado(
        expediente=expediente,
        estado_anterior=previous,
        estado_nuevo=new_status,
        usuario_id=actor.user_id,
    )
    db.session.add(entry)
    logger.info(
        "Expediente %s: %s -> %s (usuario=%s)",
        expediente.numero,
        previous.value if previous else None,
        new_status.value,
        actor.user_id,
    )
    return entry


def _all_received(expediente: Expediente) -> bool:
    return bool(expediente.documentos) and all(doc.recibido for doc in expediente.documentos)


def checklist_progress(expediente: Expediente) -> tuple[int, int]:
    received = sum(1 for doc in expediente.documentos if doc.recibido)
    return received, len(expediente.documentos)


def status_history(expediente_id: int) -> list[HistorialEstado]:
    expediente_by_id(expediente_id)
    return (
        HistorialEstado.query.filter_by(expediente_id=expediente_id)
        .order_by(HistorialEstado.fecha_cambio.asc(), HistorialEstado.id.asc())
        .all()
    )


def create_expediente(payload: dict[str, str], actor: SessionContext, today: date | None = None) -> Expediente:
    cliente_id = parse_id(payload.get("cliente_id"), "cliente")
    tipo_id = parse_id(payload.get("tipo_tramite_id"), "tipo de trámite")

    cliente = db.session.get(Cliente, cliente_id)
    if not cliente:
        raise NotFoundError("Cliente no encontrado")
    tipo = db.session.get(TipoTramite, tipo_id)
    if not tipo:
        raise NotFoundError("Tipo de trámite no encontrado")
    if not tipo.active:
        raise ValidationError(f"El tipo de trámite {tipo.nombre} está desactivado")

    raw_price = clean_text(payload.get("precio_acordado"))
    precio = parse_decimal(raw_price, "precio acordado") if raw_price else Decimal(tipo.precio_base)
    if precio < 0:
        raise ValidationError("El precio acordado no puede ser negativo")

    today = today or date.today()
    start = parse_optional_iso_date(payload.get("fecha_inicio"), "fecha de inicio") or today

    with atomic():
        expediente = Expediente(
            numero=allocate_case_number(today.year),
            cliente_id=cliente.id,
            tipo_tramite_id=tipo.id,
            precio_acordado=precio,
            numero_oficial=clean_text(payload.get("numero_oficial")) or None,
            fecha_inicio=start,
            observaciones=clean_text(payload.get("observaciones")),
            estado=ExpedienteEstado.PENDIENTE_DOCUMENTOS,
        )
        db.session.add(expediente)
        db.session.flush()

        plantilla = (
            DocumentoRequerido.query.filter_by(tipo_tramite_id=tipo.id, active=True)
            .order_by(DocumentoRequerido.orden.asc(), DocumentoRequerido.id.asc())
            .all()
        )
        for requerido in plantilla:
            expediente.documentos.append(
                ExpedienteDocumento(
                    documento_requerido_id=requerido.id,
                    estado=DocumentoEstado.PENDIENTE,
                )
            )

        db.session.add(
            HistorialEstado(
                expediente=expediente,
                estado_anterior=None,
                estado_nuevo=ExpedienteEstado.PENDIENTE_DOCUMENTOS,
                usuario_id=actor.user_id,
            )
        )
        if not plantilla and current_app.config.get("AUTO_ADVANCE_EMPTY_CHECKLIST", False):
            _record_transition(expediente, ExpedienteEstado.DOCUMENTOS_COMPLETOS, actor)

    logger.info(
        "Expediente %s creado para cliente %s (%d documentos)",
        expediente.numero,
        cliente.id,
        len(plantilla),
    )
    return expediente


def set_status(expediente_id: int, new_status: str | ExpedienteEstado, actor: SessionContext) -> Expediente:
    target = parse_estado(new_status)
    expediente = expediente_by_id(expediente_id)
    with atomic():
        _record_transition(expediente, target, actor)
    return expediente


def toggle_document(
    expediente_id: int,
    documento_id: int,
    received: bool,
    actor: SessionContext,
) -> tuple[ExpedienteDocumento, bool]:
    """Mark a checklist item received or pending.

    Returns the document and whether the expediente advanced to
    ``documentos_completos`` as a consequence. Marking a document pending
    again never moves the status back.
    """
    expediente = expediente_by_id(expediente_id)
    documento = ExpedienteDocumento.query.filter_by(id=documento_id, expediente_id=expediente.id).first()
    if not documento:
        raise NotFoundError("Documento no encontrado en este expediente")

    advanced = False
    with atomic():
        if received:
            documento.estado = DocumentoEstado.RECIBIDO
            documento.fecha_recibido = utcnow()
        else:
            documento.estado = DocumentoEstado.PENDIENTE
            documento.fecha_recibido = None
        expediente.updated_at = utcnow()
        db.session.flush()

        if _all_received(expediente) and expediente.estado == ExpedienteEstado.PENDIENTE_DOCUMENTOS:
            advanced = _record_transition(expediente, ExpedienteEstado.DOCUMENTOS_COMPLETOS, actor) is not None

    if advanced:
        logger.info("Expediente %s: checklist completo", expediente.numero)
    return documento, advanced
