from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.orm import joinedload

from gestoria.core.extensions import db
from gestoria.core.models import (
    ACTIVE_ESTADOS,
    Cliente,
    Expediente,
    ExpedienteEstado,
    Pago,
    TipoTramite,
    utcnow,
)
from gestoria.extranjeria.rollup import sum_amounts

MONTH_ABBR = ["ene", "feb", "mar", "abr", "may", "jun", "jul", "ago", "sep", "oct", "nov", "dic"]


def _month_start(day: date, months_back: int) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def _next_month(start: date) -> date:
    return _month_start(start, -1)


def _income_between(start: date, end: date) -> Decimal:
    rows = (
        db.session.query(Pago.importe)
        .filter(Pago.fecha_pago >= start, Pago.fecha_pago < end)
        .all()
    )
    return sum_amounts(row[0] for row in rows)


def monthly_series(today: date, months: int = 6) -> list[dict[str, object]]:
    series = []
    for back in range(months - 1, -1, -1):
        start = _month_start(today, back)
        end = _next_month(start)
        expedientes = (
            Expediente.query.filter(Expediente.fecha_inicio >= start, Expediente.fecha_inicio < end).count()
        )
        series.append(
            {
                "mes": f"{MONTH_ABBR[start.month - 1]} {start.year % 100:02d}",
                "inicio": start,
                "expedientes": expedientes,
                "ingresos": _income_between(start, end),
            }
        )
    return series


def expiring_nie(today: date, within_days: int) -> list[dict[str, object]]:
    limit = today + timedelta(days=within_days)
    clientes = (
        Cliente.query.filter(Cliente.fecha_vencimiento_nie.isnot(None))
        .filter(Cliente.fecha_vencimiento_nie >= today, Cliente.fecha_vencimiento_nie <= limit)
        .order_by(Cliente.fecha_vencimiento_nie.asc(), Cliente.id.asc())
        .all()
    )
    return [
        {"cliente": cliente, "dias": (cliente.fecha_vencimiento_nie - today).days}
        for cliente in clientes
    ]


def stale_expedientes(stale_days: int, limit: int = 5) -> list[dict[str, object]]:
    now = utcnow().replace(tzinfo=None)
    cutoff = now - timedelta(days=stale_days)
    rows = (
        Expediente.query.options(joinedload(Expediente.cliente))
        .filter(Expediente.estado.in_(ACTIVE_ESTADOS))
        .filter(Expediente.updated_at < cutoff)
        .order_by(Expediente.updated_at.asc(), Expediente.id.asc())
        .limit(limit)
        .all()
    )
    return [
        {"expediente": exp, "dias": (now - exp.updated_at.replace(tzinfo=None)).days}
        for exp in rows
    ]


def dashboard_data(today: date | None = None) -> dict[str, object]:
    today = today or date.today()
    config = current_app.config

    per_status = dict(
        db.session.query(Expediente.estado, func.count(Expediente.id)).group_by(Expediente.estado).all()
    )
    por_estado = [
        {"estado": estado, "total": per_status.get(estado, 0)}
        for estado in ExpedienteEstado
    ]

    top_tipos = (
        db.session.query(TipoTramite, func.count(Expediente.id).label("total"))
        .join(Expediente, Expediente.tipo_tramite_id == TipoTramite.id)
        .group_by(TipoTramite.id)
        .order_by(func.count(Expediente.id).desc(), TipoTramite.nombre.asc())
        .limit(5)
        .all()
    )

    recientes = (
        Expediente.query.options(joinedload(Expediente.cliente), joinedload(Expediente.tipo_tramite))
        .order_by(Expediente.created_at.desc(), Expediente.id.desc())
        .limit(10)
        .all()
    )

    month_start = today.replace(day=1)
    return {
        "kpis": {
            "total_clientes": Cliente.query.count(),
            "expedientes_activos": sum(per_status.get(estado, 0) for estado in ACTIVE_ESTADOS),
            "pendientes_documentos": per_status.get(ExpedienteEstado.PENDIENTE_DOCUMENTOS, 0),
            "ingresos_mes": _income_between(month_start, _next_month(month_start)),
        },
        "por_estado": por_estado,
        "por_mes": monthly_series(today),
        "top_tipos": [{"tipo": tipo, "total": total} for tipo, total in top_tipos],
        "recientes": recientes,
        "nie_por_vencer": expiring_nie(today, int(config.get("NIE_EXPIRY_ALERT_DAYS", 30))),
        "sin_movimiento": stale_expedientes(int(config.get("STALE_CASE_DAYS", 30))),
    }
