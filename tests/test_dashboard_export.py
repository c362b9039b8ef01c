from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from gestoria.core.errors import PermissionDeniedError
from gestoria.core.extensions import db
from gestoria.core.models import Cliente, ExpedienteEstado
from gestoria.extranjeria.dashboard import dashboard_data, monthly_series
from gestoria.extranjeria.export import export_filename, export_json_bytes, export_snapshot
from gestoria.extranjeria.lifecycle import create_expediente, set_status
from gestoria.extranjeria.services import recibo_data, register_pago

TODAY = date(2026, 5, 20)


def _expediente(cliente, tipo, actor, start: date, **extra):
    payload = {
        "cliente_id": str(cliente.id),
        "tipo_tramite_id": str(tipo.id),
        "fecha_inicio": start.isoformat(),
    }
    payload.update(extra)
    return create_expediente(payload, actor)


def test_dashboard_kpis_and_breakdowns(app, amina, arraigo, nacionalidad, operator_actor):
    first = _expediente(amina, arraigo, operator_actor, date(2026, 5, 2))
    second = _expediente(amina, nacionalidad, operator_actor, date(2026, 3, 15))
    third = _expediente(amina, arraigo, operator_actor, date(2026, 5, 10))
    set_status(second.id, "aprobado", operator_actor)
    set_status(third.id, "presentado", operator_actor)

    register_pago(first.id, {"importe": "100", "fecha_pago": "2026-05-03"})
    register_pago(second.id, {"importe": "250.50", "fecha_pago": "2026-03-20"})
    register_pago(third.id, {"importe": "40", "fecha_pago": "2026-05-19"})

    data = dashboard_data(TODAY)

    kpis = data["kpis"]
    assert kpis["total_clientes"] == 2
    assert kpis["expedientes_activos"] == 2
    assert kpis["pendientes_documentos"] == 1
    assert kpis["ingresos_mes"] == Decimal("140.00")

    por_estado = {row["estado"]: row["total"] for row in data["por_estado"]}
    assert por_estado[ExpedienteEstado.APROBADO] == 1
    assert por_estado[ExpedienteEstado.PRESENTADO] == 1
    assert por_estado[ExpedienteEstado.ARCHIVADO] == 0

    por_mes = data["por_mes"]
    assert [row["mes"] for row in por_mes] == ["dic 25", "ene 26", "feb 26", "mar 26", "abr 26", "may 26"]
    assert por_mes[-1]["expedientes"] == 2
    assert por_mes[3]["ingresos"] == Decimal("250.50")

    assert [(row["tipo"].codigo, row["total"]) for row in data["top_tipos"]] == [("ARR-SOC", 2), ("NAC-RES", 1)]
    assert len(data["recientes"]) == 3


def test_monthly_series_crosses_year_boundary(app):
    series = monthly_series(date(2026, 2, 5), months=3)
    assert [row["inicio"] for row in series] == [date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1)]


def test_nie_expiry_alerts_cover_next_thirty_days(app, amina):
    otro = Cliente.query.filter_by(nie_pasaporte="Y7654321M").first()
    amina.fecha_vencimiento_nie = TODAY + timedelta(days=30)
    otro.fecha_vencimiento_nie = TODAY - timedelta(days=1)
    db.session.commit()

    alerts = dashboard_data(TODAY)["nie_por_vencer"]
    assert [(row["cliente"].nombre, row["dias"]) for row in alerts] == [("Amina", 30)]

    amina.fecha_vencimiento_nie = TODAY + timedelta(days=31)
    db.session.commit()
    assert dashboard_data(TODAY)["nie_por_vencer"] == []


def test_stale_case_files_only_include_active_states(app, amina, arraigo, operator_actor):
    old = _expediente(amina, arraigo, operator_actor, date(2026, 1, 10))
    closed = _expediente(amina, arraigo, operator_actor, date(2026, 1, 11))
    fresh = _expediente(amina, arraigo, operator_actor, date(2026, 1, 12))
    set_status(closed.id, "archivado", operator_actor)

    long_ago = datetime.now() - timedelta(days=45)
    old.updated_at = long_ago
    closed.updated_at = long_ago
    db.session.commit()

    stale = dashboard_data(TODAY)["sin_movimiento"]
    assert [row["expediente"].id for row in stale] == [old.id]
    assert stale[0]["dias"] >= 44
    assert fresh.id not in [row["expediente"].id for row in stale]


def test_receipt_totals(app, amina, arraigo, operator_actor):
    expediente = _expediente(amina, arraigo, operator_actor, TODAY, precio_acordado="500")
    register_pago(expediente.id, {"importe": "200"})
    second = register_pago(expediente.id, {"importe": "150", "concepto": "Segundo plazo"})

    recibo = recibo_data(second.id)
    assert recibo["numero_recibo"] == f"{expediente.numero}/{second.id:04d}"
    assert recibo["totales"] == {
        "precio_acordado": Decimal("500.00"),
        "total_pagado": Decimal("350.00"),
        "pendiente": Decimal("150.00"),
        "este_pago": Decimal("150.00"),
    }
    assert recibo["gestoria"].nombre_gestoria == "Gestoría Demo Extranjería"


def test_export_snapshot_contents(app, amina, arraigo, operator_actor, admin_actor):
    expediente = _expediente(amina, arraigo, operator_actor, TODAY)
    register_pago(expediente.id, {"importe": "75.25", "metodo_pago": "bizum"})

    now = datetime(2026, 5, 20, 8, 30, 15)
    snapshot = export_snapshot(now)
    assert snapshot["timestamp"] == "2026-05-20T08:30:15"
    assert len(snapshot["clientes"]) == 2
    assert snapshot["expedientes"][0]["numero"] == expediente.numero
    assert snapshot["expedientes"][0]["estado"] == "pendiente_documentos"
    assert snapshot["pagos"][0]["importe"] == "75.25"
    assert snapshot["pagos"][0]["metodo_pago"] == "bizum"
    arraigo_row = next(t for t in snapshot["tipos_tramite"] if t["codigo"] == "ARR-SOC")
    assert len(arraigo_row["documentos"]) == 4

    decoded = json.loads(export_json_bytes(now, admin_actor))
    assert set(decoded) == {"timestamp", "clientes", "expedientes", "pagos", "tipos_tramite"}
    assert export_filename(now) == "gestoria-export-20260520-083015.json"

    with pytest.raises(PermissionDeniedError):
        export_json_bytes(now, operator_actor)


def test_export_download_and_dashboard_page(client, login_admin):
    login_admin()
    dashboard = client.get("/dashboard")
    assert dashboard.status_code == 200
    assert "Expedientes activos" in dashboard.get_data(as_text=True)

    response = client.get("/extranjeria/configuracion/exportar")
    assert response.status_code == 200
    assert response.headers["Content-Disposition"].startswith('attachment; filename="gestoria-export-')
    assert set(json.loads(response.data)) == {"timestamp", "clientes", "expedientes", "pagos", "tipos_tramite"}


def test_seed_cli_skips_when_users_exist(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["seed-demo"])
    assert "Seed skipped" in result.output
