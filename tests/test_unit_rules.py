from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from gestoria.core.errors import BackendError, ConflictError, NotFoundError, ValidationError
from gestoria.core.extensions import db
from gestoria.core.models import (
    Cliente,
    DocumentoEstado,
    Expediente,
    ExpedienteDocumento,
    ExpedienteEstado,
    ExpedienteSecuencia,
    HistorialEstado,
    Pago,
    TipoTramite,
    User,
)
from gestoria.core.transactions import atomic
from gestoria.extranjeria.lifecycle import (
    checklist_progress,
    create_expediente,
    set_status,
    status_history,
    toggle_document,
)
from gestoria.extranjeria.numbering import (
    allocate_case_number,
    format_case_number,
    next_case_number,
    parse_case_number,
)
from gestoria.extranjeria.rollup import cliente_balance, expediente_balance, sum_amounts
from gestoria.extranjeria.services import create_user, register_pago, update_own_profile

MARCH_2026 = date(2026, 3, 10)


def _new_expediente(cliente, tipo, actor, **extra):
    payload = {"cliente_id": str(cliente.id), "tipo_tramite_id": str(tipo.id)}
    payload.update(extra)
    return create_expediente(payload, actor, today=MARCH_2026)


def test_case_number_format_pads_and_never_truncates():
    assert format_case_number(2026, 1) == "26/001"
    assert format_case_number(2026, 42) == "26/042"
    assert format_case_number(2026, 1000) == "26/1000"
    assert format_case_number(2100, 7) == "00/007"


def test_next_case_number_uses_numeric_max_for_the_year():
    assert next_case_number(2026, []) == "26/001"
    assert next_case_number(2026, ["26/009", "26/010", "25/999"]) == "26/011"
    assert next_case_number(2026, ["26/999", "26/1000"]) == "26/1001"
    assert next_case_number(2026, ["25/120", "garbage", ""]) == "26/001"


def test_parse_case_number_rejects_malformed_values():
    assert parse_case_number("26/014") == (26, 14)
    with pytest.raises(ValidationError):
        parse_case_number("2026-014")
    with pytest.raises(ValidationError):
        parse_case_number("26/14")


def test_allocation_continues_after_highest_existing_suffix(app, amina, arraigo, admin_actor):
    db.session.add(
        Expediente(
            numero="26/041",
            cliente_id=amina.id,
            tipo_tramite_id=arraigo.id,
            precio_acordado=Decimal("100.00"),
            fecha_inicio=MARCH_2026,
        )
    )
    db.session.commit()

    first = _new_expediente(amina, arraigo, admin_actor)
    second = _new_expediente(amina, arraigo, admin_actor)
    assert first.numero == "26/042"
    assert second.numero == "26/043"
    assert db.session.get(ExpedienteSecuencia, 2026).last_value == 43


def _direct_expediente(cliente, tipo, numero):
    return Expediente(
        numero=numero,
        cliente_id=cliente.id,
        tipo_tramite_id=tipo.id,
        precio_acordado=Decimal("100.00"),
        fecha_inicio=MARCH_2026,
    )


def test_duplicate_case_number_is_a_conflict(app, amina, arraigo, admin_actor):
    with atomic():
        db.session.add(_direct_expediente(amina, arraigo, "26/001"))

    with pytest.raises(ConflictError):
        with atomic():
            db.session.add(_direct_expediente(amina, arraigo, "26/001"))

    assert Expediente.query.count() == 1
    assert _new_expediente(amina, arraigo, admin_actor).numero == "26/002"
    assert Expediente.query.count() == 2


def test_numbering_restarts_each_year(app, amina, arraigo, admin_actor):
    payload = {"cliente_id": str(amina.id), "tipo_tramite_id": str(arraigo.id)}
    december = create_expediente(dict(payload), admin_actor, today=date(2025, 12, 30))
    second_december = create_expediente(dict(payload), admin_actor, today=date(2025, 12, 31))
    january = create_expediente(dict(payload), admin_actor, today=date(2026, 1, 2))
    assert december.numero == "25/001"
    assert second_december.numero == "25/002"
    assert january.numero == "26/001"


def test_case_number_year_ignores_start_date(app, amina, arraigo, admin_actor):
    back_dated = _new_expediente(amina, arraigo, admin_actor, fecha_inicio="2020-05-01")
    future_dated = _new_expediente(amina, arraigo, admin_actor, fecha_inicio="2027-02-01")
    assert back_dated.numero == "26/001"
    assert back_dated.fecha_inicio == date(2020, 5, 1)
    assert future_dated.numero == "26/002"
    assert future_dated.fecha_inicio == date(2027, 2, 1)


def test_case_number_is_immutable(app, amina, arraigo, admin_actor):
    expediente = _new_expediente(amina, arraigo, admin_actor)
    with pytest.raises(ConflictError):
        expediente.numero = "26/999"


def test_create_expediente_seeds_active_checklist_and_history(app, amina, arraigo, admin_actor):
    expediente = _new_expediente(amina, arraigo, admin_actor)

    assert expediente.estado == ExpedienteEstado.PENDIENTE_DOCUMENTOS
    assert expediente.precio_acordado == Decimal("450.00")
    names = [doc.documento_requerido.nombre_documento for doc in expediente.documentos]
    assert names == ["Pasaporte completo", "Certificado de empadronamiento", "Antecedentes penales"]
    assert all(doc.estado == DocumentoEstado.PENDIENTE for doc in expediente.documentos)

    history = status_history(expediente.id)
    assert len(history) == 1
    assert history[0].estado_anterior is None
    assert history[0].estado_nuevo == ExpedienteEstado.PENDIENTE_DOCUMENTOS
    assert history[0].usuario_id == admin_actor.user_id


def test_create_expediente_keeps_agreed_price_override(app, amina, arraigo, admin_actor):
    expediente = _new_expediente(amina, arraigo, admin_actor, precio_acordado="380,50")
    assert expediente.precio_acordado == Decimal("380.50")


def test_create_expediente_validation(app, amina, arraigo, admin_actor):
    with pytest.raises(ValidationError):
        create_expediente({"tipo_tramite_id": str(arraigo.id)}, admin_actor)
    with pytest.raises(ValidationError):
        create_expediente({"cliente_id": str(amina.id)}, admin_actor)
    with pytest.raises(NotFoundError):
        create_expediente({"cliente_id": "9999", "tipo_tramite_id": str(arraigo.id)}, admin_actor)

    inactive = TipoTramite.query.filter_by(codigo="REAGR").first()
    with pytest.raises(ValidationError):
        create_expediente({"cliente_id": str(amina.id), "tipo_tramite_id": str(inactive.id)}, admin_actor)
    assert Expediente.query.count() == 0


def test_failed_creation_rolls_back_every_insert(app, amina, arraigo, admin_actor, monkeypatch):
    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database unavailable"))

    monkeypatch.setattr(db.session, "commit", broken_commit)
    with pytest.raises(BackendError):
        _new_expediente(amina, arraigo, admin_actor)
    monkeypatch.undo()

    assert Expediente.query.count() == 0
    assert ExpedienteDocumento.query.count() == 0
    assert HistorialEstado.query.count() == 0
    assert _new_expediente(amina, arraigo, admin_actor).numero == "26/001"


def test_receiving_every_document_advances_once(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    doc_ids = [doc.id for doc in expediente.documentos]

    _, advanced = toggle_document(expediente.id, doc_ids[0], True, operator_actor)
    assert advanced is False
    _, advanced = toggle_document(expediente.id, doc_ids[1], True, operator_actor)
    assert advanced is False
    assert expediente.estado == ExpedienteEstado.PENDIENTE_DOCUMENTOS

    documento, advanced = toggle_document(expediente.id, doc_ids[2], True, operator_actor)
    assert advanced is True
    assert documento.fecha_recibido is not None
    assert expediente.estado == ExpedienteEstado.DOCUMENTOS_COMPLETOS
    assert checklist_progress(expediente) == (3, 3)

    history = status_history(expediente.id)
    assert [(h.estado_anterior, h.estado_nuevo) for h in history] == [
        (None, ExpedienteEstado.PENDIENTE_DOCUMENTOS),
        (ExpedienteEstado.PENDIENTE_DOCUMENTOS, ExpedienteEstado.DOCUMENTOS_COMPLETOS),
    ]


def test_unmarking_a_document_never_reverts_status(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    doc_ids = [doc.id for doc in expediente.documentos]
    for doc_id in doc_ids:
        toggle_document(expediente.id, doc_id, True, operator_actor)

    documento, advanced = toggle_document(expediente.id, doc_ids[1], False, operator_actor)
    assert advanced is False
    assert documento.estado == DocumentoEstado.PENDIENTE
    assert documento.fecha_recibido is None
    assert expediente.estado == ExpedienteEstado.DOCUMENTOS_COMPLETOS
    assert len(status_history(expediente.id)) == 2


def test_completing_checklist_outside_pending_documents_does_not_move_status(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    set_status(expediente.id, "presentado", operator_actor)
    for doc in list(expediente.documentos):
        toggle_document(expediente.id, doc.id, True, operator_actor)

    assert expediente.estado == ExpedienteEstado.PRESENTADO
    assert len(status_history(expediente.id)) == 2


def test_manual_status_change_allows_any_target(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    set_status(expediente.id, ExpedienteEstado.ARCHIVADO, operator_actor)
    set_status(expediente.id, "pendiente_documentos", operator_actor)

    history = status_history(expediente.id)
    assert [h.estado_nuevo for h in history] == [
        ExpedienteEstado.PENDIENTE_DOCUMENTOS,
        ExpedienteEstado.ARCHIVADO,
        ExpedienteEstado.PENDIENTE_DOCUMENTOS,
    ]
    assert history[-1].estado_anterior == ExpedienteEstado.ARCHIVADO


def test_invalid_status_is_rejected_without_history(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    with pytest.raises(ValidationError):
        set_status(expediente.id, "cerrado", operator_actor)
    with pytest.raises(NotFoundError):
        set_status(9999, "presentado", operator_actor)
    assert len(status_history(expediente.id)) == 1


def test_same_status_transition_policy(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    set_status(expediente.id, "pendiente_documentos", operator_actor)
    assert len(status_history(expediente.id)) == 2

    app.config["RECORD_SAME_STATUS_TRANSITIONS"] = False
    set_status(expediente.id, "pendiente_documentos", operator_actor)
    assert len(status_history(expediente.id)) == 2


def test_empty_checklist_policy(app, amina, nacionalidad, operator_actor):
    stays = _new_expediente(amina, nacionalidad, operator_actor)
    assert stays.documentos == []
    assert stays.estado == ExpedienteEstado.PENDIENTE_DOCUMENTOS

    app.config["AUTO_ADVANCE_EMPTY_CHECKLIST"] = True
    advanced = _new_expediente(amina, nacionalidad, operator_actor)
    assert advanced.estado == ExpedienteEstado.DOCUMENTOS_COMPLETOS
    assert [h.estado_nuevo for h in status_history(advanced.id)] == [
        ExpedienteEstado.PENDIENTE_DOCUMENTOS,
        ExpedienteEstado.DOCUMENTOS_COMPLETOS,
    ]


def test_history_rows_are_append_only(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    entry = status_history(expediente.id)[0]
    entry.estado_nuevo = ExpedienteEstado.APROBADO
    with pytest.raises(ConflictError):
        db.session.flush()
    db.session.rollback()


def test_sum_amounts_is_exact_decimal():
    assert sum_amounts([Decimal("0.10")] * 3) == Decimal("0.30")
    assert sum_amounts([0.1, 0.2, None]) == Decimal("0.30")
    assert sum_amounts([]) == Decimal("0.00")


def test_expediente_balance_goes_negative_when_overpaid(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor, precio_acordado="500")
    assert expediente_balance(expediente.id).pending == Decimal("500.00")

    register_pago(expediente.id, {"importe": "200", "metodo_pago": "efectivo"}, today=MARCH_2026)
    register_pago(expediente.id, {"importe": "150", "metodo_pago": "bizum"}, today=MARCH_2026)
    balance = expediente_balance(expediente.id)
    assert (balance.agreed, balance.paid, balance.pending) == (
        Decimal("500.00"),
        Decimal("350.00"),
        Decimal("150.00"),
    )

    register_pago(expediente.id, {"importe": "150"}, today=MARCH_2026)
    assert expediente_balance(expediente.id).pending == Decimal("0.00")

    register_pago(expediente.id, {"importe": "50,00", "metodo_pago": "tarjeta"}, today=MARCH_2026)
    balance = expediente_balance(expediente.id)
    assert balance.pending == Decimal("-50.00")
    assert balance.overpaid is True


def test_payments_copy_client_and_reject_non_positive_amounts(app, amina, arraigo, operator_actor):
    expediente = _new_expediente(amina, arraigo, operator_actor)
    pago = register_pago(expediente.id, {"importe": "25"}, today=MARCH_2026)
    assert pago.cliente_id == amina.id
    assert pago.fecha_pago == MARCH_2026

    with pytest.raises(ValidationError):
        register_pago(expediente.id, {"importe": "0"})
    with pytest.raises(ValidationError):
        register_pago(expediente.id, {"importe": "-10"})
    with pytest.raises(ValidationError):
        register_pago(expediente.id, {"importe": "10", "metodo_pago": "cheque"})
    with pytest.raises(ValidationError):
        Pago(expediente_id=expediente.id, cliente_id=amina.id, importe=Decimal("0"), fecha_pago=MARCH_2026)
    assert Pago.query.count() == 1


def test_cliente_balance_spans_all_case_files(app, amina, arraigo, nacionalidad, operator_actor):
    first = _new_expediente(amina, arraigo, operator_actor)
    second = _new_expediente(amina, nacionalidad, operator_actor, precio_acordado="100")
    register_pago(first.id, {"importe": "300"}, today=MARCH_2026)
    register_pago(second.id, {"importe": "120"}, today=MARCH_2026)

    balance = cliente_balance(amina.id)
    assert balance.agreed == Decimal("550.00")
    assert balance.paid == Decimal("420.00")
    assert balance.pending == Decimal("130.00")

    otro = Cliente.query.filter_by(nie_pasaporte="Y7654321M").first()
    assert cliente_balance(otro.id).pending == Decimal("0.00")
    with pytest.raises(NotFoundError):
        cliente_balance(9999)
    with pytest.raises(NotFoundError):
        expediente_balance(9999)


def test_own_profile_update_touches_only_the_actor(app, admin_actor, operator_actor):
    admin_name = db.session.get(User, admin_actor.user_id).full_name

    user = update_own_profile({"full_name": "  Lucía Operadora  ", "email": "otro@x.es"}, operator_actor)
    assert user.id == operator_actor.user_id
    assert user.full_name == "Lucía Operadora"
    assert user.email == "operador@gestoria.local"
    assert db.session.get(User, admin_actor.user_id).full_name == admin_name

    with pytest.raises(ValidationError):
        update_own_profile({"full_name": " "}, operator_actor)


def test_create_user_requires_six_character_password(app, admin_actor):
    payload = {"full_name": "Nueva", "email": "nueva@gestoria.local", "role": "operador"}
    with pytest.raises(ValidationError):
        create_user({**payload, "password": "12345"}, admin_actor)
    assert User.query.filter_by(email="nueva@gestoria.local").count() == 0

    user = create_user({**payload, "password": "123456"}, admin_actor)
    assert user.email == "nueva@gestoria.local"
