from __future__ import annotations

import logging

from flask import abort, flash, make_response, redirect, render_template, request, url_for
from flask_login import current_user, login_required

from gestoria.core.errors import GestoriaError, NotFoundError
from gestoria.core.models import ExpedienteEstado, MetodoPago, utcnow
from gestoria.core.permissions import require_role, require_staff
from gestoria.core.session import current_session
from gestoria.core.utils import money, parse_flag
from gestoria.extranjeria import extranjeria_bp
from gestoria.extranjeria.export import export_filename, export_json_bytes
from gestoria.extranjeria.lifecycle import create_expediente, expediente_by_id, set_status, toggle_document
from gestoria.extranjeria.services import (
    change_user_role,
    cliente_by_id,
    cliente_detail,
    create_cliente,
    create_documento_requerido,
    create_tipo_tramite,
    create_user,
    delete_cliente,
    delete_documento_requerido,
    delete_expediente,
    delete_tipo_tramite,
    expediente_detail,
    gestoria_config,
    list_clientes,
    list_expedientes,
    list_pagos,
    list_tipos_tramite,
    list_users,
    recibo_data,
    register_pago,
    update_cliente,
    update_documento_requerido,
    update_expediente,
    update_gestoria_config,
    update_own_profile,
    update_tipo_tramite,
)

logger = logging.getLogger(__name__)


def _form_payload() -> dict[str, str]:
    return {k: v for k, v in request.form.items()}


def _flash_error(exc: GestoriaError) -> None:
    logger.info("%s on %s: %s", type(exc).__name__, request.path, exc)
    flash(str(exc), "error")


# Clientes


@extranjeria_bp.get("/clientes")
@login_required
@require_staff
def clientes_list():
    q = request.args.get("q", "").strip()
    return render_template("extranjeria/clientes.html", clientes=list_clientes(q), q=q)


@extranjeria_bp.route("/clientes/nuevo", methods=["GET", "POST"])
@login_required
@require_staff
def cliente_create():
    if request.method == "POST":
        try:
            cliente = create_cliente(_form_payload())
            flash(f"Cliente {cliente.full_name} creado correctamente", "success")
            return redirect(url_for("extranjeria.cliente_detail_page", cliente_id=cliente.id))
        except GestoriaError as exc:
            _flash_error(exc)
    return render_template("extranjeria/cliente_form.html", data=request.form, cliente=None)


@extranjeria_bp.get("/clientes/<int:cliente_id>")
@login_required
@require_staff
def cliente_detail_page(cliente_id: int):
    try:
        data = cliente_detail(cliente_id)
    except NotFoundError:
        abort(404)
    return render_template("extranjeria/cliente_detail.html", data=data, money=money)


@extranjeria_bp.route("/clientes/<int:cliente_id>/editar", methods=["GET", "POST"])
@login_required
@require_staff
def cliente_edit(cliente_id: int):
    try:
        cliente = cliente_by_id(cliente_id)
    except NotFoundError:
        abort(404)
    if request.method == "POST":
        try:
            update_cliente(cliente_id, _form_payload())
            flash("Cliente actualizado", "success")
            return redirect(url_for("extranjeria.cliente_detail_page", cliente_id=cliente_id))
        except GestoriaError as exc:
            _flash_error(exc)
        return render_template("extranjeria/cliente_form.html", data=request.form, cliente=cliente)
    return render_template("extranjeria/cliente_form.html", data=None, cliente=cliente)


@extranjeria_bp.post("/clientes/<int:cliente_id>/eliminar")
@login_required
@require_role("admin")
def cliente_delete(cliente_id: int):
    try:
        delete_cliente(cliente_id, request.form.get("confirm"), current_session())
        flash("Cliente eliminado", "success")
        return redirect(url_for("extranjeria.clientes_list"))
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.cliente_detail_page", cliente_id=cliente_id))


# Expedientes


@extranjeria_bp.get("/expedientes")
@login_required
@require_staff
def expedientes_list():
    filters = {
        "estado": request.args.get("estado", "").strip(),
        "tipo_tramite_id": request.args.get("tipo_tramite_id", "").strip(),
        "cliente_id": request.args.get("cliente_id", "").strip(),
        "q": request.args.get("q", "").strip(),
    }
    try:
        rows = list_expedientes(filters)
    except GestoriaError as exc:
        _flash_error(exc)
        rows = []
    return render_template(
        "extranjeria/expedientes.html",
        rows=rows,
        filters=filters,
        estados=list(ExpedienteEstado),
        tipos=list_tipos_tramite(),
        money=money,
    )


@extranjeria_bp.route("/expedientes/nuevo", methods=["GET", "POST"])
@login_required
@require_staff
def expediente_create():
    if request.method == "POST":
        try:
            expediente = create_expediente(_form_payload(), current_session())
            flash(f"Expediente {expediente.numero} creado correctamente", "success")
            return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente.id))
        except GestoriaError as exc:
            _flash_error(exc)
    return render_template(
        "extranjeria/expediente_form.html",
        data=request.form if request.method == "POST" else {"cliente_id": request.args.get("cliente_id", "")},
        expediente=None,
        clientes=list_clientes(limit=500),
        tipos=list_tipos_tramite(only_active=True),
        money=money,
    )


@extranjeria_bp.get("/expedientes/<int:expediente_id>")
@login_required
@require_staff
def expediente_detail_page(expediente_id: int):
    try:
        data = expediente_detail(expediente_id)
    except NotFoundError:
        abort(404)
    return render_template("extranjeria/expediente_detail.html", data=data, money=money)


@extranjeria_bp.route("/expedientes/<int:expediente_id>/editar", methods=["GET", "POST"])
@login_required
@require_staff
def expediente_edit(expediente_id: int):
    try:
        expediente = expediente_by_id(expediente_id)
    except NotFoundError:
        abort(404)
    if request.method == "POST":
        try:
            update_expediente(expediente_id, _form_payload())
            flash("Expediente actualizado", "success")
            return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente_id))
        except GestoriaError as exc:
            _flash_error(exc)
    return render_template(
        "extranjeria/expediente_form.html",
        data=request.form if request.method == "POST" else None,
        expediente=expediente,
        clientes=[],
        tipos=[],
        money=money,
    )


@extranjeria_bp.post("/expedientes/<int:expediente_id>/estado")
@login_required
@require_staff
def expediente_change_status(expediente_id: int):
    try:
        set_status(expediente_id, request.form.get("estado", ""), current_session())
        flash("Estado actualizado correctamente", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente_id))


@extranjeria_bp.post("/expedientes/<int:expediente_id>/documentos/<int:documento_id>")
@login_required
@require_staff
def expediente_toggle_document(expediente_id: int, documento_id: int):
    received = parse_flag(request.form.get("recibido"))
    try:
        _, advanced = toggle_document(expediente_id, documento_id, received, current_session())
        flash("Documento marcado como recibido" if received else "Documento marcado como pendiente", "success")
        if advanced:
            flash("Todos los documentos recibidos: expediente en Documentos completos", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente_id))


@extranjeria_bp.post("/expedientes/<int:expediente_id>/pagos")
@login_required
@require_staff
def expediente_register_pago(expediente_id: int):
    try:
        pago = register_pago(expediente_id, _form_payload())
        flash(f"Pago registrado: {money(pago.importe)}", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente_id))


@extranjeria_bp.post("/expedientes/<int:expediente_id>/eliminar")
@login_required
@require_role("admin")
def expediente_delete(expediente_id: int):
    try:
        delete_expediente(expediente_id, request.form.get("confirm"), current_session())
        flash("Expediente eliminado", "success")
        return redirect(url_for("extranjeria.expedientes_list"))
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.expediente_detail_page", expediente_id=expediente_id))


# Pagos


@extranjeria_bp.get("/pagos")
@login_required
@require_staff
def pagos_list():
    filters = {
        "desde": request.args.get("desde", "").strip(),
        "hasta": request.args.get("hasta", "").strip(),
        "metodo_pago": request.args.get("metodo_pago", "").strip(),
    }
    try:
        rows = list_pagos(filters)
    except GestoriaError as exc:
        _flash_error(exc)
        rows = []
    return render_template(
        "extranjeria/pagos.html",
        rows=rows,
        filters=filters,
        metodos=list(MetodoPago),
        expedientes=list_expedientes({}),
        money=money,
    )


@extranjeria_bp.post("/pagos/nuevo")
@login_required
@require_staff
def pago_create():
    payload = _form_payload()
    expediente_id = request.form.get("expediente_id", type=int)
    if not expediente_id:
        flash("Debe seleccionar un expediente", "error")
        return redirect(url_for("extranjeria.pagos_list"))
    try:
        pago = register_pago(expediente_id, payload)
        flash(f"Pago registrado: {money(pago.importe)}", "success")
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.pagos_list"))


@extranjeria_bp.get("/pagos/<int:pago_id>/recibo")
@login_required
@require_staff
def pago_recibo(pago_id: int):
    try:
        data = recibo_data(pago_id)
    except NotFoundError:
        abort(404)
    return render_template("extranjeria/recibo.html", data=data, money=money)


# Catálogo de trámites


@extranjeria_bp.get("/tipos-tramite")
@login_required
@require_staff
def tipos_tramite_list():
    return render_template("extranjeria/tipos_tramite.html", tipos=list_tipos_tramite(), money=money)


@extranjeria_bp.post("/tipos-tramite/nuevo")
@login_required
@require_role("admin")
def tipo_tramite_create():
    try:
        tipo = create_tipo_tramite(_form_payload(), current_session())
        flash(f"Trámite {tipo.nombre} creado", "success")
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


@extranjeria_bp.post("/tipos-tramite/<int:tipo_id>/editar")
@login_required
@require_role("admin")
def tipo_tramite_edit(tipo_id: int):
    try:
        update_tipo_tramite(tipo_id, _form_payload(), current_session())
        flash("Trámite actualizado", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


@extranjeria_bp.post("/tipos-tramite/<int:tipo_id>/eliminar")
@login_required
@require_role("admin")
def tipo_tramite_delete(tipo_id: int):
    try:
        delete_tipo_tramite(tipo_id, current_session())
        flash("Trámite eliminado", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


@extranjeria_bp.post("/tipos-tramite/<int:tipo_id>/documentos")
@login_required
@require_role("admin")
def documento_requerido_create(tipo_id: int):
    try:
        create_documento_requerido(tipo_id, _form_payload(), current_session())
        flash("Documento añadido", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


@extranjeria_bp.post("/documentos-requeridos/<int:documento_id>/editar")
@login_required
@require_role("admin")
def documento_requerido_edit(documento_id: int):
    try:
        update_documento_requerido(documento_id, _form_payload(), current_session())
        flash("Documento actualizado", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


@extranjeria_bp.post("/documentos-requeridos/<int:documento_id>/eliminar")
@login_required
@require_role("admin")
def documento_requerido_delete(documento_id: int):
    try:
        delete_documento_requerido(documento_id, current_session())
        flash("Documento eliminado", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.tipos_tramite_list"))


# Configuración


@extranjeria_bp.get("/configuracion")
@login_required
@require_role("admin")
def configuracion():
    return render_template(
        "extranjeria/configuracion.html",
        gestoria=gestoria_config(),
        users=list_users(),
    )


@extranjeria_bp.post("/configuracion/gestoria")
@login_required
@require_role("admin")
def configuracion_gestoria():
    try:
        update_gestoria_config(_form_payload(), current_session())
        flash("Configuración guardada", "success")
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.configuracion"))


@extranjeria_bp.post("/configuracion/usuarios/nuevo")
@login_required
@require_role("admin")
def configuracion_user_create():
    try:
        user = create_user(_form_payload(), current_session())
        flash(f"Usuario {user.email} creado", "success")
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.configuracion"))


@extranjeria_bp.post("/configuracion/usuarios/<int:user_id>/rol")
@login_required
@require_role("admin")
def configuracion_user_role(user_id: int):
    try:
        change_user_role(user_id, request.form.get("role", ""), current_session())
        flash("Rol actualizado", "success")
    except NotFoundError:
        abort(404)
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.configuracion"))


@extranjeria_bp.get("/configuracion/perfil")
@login_required
@require_staff
def perfil():
    return render_template("extranjeria/perfil.html", user=current_user)


@extranjeria_bp.post("/configuracion/perfil")
@login_required
@require_staff
def perfil_update():
    try:
        update_own_profile(_form_payload(), current_session())
        flash("Perfil actualizado", "success")
    except GestoriaError as exc:
        _flash_error(exc)
    return redirect(url_for("extranjeria.perfil"))


@extranjeria_bp.get("/configuracion/exportar")
@login_required
@require_role("admin")
def configuracion_export():
    now = utcnow()
    response = make_response(export_json_bytes(now, current_session()))
    response.headers["Content-Type"] = "application/json; charset=utf-8"
    response.headers["Content-Disposition"] = f'attachment; filename="{export_filename(now)}"'
    return response
