from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_
from sqlalchemy.orm import joinedload
from werkzeug.security import generate_password_hash

from gestoria.core.errors import ConflictError, NotFoundError, ValidationError
from gestoria.core.extensions import db
from gestoria.core.models import (
    AppRole,
    Cliente,
    DocumentoRequerido,
    Expediente,
    ExpedienteDocumento,
    ExpedienteEstado,
    GestoriaConfig,
    MetodoPago,
    Pago,
    TipoTramite,
    User,
    UserRole,
)
from gestoria.core.session import SessionContext
from gestoria.core.transactions import atomic
from gestoria.core.utils import (
    clean_text,
    parse_decimal,
    parse_flag,
    parse_id,
    parse_iso_date,
    parse_optional_iso_date,
    validate_email,
)
from gestoria.extranjeria.lifecycle import (
    checklist_progress,
    expediente_by_id,
    parse_estado,
    status_history,
)
from gestoria.extranjeria.rollup import cliente_balance, expediente_balance

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "ELIMINAR"
MIN_PASSWORD_LENGTH = 6


def _require_confirmation(confirm: str | None) -> None:
    if clean_text(confirm).upper() != DELETE_CONFIRMATION:
        raise ValidationError(f"Confirmación inválida. Escribe {DELETE_CONFIRMATION}")


# Clientes


CLIENTE_REQUIRED = {
    "nombre": "El nombre es obligatorio",
    "apellidos": "Los apellidos son obligatorios",
    "telefono": "El teléfono es obligatorio",
    "nacionalidad": "La nacionalidad es obligatoria",
    "nie_pasaporte": "El NIE/Pasaporte es obligatorio",
}


def _cliente_payload(payload: dict[str, str]) -> dict[str, object]:
    values: dict[str, object] = {}
    for field, message in CLIENTE_REQUIRED.items():
        value = clean_text(payload.get(field))
        if not value:
            raise ValidationError(message)
        values[field] = value
    values["nie_pasaporte"] = str(values["nie_pasaporte"]).upper().replace(" ", "")
    values["email"] = validate_email(payload.get("email"))
    values["fecha_vencimiento_nie"] = parse_optional_iso_date(
        payload.get("fecha_vencimiento_nie"), "fecha de vencimiento del NIE"
    )
    values["fecha_nacimiento"] = parse_optional_iso_date(payload.get("fecha_nacimiento"), "fecha de nacimiento")
    for field in ("calle", "numero", "piso", "puerta", "observaciones"):
        values[field] = clean_text(payload.get(field))
    return values


def list_clientes(search_text: str = "", limit: int = 200) -> list[Cliente]:
    query = Cliente.query
    term = clean_text(search_text)
    if term:
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                Cliente.nombre.ilike(pattern),
                Cliente.apellidos.ilike(pattern),
                Cliente.nie_pasaporte.ilike(pattern),
                Cliente.email.ilike(pattern),
            )
        )
    return (
        query.order_by(Cliente.apellidos.asc(), Cliente.nombre.asc(), Cliente.id.asc())
        .limit(max(1, min(limit, 500)))
        .all()
    )


def cliente_by_id(cliente_id: int) -> Cliente:
    cliente = db.session.get(Cliente, cliente_id)
    if not cliente:
        raise NotFoundError("Cliente no encontrado")
    return cliente


def create_cliente(payload: dict[str, str]) -> Cliente:
    values = _cliente_payload(payload)
    if Cliente.query.filter_by(nie_pasaporte=values["nie_pasaporte"]).first():
        raise ConflictError("Ya existe un cliente con ese NIE/Pasaporte")
    cliente = Cliente(**values)
    with atomic():
        db.session.add(cliente)
    logger.info("Cliente %s creado", cliente.id)
    return cliente


def update_cliente(cliente_id: int, payload: dict[str, str]) -> Cliente:
    cliente = cliente_by_id(cliente_id)
    values = _cliente_payload(payload)
    existing = (
        Cliente.query.filter_by(nie_pasaporte=values["nie_pasaporte"])
        .filter(Cliente.id != cliente.id)
        .first()
    )
    if existing:
        raise ConflictError("Ya existe otro cliente con ese NIE/Pasaporte")
    with atomic():
        for field, value in values.items():
            setattr(cliente, field, value)
    return cliente


def delete_cliente(cliente_id: int, confirm: str | None, actor: SessionContext) -> None:
    actor.require_admin()
    _require_confirmation(confirm)
    cliente = cliente_by_id(cliente_id)
    label = cliente.full_name
    with atomic():
        db.session.delete(cliente)
    logger.warning("Cliente %s (%s) eliminado por usuario %s", cliente_id, label, actor.user_id)


def cliente_detail(cliente_id: int) -> dict[str, object]:
    cliente = cliente_by_id(cliente_id)
    return {
        "cliente": cliente,
        "expedientes": cliente.expedientes,
        "pagos": cliente.pagos,
        "balance": cliente_balance(cliente.id),
    }


# Catálogo de trámites


def list_tipos_tramite(only_active: bool = False) -> list[TipoTramite]:
    query = TipoTramite.query.options(joinedload(TipoTramite.documentos))
    if only_active:
        query = query.filter(TipoTramite.active.is_(True))
    return query.order_by(TipoTramite.nombre.asc(), TipoTramite.id.asc()).all()


def tipo_tramite_by_id(tipo_id: int) -> TipoTramite:
    tipo = db.session.get(TipoTramite, tipo_id)
    if not tipo:
        raise NotFoundError("Tipo de trámite no encontrado")
    return tipo


def _tipo_payload(payload: dict[str, str]) -> dict[str, object]:
    nombre = clean_text(payload.get("nombre"))
    if not nombre:
        raise ValidationError("El nombre del trámite es obligatorio")
    codigo = clean_text(payload.get("codigo")).upper()
    if not codigo:
        raise ValidationError("El código del trámite es obligatorio")
    precio = parse_decimal(payload.get("precio_base") or "0", "precio base")
    if precio < 0:
        raise ValidationError("El precio base no puede ser negativo")
    return {"nombre": nombre, "codigo": codigo, "precio_base": precio, "active": parse_flag(payload.get("active"))}


def create_tipo_tramite(payload: dict[str, str], actor: SessionContext) -> TipoTramite:
    actor.require_admin()
    values = _tipo_payload(payload)
    if TipoTramite.query.filter_by(codigo=values["codigo"]).first():
        raise ConflictError(f"Ya existe un trámite con código {values['codigo']}")
    tipo = TipoTramite(**values)
    with atomic():
        db.session.add(tipo)
    logger.info("Tipo de trámite %s creado", tipo.codigo)
    return tipo


def update_tipo_tramite(tipo_id: int, payload: dict[str, str], actor: SessionContext) -> TipoTramite:
    actor.require_admin()
    tipo = tipo_tramite_by_id(tipo_id)
    values = _tipo_payload(payload)
    existing = TipoTramite.query.filter_by(codigo=values["codigo"]).filter(TipoTramite.id != tipo.id).first()
    if existing:
        raise ConflictError(f"Ya existe un trámite con código {values['codigo']}")
    with atomic():
        for field, value in values.items():
            setattr(tipo, field, value)
    return tipo


def delete_tipo_tramite(tipo_id: int, actor: SessionContext) -> None:
    actor.require_admin()
    tipo = tipo_tramite_by_id(tipo_id)
    in_use = Expediente.query.filter_by(tipo_tramite_id=tipo.id).count()
    if in_use:
        raise ConflictError(f"El trámite {tipo.nombre} tiene {in_use} expedientes; desactívalo en su lugar")
    with atomic():
        db.session.delete(tipo)
    logger.info("Tipo de trámite %s eliminado por usuario %s", tipo.codigo, actor.user_id)


def documento_requerido_by_id(documento_id: int) -> DocumentoRequerido:
    documento = db.session.get(DocumentoRequerido, documento_id)
    if not documento:
        raise NotFoundError("Documento requerido no encontrado")
    return documento


def _documento_payload(payload: dict[str, str]) -> dict[str, object]:
    nombre = clean_text(payload.get("nombre_documento"))
    if not nombre:
        raise ValidationError("El nombre del documento es obligatorio")
    raw_orden = clean_text(payload.get("orden")) or "0"
    if not raw_orden.isdigit():
        raise ValidationError("El orden debe ser un número entero positivo")
    return {
        "nombre_documento": nombre,
        "descripcion": clean_text(payload.get("descripcion")),
        "orden": int(raw_orden),
        "active": parse_flag(payload.get("active")),
    }


def create_documento_requerido(tipo_id: int, payload: dict[str, str], actor: SessionContext) -> DocumentoRequerido:
    actor.require_admin()
    tipo = tipo_tramite_by_id(tipo_id)
    documento = DocumentoRequerido(tipo_tramite_id=tipo.id, **_documento_payload(payload))
    with atomic():
        db.session.add(documento)
    return documento


def update_documento_requerido(
    documento_id: int,
    payload: dict[str, str],
    actor: SessionContext,
) -> DocumentoRequerido:
    actor.require_admin()
    documento = documento_requerido_by_id(documento_id)
    with atomic():
        for field, value in _documento_payload(payload).items():
            setattr(documento, field, value)
    return documento


def delete_documento_requerido(documento_id: int, actor: SessionContext) -> None:
    actor.require_admin()
    documento = documento_requerido_by_id(documento_id)
    in_use = ExpedienteDocumento.query.filter_by(documento_requerido_id=documento.id).count()
    if in_use:
        raise ConflictError("El documento se usa en expedientes existentes; desactívalo en su lugar")
    with atomic():
        db.session.delete(documento)


# Expedientes


def list_expedientes(filters: dict[str, str]) -> list[Expediente]:
    query = Expediente.query.options(
        joinedload(Expediente.cliente),
        joinedload(Expediente.tipo_tramite),
    ).order_by(Expediente.created_at.desc(), Expediente.id.desc())

    estado = clean_text(filters.get("estado"))
    if estado:
        query = query.filter(Expediente.estado == parse_estado(estado))
    tipo_id = clean_text(filters.get("tipo_tramite_id"))
    if tipo_id:
        if not tipo_id.isdigit():
            return []
        query = query.filter(Expediente.tipo_tramite_id == int(tipo_id))
    cliente_id = clean_text(filters.get("cliente_id"))
    if cliente_id:
        if not cliente_id.isdigit():
            return []
        query = query.filter(Expediente.cliente_id == int(cliente_id))
    texto = clean_text(filters.get("q"))
    if texto:
        pattern = f"%{texto}%"
        query = query.filter(or_(Expediente.numero.ilike(pattern), Expediente.numero_oficial.ilike(pattern)))
    return query.all()


def update_expediente(expediente_id: int, payload: dict[str, str]) -> Expediente:
    """Edit the mutable fields; number, cliente, tipo and estado stay as they are."""
    expediente = expediente_by_id(expediente_id)
    precio = parse_decimal(payload.get("precio_acordado"), "precio acordado")
    if precio < 0:
        raise ValidationError("El precio acordado no puede ser negativo")
    with atomic():
        expediente.precio_acordado = precio
        expediente.numero_oficial = clean_text(payload.get("numero_oficial")) or None
        expediente.fecha_presentacion = parse_optional_iso_date(
            payload.get("fecha_presentacion"), "fecha de presentación"
        )
        expediente.observaciones = clean_text(payload.get("observaciones"))
    return expediente


def delete_expediente(expediente_id: int, confirm: str | None, actor: SessionContext) -> None:
    actor.require_admin()
    _require_confirmation(confirm)
    expediente = expediente_by_id(expediente_id)
    numero = expediente.numero
    with atomic():
        db.session.delete(expediente)
    logger.warning("Expediente %s eliminado por usuario %s", numero, actor.user_id)


def expediente_detail(expediente_id: int) -> dict[str, object]:
    expediente = expediente_by_id(expediente_id)
    received, total = checklist_progress(expediente)
    return {
        "expediente": expediente,
        "documentos": expediente.documentos,
        "historial": status_history(expediente.id),
        "pagos": expediente.pagos,
        "balance": expediente_balance(expediente.id),
        "received": received,
        "total": total,
        "estados": list(ExpedienteEstado),
        "metodos": list(MetodoPago),
    }


# Pagos


def parse_metodo_pago(value: str | None) -> MetodoPago:
    raw = clean_text(value).lower()
    if not raw:
        return MetodoPago.EFECTIVO
    try:
        return MetodoPago(raw)
    except ValueError as exc:
        raise ValidationError(f"Método de pago inválido: {value}") from exc


def register_pago(expediente_id: int, payload: dict[str, str], today: date | None = None) -> Pago:
    expediente = expediente_by_id(expediente_id)
    importe = parse_decimal(payload.get("importe"), "importe")
    if importe <= 0:
        raise ValidationError("El importe debe ser mayor que cero")
    fecha_raw = clean_text(payload.get("fecha_pago"))
    pago = Pago(
        expediente_id=expediente.id,
        cliente_id=expediente.cliente_id,
        importe=importe,
        fecha_pago=parse_iso_date(fecha_raw, "fecha de pago") if fecha_raw else (today or date.today()),
        metodo_pago=parse_metodo_pago(payload.get("metodo_pago")),
        concepto=clean_text(payload.get("concepto")),
        observaciones=clean_text(payload.get("observaciones")),
    )
    with atomic():
        db.session.add(pago)
    logger.info("Pago %s de %s registrado en expediente %s", pago.id, pago.importe, expediente.numero)
    return pago


def list_pagos(filters: dict[str, str]) -> list[Pago]:
    query = Pago.query.options(joinedload(Pago.expediente), joinedload(Pago.cliente))
    desde = parse_optional_iso_date(filters.get("desde"), "fecha desde")
    hasta = parse_optional_iso_date(filters.get("hasta"), "fecha hasta")
    if desde:
        query = query.filter(Pago.fecha_pago >= desde)
    if hasta:
        query = query.filter(Pago.fecha_pago <= hasta)
    metodo = clean_text(filters.get("metodo_pago"))
    if metodo:
        query = query.filter(Pago.metodo_pago == parse_metodo_pago(metodo))
    return query.order_by(Pago.fecha_pago.desc(), Pago.id.desc()).all()


def pago_by_id(pago_id: int) -> Pago:
    pago = db.session.get(Pago, pago_id)
    if not pago:
        raise NotFoundError("Pago no encontrado")
    return pago


def recibo_numero(pago: Pago) -> str:
    return f"{pago.expediente.numero}/{pago.id:04d}"


def recibo_data(pago_id: int) -> dict[str, object]:
    pago = pago_by_id(pago_id)
    expediente = pago.expediente
    balance = expediente_balance(expediente.id)
    return {
        "numero_recibo": recibo_numero(pago),
        "gestoria": gestoria_config(),
        "cliente": pago.cliente,
        "expediente": expediente,
        "pago": pago,
        "totales": {
            "precio_acordado": balance.agreed,
            "total_pagado": balance.paid,
            "pendiente": balance.pending,
            "este_pago": pago.importe,
        },
    }


# Usuarios y roles


def list_users() -> list[User]:
    return User.query.options(joinedload(User.role_assignment)).order_by(User.full_name.asc(), User.id.asc()).all()


def parse_role(value: str | None) -> AppRole:
    try:
        return AppRole(clean_text(value).lower())
    except ValueError as exc:
        raise ValidationError(f"Rol inválido: {value}") from exc


def create_user(payload: dict[str, str], actor: SessionContext) -> User:
    actor.require_admin()
    email = validate_email(payload.get("email"))
    full_name = clean_text(payload.get("full_name"))
    if not full_name:
        raise ValidationError("El nombre es obligatorio")
    password = payload.get("password") or ""
    if not password:
        raise ValidationError("La contraseña es obligatoria")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres")
    role = parse_role(payload.get("role") or AppRole.OPERADOR.value)
    if User.query.filter_by(email=email).first():
        raise ConflictError("Ya existe un usuario con ese email")

    user = User(email=email, full_name=full_name, password_hash=generate_password_hash(password))
    with atomic():
        db.session.add(user)
        db.session.flush()
        db.session.add(UserRole(user_id=user.id, role=role))
    logger.info("Usuario %s creado con rol %s", email, role.value)
    return user


def change_user_role(user_id: int, role_raw: str, actor: SessionContext) -> User:
    actor.require_admin()
    role = parse_role(role_raw)
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado")
    if user.role == AppRole.ADMIN and role != AppRole.ADMIN:
        admins = UserRole.query.filter_by(role=AppRole.ADMIN).count()
        if admins <= 1:
            raise ConflictError("No se puede quitar el rol al último administrador")
    with atomic():
        if user.role_assignment is None:
            db.session.add(UserRole(user_id=user.id, role=role))
        else:
            user.role_assignment.role = role
    logger.info("Rol de %s cambiado a %s por usuario %s", user.email, role.value, actor.user_id)
    return user


def update_own_profile(payload: dict[str, str], actor: SessionContext) -> User:
    user = db.session.get(User, actor.user_id)
    if not user:
        raise NotFoundError("Usuario no encontrado")
    full_name = clean_text(payload.get("full_name"))
    if not full_name:
        raise ValidationError("El nombre es obligatorio")
    with atomic():
        user.full_name = full_name
    logger.info("Perfil de %s actualizado", user.email)
    return user


# Configuración de la gestoría


def gestoria_config() -> GestoriaConfig:
    config = GestoriaConfig.query.order_by(GestoriaConfig.id.asc()).first()
    if config is None:
        return GestoriaConfig(nombre_gestoria="Gestoría")
    return config


def update_gestoria_config(payload: dict[str, str], actor: SessionContext) -> GestoriaConfig:
    actor.require_admin()
    nombre = clean_text(payload.get("nombre_gestoria"))
    if not nombre:
        raise ValidationError("El nombre de la gestoría es obligatorio")
    email = clean_text(payload.get("email"))
    with atomic():
        config = GestoriaConfig.query.order_by(GestoriaConfig.id.asc()).first()
        if config is None:
            config = GestoriaConfig(nombre_gestoria=nombre)
            db.session.add(config)
        config.nombre_gestoria = nombre
        config.email = validate_email(email) if email else ""
        for field in ("telefono", "direccion", "ciudad", "codigo_postal"):
            setattr(config, field, clean_text(payload.get(field)))
    return config
