from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from gestoria.core.errors import ConflictError, ValidationError
from gestoria.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class AppRole(str, Enum):
    ADMIN = "admin"
    OPERADOR = "operador"


class ExpedienteEstado(str, Enum):
    PENDIENTE_DOCUMENTOS = "pendiente_documentos"
    DOCUMENTOS_COMPLETOS = "documentos_completos"
    PRESENTADO = "presentado"
    EN_TRAMITE = "en_tramite"
    APROBADO = "aprobado"
    DENEGADO = "denegado"
    ARCHIVADO = "archivado"

    @property
    def label(self) -> str:
        return ESTADO_LABELS[self]


ESTADO_LABELS: dict[ExpedienteEstado, str] = {
    ExpedienteEstado.PENDIENTE_DOCUMENTOS: "Pendiente documentos",
    ExpedienteEstado.DOCUMENTOS_COMPLETOS: "Documentos completos",
    ExpedienteEstado.PRESENTADO: "Presentado",
    ExpedienteEstado.EN_TRAMITE: "En trámite",
    ExpedienteEstado.APROBADO: "Aprobado",
    ExpedienteEstado.DENEGADO: "Denegado",
    ExpedienteEstado.ARCHIVADO: "Archivado",
}

ACTIVE_ESTADOS = (
    ExpedienteEstado.PENDIENTE_DOCUMENTOS,
    ExpedienteEstado.DOCUMENTOS_COMPLETOS,
    ExpedienteEstado.PRESENTADO,
    ExpedienteEstado.EN_TRAMITE,
)


class DocumentoEstado(str, Enum):
    PENDIENTE = "pendiente"
    RECIBIDO = "recibido"


class MetodoPago(str, Enum):
    EFECTIVO = "efectivo"
    TRANSFERENCIA = "transferencia"
    TARJETA = "tarjeta"
    BIZUM = "bizum"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    role_assignment = relationship(
        "UserRole",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def role(self) -> AppRole | None:
        return self.role_assignment.role if self.role_assignment else None

    @property
    def is_admin(self) -> bool:
        return self.role == AppRole.ADMIN


class UserRole(db.Model):
    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("user_account.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    role: Mapped[AppRole] = mapped_column(
        _enum_column(AppRole, "app_role"),
        nullable=False,
        default=AppRole.OPERADOR,
    )

    user = relationship("User", back_populates="role_assignment")


class GestoriaConfig(db.Model):
    # Datos de la gestoría para cabecera de recibos
    __tablename__ = "gestoria_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre_gestoria: Mapped[str] = mapped_column(db.String(255), nullable=False)
    telefono: Mapped[str] = mapped_column(db.String(50), nullable=False, default="")
    email: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    direccion: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    ciudad: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    codigo_postal: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class Cliente(db.Model):
    __tablename__ = "clients"
    __table_args__ = (
        UniqueConstraint("nie_pasaporte", name="uq_clients_nie_pasaporte"),
        Index("ix_clients_apellidos_nombre", "apellidos", "nombre"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(db.String(255), nullable=False)
    apellidos: Mapped[str] = mapped_column(db.String(255), nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    telefono: Mapped[str] = mapped_column(db.String(50), nullable=False)
    nacionalidad: Mapped[str] = mapped_column(db.String(100), nullable=False)
    nie_pasaporte: Mapped[str] = mapped_column(db.String(50), nullable=False)
    fecha_vencimiento_nie: Mapped[date | None] = mapped_column(nullable=True)
    fecha_nacimiento: Mapped[date | None] = mapped_column(nullable=True)
    calle: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    numero: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    piso: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    puerta: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    expedientes = relationship(
        "Expediente",
        back_populates="cliente",
        cascade="all, delete-orphan",
        order_by="Expediente.created_at.desc()",
    )
    pagos = relationship(
        "Pago",
        back_populates="cliente",
        cascade="all, delete-orphan",
        order_by="Pago.fecha_pago.desc()",
    )

    @property
    def full_name(self) -> str:
        return f"{self.nombre} {self.apellidos}".strip()

    @property
    def direccion(self) -> str:
        parts = [self.calle, self.numero]
        floor = " ".join(p for p in [self.piso, self.puerta] if p)
        if floor:
            parts.append(floor)
        return ", ".join(p for p in parts if p)


class TipoTramite(db.Model):
    __tablename__ = "tipos_tramite"
    __table_args__ = (
        UniqueConstraint("codigo", name="uq_tipos_tramite_codigo"),
        CheckConstraint("precio_base >= 0", name="ck_tipos_tramite_precio_base"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(db.String(255), nullable=False)
    codigo: Mapped[str] = mapped_column(db.String(30), nullable=False)
    precio_base: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    documentos = relationship(
        "DocumentoRequerido",
        back_populates="tipo_tramite",
        cascade="all, delete-orphan",
        order_by="(DocumentoRequerido.orden, DocumentoRequerido.id)",
    )
    expedientes = relationship("Expediente", back_populates="tipo_tramite")


class DocumentoRequerido(db.Model):
    # Plantilla de checklist por tipo de trámite
    __tablename__ = "documentos_requeridos"
    __table_args__ = (
        Index("ix_documentos_requeridos_tipo_orden", "tipo_tramite_id", "orden"),
        CheckConstraint("orden >= 0", name="ck_documentos_requeridos_orden"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tipo_tramite_id: Mapped[int] = mapped_column(
        ForeignKey("tipos_tramite.id", ondelete="CASCADE"),
        nullable=False,
    )
    nombre_documento: Mapped[str] = mapped_column(db.String(255), nullable=False)
    descripcion: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    orden: Mapped[int] = mapped_column(nullable=False, default=0)
    active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tipo_tramite = relationship("TipoTramite", back_populates="documentos")


class ExpedienteSecuencia(db.Model):
    # Contador atómico de numeración YY/NNN, una fila por año
    __tablename__ = "expediente_secuencias"

    year: Mapped[int] = mapped_column(primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(nullable=False, default=0)


class Expediente(db.Model):
    __tablename__ = "expedientes"
    __table_args__ = (
        UniqueConstraint("numero_expediente", name="uq_expedientes_numero"),
        CheckConstraint("precio_acordado >= 0", name="ck_expedientes_precio_acordado"),
        Index("ix_expedientes_estado_updated", "estado", "updated_at"),
        Index("ix_expedientes_cliente", "cliente_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    numero: Mapped[str] = mapped_column("numero_expediente", db.String(20), nullable=False)
    cliente_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    tipo_tramite_id: Mapped[int] = mapped_column(ForeignKey("tipos_tramite.id"), nullable=False)
    precio_acordado: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    numero_oficial: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    fecha_inicio: Mapped[date] = mapped_column(nullable=False)
    fecha_presentacion: Mapped[date | None] = mapped_column(nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    estado: Mapped[ExpedienteEstado] = mapped_column(
        _enum_column(ExpedienteEstado, "expediente_estado"),
        nullable=False,
        default=ExpedienteEstado.PENDIENTE_DOCUMENTOS,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    cliente = relationship("Cliente", back_populates="expedientes")
    tipo_tramite = relationship("TipoTramite", back_populates="expedientes")
    documentos = relationship(
        "ExpedienteDocumento",
        back_populates="expediente",
        cascade="all, delete-orphan",
        order_by="ExpedienteDocumento.id",
    )
    historial = relationship(
        "HistorialEstado",
        back_populates="expediente",
        cascade="all, delete-orphan",
        order_by="(HistorialEstado.fecha_cambio, HistorialEstado.id)",
    )
    pagos = relationship(
        "Pago",
        back_populates="expediente",
        cascade="all, delete-orphan",
        order_by="Pago.fecha_pago.desc()",
    )

    @validates("numero")
    def validate_numero(self, _key, value):
        if self.numero and value != self.numero:
            raise ConflictError(f"El número de expediente {self.numero} no se puede modificar")
        return value


class ExpedienteDocumento(db.Model):
    # Instancia del checklist de un expediente
    __tablename__ = "expediente_documentos"
    __table_args__ = (
        UniqueConstraint("expediente_id", "documento_requerido_id", name="uq_expediente_documento"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(
        ForeignKey("expedientes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    documento_requerido_id: Mapped[int] = mapped_column(ForeignKey("documentos_requeridos.id"), nullable=False)
    estado: Mapped[DocumentoEstado] = mapped_column(
        "estado_documento",
        _enum_column(DocumentoEstado, "documento_estado"),
        nullable=False,
        default=DocumentoEstado.PENDIENTE,
    )
    fecha_recibido: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    expediente = relationship("Expediente", back_populates="documentos")
    documento_requerido = relationship("DocumentoRequerido")

    @property
    def recibido(self) -> bool:
        return self.estado == DocumentoEstado.RECIBIDO


class HistorialEstado(db.Model):
    __tablename__ = "historial_estados"
    __table_args__ = (Index("ix_historial_expediente_fecha", "expediente_id", "fecha_cambio"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(
        ForeignKey("expedientes.id", ondelete="CASCADE"),
        nullable=False,
    )
    estado_anterior: Mapped[ExpedienteEstado | None] = mapped_column(
        _enum_column(ExpedienteEstado, "expediente_estado"),
        nullable=True,
    )
    estado_nuevo: Mapped[ExpedienteEstado] = mapped_column(
        _enum_column(ExpedienteEstado, "expediente_estado"),
        nullable=False,
    )
    fecha_cambio: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    usuario_id: Mapped[int | None] = mapped_column(
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )

    expediente = relationship("Expediente", back_populates="historial")
    usuario = relationship("User")


class Pago(db.Model):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("importe > 0", name="ck_payments_importe_positive"),
        Index("ix_payments_expediente", "expediente_id"),
        Index("ix_payments_cliente_fecha", "cliente_id", "fecha_pago"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    expediente_id: Mapped[int] = mapped_column(ForeignKey("expedientes.id", ondelete="CASCADE"), nullable=False)
    cliente_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    importe: Mapped[Decimal] = mapped_column(db.Numeric(10, 2), nullable=False)
    fecha_pago: Mapped[date] = mapped_column(nullable=False)
    metodo_pago: Mapped[MetodoPago] = mapped_column(
        _enum_column(MetodoPago, "metodo_pago"),
        nullable=False,
        default=MetodoPago.EFECTIVO,
    )
    concepto: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    expediente = relationship("Expediente", back_populates="pagos")
    cliente = relationship("Cliente", back_populates="pagos")

    @validates("importe")
    def validate_importe(self, _key, value):
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if amount <= 0:
            raise ValidationError("El importe debe ser mayor que cero")
        return amount


@event.listens_for(HistorialEstado, "before_update")
def historial_is_append_only(_mapper, _connection, target: HistorialEstado) -> None:
    raise ConflictError(f"El historial de estados no se puede modificar (entrada {target.id})")


def seed_demo_data(session) -> None:
    admin = User(
        email="admin@gestoria.local",
        full_name="Admin Gestoría",
        password_hash=generate_password_hash("admin123"),
    )
    operador = User(
        email="operador@gestoria.local",
        full_name="Operador Gestoría",
        password_hash=generate_password_hash("operador123"),
    )
    session.add_all([admin, operador])
    session.flush()
    session.add_all(
        [
            UserRole(user_id=admin.id, role=AppRole.ADMIN),
            UserRole(user_id=operador.id, role=AppRole.OPERADOR),
        ]
    )

    session.add(
        GestoriaConfig(
            nombre_gestoria="Gestoría Demo Extranjería",
            telefono="910000000",
            email="info@gestoria.local",
            direccion="Calle Mayor 1",
            ciudad="Madrid",
            codigo_postal="28013",
        )
    )

    arraigo = TipoTramite(nombre="Arraigo social", codigo="ARR-SOC", precio_base=Decimal("450.00"))
    renovacion = TipoTramite(nombre="Renovación de residencia", codigo="REN-RES", precio_base=Decimal("200.00"))
    nacionalidad = TipoTramite(nombre="Nacionalidad por residencia", codigo="NAC-RES", precio_base=Decimal("600.00"))
    reagrupacion = TipoTramite(
        nombre="Reagrupación familiar",
        codigo="REAGR",
        precio_base=Decimal("350.00"),
        active=False,
    )
    session.add_all([arraigo, renovacion, nacionalidad, reagrupacion])
    session.flush()

    session.add_all(
        [
            DocumentoRequerido(tipo_tramite_id=arraigo.id, nombre_documento="Pasaporte completo", orden=1),
            DocumentoRequerido(
                tipo_tramite_id=arraigo.id,
                nombre_documento="Certificado de empadronamiento",
                descripcion="Histórico con antigüedad mínima",
                orden=2,
            ),
            DocumentoRequerido(tipo_tramite_id=arraigo.id, nombre_documento="Antecedentes penales", orden=3),
            DocumentoRequerido(
                tipo_tramite_id=arraigo.id,
                nombre_documento="Informe de esfuerzo de integración",
                orden=4,
                active=False,
            ),
            DocumentoRequerido(tipo_tramite_id=renovacion.id, nombre_documento="TIE en vigor", orden=1),
            DocumentoRequerido(tipo_tramite_id=renovacion.id, nombre_documento="Vida laboral", orden=2),
        ]
    )

    session.add_all(
        [
            Cliente(
                nombre="Amina",
                apellidos="El Idrissi",
                email="amina@example.com",
                telefono="600111222",
                nacionalidad="Marruecos",
                nie_pasaporte="X1234567L",
                fecha_vencimiento_nie=date(2027, 3, 1),
                calle="Calle Toledo",
                numero="12",
                piso="3",
                puerta="B",
            ),
            Cliente(
                nombre="Carlos",
                apellidos="Mendoza Ruiz",
                email="carlos@example.com",
                telefono="600333444",
                nacionalidad="Colombia",
                nie_pasaporte="Y7654321M",
            ),
        ]
    )
    session.commit()
