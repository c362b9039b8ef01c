"""initial extranjeria schema

Revision ID: 4b7e2a9c1d30
Revises:
Create Date: 2026-10-17 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "4b7e2a9c1d30"
down_revision = None
branch_labels = None
depends_on = None


ESTADO_VALUES = (
    "pendiente_documentos",
    "documentos_completos",
    "presentado",
    "en_tramite",
    "aprobado",
    "denegado",
    "archivado",
)
ENUM_NAMES = ("app_role", "expediente_estado", "documento_estado", "metodo_pago")


def _estado_enum_existing():
    return sa.Enum(*ESTADO_VALUES, name="expediente_estado").with_variant(
        postgresql.ENUM(*ESTADO_VALUES, name="expediente_estado", create_type=False),
        "postgresql",
    )


def upgrade():
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.Enum("admin", "operador", name="app_role"), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_table(
        "gestoria_config",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("nombre_gestoria", sa.String(length=255), nullable=False),
        sa.Column("telefono", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("direccion", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("ciudad", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("codigo_postal", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=255), nullable=False),
        sa.Column("apellidos", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("telefono", sa.String(length=50), nullable=False),
        sa.Column("nacionalidad", sa.String(length=100), nullable=False),
        sa.Column("nie_pasaporte", sa.String(length=50), nullable=False),
        sa.Column("fecha_vencimiento_nie", sa.Date(), nullable=True),
        sa.Column("fecha_nacimiento", sa.Date(), nullable=True),
        sa.Column("calle", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("numero", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("piso", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("puerta", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("nie_pasaporte", name="uq_clients_nie_pasaporte"),
    )
    op.create_index("ix_clients_apellidos_nombre", "clients", ["apellidos", "nombre"], unique=False)

    op.create_table(
        "tipos_tramite",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=255), nullable=False),
        sa.Column("codigo", sa.String(length=30), nullable=False),
        sa.Column("precio_base", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("precio_base >= 0", name="ck_tipos_tramite_precio_base"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo", name="uq_tipos_tramite_codigo"),
    )
    op.create_table(
        "documentos_requeridos",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tipo_tramite_id", sa.Integer(), nullable=False),
        sa.Column("nombre_documento", sa.String(length=255), nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=False, server_default=""),
        sa.Column("orden", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("orden >= 0", name="ck_documentos_requeridos_orden"),
        sa.ForeignKeyConstraint(["tipo_tramite_id"], ["tipos_tramite.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_documentos_requeridos_tipo_orden",
        "documentos_requeridos",
        ["tipo_tramite_id", "orden"],
        unique=False,
    )

    op.create_table(
        "expediente_secuencias",
        sa.Column("year", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("year"),
    )
    op.create_table(
        "expedientes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("numero_expediente", sa.String(length=20), nullable=False),
        sa.Column("cliente_id", sa.Integer(), nullable=False),
        sa.Column("tipo_tramite_id", sa.Integer(), nullable=False),
        sa.Column("precio_acordado", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("numero_oficial", sa.String(length=60), nullable=True),
        sa.Column("fecha_inicio", sa.Date(), nullable=False),
        sa.Column("fecha_presentacion", sa.Date(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        sa.Column("estado", sa.Enum(*ESTADO_VALUES, name="expediente_estado"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("precio_acordado >= 0", name="ck_expedientes_precio_acordado"),
        sa.ForeignKeyConstraint(["cliente_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tipo_tramite_id"], ["tipos_tramite.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("numero_expediente", name="uq_expedientes_numero"),
    )
    op.create_index("ix_expedientes_estado_updated", "expedientes", ["estado", "updated_at"], unique=False)
    op.create_index("ix_expedientes_cliente", "expedientes", ["cliente_id"], unique=False)

    op.create_table(
        "expediente_documentos",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expediente_id", sa.Integer(), nullable=False),
        sa.Column("documento_requerido_id", sa.Integer(), nullable=False),
        sa.Column(
            "estado_documento",
            sa.Enum("pendiente", "recibido", name="documento_estado"),
            nullable=False,
        ),
        sa.Column("fecha_recibido", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["documento_requerido_id"], ["documentos_requeridos.id"]),
        sa.ForeignKeyConstraint(["expediente_id"], ["expedientes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("expediente_id", "documento_requerido_id", name="uq_expediente_documento"),
    )
    with op.batch_alter_table("expediente_documentos", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_expediente_documentos_expediente_id"), ["expediente_id"], unique=False)

    op.create_table(
        "historial_estados",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expediente_id", sa.Integer(), nullable=False),
        sa.Column("estado_anterior", _estado_enum_existing(), nullable=True),
        sa.Column("estado_nuevo", _estado_enum_existing(), nullable=False),
        sa.Column("fecha_cambio", sa.DateTime(), nullable=False),
        sa.Column("usuario_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["expediente_id"], ["expedientes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["usuario_id"], ["user_account.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_historial_expediente_fecha",
        "historial_estados",
        ["expediente_id", "fecha_cambio"],
        unique=False,
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expediente_id", sa.Integer(), nullable=False),
        sa.Column("cliente_id", sa.Integer(), nullable=False),
        sa.Column("importe", sa.Numeric(10, 2), nullable=False),
        sa.Column("fecha_pago", sa.Date(), nullable=False),
        sa.Column(
            "metodo_pago",
            sa.Enum("efectivo", "transferencia", "tarjeta", "bizum", name="metodo_pago"),
            nullable=False,
        ),
        sa.Column("concepto", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("importe > 0", name="ck_payments_importe_positive"),
        sa.ForeignKeyConstraint(["cliente_id"], ["clients.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["expediente_id"], ["expedientes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_expediente", "payments", ["expediente_id"], unique=False)
    op.create_index("ix_payments_cliente_fecha", "payments", ["cliente_id", "fecha_pago"], unique=False)


def downgrade():
    op.drop_index("ix_payments_cliente_fecha", table_name="payments")
    op.drop_index("ix_payments_expediente", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_historial_expediente_fecha", table_name="historial_estados")
    op.drop_table("historial_estados")

    with op.batch_alter_table("expediente_documentos", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_expediente_documentos_expediente_id"))
    op.drop_table("expediente_documentos")

    op.drop_index("ix_expedientes_cliente", table_name="expedientes")
    op.drop_index("ix_expedientes_estado_updated", table_name="expedientes")
    op.drop_table("expedientes")
    op.drop_table("expediente_secuencias")

    op.drop_index("ix_documentos_requeridos_tipo_orden", table_name="documentos_requeridos")
    op.drop_table("documentos_requeridos")
    op.drop_table("tipos_tramite")

    op.drop_index("ix_clients_apellidos_nombre", table_name="clients")
    op.drop_table("clients")
    op.drop_table("gestoria_config")
    op.drop_table("user_roles")
    op.drop_table("user_account")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUM_NAMES:
            op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))
