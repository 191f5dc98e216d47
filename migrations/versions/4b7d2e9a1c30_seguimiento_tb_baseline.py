"""seguimiento tb baseline schema

Revision ID: 4b7d2e9a1c30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "4b7d2e9a1c30"
down_revision = None
branch_labels = None
depends_on = None

SEXO_VALUES = ("M", "F", "OTRO")

ENUM_TYPES = [
    "usuario_rol",
    "sexo",
    "tipo_tb",
    "tipo_contacto",
    "tipo_examen",
    "tipo_control",
    "estado_control",
    "estado_tpt",
    "tipo_visita",
    "resultado_visita",
    "tipo_derivacion",
    "estado_derivacion",
    "tipo_alerta",
    "severidad",
    "estado_alerta",
]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _shared_sexo_type():
    # caso_indice creates the type; later tables must not re-create it on PostgreSQL.
    if op.get_bind().dialect.name == "postgresql":
        return postgresql.ENUM(*SEXO_VALUES, name="sexo", create_type=False)
    return sa.Enum(*SEXO_VALUES, name="sexo")


def upgrade():
    op.create_table(
        "establecimiento_salud",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=50), nullable=False),
        sa.Column("nombre", sa.String(length=200), nullable=False),
        sa.Column("tipo", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("distrito", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo"),
    )

    op.create_table(
        "usuario",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column(
            "rol",
            sa.Enum("ADMIN", "MEDICO", "ENFERMERIA", "CONSULTA", name="usuario_rol"),
            nullable=False,
        ),
        sa.Column("establecimiento_id", sa.Integer(), nullable=True),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "caso_indice",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo_caso", sa.String(length=50), nullable=False),
        sa.Column("paciente_dni", sa.String(length=20), nullable=True),
        sa.Column("paciente_nombres", sa.String(length=100), nullable=False),
        sa.Column("paciente_apellidos", sa.String(length=100), nullable=False),
        sa.Column("fecha_nacimiento", sa.Date(), nullable=True),
        sa.Column("sexo", sa.Enum(*SEXO_VALUES, name="sexo"), nullable=True),
        sa.Column(
            "tipo_tb",
            sa.Enum("PULMONAR", "EXTRAPULMONAR", "MILIAR", "MENINGEA", name="tipo_tb"),
            nullable=False,
        ),
        sa.Column("fecha_diagnostico", sa.Date(), nullable=False),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint(
            "fecha_nacimiento IS NULL OR fecha_nacimiento <= fecha_diagnostico",
            name="ck_caso_indice_nacimiento",
        ),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo_caso"),
    )
    with op.batch_alter_table("caso_indice", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_caso_indice_establecimiento_id"), ["establecimiento_id"], unique=False)

    op.create_table(
        "contacto",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("caso_indice_id", sa.Integer(), nullable=False),
        sa.Column("dni", sa.String(length=20), nullable=True),
        sa.Column("nombres", sa.String(length=100), nullable=False),
        sa.Column("apellidos", sa.String(length=100), nullable=False),
        sa.Column("fecha_nacimiento", sa.Date(), nullable=True),
        sa.Column("sexo", _shared_sexo_type(), nullable=True),
        sa.Column(
            "tipo_contacto",
            sa.Enum("INTRADOMICILIARIO", "EXTRADOMICILIARIO", name="tipo_contacto"),
            nullable=False,
        ),
        sa.Column("parentesco", sa.String(length=50), nullable=False, server_default=""),
        sa.Column("direccion", sa.Text(), nullable=False, server_default=""),
        sa.Column("telefono", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        sa.Column("fecha_registro", sa.Date(), nullable=False),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["caso_indice_id"], ["caso_indice.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("contacto", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_contacto_caso_indice_id"), ["caso_indice_id"], unique=False)

    op.create_table(
        "examen_contacto",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contacto_id", sa.Integer(), nullable=False),
        sa.Column(
            "tipo_examen",
            sa.Enum("CLINICO", "RADIOLOGICO", "INMUNOLOGICO", "BACTERIOLOGICO", "INTEGRAL", name="tipo_examen"),
            nullable=False,
        ),
        sa.Column("fecha_examen", sa.Date(), nullable=False),
        sa.Column("resultado", sa.Text(), nullable=False, server_default=""),
        sa.Column("resultado_codificado", sa.String(length=50), nullable=True),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("examen_contacto", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_examen_contacto_contacto_id"), ["contacto_id"], unique=False)

    op.create_table(
        "control_contacto",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contacto_id", sa.Integer(), nullable=False),
        sa.Column("numero_control", sa.Integer(), nullable=False),
        sa.Column(
            "tipo_control",
            sa.Enum("CLINICO", "RADIOLOGICO", "BACTERIOLOGICO", "INTEGRAL", name="tipo_control"),
            nullable=False,
        ),
        sa.Column("fecha_programada", sa.Date(), nullable=False),
        sa.Column("fecha_realizada", sa.Date(), nullable=True),
        sa.Column(
            "estado",
            sa.Enum("PROGRAMADO", "REALIZADO", "NO_REALIZADO", "CANCELADO", name="estado_control"),
            nullable=False,
        ),
        sa.Column("resultado", sa.Text(), nullable=False, server_default=""),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_programa_id", sa.Integer(), nullable=True),
        sa.Column("usuario_realiza_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint("numero_control > 0", name="ck_control_numero_positivo"),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_programa_id"], ["usuario.id"]),
        sa.ForeignKeyConstraint(["usuario_realiza_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("control_contacto", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_control_contacto_contacto_id"), ["contacto_id"], unique=False)
    op.create_index(
        "ix_control_contacto_numero",
        "control_contacto",
        ["contacto_id", "numero_control"],
        unique=False,
    )
    op.create_index(
        "ix_control_contacto_estado_programada",
        "control_contacto",
        ["estado", "fecha_programada"],
        unique=False,
    )

    op.create_table(
        "esquema_tpt",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=50), nullable=False),
        sa.Column("nombre", sa.String(length=100), nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=False, server_default=""),
        sa.Column("duracion_meses", sa.Integer(), nullable=False),
        sa.Column("medicamentos", sa.Text(), nullable=False, server_default=""),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("duracion_meses > 0", name="ck_esquema_duracion_positiva"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo"),
    )

    op.create_table(
        "tpt_indicacion",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contacto_id", sa.Integer(), nullable=False),
        sa.Column("esquema_tpt_id", sa.Integer(), nullable=False),
        sa.Column("fecha_indicacion", sa.Date(), nullable=False),
        sa.Column("fecha_inicio", sa.Date(), nullable=True),
        sa.Column("fecha_fin_prevista", sa.Date(), nullable=True),
        sa.Column(
            "estado",
            sa.Enum("INDICADO", "EN_CURSO", "COMPLETADO", "SUSPENSO", "ABANDONADO", name="estado_tpt"),
            nullable=False,
        ),
        sa.Column("fecha_cambio_estado", sa.Date(), nullable=True),
        sa.Column("motivo_indicacion", sa.Text(), nullable=False, server_default=""),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_indicacion_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint(
            "fecha_inicio IS NULL OR fecha_fin_prevista IS NULL OR fecha_inicio <= fecha_fin_prevista",
            name="ck_tpt_indicacion_fechas",
        ),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["esquema_tpt_id"], ["esquema_tpt.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_indicacion_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("tpt_indicacion", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_tpt_indicacion_contacto_id"), ["contacto_id"], unique=False)
    op.create_index(
        "ix_tpt_indicacion_estado_fecha",
        "tpt_indicacion",
        ["estado", "fecha_indicacion"],
        unique=False,
    )

    op.create_table(
        "visita_domiciliaria",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contacto_id", sa.Integer(), nullable=True),
        sa.Column("caso_indice_id", sa.Integer(), nullable=True),
        sa.Column(
            "tipo_visita",
            sa.Enum("PRIMER_CONTACTO", "SEGUIMIENTO", name="tipo_visita"),
            nullable=False,
        ),
        sa.Column("fecha_visita", sa.Date(), nullable=False),
        sa.Column("fecha_programada", sa.Date(), nullable=True),
        sa.Column("direccion_visita", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "resultado_visita",
            sa.Enum("REALIZADA", "NO_REALIZADA", "REAGENDADA", name="resultado_visita"),
            nullable=False,
        ),
        sa.Column("motivo_no_realizada", sa.Text(), nullable=True),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_visita_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint(
            "(contacto_id IS NULL) <> (caso_indice_id IS NULL)",
            name="ck_visita_un_solo_titular",
        ),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["caso_indice_id"], ["caso_indice.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_visita_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("visita_domiciliaria", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_visita_domiciliaria_contacto_id"), ["contacto_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_visita_domiciliaria_caso_indice_id"), ["caso_indice_id"], unique=False)

    op.create_table(
        "derivacion_transferencia",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contacto_id", sa.Integer(), nullable=False),
        sa.Column("establecimiento_origen_id", sa.Integer(), nullable=False),
        sa.Column("establecimiento_destino_id", sa.Integer(), nullable=False),
        sa.Column(
            "tipo",
            sa.Enum("DERIVACION", "TRANSFERENCIA", name="tipo_derivacion"),
            nullable=False,
        ),
        sa.Column("fecha_solicitud", sa.Date(), nullable=False),
        sa.Column("fecha_aceptacion", sa.Date(), nullable=True),
        sa.Column("motivo", sa.Text(), nullable=False),
        sa.Column(
            "estado",
            sa.Enum("PENDIENTE", "ACEPTADA", "RECHAZADA", "COMPLETADA", name="estado_derivacion"),
            nullable=False,
        ),
        sa.Column("usuario_solicita_id", sa.Integer(), nullable=True),
        sa.Column("usuario_acepta_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint(
            "establecimiento_origen_id <> establecimiento_destino_id",
            name="ck_derivacion_origen_destino",
        ),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["establecimiento_origen_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["establecimiento_destino_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_solicita_id"], ["usuario.id"]),
        sa.ForeignKeyConstraint(["usuario_acepta_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("derivacion_transferencia", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_derivacion_transferencia_contacto_id"), ["contacto_id"], unique=False)

    op.create_table(
        "alerta",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "tipo_alerta",
            sa.Enum(
                "CONTROL_NO_REALIZADO",
                "TPT_NO_INICIADA",
                "TPT_ABANDONADA",
                "VISITA_NO_REALIZADA",
                "OTRO",
                name="tipo_alerta",
            ),
            nullable=False,
        ),
        sa.Column("referencia", sa.String(length=60), nullable=True),
        sa.Column("contacto_id", sa.Integer(), nullable=True),
        sa.Column("caso_indice_id", sa.Integer(), nullable=True),
        sa.Column("tpt_indicacion_id", sa.Integer(), nullable=True),
        sa.Column("control_contacto_id", sa.Integer(), nullable=True),
        sa.Column("visita_domiciliaria_id", sa.Integer(), nullable=True),
        sa.Column(
            "severidad",
            sa.Enum("BAJA", "MEDIA", "ALTA", "CRITICA", name="severidad"),
            nullable=False,
        ),
        sa.Column("mensaje", sa.Text(), nullable=False),
        sa.Column("fecha_alerta", sa.Date(), nullable=False),
        sa.Column("fecha_resolucion", sa.Date(), nullable=True),
        sa.Column(
            "estado",
            sa.Enum("ACTIVA", "EN_REVISION", "RESUELTA", "DESCARTADA", name="estado_alerta"),
            nullable=False,
        ),
        sa.Column("usuario_resuelve_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.CheckConstraint(
            "contacto_id IS NOT NULL OR caso_indice_id IS NOT NULL",
            name="ck_alerta_titular",
        ),
        sa.ForeignKeyConstraint(["contacto_id"], ["contacto.id"]),
        sa.ForeignKeyConstraint(["caso_indice_id"], ["caso_indice.id"]),
        sa.ForeignKeyConstraint(["tpt_indicacion_id"], ["tpt_indicacion.id"]),
        sa.ForeignKeyConstraint(["control_contacto_id"], ["control_contacto.id"]),
        sa.ForeignKeyConstraint(["visita_domiciliaria_id"], ["visita_domiciliaria.id"]),
        sa.ForeignKeyConstraint(["usuario_resuelve_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("alerta", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_alerta_contacto_id"), ["contacto_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_alerta_caso_indice_id"), ["caso_indice_id"], unique=False)
    op.create_index(
        "ix_alerta_referencia_tipo_abierta",
        "alerta",
        ["referencia", "tipo_alerta"],
        unique=True,
        sqlite_where=sa.text("estado IN ('ACTIVA', 'EN_REVISION')"),
        postgresql_where=sa.text("estado IN ('ACTIVA', 'EN_REVISION')"),
    )
    op.create_index("ix_alerta_estado_severidad", "alerta", ["estado", "severidad"], unique=False)


def downgrade():
    op.drop_index("ix_alerta_estado_severidad", table_name="alerta")
    op.drop_index("ix_alerta_referencia_tipo_abierta", table_name="alerta")
    op.drop_table("alerta")
    op.drop_table("derivacion_transferencia")
    op.drop_table("visita_domiciliaria")
    op.drop_index("ix_tpt_indicacion_estado_fecha", table_name="tpt_indicacion")
    op.drop_table("tpt_indicacion")
    op.drop_table("esquema_tpt")
    op.drop_index("ix_control_contacto_estado_programada", table_name="control_contacto")
    op.drop_index("ix_control_contacto_numero", table_name="control_contacto")
    op.drop_table("control_contacto")
    op.drop_table("examen_contacto")
    op.drop_table("contacto")
    op.drop_table("caso_indice")
    op.drop_table("usuario")
    op.drop_table("establecimiento_salud")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUM_TYPES:
            op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))
