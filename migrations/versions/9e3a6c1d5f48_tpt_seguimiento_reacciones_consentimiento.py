"""tpt dose follow-up, adverse reactions and consent

Revision ID: 9e3a6c1d5f48
Revises: 4b7d2e9a1c30
Create Date: 2026-10-19 15:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "9e3a6c1d5f48"
down_revision = "4b7d2e9a1c30"
branch_labels = None
depends_on = None

ENUM_TYPES = ["severidad_reaccion", "resultado_reaccion"]


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "tpt_seguimiento",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tpt_indicacion_id", sa.Integer(), nullable=False),
        sa.Column("fecha_seguimiento", sa.Date(), nullable=False),
        sa.Column("dosis_administrada", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("observaciones_administracion", sa.Text(), nullable=False, server_default=""),
        sa.Column("efectos_adversos", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tpt_indicacion_id"], ["tpt_indicacion.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("tpt_seguimiento", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_tpt_seguimiento_tpt_indicacion_id"), ["tpt_indicacion_id"], unique=False)

    op.create_table(
        "reaccion_adversa",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tpt_indicacion_id", sa.Integer(), nullable=False),
        sa.Column("fecha_reaccion", sa.Date(), nullable=False),
        sa.Column("tipo_reaccion", sa.String(length=100), nullable=False),
        sa.Column(
            "severidad",
            sa.Enum("LEVE", "MODERADA", "SEVERA", "GRAVE", name="severidad_reaccion"),
            nullable=False,
        ),
        sa.Column("sintomas", sa.Text(), nullable=False),
        sa.Column("accion_tomada", sa.Text(), nullable=False, server_default=""),
        sa.Column("medicamento_sospechoso", sa.String(length=200), nullable=False, server_default=""),
        sa.Column(
            "resultado",
            sa.Enum("EN_SEGUIMIENTO", "RESUELTO", "PENDIENTE", name="resultado_reaccion"),
            nullable=False,
        ),
        sa.Column("establecimiento_id", sa.Integer(), nullable=False),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tpt_indicacion_id"], ["tpt_indicacion.id"]),
        sa.ForeignKeyConstraint(["establecimiento_id"], ["establecimiento_salud.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("reaccion_adversa", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_reaccion_adversa_tpt_indicacion_id"), ["tpt_indicacion_id"], unique=False)

    op.create_table(
        "tpt_consentimiento",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tpt_indicacion_id", sa.Integer(), nullable=False),
        sa.Column("fecha_consentimiento", sa.Date(), nullable=False),
        sa.Column("consentimiento_firmado", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ruta_archivo_consentimiento", sa.String(length=500), nullable=True),
        sa.Column("usuario_registro_id", sa.Integer(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tpt_indicacion_id"], ["tpt_indicacion.id"]),
        sa.ForeignKeyConstraint(["usuario_registro_id"], ["usuario.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tpt_indicacion_id"),
    )


def downgrade():
    op.drop_table("tpt_consentimiento")
    with op.batch_alter_table("reaccion_adversa", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_reaccion_adversa_tpt_indicacion_id"))
    op.drop_table("reaccion_adversa")
    with op.batch_alter_table("tpt_seguimiento", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_tpt_seguimiento_tpt_indicacion_id"))
    op.drop_table("tpt_seguimiento")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in ENUM_TYPES:
            op.execute(sa.text(f"DROP TYPE IF EXISTS {name}"))
