from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import CheckConstraint, Enum as SAEnum, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Rol(str, Enum):
    ADMIN = "admin"
    MEDICO = "medico"
    ENFERMERIA = "enfermeria"
    CONSULTA = "consulta"


class TipoTb(str, Enum):
    PULMONAR = "Pulmonar"
    EXTRAPULMONAR = "Extrapulmonar"
    MILIAR = "Miliar"
    MENINGEA = "Meningea"


class Sexo(str, Enum):
    M = "M"
    F = "F"
    OTRO = "Otro"


class TipoContacto(str, Enum):
    INTRADOMICILIARIO = "Intradomiciliario"
    EXTRADOMICILIARIO = "Extradomiciliario"


class TipoExamen(str, Enum):
    CLINICO = "Clínico"
    RADIOLOGICO = "Radiológico"
    INMUNOLOGICO = "Inmunológico"
    BACTERIOLOGICO = "Bacteriológico"
    INTEGRAL = "Integral"


class TipoControl(str, Enum):
    CLINICO = "Clínico"
    RADIOLOGICO = "Radiológico"
    BACTERIOLOGICO = "Bacteriológico"
    INTEGRAL = "Integral"


class EstadoControl(str, Enum):
    PROGRAMADO = "Programado"
    REALIZADO = "Realizado"
    NO_REALIZADO = "No realizado"
    CANCELADO = "Cancelado"


class EstadoTpt(str, Enum):
    INDICADO = "Indicado"
    EN_CURSO = "En curso"
    COMPLETADO = "Completado"
    SUSPENSO = "Suspenso"
    ABANDONADO = "Abandonado"


class TipoVisita(str, Enum):
    PRIMER_CONTACTO = "Primer contacto"
    SEGUIMIENTO = "Seguimiento"


class ResultadoVisita(str, Enum):
    REALIZADA = "Realizada"
    NO_REALIZADA = "No realizada"
    REAGENDADA = "Reagendada"


class TipoDerivacion(str, Enum):
    DERIVACION = "Derivación"
    TRANSFERENCIA = "Transferencia"


class EstadoDerivacion(str, Enum):
    PENDIENTE = "Pendiente"
    ACEPTADA = "Aceptada"
    RECHAZADA = "Rechazada"
    COMPLETADA = "Completada"


class SeveridadReaccion(str, Enum):
    LEVE = "Leve"
    MODERADA = "Moderada"
    SEVERA = "Severa"
    GRAVE = "Grave"


class ResultadoReaccion(str, Enum):
    EN_SEGUIMIENTO = "En seguimiento"
    RESUELTO = "Resuelto"
    PENDIENTE = "Pendiente"


class TipoAlerta(str, Enum):
    CONTROL_NO_REALIZADO = "Control no realizado"
    TPT_NO_INICIADA = "TPT no iniciada"
    TPT_ABANDONADA = "TPT abandonada"
    VISITA_NO_REALIZADA = "Visita no realizada"
    OTRO = "Otro"


class EstadoAlerta(str, Enum):
    ACTIVA = "Activa"
    EN_REVISION = "En revisión"
    RESUELTA = "Resuelta"
    DESCARTADA = "Descartada"


class Severidad(str, Enum):
    BAJA = "Baja"
    MEDIA = "Media"
    ALTA = "Alta"
    CRITICA = "Crítica"

    @property
    def rank(self) -> int:
        return list(Severidad).index(self)


ESTADOS_ALERTA_ABIERTA = (EstadoAlerta.ACTIVA, EstadoAlerta.EN_REVISION)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class EstablecimientoSalud(TimestampMixin, db.Model):
    __tablename__ = "establecimiento_salud"

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(50), unique=True, nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(200), nullable=False)
    tipo: Mapped[str] = mapped_column(db.String(50), nullable=False, default="")
    distrito: Mapped[str] = mapped_column(db.String(100), nullable=False, default="")
    activo: Mapped[bool] = mapped_column(nullable=False, default=True)


class Usuario(UserMixin, TimestampMixin, db.Model):
    __tablename__ = "usuario"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    rol: Mapped[Rol] = mapped_column(SAEnum(Rol, name="usuario_rol"), nullable=False, default=Rol.CONSULTA)
    establecimiento_id: Mapped[int | None] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=True)
    activo: Mapped[bool] = mapped_column(nullable=False, default=True)

    establecimiento = relationship("EstablecimientoSalud")

    @property
    def is_active(self) -> bool:
        return self.activo


class CasoIndice(TimestampMixin, db.Model):
    __tablename__ = "caso_indice"
    __table_args__ = (
        CheckConstraint(
            "fecha_nacimiento IS NULL OR fecha_nacimiento <= fecha_diagnostico",
            name="ck_caso_indice_nacimiento",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo_caso: Mapped[str] = mapped_column(db.String(50), unique=True, nullable=False)
    paciente_dni: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    paciente_nombres: Mapped[str] = mapped_column(db.String(100), nullable=False)
    paciente_apellidos: Mapped[str] = mapped_column(db.String(100), nullable=False)
    fecha_nacimiento: Mapped[date | None] = mapped_column(nullable=True)
    sexo: Mapped[Sexo | None] = mapped_column(SAEnum(Sexo, name="sexo"), nullable=True)
    tipo_tb: Mapped[TipoTb] = mapped_column(SAEnum(TipoTb, name="tipo_tb"), nullable=False)
    fecha_diagnostico: Mapped[date] = mapped_column(nullable=False)
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False, index=True)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    establecimiento = relationship("EstablecimientoSalud")
    contactos = relationship("Contacto", back_populates="caso_indice")
    visitas = relationship("VisitaDomiciliaria", back_populates="caso_indice")

    @property
    def paciente_nombre_completo(self) -> str:
        return f"{self.paciente_nombres} {self.paciente_apellidos}".strip()


class Contacto(TimestampMixin, db.Model):
    __tablename__ = "contacto"

    id: Mapped[int] = mapped_column(primary_key=True)
    caso_indice_id: Mapped[int] = mapped_column(ForeignKey("caso_indice.id"), nullable=False, index=True)
    dni: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    nombres: Mapped[str] = mapped_column(db.String(100), nullable=False)
    apellidos: Mapped[str] = mapped_column(db.String(100), nullable=False)
    fecha_nacimiento: Mapped[date | None] = mapped_column(nullable=True)
    sexo: Mapped[Sexo | None] = mapped_column(SAEnum(Sexo, name="sexo"), nullable=True)
    tipo_contacto: Mapped[TipoContacto] = mapped_column(SAEnum(TipoContacto, name="tipo_contacto"), nullable=False)
    parentesco: Mapped[str] = mapped_column(db.String(50), nullable=False, default="")
    direccion: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    telefono: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    fecha_registro: Mapped[date] = mapped_column(nullable=False)
    activo: Mapped[bool] = mapped_column(nullable=False, default=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    caso_indice = relationship("CasoIndice", back_populates="contactos")
    examenes = relationship("ExamenContacto", back_populates="contacto")
    controles = relationship("ControlContacto", back_populates="contacto")
    indicaciones_tpt = relationship("TptIndicacion", back_populates="contacto")
    visitas = relationship("VisitaDomiciliaria", back_populates="contacto")
    derivaciones = relationship("DerivacionTransferencia", back_populates="contacto")

    @property
    def nombre_completo(self) -> str:
        return f"{self.nombres} {self.apellidos}".strip()


class ExamenContacto(TimestampMixin, db.Model):
    __tablename__ = "examen_contacto"

    id: Mapped[int] = mapped_column(primary_key=True)
    contacto_id: Mapped[int] = mapped_column(ForeignKey("contacto.id"), nullable=False, index=True)
    tipo_examen: Mapped[TipoExamen] = mapped_column(SAEnum(TipoExamen, name="tipo_examen"), nullable=False)
    fecha_examen: Mapped[date] = mapped_column(nullable=False)
    resultado: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    resultado_codificado: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto", back_populates="examenes")


class ControlContacto(TimestampMixin, db.Model):
    __tablename__ = "control_contacto"
    __table_args__ = (
        CheckConstraint("numero_control > 0", name="ck_control_numero_positivo"),
        # numero_control is advisory: indexed for lookups, not unique per contact.
        Index("ix_control_contacto_numero", "contacto_id", "numero_control"),
        Index("ix_control_contacto_estado_programada", "estado", "fecha_programada"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contacto_id: Mapped[int] = mapped_column(ForeignKey("contacto.id"), nullable=False, index=True)
    numero_control: Mapped[int] = mapped_column(nullable=False)
    tipo_control: Mapped[TipoControl] = mapped_column(SAEnum(TipoControl, name="tipo_control"), nullable=False)
    fecha_programada: Mapped[date] = mapped_column(nullable=False)
    fecha_realizada: Mapped[date | None] = mapped_column(nullable=True)
    estado: Mapped[EstadoControl] = mapped_column(
        SAEnum(EstadoControl, name="estado_control"),
        nullable=False,
        default=EstadoControl.PROGRAMADO,
    )
    resultado: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_programa_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    usuario_realiza_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto", back_populates="controles")


class EsquemaTpt(TimestampMixin, db.Model):
    __tablename__ = "esquema_tpt"
    __table_args__ = (CheckConstraint("duracion_meses > 0", name="ck_esquema_duracion_positiva"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(50), unique=True, nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(100), nullable=False)
    descripcion: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    duracion_meses: Mapped[int] = mapped_column(nullable=False)
    medicamentos: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    activo: Mapped[bool] = mapped_column(nullable=False, default=True)


class TptIndicacion(TimestampMixin, db.Model):
    __tablename__ = "tpt_indicacion"
    __table_args__ = (
        CheckConstraint(
            "fecha_inicio IS NULL OR fecha_fin_prevista IS NULL OR fecha_inicio <= fecha_fin_prevista",
            name="ck_tpt_indicacion_fechas",
        ),
        Index("ix_tpt_indicacion_estado_fecha", "estado", "fecha_indicacion"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contacto_id: Mapped[int] = mapped_column(ForeignKey("contacto.id"), nullable=False, index=True)
    esquema_tpt_id: Mapped[int] = mapped_column(ForeignKey("esquema_tpt.id"), nullable=False)
    fecha_indicacion: Mapped[date] = mapped_column(nullable=False)
    fecha_inicio: Mapped[date | None] = mapped_column(nullable=True)
    fecha_fin_prevista: Mapped[date | None] = mapped_column(nullable=True)
    estado: Mapped[EstadoTpt] = mapped_column(
        SAEnum(EstadoTpt, name="estado_tpt"),
        nullable=False,
        default=EstadoTpt.INDICADO,
    )
    fecha_cambio_estado: Mapped[date | None] = mapped_column(nullable=True)
    motivo_indicacion: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_indicacion_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto", back_populates="indicaciones_tpt")
    esquema = relationship("EsquemaTpt")
    seguimientos = relationship(
        "TptSeguimiento",
        back_populates="indicacion",
        order_by="TptSeguimiento.fecha_seguimiento",
    )
    reacciones_adversas = relationship(
        "ReaccionAdversa",
        back_populates="indicacion",
        order_by="ReaccionAdversa.fecha_reaccion",
    )
    consentimiento = relationship("TptConsentimiento", back_populates="indicacion", uselist=False)


class TptSeguimiento(TimestampMixin, db.Model):
    __tablename__ = "tpt_seguimiento"

    id: Mapped[int] = mapped_column(primary_key=True)
    tpt_indicacion_id: Mapped[int] = mapped_column(ForeignKey("tpt_indicacion.id"), nullable=False, index=True)
    fecha_seguimiento: Mapped[date] = mapped_column(nullable=False)
    dosis_administrada: Mapped[bool] = mapped_column(nullable=False, default=False)
    observaciones_administracion: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    efectos_adversos: Mapped[bool] = mapped_column(nullable=False, default=False)
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)

    indicacion = relationship("TptIndicacion", back_populates="seguimientos")


class ReaccionAdversa(TimestampMixin, db.Model):
    __tablename__ = "reaccion_adversa"

    id: Mapped[int] = mapped_column(primary_key=True)
    tpt_indicacion_id: Mapped[int] = mapped_column(ForeignKey("tpt_indicacion.id"), nullable=False, index=True)
    fecha_reaccion: Mapped[date] = mapped_column(nullable=False)
    tipo_reaccion: Mapped[str] = mapped_column(db.String(100), nullable=False)
    severidad: Mapped[SeveridadReaccion] = mapped_column(
        SAEnum(SeveridadReaccion, name="severidad_reaccion"),
        nullable=False,
    )
    sintomas: Mapped[str] = mapped_column(db.Text, nullable=False)
    accion_tomada: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    medicamento_sospechoso: Mapped[str] = mapped_column(db.String(200), nullable=False, default="")
    resultado: Mapped[ResultadoReaccion] = mapped_column(
        SAEnum(ResultadoReaccion, name="resultado_reaccion"),
        nullable=False,
        default=ResultadoReaccion.EN_SEGUIMIENTO,
    )
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    indicacion = relationship("TptIndicacion", back_populates="reacciones_adversas")


class TptConsentimiento(TimestampMixin, db.Model):
    __tablename__ = "tpt_consentimiento"

    id: Mapped[int] = mapped_column(primary_key=True)
    tpt_indicacion_id: Mapped[int] = mapped_column(ForeignKey("tpt_indicacion.id"), unique=True, nullable=False)
    fecha_consentimiento: Mapped[date] = mapped_column(nullable=False)
    consentimiento_firmado: Mapped[bool] = mapped_column(nullable=False, default=False)
    ruta_archivo_consentimiento: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    usuario_registro_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    indicacion = relationship("TptIndicacion", back_populates="consentimiento")


class VisitaDomiciliaria(TimestampMixin, db.Model):
    __tablename__ = "visita_domiciliaria"
    __table_args__ = (
        CheckConstraint(
            "(contacto_id IS NULL) <> (caso_indice_id IS NULL)",
            name="ck_visita_un_solo_titular",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contacto_id: Mapped[int | None] = mapped_column(ForeignKey("contacto.id"), nullable=True, index=True)
    caso_indice_id: Mapped[int | None] = mapped_column(ForeignKey("caso_indice.id"), nullable=True, index=True)
    tipo_visita: Mapped[TipoVisita] = mapped_column(SAEnum(TipoVisita, name="tipo_visita"), nullable=False)
    fecha_visita: Mapped[date] = mapped_column(nullable=False)
    fecha_programada: Mapped[date | None] = mapped_column(nullable=True)
    direccion_visita: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    resultado_visita: Mapped[ResultadoVisita] = mapped_column(
        SAEnum(ResultadoVisita, name="resultado_visita"),
        nullable=False,
        default=ResultadoVisita.REALIZADA,
    )
    motivo_no_realizada: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    establecimiento_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    usuario_visita_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto", back_populates="visitas")
    caso_indice = relationship("CasoIndice", back_populates="visitas")


class DerivacionTransferencia(TimestampMixin, db.Model):
    __tablename__ = "derivacion_transferencia"
    __table_args__ = (
        CheckConstraint(
            "establecimiento_origen_id <> establecimiento_destino_id",
            name="ck_derivacion_origen_destino",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contacto_id: Mapped[int] = mapped_column(ForeignKey("contacto.id"), nullable=False, index=True)
    establecimiento_origen_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    establecimiento_destino_id: Mapped[int] = mapped_column(ForeignKey("establecimiento_salud.id"), nullable=False)
    tipo: Mapped[TipoDerivacion] = mapped_column(SAEnum(TipoDerivacion, name="tipo_derivacion"), nullable=False)
    fecha_solicitud: Mapped[date] = mapped_column(nullable=False)
    fecha_aceptacion: Mapped[date | None] = mapped_column(nullable=True)
    motivo: Mapped[str] = mapped_column(db.Text, nullable=False)
    estado: Mapped[EstadoDerivacion] = mapped_column(
        SAEnum(EstadoDerivacion, name="estado_derivacion"),
        nullable=False,
        default=EstadoDerivacion.PENDIENTE,
    )
    usuario_solicita_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    usuario_acepta_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto", back_populates="derivaciones")
    establecimiento_origen = relationship("EstablecimientoSalud", foreign_keys=[establecimiento_origen_id])
    establecimiento_destino = relationship("EstablecimientoSalud", foreign_keys=[establecimiento_destino_id])


class Alerta(TimestampMixin, db.Model):
    __tablename__ = "alerta"
    __table_args__ = (
        CheckConstraint(
            "contacto_id IS NOT NULL OR caso_indice_id IS NOT NULL",
            name="ck_alerta_titular",
        ),
        # One open alert per (referencia, tipo_alerta); resolved/discarded rows are history.
        Index(
            "ix_alerta_referencia_tipo_abierta",
            "referencia",
            "tipo_alerta",
            unique=True,
            sqlite_where=text("estado IN ('ACTIVA', 'EN_REVISION')"),
            postgresql_where=text("estado IN ('ACTIVA', 'EN_REVISION')"),
        ),
        Index("ix_alerta_estado_severidad", "estado", "severidad"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tipo_alerta: Mapped[TipoAlerta] = mapped_column(SAEnum(TipoAlerta, name="tipo_alerta"), nullable=False)
    referencia: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    contacto_id: Mapped[int | None] = mapped_column(ForeignKey("contacto.id"), nullable=True, index=True)
    caso_indice_id: Mapped[int | None] = mapped_column(ForeignKey("caso_indice.id"), nullable=True, index=True)
    tpt_indicacion_id: Mapped[int | None] = mapped_column(ForeignKey("tpt_indicacion.id"), nullable=True)
    control_contacto_id: Mapped[int | None] = mapped_column(ForeignKey("control_contacto.id"), nullable=True)
    visita_domiciliaria_id: Mapped[int | None] = mapped_column(ForeignKey("visita_domiciliaria.id"), nullable=True)
    severidad: Mapped[Severidad] = mapped_column(
        SAEnum(Severidad, name="severidad"),
        nullable=False,
        default=Severidad.MEDIA,
    )
    mensaje: Mapped[str] = mapped_column(db.Text, nullable=False)
    fecha_alerta: Mapped[date] = mapped_column(nullable=False)
    fecha_resolucion: Mapped[date | None] = mapped_column(nullable=True)
    estado: Mapped[EstadoAlerta] = mapped_column(
        SAEnum(EstadoAlerta, name="estado_alerta"),
        nullable=False,
        default=EstadoAlerta.ACTIVA,
    )
    usuario_resuelve_id: Mapped[int | None] = mapped_column(ForeignKey("usuario.id"), nullable=True)
    observaciones: Mapped[str] = mapped_column(db.Text, nullable=False, default="")

    contacto = relationship("Contacto")
    caso_indice = relationship("CasoIndice")
    tpt_indicacion = relationship("TptIndicacion")
    control_contacto = relationship("ControlContacto")
    visita_domiciliaria = relationship("VisitaDomiciliaria")
    usuario_resuelve = relationship("Usuario")

    @property
    def abierta(self) -> bool:
        return self.estado in ESTADOS_ALERTA_ABIERTA


def seed_demo_data(session, today: date | None = None) -> None:
    today = today or date.today()

    establecimiento = EstablecimientoSalud(
        codigo="EESS-0001",
        nombre="Centro de Salud San Martín",
        tipo="Centro de salud",
        distrito="San Martín de Porres",
    )
    establecimiento_ref = EstablecimientoSalud(
        codigo="EESS-0002",
        nombre="Hospital Nacional Cayetano Heredia",
        tipo="Hospital",
        distrito="San Martín de Porres",
    )
    session.add_all([establecimiento, establecimiento_ref])
    session.flush()

    session.add_all(
        [
            Usuario(
                email="admin@tb.local",
                nombre="Administrador TB",
                password_hash=generate_password_hash("admin123"),
                rol=Rol.ADMIN,
                establecimiento_id=establecimiento.id,
            ),
            Usuario(
                email="medico@tb.local",
                nombre="Médico Tratante",
                password_hash=generate_password_hash("medico123"),
                rol=Rol.MEDICO,
                establecimiento_id=establecimiento.id,
            ),
            Usuario(
                email="enfermeria@tb.local",
                nombre="Enfermería PCT",
                password_hash=generate_password_hash("enfermeria123"),
                rol=Rol.ENFERMERIA,
                establecimiento_id=establecimiento.id,
            ),
            Usuario(
                email="consulta@tb.local",
                nombre="Usuario Consulta",
                password_hash=generate_password_hash("consulta123"),
                rol=Rol.CONSULTA,
                establecimiento_id=establecimiento.id,
            ),
        ]
    )

    session.add_all(
        [
            EsquemaTpt(
                codigo="3HP",
                nombre="Isoniacida + Rifapentina semanal",
                duracion_meses=3,
                medicamentos="Isoniacida, Rifapentina",
            ),
            EsquemaTpt(
                codigo="6H",
                nombre="Isoniacida diaria",
                duracion_meses=6,
                medicamentos="Isoniacida",
            ),
            EsquemaTpt(
                codigo="4R",
                nombre="Rifampicina diaria",
                duracion_meses=4,
                medicamentos="Rifampicina",
            ),
        ]
    )
    session.flush()

    caso = CasoIndice(
        codigo_caso="CASO-1A2B3C4D",
        paciente_dni="40112233",
        paciente_nombres="Rosa",
        paciente_apellidos="Quispe Huamán",
        sexo=Sexo.F,
        tipo_tb=TipoTb.PULMONAR,
        fecha_diagnostico=today - timedelta(days=60),
        establecimiento_id=establecimiento.id,
    )
    session.add(caso)
    session.flush()

    session.add_all(
        [
            Contacto(
                caso_indice_id=caso.id,
                dni="70112233",
                nombres="Luis",
                apellidos="Quispe Rojas",
                tipo_contacto=TipoContacto.INTRADOMICILIARIO,
                parentesco="Esposo",
                establecimiento_id=establecimiento.id,
                fecha_registro=caso.fecha_diagnostico,
            ),
            Contacto(
                caso_indice_id=caso.id,
                dni="70445566",
                nombres="Ana",
                apellidos="Quispe Quispe",
                tipo_contacto=TipoContacto.INTRADOMICILIARIO,
                parentesco="Hija",
                establecimiento_id=establecimiento.id,
                fecha_registro=caso.fecha_diagnostico,
            ),
        ]
    )
    session.commit()
