from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from sqlalchemy import func
from sqlalchemy.orm import joinedload
from werkzeug.security import check_password_hash, generate_password_hash

from app.core.errors import ConflictError, DomainError, InvalidTransition, NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import (
    ESTADOS_ALERTA_ABIERTA,
    Alerta,
    CasoIndice,
    Contacto,
    ControlContacto,
    DerivacionTransferencia,
    EsquemaTpt,
    EstadoAlerta,
    EstadoControl,
    EstadoDerivacion,
    EstadoTpt,
    EstablecimientoSalud,
    ExamenContacto,
    ReaccionAdversa,
    ResultadoReaccion,
    ResultadoVisita,
    Rol,
    Severidad,
    SeveridadReaccion,
    Sexo,
    TipoAlerta,
    TipoContacto,
    TipoControl,
    TipoDerivacion,
    TipoExamen,
    TipoTb,
    TipoVisita,
    TptConsentimiento,
    TptIndicacion,
    TptSeguimiento,
    Usuario,
    VisitaDomiciliaria,
)
from app.core.utils import clean_text, parse_iso_date, parse_optional_iso_date
from app.seguimiento import controles, tpt
from app.seguimiento.compliance import CaseGraph, evaluate
from app.seguimiento.reconciler import ReconcileResult, reconcile
from app.seguimiento.validation import (
    validate_alerta,
    validate_caso_indice,
    validate_codigo_caso,
    validate_consentimiento,
    validate_contacto,
    validate_control,
    validate_derivacion,
    validate_esquema,
    validate_establecimiento,
    validate_examen,
    validate_indicacion,
    validate_reaccion_adversa,
    validate_seguimiento_tpt,
    validate_usuario,
    validate_visita,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

DERIVACION_TRANSITIONS: dict[EstadoDerivacion, set[EstadoDerivacion]] = {
    EstadoDerivacion.PENDIENTE: {EstadoDerivacion.ACEPTADA, EstadoDerivacion.RECHAZADA},
    EstadoDerivacion.ACEPTADA: {EstadoDerivacion.COMPLETADA},
    EstadoDerivacion.RECHAZADA: set(),
    EstadoDerivacion.COMPLETADA: set(),
}


@dataclass
class CompliancePassResult:
    fecha: date
    families: int = 0
    findings: int = 0
    created: int = 0
    escalated: int = 0
    unchanged: int = 0
    failed: list[dict[str, object]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, object]:
        return {
            "fecha": self.fecha.isoformat(),
            "families": self.families,
            "findings": self.findings,
            "created": self.created,
            "escalated": self.escalated,
            "unchanged": self.unchanged,
            "failed": self.failed,
        }


def _text(payload: dict, key: str) -> str:
    return clean_text(payload.get(key))


def _parse_int(value, field_name: str) -> int:
    raw = str(value if value is not None else "").strip()
    if not raw:
        raise ValidationError(f"Falta {field_name}", field=field_name, rule="required")
    if not raw.lstrip("-").isdigit():
        raise ValidationError(f"Valor numerico invalido para {field_name}", field=field_name, rule="integer")
    return int(raw)


def _parse_optional_int(value, field_name: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    return _parse_int(value, field_name)


def _parse_enum(value, enum_cls: type[Enum], field_name: str, required: bool = True):
    if isinstance(value, enum_cls):
        return value
    raw = str(value if value is not None else "").strip()
    if not raw:
        if required:
            raise ValidationError(f"Falta {field_name}", field=field_name, rule="required")
        return None
    for member in enum_cls:
        if raw == member.value or raw.upper() == member.name:
            return member
    raise ValidationError(f"Valor invalido para {field_name}: {raw}", field=field_name, rule="enum")


def _parse_bool(value, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "si", "sí", "on", "yes"}


@contextmanager
def _discard_on_error():
    """Roll back pending changes on loaded rows when a write is rejected."""
    try:
        yield
    except DomainError:
        db.session.rollback()
        raise


def establecimiento_by_id(establecimiento_id: int, include_inactive: bool = False) -> EstablecimientoSalud:
    establecimiento = db.session.get(EstablecimientoSalud, establecimiento_id)
    if not establecimiento or (not establecimiento.activo and not include_inactive):
        raise NotFoundError(
            "Establecimiento de salud no encontrado",
            field="establecimiento_id",
            rule="not_found",
        )
    return establecimiento


def caso_by_id(caso_id: int, include_inactive: bool = False) -> CasoIndice:
    caso = db.session.get(CasoIndice, caso_id)
    if not caso or (not caso.activo and not include_inactive):
        raise NotFoundError("Caso indice no encontrado", field="caso_indice_id", rule="not_found")
    return caso


def caso_by_codigo(codigo_caso: str) -> CasoIndice:
    caso = CasoIndice.query.filter_by(codigo_caso=codigo_caso, activo=True).first()
    if not caso:
        raise NotFoundError("Caso indice no encontrado", field="codigo_caso", rule="not_found")
    return caso


def contacto_by_id(contacto_id: int, include_inactive: bool = False) -> Contacto:
    contacto = db.session.get(Contacto, contacto_id)
    if not contacto or (not contacto.activo and not include_inactive):
        raise NotFoundError("Contacto no encontrado", field="contacto_id", rule="not_found")
    return contacto


def control_by_id(control_id: int) -> ControlContacto:
    control = db.session.get(ControlContacto, control_id)
    if not control:
        raise NotFoundError("Control no encontrado", field="control_contacto_id", rule="not_found")
    return control


def esquema_by_id(esquema_id: int) -> EsquemaTpt:
    esquema = db.session.get(EsquemaTpt, esquema_id)
    if not esquema:
        raise NotFoundError("Esquema TPT no encontrado", field="esquema_tpt_id", rule="not_found")
    return esquema


def indicacion_by_id(indicacion_id: int) -> TptIndicacion:
    indicacion = db.session.get(TptIndicacion, indicacion_id)
    if not indicacion:
        raise NotFoundError("Indicacion TPT no encontrada", field="tpt_indicacion_id", rule="not_found")
    return indicacion


def visita_by_id(visita_id: int) -> VisitaDomiciliaria:
    visita = db.session.get(VisitaDomiciliaria, visita_id)
    if not visita:
        raise NotFoundError(
            "Visita domiciliaria no encontrada",
            field="visita_domiciliaria_id",
            rule="not_found",
        )
    return visita


def derivacion_by_id(derivacion_id: int) -> DerivacionTransferencia:
    derivacion = db.session.get(DerivacionTransferencia, derivacion_id)
    if not derivacion:
        raise NotFoundError("Derivacion no encontrada", field="derivacion_id", rule="not_found")
    return derivacion


# Establecimientos y usuarios --------------------------------------------------


def list_establecimientos(include_inactive: bool = False) -> list[EstablecimientoSalud]:
    query = EstablecimientoSalud.query.order_by(EstablecimientoSalud.codigo.asc())
    if not include_inactive:
        query = query.filter_by(activo=True)
    return query.all()


def _ensure_codigo_establecimiento_libre(codigo: str, current_id: int | None = None) -> None:
    existing = EstablecimientoSalud.query.filter_by(codigo=codigo).first()
    if existing and existing.id != current_id:
        raise ValidationError("El codigo de establecimiento ya existe", field="codigo", rule="unique")


def create_establecimiento(payload: dict) -> EstablecimientoSalud:
    codigo = _text(payload, "codigo").upper()
    if codigo:
        _ensure_codigo_establecimiento_libre(codigo)
    establecimiento = EstablecimientoSalud(
        codigo=codigo,
        nombre=_text(payload, "nombre"),
        tipo=_text(payload, "tipo"),
        distrito=_text(payload, "distrito"),
        activo=_parse_bool(payload.get("activo")),
    )
    validate_establecimiento(establecimiento)
    db.session.add(establecimiento)
    db.session.commit()
    return establecimiento


def update_establecimiento(establecimiento_id: int, payload: dict) -> EstablecimientoSalud:
    establecimiento = establecimiento_by_id(establecimiento_id, include_inactive=True)
    with _discard_on_error():
        if "codigo" in payload:
            codigo = _text(payload, "codigo").upper()
            _ensure_codigo_establecimiento_libre(codigo, establecimiento.id)
            establecimiento.codigo = codigo
        for key in ("nombre", "tipo", "distrito"):
            if key in payload:
                setattr(establecimiento, key, _text(payload, key))
        if "activo" in payload:
            establecimiento.activo = _parse_bool(payload.get("activo"))
        validate_establecimiento(establecimiento)
    db.session.add(establecimiento)
    db.session.commit()
    return establecimiento


def desactivar_establecimiento(establecimiento_id: int) -> EstablecimientoSalud:
    establecimiento = establecimiento_by_id(establecimiento_id)
    establecimiento.activo = False
    db.session.add(establecimiento)
    db.session.commit()
    logger.info("Establecimiento %s desactivado", establecimiento.codigo)
    return establecimiento


def usuario_by_id(usuario_id: int) -> Usuario:
    usuario = db.session.get(Usuario, usuario_id)
    if not usuario:
        raise NotFoundError("Usuario no encontrado", field="usuario_id", rule="not_found")
    return usuario


def list_usuarios(filters: dict[str, str]) -> list[Usuario]:
    query = Usuario.query.order_by(Usuario.email.asc())
    if filters.get("todos") != "1":
        query = query.filter_by(activo=True)
    rol = (filters.get("rol") or "").strip()
    if rol:
        query = query.filter(Usuario.rol == _parse_enum(rol, Rol, "rol"))
    return query.all()


def _ensure_email_libre(email: str, current_id: int | None = None) -> None:
    existing = Usuario.query.filter_by(email=email).first()
    if existing and existing.id != current_id:
        raise ValidationError("El email ya esta registrado", field="email", rule="unique")


def _check_password(password: str) -> str:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"La contrasena debe tener al menos {MIN_PASSWORD_LENGTH} caracteres",
            field="password",
            rule="min_length",
        )
    return generate_password_hash(password)


def create_usuario(payload: dict) -> Usuario:
    email = _text(payload, "email").lower()
    if email:
        _ensure_email_libre(email)
    establecimiento_id = _parse_optional_int(payload.get("establecimiento_id"), "establecimiento_id")
    if establecimiento_id is not None:
        establecimiento_by_id(establecimiento_id)
    usuario = Usuario(
        email=email,
        nombre=_text(payload, "nombre"),
        rol=_parse_enum(payload.get("rol") or Rol.CONSULTA, Rol, "rol"),
        establecimiento_id=establecimiento_id,
        activo=_parse_bool(payload.get("activo")),
    )
    validate_usuario(usuario)
    usuario.password_hash = _check_password(str(payload.get("password") or ""))
    db.session.add(usuario)
    db.session.commit()
    logger.info("Usuario %s creado con rol %s", usuario.email, usuario.rol.value)
    return usuario


def update_usuario(usuario_id: int, payload: dict) -> Usuario:
    """Update profile fields. Passwords change only through :func:`cambiar_password`."""
    usuario = usuario_by_id(usuario_id)
    with _discard_on_error():
        if "email" in payload:
            email = _text(payload, "email").lower()
            _ensure_email_libre(email, usuario.id)
            usuario.email = email
        if "nombre" in payload:
            usuario.nombre = _text(payload, "nombre")
        if "rol" in payload:
            usuario.rol = _parse_enum(payload.get("rol"), Rol, "rol")
        if "establecimiento_id" in payload:
            establecimiento_id = _parse_optional_int(payload.get("establecimiento_id"), "establecimiento_id")
            if establecimiento_id is not None:
                establecimiento_by_id(establecimiento_id)
            usuario.establecimiento_id = establecimiento_id
        if "activo" in payload:
            usuario.activo = _parse_bool(payload.get("activo"))
        validate_usuario(usuario)
    db.session.add(usuario)
    db.session.commit()
    return usuario


def cambiar_password(usuario_id: int, actual, nueva) -> Usuario:
    usuario = usuario_by_id(usuario_id)
    if not check_password_hash(usuario.password_hash, str(actual or "")):
        raise ValidationError("Contrasena actual incorrecta", field="password_actual", rule="mismatch")
    usuario.password_hash = _check_password(str(nueva or ""))
    db.session.add(usuario)
    db.session.commit()
    logger.info("Contrasena actualizada para %s", usuario.email)
    return usuario


def desactivar_usuario(usuario_id: int, actor_id: int | None) -> Usuario:
    usuario = usuario_by_id(usuario_id)
    if usuario.id == actor_id:
        raise ValidationError("No puedes desactivar tu propio usuario", field="usuario_id", rule="self")
    usuario.activo = False
    db.session.add(usuario)
    db.session.commit()
    logger.info("Usuario %s desactivado", usuario.email)
    return usuario


# Casos indice ---------------------------------------------------------------


def _next_codigo_caso() -> str:
    while True:
        codigo = f"CASO-{uuid.uuid4().hex[:8].upper()}"
        if not CasoIndice.query.filter_by(codigo_caso=codigo).first():
            return codigo


def list_casos(filters: dict[str, str]) -> list[CasoIndice]:
    query = CasoIndice.query.filter_by(activo=True).order_by(CasoIndice.fecha_diagnostico.desc(), CasoIndice.id.desc())
    search = (filters.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(
            db.or_(
                CasoIndice.codigo_caso.ilike(like),
                CasoIndice.paciente_nombres.ilike(like),
                CasoIndice.paciente_apellidos.ilike(like),
                CasoIndice.paciente_dni.ilike(like),
            )
        )
    tipo_tb = (filters.get("tipo_tb") or "").strip()
    if tipo_tb:
        query = query.filter(CasoIndice.tipo_tb == _parse_enum(tipo_tb, TipoTb, "tipo_tb"))
    establecimiento_id = _parse_optional_int(filters.get("establecimiento_id"), "establecimiento_id")
    if establecimiento_id:
        query = query.filter(CasoIndice.establecimiento_id == establecimiento_id)
    return query.all()


def create_caso_indice(payload: dict, user_id: int | None, today: date) -> CasoIndice:
    codigo = _text(payload, "codigo_caso").upper()
    if codigo:
        validate_codigo_caso(codigo)
        if CasoIndice.query.filter_by(codigo_caso=codigo).first():
            raise ValidationError("El codigo de caso ya existe", field="codigo_caso", rule="unique")
    else:
        codigo = _next_codigo_caso()

    establecimiento = establecimiento_by_id(_parse_int(payload.get("establecimiento_id"), "establecimiento_id"))
    caso = CasoIndice(
        codigo_caso=codigo,
        paciente_dni=_text(payload, "paciente_dni") or None,
        paciente_nombres=_text(payload, "paciente_nombres"),
        paciente_apellidos=_text(payload, "paciente_apellidos"),
        fecha_nacimiento=parse_optional_iso_date(payload.get("fecha_nacimiento"), "fecha_nacimiento"),
        sexo=_parse_enum(payload.get("sexo"), Sexo, "sexo", required=False),
        tipo_tb=_parse_enum(payload.get("tipo_tb"), TipoTb, "tipo_tb"),
        fecha_diagnostico=parse_iso_date(payload.get("fecha_diagnostico"), "fecha_diagnostico"),
        establecimiento_id=establecimiento.id,
        usuario_registro_id=user_id,
        observaciones=_text(payload, "observaciones"),
        activo=True,
    )
    validate_caso_indice(caso, today)
    db.session.add(caso)
    db.session.commit()
    logger.info("Caso indice %s registrado por usuario %s", caso.codigo_caso, user_id)
    return caso


def update_caso_indice(caso_id: int, payload: dict, today: date) -> CasoIndice:
    caso = caso_by_id(caso_id)
    if "codigo_caso" in payload and _text(payload, "codigo_caso") != caso.codigo_caso:
        raise ValidationError("El codigo de caso no se puede modificar", field="codigo_caso", rule="immutable")
    with _discard_on_error():
        for key in ("paciente_dni", "paciente_nombres", "paciente_apellidos", "observaciones"):
            if key in payload:
                setattr(caso, key, _text(payload, key) or (None if key == "paciente_dni" else ""))
        if "fecha_nacimiento" in payload:
            caso.fecha_nacimiento = parse_optional_iso_date(payload.get("fecha_nacimiento"), "fecha_nacimiento")
        if "fecha_diagnostico" in payload:
            caso.fecha_diagnostico = parse_iso_date(payload.get("fecha_diagnostico"), "fecha_diagnostico")
        if "tipo_tb" in payload:
            caso.tipo_tb = _parse_enum(payload.get("tipo_tb"), TipoTb, "tipo_tb")
        if "sexo" in payload:
            caso.sexo = _parse_enum(payload.get("sexo"), Sexo, "sexo", required=False)
        validate_caso_indice(caso, today)
    db.session.add(caso)
    db.session.commit()
    return caso


def desactivar_caso_indice(caso_id: int) -> CasoIndice:
    caso = caso_by_id(caso_id)
    caso.activo = False
    db.session.add(caso)
    db.session.commit()
    logger.info("Caso indice %s desactivado", caso.codigo_caso)
    return caso


# Contactos y examenes --------------------------------------------------------


def list_contactos(caso_id: int) -> list[Contacto]:
    caso = caso_by_id(caso_id)
    return (
        Contacto.query.filter_by(caso_indice_id=caso.id, activo=True)
        .order_by(Contacto.apellidos.asc(), Contacto.nombres.asc())
        .all()
    )


def create_contacto(caso_id: int, payload: dict, user_id: int | None, today: date) -> Contacto:
    caso = caso_by_id(caso_id)
    establecimiento_id = _parse_optional_int(payload.get("establecimiento_id"), "establecimiento_id")
    establecimiento = establecimiento_by_id(establecimiento_id or caso.establecimiento_id)
    contacto = Contacto(
        caso_indice_id=caso.id,
        dni=_text(payload, "dni") or None,
        nombres=_text(payload, "nombres"),
        apellidos=_text(payload, "apellidos"),
        fecha_nacimiento=parse_optional_iso_date(payload.get("fecha_nacimiento"), "fecha_nacimiento"),
        sexo=_parse_enum(payload.get("sexo"), Sexo, "sexo", required=False),
        tipo_contacto=_parse_enum(payload.get("tipo_contacto"), TipoContacto, "tipo_contacto"),
        parentesco=_text(payload, "parentesco"),
        direccion=_text(payload, "direccion"),
        telefono=_text(payload, "telefono"),
        establecimiento_id=establecimiento.id,
        usuario_registro_id=user_id,
        fecha_registro=parse_optional_iso_date(payload.get("fecha_registro"), "fecha_registro") or today,
        observaciones=_text(payload, "observaciones"),
        activo=True,
    )
    validate_contacto(contacto, today)
    db.session.add(contacto)
    db.session.commit()
    return contacto


def desactivar_contacto(contacto_id: int) -> Contacto:
    contacto = contacto_by_id(contacto_id)
    contacto.activo = False
    db.session.add(contacto)
    db.session.commit()
    return contacto


def create_examen(contacto_id: int, payload: dict, user_id: int | None, today: date) -> ExamenContacto:
    contacto = contacto_by_id(contacto_id)
    examen = ExamenContacto(
        contacto_id=contacto.id,
        tipo_examen=_parse_enum(payload.get("tipo_examen"), TipoExamen, "tipo_examen"),
        fecha_examen=parse_iso_date(payload.get("fecha_examen"), "fecha_examen"),
        resultado=_text(payload, "resultado"),
        resultado_codificado=_text(payload, "resultado_codificado") or None,
        establecimiento_id=contacto.establecimiento_id,
        usuario_registro_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_examen(examen, today)
    db.session.add(examen)
    db.session.commit()
    return examen


# Controles -------------------------------------------------------------------


def list_controles(contacto_id: int) -> list[ControlContacto]:
    contacto = contacto_by_id(contacto_id)
    return (
        ControlContacto.query.filter_by(contacto_id=contacto.id)
        .order_by(ControlContacto.numero_control.asc(), ControlContacto.id.asc())
        .all()
    )


def controles_vencidos(today: date) -> list[ControlContacto]:
    return (
        ControlContacto.query.join(Contacto, Contacto.id == ControlContacto.contacto_id)
        .filter(Contacto.activo.is_(True))
        .filter(ControlContacto.estado == EstadoControl.PROGRAMADO)
        .filter(ControlContacto.fecha_programada < today)
        .order_by(ControlContacto.fecha_programada.asc(), ControlContacto.id.asc())
        .all()
    )


def create_control(contacto_id: int, payload: dict, user_id: int | None, today: date) -> ControlContacto:
    contacto = contacto_by_id(contacto_id)
    numeros = [
        numero
        for (numero,) in db.session.query(ControlContacto.numero_control).filter_by(contacto_id=contacto.id).all()
    ]
    numero = _parse_optional_int(payload.get("numero_control"), "numero_control")
    if numero is None:
        numero = controles.next_numero_control(numeros)
    elif numero in numeros:
        logger.warning("Contacto %s ya tiene un control N° %s", contacto.id, numero)

    control = ControlContacto(
        contacto_id=contacto.id,
        numero_control=numero,
        tipo_control=_parse_enum(payload.get("tipo_control"), TipoControl, "tipo_control"),
        fecha_programada=parse_iso_date(payload.get("fecha_programada"), "fecha_programada"),
        estado=EstadoControl.PROGRAMADO,
        establecimiento_id=contacto.establecimiento_id,
        usuario_programa_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_control(control, today)
    db.session.add(control)
    db.session.commit()
    return control


def _apply_control_update(control: ControlContacto, update: controles.ControlUpdate, today: date) -> None:
    control.estado = update.estado
    control.fecha_programada = update.fecha_programada
    control.fecha_realizada = update.fecha_realizada
    if update.resultado is not None:
        control.resultado = clean_text(update.resultado)
    if update.observaciones is not None:
        control.observaciones = clean_text(update.observaciones)
    with _discard_on_error():
        validate_control(control, today)
    db.session.add(control)
    db.session.commit()


def marcar_control_realizado(control_id: int, payload: dict, user_id: int | None, today: date) -> ControlContacto:
    control = control_by_id(control_id)
    update = controles.marcar_realizado(
        control,
        today,
        fecha_realizada=parse_optional_iso_date(payload.get("fecha_realizada"), "fecha_realizada"),
        resultado=payload.get("resultado"),
        observaciones=payload.get("observaciones"),
    )
    control.usuario_realiza_id = user_id
    _apply_control_update(control, update, today)
    return control


def marcar_control_no_realizado(control_id: int, payload: dict, today: date) -> ControlContacto:
    control = control_by_id(control_id)
    _apply_control_update(control, controles.marcar_no_realizado(control, payload.get("observaciones")), today)
    return control


def cancelar_control(control_id: int, payload: dict, today: date) -> ControlContacto:
    control = control_by_id(control_id)
    _apply_control_update(control, controles.cancelar(control, payload.get("observaciones")), today)
    return control


def reprogramar_control(control_id: int, payload: dict, today: date) -> ControlContacto:
    control = control_by_id(control_id)
    nueva_fecha = parse_iso_date(payload.get("fecha_programada"), "fecha_programada")
    _apply_control_update(control, controles.reprogramar(control, nueva_fecha, today), today)
    return control


# Esquemas e indicaciones TPT ----------------------------------------------------


def list_esquemas(include_inactive: bool = False) -> list[EsquemaTpt]:
    query = EsquemaTpt.query.order_by(EsquemaTpt.codigo.asc())
    if not include_inactive:
        query = query.filter_by(activo=True)
    return query.all()


def create_esquema(payload: dict) -> EsquemaTpt:
    codigo = _text(payload, "codigo").upper()
    if codigo and EsquemaTpt.query.filter_by(codigo=codigo).first():
        raise ValidationError("El codigo de esquema ya existe", field="codigo", rule="unique")
    esquema = EsquemaTpt(
        codigo=codigo,
        nombre=_text(payload, "nombre"),
        descripcion=_text(payload, "descripcion"),
        duracion_meses=_parse_int(payload.get("duracion_meses"), "duracion_meses"),
        medicamentos=_text(payload, "medicamentos"),
        activo=_parse_bool(payload.get("activo")),
    )
    validate_esquema(esquema)
    db.session.add(esquema)
    db.session.commit()
    return esquema


def update_esquema(esquema_id: int, payload: dict) -> EsquemaTpt:
    esquema = esquema_by_id(esquema_id)
    with _discard_on_error():
        for key in ("nombre", "descripcion", "medicamentos"):
            if key in payload:
                setattr(esquema, key, _text(payload, key))
        if "duracion_meses" in payload:
            esquema.duracion_meses = _parse_int(payload.get("duracion_meses"), "duracion_meses")
        if "activo" in payload:
            esquema.activo = _parse_bool(payload.get("activo"))
        validate_esquema(esquema)
    db.session.add(esquema)
    db.session.commit()
    return esquema


def list_indicaciones(contacto_id: int) -> list[TptIndicacion]:
    contacto = contacto_by_id(contacto_id)
    return (
        TptIndicacion.query.options(joinedload(TptIndicacion.esquema))
        .filter_by(contacto_id=contacto.id)
        .order_by(TptIndicacion.fecha_indicacion.desc(), TptIndicacion.id.desc())
        .all()
    )


def _apply_tpt_transition(indicacion: TptIndicacion, outcome: tpt.TptTransition, today: date) -> None:
    previous = indicacion.estado
    indicacion.estado = outcome.estado
    indicacion.fecha_inicio = outcome.fecha_inicio
    indicacion.fecha_fin_prevista = outcome.fecha_fin_prevista
    indicacion.fecha_cambio_estado = outcome.fecha_cambio_estado
    with _discard_on_error():
        validate_indicacion(indicacion, today)
    logger.info("Indicacion TPT %s: %s -> %s", indicacion.id, previous.value, outcome.estado.value)


def create_indicacion(contacto_id: int, payload: dict, user_id: int | None, today: date) -> TptIndicacion:
    contacto = contacto_by_id(contacto_id)
    esquema = esquema_by_id(_parse_int(payload.get("esquema_tpt_id"), "esquema_tpt_id"))
    if not esquema.activo:
        raise ValidationError("El esquema TPT no esta activo", field="esquema_tpt_id", rule="inactive")

    indicacion = TptIndicacion(
        contacto_id=contacto.id,
        esquema_tpt_id=esquema.id,
        fecha_indicacion=parse_optional_iso_date(payload.get("fecha_indicacion"), "fecha_indicacion") or today,
        fecha_fin_prevista=parse_optional_iso_date(payload.get("fecha_fin_prevista"), "fecha_fin_prevista"),
        estado=EstadoTpt.INDICADO,
        fecha_cambio_estado=today,
        motivo_indicacion=_text(payload, "motivo_indicacion"),
        establecimiento_id=contacto.establecimiento_id,
        usuario_indicacion_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_indicacion(indicacion, today)

    fecha_inicio = parse_optional_iso_date(payload.get("fecha_inicio"), "fecha_inicio")
    if fecha_inicio is not None:
        outcome = tpt.transition(
            indicacion,
            EstadoTpt.EN_CURSO,
            today,
            duracion_meses=esquema.duracion_meses,
            fecha_inicio=fecha_inicio,
        )
        _apply_tpt_transition(indicacion, outcome, today)

    db.session.add(indicacion)
    db.session.commit()
    return indicacion


def cambiar_estado_tpt(
    indicacion_id: int,
    estado: EstadoTpt | str,
    today: date,
    fecha_inicio: date | None = None,
    observaciones: str | None = None,
) -> TptIndicacion:
    indicacion = indicacion_by_id(indicacion_id)
    target = _parse_enum(estado, EstadoTpt, "estado")
    outcome = tpt.transition(
        indicacion,
        target,
        today,
        duracion_meses=indicacion.esquema.duracion_meses if indicacion.esquema else None,
        fecha_inicio=fecha_inicio,
    )
    _apply_tpt_transition(indicacion, outcome, today)
    if clean_text(observaciones):
        indicacion.observaciones = clean_text(observaciones)
    db.session.add(indicacion)
    db.session.commit()
    return indicacion


def iniciar_tpt(indicacion_id: int, fecha_inicio: date | str | None, today: date) -> TptIndicacion:
    inicio = parse_optional_iso_date(fecha_inicio, "fecha_inicio")
    return cambiar_estado_tpt(indicacion_id, EstadoTpt.EN_CURSO, today, fecha_inicio=inicio)


# Seguimiento, reacciones adversas y consentimiento TPT ----------------------------


def seguimiento_tpt_by_id(seguimiento_id: int) -> TptSeguimiento:
    seguimiento = db.session.get(TptSeguimiento, seguimiento_id)
    if not seguimiento:
        raise NotFoundError("Seguimiento TPT no encontrado", field="tpt_seguimiento_id", rule="not_found")
    return seguimiento


def list_seguimientos_tpt(indicacion_id: int) -> list[TptSeguimiento]:
    indicacion = indicacion_by_id(indicacion_id)
    return (
        TptSeguimiento.query.filter_by(tpt_indicacion_id=indicacion.id)
        .order_by(TptSeguimiento.fecha_seguimiento.asc(), TptSeguimiento.id.asc())
        .all()
    )


def create_seguimiento_tpt(indicacion_id: int, payload: dict, user_id: int | None, today: date) -> TptSeguimiento:
    """Record one dose follow-up. Only an indication in course can be followed."""
    indicacion = indicacion_by_id(indicacion_id)
    if indicacion.estado != EstadoTpt.EN_CURSO:
        raise InvalidTransition(
            f"Solo se puede hacer seguimiento a TPT en curso (estado actual: {indicacion.estado.value})",
            field="estado",
            rule="not_in_course",
        )
    seguimiento = TptSeguimiento(
        tpt_indicacion_id=indicacion.id,
        fecha_seguimiento=parse_optional_iso_date(payload.get("fecha_seguimiento"), "fecha_seguimiento") or today,
        dosis_administrada=_parse_bool(payload.get("dosis_administrada"), default=False),
        observaciones_administracion=_text(payload, "observaciones_administracion"),
        efectos_adversos=_parse_bool(payload.get("efectos_adversos"), default=False),
        establecimiento_id=indicacion.establecimiento_id,
        usuario_registro_id=user_id,
    )
    validate_seguimiento_tpt(seguimiento, indicacion, today)
    db.session.add(seguimiento)
    db.session.commit()
    if seguimiento.efectos_adversos:
        logger.warning("Seguimiento TPT %s reporta efectos adversos (indicacion %s)", seguimiento.id, indicacion.id)
    return seguimiento


def reaccion_by_id(reaccion_id: int) -> ReaccionAdversa:
    reaccion = db.session.get(ReaccionAdversa, reaccion_id)
    if not reaccion:
        raise NotFoundError("Reaccion adversa no encontrada", field="reaccion_adversa_id", rule="not_found")
    return reaccion


def list_reacciones_adversas(indicacion_id: int) -> list[ReaccionAdversa]:
    indicacion = indicacion_by_id(indicacion_id)
    return (
        ReaccionAdversa.query.filter_by(tpt_indicacion_id=indicacion.id)
        .order_by(ReaccionAdversa.fecha_reaccion.asc(), ReaccionAdversa.id.asc())
        .all()
    )


def create_reaccion_adversa(indicacion_id: int, payload: dict, user_id: int | None, today: date) -> ReaccionAdversa:
    indicacion = indicacion_by_id(indicacion_id)
    reaccion = ReaccionAdversa(
        tpt_indicacion_id=indicacion.id,
        fecha_reaccion=parse_optional_iso_date(payload.get("fecha_reaccion"), "fecha_reaccion") or today,
        tipo_reaccion=_text(payload, "tipo_reaccion"),
        severidad=_parse_enum(payload.get("severidad"), SeveridadReaccion, "severidad"),
        sintomas=_text(payload, "sintomas"),
        accion_tomada=_text(payload, "accion_tomada"),
        medicamento_sospechoso=_text(payload, "medicamento_sospechoso"),
        resultado=_parse_enum(
            payload.get("resultado") or ResultadoReaccion.EN_SEGUIMIENTO,
            ResultadoReaccion,
            "resultado",
        ),
        establecimiento_id=indicacion.establecimiento_id,
        usuario_registro_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_reaccion_adversa(reaccion, indicacion, today)
    db.session.add(reaccion)
    db.session.commit()
    logger.info(
        "Reaccion adversa %s (%s) registrada para indicacion %s",
        reaccion.id,
        reaccion.severidad.value,
        indicacion.id,
    )
    return reaccion


def update_reaccion_adversa(reaccion_id: int, payload: dict, today: date) -> ReaccionAdversa:
    reaccion = reaccion_by_id(reaccion_id)
    with _discard_on_error():
        for key in ("tipo_reaccion", "sintomas", "accion_tomada", "medicamento_sospechoso", "observaciones"):
            if key in payload:
                setattr(reaccion, key, _text(payload, key))
        if "severidad" in payload:
            reaccion.severidad = _parse_enum(payload.get("severidad"), SeveridadReaccion, "severidad")
        if "resultado" in payload:
            reaccion.resultado = _parse_enum(payload.get("resultado"), ResultadoReaccion, "resultado")
        validate_reaccion_adversa(reaccion, reaccion.indicacion, today)
    db.session.add(reaccion)
    db.session.commit()
    return reaccion


def consentimiento_de(indicacion_id: int) -> TptConsentimiento:
    indicacion = indicacion_by_id(indicacion_id)
    if indicacion.consentimiento is None:
        raise NotFoundError(
            "Consentimiento no encontrado para esta indicacion TPT",
            field="tpt_indicacion_id",
            rule="not_found",
        )
    return indicacion.consentimiento


def create_consentimiento(indicacion_id: int, payload: dict, user_id: int | None, today: date) -> TptConsentimiento:
    indicacion = indicacion_by_id(indicacion_id)
    if TptConsentimiento.query.filter_by(tpt_indicacion_id=indicacion.id).first():
        raise ConflictError(
            "Ya existe un consentimiento para esta indicacion TPT",
            field="tpt_indicacion_id",
            rule="unique",
        )
    consentimiento = TptConsentimiento(
        tpt_indicacion_id=indicacion.id,
        fecha_consentimiento=parse_optional_iso_date(payload.get("fecha_consentimiento"), "fecha_consentimiento")
        or today,
        consentimiento_firmado=_parse_bool(payload.get("consentimiento_firmado"), default=False),
        ruta_archivo_consentimiento=_text(payload, "ruta_archivo_consentimiento") or None,
        usuario_registro_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_consentimiento(consentimiento, today)
    db.session.add(consentimiento)
    db.session.commit()
    return consentimiento


def update_consentimiento(indicacion_id: int, payload: dict, today: date) -> TptConsentimiento:
    consentimiento = consentimiento_de(indicacion_id)
    with _discard_on_error():
        if "fecha_consentimiento" in payload:
            consentimiento.fecha_consentimiento = parse_iso_date(
                payload.get("fecha_consentimiento"), "fecha_consentimiento"
            )
        if "consentimiento_firmado" in payload:
            consentimiento.consentimiento_firmado = _parse_bool(payload.get("consentimiento_firmado"), default=False)
        if "ruta_archivo_consentimiento" in payload:
            consentimiento.ruta_archivo_consentimiento = _text(payload, "ruta_archivo_consentimiento") or None
        if "observaciones" in payload:
            consentimiento.observaciones = _text(payload, "observaciones")
        validate_consentimiento(consentimiento, today)
    db.session.add(consentimiento)
    db.session.commit()
    return consentimiento


# Visitas domiciliarias ---------------------------------------------------------


def create_visita(payload: dict, user_id: int | None, today: date) -> VisitaDomiciliaria:
    contacto_id = _parse_optional_int(payload.get("contacto_id"), "contacto_id")
    caso_id = _parse_optional_int(payload.get("caso_indice_id"), "caso_indice_id")
    visita = VisitaDomiciliaria(
        contacto_id=contacto_id,
        caso_indice_id=caso_id,
        tipo_visita=_parse_enum(payload.get("tipo_visita"), TipoVisita, "tipo_visita"),
        fecha_visita=parse_iso_date(payload.get("fecha_visita"), "fecha_visita"),
        fecha_programada=parse_optional_iso_date(payload.get("fecha_programada"), "fecha_programada"),
        direccion_visita=_text(payload, "direccion_visita"),
        resultado_visita=_parse_enum(payload.get("resultado_visita") or ResultadoVisita.REALIZADA, ResultadoVisita, "resultado_visita"),
        motivo_no_realizada=_text(payload, "motivo_no_realizada") or None,
        usuario_visita_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    if contacto_id is not None and caso_id is None:
        owner = contacto_by_id(contacto_id)
        visita.establecimiento_id = owner.establecimiento_id
        visita.direccion_visita = visita.direccion_visita or owner.direccion
    elif caso_id is not None and contacto_id is None:
        visita.establecimiento_id = caso_by_id(caso_id).establecimiento_id
    validate_visita(visita, today)
    db.session.add(visita)
    db.session.commit()
    return visita


def list_visitas(contacto_id: int | None = None, caso_id: int | None = None) -> list[VisitaDomiciliaria]:
    query = VisitaDomiciliaria.query
    if contacto_id is not None:
        query = query.filter_by(contacto_id=contacto_id)
    if caso_id is not None:
        query = query.filter_by(caso_indice_id=caso_id)
    return query.order_by(VisitaDomiciliaria.fecha_visita.desc(), VisitaDomiciliaria.id.desc()).all()


# Derivaciones y transferencias ---------------------------------------------------


def create_derivacion(contacto_id: int, payload: dict, user_id: int | None, today: date) -> DerivacionTransferencia:
    contacto = contacto_by_id(contacto_id)
    destino = establecimiento_by_id(_parse_int(payload.get("establecimiento_destino_id"), "establecimiento_destino_id"))
    derivacion = DerivacionTransferencia(
        contacto_id=contacto.id,
        establecimiento_origen_id=contacto.establecimiento_id,
        establecimiento_destino_id=destino.id,
        tipo=_parse_enum(payload.get("tipo"), TipoDerivacion, "tipo"),
        fecha_solicitud=parse_optional_iso_date(payload.get("fecha_solicitud"), "fecha_solicitud") or today,
        motivo=_text(payload, "motivo"),
        estado=EstadoDerivacion.PENDIENTE,
        usuario_solicita_id=user_id,
        observaciones=_text(payload, "observaciones"),
    )
    validate_derivacion(derivacion, today)
    db.session.add(derivacion)
    db.session.commit()
    return derivacion


def transition_derivacion(
    derivacion_id: int,
    new_state: EstadoDerivacion | str,
    user_id: int | None,
    today: date,
) -> DerivacionTransferencia:
    derivacion = derivacion_by_id(derivacion_id)
    target = _parse_enum(new_state, EstadoDerivacion, "estado")
    current = derivacion.estado
    if target not in DERIVACION_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Transicion invalida: {current.value} -> {target.value}",
            field="estado",
            rule="not_allowed",
        )
    derivacion.estado = target
    if target == EstadoDerivacion.ACEPTADA:
        derivacion.fecha_aceptacion = today
        derivacion.usuario_acepta_id = user_id
    if target == EstadoDerivacion.COMPLETADA and derivacion.tipo == TipoDerivacion.TRANSFERENCIA:
        # A completed transfer moves the contact's follow-up to the destination facility.
        derivacion.contacto.establecimiento_id = derivacion.establecimiento_destino_id
        db.session.add(derivacion.contacto)
    db.session.add(derivacion)
    db.session.commit()
    return derivacion


# Alertas ---------------------------------------------------------------------------


def list_alertas(filters: dict[str, str]) -> list[Alerta]:
    query = Alerta.query.order_by(Alerta.fecha_alerta.desc(), Alerta.id.desc())
    estado = (filters.get("estado") or "").strip()
    if estado == "abiertas":
        query = query.filter(Alerta.estado.in_(ESTADOS_ALERTA_ABIERTA))
    elif estado:
        query = query.filter(Alerta.estado == _parse_enum(estado, EstadoAlerta, "estado"))
    tipo = (filters.get("tipo_alerta") or "").strip()
    if tipo:
        query = query.filter(Alerta.tipo_alerta == _parse_enum(tipo, TipoAlerta, "tipo_alerta"))
    severidad = (filters.get("severidad") or "").strip()
    if severidad:
        query = query.filter(Alerta.severidad == _parse_enum(severidad, Severidad, "severidad"))
    contacto_id = _parse_optional_int(filters.get("contacto_id"), "contacto_id")
    if contacto_id:
        query = query.filter(Alerta.contacto_id == contacto_id)
    caso_id = _parse_optional_int(filters.get("caso_indice_id"), "caso_indice_id")
    if caso_id:
        query = query.filter(Alerta.caso_indice_id == caso_id)
    return query.all()


def create_alerta_manual(payload: dict, today: date) -> Alerta:
    contacto_id = _parse_optional_int(payload.get("contacto_id"), "contacto_id")
    caso_id = _parse_optional_int(payload.get("caso_indice_id"), "caso_indice_id")
    if contacto_id is not None:
        contacto_by_id(contacto_id)
    if caso_id is not None:
        caso_by_id(caso_id)
    alerta = Alerta(
        tipo_alerta=_parse_enum(payload.get("tipo_alerta") or TipoAlerta.OTRO, TipoAlerta, "tipo_alerta"),
        contacto_id=contacto_id,
        caso_indice_id=caso_id,
        severidad=_parse_enum(payload.get("severidad") or Severidad.MEDIA, Severidad, "severidad"),
        mensaje=_text(payload, "mensaje"),
        fecha_alerta=today,
        estado=EstadoAlerta.ACTIVA,
        observaciones=_text(payload, "observaciones"),
    )
    validate_alerta(alerta)
    db.session.add(alerta)
    db.session.commit()
    return alerta


# Cumplimiento ---------------------------------------------------------------------


def load_case_graph(caso: CasoIndice) -> CaseGraph:
    contactos = Contacto.query.filter_by(caso_indice_id=caso.id, activo=True).order_by(Contacto.id.asc()).all()
    contacto_ids = [c.id for c in contactos]
    graph = CaseGraph(caso=caso, contactos=contactos)
    if contacto_ids:
        graph.controles = (
            ControlContacto.query.filter(ControlContacto.contacto_id.in_(contacto_ids))
            .order_by(ControlContacto.id.asc())
            .all()
        )
        graph.indicaciones = (
            TptIndicacion.query.filter(TptIndicacion.contacto_id.in_(contacto_ids))
            .order_by(TptIndicacion.id.asc())
            .all()
        )
    visitas_query = VisitaDomiciliaria.query.filter(VisitaDomiciliaria.caso_indice_id == caso.id)
    if contacto_ids:
        visitas_query = VisitaDomiciliaria.query.filter(
            db.or_(
                VisitaDomiciliaria.caso_indice_id == caso.id,
                VisitaDomiciliaria.contacto_id.in_(contacto_ids),
            )
        )
    graph.visitas = visitas_query.order_by(VisitaDomiciliaria.id.asc()).all()
    return graph


def evaluate_case_family(caso_id: int, today: date) -> ReconcileResult:
    caso = caso_by_id(caso_id)
    findings = evaluate(today, load_case_graph(caso))
    result = reconcile(findings, today)
    db.session.commit()
    return result


def run_compliance_pass(today: date, caso_ids: list[int] | None = None) -> CompliancePassResult:
    """Evaluate and reconcile every active case family on ``today``.

    Each family is committed on its own; a failure is rolled back, logged and
    recorded in ``failed`` without stopping the remaining families.
    """
    summary = CompliancePassResult(fecha=today)
    query = CasoIndice.query.filter_by(activo=True)
    if caso_ids is not None:
        query = query.filter(CasoIndice.id.in_(caso_ids))
    ids = [caso_id for (caso_id,) in query.with_entities(CasoIndice.id).order_by(CasoIndice.id.asc()).all()]

    for caso_id in ids:
        summary.families += 1
        try:
            caso = caso_by_id(caso_id)
            findings = evaluate(today, load_case_graph(caso))
            result = reconcile(findings, today)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.exception("Fallo la evaluacion de cumplimiento del caso %s", caso_id)
            summary.failed.append(
                {
                    "caso_indice_id": caso_id,
                    "error": type(exc).__name__,
                    "message": str(exc),
                }
            )
            continue
        summary.findings += len(findings)
        summary.created += result.created
        summary.escalated += result.escalated
        summary.unchanged += result.unchanged

    logger.info(
        "Pase de cumplimiento %s: familias=%d hallazgos=%d creadas=%d escaladas=%d sin_cambios=%d fallos=%d",
        today.isoformat(),
        summary.families,
        summary.findings,
        summary.created,
        summary.escalated,
        summary.unchanged,
        len(summary.failed),
    )
    return summary


def panel_data(today: date) -> dict[str, object]:
    alertas_por_severidad = dict(
        db.session.query(Alerta.severidad, func.count(Alerta.id))
        .filter(Alerta.estado.in_(ESTADOS_ALERTA_ABIERTA))
        .group_by(Alerta.severidad)
        .all()
    )
    casos_por_tipo = dict(
        db.session.query(CasoIndice.tipo_tb, func.count(CasoIndice.id))
        .filter(CasoIndice.activo.is_(True))
        .group_by(CasoIndice.tipo_tb)
        .all()
    )
    return {
        "fecha": today.isoformat(),
        "casos_activos": CasoIndice.query.filter_by(activo=True).count(),
        "contactos_activos": Contacto.query.filter_by(activo=True).count(),
        "controles_vencidos": len(controles_vencidos(today)),
        "tpt_en_curso": TptIndicacion.query.filter_by(estado=EstadoTpt.EN_CURSO).count(),
        "derivaciones_pendientes": DerivacionTransferencia.query.filter_by(estado=EstadoDerivacion.PENDIENTE).count(),
        "alertas_abiertas": sum(alertas_por_severidad.values()),
        "alertas_por_severidad": {sev.value: alertas_por_severidad.get(sev, 0) for sev in Severidad},
        "casos_por_tipo": {tipo.value: casos_por_tipo.get(tipo, 0) for tipo in TipoTb},
    }
