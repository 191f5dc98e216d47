"""Field and cross-field rules for the follow-up entities.

Every rule takes the record being written plus an explicit ``today`` and
raises :class:`ValidationError` naming the offending field. The compliance
evaluator groups visits with :func:`validate_visita_owner`, the same check the
service write path runs.
"""
from __future__ import annotations

import re
from datetime import date

from app.core.errors import ValidationError
from app.core.models import (
    EstadoAlerta,
    EstadoControl,
    EstadoTpt,
    ResultadoReaccion,
    ResultadoVisita,
    Rol,
    SeveridadReaccion,
    TipoAlerta,
    TipoContacto,
    TipoControl,
    TipoDerivacion,
    TipoExamen,
    TipoTb,
    TipoVisita,
)

CODIGO_CASO_RE = re.compile(r"^CASO-[0-9A-Fa-f]{8}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _require(value, field: str, label: str | None = None) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Falta {label or field}", field=field, rule="required")


def _not_future(value: date | None, today: date, field: str) -> None:
    if value is not None and value > today:
        raise ValidationError(f"{field} no puede ser posterior a hoy", field=field, rule="not_future")


def _member(value, enum_cls, field: str) -> None:
    if value is None:
        return
    if isinstance(value, enum_cls):
        return
    if value not in {m.value for m in enum_cls}:
        raise ValidationError(f"Valor invalido para {field}: {value}", field=field, rule="enum")


def validate_codigo_caso(codigo: str | None) -> None:
    _require(codigo, "codigo_caso")
    if not CODIGO_CASO_RE.match(codigo):
        raise ValidationError(
            "codigo_caso debe tener el formato CASO-XXXXXXXX (hexadecimal)",
            field="codigo_caso",
            rule="format",
        )


def validate_caso_indice(caso, today: date) -> None:
    validate_codigo_caso(caso.codigo_caso)
    _require(caso.paciente_nombres, "paciente_nombres")
    _require(caso.paciente_apellidos, "paciente_apellidos")
    _require(caso.tipo_tb, "tipo_tb")
    _member(caso.tipo_tb, TipoTb, "tipo_tb")
    _require(caso.fecha_diagnostico, "fecha_diagnostico")
    _not_future(caso.fecha_diagnostico, today, "fecha_diagnostico")
    _require(caso.establecimiento_id, "establecimiento_id")
    if caso.fecha_nacimiento is not None and caso.fecha_nacimiento > caso.fecha_diagnostico:
        raise ValidationError(
            "fecha_nacimiento no puede ser posterior a fecha_diagnostico",
            field="fecha_nacimiento",
            rule="date_order",
        )


def validate_contacto(contacto, today: date) -> None:
    _require(contacto.caso_indice_id, "caso_indice_id")
    _require(contacto.nombres, "nombres")
    _require(contacto.apellidos, "apellidos")
    _require(contacto.tipo_contacto, "tipo_contacto")
    _member(contacto.tipo_contacto, TipoContacto, "tipo_contacto")
    _require(contacto.fecha_registro, "fecha_registro")
    _not_future(contacto.fecha_registro, today, "fecha_registro")
    _not_future(contacto.fecha_nacimiento, today, "fecha_nacimiento")
    _require(contacto.establecimiento_id, "establecimiento_id")


def validate_examen(examen, today: date) -> None:
    _require(examen.contacto_id, "contacto_id")
    _require(examen.tipo_examen, "tipo_examen")
    _member(examen.tipo_examen, TipoExamen, "tipo_examen")
    _require(examen.fecha_examen, "fecha_examen")
    _not_future(examen.fecha_examen, today, "fecha_examen")
    _require(examen.establecimiento_id, "establecimiento_id")


def validate_control(control, today: date) -> None:
    _require(control.contacto_id, "contacto_id")
    _require(control.numero_control, "numero_control")
    if int(control.numero_control) <= 0:
        raise ValidationError("numero_control debe ser positivo", field="numero_control", rule="positive")
    _require(control.tipo_control, "tipo_control")
    _member(control.tipo_control, TipoControl, "tipo_control")
    _require(control.fecha_programada, "fecha_programada")
    _member(control.estado, EstadoControl, "estado")
    _require(control.establecimiento_id, "establecimiento_id")
    if control.estado == EstadoControl.REALIZADO and control.fecha_realizada is None:
        raise ValidationError(
            "Un control realizado requiere fecha_realizada",
            field="fecha_realizada",
            rule="required_when_realizado",
        )
    _not_future(control.fecha_realizada, today, "fecha_realizada")


def validate_esquema(esquema) -> None:
    _require(esquema.codigo, "codigo")
    _require(esquema.nombre, "nombre")
    _require(esquema.duracion_meses, "duracion_meses")
    if int(esquema.duracion_meses) <= 0:
        raise ValidationError("duracion_meses debe ser positivo", field="duracion_meses", rule="positive")


def validate_indicacion(indicacion, today: date) -> None:
    _require(indicacion.contacto_id, "contacto_id")
    _require(indicacion.esquema_tpt_id, "esquema_tpt_id")
    _require(indicacion.fecha_indicacion, "fecha_indicacion")
    _not_future(indicacion.fecha_indicacion, today, "fecha_indicacion")
    _member(indicacion.estado, EstadoTpt, "estado")
    _require(indicacion.establecimiento_id, "establecimiento_id")
    if indicacion.fecha_inicio is not None:
        _not_future(indicacion.fecha_inicio, today, "fecha_inicio")
        if indicacion.fecha_inicio < indicacion.fecha_indicacion:
            raise ValidationError(
                "fecha_inicio no puede ser anterior a fecha_indicacion",
                field="fecha_inicio",
                rule="date_order",
            )
    if indicacion.fecha_fin_prevista is not None and indicacion.fecha_fin_prevista < indicacion.fecha_indicacion:
        raise ValidationError(
            "fecha_fin_prevista no puede ser anterior a fecha_indicacion",
            field="fecha_fin_prevista",
            rule="date_order",
        )
    if (
        indicacion.fecha_inicio is not None
        and indicacion.fecha_fin_prevista is not None
        and indicacion.fecha_inicio > indicacion.fecha_fin_prevista
    ):
        raise ValidationError(
            "fecha_inicio no puede ser posterior a fecha_fin_prevista",
            field="fecha_fin_prevista",
            rule="date_order",
        )


def validate_visita_owner(visita) -> tuple[str, int]:
    """Return ``("contacto" | "caso_indice", id)`` for a visit with exactly one owner."""
    has_contacto = visita.contacto_id is not None
    has_caso = visita.caso_indice_id is not None
    if has_contacto == has_caso:
        raise ValidationError(
            "La visita debe pertenecer a un contacto o a un caso indice, no a ambos ni a ninguno",
            field="contacto_id" if has_contacto else None,
            rule="exactly_one_owner",
        )
    if has_contacto:
        return "contacto", visita.contacto_id
    return "caso_indice", visita.caso_indice_id


def validate_visita(visita, today: date) -> None:
    validate_visita_owner(visita)
    _require(visita.tipo_visita, "tipo_visita")
    _member(visita.tipo_visita, TipoVisita, "tipo_visita")
    _require(visita.fecha_visita, "fecha_visita")
    _not_future(visita.fecha_visita, today, "fecha_visita")
    _member(visita.resultado_visita, ResultadoVisita, "resultado_visita")
    _require(visita.establecimiento_id, "establecimiento_id")
    no_realizada = visita.resultado_visita == ResultadoVisita.NO_REALIZADA
    has_motivo = bool((visita.motivo_no_realizada or "").strip())
    if no_realizada and not has_motivo:
        raise ValidationError(
            "motivo_no_realizada es obligatorio si la visita no se realizo",
            field="motivo_no_realizada",
            rule="required_when_no_realizada",
        )
    if has_motivo and not no_realizada:
        raise ValidationError(
            "motivo_no_realizada solo aplica a visitas no realizadas",
            field="motivo_no_realizada",
            rule="only_when_no_realizada",
        )


def validate_derivacion(derivacion, today: date) -> None:
    _require(derivacion.contacto_id, "contacto_id")
    _require(derivacion.establecimiento_origen_id, "establecimiento_origen_id")
    _require(derivacion.establecimiento_destino_id, "establecimiento_destino_id")
    if derivacion.establecimiento_origen_id == derivacion.establecimiento_destino_id:
        raise ValidationError(
            "El establecimiento de destino debe ser distinto al de origen",
            field="establecimiento_destino_id",
            rule="distinct",
        )
    _require(derivacion.tipo, "tipo")
    _member(derivacion.tipo, TipoDerivacion, "tipo")
    _require(derivacion.fecha_solicitud, "fecha_solicitud")
    _not_future(derivacion.fecha_solicitud, today, "fecha_solicitud")
    _require(derivacion.motivo, "motivo")


def validate_alerta(alerta) -> None:
    if alerta.contacto_id is None and alerta.caso_indice_id is None:
        raise ValidationError(
            "La alerta debe referenciar un contacto o un caso indice",
            field="contacto_id",
            rule="at_least_one_owner",
        )
    _require(alerta.tipo_alerta, "tipo_alerta")
    _member(alerta.tipo_alerta, TipoAlerta, "tipo_alerta")
    _require(alerta.mensaje, "mensaje")
    _require(alerta.fecha_alerta, "fecha_alerta")
    if alerta.estado == EstadoAlerta.RESUELTA:
        if alerta.fecha_resolucion is None:
            raise ValidationError(
                "Una alerta resuelta requiere fecha_resolucion",
                field="fecha_resolucion",
                rule="required_when_resuelta",
            )
        if alerta.usuario_resuelve_id is None:
            raise ValidationError(
                "Una alerta resuelta requiere usuario_resuelve_id",
                field="usuario_resuelve_id",
                rule="required_when_resuelta",
            )


def _max_length(value: str | None, limit: int, field: str) -> None:
    if value and len(value) > limit:
        raise ValidationError(f"{field} supera {limit} caracteres", field=field, rule="max_length")


def validate_seguimiento_tpt(seguimiento, indicacion, today: date) -> None:
    _require(seguimiento.tpt_indicacion_id, "tpt_indicacion_id")
    _require(seguimiento.fecha_seguimiento, "fecha_seguimiento")
    _not_future(seguimiento.fecha_seguimiento, today, "fecha_seguimiento")
    _require(seguimiento.establecimiento_id, "establecimiento_id")
    if indicacion.fecha_inicio is not None and seguimiento.fecha_seguimiento < indicacion.fecha_inicio:
        raise ValidationError(
            "fecha_seguimiento no puede ser anterior al inicio de la TPT",
            field="fecha_seguimiento",
            rule="date_order",
        )


def validate_reaccion_adversa(reaccion, indicacion, today: date) -> None:
    _require(reaccion.tpt_indicacion_id, "tpt_indicacion_id")
    _require(reaccion.fecha_reaccion, "fecha_reaccion")
    _not_future(reaccion.fecha_reaccion, today, "fecha_reaccion")
    if reaccion.fecha_reaccion < indicacion.fecha_indicacion:
        raise ValidationError(
            "fecha_reaccion no puede ser anterior a fecha_indicacion",
            field="fecha_reaccion",
            rule="date_order",
        )
    _require(reaccion.tipo_reaccion, "tipo_reaccion")
    _max_length(reaccion.tipo_reaccion, 100, "tipo_reaccion")
    _require(reaccion.severidad, "severidad")
    _member(reaccion.severidad, SeveridadReaccion, "severidad")
    _require(reaccion.sintomas, "sintomas")
    _max_length(reaccion.medicamento_sospechoso, 200, "medicamento_sospechoso")
    _member(reaccion.resultado, ResultadoReaccion, "resultado")
    _require(reaccion.establecimiento_id, "establecimiento_id")


def validate_consentimiento(consentimiento, today: date) -> None:
    _require(consentimiento.tpt_indicacion_id, "tpt_indicacion_id")
    _require(consentimiento.fecha_consentimiento, "fecha_consentimiento")
    _not_future(consentimiento.fecha_consentimiento, today, "fecha_consentimiento")
    _max_length(consentimiento.ruta_archivo_consentimiento, 500, "ruta_archivo_consentimiento")


def validate_establecimiento(establecimiento) -> None:
    _require(establecimiento.codigo, "codigo")
    _max_length(establecimiento.codigo, 50, "codigo")
    _require(establecimiento.nombre, "nombre")
    _max_length(establecimiento.nombre, 200, "nombre")


def validate_usuario(usuario) -> None:
    _require(usuario.email, "email")
    if not EMAIL_RE.match(usuario.email):
        raise ValidationError("Email invalido", field="email", rule="format")
    _require(usuario.nombre, "nombre")
    _require(usuario.rol, "rol")
    _member(usuario.rol, Rol, "rol")
