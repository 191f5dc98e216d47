from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from app.core.errors import InvalidTransition, ValidationError
from app.core.models import EstadoControl

CONTROL_TRANSITIONS: dict[EstadoControl, set[EstadoControl]] = {
    EstadoControl.PROGRAMADO: {
        EstadoControl.REALIZADO,
        EstadoControl.NO_REALIZADO,
        EstadoControl.CANCELADO,
    },
    EstadoControl.NO_REALIZADO: {
        EstadoControl.REALIZADO,
        EstadoControl.PROGRAMADO,
        EstadoControl.CANCELADO,
    },
    EstadoControl.REALIZADO: set(),
    EstadoControl.CANCELADO: set(),
}


@dataclass(frozen=True)
class ControlUpdate:
    estado: EstadoControl
    fecha_programada: date
    fecha_realizada: date | None
    resultado: str | None = None
    observaciones: str | None = None


def is_due(control, today: date) -> bool:
    return control.estado == EstadoControl.PROGRAMADO and control.fecha_programada < today


def dias_vencido(control, today: date) -> int:
    if not is_due(control, today):
        return 0
    return (today - control.fecha_programada).days


def next_numero_control(numeros: list[int]) -> int:
    return max(numeros, default=0) + 1


def _check_transition(control, target: EstadoControl) -> None:
    current = control.estado
    if target not in CONTROL_TRANSITIONS.get(current, set()):
        raise InvalidTransition(
            f"Transicion invalida: {current.value} -> {target.value}",
            field="estado",
            rule="not_allowed",
        )


def marcar_realizado(
    control,
    today: date,
    fecha_realizada: date | None = None,
    resultado: str | None = None,
    observaciones: str | None = None,
) -> ControlUpdate:
    _check_transition(control, EstadoControl.REALIZADO)
    realizada = fecha_realizada or today
    if realizada > today:
        raise ValidationError(
            "fecha_realizada no puede ser posterior a hoy",
            field="fecha_realizada",
            rule="not_future",
        )
    return ControlUpdate(
        estado=EstadoControl.REALIZADO,
        fecha_programada=control.fecha_programada,
        fecha_realizada=realizada,
        resultado=resultado,
        observaciones=observaciones,
    )


def marcar_no_realizado(control, observaciones: str | None = None) -> ControlUpdate:
    _check_transition(control, EstadoControl.NO_REALIZADO)
    return ControlUpdate(
        estado=EstadoControl.NO_REALIZADO,
        fecha_programada=control.fecha_programada,
        fecha_realizada=None,
        observaciones=observaciones,
    )


def cancelar(control, observaciones: str | None = None) -> ControlUpdate:
    _check_transition(control, EstadoControl.CANCELADO)
    return ControlUpdate(
        estado=EstadoControl.CANCELADO,
        fecha_programada=control.fecha_programada,
        fecha_realizada=None,
        observaciones=observaciones,
    )


def reprogramar(control, nueva_fecha: date, today: date) -> ControlUpdate:
    if control.estado != EstadoControl.NO_REALIZADO:
        raise InvalidTransition(
            "Solo se pueden reprogramar controles no realizados",
            field="estado",
            rule="not_allowed",
        )
    if nueva_fecha < today:
        raise ValidationError(
            "La nueva fecha_programada no puede ser anterior a hoy",
            field="fecha_programada",
            rule="not_past",
        )
    return ControlUpdate(
        estado=EstadoControl.PROGRAMADO,
        fecha_programada=nueva_fecha,
        fecha_realizada=None,
    )
