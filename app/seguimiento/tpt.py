from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from app.core.errors import InvalidTransition
from app.core.models import EstadoTpt
from app.core.utils import add_months

TPT_TRANSITIONS: dict[EstadoTpt, set[EstadoTpt]] = {
    EstadoTpt.INDICADO: {EstadoTpt.EN_CURSO},
    EstadoTpt.EN_CURSO: {EstadoTpt.COMPLETADO, EstadoTpt.SUSPENSO, EstadoTpt.ABANDONADO},
    EstadoTpt.SUSPENSO: {EstadoTpt.EN_CURSO, EstadoTpt.ABANDONADO},
    EstadoTpt.COMPLETADO: set(),
    EstadoTpt.ABANDONADO: set(),
}

TPT_TERMINAL_STATES = frozenset(state for state, targets in TPT_TRANSITIONS.items() if not targets)


@dataclass(frozen=True)
class TptTransition:
    estado: EstadoTpt
    fecha_inicio: date | None
    fecha_fin_prevista: date | None
    fecha_cambio_estado: date


def fecha_fin_prevista_para(fecha_inicio: date, duracion_meses: int) -> date:
    return add_months(fecha_inicio, duracion_meses)


def _coerce_estado(value: EstadoTpt | str) -> EstadoTpt:
    if isinstance(value, EstadoTpt):
        return value
    for estado in EstadoTpt:
        if value in (estado.value, estado.name):
            return estado
    raise InvalidTransition(f"Estado TPT desconocido: {value}", field="estado", rule="unknown_state")


def allowed_targets(estado: EstadoTpt | str) -> set[EstadoTpt]:
    return set(TPT_TRANSITIONS[_coerce_estado(estado)])


def transition(
    indicacion,
    target: EstadoTpt | str,
    today: date,
    duracion_meses: int | None = None,
    fecha_inicio: date | None = None,
) -> TptTransition:
    """Compute the outcome of moving ``indicacion`` to ``target``.

    ``indicacion`` only needs ``estado``, ``fecha_indicacion``, ``fecha_inicio``
    and ``fecha_fin_prevista``. Nothing is mutated: the caller applies the
    returned state and dates. Every rejection is an :class:`InvalidTransition`.
    """
    current = _coerce_estado(indicacion.estado)
    target = _coerce_estado(target)

    if current in TPT_TERMINAL_STATES:
        raise InvalidTransition(
            f"La indicacion TPT esta en estado terminal ({current.value})",
            field="estado",
            rule="terminal_state",
        )
    if target not in TPT_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Transicion invalida: {current.value} -> {target.value}",
            field="estado",
            rule="not_allowed",
        )

    inicio = indicacion.fecha_inicio
    fin = indicacion.fecha_fin_prevista

    if current == EstadoTpt.INDICADO and target == EstadoTpt.EN_CURSO:
        inicio = fecha_inicio or inicio
        if inicio is None:
            raise InvalidTransition(
                "Para iniciar la TPT se requiere fecha_inicio",
                field="fecha_inicio",
                rule="required",
            )
        if inicio > today:
            raise InvalidTransition(
                "fecha_inicio no puede ser posterior a hoy",
                field="fecha_inicio",
                rule="not_future",
            )
        if inicio < indicacion.fecha_indicacion:
            raise InvalidTransition(
                "fecha_inicio no puede ser anterior a fecha_indicacion",
                field="fecha_inicio",
                rule="date_order",
            )
        if fin is None:
            if not duracion_meses or duracion_meses <= 0:
                raise InvalidTransition(
                    "El esquema TPT no tiene una duracion valida",
                    field="esquema_tpt_id",
                    rule="duracion_meses",
                )
            fin = fecha_fin_prevista_para(inicio, duracion_meses)
        elif fin < inicio:
            raise InvalidTransition(
                "fecha_fin_prevista no puede ser anterior a fecha_inicio",
                field="fecha_fin_prevista",
                rule="date_order",
            )

    elif target == EstadoTpt.COMPLETADO:
        if fin is None:
            raise InvalidTransition(
                "No hay fecha_fin_prevista para validar la conclusion",
                field="fecha_fin_prevista",
                rule="required",
            )
        if today < fin:
            raise InvalidTransition(
                f"No se puede completar la TPT antes de {fin.isoformat()}",
                field="fecha_fin_prevista",
                rule="course_not_finished",
            )

    return TptTransition(
        estado=target,
        fecha_inicio=inicio,
        fecha_fin_prevista=fin,
        fecha_cambio_estado=today,
    )
