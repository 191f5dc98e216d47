from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import IntegrityError

from app.core.errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import ESTADOS_ALERTA_ABIERTA, Alerta, EstadoAlerta
from app.core.utils import clean_text
from app.seguimiento.compliance import Finding
from app.seguimiento.validation import validate_alerta

logger = logging.getLogger(__name__)

BACK_REFERENCE_COLUMNS = {
    "control_contacto": "control_contacto_id",
    "tpt_indicacion": "tpt_indicacion_id",
    "visita_domiciliaria": "visita_domiciliaria_id",
}


@dataclass
class ReconcileResult:
    created: int = 0
    escalated: int = 0
    unchanged: int = 0


def open_alert_for(referencia: str, tipo_alerta) -> Alerta | None:
    return (
        Alerta.query.filter_by(referencia=referencia, tipo_alerta=tipo_alerta)
        .filter(Alerta.estado.in_(ESTADOS_ALERTA_ABIERTA))
        .first()
    )


def _alert_from_finding(finding: Finding, today: date) -> Alerta:
    alerta = Alerta(
        tipo_alerta=finding.kind,
        referencia=str(finding.entity_ref),
        contacto_id=finding.contacto_id,
        caso_indice_id=finding.caso_indice_id,
        severidad=finding.severity,
        mensaje=finding.mensaje or finding.kind.value,
        fecha_alerta=today,
        estado=EstadoAlerta.ACTIVA,
    )
    column = BACK_REFERENCE_COLUMNS.get(finding.entity_ref.tabla)
    if column:
        setattr(alerta, column, finding.entity_ref.id)
    validate_alerta(alerta)
    return alerta


def _insert_alert(alerta: Alerta) -> None:
    try:
        with db.session.begin_nested():
            db.session.add(alerta)
    except IntegrityError as exc:
        raise ConflictError(
            f"Ya existe una alerta abierta para {alerta.referencia} ({alerta.tipo_alerta.value})",
            field="referencia",
            rule="unique_open_alert",
        ) from exc


def _escalate(alerta: Alerta, finding: Finding) -> bool:
    if finding.severity.rank <= alerta.severidad.rank:
        return False
    logger.info(
        "Alerta %s escalada %s -> %s",
        alerta.id,
        alerta.severidad.value,
        finding.severity.value,
    )
    alerta.severidad = finding.severity
    if finding.mensaje:
        alerta.mensaje = finding.mensaje
    db.session.add(alerta)
    return True


def reconcile(findings: list[Finding], today: date) -> ReconcileResult:
    """Apply ``findings`` to the Alerta table without committing.

    Open alerts whose finding disappeared are left untouched: closing an
    alert is always an explicit user action.
    """
    result = ReconcileResult()
    for finding in findings:
        referencia, tipo = finding.key
        existing = open_alert_for(referencia, tipo)
        if existing is None:
            alerta = _alert_from_finding(finding, today)
            try:
                _insert_alert(alerta)
            except ConflictError:
                logger.info("Conflicto creando alerta %s/%s, se actualiza la existente", referencia, tipo.value)
                existing = open_alert_for(referencia, tipo)
                if existing is None:
                    raise
            else:
                result.created += 1
                continue
        if _escalate(existing, finding):
            result.escalated += 1
        else:
            result.unchanged += 1
    return result


def alerta_by_id(alerta_id: int) -> Alerta:
    alerta = db.session.get(Alerta, alerta_id)
    if not alerta:
        raise NotFoundError("Alerta no encontrada", field="alerta_id", rule="not_found")
    return alerta


def _require_open(alerta: Alerta, target: EstadoAlerta) -> None:
    if not alerta.abierta:
        raise InvalidTransition(
            f"Transicion invalida: {alerta.estado.value} -> {target.value}",
            field="estado",
            rule="alert_not_open",
        )


def resolver_alerta(alerta_id: int, observaciones: str, usuario_id: int | None, today: date) -> Alerta:
    alerta = alerta_by_id(alerta_id)
    _require_open(alerta, EstadoAlerta.RESUELTA)
    if usuario_id is None:
        raise ValidationError(
            "Se requiere el usuario que resuelve la alerta",
            field="usuario_resuelve_id",
            rule="required",
        )
    alerta.estado = EstadoAlerta.RESUELTA
    alerta.fecha_resolucion = today
    alerta.usuario_resuelve_id = usuario_id
    alerta.observaciones = clean_text(observaciones)
    validate_alerta(alerta)
    db.session.add(alerta)
    db.session.commit()
    return alerta


def marcar_en_revision(alerta_id: int, observaciones: str = "") -> Alerta:
    alerta = alerta_by_id(alerta_id)
    if alerta.estado != EstadoAlerta.ACTIVA:
        raise InvalidTransition(
            f"Transicion invalida: {alerta.estado.value} -> {EstadoAlerta.EN_REVISION.value}",
            field="estado",
            rule="not_allowed",
        )
    alerta.estado = EstadoAlerta.EN_REVISION
    if clean_text(observaciones):
        alerta.observaciones = clean_text(observaciones)
    db.session.add(alerta)
    db.session.commit()
    return alerta


def descartar_alerta(alerta_id: int, observaciones: str, usuario_id: int | None, today: date) -> Alerta:
    alerta = alerta_by_id(alerta_id)
    _require_open(alerta, EstadoAlerta.DESCARTADA)
    if not clean_text(observaciones):
        raise ValidationError(
            "Indica el motivo para descartar la alerta",
            field="observaciones",
            rule="required",
        )
    alerta.estado = EstadoAlerta.DESCARTADA
    alerta.fecha_resolucion = today
    alerta.usuario_resuelve_id = usuario_id
    alerta.observaciones = clean_text(observaciones)
    db.session.add(alerta)
    db.session.commit()
    return alerta
