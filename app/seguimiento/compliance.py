"""Compliance evaluation over one case family.

``evaluate(today, graph)`` is a pure function: it reads a snapshot of a
CasoIndice, its Contactos and their controls, TPT indications and home
visits, and returns the compliance gaps present on ``today``. It performs no
writes; :mod:`app.seguimiento.reconciler` turns findings into ``Alerta`` rows.

Rules
-----
Control no realizado  Programado and past its date   Media, Alta after 15 days
TPT no iniciada       Indicado for more than 30 days Alta
TPT abandonada        estado Abandonado              Crítica
Visita no realizada   No realizada, nothing after    Media
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from app.core.models import EstadoTpt, ResultadoVisita, Severidad, TipoAlerta
from app.seguimiento.controles import dias_vencido, is_due
from app.seguimiento.validation import validate_visita_owner

DIAS_CONTROL_SEVERIDAD_ALTA = 15
DIAS_TPT_NO_INICIADA = 30

_KIND_ORDER = {kind: index for index, kind in enumerate(TipoAlerta)}


@dataclass(frozen=True, order=True)
class EntityRef:
    tabla: str
    id: int

    def __str__(self) -> str:
        return f"{self.tabla}:{self.id}"


@dataclass(frozen=True)
class Finding:
    entity_ref: EntityRef
    kind: TipoAlerta
    severity: Severidad
    detected_at: date
    contacto_id: int | None = None
    caso_indice_id: int | None = None
    mensaje: str = ""

    @property
    def key(self) -> tuple[str, TipoAlerta]:
        return str(self.entity_ref), self.kind


@dataclass
class CaseGraph:
    caso: object | None = None
    contactos: list = field(default_factory=list)
    controles: list = field(default_factory=list)
    indicaciones: list = field(default_factory=list)
    visitas: list = field(default_factory=list)

    @property
    def caso_indice_id(self) -> int | None:
        return getattr(self.caso, "id", None)


def _control_findings(today: date, graph: CaseGraph) -> list[Finding]:
    findings = []
    for control in graph.controles:
        if not is_due(control, today):
            continue
        dias = dias_vencido(control, today)
        severity = Severidad.ALTA if dias > DIAS_CONTROL_SEVERIDAD_ALTA else Severidad.MEDIA
        findings.append(
            Finding(
                entity_ref=EntityRef("control_contacto", control.id),
                kind=TipoAlerta.CONTROL_NO_REALIZADO,
                severity=severity,
                detected_at=today,
                contacto_id=control.contacto_id,
                caso_indice_id=graph.caso_indice_id,
                mensaje=(
                    f"Control N° {control.numero_control} programado para "
                    f"{control.fecha_programada.isoformat()} sin realizar ({dias} dias)"
                ),
            )
        )
    return findings


def _tpt_findings(today: date, graph: CaseGraph) -> list[Finding]:
    findings = []
    for indicacion in graph.indicaciones:
        ref = EntityRef("tpt_indicacion", indicacion.id)
        if indicacion.estado == EstadoTpt.INDICADO:
            dias = (today - indicacion.fecha_indicacion).days
            if dias > DIAS_TPT_NO_INICIADA:
                findings.append(
                    Finding(
                        entity_ref=ref,
                        kind=TipoAlerta.TPT_NO_INICIADA,
                        severity=Severidad.ALTA,
                        detected_at=today,
                        contacto_id=indicacion.contacto_id,
                        caso_indice_id=graph.caso_indice_id,
                        mensaje=(
                            f"TPT indicada el {indicacion.fecha_indicacion.isoformat()} "
                            f"sin iniciar ({dias} dias)"
                        ),
                    )
                )
        elif indicacion.estado == EstadoTpt.ABANDONADO:
            desde = getattr(indicacion, "fecha_cambio_estado", None)
            findings.append(
                Finding(
                    entity_ref=ref,
                    kind=TipoAlerta.TPT_ABANDONADA,
                    severity=Severidad.CRITICA,
                    detected_at=today,
                    contacto_id=indicacion.contacto_id,
                    caso_indice_id=graph.caso_indice_id,
                    mensaje=(
                        f"TPT abandonada desde {desde.isoformat()}" if desde else "TPT abandonada"
                    ),
                )
            )
    return findings


def _visita_findings(today: date, graph: CaseGraph) -> list[Finding]:
    by_owner: dict[tuple[str, int], list] = {}
    for visita in graph.visitas:
        by_owner.setdefault(validate_visita_owner(visita), []).append(visita)

    findings = []
    for (owner, owner_id), visitas in by_owner.items():
        visitas = sorted(visitas, key=lambda v: (v.fecha_visita, v.id))
        for index, visita in enumerate(visitas):
            if visita.resultado_visita != ResultadoVisita.NO_REALIZADA:
                continue
            later = visitas[index + 1 :]
            if any(v.resultado_visita != ResultadoVisita.NO_REALIZADA for v in later):
                continue
            findings.append(
                Finding(
                    entity_ref=EntityRef("visita_domiciliaria", visita.id),
                    kind=TipoAlerta.VISITA_NO_REALIZADA,
                    severity=Severidad.MEDIA,
                    detected_at=today,
                    contacto_id=owner_id if owner == "contacto" else None,
                    caso_indice_id=graph.caso_indice_id or (owner_id if owner == "caso_indice" else None),
                    mensaje=(
                        f"Visita del {visita.fecha_visita.isoformat()} no realizada: "
                        f"{(visita.motivo_no_realizada or '').strip() or 'sin motivo'}"
                    ),
                )
            )
    return findings


def evaluate(today: date, graph: CaseGraph) -> list[Finding]:
    findings = [
        *_control_findings(today, graph),
        *_tpt_findings(today, graph),
        *_visita_findings(today, graph),
    ]
    return sorted(findings, key=lambda f: (_KIND_ORDER[f.kind], f.entity_ref))
