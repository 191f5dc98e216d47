from __future__ import annotations

from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from app.core.errors import InvalidTransition, ValidationError
from app.core.models import EstadoControl, EstadoTpt, ResultadoVisita, Severidad, TipoAlerta
from app.seguimiento import controles
from app.seguimiento.compliance import CaseGraph, EntityRef, evaluate
from app.seguimiento.validation import validate_visita_owner

TODAY = date(2024, 6, 30)


def _control(id_, days_ago, estado=EstadoControl.PROGRAMADO, numero=1, contacto_id=10):
    return SimpleNamespace(
        id=id_,
        contacto_id=contacto_id,
        numero_control=numero,
        fecha_programada=TODAY - timedelta(days=days_ago),
        estado=estado,
    )


def _indicacion(id_, estado, days_ago, contacto_id=10):
    return SimpleNamespace(
        id=id_,
        contacto_id=contacto_id,
        estado=estado,
        fecha_indicacion=TODAY - timedelta(days=days_ago),
        fecha_cambio_estado=TODAY - timedelta(days=2),
    )


def _visita(id_, days_ago, resultado, contacto_id=10, caso_indice_id=None):
    return SimpleNamespace(
        id=id_,
        contacto_id=contacto_id,
        caso_indice_id=caso_indice_id,
        fecha_visita=TODAY - timedelta(days=days_ago),
        resultado_visita=resultado,
        motivo_no_realizada="Domicilio cerrado" if resultado == ResultadoVisita.NO_REALIZADA else None,
    )


def _graph(**kwargs):
    return CaseGraph(caso=SimpleNamespace(id=1), **kwargs)


def test_overdue_control_after_twenty_days_is_high():
    findings = evaluate(TODAY, _graph(controles=[_control(5, 20)]))
    assert len(findings) == 1
    finding = findings[0]
    assert finding.kind == TipoAlerta.CONTROL_NO_REALIZADO
    assert finding.severity == Severidad.ALTA
    assert finding.entity_ref == EntityRef("control_contacto", 5)
    assert finding.contacto_id == 10
    assert finding.caso_indice_id == 1


@pytest.mark.parametrize("days_ago, severity", [(1, Severidad.MEDIA), (15, Severidad.MEDIA), (16, Severidad.ALTA)])
def test_overdue_control_severity_boundary(days_ago, severity):
    (finding,) = evaluate(TODAY, _graph(controles=[_control(1, days_ago)]))
    assert finding.severity == severity


def test_control_due_today_or_done_is_not_a_finding():
    graph = _graph(
        controles=[
            _control(1, 0),
            _control(2, 30, estado=EstadoControl.REALIZADO),
            _control(3, 30, estado=EstadoControl.CANCELADO),
            _control(4, 30, estado=EstadoControl.NO_REALIZADO),
        ]
    )
    assert evaluate(TODAY, graph) == []


def test_each_overdue_control_gets_its_own_finding():
    graph = _graph(controles=[_control(7, 40, numero=2), _control(3, 3, numero=1)])
    findings = evaluate(TODAY, graph)
    assert [f.entity_ref.id for f in findings] == [3, 7]
    assert [f.severity for f in findings] == [Severidad.MEDIA, Severidad.ALTA]


def test_tpt_indicated_for_forty_five_days_is_not_started():
    (finding,) = evaluate(TODAY, _graph(indicaciones=[_indicacion(9, EstadoTpt.INDICADO, 45)]))
    assert finding.kind == TipoAlerta.TPT_NO_INICIADA
    assert finding.severity == Severidad.ALTA
    assert finding.key == ("tpt_indicacion:9", TipoAlerta.TPT_NO_INICIADA)


def test_tpt_indicated_within_thirty_days_is_fine():
    assert evaluate(TODAY, _graph(indicaciones=[_indicacion(9, EstadoTpt.INDICADO, 30)])) == []


def test_abandoned_tpt_is_critical():
    graph = _graph(
        indicaciones=[
            _indicacion(1, EstadoTpt.ABANDONADO, 90),
            _indicacion(2, EstadoTpt.EN_CURSO, 90),
            _indicacion(3, EstadoTpt.COMPLETADO, 200),
        ]
    )
    (finding,) = evaluate(TODAY, graph)
    assert finding.kind == TipoAlerta.TPT_ABANDONADA
    assert finding.severity == Severidad.CRITICA


def test_missed_visit_without_later_attempt():
    (finding,) = evaluate(TODAY, _graph(visitas=[_visita(4, 3, ResultadoVisita.NO_REALIZADA)]))
    assert finding.kind == TipoAlerta.VISITA_NO_REALIZADA
    assert finding.severity == Severidad.MEDIA
    assert "Domicilio cerrado" in finding.mensaje


def test_missed_visit_followed_by_completed_visit_is_cleared():
    graph = _graph(
        visitas=[
            _visita(4, 10, ResultadoVisita.NO_REALIZADA),
            _visita(5, 2, ResultadoVisita.REALIZADA),
        ]
    )
    assert evaluate(TODAY, graph) == []


def test_visits_are_grouped_by_owner():
    graph = _graph(
        visitas=[
            _visita(4, 10, ResultadoVisita.NO_REALIZADA, contacto_id=10),
            _visita(5, 2, ResultadoVisita.REALIZADA, contacto_id=11),
            _visita(6, 5, ResultadoVisita.NO_REALIZADA, contacto_id=None, caso_indice_id=1),
        ]
    )
    refs = [f.entity_ref.id for f in evaluate(TODAY, graph)]
    assert refs == [4, 6]


def test_visit_with_two_owners_is_rejected():
    graph = _graph(visitas=[_visita(4, 1, ResultadoVisita.NO_REALIZADA, contacto_id=10, caso_indice_id=1)])
    with pytest.raises(ValidationError) as excinfo:
        evaluate(TODAY, graph)
    assert excinfo.value.rule == "exactly_one_owner"


def test_orphan_visit_fails_the_same_way_as_the_write_path():
    visita = _visita(4, 1, ResultadoVisita.NO_REALIZADA, contacto_id=None, caso_indice_id=None)
    with pytest.raises(ValidationError) as from_evaluator:
        evaluate(TODAY, _graph(visitas=[visita]))
    with pytest.raises(ValidationError) as from_writer:
        validate_visita_owner(visita)
    assert from_evaluator.value.to_dict() == from_writer.value.to_dict()


def test_findings_are_deterministically_ordered():
    graph = _graph(
        visitas=[_visita(4, 3, ResultadoVisita.NO_REALIZADA)],
        indicaciones=[_indicacion(2, EstadoTpt.ABANDONADO, 90), _indicacion(1, EstadoTpt.INDICADO, 60)],
        controles=[_control(8, 20), _control(6, 2)],
    )
    kinds = [f.kind for f in evaluate(TODAY, graph)]
    assert kinds == [
        TipoAlerta.CONTROL_NO_REALIZADO,
        TipoAlerta.CONTROL_NO_REALIZADO,
        TipoAlerta.TPT_NO_INICIADA,
        TipoAlerta.TPT_ABANDONADA,
        TipoAlerta.VISITA_NO_REALIZADA,
    ]
    assert evaluate(TODAY, graph) == evaluate(TODAY, graph)


def test_next_control_number_is_max_plus_one():
    assert controles.next_numero_control([]) == 1
    assert controles.next_numero_control([1, 4, 2]) == 5


def test_mark_done_defaults_to_today_and_rejects_future():
    control = _control(1, 3)
    update = controles.marcar_realizado(control, TODAY, resultado="Sin sintomas")
    assert update.estado == EstadoControl.REALIZADO
    assert update.fecha_realizada == TODAY
    with pytest.raises(ValidationError):
        controles.marcar_realizado(control, TODAY, fecha_realizada=TODAY + timedelta(days=1))


def test_done_control_is_terminal():
    control = _control(1, 3, estado=EstadoControl.REALIZADO)
    with pytest.raises(InvalidTransition):
        controles.cancelar(control)
    with pytest.raises(InvalidTransition):
        controles.marcar_no_realizado(control)


def test_reschedule_only_from_missed_and_not_in_past():
    missed = _control(1, 3, estado=EstadoControl.NO_REALIZADO)
    update = controles.reprogramar(missed, TODAY + timedelta(days=7), TODAY)
    assert update.estado == EstadoControl.PROGRAMADO
    assert update.fecha_programada == TODAY + timedelta(days=7)
    with pytest.raises(ValidationError):
        controles.reprogramar(missed, TODAY - timedelta(days=1), TODAY)
    with pytest.raises(InvalidTransition):
        controles.reprogramar(_control(2, 3), TODAY, TODAY)
