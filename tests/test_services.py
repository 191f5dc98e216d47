from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from app.core.errors import InvalidTransition, NotFoundError, ValidationError
from app.core.extensions import db
from app.core.models import (
    Alerta,
    CasoIndice,
    EstadoDerivacion,
    EstadoTpt,
    EstablecimientoSalud,
    TptIndicacion,
    Severidad,
    TipoAlerta,
)
from app.seguimiento import services
from app.seguimiento.validation import CODIGO_CASO_RE


def _establecimiento(codigo="EESS-0001"):
    return EstablecimientoSalud.query.filter_by(codigo=codigo).one()


def _caso_payload(**overrides):
    payload = {
        "paciente_nombres": "Jorge",
        "paciente_apellidos": "Mamani",
        "tipo_tb": "Extrapulmonar",
        "fecha_diagnostico": "2024-03-01",
        "establecimiento_id": str(_establecimiento().id),
    }
    payload.update(overrides)
    return payload


def test_create_case_generates_code(app, medico, today):
    caso = services.create_caso_indice(_caso_payload(), medico.id, today)
    assert CODIGO_CASO_RE.match(caso.codigo_caso)
    assert caso.activo is True
    assert caso.usuario_registro_id == medico.id


def test_create_case_rejects_duplicate_and_future_diagnosis(app, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_caso_indice(_caso_payload(codigo_caso="CASO-1A2B3C4D"), None, today)
    assert excinfo.value.rule == "unique"

    with pytest.raises(ValidationError) as excinfo:
        services.create_caso_indice(
            _caso_payload(fecha_diagnostico=(today + timedelta(days=1)).isoformat()),
            None,
            today,
        )
    assert excinfo.value.field == "fecha_diagnostico"


def test_create_case_rejects_unknown_tb_type(app, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_caso_indice(_caso_payload(tipo_tb="Laringea"), None, today)
    assert excinfo.value.rule == "enum"


def test_deactivated_case_is_hidden(app, caso):
    services.desactivar_caso_indice(caso.id)
    with pytest.raises(NotFoundError):
        services.caso_by_id(caso.id)
    assert services.caso_by_id(caso.id, include_inactive=True).activo is False
    assert CasoIndice.query.count() == 1


def test_control_numbers_are_assigned_in_sequence(app, contacto, today, caplog):
    payload = {"tipo_control": "Clínico", "fecha_programada": (today + timedelta(days=30)).isoformat()}
    first = services.create_control(contacto.id, payload, None, today)
    second = services.create_control(contacto.id, payload, None, today)
    assert (first.numero_control, second.numero_control) == (1, 2)

    with caplog.at_level(logging.WARNING, logger="app.seguimiento.services"):
        duplicate = services.create_control(contacto.id, {**payload, "numero_control": "2"}, None, today)
    assert duplicate.numero_control == 2
    assert "ya tiene un control" in caplog.text


def test_control_lifecycle_through_services(app, contacto, make_control, today):
    control = make_control(days_ago=3)
    services.marcar_control_no_realizado(control.id, {"observaciones": "No acudio"}, today)
    services.reprogramar_control(control.id, {"fecha_programada": (today + timedelta(days=7)).isoformat()}, today)
    assert control.fecha_programada == today + timedelta(days=7)

    done = services.marcar_control_realizado(control.id, {"resultado": "Asintomatico"}, None, today)
    assert done.fecha_realizada == today
    with pytest.raises(InvalidTransition):
        services.cancelar_control(control.id, {}, today)


def test_indication_with_start_date_is_in_course(app, contacto, esquema_3hp, today):
    inicio = today - timedelta(days=5)
    indicacion = services.create_indicacion(
        contacto.id,
        {
            "esquema_tpt_id": esquema_3hp.id,
            "fecha_indicacion": (today - timedelta(days=10)).isoformat(),
            "fecha_inicio": inicio.isoformat(),
        },
        None,
        today,
    )
    assert indicacion.estado == EstadoTpt.EN_CURSO
    assert indicacion.fecha_inicio == inicio
    assert indicacion.fecha_fin_prevista > today

    with pytest.raises(InvalidTransition) as excinfo:
        services.cambiar_estado_tpt(indicacion.id, "Completado", today)
    assert excinfo.value.rule == "course_not_finished"
    assert indicacion.estado == EstadoTpt.EN_CURSO


def test_start_then_abandon_raises_critical_alert(app, caso, contacto, esquema_3hp, today):
    indicacion = services.create_indicacion(contacto.id, {"esquema_tpt_id": esquema_3hp.id}, None, today)
    services.iniciar_tpt(indicacion.id, today.isoformat(), today)
    services.cambiar_estado_tpt(indicacion.id, EstadoTpt.ABANDONADO, today)
    assert indicacion.fecha_cambio_estado == today

    services.evaluate_case_family(caso.id, today)

    (alerta,) = Alerta.query.filter_by(tipo_alerta=TipoAlerta.TPT_ABANDONADA).all()
    assert alerta.severidad == Severidad.CRITICA
    assert alerta.tpt_indicacion_id == indicacion.id


def test_inactive_scheme_cannot_be_indicated(app, contacto, esquema_3hp, today):
    services.update_esquema(esquema_3hp.id, {"activo": "false"})
    with pytest.raises(ValidationError) as excinfo:
        services.create_indicacion(contacto.id, {"esquema_tpt_id": esquema_3hp.id}, None, today)
    assert excinfo.value.rule == "inactive"


def test_deactivated_contact_is_ignored_by_evaluation(app, caso, contacto, make_control, today):
    make_control(days_ago=20)
    services.desactivar_contacto(contacto.id)

    result = services.evaluate_case_family(caso.id, today)

    assert result.created == 0
    assert Alerta.query.count() == 0


def test_visit_with_both_owners_is_rejected(app, caso, contacto, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_visita(
            {
                "contacto_id": contacto.id,
                "caso_indice_id": caso.id,
                "tipo_visita": "Seguimiento",
                "fecha_visita": today.isoformat(),
            },
            None,
            today,
        )
    assert excinfo.value.rule == "exactly_one_owner"


def test_missed_visit_alert_is_linked_to_the_visit(app, caso, contacto, today):
    visita = services.create_visita(
        {
            "contacto_id": contacto.id,
            "tipo_visita": "Primer contacto",
            "fecha_visita": today.isoformat(),
            "resultado_visita": "No realizada",
            "motivo_no_realizada": "Domicilio cerrado",
        },
        None,
        today,
    )
    services.evaluate_case_family(caso.id, today)

    (alerta,) = Alerta.query.filter_by(tipo_alerta=TipoAlerta.VISITA_NO_REALIZADA).all()
    assert alerta.visita_domiciliaria_id == visita.id
    assert alerta.severidad == Severidad.MEDIA


def test_transfer_moves_contact_to_destination(app, contacto, medico, today):
    destino = _establecimiento("EESS-0002")
    derivacion = services.create_derivacion(
        contacto.id,
        {"establecimiento_destino_id": destino.id, "tipo": "Transferencia", "motivo": "Cambio de domicilio"},
        medico.id,
        today,
    )
    with pytest.raises(InvalidTransition):
        services.transition_derivacion(derivacion.id, EstadoDerivacion.COMPLETADA, medico.id, today)

    services.transition_derivacion(derivacion.id, "Aceptada", medico.id, today)
    assert derivacion.fecha_aceptacion == today
    services.transition_derivacion(derivacion.id, "Completada", medico.id, today)
    assert contacto.establecimiento_id == destino.id


def test_referral_to_same_facility_is_rejected(app, contacto, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_derivacion(
            contacto.id,
            {"establecimiento_destino_id": contacto.establecimiento_id, "tipo": "Derivación", "motivo": "x"},
            None,
            today,
        )
    assert excinfo.value.rule == "distinct"


def test_manual_alert_defaults_to_other(app, contacto, today):
    alerta = services.create_alerta_manual({"contacto_id": contacto.id, "mensaje": "Contacto sin telefono"}, today)
    assert alerta.tipo_alerta == TipoAlerta.OTRO
    assert alerta.severidad == Severidad.MEDIA
    assert alerta.referencia is None

    with pytest.raises(ValidationError):
        services.create_alerta_manual({"mensaje": "sin titular"}, today)


def test_compliance_pass_isolates_failing_family(app, caso, make_control, today, monkeypatch, caplog):
    make_control(days_ago=20)
    broken = services.create_caso_indice(_caso_payload(), None, today)
    original = services.evaluate

    def flaky_evaluate(day, graph):
        if graph.caso_indice_id == broken.id:
            raise RuntimeError("grafo inconsistente")
        return original(day, graph)

    monkeypatch.setattr(services, "evaluate", flaky_evaluate)

    with caplog.at_level(logging.ERROR, logger="app.seguimiento.services"):
        result = services.run_compliance_pass(today)

    assert result.families == 2
    assert result.created == 1
    assert result.failed == [
        {"caso_indice_id": broken.id, "error": "RuntimeError", "message": "grafo inconsistente"}
    ]
    assert not result.ok
    assert Alerta.query.count() == 1
    assert "Fallo la evaluacion" in caplog.text


def test_compliance_pass_is_idempotent_and_filterable(app, caso, make_control, today):
    make_control(days_ago=20)
    first = services.run_compliance_pass(today, caso_ids=[caso.id])
    second = services.run_compliance_pass(today)

    assert (first.families, first.created) == (1, 1)
    assert (second.created, second.escalated, second.unchanged) == (0, 0, 1)
    assert second.as_dict()["fecha"] == today.isoformat()


def test_panel_counts(app, make_control, today):
    make_control(days_ago=2)
    data = services.panel_data(today)
    assert data["casos_activos"] == 1
    assert data["contactos_activos"] == 2
    assert data["controles_vencidos"] == 1
    assert data["alertas_abiertas"] == 0
    assert data["alertas_por_severidad"]["Alta"] == 0
    assert data["casos_por_tipo"]["Pulmonar"] == 1


def test_non_string_payload_values_are_coerced_not_crashing(app, make_control, esquema_3hp, contacto, today):
    control = make_control(days_ago=1)
    done = services.marcar_control_realizado(control.id, {"resultado": 5, "observaciones": 12.5}, None, today)
    assert done.resultado == "5"
    assert done.observaciones == "12.5"

    indicacion = services.create_indicacion(
        contacto.id,
        {"esquema_tpt_id": esquema_3hp.id, "fecha_inicio": today.isoformat()},
        None,
        today,
    )
    services.cambiar_estado_tpt(indicacion.id, "Abandonado", today, observaciones=404)
    assert indicacion.observaciones == "404"


def test_non_string_date_in_payload_is_a_validation_error(app, make_control, today):
    control = make_control(days_ago=1)
    with pytest.raises(ValidationError) as excinfo:
        services.marcar_control_realizado(control.id, {"fecha_realizada": 20240101}, None, today)
    assert excinfo.value.field == "fecha_realizada"
    assert excinfo.value.rule == "date_format"


def test_planned_end_before_indication_date_is_rejected(app, contacto, esquema_3hp, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_indicacion(
            contacto.id,
            {
                "esquema_tpt_id": esquema_3hp.id,
                "fecha_indicacion": (today - timedelta(days=5)).isoformat(),
                "fecha_fin_prevista": (today - timedelta(days=40)).isoformat(),
            },
            None,
            today,
        )
    assert excinfo.value.field == "fecha_fin_prevista"
    assert excinfo.value.rule == "date_order"
    assert TptIndicacion.query.count() == 0


def test_rejected_case_update_leaves_row_untouched(app, caso, today):
    original_nombres = caso.paciente_nombres
    original_diagnostico = caso.fecha_diagnostico
    with pytest.raises(ValidationError):
        services.update_caso_indice(
            caso.id,
            {"paciente_nombres": "Otro", "fecha_diagnostico": (today + timedelta(days=3)).isoformat()},
            today,
        )

    assert not db.session.dirty
    assert caso.paciente_nombres == original_nombres
    assert caso.fecha_diagnostico == original_diagnostico


def test_rejected_tpt_transition_leaves_row_untouched(app, contacto, esquema_3hp, today):
    legacy = TptIndicacion(
        contacto_id=contacto.id,
        esquema_tpt_id=esquema_3hp.id,
        fecha_indicacion=today - timedelta(days=10),
        fecha_fin_prevista=today - timedelta(days=40),
        estado=EstadoTpt.EN_CURSO,
        fecha_cambio_estado=today - timedelta(days=10),
        establecimiento_id=contacto.establecimiento_id,
    )
    db.session.add(legacy)
    db.session.commit()

    with pytest.raises(ValidationError) as excinfo:
        services.cambiar_estado_tpt(legacy.id, "Abandonado", today)
    assert excinfo.value.rule == "date_order"

    assert not db.session.dirty
    assert legacy.estado == EstadoTpt.EN_CURSO
    assert legacy.fecha_cambio_estado == today - timedelta(days=10)
