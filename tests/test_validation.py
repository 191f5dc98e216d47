from __future__ import annotations

from datetime import date
from types import SimpleNamespace

import pytest

from app.core.errors import ValidationError
from app.core.models import EstadoAlerta, EstadoControl, EstadoTpt, ResultadoVisita, TipoAlerta, TipoTb, TipoVisita
from app.core.utils import clean_text, parse_iso_date, parse_optional_iso_date
from app.seguimiento.validation import (
    validate_alerta,
    validate_caso_indice,
    validate_codigo_caso,
    validate_control,
    validate_indicacion,
    validate_visita,
    validate_visita_owner,
)

TODAY = date(2024, 6, 30)


def _caso(**overrides):
    data = dict(
        codigo_caso="CASO-0A1B2C3D",
        paciente_nombres="Rosa",
        paciente_apellidos="Quispe",
        tipo_tb=TipoTb.PULMONAR,
        fecha_diagnostico=date(2024, 6, 1),
        fecha_nacimiento=date(1980, 5, 2),
        establecimiento_id=1,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def _visita(**overrides):
    data = dict(
        contacto_id=5,
        caso_indice_id=None,
        tipo_visita=TipoVisita.SEGUIMIENTO,
        fecha_visita=date(2024, 6, 20),
        resultado_visita=ResultadoVisita.REALIZADA,
        motivo_no_realizada=None,
        establecimiento_id=1,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


@pytest.mark.parametrize("codigo", ["CASO-1234ABCD", "CASO-abcdef01"])
def test_case_code_accepts_hex_suffix(codigo):
    validate_codigo_caso(codigo)


@pytest.mark.parametrize("codigo", ["CASO-123", "CASO-1234ABCG", "caso-1234ABCD", "", None])
def test_case_code_rejects_malformed(codigo):
    with pytest.raises(ValidationError):
        validate_codigo_caso(codigo)


def test_case_diagnosis_cannot_be_in_the_future():
    with pytest.raises(ValidationError) as excinfo:
        validate_caso_indice(_caso(fecha_diagnostico=date(2024, 7, 1)), TODAY)
    assert excinfo.value.field == "fecha_diagnostico"
    assert excinfo.value.rule == "not_future"


def test_case_birth_after_diagnosis_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        validate_caso_indice(_caso(fecha_nacimiento=date(2024, 6, 2)), TODAY)
    assert excinfo.value.rule == "date_order"


def test_case_valid_record_passes():
    validate_caso_indice(_caso(), TODAY)


def test_realized_control_requires_date():
    control = SimpleNamespace(
        contacto_id=1,
        numero_control=1,
        tipo_control="Clínico",
        fecha_programada=date(2024, 6, 1),
        fecha_realizada=None,
        estado=EstadoControl.REALIZADO,
        establecimiento_id=1,
    )
    with pytest.raises(ValidationError) as excinfo:
        validate_control(control, TODAY)
    assert excinfo.value.rule == "required_when_realizado"


@pytest.mark.parametrize(
    "contacto_id, caso_indice_id",
    [(5, 3), (None, None)],
)
def test_visit_needs_exactly_one_owner(contacto_id, caso_indice_id):
    with pytest.raises(ValidationError) as excinfo:
        validate_visita(_visita(contacto_id=contacto_id, caso_indice_id=caso_indice_id), TODAY)
    assert excinfo.value.rule == "exactly_one_owner"


def test_visit_owned_by_case_only_is_valid():
    validate_visita(_visita(contacto_id=None, caso_indice_id=3), TODAY)


def test_missed_visit_requires_reason_and_reason_requires_missed():
    with pytest.raises(ValidationError) as excinfo:
        validate_visita(_visita(resultado_visita=ResultadoVisita.NO_REALIZADA), TODAY)
    assert excinfo.value.rule == "required_when_no_realizada"

    with pytest.raises(ValidationError) as excinfo:
        validate_visita(_visita(motivo_no_realizada="Ausente"), TODAY)
    assert excinfo.value.rule == "only_when_no_realizada"


def test_resolved_alert_requires_date_and_user():
    alerta = SimpleNamespace(
        contacto_id=1,
        caso_indice_id=None,
        tipo_alerta=TipoAlerta.OTRO,
        mensaje="Revisar",
        fecha_alerta=TODAY,
        estado=EstadoAlerta.RESUELTA,
        fecha_resolucion=None,
        usuario_resuelve_id=None,
    )
    with pytest.raises(ValidationError) as excinfo:
        validate_alerta(alerta)
    assert excinfo.value.field == "fecha_resolucion"

    alerta.fecha_resolucion = TODAY
    with pytest.raises(ValidationError) as excinfo:
        validate_alerta(alerta)
    assert excinfo.value.field == "usuario_resuelve_id"


def test_alert_without_owner_is_rejected():
    alerta = SimpleNamespace(
        contacto_id=None,
        caso_indice_id=None,
        tipo_alerta=TipoAlerta.OTRO,
        mensaje="x",
        fecha_alerta=TODAY,
        estado=EstadoAlerta.ACTIVA,
    )
    with pytest.raises(ValidationError) as excinfo:
        validate_alerta(alerta)
    assert excinfo.value.rule == "at_least_one_owner"


def test_validation_errors_are_value_errors():
    with pytest.raises(ValueError):
        parse_iso_date("30/06/2024", "fecha_visita")


@pytest.mark.parametrize("value", [20240630, 3.5, ["2024-06-30"], {"fecha": "2024-06-30"}, True])
def test_non_string_dates_are_rejected_as_format_errors(value):
    with pytest.raises(ValidationError) as excinfo:
        parse_iso_date(value, "fecha_visita")
    assert excinfo.value.rule == "date_format"
    with pytest.raises(ValidationError):
        parse_optional_iso_date(value, "fecha_visita")


def test_clean_text_accepts_any_json_scalar():
    assert clean_text(None) == ""
    assert clean_text("  Sin novedad ") == "Sin novedad"
    assert clean_text(5) == "5"


def _indicacion(**overrides):
    data = dict(
        contacto_id=1,
        esquema_tpt_id=1,
        fecha_indicacion=date(2024, 6, 25),
        fecha_inicio=None,
        fecha_fin_prevista=None,
        estado=EstadoTpt.INDICADO,
        establecimiento_id=1,
    )
    data.update(overrides)
    return SimpleNamespace(**data)


def test_planned_end_before_indication_is_rejected_without_start():
    with pytest.raises(ValidationError) as excinfo:
        validate_indicacion(_indicacion(fecha_fin_prevista=date(2024, 5, 21)), TODAY)
    assert excinfo.value.field == "fecha_fin_prevista"
    assert excinfo.value.rule == "date_order"


def test_planned_end_on_indication_day_is_accepted():
    validate_indicacion(_indicacion(fecha_fin_prevista=date(2024, 6, 25)), TODAY)


def test_start_after_planned_end_is_still_rejected():
    indicacion = _indicacion(fecha_inicio=date(2024, 6, 28), fecha_fin_prevista=date(2024, 6, 26))
    with pytest.raises(ValidationError) as excinfo:
        validate_indicacion(indicacion, TODAY)
    assert excinfo.value.field == "fecha_fin_prevista"


def test_visit_owner_key_names_the_single_owner():
    assert validate_visita_owner(_visita()) == ("contacto", 5)
    assert validate_visita_owner(_visita(contacto_id=None, caso_indice_id=3)) == ("caso_indice", 3)
