from __future__ import annotations

from datetime import timedelta

import pytest
from werkzeug.security import check_password_hash

from app.core.errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from app.core.models import EstadoTpt, ResultadoReaccion, Rol, SeveridadReaccion, TptSeguimiento
from app.seguimiento import services


@pytest.fixture
def indicacion(contacto, esquema_3hp, today):
    return services.create_indicacion(
        contacto.id,
        {"esquema_tpt_id": esquema_3hp.id, "fecha_indicacion": (today - timedelta(days=10)).isoformat()},
        None,
        today,
    )


@pytest.fixture
def indicacion_en_curso(indicacion, today):
    return services.iniciar_tpt(indicacion.id, (today - timedelta(days=3)).isoformat(), today)


def test_follow_up_requires_tpt_in_course(app, indicacion, today):
    with pytest.raises(InvalidTransition) as excinfo:
        services.create_seguimiento_tpt(indicacion.id, {"dosis_administrada": True}, None, today)
    assert excinfo.value.rule == "not_in_course"
    assert TptSeguimiento.query.count() == 0


def test_follow_up_records_dose(app, indicacion_en_curso, medico, today):
    seguimiento = services.create_seguimiento_tpt(
        indicacion_en_curso.id,
        {"dosis_administrada": "si", "observaciones_administracion": "Toma supervisada"},
        medico.id,
        today,
    )
    assert seguimiento.fecha_seguimiento == today
    assert seguimiento.dosis_administrada is True
    assert seguimiento.efectos_adversos is False
    assert seguimiento.usuario_registro_id == medico.id
    assert seguimiento.establecimiento_id == indicacion_en_curso.establecimiento_id
    assert [s.id for s in services.list_seguimientos_tpt(indicacion_en_curso.id)] == [seguimiento.id]


def test_follow_up_before_start_is_rejected(app, indicacion_en_curso, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_seguimiento_tpt(
            indicacion_en_curso.id,
            {"fecha_seguimiento": (today - timedelta(days=10)).isoformat()},
            None,
            today,
        )
    assert excinfo.value.field == "fecha_seguimiento"
    assert excinfo.value.rule == "date_order"


def test_follow_up_closed_after_abandonment(app, indicacion_en_curso, today):
    services.cambiar_estado_tpt(indicacion_en_curso.id, EstadoTpt.ABANDONADO, today)
    with pytest.raises(InvalidTransition):
        services.create_seguimiento_tpt(indicacion_en_curso.id, {}, None, today)


def test_adverse_reaction_defaults_and_update(app, indicacion_en_curso, today):
    reaccion = services.create_reaccion_adversa(
        indicacion_en_curso.id,
        {
            "tipo_reaccion": "Hepatotoxicidad",
            "severidad": "Moderada",
            "sintomas": "Ictericia leve",
            "medicamento_sospechoso": "Isoniazida",
        },
        None,
        today,
    )
    assert reaccion.severidad == SeveridadReaccion.MODERADA
    assert reaccion.resultado == ResultadoReaccion.EN_SEGUIMIENTO
    assert reaccion.fecha_reaccion == today

    updated = services.update_reaccion_adversa(reaccion.id, {"resultado": "Resuelto", "accion_tomada": "Suspension"}, today)
    assert updated.resultado == ResultadoReaccion.RESUELTO
    assert updated.accion_tomada == "Suspension"


@pytest.mark.parametrize(
    "payload, field",
    [
        ({"severidad": "Leve", "sintomas": "Nauseas"}, "tipo_reaccion"),
        ({"tipo_reaccion": "Rash", "severidad": "Extrema", "sintomas": "x"}, "severidad"),
        ({"tipo_reaccion": "Rash", "severidad": "Leve"}, "sintomas"),
    ],
)
def test_adverse_reaction_required_fields(app, indicacion, today, payload, field):
    with pytest.raises(ValidationError) as excinfo:
        services.create_reaccion_adversa(indicacion.id, payload, None, today)
    assert excinfo.value.field == field


def test_rejected_reaction_update_keeps_previous_values(app, indicacion, today):
    reaccion = services.create_reaccion_adversa(
        indicacion.id,
        {"tipo_reaccion": "Rash", "severidad": "Leve", "sintomas": "Prurito"},
        None,
        today,
    )
    with pytest.raises(ValidationError):
        services.update_reaccion_adversa(reaccion.id, {"sintomas": "Fiebre", "severidad": "Extrema"}, today)
    assert reaccion.sintomas == "Prurito"
    assert reaccion.severidad == SeveridadReaccion.LEVE


def test_one_consent_per_indication(app, indicacion, medico, today):
    with pytest.raises(NotFoundError):
        services.consentimiento_de(indicacion.id)

    consentimiento = services.create_consentimiento(
        indicacion.id,
        {"consentimiento_firmado": True, "ruta_archivo_consentimiento": "consentimientos/luis.pdf"},
        medico.id,
        today,
    )
    assert consentimiento.fecha_consentimiento == today
    assert services.consentimiento_de(indicacion.id).id == consentimiento.id

    with pytest.raises(ConflictError) as excinfo:
        services.create_consentimiento(indicacion.id, {}, medico.id, today)
    assert excinfo.value.status_code == 409

    services.update_consentimiento(indicacion.id, {"observaciones": "Firmado por tutor"}, today)
    assert consentimiento.observaciones == "Firmado por tutor"


def test_future_consent_date_is_rejected(app, indicacion, today):
    with pytest.raises(ValidationError) as excinfo:
        services.create_consentimiento(
            indicacion.id,
            {"fecha_consentimiento": (today + timedelta(days=1)).isoformat()},
            None,
            today,
        )
    assert excinfo.value.rule == "not_future"


def test_facility_admin_lifecycle(app):
    establecimiento = services.create_establecimiento({"codigo": "eess-0003", "nombre": "Posta Collique"})
    assert establecimiento.codigo == "EESS-0003"

    with pytest.raises(ValidationError) as excinfo:
        services.create_establecimiento({"codigo": "EESS-0001", "nombre": "Duplicado"})
    assert excinfo.value.rule == "unique"

    services.update_establecimiento(establecimiento.id, {"distrito": "Comas"})
    assert establecimiento.distrito == "Comas"

    services.desactivar_establecimiento(establecimiento.id)
    assert establecimiento.id not in [e.id for e in services.list_establecimientos()]
    with pytest.raises(NotFoundError):
        services.establecimiento_by_id(establecimiento.id)


def test_user_admin_lifecycle(app):
    usuario = services.create_usuario(
        {"email": "Obstetra@TB.local", "nombre": "Obstetra", "rol": "enfermeria", "password": "segura123"}
    )
    assert usuario.email == "obstetra@tb.local"
    assert usuario.rol == Rol.ENFERMERIA
    assert check_password_hash(usuario.password_hash, "segura123")

    with pytest.raises(ValidationError) as excinfo:
        services.create_usuario({"email": "obstetra@tb.local", "nombre": "Otra", "password": "segura123"})
    assert excinfo.value.rule == "unique"

    with pytest.raises(ValidationError) as excinfo:
        services.create_usuario({"email": "corta@tb.local", "nombre": "Corta", "password": "123"})
    assert excinfo.value.rule == "min_length"

    services.update_usuario(usuario.id, {"rol": "medico", "password": "ignorada"})
    assert usuario.rol == Rol.MEDICO
    assert check_password_hash(usuario.password_hash, "segura123")

    services.cambiar_password(usuario.id, "segura123", "nueva-clave")
    assert check_password_hash(usuario.password_hash, "nueva-clave")
    with pytest.raises(ValidationError):
        services.cambiar_password(usuario.id, "segura123", "otra-clave")


def test_admin_cannot_deactivate_self(app):
    admin = services.list_usuarios({"rol": "admin"})[0]
    with pytest.raises(ValidationError) as excinfo:
        services.desactivar_usuario(admin.id, admin.id)
    assert excinfo.value.rule == "self"

    consulta = services.list_usuarios({"rol": "consulta"})[0]
    services.desactivar_usuario(consulta.id, admin.id)
    assert consulta.activo is False
    assert consulta.id not in [u.id for u in services.list_usuarios({})]
    assert consulta.id in [u.id for u in services.list_usuarios({"todos": "1"})]
