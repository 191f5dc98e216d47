from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from flask import jsonify, request
from flask_login import current_user, login_required

from app.core.errors import ValidationError
from app.core.models import Rol
from app.core.permissions import ROLES_CLINICOS, ROLES_ESCRITURA, require_role
from app.core.utils import parse_optional_iso_date
from app.seguimiento import seguimiento_bp
from app.seguimiento.reconciler import (
    alerta_by_id,
    descartar_alerta,
    marcar_en_revision,
    resolver_alerta,
)
from app.seguimiento.services import (
    cambiar_estado_tpt,
    cambiar_password,
    cancelar_control,
    caso_by_id,
    consentimiento_de,
    contacto_by_id,
    controles_vencidos,
    create_alerta_manual,
    create_caso_indice,
    create_consentimiento,
    create_contacto,
    create_control,
    create_derivacion,
    create_esquema,
    create_establecimiento,
    create_examen,
    create_indicacion,
    create_reaccion_adversa,
    create_seguimiento_tpt,
    create_usuario,
    create_visita,
    desactivar_caso_indice,
    desactivar_contacto,
    desactivar_establecimiento,
    desactivar_usuario,
    evaluate_case_family,
    indicacion_by_id,
    list_alertas,
    list_casos,
    list_contactos,
    list_controles,
    list_esquemas,
    list_establecimientos,
    list_indicaciones,
    list_reacciones_adversas,
    list_seguimientos_tpt,
    list_usuarios,
    list_visitas,
    marcar_control_no_realizado,
    marcar_control_realizado,
    panel_data,
    reprogramar_control,
    run_compliance_pass,
    transition_derivacion,
    update_caso_indice,
    update_consentimiento,
    update_esquema,
    update_establecimiento,
    update_reaccion_adversa,
    update_usuario,
    usuario_by_id,
)


def _today() -> date:
    return date.today()


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("El cuerpo JSON debe ser un objeto", rule="json_object")
    return data


def _value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def serialize(record) -> dict[str, object]:
    data = {column.key: _value(getattr(record, column.key)) for column in record.__table__.columns}
    data.pop("password_hash", None)
    return data


def _many(records) -> list[dict[str, object]]:
    return [serialize(record) for record in records]


@seguimiento_bp.get("/panel")
@login_required
def panel():
    return jsonify(panel_data(_today()))


# Casos indice


@seguimiento_bp.get("/casos")
@login_required
def casos_list():
    return jsonify(_many(list_casos(request.args.to_dict())))


@seguimiento_bp.post("/casos")
@login_required
@require_role(*ROLES_ESCRITURA)
def casos_create():
    caso = create_caso_indice(_payload(), current_user.id, _today())
    return jsonify(serialize(caso)), 201


@seguimiento_bp.get("/casos/<int:caso_id>")
@login_required
def casos_detail(caso_id: int):
    caso = caso_by_id(caso_id)
    data = serialize(caso)
    data["paciente_nombre_completo"] = caso.paciente_nombre_completo
    data["contactos"] = _many(list_contactos(caso.id))
    data["visitas"] = _many(list_visitas(caso_id=caso.id))
    return jsonify(data)


@seguimiento_bp.patch("/casos/<int:caso_id>")
@login_required
@require_role(*ROLES_ESCRITURA)
def casos_update(caso_id: int):
    return jsonify(serialize(update_caso_indice(caso_id, _payload(), _today())))


@seguimiento_bp.delete("/casos/<int:caso_id>")
@login_required
@require_role(Rol.ADMIN)
def casos_deactivate(caso_id: int):
    return jsonify(serialize(desactivar_caso_indice(caso_id)))


@seguimiento_bp.post("/casos/<int:caso_id>/evaluar")
@login_required
@require_role(*ROLES_ESCRITURA)
def casos_evaluate(caso_id: int):
    result = evaluate_case_family(caso_id, _today())
    return jsonify({"created": result.created, "escalated": result.escalated, "unchanged": result.unchanged})


# Contactos y examenes


@seguimiento_bp.get("/casos/<int:caso_id>/contactos")
@login_required
def contactos_list(caso_id: int):
    return jsonify(_many(list_contactos(caso_id)))


@seguimiento_bp.post("/casos/<int:caso_id>/contactos")
@login_required
@require_role(*ROLES_ESCRITURA)
def contactos_create(caso_id: int):
    contacto = create_contacto(caso_id, _payload(), current_user.id, _today())
    return jsonify(serialize(contacto)), 201


@seguimiento_bp.get("/contactos/<int:contacto_id>")
@login_required
def contactos_detail(contacto_id: int):
    contacto = contacto_by_id(contacto_id)
    data = serialize(contacto)
    data["nombre_completo"] = contacto.nombre_completo
    data["examenes"] = _many(contacto.examenes)
    data["controles"] = _many(list_controles(contacto.id))
    data["indicaciones_tpt"] = _many(list_indicaciones(contacto.id))
    data["visitas"] = _many(list_visitas(contacto_id=contacto.id))
    data["derivaciones"] = _many(contacto.derivaciones)
    return jsonify(data)


@seguimiento_bp.delete("/contactos/<int:contacto_id>")
@login_required
@require_role(*ROLES_CLINICOS)
def contactos_deactivate(contacto_id: int):
    return jsonify(serialize(desactivar_contacto(contacto_id)))


@seguimiento_bp.post("/contactos/<int:contacto_id>/examenes")
@login_required
@require_role(*ROLES_ESCRITURA)
def examenes_create(contacto_id: int):
    examen = create_examen(contacto_id, _payload(), current_user.id, _today())
    return jsonify(serialize(examen)), 201


# Controles


@seguimiento_bp.get("/contactos/<int:contacto_id>/controles")
@login_required
def controles_list(contacto_id: int):
    return jsonify(_many(list_controles(contacto_id)))


@seguimiento_bp.post("/contactos/<int:contacto_id>/controles")
@login_required
@require_role(*ROLES_ESCRITURA)
def controles_create(contacto_id: int):
    control = create_control(contacto_id, _payload(), current_user.id, _today())
    return jsonify(serialize(control)), 201


@seguimiento_bp.get("/controles/vencidos")
@login_required
def controles_overdue():
    return jsonify(_many(controles_vencidos(_today())))


@seguimiento_bp.post("/controles/<int:control_id>/realizado")
@login_required
@require_role(*ROLES_ESCRITURA)
def controles_done(control_id: int):
    return jsonify(serialize(marcar_control_realizado(control_id, _payload(), current_user.id, _today())))


@seguimiento_bp.post("/controles/<int:control_id>/no-realizado")
@login_required
@require_role(*ROLES_ESCRITURA)
def controles_missed(control_id: int):
    return jsonify(serialize(marcar_control_no_realizado(control_id, _payload(), _today())))


@seguimiento_bp.post("/controles/<int:control_id>/cancelar")
@login_required
@require_role(*ROLES_ESCRITURA)
def controles_cancel(control_id: int):
    return jsonify(serialize(cancelar_control(control_id, _payload(), _today())))


@seguimiento_bp.post("/controles/<int:control_id>/reprogramar")
@login_required
@require_role(*ROLES_ESCRITURA)
def controles_reschedule(control_id: int):
    return jsonify(serialize(reprogramar_control(control_id, _payload(), _today())))


# Esquemas e indicaciones TPT


@seguimiento_bp.get("/esquemas")
@login_required
def esquemas_list():
    include_inactive = request.args.get("todos") == "1"
    return jsonify(_many(list_esquemas(include_inactive=include_inactive)))


@seguimiento_bp.post("/esquemas")
@login_required
@require_role(Rol.ADMIN)
def esquemas_create():
    return jsonify(serialize(create_esquema(_payload()))), 201


@seguimiento_bp.patch("/esquemas/<int:esquema_id>")
@login_required
@require_role(Rol.ADMIN)
def esquemas_update(esquema_id: int):
    return jsonify(serialize(update_esquema(esquema_id, _payload())))


@seguimiento_bp.get("/contactos/<int:contacto_id>/indicaciones")
@login_required
def indicaciones_list(contacto_id: int):
    return jsonify(_many(list_indicaciones(contacto_id)))


@seguimiento_bp.post("/contactos/<int:contacto_id>/indicaciones")
@login_required
@require_role(*ROLES_CLINICOS)
def indicaciones_create(contacto_id: int):
    indicacion = create_indicacion(contacto_id, _payload(), current_user.id, _today())
    return jsonify(serialize(indicacion)), 201


@seguimiento_bp.post("/indicaciones/<int:indicacion_id>/estado")
@login_required
@require_role(*ROLES_CLINICOS)
def indicaciones_transition(indicacion_id: int):
    payload = _payload()
    indicacion = cambiar_estado_tpt(
        indicacion_id,
        payload.get("estado") or "",
        _today(),
        fecha_inicio=parse_optional_iso_date(payload.get("fecha_inicio"), "fecha_inicio"),
        observaciones=payload.get("observaciones"),
    )
    return jsonify(serialize(indicacion))


@seguimiento_bp.get("/indicaciones/<int:indicacion_id>")
@login_required
def indicaciones_detail(indicacion_id: int):
    indicacion = indicacion_by_id(indicacion_id)
    data = serialize(indicacion)
    data["seguimientos"] = _many(indicacion.seguimientos)
    data["reacciones_adversas"] = _many(indicacion.reacciones_adversas)
    data["consentimiento"] = serialize(indicacion.consentimiento) if indicacion.consentimiento else None
    return jsonify(data)


@seguimiento_bp.get("/indicaciones/<int:indicacion_id>/seguimientos")
@login_required
def seguimientos_list(indicacion_id: int):
    return jsonify(_many(list_seguimientos_tpt(indicacion_id)))


@seguimiento_bp.post("/indicaciones/<int:indicacion_id>/seguimientos")
@login_required
@require_role(*ROLES_ESCRITURA)
def seguimientos_create(indicacion_id: int):
    seguimiento = create_seguimiento_tpt(indicacion_id, _payload(), current_user.id, _today())
    return jsonify(serialize(seguimiento)), 201


@seguimiento_bp.get("/indicaciones/<int:indicacion_id>/reacciones")
@login_required
def reacciones_list(indicacion_id: int):
    return jsonify(_many(list_reacciones_adversas(indicacion_id)))


@seguimiento_bp.post("/indicaciones/<int:indicacion_id>/reacciones")
@login_required
@require_role(*ROLES_ESCRITURA)
def reacciones_create(indicacion_id: int):
    reaccion = create_reaccion_adversa(indicacion_id, _payload(), current_user.id, _today())
    return jsonify(serialize(reaccion)), 201


@seguimiento_bp.patch("/reacciones/<int:reaccion_id>")
@login_required
@require_role(*ROLES_CLINICOS)
def reacciones_update(reaccion_id: int):
    return jsonify(serialize(update_reaccion_adversa(reaccion_id, _payload(), _today())))


@seguimiento_bp.get("/indicaciones/<int:indicacion_id>/consentimiento")
@login_required
def consentimiento_detail(indicacion_id: int):
    return jsonify(serialize(consentimiento_de(indicacion_id)))


@seguimiento_bp.post("/indicaciones/<int:indicacion_id>/consentimiento")
@login_required
@require_role(*ROLES_CLINICOS)
def consentimiento_create(indicacion_id: int):
    consentimiento = create_consentimiento(indicacion_id, _payload(), current_user.id, _today())
    return jsonify(serialize(consentimiento)), 201


@seguimiento_bp.patch("/indicaciones/<int:indicacion_id>/consentimiento")
@login_required
@require_role(*ROLES_CLINICOS)
def consentimiento_update(indicacion_id: int):
    return jsonify(serialize(update_consentimiento(indicacion_id, _payload(), _today())))


# Visitas y derivaciones


@seguimiento_bp.post("/visitas")
@login_required
@require_role(*ROLES_ESCRITURA)
def visitas_create():
    return jsonify(serialize(create_visita(_payload(), current_user.id, _today()))), 201


@seguimiento_bp.post("/contactos/<int:contacto_id>/derivaciones")
@login_required
@require_role(*ROLES_ESCRITURA)
def derivaciones_create(contacto_id: int):
    derivacion = create_derivacion(contacto_id, _payload(), current_user.id, _today())
    return jsonify(serialize(derivacion)), 201


@seguimiento_bp.post("/derivaciones/<int:derivacion_id>/estado")
@login_required
@require_role(*ROLES_ESCRITURA)
def derivaciones_transition(derivacion_id: int):
    payload = _payload()
    derivacion = transition_derivacion(derivacion_id, payload.get("estado") or "", current_user.id, _today())
    return jsonify(serialize(derivacion))


# Alertas y cumplimiento


@seguimiento_bp.get("/alertas")
@login_required
def alertas_list():
    return jsonify(_many(list_alertas(request.args.to_dict())))


@seguimiento_bp.get("/alertas/<int:alerta_id>")
@login_required
def alertas_detail(alerta_id: int):
    return jsonify(serialize(alerta_by_id(alerta_id)))


@seguimiento_bp.post("/alertas")
@login_required
@require_role(*ROLES_ESCRITURA)
def alertas_create():
    return jsonify(serialize(create_alerta_manual(_payload(), _today()))), 201


@seguimiento_bp.post("/alertas/<int:alerta_id>/revision")
@login_required
@require_role(*ROLES_ESCRITURA)
def alertas_review(alerta_id: int):
    payload = _payload()
    return jsonify(serialize(marcar_en_revision(alerta_id, payload.get("observaciones"))))


@seguimiento_bp.post("/alertas/<int:alerta_id>/resolver")
@login_required
@require_role(*ROLES_ESCRITURA)
def alertas_resolve(alerta_id: int):
    payload = _payload()
    alerta = resolver_alerta(alerta_id, payload.get("observaciones"), current_user.id, _today())
    return jsonify(serialize(alerta))


@seguimiento_bp.post("/alertas/<int:alerta_id>/descartar")
@login_required
@require_role(*ROLES_CLINICOS)
def alertas_discard(alerta_id: int):
    payload = _payload()
    alerta = descartar_alerta(alerta_id, payload.get("observaciones"), current_user.id, _today())
    return jsonify(serialize(alerta))


@seguimiento_bp.post("/cumplimiento/evaluar")
@login_required
@require_role(Rol.ADMIN)
def compliance_run():
    payload = _payload()
    fecha = parse_optional_iso_date(payload.get("fecha"), "fecha") or _today()
    return jsonify(run_compliance_pass(fecha).as_dict())


# Establecimientos y usuarios


@seguimiento_bp.get("/establecimientos")
@login_required
def establecimientos_list():
    include_inactive = request.args.get("todos") == "1"
    return jsonify(_many(list_establecimientos(include_inactive=include_inactive)))


@seguimiento_bp.post("/establecimientos")
@login_required
@require_role(Rol.ADMIN)
def establecimientos_create():
    return jsonify(serialize(create_establecimiento(_payload()))), 201


@seguimiento_bp.patch("/establecimientos/<int:establecimiento_id>")
@login_required
@require_role(Rol.ADMIN)
def establecimientos_update(establecimiento_id: int):
    return jsonify(serialize(update_establecimiento(establecimiento_id, _payload())))


@seguimiento_bp.delete("/establecimientos/<int:establecimiento_id>")
@login_required
@require_role(Rol.ADMIN)
def establecimientos_deactivate(establecimiento_id: int):
    return jsonify(serialize(desactivar_establecimiento(establecimiento_id)))


@seguimiento_bp.get("/usuarios")
@login_required
@require_role(Rol.ADMIN)
def usuarios_list():
    return jsonify(_many(list_usuarios(request.args.to_dict())))


@seguimiento_bp.post("/usuarios")
@login_required
@require_role(Rol.ADMIN)
def usuarios_create():
    return jsonify(serialize(create_usuario(_payload()))), 201


@seguimiento_bp.get("/usuarios/<int:usuario_id>")
@login_required
@require_role(Rol.ADMIN)
def usuarios_detail(usuario_id: int):
    return jsonify(serialize(usuario_by_id(usuario_id)))


@seguimiento_bp.patch("/usuarios/<int:usuario_id>")
@login_required
@require_role(Rol.ADMIN)
def usuarios_update(usuario_id: int):
    return jsonify(serialize(update_usuario(usuario_id, _payload())))


@seguimiento_bp.delete("/usuarios/<int:usuario_id>")
@login_required
@require_role(Rol.ADMIN)
def usuarios_deactivate(usuario_id: int):
    return jsonify(serialize(desactivar_usuario(usuario_id, current_user.id)))


@seguimiento_bp.post("/usuarios/me/password")
@login_required
def usuarios_change_password():
    payload = _payload()
    cambiar_password(current_user.id, payload.get("password_actual"), payload.get("password_nueva"))
    return jsonify({"message": "Contrasena actualizada"})
