from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.models import Usuario
from app.core.utils import clean_text

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials() -> tuple[str, str]:
    payload = request.get_json(silent=True) or request.form
    if not hasattr(payload, "get"):
        payload = {}
    email = clean_text(payload.get("email")).lower()
    password = str(payload.get("password") or "")
    return email, password


def _usuario_dict(usuario: Usuario) -> dict[str, object]:
    return {
        "id": usuario.id,
        "email": usuario.email,
        "nombre": usuario.nombre,
        "rol": usuario.rol.value,
        "establecimiento_id": usuario.establecimiento_id,
    }


@auth_bp.post("/login")
def login():
    email, password = _credentials()
    usuario = Usuario.query.filter_by(email=email).first()
    if not usuario or not check_password_hash(usuario.password_hash, password):
        logger.warning("Intento de acceso fallido para %s", email or "<vacio>")
        return jsonify({"error": "Unauthorized", "message": "Credenciales invalidas"}), 401
    if not usuario.activo:
        return jsonify({"error": "Forbidden", "message": "Usuario inactivo"}), 403
    login_user(usuario)
    return jsonify(_usuario_dict(usuario))


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_usuario_dict(current_user))
