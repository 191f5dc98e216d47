from __future__ import annotations

from functools import wraps

from flask import abort
from flask_login import current_user

from app.core.models import Rol

ROLES_ESCRITURA = (Rol.ADMIN, Rol.MEDICO, Rol.ENFERMERIA)
ROLES_CLINICOS = (Rol.ADMIN, Rol.MEDICO)


def require_role(*roles: Rol | str):
    allowed = {r.value if isinstance(r, Rol) else str(r).lower() for r in roles}

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            rol = getattr(current_user, "rol", None)
            if rol is None or rol.value not in allowed:
                abort(403)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
