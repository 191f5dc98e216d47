from flask import Blueprint

seguimiento_bp = Blueprint("seguimiento", __name__, url_prefix="/api")

from app.seguimiento import routes  # noqa: E402,F401
