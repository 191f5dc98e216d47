from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import (
    CasoIndice,
    Contacto,
    ControlContacto,
    EsquemaTpt,
    EstadoControl,
    TipoControl,
    Usuario,
    seed_demo_data,
)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    LOG_LEVEL = "WARNING"


@pytest.fixture
def today() -> date:
    return date.today()


@pytest.fixture
def app(today):
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session, today=today)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _login_as(client, email: str, password: str):
    def _login():
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login


@pytest.fixture
def login_admin(client):
    return _login_as(client, "admin@tb.local", "admin123")


@pytest.fixture
def login_medico(client):
    return _login_as(client, "medico@tb.local", "medico123")


@pytest.fixture
def login_enfermeria(client):
    return _login_as(client, "enfermeria@tb.local", "enfermeria123")


@pytest.fixture
def login_consulta(client):
    return _login_as(client, "consulta@tb.local", "consulta123")


@pytest.fixture
def caso(app):
    return CasoIndice.query.filter_by(codigo_caso="CASO-1A2B3C4D").one()


@pytest.fixture
def contacto(caso):
    return Contacto.query.filter_by(caso_indice_id=caso.id, nombres="Luis").one()


@pytest.fixture
def otro_contacto(caso):
    return Contacto.query.filter_by(caso_indice_id=caso.id, nombres="Ana").one()


@pytest.fixture
def esquema_3hp(app):
    return EsquemaTpt.query.filter_by(codigo="3HP").one()


@pytest.fixture
def medico(app):
    return Usuario.query.filter_by(email="medico@tb.local").one()


@pytest.fixture
def make_control(contacto, today):
    def _make(days_ago: int, numero: int = 1, estado: EstadoControl = EstadoControl.PROGRAMADO, owner=None):
        owner = owner or contacto
        control = ControlContacto(
            contacto_id=owner.id,
            numero_control=numero,
            tipo_control=TipoControl.CLINICO,
            fecha_programada=today - timedelta(days=days_ago),
            estado=estado,
            establecimiento_id=owner.establecimiento_id,
        )
        db.session.add(control)
        db.session.commit()
        return control

    return _make
