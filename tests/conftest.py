from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from gestoria import create_app
from gestoria.core.config import Config
from gestoria.core.extensions import db
from gestoria.core.models import AppRole, Cliente, TipoTramite, User, seed_demo_data
from gestoria.core.session import SessionContext


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    AUTO_ADVANCE_EMPTY_CHECKLIST = False
    RECORD_SAME_STATUS_TRANSITIONS = True
    LOG_LEVEL = "WARNING"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_admin(client):
    def _login():
        return client.post(
            "/auth/login",
            data={"email": "admin@gestoria.local", "password": "admin123"},
            follow_redirects=True,
        )

    return _login


@pytest.fixture
def login_operator(client):
    def _login():
        return client.post(
            "/auth/login",
            data={"email": "operador@gestoria.local", "password": "operador123"},
            follow_redirects=True,
        )

    return _login


@pytest.fixture
def admin_actor(app):
    admin = User.query.filter_by(email="admin@gestoria.local").first()
    return SessionContext(user_id=admin.id, role=AppRole.ADMIN)


@pytest.fixture
def operator_actor(app):
    operador = User.query.filter_by(email="operador@gestoria.local").first()
    return SessionContext(user_id=operador.id, role=AppRole.OPERADOR)


@pytest.fixture
def amina(app):
    return Cliente.query.filter_by(nie_pasaporte="X1234567L").first()


@pytest.fixture
def arraigo(app):
    return TipoTramite.query.filter_by(codigo="ARR-SOC").first()


@pytest.fixture
def nacionalidad(app):
    return TipoTramite.query.filter_by(codigo="NAC-RES").first()
