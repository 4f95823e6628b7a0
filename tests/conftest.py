"""
Shared fixtures: a throwaway config file and SQLite document store per test.
"""
import pytest

from app import create_app
from elitefinds.config import ConfigStore
from elitefinds.database import Session
from elitefinds.services import Backend


@pytest.fixture
def config(tmp_path):
    return ConfigStore(tmp_path / "config.xml")


@pytest.fixture
def connection_string(tmp_path):
    return f"sqlite:///{tmp_path / 'elitefinds.db'}"


@pytest.fixture
def db_session(connection_string):
    session = Session(connection_string).open()
    assert session.is_connected()
    yield session
    session.close()


@pytest.fixture
def offline_session():
    session = Session(None).open()
    yield session
    session.close()


@pytest.fixture
def backend(config, db_session):
    return Backend(config, db_session)


@pytest.fixture
def offline_backend(config, offline_session):
    return Backend(config, offline_session)


def _client(app):
    client = app.test_client()
    response = client.post("/api/auth/login", json={"username": "admin", "password": "admin"})
    assert response.status_code == 200
    return client


@pytest.fixture
def client(tmp_path, db_session):
    app = create_app(tmp_path / "config.xml", db_session)
    app.config["TESTING"] = True
    return _client(app)


@pytest.fixture
def offline_client(tmp_path, offline_session):
    app = create_app(tmp_path / "config.xml", offline_session)
    app.config["TESTING"] = True
    return _client(app)
