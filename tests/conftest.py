# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from link_shortener.config import Config
from link_shortener.database import create_db_engine, create_session_factory, init_db
from link_shortener.keys import KeyStore
from link_shortener.main import create_app
from link_shortener.service import LinkService

ROOT_KEY = "root-secret"


def make_config(**overrides) -> Config:
    settings = {
        "database_url": "sqlite://",
        "root_user_key": ROOT_KEY,
        "public_site_url": "sho.rt",
        "enable_sweeper": False,
    }
    settings.update(overrides)
    return Config(**settings)


@pytest.fixture
def client():
    with TestClient(create_app(make_config())) as c:
        yield c


@pytest.fixture
def admin_headers():
    return {"Authorization": ROOT_KEY}


@pytest.fixture
def user_key(client, admin_headers):
    resp = client.post("/api/v1/keys/generate", json={"name": "alice"}, headers=admin_headers)
    assert resp.status_code == 200
    return resp.json()["key"]["key"]


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def root(db):
    return KeyStore(db).ensure_root_key(ROOT_KEY)


@pytest.fixture
def service(db):
    return LinkService(db, public_site_url="sho.rt")
