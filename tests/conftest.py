import os

# Le lifespan ne doit pas tenter de joindre Redis pendant les tests
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from typing import Generator, Dict, Any
from fastapi.testclient import TestClient

from marketplace.app_setup.factory import create_app
from marketplace.infra.supabase_client import get_db
from marketplace.payments.flutterwave_client import get_gateway
from marketplace.utils.security import require_user, require_admin

from tests.fakes import FakeGateway, FakeStore

TEST_USER: Dict[str, Any] = {
    "id": "test-user",
    "email": "test@example.com",
    "role": "customer",
    "metadata": {"full_name": "Test User"},
    "token": "fake-token",
}
ADMIN_USER: Dict[str, Any] = {"id": "admin-user-id", "role": "admin", "email": "admin@example.com"}


# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def app():
    return create_app()


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    """Repositories remplacés par un stockage mémoire, avec un catalogue minimal."""
    s = FakeStore().install(monkeypatch)
    s.add_user(TEST_USER["id"], email=TEST_USER["email"], phone="+250788000000")
    s.add_address("addr-1", TEST_USER["id"])
    s.add_address("addr-other", "someone-else")
    s.add_product("prod-1", "25000", stock=None, name="Panier tressé")
    s.add_product("prod-2", "8000", stock=None, name="Tissu kitenge")
    s.add_variant("var-1", "prod-2", price="9000", stock=5, name="Bleu")
    return s


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def db():
    """Le client Supabase n'est jamais touché: les repositories sont remplacés par FakeStore."""
    return object()


@pytest.fixture()
def client(app, store, gateway, db) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture
def authenticated_admin_client(app, client):
    app.dependency_overrides[require_admin] = lambda: ADMIN_USER
    yield client
    app.dependency_overrides.pop(require_admin, None)


# Simuler un utilisateur authentifié pour les endpoints protégés
@pytest.fixture(autouse=True)
def _override_require_user(app):
    app.dependency_overrides[require_user] = lambda: TEST_USER
    try:
        yield
    finally:
        app.dependency_overrides.pop(require_user, None)
