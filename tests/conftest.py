import os
import tempfile
from decimal import Decimal

# Configuration is read once at import, so point it at a throwaway database first.
# TEST_DATABASE_URL selects a real server (e.g. PostgreSQL) instead of SQLite.
_db_dir = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL", f"sqlite:///{os.path.join(_db_dir, 'storefront.db')}"
)
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["EVENTS_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from storefront.database import SessionLocal, engine
from storefront.main import app
from storefront.models import Base


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def register(client, name="Alice", email="alice@example.com", password="correct-horse"):
    resp = client.post("/users/create", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def login(client, email="alice@example.com", password="correct-horse"):
    resp = client.post("/users/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def create_product(client, name="Widget", price="10.00", stock=5, description=None):
    resp = client.post(
        "/products/create",
        json={"name": name, "description": description, "price": price, "stock": stock},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def stock_of(client, product_id):
    resp = client.get(f"/products/{product_id}")
    assert resp.status_code == 200
    return resp.json()["stock"]


def as_decimal(value):
    return Decimal(str(value))


@pytest.fixture
def alice(client):
    user = register(client)
    token = login(client)
    return {**user, "token": token, "headers": bearer(token)}


@pytest.fixture
def bob(client):
    user = register(client, name="Bob", email="bob@example.com", password="bob-password")
    token = login(client, email="bob@example.com", password="bob-password")
    return {**user, "token": token, "headers": bearer(token)}
