import uuid

from conftest import bearer, login, register

from storefront.database import SessionLocal
from storefront.models import User


def test_register_returns_user_without_password(client):
    resp = client.post(
        "/users/create",
        json={"name": "Alice", "email": "alice@example.com", "password": "correct-horse"},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["name"] == "Alice"
    assert body["email"] == "alice@example.com"
    assert uuid.UUID(body["id"])
    assert "password" not in body and "hashed_password" not in body


def test_password_is_stored_hashed(client):
    user = register(client)

    db = SessionLocal()
    try:
        stored = db.get(User, uuid.UUID(user["id"]))
        assert stored.hashed_password != "correct-horse"
        assert stored.hashed_password.startswith("$2")
    finally:
        db.close()


def test_duplicate_email_is_rejected(client):
    register(client)

    resp = client.post(
        "/users/create",
        json={"name": "Other", "email": "Alice@Example.com", "password": "another-password"},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "This email is already registered"


def test_register_validates_payload(client):
    resp = client.post("/users/create", json={"name": "A", "email": "not-an-email", "password": "short"})
    assert resp.status_code == 422


def test_login_returns_bearer_token(client):
    register(client)

    resp = client.post("/users/login", json={"email": "alice@example.com", "password": "correct-horse"})

    assert resp.status_code == 200
    assert resp.json()["token_type"] == "bearer"
    assert resp.json()["access_token"].count(".") == 2


def test_login_with_wrong_password_is_unauthorized(client):
    register(client)

    resp = client.post("/users/login", json={"email": "alice@example.com", "password": "wrong-horse"})

    assert resp.status_code == 401
    assert "access_token" not in resp.json()


def test_login_failures_look_the_same(client):
    register(client)

    wrong_password = client.post("/users/login", json={"email": "alice@example.com", "password": "nope-nope"})
    unknown_email = client.post("/users/login", json={"email": "nobody@example.com", "password": "nope-nope"})

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()


def test_get_user(client, alice):
    resp = client.get(f"/users/{alice['id']}")
    assert resp.status_code == 200
    assert resp.json()["email"] == "alice@example.com"

    resp = client.get(f"/users/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "User not found"}


def test_me_resolves_token_subject(client, alice):
    resp = client.get("/users/me", headers=alice["headers"])
    assert resp.status_code == 200
    assert resp.json()["id"] == alice["id"]


def test_delete_own_account(client, alice):
    resp = client.delete(f"/users/{alice['id']}", headers=alice["headers"])

    assert resp.status_code == 204
    assert client.get(f"/users/{alice['id']}").status_code == 404


def test_cannot_delete_someone_else(client, alice, bob):
    resp = client.delete(f"/users/{alice['id']}", headers=bob["headers"])

    assert resp.status_code == 403
    assert client.get(f"/users/{alice['id']}").status_code == 200


def test_delete_requires_authentication(client, alice):
    assert client.delete(f"/users/{alice['id']}").status_code == 401


def test_token_of_deleted_user_cannot_place_orders(client, alice):
    token = login(client)
    client.delete(f"/users/{alice['id']}", headers=alice["headers"])

    resp = client.post(
        "/orders",
        json={"items": [{"product_id": str(uuid.uuid4()), "quantity": 1}]},
        headers=bearer(token),
    )

    assert resp.status_code == 401


def test_deleting_a_vanished_account_is_not_found(client, alice):
    db = SessionLocal()
    try:
        db.query(User).filter(User.id == uuid.UUID(alice["id"])).delete()
        db.commit()
    finally:
        db.close()

    resp = client.delete(f"/users/{alice['id']}", headers=alice["headers"])

    assert resp.status_code == 404
    assert resp.json() == {"detail": "User not found"}
