import uuid
from datetime import timedelta

import pytest
from jose import jwt

from storefront import config
from storefront.auth import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)
from storefront.errors import UnauthorizedError


def test_password_hash_is_salted_and_verifiable():
    hashed = get_password_hash("s3cret-password")

    assert hashed != "s3cret-password"
    assert hashed != get_password_hash("s3cret-password")
    assert verify_password("s3cret-password", hashed)
    assert not verify_password("wrong-password", hashed)


def test_token_round_trip_carries_subject_and_one_hour_expiry():
    user_id = uuid.uuid4()
    claims = decode_access_token(create_access_token(user_id))

    assert claims.subject == user_id
    payload = jwt.get_unverified_claims(create_access_token(user_id))
    assert payload["sub"] == str(user_id)
    assert config.ACCESS_TOKEN_EXPIRE_MINUTES == 60


def test_expired_token_is_rejected():
    token = create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-30))

    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_token_signed_with_another_secret_is_rejected():
    token = jwt.encode({"sub": str(uuid.uuid4()), "exp": 4102444800}, "not-the-secret", algorithm="HS256")

    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
def test_malformed_token_is_rejected(token):
    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_token_without_user_id_subject_is_rejected():
    token = jwt.encode({"sub": "admin", "exp": 4102444800}, config.SECRET_KEY, algorithm=config.ALGORITHM)

    with pytest.raises(UnauthorizedError):
        decode_access_token(token)


def test_protected_endpoint_requires_bearer_header(client):
    assert client.get("/orders/me").status_code == 401
    resp = client.get("/orders/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"
