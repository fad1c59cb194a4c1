import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from . import config
from .errors import UnauthorizedError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt", "argon2"],
    deprecated="auto",
    bcrypt__rounds=config.PASSWORD_HASH_ROUNDS,
)


@dataclass(frozen=True)
class TokenClaims:
    subject: uuid.UUID
    expiry: datetime


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user_id: uuid.UUID, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_access_token(token: str) -> TokenClaims:
    """Verify signature and expiry and return the claims.

    Raises UnauthorizedError for malformed, badly signed or expired tokens and
    for tokens whose subject is not a user id.
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning("Rejected bearer token: %s", e)
        raise UnauthorizedError()

    subject = payload.get("sub")
    exp = payload.get("exp")
    if subject is None or exp is None:
        raise UnauthorizedError()
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError:
        raise UnauthorizedError()

    return TokenClaims(subject=user_id, expiry=datetime.fromtimestamp(int(exp), tz=timezone.utc))


security = HTTPBearer(auto_error=False)


def get_current_claims(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> TokenClaims:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise UnauthorizedError("Authorization token missing")
    return decode_access_token(credentials.credentials)


def get_current_user_id(claims: TokenClaims = Depends(get_current_claims)) -> uuid.UUID:
    return claims.subject
