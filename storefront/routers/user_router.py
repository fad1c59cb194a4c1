import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from .. import crud
from ..auth import create_access_token, get_current_user_id
from ..database import get_db
from ..errors import EmailAlreadyRegisteredError, ForbiddenError, NotFoundError, UnauthorizedError
from ..schemas import LoginRequest, Token, UserCreate, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/create", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(user: UserCreate, db: Session = Depends(get_db)):
    # Check if email already exists
    if crud.email_exists(db, user.email):
        raise EmailAlreadyRegisteredError()

    new_user = crud.create_user(db, user)
    logger.info("Registered user %s", new_user.id)
    return new_user


@router.post("/login", response_model=Token)
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, credentials.email, credentials.password)
    if user is None:
        # Same answer for unknown email and wrong password
        raise UnauthorizedError("Incorrect email or password")
    return Token(access_token=create_access_token(user.id))


@router.get("/me", response_model=UserOut)
def read_users_me(user_id: UUID = Depends(get_current_user_id), db: Session = Depends(get_db)):
    user = crud.get_user(db, user_id)
    if user is None:
        raise UnauthorizedError("User no longer exists")
    return user


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: UUID, db: Session = Depends(get_db)):
    user = crud.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: UUID,
    current_user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    if user_id != current_user_id:
        raise ForbiddenError("You can only delete your own account")
    if not crud.delete_user(db, user_id):
        raise NotFoundError("User not found")
    logger.info("Deleted user %s", user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
