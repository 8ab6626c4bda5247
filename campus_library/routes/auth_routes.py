import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_library.auth import jwt_handler
from campus_library.auth.dependencies import get_current_user
from campus_library.auth.passwords import fits_bcrypt, hash_password, needs_rehash, verify_password
from campus_library.database import get_db
from campus_library.models.user import User

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'


class WhoAmIResponse(BaseModel):
    id: int
    email: str
    role: str


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail='Incorrect email or password',
        headers={'WWW-Authenticate': 'Bearer'},
    )


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc

    if user is None or not verify_password(data.password, user.password_hash):
        logger.warning('Login failed for %s', data.email)
        raise _invalid_credentials()

    if user.status != 'active':
        logger.warning('Login refused for %s account %s', user.status, user.id)
        raise _invalid_credentials()

    user_id, role = user.id, user.role

    if needs_rehash(user.password_hash) and not fits_bcrypt(data.password):
        logger.warning('Legacy digest kept for user %s: password too long for bcrypt', user_id)
    elif needs_rehash(user.password_hash):
        try:
            user.password_hash = hash_password(data.password)
            db.commit()
            logger.info('Upgraded legacy password digest for user %s', user_id)
        except (SQLAlchemyError, ValueError):
            db.rollback()
            logger.exception('Password digest upgrade failed for user %s', user_id)

    return TokenResponse(access_token=jwt_handler.create_access_token(user_id, role))


@router.get('/me', response_model=WhoAmIResponse)
def me(current_user: User = Depends(get_current_user)):
    return WhoAmIResponse(id=current_user.id, email=current_user.email, role=current_user.role)
