import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_library.auth.dependencies import AuthSession, get_session, require_role
from campus_library.auth.passwords import hash_password, verify_password
from campus_library.core import config
from campus_library.database import get_db
from campus_library.models.user import (
    ADMIN_UPDATABLE_COLUMNS,
    DELETED_STATUS,
    PROFILE_UPDATABLE_COLUMNS,
    USER_ROLES,
    USER_STATUSES,
    User,
)
from campus_library.query_builder import LIKE_ESCAPE, SelectStatement, UpdateStatement, like_pattern

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

ADMIN_ROLES = ('admin',)
STAFF_ROLES = ('admin', 'librarian')


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not normalized or '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


def _normalize_role(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in USER_ROLES:
        raise ValueError('Invalid role.')
    return normalized


def _normalize_status(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in USER_STATUSES:
        raise ValueError('Invalid status.')
    return normalized


def _normalize_full_name(value: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError('Full name is required.')
    return normalized


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def _check_password(value: str) -> str:
    if len(value) < config.MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {config.MIN_PASSWORD_LENGTH} characters.')
    if len(value.encode('utf-8')) > config.BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f'Password must be {config.BCRYPT_MAX_PASSWORD_BYTES} bytes or fewer.')
    return value


class CreateUserRequest(BaseModel):
    email: str
    password: str
    full_name: str
    role: str
    university_id: str | None = None
    university_name: str | None = None
    department: str | None = None
    year_level: str | None = None
    course: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _check_password(value)

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str) -> str:
        return _normalize_full_name(value)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        return _normalize_role(value)

    @field_validator('university_id', 'university_name', 'department', 'year_level', 'course')
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        return _blank_to_none(value)


class UpdateUserRequest(BaseModel):
    full_name: str | None = None
    role: str | None = None
    status: str | None = None
    university_id: str | None = None
    university_name: str | None = None
    department: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    year_level: str | None = None
    course: str | None = None

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_full_name(value)

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_role(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_status(value)

    @field_validator(
        'university_id', 'university_name', 'department', 'phone', 'avatar_url', 'year_level', 'course'
    )
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        return _blank_to_none(value)


class UpdateRoleRequest(BaseModel):
    role: str

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        return _normalize_role(value)


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _normalize_status(value)


class UpdateProfileRequest(BaseModel):
    full_name: str | None = None
    email: str | None = None
    phone: str | None = None
    avatar_url: str | None = None

    @field_validator('full_name')
    @classmethod
    def validate_full_name(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_full_name(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return None if value is None else _normalize_email(value)

    @field_validator('phone', 'avatar_url')
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        return _blank_to_none(value)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return _check_password(value)


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: str
    status: str
    university_id: str | None = None
    university_name: str | None = None
    department: str | None = None
    year_level: str | None = None
    course: str | None = None
    phone: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class UserResult(BaseModel):
    user: UserResponse | None = None
    error: str | None = None


class ActionResult(BaseModel):
    error: str | None = None


class UserStatsResponse(BaseModel):
    total_users: int
    students: int
    faculty: int
    librarians: int
    admins: int
    active_users: int


def _database_unavailable(exc: SQLAlchemyError) -> HTTPException:
    logger.exception('User query failed', exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Verify DATABASE_URL and database credentials.',
    )


def _user_result(user: User | None, error: str | None = None) -> UserResult:
    if user is None:
        return UserResult(user=None, error=error)
    return UserResult(user=UserResponse.model_validate(user), error=error)


def _write_user_columns(db: Session, user_id: int, update: UpdateStatement) -> int:
    """Execute a built update against one user row and return the matched row count."""
    statement, _ = update.build('id', user_id)
    return db.execute(statement).rowcount


def _email_taken(db: Session, email: str, exclude_user_id: int | None = None) -> bool:
    query = db.query(User.id).filter(User.email == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    return query.first() is not None


@router.get('', response_model=list[UserResponse])
def get_users(
    role: str | None = Query(default=None),
    search: str | None = Query(default=None),
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    require_role(session, ADMIN_ROLES)

    query = SelectStatement('users').where('status != {}', DELETED_STATUS)

    if role:
        normalized_role = role.strip().lower()
        if normalized_role not in USER_ROLES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid role.')
        query.where('role = {}', normalized_role)

    if search and search.strip():
        pattern = like_pattern(search.strip())
        escape = f"ESCAPE '{LIKE_ESCAPE}'"
        query.where(
            f'(LOWER(full_name) LIKE {{}} {escape} '
            f'OR LOWER(email) LIKE {{}} {escape} '
            f'OR LOWER(university_id) LIKE {{}} {escape})',
            pattern,
            pattern,
            pattern,
        )

    query.order_by('created_at DESC', 'id DESC')
    statement, _ = query.build()

    try:
        return db.scalars(select(User).from_statement(statement)).all()
    except SQLAlchemyError as exc:
        raise _database_unavailable(exc) from exc


@router.get('/stats', response_model=UserStatsResponse)
def get_user_stats(
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    require_role(session, STAFF_ROLES)

    visible = User.status != DELETED_STATUS

    def count_where(condition):
        return func.count(case((condition, 1)))

    try:
        row = db.execute(
            select(
                count_where(visible).label('total_users'),
                count_where(and_(User.role == 'student', visible)).label('students'),
                count_where(and_(User.role == 'faculty', visible)).label('faculty'),
                count_where(and_(User.role == 'librarian', visible)).label('librarians'),
                count_where(and_(User.role == 'admin', visible)).label('admins'),
                count_where(User.status == 'active').label('active_users'),
            )
        ).one()
    except SQLAlchemyError as exc:
        raise _database_unavailable(exc) from exc

    return UserStatsResponse(**row._mapping)


@router.get('/me', response_model=UserResponse | None)
def get_current_user_profile(session: AuthSession = Depends(get_session)):
    return session.user


@router.patch('/me', response_model=UserResult)
def update_current_user_profile(
    data: UpdateProfileRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    if session.user is None:
        return UserResult(error='Not authenticated')

    user_id = session.user.id
    fields = data.model_dump(exclude_none=True)
    update = UpdateStatement('users', PROFILE_UPDATABLE_COLUMNS).set_many(fields)
    if update.is_empty():
        return UserResult(error='No updates provided')

    try:
        if 'email' in fields and _email_taken(db, fields['email'], exclude_user_id=user_id):
            return UserResult(error='Email already in use')

        _write_user_columns(db, user_id, update)
        db.commit()

        return _user_result(db.get(User, user_id))
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Update profile failed for user %s', user_id)
        return UserResult(error='Failed to update profile')


@router.post('/me/password', response_model=ActionResult)
def update_current_user_password(
    data: ChangePasswordRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    if session.user is None:
        return ActionResult(error='Not authenticated')

    user_id = session.user.id

    try:
        stored_hash = db.execute(
            select(User.password_hash).where(User.id == user_id)
        ).scalar_one_or_none()

        if stored_hash is None or not verify_password(data.current_password, stored_hash):
            return ActionResult(error='Current password is incorrect')

        update = UpdateStatement('users', {'password_hash'}).set('password_hash', hash_password(data.new_password))
        _write_user_columns(db, user_id, update)
        db.commit()

        logger.info('User %s changed their password', user_id)
        return ActionResult()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Update password failed for user %s', user_id)
        return ActionResult(error='Failed to change password')


@router.get('/{user_id}', response_model=UserResponse | None)
def get_user_by_id(
    user_id: int,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    if session.user is None or session.user.id != user_id:
        require_role(session, STAFF_ROLES)

    try:
        return db.get(User, user_id)
    except SQLAlchemyError as exc:
        raise _database_unavailable(exc) from exc


@router.post('', response_model=UserResult)
def create_user(
    data: CreateUserRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    admin_id = require_role(session, ADMIN_ROLES).id

    try:
        if _email_taken(db, data.email):
            return UserResult(error='Email already exists')

        user = User(
            email=data.email,
            password_hash=hash_password(data.password),
            full_name=data.full_name,
            role=data.role,
            status='active',
            university_id=data.university_id,
            university_name=data.university_name,
            department=data.department,
            year_level=data.year_level,
            course=data.course,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        logger.info('Admin %s created user %s with role %s', admin_id, user.id, user.role)
        return _user_result(user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Create user failed')
        return UserResult(error='Failed to create user')


@router.patch('/{user_id}', response_model=UserResult)
def update_user(
    user_id: int,
    data: UpdateUserRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    admin_id = require_role(session, ADMIN_ROLES).id

    fields = data.model_dump(exclude_none=True)
    update = UpdateStatement('users', ADMIN_UPDATABLE_COLUMNS).set_many(fields)
    if update.is_empty():
        return UserResult(error='No updates provided')
    if 'status' in fields and user_id == admin_id:
        return UserResult(error='You cannot change your own status')

    try:
        if _write_user_columns(db, user_id, update) == 0:
            db.rollback()
            return UserResult(error='User not found')
        db.commit()

        logger.info('Admin %s updated user %s: %s', admin_id, user_id, sorted(fields))
        return _user_result(db.get(User, user_id))
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Update user %s failed', user_id)
        return UserResult(error='Failed to update user')


@router.patch('/{user_id}/role', response_model=ActionResult)
def update_user_role(
    user_id: int,
    data: UpdateRoleRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    admin_id = require_role(session, ADMIN_ROLES).id

    try:
        update = UpdateStatement('users', {'role'}).set('role', data.role)
        if _write_user_columns(db, user_id, update) == 0:
            db.rollback()
            return ActionResult(error='User not found')
        db.commit()

        logger.info('Admin %s set role of user %s to %s', admin_id, user_id, data.role)
        return ActionResult()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Update role failed for user %s', user_id)
        return ActionResult(error='Failed to update role')


@router.patch('/{user_id}/status', response_model=ActionResult)
def update_user_status(
    user_id: int,
    data: UpdateStatusRequest,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    admin_id = require_role(session, ADMIN_ROLES).id
    if user_id == admin_id:
        return ActionResult(error='You cannot change your own status')

    try:
        update = UpdateStatement('users', {'status'}).set('status', data.status)
        if _write_user_columns(db, user_id, update) == 0:
            db.rollback()
            return ActionResult(error='User not found')
        db.commit()

        logger.info('Admin %s set status of user %s to %s', admin_id, user_id, data.status)
        return ActionResult()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Update status failed for user %s', user_id)
        return ActionResult(error='Failed to update status')


@router.delete('/{user_id}', response_model=ActionResult)
def delete_user(
    user_id: int,
    session: AuthSession = Depends(get_session),
    db: Session = Depends(get_db),
):
    admin_id = require_role(session, ADMIN_ROLES).id
    if user_id == admin_id:
        return ActionResult(error='You cannot delete your own account')

    try:
        # Soft delete: the row stays and is hidden by its status.
        update = UpdateStatement('users', {'status'}).set('status', DELETED_STATUS)
        if _write_user_columns(db, user_id, update) == 0:
            db.rollback()
            return ActionResult(error='User not found')
        db.commit()

        logger.info('Admin %s deactivated user %s', admin_id, user_id)
        return ActionResult()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Delete user failed for user %s', user_id)
        return ActionResult(error='Failed to delete user')
