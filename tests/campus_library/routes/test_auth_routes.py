import hashlib

import pytest
from fastapi import HTTPException

from campus_library.auth import jwt_handler
from campus_library.auth.passwords import is_legacy_digest, verify_password
from campus_library.models.user import User
from campus_library.routes.auth_routes import LoginRequest, login, me


def test_login_request_normalizes_email() -> None:
    request = LoginRequest(email='  Reader@Library.EDU ', password='secret-pass')

    assert request.email == 'reader@library.edu'


def test_login_returns_token_for_valid_credentials(make_user, user_db) -> None:
    reader = make_user('reader@library.edu', role='faculty', password='secret-pass')

    response = login(data=LoginRequest(email='reader@library.edu', password='secret-pass'), db=user_db)
    payload = jwt_handler.decode_access_token(response.access_token)

    assert response.token_type == 'bearer'
    assert payload['sub'] == str(reader.id)
    assert payload['role'] == 'faculty'


def test_login_rejects_wrong_password(make_user, user_db) -> None:
    make_user('reader@library.edu', password='secret-pass')

    with pytest.raises(HTTPException) as exception_info:
        login(data=LoginRequest(email='reader@library.edu', password='not-the-pass'), db=user_db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Incorrect email or password'


def test_login_rejects_unknown_email(user_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        login(data=LoginRequest(email='ghost@library.edu', password='secret-pass'), db=user_db)

    assert exception_info.value.status_code == 401


@pytest.mark.parametrize('status', ['suspended', 'inactive'])
def test_login_rejects_non_active_accounts(make_user, user_db, status: str) -> None:
    make_user('reader@library.edu', password='secret-pass', status=status)

    with pytest.raises(HTTPException) as exception_info:
        login(data=LoginRequest(email='reader@library.edu', password='secret-pass'), db=user_db)

    assert exception_info.value.status_code == 401


def test_login_upgrades_legacy_digest(user_db) -> None:
    legacy = User(
        email='legacy@library.edu',
        password_hash=hashlib.sha256(b'old-school-pass').hexdigest(),
        full_name='Legacy Reader',
        role='student',
        status='active',
    )
    user_db.add(legacy)
    user_db.commit()
    user_id = legacy.id

    login(data=LoginRequest(email='legacy@library.edu', password='old-school-pass'), db=user_db)

    user_db.expire_all()
    upgraded_hash = user_db.get(User, user_id).password_hash
    assert not is_legacy_digest(upgraded_hash)
    assert verify_password('old-school-pass', upgraded_hash)


def test_login_keeps_legacy_digest_for_password_too_long_for_bcrypt(user_db) -> None:
    long_password = 'x' * 80
    legacy_digest = hashlib.sha256(long_password.encode('utf-8')).hexdigest()
    legacy = User(
        email='longpass@library.edu',
        password_hash=legacy_digest,
        full_name='Long Password Reader',
        role='student',
        status='active',
    )
    user_db.add(legacy)
    user_db.commit()
    user_id = legacy.id

    response = login(data=LoginRequest(email='longpass@library.edu', password=long_password), db=user_db)

    assert jwt_handler.decode_access_token(response.access_token)['sub'] == str(user_id)
    user_db.expire_all()
    assert user_db.get(User, user_id).password_hash == legacy_digest


def test_me_returns_identity(make_user) -> None:
    reader = make_user('reader@library.edu', role='librarian')

    response = me(current_user=reader)

    assert response.email == 'reader@library.edu'
    assert response.role == 'librarian'
    assert response.id == reader.id
