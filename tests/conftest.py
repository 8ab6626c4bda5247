import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('BCRYPT_ROUNDS', '4')
os.environ.setdefault('JWT_SECRET_KEY', 'campus-library-test-signing-key-0123456789')

from campus_library.auth.dependencies import AuthSession  # noqa: E402
from campus_library.auth.passwords import hash_password  # noqa: E402
from campus_library.database import Base, register_sqlite_functions  # noqa: E402
from campus_library.models.user import User  # noqa: E402


@pytest.fixture
def user_db():
    engine = create_engine('sqlite:///:memory:')
    register_sqlite_functions(engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[User.__table__])

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=[User.__table__])


@pytest.fixture
def make_user(user_db):
    def _make_user(
        email: str,
        *,
        full_name: str = 'Library User',
        role: str = 'student',
        status: str = 'active',
        password: str = 'correct-horse',
        **extra,
    ) -> User:
        user = User(
            email=email,
            password_hash=hash_password(password),
            full_name=full_name,
            role=role,
            status=status,
            **extra,
        )
        user_db.add(user)
        user_db.commit()
        user_db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def admin_session(make_user) -> AuthSession:
    return AuthSession(user=make_user('admin@library.edu', full_name='Ada Admin', role='admin'))
