from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from campus_library.core import config


connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    config.DATABASE_URL,
    connect_args=connect_args,
    echo=config.DATABASE_ECHO,
    pool_pre_ping=True,
)


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def register_sqlite_functions(target: Engine) -> None:
    """Replace SQLite's ASCII-only LOWER() with one that folds like str.lower()."""
    if target.dialect.name != "sqlite":
        return

    @event.listens_for(target, "connect")
    def _set_sqlite_functions(dbapi_connection, connection_record):
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)


register_sqlite_functions(engine)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_user_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_user_schema(bind: Engine | None = None) -> None:
    """Bring an older ``users`` table up to the current column set."""
    global _user_schema_checked

    if _user_schema_checked and bind is None:
        return

    target = bind or engine

    with _schema_lock:
        if _user_schema_checked and bind is None:
            return

        inspector = inspect(target)

        if 'users' not in inspector.get_table_names():
            if bind is None:
                _user_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('users')}
        # SQLite cannot add a column with a non-constant default, so created_at stays nullable here.
        migration_steps = [
            ('full_name', "ALTER TABLE users ADD COLUMN full_name VARCHAR NOT NULL DEFAULT ''"),
            ('created_at', 'ALTER TABLE users ADD COLUMN created_at TIMESTAMP'),
            ('status', "ALTER TABLE users ADD COLUMN status VARCHAR NOT NULL DEFAULT 'active'"),
            ('university_id', 'ALTER TABLE users ADD COLUMN university_id VARCHAR'),
            ('university_name', 'ALTER TABLE users ADD COLUMN university_name VARCHAR'),
            ('department', 'ALTER TABLE users ADD COLUMN department VARCHAR'),
            ('year_level', 'ALTER TABLE users ADD COLUMN year_level VARCHAR'),
            ('course', 'ALTER TABLE users ADD COLUMN course VARCHAR'),
            ('phone', 'ALTER TABLE users ADD COLUMN phone VARCHAR'),
            ('avatar_url', 'ALTER TABLE users ADD COLUMN avatar_url VARCHAR'),
        ]

        with target.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_users_status_created ON users(status, created_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_users_role_status ON users(role, status)')
            )

        if bind is None:
            _user_schema_checked = True
