import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from campus_library.core import config
from campus_library.database import SessionLocal, engine, ensure_user_schema
from campus_library.models import user
from campus_library.routes import auth_routes, user_routes
from campus_library.seed import ensure_bootstrap_admin

app = FastAPI(title='Campus Library API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        user.Base.metadata.create_all(bind=engine)
        ensure_user_schema()
        db = SessionLocal()
        try:
            ensure_bootstrap_admin(db)
        finally:
            db.close()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Campus Library API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(user_routes.router, prefix='/users')
