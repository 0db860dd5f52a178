import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from contest.core import config
from contest.database import SessionLocal, engine, ensure_work_schema
from contest.models import user
from contest.routes import (
    admin_routes,
    auth_routes,
    rating_routes,
    settings_routes,
    user_routes,
    work_routes,
)
from contest.seed import seed_defaults

logging.basicConfig(level=config.LOG_LEVEL)

app = FastAPI(title='Наследники Победы API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
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
        ensure_work_schema()
        with SessionLocal() as db:
            seed_defaults(db)
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Contest API Running'}


app.include_router(auth_routes.router, prefix='/api/auth')
app.include_router(user_routes.router, prefix='/api/users')
app.include_router(work_routes.router, prefix='/api/works')
app.include_router(rating_routes.router, prefix='/api/ratings')
app.include_router(admin_routes.router, prefix='/api/admin')
app.include_router(settings_routes.router, prefix='/api/settings')
