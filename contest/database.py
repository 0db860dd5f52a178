from pathlib import Path
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from contest.core import config


DATABASE_URL = config.DATABASE_URL

# Local SQLite file when DATABASE_URL is not configured
if not DATABASE_URL.strip():
    DATABASE_URL = f"sqlite:///{Path.cwd() / 'contest.db'}"

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        echo=config.DATABASE_ECHO,
        connect_args={"check_same_thread": False},
    )
else:
    engine = create_engine(DATABASE_URL, echo=config.DATABASE_ECHO, pool_pre_ping=True)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_work_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_work_schema(bind=None) -> None:
    """Create the indexes used by work listings and auto-distribution.

    Safe to call repeatedly; the check runs once per process.
    """
    global _work_schema_checked

    if _work_schema_checked:
        return

    with _schema_lock:
        if _work_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'works' not in inspector.get_table_names():
            _work_schema_checked = True
            return

        with bind.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_works_status_expert ON works(status, expert_id)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_works_nomination_created ON works(nomination, created_at)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_works_expert_status ON works(expert_id, status)')
            )

        _work_schema_checked = True
