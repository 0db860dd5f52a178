"""Create the default settings and the administrator account.

Usage:
    python -m contest.seed [--deadline-days N]
"""
import argparse
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from contest.auth.passwords import get_password_hash
from contest.core import clock, config
from contest.database import SessionLocal, engine, ensure_work_schema
from contest.models import Role, Setting, User
from contest.services.settings import (
    DEFAULT_SCALE_MAX,
    DEFAULT_SCALE_MIN,
    RATING_SCALE_KEY,
    SUBMISSION_DEADLINE_KEY,
    upsert_setting,
)

logger = logging.getLogger(__name__)

ADMIN_FULL_NAME = 'Администратор'


def seed_defaults(
    db: Session,
    deadline_days: int | None = None,
    admin_email: str | None = None,
    admin_password: str | None = None,
) -> None:
    """Insert missing defaults. Existing rows are left untouched, except the
    deadline, which is overwritten when ``deadline_days`` is given."""
    admin_email = (config.ADMIN_EMAIL if admin_email is None else admin_email).strip().lower()
    admin_password = config.ADMIN_PASSWORD if admin_password is None else admin_password

    if db.get(Setting, RATING_SCALE_KEY) is None:
        upsert_setting(db, RATING_SCALE_KEY, {'min': DEFAULT_SCALE_MIN, 'max': DEFAULT_SCALE_MAX})
        logger.info('Created default rating scale %s-%s', DEFAULT_SCALE_MIN, DEFAULT_SCALE_MAX)

    if deadline_days is not None:
        deadline = clock.utcnow() + timedelta(days=deadline_days)
        upsert_setting(db, SUBMISSION_DEADLINE_KEY, deadline.isoformat())
        logger.info('Submission deadline set to %s', deadline.isoformat())

    if admin_email and admin_password:
        if db.query(User).filter(User.email == admin_email).first() is None:
            db.add(
                User(
                    email=admin_email,
                    password_hash=get_password_hash(admin_password),
                    full_name=ADMIN_FULL_NAME,
                    role=Role.ADMIN,
                    privacy_accepted=True,
                    is_blocked=False,
                )
            )
            logger.info('Created administrator %s', admin_email)

    db.commit()


def main() -> None:
    parser = argparse.ArgumentParser(description='Seed default contest settings and the admin account.')
    parser.add_argument(
        '--deadline-days',
        type=int,
        default=None,
        help='Set the submission deadline this many days from now.',
    )
    args = parser.parse_args()

    logging.basicConfig(level=config.LOG_LEVEL)

    User.metadata.create_all(bind=engine)
    ensure_work_schema()
    with SessionLocal() as db:
        seed_defaults(db, deadline_days=args.deadline_days)


if __name__ == '__main__':
    main()
