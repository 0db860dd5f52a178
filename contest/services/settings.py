"""Contest-wide settings stored in the ``settings`` table.

Handlers never read settings from module state: they receive a
``ContestSettings`` snapshot loaded for the current request through
``get_contest_settings``.
"""

import logging
from datetime import datetime, timezone

from fastapi import Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from contest.database import get_db
from contest.models.setting import Setting
from contest.routes.common import database_unavailable

logger = logging.getLogger(__name__)

SUBMISSION_DEADLINE_KEY = "submission_deadline"
RATING_SCALE_KEY = "rating_scale"

DEFAULT_SCALE_MIN = 1
DEFAULT_SCALE_MAX = 10


class RatingScale(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int = DEFAULT_SCALE_MIN
    max: int = DEFAULT_SCALE_MAX

    def contains(self, score: int) -> bool:
        return self.min <= score <= self.max


class ContestSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    submission_deadline: datetime | None = None
    rating_scale: RatingScale = RatingScale()

    def is_submission_open(self, now: datetime | None = None) -> bool:
        if self.submission_deadline is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now <= self.submission_deadline


def parse_deadline(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_rating_scale(value) -> RatingScale:
    if not isinstance(value, dict):
        return RatingScale()
    return RatingScale(
        min=int(value.get("min") or DEFAULT_SCALE_MIN),
        max=int(value.get("max") or DEFAULT_SCALE_MAX),
    )


def load_contest_settings(db: Session) -> ContestSettings:
    rows = db.query(Setting).filter(Setting.key.in_([SUBMISSION_DEADLINE_KEY, RATING_SCALE_KEY])).all()
    values = {row.key: row.value for row in rows}

    try:
        submission_deadline = parse_deadline(values.get(SUBMISSION_DEADLINE_KEY))
    except ValueError:
        logger.warning("Ignoring malformed submission deadline %r", values.get(SUBMISSION_DEADLINE_KEY))
        submission_deadline = None

    try:
        rating_scale = parse_rating_scale(values.get(RATING_SCALE_KEY))
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed rating scale %r", values.get(RATING_SCALE_KEY))
        rating_scale = RatingScale()

    return ContestSettings(submission_deadline=submission_deadline, rating_scale=rating_scale)


def get_contest_settings(db: Session = Depends(get_db)) -> ContestSettings:
    try:
        return load_contest_settings(db)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable(exc) from exc


def upsert_setting(db: Session, key: str, value) -> Setting:
    """Insert or update a setting row. The caller commits."""
    setting = db.get(Setting, key)
    if setting is None:
        setting = Setting(key=key, value=value)
        db.add(setting)
    else:
        setting.value = value
    return setting
